"""人脸对齐判断模块"""

import math
from typing import Optional

from models.data_models import (
    AlignmentConfig,
    AlignmentReason,
    AlignmentVerdict,
    DetectionResult,
    FaceBoundingBox,
    GuidelineRegion,
    ScaleMode,
)


class AlignmentEvaluator:
    """根据引导区域判断单帧检测结果是否对齐。无内部状态，同样的输入总是得到同样的结果。"""

    def __init__(self, config: Optional[AlignmentConfig] = None):
        self.config = config or AlignmentConfig()

    def evaluate(
        self,
        detections: DetectionResult,
        region: GuidelineRegion,
    ) -> AlignmentVerdict:
        """
        判断人脸是否位于引导区域内且大小合适。

        Args:
            detections: 单帧检测结果，每张人脸一组归一化关键点
            region: 由当前帧尺寸计算出的引导区域，同时提供关键点缩放所需的帧尺寸

        Returns:
            AlignmentVerdict(aligned, reason, distance, scale, face_count)
        """
        config = self.config
        face_count = len(detections)

        if face_count == 0:
            return AlignmentVerdict(
                aligned=False, reason=AlignmentReason.NO_FACE, face_count=0,
            )

        if face_count > 1 and config.reject_multiple_faces:
            return AlignmentVerdict(
                aligned=False, reason=AlignmentReason.MULTIPLE_FACES, face_count=face_count,
            )

        box = FaceBoundingBox.from_landmarks(
            detections[0], region.frame_width, region.frame_height,
        )

        # 人脸中心落在被裁掉的边缘区域时，用户实际上看不到
        if not self._is_visible(box, region):
            return AlignmentVerdict(
                aligned=False, reason=AlignmentReason.UNALIGNED, face_count=face_count,
            )

        distance = math.hypot(box.center_x - region.center_x, box.center_y - region.center_y)
        max_distance = config.max_center_offset(region.visible_size)
        scale = self.face_scale(box, region)

        # 边界值视为不通过
        centered = distance < max_distance
        sized = config.min_face_scale < scale < config.max_face_scale

        aligned = centered and sized
        return AlignmentVerdict(
            aligned=aligned,
            reason=AlignmentReason.ALIGNED if aligned else AlignmentReason.UNALIGNED,
            distance=distance,
            scale=scale,
            face_count=face_count,
        )

    def face_scale(self, box: FaceBoundingBox, region: GuidelineRegion) -> float:
        """人脸尺寸与引导区域直径之比。"""
        if self.config.scale_mode == ScaleMode.PER_AXIS:
            return (
                box.width / (region.radius_x * 2)
                + box.height / (region.radius_y * 2)
            ) / 2
        return (box.width + box.height) / 2 / (region.radius_y * 2)

    @staticmethod
    def _is_visible(box: FaceBoundingBox, region: GuidelineRegion) -> bool:
        """沿长边方向检查人脸中心是否在可见正方形内（开区间）。"""
        width, height = region.frame_width, region.frame_height
        if width >= height:
            return region.offset_x < box.center_x < width - region.offset_x
        return region.offset_y < box.center_y < height - region.offset_y
