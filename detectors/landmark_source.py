"""人脸关键点检测模块，基于 MediaPipe Tasks FaceLandmarker（VIDEO 模式）"""

import logging
import os
from typing import Optional

import cv2
import mediapipe as mp
import numpy as np
from mediapipe.tasks import python as mp_tasks
from mediapipe.tasks.python import vision

from models.data_models import DetectionResult

logger = logging.getLogger(__name__)

_DELEGATES = {
    "cpu": mp_tasks.BaseOptions.Delegate.CPU,
    "gpu": mp_tasks.BaseOptions.Delegate.GPU,
}


class FaceLandmarkSource:
    """使用 MediaPipe FaceLandmarker 检测视频帧中的人脸关键点"""

    def __init__(
        self,
        model_path: str,
        max_num_faces: int = 1,
        min_detection_confidence: float = 0.5,
        delegate: str = "cpu",
    ):
        """
        加载 FaceLandmarker 模型。

        Args:
            model_path: face_landmarker.task 模型文件路径
            max_num_faces: 最多检测的人脸数；需要识别多人脸时至少为 2
            min_detection_confidence: 最低检测置信度
            delegate: 推理后端，"cpu" 或 "gpu"
        """
        if not os.path.exists(model_path):
            raise FileNotFoundError(f"关键点模型文件不存在: {model_path}")
        if delegate not in _DELEGATES:
            raise ValueError(f"不支持的推理后端: {delegate}")

        options = vision.FaceLandmarkerOptions(
            base_options=mp_tasks.BaseOptions(
                model_asset_path=model_path,
                delegate=_DELEGATES[delegate],
            ),
            running_mode=vision.RunningMode.VIDEO,
            num_faces=max_num_faces,
            min_face_detection_confidence=min_detection_confidence,
            min_face_presence_confidence=min_detection_confidence,
            min_tracking_confidence=0.5,
        )
        self._landmarker = vision.FaceLandmarker.create_from_options(options)
        self._last_timestamp_ms = -1
        self._closed = False
        logger.info(
            "FaceLandmarker 已加载: %s (num_faces=%d, delegate=%s)",
            model_path, max_num_faces, delegate,
        )

    def detect(self, frame: np.ndarray, timestamp_ms: int) -> Optional[DetectionResult]:
        """
        检测单帧图像中的人脸关键点。

        Args:
            frame: BGR 格式的 OpenCV 图像帧
            timestamp_ms: 帧时间戳（毫秒），同一视频流内必须单调递增

        Returns:
            每张人脸一组归一化 (x, y) 关键点；时间戳未前进（帧已处理过）时返回 None
        """
        if timestamp_ms <= self._last_timestamp_ms:
            return None
        self._last_timestamp_ms = timestamp_ms

        # BGR -> RGB
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)

        result = self._landmarker.detect_for_video(mp_image, timestamp_ms)

        if not result.face_landmarks:
            return []

        return [
            [(lm.x, lm.y) for lm in face]
            for face in result.face_landmarks
        ]

    def close(self):
        """释放 MediaPipe 资源"""
        if self._closed:
            return
        self._closed = True
        self._landmarker.close()
