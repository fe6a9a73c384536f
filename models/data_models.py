"""核心数据模型定义"""

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

# 归一化 [0, 1] 坐标点 (x, y)
Point2D = Tuple[float, float]
# 单张人脸的关键点序列，顺序由检测器决定
LandmarkSet = List[Point2D]
# 单帧检测结果，每个元素对应一张人脸
DetectionResult = List[LandmarkSet]


class ScaleMode(str, Enum):
    """人脸尺寸比例的计算方式"""
    COMBINED = "combined"    # (宽 + 高) / 2 与纵向直径之比
    PER_AXIS = "per_axis"    # 宽、高分别与对应直径之比再取平均


class AlignmentReason(str, Enum):
    UNALIGNED = "unaligned"
    NO_FACE = "no_face"
    MULTIPLE_FACES = "multiple_faces"
    ALIGNED = "aligned"


class SessionPhase(str, Enum):
    """拍摄会话阶段"""
    INITIALIZING = "initializing"
    READY = "ready"
    ALIGNED = "aligned"
    UNALIGNED = "unaligned"
    CAPTURING = "capturing"
    CAPTURED = "captured"
    ACCEPTED = "accepted"


@dataclass(frozen=True)
class AlignmentConfig:
    """对齐判断配置（不可变）"""
    radius_divisor: float = 2.8
    diameter_ratio: Optional[float] = None
    correct_aspect: bool = True
    min_face_scale: float = 0.6
    max_face_scale: float = 1.0
    center_offset_ratio: float = 0.1
    center_offset_px: Optional[float] = None
    scale_mode: ScaleMode = ScaleMode.COMBINED
    reject_multiple_faces: bool = True

    def __post_init__(self):
        if self.radius_divisor <= 0:
            raise ValueError(f"radius_divisor 必须为正数: {self.radius_divisor}")
        if self.diameter_ratio is not None and self.diameter_ratio <= 0:
            raise ValueError(f"diameter_ratio 必须为正数: {self.diameter_ratio}")
        if self.min_face_scale >= self.max_face_scale:
            raise ValueError(
                f"min_face_scale 必须小于 max_face_scale: "
                f"{self.min_face_scale} >= {self.max_face_scale}"
            )
        if self.center_offset_ratio <= 0:
            raise ValueError(f"center_offset_ratio 必须为正数: {self.center_offset_ratio}")
        if self.center_offset_px is not None and self.center_offset_px <= 0:
            raise ValueError(f"center_offset_px 必须为正数: {self.center_offset_px}")
        # 允许传入字符串
        object.__setattr__(self, "scale_mode", ScaleMode(self.scale_mode))

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "AlignmentConfig":
        """从扁平配置字典构建，缺失字段使用默认值。"""
        kwargs = {
            key: config[key]
            for key in cls.__dataclass_fields__
            if key in config
        }
        return cls(**kwargs)

    def max_center_offset(self, visible_size: float) -> float:
        """允许的最大中心偏移（像素）。设置了绝对值时优先使用。"""
        if self.center_offset_px is not None:
            return float(self.center_offset_px)
        return visible_size * self.center_offset_ratio


_FORMAT_EXTENSIONS = {
    "jpeg": ".jpg",
    "png": ".png",
    "webp": ".webp",
}


@dataclass(frozen=True)
class CaptureConfig:
    """静态拍摄配置"""
    target_width: int = 1920
    target_height: int = 1080
    output_format: str = "jpeg"
    quality: int = 100

    def __post_init__(self):
        if self.target_width <= 0 or self.target_height <= 0:
            raise ValueError(
                f"拍摄分辨率无效: {self.target_width}x{self.target_height}"
            )
        if self.output_format not in _FORMAT_EXTENSIONS:
            raise ValueError(f"不支持的图像格式: {self.output_format}")
        if not 0 <= self.quality <= 100:
            raise ValueError(f"quality 必须在 0-100 之间: {self.quality}")

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "CaptureConfig":
        kwargs = {
            key: config[key]
            for key in cls.__dataclass_fields__
            if key in config
        }
        return cls(**kwargs)

    @property
    def extension(self) -> str:
        return _FORMAT_EXTENSIONS[self.output_format]


@dataclass(frozen=True)
class FaceBoundingBox:
    """人脸包围盒（像素坐标），由关键点派生"""
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @classmethod
    def from_landmarks(cls, landmarks: LandmarkSet, width: int, height: int) -> "FaceBoundingBox":
        """
        将归一化关键点缩放到像素坐标并计算包围盒。

        Args:
            landmarks: 归一化关键点 [(x, y), ...]
            width: 帧宽度（像素）
            height: 帧高度（像素）
        """
        points = np.asarray(landmarks, dtype=np.float64).reshape(-1, 2)
        if points.shape[0] == 0:
            raise ValueError("关键点序列为空")
        xs = points[:, 0] * width
        ys = points[:, 1] * height
        return cls(
            min_x=float(xs.min()),
            max_x=float(xs.max()),
            min_y=float(ys.min()),
            max_y=float(ys.max()),
        )

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center_x(self) -> float:
        return self.min_x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.min_y + self.height / 2


@dataclass(frozen=True)
class GuidelineRegion:
    """引导区域（像素坐标），每帧根据帧尺寸重新计算"""
    center_x: float
    center_y: float
    radius_x: float
    radius_y: float
    visible_size: float
    offset_x: float
    offset_y: float
    frame_width: float
    frame_height: float


@dataclass(frozen=True)
class AlignmentVerdict:
    """单帧对齐判断结果"""
    aligned: bool
    reason: AlignmentReason
    distance: Optional[float] = None
    scale: Optional[float] = None
    face_count: int = 0


@dataclass(frozen=True)
class CapturedImage:
    """裁剪并重新编码后的最终图像"""
    data: bytes
    width: int
    height: int
    format: str = "jpeg"

    @property
    def mime_type(self) -> str:
        return f"image/{self.format}"

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass
class CaptureSession:
    """拍摄会话状态，仅由 SessionStateMachine 修改"""
    phase: SessionPhase = SessionPhase.INITIALIZING
    last_verdict: Optional[AlignmentVerdict] = None
    captured_image: Optional[CapturedImage] = None
    error: Optional[str] = None
