"""引导区域几何计算模块（cover 裁剪下的可见正方形与引导椭圆）"""

from typing import Tuple

from models.data_models import AlignmentConfig, GuidelineRegion


def cover_crop_box(width: float, height: float) -> Tuple[float, float, float]:
    """
    计算 cover 方式显示时可见的居中正方形。

    Args:
        width: 帧宽度（像素）
        height: 帧高度（像素）

    Returns:
        (offset_x, offset_y, side)，短边方向偏移为 0
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"帧尺寸无效: {width}x{height}")

    side = min(width, height)
    offset_x = (width - side) / 2
    offset_y = (height - side) / 2
    return offset_x, offset_y, side


def compute_guideline(width: float, height: float, config: AlignmentConfig) -> GuidelineRegion:
    """
    根据当前帧尺寸和配置计算引导区域。

    纵向半径由可见边长决定；横向半径按宽高比放大，使引导框在正方形
    显示区域中被非等比缩放后仍呈圆形。
    """
    offset_x, offset_y, side = cover_crop_box(width, height)

    if config.diameter_ratio is not None:
        radius_y = side * config.diameter_ratio / 2
    else:
        radius_y = side / config.radius_divisor

    if config.correct_aspect:
        radius_x = radius_y * (width / height)
    else:
        radius_x = radius_y

    return GuidelineRegion(
        center_x=width / 2,
        center_y=height / 2,
        radius_x=radius_x,
        radius_y=radius_y,
        visible_size=side,
        offset_x=offset_x,
        offset_y=offset_y,
        frame_width=width,
        frame_height=height,
    )
