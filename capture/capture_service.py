"""拍摄服务：高分辨率静态拍摄 -> 解码 -> 居中正方形裁剪 -> 重新编码"""

import logging
from typing import Optional

import cv2
import numpy as np

from geometry.guideline import cover_crop_box
from models.data_models import CaptureConfig, CapturedImage
from models.errors import CaptureError

logger = logging.getLogger(__name__)


class CaptureService:
    """生成与预览中可见区域一致的正方形照片。失败时抛出 CaptureError，不修改会话状态。"""

    def __init__(self, config: Optional[CaptureConfig] = None):
        self.config = config or CaptureConfig()

    def capture(self, still_source) -> CapturedImage:
        """
        执行一次拍摄。

        Args:
            still_source: 提供 capture_still(width, height) -> bytes 的视频源

        Returns:
            CapturedImage，边长为解码后图像的短边
        """
        config = self.config
        data = still_source.capture_still(config.target_width, config.target_height)
        if not data:
            raise CaptureError("静态拍摄未返回图像数据")

        image = self.decode(data)
        cropped = self.crop_square(image)
        encoded = self.encode(cropped)

        side = cropped.shape[0]
        logger.info(
            "拍摄完成: 原图 %dx%d -> 裁剪 %dx%d (%s, %d 字节)",
            image.shape[1], image.shape[0], side, side,
            config.output_format, len(encoded),
        )
        return CapturedImage(
            data=encoded,
            width=side,
            height=side,
            format=config.output_format,
        )

    @staticmethod
    def decode(data: bytes) -> np.ndarray:
        """将编码图像数据解码为 BGR 像素矩阵。"""
        buffer = np.frombuffer(data, dtype=np.uint8)
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        if image is None or image.size == 0:
            raise CaptureError("图像解码失败")
        return image

    @staticmethod
    def crop_square(image: np.ndarray) -> np.ndarray:
        """
        按 cover 方式裁剪居中正方形。

        边长 = min(宽, 高)；长边方向偏移 (长边 - 边长) / 2，奇数差值向下取整。
        """
        h, w = image.shape[:2]
        offset_x, offset_y, side = cover_crop_box(w, h)
        x, y = int(offset_x), int(offset_y)
        return image[y:y + side, x:x + side]

    def encode(self, image: np.ndarray) -> bytes:
        """按配置的格式和质量重新编码。"""
        config = self.config
        if config.output_format == "jpeg":
            params = [cv2.IMWRITE_JPEG_QUALITY, config.quality]
        elif config.output_format == "webp":
            params = [cv2.IMWRITE_WEBP_QUALITY, max(1, config.quality)]
        else:
            # PNG 为无损格式，quality 不生效
            params = []

        ok, buffer = cv2.imencode(config.extension, image, params)
        if not ok:
            raise CaptureError(f"图像编码失败: {config.output_format}")
        return buffer.tobytes()
