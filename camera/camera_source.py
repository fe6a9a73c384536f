"""摄像头视频源，提供实时预览帧和指定分辨率的静态拍摄"""

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# 切换分辨率后丢弃的帧数，等待曝光和缓冲区稳定
_WARMUP_FRAMES = 3


class CameraSource:
    """封装 cv2.VideoCapture。摄像头句柄由宿主程序持有，核心流程只读取帧。"""

    def __init__(self, index: int = 0, width: int = 1920, height: int = 1080):
        self.index = index
        self.preview_width = width
        self.preview_height = height
        self._cap = None

    def open(self) -> bool:
        """打开摄像头，成功即视为视频源就绪。"""
        self._cap = cv2.VideoCapture(self.index)
        if not self._cap.isOpened():
            logger.error("无法打开摄像头 %s", self.index)
            return False
        self._apply_resolution(self.preview_width, self.preview_height)
        logger.info("摄像头已开启: %s %dx%d", self.index, *self.frame_size)
        return True

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    @property
    def frame_size(self) -> Tuple[int, int]:
        """摄像头实际输出的 (宽, 高)，可能与请求的分辨率不同。"""
        if not self.is_open:
            return 0, 0
        return (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """读取当前帧；摄像头未就绪或帧为空时返回 (False, None)。"""
        if not self.is_open:
            return False, None
        ret, frame = self._cap.read()
        if not ret or frame is None or frame.size == 0:
            return False, None
        return True, frame

    def capture_still(self, width: int, height: int) -> Optional[bytes]:
        """
        以指定分辨率拍摄一张静态图像，返回 JPEG 编码数据。

        拍摄后恢复预览分辨率；读取或编码失败时返回 None。
        """
        if not self.is_open:
            return None

        switched = (width, height) != (self.preview_width, self.preview_height)
        try:
            if switched:
                self._apply_resolution(width, height)
                for _ in range(_WARMUP_FRAMES):
                    self._cap.grab()
            ok, frame = self.read()
        finally:
            if switched:
                self._apply_resolution(self.preview_width, self.preview_height)

        if not ok:
            logger.warning("静态拍摄读取失败 (%dx%d)", width, height)
            return None

        ok, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, 100])
        if not ok:
            return None
        return buffer.tobytes()

    def release(self):
        """释放摄像头资源"""
        if self._cap is not None and self._cap.isOpened():
            self._cap.release()
        self._cap = None

    def _apply_resolution(self, width: int, height: int):
        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, float(width))
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, float(height))
