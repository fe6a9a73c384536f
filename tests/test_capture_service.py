"""CaptureService 单元测试"""

import cv2
import numpy as np
import pytest

from capture.capture_service import CaptureService
from models.data_models import CaptureConfig, CapturedImage
from models.errors import CaptureError


def _encode(image, ext=".png"):
    ok, buffer = cv2.imencode(ext, image)
    assert ok
    return buffer.tobytes()


def _column_image(w, h):
    """每一列的像素值等于列号（取模 256），便于检查裁剪位置。"""
    cols = (np.arange(w) % 256).astype(np.uint8)
    image = np.repeat(cols[np.newaxis, :], h, axis=0)
    return np.stack([image] * 3, axis=-1)


def _row_image(w, h):
    rows = (np.arange(h) % 256).astype(np.uint8)
    image = np.repeat(rows[:, np.newaxis], w, axis=1)
    return np.stack([image] * 3, axis=-1)


class FakeStillSource:
    def __init__(self, data):
        self.data = data
        self.calls = []

    def capture_still(self, width, height):
        self.calls.append((width, height))
        return self.data


class TestCropSquare:
    @pytest.mark.parametrize("w,h", [(1920, 1080), (1080, 1920), (640, 480), (500, 500), (641, 480)])
    def test_side_is_shorter_dimension(self, w, h):
        cropped = CaptureService.crop_square(np.zeros((h, w, 3), dtype=np.uint8))
        assert cropped.shape[:2] == (min(w, h), min(w, h))

    def test_landscape_offset_on_x(self):
        cropped = CaptureService.crop_square(_column_image(400, 200))
        # offset = (400 - 200) / 2 = 100
        assert cropped[0, 0, 0] == 100
        assert cropped[0, -1, 0] == 299

    def test_portrait_offset_on_y(self):
        cropped = CaptureService.crop_square(_row_image(200, 400))
        assert cropped[0, 0, 0] == 100
        assert cropped[-1, 0, 0] == 299

    def test_odd_difference_rounds_down(self):
        cropped = CaptureService.crop_square(_column_image(201, 100))
        assert cropped.shape[:2] == (100, 100)
        assert cropped[0, 0, 0] == 50


class TestDecode:
    def test_decode_valid_image(self):
        image = CaptureService.decode(_encode(_column_image(64, 32)))
        assert image.shape == (32, 64, 3)

    def test_decode_garbage_raises(self):
        with pytest.raises(CaptureError, match="解码失败"):
            CaptureService.decode(b"not an image")


class TestEncode:
    @pytest.mark.parametrize("fmt", ["jpeg", "png", "webp"])
    def test_encoded_bytes_decodable(self, fmt):
        service = CaptureService(CaptureConfig(output_format=fmt, quality=90))
        data = service.encode(np.full((50, 50, 3), 128, dtype=np.uint8))
        decoded = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
        assert decoded.shape == (50, 50, 3)


class TestCapture:
    def test_capture_returns_square_image(self):
        source = FakeStillSource(_encode(_column_image(320, 180)))
        service = CaptureService(CaptureConfig(target_width=320, target_height=180, output_format="png"))

        result = service.capture(source)

        assert isinstance(result, CapturedImage)
        assert (result.width, result.height) == (180, 180)
        assert source.calls == [(320, 180)]
        decoded = cv2.imdecode(np.frombuffer(result.data, dtype=np.uint8), cv2.IMREAD_COLOR)
        assert decoded.shape[:2] == (180, 180)
        assert decoded[0, 0, 0] == 70

    def test_capture_uses_decoded_size_not_requested(self):
        """视频源返回的分辨率可能与请求不同，以解码结果为准。"""
        source = FakeStillSource(_encode(np.zeros((240, 320, 3), dtype=np.uint8)))
        service = CaptureService(CaptureConfig(target_width=1920, target_height=1080))
        result = service.capture(source)
        assert (result.width, result.height) == (240, 240)
        assert result.format == "jpeg"

    def test_empty_still_raises(self):
        with pytest.raises(CaptureError, match="未返回图像数据"):
            CaptureService().capture(FakeStillSource(None))

    def test_undecodable_still_raises(self):
        with pytest.raises(CaptureError):
            CaptureService().capture(FakeStillSource(b"\x00\x01\x02"))


class TestCapturedImage:
    def test_data_uri(self):
        image = CapturedImage(data=b"abc", width=1, height=1, format="jpeg")
        assert image.mime_type == "image/jpeg"
        assert image.to_data_uri() == "data:image/jpeg;base64,YWJj"
