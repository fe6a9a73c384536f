"""界面渲染模块 - 在预览帧上绘制引导框、提示文字和调试信息。"""

from typing import Optional

import cv2
import numpy as np

from geometry.guideline import compute_guideline, cover_crop_box
from models.data_models import (
    AlignmentConfig,
    AlignmentReason,
    AlignmentVerdict,
    CaptureSession,
    SessionPhase,
)

# BGR 颜色
_COLOR_ALIGNED = (128, 222, 74)
_COLOR_UNALIGNED = (113, 113, 248)
_COLOR_TEXT = (255, 255, 255)


def format_debug(verdict: Optional[AlignmentVerdict], max_distance: float) -> str:
    """生成调试信息行，例如 "D: 150/72 | S: 0.83"。"""
    if verdict is None or verdict.distance is None or verdict.scale is None:
        return ""
    return f"D: {verdict.distance:.0f}/{max_distance:.0f} | S: {verdict.scale:.2f}"


class GuidelineRenderer:
    """把预览帧裁成用户看到的正方形，并叠加引导框与提示。"""

    # 提示文字映射
    _PROMPT_TEXT = {
        "loading_model": "正在加载人脸识别模型...",
        "preparing_camera": "正在准备摄像头...",
        "aligned": "准备完成！请按空格键拍摄",
        "unaligned": "请将脸部对准引导框",
        "capturing": "正在拍摄...",
        "captured": "已拍摄照片",
        "accepted": "照片已确认",
    }
    _PROMPT_TEXT_EN = {
        "loading_model": "Loading face model...",
        "preparing_camera": "Preparing camera...",
        "aligned": "Ready! Press SPACE to capture",
        "unaligned": "Fit your face in the guide",
        "capturing": "Capturing...",
        "captured": "Photo captured",
        "accepted": "Photo accepted",
    }
    _HINT_TEXT = {
        AlignmentReason.NO_FACE: ("无法识别人脸", "No face detected"),
        AlignmentReason.MULTIPLE_FACES: ("检测到多张人脸，请保持画面中只有一人", "Multiple faces detected"),
        AlignmentReason.UNALIGNED: ("请将脸部移到画面中央", "Move your face to the center"),
    }

    def __init__(self, config: Optional[AlignmentConfig] = None, font_path: str = "SimHei"):
        """初始化中文字体，字体不存在时回退到 OpenCV 默认英文字体。"""
        self.config = config or AlignmentConfig()
        self._pil_font = None
        self._use_pil = False

        try:
            font = self._try_load_font(font_path)
            if font is not None:
                self._pil_font = font
                self._use_pil = True
        except ImportError:
            self._use_pil = False

    @staticmethod
    def _try_load_font(font_path: str):
        """尝试加载字体文件，返回 PIL ImageFont 或 None。"""
        from PIL import ImageFont

        candidates = [
            font_path,
            "/usr/share/fonts/truetype/simhei/SimHei.ttf",
            "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
            "C:\\Windows\\Fonts\\simhei.ttf",
            "/System/Library/Fonts/STHeiti Medium.ttc",
        ]
        for path in candidates:
            try:
                return ImageFont.truetype(path, 28)
            except (OSError, IOError):
                continue
        return None

    @staticmethod
    def determine_prompt(
        session: CaptureSession,
        detector_loaded: bool = True,
        source_ready: bool = True,
    ) -> str:
        """根据会话阶段确定提示键。"""
        phase = session.phase
        if phase == SessionPhase.INITIALIZING:
            if detector_loaded and not source_ready:
                return "preparing_camera"
            return "loading_model"
        if phase == SessionPhase.ALIGNED:
            return "aligned"
        if phase == SessionPhase.CAPTURING:
            return "capturing"
        if phase == SessionPhase.CAPTURED:
            return "captured"
        if phase == SessionPhase.ACCEPTED:
            return "accepted"
        return "unaligned"

    def render(
        self,
        frame: np.ndarray,
        session: CaptureSession,
        detector_loaded: bool = True,
        source_ready: bool = True,
        mirror: bool = True,
    ) -> np.ndarray:
        """渲染预览帧，返回可见正方形区域的图像。"""
        h, w = frame.shape[:2]
        region = compute_guideline(w, h, self.config)
        verdict = session.last_verdict

        offset_x, offset_y, side = cover_crop_box(w, h)
        x, y = int(offset_x), int(offset_y)
        output = frame[y:y + side, x:x + side].copy()
        if mirror:
            output = cv2.flip(output, 1)

        live = session.phase in (SessionPhase.READY, SessionPhase.ALIGNED, SessionPhase.UNALIGNED)
        if live:
            # 引导框按拉伸到正方形画布的方式映射：横向按宽缩放、纵向按高缩放
            axes = (
                int(round(region.radius_x * side / w)),
                int(round(region.radius_y * side / h)),
            )
            color = _COLOR_ALIGNED if session.phase == SessionPhase.ALIGNED else _COLOR_UNALIGNED
            cv2.ellipse(output, (side // 2, side // 2), axes, 0, 0, 360, color, 6, cv2.LINE_AA)

        prompt_key = self.determine_prompt(session, detector_loaded, source_ready)
        lines = [self._text(prompt_key)]
        if live and verdict is not None:
            debug = format_debug(verdict, self.config.max_center_offset(region.visible_size))
            if debug:
                lines.append(debug)
            elif verdict.reason in self._HINT_TEXT:
                zh, en = self._HINT_TEXT[verdict.reason]
                lines.append(zh if self._use_pil else en)

        self._draw_lines(output, lines)
        return output

    def render_captured(self, data: bytes, session: CaptureSession) -> Optional[np.ndarray]:
        """显示已拍摄的照片；解码失败时返回 None。"""
        image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
        if image is None:
            return None
        lines = [self._text(self.determine_prompt(session)), "R: retake | ENTER: use photo"]
        self._draw_lines(image, lines)
        return image

    def _text(self, key: str) -> str:
        if self._use_pil:
            return self._PROMPT_TEXT.get(key, "")
        return self._PROMPT_TEXT_EN.get(key, "")

    def _draw_lines(self, frame: np.ndarray, lines: list) -> None:
        if self._use_pil:
            self._draw_pil_lines(frame, lines, x=20, y_start=20, color=_COLOR_TEXT)
            return
        y = 40
        for text in lines:
            cv2.putText(
                frame, text, (20, y),
                cv2.FONT_HERSHEY_SIMPLEX, 0.9, _COLOR_TEXT, 2,
            )
            y += 36

    def _draw_pil_lines(
        self,
        frame: np.ndarray,
        lines: list,
        x: int,
        y_start: int,
        color: tuple,
    ) -> None:
        """使用 PIL 在帧上绘制多行文字（BGR color -> RGB fill）。"""
        from PIL import Image, ImageDraw

        img_pil = Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        draw = ImageDraw.Draw(img_pil)
        fill = (color[2], color[1], color[0])
        y = y_start
        for line in lines:
            draw.text((x, y), line, font=self._pil_font, fill=fill)
            y += 36
        frame[:] = cv2.cvtColor(np.array(img_pil), cv2.COLOR_RGB2BGR)
