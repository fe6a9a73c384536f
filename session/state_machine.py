"""拍摄会话状态机：串联检测器加载、逐帧对齐判断、拍摄、重拍与确认"""

import logging
from typing import Callable, List, Optional

from capture.capture_service import CaptureService
from evaluators.alignment_evaluator import AlignmentEvaluator
from models.data_models import (
    AlignmentConfig,
    AlignmentVerdict,
    CapturedImage,
    CaptureSession,
    SessionPhase,
)
from models.errors import CaptureError, DetectorLoadError, InvalidTransitionError
from session.frame_scheduler import FrameScheduler

logger = logging.getLogger(__name__)

# 调度器运行期间的阶段
_LIVE_PHASES = (SessionPhase.READY, SessionPhase.ALIGNED, SessionPhase.UNALIGNED)


class SessionStateMachine:
    """
    INITIALIZING -> READY -> ALIGNED / UNALIGNED -> CAPTURING -> CAPTURED
    -> 重拍回到 READY，或确认进入 ACCEPTED。

    CaptureSession 只在这里被修改。检测器由本对象创建并持有，close() 时释放且只释放一次；
    视频源由宿主程序持有。
    """

    def __init__(
        self,
        video_source,
        detector_factory: Callable[[], object],
        config: Optional[AlignmentConfig] = None,
        capture_service: Optional[CaptureService] = None,
        scheduler_options: Optional[dict] = None,
    ):
        """
        Args:
            video_source: 提供 read() 与 capture_still() 的视频源
            detector_factory: 无参工厂，返回提供 detect()/close() 的关键点检测器
            config: 对齐判断配置
            capture_service: 拍摄服务
            scheduler_options: 传给 FrameScheduler 的额外参数（clock、failure_limit 等）
        """
        self.video_source = video_source
        self._detector_factory = detector_factory
        self.capture_service = capture_service or CaptureService()
        self.session = CaptureSession()
        self._detector = None
        self._source_ready = False
        self._closed = False
        self._listeners: List[Callable[[CaptureSession], None]] = []

        self.scheduler = FrameScheduler(
            video_source,
            AlignmentEvaluator(config),
            on_verdict=self._on_verdict,
            can_run=self._can_run,
            on_failure=self._on_detector_failure,
            **(scheduler_options or {}),
        )

    # ---- 属性 ----

    @property
    def phase(self) -> SessionPhase:
        return self.session.phase

    @property
    def detector_loaded(self) -> bool:
        return self._detector is not None

    @property
    def source_ready(self) -> bool:
        return self._source_ready

    @property
    def can_capture(self) -> bool:
        verdict = self.session.last_verdict
        return (
            self.session.phase == SessionPhase.ALIGNED
            and verdict is not None
            and verdict.aligned
            and self.scheduler.is_running
        )

    def on_change(self, listener: Callable[[CaptureSession], None]):
        """注册状态变化监听器（渲染层、日志等）。"""
        self._listeners.append(listener)

    # ---- 初始化 ----

    def load_detector(self):
        """
        加载关键点检测器。失败时会话保持 INITIALIZING，可再次调用重试。

        Raises:
            DetectorLoadError: 检测器创建失败
        """
        self._ensure_open()
        if self._detector is not None:
            return
        try:
            detector = self._detector_factory()
        except Exception as e:
            logger.error("检测器加载失败: %s", e)
            self.session.error = str(e)
            self._notify()
            raise DetectorLoadError(f"检测器加载失败: {e}") from e

        self._detector = detector
        self.scheduler.landmark_source = detector
        self.session.error = None
        logger.info("检测器加载完成")
        self._maybe_start()

    def on_source_ready(self):
        """视频源就绪事件。"""
        self._ensure_open()
        self._source_ready = True
        logger.info("视频源已就绪")
        self._maybe_start()

    def _maybe_start(self):
        if (
            self.session.phase == SessionPhase.INITIALIZING
            and self._detector is not None
            and self._source_ready
        ):
            self._set_phase(SessionPhase.READY)
            self.scheduler.start()

    # ---- 逐帧 ----

    def tick(self) -> Optional[AlignmentVerdict]:
        """由宿主程序在每次显示刷新时调用。"""
        return self.scheduler.tick()

    def _can_run(self) -> bool:
        return (
            self._detector is not None
            and self._source_ready
            and self.session.phase in _LIVE_PHASES
        )

    def _on_verdict(self, verdict: AlignmentVerdict):
        if self.session.phase not in _LIVE_PHASES:
            return
        self.session.last_verdict = verdict
        phase = SessionPhase.ALIGNED if verdict.aligned else SessionPhase.UNALIGNED
        if phase != self.session.phase:
            self._set_phase(phase)
        else:
            self._notify()

    def _on_detector_failure(self, error: Exception):
        """检测器连续失败：释放检测器，回到 INITIALIZING 等待重新加载。"""
        self.session.error = f"检测器连续失败: {error}"
        self.session.last_verdict = None
        self._release_detector()
        self._set_phase(SessionPhase.INITIALIZING)

    # ---- 用户操作 ----

    def capture(self) -> CapturedImage:
        """
        拍摄。仅在最近一次判断为对齐时允许。

        Raises:
            InvalidTransitionError: 当前阶段不允许拍摄
            CaptureError: 拍摄失败，会话保持原阶段，可重试
        """
        self._ensure_open()
        if not self.can_capture:
            raise InvalidTransitionError(f"当前阶段不允许拍摄: {self.session.phase.value}")

        previous = self.session.phase
        self._set_phase(SessionPhase.CAPTURING)
        try:
            image = self.capture_service.capture(self.video_source)
        except CaptureError as e:
            logger.warning("拍摄失败，可重试: %s", e)
            self._set_phase(previous)
            raise
        except Exception as e:
            logger.warning("拍摄失败，可重试: %s", e, exc_info=True)
            self._set_phase(previous)
            raise CaptureError(f"拍摄失败: {e}") from e

        self.scheduler.stop()
        self.session.captured_image = image
        self._set_phase(SessionPhase.CAPTURED)
        return image

    def retake(self):
        """丢弃已拍摄的照片，回到 READY 并重新启动调度。"""
        self._ensure_open()
        if self.session.phase != SessionPhase.CAPTURED:
            raise InvalidTransitionError(f"当前阶段不允许重拍: {self.session.phase.value}")
        self.session.captured_image = None
        self.session.last_verdict = None
        self._set_phase(SessionPhase.READY)
        self.scheduler.start()

    def accept(self) -> CapturedImage:
        """确认使用照片，会话结束。返回最终图像交给调用方。"""
        self._ensure_open()
        if self.session.phase != SessionPhase.CAPTURED:
            raise InvalidTransitionError(f"当前阶段不允许确认: {self.session.phase.value}")
        image = self.session.captured_image
        self.scheduler.stop()
        self.session.captured_image = None
        self._set_phase(SessionPhase.ACCEPTED)
        return image

    # ---- 资源 ----

    def close(self):
        """停止调度并释放检测器。可重复调用。"""
        if self._closed:
            return
        self._closed = True
        self.scheduler.stop()
        self._release_detector()
        logger.info("会话已关闭")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _release_detector(self):
        detector, self._detector = self._detector, None
        self.scheduler.landmark_source = None
        if detector is not None:
            detector.close()

    def _ensure_open(self):
        if self._closed:
            raise InvalidTransitionError("会话已关闭")

    def _set_phase(self, phase: SessionPhase):
        if phase != self.session.phase:
            logger.info("会话阶段: %s -> %s", self.session.phase.value, phase.value)
        self.session.phase = phase
        self._notify()

    def _notify(self):
        for listener in self._listeners:
            listener(self.session)
