"""逐帧调度模块：每次显示刷新执行一次 检测 -> 对齐判断 -> 发布结果"""

import logging
import time
from typing import Callable, Optional

from evaluators.alignment_evaluator import AlignmentEvaluator
from geometry.guideline import compute_guideline
from models.data_models import AlignmentVerdict

logger = logging.getLogger(__name__)


class CancellationToken:
    """调度循环的取消句柄，每次 start() 生成一个新的句柄"""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class FrameScheduler:
    """
    单线程协作式调度器。

    宿主程序在每次显示刷新时调用 tick()；调度器本身不创建线程，也不阻塞等待。
    stop() 返回后不会再发布任何对齐结果。
    """

    def __init__(
        self,
        video_source,
        evaluator: AlignmentEvaluator,
        on_verdict: Callable[[AlignmentVerdict], None],
        landmark_source=None,
        can_run: Optional[Callable[[], bool]] = None,
        on_failure: Optional[Callable[[Exception], None]] = None,
        clock: Callable[[], int] = _monotonic_ms,
        max_backoff_ticks: int = 32,
        failure_limit: int = 10,
    ):
        """
        Args:
            video_source: 提供 read() -> (ok, frame) 的视频源
            evaluator: 对齐判断器
            on_verdict: 每帧结果的发布回调
            landmark_source: 提供 detect(frame, timestamp_ms) 的检测器，可在 start() 前设置
            can_run: 前置条件（检测器已加载、视频源就绪、尚未拍摄），返回 False 时跳过
            on_failure: 连续失败达到 failure_limit 时调用，调度器随即停止
            clock: 毫秒时钟
            max_backoff_ticks: 连续失败后最多跳过的帧数
            failure_limit: 停止前允许的连续失败次数
        """
        self.video_source = video_source
        self.landmark_source = landmark_source
        self.evaluator = evaluator
        self._on_verdict = on_verdict
        self._can_run = can_run or (lambda: True)
        self._on_failure = on_failure
        self._clock = clock
        self.max_backoff_ticks = max_backoff_ticks
        self.failure_limit = failure_limit

        self._token: Optional[CancellationToken] = None
        self._last_timestamp_ms = 0
        self._consecutive_failures = 0
        self._skip_ticks = 0
        self.published_count = 0
        # 最近一次读取到的帧，供宿主渲染
        self.last_frame = None

    @property
    def is_running(self) -> bool:
        return self._token is not None and not self._token.cancelled

    def start(self) -> CancellationToken:
        """启动调度；已在运行时先取消上一轮，保证不会有两个循环同时存在。"""
        if self._token is not None:
            self._token.cancel()
        self._token = CancellationToken()
        self._consecutive_failures = 0
        self._skip_ticks = 0
        logger.debug("调度器已启动")
        return self._token

    def stop(self):
        """同步停止：返回后 tick() 不再产生任何副作用。"""
        if self._token is not None and not self._token.cancelled:
            self._token.cancel()
            logger.debug("调度器已停止")

    cancel = stop

    def tick(self) -> Optional[AlignmentVerdict]:
        """
        执行一帧。

        Returns:
            本帧发布的 AlignmentVerdict；跳过本帧（未运行、前置条件不满足、
            帧不可用、检测器未就绪、退避中或出错）时返回 None
        """
        token = self._token
        if token is None or token.cancelled:
            return None
        if self.landmark_source is None or not self._can_run():
            return None

        if self._skip_ticks > 0:
            self._skip_ticks -= 1
            return None

        ok, frame = self.video_source.read()
        if not ok or frame is None or frame.size == 0:
            # 启动阶段帧尚不可用属于正常情况
            return None
        self.last_frame = frame

        height, width = frame.shape[:2]
        timestamp_ms = max(self._clock(), self._last_timestamp_ms)
        self._last_timestamp_ms = timestamp_ms

        try:
            detections = self.landmark_source.detect(frame, timestamp_ms)
            if detections is None or token.cancelled:
                return None
            region = compute_guideline(width, height, self.evaluator.config)
            verdict = self.evaluator.evaluate(detections, region)
        except Exception as e:
            self._record_failure(e)
            return None

        self._consecutive_failures = 0
        if token.cancelled:
            return None

        self.published_count += 1
        self._on_verdict(verdict)
        return verdict

    def _record_failure(self, error: Exception):
        """记录一次失败，按指数退避跳过后续帧；连续失败过多时停止调度。"""
        self._consecutive_failures += 1
        failures = self._consecutive_failures
        logger.warning("第 %d 次连续检测失败，跳过本帧: %s", failures, error, exc_info=True)

        if failures >= self.failure_limit:
            logger.error("连续检测失败 %d 次，停止调度", failures)
            self.stop()
            if self._on_failure is not None:
                self._on_failure(error)
            return

        self._skip_ticks = min(2 ** (failures - 1), self.max_backoff_ticks)
