"""Flask Web 前端 - 人脸对齐拍摄系统"""

import logging
import queue
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError

import cv2
from flask import Flask, Response, jsonify, render_template

from camera.camera_source import CameraSource
from capture.capture_service import CaptureService
from display.renderer import GuidelineRenderer
from main import build_detector_factory
from models.config import load_config
from models.data_models import AlignmentConfig, CaptureConfig, SessionPhase
from models.errors import DetectorLoadError, FaceCaptureError
from session.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)

app = Flask(__name__, template_folder="web/templates")


class WebCaptureSystem:
    """
    Web 版拍摄系统，支持 MJPEG 预览推送和 JSON 操作接口。

    会话状态机只在后台处理线程中运行；HTTP 请求通过命令队列提交操作，
    由处理线程在两帧之间执行，保证会话只有一个写入者。
    """

    FRAME_INTERVAL = 1 / 30
    COMMAND_TIMEOUT = 10.0

    def __init__(self, config_path=None):
        self.config = load_config(config_path)
        self._camera = None
        self._machine = None
        self._renderer = None
        self._thread = None
        self._running = False
        self._commands = queue.Queue()
        self._lock = threading.Lock()
        self._latest_frame = None
        self._latest_image = None
        self._latest_data = {"phase": SessionPhase.INITIALIZING.value, "running": False}

    def start(self):
        """打开摄像头、加载模型并启动处理线程。返回 (是否成功, 消息)。"""
        if self._running:
            return True, "系统已在运行"

        alignment_config = AlignmentConfig.from_dict(self.config)
        self._camera = CameraSource(
            index=self.config["camera_index"],
            width=self.config["preview_width"],
            height=self.config["preview_height"],
        )
        self._machine = SessionStateMachine(
            self._camera,
            build_detector_factory(self.config),
            config=alignment_config,
            capture_service=CaptureService(CaptureConfig.from_dict(self.config)),
        )
        self._renderer = GuidelineRenderer(alignment_config)

        try:
            self._machine.load_detector()
        except DetectorLoadError as e:
            self._machine.close()
            return False, str(e)

        if not self._camera.open():
            self._machine.close()
            return False, "无法打开摄像头"
        self._machine.on_source_ready()

        self._commands = queue.Queue()
        self._running = True
        self._thread = threading.Thread(target=self._process_loop, daemon=True)
        self._thread.start()
        return True, "摄像头启动成功"

    def stop(self):
        """停止处理线程并释放资源。"""
        if not self._running:
            return
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout=2.0)
        self._fail_pending(FaceCaptureError("系统未启动"))
        self._machine.close()
        self._camera.release()
        with self._lock:
            self._latest_frame = None
            self._latest_data = {"phase": SessionPhase.INITIALIZING.value, "running": False}
        logger.info("系统已停止")

    def submit(self, action):
        """
        提交一个会话操作（capture / retake / accept），等待处理线程执行完毕。

        Returns:
            操作的返回值

        Raises:
            FaceCaptureError: 操作被拒绝或执行失败
        """
        if not self._running:
            raise FaceCaptureError("系统未启动")
        future = Future()
        self._commands.put((action, future))
        return future.result(timeout=self.COMMAND_TIMEOUT)

    def _run_commands(self):
        while True:
            try:
                action, future = self._commands.get_nowait()
            except queue.Empty:
                return
            try:
                future.set_result(getattr(self._machine, action)())
            except FaceCaptureError as e:
                future.set_exception(e)
            except Exception as e:
                logger.exception("操作执行失败: %s", action)
                future.set_exception(FaceCaptureError(f"操作执行失败: {e}"))

    def _fail_pending(self, error):
        """让队列中尚未执行的操作立即失败。"""
        while True:
            try:
                _, future = self._commands.get_nowait()
            except queue.Empty:
                return
            future.set_exception(error)

    def _process_loop(self):
        """后台处理循环，每次迭代视为一次显示刷新。"""
        while self._running:
            started = time.monotonic()
            self._run_commands()

            machine = self._machine
            session = machine.session
            if session.phase in (SessionPhase.READY, SessionPhase.ALIGNED, SessionPhase.UNALIGNED):
                machine.tick()
                frame = machine.scheduler.last_frame
                if frame is not None:
                    rendered = self._renderer.render(
                        frame, session,
                        detector_loaded=machine.detector_loaded,
                        source_ready=machine.source_ready,
                        mirror=self.config["mirror"],
                    )
                    ok, jpeg = cv2.imencode(".jpg", rendered, [cv2.IMWRITE_JPEG_QUALITY, 80])
                    if ok:
                        with self._lock:
                            self._latest_frame = jpeg.tobytes()

            with self._lock:
                self._latest_image = session.captured_image
                self._latest_data = self._snapshot(machine)

            elapsed = time.monotonic() - started
            time.sleep(max(0.0, self.FRAME_INTERVAL - elapsed))

    @staticmethod
    def _snapshot(machine):
        session = machine.session
        verdict = session.last_verdict
        return {
            "running": True,
            "phase": session.phase.value,
            "can_capture": machine.can_capture,
            "reason": verdict.reason.value if verdict else None,
            "distance": round(verdict.distance, 1) if verdict and verdict.distance is not None else None,
            "scale": round(verdict.scale, 3) if verdict and verdict.scale is not None else None,
            "face_count": verdict.face_count if verdict else 0,
            "has_image": session.captured_image is not None,
            "error": session.error,
        }

    def get_frame(self):
        with self._lock:
            return self._latest_frame

    def get_image(self):
        with self._lock:
            return self._latest_image

    def get_data(self):
        with self._lock:
            return dict(self._latest_data)


# 全局拍摄系统实例
system = WebCaptureSystem()


# ---- Flask 路由 ----

@app.route("/")
def index():
    return render_template("index.html")


@app.route("/api/start", methods=["POST"])
def api_start():
    ok, message = system.start()
    return jsonify({"success": ok, "message": message})


@app.route("/api/stop", methods=["POST"])
def api_stop():
    system.stop()
    return jsonify({"success": True, "message": "已停止"})


@app.route("/api/state")
def api_state():
    return jsonify(system.get_data())


def _run_action(action, message):
    try:
        result = system.submit(action)
    except FaceCaptureError as e:
        return jsonify({"success": False, "message": str(e)}), 409
    except FutureTimeoutError:
        return jsonify({"success": False, "message": "操作超时，请重试"}), 503
    body = {"success": True, "message": message}
    if result is not None:
        body["image"] = result.to_data_uri()
    return jsonify(body)


@app.route("/api/capture", methods=["POST"])
def api_capture():
    return _run_action("capture", "拍摄完成")


@app.route("/api/retake", methods=["POST"])
def api_retake():
    return _run_action("retake", "请重新对准引导框")


@app.route("/api/accept", methods=["POST"])
def api_accept():
    return _run_action("accept", "照片已确认")


@app.route("/api/captured")
def api_captured():
    image = system.get_image()
    if image is None:
        return jsonify({"success": False, "message": "没有已拍摄的照片"}), 404
    return Response(image.data, mimetype=image.mime_type)


@app.route("/video_feed")
def video_feed():
    def generate():
        while True:
            frame = system.get_frame()
            if frame is not None:
                yield (b"--frame\r\nContent-Type: image/jpeg\r\n\r\n" + frame + b"\r\n")
            time.sleep(0.03)
    return Response(generate(), mimetype="multipart/x-mixed-replace; boundary=frame")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.run(host="0.0.0.0", port=5000, debug=False, threaded=True)
