"""人脸对齐拍摄系统入口文件（OpenCV 桌面窗口）"""

import argparse
import logging
import sys

import cv2

from camera.camera_source import CameraSource
from capture.capture_service import CaptureService
from detectors.landmark_source import FaceLandmarkSource
from display.renderer import GuidelineRenderer
from models.config import load_config
from models.data_models import AlignmentConfig, CaptureConfig, SessionPhase
from models.errors import CaptureError, DetectorLoadError, InvalidTransitionError
from session.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)

WINDOW_NAME = "Face Capture"

_KEY_SPACE = 32
_KEY_ENTER = 13
_KEY_ESC = 27


def build_detector_factory(config):
    """根据配置生成检测器工厂；启用多人脸拒绝时至少检测 2 张人脸。"""
    max_faces = 2 if config["reject_multiple_faces"] else 1

    def factory():
        return FaceLandmarkSource(
            config["model_path"],
            max_num_faces=max_faces,
            delegate=config["delegate"],
        )

    return factory


class FaceCaptureApp:
    """人脸对齐拍摄主程序，管理摄像头、会话状态机与显示主循环。"""

    def __init__(self, config_path=None, camera_index=None, output_path=None):
        self.config = load_config(config_path)
        if camera_index is not None:
            self.config["camera_index"] = camera_index
        self.output_path = output_path
        self.result = None

        self.alignment_config = AlignmentConfig.from_dict(self.config)
        self.capture_config = CaptureConfig.from_dict(self.config)
        self.camera = CameraSource(
            index=self.config["camera_index"],
            width=self.config["preview_width"],
            height=self.config["preview_height"],
        )
        self.machine = SessionStateMachine(
            self.camera,
            build_detector_factory(self.config),
            config=self.alignment_config,
            capture_service=CaptureService(self.capture_config),
        )
        self.renderer = GuidelineRenderer(self.alignment_config)

    def run(self):
        """打开摄像头、加载模型并启动显示主循环。"""
        try:
            self.machine.load_detector()
        except DetectorLoadError as e:
            logger.error("%s", e)
            self.machine.close()
            sys.exit(1)

        if not self.camera.open():
            self.machine.close()
            sys.exit(1)
        self.machine.on_source_ready()

        try:
            self._main_loop()
        finally:
            self.stop()

    def _main_loop(self):
        """每次 waitKey 视为一次显示刷新。"""
        while True:
            phase = self.machine.phase
            if phase == SessionPhase.ACCEPTED:
                break

            if phase == SessionPhase.CAPTURED:
                image = self.machine.session.captured_image
                shown = self.renderer.render_captured(image.data, self.machine.session)
                if shown is not None:
                    cv2.imshow(WINDOW_NAME, shown)
            elif phase == SessionPhase.INITIALIZING:
                logger.error("检测器不可用: %s", self.machine.session.error)
                break
            else:
                self.machine.tick()
                frame = self.machine.scheduler.last_frame
                if frame is not None:
                    rendered = self.renderer.render(
                        frame,
                        self.machine.session,
                        detector_loaded=self.machine.detector_loaded,
                        source_ready=self.machine.source_ready,
                        mirror=self.config["mirror"],
                    )
                    cv2.imshow(WINDOW_NAME, rendered)

            key = cv2.waitKey(1) & 0xFF
            if key in (_KEY_ESC, ord("q")):
                break
            self._handle_key(key)

    def _handle_key(self, key):
        try:
            if key == _KEY_SPACE and self.machine.can_capture:
                self.machine.capture()
            elif key == ord("r") and self.machine.phase == SessionPhase.CAPTURED:
                self.machine.retake()
            elif key in (_KEY_ENTER, ord("a")) and self.machine.phase == SessionPhase.CAPTURED:
                self.result = self.machine.accept()
                self._save_result()
        except CaptureError as e:
            logger.warning("拍摄失败，请重试: %s", e)
        except InvalidTransitionError as e:
            logger.debug("忽略操作: %s", e)

    def _save_result(self):
        """把确认的照片交给调用方：指定了输出路径时写入文件。"""
        if self.result is None or self.output_path is None:
            return
        with open(self.output_path, "wb") as f:
            f.write(self.result.data)
        logger.info("照片已保存: %s", self.output_path)

    def stop(self):
        """释放检测器、摄像头资源并关闭所有窗口。"""
        self.machine.close()
        self.camera.release()
        cv2.destroyAllWindows()


def main():
    parser = argparse.ArgumentParser(description="人脸对齐拍摄系统")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON 配置文件路径",
    )
    parser.add_argument(
        "--camera",
        type=int,
        default=None,
        help="摄像头编号",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="确认后的照片保存路径",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日志级别",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FaceCaptureApp(
        config_path=args.config,
        camera_index=args.camera,
        output_path=args.output,
    )
    app.run()


if __name__ == "__main__":
    main()
