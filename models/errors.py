"""人脸拍摄流程中的异常类型"""


class FaceCaptureError(Exception):
    """所有拍摄流程异常的基类"""


class DetectorLoadError(FaceCaptureError):
    """人脸关键点检测器加载失败"""


class CaptureError(FaceCaptureError):
    """单次拍摄失败（解码、裁剪或编码），可重试"""


class InvalidTransitionError(FaceCaptureError):
    """当前会话阶段不允许该操作"""
