"""配置加载：默认值 + JSON 配置文件覆盖"""

import json
import logging

logger = logging.getLogger(__name__)

# 默认配置
DEFAULTS = {
    # 引导区域
    "radius_divisor": 2.8,
    "diameter_ratio": None,
    "correct_aspect": True,
    # 对齐判断
    "min_face_scale": 0.6,
    "max_face_scale": 1.0,
    "center_offset_ratio": 0.1,
    "center_offset_px": None,
    "scale_mode": "combined",
    "reject_multiple_faces": True,
    # 拍摄输出
    "target_width": 1920,
    "target_height": 1080,
    "output_format": "jpeg",
    "quality": 100,
    # 摄像头与模型
    "camera_index": 0,
    "preview_width": 1920,
    "preview_height": 1080,
    "model_path": "models/face_landmarker.task",
    "delegate": "cpu",
    "mirror": True,
}


def load_config(config_path=None):
    """从 JSON 配置文件加载参数，缺失字段或 null 值使用默认值，未知字段忽略。"""
    config = dict(DEFAULTS)

    if config_path is None:
        return config

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning("配置文件不存在 %s，使用默认配置", config_path)
        return config
    except json.JSONDecodeError:
        logger.warning("配置文件格式错误 %s，使用默认配置", config_path)
        return config

    if not isinstance(data, dict):
        logger.warning("配置文件内容必须为 JSON 对象 %s，使用默认配置", config_path)
        return config

    for key in DEFAULTS:
        if key in data and data[key] is not None:
            config[key] = data[key]

    return config
