"""日志初始化。"""

import logging

from iam_api.core.config import Settings

LOGGER_NAME = "iam_api"


def setup_logging(settings: Settings) -> None:
    """按配置初始化根日志格式与服务日志级别。"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger(LOGGER_NAME).setLevel(settings.log_level.upper())


def get_logger(name: str) -> logging.Logger:
    """返回服务命名空间下的子日志器。"""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
