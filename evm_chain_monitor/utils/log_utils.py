import logging
from logging.handlers import RotatingFileHandler
import os
import sys
from typing import Optional

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
PROJECT_NAME = os.path.basename(PROJECT_ROOT)
LOG_DIR = os.environ.get("EVM_MONITOR_LOG_DIR", os.path.join(os.getcwd(), "logs"))
LOG_PATH = os.path.join(LOG_DIR, f"{PROJECT_NAME}.log")

FMT = logging.Formatter("%(asctime)s %(levelname)s %(filename)s:%(lineno)s %(message)s")

# 运行时由 configure_logging 调整
_log_level = logging.INFO
_log_file: Optional[str] = LOG_PATH
_loggers = {}


def _build_file_handler(log_file: str) -> RotatingFileHandler:
    os.makedirs(os.path.dirname(log_file), exist_ok=True)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(FMT)
    return file_handler


def get_logger(logger_name: str, log_file: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(logger_name)

    # 检查logger是否已经有处理器，如果有，直接返回
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(FMT)

    target_file = log_file or _log_file
    if target_file:
        try:
            logger.addHandler(_build_file_handler(target_file))
        except OSError as e:
            # 日志目录不可写时只输出到控制台
            print(f"Warning: cannot open log file {target_file}: {e}")

    logger.addHandler(console_handler)
    logger.setLevel(_log_level)

    # 防止日志传播到根日志器
    logger.propagate = False
    _loggers[logger_name] = logger

    return logger


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    根据配置调整日志级别和日志文件

    已创建的 logger 会一并更新级别和文件处理器。

    Args:
        level: 日志级别名称，如 INFO、DEBUG
        log_file: 日志文件路径，传入空字符串表示只输出到控制台，None 表示保持不变
    """
    global _log_level, _log_file

    _log_level = getattr(logging, str(level).upper(), logging.INFO)
    for logger in _loggers.values():
        logger.setLevel(_log_level)

    if log_file is None:
        return
    _log_file = log_file or None

    for logger in _loggers.values():
        for handler in list(logger.handlers):
            if isinstance(handler, RotatingFileHandler):
                logger.removeHandler(handler)
                handler.close()
        if _log_file:
            try:
                logger.addHandler(_build_file_handler(_log_file))
            except OSError as e:
                print(f"Warning: cannot open log file {_log_file}: {e}")
