"""Logging setup for queue_worker."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config_manager import ConfigManager

DEFAULT_FORMAT = "%(asctime)s [%(levelname)-7s] [%(name)-20s] %(message)s"


def _level(name, fallback=logging.INFO) -> int:
    return getattr(logging, str(name).upper(), fallback) if name else fallback


def setup_logging(config: ConfigManager) -> logging.Logger:
    """
    Configure the root logger from the ``logging`` section:
    - rotating log file when ``logging.file`` is set;
    - stdout when ``logging.console_logging`` is true.
    """
    log_level_str = config.get('logging.level', 'INFO')
    numeric_log_level = _level(log_level_str)
    log_format_str = config.get('logging.format') or DEFAULT_FORMAT
    log_file = config.get('logging.file')
    log_formatter = logging.Formatter(log_format_str, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_log_level)

    # Avoid duplicate handlers when called more than once.
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    if log_file:
        log_file_path = Path(log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file_path, maxBytes=5*1024*1024, backupCount=3, encoding='utf-8'
        )
        file_handler.setFormatter(log_formatter)
        file_handler.setLevel(numeric_log_level)
        root_logger.addHandler(file_handler)

    if config.get('logging.console_logging', True):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(log_formatter)
        console_handler.setLevel(_level(config.get('logging.console_level'), numeric_log_level))
        root_logger.addHandler(console_handler)

    # pika logs every frame at DEBUG
    logging.getLogger("pika").setLevel(logging.WARNING)

    logger = logging.getLogger('queue_worker')
    logger.debug(f"Logging configured. Level: {str(log_level_str).upper()}. File: {log_file or '-'}")
    return logger
