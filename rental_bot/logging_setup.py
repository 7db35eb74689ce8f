"""
Logging setup (Unified Format).

Console output carries emoji level prefixes, the optional log file stays plain.
"""

import logging
import os
from typing import Optional


class BotFormatter(logging.Formatter):
    """Unified logging formatter with emoji prefixes for console and structured logs for files"""

    LEVEL_EMOJI = {
        logging.DEBUG: "🔍",
        logging.INFO: "ℹ️",
        logging.WARNING: "⚠️",
        logging.ERROR: "❌",
        logging.CRITICAL: "🔴"
    }

    def __init__(self, fmt=None, datefmt=None, use_emoji=True):
        super().__init__(fmt, datefmt)
        self.use_emoji = use_emoji

    def format(self, record):
        message = super().format(record)
        if hasattr(record, 'identity'):
            message += f" [identity={record.identity}]"
        if self.use_emoji:
            emoji = self.LEVEL_EMOJI.get(record.levelno, "•")
            message = f"{emoji} {message}"
        return message


def setup_logger(name: Optional[str] = None, level: str = "INFO",
                 log_to_file: bool = False, log_file_path: str = "./logs/bot.log") -> logging.Logger:
    """Configure unified logger with console and optional file handlers"""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(BotFormatter(
        fmt='%(asctime)s [%(levelname)-8s] %(name)s: %(message)s',
        datefmt='%H:%M:%S',
        use_emoji=True
    ))
    logger.addHandler(console_handler)

    if log_to_file:
        directory = os.path.dirname(log_file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(BotFormatter(
            fmt='%(asctime)s [%(levelname)-8s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            use_emoji=False
        ))
        logger.addHandler(file_handler)

    return logger
