import logging
import sys

from loguru import logger

LOG_FORMAT = "{time} | {level} | {module}:{function}:{line} | {message} | {extra}"

# Libraries that log through the standard library (aiohttp access log, aiogram dispatcher).
STDLIB_LOGGERS = ("aiohttp.access", "aiohttp.server", "aiohttp.web", "aiogram")


class InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(exception=record.exc_info).bind(source=record.name).log(level, record.getMessage())


def setup_logging(level: str, log_path: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=LOG_FORMAT,
    )
    logger.add(
        log_path,
        level="DEBUG",
        format=LOG_FORMAT,
        rotation="100 KB",
        compression="zip",
    )

    handler = InterceptHandler()
    for name in STDLIB_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [handler]
        std_logger.propagate = False
