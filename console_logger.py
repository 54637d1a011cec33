import logging
import sys

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class ConsoleHandler(logging.StreamHandler):
    """Stream handler installed once on the root logger."""


def setup_console_logging(level=logging.INFO, stream=None):
    logger = logging.getLogger()
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
    for handler in logger.handlers[:]:
        if isinstance(handler, ConsoleHandler):
            logger.removeHandler(handler)
    handler = ConsoleHandler(stream or sys.stderr)
    formatter = logging.Formatter(LOG_FORMAT)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return handler
