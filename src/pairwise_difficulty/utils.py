import os
import sys

from loguru import logger

LOG_LEVEL_VARIABLE = "PAIRWISE_DIFFICULTY_LOG_LEVEL"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS Z UTC}</>"
    " <red>|</> <lvl>{level}</> <red>|</> <cyan>{name}:{function}:{line}</>"
    " <red>|</> <lvl>{message}</>"
)
WARNING_FORMAT = "<red>{time:YYYY-MM-DD HH:mm:ss.SSS Z UTC} | {level} | {name}:{function}:{line} | {message}</>"  # noqa
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS Z UTC} | {level} | {name}:{function}:{line} | {message}"


def enable_logging(level: str | None = None) -> list[int]:
    """
    Set up the pairwise_difficulty logging with sane defaults.

    The console level is taken from ``level``, then from the
    ``PAIRWISE_DIFFICULTY_LOG_LEVEL`` environment variable, then INFO.
    Warnings and errors always go to a second, highlighted sink.
    """
    logger.enable("pairwise_difficulty")
    level = (level or os.environ.get(LOG_LEVEL_VARIABLE) or "INFO").upper()

    config = dict(
        handlers=[
            dict(sink=sys.stderr, format=CONSOLE_FORMAT, level=level),
            dict(sink=sys.stderr, format=WARNING_FORMAT, level="WARNING"),
        ]
    )
    return logger.configure(**config)


def add_log_file(path: str) -> int:
    """Write every record, including per-iteration fit traces, to ``path``."""
    return logger.add(path, format=FILE_FORMAT, level="DEBUG", mode="w")
