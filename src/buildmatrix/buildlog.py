# buildlog.py
from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger("buildmatrix.build")


class LogLevel(str, Enum):
    INFO = "Info"
    DEBUG = "Debug"
    WARNING = "Warning"
    ERROR = "Error"


_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


class BuildLog:
    """
    Ordered, timestamped log lines for one build.

    Every line is kept (it ends up in the aggregate log file and the
    outcome), mirrored to the `buildmatrix.build` logger, and handed to
    the optional live sink.
    """

    def __init__(self, sink: Optional[Callable[[LogLevel, str], None]] = None):
        self._sink = sink
        self._lines: List[str] = []

    def log(self, message: str, level: LogLevel = LogLevel.INFO) -> str:
        line = f"[{timestamp()}] [{level.value}] {message}"
        self._lines.append(line)
        logger.log(_PY_LEVELS[level], message)
        if self._sink is not None:
            self._sink(level, line)
        return line

    def info(self, message: str) -> str:
        return self.log(message, LogLevel.INFO)

    def debug(self, message: str) -> str:
        return self.log(message, LogLevel.DEBUG)

    def warning(self, message: str) -> str:
        return self.log(message, LogLevel.WARNING)

    def error(self, message: str) -> str:
        return self.log(message, LogLevel.ERROR)

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)
