"""Small coloured terminal logger with serialized output."""

from __future__ import annotations

import os
import sys
import threading
from datetime import datetime
from typing import Any, TextIO

COLOR_RESET = "\x1b[0m"
COLOR_DIM = "\x1b[2m"
COLOR_RED = "\x1b[31m"
COLOR_GREEN = "\x1b[32m"
COLOR_YELLOW = "\x1b[33m"
COLOR_BLUE = "\x1b[34m"
COLOR_MAGENTA = "\x1b[35m"
COLOR_CYAN = "\x1b[36m"
COLOR_GRAY = "\x1b[90m"


def color_enabled() -> bool:
    """Return False when NO_COLOR or LOG_NO_COLOR is set to a non-empty value."""
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("LOG_NO_COLOR"):
        return False
    return True


class Logger:
    """Tagged logger for one component; lines from many threads never interleave.

    ``out`` may be replaced at any time; when it is None, lines go to the
    current ``sys.stdout``.
    """

    def __init__(self, component: str, color: str, out: TextIO | None = None) -> None:
        self.component = component
        self.color = color
        self.out = out
        self._lock = threading.Lock()

    def info(self, message: str, *args: Any) -> None:
        """Write an informational line."""
        self._log("INFO", COLOR_GREEN, message, args)

    def warn(self, message: str, *args: Any) -> None:
        """Write a warning line."""
        self._log("WARN", COLOR_YELLOW, message, args)

    def error(self, message: str, *args: Any) -> None:
        """Write an error line."""
        self._log("ERROR", COLOR_RED, message, args)

    def debug(self, message: str, *args: Any) -> None:
        """Write a debug line (always enabled)."""
        self._log("DEBUG", COLOR_GRAY, message, args)

    def _log(self, level: str, level_color: str, message: str, args: tuple[Any, ...]) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        text = message % args if args else message

        if color_enabled():
            line = (
                f"{COLOR_DIM}{timestamp}{COLOR_RESET} "
                f"{self.color}[{self.component}]{COLOR_RESET} "
                f"{level_color}{level}{COLOR_RESET} | {text}\n"
            )
        else:
            line = f"{timestamp} [{self.component}] {level} | {text}\n"

        with self._lock:
            out = self.out if self.out is not None else sys.stdout
            out.write(line)
            flush = getattr(out, "flush", None)
            if flush is not None:
                flush()