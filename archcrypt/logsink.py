"""Console + file log sink.

Every record goes to the persistent log file verbatim and to stdout with a
colored level marker. The colors are cosmetic; the file never contains them.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Optional

from .paths import fallback_log_file, log_file

_MARKERS = {
    logging.DEBUG: "\033[2m--\033[0m",
    logging.INFO: "\033[32m==>\033[0m",
    logging.WARNING: "\033[33mWARNING:\033[0m",
    logging.ERROR: "\033[31mERROR:\033[0m",
    logging.CRITICAL: "\033[31mERROR:\033[0m",
}


class ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        marker = _MARKERS.get(record.levelno, "==>")
        return f"{marker} {record.getMessage()}"


def _file_handler(path: str) -> logging.Handler:
    Path(os.path.dirname(path) or ".").mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    )
    return handler


def configure_logging(
    log_path: Optional[str] = None,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Attach the file and console handlers to the root logger.

    Calling it again is a no-op that returns the path chosen the first time.
    When the requested location is not writable (read-only live media) the
    log goes to ``/tmp/arch-install.log`` instead.
    """

    root = logging.getLogger()
    if getattr(root, "_archcrypt_configured", False):
        return getattr(root, "_archcrypt_log_path")

    requested = log_path or log_file()
    try:
        file_handler = _file_handler(requested)
        chosen = requested
    except OSError:
        chosen = fallback_log_file()
        file_handler = _file_handler(chosen)

    handlers: list[logging.Handler] = [file_handler]
    if also_console:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(ConsoleFormatter())
        handlers.append(console)

    root.setLevel(level)
    for h in handlers:
        root.addHandler(h)

    setattr(root, "_archcrypt_configured", True)
    setattr(root, "_archcrypt_handlers", handlers)
    setattr(root, "_archcrypt_log_path", chosen)
    logging.getLogger(__name__).debug("log sink ready (requested=%s, actual=%s)", requested, chosen)
    return chosen


def reset_logging() -> None:
    root = logging.getLogger()
    for handler in getattr(root, "_archcrypt_handlers", []):
        root.removeHandler(handler)
        handler.close()
    for attr in ("_archcrypt_configured", "_archcrypt_log_path", "_archcrypt_handlers"):
        if hasattr(root, attr):
            delattr(root, attr)
