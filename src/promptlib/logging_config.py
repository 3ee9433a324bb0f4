"""Console logging for the promptlib CLI and server."""

import logging
import os
import re
import sys
from typing import Optional, TextIO

RESET = "\033[0m"
BOLD = "\033[1m"

LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}

# One color per subsystem tag used in log messages
PREFIX_COLORS = {
    "SERVER": "\033[94m",
    "AUTH": "\033[95m",
    "DB": "\033[96m",
    "API": "\033[97m",
    "CLIENT": "\033[92m",
    "OCR": "\033[93m",
}

_PREFIX_RE = re.compile(r"\[(" + "|".join(PREFIX_COLORS) + r")\]")

QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "PIL", "multipart")


def _wants_color(stream: TextIO) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class PrefixFormatter(logging.Formatter):
    """Pads the level name and highlights [SERVER]/[AUTH]/... tags.

    With use_color off the output is plain text, so piped logs stay readable.
    """

    def __init__(self, use_color: bool = True):
        super().__init__(fmt="%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S")
        self.use_color = use_color

    def formatMessage(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<7}"
        message = record.message
        if self.use_color:
            level = f"{LEVEL_COLORS.get(record.levelno, '')}{level}{RESET}"
            message = _PREFIX_RE.sub(
                lambda m: f"{PREFIX_COLORS[m.group(1)]}{BOLD}{m.group(0)}{RESET}",
                message,
            )
        return f"{record.asctime} {level} {message}"


def setup_colored_logging(verbose: bool = False, stream: Optional[TextIO] = None) -> None:
    """Send log records to stderr (stdout stays clean for `list --json` and `export -`).

    Args:
        verbose: DEBUG instead of INFO.
        stream: Where to write; defaults to sys.stderr.
    """
    stream = stream or sys.stderr
    handler = logging.StreamHandler(stream)
    handler.setFormatter(PrefixFormatter(use_color=_wants_color(stream)))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
