"""Logging setup.

Console output goes through rich; every run also writes a timestamped log file
whose tail is captured into error reports.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from cloudguard.utils.timeutil import utc_now

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_FILE_HANDLER_NAME = "cloudguard-file"
_CONSOLE_HANDLER_NAME = "cloudguard-console"


def setup_logging(
    level: str = "INFO",
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> Optional[Path]:
    """Configure the root logger.

    Calling this again replaces the handlers installed by a previous call.

    Args:
        level: Console log level name
        verbose: Show module paths and tracebacks with locals on the console
        log_dir: Directory for the run's log file (no file logging if None)

    Returns:
        Path of the log file, or None if file logging is disabled
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() in (_FILE_HANDLER_NAME, _CONSOLE_HANDLER_NAME):
            root.removeHandler(handler)
            handler.close()

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=True,
        tracebacks_show_locals=verbose,
    )
    console_handler.set_name(_CONSOLE_HANDLER_NAME)
    console_handler.setLevel(level.upper())
    root.addHandler(console_handler)

    log_file = None
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True, mode=0o750)
        log_file = log_dir / f"cloudguard_{utc_now().strftime('%Y%m%d_%H%M%S')}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.set_name(_FILE_HANDLER_NAME)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        root.addHandler(file_handler)

    root.setLevel(logging.DEBUG)

    # Third-party clients are noisy at DEBUG
    for name in ("botocore", "boto3", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_file


def current_log_file() -> Optional[Path]:
    """Path of the log file installed by setup_logging, if any."""
    for handler in logging.getLogger().handlers:
        if handler.get_name() == _FILE_HANDLER_NAME and isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)
    return None


def tail_log(lines: int, log_file: Optional[Path] = None) -> list[str]:
    """Return the last lines of the current log file.

    Args:
        lines: Number of lines to return
        log_file: Log file to read (default: the one installed by setup_logging)

    Returns:
        Log lines without trailing newlines (empty if there is no log file)
    """
    log_file = log_file or current_log_file()
    if lines <= 0 or log_file is None or not log_file.exists():
        return []

    for handler in logging.getLogger().handlers:
        if handler.get_name() == _FILE_HANDLER_NAME:
            handler.flush()

    with open(log_file, "r", encoding="utf-8", errors="replace") as f:
        content = f.read().splitlines()
    return content[-lines:]
