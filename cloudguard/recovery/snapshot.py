"""Process and environment snapshot captured into error reports."""

from __future__ import annotations

import logging
import os
import platform
import re
import socket
import sys
from typing import TYPE_CHECKING, Any, Mapping, Optional

import psutil

from cloudguard.utils.timeutil import to_iso, utc_now

if TYPE_CHECKING:
    from cloudguard.locking.manager import LockManager

logger = logging.getLogger(__name__)

ENV_PREFIXES = ("AWS_", "CLOUDGUARD_")
REDACTED = "***"

_SECRET_PATTERN = re.compile(r"SECRET|TOKEN|PASSWORD|CREDENTIAL|SESSION|KEY_ID|PRIVATE", re.IGNORECASE)


def filter_environment(env: Mapping[str, str]) -> dict[str, str]:
    """Keep AWS_* and CLOUDGUARD_* variables, redacting anything secret-looking.

    Args:
        env: Environment mapping

    Returns:
        Filtered copy, sorted by name
    """
    filtered = {}
    for name in sorted(env):
        if not name.startswith(ENV_PREFIXES):
            continue
        filtered[name] = REDACTED if _SECRET_PATTERN.search(name) else env[name]
    return filtered


def _process_info() -> dict[str, Any]:
    info: dict[str, Any] = {"pid": os.getpid(), "ppid": os.getppid()}
    try:
        proc = psutil.Process(info["pid"])
        info["cmdline"] = proc.cmdline()
        info["started_at"] = proc.create_time()
        info["memory_rss"] = proc.memory_info().rss
    except psutil.Error as e:
        logger.debug(f"Could not inspect current process: {e}")
        info["cmdline"] = list(sys.argv)
    return info


def capture_environment(
    lock_manager: Optional[LockManager] = None,
    env: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    """Snapshot the process and its surroundings at the time of a failure.

    Args:
        lock_manager: Lock manager whose entries are listed (optional)
        env: Environment mapping (default: os.environ)

    Returns:
        JSON/YAML-serializable snapshot
    """
    snapshot: dict[str, Any] = {
        "captured_at": to_iso(utc_now()),
        "host": socket.gethostname(),
        "platform": platform.platform(),
        "python_version": platform.python_version(),
        "process": _process_info(),
        "environment": filter_environment(os.environ if env is None else env),
    }

    try:
        snapshot["cwd"] = os.getcwd()
    except OSError:
        snapshot["cwd"] = None

    if lock_manager is not None:
        try:
            snapshot["locks"] = [info.to_dict() for info in lock_manager.list_locks()]
        except OSError as e:
            snapshot["locks"] = []
            snapshot["locks_error"] = str(e)

    return snapshot
