"""Process identity and liveness probing for lock owners.

A lock owner is identified by pid plus process start time. A live pid whose
start time differs from the recorded one belongs to a different process that
reused the pid, so the recorded owner is dead.
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from functools import lru_cache

import psutil

logger = logging.getLogger(__name__)

# psutil reports create_time with clock-tick resolution
START_TIME_TOLERANCE = 1.0


@dataclass(frozen=True)
class ProcessIdentity:
    """Identity of a running process."""

    pid: int
    start_time: float
    host: str

    @property
    def label(self) -> str:
        return f"{self.host}:{self.pid}"


@lru_cache(maxsize=None)
def _identity_for(pid: int) -> ProcessIdentity:
    return ProcessIdentity(
        pid=pid,
        start_time=psutil.Process(pid).create_time(),
        host=socket.gethostname(),
    )


def current_identity() -> ProcessIdentity:
    """Identity of the calling process.

    Cached per pid so a forked child computes its own identity.
    """
    return _identity_for(os.getpid())


def is_process_alive(pid: int, start_time: float, host: str) -> bool:
    """Best-effort liveness probe for a recorded lock owner.

    Args:
        pid: Recorded owner pid
        start_time: Recorded owner start time (0 if unknown)
        host: Host the owner ran on

    Returns:
        False only when the owner is provably gone: no such pid, a zombie, or
        a pid now used by a process with a different start time. Owners on
        other hosts cannot be probed and are reported alive.
    """
    if host and host != socket.gethostname():
        logger.debug(f"Lock owner {host}:{pid} is on another host, assuming alive")
        return True

    if pid <= 0:
        return False

    try:
        process = psutil.Process(pid)
        if process.status() == psutil.STATUS_ZOMBIE:
            logger.debug(f"Process {pid} is a zombie")
            return False
        if start_time > 0:
            current_start = process.create_time()
            if abs(current_start - start_time) > START_TIME_TOLERANCE:
                logger.info(
                    f"PID reuse detected for {pid}: recorded start {start_time:.1f}, "
                    f"current start {current_start:.1f}"
                )
                return False
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Exists but owned by someone else; cannot verify start time
        return True

    return True
