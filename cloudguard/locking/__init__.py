"""Cross-process resource locks.

Classes:
    LockManager: Filesystem-backed named locks with stale-owner reclamation
"""

from __future__ import annotations

from .manager import LockManager

__all__ = ["LockManager"]
