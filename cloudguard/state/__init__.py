"""Resource state persistence.

Classes:
    StateStore: Atomically replaced JSON state document
"""

from __future__ import annotations

from .store import StateStore

__all__ = ["StateStore"]
