"""Error classification, recovery and diagnostics.

Classes:
    RecoveryCoordinator: Bounded recovery state machine and error reporting
    DiagnosticsStorage: Error report storage and retrieval
"""

from __future__ import annotations

from .coordinator import RecoveryCoordinator, RecoveryResult, RecoveryStatus
from .diagnostics import DiagnosticsStorage

__all__ = [
    "DiagnosticsStorage",
    "RecoveryCoordinator",
    "RecoveryResult",
    "RecoveryStatus",
]
