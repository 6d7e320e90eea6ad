"""Data models."""

from __future__ import annotations

from .error_report import ErrorCategory, ErrorReport, RecoveryOutcome, TerminalState
from .lock import LockInfo
from .operation import DeletionPlan, DeletionResult, OperationRecord, OperationStatus
from .resource import ResourceId, ResourceRecord, ResourceState

__all__ = [
    "DeletionPlan",
    "DeletionResult",
    "ErrorCategory",
    "ErrorReport",
    "LockInfo",
    "OperationRecord",
    "OperationStatus",
    "RecoveryOutcome",
    "ResourceId",
    "ResourceRecord",
    "ResourceState",
    "TerminalState",
]
