"""Error report model.

Persisted, immutable record of one handled failure and its recovery outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from cloudguard.utils.timeutil import to_iso


class ErrorCategory(Enum):
    """Failure taxonomy.

    Values are the category names written to reports; ``code`` is the numeric
    error code embedded in error identifiers (1-99 system, 100-199 resource,
    200-299 provider API).
    """

    INTERNAL = "internal"
    STATE_CORRUPTION = "state_corruption"
    LOCK_TIMEOUT = "lock_timeout"
    LOCK_NOT_OWNER = "lock_not_owner"
    STATE_IO_ERROR = "state_io_error"
    DEPENDENCY_CYCLE = "dependency_cycle"
    PROVIDER_RATE_LIMITED = "provider_rate_limited"
    PROVIDER_PERMISSION_DENIED = "provider_permission_denied"
    PROVIDER_UNAVAILABLE = "provider_unavailable"

    @property
    def code(self) -> int:
        return _CATEGORY_CODES[self]

    @property
    def resolution(self) -> str:
        return _RESOLUTIONS[self]


_CATEGORY_CODES = {
    ErrorCategory.INTERNAL: 1,
    ErrorCategory.STATE_CORRUPTION: 3,
    ErrorCategory.LOCK_TIMEOUT: 4,
    ErrorCategory.LOCK_NOT_OWNER: 5,
    ErrorCategory.STATE_IO_ERROR: 6,
    ErrorCategory.DEPENDENCY_CYCLE: 103,
    ErrorCategory.PROVIDER_RATE_LIMITED: 201,
    ErrorCategory.PROVIDER_PERMISSION_DENIED: 202,
    ErrorCategory.PROVIDER_UNAVAILABLE: 203,
}

_RESOLUTIONS = {
    ErrorCategory.INTERNAL: "Unexpected failure. Inspect the log tail and stack trace in this report.",
    ErrorCategory.STATE_CORRUPTION: (
        "The state document was moved aside and reinitialized. "
        "Run 'cloudguard state validate' to confirm and inspect the backup if history is needed."
    ),
    ErrorCategory.LOCK_TIMEOUT: (
        "Check for hung processes holding the lock ('cloudguard locks list'). "
        "A live owner is never preempted; stop it to release the lock."
    ),
    ErrorCategory.LOCK_NOT_OWNER: (
        "A process tried to release a lock it does not own. This is a coordination bug; "
        "do not remove lock entries by hand."
    ),
    ErrorCategory.STATE_IO_ERROR: "Verify the state directory exists, is writable and the disk is not full.",
    ErrorCategory.DEPENDENCY_CYCLE: (
        "The dependency graph contains a cycle. No resources were deleted; "
        "break the cycle manually before retrying."
    ),
    ErrorCategory.PROVIDER_RATE_LIMITED: "Wait for the quota window to reset or request a quota increase.",
    ErrorCategory.PROVIDER_PERMISSION_DENIED: "Grant the required permissions or use authorized credentials.",
    ErrorCategory.PROVIDER_UNAVAILABLE: (
        "The provider API is unreachable or failing. Retry later. "
        "DependencyViolation or IncorrectState means a dependent is still attached; "
        "detach or delete it (or use --cascade) before retrying."
    ),
}


class RecoveryOutcome(Enum):
    """Outcome of the automated recovery attempted for a failure."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOT_ATTEMPTED = "not-attempted"


class TerminalState(Enum):
    """Terminal state of an operation attempt handed to the coordinator."""

    SUCCEEDED = "succeeded"
    REPORTED = "reported"


@dataclass(frozen=True)
class ErrorReport:
    """Error report entity.

    Attributes:
        error_id: Stable identifier (ERR-YYYYMMDD-HHMMSS-CCC-NNNN)
        category: Failure category
        message: Human-readable message
        context: Operation the failure happened in
        created_at: When the report was created (UTC)
        recovery_outcome: Result of the automated recovery
        terminal_state: succeeded if a retry eventually succeeded, else reported
        attempts: Number of attempts made (the original one included)
        resource_key: Resource involved, if any
        details: Structured failure details
        environment: Captured process/environment snapshot
        log_tail: Most recent log lines at the time of the failure
    """

    error_id: str
    category: ErrorCategory
    message: str
    context: str
    created_at: datetime
    recovery_outcome: RecoveryOutcome
    terminal_state: TerminalState
    attempts: int = 1
    resource_key: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    environment: dict[str, Any] = field(default_factory=dict)
    log_tail: list[str] = field(default_factory=list)

    @property
    def resolution(self) -> str:
        return self.category.resolution

    @property
    def succeeded(self) -> bool:
        return self.terminal_state is TerminalState.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": {
                "version": "1.0",
                "log_type": "error_report",
            },
            "error": {
                "error_id": self.error_id,
                "category": self.category.value,
                "code": self.category.code,
                "message": self.message,
                "context": self.context,
                "resource": self.resource_key,
                "created_at": to_iso(self.created_at),
                "attempts": self.attempts,
                "recovery_outcome": self.recovery_outcome.value,
                "terminal_state": self.terminal_state.value,
                "resolution": self.resolution,
            },
            "details": self.details,
            "environment": self.environment,
            "log_tail": self.log_tail,
        }
