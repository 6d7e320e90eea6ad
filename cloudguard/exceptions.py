"""Exception hierarchy.

Every failure the core can classify is a CloudGuardError carrying an
ErrorCategory; the recovery coordinator dispatches on that category.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from cloudguard.models.error_report import ErrorCategory

if TYPE_CHECKING:
    from cloudguard.models.error_report import ErrorReport
    from cloudguard.models.lock import LockInfo
    from cloudguard.models.resource import ResourceId


class CloudGuardError(Exception):
    """Base class for classified failures."""

    category = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        resource: Optional[ResourceId] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.resource = resource
        self.details = details or {}


class LockTimeoutError(CloudGuardError):
    """Lock could not be acquired before the deadline."""

    category = ErrorCategory.LOCK_TIMEOUT

    def __init__(self, resource: ResourceId, timeout: float, holder: Optional[LockInfo] = None) -> None:
        details: dict[str, Any] = {"timeout_seconds": timeout}
        message = f"Timed out after {timeout:.1f}s waiting for lock on {resource.key}"
        if holder is not None:
            details["holder"] = holder.to_dict()
            message += f" (held by {holder.label})"
        super().__init__(message, resource=resource, details=details)
        self.timeout = timeout
        self.holder = holder


class LockNotOwnerError(CloudGuardError):
    """Release attempted by a process that does not own the lock."""

    category = ErrorCategory.LOCK_NOT_OWNER


class LockNotFoundError(CloudGuardError):
    """Release attempted on a lock that does not exist."""

    category = ErrorCategory.LOCK_NOT_OWNER


class StateCorruptionError(CloudGuardError):
    """State document exists but cannot be parsed."""

    category = ErrorCategory.STATE_CORRUPTION


class StateIOError(CloudGuardError):
    """State document could not be read or written."""

    category = ErrorCategory.STATE_IO_ERROR


class DependencyCycleError(CloudGuardError):
    """Dependency graph contains a cycle; the plan is rejected."""

    category = ErrorCategory.DEPENDENCY_CYCLE

    def __init__(self, cycle: list[ResourceId]) -> None:
        path = " -> ".join(r.key for r in cycle + cycle[:1])
        super().__init__(
            f"Circular dependency detected: {path}",
            resource=cycle[0] if cycle else None,
            details={"cycle": [r.key for r in cycle]},
        )
        self.cycle = cycle


class ProviderError(CloudGuardError):
    """Resource provider API failure."""

    category = ErrorCategory.PROVIDER_UNAVAILABLE


class ProviderRateLimitedError(ProviderError):
    """Provider throttled the request or a quota was exceeded."""

    category = ErrorCategory.PROVIDER_RATE_LIMITED


class ProviderUnavailableError(ProviderError):
    """Provider unreachable or failing transiently."""

    category = ErrorCategory.PROVIDER_UNAVAILABLE


class ProviderPermissionDeniedError(ProviderError):
    """Credentials lack the permission for the request."""

    category = ErrorCategory.PROVIDER_PERMISSION_DENIED


class ProviderRequestError(ProviderError):
    """Provider rejected the request for a reason outside the taxonomy."""

    category = ErrorCategory.INTERNAL


class PlanRejectedError(Exception):
    """Deletion refused because dependents still exist or the graph is incomplete.

    This is a policy refusal, not a failure, so it carries no error category.
    """

    def __init__(self, resource: ResourceId, dependents: list[ResourceId], reason: Optional[str] = None) -> None:
        if reason is None:
            names = ", ".join(d.key for d in dependents)
            reason = f"still required by {names}"
        super().__init__(f"Cannot delete {resource.key}: {reason}")
        self.reason = reason
        self.resource = resource
        self.dependents = dependents


class OperationFailedError(Exception):
    """Operation ended in the Reported terminal state."""

    def __init__(self, report: ErrorReport) -> None:
        super().__init__(f"{report.message} (error id: {report.error_id})")
        self.report = report
