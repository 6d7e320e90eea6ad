"""Operation log and deletion plan/result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from cloudguard.models.resource import ResourceId
from cloudguard.utils.timeutil import from_iso, to_iso


class OperationStatus(Enum):
    """Operation execution status.

    State transitions:
        planned → completed (all targets deleted)
        planned → partial (some targets deleted before a failure)
        planned → failed (nothing deleted)
        planned → rejected (dependency policy refused the plan)
    """

    PLANNED = "planned"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    REJECTED = "rejected"


@dataclass
class OperationRecord:
    """Entry of the state document's operation log.

    Attributes:
        operation_id: Unique identifier for the operation
        kind: Operation kind (delete, repair, reclaim, ...)
        resource_key: Root resource of the operation
        status: Final status
        timestamp: When the operation finished (UTC)
        error_id: Error report identifier if one was produced
        details: Free-form extra information
    """

    operation_id: str
    kind: str
    resource_key: str
    status: OperationStatus
    timestamp: datetime
    error_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "kind": self.kind,
            "resource": self.resource_key,
            "status": self.status.value,
            "timestamp": to_iso(self.timestamp),
            "error_id": self.error_id,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OperationRecord:
        return cls(
            operation_id=data["operation_id"],
            kind=data.get("kind", ""),
            resource_key=data.get("resource", ""),
            status=OperationStatus(data.get("status", OperationStatus.PLANNED.value)),
            timestamp=from_iso(data.get("timestamp")),
            error_id=data.get("error_id"),
            details=dict(data.get("details") or {}),
        )


@dataclass
class DeletionPlan:
    """Preview of a deletion.

    Attributes:
        root: Resource requested for deletion
        cascade: Whether dependents are deleted too
        targets: Resources to delete, dependents first
        blocking_dependents: Dependents that prevent a non-cascading deletion
        cycle: Dependency cycle found in the graph, if any
        dangling: Edges referencing resources that could not be visited
    """

    root: ResourceId
    cascade: bool
    targets: list[ResourceId] = field(default_factory=list)
    blocking_dependents: list[ResourceId] = field(default_factory=list)
    cycle: Optional[list[ResourceId]] = None
    dangling: list[tuple[str, str]] = field(default_factory=list)

    @property
    def is_safe(self) -> bool:
        if self.cycle or self.dangling:
            return False
        return self.cascade or not self.blocking_dependents


@dataclass
class DeletionResult:
    """Outcome of executing a deletion plan.

    Attributes:
        operation_id: Operation identifier (also written to the operation log)
        root: Resource requested for deletion
        status: Final operation status
        deleted: Targets deleted successfully, in deletion order
        failed: Target whose deletion failed, if any
        error_id: Error report identifier if the operation failed
        reason: Human-readable reason for rejection or failure
    """

    operation_id: str
    root: ResourceId
    status: OperationStatus
    deleted: list[ResourceId] = field(default_factory=list)
    failed: Optional[ResourceId] = None
    error_id: Optional[str] = None
    reason: Optional[str] = None
