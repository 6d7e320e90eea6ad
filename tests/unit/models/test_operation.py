"""Tests for operation log and deletion plan models."""

from __future__ import annotations

from datetime import datetime

from cloudguard.models.operation import DeletionPlan, OperationRecord, OperationStatus
from cloudguard.models.resource import ResourceId

DISK = ResourceId("AWS::EC2::Volume", "disk-1")
INSTANCE = ResourceId("AWS::EC2::Instance", "instance-1")


class TestOperationRecord:
    """Test suite for OperationRecord model."""

    def test_dict_round_trip(self) -> None:
        """Test an operation log entry survives serialization."""
        record = OperationRecord(
            operation_id="op_123",
            kind="delete",
            resource_key=DISK.key,
            status=OperationStatus.PARTIAL,
            timestamp=datetime(2026, 10, 18, 10, 15, 0),
            error_id="ERR-20261018-101500-202-0001",
            details={"deleted": [INSTANCE.key]},
        )

        data = record.to_dict()

        assert data["resource"] == DISK.key
        assert data["status"] == "partial"
        assert OperationRecord.from_dict(data) == record


class TestDeletionPlan:
    """Test suite for DeletionPlan model."""

    def test_unreferenced_resource_is_safe(self) -> None:
        """Test a plan without dependents is safe."""
        plan = DeletionPlan(root=DISK, cascade=False, targets=[DISK])

        assert plan.is_safe is True

    def test_blocking_dependents(self) -> None:
        """Test dependents block unless cascading."""
        blocked = DeletionPlan(root=DISK, cascade=False, blocking_dependents=[INSTANCE])
        cascading = DeletionPlan(root=DISK, cascade=True, targets=[INSTANCE, DISK], blocking_dependents=[INSTANCE])

        assert blocked.is_safe is False
        assert cascading.is_safe is True

    def test_cycle_or_dangling_is_never_safe(self) -> None:
        """Test an unsound graph blocks even a cascading plan."""
        cyclic = DeletionPlan(root=DISK, cascade=True, cycle=[DISK, INSTANCE])
        incomplete = DeletionPlan(root=DISK, cascade=True, dangling=[(INSTANCE.key, "AWS::EC2::Subnet/s-1")])

        assert cyclic.is_safe is False
        assert incomplete.is_safe is False
