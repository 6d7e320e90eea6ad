"""Tests for DeletionCoordinator class."""

from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from cloudguard.config import Config
from cloudguard.exceptions import ProviderPermissionDeniedError, ProviderUnavailableError
from cloudguard.locking.manager import LockManager
from cloudguard.models.operation import OperationStatus
from cloudguard.models.resource import ResourceId, ResourceState
from cloudguard.recovery.coordinator import RecoveryCoordinator
from cloudguard.restore.coordinator import DeletionCoordinator
from cloudguard.state.store import StateStore
from tests.fixtures.providers import INSTANCE, VOLUME, FakeProvider, make_config


class TestDeletionCoordinator:
    """Test suite for DeletionCoordinator class."""

    @pytest.fixture
    def config(self, tmp_path: Path) -> Config:
        return make_config(tmp_path, lock_timeout=0.2)

    @pytest.fixture
    def provider(self) -> FakeProvider:
        return FakeProvider()

    @pytest.fixture
    def sleeps(self) -> List[float]:
        return []

    @pytest.fixture
    def coordinator(self, config: Config, provider: FakeProvider, sleeps: List[float]) -> DeletionCoordinator:
        lock_manager = LockManager(config)
        state_store = StateStore(config)
        recovery = RecoveryCoordinator(
            config,
            state_store=state_store,
            lock_manager=lock_manager,
            sleep=sleeps.append,
        )
        return DeletionCoordinator(config, lock_manager, state_store, recovery, provider)

    def report_count(self, config: Config) -> int:
        return len(list(Path(config.diagnostics_dir).glob("*/*/error-*.yaml")))

    def test_execute_requires_confirmation(self, coordinator: DeletionCoordinator, provider: FakeProvider) -> None:
        """Test deletion without confirmation raises ValueError."""
        disk = provider.add(VOLUME, "disk-1")

        with pytest.raises(ValueError, match="confirmation"):
            coordinator.execute(disk)

        assert provider.calls == []

    def test_delete_unreferenced_resource(
        self, coordinator: DeletionCoordinator, provider: FakeProvider
    ) -> None:
        """Test a resource with no dependents is locked, deleted and recorded."""
        disk = provider.add(VOLUME, "disk-1")

        result = coordinator.execute(disk, confirmed=True)

        assert result.status is OperationStatus.COMPLETED
        assert result.deleted == [disk]
        assert provider.deleted == [disk.key]
        assert coordinator.state_store.read_resource_state(disk) is ResourceState.DELETED
        assert coordinator.lock_manager.list_locks() == []

        ops = coordinator.state_store.recent_operations()
        assert ops[-1].operation_id == result.operation_id
        assert ops[-1].status is OperationStatus.COMPLETED

    def test_dependents_reject_without_side_effects(
        self, coordinator: DeletionCoordinator, provider: FakeProvider, config: Config
    ) -> None:
        """Test a blocked deletion takes no lock and calls no mutation."""
        disk = provider.add(VOLUME, "disk-1")
        instance = provider.add(INSTANCE, "instance-1")
        provider.depends_on(instance, disk)

        result = coordinator.execute(disk, confirmed=True)

        assert result.status is OperationStatus.REJECTED
        assert "instance-1" in result.reason
        assert provider.call_count("delete") == 0
        assert coordinator.state_store.read_resource_state(disk) is ResourceState.UNKNOWN
        assert coordinator.lock_manager.list_locks() == []
        assert self.report_count(config) == 0

    def test_cascade_deletes_dependents_first(
        self, coordinator: DeletionCoordinator, provider: FakeProvider
    ) -> None:
        """Test cascade deletes the instance before the disk."""
        disk = provider.add(VOLUME, "disk-1")
        instance = provider.add(INSTANCE, "instance-1")
        provider.depends_on(instance, disk)

        result = coordinator.execute(disk, confirmed=True, cascade=True)

        assert result.status is OperationStatus.COMPLETED
        assert provider.deleted == [instance.key, disk.key]
        assert coordinator.state_store.read_resource_state(instance) is ResourceState.DELETED

    def test_cycle_fails_with_report(
        self, coordinator: DeletionCoordinator, provider: FakeProvider, config: Config
    ) -> None:
        """Test a dependency cycle fails the operation with one report."""
        a = ResourceId("Test::Node", "a")
        b = ResourceId("Test::Node", "b")
        provider.depends_on(b, a)
        provider.depends_on(a, b)

        result = coordinator.execute(a, confirmed=True, cascade=True)

        assert result.status is OperationStatus.FAILED
        assert result.error_id.split("-")[3] == "103"
        assert provider.call_count("delete") == 0
        assert self.report_count(config) == 1

    def test_locked_resource_times_out(
        self, coordinator: DeletionCoordinator, provider: FakeProvider, config: Config
    ) -> None:
        """Test a resource locked by a live process fails with a lock timeout report."""
        disk = provider.add(VOLUME, "disk-1")
        coordinator.lock_manager.acquire(disk)

        result = coordinator.execute(disk, confirmed=True)

        assert result.status is OperationStatus.FAILED
        assert result.failed == disk
        assert result.error_id.split("-")[3] == "004"
        assert provider.call_count("delete") == 0
        assert self.report_count(config) == 1

    def test_transient_delete_failure_is_retried(
        self, coordinator: DeletionCoordinator, provider: FakeProvider, sleeps: List[float]
    ) -> None:
        """Test an unavailable provider is retried after backoff."""
        disk = provider.add(VOLUME, "disk-1")
        provider.fail("delete", disk, ProviderUnavailableError("DependencyViolation", resource=disk))

        result = coordinator.execute(disk, confirmed=True)

        assert result.status is OperationStatus.COMPLETED
        assert provider.call_count("delete", disk) == 2
        assert len(sleeps) == 1

    def test_partial_cascade_failure(
        self, coordinator: DeletionCoordinator, provider: FakeProvider
    ) -> None:
        """Test a failure mid-cascade reports partial and unlocks the rest."""
        disk = provider.add(VOLUME, "disk-1")
        instance = provider.add(INSTANCE, "instance-1")
        provider.depends_on(instance, disk)
        provider.fail("delete", disk, ProviderPermissionDeniedError("UnauthorizedOperation", resource=disk))

        result = coordinator.execute(disk, confirmed=True, cascade=True)

        assert result.status is OperationStatus.PARTIAL
        assert result.deleted == [instance]
        assert result.failed == disk
        assert result.error_id is not None
        assert coordinator.state_store.read_resource_state(disk) is ResourceState.UNLOCKED
        assert coordinator.lock_manager.list_locks() == []

    def test_plan_is_read_only(self, coordinator: DeletionCoordinator, provider: FakeProvider) -> None:
        """Test plan() only queries dependents."""
        disk = provider.add(VOLUME, "disk-1")
        instance = provider.add(INSTANCE, "instance-1")
        provider.depends_on(instance, disk)

        plan = coordinator.plan(disk, cascade=True)

        assert plan.targets == [instance, disk]
        assert plan.is_safe is True
        assert {method for method, _ in provider.calls} == {"dependents_of"}
        assert coordinator.lock_manager.list_locks() == []

    def test_unexpected_delete_error_is_reported(
        self, coordinator: DeletionCoordinator, provider: FakeProvider, config: Config
    ) -> None:
        """Test an unclassified provider exception fails the operation with one internal report."""
        disk = provider.add(VOLUME, "disk-1")
        provider.fail("delete", disk, RuntimeError("connection pool exhausted"))

        result = coordinator.execute(disk, confirmed=True)

        assert result.status is OperationStatus.FAILED
        assert result.failed == disk
        assert result.error_id.split("-")[3] == "001"
        assert "RuntimeError" in result.reason
        assert coordinator.state_store.read_resource_state(disk) is ResourceState.UNLOCKED
        assert coordinator.state_store.recent_operations()[-1].status is OperationStatus.FAILED
        assert coordinator.lock_manager.list_locks() == []
        assert self.report_count(config) == 1

    def test_unexpected_error_mid_cascade_is_partial(
        self, coordinator: DeletionCoordinator, provider: FakeProvider
    ) -> None:
        """Test an unclassified failure after a deletion keeps the deleted target recorded."""
        disk = provider.add(VOLUME, "disk-1")
        instance = provider.add(INSTANCE, "instance-1")
        provider.depends_on(instance, disk)
        provider.fail("delete", disk, KeyError("VolumeId"))

        result = coordinator.execute(disk, confirmed=True, cascade=True)

        assert result.status is OperationStatus.PARTIAL
        assert result.deleted == [instance]
        assert coordinator.state_store.read_resource_state(instance) is ResourceState.DELETED
        assert coordinator.state_store.read_resource_state(disk) is ResourceState.UNLOCKED

    def test_unexpected_graph_error_is_reported(
        self, coordinator: DeletionCoordinator, provider: FakeProvider, config: Config
    ) -> None:
        """Test an unclassified failure while listing dependents is reported before any lock."""
        disk = provider.add(VOLUME, "disk-1")
        provider.fail("dependents_of", disk, RuntimeError("boom"))

        result = coordinator.execute(disk, confirmed=True)

        assert result.status is OperationStatus.FAILED
        assert result.error_id is not None
        assert provider.call_count("delete") == 0
        assert coordinator.state_store.read_resource_state(disk) is ResourceState.UNKNOWN
        assert self.report_count(config) == 1
