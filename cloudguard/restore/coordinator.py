"""Deletion coordinator.

Main orchestrator for safe resource deletion with preview and execution modes.
"""

from __future__ import annotations

import logging
import traceback
import uuid
from functools import partial
from typing import Optional

from cloudguard.config import Config
from cloudguard.exceptions import (
    DependencyCycleError,
    LockNotFoundError,
    LockNotOwnerError,
    LockTimeoutError,
    OperationFailedError,
    PlanRejectedError,
)
from cloudguard.locking.manager import LockManager
from cloudguard.models.error_report import ErrorCategory, ErrorReport
from cloudguard.models.operation import DeletionPlan, DeletionResult, OperationRecord, OperationStatus
from cloudguard.models.resource import ResourceId, ResourceState
from cloudguard.provider.base import ResourceProvider
from cloudguard.recovery.coordinator import RecoveryCoordinator
from cloudguard.restore.dependency import DependencyGraphBuilder, authorize_deletion, plan_deletion
from cloudguard.state.store import StateStore
from cloudguard.utils.timeutil import utc_now

logger = logging.getLogger(__name__)


class DeletionCoordinator:
    """Deletion orchestrator.

    Builds the dependency graph of the requested resource, applies the
    deletion policy, then locks, deletes and records every target. Nothing is
    locked or mutated until the policy has accepted the plan.

    Attributes:
        config: Runtime configuration
        lock_manager: Lock manager for per-resource exclusion
        state_store: State store recording lifecycle transitions
        recovery: Recovery coordinator for classified failures
        provider: Resource provider performing the deletions
        builder: Dependency graph builder
    """

    def __init__(
        self,
        config: Config,
        lock_manager: LockManager,
        state_store: StateStore,
        recovery: RecoveryCoordinator,
        provider: ResourceProvider,
    ) -> None:
        """Initialize deletion coordinator.

        Args:
            config: Runtime configuration
            lock_manager: Lock manager instance
            state_store: State store instance
            recovery: Recovery coordinator instance
            provider: Resource provider instance
        """
        self.config = config
        self.lock_manager = lock_manager
        self.state_store = state_store
        self.recovery = recovery
        self.provider = provider
        self.builder = DependencyGraphBuilder(provider, coordinator=recovery)

    def plan(self, resource: ResourceId, cascade: bool = False) -> DeletionPlan:
        """Preview a deletion (dry-run mode).

        Args:
            resource: Resource to delete
            cascade: Also delete everything that depends on it

        Returns:
            DeletionPlan with targets and blockers; nothing is locked or changed

        Raises:
            ValueError: If the resource identity is invalid
            OperationFailedError: If the dependency graph cannot be built
        """
        graph = self.builder.build(resource)
        return plan_deletion(graph, cascade=cascade)

    def execute(self, resource: ResourceId, confirmed: bool = False, cascade: bool = False) -> DeletionResult:
        """Delete a resource (execution mode).

        Args:
            resource: Resource to delete
            confirmed: Must be True to proceed with deletion
            cascade: Also delete everything that depends on it, dependents first

        Returns:
            DeletionResult; status is rejected if the policy refused the plan

        Raises:
            ValueError: If not confirmed or the resource identity is invalid
        """
        if not confirmed:
            raise ValueError("Deletion requires explicit confirmation. Set confirmed=True or use --confirm flag.")

        resource.validate()
        operation_id = f"op_{uuid.uuid4()}"
        logger.info(f"Starting deletion {operation_id} of {resource.key} (cascade={cascade})")

        try:
            graph = self.builder.build(resource)
            targets = authorize_deletion(graph, resource, cascade=cascade)
        except OperationFailedError as e:
            return self._finish(operation_id, resource, OperationStatus.FAILED, error_id=e.report.error_id, reason=e.report.message)
        except DependencyCycleError as e:
            report = self.recovery.handle(
                e.category,
                f"delete {resource.key}",
                e.details,
                resource=resource,
                message=e.message,
            )
            return self._finish(operation_id, resource, OperationStatus.FAILED, error_id=report.error_id, reason=e.message)
        except PlanRejectedError as e:
            logger.warning(str(e))
            return self._finish(operation_id, resource, OperationStatus.REJECTED, reason=str(e))
        except Exception as e:
            report = self._report_unexpected(e, resource)
            return self._finish(operation_id, resource, OperationStatus.FAILED, error_id=report.error_id, reason=report.message)

        deleted: list[ResourceId] = []
        acquired: list[ResourceId] = []
        current: Optional[ResourceId] = None

        try:
            # Sorted acquisition order keeps concurrent cascades from deadlocking
            for target in sorted(targets):
                current = target
                self.recovery.run(partial(self._acquire, target), f"lock {target.key}", resource=target)
                acquired.append(target)
                self._set_state(target, ResourceState.LOCKED, operation_id)

            for target in targets:
                current = target
                self._set_state(target, ResourceState.MUTATING, operation_id)
                self.recovery.run(partial(self.provider.delete, target), f"delete {target.key}", resource=target)
                self._set_state(target, ResourceState.DELETED, operation_id)
                deleted.append(target)
                logger.info(f"Deleted {target.key}")

        except OperationFailedError as e:
            return self._abort(operation_id, resource, acquired, deleted, current, e.report.error_id, e.report.message)
        except Exception as e:
            report = self._report_unexpected(e, current or resource)
            return self._abort(operation_id, resource, acquired, deleted, current, report.error_id, report.message)
        finally:
            self._release(acquired)

        return self._finish(operation_id, resource, OperationStatus.COMPLETED, deleted=deleted)

    def _abort(
        self,
        operation_id: str,
        resource: ResourceId,
        acquired: list[ResourceId],
        deleted: list[ResourceId],
        failed: Optional[ResourceId],
        error_id: str,
        reason: str,
    ) -> DeletionResult:
        for target in acquired:
            if target not in deleted:
                self._restore_state(target, operation_id)
        status = OperationStatus.PARTIAL if deleted else OperationStatus.FAILED
        return self._finish(
            operation_id,
            resource,
            status,
            deleted=deleted,
            failed=failed,
            error_id=error_id,
            reason=reason,
        )

    def _report_unexpected(self, error: Exception, target: ResourceId) -> ErrorReport:
        logger.exception(f"Unexpected error while deleting {target.key}")
        return self.recovery.handle(
            ErrorCategory.INTERNAL,
            f"delete {target.key}",
            {"exception": type(error).__name__, "traceback": traceback.format_exc()},
            resource=target,
            message=f"{type(error).__name__}: {error}",
        )

    def _acquire(self, target: ResourceId) -> None:
        if not self.lock_manager.acquire(target):
            raise LockTimeoutError(target, self.lock_manager.default_timeout, holder=self.lock_manager.get_lock(target))

    def _set_state(self, target: ResourceId, state: ResourceState, operation_id: str) -> None:
        self.recovery.run(
            partial(self.state_store.update_resource_state, target, state, {"operation_id": operation_id}),
            f"record {target.key} as {state.value}",
            resource=target,
        )

    def _restore_state(self, target: ResourceId, operation_id: str) -> None:
        try:
            self._set_state(target, ResourceState.UNLOCKED, operation_id)
        except Exception as e:
            logger.error(f"Could not reset state of {target.key}: {e}")

    def _release(self, acquired: list[ResourceId]) -> None:
        for target in reversed(acquired):
            try:
                self.lock_manager.release(target)
            except (LockNotFoundError, LockNotOwnerError) as e:
                self.recovery.handle(e.category, f"release lock on {target.key}", e.details, resource=target, message=e.message)

    def _finish(
        self,
        operation_id: str,
        resource: ResourceId,
        status: OperationStatus,
        deleted: Optional[list[ResourceId]] = None,
        failed: Optional[ResourceId] = None,
        error_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> DeletionResult:
        result = DeletionResult(
            operation_id=operation_id,
            root=resource,
            status=status,
            deleted=list(deleted or []),
            failed=failed,
            error_id=error_id,
            reason=reason,
        )
        record = OperationRecord(
            operation_id=operation_id,
            kind="delete",
            resource_key=resource.key,
            status=status,
            timestamp=utc_now(),
            error_id=error_id,
            details={
                "deleted": [r.key for r in result.deleted],
                "failed": failed.key if failed else None,
                "reason": reason,
            },
        )
        try:
            self.recovery.run(partial(self.state_store.record_operation, record), f"record operation {operation_id}")
        except OperationFailedError as e:
            logger.error(f"Could not record operation {operation_id}: {e}")

        logger.info(f"Deletion {operation_id} of {resource.key} finished: {status.value}")
        return result
