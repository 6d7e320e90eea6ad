"""Error classification, bounded recovery and error reporting.

Every failure handed to the coordinator goes through the same per-attempt
state machine:

    Attempting → Failed → Recovering → Retrying → Attempting
                                     ↘ GivingUp → Reported

with terminal states Succeeded and Reported. Each category has a fixed
recovery budget, so the machine always terminates, and each handled failure
produces exactly one persisted ErrorReport.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

from cloudguard.config import Config
from cloudguard.exceptions import CloudGuardError, OperationFailedError, StateIOError
from cloudguard.locking.manager import LockManager
from cloudguard.models.error_report import (
    ErrorCategory,
    ErrorReport,
    RecoveryOutcome,
    TerminalState,
)
from cloudguard.models.resource import ResourceId
from cloudguard.recovery.diagnostics import DiagnosticsStorage, make_error_id
from cloudguard.recovery.snapshot import capture_environment
from cloudguard.state.store import StateStore
from cloudguard.utils.logging import tail_log
from cloudguard.utils.timeutil import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKOFF_CATEGORIES = frozenset({ErrorCategory.PROVIDER_RATE_LIMITED, ErrorCategory.PROVIDER_UNAVAILABLE})

# Provider codes reported while a dependent is still attached
DEPENDENCY_CONFLICT_CODES = frozenset({"DependencyViolation", "IncorrectState"})
DEPENDENCY_CONFLICT_RETRIES = 1


class AttemptState(Enum):
    """States of the per-attempt recovery state machine."""

    ATTEMPTING = "attempting"
    FAILED = "failed"
    RECOVERING = "recovering"
    RETRYING = "retrying"
    GIVING_UP = "giving-up"
    SUCCEEDED = "succeeded"
    REPORTED = "reported"


class RecoveryStatus(Enum):
    RECOVERED = "recovered"
    NOT_RECOVERED = "not-recovered"


@dataclass(frozen=True)
class RecoveryResult:
    """Result of one recovery action.

    Attributes:
        status: Whether the condition behind the failure was cleared
        action: What was done (e.g., "backoff", "reclaim", "repair", "none")
        detail: Extra information for the report
    """

    status: RecoveryStatus
    action: str
    detail: Optional[str] = None

    @property
    def recovered(self) -> bool:
        return self.status is RecoveryStatus.RECOVERED


class RecoveryCoordinator:
    """Classifies failures, runs bounded recovery and writes error reports.

    Attributes:
        config: Runtime configuration
        state_store: State store repaired on corruption (optional)
        lock_manager: Lock manager used for stale-lock reclamation (optional)
        diagnostics: Where error reports are written
    """

    def __init__(
        self,
        config: Config,
        state_store: Optional[StateStore] = None,
        lock_manager: Optional[LockManager] = None,
        diagnostics: Optional[DiagnosticsStorage] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        """Initialize recovery coordinator.

        Args:
            config: Runtime configuration (retry and backoff settings, diagnostics_dir)
            state_store: State store to repair on corruption
            lock_manager: Lock manager for stale-lock reclamation and lock snapshots
            diagnostics: Report storage (default: config.diagnostics_dir)
            sleep: Function used to wait between retries
            rng: Random source for backoff jitter
        """
        self.config = config
        self.state_store = state_store
        self.lock_manager = lock_manager
        self.diagnostics = diagnostics or DiagnosticsStorage(config.diagnostics_dir)
        self._sleep = sleep
        self._random = rng or random.Random()

    def retry_budget(self, category: ErrorCategory, details: Optional[dict[str, Any]] = None) -> int:
        """Maximum number of recovery attempts for a category.

        Unavailability caused by an attached dependent (details["error_code"] in
        DEPENDENCY_CONFLICT_CODES) gets a smaller budget than a failing API.
        """
        error_code = (details or {}).get("error_code")
        if category is ErrorCategory.PROVIDER_UNAVAILABLE and error_code in DEPENDENCY_CONFLICT_CODES:
            return min(DEPENDENCY_CONFLICT_RETRIES, self.config.max_retries)
        if category in BACKOFF_CATEGORIES:
            return self.config.max_retries
        if category in (ErrorCategory.STATE_CORRUPTION, ErrorCategory.LOCK_TIMEOUT):
            return 1
        return 0

    def backoff_delay(self, attempt: int) -> float:
        """Full-jitter exponential backoff: uniform(0, min(max, base * 2**attempt))."""
        ceiling = min(self.config.backoff_max, self.config.backoff_base * (2**attempt))
        return self._random.uniform(0, ceiling)

    def recover(
        self,
        category: ErrorCategory,
        context: str,
        *,
        resource: Optional[ResourceId] = None,
        attempt: int = 0,
    ) -> RecoveryResult:
        """Run the recovery action for a failure category.

        Args:
            category: Failure category
            context: Operation the failure happened in
            resource: Resource involved, if any
            attempt: Zero-based recovery attempt number

        Returns:
            RecoveryResult
        """
        if category is ErrorCategory.STATE_CORRUPTION:
            if self.state_store is None:
                return RecoveryResult(RecoveryStatus.NOT_RECOVERED, "none", "no state store configured")
            try:
                backup = self.state_store.backup_and_repair()
            except StateIOError as e:
                logger.error(f"State repair failed during {context}: {e}")
                return RecoveryResult(RecoveryStatus.NOT_RECOVERED, "repair", str(e))
            detail = f"backup written to {backup}" if backup else "document already valid"
            return RecoveryResult(RecoveryStatus.RECOVERED, "repair", detail)

        if category is ErrorCategory.LOCK_TIMEOUT:
            if self.lock_manager is None or resource is None:
                return RecoveryResult(RecoveryStatus.NOT_RECOVERED, "none", "no lock to reclaim")
            if self.lock_manager.reclaim_if_stale(resource):
                return RecoveryResult(RecoveryStatus.RECOVERED, "reclaim", f"lock on {resource.key} is free")
            return RecoveryResult(RecoveryStatus.NOT_RECOVERED, "reclaim", f"lock on {resource.key} has a live owner")

        if category in BACKOFF_CATEGORIES:
            if attempt >= self.config.max_retries:
                return RecoveryResult(RecoveryStatus.NOT_RECOVERED, "backoff", "retry budget exhausted")
            delay = self.backoff_delay(attempt)
            logger.info(f"Backing off {delay:.2f}s before retrying {context} (attempt {attempt + 1})")
            self._sleep(delay)
            return RecoveryResult(RecoveryStatus.RECOVERED, "backoff", f"waited {delay:.2f}s")

        return RecoveryResult(RecoveryStatus.NOT_RECOVERED, "none")

    def handle(
        self,
        category: ErrorCategory,
        context: str,
        details: Optional[dict[str, Any]] = None,
        *,
        resource: Optional[ResourceId] = None,
        retry: Optional[Callable[[], Any]] = None,
        message: Optional[str] = None,
    ) -> ErrorReport:
        """Handle a failure: recover, optionally retry, and write one report.

        Args:
            category: Failure category
            context: Operation the failure happened in
            details: Structured failure details
            resource: Resource involved, if any
            retry: Callable re-running the failed operation after a successful recovery
            message: Human-readable failure message (default: category name)

        Returns:
            The persisted ErrorReport; terminal_state is succeeded only if a retry succeeded
        """
        report, _ = self._handle(category, context, details, resource=resource, retry=retry, message=message)
        return report

    def run(self, action: Callable[[], T], context: str, resource: Optional[ResourceId] = None) -> T:
        """Execute an action under the coordinator.

        Args:
            action: Operation to run (re-run on retry)
            context: Description used in logs and reports
            resource: Resource involved, if any

        Returns:
            The action's result, possibly after recovered retries

        Raises:
            OperationFailedError: If the failure ended in the Reported state
        """
        try:
            return action()
        except CloudGuardError as e:
            report, value = self._handle(
                e.category,
                context,
                e.details,
                resource=e.resource or resource,
                retry=action,
                message=e.message,
            )
            if report.succeeded:
                return value
            raise OperationFailedError(report) from e

    def check_state(self) -> Optional[ErrorReport]:
        """Validate the state document, repairing it if corrupt.

        Returns:
            None if the document was valid, else the report of the repair

        Raises:
            OperationFailedError: If the document cannot be read or repaired
        """
        if self.state_store is None:
            raise ValueError("No state store configured")

        try:
            valid = self.state_store.validate()
        except StateIOError as e:
            raise OperationFailedError(
                self.handle(e.category, "validate state document", e.details, message=e.message)
            ) from e

        if valid:
            return None

        report = self.handle(
            ErrorCategory.STATE_CORRUPTION,
            "validate state document",
            {"state_file": str(self.state_store.state_file)},
            message=f"State document {self.state_store.state_file} is corrupt",
        )
        if report.recovery_outcome is not RecoveryOutcome.SUCCEEDED:
            raise OperationFailedError(report)
        return report

    def _handle(
        self,
        category: ErrorCategory,
        context: str,
        details: Optional[dict[str, Any]],
        *,
        resource: Optional[ResourceId],
        retry: Optional[Callable[[], T]],
        message: Optional[str],
    ) -> tuple[ErrorReport, Optional[T]]:
        message = message or category.value
        spent: dict[ErrorCategory, int] = {}
        failure_details = details
        history: list[dict[str, Any]] = []
        outcome = RecoveryOutcome.NOT_ATTEMPTED
        attempts = 1
        value: Optional[T] = None
        state = AttemptState.FAILED

        while state is AttemptState.FAILED:
            logger.warning(f"{context} failed ({category.value}): {message}")
            attempt = spent.get(category, 0)
            entry: dict[str, Any] = {"attempt": attempts, "category": category.value, "message": message}
            history.append(entry)

            if attempt >= self.retry_budget(category, failure_details):
                entry["recovery"] = "none" if attempt == 0 else "budget exhausted"
                state = AttemptState.GIVING_UP
                break

            state = AttemptState.RECOVERING
            spent[category] = attempt + 1
            result = self.recover(category, context, resource=resource, attempt=attempt)
            entry["recovery"] = result.action
            if result.detail:
                entry["recovery_detail"] = result.detail
            outcome = RecoveryOutcome.SUCCEEDED if result.recovered else RecoveryOutcome.FAILED

            if not result.recovered or retry is None:
                state = AttemptState.GIVING_UP
                break

            state = AttemptState.RETRYING
            attempts += 1
            logger.debug(f"Retrying {context} (attempt {attempts})")
            try:
                value = retry()
            except CloudGuardError as e:
                category = e.category
                message = e.message
                failure_details = e.details
                resource = e.resource or resource
                state = AttemptState.FAILED
            else:
                state = AttemptState.SUCCEEDED

        terminal = TerminalState.SUCCEEDED if state is AttemptState.SUCCEEDED else TerminalState.REPORTED
        report = ErrorReport(
            error_id=make_error_id(category, utc_now(), 0),
            category=category,
            message=message,
            context=context,
            created_at=utc_now(),
            recovery_outcome=outcome,
            terminal_state=terminal,
            attempts=attempts,
            resource_key=resource.key if resource else None,
            details={**(details or {}), "history": history},
            environment=capture_environment(self.lock_manager),
            log_tail=tail_log(self.config.log_tail_lines),
        )

        try:
            report = self.diagnostics.save(report)
        except OSError as e:
            logger.error(f"Could not write error report for {context}: {e}")

        if terminal is TerminalState.SUCCEEDED:
            logger.info(f"[{report.error_id}] {context} succeeded after {attempts} attempt(s)")
        else:
            logger.error(f"[{report.error_id}] {context}: {message}")
            logger.error(f"[{report.error_id}] Resolution: {report.resolution}")

        return report, value
