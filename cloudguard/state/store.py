"""Atomically updated resource state store.

A single JSON document holds the last known state of every tracked resource,
an operation log and the last cleanup timestamp. Every write reads the whole
document, modifies it in memory, writes a temp file in the same directory and
renames it over the canonical path, so readers never see a partial document.
Concurrent writers can lose a race (last writer wins) but cannot corrupt it.

Document structure:
    {
        "version": 1,
        "resources": {
            "AWS::EC2::Volume/vol-001": {"type": ..., "name": ..., "state": "locked",
                                         "timestamp": "...Z", "metadata": {...}}
        },
        "operations": [{"operation_id": ..., "kind": "delete", ...}],
        "last_cleanup": "...Z",
        "timestamp": "...Z"
    }
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from cloudguard.config import Config
from cloudguard.exceptions import StateCorruptionError, StateIOError
from cloudguard.models.operation import OperationRecord
from cloudguard.models.resource import ResourceId, ResourceRecord, ResourceState
from cloudguard.utils.timeutil import to_iso, utc_now

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def empty_document() -> dict[str, Any]:
    return {
        "version": SCHEMA_VERSION,
        "resources": {},
        "operations": [],
        "last_cleanup": None,
        "timestamp": to_iso(utc_now()),
    }


class StateStore:
    """Resource state document with atomic read-modify-replace updates.

    Attributes:
        state_file: Canonical document path
        operation_log_limit: Maximum operation log entries kept
    """

    def __init__(self, config: Config) -> None:
        """Initialize state store.

        Creates an empty document if none exists yet.

        Args:
            config: Runtime configuration (state_file, operation_log_limit)
        """
        self.state_file = Path(config.state_file)
        self.operation_log_limit = config.operation_log_limit
        self.state_file.parent.mkdir(parents=True, exist_ok=True, mode=0o750)

        if not self.state_file.exists():
            self._write(empty_document(), replace=False)

    def load(self) -> dict[str, Any]:
        """Read and parse the whole document.

        Returns:
            Parsed document (an empty document if the file does not exist)

        Raises:
            StateCorruptionError: If the document cannot be parsed
            StateIOError: If the document cannot be read
        """
        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return empty_document()
        except OSError as e:
            raise StateIOError(f"Cannot read state document {self.state_file}: {e}") from e

        try:
            document = json.loads(raw)
        except ValueError as e:
            raise StateCorruptionError(
                f"State document {self.state_file} is not valid JSON: {e}",
                details={"state_file": str(self.state_file)},
            ) from e

        if not self._has_valid_shape(document):
            raise StateCorruptionError(
                f"State document {self.state_file} has an unexpected structure",
                details={"state_file": str(self.state_file)},
            )
        return document

    def update_resource_state(
        self,
        resource: ResourceId,
        state: ResourceState,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ResourceRecord:
        """Record a new state for a resource.

        Metadata, when given, replaces the stored metadata; otherwise the stored
        metadata is kept.

        Args:
            resource: Resource identity
            state: New lifecycle state
            metadata: Caller-owned metadata (optional)

        Returns:
            The record as written

        Raises:
            ValueError: If the resource identity is invalid
            StateCorruptionError: If the current document cannot be parsed
            StateIOError: If the document cannot be written
        """
        resource.validate()
        document = self.load()

        existing = document["resources"].get(resource.key, {})
        record = ResourceRecord(
            resource=resource,
            state=state,
            timestamp=utc_now(),
            metadata=dict(metadata) if metadata is not None else dict(existing.get("metadata") or {}),
        )
        document["resources"][resource.key] = record.to_dict()
        self._write(document)

        logger.debug(f"State of {resource.key} -> {state.value}")
        return record

    def read_resource_state(self, resource: ResourceId) -> ResourceState:
        """Last recorded state of a resource, UNKNOWN if never recorded."""
        record = self.get_resource(resource)
        return record.state if record else ResourceState.UNKNOWN

    def get_resource(self, resource: ResourceId) -> Optional[ResourceRecord]:
        data = self.load()["resources"].get(resource.key)
        if data is None:
            return None
        return ResourceRecord.from_dict(resource.key, data)

    def list_resources(self, state: Optional[ResourceState] = None) -> list[ResourceRecord]:
        """All tracked resources, optionally filtered by state, sorted by key."""
        resources = self.load()["resources"]
        records = [ResourceRecord.from_dict(key, data) for key, data in sorted(resources.items())]
        if state is not None:
            records = [r for r in records if r.state == state]
        return records

    def record_operation(self, record: OperationRecord) -> None:
        """Append an entry to the operation log, dropping the oldest past the limit."""
        document = self.load()
        operations = document["operations"]
        operations.append(record.to_dict())
        document["operations"] = operations[-self.operation_log_limit :]
        self._write(document)

    def recent_operations(self, limit: int = 20) -> list[OperationRecord]:
        """Most recent operation log entries, newest last."""
        operations = self.load()["operations"]
        return [OperationRecord.from_dict(op) for op in operations[-limit:]] if limit > 0 else []

    def mark_cleanup(self) -> None:
        """Stamp the last cleanup time."""
        document = self.load()
        document["last_cleanup"] = to_iso(utc_now())
        self._write(document)

    def validate(self) -> bool:
        """Check that the document parses and has the expected structure.

        Returns:
            True if valid, False if corrupt

        Raises:
            StateIOError: If the document cannot be read at all
        """
        try:
            self.load()
        except StateCorruptionError as e:
            logger.warning(str(e))
            return False
        return True

    def backup_and_repair(self) -> Optional[Path]:
        """Move an unreadable document aside and start a fresh one.

        Returns:
            Path of the backup, or None if the document was valid and left alone

        Raises:
            StateIOError: If the backup or the new document cannot be written
        """
        if self.validate():
            logger.info(f"State document {self.state_file} is valid, no repair needed")
            return None

        backup = self.state_file.with_name(
            f"{self.state_file.name}.corrupt-{utc_now().strftime('%Y%m%d-%H%M%S-%f')}"
        )
        try:
            os.replace(self.state_file, backup)
        except FileNotFoundError:
            backup = None
        except OSError as e:
            raise StateIOError(f"Cannot move corrupt state document aside: {e}") from e

        self._write(empty_document())
        logger.warning(f"Corrupt state document moved to {backup} and reinitialized")
        return backup

    def _write(self, document: dict[str, Any], replace: bool = True) -> None:
        """Write the document through a temp file.

        With replace=False the temp file is hard-linked into place instead, so
        an existing document (e.g., one another process just created) wins.
        """
        document["timestamp"] = to_iso(utc_now())
        directory = self.state_file.parent

        try:
            fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{self.state_file.name}.", suffix=".tmp")
        except OSError as e:
            raise StateIOError(f"Cannot create temp file in {directory}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, sort_keys=True)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o640)
            if replace:
                os.replace(tmp_name, self.state_file)
                return
            try:
                os.link(tmp_name, self.state_file)
                logger.debug(f"Initialized state document at {self.state_file}")
            except FileExistsError:
                pass
            os.unlink(tmp_name)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise StateIOError(f"Cannot write state document {self.state_file}: {e}") from e

    @staticmethod
    def _has_valid_shape(document: Any) -> bool:
        return (
            isinstance(document, dict)
            and isinstance(document.get("resources"), dict)
            and isinstance(document.get("operations"), list)
        )
