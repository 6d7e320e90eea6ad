"""Lock entry model.

A lock entry is the persisted record of exclusive ownership of a resource.
Its existence on disk is the grant; there is no separate held/free flag.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from cloudguard.models.resource import ResourceId
from cloudguard.utils.timeutil import from_iso, to_iso


@dataclass(frozen=True)
class LockInfo:
    """Lock entry contents.

    Attributes:
        resource: Locked resource identity
        pid: Owner process identifier
        label: Human-readable owner label ("host:pid")
        host: Host the owner was running on
        start_time: Owner process start time (epoch seconds), guards PID reuse
        acquired_at: When the lock was acquired (UTC)
    """

    resource: ResourceId
    pid: int
    label: str
    host: str
    start_time: float
    acquired_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.resource.key,
            "pid": self.pid,
            "label": self.label,
            "host": self.host,
            "start_time": self.start_time,
            "acquired_at": to_iso(self.acquired_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockInfo:
        """Build a LockInfo from a parsed lock entry.

        Raises:
            ValueError: If a required field is missing or malformed
        """
        try:
            return cls(
                resource=ResourceId.from_key(str(data["resource"])),
                pid=int(data["pid"]),
                label=str(data.get("label", "")),
                host=str(data.get("host", "")),
                start_time=float(data.get("start_time", 0.0)),
                acquired_at=from_iso(str(data["acquired_at"])),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed lock entry: {e}") from e
