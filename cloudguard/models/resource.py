"""Resource identity and tracked resource state.

A resource is identified by its (type, name) pair. The state store keeps one
record per identity and never erases it; deletion is recorded as a state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from cloudguard.utils.timeutil import from_iso, to_iso

_CONTROL_OR_SPACE = re.compile(r"[\s\x00-\x1f\x7f]")

MAX_NAME_LENGTH = 255


class ResourceState(Enum):
    """Lifecycle state of a tracked resource."""

    UNKNOWN = "unknown"
    UNLOCKED = "unlocked"
    LOCKED = "locked"
    MUTATING = "mutating"
    DELETED = "deleted"


@dataclass(frozen=True, order=True)
class ResourceId:
    """Resource identity.

    Attributes:
        resource_type: Provider resource type (e.g., "AWS::EC2::Volume")
        name: Provider resource identifier (e.g., "vol-0abc")
    """

    resource_type: str
    name: str

    @property
    def key(self) -> str:
        """Canonical string key used in the state document and lock names."""
        return f"{self.resource_type}/{self.name}"

    @classmethod
    def from_key(cls, key: str) -> ResourceId:
        """Parse a canonical key back into an identity.

        The type never contains "/" but names may (e.g., IAM paths), so the key
        is split on the first separator only.

        Raises:
            ValueError: If the key has no type/name separator
        """
        resource_type, sep, name = key.partition("/")
        if not sep or not resource_type or not name:
            raise ValueError(f"Invalid resource key: {key!r}")
        return cls(resource_type=resource_type, name=name)

    def validate(self) -> bool:
        """Validate identity invariants.

        Returns:
            True if validation passes

        Raises:
            ValueError: If any validation rule fails
        """
        if not self.resource_type or not self.name:
            raise ValueError("Resource type and name are required")

        if "/" in self.resource_type:
            raise ValueError(f"Resource type cannot contain '/': {self.resource_type}")

        for part in (self.resource_type, self.name):
            if _CONTROL_OR_SPACE.search(part):
                raise ValueError(f"Resource identity contains whitespace or control characters: {part!r}")

        if len(self.name) > MAX_NAME_LENGTH:
            raise ValueError(f"Resource name longer than {MAX_NAME_LENGTH} characters")

        return True

    def __str__(self) -> str:
        return self.key


@dataclass
class ResourceRecord:
    """Last known state of a resource as stored in the state document.

    Attributes:
        resource: Resource identity
        state: Lifecycle state
        timestamp: When the state was last written (UTC)
        metadata: Caller-owned metadata (zone, size, ...), opaque to the core
    """

    resource: ResourceId
    state: ResourceState
    timestamp: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.resource.resource_type,
            "name": self.resource.name,
            "state": self.state.value,
            "timestamp": to_iso(self.timestamp),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, key: str, data: dict[str, Any]) -> ResourceRecord:
        if "type" in data and "name" in data:
            resource = ResourceId(resource_type=data["type"], name=data["name"])
        else:
            resource = ResourceId.from_key(key)

        return cls(
            resource=resource,
            state=ResourceState(data.get("state", ResourceState.UNKNOWN.value)),
            timestamp=from_iso(data.get("timestamp")),
            metadata=dict(data.get("metadata") or {}),
        )
