"""Base class for resource providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from ..models.resource import ResourceId


class ResourceProvider(ABC):
    """Abstract interface to the remote resource-management API.

    Every call may be slow, rate limited or fail transiently. Implementations
    report failures by raising the ProviderError subclasses from
    cloudguard.exceptions so the recovery coordinator can classify them.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider name used in logs and reports (e.g., "aws")."""
        pass

    @abstractmethod
    def describe(self, resource: ResourceId) -> Optional[dict[str, Any]]:
        """Fetch the descriptor of a resource.

        Returns:
            Provider descriptor, or None if the resource does not exist
        """
        pass

    @abstractmethod
    def dependents_of(self, resource: ResourceId) -> List[ResourceId]:
        """Immediate dependents of a resource (resources that require it to exist).

        Returns:
            List of dependent identities (empty if none)
        """
        pass

    @abstractmethod
    def delete(self, resource: ResourceId) -> None:
        """Delete a resource. Deleting an already-deleted resource succeeds."""
        pass
