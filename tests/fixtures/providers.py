"""Test fixtures: in-memory resource provider and configuration factory."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from cloudguard.config import Config
from cloudguard.exceptions import ProviderError
from cloudguard.models.resource import ResourceId
from cloudguard.provider.base import ResourceProvider

VOLUME = "AWS::EC2::Volume"
INSTANCE = "AWS::EC2::Instance"


def make_config(tmp_path: Path, **overrides: Any) -> Config:
    """Create a Config rooted in a temp directory with fast timings.

    Args:
        tmp_path: pytest temp directory
        **overrides: Config fields to override

    Returns:
        Config instance
    """
    values: Dict[str, Any] = {
        "home": tmp_path / ".cloudguard",
        "lock_timeout": 2.0,
        "lock_poll_interval": 0.05,
        "max_retries": 3,
        "backoff_base": 0.01,
        "backoff_max": 0.05,
    }
    values.update(overrides)
    config = Config(**values)
    config.ensure_directories()
    return config


class FakeProvider(ResourceProvider):
    """In-memory provider.

    Dependencies are declared as "dependent depends on dependency". Calls are
    counted per method and resource key, and failures can be scripted.

    Attributes:
        resources: Existing resources keyed by resource key
        dependents: Dependency key -> keys of resources depending on it
        calls: (method, resource key) for every call made
        deleted: Keys deleted, in order
        failures: (method, resource key) -> errors raised on successive calls
    """

    def __init__(self) -> None:
        self.resources: Dict[str, ResourceId] = {}
        self.dependents: Dict[str, List[str]] = {}
        self.calls: List[tuple] = []
        self.deleted: List[str] = []
        self.failures: Dict[tuple, List[Exception]] = {}

    @property
    def name(self) -> str:
        return "fake"

    def add(self, resource_type: str, name: str) -> ResourceId:
        resource = ResourceId(resource_type, name)
        self.resources[resource.key] = resource
        return resource

    def depends_on(self, dependent: ResourceId, dependency: ResourceId) -> None:
        self.dependents.setdefault(dependency.key, []).append(dependent.key)

    def fail(self, method: str, resource: ResourceId, *errors: Exception) -> None:
        """Raise the given errors on the next calls of method for resource."""
        self.failures.setdefault((method, resource.key), []).extend(errors)

    def call_count(self, method: str, resource: Optional[ResourceId] = None) -> int:
        return sum(1 for m, key in self.calls if m == method and (resource is None or key == resource.key))

    def _record(self, method: str, resource: ResourceId) -> None:
        self.calls.append((method, resource.key))
        pending = self.failures.get((method, resource.key))
        if pending:
            error = pending.pop(0)
            raise error

    def describe(self, resource: ResourceId) -> Optional[Dict[str, Any]]:
        self._record("describe", resource)
        if resource.key not in self.resources:
            return None
        return {"type": resource.resource_type, "name": resource.name}

    def dependents_of(self, resource: ResourceId) -> List[ResourceId]:
        self._record("dependents_of", resource)
        return [self.resources.get(key) or ResourceId.from_key(key) for key in self.dependents.get(resource.key, [])]

    def delete(self, resource: ResourceId) -> None:
        self._record("delete", resource)
        if resource.key in self.resources:
            del self.resources[resource.key]
            for keys in self.dependents.values():
                if resource.key in keys:
                    keys.remove(resource.key)
        self.deleted.append(resource.key)


class AlwaysFailingProvider(FakeProvider):
    """Provider whose every call raises the given error class."""

    def __init__(self, error_class: type = ProviderError) -> None:
        super().__init__()
        self.error_class = error_class

    def _record(self, method: str, resource: ResourceId) -> None:
        self.calls.append((method, resource.key))
        raise self.error_class(f"{method} failed for {resource.key}", resource=resource)
