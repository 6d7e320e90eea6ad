"""Tests for LockInfo model."""

from __future__ import annotations

from datetime import datetime

import pytest

from cloudguard.models.lock import LockInfo
from cloudguard.models.resource import ResourceId


@pytest.fixture
def info() -> LockInfo:
    return LockInfo(
        resource=ResourceId("AWS::EC2::Volume", "vol-1"),
        pid=4242,
        label="builder:4242",
        host="builder",
        start_time=1760780000.25,
        acquired_at=datetime(2026, 10, 18, 10, 15, 0),
    )


class TestLockInfo:
    """Test suite for LockInfo model."""

    def test_dict_round_trip(self, info: LockInfo) -> None:
        """Test a lock entry survives serialization."""
        data = info.to_dict()

        assert data["resource"] == "AWS::EC2::Volume/vol-1"
        assert data["acquired_at"] == "2026-10-18T10:15:00Z"
        assert LockInfo.from_dict(data) == info

    def test_from_dict_missing_field(self) -> None:
        """Test a lock entry without a pid is malformed."""
        with pytest.raises(ValueError, match="Malformed lock entry"):
            LockInfo.from_dict({"resource": "AWS::EC2::Volume/vol-1", "acquired_at": "2026-10-18T10:15:00Z"})

    def test_from_dict_bad_pid(self) -> None:
        """Test a non-numeric pid is rejected."""
        with pytest.raises(ValueError):
            LockInfo.from_dict(
                {"resource": "AWS::EC2::Volume/vol-1", "pid": "abc", "acquired_at": "2026-10-18T10:15:00Z"}
            )
