"""Tests for ErrorReport model and the error taxonomy."""

from __future__ import annotations

from datetime import datetime

from cloudguard.models.error_report import ErrorCategory, ErrorReport, RecoveryOutcome, TerminalState


class TestErrorCategory:
    """Test suite for ErrorCategory."""

    def test_codes_are_unique(self) -> None:
        """Test every category has its own numeric code."""
        codes = [category.code for category in ErrorCategory]

        assert len(codes) == len(set(codes))

    def test_code_ranges(self) -> None:
        """Test codes fall in the system, resource and provider ranges."""
        assert ErrorCategory.STATE_CORRUPTION.code == 3
        assert ErrorCategory.LOCK_TIMEOUT.code == 4
        assert ErrorCategory.DEPENDENCY_CYCLE.code == 103
        assert ErrorCategory.PROVIDER_RATE_LIMITED.code == 201

    def test_every_category_has_resolution(self) -> None:
        """Test each category carries suggested resolution text."""
        for category in ErrorCategory:
            assert category.resolution


class TestErrorReport:
    """Test suite for ErrorReport model."""

    def test_to_dict(self) -> None:
        """Test the persisted report layout."""
        report = ErrorReport(
            error_id="ERR-20261018-101500-201-0001",
            category=ErrorCategory.PROVIDER_RATE_LIMITED,
            message="Throttling: Rate exceeded",
            context="delete AWS::EC2::Volume/vol-1",
            created_at=datetime(2026, 10, 18, 10, 15, 0),
            recovery_outcome=RecoveryOutcome.FAILED,
            terminal_state=TerminalState.REPORTED,
            attempts=4,
            resource_key="AWS::EC2::Volume/vol-1",
        )

        data = report.to_dict()

        assert data["metadata"]["log_type"] == "error_report"
        assert data["error"]["category"] == "provider_rate_limited"
        assert data["error"]["code"] == 201
        assert data["error"]["created_at"] == "2026-10-18T10:15:00Z"
        assert data["error"]["recovery_outcome"] == "failed"
        assert data["error"]["terminal_state"] == "reported"
        assert data["error"]["resolution"] == ErrorCategory.PROVIDER_RATE_LIMITED.resolution
        assert data["log_tail"] == []
        assert report.succeeded is False

    def test_not_attempted_value(self) -> None:
        """Test the not-attempted outcome keeps its hyphenated name."""
        assert RecoveryOutcome.NOT_ATTEMPTED.value == "not-attempted"
