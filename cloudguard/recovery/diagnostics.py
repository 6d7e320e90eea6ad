"""Diagnostics storage for error reports.

Stores and retrieves error reports in YAML format for troubleshooting.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml

from cloudguard.models.error_report import ErrorCategory, ErrorReport
from cloudguard.utils.timeutil import from_iso

logger = logging.getLogger(__name__)

MAX_SEQUENCE = 9999


def make_error_id(category: ErrorCategory, created_at: datetime, sequence: int) -> str:
    """Build an error identifier: ERR-YYYYMMDD-HHMMSS-CCC-NNNN."""
    return f"ERR-{created_at.strftime('%Y%m%d-%H%M%S')}-{category.code:03d}-{sequence:04d}"


class DiagnosticsStorage:
    """Error report storage and retrieval.

    Stores one YAML file per report, organized by year/month. Files are
    created exclusively, so two processes failing in the same second can
    never overwrite each other's report.

    Storage structure:
        ~/.cloudguard/diagnostics/
            2026/
                10/
                    error-ERR-20261018-101500-201-0001.yaml
                    error-ERR-20261018-101500-201-0002.yaml

    Attributes:
        storage_dir: Base directory for error reports
    """

    def __init__(self, storage_dir: Path) -> None:
        """Initialize diagnostics storage.

        Args:
            storage_dir: Base directory for error reports
        """
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True, mode=0o750)

    def save(self, report: ErrorReport) -> ErrorReport:
        """Persist a report under a fresh identifier.

        The identifier's sequence number is bumped until an unused file name
        is found; the caller's error_id is replaced.

        Args:
            report: Report to store

        Returns:
            The report as stored (with its final error_id)

        Raises:
            OSError: If the report cannot be written
        """
        created_at = report.created_at
        month_dir = self.storage_dir / str(created_at.year) / f"{created_at.month:02d}"
        month_dir.mkdir(parents=True, exist_ok=True, mode=0o750)

        for sequence in range(1, MAX_SEQUENCE + 1):
            error_id = make_error_id(report.category, created_at, sequence)
            stored = dataclasses.replace(report, error_id=error_id)
            report_file = month_dir / f"error-{error_id}.yaml"
            try:
                with open(report_file, "x", encoding="utf-8") as f:
                    yaml.safe_dump(stored.to_dict(), f, default_flow_style=False, sort_keys=False)
            except FileExistsError:
                continue
            logger.debug(f"Wrote error report {report_file}")
            return stored

        raise OSError(f"No free error report sequence left in {month_dir}")

    def get_report(self, error_id: str) -> Optional[dict]:
        """Retrieve a report by identifier.

        Args:
            error_id: Error identifier

        Returns:
            Report dictionary if found, None otherwise
        """
        for report_file in self.storage_dir.glob(f"*/*/error-{error_id}.yaml"):
            with open(report_file, "r", encoding="utf-8") as f:
                return yaml.safe_load(f)
        return None

    def query_reports(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        category: Optional[ErrorCategory] = None,
    ) -> list[dict]:
        """Query reports within a date range.

        Args:
            since: Start date (inclusive), None for all
            until: End date (inclusive), None for all
            category: Only reports of this category, None for all

        Returns:
            Matching reports, oldest first
        """
        results = []

        for year_dir in sorted(self.storage_dir.glob("*")):
            if not year_dir.is_dir():
                continue

            for month_dir in sorted(year_dir.glob("*")):
                if not month_dir.is_dir():
                    continue

                for report_file in sorted(month_dir.glob("error-*.yaml")):
                    with open(report_file, "r", encoding="utf-8") as f:
                        data = yaml.safe_load(f)

                    error = data.get("error") if isinstance(data, dict) else None
                    if not isinstance(error, dict):
                        logger.warning(f"Skipping malformed error report {report_file}")
                        continue

                    created_at = from_iso(error.get("created_at"))
                    if since and (created_at is None or created_at < since):
                        continue
                    if until and (created_at is None or created_at > until):
                        continue
                    if category and error.get("category") != category.value:
                        continue

                    results.append(data)

        results.sort(key=lambda d: (d["error"].get("created_at") or "", d["error"].get("error_id") or ""))
        return results
