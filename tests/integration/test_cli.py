"""Integration tests for the cloudguard CLI."""

from __future__ import annotations

import json
import re
from pathlib import Path
from unittest.mock import patch

import pytest
from rich.console import Console
from typer.testing import CliRunner

from cloudguard.cli.main import app
from cloudguard.exceptions import ProviderPermissionDeniedError
from cloudguard.locking.manager import LockManager
from cloudguard.models.resource import ResourceId
from tests.fixtures.providers import INSTANCE, VOLUME, FakeProvider, make_config

runner = CliRunner()

ERROR_ID = re.compile(r"ERR-\d{8}-\d{6}-\d{3}-\d{4}")


class TestCLI:
    """Test suite for CLI commands."""

    @pytest.fixture
    def home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
        home = tmp_path / ".cloudguard"
        monkeypatch.setenv("CLOUDGUARD_HOME", str(home))
        monkeypatch.setenv("CLOUDGUARD_LOCK_TIMEOUT", "0.2")
        monkeypatch.setenv("CLOUDGUARD_MAX_RETRIES", "1")
        return home

    @pytest.fixture
    def provider(self) -> FakeProvider:
        provider = FakeProvider()
        disk = provider.add(VOLUME, "disk-1")
        instance = provider.add(INSTANCE, "instance-1")
        provider.depends_on(instance, disk)
        return provider

    @pytest.fixture(autouse=True)
    def cli_environment(self):
        """Keep the test process signal handlers and use a wide console."""
        with patch("cloudguard.cli.main.signal.signal"), patch("cloudguard.cli.main.console", Console(width=200)):
            yield

    def test_version(self, home: Path) -> None:
        """Test version command prints the package version."""
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert "cloudguard version" in result.stdout

    def test_callback_creates_layout(self, home: Path) -> None:
        """Test the persisted layout is created on startup."""
        runner.invoke(app, ["locks", "list"])

        for name in ("locks", "state", "diagnostics", "logs"):
            assert (home / name).is_dir()
        assert list((home / "logs").glob("cloudguard_*.log"))

    def test_locks_list_empty(self, home: Path) -> None:
        """Test listing locks when none are held."""
        result = runner.invoke(app, ["locks", "list"])

        assert result.exit_code == 0
        assert "No locks held" in result.stdout

    def test_locks_list_shows_holder(self, home: Path) -> None:
        """Test held locks are listed with their owner."""
        manager = LockManager(make_config(home.parent, home=home))
        manager.acquire(ResourceId(VOLUME, "disk-1"))

        result = runner.invoke(app, ["locks", "list"])

        assert result.exit_code == 0
        assert "disk-1" in result.stdout
        assert "alive" in result.stdout

    def test_locks_reclaim_refuses_live_owner(self, home: Path) -> None:
        """Test reclaim exits 1 when the owner is still running."""
        manager = LockManager(make_config(home.parent, home=home))
        manager.acquire(ResourceId(VOLUME, "disk-1"))

        result = runner.invoke(app, ["locks", "reclaim", f"{VOLUME}/disk-1"])

        assert result.exit_code == 1
        assert manager.get_lock(ResourceId(VOLUME, "disk-1")) is not None

    def test_invalid_resource_argument(self, home: Path) -> None:
        """Test a malformed resource argument exits 1."""
        result = runner.invoke(app, ["locks", "reclaim", "no-separator"])

        assert result.exit_code == 1
        assert "Invalid resource" in result.stdout

    def test_state_validate_and_repair(self, home: Path) -> None:
        """Test validate reports corruption and --repair fixes it."""
        runner.invoke(app, ["state", "validate"])
        state_file = home / "state" / "current_state.json"
        state_file.write_text("not json")

        result = runner.invoke(app, ["state", "validate"])
        assert result.exit_code == 1
        assert "corrupt" in result.stdout

        result = runner.invoke(app, ["state", "validate", "--repair"])
        assert result.exit_code == 0
        assert "repaired" in result.stdout
        assert json.loads(state_file.read_text())["resources"] == {}

    def test_state_show_rejects_unknown_state(self, home: Path) -> None:
        """Test an unknown --state value exits 1."""
        result = runner.invoke(app, ["state", "show", "--state", "melted"])

        assert result.exit_code == 1

    def test_deps_check_blocked(self, home: Path, provider: FakeProvider) -> None:
        """Test deps check exits 1 and names the dependent."""
        with patch("cloudguard.cli.main.build_provider", return_value=provider):
            result = runner.invoke(app, ["deps", "check", f"{VOLUME}/disk-1"])

        assert result.exit_code == 1
        assert "instance-1" in result.stdout
        assert "cannot be deleted" in result.stdout

    def test_delete_rejected(self, home: Path, provider: FakeProvider) -> None:
        """Test delete of a resource in use exits 1 and deletes nothing."""
        with patch("cloudguard.cli.main.build_provider", return_value=provider):
            result = runner.invoke(app, ["delete", f"{VOLUME}/disk-1", "--confirm"])

        assert result.exit_code == 1
        assert "Nothing was deleted" in result.stdout
        assert provider.call_count("delete") == 0

    def test_delete_dry_run(self, home: Path, provider: FakeProvider) -> None:
        """Test --dry-run shows the cascade order without deleting."""
        with patch("cloudguard.cli.main.build_provider", return_value=provider):
            result = runner.invoke(app, ["delete", f"{VOLUME}/disk-1", "--cascade", "--dry-run"])

        assert result.exit_code == 0
        assert "Deletion Order" in result.stdout
        assert provider.call_count("delete") == 0

    def test_delete_cancelled_at_prompt(self, home: Path, provider: FakeProvider) -> None:
        """Test answering no at the prompt deletes nothing."""
        with patch("cloudguard.cli.main.build_provider", return_value=provider):
            result = runner.invoke(app, ["delete", f"{INSTANCE}/instance-1"], input="n\n")

        assert result.exit_code == 0
        assert "Cancelled" in result.stdout
        assert provider.call_count("delete") == 0

    def test_delete_cascade(self, home: Path, provider: FakeProvider) -> None:
        """Test a confirmed cascade deletes both resources."""
        with patch("cloudguard.cli.main.build_provider", return_value=provider):
            result = runner.invoke(app, ["delete", f"{VOLUME}/disk-1", "--cascade", "--confirm"])

        assert result.exit_code == 0
        assert provider.deleted == [f"{INSTANCE}/instance-1", f"{VOLUME}/disk-1"]

    def test_delete_failure_prints_error_id(self, home: Path, provider: FakeProvider) -> None:
        """Test a failed deletion exits 2 with an error id that errors show can open."""
        instance = ResourceId(INSTANCE, "instance-1")
        provider.fail("delete", instance, ProviderPermissionDeniedError("UnauthorizedOperation", resource=instance))

        with patch("cloudguard.cli.main.build_provider", return_value=provider):
            result = runner.invoke(app, ["delete", instance.key, "--confirm"])

        assert result.exit_code == 2
        error_ids = ERROR_ID.findall(result.stdout)
        assert len(set(error_ids)) == 1
        assert result.stdout.count(f"Error ID: {error_ids[0]}") == 1

        listed = runner.invoke(app, ["errors", "list"])
        assert listed.exit_code == 0
        assert "provider_permission_denied" in listed.stdout

        shown = runner.invoke(app, ["errors", "show", error_ids[0]])
        assert shown.exit_code == 0
        assert "UnauthorizedOperation" in shown.stdout

    def test_errors_show_unknown(self, home: Path) -> None:
        """Test showing an unknown error id exits 1."""
        result = runner.invoke(app, ["errors", "show", "ERR-20260101-000000-001-0001"])

        assert result.exit_code == 1

    def test_errors_list_bad_date(self, home: Path) -> None:
        """Test an invalid --since date exits 1."""
        result = runner.invoke(app, ["errors", "list", "--since", "yesterday"])

        assert result.exit_code == 1
