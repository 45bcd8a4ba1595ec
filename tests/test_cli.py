"""Tests for CLI module."""

import asyncio
from ipaddress import ip_address
from unittest.mock import AsyncMock, patch

import pytest
import yaml
from click.testing import CliRunner

from ipwatcher import __version__
from ipwatcher.cli import main
from ipwatcher.errors import ConfigurationError
from ipwatcher.history import HistoryStore
from ipwatcher.watcher import CycleOutcome


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    """Minimal valid config file under tmp_path."""
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.dump(
            {
                "db_path": str(tmp_path / "history.db"),
                "lock_file": str(tmp_path / "ipwatcher.lock"),
                "smtp": {
                    "username": "u@example.com",
                    "app_password": "secret",
                    "from": "u@example.com",
                    "to": "me@example.com",
                },
            }
        )
    )
    return path


class TestCLIHelp:
    """Test CLI help output."""

    def test_cli_help(self, runner):
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "public IP" in result.output
        for command in ("run", "check", "history", "version"):
            assert command in result.output


class TestVersionCommand:
    """Test version command."""

    def test_version(self, runner):
        result = runner.invoke(main, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestCheckCommand:
    """Test the one-shot check."""

    def test_check_prints_outcome(self, runner, config_file):
        with patch(
            "ipwatcher.daemon.WatcherDaemon.check_once",
            new=AsyncMock(return_value=CycleOutcome.FIRST),
        ):
            result = runner.invoke(main, ["-c", str(config_file), "check"])

        assert result.exit_code == 0
        assert "Check result: first" in result.output

    def test_check_failure_exit_code(self, runner, config_file):
        with patch(
            "ipwatcher.daemon.WatcherDaemon.check_once",
            new=AsyncMock(return_value=CycleOutcome.RESOLVE_FAILED),
        ):
            result = runner.invoke(main, ["-c", str(config_file), "check"])

        assert result.exit_code == 2

    def test_check_with_incomplete_config(self, runner, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"ip_sources": []}))

        result = runner.invoke(main, ["-c", str(path), "check"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestRunCommand:
    """Test the long-running watcher command."""

    def test_run_starts_and_stops(self, runner, config_file, tmp_path):
        with patch("ipwatcher.daemon.WatcherDaemon") as daemon_class:
            daemon = daemon_class.return_value
            daemon.start = AsyncMock()
            daemon.run_forever = AsyncMock()

            result = runner.invoke(main, ["-c", str(config_file), "run", "--no-jitter"])

        assert result.exit_code == 0
        daemon.run_forever.assert_awaited_once_with(skip_jitter=True)
        assert not (tmp_path / "ipwatcher.lock").exists()

    def test_run_configuration_error(self, runner, config_file):
        with patch("ipwatcher.daemon.WatcherDaemon") as daemon_class:
            daemon_class.return_value.start = AsyncMock(
                side_effect=ConfigurationError("ip_sources is empty")
            )

            result = runner.invoke(main, ["-c", str(config_file), "run"])

        assert result.exit_code == 1
        assert "ip_sources is empty" in result.output

    def test_run_refuses_second_instance(self, runner, config_file, tmp_path):
        from ipwatcher.daemon_lock import DaemonLock

        with DaemonLock(tmp_path / "ipwatcher.lock"):
            result = runner.invoke(main, ["-c", str(config_file), "run"])

        assert result.exit_code == 1
        assert "already running" in result.output


class TestHistoryCommand:
    """Test history listing."""

    def test_history_without_database(self, runner, config_file):
        result = runner.invoke(main, ["-c", str(config_file), "history"])

        assert result.exit_code == 0
        assert "No addresses recorded yet" in result.output

    def test_history_lists_newest_first(self, runner, config_file, tmp_path):
        async def seed():
            async with HistoryStore(tmp_path / "history.db") as store:
                await store.append(ip_address("203.0.113.5"))
                await store.append(ip_address("198.51.100.9"))

        asyncio.run(seed())

        result = runner.invoke(main, ["-c", str(config_file), "history"])

        assert result.exit_code == 0
        rows = [
            line
            for line in result.output.splitlines()
            if line.endswith(("198.51.100.9", "203.0.113.5"))
        ]
        assert rows[0].endswith("198.51.100.9")
        assert rows[1].endswith("203.0.113.5")

    def test_history_limit(self, runner, config_file, tmp_path):
        async def seed():
            async with HistoryStore(tmp_path / "history.db") as store:
                for i in range(3):
                    await store.append(ip_address(f"203.0.113.{i}"))

        asyncio.run(seed())

        result = runner.invoke(main, ["-c", str(config_file), "history", "-n", "1"])

        assert "203.0.113.2" in result.output
        assert "203.0.113.0" not in result.output
