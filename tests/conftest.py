"""Pytest configuration and shared fixtures."""

from ipaddress import ip_address
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from ipwatcher.config import Config, SmtpConfig


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from ipwatcher.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def smtp_config():
    """Complete SMTP settings."""
    return SmtpConfig(
        username="watcher@example.com",
        app_password="abcd efgh ijkl mnop",
        sender="watcher@example.com",
        recipient="admin@example.com",
        server="smtp.example.com",
        port=587,
    )


@pytest.fixture
def valid_config(tmp_path, smtp_config):
    """Config that passes validation and writes under tmp_path."""
    return Config(
        db_path=str(tmp_path / "ip_history.db"),
        lock_file=str(tmp_path / "ipwatcher.lock"),
        smtp=smtp_config,
    )


def make_response(status: int = 200, text: str = "203.0.113.5\n"):
    """Mock aiohttp response usable as `async with session.get(...)`."""
    resp = AsyncMock()
    resp.status = status
    resp.text.return_value = text
    resp.__aenter__.return_value = resp
    resp.__aexit__.return_value = None
    return resp


def make_session(responses: dict):
    """Mock aiohttp session answering GETs by URL.

    Values are mock responses or exceptions to raise.
    """
    session = MagicMock(spec=aiohttp.ClientSession)

    def get(url, **kwargs):
        result = responses[url]
        if isinstance(result, BaseException):
            raise result
        return result

    session.get.side_effect = get
    return session


class FakeResolver:
    """Resolver returning a scripted sequence of addresses or errors."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def resolve(self, sources):
        self.calls.append(list(sources))
        idx = min(len(self.calls), len(self.results)) - 1
        result = self.results[idx]
        if isinstance(result, BaseException):
            raise result
        return ip_address(result)


class FakeStore:
    """In-memory history store with injectable failures."""

    def __init__(self, *addresses):
        self.addresses = [ip_address(a) for a in addresses]
        self.read_error = None
        self.write_error = None
        self.appended = []

    async def last_address(self):
        if self.read_error:
            raise self.read_error
        return self.addresses[-1] if self.addresses else None

    async def append(self, address):
        if self.write_error:
            raise self.write_error
        self.addresses.append(address)
        self.appended.append(address)


class FakeNotifier:
    """Notifier recording calls, optionally failing."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def notify(self, address, is_first_observation):
        self.calls.append((address, is_first_observation))
        if self.error:
            raise self.error


@pytest.fixture
def response_factory():
    return make_response


@pytest.fixture
def session_factory():
    return make_session


@pytest.fixture
def fakes():
    """Fake collaborators for IpWatcher tests."""

    class Fakes:
        Resolver = FakeResolver
        Store = FakeStore
        Notifier = FakeNotifier

    return Fakes
