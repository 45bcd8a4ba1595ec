"""Base exceptions for ipwatcher."""

from dataclasses import dataclass


class IpWatcherError(Exception):
    """Base exception for all ipwatcher errors."""

    pass


class ConfigurationError(IpWatcherError):
    """Configuration is invalid. Fatal at startup."""

    pass


class ResolutionError(IpWatcherError):
    """Current public address could not be determined."""

    pass


class NoSourcesError(ResolutionError, ConfigurationError):
    """Resolver was given an empty source list."""

    def __init__(self) -> None:
        super().__init__("No IP sources configured")


@dataclass(frozen=True)
class SourceFailure:
    """Why a single address source was skipped."""

    source: str
    reason: str

    def __str__(self) -> str:
        return f"{self.source}: {self.reason}"


class AllSourcesFailedError(ResolutionError):
    """Every source failed or returned invalid data."""

    def __init__(self, failures: list[SourceFailure]):
        self.failures = list(failures)
        detail = "; ".join(str(f) for f in self.failures)
        super().__init__(f"All IP sources failed or returned invalid data ({detail})")


class StoreError(IpWatcherError):
    """History store operation error."""

    pass


class StoreReadError(StoreError):
    """Reading from the history store failed."""

    pass


class StoreWriteError(StoreError):
    """Appending to the history store failed."""

    pass


class NotifyError(IpWatcherError):
    """Notification could not be sent."""

    pass
