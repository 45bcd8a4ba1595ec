"""Configuration management for ipwatcher."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

from ipwatcher.errors import ConfigurationError


DEFAULT_IP_SOURCES = [
    "https://api.ipify.org",
    "https://ifconfig.me/ip",
    "https://ident.me",
    "https://checkip.amazonaws.com",
]


@dataclass
class SmtpConfig:
    """Outbound mail relay and identities."""

    username: str = ""
    app_password: str = ""
    sender: str = ""  # "from" in the YAML file
    recipient: str = ""  # "to" in the YAML file
    server: str = "smtp.gmail.com"
    port: int = 587
    timeout: float = 30.0  # seconds


@dataclass
class JitterConfig:
    """Randomized delay before the first check."""

    min: float = 180.0  # seconds
    max: float = 360.0  # seconds


@dataclass
class Config:
    """Watcher configuration."""

    check_interval: float = 300.0  # seconds
    db_path: str = "~/.local/share/ipwatcher/ip_history.db"
    ip_sources: list[str] | None = None  # None -> DEFAULT_IP_SOURCES
    request_timeout: float = 10.0  # seconds
    log_level: str = "INFO"
    log_file: str | None = None
    lock_file: str = "~/.config/ipwatcher/ipwatcher.lock"
    startup_jitter: JitterConfig = field(default_factory=JitterConfig)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)

    @property
    def sources(self) -> list[str]:
        """Sources to query, falling back to the built-in list."""
        if self.ip_sources is None:
            return DEFAULT_IP_SOURCES.copy()
        return list(self.ip_sources)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "ipwatcher" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        return yaml.safe_load(content)
    except yaml.YAMLError:
        return None


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if data is None:
        return Config()

    smtp_data = data.get("smtp") or {}
    smtp_config = SmtpConfig(
        username=smtp_data.get("username", SmtpConfig.username),
        app_password=str(smtp_data.get("app_password", SmtpConfig.app_password)),
        sender=smtp_data.get("from", SmtpConfig.sender),
        recipient=smtp_data.get("to", SmtpConfig.recipient),
        server=smtp_data.get("server", SmtpConfig.server),
        port=smtp_data.get("port", SmtpConfig.port),
        timeout=smtp_data.get("timeout", SmtpConfig.timeout),
    )

    jitter_data = data.get("startup_jitter") or {}
    jitter_config = JitterConfig(
        min=jitter_data.get("min", JitterConfig.min),
        max=jitter_data.get("max", JitterConfig.max),
    )

    return Config(
        check_interval=data.get("check_interval", Config.check_interval),
        db_path=data.get("db_path", Config.db_path),
        ip_sources=data.get("ip_sources", Config.ip_sources),
        request_timeout=data.get("request_timeout", Config.request_timeout),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        lock_file=data.get("lock_file", Config.lock_file),
        startup_jitter=jitter_config,
        smtp=smtp_config,
    )


def validate_config(config: Config) -> None:
    """Check that the configuration can run a watcher.

    Raises:
        ConfigurationError: On the first problem found.
    """
    if config.ip_sources is not None:
        if not isinstance(config.ip_sources, list):
            raise ConfigurationError(
                f"ip_sources must be a list of URLs, got {type(config.ip_sources).__name__}"
            )
        if not config.ip_sources:
            raise ConfigurationError("ip_sources is empty; omit it to use the defaults")
        bad = [s for s in config.ip_sources if not isinstance(s, str) or not s.strip()]
        if bad:
            raise ConfigurationError(f"Invalid ip_sources entries: {bad!r}")

    missing = [
        name
        for name, value in (
            ("smtp.username", config.smtp.username),
            ("smtp.app_password", config.smtp.app_password),
            ("smtp.from", config.smtp.sender),
            ("smtp.to", config.smtp.recipient),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    if not 0 < config.smtp.port < 65536:
        raise ConfigurationError(f"Invalid smtp.port: {config.smtp.port}")

    jitter = config.startup_jitter
    if jitter.min < 0 or jitter.min > jitter.max:
        raise ConfigurationError(
            f"Invalid startup_jitter range: {jitter.min}..{jitter.max}"
        )

    # Values below the floor are clamped by the watcher
    interval = config.check_interval
    if isinstance(interval, bool) or not isinstance(interval, (int, float)):
        raise ConfigurationError(f"check_interval must be a number, got {interval!r}")
