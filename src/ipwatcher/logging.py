"""Logging setup for the ipwatcher process.

Everything logs under the "ipwatcher" logger tree. The level comes from
``log_level`` in the config file unless IPWATCHER_LOG_LEVEL is set in the
environment, which lets a one-off ``ipwatcher check`` run at DEBUG without
editing the config.
"""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from ipwatcher.config import Config

LOGGER_NAME = "ipwatcher"
LEVEL_ENV_VAR = "IPWATCHER_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured: Optional[logging.Logger] = None


def resolve_level(name: str) -> Optional[int]:
    """Map a level name such as "debug" to its numeric value, or None."""
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else None


def _handlers(log_file: Optional[str]) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path))
    return handlers


def setup_logging(
    config: Config, environ: Optional[Mapping[str, str]] = None
) -> logging.Logger:
    """Attach console and optional file handlers to the ipwatcher logger.

    Only the first call configures anything; later calls return the same
    logger untouched.

    Args:
        config: Supplies log_level and log_file.
        environ: Environment to read the level override from (defaults to
            os.environ).
    """
    global _configured
    if _configured is not None:
        return _configured

    env = os.environ if environ is None else environ
    requested = env.get(LEVEL_ENV_VAR) or config.log_level or "INFO"
    level = resolve_level(requested)

    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(level if level is not None else logging.INFO)
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in _handlers(config.log_file):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if level is None:
        logger.warning(f"Unknown log level {requested!r}, using INFO")

    _configured = logger
    return logger


def reset_logging() -> None:
    """Detach handlers so the next setup_logging() starts fresh. For tests."""
    global _configured
    if _configured is None:
        return
    for handler in list(_configured.handlers):
        _configured.removeHandler(handler)
        handler.close()
    _configured.propagate = True
    _configured = None
