"""Configuration for feeder.

Configuration is read once at process start from the environment (after
loading a ``.env`` file) and is immutable afterwards.
Database location: ~/.feeder/feeder.db (or FEEDER_DB_PATH env var)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from feeder.errors import ConfigError


DEFAULT_CHANNEL = "feeds"
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_WORKERS = 4
USER_AGENT = "Feeder/0.1 (RSS Feed Reader)"


def _default_db_path() -> Path:
    return Path.home() / ".feeder" / "feeder.db"


@dataclass(frozen=True)
class FeederConfig:
    """Process-wide settings.

    Attributes:
        notebrook_url: Base URL of the Notebrook notification service
        notebrook_token: Authorization token for Notebrook
        notebrook_channel: Channel name notifications are posted to
        db_path: Location of the SQLite database
        log_level: Logging level name
        http_timeout: Timeout in seconds for every outbound HTTP call
        max_workers: Maximum number of feeds processed concurrently
    """

    notebrook_url: Optional[str] = None
    notebrook_token: Optional[str] = None
    notebrook_channel: str = DEFAULT_CHANNEL
    db_path: Path = _default_db_path()
    log_level: str = "INFO"
    http_timeout: float = DEFAULT_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS

    @property
    def has_notifier(self) -> bool:
        return bool(self.notebrook_url and self.notebrook_token)

    def require_notifier(self) -> None:
        """Raise ConfigError unless the dispatcher endpoint and credential are set."""
        missing = [
            name
            for name, value in (
                ("NOTEBROOK_URL", self.notebrook_url),
                ("NOTEBROOK_TOKEN", self.notebrook_token),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing environment variable(s): {', '.join(missing)}")


def _parse_number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def load_config(
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[Path] = None,
) -> FeederConfig:
    """Build a FeederConfig from environment variables.

    Args:
        env: Mapping to read instead of os.environ (used by tests)
        dotenv_path: Explicit .env file; defaults to searching from the cwd

    Returns:
        Immutable configuration
    """
    if env is None:
        load_dotenv(dotenv_path=dotenv_path)
        env = os.environ

    db_path = env.get("FEEDER_DB_PATH")

    return FeederConfig(
        notebrook_url=env.get("NOTEBROOK_URL") or None,
        notebrook_token=env.get("NOTEBROOK_TOKEN") or None,
        notebrook_channel=env.get("NOTEBROOK_CHANNEL") or DEFAULT_CHANNEL,
        db_path=Path(db_path).expanduser() if db_path else _default_db_path(),
        log_level=(env.get("FEEDER_LOG_LEVEL") or "INFO").upper(),
        http_timeout=_parse_number(env, "FEEDER_HTTP_TIMEOUT", DEFAULT_TIMEOUT, float),
        max_workers=_parse_number(env, "FEEDER_MAX_WORKERS", DEFAULT_MAX_WORKERS, int),
    )
