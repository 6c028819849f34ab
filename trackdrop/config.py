"""Configuration management for TrackDrop"""

import logging
import os
from pathlib import Path
from typing import Any, Dict

from pydantic import ValidationError

from trackdrop.errors import ConfigError
from trackdrop.models.config_models import TrackDropConfig
from trackdrop.utils.secrets import SECRETS_DIR, load_secret


logger = logging.getLogger(__name__)

REQUIRED_VARS = {
    "SPOTIFY_CLIENT_ID": "Spotify application client ID",
    "SPOTIFY_CLIENT_SECRET": "Spotify application client secret",
    "SPOTIFY_REFRESH_TOKEN": "Refresh token (python -m trackdrop.tools.refresh_token)",
    "TARGET_CHANNEL_ID": "Chat channel watched for track links",
    "COLLABORATIVE_PLAYLIST_ID": "Playlist that collects shared tracks",
    "DISCOVERY_PLAYLIST_ID": "Playlist regenerated on schedule",
}

ENV_TEMPLATE = """\
# Spotify application (https://developer.spotify.com/dashboard)
SPOTIFY_CLIENT_ID=your-client-id-here
SPOTIFY_CLIENT_SECRET=your-client-secret-here
SPOTIFY_REFRESH_TOKEN=

# Chat channel and playlists
TARGET_CHANNEL_ID=
COLLABORATIVE_PLAYLIST_ID=
DISCOVERY_PLAYLIST_ID=

# Discovery schedule (cron, UTC)
SCHEDULE_ENABLED=true
WEEKLY_SCHEDULE_CRON=0 12 * * MON

# API client
MAX_RETRY_ATTEMPTS=3
RETRY_BASE_DELAY_MS=1000
RETRY_MAX_DELAY_MS=30000
REQUEST_TIMEOUT_SECONDS=30
CLIENT_LOCK_TIMEOUT_SECONDS=5

# Monitoring and logging
METRICS_ENABLED=true
METRICS_PORT=9090
LOG_LEVEL=INFO
LOG_FORMAT=text
"""


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: str, kind=int):
    raw = os.getenv(name, default).strip()
    try:
        return kind(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def load_config_from_env(secrets_dir: Path = SECRETS_DIR) -> Dict[str, Any]:
    """Load configuration from environment variables.

    Credentials may also come from Docker secret files.

    Returns:
        Nested configuration dictionary for ``validate_config``

    Raises:
        ConfigError: If required variables are missing or a number is malformed
    """
    logger.info("Loading configuration from environment variables...")

    values = {name: load_secret(name, secrets_dir=secrets_dir) for name in REQUIRED_VARS}
    missing = [name for name, value in values.items() if not value]
    if missing:
        logger.error("❌ Missing required environment variables: %s", ", ".join(missing))
        for name in missing:
            logger.error("  %-26s - %s", name, REQUIRED_VARS[name])
        raise ConfigError(
            f"Missing required environment variables: {', '.join(missing)}", missing=missing
        )

    try:
        channel_id = int(values["TARGET_CHANNEL_ID"])
    except ValueError:
        raise ConfigError("TARGET_CHANNEL_ID must be a numeric channel ID") from None

    return {
        "spotify": {
            "client_id": values["SPOTIFY_CLIENT_ID"],
            "client_secret": values["SPOTIFY_CLIENT_SECRET"],
            "refresh_token": values["SPOTIFY_REFRESH_TOKEN"],
        },
        "playlists": {
            "collaborative_playlist_id": values["COLLABORATIVE_PLAYLIST_ID"],
            "discovery_playlist_id": values["DISCOVERY_PLAYLIST_ID"],
        },
        "chat": {
            "target_channel_id": channel_id,
        },
        "retry": {
            "max_attempts": _env_number("MAX_RETRY_ATTEMPTS", "3"),
            "base_delay_ms": _env_number("RETRY_BASE_DELAY_MS", "1000"),
            "max_delay_ms": _env_number("RETRY_MAX_DELAY_MS", "30000"),
        },
        "client": {
            "request_timeout_seconds": _env_number("REQUEST_TIMEOUT_SECONDS", "30", float),
            "lock_timeout_seconds": _env_number("CLIENT_LOCK_TIMEOUT_SECONDS", "5", float),
        },
        "scheduling": {
            "enabled": _env_bool("SCHEDULE_ENABLED", "true"),
            "cron_expression": os.getenv("WEEKLY_SCHEDULE_CRON", "0 12 * * MON"),
        },
        "monitoring": {
            "metrics_enabled": _env_bool("METRICS_ENABLED", "true"),
            "metrics_port": _env_number("METRICS_PORT", "9090"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "format": os.getenv("LOG_FORMAT", "text"),
        },
    }


def validate_config(config: Dict[str, Any]) -> TrackDropConfig:
    """Validate configuration using Pydantic models.

    Args:
        config: Configuration dictionary

    Returns:
        Validated, immutable TrackDropConfig

    Raises:
        ConfigError: If any section fails validation
    """
    try:
        validated_config = TrackDropConfig(**config)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]
        logger.error("Configuration validation failed: %s", "; ".join(problems))
        raise ConfigError("Invalid configuration: " + "; ".join(problems)) from e

    logger.info("✓ Configuration validation passed")
    return validated_config


def load_config(secrets_dir: Path = SECRETS_DIR) -> TrackDropConfig:
    """Load and validate configuration from the environment."""
    return validate_config(load_config_from_env(secrets_dir))
