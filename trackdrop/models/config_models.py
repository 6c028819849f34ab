"""Pydantic models for configuration validation"""

import logging
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from trackdrop.errors import InvalidCronExpressionError
from trackdrop.scheduler.cron import validate_cron_expression


logger = logging.getLogger(__name__)

PLACEHOLDER_VALUES = ['your-client-id-here', 'your-client-secret-here', 'placeholder', 'changeme']
PLAYLIST_ID_PATTERN = re.compile(r'^[A-Za-z0-9]+$')


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class SpotifyConfig(FrozenModel):
    """Spotify application credentials"""
    client_id: str = Field(..., description="Spotify client ID")
    client_secret: str = Field(..., description="Spotify client secret")
    refresh_token: str = Field(..., description="Long-lived refresh token")
    api_url: str = Field("https://api.spotify.com/v1", description="Web API base URL")
    token_url: str = Field("https://accounts.spotify.com/api/token", description="Token endpoint")

    @field_validator('client_id', 'client_secret', 'refresh_token')
    @classmethod
    def validate_not_empty(cls, v):
        if not v or v.strip() == '':
            raise ValueError('Field cannot be empty')
        if v in PLACEHOLDER_VALUES:
            raise ValueError('Value appears to be a placeholder')
        return v.strip()

    @field_validator('api_url', 'token_url')
    @classmethod
    def validate_url(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v.rstrip('/')


class PlaylistConfig(FrozenModel):
    """Playlists the bot reads from and writes to"""
    collaborative_playlist_id: str = Field(..., description="Playlist fed from chat links")
    discovery_playlist_id: str = Field(..., description="Playlist regenerated on schedule")

    @field_validator('collaborative_playlist_id', 'discovery_playlist_id')
    @classmethod
    def validate_playlist_id(cls, v):
        v = (v or '').strip()
        if not PLAYLIST_ID_PATTERN.match(v):
            raise ValueError('Playlist ID must be alphanumeric')
        return v

    @model_validator(mode='after')
    def validate_distinct(self):
        if self.collaborative_playlist_id == self.discovery_playlist_id:
            raise ValueError('Collaborative and discovery playlists must differ')
        return self


class RetryPolicy(FrozenModel):
    """Retry/backoff parameters shared by every API call"""
    max_attempts: int = Field(3, ge=1, le=10)
    base_delay_ms: int = Field(1000, ge=1)
    max_delay_ms: int = Field(30000, ge=1)
    multiplier: float = Field(2.0, ge=1.0)
    jitter: float = Field(0.25, ge=0.0, le=1.0)
    min_delay_ms: int = Field(100, ge=0)

    @model_validator(mode='after')
    def validate_delays(self):
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError('max_delay_ms must be >= base_delay_ms')
        return self


class ClientConfig(FrozenModel):
    """HTTP client limits"""
    request_timeout_seconds: float = Field(30.0, gt=0)
    lock_timeout_seconds: float = Field(5.0, gt=0)


class SchedulingConfig(FrozenModel):
    """Scheduling configuration"""
    enabled: bool = Field(True, description="Enable scheduled discovery generation")
    cron_expression: str = Field("0 12 * * MON", description="When to regenerate discovery")

    @field_validator('cron_expression')
    @classmethod
    def validate_cron(cls, v):
        try:
            return validate_cron_expression(v)
        except InvalidCronExpressionError as e:
            raise ValueError(str(e)) from e


class ChatConfig(FrozenModel):
    """Chat channel watched for links"""
    target_channel_id: int = Field(..., gt=0)


class MonitoringConfig(FrozenModel):
    """Monitoring configuration"""
    metrics_enabled: bool = Field(True, description="Enable Prometheus metrics")
    metrics_port: int = Field(9090, ge=1024, le=65535)


class LoggingConfig(FrozenModel):
    """Logging configuration"""
    level: str = Field("INFO", description="Log level")
    format: str = Field("text", description="Log format (text or json)")

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        allowed = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in allowed:
            raise ValueError(f'Log level must be one of: {", ".join(allowed)}')
        return v.upper()

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v.lower() not in ['text', 'json']:
            raise ValueError('Log format must be "text" or "json"')
        return v.lower()


class TrackDropConfig(FrozenModel):
    """Main TrackDrop configuration"""
    spotify: SpotifyConfig
    playlists: PlaylistConfig
    chat: ChatConfig
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    client: ClientConfig = Field(default_factory=ClientConfig)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode='after')
    def validate_config(self):
        """Validate overall configuration"""
        if self.retry.max_delay_ms > 5 * 60 * 1000:
            logger.warning("Retry max delay above 5 minutes; a stalled call will hold the client lock")
        if not self.scheduling.enabled:
            logger.warning("Scheduled discovery generation is disabled")
        return self
