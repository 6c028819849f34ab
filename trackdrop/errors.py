"""Error taxonomy for TrackDrop

Every exception carries an explicit ``category`` (what the chat layer tells the
user) and ``retryable`` flag, both fixed where the error is raised.
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """User-facing error categories"""
    DUPLICATE = "duplicate"
    RATE_LIMITED = "rate_limited"
    PERMISSION = "permission"
    NETWORK = "network"
    NOT_FOUND = "not_found"
    AUTH = "auth"
    INVALID_INPUT = "invalid_input"
    GENERIC = "generic"


class TrackDropError(Exception):
    """Base class for all TrackDrop errors."""

    category: ErrorCategory = ErrorCategory.GENERIC
    retryable: bool = False

    def __init__(self, message: str = "", *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


def category_of(exc: BaseException) -> ErrorCategory:
    """Return the category of an exception, following wrapped causes."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, TrackDropError):
            if current.category is not ErrorCategory.GENERIC or current.cause is None:
                return current.category
            current = current.cause
            continue
        return ErrorCategory.GENERIC
    return ErrorCategory.GENERIC


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(TrackDropError):
    category = ErrorCategory.INVALID_INPUT

    def __init__(self, message: str, missing: Optional[list] = None):
        super().__init__(message)
        self.missing = list(missing or [])


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class AuthError(TrackDropError):
    category = ErrorCategory.AUTH


class MissingCredentialsError(AuthError):
    pass


class TokenRefreshError(AuthError):
    """The authorization server refused or failed a refresh."""

    def __init__(self, status: Optional[int], body: str = "", *, cause: Optional[BaseException] = None):
        if status is None:
            message = f"Token refresh failed: {body}"
        else:
            message = f"Token refresh failed: HTTP {status}: {body}"
        super().__init__(message, cause=cause)
        self.status = status
        self.body = body


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

class ApiError(TrackDropError):
    """Classified failure of a single API call."""

    def __init__(self, message: str = "", status: Optional[int] = None, *,
                 cause: Optional[BaseException] = None):
        super().__init__(message, cause=cause)
        self.status = status


class TokenExpiredError(ApiError):
    category = ErrorCategory.AUTH
    retryable = True

    def __init__(self):
        super().__init__("Access token rejected (HTTP 401)", status=401)


class RateLimitedError(ApiError):
    category = ErrorCategory.RATE_LIMITED
    retryable = True

    def __init__(self, retry_after_ms: int):
        super().__init__(f"Rate limited, retry after {retry_after_ms}ms", status=429)
        self.retry_after_ms = retry_after_ms


class ServerError(ApiError):
    category = ErrorCategory.NETWORK
    retryable = True

    def __init__(self, status: int, message: str = ""):
        text = f"Server error HTTP {status}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text, status=status)


class NetworkError(ApiError):
    category = ErrorCategory.NETWORK
    retryable = True


class AccessDeniedError(ApiError):
    category = ErrorCategory.PERMISSION

    def __init__(self, message: str = ""):
        super().__init__(message or "Access denied (HTTP 403)", status=403)


class NotFoundError(ApiError):
    category = ErrorCategory.NOT_FOUND

    def __init__(self, message: str = ""):
        super().__init__(message or "Resource not found (HTTP 404)", status=404)


class RequestRejectedError(ApiError):
    category = ErrorCategory.INVALID_INPUT

    def __init__(self, status: int, message: str = ""):
        super().__init__(f"Request rejected HTTP {status}: {message}", status=status)
        self.reason = message


class MalformedResponseError(ApiError):
    pass


class ServiceBusyError(ApiError):
    """The shared API client stayed locked past the allowed wait."""
    category = ErrorCategory.NETWORK


# ---------------------------------------------------------------------------
# Playlist
# ---------------------------------------------------------------------------

class PlaylistError(TrackDropError):
    pass


class InvalidTrackUriError(PlaylistError):
    category = ErrorCategory.INVALID_INPUT

    def __init__(self, uri: str):
        super().__init__(f"Invalid track URI: {uri!r}")
        self.uri = uri


class InvalidInputError(PlaylistError):
    category = ErrorCategory.INVALID_INPUT


class EmptyReplacementError(InvalidInputError):
    def __init__(self, playlist_id: str):
        super().__init__(f"Refusing to replace playlist {playlist_id} with an empty track list")
        self.playlist_id = playlist_id


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

class DiscoveryError(TrackDropError):
    pass


class InsufficientSeedTracksError(DiscoveryError):
    category = ErrorCategory.INVALID_INPUT

    def __init__(self, found: int, required: int):
        super().__init__(f"Insufficient seed tracks: found {found}, need at least {required}")
        self.found = found
        self.required = required


class SeedSelectionError(DiscoveryError):
    """Seed sampling was asked for an impossible window or count."""
    category = ErrorCategory.INVALID_INPUT


class DiscoveryFetchError(DiscoveryError):
    """Reading the source playlist failed."""


class RecommendationGenerationError(DiscoveryError):
    pass


class PublishError(DiscoveryError):
    """Replacing the discovery playlist failed."""


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class SchedulerError(TrackDropError):
    pass


class SchedulerStartError(SchedulerError):
    pass


class SchedulerStopError(SchedulerError):
    pass


class InvalidCronExpressionError(SchedulerError):
    category = ErrorCategory.INVALID_INPUT

    def __init__(self, expression: str):
        super().__init__(f"Invalid cron expression: {expression!r}")
        self.expression = expression


class TaskExecutionError(SchedulerError):
    pass
