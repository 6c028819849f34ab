"""Spotify Web API client with token injection, retries and error classification"""

import asyncio
import json
import logging
import math
import random
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from trackdrop.api.auth import TokenManager
from trackdrop.errors import (
    AccessDeniedError, ApiError, MalformedResponseError, NetworkError,
    NotFoundError, RateLimitedError, RequestRejectedError, ServerError,
    ServiceBusyError, TokenExpiredError,
)
from trackdrop.models.config_models import RetryPolicy
from trackdrop.models.track import Track
from trackdrop.monitoring.metrics import record_api_call, record_retry
from trackdrop.utils.retry import retry_delay_for


logger = logging.getLogger(__name__)

API_URL = "https://api.spotify.com/v1"
DEFAULT_RETRY_AFTER_MS = 1000
MAX_SEARCH_LIMIT = 50


def parse_retry_after(value: Optional[str]) -> int:
    """Convert a ``Retry-After`` header (seconds) to milliseconds."""
    if value is None:
        return DEFAULT_RETRY_AFTER_MS
    try:
        seconds = float(value.strip())
    except ValueError:
        return DEFAULT_RETRY_AFTER_MS
    if not math.isfinite(seconds) or seconds < 0:
        return DEFAULT_RETRY_AFTER_MS
    return int(seconds * 1000)


def _error_message(body: str) -> str:
    """Pull ``error.message`` out of a Spotify error body, falling back to raw text."""
    try:
        payload = json.loads(body)
    except ValueError:
        return body.strip()[:500]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return payload.get("error_description") or error
    return body.strip()[:500]


def parse_track(data: Any) -> Track:
    """Build a Track from a Spotify track object.

    Args:
        data: Track JSON object

    Returns:
        Track

    Raises:
        MalformedResponseError: If a required field is missing
    """
    if not isinstance(data, dict):
        raise MalformedResponseError("Track entry is not an object")

    def required_str(key: str) -> str:
        value = data.get(key)
        if not isinstance(value, str) or not value:
            raise MalformedResponseError(f"Missing track {key}")
        return value

    track_id = required_str("id")
    uri = required_str("uri")
    name = required_str("name")

    artists = data.get("artists")
    if not isinstance(artists, list):
        raise MalformedResponseError("Missing artists array")
    artist_names = tuple(
        a["name"] for a in artists if isinstance(a, dict) and isinstance(a.get("name"), str)
    )

    album = data.get("album")
    album_name = album.get("name") if isinstance(album, dict) else None
    if not isinstance(album_name, str):
        raise MalformedResponseError("Missing album name")

    duration_ms = data.get("duration_ms")
    if not isinstance(duration_ms, int) or isinstance(duration_ms, bool):
        raise MalformedResponseError("Missing duration")

    popularity = data.get("popularity")
    if not isinstance(popularity, int) or isinstance(popularity, bool):
        popularity = None

    external_urls = data.get("external_urls")
    external_url = external_urls.get("spotify") if isinstance(external_urls, dict) else None

    return Track(
        id=track_id,
        uri=uri,
        name=name,
        artists=artist_names,
        album=album_name,
        duration_ms=duration_ms,
        popularity=popularity,
        explicit=bool(data.get("explicit", False)),
        preview_url=data.get("preview_url"),
        external_url=external_url,
    )


class ResilientApiClient:
    """Single entry point for all Spotify Web API traffic.

    Every attempt re-validates the access token, classifies the response into
    a typed error, and retries transient failures with backoff. The client also
    carries the lock that serialises logical operations across callers.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        tokens: TokenManager,
        policy: RetryPolicy,
        api_url: str = API_URL,
        request_timeout: float = 30.0,
        lock_timeout: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initialize API client.

        Args:
            session: Shared aiohttp session
            tokens: Token manager shared with every other caller
            policy: Retry policy
            api_url: Web API base URL
            request_timeout: Per-request timeout in seconds
            lock_timeout: Maximum wait for the exclusive lock in seconds
            sleep: Awaitable used for backoff sleeps
            rng: Random source for jitter
        """
        self.session = session
        self.tokens = tokens
        self.policy = policy
        self.api_url = api_url.rstrip("/")
        self.request_timeout = request_timeout
        self.lock_timeout = lock_timeout
        self._sleep = sleep
        self._rng = rng
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def exclusive(self, wait: Optional[float] = None):
        """Hold the client for one logical operation.

        Raises:
            ServiceBusyError: If the lock is not acquired within ``wait`` seconds
        """
        wait = self.lock_timeout if wait is None else wait
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=wait)
        except asyncio.TimeoutError:
            logger.error("Timed out after %.1fs waiting for the Spotify client", wait)
            raise ServiceBusyError(f"Spotify client busy for more than {wait:.1f}s") from None
        try:
            yield self
        finally:
            self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.api_url}/{path.lstrip('/')}"

    async def execute(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Perform an API call with retries.

        Args:
            method: HTTP method (GET, POST, PUT)
            path: Path relative to the API base URL
            params: Query parameters
            json: JSON request body

        Returns:
            Parsed JSON body ({} for an empty body)

        Raises:
            ApiError: Classified error after retries are exhausted or for
                non-retryable responses
            AuthError: If the access token cannot be refreshed
        """
        method = method.upper()
        url = self._url(path)
        max_attempts = self.policy.max_attempts
        attempt = 0

        while True:
            attempt += 1
            token = await self.tokens.ensure_valid()
            try:
                return await self._send(method, url, token.header, params, json)
            except ApiError as error:
                if isinstance(error, TokenExpiredError):
                    self.tokens.invalidate(token)

                if not error.retryable:
                    logger.debug("%s %s failed, not retryable: %s", method, path, error)
                    raise
                if attempt >= max_attempts:
                    logger.error("Max retry attempts (%d) reached for %s %s: %s",
                                 max_attempts, method, path, error)
                    raise

                delay_ms = retry_delay_for(error, self.policy, attempt, self._rng)
                record_retry(type(error).__name__)
                logger.warning("%s %s failed (attempt %d/%d): %s. Retrying in %.0fms",
                               method, path, attempt, max_attempts, error, delay_ms)
                await self._sleep(delay_ms / 1000.0)

    async def _send(
        self,
        method: str,
        url: str,
        authorization: str,
        params: Optional[Dict[str, Any]],
        body: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        headers = {"Authorization": authorization}
        started = time.monotonic()
        try:
            async with self.session.request(
                method,
                url,
                params=params,
                json=body,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            ) as response:
                record_api_call(method, str(response.status), time.monotonic() - started)
                return await self._handle_response(response)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            record_api_call(method, "network_error")
            raise NetworkError(f"{method} {url} failed: {e!r}"[:300], cause=e) from e

    async def _handle_response(self, response: aiohttp.ClientResponse) -> Dict[str, Any]:
        """Convert an HTTP response into a payload or a typed error."""
        status = response.status

        if 200 <= status < 300:
            text = await response.text()
            if not text.strip():
                return {}
            try:
                payload = json.loads(text)
            except ValueError as e:
                raise MalformedResponseError("Response body is not valid JSON", status=status, cause=e) from e
            if not isinstance(payload, dict):
                raise MalformedResponseError("Response body is not a JSON object", status=status)
            return payload

        if status == 401:
            raise TokenExpiredError()

        if status == 429:
            raise RateLimitedError(parse_retry_after(response.headers.get("Retry-After")))

        message = _error_message(await response.text())

        if status == 408 or status >= 500:
            raise ServerError(status, message)
        if status == 403:
            raise AccessDeniedError(message)
        if status == 404:
            raise NotFoundError(message)
        logger.error("Spotify API rejected request: HTTP %d %s", status, message)
        raise RequestRejectedError(status, message)

    async def get_track(self, track_id: str) -> Track:
        """Get track information by track ID.

        Args:
            track_id: Spotify track ID

        Returns:
            Track
        """
        payload = await self.execute("GET", f"tracks/{track_id}")
        return parse_track(payload)

    async def search_tracks(self, query: str, limit: int = 10) -> List[Track]:
        """Search for tracks matching a free-text query.

        Args:
            query: Search text
            limit: Maximum results (capped at 50)

        Returns:
            Tracks in relevance order; malformed entries are skipped
        """
        limit = max(1, min(limit, MAX_SEARCH_LIMIT))
        payload = await self.execute(
            "GET", "search", params={"q": query, "type": "track", "limit": limit}
        )
        items = payload.get("tracks", {}).get("items") if isinstance(payload.get("tracks"), dict) else None
        if not isinstance(items, list):
            raise MalformedResponseError("Invalid search response")

        tracks: List[Track] = []
        for item in items:
            try:
                tracks.append(parse_track(item))
            except MalformedResponseError as e:
                logger.debug("Skipping malformed search result: %s", e)

        logger.debug("Found %d tracks for query: %s", len(tracks), query)
        return tracks
