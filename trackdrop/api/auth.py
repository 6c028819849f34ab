"""Spotify access-token lifecycle"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import aiohttp

from trackdrop.errors import MissingCredentialsError, TokenRefreshError
from trackdrop.monitoring.metrics import record_token_refresh


logger = logging.getLogger(__name__)

TOKEN_URL = "https://accounts.spotify.com/api/token"
TOKEN_REFRESH_BUFFER = timedelta(minutes=5)
DEFAULT_EXPIRES_IN = 3600


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AccessToken:
    """Bearer token and the instant it stops being accepted."""
    value: str
    expires_at: datetime

    def is_fresh(self, now: datetime, buffer: timedelta) -> bool:
        return self.expires_at > now + buffer

    @property
    def header(self) -> str:
        return f"Bearer {self.value}"


class TokenManager:
    """Owns the current access token and refreshes it with the refresh-token grant.

    At most one refresh is in flight; callers that arrive while it runs await
    the same task and share its token or its failure.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        token_url: str = TOKEN_URL,
        refresh_buffer: timedelta = TOKEN_REFRESH_BUFFER,
        request_timeout: float = 30.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize token manager.

        Args:
            session: Shared aiohttp session
            client_id: Spotify application client ID
            client_secret: Spotify application client secret
            refresh_token: Long-lived refresh token
            token_url: Authorization server token endpoint
            refresh_buffer: Refresh when the token expires within this window
            request_timeout: Timeout for the token exchange in seconds
            clock: Returns the current aware UTC datetime
        """
        if not client_id or not client_secret:
            raise MissingCredentialsError("Spotify client ID and secret are required")
        if not refresh_token:
            raise MissingCredentialsError("No refresh token available")

        self.session = session
        self.token_url = token_url
        self.refresh_buffer = refresh_buffer
        self.request_timeout = request_timeout
        self._auth = aiohttp.BasicAuth(client_id, client_secret)
        self._refresh_token = refresh_token
        self._clock = clock or utc_now
        self._token: Optional[AccessToken] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self.refresh_count = 0

    def _needs_refresh(self) -> bool:
        token = self._token
        return token is None or not token.is_fresh(self._clock(), self.refresh_buffer)

    async def ensure_valid(self) -> AccessToken:
        """Return a token valid beyond the refresh buffer, refreshing if needed.

        Raises:
            TokenRefreshError: If the authorization server rejects the refresh
        """
        if not self._needs_refresh():
            return self._token

        task = self._refresh_task
        if task is None:
            logger.debug("Access token missing or near expiry, refreshing")
            task = asyncio.create_task(self._run_refresh())
            self._refresh_task = task
        # Cancelling one waiter leaves the shared refresh running
        return await asyncio.shield(task)

    async def _run_refresh(self) -> AccessToken:
        try:
            self._token = await self._refresh()
            return self._token
        finally:
            self._refresh_task = None

    def invalidate(self, token: Optional[AccessToken] = None) -> None:
        """Mark the current token stale after the API rejected it.

        Passing the rejected token makes this a no-op when a newer token has
        already replaced it.
        """
        if token is None or self._token is token:
            self._token = None

    async def _refresh(self) -> AccessToken:
        """Exchange the refresh token for a new access token."""
        form = {
            "grant_type": "refresh_token",
            "refresh_token": self._refresh_token,
        }
        headers = {
            "Authorization": self._auth.encode(),
            "Content-Type": "application/x-www-form-urlencoded",
        }

        try:
            async with self.session.request(
                "POST",
                self.token_url,
                data=form,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            ) as response:
                if response.status >= 300:
                    body = await response.text()
                    record_token_refresh(False)
                    logger.error("Token refresh failed: HTTP %d", response.status)
                    raise TokenRefreshError(response.status, body[:500])
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            record_token_refresh(False)
            logger.error("Token refresh request error: %s", str(e)[:200])
            raise TokenRefreshError(None, str(e)[:200], cause=e) from e
        except ValueError as e:
            record_token_refresh(False)
            raise TokenRefreshError(None, "Token response was not valid JSON", cause=e) from e

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            record_token_refresh(False)
            raise TokenRefreshError(None, "No access token in response")

        try:
            expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError, OverflowError) as e:
            record_token_refresh(False)
            raise TokenRefreshError(
                None, f"Invalid expires_in in response: {payload.get('expires_in')!r}", cause=e
            ) from e

        rotated = payload.get("refresh_token")
        if rotated:
            self._refresh_token = rotated
            logger.info("Spotify issued a rotated refresh token")

        self.refresh_count += 1
        record_token_refresh(True)
        logger.info("✓ Refreshed Spotify access token, expires in %d seconds", expires_in)
        return AccessToken(
            value=access_token,
            expires_at=self._clock() + timedelta(seconds=expires_in),
        )
