"""Application wiring: one instance of every shared component"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

import aiohttp

from trackdrop.api.auth import TOKEN_REFRESH_BUFFER, TokenManager
from trackdrop.api.spotify import ResilientApiClient
from trackdrop.errors import TrackDropError
from trackdrop.ingest.links import LinkIngestor
from trackdrop.models.config_models import TrackDropConfig
from trackdrop.models.track import DiscoveryResult
from trackdrop.notify import DiscoveryListener, LoggingAnnouncer
from trackdrop.playlist.discovery import DiscoveryPipeline
from trackdrop.playlist.store import PlaylistStore
from trackdrop.scheduler.cron import DiscoveryScheduler, ScheduleHandle


logger = logging.getLogger(__name__)


class TrackDropApp:
    """Builds and owns the shared session, client, store, pipeline and scheduler.

    Use as an async context manager, or call ``start()`` and ``close()``.
    A session passed in by the caller is not closed by the app.
    """

    def __init__(
        self,
        config: TrackDropConfig,
        session: Optional[aiohttp.ClientSession] = None,
        listener: Optional[DiscoveryListener] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        refresh_buffer: timedelta = TOKEN_REFRESH_BUFFER,
    ):
        self.config = config
        self.listener = listener or LoggingAnnouncer(config.playlists.discovery_playlist_id)
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep
        self._refresh_buffer = refresh_buffer
        self._started = False

        self.tokens: Optional[TokenManager] = None
        self.client: Optional[ResilientApiClient] = None
        self.store: Optional[PlaylistStore] = None
        self.pipeline: Optional[DiscoveryPipeline] = None
        self.ingestor: Optional[LinkIngestor] = None
        self.scheduler: Optional[DiscoveryScheduler] = None

    async def start(self) -> "TrackDropApp":
        if self._started:
            return self

        config = self.config
        if self._session is None:
            self._session = aiohttp.ClientSession()

        self.tokens = TokenManager(
            self._session,
            config.spotify.client_id,
            config.spotify.client_secret,
            config.spotify.refresh_token,
            token_url=config.spotify.token_url,
            refresh_buffer=self._refresh_buffer,
            request_timeout=config.client.request_timeout_seconds,
        )
        self.client = ResilientApiClient(
            self._session,
            self.tokens,
            config.retry,
            api_url=config.spotify.api_url,
            request_timeout=config.client.request_timeout_seconds,
            lock_timeout=config.client.lock_timeout_seconds,
            sleep=self._sleep,
        )
        self.store = PlaylistStore(self.client)
        self.pipeline = DiscoveryPipeline(
            self.store,
            self.client,
            source_playlist_id=config.playlists.collaborative_playlist_id,
            target_playlist_id=config.playlists.discovery_playlist_id,
            listener=self.listener,
        )
        self.ingestor = LinkIngestor(
            self.store,
            self.client,
            playlist_id=config.playlists.collaborative_playlist_id,
            channel_id=config.chat.target_channel_id,
        )
        self.scheduler = DiscoveryScheduler(self.pipeline.run)
        self._started = True
        logger.info("✓ TrackDrop initialized")
        return self

    async def start_scheduler(self) -> Optional[ScheduleHandle]:
        """Start weekly generation if scheduling is enabled."""
        if not self.config.scheduling.enabled:
            logger.info("Scheduled discovery generation disabled")
            return None
        return await self.scheduler.start(self.config.scheduling.cron_expression)

    async def generate_now(self, dry_run: bool = False) -> DiscoveryResult:
        """Run discovery immediately; ``dry_run`` skips publishing and announcing."""
        if dry_run:
            result = await self.pipeline.generate()
            logger.info("DRY RUN - would publish %d tracks:", result.track_count)
            for index, track in enumerate(result.tracks, 1):
                logger.info("  %2d. %s - %s", index, track.artists_display, track.name)
            return result
        return await self.scheduler.trigger_now()

    async def close(self, timeout: float = 30.0) -> None:
        """Stop the scheduler, then release the HTTP session."""
        try:
            if self.scheduler is not None:
                await self.scheduler.stop(timeout)
        except TrackDropError as e:
            logger.error("Scheduler did not stop cleanly: %s", e)
            raise
        finally:
            if self._owns_session and self._session is not None:
                await self._session.close()
                self._session = None
            self._started = False
        logger.info("TrackDrop shut down")

    async def __aenter__(self) -> "TrackDropApp":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
