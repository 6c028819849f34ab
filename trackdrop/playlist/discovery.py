"""Discovery playlist generation from recent collaborative additions"""

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Optional, Sequence, Tuple

from trackdrop.api.spotify import ResilientApiClient
from trackdrop.errors import (
    ApiError, DiscoveryFetchError, ErrorCategory, InsufficientSeedTracksError,
    PublishError, RecommendationGenerationError, SeedSelectionError, TrackDropError,
    category_of,
)
from trackdrop.models.track import DISCOVERY_TARGET_SIZE, DiscoveryResult, Track
from trackdrop.monitoring.metrics import record_discovery_run
from trackdrop.playlist.store import PlaylistStore

if TYPE_CHECKING:
    from trackdrop.notify import DiscoveryListener


logger = logging.getLogger(__name__)

RECENT_WINDOW = 50
MAX_SEEDS = 5
SEARCH_LIMIT = 10
TARGET_SIZE = DISCOVERY_TARGET_SIZE


@dataclass(frozen=True)
class DiscoveryFailure:
    """What listeners receive when a run does not publish."""
    category: ErrorCategory
    message: str
    error: Optional[BaseException] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "DiscoveryFailure":
        return cls(category=category_of(exc), message=str(exc), error=exc)


@dataclass(frozen=True)
class GenerationStats:
    """How much material the source playlist offers for a run."""
    total_source_tracks: int
    recent_pool_size: int
    max_seed_tracks: int
    can_generate: bool

    def format_stats(self) -> str:
        return (
            "Discovery generation stats\n"
            f"  Source tracks: {self.total_source_tracks}\n"
            f"  Recent pool: {self.recent_pool_size}\n"
            f"  Max seed tracks: {self.max_seed_tracks}\n"
            f"  Can generate: {'✅ yes' if self.can_generate else '❌ no'}"
        )


def select_seed_tracks(
    tracks: Sequence[Track],
    rng: Optional[random.Random] = None,
    window: int = RECENT_WINDOW,
    max_seeds: int = MAX_SEEDS,
) -> Tuple[str, ...]:
    """Sample distinct seed track IDs from the most recent additions.

    Args:
        tracks: Source playlist in playlist order (newest last)
        rng: Random source
        window: How many of the newest tracks to sample from
        max_seeds: Upper bound on the number of seeds

    Returns:
        Between 1 and ``max_seeds`` distinct track IDs

    Raises:
        InsufficientSeedTracksError: If ``tracks`` is empty
        SeedSelectionError: If ``window`` or ``max_seeds`` is below 1
    """
    if window < 1 or max_seeds < 1:
        raise SeedSelectionError(f"Invalid seed bounds: window={window}, max_seeds={max_seeds}")
    if not tracks:
        raise InsufficientSeedTracksError(found=0, required=1)

    recent = tracks[-window:]
    pool = list(dict.fromkeys(track.id for track in recent))
    count = min(max_seeds, len(pool))
    seeds = tuple((rng or random).sample(pool, count))

    logger.info("Selected %d seed tracks from %d recent tracks", len(seeds), len(recent))
    return seeds


class DiscoveryPipeline:
    """Builds the discovery playlist from a seed sample of the source playlist.

    For each seed the top search hits for "<artist> <title>" are taken as
    similar tracks, minus the first hit which is usually the seed itself.
    """

    def __init__(
        self,
        store: PlaylistStore,
        client: ResilientApiClient,
        source_playlist_id: str,
        target_playlist_id: str,
        listener: Optional["DiscoveryListener"] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize discovery pipeline.

        Args:
            store: Playlist store
            client: API client used for track lookup and search
            source_playlist_id: Collaborative playlist seeds are drawn from
            target_playlist_id: Discovery playlist that gets replaced
            listener: Receives completion and failure announcements
            rng: Random source for seed sampling
        """
        self.store = store
        self.client = client
        self.source_playlist_id = source_playlist_id
        self.target_playlist_id = target_playlist_id
        self.listener = listener
        self._rng = rng
        self._run_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    async def _fetch_source(self) -> List[Track]:
        try:
            return await self.store.list_tracks(self.source_playlist_id)
        except TrackDropError as e:
            raise DiscoveryFetchError(
                f"Failed to read source playlist {self.source_playlist_id}: {e}", cause=e
            ) from e

    async def find_similar_tracks(self, seed_ids: Sequence[str]) -> List[Track]:
        """Collect up to TARGET_SIZE unique tracks similar to the seeds.

        Raises:
            RecommendationGenerationError: If no seed yields a candidate
        """
        seen = set(seed_ids)
        candidates: List[Track] = []

        for seed_id in seed_ids:
            if len(candidates) >= TARGET_SIZE:
                break
            try:
                seed = await self.client.get_track(seed_id)
                query = f"{seed.primary_artist or ''} {seed.name}".strip()
                results = await self.client.search_tracks(query, SEARCH_LIMIT)
            except ApiError as e:
                logger.warning("Skipping seed %s: %s", seed_id, e)
                continue

            added = 0
            for track in results[1:]:
                if track.id in seen:
                    continue
                seen.add(track.id)
                candidates.append(track)
                added += 1
                if len(candidates) >= TARGET_SIZE:
                    break
            logger.debug("Seed '%s' by %s contributed %d tracks",
                         seed.name, seed.artists_display, added)

        if not candidates:
            raise RecommendationGenerationError(
                f"No similar tracks found for {len(seed_ids)} seed tracks"
            )
        return candidates

    async def generate(self) -> DiscoveryResult:
        """Select seeds and build a result without publishing it."""
        tracks = await self._fetch_source()
        seeds = select_seed_tracks(tracks, self._rng)
        candidates = await self.find_similar_tracks(seeds)
        result = DiscoveryResult.build(candidates[:TARGET_SIZE], seeds)
        logger.info("Generated discovery playlist: %d tracks from %d seeds",
                    result.track_count, result.seed_count)
        return result

    async def _publish(self, result: DiscoveryResult) -> None:
        try:
            await self.store.replace_all(self.target_playlist_id, result.uris)
        except TrackDropError as e:
            raise PublishError(
                f"Failed to replace discovery playlist {self.target_playlist_id}: {e}", cause=e
            ) from e

    async def run(self) -> DiscoveryResult:
        """Generate, publish and announce a discovery playlist.

        Runs are serialised; a second caller waits for the first to finish.

        Returns:
            The published result

        Raises:
            TrackDropError: The failure, after listeners were told about it
        """
        async with self._run_lock:
            logger.info("Starting discovery playlist generation")
            try:
                result = await self.generate()
                await self._publish(result)
            except TrackDropError as e:
                record_discovery_run(False)
                logger.error("❌ Discovery generation failed: %s", e)
                await self._notify("on_discovery_failed", DiscoveryFailure.from_exception(e))
                raise

            record_discovery_run(True, result.track_count)
            logger.info("✅ Published %d tracks to discovery playlist %s",
                        result.track_count, self.target_playlist_id)
            await self._notify("on_discovery_complete", result)
            return result

    async def _notify(self, callback_name: str, payload: Any) -> None:
        if self.listener is None:
            return
        callback = getattr(self.listener, callback_name, None)
        if callback is None:
            return
        try:
            outcome = callback(payload)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Discovery listener %s raised", callback_name)

    async def generation_stats(self) -> GenerationStats:
        tracks = await self._fetch_source()
        total = len(tracks)
        return GenerationStats(
            total_source_tracks=total,
            recent_pool_size=min(RECENT_WINDOW, total),
            max_seed_tracks=min(MAX_SEEDS, total),
            can_generate=total > 0,
        )
