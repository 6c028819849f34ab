"""Tests for discovery playlist generation"""

import asyncio
import random

import pytest
from hypothesis import given, strategies as st

from conftest import FakeResponse, track_id, track_json
from trackdrop.errors import (
    DiscoveryFetchError, ErrorCategory, InsufficientSeedTracksError, PublishError,
    RecommendationGenerationError, SeedSelectionError, ServiceBusyError, category_of,
)
from trackdrop.models.track import Track
from trackdrop.playlist.discovery import (
    MAX_SEEDS, RECENT_WINDOW, TARGET_SIZE, DiscoveryPipeline, select_seed_tracks,
)


SOURCE = "collab"
TARGET = "disc"


class RecordingListener:
    def __init__(self):
        self.completed = []
        self.failed = []

    def on_discovery_complete(self, result):
        self.completed.append(result)

    def on_discovery_failed(self, failure):
        self.failed.append(failure)


def make_track(n: int) -> Track:
    return Track(id=track_id(n), uri=f"spotify:track:{track_id(n)}", name=f"Song {n}",
                 artists=(f"Artist {n}",), album="Album", duration_ms=1000)


def add_seed(spotify, n: int, similar: list) -> None:
    """Register seed ``n`` whose search returns itself followed by ``similar``."""
    seed = track_json(n)
    spotify.add_tracks(seed)
    spotify.search_results[f"Artist {n} Song {n}"] = [seed] + [track_json(s) for s in similar]


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def pipeline(store, client, listener):
    return DiscoveryPipeline(store, client, SOURCE, TARGET, listener=listener, rng=random.Random(3))


def put_calls(session):
    return [c for c in session.api_calls if c.method == "PUT"]


# ---------------------------------------------------------------------------
# Seed selection
# ---------------------------------------------------------------------------

def test_seed_selection_requires_tracks():
    with pytest.raises(InsufficientSeedTracksError) as exc_info:
        select_seed_tracks([])
    assert exc_info.value.found == 0
    assert exc_info.value.required == 1


def test_fewer_tracks_than_seed_limit_uses_all():
    tracks = [make_track(n) for n in range(3)]

    assert sorted(select_seed_tracks(tracks, random.Random(0))) == sorted(t.id for t in tracks)


@given(count=st.integers(1, 200), seed=st.integers(0, 10_000))
def test_seeds_are_distinct_and_recent(count, seed):
    tracks = [make_track(n) for n in range(count)]

    seeds = select_seed_tracks(tracks, random.Random(seed))

    window = {t.id for t in tracks[-RECENT_WINDOW:]}
    assert len(seeds) == min(MAX_SEEDS, count, RECENT_WINDOW)
    assert len(set(seeds)) == len(seeds)
    assert set(seeds) <= window


def test_duplicate_entries_yield_distinct_seeds():
    tracks = [make_track(1)] * 10 + [make_track(2)]

    assert sorted(select_seed_tracks(tracks, random.Random(0))) == [track_id(1), track_id(2)]


# ---------------------------------------------------------------------------
# Pipeline runs
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_three_seeds_with_ten_results_publish_twenty(session, spotify, pipeline, listener):
    spotify.playlists[SOURCE] = [track_json(n) for n in (1, 2, 3)]
    for n in (1, 2, 3):
        add_seed(spotify, n, [n * 100 + k for k in range(1, 10)])

    result = await pipeline.run()

    assert result.track_count == TARGET_SIZE
    assert result.is_complete
    puts = put_calls(session)
    assert len(puts) == 1
    uris = puts[0].json["uris"]
    assert len(uris) == 20
    assert len(set(uris)) == 20
    assert not {f"spotify:track:{track_id(n)}" for n in (1, 2, 3)} & set(uris)
    assert listener.completed == [result]
    assert listener.failed == []


@pytest.mark.asyncio
async def test_candidates_are_deduplicated_across_seeds(spotify, pipeline):
    spotify.playlists[SOURCE] = [track_json(1), track_json(2)]
    add_seed(spotify, 1, [50, 51, 52])
    add_seed(spotify, 2, [51, 52, 53, 1])

    result = await pipeline.run()

    assert sorted(t.id for t in result.tracks) == [track_id(n) for n in (50, 51, 52, 53)]
    assert set(result.seed_track_ids) == {track_id(1), track_id(2)}


@pytest.mark.asyncio
async def test_failing_seed_is_skipped(spotify, pipeline):
    spotify.playlists[SOURCE] = [track_json(1), track_json(2)]
    add_seed(spotify, 1, [10, 11])
    # Seed 2 is unknown to track lookup and returns 404

    result = await pipeline.run()

    assert [t.id for t in result.tracks] == [track_id(10), track_id(11)]


@pytest.mark.asyncio
async def test_no_candidates_fails_without_publishing(session, spotify, pipeline, listener):
    spotify.playlists[SOURCE] = [track_json(1)]
    add_seed(spotify, 1, [])

    with pytest.raises(RecommendationGenerationError):
        await pipeline.run()

    assert put_calls(session) == []
    assert len(listener.failed) == 1
    assert listener.failed[0].category is ErrorCategory.GENERIC


@pytest.mark.asyncio
async def test_empty_source_playlist(spotify, pipeline, listener):
    spotify.playlists[SOURCE] = []

    with pytest.raises(InsufficientSeedTracksError):
        await pipeline.run()
    assert listener.failed[0].category is ErrorCategory.INVALID_INPUT


@pytest.mark.asyncio
async def test_source_fetch_failure_keeps_cause_category(spotify, pipeline, listener):
    spotify.failures[f"playlists/{SOURCE}/tracks"] = FakeResponse(
        403, {"error": {"status": 403, "message": "Forbidden"}}
    )

    with pytest.raises(DiscoveryFetchError) as exc_info:
        await pipeline.run()

    assert category_of(exc_info.value) is ErrorCategory.PERMISSION
    assert listener.failed[0].category is ErrorCategory.PERMISSION


@pytest.mark.asyncio
async def test_publish_failure(spotify, pipeline, listener):
    spotify.playlists[SOURCE] = [track_json(1)]
    add_seed(spotify, 1, [10])
    spotify.failures[f"playlists/{TARGET}/tracks"] = FakeResponse(500, text="down")

    with pytest.raises(PublishError) as exc_info:
        await pipeline.run()

    assert category_of(exc_info.value) is ErrorCategory.NETWORK
    assert listener.completed == []


@pytest.mark.asyncio
async def test_busy_client_aborts_run(spotify, pipeline, client):
    spotify.playlists[SOURCE] = [track_json(1), track_json(2)]

    async with client.exclusive():
        with pytest.raises(DiscoveryFetchError) as exc_info:
            await pipeline.run()

    assert isinstance(exc_info.value.cause, ServiceBusyError)
    assert category_of(exc_info.value) is ErrorCategory.NETWORK


@pytest.mark.parametrize("window, max_seeds", [(0, 5), (50, 0), (-1, -1)])
def test_seed_selection_rejects_impossible_bounds(window, max_seeds):
    with pytest.raises(SeedSelectionError):
        select_seed_tracks([make_track(1)], window=window, max_seeds=max_seeds)


@pytest.mark.asyncio
async def test_listener_errors_do_not_fail_run(spotify, store, client):
    class Broken:
        def on_discovery_complete(self, result):
            raise RuntimeError("chat is down")

    spotify.playlists[SOURCE] = [track_json(1)]
    add_seed(spotify, 1, [10])
    pipeline = DiscoveryPipeline(store, client, SOURCE, TARGET, listener=Broken())

    result = await pipeline.run()
    assert result.track_count == 1


@pytest.mark.asyncio
async def test_async_listener_is_awaited(spotify, store, client):
    seen = []

    class AsyncListener:
        async def on_discovery_complete(self, result):
            await asyncio.sleep(0)
            seen.append(result.track_count)

    spotify.playlists[SOURCE] = [track_json(1)]
    add_seed(spotify, 1, [10, 11])
    pipeline = DiscoveryPipeline(store, client, SOURCE, TARGET, listener=AsyncListener())

    await pipeline.run()
    assert seen == [2]


@pytest.mark.asyncio
async def test_generate_does_not_publish(session, spotify, pipeline, listener):
    spotify.playlists[SOURCE] = [track_json(1)]
    add_seed(spotify, 1, [10, 11, 12])

    result = await pipeline.generate()

    assert result.track_count == 3
    assert put_calls(session) == []
    assert listener.completed == []


@pytest.mark.asyncio
async def test_concurrent_runs_are_serialised(session, spotify, pipeline):
    spotify.playlists[SOURCE] = [track_json(1)]
    add_seed(spotify, 1, [10, 11])

    first, second = await asyncio.gather(pipeline.run(), pipeline.run())

    assert first.uris == second.uris
    assert len(put_calls(session)) == 2
    assert not pipeline.running


@pytest.mark.asyncio
async def test_generation_stats(spotify, pipeline):
    spotify.playlists[SOURCE] = [track_json(n) for n in range(60)]

    stats = await pipeline.generation_stats()

    assert stats.total_source_tracks == 60
    assert stats.recent_pool_size == 50
    assert stats.max_seed_tracks == 5
    assert stats.can_generate
    assert "✅" in stats.format_stats()
