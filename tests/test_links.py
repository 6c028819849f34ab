"""Tests for link parsing and chat message ingestion"""

import pytest

from conftest import FakeResponse, track_id, track_json
from trackdrop.errors import ErrorCategory, InvalidInputError
from trackdrop.ingest.links import (
    LinkIngestor, extract_spotify_links, extract_track_links, parse_spotify_link,
)
from trackdrop.models.track import AppendOutcome, LinkType


PLAYLIST = "collab"
CHANNEL = 4242
TRACK = "4iV5W9uYEdYUVa79Axb7Rh"


@pytest.mark.parametrize("text, expected", [
    (f"Check out this song: https://open.spotify.com/track/{TRACK}",
     [f"https://open.spotify.com/track/{TRACK}"]),
    ("Multiple songs: https://open.spotify.com/track/1 and https://open.spotify.com/track/2",
     ["https://open.spotify.com/track/1", "https://open.spotify.com/track/2"]),
    (f"Spotify URI: spotify:track:{TRACK}", [f"spotify:track:{TRACK}"]),
    ("No Spotify URLs here", []),
    (f"(https://open.spotify.com/track/{TRACK}?si=abc).",
     [f"https://open.spotify.com/track/{TRACK}?si=abc"]),
    (f"spotify:track:{TRACK} again spotify:track:{TRACK}", [f"spotify:track:{TRACK}"]),
])
def test_extract_spotify_links(text, expected):
    assert extract_spotify_links(text) == expected


@pytest.mark.parametrize("link, kind, content_id", [
    (f"https://open.spotify.com/track/{TRACK}", LinkType.TRACK, TRACK),
    (f"https://open.spotify.com/intl-de/track/{TRACK}?si=x", LinkType.TRACK, TRACK),
    ("https://open.spotify.com/album/4aawyAB9vmqN3uQ7FjRGTy", LinkType.ALBUM, "4aawyAB9vmqN3uQ7FjRGTy"),
    ("https://open.spotify.com/user/someone/playlist/37i9dQZF1DX", LinkType.PLAYLIST, "37i9dQZF1DX"),
    (f"spotify:track:{TRACK}", LinkType.TRACK, TRACK),
    ("spotify:artist:0OdUWJ0sBjDrqHygGUXeCF", LinkType.ARTIST, "0OdUWJ0sBjDrqHygGUXeCF"),
    ("spotify:show:abc123", LinkType.UNSUPPORTED, "abc123"),
])
def test_parse_spotify_link(link, kind, content_id):
    parsed = parse_spotify_link(link)

    assert parsed.kind is kind
    assert parsed.id == content_id


def test_track_link_uri():
    assert parse_spotify_link(f"https://open.spotify.com/track/{TRACK}").uri == f"spotify:track:{TRACK}"


@pytest.mark.parametrize("link", [
    "https://example.com/not-spotify",
    "https://open.spotify.com/",
    "spotify:track:bad-id!",
    "spotify:track",
])
def test_parse_rejects_invalid_links(link):
    with pytest.raises(InvalidInputError):
        parse_spotify_link(link)


def test_extract_track_links_ignores_other_types():
    text = (f"album https://open.spotify.com/album/4aawyAB9vmqN3uQ7FjRGTy "
            f"and track https://open.spotify.com/track/{TRACK}")

    assert extract_track_links(text) == [f"https://open.spotify.com/track/{TRACK}"]


@pytest.fixture
def ingestor(store, client):
    return LinkIngestor(store, client, PLAYLIST, CHANNEL)


@pytest.mark.asyncio
async def test_append_if_track_adds_then_reports_duplicate(spotify, ingestor):
    spotify.add_tracks(track_json(1, name="Hello"))
    link = f"https://open.spotify.com/track/{track_id(1)}"

    first = await ingestor.append_if_track(link)
    second = await ingestor.append_if_track(link)

    assert first.outcome is AppendOutcome.ADDED
    assert first.track.name == "Hello"
    assert second.outcome is AppendOutcome.ALREADY_EXISTS
    assert spotify.uris(PLAYLIST) == [f"spotify:track:{track_id(1)}"]


@pytest.mark.asyncio
async def test_append_if_track_ignores_albums(session, ingestor):
    assert await ingestor.append_if_track("https://open.spotify.com/album/4aawyAB9vmqN3uQ7FjRGTy") is None
    assert session.api_calls == []


@pytest.mark.asyncio
async def test_handle_message_reports_each_link(spotify, ingestor):
    spotify.add_tracks(track_json(1), track_json(2))
    spotify.playlists[PLAYLIST] = [track_json(2)]
    text = (f"new: https://open.spotify.com/track/{track_id(1)} "
            f"old: spotify:track:{track_id(2)} "
            f"gone: spotify:track:{track_id(3)} "
            f"dup: spotify:track:{track_id(1)}")

    reports = await ingestor.handle_message(text, CHANNEL)

    assert [r.category for r in reports] == [None, ErrorCategory.DUPLICATE, ErrorCategory.NOT_FOUND]
    assert reports[0].ok and reports[0].result.added
    assert not reports[2].ok


@pytest.mark.asyncio
async def test_handle_message_maps_rate_limit(spotify, ingestor, sleeper):
    spotify.failures[f"tracks/{track_id(1)}"] = FakeResponse(429, headers={"Retry-After": "1"})

    reports = await ingestor.handle_message(f"spotify:track:{track_id(1)}", CHANNEL)

    assert reports[0].category is ErrorCategory.RATE_LIMITED
    assert sleeper.delays_ms == [1000, 1000]


@pytest.mark.asyncio
async def test_handle_message_ignores_bots_and_other_channels(session, ingestor):
    text = f"spotify:track:{TRACK}"

    assert await ingestor.handle_message(text, CHANNEL, author_is_bot=True) == []
    assert await ingestor.handle_message(text, CHANNEL + 1) == []
    assert session.api_calls == []
