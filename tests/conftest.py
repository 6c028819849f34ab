"""Shared fixtures: a scripted stand-in for aiohttp.ClientSession"""

import asyncio
import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pytest

from trackdrop.api.auth import TOKEN_URL, TokenManager
from trackdrop.api.spotify import API_URL, ResilientApiClient
from trackdrop.models.config_models import RetryPolicy
from trackdrop.playlist.store import PlaylistStore


def track_id(n: int) -> str:
    """22-character alphanumeric ID, as Spotify uses."""
    return f"t{n:021d}"


def track_json(
    n: int,
    name: Optional[str] = None,
    artists: Optional[List[str]] = None,
    duration_ms: int = 200000,
    popularity: Optional[int] = 50,
    explicit: bool = False,
) -> Dict[str, Any]:
    tid = track_id(n)
    return {
        "id": tid,
        "uri": f"spotify:track:{tid}",
        "name": name or f"Song {n}",
        "artists": [{"name": a} for a in (artists or [f"Artist {n}"])],
        "album": {"name": f"Album {n}"},
        "duration_ms": duration_ms,
        "popularity": popularity,
        "explicit": explicit,
        "preview_url": None,
        "external_urls": {"spotify": f"https://open.spotify.com/track/{tid}"},
    }


def playlist_page(tracks: List[Any]) -> Dict[str, Any]:
    return {"items": [{"track": t} for t in tracks]}


def search_page(tracks: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"tracks": {"items": tracks}}


class FakeResponse:
    """Minimal async-context-manager response."""

    def __init__(
        self,
        status: int = 200,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        text: Optional[str] = None,
        delay: float = 0.0,
    ):
        self.status = status
        self.headers = headers or {}
        if text is None:
            text = "" if body is None else json.dumps(body)
        self._text = text
        self.delay = delay

    async def text(self) -> str:
        return self._text

    async def json(self, content_type: Optional[str] = "application/json") -> Any:
        return json.loads(self._text)

    async def __aenter__(self) -> "FakeResponse":
        if self.delay:
            await asyncio.sleep(self.delay)
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False


class _RaiseOnEnter:
    def __init__(self, error: BaseException):
        self.error = error

    async def __aenter__(self):
        raise self.error

    async def __aexit__(self, *exc_info) -> bool:
        return False


@dataclass
class RecordedCall:
    method: str
    url: str
    kwargs: Dict[str, Any] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return self.url[len(API_URL) + 1:] if self.url.startswith(API_URL) else self.url

    @property
    def params(self) -> Dict[str, Any]:
        return self.kwargs.get("params") or {}

    @property
    def json(self) -> Any:
        return self.kwargs.get("json")


class FakeSession:
    """Records requests and replays scripted responses.

    Token endpoint calls are answered from ``token_responses`` when queued,
    otherwise with a fresh one-hour token. API calls come from the
    ``api_responses`` queue, then from ``handler`` if set.
    """

    def __init__(self, handler: Optional[Callable[[RecordedCall], Any]] = None):
        self.handler = handler
        self.api_responses: deque = deque()
        self.token_responses: deque = deque()
        self.api_calls: List[RecordedCall] = []
        self.token_calls: List[RecordedCall] = []
        self.token_delay = 0.0
        self.closed = False

    def queue(self, *responses: Any) -> None:
        self.api_responses.extend(responses)

    def queue_token(self, *responses: Any) -> None:
        self.token_responses.extend(responses)

    def request(self, method: str, url: str, **kwargs: Any):
        call = RecordedCall(method, url, kwargs)
        if url == TOKEN_URL:
            self.token_calls.append(call)
            if self.token_responses:
                item = self.token_responses.popleft()
            else:
                item = FakeResponse(200, {
                    "access_token": f"access-{len(self.token_calls)}",
                    "token_type": "Bearer",
                    "expires_in": 3600,
                }, delay=self.token_delay)
        else:
            self.api_calls.append(call)
            if self.api_responses:
                item = self.api_responses.popleft()
            elif self.handler is not None:
                item = self.handler(call)
            else:
                raise AssertionError(f"Unexpected request: {method} {url}")

        if isinstance(item, BaseException):
            return _RaiseOnEnter(item)
        return item

    async def close(self) -> None:
        self.closed = True


class FakeSpotify:
    """In-memory Web API: playlists, track lookup and search.

    ``failures`` maps a request path to a response or exception returned
    every time that path is requested.
    """

    def __init__(self):
        self.playlists: Dict[str, List[Any]] = {}
        self.tracks: Dict[str, Dict[str, Any]] = {}
        self.search_results: Dict[str, List[Dict[str, Any]]] = {}
        self.failures: Dict[str, Any] = {}

    def add_tracks(self, *tracks: Dict[str, Any]) -> None:
        for track in tracks:
            self.tracks[track["id"]] = track

    def __call__(self, call: RecordedCall) -> Any:
        path = call.path
        if path in self.failures:
            return self.failures[path]

        parts = path.split("/")
        if parts[0] == "playlists" and len(parts) == 3 and parts[2] == "tracks":
            return self._playlist(call, parts[1])
        if parts[0] == "tracks" and len(parts) == 2:
            track = self.tracks.get(parts[1])
            if track is None:
                return FakeResponse(404, {"error": {"status": 404, "message": "Non existing id"}})
            return FakeResponse(200, track)
        if path == "search":
            return FakeResponse(200, search_page(self.search_results.get(call.params["q"], [])))
        raise AssertionError(f"Unhandled request: {call.method} {path}")

    def _playlist(self, call: RecordedCall, playlist_id: str) -> FakeResponse:
        if call.method == "GET":
            items = self.playlists.get(playlist_id, [])
            offset, limit = call.params["offset"], call.params["limit"]
            page = items[offset:offset + limit]
            return FakeResponse(200, {
                "items": [{"track": t} for t in page],
                "total": len(items),
                "next": "next-page" if offset + limit < len(items) else None,
            })

        entries = [self.tracks.get(uri.rsplit(":", 1)[-1], {"uri": uri}) for uri in call.json["uris"]]
        if call.method == "POST":
            self.playlists.setdefault(playlist_id, []).extend(entries)
            return FakeResponse(201, {"snapshot_id": "snap"})
        if call.method == "PUT":
            self.playlists[playlist_id] = entries
            return FakeResponse(200, {"snapshot_id": "snap"})
        raise AssertionError(f"Unhandled playlist method: {call.method}")

    def uris(self, playlist_id: str) -> List[str]:
        return [t["uri"] if t else None for t in self.playlists.get(playlist_id, [])]


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)

    @property
    def delays_ms(self) -> List[int]:
        return [round(d * 1000) for d in self.delays]


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def spotify(session) -> FakeSpotify:
    fake = FakeSpotify()
    session.handler = fake
    return fake


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay_ms=1000, max_delay_ms=30000, jitter=0.0)


@pytest.fixture
def tokens(session) -> TokenManager:
    return TokenManager(session, "client-id", "client-secret", "refresh-token")


@pytest.fixture
def client(session, tokens, policy, sleeper) -> ResilientApiClient:
    return ResilientApiClient(session, tokens, policy, sleep=sleeper, lock_timeout=0.5)


@pytest.fixture
def store(client) -> PlaylistStore:
    return PlaylistStore(client)
