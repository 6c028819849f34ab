"""Playlist reads and idempotent writes"""

import logging
import re
from typing import Any, Dict, List, Sequence, Tuple

from trackdrop.api.spotify import ResilientApiClient, parse_track
from trackdrop.errors import (
    EmptyReplacementError, InvalidInputError, InvalidTrackUriError, MalformedResponseError,
)
from trackdrop.models.track import AppendOutcome, PlaylistStats, PlaylistsSummary, Track
from trackdrop.monitoring.metrics import record_track_appended


logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_REPLACE_URIS = 100
TRACK_URI_PATTERN = re.compile(r'^spotify:track:[A-Za-z0-9]{22}$')

TRACK_FIELDS = (
    "total,next,items(track(id,uri,name,duration_ms,explicit,popularity,preview_url,"
    "external_urls,artists(name),album(name)))"
)
URI_FIELDS = "total,next,items(track(uri))"


def is_track_uri(uri: str) -> bool:
    return bool(TRACK_URI_PATTERN.match(uri or ""))


def _page_items(payload: Dict[str, Any]) -> List[Any]:
    items = payload.get("items")
    if not isinstance(items, list):
        raise MalformedResponseError("Playlist page has no items array")
    return items


class PlaylistStore:
    """Reads and mutates playlists through the shared API client.

    Every public operation holds the client's exclusive lock for its whole
    duration. Internal ``_`` helpers assume the lock is already held.
    """

    def __init__(self, client: ResilientApiClient, page_size: int = PAGE_SIZE):
        self.client = client
        self.page_size = page_size

    def _tracks_path(self, playlist_id: str) -> str:
        return f"playlists/{playlist_id}/tracks"

    async def _fetch_page(self, playlist_id: str, offset: int, fields: str) -> Tuple[List[Any], bool]:
        """One page of playlist items and whether it is the last one."""
        payload = await self.client.execute(
            "GET",
            self._tracks_path(playlist_id),
            params={"offset": offset, "limit": self.page_size, "fields": fields},
        )
        items = _page_items(payload)
        last = len(items) < self.page_size
        if "next" in payload and not payload["next"]:
            last = True
        total = payload.get("total")
        if isinstance(total, int) and offset + len(items) >= total:
            last = True
        return items, last

    async def _list_tracks(self, playlist_id: str) -> List[Track]:
        tracks: List[Track] = []
        offset = 0
        while True:
            items, last = await self._fetch_page(playlist_id, offset, TRACK_FIELDS)
            for item in items:
                # Local files and removed tracks come back with a null track
                entry = item.get("track") if isinstance(item, dict) else None
                if entry is None:
                    continue
                try:
                    tracks.append(parse_track(entry))
                except MalformedResponseError as e:
                    logger.debug("Skipping malformed playlist entry: %s", e)
            if last:
                break
            offset += self.page_size
        return tracks

    async def _contains(self, playlist_id: str, uri: str) -> bool:
        offset = 0
        while True:
            items, last = await self._fetch_page(playlist_id, offset, URI_FIELDS)
            for item in items:
                entry = item.get("track") if isinstance(item, dict) else None
                if isinstance(entry, dict) and entry.get("uri") == uri:
                    return True
            if last:
                return False
            offset += self.page_size

    async def list_tracks(self, playlist_id: str) -> List[Track]:
        """Fetch every track in a playlist, in playlist order.

        Args:
            playlist_id: Spotify playlist ID

        Returns:
            Tracks; null and malformed entries are skipped
        """
        async with self.client.exclusive():
            tracks = await self._list_tracks(playlist_id)
        logger.debug("Fetched %d tracks from playlist %s", len(tracks), playlist_id)
        return tracks

    async def contains(self, playlist_id: str, uri: str) -> bool:
        """Check whether a track URI is already in the playlist."""
        async with self.client.exclusive():
            return await self._contains(playlist_id, uri)

    async def append(self, playlist_id: str, uri: str) -> AppendOutcome:
        """Append a track unless it is already present.

        Args:
            playlist_id: Spotify playlist ID
            uri: ``spotify:track:<id>`` URI

        Returns:
            ADDED or ALREADY_EXISTS

        Raises:
            InvalidTrackUriError: If the URI is not a track URI
            ApiError: If the lookup or the write fails
        """
        if not is_track_uri(uri):
            raise InvalidTrackUriError(uri)

        async with self.client.exclusive():
            if await self._contains(playlist_id, uri):
                logger.info("Track %s already in playlist %s", uri, playlist_id)
                record_track_appended(AppendOutcome.ALREADY_EXISTS.value)
                return AppendOutcome.ALREADY_EXISTS

            await self.client.execute("POST", self._tracks_path(playlist_id), json={"uris": [uri]})

        logger.info("✓ Added %s to playlist %s", uri, playlist_id)
        record_track_appended(AppendOutcome.ADDED.value)
        return AppendOutcome.ADDED

    async def replace_all(self, playlist_id: str, uris: Sequence[str]) -> None:
        """Replace the whole playlist with ``uris`` in one request.

        Raises:
            EmptyReplacementError: If ``uris`` is empty
            InvalidInputError: If more than 100 URIs are given
        """
        uris = list(uris)
        if not uris:
            raise EmptyReplacementError(playlist_id)
        if len(uris) > MAX_REPLACE_URIS:
            raise InvalidInputError(
                f"Cannot replace playlist with {len(uris)} tracks (max {MAX_REPLACE_URIS})"
            )

        async with self.client.exclusive():
            await self.client.execute("PUT", self._tracks_path(playlist_id), json={"uris": uris})
        logger.info("✓ Replaced playlist %s with %d tracks", playlist_id, len(uris))

    async def recent_tracks(self, playlist_id: str, limit: int) -> List[Track]:
        """The last ``limit`` tracks of the playlist, oldest first."""
        tracks = await self.list_tracks(playlist_id)
        if limit <= 0:
            return []
        return tracks[-limit:]

    async def stats(self, playlist_id: str) -> PlaylistStats:
        return PlaylistStats.from_tracks(await self.list_tracks(playlist_id))

    async def summary(self, collaborative_id: str, discovery_id: str) -> PlaylistsSummary:
        """Statistics for both playlists, read one after the other."""
        return PlaylistsSummary(
            collaborative=await self.stats(collaborative_id),
            discovery=await self.stats(discovery_id),
        )
