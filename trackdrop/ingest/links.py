"""Spotify link extraction and chat message ingestion"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlsplit

from trackdrop.api.spotify import ResilientApiClient
from trackdrop.errors import ErrorCategory, InvalidInputError, TrackDropError, category_of
from trackdrop.models.track import AppendOutcome, AppendResult, LinkType, TrackLink
from trackdrop.playlist.store import PlaylistStore


logger = logging.getLogger(__name__)

LINK_PATTERN = re.compile(
    r"https?://(?:open\.)?spotify\.com/(?:intl-[a-z]{2}(?:-[a-z]{2})?/)?(?:user/[^/\s]+/)?"
    r"(?:track|album|playlist|artist)/[A-Za-z0-9]+(?:\?[^\s]*)?"
    r"|spotify:(?:track|album|playlist|artist):[A-Za-z0-9]+"
)
TRAILING_PUNCTUATION = ".,!?)]};:'\">"
SPOTIFY_HOSTS = ("open.spotify.com", "spotify.com")
ID_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


def extract_spotify_links(text: str) -> List[str]:
    """All Spotify URLs and URIs in ``text``, in order, without duplicates."""
    links = [match.group(0).rstrip(TRAILING_PUNCTUATION) for match in LINK_PATTERN.finditer(text or "")]
    return list(dict.fromkeys(links))


def parse_spotify_link(link: str) -> TrackLink:
    """Parse an open.spotify.com URL or a ``spotify:<type>:<id>`` URI.

    Handles ``/intl-xx/`` prefixes and legacy ``/user/<name>/playlist/<id>``
    paths. Unknown content types parse as UNSUPPORTED.

    Raises:
        InvalidInputError: If the link is not a Spotify link or the ID is malformed
    """
    link = (link or "").strip()

    if link.startswith("spotify:"):
        parts = link.split(":")
        if len(parts) != 3 or not ID_PATTERN.match(parts[2]):
            raise InvalidInputError(f"Invalid Spotify URI: {link}")
        return TrackLink(kind=_link_type(parts[1]), id=parts[2], source=link)

    parsed = urlsplit(link)
    if parsed.scheme not in ("http", "https") or parsed.hostname not in SPOTIFY_HOSTS:
        raise InvalidInputError(f"Not a Spotify link: {link}")

    segments = [segment for segment in parsed.path.split("/") if segment]
    if len(segments) < 2:
        raise InvalidInputError(f"Invalid Spotify link: {link}")
    if segments[0].startswith("intl-"):
        segments = segments[1:]
    if len(segments) >= 4 and segments[0] == "user":
        segments = segments[2:]
    if len(segments) < 2:
        raise InvalidInputError(f"Invalid Spotify link: {link}")

    content_type, content_id = segments[-2], segments[-1]
    if not ID_PATTERN.match(content_id):
        raise InvalidInputError(f"Invalid Spotify ID in link: {link}")
    return TrackLink(kind=_link_type(content_type), id=content_id, source=link)


def _link_type(value: str) -> LinkType:
    try:
        return LinkType(value)
    except ValueError:
        return LinkType.UNSUPPORTED


def extract_track_links(text: str) -> List[str]:
    """Spotify links in ``text`` that point at a single track."""
    tracks = []
    for link in extract_spotify_links(text):
        try:
            if parse_spotify_link(link).is_track:
                tracks.append(link)
        except InvalidInputError:
            logger.debug("Ignoring unparseable link: %s", link)
    return tracks


@dataclass(frozen=True)
class IngestReport:
    """Outcome of processing one link from a chat message"""
    link: str
    result: Optional[AppendResult] = None
    error_category: Optional[ErrorCategory] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None

    @property
    def category(self) -> Optional[ErrorCategory]:
        if self.error_category is not None:
            return self.error_category
        if self.result is not None and self.result.outcome is AppendOutcome.ALREADY_EXISTS:
            return ErrorCategory.DUPLICATE
        return None


class LinkIngestor:
    """Entry point the chat layer calls for every message it sees."""

    def __init__(
        self,
        store: PlaylistStore,
        client: ResilientApiClient,
        playlist_id: str,
        channel_id: int,
    ):
        self.store = store
        self.client = client
        self.playlist_id = playlist_id
        self.channel_id = channel_id

    async def append_if_track(self, link: str) -> Optional[AppendResult]:
        """Look up and append the track behind ``link``.

        Args:
            link: Spotify URL or URI

        Returns:
            AppendResult, or None when the link is not a track

        Raises:
            InvalidInputError: If the link cannot be parsed
            ApiError: If the lookup or the append fails
        """
        parsed = parse_spotify_link(link)
        if not parsed.is_track:
            logger.debug("Ignoring non-track link (%s): %s", parsed.kind.value, link)
            return None

        track = await self.client.get_track(parsed.id)
        outcome = await self.store.append(self.playlist_id, track.uri)
        return AppendResult(outcome=outcome, uri=track.uri, track=track)

    async def handle_message(
        self,
        text: str,
        channel_id: int,
        author_is_bot: bool = False,
    ) -> List[IngestReport]:
        """Process every track link in a chat message.

        Messages from bots or from other channels are ignored.

        Returns:
            One report per distinct track link, in message order
        """
        if author_is_bot or channel_id != self.channel_id:
            return []

        reports: List[IngestReport] = []
        seen_uris = set()
        for link in extract_track_links(text):
            uri = parse_spotify_link(link).uri
            if uri in seen_uris:
                continue
            seen_uris.add(uri)

            try:
                result = await self.append_if_track(link)
            except TrackDropError as e:
                logger.warning("❌ Could not add %s: %s", link, e)
                reports.append(IngestReport(
                    link=link, error_category=category_of(e), error_message=str(e)
                ))
                continue

            if result.added:
                logger.info("✓ Added '%s' by %s", result.track.name, result.track.artists_display)
            reports.append(IngestReport(link=link, result=result))

        return reports
