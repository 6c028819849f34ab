"""Discovery announcements"""

import logging
from typing import Awaitable, Optional, Protocol, Union

from trackdrop.models.track import DiscoveryResult, format_duration
from trackdrop.playlist.discovery import DiscoveryFailure


logger = logging.getLogger(__name__)

__all__ = ["DiscoveryListener", "LoggingAnnouncer", "format_announcement", "format_duration"]


class DiscoveryListener(Protocol):
    """Receives discovery outcomes. Methods may be plain or async."""

    def on_discovery_complete(self, result: DiscoveryResult) -> Union[None, Awaitable[None]]:
        ...

    def on_discovery_failed(self, failure: DiscoveryFailure) -> Union[None, Awaitable[None]]:
        ...


def format_announcement(result: DiscoveryResult, playlist_url: Optional[str] = None) -> str:
    """Render a short multi-line summary of a discovery playlist."""
    stats = result.stats
    lines = [
        f"New discovery playlist: {result.track_count} tracks from {result.seed_count} seeds",
        f"Artists: {stats.unique_artists}, duration {stats.duration_display}",
    ]
    if stats.most_common_artist:
        lines.append(f"Most featured artist: {stats.most_common_artist}")
    if stats.average_popularity is not None:
        lines.append(f"Average popularity: {stats.average_popularity:.1f}/100")
    if playlist_url:
        lines.append(playlist_url)
    return "\n".join(lines)


class LoggingAnnouncer:
    """Default listener that writes announcements to the log."""

    def __init__(self, playlist_id: Optional[str] = None):
        self.playlist_id = playlist_id

    @property
    def playlist_url(self) -> Optional[str]:
        if not self.playlist_id:
            return None
        return f"https://open.spotify.com/playlist/{self.playlist_id}"

    def on_discovery_complete(self, result: DiscoveryResult) -> None:
        for line in format_announcement(result, self.playlist_url).splitlines():
            logger.info("📢 %s", line)

    def on_discovery_failed(self, failure: DiscoveryFailure) -> None:
        logger.error("📢 Discovery playlist generation failed (%s): %s",
                     failure.category.value, failure.message)
