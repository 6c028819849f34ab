"""Track and playlist value types"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Sequence, Tuple


DISCOVERY_TARGET_SIZE = 20


def format_duration(total_ms: int) -> str:
    """Format a duration as ``Xh Ym Zs`` or ``Ym Zs``."""
    total_seconds = total_ms // 1000
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    return f"{minutes}m {seconds}s"


@dataclass(frozen=True)
class Track:
    """A track as returned by the Spotify Web API."""
    id: str
    uri: str
    name: str
    artists: Tuple[str, ...]
    album: str
    duration_ms: int
    popularity: Optional[int] = None
    explicit: bool = False
    preview_url: Optional[str] = None
    external_url: Optional[str] = None

    @property
    def primary_artist(self) -> Optional[str]:
        return self.artists[0] if self.artists else None

    @property
    def artists_display(self) -> str:
        return ", ".join(self.artists)

    @property
    def duration_display(self) -> str:
        total_seconds = self.duration_ms // 1000
        return f"{total_seconds // 60}:{total_seconds % 60:02d}"


@dataclass(frozen=True)
class PlaylistStats:
    """Summary statistics over a list of tracks"""
    total_tracks: int = 0
    unique_artists: int = 0
    total_duration_ms: int = 0
    explicit_tracks: int = 0
    most_common_artist: Optional[str] = None
    average_popularity: Optional[float] = None

    @classmethod
    def from_tracks(cls, tracks: Iterable[Track]) -> "PlaylistStats":
        """Calculate statistics from a list of tracks.

        Args:
            tracks: Tracks to summarise

        Returns:
            PlaylistStats instance
        """
        tracks = list(tracks)
        artist_counts: Counter = Counter()
        for track in tracks:
            artist_counts.update(track.artists)

        popularities = [t.popularity for t in tracks if t.popularity is not None]
        average_popularity = (
            sum(popularities) / len(popularities) if popularities else None
        )

        # Counter.most_common keeps first-seen order among equal counts
        most_common = artist_counts.most_common(1)

        return cls(
            total_tracks=len(tracks),
            unique_artists=len(artist_counts),
            total_duration_ms=sum(t.duration_ms for t in tracks),
            explicit_tracks=sum(1 for t in tracks if t.explicit),
            most_common_artist=most_common[0][0] if most_common else None,
            average_popularity=average_popularity,
        )

    @property
    def duration_display(self) -> str:
        return format_duration(self.total_duration_ms)

    def format_stats(self, title: str) -> str:
        return (
            f"{title}\n"
            f"  {self.total_tracks} tracks from {self.unique_artists} unique artists\n"
            f"  Total duration: {self.duration_display}\n"
            f"  {self.explicit_tracks} explicit tracks\n"
            f"  Most common artist: {self.most_common_artist or 'None'}"
        )


@dataclass(frozen=True)
class PlaylistsSummary:
    """Statistics for the collaborative and discovery playlists together"""
    collaborative: PlaylistStats
    discovery: PlaylistStats

    @property
    def total_tracks(self) -> int:
        return self.collaborative.total_tracks + self.discovery.total_tracks

    @property
    def total_duration_ms(self) -> int:
        return self.collaborative.total_duration_ms + self.discovery.total_duration_ms

    def format_summary(self) -> str:
        return "\n".join([
            "📊 Playlist summary",
            self.collaborative.format_stats("Collaborative playlist:"),
            self.discovery.format_stats("Discovery playlist:"),
            f"Combined: {self.total_tracks} tracks, {format_duration(self.total_duration_ms)}",
        ])


@dataclass(frozen=True)
class DiscoveryResult:
    """A generated discovery playlist and the seeds that produced it."""
    tracks: Tuple[Track, ...]
    seed_track_ids: Tuple[str, ...]
    stats: PlaylistStats
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def build(cls, tracks: Sequence[Track], seed_track_ids: Sequence[str]) -> "DiscoveryResult":
        tracks = tuple(tracks)
        return cls(
            tracks=tracks,
            seed_track_ids=tuple(seed_track_ids),
            stats=PlaylistStats.from_tracks(tracks),
        )

    @property
    def track_count(self) -> int:
        return len(self.tracks)

    @property
    def seed_count(self) -> int:
        return len(self.seed_track_ids)

    @property
    def is_complete(self) -> bool:
        return len(self.tracks) == DISCOVERY_TARGET_SIZE

    @property
    def uris(self) -> list:
        return [track.uri for track in self.tracks]


class AppendOutcome(Enum):
    """Result of an idempotent append"""
    ADDED = "added"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class AppendResult:
    outcome: AppendOutcome
    uri: str
    track: Optional[Track] = None

    @property
    def added(self) -> bool:
        return self.outcome is AppendOutcome.ADDED


class LinkType(Enum):
    TRACK = "track"
    ALBUM = "album"
    PLAYLIST = "playlist"
    ARTIST = "artist"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class TrackLink:
    """A parsed Spotify link or URI."""
    kind: LinkType
    id: Optional[str]
    source: str

    @property
    def is_track(self) -> bool:
        return self.kind is LinkType.TRACK

    @property
    def uri(self) -> Optional[str]:
        if self.id is None or self.kind is LinkType.UNSUPPORTED:
            return None
        return f"spotify:{self.kind.value}:{self.id}"
