from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Set

from whiplash.domain.entities import ArtistCredit
from whiplash.domain.normalization import UNKNOWN_ARTIST, UNKNOWN_TRACK


@dataclass
class ArtistAccumulator:
    """Running totals for one artist during a scan."""

    artist_id: str
    name: str
    song_count: int = 0
    playlist_count: int = 0
    image_url: Optional[str] = None


@dataclass
class TrackAccumulator:
    """Running totals for one track during a scan."""

    track_id: str
    name: str = UNKNOWN_TRACK
    main_artist_id: Optional[str] = None
    main_artist_name: str = UNKNOWN_ARTIST
    main_artist_image_url: Optional[str] = None
    playlist_count: int = 0


class ArtistTable:
    """Artist accumulators keyed by artist id, in insertion order."""

    def __init__(self) -> None:
        self._rows: Dict[str, ArtistAccumulator] = {}

    def get_or_insert(self, artist_id: str, name: str) -> ArtistAccumulator:
        """Return the entry for artist_id, creating a zero-valued one if absent.

        The display name of an existing entry is never overwritten.
        """
        row = self._rows.get(artist_id)
        if row is None:
            row = ArtistAccumulator(artist_id=artist_id, name=name)
            self._rows[artist_id] = row
        return row

    def get(self, artist_id: str) -> Optional[ArtistAccumulator]:
        return self._rows.get(artist_id)

    def increment_song(self, artist_id: str, name: str) -> None:
        self.get_or_insert(artist_id, name).song_count += 1

    def increment_playlists(self, artist_ids: Set[str]) -> None:
        for artist_id in artist_ids:
            row = self._rows.get(artist_id)
            if row is not None:
                row.playlist_count += 1

    def ids(self) -> list:
        return list(self._rows.keys())

    def __contains__(self, artist_id: object) -> bool:
        return artist_id in self._rows

    def __iter__(self) -> Iterator[ArtistAccumulator]:
        return iter(self._rows.values())

    def __len__(self) -> int:
        return len(self._rows)


class TrackTable:
    """Track accumulators keyed by track id, in insertion order."""

    def __init__(self) -> None:
        self._rows: Dict[str, TrackAccumulator] = {}

    def insert_if_absent(self, track_id: str, name: str,
                         main_artist: Optional[ArtistCredit]) -> TrackAccumulator:
        row = self._rows.get(track_id)
        if row is None:
            row = TrackAccumulator(
                track_id=track_id,
                name=name,
                main_artist_id=main_artist.artist_id if main_artist else None,
                main_artist_name=(main_artist.artist_name if main_artist else None) or UNKNOWN_ARTIST,
            )
            self._rows[track_id] = row
        return row

    def get(self, track_id: str) -> Optional[TrackAccumulator]:
        return self._rows.get(track_id)

    def increment_playlists(self, track_ids: Set[str]) -> None:
        for track_id in track_ids:
            row = self._rows.get(track_id)
            if row is not None:
                row.playlist_count += 1

    def __contains__(self, track_id: object) -> bool:
        return track_id in self._rows

    def __iter__(self) -> Iterator[TrackAccumulator]:
        return iter(self._rows.values())

    def __len__(self) -> int:
        return len(self._rows)


@dataclass
class ScanState:
    """Mutable state owned by a single scan invocation."""

    artists: ArtistTable = field(default_factory=ArtistTable)
    tracks: TrackTable = field(default_factory=TrackTable)
    unique_track_ids: Set[str] = field(default_factory=set)
    playlists_processed: int = 0

    @property
    def total_unique_tracks(self) -> int:
        return len(self.unique_track_ids)

    def mark_track_seen(self, track_id: str) -> bool:
        """Mark track_id globally seen; return True if it was new."""
        if track_id in self.unique_track_ids:
            return False
        self.unique_track_ids.add(track_id)
        return True
