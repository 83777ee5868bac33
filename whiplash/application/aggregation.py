from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from whiplash.application.tables import ScanState
from whiplash.domain.normalization import classify_playlist_item, first_image_url


logger = logging.getLogger(__name__)


@dataclass
class PlaylistResult:
    """Outcome of folding one playlist into the scan state."""

    playlist_id: str
    total_items: int = 0
    accepted_items: int = 0
    new_unique_tracks: int = 0
    skipped: Dict[str, int] = field(default_factory=dict)

    @property
    def skipped_items(self) -> int:
        return sum(self.skipped.values())


class PlaylistAggregator:
    """Folds playlists into a ScanState with playlist-scoped dedup.

    Song counts are incremented once per globally new track. Playlist
    counts are incremented once per (artist, playlist) and (track, playlist)
    pair, after the whole playlist has been read.
    """

    def __init__(self, state: ScanState):
        self.state = state

    def add_playlist(self, playlist_id: str, items: Iterable[Any]) -> PlaylistResult:
        """Process every item of one playlist and apply its presence counts.

        Args:
            playlist_id: Identifier of the playlist being processed
            items: Raw playlist items as returned by the catalog provider

        Returns:
            PlaylistResult with item statistics for logging and metrics
        """
        result = PlaylistResult(playlist_id=playlist_id)
        artists_seen: Set[str] = set()
        tracks_seen: Set[str] = set()

        for item in items:
            result.total_items += 1
            track, skip_reason = classify_playlist_item(item)
            if track is None:
                result.skipped[skip_reason] = result.skipped.get(skip_reason, 0) + 1
                continue

            result.accepted_items += 1
            tracks_seen.add(track.track_id)

            self.state.tracks.insert_if_absent(track.track_id, track.track_name, track.main_artist)

            if self.state.mark_track_seen(track.track_id):
                result.new_unique_tracks += 1
                for credit in track.artists:
                    self.state.artists.increment_song(credit.artist_id, credit.artist_name)

            for credit in track.artists:
                self.state.artists.get_or_insert(credit.artist_id, credit.artist_name)
                artists_seen.add(credit.artist_id)

        self.state.artists.increment_playlists(artists_seen)
        self.state.tracks.increment_playlists(tracks_seen)
        self.state.playlists_processed += 1

        logger.debug(f"Playlist {playlist_id}: {result.accepted_items}/{result.total_items} items accepted, "
                     f"{result.new_unique_tracks} new unique tracks")
        return result


def enrich_with_artist_images(state: ScanState, artist_objects: Iterable[Any]) -> int:
    """Backfill artist and main-artist images from provider artist objects.

    Args:
        state: Scan state whose tables are updated in place
        artist_objects: Raw artist objects (id, images)

    Returns:
        Number of artists for which an image was found
    """
    image_by_artist_id: Dict[str, Optional[str]] = {}
    for artist in artist_objects:
        artist_id = artist.get("id") if isinstance(artist, dict) else None
        if not artist_id:
            continue
        image_by_artist_id[artist_id] = first_image_url(artist)

    found = 0
    for row in state.artists:
        row.image_url = image_by_artist_id.get(row.artist_id)
        if row.image_url:
            found += 1

    for row in state.tracks:
        if row.main_artist_id:
            row.main_artist_image_url = image_by_artist_id.get(row.main_artist_id)

    return found


def collect_artist_ids(state: ScanState) -> List[str]:
    return state.artists.ids()
