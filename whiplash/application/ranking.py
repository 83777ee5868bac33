from __future__ import annotations

from typing import Callable, Dict, List, Sequence, Tuple

from whiplash.application.tables import ArtistAccumulator, ScanState, TrackAccumulator
from whiplash.domain.entities import ArtistRow, DeckArtist, Snapshot, TopArtist, TopTrack, Totals
from whiplash.domain.normalization import name_sort_key, percent


TOP_N = 5

SORT_KEYS = ("artistName", "songCount", "songPercent", "playlistCount", "playlistPercent")
SORT_DIRECTIONS = ("asc", "desc")

_ROW_FIELDS: Dict[str, Callable[[ArtistRow], float]] = {
    "songCount": lambda r: r.song_count,
    "songPercent": lambda r: r.song_percent,
    "playlistCount": lambda r: r.playlist_count,
    "playlistPercent": lambda r: r.playlist_percent,
}


def _by_songs(a: ArtistAccumulator):
    return -a.song_count, name_sort_key(a.name)


def _by_playlists(a: ArtistAccumulator):
    return -a.playlist_count, name_sort_key(a.name)


def _track_by_playlists(t: TrackAccumulator):
    return -t.playlist_count, name_sort_key(t.name)


def canonical_artist_order(state: ScanState) -> List[ArtistAccumulator]:
    """Artists by song count desc, then case-insensitive name asc."""
    return sorted(state.artists, key=_by_songs)


def top_artists_by_songs(artists: List[ArtistAccumulator], total_unique_tracks: int) -> Tuple[TopArtist, ...]:
    ranked = sorted(artists, key=_by_songs)[:TOP_N]
    return tuple(
        TopArtist(
            artist_id=a.artist_id,
            artist_name=a.name,
            image_url=a.image_url,
            value=a.song_count,
            percent=percent(a.song_count, total_unique_tracks),
        )
        for a in ranked
    )


def top_artists_by_playlists(artists: List[ArtistAccumulator], total_playlists: int) -> Tuple[TopArtist, ...]:
    ranked = sorted(artists, key=_by_playlists)[:TOP_N]
    return tuple(
        TopArtist(
            artist_id=a.artist_id,
            artist_name=a.name,
            image_url=a.image_url,
            value=a.playlist_count,
            percent=percent(a.playlist_count, total_playlists),
        )
        for a in ranked
    )


def top_tracks_by_playlists(tracks: List[TrackAccumulator], total_playlists: int) -> Tuple[TopTrack, ...]:
    ranked = sorted(tracks, key=_track_by_playlists)[:TOP_N]
    return tuple(
        TopTrack(
            track_id=t.track_id,
            track_name=t.name,
            main_artist_id=t.main_artist_id,
            main_artist_name=t.main_artist_name,
            main_artist_image_url=t.main_artist_image_url,
            playlist_count=t.playlist_count,
            percent=percent(t.playlist_count, total_playlists),
        )
        for t in ranked
    )


def build_snapshot(state: ScanState, total_playlists: int) -> Snapshot:
    """Derive every snapshot view from the scan tables.

    Args:
        state: Scan state after aggregation and enrichment
        total_playlists: Number of playlists returned by the provider

    Returns:
        Immutable Snapshot; the tables are left untouched
    """
    total_unique_tracks = state.total_unique_tracks
    artists = canonical_artist_order(state)
    tracks = list(state.tracks)

    artist_table = tuple(
        ArtistRow(
            artist_id=a.artist_id,
            artist_name=a.name,
            image_url=a.image_url,
            song_count=a.song_count,
            song_percent=percent(a.song_count, total_unique_tracks),
            playlist_count=a.playlist_count,
            playlist_percent=percent(a.playlist_count, total_playlists),
        )
        for a in artists
    )

    deck = tuple(
        DeckArtist(
            artist_id=a.artist_id,
            artist_name=a.name,
            image_url=a.image_url,
            track_count=a.song_count,
        )
        for a in artists
    )

    return Snapshot(
        totals=Totals(
            total_playlists=total_playlists,
            total_artists=len(artists),
            total_unique_tracks=total_unique_tracks,
        ),
        top_artists_by_songs=top_artists_by_songs(artists, total_unique_tracks),
        top_artists_by_playlists=top_artists_by_playlists(artists, total_playlists),
        top_tracks_by_playlists=top_tracks_by_playlists(tracks, total_playlists),
        artist_table=artist_table,
        artists=deck,
    )


def sort_artist_rows(rows: Sequence[ArtistRow], key: str = "songCount", direction: str = "desc") -> List[ArtistRow]:
    """Return the artist table sorted by one column.

    Numeric columns compare numerically, artistName uses the
    case-insensitive name key. Ties keep their input order.
    """
    if key not in SORT_KEYS:
        raise ValueError(f"Unsupported sort key: {key}")
    if direction not in SORT_DIRECTIONS:
        raise ValueError(f"Unsupported sort direction: {direction}")

    reverse = direction == "desc"
    if key == "artistName":
        return sorted(rows, key=lambda r: name_sort_key(r.artist_name), reverse=reverse)
    return sorted(rows, key=_ROW_FIELDS[key], reverse=reverse)
