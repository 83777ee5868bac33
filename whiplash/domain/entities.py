from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import MalformedImportFile


@dataclass(frozen=True)
class ArtistCredit:
    """An artist credited on a track, as listed by the provider."""

    artist_id: Optional[str] = None
    artist_name: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.artist_id and self.artist_name)


@dataclass(frozen=True)
class NormalizedTrack:
    """Canonical record extracted from a raw playlist item."""

    track_id: str
    track_name: str = "Unknown track"
    artists: List[ArtistCredit] = field(default_factory=list)
    main_artist: Optional[ArtistCredit] = None


@dataclass(frozen=True)
class PlaylistRef:
    """Minimal playlist reference returned by the catalog provider."""

    id: Optional[str]
    name: str = ""
    track_total: int = 0


# Snapshot entities. Field names of the JSON form are a persisted contract.


def _require(data: Any, keys: List[str], where: str) -> None:
    if not isinstance(data, dict):
        raise MalformedImportFile(f"{where}: expected an object")
    missing = [k for k in keys if k not in data]
    if missing:
        raise MalformedImportFile(f"{where}: missing fields {', '.join(missing)}")


def _require_list(data: Dict[str, Any], key: str) -> List[Any]:
    value = data.get(key)
    if not isinstance(value, list):
        raise MalformedImportFile(f"snapshot: '{key}' must be a list")
    return value


@dataclass(frozen=True)
class Totals:
    total_playlists: int = 0
    total_artists: int = 0
    total_unique_tracks: int = 0

    def to_json(self) -> Dict[str, Any]:
        return {
            "totalPlaylists": self.total_playlists,
            "totalArtists": self.total_artists,
            "totalUniqueTracks": self.total_unique_tracks,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Totals":
        _require(data, ["totalPlaylists", "totalArtists", "totalUniqueTracks"], "totals")
        return cls(
            total_playlists=int(data["totalPlaylists"]),
            total_artists=int(data["totalArtists"]),
            total_unique_tracks=int(data["totalUniqueTracks"]),
        )


@dataclass(frozen=True)
class TopArtist:
    """One row of a top-5 artist ranking."""

    artist_id: str
    artist_name: str
    image_url: Optional[str]
    value: int
    percent: float

    def to_json(self) -> Dict[str, Any]:
        return {
            "artistId": self.artist_id,
            "artistName": self.artist_name,
            "imageUrl": self.image_url,
            "value": self.value,
            "percent": self.percent,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "TopArtist":
        _require(data, ["artistId", "artistName", "value", "percent"], "top artist")
        return cls(
            artist_id=data["artistId"],
            artist_name=data["artistName"],
            image_url=data.get("imageUrl"),
            value=data["value"],
            percent=data["percent"],
        )


@dataclass(frozen=True)
class TopTrack:
    """One row of the top-5 tracks by playlist presence."""

    track_id: str
    track_name: str
    main_artist_id: Optional[str]
    main_artist_name: str
    main_artist_image_url: Optional[str]
    playlist_count: int
    percent: float

    def to_json(self) -> Dict[str, Any]:
        return {
            "trackId": self.track_id,
            "trackName": self.track_name,
            "mainArtistId": self.main_artist_id,
            "mainArtistName": self.main_artist_name,
            "mainArtistImageUrl": self.main_artist_image_url,
            "playlistCount": self.playlist_count,
            "percent": self.percent,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "TopTrack":
        _require(data, ["trackId", "trackName", "mainArtistName", "playlistCount", "percent"], "top track")
        return cls(
            track_id=data["trackId"],
            track_name=data["trackName"],
            main_artist_id=data.get("mainArtistId"),
            main_artist_name=data["mainArtistName"],
            main_artist_image_url=data.get("mainArtistImageUrl"),
            playlist_count=data["playlistCount"],
            percent=data["percent"],
        )


@dataclass(frozen=True)
class ArtistRow:
    """One row of the full artist table."""

    artist_id: str
    artist_name: str
    image_url: Optional[str]
    song_count: int
    song_percent: float
    playlist_count: int
    playlist_percent: float

    def to_json(self) -> Dict[str, Any]:
        return {
            "artistId": self.artist_id,
            "artistName": self.artist_name,
            "imageUrl": self.image_url,
            "songCount": self.song_count,
            "songPercent": self.song_percent,
            "playlistCount": self.playlist_count,
            "playlistPercent": self.playlist_percent,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ArtistRow":
        _require(
            data,
            ["artistId", "artistName", "songCount", "songPercent", "playlistCount", "playlistPercent"],
            "artist row",
        )
        return cls(
            artist_id=data["artistId"],
            artist_name=data["artistName"],
            image_url=data.get("imageUrl"),
            song_count=data["songCount"],
            song_percent=data["songPercent"],
            playlist_count=data["playlistCount"],
            playlist_percent=data["playlistPercent"],
        )


@dataclass(frozen=True)
class DeckArtist:
    """Flat artist entry consumed by the review deck."""

    artist_id: str
    artist_name: str
    image_url: Optional[str]
    track_count: int

    def to_json(self) -> Dict[str, Any]:
        return {
            "artistId": self.artist_id,
            "artistName": self.artist_name,
            "imageUrl": self.image_url,
            "trackCount": self.track_count,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "DeckArtist":
        _require(data, ["artistId", "artistName", "trackCount"], "artist")
        return cls(
            artist_id=data["artistId"],
            artist_name=data["artistName"],
            image_url=data.get("imageUrl"),
            track_count=data["trackCount"],
        )


@dataclass(frozen=True)
class Snapshot:
    """Immutable aggregation result for one scan."""

    totals: Totals
    top_artists_by_songs: Tuple[TopArtist, ...] = ()
    top_artists_by_playlists: Tuple[TopArtist, ...] = ()
    top_tracks_by_playlists: Tuple[TopTrack, ...] = ()
    artist_table: Tuple[ArtistRow, ...] = ()
    artists: Tuple[DeckArtist, ...] = ()

    def to_json(self) -> Dict[str, Any]:
        """Serialize snapshot to its exported JSON shape."""
        return {
            "totals": self.totals.to_json(),
            "topArtistsBySongs": [a.to_json() for a in self.top_artists_by_songs],
            "topArtistsByPlaylists": [a.to_json() for a in self.top_artists_by_playlists],
            "topTracksByPlaylists": [t.to_json() for t in self.top_tracks_by_playlists],
            "artistTable": [r.to_json() for r in self.artist_table],
            "artists": [a.to_json() for a in self.artists],
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Snapshot":
        """Deserialize snapshot, raising MalformedImportFile on structural errors."""
        _require(data, ["totals", "artists"], "snapshot")
        try:
            return cls(
                totals=Totals.from_json(data["totals"]),
                top_artists_by_songs=tuple(TopArtist.from_json(a) for a in data.get("topArtistsBySongs", [])),
                top_artists_by_playlists=tuple(TopArtist.from_json(a) for a in data.get("topArtistsByPlaylists", [])),
                top_tracks_by_playlists=tuple(TopTrack.from_json(t) for t in data.get("topTracksByPlaylists", [])),
                artist_table=tuple(ArtistRow.from_json(r) for r in data.get("artistTable", [])),
                artists=tuple(DeckArtist.from_json(a) for a in _require_list(data, "artists")),
            )
        except (TypeError, ValueError) as e:
            raise MalformedImportFile(f"snapshot: {e}") from e

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls(totals=Totals())
