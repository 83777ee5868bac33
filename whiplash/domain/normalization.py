from __future__ import annotations

import math
import unicodedata
from typing import Any, Mapping, Optional, Tuple

from .entities import ArtistCredit, NormalizedTrack, PlaylistRef


UNKNOWN_TRACK = "Unknown track"
UNKNOWN_ARTIST = "Unknown artist"

SKIP_NO_TRACK = "no_track"
SKIP_NOT_A_TRACK = "not_a_track"
SKIP_NO_ID = "no_id"


def strip_diacritics(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(c for c in normalized if not unicodedata.combining(c))


def name_sort_key(name: Optional[str]) -> Tuple[str, str]:
    """Case- and accent-insensitive ordering key for display names.

    The raw name is the second element so that names differing only in case
    still order deterministically.
    """
    value = name or ""
    return strip_diacritics(value).casefold(), value


def round1(value: float) -> float:
    """Round half-up to one decimal place."""
    return math.floor(value * 10 + 0.5) / 10


def percent(x: float, denom: float) -> float:
    if denom <= 0:
        return 0.0
    return round1((x / denom) * 100)


def safe_int(value: Any, fallback: int = 0) -> int:
    """Coerce a loosely typed number to int; non-numeric or non-finite values give the fallback."""
    try:
        x = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(x):
        return fallback
    return int(x)


def _credit_from_raw(raw: Any) -> ArtistCredit:
    if not isinstance(raw, Mapping):
        return ArtistCredit()
    return ArtistCredit(artist_id=raw.get("id") or None, artist_name=raw.get("name") or None)


def classify_playlist_item(item: Any) -> Tuple[Optional[NormalizedTrack], Optional[str]]:
    """Normalize a raw playlist item, returning (track, skip_reason).

    Exactly one of the two is None.
    """
    track = item.get("track") if isinstance(item, Mapping) else None
    if not isinstance(track, Mapping):
        return None, SKIP_NO_TRACK
    if track.get("type") != "track":
        return None, SKIP_NOT_A_TRACK

    # Local files come back with id=None
    track_id = track.get("id")
    if not track_id:
        return None, SKIP_NO_ID

    raw_artists = track.get("artists") or []
    credits = [_credit_from_raw(a) for a in raw_artists]

    return NormalizedTrack(
        track_id=track_id,
        track_name=track.get("name") or UNKNOWN_TRACK,
        artists=[c for c in credits if c.is_complete],
        main_artist=credits[0] if credits else None,
    ), None


def normalize_playlist_item(item: Any) -> Optional[NormalizedTrack]:
    track, _ = classify_playlist_item(item)
    return track


def playlist_ref_from_raw(raw: Any) -> PlaylistRef:
    if not isinstance(raw, Mapping):
        return PlaylistRef(id=None)
    tracks = raw.get("tracks") or {}
    return PlaylistRef(
        id=raw.get("id") or None,
        name=raw.get("name") or "",
        track_total=safe_int(tracks.get("total")) if isinstance(tracks, Mapping) else 0,
    )


def first_image_url(artist: Any) -> Optional[str]:
    images = artist.get("images") if isinstance(artist, Mapping) else None
    if isinstance(images, list) and images:
        first = images[0]
        if isinstance(first, Mapping):
            return first.get("url") or None
    return None
