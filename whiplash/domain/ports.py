from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol


class CredentialProvider(Protocol):
    """Port for whatever holds the user's session (cookies, token file, env)."""

    def get_access_token(self) -> Optional[str]:
        """Return a bearer token, or None when the user is not authenticated."""


class CatalogProvider(Protocol):
    """Port defining the paginated catalog reads the scanner relies on.

    Implementations must follow pagination transparently and return complete
    sequences. Raw provider dicts are returned; normalization happens in the domain.
    """

    def fetch_all_playlists(self, token: str) -> List[Dict[str, Any]]:
        """Return every playlist of the current user, in provider order."""

    def fetch_all_playlist_tracks(self, token: str, playlist_id: str) -> List[Dict[str, Any]]:
        """Return every item of the given playlist, in playlist order."""

    def fetch_artists_by_ids(self, token: str, ids: List[str]) -> List[Dict[str, Any]]:
        """Return artist objects for the ids, chunking requests as needed."""
