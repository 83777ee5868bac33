import os
import time
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional

import requests
from urllib3.exceptions import ReadTimeoutError

import spotipy
from spotipy.exceptions import SpotifyException

from whiplash.crosscutting.metrics import MetricsCollector
from whiplash.domain.errors import ProviderFetchFailure, RateLimited
from whiplash.domain.ports import CatalogProvider

logger = logging.getLogger(__name__)


PLAYLIST_PAGE_SIZE = 50
PLAYLIST_ITEMS_PAGE_SIZE = 100
ARTISTS_BATCH_SIZE = 50
CLIENT_CACHE_SIZE = 8


def _default_client_factory(token: str, requests_timeout: int) -> spotipy.Spotify:
    # A plain session has no urllib3 retry adapter, so 429 and 5xx responses
    # surface as SpotifyException with their real status and headers
    return spotipy.Spotify(
        auth=token,
        requests_timeout=requests_timeout,
        requests_session=requests.Session(),
    )


class SpotifyCatalogProvider(CatalogProvider):
    """Spotify catalog reads used by the library scan."""

    def __init__(self,
                 requests_timeout: Optional[int] = None,
                 max_retries: Optional[int] = None,
                 metrics: Optional[MetricsCollector] = None,
                 client_factory: Optional[Callable[[str, int], Any]] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 client_cache_size: int = CLIENT_CACHE_SIZE):
        """Initialize Spotify provider.

        Args:
            requests_timeout: Per-request timeout in seconds
            max_retries: Retries for rate limits and transient transport errors
            metrics: Optional collector receiving retry and rate-limit figures
            client_factory: Builds a spotipy-compatible client for a token
            sleep: Sleep function, replaceable in tests
            client_cache_size: Most recently used clients kept per provider
        """
        self.requests_timeout = requests_timeout or int(os.getenv('WHIPLASH_REQUEST_TIMEOUT', '15'))
        self.max_retries = max_retries if max_retries is not None else int(os.getenv('WHIPLASH_MAX_RETRIES', '3'))
        self.metrics = metrics
        self._client_factory = client_factory or _default_client_factory
        self._sleep = sleep
        self._client_cache_size = max(1, client_cache_size)
        self._clients: "OrderedDict[str, Any]" = OrderedDict()
        self._clients_lock = threading.Lock()

    def _client(self, token: str):
        """Return the client for a token, evicting the least recently used one."""
        with self._clients_lock:
            client = self._clients.get(token)
            if client is not None:
                self._clients.move_to_end(token)
                return client

            client = self._client_factory(token, self.requests_timeout)
            self._clients[token] = client
            while len(self._clients) > self._client_cache_size:
                self._clients.popitem(last=False)
            return client

    @staticmethod
    def _retry_after_ms(error: SpotifyException) -> int:
        headers = getattr(error, 'headers', None) or {}
        raw = headers.get('Retry-After') or headers.get('retry-after')
        try:
            return max(1, int(raw)) * 1000
        except (TypeError, ValueError):
            return 1000

    def _raise_for_spotify_error(self, error: SpotifyException, operation: str) -> None:
        status = getattr(error, 'http_status', 0) or 0
        if status == 429:
            raise RateLimited(self._retry_after_ms(error), f"Rate limited during {operation}")
        raise ProviderFetchFailure(f"Spotify API error {status} during {operation}: {error.msg}", status=status)

    def _call(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Invoke a spotipy call with rate-limit and transient-error retries.

        Raises:
            ProviderFetchFailure: On non-success status or exhausted retries
        """
        attempt = 0
        while True:
            try:
                try:
                    return fn(*args, **kwargs)
                except SpotifyException as e:
                    self._raise_for_spotify_error(e, operation)

            except RateLimited as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise ProviderFetchFailure(f"Rate limited during {operation} after {self.max_retries} retries",
                                               status=429)
                logger.warning(f"Rate limited during {operation}, waiting {e.retry_after_ms}ms")
                if self.metrics:
                    self.metrics.record_rate_limit_wait(e.retry_after_ms)
                    self.metrics.record_retry()
                self._sleep(e.retry_after_ms / 1000.0)

            except (requests.exceptions.RequestException, ReadTimeoutError) as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise ProviderFetchFailure(f"Transport error during {operation}: {e}")
                # Exponential backoff: 1s, 2s, 4s, ...
                backoff_time = 2 ** (attempt - 1)
                logger.warning(f"{operation} failed (attempt {attempt}), retrying in {backoff_time}s: {e}")
                if self.metrics:
                    self.metrics.record_retry()
                self._sleep(backoff_time)

    def _collect_pages(self, token: str, operation: str, first_page: Callable[[], Any]) -> List[Dict[str, Any]]:
        client = self._client(token)
        out: List[Dict[str, Any]] = []

        page = self._call(operation, first_page)
        while page:
            items = page.get('items')
            if items is None:
                raise ProviderFetchFailure(f"Malformed page during {operation}: missing 'items'")
            out.extend(items)
            if not page.get('next'):
                break
            page = self._call(operation, client.next, page)

        return out

    def fetch_all_playlists(self, token: str) -> List[Dict[str, Any]]:
        """Return every playlist of the current user, following pagination."""
        client = self._client(token)
        playlists = self._collect_pages(
            token, "fetch playlists",
            lambda: client.current_user_playlists(limit=PLAYLIST_PAGE_SIZE, offset=0)
        )
        logger.debug(f"Fetched {len(playlists)} playlists")
        return playlists

    def fetch_all_playlist_tracks(self, token: str, playlist_id: str) -> List[Dict[str, Any]]:
        """Return every item of a playlist, following pagination."""
        client = self._client(token)
        items = self._collect_pages(
            token, f"fetch items of playlist {playlist_id}",
            lambda: client.playlist_items(playlist_id, limit=PLAYLIST_ITEMS_PAGE_SIZE, offset=0)
        )
        logger.debug(f"Fetched {len(items)} items for playlist {playlist_id}")
        return items

    def fetch_artists_by_ids(self, token: str, ids: List[str]) -> List[Dict[str, Any]]:
        """Return artist objects for all ids, in batches of 50."""
        client = self._client(token)
        out: List[Dict[str, Any]] = []

        for i in range(0, len(ids), ARTISTS_BATCH_SIZE):
            chunk = ids[i:i + ARTISTS_BATCH_SIZE]
            response = self._call(f"fetch artists batch {i // ARTISTS_BATCH_SIZE}", client.artists, chunk)
            # Unknown ids come back as null entries
            out.extend(a for a in (response or {}).get('artists') or [] if a)

        return out
