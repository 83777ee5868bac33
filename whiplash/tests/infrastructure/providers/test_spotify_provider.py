import json
from unittest.mock import Mock

import pytest
import requests
from spotipy.exceptions import SpotifyException

from whiplash.crosscutting.metrics import MetricsCollector
from whiplash.domain.errors import ProviderFetchFailure
from whiplash.infrastructure.providers.spotify import (
    ARTISTS_BATCH_SIZE, CLIENT_CACHE_SIZE, PLAYLIST_ITEMS_PAGE_SIZE, PLAYLIST_PAGE_SIZE, SpotifyCatalogProvider
)


class TestSpotifyCatalogProvider:
    """Contract tests for the Spotify catalog adapter."""

    def setup_method(self):
        self.client = Mock()
        self.sleeps = []
        self.metrics = MetricsCollector("scan_test")
        self.factory = Mock(return_value=self.client)
        self.provider = SpotifyCatalogProvider(
            requests_timeout=5,
            max_retries=2,
            metrics=self.metrics,
            client_factory=self.factory,
            sleep=self.sleeps.append,
        )

    def test_fetch_all_playlists_follows_next(self):
        """Pages are followed through client.next until next is empty."""
        first = {'items': [{'id': 'p1'}], 'next': 'https://api.spotify.com/v1/me/playlists?offset=50'}
        second = {'items': [{'id': 'p2'}], 'next': None}
        self.client.current_user_playlists.return_value = first
        self.client.next.return_value = second

        playlists = self.provider.fetch_all_playlists("token")

        assert [p['id'] for p in playlists] == ['p1', 'p2']
        self.client.current_user_playlists.assert_called_once_with(limit=PLAYLIST_PAGE_SIZE, offset=0)
        self.client.next.assert_called_once_with(first)
        self.factory.assert_called_once_with("token", 5)

    def test_fetch_playlist_tracks_single_page(self):
        self.client.playlist_items.return_value = {'items': [{'track': {'id': 't1'}}], 'next': None}

        items = self.provider.fetch_all_playlist_tracks("token", "p1")

        assert items == [{'track': {'id': 't1'}}]
        self.client.playlist_items.assert_called_once_with("p1", limit=PLAYLIST_ITEMS_PAGE_SIZE, offset=0)
        self.client.next.assert_not_called()

    def test_client_is_reused_per_token(self):
        self.client.playlist_items.return_value = {'items': [], 'next': None}

        self.provider.fetch_all_playlist_tracks("token", "p1")
        self.provider.fetch_all_playlist_tracks("token", "p2")

        assert self.factory.call_count == 1

    def test_client_cache_is_bounded(self):
        self.factory.side_effect = lambda token, timeout: Mock(name=token)

        for i in range(1000):
            self.provider._client(f"token-{i}")

        assert len(self.provider._clients) == CLIENT_CACHE_SIZE
        assert "token-999" in self.provider._clients
        assert "token-0" not in self.provider._clients

    def test_recently_used_client_survives_eviction(self):
        self.factory.side_effect = lambda token, timeout: Mock(name=token)
        provider = SpotifyCatalogProvider(client_factory=self.factory, client_cache_size=2)

        first = provider._client("a")
        provider._client("b")
        assert provider._client("a") is first
        provider._client("c")

        assert list(provider._clients) == ["a", "c"]
        assert self.factory.call_count == 3

    def test_malformed_page_raises(self):
        self.client.playlist_items.return_value = {'next': None}

        with pytest.raises(ProviderFetchFailure, match="missing 'items'"):
            self.provider.fetch_all_playlist_tracks("token", "p1")

    def test_rate_limit_waits_for_retry_after(self):
        rate_limited = SpotifyException(429, -1, "too many requests", headers={'Retry-After': '2'})
        self.client.current_user_playlists.side_effect = [rate_limited, {'items': [{'id': 'p1'}], 'next': None}]

        playlists = self.provider.fetch_all_playlists("token")

        assert [p['id'] for p in playlists] == ['p1']
        assert self.sleeps == [2.0]
        metrics = self.metrics.get_scan_metrics()
        assert metrics.total_rate_limit_wait_ms == 2000
        assert metrics.total_retry_count == 1

    def test_rate_limit_without_header_waits_one_second(self):
        rate_limited = SpotifyException(429, -1, "too many requests")
        self.client.playlist_items.side_effect = [rate_limited, {'items': [], 'next': None}]

        self.provider.fetch_all_playlist_tracks("token", "p1")

        assert self.sleeps == [1.0]

    def test_rate_limit_retries_exhausted(self):
        rate_limited = SpotifyException(429, -1, "too many requests", headers={'Retry-After': '1'})
        self.client.playlist_items.side_effect = rate_limited

        with pytest.raises(ProviderFetchFailure) as exc_info:
            self.provider.fetch_all_playlist_tracks("token", "p1")

        assert exc_info.value.status == 429
        assert len(self.sleeps) == 2

    def test_http_error_fails_without_retry(self):
        self.client.playlist_items.side_effect = SpotifyException(404, -1, "Not found")

        with pytest.raises(ProviderFetchFailure) as exc_info:
            self.provider.fetch_all_playlist_tracks("token", "missing")

        assert exc_info.value.status == 404
        assert "404" in str(exc_info.value)
        assert self.sleeps == []
        assert self.client.playlist_items.call_count == 1

    def test_transport_error_backs_off_exponentially(self):
        self.client.playlist_items.side_effect = [
            requests.exceptions.ConnectionError("reset"),
            requests.exceptions.Timeout("slow"),
            {'items': [], 'next': None},
        ]

        assert self.provider.fetch_all_playlist_tracks("token", "p1") == []
        assert self.sleeps == [1, 2]
        assert self.metrics.get_scan_metrics().total_retry_count == 2

    def test_transport_error_exhausted(self):
        self.client.playlist_items.side_effect = requests.exceptions.ConnectionError("down")

        with pytest.raises(ProviderFetchFailure, match="Transport error"):
            self.provider.fetch_all_playlist_tracks("token", "p1")

    def test_fetch_artists_in_batches(self):
        ids = [f"a{i}" for i in range(ARTISTS_BATCH_SIZE + 3)]
        self.client.artists.side_effect = lambda chunk: {'artists': [{'id': i} for i in chunk]}

        artists = self.provider.fetch_artists_by_ids("token", ids)

        assert [a['id'] for a in artists] == ids
        assert self.client.artists.call_count == 2
        assert len(self.client.artists.call_args_list[0][0][0]) == ARTISTS_BATCH_SIZE
        assert len(self.client.artists.call_args_list[1][0][0]) == 3

    def test_fetch_artists_drops_null_entries(self):
        self.client.artists.return_value = {'artists': [{'id': 'a1'}, None]}

        assert self.provider.fetch_artists_by_ids("token", ["a1", "gone"]) == [{'id': 'a1'}]

    def test_fetch_artists_empty_ids(self):
        assert self.provider.fetch_artists_by_ids("token", []) == []
        self.client.artists.assert_not_called()


def test_defaults_from_environment(monkeypatch):
    monkeypatch.setenv('WHIPLASH_REQUEST_TIMEOUT', '30')
    monkeypatch.setenv('WHIPLASH_MAX_RETRIES', '5')

    provider = SpotifyCatalogProvider()

    assert provider.requests_timeout == 30
    assert provider.max_retries == 5


def _response(status, body, headers=None):
    response = requests.Response()
    response.status_code = status
    response._content = json.dumps(body).encode('utf-8')
    response.encoding = 'utf-8'
    response.headers['Content-Type'] = 'application/json'
    response.headers.update(headers or {})
    response.url = 'https://api.spotify.com/v1/me/playlists'
    return response


class TestDefaultSpotifyClient:
    """Status handling through a real spotipy client and requests session."""

    def setup_method(self):
        self.sleeps = []
        self.provider = SpotifyCatalogProvider(requests_timeout=5, max_retries=2, sleep=self.sleeps.append)

    def _serve(self, monkeypatch, responses):
        calls = []

        def fake_request(session, method, url, **kwargs):
            calls.append(url)
            return responses.pop(0)

        monkeypatch.setattr(requests.Session, 'request', fake_request)
        return calls

    def test_server_error_keeps_real_status(self, monkeypatch):
        calls = self._serve(monkeypatch, [
            _response(503, {'error': {'status': 503, 'message': 'Service unavailable'}}),
        ])

        with pytest.raises(ProviderFetchFailure) as exc_info:
            self.provider.fetch_all_playlists("token")

        assert exc_info.value.status == 503
        assert self.sleeps == []
        assert len(calls) == 1

    def test_rate_limit_honours_retry_after_header(self, monkeypatch):
        calls = self._serve(monkeypatch, [
            _response(429, {'error': {'status': 429, 'message': 'API rate limit exceeded'}},
                      headers={'Retry-After': '7'}),
            _response(200, {'items': [{'id': 'p1'}], 'next': None}),
        ])

        playlists = self.provider.fetch_all_playlists("token")

        assert [p['id'] for p in playlists] == ['p1']
        assert self.sleeps == [7.0]
        assert len(calls) == 2
