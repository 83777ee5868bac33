import pytest

from whiplash.application.scan import LibraryScanner
from whiplash.crosscutting.metrics import MetricsCollector
from whiplash.domain.errors import AuthenticationMissing, ProviderFetchFailure
from whiplash.infrastructure.credentials import StaticCredentials
from whiplash.tests.fakes import FakeCatalog, artist, item, local_item


A1 = artist("a1", "Alpha")
A2 = artist("a2", "Beta")


def _library():
    return {
        "p1": [item("t1", "One", [A1]), item("t2", "Two", [A1, A2])],
        "p2": [item("t1", "One", [A1]), local_item()],
        "p3": [item("t3", "Three", [A2])],
    }


class TestLibraryScanner:
    """Tests for the end-to-end scan over a catalog."""

    def test_missing_token_raises_before_any_fetch(self):
        catalog = FakeCatalog(_library())
        scanner = LibraryScanner(StaticCredentials(None), catalog)

        with pytest.raises(AuthenticationMissing):
            scanner.scan()
        assert catalog.track_calls == []

    def test_scan_builds_snapshot(self):
        catalog = FakeCatalog(_library(), images={"a1": "https://img/a1.jpg"})
        result = LibraryScanner(StaticCredentials("token"), catalog).scan(scan_id="scan_test")

        snapshot = result.snapshot
        assert result.scan_id == "scan_test"
        assert snapshot.totals.total_playlists == 3
        assert snapshot.totals.total_unique_tracks == 3
        assert snapshot.totals.total_artists == 2
        assert catalog.track_calls == ["p1", "p2", "p3"]
        assert catalog.artist_calls == [["a1", "a2"]]

        rows = {r.artist_id: r for r in snapshot.artist_table}
        assert rows["a1"].image_url == "https://img/a1.jpg"
        assert rows["a2"].image_url is None
        assert rows["a1"].playlist_count == 2
        assert snapshot.top_tracks_by_playlists[0].track_id == "t1"
        assert snapshot.top_tracks_by_playlists[0].main_artist_image_url == "https://img/a1.jpg"

    def test_failure_aborts_whole_scan(self):
        catalog = FakeCatalog(_library(), fail_on="p2")
        scanner = LibraryScanner(StaticCredentials("token"), catalog)

        with pytest.raises(ProviderFetchFailure) as exc_info:
            scanner.scan()
        assert exc_info.value.status == 500
        assert catalog.artist_calls == []

    def test_enrichment_skipped_without_artists(self):
        catalog = FakeCatalog({"p1": [local_item()]})
        result = LibraryScanner(StaticCredentials("token"), catalog).scan()

        assert catalog.artist_calls == []
        assert result.snapshot.totals.total_playlists == 1
        assert result.snapshot.artists == ()

    def test_playlist_without_id_is_counted_but_not_fetched(self):
        catalog = FakeCatalog({"p1": [item("t1", "One", [A1])]})
        listed = catalog.fetch_all_playlists
        catalog.fetch_all_playlists = lambda token: listed(token) + [{"id": None, "name": "Broken"}]

        result = LibraryScanner(StaticCredentials("token"), catalog).scan()

        assert catalog.track_calls == ["p1"]
        assert result.snapshot.totals.total_playlists == 2
        assert result.snapshot.top_artists_by_playlists[0].percent == 50.0

    def test_parallel_fetch_matches_sequential(self):
        sequential = LibraryScanner(StaticCredentials("token"), FakeCatalog(_library())).scan()
        parallel = LibraryScanner(StaticCredentials("token"), FakeCatalog(_library()), fetch_workers=4).scan()

        assert parallel.snapshot == sequential.snapshot

    def test_metrics_are_recorded(self):
        metrics = MetricsCollector("scan_metrics")
        LibraryScanner(StaticCredentials("token"), FakeCatalog(_library(), images={"a1": "x"}),
                       metrics=metrics).scan(scan_id="scan_metrics")

        scan_metrics = metrics.get_scan_metrics()
        assert scan_metrics.total_playlists == 3
        assert scan_metrics.total_items == 5
        assert scan_metrics.total_accepted == 4
        assert scan_metrics.total_skipped == 1
        assert scan_metrics.total_artists_enriched == 1
        assert scan_metrics.end_time is not None
