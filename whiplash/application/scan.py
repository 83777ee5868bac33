import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from whiplash.application.aggregation import PlaylistAggregator, collect_artist_ids, enrich_with_artist_images
from whiplash.application.ranking import build_snapshot
from whiplash.application.tables import ScanState
from whiplash.crosscutting.logging import (
    CorrelationContext, log_error, log_playlist_scanned, log_scan_complete, log_scan_start
)
from whiplash.crosscutting.metrics import MetricsCollector
from whiplash.domain.entities import PlaylistRef, Snapshot
from whiplash.domain.errors import AuthenticationMissing
from whiplash.domain.normalization import playlist_ref_from_raw
from whiplash.domain.ports import CatalogProvider, CredentialProvider


logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Snapshot plus the metrics gathered while producing it."""

    scan_id: str
    snapshot: Snapshot
    metrics: MetricsCollector


class ProgressTracker:
    """Logs periodic progress while playlists are folded in."""

    def __init__(self, total_playlists: int, progress_interval_sec: int = 30):
        self.total_playlists = total_playlists
        self.processed_playlists = 0
        self.processed_items = 0
        self.progress_interval_sec = progress_interval_sec
        self.start_time = time.time()
        self.last_progress_time = self.start_time

    def update(self, item_count: int) -> None:
        self.processed_playlists += 1
        self.processed_items += item_count

        current_time = time.time()
        if (self.processed_playlists % 10 == 0 or
                self.processed_playlists == self.total_playlists or
                current_time - self.last_progress_time >= self.progress_interval_sec):
            elapsed_sec = current_time - self.start_time
            progress_pct = (self.processed_playlists / self.total_playlists) * 100 if self.total_playlists else 100.0
            logger.info(f"Progress: {self.processed_playlists}/{self.total_playlists} playlists "
                        f"({progress_pct:.1f}%), {self.processed_items} items in {elapsed_sec:.1f}s")
            self.last_progress_time = current_time


class LibraryScanner:
    """Runs one full library scan and returns an immutable Snapshot.

    The scan is all-or-nothing: any provider failure propagates and the
    partially filled tables are dropped with the ScanState.
    """

    def __init__(self,
                 credentials: CredentialProvider,
                 catalog: CatalogProvider,
                 fetch_workers: int = 1,
                 metrics: Optional[MetricsCollector] = None):
        """Initialize scanner.

        Args:
            credentials: Source of the bearer token
            catalog: Paginated catalog reads
            fetch_workers: Playlists fetched ahead in parallel; merging stays sequential
            metrics: Collector to fill; a fresh one per scan when omitted
        """
        self.credentials = credentials
        self.catalog = catalog
        self.fetch_workers = max(1, fetch_workers)
        self.metrics = metrics

    def _create_scan_id(self) -> str:
        return f"scan_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}"

    def _fetch_items(self, token: str, ref: PlaylistRef) -> Tuple[PlaylistRef, List[Dict[str, Any]], datetime]:
        started = datetime.now()
        return ref, self.catalog.fetch_all_playlist_tracks(token, ref.id), started

    def _iter_playlist_items(self, token: str,
                             refs: List[PlaylistRef]) -> Iterator[Tuple[PlaylistRef, List[Dict[str, Any]], datetime]]:
        """Yield (playlist, items, fetch start) in playlist order."""
        if self.fetch_workers == 1 or len(refs) <= 1:
            for ref in refs:
                yield self._fetch_items(token, ref)
            return

        with ThreadPoolExecutor(max_workers=self.fetch_workers) as executor:
            # map() yields in submission order, so merges stay linearized
            yield from executor.map(lambda r: self._fetch_items(token, r), refs)

    def scan(self, scan_id: Optional[str] = None) -> ScanResult:
        """Scan the user's library.

        Raises:
            AuthenticationMissing: No token is available
            ProviderFetchFailure: Any catalog fetch failed
        """
        token = self.credentials.get_access_token()
        if not token:
            raise AuthenticationMissing()

        scan_id = scan_id or self._create_scan_id()
        metrics = self.metrics or MetricsCollector(scan_id)
        state = ScanState()

        with CorrelationContext(scan_id=scan_id), metrics.scan_context():
            try:
                raw_playlists = self.catalog.fetch_all_playlists(token)
                refs = [playlist_ref_from_raw(p) for p in raw_playlists]
                total_playlists = len(refs)
                log_scan_start(logger, scan_id, total_playlists)

                fetchable = [r for r in refs if r.id]
                if len(fetchable) < total_playlists:
                    logger.warning(f"Skipping {total_playlists - len(fetchable)} playlists without an id")

                aggregator = PlaylistAggregator(state)
                progress = ProgressTracker(len(fetchable))

                for ref, items, started in self._iter_playlist_items(token, fetchable):
                    with CorrelationContext(playlist_id=ref.id):
                        result = aggregator.add_playlist(ref.id, items)
                        metrics.record_playlist(
                            playlist_id=ref.id,
                            item_count=result.total_items,
                            accepted_count=result.accepted_items,
                            new_unique_tracks=result.new_unique_tracks,
                            skipped=result.skipped,
                            start_time=started,
                        )
                        log_playlist_scanned(logger, ref.id, result.total_items,
                                             result.accepted_items, result.skipped_items,
                                             name=ref.name)
                    progress.update(result.total_items)

                artist_ids = collect_artist_ids(state)
                if artist_ids:
                    with CorrelationContext(stage='enrich'):
                        artist_objects = self.catalog.fetch_artists_by_ids(token, artist_ids)
                        metrics.record_enriched(enrich_with_artist_images(state, artist_objects))

                snapshot = build_snapshot(state, total_playlists)
            except Exception as e:
                log_error(logger, "Scan failed", e, scan_id=scan_id)
                raise

        log_scan_complete(logger, scan_id,
                          snapshot.totals.total_playlists,
                          snapshot.totals.total_artists,
                          snapshot.totals.total_unique_tracks)
        return ScanResult(scan_id=scan_id, snapshot=snapshot, metrics=metrics)
