import json
from datetime import datetime
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict, field
from contextlib import contextmanager
import threading


@dataclass
class PlaylistMetrics:
    """Metrics for a single playlist fetch-and-fold."""
    playlist_id: str
    item_count: int
    accepted_count: int
    skipped_count: int
    new_unique_tracks: int
    duration_ms: int
    start_time: datetime
    end_time: Optional[datetime] = None

    @property
    def accept_rate(self) -> float:
        """Share of items that made it into aggregation."""
        if self.item_count == 0:
            return 0.0
        return self.accepted_count / self.item_count


@dataclass
class ScanMetrics:
    """Aggregated metrics for one library scan."""
    scan_id: str
    total_playlists: int = 0
    total_items: int = 0
    total_accepted: int = 0
    total_skipped: int = 0
    total_artists_enriched: int = 0
    total_retry_count: int = 0
    total_rate_limit_wait_ms: int = 0
    total_duration_ms: int = 0
    skip_reasons: Dict[str, int] = field(default_factory=dict)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    playlists: List[PlaylistMetrics] = field(default_factory=list)

    @property
    def overall_accept_rate(self) -> float:
        if self.total_items == 0:
            return 0.0
        return self.total_accepted / self.total_items

    @property
    def average_playlist_duration_ms(self) -> float:
        if not self.playlists:
            return 0.0
        return sum(p.duration_ms for p in self.playlists) / len(self.playlists)


class MetricsCollector:
    """Collects metrics for a scan. Safe to call from fetch worker threads."""

    def __init__(self, scan_id: str):
        self.scan_id = scan_id
        self.scan_metrics = ScanMetrics(scan_id=scan_id)
        self._lock = threading.Lock()

    def start_scan(self) -> None:
        with self._lock:
            self.scan_metrics.start_time = datetime.now()

    def end_scan(self) -> None:
        with self._lock:
            self.scan_metrics.end_time = datetime.now()
            if self.scan_metrics.start_time:
                self.scan_metrics.total_duration_ms = int(
                    (self.scan_metrics.end_time - self.scan_metrics.start_time).total_seconds() * 1000
                )

    def record_playlist(self, playlist_id: str, item_count: int, accepted_count: int,
                        new_unique_tracks: int, skipped: Dict[str, int],
                        start_time: datetime) -> PlaylistMetrics:
        """Record a processed playlist and fold it into the scan totals."""
        end_time = datetime.now()
        skipped_count = sum(skipped.values())
        entry = PlaylistMetrics(
            playlist_id=playlist_id,
            item_count=item_count,
            accepted_count=accepted_count,
            skipped_count=skipped_count,
            new_unique_tracks=new_unique_tracks,
            duration_ms=int((end_time - start_time).total_seconds() * 1000),
            start_time=start_time,
            end_time=end_time,
        )
        with self._lock:
            self.scan_metrics.playlists.append(entry)
            self.scan_metrics.total_playlists += 1
            self.scan_metrics.total_items += item_count
            self.scan_metrics.total_accepted += accepted_count
            self.scan_metrics.total_skipped += skipped_count
            for reason, count in skipped.items():
                self.scan_metrics.skip_reasons[reason] = self.scan_metrics.skip_reasons.get(reason, 0) + count
        return entry

    def record_enriched(self, count: int) -> None:
        with self._lock:
            self.scan_metrics.total_artists_enriched += max(0, count)

    def record_retry(self) -> None:
        with self._lock:
            self.scan_metrics.total_retry_count += 1

    def record_rate_limit_wait(self, wait_ms: int) -> None:
        with self._lock:
            self.scan_metrics.total_rate_limit_wait_ms += max(0, wait_ms)

    @contextmanager
    def scan_context(self):
        """Context manager marking scan start and end."""
        self.start_scan()
        try:
            yield self
        finally:
            self.end_scan()

    def get_scan_metrics(self) -> ScanMetrics:
        with self._lock:
            return self.scan_metrics

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary for JSON serialization."""
        with self._lock:
            scan_dict = asdict(self.scan_metrics)
            for key in ('start_time', 'end_time'):
                if scan_dict[key]:
                    scan_dict[key] = scan_dict[key].isoformat()
            for playlist in scan_dict['playlists']:
                for key in ('start_time', 'end_time'):
                    if playlist[key]:
                        playlist[key] = playlist[key].isoformat()
            return scan_dict

    def save_to_file(self, file_path: str) -> None:
        """Save metrics to JSON file."""
        with open(file_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

    def print_summary(self) -> None:
        """Print metrics summary to stdout."""
        metrics = self.get_scan_metrics()

        print(f"\n=== Metrics Summary for Scan {self.scan_id} ===")
        print(f"Playlists: {metrics.total_playlists}")
        print(f"Items: {metrics.total_items}")
        print(f"Accepted: {metrics.total_accepted} ({metrics.overall_accept_rate:.2%})")
        print(f"Skipped: {metrics.total_skipped}")
        for reason, count in sorted(metrics.skip_reasons.items()):
            print(f"  {reason}: {count}")
        print(f"Artists with images: {metrics.total_artists_enriched}")
        print(f"Retries: {metrics.total_retry_count}")
        print(f"Rate Limit Wait: {metrics.total_rate_limit_wait_ms}ms")
        print(f"Total Duration: {metrics.total_duration_ms}ms")
        print(f"Average Playlist Duration: {metrics.average_playlist_duration_ms:.0f}ms")

        partial = sorted((p for p in metrics.playlists if p.accept_rate < 1.0 and p.item_count),
                         key=lambda p: p.accept_rate)
        if partial:
            print("Playlists with skipped items:")
            for p in partial:
                print(f"  {p.playlist_id}: {p.accepted_count}/{p.item_count} ({p.accept_rate:.0%})")
