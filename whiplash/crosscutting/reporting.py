import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from whiplash.application.review import MODE_DECK, MODE_INSIGHTS, ReviewSession
from whiplash.domain.entities import Snapshot
from whiplash.domain.errors import MalformedImportFile
from whiplash.domain.normalization import round1, safe_int


PROGRESS_VERSION = 1
PROGRESS_FILENAME = "whiplash-progress.json"


@dataclass
class ProgressFile:
    """Resume file: the snapshot plus review decisions."""

    data: Snapshot
    deck_index: int = 0
    decisions: Dict[str, bool] = field(default_factory=dict)
    insight_page: int = 0
    mode: str = MODE_INSIGHTS
    exported_at: str = ""
    version: int = PROGRESS_VERSION

    def to_json(self) -> Dict[str, Any]:
        """Serialize progress file to JSON."""
        return {
            "version": self.version,
            "exportedAt": self.exported_at,
            "data": self.data.to_json(),
            "deckIndex": self.deck_index,
            "decisions": dict(self.decisions),
            "insightPage": self.insight_page,
            "mode": self.mode,
        }

    @classmethod
    def from_json(cls, payload: Any) -> "ProgressFile":
        """Validate and deserialize a progress file.

        Raises:
            MalformedImportFile: Wrong version tag, missing or mistyped fields
        """
        validate_progress_payload(payload)
        decisions = payload["decisions"]
        return cls(
            data=Snapshot.from_json(payload["data"]),
            deck_index=safe_int(payload["deckIndex"], 0),
            decisions={str(k): v for k, v in decisions.items()},
            insight_page=safe_int(payload.get("insightPage"), 0),
            mode=MODE_DECK if payload.get("mode") == MODE_DECK else MODE_INSIGHTS,
            exported_at=payload["exportedAt"],
            version=payload["version"],
        )


def validate_progress_payload(payload: Any) -> None:
    if not isinstance(payload, dict):
        raise MalformedImportFile("Invalid progress file: expected an object")
    if payload.get("version") != PROGRESS_VERSION:
        raise MalformedImportFile(f"Invalid progress file: unsupported version {payload.get('version')!r}")
    if not isinstance(payload.get("exportedAt"), str):
        raise MalformedImportFile("Invalid progress file: missing exportedAt")
    data = payload.get("data")
    if not isinstance(data, dict) or not data.get("totals") or not isinstance(data.get("artists"), list):
        raise MalformedImportFile("Invalid progress file: missing snapshot data")
    if "deckIndex" not in payload:
        raise MalformedImportFile("Invalid progress file: missing deckIndex")
    decisions = payload.get("decisions")
    if not isinstance(decisions, dict):
        raise MalformedImportFile("Invalid progress file: missing decisions")
    if any(not isinstance(v, bool) for v in decisions.values()):
        raise MalformedImportFile("Invalid progress file: decisions must be booleans")


def create_progress_file(session: ReviewSession, exported_at: Optional[datetime] = None) -> ProgressFile:
    exported_at = exported_at or datetime.now(timezone.utc)
    return ProgressFile(
        data=session.snapshot,
        deck_index=session.deck_index,
        decisions=dict(session.decisions),
        insight_page=session.insight_page,
        mode=session.mode,
        exported_at=exported_at.isoformat().replace('+00:00', 'Z'),
    )


def _write_json(path: str, payload: Dict[str, Any]) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)


def _read_json(path: str) -> Any:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise MalformedImportFile(f"{path} is not valid JSON: {e}") from e


def export_progress(session: ReviewSession, path: str) -> ProgressFile:
    progress = create_progress_file(session)
    _write_json(path, progress.to_json())
    return progress


def import_progress(path: str) -> ProgressFile:
    return ProgressFile.from_json(_read_json(path))


def restore_session(session: ReviewSession, path: str) -> ProgressFile:
    """Load a progress file into the session.

    The file is fully parsed before the session is touched, so a malformed
    file leaves the session as it was.
    """
    progress = import_progress(path)
    session.restore(progress)
    return progress


def save_snapshot(snapshot: Snapshot, path: str) -> None:
    _write_json(path, snapshot.to_json())


def load_snapshot(path: str) -> Snapshot:
    """Load a snapshot from a bare snapshot file or from a progress file."""
    payload = _read_json(path)
    if isinstance(payload, dict) and "version" in payload:
        return ProgressFile.from_json(payload).data
    return Snapshot.from_json(payload)


def insights_report(snapshot: Snapshot) -> Dict[str, Any]:
    """Insights pages 1-4 as JSON (the artist table is left out)."""
    return {
        "generatedAt": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
        "totals": snapshot.totals.to_json(),
        "topArtistsBySongs": [a.to_json() for a in snapshot.top_artists_by_songs],
        "topArtistsByPlaylists": [a.to_json() for a in snapshot.top_artists_by_playlists],
        "topTracksByPlaylists": [t.to_json() for t in snapshot.top_tracks_by_playlists],
    }


def save_insights_report(snapshot: Snapshot, path: str) -> Dict[str, Any]:
    report = insights_report(snapshot)
    _write_json(path, report)
    return report


def render_insights(snapshot: Snapshot) -> str:
    totals = snapshot.totals
    lines: List[str] = [
        "Overview",
        f"  Unique tracks:     {totals.total_unique_tracks}",
        f"  Unique artists:    {totals.total_artists}",
        f"  Playlists scanned: {totals.total_playlists}",
        "",
        "Top 5 artists by songs",
    ]
    for i, a in enumerate(snapshot.top_artists_by_songs, 1):
        lines.append(f"  {i}. {a.artist_name} - {a.value} - {round1(a.percent)}%")

    lines += ["", "Top 5 artists by playlists"]
    for i, a in enumerate(snapshot.top_artists_by_playlists, 1):
        lines.append(f"  {i}. {a.artist_name} - {a.value} - {round1(a.percent)}%")

    lines += ["", "Top 5 tracks by playlist presence"]
    for i, t in enumerate(snapshot.top_tracks_by_playlists, 1):
        lines.append(f"  {i}. {t.track_name} ({t.main_artist_name}) - {t.playlist_count} - {round1(t.percent)}%")

    return "\n".join(lines)


def render_review_status(session: ReviewSession) -> str:
    stats = session.stats()
    lines: List[str] = [
        "Review status",
        f"  Total: {stats.total}  Seen: {stats.seen} ({stats.seen_pct}%)  "
        f"Not seen: {stats.not_seen} ({stats.not_seen_pct}%)  Remaining: {stats.remaining}",
        "",
        "Seen",
    ]
    seen = session.seen_artists()
    lines += [f"  {a.artist_name} ({a.track_count})" for a in seen] or ["  (none)"]
    lines += ["", "Not seen"]
    not_seen = session.not_seen_artists()
    lines += [f"  {a.artist_name} ({a.track_count})" for a in not_seen] or ["  (none)"]
    return "\n".join(lines)
