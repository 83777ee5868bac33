from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, TYPE_CHECKING

from whiplash.domain.entities import DeckArtist, Snapshot
from whiplash.domain.normalization import name_sort_key, round1

if TYPE_CHECKING:
    from whiplash.crosscutting.reporting import ProgressFile


logger = logging.getLogger(__name__)


MODE_INSIGHTS = "insights"
MODE_DECK = "deck"
INSIGHT_PAGES = 5


@dataclass(frozen=True)
class DeckStats:
    total: int
    seen: int
    not_seen: int
    remaining: int
    seen_pct: float
    not_seen_pct: float


@dataclass(frozen=True)
class ReviewedArtist:
    artist_name: str
    track_count: int


class ReviewSession:
    """Swipe-to-triage review over a snapshot's artists.

    The deck is alphabetical. A decision maps an artist id to True (seen)
    or False (not seen); the deck index points at the next artist to review.
    """

    def __init__(self, snapshot: Optional[Snapshot] = None,
                 decisions: Optional[Dict[str, bool]] = None,
                 deck_index: int = 0,
                 insight_page: int = 0,
                 mode: str = MODE_INSIGHTS):
        self.snapshot = snapshot or Snapshot.empty()
        self.decisions: Dict[str, bool] = dict(decisions or {})
        self.deck: List[DeckArtist] = self._sorted_deck(self.snapshot)
        self.deck_index = self._clamp(deck_index)
        self.insight_page = max(0, min(INSIGHT_PAGES - 1, int(insight_page)))
        self.mode = mode if mode in (MODE_INSIGHTS, MODE_DECK) else MODE_INSIGHTS

    @staticmethod
    def _sorted_deck(snapshot: Snapshot) -> List[DeckArtist]:
        return sorted(snapshot.artists, key=lambda a: name_sort_key(a.artist_name))

    def _clamp(self, index) -> int:
        return max(0, min(int(index), len(self.deck)))

    def current(self) -> Optional[DeckArtist]:
        if self.deck_index < len(self.deck):
            return self.deck[self.deck_index]
        return None

    def is_done(self) -> bool:
        return self.deck_index >= len(self.deck)

    def mark_current(self, seen: bool) -> Optional[DeckArtist]:
        """Record a decision for the current artist and advance.

        Returns the artist that was decided, or None when the deck is done.
        """
        artist = self.current()
        if artist is None:
            return None
        self.decisions[artist.artist_id] = bool(seen)
        self.deck_index += 1
        return artist

    def undo(self) -> None:
        """Step back one card. The earlier decision stays until overwritten."""
        self.deck_index = max(0, self.deck_index - 1)

    def reset(self) -> None:
        self.decisions = {}
        self.deck_index = 0

    def replace_snapshot(self, snapshot: Snapshot) -> None:
        """Swap in a fresh scan, keeping decisions and clamping the index."""
        self.snapshot = snapshot
        self.deck = self._sorted_deck(snapshot)
        self.deck_index = self._clamp(self.deck_index)
        self.insight_page = 0

    def next_insight(self) -> None:
        self.insight_page = min(INSIGHT_PAGES - 1, self.insight_page + 1)

    def prev_insight(self) -> None:
        self.insight_page = max(0, self.insight_page - 1)

    def stats(self) -> DeckStats:
        total = len(self.deck)
        seen = sum(1 for a in self.deck if self.decisions.get(a.artist_id) is True)
        not_seen = sum(1 for a in self.deck if self.decisions.get(a.artist_id) is False)

        def pct(x: int) -> float:
            return round1(x / total * 100) if total > 0 else 0.0

        return DeckStats(
            total=total,
            seen=seen,
            not_seen=not_seen,
            remaining=total - seen - not_seen,
            seen_pct=pct(seen),
            not_seen_pct=pct(not_seen),
        )

    def _with_decision(self, value: bool) -> List[ReviewedArtist]:
        return [
            ReviewedArtist(artist_name=a.artist_name, track_count=a.track_count)
            for a in self.deck
            if self.decisions.get(a.artist_id) is value
        ]

    def seen_artists(self) -> List[ReviewedArtist]:
        return self._with_decision(True)

    def not_seen_artists(self) -> List[ReviewedArtist]:
        return self._with_decision(False)

    def restore(self, progress: "ProgressFile") -> None:
        """Replace all state from an already validated progress file."""
        self.snapshot = progress.data
        self.deck = self._sorted_deck(progress.data)
        self.decisions = dict(progress.decisions)
        self.deck_index = self._clamp(progress.deck_index)
        self.insight_page = max(0, min(INSIGHT_PAGES - 1, progress.insight_page))
        self.mode = MODE_DECK if progress.mode == MODE_DECK else MODE_INSIGHTS
        logger.info(f"Restored review progress: {len(self.decisions)} decisions, deck index {self.deck_index}")
