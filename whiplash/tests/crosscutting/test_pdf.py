from datetime import datetime

from whiplash.application.aggregation import PlaylistAggregator
from whiplash.application.ranking import build_snapshot
from whiplash.application.review import ReviewSession
from whiplash.application.tables import ScanState
from whiplash.crosscutting.pdf import (
    PdfSection, export_insights_pdf, export_review_pdf, insights_pdf_sections,
    review_pdf_sections, write_pdf
)
from whiplash.domain.entities import Snapshot
from whiplash.tests.fakes import artist, item


GENERATED_AT = datetime(2024, 5, 1, 18, 30)


def _snapshot():
    state = ScanState()
    aggregator = PlaylistAggregator(state)
    aggregator.add_playlist("p1", [
        item("t1", "One", [artist("a1", "Alpha")]),
        item("t2", "Two", [artist("a1", "Alpha"), artist("a2", "Beta & <Co>")]),
    ])
    aggregator.add_playlist("p2", [item("t1", "One", [artist("a1", "Alpha")])])
    return build_snapshot(state, 2)


class TestInsightsSections:
    """Tests for the insights PDF content."""

    def setup_method(self):
        self.sections = insights_pdf_sections(_snapshot(), generated_at=GENERATED_AT)

    def test_one_section_per_page(self):
        assert len(self.sections) == 4
        assert all(s.new_page for s in self.sections)
        assert [s.title for s in self.sections] == [
            "Whiplash - Spotify Snapshot",
            "Top Artists by Songs",
            "Top Artists by Playlists",
            "Top Tracks by Playlist Presence",
        ]

    def test_overview(self):
        overview = self.sections[0]
        assert overview.subtitles == ["2024-05-01 18:30"]
        assert overview.rows == [
            ["Unique tracks", "2"],
            ["Unique artists", "2"],
            ["Playlists scanned", "2"],
        ]

    def test_top_rows_carry_rounded_percent(self):
        songs, playlists, tracks = self.sections[1:]
        assert songs.subtitles == ["Based on 2 unique tracks"]
        assert songs.rows == [["Alpha", "2", "100.0%"], ["Beta & <Co>", "1", "50.0%"]]
        assert playlists.rows[0] == ["Alpha", "2", "100.0%"]
        assert tracks.header == ["Track", "Main artist", "# Playlists", "% of playlists"]
        assert tracks.rows[0] == ["One", "Alpha", "2", "100.0%"]

    def test_empty_library(self):
        sections = insights_pdf_sections(Snapshot.empty(), generated_at=GENERATED_AT)
        assert [len(s.rows) for s in sections] == [3, 0, 0, 0]


class TestReviewSections:
    """Tests for the seen / not seen PDF content."""

    def test_sections_follow_decisions(self):
        session = ReviewSession(_snapshot())
        session.mark_current(True)
        session.mark_current(False)

        seen, not_seen = review_pdf_sections(session, generated_at=GENERATED_AT)

        assert seen.title == "Whiplash - Live Shows Checklist"
        assert seen.subtitles[1] == "Playlists scanned: 2 / Unique artists: 2"
        assert seen.heading == "Seen (1)"
        assert seen.rows == [["Alpha", "2"]]
        assert not_seen.heading == "Not seen (1)"
        assert not_seen.rows == [["Beta & <Co>", "1"]]
        assert not not_seen.new_page

    def test_undecided_artists_are_left_out(self):
        seen, not_seen = review_pdf_sections(ReviewSession(_snapshot()))
        assert seen.heading == "Seen (0)"
        assert not_seen.rows == []


class TestWritePdf:
    """Tests for PDF rendering."""

    def test_insights_pdf_has_four_pages(self, tmp_path):
        path = tmp_path / "out" / "insights.pdf"

        pages = export_insights_pdf(_snapshot(), str(path))

        assert pages == 4
        assert path.read_bytes().startswith(b"%PDF")

    def test_review_pdf_fits_one_page(self, tmp_path):
        session = ReviewSession(_snapshot())
        session.mark_current(True)
        path = tmp_path / "status.pdf"

        assert export_review_pdf(session, str(path)) == 1
        assert path.read_bytes().startswith(b"%PDF")

    def test_long_tables_flow_onto_new_pages(self, tmp_path):
        rows = [[f"Artist {i}", str(i)] for i in range(200)]
        sections = [PdfSection(header=["Artist", "Songs"], rows=rows, col_widths=[300, 199], title="Long")]

        assert write_pdf(str(tmp_path / "long.pdf"), sections) > 1
