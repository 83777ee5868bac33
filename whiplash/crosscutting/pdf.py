import os
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import (
    CondPageBreak, PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
)

from whiplash.application.review import ReviewSession
from whiplash.domain.entities import Snapshot
from whiplash.domain.normalization import round1

logger = logging.getLogger(__name__)


INSIGHTS_PDF_FILENAME = "whiplash-insights.pdf"
REVIEW_PDF_FILENAME = "whiplash-live-status.pdf"

MARGIN_X = 48
MARGIN_TOP = 56
HEADER_FILL = colors.Color(20 / 255.0, 20 / 255.0, 30 / 255.0)
# Room for a section heading plus a few rows before breaking the page
SECTION_MIN_SPACE = 140


@dataclass
class PdfSection:
    """One titled table in a PDF export."""

    header: List[str]
    rows: List[List[str]]
    col_widths: List[float]
    title: Optional[str] = None
    subtitles: List[str] = field(default_factory=list)
    heading: Optional[str] = None
    new_page: bool = True


def _pct(value: float) -> str:
    return f"{round1(value)}%"


def _stamp(generated_at: Optional[datetime]) -> str:
    return (generated_at or datetime.now()).strftime('%Y-%m-%d %H:%M')


def insights_pdf_sections(snapshot: Snapshot, generated_at: Optional[datetime] = None) -> List[PdfSection]:
    """Insights pages 1-4, one section per page."""
    totals = snapshot.totals
    return [
        PdfSection(
            title="Whiplash - Spotify Snapshot",
            subtitles=[_stamp(generated_at)],
            heading="Overview",
            header=["Metric", "Value"],
            rows=[
                ["Unique tracks", str(totals.total_unique_tracks)],
                ["Unique artists", str(totals.total_artists)],
                ["Playlists scanned", str(totals.total_playlists)],
            ],
            col_widths=[300, 199],
        ),
        PdfSection(
            title="Top Artists by Songs",
            subtitles=[f"Based on {totals.total_unique_tracks} unique tracks"],
            header=["Artist", "# Songs", "% of songs"],
            rows=[[a.artist_name, str(a.value), _pct(a.percent)] for a in snapshot.top_artists_by_songs],
            col_widths=[299, 100, 100],
        ),
        PdfSection(
            title="Top Artists by Playlists",
            subtitles=[f"Based on {totals.total_playlists} playlists"],
            header=["Artist", "# Playlists", "% of playlists"],
            rows=[[a.artist_name, str(a.value), _pct(a.percent)] for a in snapshot.top_artists_by_playlists],
            col_widths=[299, 100, 100],
        ),
        PdfSection(
            title="Top Tracks by Playlist Presence",
            subtitles=[f"Based on {totals.total_playlists} playlists"],
            header=["Track", "Main artist", "# Playlists", "% of playlists"],
            rows=[[t.track_name, t.main_artist_name, str(t.playlist_count), _pct(t.percent)]
                  for t in snapshot.top_tracks_by_playlists],
            col_widths=[200, 140, 70, 89],
        ),
    ]


def review_pdf_sections(session: ReviewSession, generated_at: Optional[datetime] = None) -> List[PdfSection]:
    """Seen and not-seen lists; the second section follows on the same page when it fits."""
    totals = session.snapshot.totals
    seen = session.seen_artists()
    not_seen = session.not_seen_artists()
    header = ["Artist", "Unique songs in playlists"]
    return [
        PdfSection(
            title="Whiplash - Live Shows Checklist",
            subtitles=[
                _stamp(generated_at),
                f"Playlists scanned: {totals.total_playlists} / Unique artists: {totals.total_artists}",
            ],
            heading=f"Seen ({len(seen)})",
            header=header,
            rows=[[a.artist_name, str(a.track_count)] for a in seen],
            col_widths=[320, 179],
        ),
        PdfSection(
            heading=f"Not seen ({len(not_seen)})",
            header=header,
            rows=[[a.artist_name, str(a.track_count)] for a in not_seen],
            col_widths=[320, 179],
            new_page=False,
        ),
    ]


def _styles():
    base = getSampleStyleSheet()
    return {
        'title': ParagraphStyle('WhiplashTitle', parent=base['Title'], fontName='Helvetica-Bold',
                                fontSize=18, leading=22, alignment=TA_LEFT, spaceAfter=4),
        'subtitle': ParagraphStyle('WhiplashSubtitle', parent=base['Normal'], fontName='Helvetica',
                                   fontSize=11, leading=14, textColor=colors.Color(80 / 255.0, 80 / 255.0, 80 / 255.0)),
        'heading': ParagraphStyle('WhiplashHeading', parent=base['Heading2'], fontName='Helvetica-Bold',
                                  fontSize=13, leading=16, spaceBefore=14, spaceAfter=6),
        'cell': ParagraphStyle('WhiplashCell', parent=base['Normal'], fontName='Helvetica',
                               fontSize=11, leading=13),
        'head': ParagraphStyle('WhiplashHead', parent=base['Normal'], fontName='Helvetica-Bold',
                               fontSize=11, leading=13, textColor=colors.white),
    }


def _table(section: PdfSection, styles) -> Table:
    data = [[Paragraph(escape(h), styles['head']) for h in section.header]]
    data += [[Paragraph(escape(cell), styles['cell']) for cell in row] for row in section.rows]

    table = Table(data, colWidths=section.col_widths, repeatRows=1, hAlign='LEFT')
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), HEADER_FILL),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.whitesmoke]),
        ('GRID', (0, 0), (-1, -1), 0.25, colors.lightgrey),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('TOPPADDING', (0, 0), (-1, -1), 4),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
    ]))
    return table


def write_pdf(path: str, sections: List[PdfSection], title: str = "Whiplash") -> int:
    """Render sections to an A4 PDF.

    Returns:
        Number of pages written
    """
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    styles = _styles()
    doc = SimpleDocTemplate(
        path,
        pagesize=A4,
        leftMargin=MARGIN_X,
        rightMargin=MARGIN_X,
        topMargin=MARGIN_TOP,
        bottomMargin=MARGIN_X,
        title=title,
    )

    story = []
    for i, section in enumerate(sections):
        if i and section.new_page:
            story.append(PageBreak())
        elif i:
            story.append(CondPageBreak(SECTION_MIN_SPACE))
            story.append(Spacer(1, 14))
        if section.title:
            story.append(Paragraph(escape(section.title), styles['title']))
        for subtitle in section.subtitles:
            story.append(Paragraph(escape(subtitle), styles['subtitle']))
        if section.heading:
            story.append(Paragraph(escape(section.heading), styles['heading']))
        else:
            story.append(Spacer(1, 14))
        story.append(_table(section, styles))

    doc.build(story)
    logger.info(f"PDF saved to: {path} ({doc.page} pages)")
    return doc.page


def export_insights_pdf(snapshot: Snapshot, path: str = INSIGHTS_PDF_FILENAME) -> int:
    return write_pdf(path, insights_pdf_sections(snapshot), title="Whiplash - Spotify Snapshot")


def export_review_pdf(session: ReviewSession, path: str = REVIEW_PDF_FILENAME) -> int:
    return write_pdf(path, review_pdf_sections(session), title="Whiplash - Live Shows Checklist")
