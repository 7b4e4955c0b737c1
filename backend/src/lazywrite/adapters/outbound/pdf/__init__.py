"""ReportLab book renderer.

Lays a manuscript out as a US-Letter PDF:
  * A title page with the book title and subtitle.
  * A table of contents and, when the manuscript has one, an introduction.
  * One section per chapter: running header, heading, optional figure with
    caption, wrapped body text and tinted call-out boxes for the
    educational asides ("Word to Know:", "Did You Know?", ...).
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO

import structlog
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from lazywrite.ports.outbound import BookManuscript, BookRendererPort, Chapter

logger = structlog.get_logger(__name__)

RGB = tuple[float, float, float]


@dataclass(frozen=True)
class BookStyle:
    margin: float = 72.0
    primary: RGB = (0.27, 0.27, 0.33)
    secondary: RGB = (0.4, 0.4, 0.45)
    accent: RGB = (0.2, 0.4, 0.8)
    highlight: RGB = (0.95, 0.95, 0.98)
    title_font: str = "Times-Bold"
    heading_font: str = "Times-Bold"
    body_font: str = "Times-Roman"
    caption_font: str = "Times-Italic"
    body_size: float = 12.0
    leading: float = 16.0


DEFAULT_STYLE = BookStyle()

# Marker → box fill colour.  Margin notes are drawn in the highlight tint.
CALLOUT_COLORS: dict[str, RGB] = {
    "Word to Know:": DEFAULT_STYLE.highlight,
    "Did You Know?": (0.95, 0.9, 0.8),
    "Let's Think!": (0.9, 0.95, 0.9),
    "Try This!": (0.9, 0.9, 0.95),
}

INTRODUCTION_TITLE = "Introduction"

FIGURE_WIDTH = 300.0
FIGURE_HEIGHT = 200.0


def callout_marker(line: str) -> str | None:
    for marker in CALLOUT_COLORS:
        if marker in line:
            return marker
    return None


class ReportLabBookRenderer(BookRendererPort):
    def __init__(self, *, style: BookStyle = DEFAULT_STYLE) -> None:
        self.style = style
        self.width, self.height = LETTER

    def render(self, manuscript: BookManuscript) -> bytes:
        buffer = BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=LETTER)
        pdf.setTitle(manuscript.title)
        pdf.setAuthor("LazyWrite")

        self._draw_title_page(pdf, manuscript)
        page_number = 1
        self._draw_contents(pdf, manuscript, page_number)
        if manuscript.introduction:
            page_number = self._draw_introduction(pdf, manuscript.introduction, page_number + 1)
        for chapter in manuscript.chapters:
            page_number = self._draw_chapter(pdf, chapter, page_number + 1)

        pdf.save()
        logger.info(
            "book_rendered",
            chapters=len(manuscript.chapters),
            pages=page_number + 1,
            figures=sum(1 for c in manuscript.chapters if c.image),
        )
        return buffer.getvalue()

    # ── Front matter ─────────────────────────────────────────
    def _draw_title_page(self, pdf: canvas.Canvas, manuscript: BookManuscript) -> None:
        s = self.style
        pdf.setFillColorRGB(*s.highlight)
        pdf.rect(0, 0, self.width, self.height, stroke=0, fill=1)

        pdf.setFillColorRGB(*s.primary)
        y = 700.0
        for line in simpleSplit(manuscript.title, s.title_font, 32, 400):
            pdf.setFont(s.title_font, 32)
            pdf.drawString(s.margin, y, line)
            y -= 38

        pdf.setFillColorRGB(*s.secondary)
        pdf.setFont(s.caption_font, 18)
        pdf.drawString(s.margin, y - 4, manuscript.subtitle)
        pdf.showPage()

    def _draw_contents(self, pdf: canvas.Canvas, manuscript: BookManuscript, page_number: int) -> None:
        s = self.style
        pdf.setFillColorRGB(*s.primary)
        pdf.setFont(s.heading_font, 24)
        pdf.drawString(s.margin, 720, "Contents")

        y = 680.0
        pdf.setFont(s.body_font, 12)
        if manuscript.introduction:
            pdf.drawString(s.margin, y, INTRODUCTION_TITLE)
            y -= 20
        for chapter in manuscript.chapters:
            pdf.drawString(s.margin, y, f"Chapter {chapter.number}: {chapter.title}")
            y -= 20
        self._draw_page_number(pdf, page_number)
        pdf.showPage()

    def _draw_introduction(self, pdf: canvas.Canvas, text: str, page_number: int) -> int:
        self._draw_heading(pdf, INTRODUCTION_TITLE, INTRODUCTION_TITLE)
        page_number = self._draw_text(pdf, text, INTRODUCTION_TITLE, 680.0, page_number)
        self._draw_page_number(pdf, page_number)
        pdf.showPage()
        return page_number

    # ── Chapters ─────────────────────────────────────────────
    def _draw_chapter(self, pdf: canvas.Canvas, chapter: Chapter, page_number: int) -> int:
        s = self.style
        self._draw_heading(pdf, chapter.title, f"Chapter {chapter.number}")

        y = 680.0
        figure = self._load_figure(chapter)
        if figure is not None:
            pdf.drawImage(
                figure,
                s.margin,
                500,
                FIGURE_WIDTH,
                FIGURE_HEIGHT,
                preserveAspectRatio=True,
                mask="auto",
            )
            pdf.setFillColorRGB(*s.secondary)
            pdf.setFont(s.caption_font, 10)
            pdf.drawString(s.margin, 480, f"Figure {chapter.number}")
            y = 450.0

        page_number = self._draw_text(pdf, chapter.body, chapter.title, y, page_number)
        self._draw_page_number(pdf, page_number)
        pdf.showPage()
        return page_number

    def _draw_heading(self, pdf: canvas.Canvas, header: str, heading: str) -> None:
        s = self.style
        self._draw_running_header(pdf, header)
        pdf.setStrokeColorRGB(*s.accent)
        pdf.setLineWidth(1)
        pdf.line(s.margin, 740, self.width - s.margin, 740)

        pdf.setFillColorRGB(*s.accent)
        pdf.setFont(s.heading_font, 24)
        pdf.drawString(s.margin, 712, heading)

    def _draw_text(
        self,
        pdf: canvas.Canvas,
        text: str,
        header: str,
        y: float,
        page_number: int,
    ) -> int:
        """Wrap ``text`` from ``y`` down, breaking pages as needed. Returns the last page number."""
        s = self.style
        text_width = self.width - 2 * s.margin
        bottom = s.margin + 30
        for paragraph in text.split("\n"):
            paragraph = paragraph.strip()
            if not paragraph:
                y -= s.leading / 2
                continue

            marker = callout_marker(paragraph)
            font = s.caption_font if marker else s.body_font
            inset = 8.0 if marker else 0.0
            lines = simpleSplit(paragraph, font, s.body_size, text_width - 2 * inset)
            block_height = len(lines) * s.leading

            if y - block_height < bottom and y < 680:
                self._draw_page_number(pdf, page_number)
                pdf.showPage()
                page_number += 1
                self._draw_running_header(pdf, header)
                y = 720.0

            if marker:
                pdf.setFillColorRGB(*CALLOUT_COLORS[marker])
                pdf.setStrokeColorRGB(*s.accent)
                pdf.rect(
                    s.margin - 4,
                    y - block_height + s.leading - 6,
                    text_width + 8,
                    block_height + 4,
                    stroke=1,
                    fill=1,
                )

            pdf.setFillColorRGB(*s.primary)
            for line in lines:
                if y < bottom:
                    self._draw_page_number(pdf, page_number)
                    pdf.showPage()
                    page_number += 1
                    self._draw_running_header(pdf, header)
                    y = 720.0
                    pdf.setFillColorRGB(*s.primary)
                pdf.setFont(font, s.body_size)
                pdf.drawString(s.margin + inset, y, line)
                y -= s.leading
            y -= 4
        return page_number

    # ── Helpers ──────────────────────────────────────────────
    def _load_figure(self, chapter: Chapter) -> ImageReader | None:
        if not chapter.image:
            return None
        try:
            reader = ImageReader(BytesIO(chapter.image))
            reader.getSize()
        except Exception as exc:
            logger.warning("figure_embed_failed", chapter=chapter.number, error=str(exc))
            return None
        return reader

    def _draw_running_header(self, pdf: canvas.Canvas, title: str) -> None:
        s = self.style
        pdf.setFillColorRGB(*s.secondary)
        pdf.setFont(s.caption_font, 10)
        pdf.drawString(s.margin, self.height - s.margin + 30, title)

    def _draw_page_number(self, pdf: canvas.Canvas, page_number: int) -> None:
        s = self.style
        pdf.setFillColorRGB(*s.secondary)
        pdf.setFont(s.caption_font, 10)
        pdf.drawCentredString(self.width / 2, s.margin - 20, str(page_number))
