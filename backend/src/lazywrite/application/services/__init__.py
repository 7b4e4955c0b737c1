"""Book generation service.

Turns a single topic prompt into an illustrated educational book:

1. Ask the text generator for a full manuscript.
2. Split it into chapters on ``Chapter N:`` markers; any text before the
   first marker is kept as an introduction.
3. Ask the image generator for one illustration per chapter.  A failed
   illustration never fails the book; that chapter is drawn without a figure.
4. Hand the manuscript to the renderer.
"""

from __future__ import annotations

import base64
import re
import time
from dataclasses import dataclass

import httpx
import structlog

from lazywrite.domain.exceptions import BookGenerationError
from lazywrite.ports.outbound import (
    BookManuscript,
    BookRendererPort,
    Chapter,
    GeneratedImage,
    ImageGeneratorPort,
    TextGeneratorPort,
)
from lazywrite.shared.observability.metrics import BOOK_IMAGES_FAILED_TOTAL, BOOKS_GENERATED_TOTAL
from lazywrite.shared.providers.errors import ProviderCallError

logger = structlog.get_logger(__name__)

BOOK_SUBTITLE = "An Educational Journey"

BOOK_PROMPT = """Create a highly professional educational children's book about {topic} with:
- A beautiful title page with an engaging title and subtitle
- A well-structured table of contents with page numbers
- 4-5 chapters with compelling, engaging titles
- Important vocabulary words defined in margins (marked as "Word to Know:")
- "Let's Think!" discussion questions in colored boxes at strategic points
- "Try This!" hands-on activities that reinforce learning
- "Did You Know?" fun facts in the margins to add depth and interest
- Detailed scene descriptions for beautiful illustrations
- Child-friendly language (grades 4-6 level) that is clear but not condescending
- Rich educational content with deep subject matter expertise
- Thoughtful moral lessons woven naturally into the narrative
- A memorable conclusion that reinforces key learnings
Write in a warm, encouraging tone like a favorite teacher, with clean paragraph breaks and clear section formatting."""

IMAGE_PROMPT = (
    "Award-winning educational textbook illustration, vibrant watercolor style with "
    "detailed linework, professional lighting, rich natural colors, child-friendly but "
    "sophisticated educational scene. Subject: {subject}. Style similar to modern "
    "children's educational publishers like Scholastic, with clean composition, "
    "educational value, and emotional appeal."
)

CHAPTER_MARKER = re.compile(r"Chapter [0-9]+:", re.IGNORECASE)


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, ending in an ellipsis when cut."""
    return text if len(text) <= limit else text[: limit - 3] + "..."


def split_manuscript(text: str) -> tuple[str, list[Chapter]]:
    """Split a manuscript into its preamble and ``Chapter N:`` sections.

    The preamble is the text before the first marker (title page, table of
    contents) and becomes the book's introduction.  A manuscript with no
    markers has no preamble and becomes a single chapter.
    """
    parts = CHAPTER_MARKER.split(text)
    preamble = ""
    if len(parts) > 1:
        preamble, parts = parts[0].strip(), parts[1:]
    bodies = [p.strip() for p in parts if p.strip()]

    chapters = []
    for number, body in enumerate(bodies, start=1):
        first_line = body.split("\n", 1)[0].strip()
        chapters.append(Chapter(number=number, title=truncate(first_line, 40), body=body))
    return preamble, chapters


def split_chapters(text: str) -> list[Chapter]:
    return split_manuscript(text)[1]


def book_title(prompt: str) -> str:
    return truncate(prompt.strip(), 50)


@dataclass
class BookResult:
    pdf: bytes
    chapters: int
    illustrations: int


class BookGenerationService:
    def __init__(
        self,
        text_generator: TextGeneratorPort,
        image_generator: ImageGeneratorPort,
        renderer: BookRendererPort,
        *,
        http_client: httpx.AsyncClient | None = None,
        image_fetch_timeout: float = 30.0,
    ) -> None:
        self._text = text_generator
        self._images = image_generator
        self._renderer = renderer
        self._http = http_client
        self._image_fetch_timeout = image_fetch_timeout

    async def generate_book(self, prompt: str) -> BookResult:
        log = logger.bind(topic=truncate(prompt, 60))
        start = time.monotonic()
        log.info("book_generation_started")

        text = await self._text.generate_text(BOOK_PROMPT.format(topic=prompt))
        introduction, chapters = split_manuscript(text)
        if not chapters:
            raise BookGenerationError("Failed to generate book content: the manuscript was empty")

        # One illustration request in flight at a time.
        for chapter in chapters:
            chapter.image = await self._illustrate(chapter)

        manuscript = BookManuscript(
            title=book_title(prompt),
            subtitle=BOOK_SUBTITLE,
            chapters=chapters,
            introduction=introduction,
        )
        pdf = self._renderer.render(manuscript)
        illustrations = sum(1 for c in chapters if c.image)

        BOOKS_GENERATED_TOTAL.inc()
        log.info(
            "book_generation_completed",
            chapters=len(chapters),
            illustrations=illustrations,
            pdf_bytes=len(pdf),
            duration_s=round(time.monotonic() - start, 2),
        )
        return BookResult(pdf=pdf, chapters=len(chapters), illustrations=illustrations)

    async def _illustrate(self, chapter: Chapter) -> bytes | None:
        prompt = IMAGE_PROMPT.format(subject=chapter.body[:150])
        try:
            image = await self._images.generate_image(prompt)
            return await self._resolve(image)
        except ProviderCallError as exc:
            reason = exc.kind.value
            error = exc.message
        except (httpx.HTTPError, ValueError) as exc:
            reason = "download"
            error = str(exc)

        BOOK_IMAGES_FAILED_TOTAL.labels(reason=reason).inc()
        logger.warning(
            "chapter_illustration_failed",
            chapter=chapter.number,
            reason=reason,
            error=error,
        )
        return None

    async def _resolve(self, image: GeneratedImage) -> bytes:
        """Return raw image bytes for a URL or base64 payload."""
        if image.base64:
            payload = image.base64
            if payload.startswith("data:") and "," in payload:
                payload = payload.split(",", 1)[1]
            return base64.b64decode(payload, validate=True)

        if self._http is None:
            raise ValueError("No HTTP client configured to download image URLs")
        response = await self._http.get(str(image.url), timeout=self._image_fetch_timeout)
        response.raise_for_status()
        return response.content
