"""Outbound ports — interfaces that infrastructure adapters must implement.

The application layer depends only on these abstractions, never on
concrete HTTP clients or PDF libraries.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class GeneratedImage:
    """An illustration as returned by a provider: a URL or base64 bytes."""

    url: str | None = None
    base64: str | None = None

    def __post_init__(self) -> None:
        if not (self.url or self.base64):
            raise ValueError("GeneratedImage needs a url or base64 payload")

    def to_dict(self) -> dict[str, Any]:
        if self.url:
            return {"imageUrl": self.url}
        return {"imageBase64": self.base64}


@dataclass
class Chapter:
    number: int
    title: str
    body: str
    image: bytes | None = None


@dataclass
class BookManuscript:
    """Everything the renderer needs to lay out a book."""

    title: str
    subtitle: str
    chapters: list[Chapter] = field(default_factory=list)
    introduction: str = ""


class TextGeneratorPort(ABC):
    @abstractmethod
    async def generate_text(self, prompt: str) -> str: ...


class ImageGeneratorPort(ABC):
    @abstractmethod
    async def generate_image(self, prompt: str) -> GeneratedImage: ...


class BookRendererPort(ABC):
    """Turns a manuscript into a finished document."""

    @abstractmethod
    def render(self, manuscript: BookManuscript) -> bytes: ...
