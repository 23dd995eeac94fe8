"""Slide store and the sources that populate it."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterator, Protocol

import aiohttp
from pptx.exc import PackageNotFoundError

from slide_narrator.errors import LoadError
from slide_narrator.extractor import Slide, extract_slides, placeholder_text

logger = logging.getLogger(__name__)

_UNSUPPORTED_MARKERS = ("unsupported", "not supported")


class SlideStore:
    """Slides keyed by index. Replaced wholesale on every load."""

    def __init__(self, slides: list[Slide] | None = None) -> None:
        self._slides: list[Slide] = []
        if slides:
            self.replace(slides)

    def replace(self, slides: list[Slide]) -> None:
        self._slides = [
            Slide(
                index=i,
                display_text=s.display_text,
                notes=s.notes,
                slide_id=s.slide_id,
            )
            for i, s in enumerate(slides)
        ]

    def get(self, index: int) -> Slide:
        return self._slides[index]

    def set_notes(self, index: int, notes: str) -> Slide:
        """Overwrite the notes of slide *index*, growing the store if needed."""
        if index < 0:
            raise IndexError(f"Slide index must be >= 0, got {index}")
        while len(self._slides) <= index:
            i = len(self._slides)
            self._slides.append(Slide(index=i, display_text=placeholder_text(i)))
        old = self._slides[index]
        self._slides[index] = Slide(
            index=index, display_text=old.display_text, notes=notes, slide_id=old.slide_id
        )
        return self._slides[index]

    def clear(self) -> None:
        self._slides = []

    def __len__(self) -> int:
        return len(self._slides)

    def __iter__(self) -> Iterator[Slide]:
        return iter(self._slides)


class SlideSource(Protocol):
    async def fetch(self, presentation_id: str) -> list[Slide]: ...


def _is_unsupported(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _UNSUPPORTED_MARKERS)


def slides_from_response(body: Any) -> list[Slide]:
    """Validate a slide-service response body and build slides from it."""
    if not isinstance(body, dict):
        raise LoadError("Malformed slide service response")

    error = body.get("error")
    if error:
        raise LoadError(str(error), unsupported=_is_unsupported(str(error)))

    entries = body.get("slides")
    if not isinstance(entries, list):
        raise LoadError("Slide service response has no slides list")
    if not entries:
        raise LoadError("Presentation has no slides", unsupported=True)

    slides: list[Slide] = []
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise LoadError(f"Malformed slide entry at position {position}")
        index = entry.get("slideIndex", position)
        if not isinstance(index, int) or isinstance(index, bool):
            index = position
        slides.append(
            Slide(
                index=index,
                display_text=str(entry.get("text") or "").strip() or placeholder_text(index),
                notes=str(entry.get("notes") or "").strip(),
                slide_id=str(entry.get("slideId") or ""),
            )
        )
    slides.sort(key=lambda s: s.index)
    return slides


class SlideServiceClient:
    """Fetches slide text and notes from the slide-content service."""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session

    async def fetch(self, presentation_id: str) -> list[Slide]:
        logger.info("Fetching slides for presentation %s", presentation_id)
        try:
            if self._session is not None:
                body = await self._post(self._session, presentation_id)
            else:
                async with aiohttp.ClientSession(timeout=self._timeout) as session:
                    body = await self._post(session, presentation_id)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise LoadError(f"Slide service unreachable: {exc}") from exc

        slides = slides_from_response(body)
        logger.info("Loaded %d slides", len(slides))
        return slides

    async def _post(self, session: aiohttp.ClientSession, presentation_id: str) -> Any:
        async with session.post(self._url, json={"presentationId": presentation_id}) as response:
            try:
                body = await response.json(content_type=None)
            except ValueError:
                body = None
            # Error bodies carry the reason; only fail on status when there is none
            if response.status >= 400 and not (isinstance(body, dict) and body.get("error")):
                raise LoadError(f"Slide service returned HTTP {response.status}")
            return body


class PptxSlideSource:
    """Loads slides from a local .pptx file; the presentation id is its path."""

    async def fetch(self, presentation_id: str) -> list[Slide]:
        loop = asyncio.get_running_loop()
        try:
            slides = await loop.run_in_executor(None, extract_slides, presentation_id)
        except (FileNotFoundError, ValueError, PackageNotFoundError) as exc:
            raise LoadError(str(exc)) from exc
        if not slides:
            raise LoadError(f"No slides found in {presentation_id}", unsupported=True)
        return slides
