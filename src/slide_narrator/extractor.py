"""Slide content extraction from .pptx files and slide-service documents."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from pptx import Presentation


@dataclass
class Slide:
    """Display text and speaker notes for one slide."""

    index: int
    display_text: str = ""
    notes: str = ""
    slide_id: str = ""

    def __post_init__(self) -> None:
        if not self.slide_id:
            self.slide_id = f"p{self.index}"

    @property
    def spoken_text(self) -> str:
        """Notes if present, else the display text, else a placeholder."""
        if self.notes.strip():
            return self.notes
        if self.display_text.strip():
            return self.display_text
        return placeholder_text(self.index)


def placeholder_text(index: int) -> str:
    return f"Slide {index + 1}"


def extract_slides(filepath: str | Path) -> list[Slide]:
    """Extract text and speaker notes from every slide in a .pptx file.

    Args:
        filepath: Path to a .pptx file.

    Returns:
        Ordered list of Slide, one per slide.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a .pptx file.
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if path.suffix.lower() != ".pptx":
        raise ValueError(f"Expected a .pptx file, got: {path.suffix}")

    prs = Presentation(str(path))
    slides: list[Slide] = []

    for idx, slide in enumerate(prs.slides):
        title = ""
        body_lines: list[str] = []

        for shape in slide.shapes:
            if not shape.has_text_frame:
                continue
            text = shape.text_frame.text.strip()
            if not text:
                continue
            # Use the first title-shaped placeholder as the title
            if shape.is_placeholder and shape.placeholder_format.idx == 0:
                title = text
            else:
                body_lines.append(text)

        notes = ""
        if slide.has_notes_slide:
            notes = slide.notes_slide.notes_text_frame.text.strip()

        display = "\n".join(part for part in [title, *body_lines] if part)
        slides.append(
            Slide(
                index=idx,
                display_text=display or placeholder_text(idx),
                notes=notes,
                slide_id=str(slide.slide_id),
            )
        )

    return slides


def _text_runs(text: dict[str, Any] | None) -> Iterable[str]:
    for element in (text or {}).get("textElements", []):
        content = (element.get("textRun") or {}).get("content")
        if content:
            yield content


def _element_text(element: dict[str, Any]) -> str:
    parts: list[str] = []
    for key in ("shape", "textBox"):
        parts.extend(_text_runs((element.get(key) or {}).get("text")))
    for row in (element.get("table") or {}).get("tableRows", []):
        for cell in row.get("tableCells", []):
            parts.extend(content + " " for content in _text_runs(cell.get("text")))
    return "".join(parts)


def slides_from_presentation(payload: dict[str, Any]) -> list[Slide]:
    """Convert a Slides-API presentation document into slides.

    Text is collected from shapes, text boxes and table cells; notes from the
    shapes on each slide's notes page.
    """
    slides: list[Slide] = []
    for idx, page in enumerate(payload.get("slides") or []):
        text = "".join(_element_text(el) for el in page.get("pageElements", []))

        notes_page = (page.get("slideProperties") or {}).get("notesPage") or {}
        notes = "".join(
            "".join(_text_runs((el.get("shape") or {}).get("text")))
            for el in notes_page.get("pageElements", [])
        )

        slides.append(
            Slide(
                index=idx,
                display_text=text.strip() or placeholder_text(idx),
                notes=notes.strip(),
                slide_id=page.get("objectId") or "",
            )
        )
    return slides
