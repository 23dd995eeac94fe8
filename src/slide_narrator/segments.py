"""Turn raw speaker notes into an ordered list of speech and pause segments."""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Speech:
    """A span of text to be spoken."""

    text: str


@dataclass(frozen=True)
class Pause:
    """Silence for *duration* seconds."""

    duration: float


Segment = Union[Speech, Pause]

_BREAK_RE = re.compile(r"<br\s*/?>|\r\n|\r|\v", re.IGNORECASE)

# Straight quotes, curly quotes, or a bare "pause <n>" token, in document order
_TOKEN_RE = re.compile(
    r'"([^"]*)"|“([^”]*)”|\bpause\s+(\d+(?:\.\d+)?)',
    re.IGNORECASE,
)
_PAUSE_RE = re.compile(r"pause\s+(\d+(?:\.\d+)?)", re.IGNORECASE)


def normalize_line_breaks(raw: str) -> str:
    """Replace ``<br>`` variants, vertical tabs and CRs with ``\\n``."""
    return _BREAK_RE.sub("\n", raw)


def split_lines(raw: str) -> list[str]:
    """Return the non-empty lines of *raw* after normalizing line breaks."""
    return [line.strip() for line in normalize_line_breaks(raw).split("\n") if line.strip()]


def parse(raw: str) -> list[Segment]:
    """Parse note text into segments.

    Structured JSON (``{"segments": [...]}``) wins when it yields at least one
    segment. Otherwise quoted spans and ``pause <n>`` tokens are collected in
    order, and if there are none the whole trimmed text is one speech segment.
    Never raises.
    """
    if not raw or not raw.strip():
        return []

    structured = _parse_structured(raw)
    if structured:
        return structured

    segments = _scan_tokens(raw)
    if segments:
        return segments
    return [Speech(raw.strip())]


def _parse_structured(raw: str) -> list[Segment]:
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError):
        return []
    if not isinstance(data, dict) or not isinstance(data.get("segments"), list):
        return []

    segments: list[Segment] = []
    for entry in data["segments"]:
        if not isinstance(entry, dict):
            continue
        kind = entry.get("type")
        if kind == "speech":
            text = entry.get("text")
            if isinstance(text, str) and text.strip():
                segments.append(Speech(text.strip()))
        elif kind == "pause":
            duration = _as_duration(entry.get("duration"))
            if duration is not None:
                segments.append(Pause(duration))
    return segments


def _as_duration(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return float(value)


def _scan_tokens(raw: str) -> list[Segment]:
    segments: list[Segment] = []
    for match in _TOKEN_RE.finditer(raw):
        straight, curly, pause = match.groups()
        if pause is not None:
            _append_pause(segments, pause)
            continue
        quoted = (straight if straight is not None else curly).strip()
        if not quoted:
            continue
        # "Pause 2" written inside quotes is still a pause
        inner = _PAUSE_RE.fullmatch(quoted)
        if inner:
            _append_pause(segments, inner.group(1))
        else:
            segments.append(Speech(quoted))
    return segments


def _append_pause(segments: list[Segment], digits: str) -> None:
    # Long digit runs overflow to inf; such tokens are dropped
    duration = _as_duration(float(digits))
    if duration is not None:
        segments.append(Pause(duration))
