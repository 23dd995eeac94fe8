"""Runtime configuration, read from NARRATOR_* environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


def _flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class NarratorConfig:
    slides_url: str = "http://localhost:3000/api/slides"
    synthesis_url: str = "http://localhost:3000/api/tts"
    voice_profile: str = "default"
    backend: str = "remote"           # remote, local
    language: str | None = None       # Language-region tag for the local voice
    rate: int = 175                   # Local voice words per minute
    volume: float = 1.0
    policy: str = "speech-driven"     # speech-driven, fixed-interval
    advance_interval: float = 5.0     # Seconds, fixed-interval policy
    settle_delay: float = 1.0         # Seconds, speech-driven policy
    end_of_deck: str = "wrap"         # wrap, stop
    line_mode: bool = False
    timeout: float = 30.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> NarratorConfig:
        env = os.environ if environ is None else environ
        defaults = cls()

        def get(name: str, default: str) -> str:
            return env.get(f"NARRATOR_{name}", default)

        return cls(
            slides_url=get("SLIDES_URL", defaults.slides_url),
            synthesis_url=get("SYNTHESIS_URL", defaults.synthesis_url),
            voice_profile=get("VOICE_PROFILE", defaults.voice_profile),
            backend=get("BACKEND", defaults.backend).lower(),
            language=get("LANGUAGE", "") or None,
            rate=int(get("RATE", str(defaults.rate))),
            volume=float(get("VOLUME", str(defaults.volume))),
            policy=get("POLICY", defaults.policy).lower(),
            advance_interval=float(get("ADVANCE_INTERVAL", str(defaults.advance_interval))),
            settle_delay=float(get("SETTLE_DELAY", str(defaults.settle_delay))),
            end_of_deck=get("END_OF_DECK", defaults.end_of_deck).lower(),
            line_mode=_flag(get("LINE_MODE", "false")),
            timeout=float(get("TIMEOUT", str(defaults.timeout))),
        )
