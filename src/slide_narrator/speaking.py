"""The "currently speaking" signal consumed by the avatar renderer."""

from __future__ import annotations

import logging
import math
import time
from typing import Callable

logger = logging.getLogger(__name__)

SMILE = 0.15  # Resting mouth-smile weight while the avatar is shown


def _hash(x: float) -> float:
    return math.modf(abs(math.sin(x * 127.1) * 43758.5453123))[0]


def noise1d(t: float) -> float:
    """Smooth 1-D value noise in [0, 1)."""
    i = math.floor(t)
    f = t - i
    u = f * f * (3 - 2 * f)  # smoothstep
    return _hash(i) * (1 - u) + _hash(i + 1) * u


class SpeakingSignal:
    """Boolean speaking flag plus a coarse mouth-open amplitude."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._speaking = False
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def speaking(self) -> bool:
        return self._speaking

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        """Call *listener* on every change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set(self, speaking: bool) -> None:
        if speaking == self._speaking:
            return
        self._speaking = speaking
        logger.debug("Speaking: %s", speaking)
        for listener in list(self._listeners):
            listener(speaking)

    def amplitude(self, t: float | None = None) -> float:
        """Mouth-open weight in [0, 1]; zero while silent."""
        if not self._speaking:
            return 0.0
        if t is None:
            t = self._clock()
        return noise1d(t * 3) * 0.6 + 0.2
