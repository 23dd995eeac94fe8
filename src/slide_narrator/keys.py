"""Keyboard input mapped onto playback commands."""

from __future__ import annotations

import enum
import logging

from slide_narrator.playback import PlaybackController

logger = logging.getLogger(__name__)


class Focus(enum.Enum):
    """Where keyboard focus currently is."""

    NONE = "none"
    TEXT_INPUT = "text-input"
    VIEWER = "viewer"  # the embedded slide viewer handles its own keys


# Terminal escape sequences and typed shortcuts understood by the CLI
_TERMINAL_KEYS = {
    "\x1b[C": "ArrowRight",
    "\x1b[D": "ArrowLeft",
    "\x1b[H": "Home",
    "\x1b[1~": "Home",
    "\x1b": "Escape",
    "": " ",
    "n": "ArrowRight",
    "next": "ArrowRight",
    "p": "ArrowLeft",
    "prev": "ArrowLeft",
    "home": "Home",
    "esc": "Escape",
}


def key_from_terminal(sequence: str) -> str | None:
    """Translate one line of terminal input into a key name."""
    sequence = sequence.rstrip("\r\n")
    key = _TERMINAL_KEYS.get(sequence)
    if key is None:
        key = _TERMINAL_KEYS.get(sequence.strip().lower())
    return key


class KeyDispatcher:
    """Routes key presses to the controller unless focus says otherwise."""

    def __init__(self, controller: PlaybackController) -> None:
        self._controller = controller
        self._bindings = {
            "ArrowRight": lambda: controller.advance(1),
            " ": lambda: controller.advance(1),
            "Space": lambda: controller.advance(1),
            "ArrowLeft": lambda: controller.advance(-1),
            "Home": lambda: controller.go_to(0, 0),
            "Escape": lambda: controller.set_auto_play(False),
        }

    def handle(self, key: str, focus: Focus = Focus.NONE) -> bool:
        """Dispatch *key*; returns True if it was handled."""
        if focus is not Focus.NONE:
            logger.debug("Ignoring %r while focus is on %s", key, focus.value)
            return False
        action = self._bindings.get(key)
        if action is None:
            return False
        action()
        return True
