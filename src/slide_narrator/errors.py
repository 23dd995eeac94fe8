"""Exceptions raised by the narrator."""

from __future__ import annotations


class NarratorError(Exception):
    """Base class for all narrator errors."""


class LoadError(NarratorError):
    """The slide set could not be fetched or was malformed.

    ``unsupported`` is set when the slide service rejected the deck format
    (or returned no slides); callers should offer manual notes entry.
    """

    def __init__(self, message: str, unsupported: bool = False) -> None:
        super().__init__(message)
        self.unsupported = unsupported


class SynthesisError(NarratorError):
    """The remote synthesis call failed or returned no playable resource."""


class PlaybackError(NarratorError):
    """Audio playback failed."""
