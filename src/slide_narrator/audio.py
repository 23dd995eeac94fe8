"""Audio playback of remote resources through the pygame mixer."""

from __future__ import annotations

import asyncio
import io
import logging

import aiohttp
import pygame

from slide_narrator.errors import PlaybackError

logger = logging.getLogger(__name__)


class AudioPlayer:
    """Downloads an audio resource and plays it on the shared mixer channel.

    Only one resource plays at a time; ``play`` returns once playback has
    finished or ``stop`` was called.
    """

    def __init__(
        self,
        volume: float = 1.0,
        poll_interval: float = 0.05,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._volume = volume
        self._poll_interval = poll_interval
        self._session = session
        self._playing = False
        self._loaded: io.BytesIO | None = None

    @property
    def is_playing(self) -> bool:
        return self._playing

    def _ensure_mixer(self) -> None:
        if not pygame.mixer.get_init():
            try:
                pygame.mixer.init()
            except pygame.error as exc:
                raise PlaybackError(f"Audio device unavailable: {exc}") from exc

    async def fetch(self, url: str) -> bytes:
        """Download the resource at *url*."""
        try:
            if self._session is not None:
                return await self._read(self._session, url)
            async with aiohttp.ClientSession() as session:
                return await self._read(session, url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise PlaybackError(f"Could not fetch audio {url}: {exc}") from exc

    @staticmethod
    async def _read(session: aiohttp.ClientSession, url: str) -> bytes:
        async with session.get(url) as response:
            if response.status >= 400:
                raise PlaybackError(f"Audio resource returned HTTP {response.status}")
            return await response.read()

    def load(self, data: bytes) -> None:
        """Load downloaded audio into the mixer without starting it."""
        self._ensure_mixer()
        self.release()
        self._loaded = io.BytesIO(data)
        try:
            pygame.mixer.music.load(self._loaded)
            pygame.mixer.music.set_volume(self._volume)
        except pygame.error as exc:
            self._loaded = None
            raise PlaybackError(f"Unplayable audio: {exc}") from exc

    def start(self) -> None:
        try:
            pygame.mixer.music.play()
        except pygame.error as exc:
            raise PlaybackError(f"Playback failed: {exc}") from exc
        self._playing = True

    async def wait(self) -> None:
        """Wait until the mixer reports the track as finished."""
        while self._playing and pygame.mixer.music.get_busy():
            await asyncio.sleep(self._poll_interval)
        self._playing = False

    def stop(self) -> None:
        """Stop playback; safe to call when nothing is playing."""
        self._playing = False
        if pygame.mixer.get_init():
            pygame.mixer.music.stop()

    def release(self) -> None:
        """Stop and unload the current resource."""
        self.stop()
        if self._loaded is not None and pygame.mixer.get_init():
            pygame.mixer.music.unload()
        self._loaded = None
