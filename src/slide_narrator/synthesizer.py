"""Speech backends: remote synthesis service and the local pyttsx3 engine."""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import string
from abc import ABC, abstractmethod
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

import aiohttp
import pyttsx3

from slide_narrator.audio import AudioPlayer
from slide_narrator.errors import NarratorError, PlaybackError, SynthesisError

logger = logging.getLogger(__name__)


@dataclass
class VoiceConfig:
    """Configuration for the local TTS voice."""

    rate: int = 175          # Words per minute
    volume: float = 1.0      # 0.0 – 1.0
    voice_id: str | None = None  # Platform-specific voice identifier
    language: str | None = None  # Language-region tag, e.g. "vi-VN"


class SpeechEventKind(enum.Enum):
    PENDING = "pending"
    STARTED = "started"
    ENDED = "ended"
    FAILED = "failed"


@dataclass(frozen=True)
class SpeechEvent:
    kind: SpeechEventKind
    resource: str | None = None
    error: NarratorError | None = None

    @classmethod
    def pending(cls) -> SpeechEvent:
        return cls(SpeechEventKind.PENDING)

    @classmethod
    def started(cls, resource: str | None = None) -> SpeechEvent:
        return cls(SpeechEventKind.STARTED, resource=resource)

    @classmethod
    def ended(cls) -> SpeechEvent:
        return cls(SpeechEventKind.ENDED)

    @classmethod
    def failed(cls, error: NarratorError) -> SpeechEvent:
        return cls(SpeechEventKind.FAILED, error=error)

    @property
    def terminal(self) -> bool:
        return self.kind in (SpeechEventKind.ENDED, SpeechEventKind.FAILED)


class SpeechBackend(ABC):
    """Something that can speak text and report progress as events."""

    @abstractmethod
    def speak(self, text: str) -> AsyncIterator[SpeechEvent]:
        """Speak *text*, yielding events until ENDED or FAILED."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop the current operation. No further events are yielded for it."""

    def release(self) -> None:
        """Drop any held audio resource."""
        self.cancel()

    async def replay(self, resource: str) -> AsyncIterator[SpeechEvent]:
        """Play *resource* again. Backends that keep no audio report FAILED."""
        yield SpeechEvent.failed(
            PlaybackError(f"{type(self).__name__} cannot replay resources")
        )


# ---------------------------------------------------------------------------
# Remote synthesis
# ---------------------------------------------------------------------------

# Places a synthesis service may put the audio URL in its JSON response
_URL_PATHS = (
    ("audio_url",),
    ("audioUrl",),
    ("url",),
    ("data", "audio_url"),
    ("data", "url"),
    ("result", "audio_url"),
    ("output", "url"),
)


def _looks_like_url(value: object) -> bool:
    return isinstance(value, str) and value.startswith(("http://", "https://"))


def resource_url(body: str) -> str | None:
    """Find the playable resource URL in a synthesis response body."""
    body = body.strip()
    try:
        data: Any = json.loads(body)
    except ValueError:
        return body if _looks_like_url(body) else None

    if _looks_like_url(data):
        return data
    if not isinstance(data, dict):
        return None
    for path in _URL_PATHS:
        node: Any = data
        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
        if _looks_like_url(node):
            return node
    return None


class RemoteSynthesizer(SpeechBackend):
    """Submits text to a synthesis endpoint and plays the returned audio URL."""

    def __init__(
        self,
        url: str,
        voice_profile: str,
        player: AudioPlayer | None = None,
        timeout: float = 60.0,
        session: aiohttp.ClientSession | None = None,
        cache_size: int = 64,
    ) -> None:
        self._url = url
        self._voice_profile = voice_profile
        self._player = player or AudioPlayer()
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._cache: OrderedDict[str, str] = OrderedDict()
        self._cache_size = cache_size
        self._op = 0
        self.is_synthesizing = False

    async def synthesize(self, text: str) -> str:
        """Return a playable resource URL for *text*, from cache when possible."""
        cached = self._cache.get(text)
        if cached is not None:
            self._cache.move_to_end(text)
            return cached

        payload = {"voiceProfile": self._voice_profile, "text": text}
        try:
            if self._session is not None:
                status, body = await self._post(self._session, payload)
            else:
                async with aiohttp.ClientSession(timeout=self._timeout) as session:
                    status, body = await self._post(session, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SynthesisError(f"Synthesis service unreachable: {exc}") from exc

        if status >= 400:
            raise SynthesisError(f"Synthesis service returned HTTP {status}")
        url = resource_url(body)
        if url is None:
            raise SynthesisError("Synthesis response contained no audio URL")

        self._cache[text] = url
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return url

    async def _post(
        self, session: aiohttp.ClientSession, payload: dict[str, str]
    ) -> tuple[int, str]:
        async with session.post(self._url, json=payload) as response:
            try:
                body = await response.text()
            except (UnicodeDecodeError, LookupError) as exc:
                raise SynthesisError(f"Synthesis response was not text: {exc}") from exc
            return response.status, body

    async def speak(self, text: str) -> AsyncIterator[SpeechEvent]:
        op = self._op
        self.is_synthesizing = True
        yield SpeechEvent.pending()
        error: SynthesisError | None = None
        try:
            url = await self.synthesize(text)
        except SynthesisError as exc:
            error = exc
        finally:
            if op == self._op:
                self.is_synthesizing = False

        if op != self._op:
            return
        if error is not None:
            logger.error("Synthesis failed: %s", error)
            yield SpeechEvent.failed(error)
            return
        async for event in self._play(url, op):
            yield event

    async def replay(self, resource: str) -> AsyncIterator[SpeechEvent]:
        async for event in self._play(resource, self._op):
            yield event

    async def _play(self, url: str, op: int) -> AsyncIterator[SpeechEvent]:
        try:
            data = await self._player.fetch(url)
            if op != self._op:
                return
            self._player.load(data)
            self._player.start()
        except PlaybackError as exc:
            logger.error("Playback failed: %s", exc)
            if op == self._op:
                yield SpeechEvent.failed(exc)
            return

        yield SpeechEvent.started(resource=url)
        await self._player.wait()
        if op == self._op:
            yield SpeechEvent.ended()

    def cancel(self) -> None:
        self._op += 1
        self.is_synthesizing = False
        self._player.stop()

    def release(self) -> None:
        self.cancel()
        self._player.release()


# ---------------------------------------------------------------------------
# Local synthesis (pyttsx3)
# ---------------------------------------------------------------------------


def _clean(value: object) -> str:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    # espeak prefixes language entries with a priority byte
    text = "".join(ch for ch in str(value) if ch in string.printable)
    return text.strip().lower().replace("_", "-")


def select_voice(voices: list[Any], language: str | None) -> Any | None:
    """Pick the voice best matching a language-region tag such as ``vi-VN``.

    An exact tag match on a voice's languages wins, then a tag found in its id
    or name, then a voice sharing the primary language. Returns None when
    nothing matches so the platform default stays in effect.
    """
    if not language:
        return None
    tag = _clean(language)
    primary = tag.split("-")[0]

    for voice in voices:
        if tag in (_clean(lang) for lang in getattr(voice, "languages", []) or []):
            return voice
    for voice in voices:
        if tag in _clean(getattr(voice, "id", "")) or tag in _clean(getattr(voice, "name", "")):
            return voice
    for voice in voices:
        langs = [_clean(lang) for lang in getattr(voice, "languages", []) or []]
        if any(lang == primary or lang.startswith(primary + "-") for lang in langs):
            return voice
    return None


class LocalSynthesizer(SpeechBackend):
    """Wraps pyttsx3 to speak text aloud.

    The engine lives on a single worker thread; its callbacks are posted back
    to the event loop.
    """

    def __init__(self, config: VoiceConfig | None = None) -> None:
        self._config = config or VoiceConfig()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pyttsx3")
        self._engine: Any = None
        self._op = 0

    def _get_engine(self) -> Any:
        if self._engine is None:
            self._engine = pyttsx3.init()
            self._apply_config()
        return self._engine

    def _apply_config(self) -> None:
        self._engine.setProperty("rate", self._config.rate)
        self._engine.setProperty("volume", self._config.volume)
        if self._config.voice_id:
            self._engine.setProperty("voice", self._config.voice_id)
            return
        voice = select_voice(self._engine.getProperty("voices") or [], self._config.language)
        if voice is not None:
            logger.info("Using voice %s for %s", voice.name, self._config.language)
            self._engine.setProperty("voice", voice.id)
        elif self._config.language:
            logger.warning("No voice for %s, using platform default", self._config.language)

    def _list_voices(self) -> list[dict[str, str]]:
        return [
            {"id": v.id, "name": v.name, "languages": str(v.languages)}
            for v in self._get_engine().getProperty("voices")
        ]

    async def voices(self) -> list[dict[str, str]]:
        """Return available voices on this system."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._list_voices)

    def _say(self, text: str, post: Callable[[SpeechEvent], None]) -> None:
        try:
            engine = self._get_engine()
        except Exception as exc:
            logger.exception("Voice engine unavailable")
            post(SpeechEvent.failed(PlaybackError(str(exc))))
            return
        finished = False

        def on_start(name: str | None) -> None:
            post(SpeechEvent.started())

        def on_finish(name: str | None, completed: bool) -> None:
            nonlocal finished
            finished = True
            post(SpeechEvent.ended())

        def on_error(name: str | None, exception: Exception) -> None:
            nonlocal finished
            finished = True
            post(SpeechEvent.failed(PlaybackError(str(exception))))

        tokens = [
            engine.connect("started-utterance", on_start),
            engine.connect("finished-utterance", on_finish),
            engine.connect("error", on_error),
        ]
        try:
            engine.say(text)
            engine.runAndWait()
        except Exception as exc:
            logger.exception("Voice engine failed")
            finished = True
            post(SpeechEvent.failed(PlaybackError(str(exc))))
        finally:
            for token in tokens:
                engine.disconnect(token)
        if not finished:
            post(SpeechEvent.ended())

    async def speak(self, text: str) -> AsyncIterator[SpeechEvent]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[SpeechEvent] = asyncio.Queue()
        op = self._op

        def post(event: SpeechEvent) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, event)

        loop.run_in_executor(self._executor, self._say, text, post)
        while True:
            event = await queue.get()
            if op != self._op:
                return
            yield event
            if event.terminal:
                return

    def cancel(self) -> None:
        self._op += 1
        if self._engine is not None:
            self._engine.stop()

    def close(self) -> None:
        self.cancel()
        self._executor.shutdown(wait=False)
