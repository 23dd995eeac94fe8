"""Playback controller: sequences slides, speech segments and auto-advance."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable

from slide_narrator.errors import LoadError, NarratorError, PlaybackError
from slide_narrator.extractor import placeholder_text
from slide_narrator.segments import Pause, Segment, Speech, parse, split_lines
from slide_narrator.slides import SlideSource, SlideStore
from slide_narrator.speaking import SpeakingSignal
from slide_narrator.synthesizer import SpeechBackend, SpeechEvent, SpeechEventKind

logger = logging.getLogger(__name__)


class Phase(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    SPEAKING = "speaking"
    ADVANCING = "advancing"


class AutoAdvancePolicy(enum.Enum):
    """How auto-play decides when to move on."""

    FIXED_INTERVAL = "fixed-interval"  # every N seconds, speech or not
    SPEECH_DRIVEN = "speech-driven"    # once the session completes, after a settle delay


class EndOfDeck(enum.Enum):
    """What auto-play does after the last line of the last slide."""

    WRAP = "wrap"  # turn auto-play off and go back to slide 0
    STOP = "stop"  # turn auto-play off and stay on the last slide


class Outcome(enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    NOTHING_TO_REPLAY = "nothing-to-replay"


@dataclass(frozen=True)
class PlaybackResult:
    outcome: Outcome
    slide_index: int
    error: NarratorError | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.COMPLETED


@dataclass
class EngineState:
    phase: Phase = Phase.IDLE
    current_slide_index: int = 0
    current_line_index: int = 0
    is_auto_playing: bool = False
    is_speaking: bool = False
    is_synthesizing: bool = False
    last_playable_resource: str | None = None
    manual_notes_mode: bool = False


@dataclass
class PlaybackSession:
    """One "speak the current slide" run.

    ``segments`` pairs every segment with the line it belongs to. The
    session is stale as soon as the controller's generation moves past
    ``generation``.
    """

    generation: int
    slide_index: int
    segments: list[tuple[int, Segment]] = field(default_factory=list)
    cursor: int = 0
    cancelled: bool = False
    replay: str | None = None


@dataclass(frozen=True)
class ControllerEvent:
    name: str
    slide_index: int
    line_index: int
    detail: str | None = None


class PlaybackController:
    """Single source of truth for slide position, speech and auto-play.

    All methods must be called from the event loop thread. Navigation and
    stop commands cancel the running session synchronously; anything the
    cancelled session's audio or timers deliver afterwards is dropped.
    """

    def __init__(
        self,
        backend: SpeechBackend,
        store: SlideStore | None = None,
        source: SlideSource | None = None,
        *,
        policy: AutoAdvancePolicy = AutoAdvancePolicy.SPEECH_DRIVEN,
        advance_interval: float = 5.0,
        settle_delay: float = 1.0,
        end_of_deck: EndOfDeck = EndOfDeck.WRAP,
        line_mode: bool = False,
        signal: SpeakingSignal | None = None,
        on_navigate: Callable[[str], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self.store = store if store is not None else SlideStore()
        self._source = source
        self.policy = policy
        self._advance_interval = advance_interval
        self._settle_delay = settle_delay
        self._end_of_deck = end_of_deck
        self._line_mode = line_mode
        self.signal = signal or SpeakingSignal()
        self._on_navigate = on_navigate
        self._sleep = sleep

        self.state = EngineState(phase=Phase.READY if len(self.store) else Phase.IDLE)
        self._generation = 0
        self._session: PlaybackSession | None = None
        self._task: asyncio.Task[PlaybackResult] | None = None
        self._settle_task: asyncio.Task[None] | None = None
        self._interval_task: asyncio.Task[None] | None = None
        self._listeners: list[Callable[[ControllerEvent], None]] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[ControllerEvent], None]) -> None:
        self._listeners.append(listener)

    def _emit(self, name: str, detail: str | None = None) -> None:
        event = ControllerEvent(
            name, self.state.current_slide_index, self.state.current_line_index, detail
        )
        for listener in list(self._listeners):
            listener(event)

    @property
    def active_session(self) -> PlaybackSession | None:
        return self._session

    @property
    def slide_count(self) -> int:
        return len(self.store)

    # ------------------------------------------------------------------
    # Slide lines
    # ------------------------------------------------------------------

    def lines(self, slide_index: int) -> list[list[Segment]]:
        """Segments of a slide grouped into navigable lines.

        In line mode each text line of the notes is one line; otherwise each
        segment is its own line. Never empty.
        """
        text = self.store.get(slide_index).spoken_text
        if self._line_mode:
            lines = [segs for segs in (parse(line) for line in split_lines(text)) if segs]
        else:
            lines = [[segment] for segment in parse(text)]
        return lines or [[Speech(placeholder_text(slide_index))]]

    # ------------------------------------------------------------------
    # Loading and manual notes
    # ------------------------------------------------------------------

    async def load(self, presentation_id: str) -> int:
        """Fetch a presentation and replace the slide store.

        Raises:
            LoadError: The deck could not be loaded. When ``unsupported`` is
                set the store is cleared and ``manual_notes_mode`` turned on.
        """
        if self._source is None:
            raise LoadError("No slide source configured")

        self.set_auto_play(False)
        self._cancel_session()
        self.state.phase = Phase.LOADING
        try:
            slides = await self._source.fetch(presentation_id)
        except LoadError as exc:
            logger.error("Could not load %s: %s", presentation_id, exc)
            if exc.unsupported:
                logger.warning("Deck format unsupported, switching to manual notes")
                self.store.clear()
                self.state.manual_notes_mode = True
            self.state.phase = Phase.READY if len(self.store) else Phase.IDLE
            raise

        self.store.replace(slides)
        self.state.manual_notes_mode = False
        self.state.current_slide_index = 0
        self.state.current_line_index = 0
        self._move(0, 0, notify=True)
        logger.info("Presentation %s ready (%d slides)", presentation_id, len(slides))
        return len(slides)

    def edit_notes(self, slide_index: int, notes: str) -> None:
        """Replace the notes of one slide, as typed by the user."""
        self.store.set_notes(slide_index, notes)
        if self.state.phase is Phase.IDLE:
            self.state.phase = Phase.READY

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def go_to(self, slide_index: int, line_index: int = 0) -> None:
        """Jump to a slide/line, clamped into range. Does not start speech."""
        self._cancel_session()
        if not len(self.store):
            return
        self._move(slide_index, line_index)

    def advance(self, delta: int = 1) -> None:
        """Move *delta* lines, crossing into the adjacent slide at the edges."""
        self._cancel_session()
        count = len(self.store)
        if not count:
            return

        self.state.phase = Phase.ADVANCING
        slide = self.state.current_slide_index
        line_count = len(self.lines(slide))
        target = self.state.current_line_index + delta

        if 0 <= target < line_count:
            self._move(slide, target)
        elif target >= line_count:
            if slide + 1 < count:
                self._move(slide + 1, 0)
            elif self.state.is_auto_playing:
                self._reach_end_of_deck()
                return
            else:
                self._move(slide, line_count - 1)
        elif slide > 0:
            self._move(slide - 1, len(self.lines(slide - 1)) - 1)
        else:
            self._move(0, 0)

        self._emit("advanced", str(delta))
        if self.state.is_auto_playing:
            self.play_current_line()

    def _reach_end_of_deck(self) -> None:
        logger.info("End of deck reached, auto-play off")
        self.set_auto_play(False)
        if self._end_of_deck is EndOfDeck.WRAP:
            self._move(0, 0)
        else:
            self.state.phase = Phase.READY
        self._emit("end-of-deck", self._end_of_deck.value)

    def _move(self, slide_index: int, line_index: int, notify: bool = False) -> None:
        slide_index = max(0, min(slide_index, len(self.store) - 1))
        line_index = max(0, min(line_index, len(self.lines(slide_index)) - 1))
        changed = slide_index != self.state.current_slide_index

        self.state.current_slide_index = slide_index
        self.state.current_line_index = line_index
        self.state.phase = Phase.READY

        if (changed or notify) and self._on_navigate is not None:
            self._on_navigate(self.store.get(slide_index).slide_id)
        self._emit("navigated")

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def _resolved(self, result: PlaybackResult) -> asyncio.Future[PlaybackResult]:
        future: asyncio.Future[PlaybackResult] = asyncio.get_running_loop().create_future()
        future.set_result(result)
        return future

    def play_current_line(self) -> asyncio.Future[PlaybackResult]:
        """Start a session for the current line; await it for the result."""
        self._cancel_session()
        if not len(self.store):
            return self._resolved(
                PlaybackResult(
                    Outcome.FAILED,
                    self.state.current_slide_index,
                    LoadError("No slides loaded"),
                )
            )

        slide = self.state.current_slide_index
        lines = self.lines(slide)
        line = min(self.state.current_line_index, len(lines) - 1)
        self.state.current_line_index = line

        if self._line_mode:
            segments = [(line, segment) for segment in lines[line]]
        else:
            segments = [(i, segment) for i in range(line, len(lines)) for segment in lines[i]]

        session = PlaybackSession(self._generation, slide, segments)
        return self._start(session, self._run(session))

    def replay_last(self) -> asyncio.Future[PlaybackResult]:
        """Play the last synthesized resource again without re-synthesizing."""
        resource = self.state.last_playable_resource
        if resource is None:
            logger.warning("Nothing to replay yet")
            return self._resolved(
                PlaybackResult(Outcome.NOTHING_TO_REPLAY, self.state.current_slide_index)
            )

        self._cancel_session()
        session = PlaybackSession(
            self._generation, self.state.current_slide_index, replay=resource
        )
        return self._start(session, self._run_replay(session))

    def _start(
        self, session: PlaybackSession, coro: Awaitable[PlaybackResult]
    ) -> asyncio.Task[PlaybackResult]:
        self._session = session
        self.state.phase = Phase.SPEAKING
        self._task = asyncio.get_running_loop().create_task(coro)
        return self._task

    def _is_current(self, session: PlaybackSession) -> bool:
        return not session.cancelled and session.generation == self._generation

    async def _run(self, session: PlaybackSession) -> PlaybackResult:
        try:
            while session.cursor < len(session.segments):
                if not self._is_current(session):
                    return PlaybackResult(Outcome.CANCELLED, session.slide_index)
                line, segment = session.segments[session.cursor]
                self.state.current_line_index = line

                if isinstance(segment, Pause):
                    self._emit("pause-scheduled", f"{segment.duration:g}")
                    await self._sleep(segment.duration)
                else:
                    error = await self._consume(session, self._backend.speak(segment.text))
                    if not self._is_current(session):
                        return PlaybackResult(Outcome.CANCELLED, session.slide_index)
                    if error is not None:
                        return self._fail(session, error)
                session.cursor += 1
        except asyncio.CancelledError:
            return PlaybackResult(Outcome.CANCELLED, session.slide_index)
        except Exception as exc:
            return self._crashed(session, exc)

        if not self._is_current(session):
            return PlaybackResult(Outcome.CANCELLED, session.slide_index)
        return self._complete(session)

    async def _run_replay(self, session: PlaybackSession) -> PlaybackResult:
        assert session.replay is not None
        try:
            error = await self._consume(session, self._backend.replay(session.replay))
        except asyncio.CancelledError:
            return PlaybackResult(Outcome.CANCELLED, session.slide_index)
        except Exception as exc:
            return self._crashed(session, exc)
        if not self._is_current(session):
            return PlaybackResult(Outcome.CANCELLED, session.slide_index)
        if error is not None:
            return self._fail(session, error)
        self._finish(session)
        return PlaybackResult(Outcome.COMPLETED, session.slide_index)

    async def _consume(
        self, session: PlaybackSession, events: AsyncIterator[SpeechEvent]
    ) -> NarratorError | None:
        """Feed backend events into the state until the utterance ends."""
        async with contextlib.aclosing(events) as stream:
            async for event in stream:
                if not self._handle_event(session, event):
                    return None
                if event.kind is SpeechEventKind.FAILED:
                    return event.error
                if event.kind is SpeechEventKind.ENDED:
                    return None
        return None

    def _handle_event(self, session: PlaybackSession, event: SpeechEvent) -> bool:
        """Apply one backend event; returns False when the session is stale."""
        if not self._is_current(session):
            logger.debug("Dropping %s event from stale session", event.kind.value)
            return False

        state = self.state
        if event.kind is SpeechEventKind.PENDING:
            state.is_synthesizing = True
            state.is_speaking = False
        elif event.kind is SpeechEventKind.STARTED:
            state.is_synthesizing = False
            state.is_speaking = True
            if event.resource is not None and session.replay is None:
                state.last_playable_resource = event.resource
            self.signal.set(True)
            self._emit("speech-started", self._current_text(session))
        elif event.kind is SpeechEventKind.ENDED:
            state.is_speaking = False
            self.signal.set(False)
            self._emit("speech-ended", self._current_text(session))
        else:
            state.is_speaking = False
            state.is_synthesizing = False
            self.signal.set(False)
            self._emit("speech-failed", str(event.error))
        return True

    @staticmethod
    def _current_text(session: PlaybackSession) -> str | None:
        if session.replay is not None:
            return session.replay
        segment = session.segments[session.cursor][1]
        return segment.text if isinstance(segment, Speech) else None

    def _finish(self, session: PlaybackSession) -> None:
        self._session = None
        self._task = None
        self.state.is_speaking = False
        self.state.is_synthesizing = False
        self.state.phase = Phase.READY
        self.signal.set(False)

    def _fail(self, session: PlaybackSession, error: NarratorError) -> PlaybackResult:
        logger.error("Playback of slide %d failed: %s", session.slide_index + 1, error)
        self._finish(session)
        return PlaybackResult(Outcome.FAILED, session.slide_index, error)

    def _crashed(self, session: PlaybackSession, exc: Exception) -> PlaybackResult:
        logger.exception("Speech backend raised while playing slide %d", session.slide_index + 1)
        if not self._is_current(session):
            return PlaybackResult(Outcome.CANCELLED, session.slide_index)
        error = PlaybackError(f"Speech backend error: {exc}")
        self._emit("speech-failed", str(error))
        return self._fail(session, error)

    def _complete(self, session: PlaybackSession) -> PlaybackResult:
        self._finish(session)
        self._emit("session-completed")
        if self.state.is_auto_playing and self.policy is AutoAdvancePolicy.SPEECH_DRIVEN:
            self.state.phase = Phase.ADVANCING
            self._settle_task = asyncio.get_running_loop().create_task(
                self._settle_then_advance(self._generation)
            )
        return PlaybackResult(Outcome.COMPLETED, session.slide_index)

    async def _settle_then_advance(self, generation: int) -> None:
        await self._sleep(self._settle_delay)
        if generation != self._generation or not self.state.is_auto_playing:
            return
        self._settle_task = None
        self.advance(1)

    def _cancel_session(self) -> None:
        """Abandon the running session, its audio and any pending advance."""
        self._generation += 1
        if self._session is not None:
            self._session.cancelled = True
            logger.debug("Cancelled session at segment %d", self._session.cursor)
            self._session = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._cancel_task(self._settle_task)
        self._settle_task = None

        self._backend.cancel()
        self.state.is_speaking = False
        self.state.is_synthesizing = False
        self.signal.set(False)
        if self.state.phase in (Phase.SPEAKING, Phase.ADVANCING):
            self.state.phase = Phase.READY

    @staticmethod
    def _cancel_task(task: asyncio.Task[None] | None) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Stop and auto-play
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Cancel playback, turn auto-play off and release held audio."""
        self.set_auto_play(False)
        self._cancel_session()
        self._backend.release()

    def set_auto_play(self, enabled: bool) -> asyncio.Future[PlaybackResult] | None:
        """Turn auto-play on (starting playback now) or off.

        Turning it off lets the current utterance finish but suppresses the
        advance that would follow it.
        """
        if not enabled:
            if self.state.is_auto_playing:
                logger.info("Auto-play off")
                self.state.is_auto_playing = False
                self._emit("auto-play", "off")
            self._cancel_task(self._interval_task)
            self._interval_task = None
            self._cancel_task(self._settle_task)
            self._settle_task = None
            if self.state.phase is Phase.ADVANCING:
                self.state.phase = Phase.READY
            return None

        if not len(self.store):
            logger.warning("Auto-play requested with no slides loaded")
            return None
        if not self.state.is_auto_playing:
            logger.info("Auto-play on (%s)", self.policy.value)
            self.state.is_auto_playing = True
            self._emit("auto-play", "on")
            if self.policy is AutoAdvancePolicy.FIXED_INTERVAL:
                self._interval_task = asyncio.get_running_loop().create_task(
                    self._advance_every_interval()
                )
        return self.play_current_line()

    async def _advance_every_interval(self) -> None:
        while self.state.is_auto_playing:
            await self._sleep(self._advance_interval)
            if not self.state.is_auto_playing:
                return
            self.advance(1)

    def close(self) -> None:
        """Tear the controller down."""
        self.stop()
        self.state.phase = Phase.IDLE
