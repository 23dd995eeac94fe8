"""Shared fakes for controller and backend tests."""

import asyncio
from typing import AsyncIterator

import pytest

from slide_narrator.errors import NarratorError
from slide_narrator.extractor import Slide
from slide_narrator.slides import SlideStore
from slide_narrator.synthesizer import SpeechBackend, SpeechEvent


class FakeBackend(SpeechBackend):
    """Speaks instantly, or waits on ``hold`` between started and ended."""

    def __init__(self, resource: str | None = None) -> None:
        self.resource = resource
        self.fail_with: NarratorError | None = None
        self.hold: asyncio.Event | None = None
        self.spoken: list[str] = []
        self.replayed: list[str] = []
        self.cancel_count = 0
        self.release_count = 0

    async def speak(self, text: str) -> AsyncIterator[SpeechEvent]:
        self.spoken.append(text)
        if self.fail_with is not None:
            yield SpeechEvent.failed(self.fail_with)
            return
        yield SpeechEvent.started(resource=self.resource)
        if self.hold is not None:
            await self.hold.wait()
        else:
            await asyncio.sleep(0)
        yield SpeechEvent.ended()

    async def replay(self, resource: str) -> AsyncIterator[SpeechEvent]:
        self.replayed.append(resource)
        yield SpeechEvent.started(resource=resource)
        yield SpeechEvent.ended()

    def cancel(self) -> None:
        self.cancel_count += 1

    def release(self) -> None:
        self.release_count += 1


class ManualBackend(SpeechBackend):
    """Events are pushed by the test, one queue per utterance."""

    def __init__(self) -> None:
        self.queues: list[asyncio.Queue] = []

    async def speak(self, text: str) -> AsyncIterator[SpeechEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        self.queues.append(queue)
        while True:
            event = await queue.get()
            yield event
            if event.terminal:
                return

    def cancel(self) -> None:
        pass


async def drain(until=lambda: False, rounds: int = 50) -> None:
    """Let pending callbacks run, stopping early once *until* holds."""
    for _ in range(rounds):
        if until():
            return
        await asyncio.sleep(0)


class FakeSleep:
    """Records requested delays and returns on the next loop iteration."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store() -> SlideStore:
    return SlideStore(
        [
            Slide(index=0, display_text="Intro", notes='"Pause 2" "Hello" "World"', slide_id="g1"),
            Slide(index=1, display_text="Body", notes="Second slide", slide_id="g2"),
            Slide(index=2, display_text="End", notes='"One" "Two"', slide_id="g3"),
        ]
    )
