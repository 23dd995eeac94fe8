"""CLI entry point for slide-narrator."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
import threading

from dotenv import load_dotenv

from slide_narrator.config import NarratorConfig
from slide_narrator.errors import LoadError
from slide_narrator.keys import KeyDispatcher, key_from_terminal
from slide_narrator.playback import (
    AutoAdvancePolicy,
    ControllerEvent,
    EndOfDeck,
    PlaybackController,
)
from slide_narrator.slides import PptxSlideSource, SlideServiceClient, SlideSource
from slide_narrator.synthesizer import (
    LocalSynthesizer,
    RemoteSynthesizer,
    SpeechBackend,
    VoiceConfig,
)
from slide_narrator.viewer import SlideViewer

logger = logging.getLogger(__name__)

_HELP = """Keys: Enter/n = next, p = previous, home = first slide, esc = stop auto-play
Commands: play, auto, replay, stop, note <slide> <text>, q"""


def _build_parser(config: NarratorConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="slide-narrator",
        description="Narrate a slide deck from its speaker notes.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # --- play: interactive narration ---
    play_p = sub.add_parser("play", help="Narrate a presentation interactively")
    play_p.add_argument("deck", help="Presentation id, or path to a .pptx file")
    play_p.add_argument(
        "--local",
        action="store_true",
        default=config.backend == "local",
        help="Use the platform voice instead of the synthesis service",
    )
    play_p.add_argument("--auto", action="store_true", help="Start in auto-play")
    play_p.add_argument(
        "--policy",
        choices=[p.value for p in AutoAdvancePolicy],
        default=config.policy,
        help="Auto-advance policy (default: %(default)s)",
    )
    play_p.add_argument(
        "--interval",
        type=float,
        default=config.advance_interval,
        help="Seconds between slides for fixed-interval auto-play (default: %(default)s)",
    )
    play_p.add_argument(
        "--settle",
        type=float,
        default=config.settle_delay,
        help="Seconds to wait after speech before advancing (default: %(default)s)",
    )
    play_p.add_argument(
        "--end-of-deck",
        choices=[e.value for e in EndOfDeck],
        default=config.end_of_deck,
    )
    play_p.add_argument(
        "--lines",
        action="store_true",
        default=config.line_mode,
        help="Step through notes line by line",
    )
    play_p.add_argument("--rate", type=int, default=config.rate)
    play_p.add_argument("--language", default=config.language)
    play_p.add_argument("--voice-profile", default=config.voice_profile)

    # --- slides: print what would be narrated ---
    slides_p = sub.add_parser("slides", help="List slides and their notes")
    slides_p.add_argument("deck", help="Presentation id, or path to a .pptx file")

    # --- voices: list available local TTS voices ---
    sub.add_parser("voices", help="List available TTS voices on this system")

    return parser


def _source_for(deck: str, config: NarratorConfig) -> SlideSource:
    if deck.lower().endswith(".pptx"):
        return PptxSlideSource()
    return SlideServiceClient(config.slides_url, timeout=config.timeout)


def _backend_for(args: argparse.Namespace, config: NarratorConfig) -> SpeechBackend:
    if args.local:
        voice = VoiceConfig(rate=args.rate, volume=config.volume, language=args.language)
        return LocalSynthesizer(voice)
    return RemoteSynthesizer(
        config.synthesis_url, args.voice_profile, timeout=config.timeout
    )


def _log_event(event: ControllerEvent) -> None:
    detail = f" {event.detail}" if event.detail else ""
    logger.info(
        "[slide %d line %d] %s%s",
        event.slide_index + 1,
        event.line_index + 1,
        event.name,
        detail,
    )


def _run_command(ctrl: PlaybackController, line: str) -> bool:
    """Handle one typed command; returns False to quit."""
    words = line.strip().split(maxsplit=2)
    command = words[0].lower() if words else ""
    if command in {"q", "quit", "exit"}:
        return False
    if command == "play":
        ctrl.play_current_line()
    elif command == "auto":
        ctrl.set_auto_play(True)
    elif command == "replay":
        ctrl.replay_last()
    elif command == "stop":
        ctrl.stop()
    elif command == "note" and len(words) == 3 and words[1].isdigit():
        ctrl.edit_notes(int(words[1]) - 1, words[2])
        print(f"Notes for slide {words[1]} updated.")
    else:
        print(_HELP)
    return True


def _read_stdin(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue[str]) -> None:
    """Feed stdin lines into *lines*; an empty string marks EOF."""
    for line in iter(sys.stdin.readline, ""):
        try:
            loop.call_soon_threadsafe(lines.put_nowait, line)
        except RuntimeError:  # loop already closed
            return
    with contextlib.suppress(RuntimeError):
        loop.call_soon_threadsafe(lines.put_nowait, "")


async def _interact(ctrl: PlaybackController, done: asyncio.Event | None = None) -> None:
    loop = asyncio.get_running_loop()
    dispatcher = KeyDispatcher(ctrl)
    if done is None:
        done = asyncio.Event()

    def _on_signal() -> None:
        print("\nStopping...")
        ctrl.stop()
        done.set()

    handled = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal)
            handled.append(sig)
        except NotImplementedError:  # Windows event loops
            pass

    # A daemon thread, so a readline still blocked at exit never holds up shutdown
    lines: asyncio.Queue[str] = asyncio.Queue()
    threading.Thread(
        target=_read_stdin, args=(loop, lines), name="stdin-reader", daemon=True
    ).start()

    print(_HELP)
    stopped = loop.create_task(done.wait())
    reader: asyncio.Task[str] | None = None
    try:
        while not done.is_set():
            reader = loop.create_task(lines.get())
            await asyncio.wait({reader, stopped}, return_when=asyncio.FIRST_COMPLETED)
            if done.is_set():
                break
            line = reader.result()
            if not line:  # EOF
                break
            key = key_from_terminal(line)
            if key is not None and dispatcher.handle(key):
                continue
            if not _run_command(ctrl, line):
                break
    finally:
        stopped.cancel()
        if reader is not None:
            reader.cancel()
        for sig in handled:
            loop.remove_signal_handler(sig)


async def _play(args: argparse.Namespace, config: NarratorConfig) -> int:
    viewer = None if args.deck.lower().endswith(".pptx") else SlideViewer(args.deck)
    backend = _backend_for(args, config)
    ctrl = PlaybackController(
        backend,
        source=_source_for(args.deck, config),
        policy=AutoAdvancePolicy(args.policy),
        advance_interval=args.interval,
        settle_delay=args.settle,
        end_of_deck=EndOfDeck(args.end_of_deck),
        line_mode=args.lines,
        on_navigate=viewer.show if viewer else None,
    )
    ctrl.subscribe(_log_event)

    try:
        await ctrl.load(args.deck)
    except LoadError as exc:
        if not exc.unsupported:
            print(f"Could not load presentation: {exc}", file=sys.stderr)
            return 1
        print("This deck format is not supported. Enter notes with: note <slide> <text>")

    if args.auto:
        ctrl.set_auto_play(True)
    try:
        await _interact(ctrl)
    finally:
        ctrl.close()
        if isinstance(backend, LocalSynthesizer):
            backend.close()
    return 0


def _cmd_play(args: argparse.Namespace, config: NarratorConfig) -> int:
    return asyncio.run(_play(args, config))


async def _list_slides(args: argparse.Namespace, config: NarratorConfig) -> int:
    try:
        slides = await _source_for(args.deck, config).fetch(args.deck)
    except LoadError as exc:
        print(f"Could not load presentation: {exc}", file=sys.stderr)
        return 1
    for s in slides:
        print(f"{s.index + 1:>3}. [{s.slide_id}] {s.display_text.splitlines()[0][:60]}")
        if s.notes:
            print(f"     notes: {s.notes[:80]}")
    return 0


def _cmd_slides(args: argparse.Namespace, config: NarratorConfig) -> int:
    return asyncio.run(_list_slides(args, config))


async def _list_voices() -> list[dict[str, str]]:
    synth = LocalSynthesizer()
    try:
        return await synth.voices()
    finally:
        synth.close()


def _cmd_voices(_args: argparse.Namespace, _config: NarratorConfig) -> int:
    voices = asyncio.run(_list_voices())
    if not voices:
        print("No voices found.")
        return 0
    for v in voices:
        print(f"  {v['name']}  ({v['id']})")
    return 0


def main() -> None:
    load_dotenv()
    config = NarratorConfig.from_env()

    parser = _build_parser(config)
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "play": _cmd_play,
        "slides": _cmd_slides,
        "voices": _cmd_voices,
    }
    sys.exit(commands[args.command](args, config))


if __name__ == "__main__":
    main()
