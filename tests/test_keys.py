"""Tests for keyboard dispatch."""

from unittest.mock import MagicMock

import pytest

from slide_narrator.keys import Focus, KeyDispatcher, key_from_terminal


@pytest.fixture
def controller() -> MagicMock:
    return MagicMock()


class TestKeyDispatcher:
    @pytest.mark.parametrize("key", ["ArrowRight", " "])
    def test_forward(self, controller, key) -> None:
        assert KeyDispatcher(controller).handle(key)
        controller.advance.assert_called_once_with(1)

    def test_back(self, controller) -> None:
        KeyDispatcher(controller).handle("ArrowLeft")
        controller.advance.assert_called_once_with(-1)

    def test_home(self, controller) -> None:
        KeyDispatcher(controller).handle("Home")
        controller.go_to.assert_called_once_with(0, 0)

    def test_escape_stops_auto_play(self, controller) -> None:
        KeyDispatcher(controller).handle("Escape")
        controller.set_auto_play.assert_called_once_with(False)

    def test_unknown_key(self, controller) -> None:
        assert not KeyDispatcher(controller).handle("F5")
        assert controller.method_calls == []

    @pytest.mark.parametrize("focus", [Focus.TEXT_INPUT, Focus.VIEWER])
    def test_suppressed_by_focus(self, controller, focus) -> None:
        assert not KeyDispatcher(controller).handle("ArrowRight", focus=focus)
        controller.advance.assert_not_called()


class TestKeyFromTerminal:
    @pytest.mark.parametrize(
        "line, key",
        [
            ("\x1b[C\n", "ArrowRight"),
            ("\x1b[D\n", "ArrowLeft"),
            ("\x1b[H\n", "Home"),
            ("\n", " "),
            ("N\n", "ArrowRight"),
            ("prev\n", "ArrowLeft"),
            ("esc\n", "Escape"),
        ],
    )
    def test_mapping(self, line, key) -> None:
        assert key_from_terminal(line) == key

    def test_commands_are_not_keys(self) -> None:
        assert key_from_terminal("note 1 hello\n") is None
