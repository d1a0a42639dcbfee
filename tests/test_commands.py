"""Tests for slash-command routing and handlers."""

import io

import pytest
from rich.console import Console

from budget_chat.chat_app import ChatApp
from budget_chat.commands import SLASH_COMMANDS, _resolve_command, handle_command
from budget_chat.config import Config
from budget_chat.store import JsonStore, make_conversation, save_conversations
from budget_chat.stream_session import StreamSession

from conftest import make_history


@pytest.fixture
def app(tmp_path, fake_provider):
    store = JsonStore(tmp_path / "store")
    save_conversations(store, [make_conversation("abc", "Saved Notes", make_history(3), timestamp=1.0)])
    console = Console(file=io.StringIO(), width=120, height=30, force_terminal=False,
                      color_system=None)
    chat = ChatApp(Config(), console=console, provider=fake_provider, store=store)
    chat.switch("scratch")
    return chat


def _run(app, command):
    app.console.file.seek(0)
    app.console.file.truncate()
    result = handle_command(command, console=app.console, app=app)
    return result, app.console.file.getvalue()


class TestResolve:

    @pytest.mark.parametrize("raw,expected", [
        ("/usage", "/usage"),
        ("/USAGE", "/usage"),
        ("/u", "/usage"),
        ("/sw", "/switch"),
        ("/h", "/help"),
        ("/?", "/help"),
        ("/q", "/quit"),
        ("/exit", "/quit"),
    ])
    def test_resolve(self, raw, expected):
        assert _resolve_command(raw) == expected

    def test_prefix_must_be_unique(self):
        assert _resolve_command("/hi") == "/history"
        assert _resolve_command("/he") == "/help"
        assert _resolve_command("/") == "/"

    def test_every_command_has_a_handler(self):
        from budget_chat.commands import COMMAND_HANDLERS
        assert set(SLASH_COMMANDS) == set(COMMAND_HANDLERS)


class TestHandlers:

    def test_unknown_command(self, app):
        result, output = _run(app, "/bogus")
        assert result == ""
        assert "Unknown: /bogus" in output

    def test_empty_command(self, app):
        assert handle_command("   ", console=app.console, app=app) == ""

    def test_quit(self, app):
        result, output = _run(app, "/quit")
        assert result == "quit"
        assert "Goodbye" in output

    def test_help_lists_commands(self, app):
        _, output = _run(app, "/help")
        for command in ("/usage", "/new", "/switch", "/list", "/history", "/quit"):
            assert command in output

    def test_usage_panel(self, app):
        app.active.messages = make_history(4)
        _, output = _run(app, "/usage")
        assert "scratch" in output
        assert "tokens" in output
        assert "remaining" in output
        assert "scratch" in app.usage

    def test_new_conversation(self, app):
        result, output = _run(app, "/new")
        assert result == ""
        assert app.registry.active_id != "scratch"
        assert app.registry.active_id in output

    def test_switch_requires_name(self, app):
        _, output = _run(app, "/switch")
        assert "Usage: /switch NAME" in output
        assert app.registry.active_id == "scratch"

    def test_switch_by_title(self, app):
        _, output = _run(app, "/switch Saved Notes")
        assert app.registry.active_id == "abc"
        assert "Saved Notes" in output
        assert "3 messages" in output

    def test_list_marks_active_and_streaming(self, app):
        app.registry.get_or_create("busy").session = StreamSession("busy")
        _, output = _run(app, "/list")
        assert "abc" in output
        assert "Saved Notes" in output
        assert "scratch" in output
        assert "busy" in output
        assert "unsaved" in output
        assert "●" in output
        assert "⋯" in output

    def test_history_follows_bottom_by_default(self, app):
        app.active.messages = make_history(100, 20)
        _, output = _run(app, "/history")
        assert "0099" in output
        assert "of 100" in output

    def test_history_at_scroll_offset(self, app):
        app.active.messages = make_history(100, 20)
        _, output = _run(app, "/history 0")
        assert "0000" in output
        assert "0099" not in output
        assert "items 1-" in output

    def test_history_rejects_non_numeric_scroll(self, app):
        app.active.messages = make_history(10)
        _, output = _run(app, "/history top")
        assert "SCROLL must be a number" in output

    def test_history_empty(self, app):
        _, output = _run(app, "/history")
        assert "No messages yet." in output
