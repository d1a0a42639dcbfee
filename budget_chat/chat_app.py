"""Interactive chat REPL: prompt, stream, render, persist."""

import asyncio
import logging
import signal
import time
import uuid
from typing import Dict, List, Optional

from rich.console import Console, RenderableType
from rich.live import Live
from rich.segment import Segments

from .budget import UsageSnapshot, compute_usage
from .config import Config, HISTORY_FILE, STORE_DIR
from .errors import ChatError
from .llm import CompletionProvider, LiteLLMProvider
from .registry import ConversationRegistry, ConversationState
from .rendering import LEVEL_ICONS, LEVEL_STYLES, format_token_usage, percent, render_usage
from .store import (JsonStore, SavedConversation, ensure_unique_title, fallback_title,
                    find_existing_conversation, load_conversations, make_conversation,
                    save_conversations)
from .stream_session import SessionController, SessionStatus, StreamSession
from .theme import DIM, ERROR, WARN
from .transcript import TranscriptView

__all__ = ["ChatApp"]

logger = logging.getLogger(__name__)

# Rows kept free for the prompt and toolbar below the transcript.
RESERVED_ROWS = 4


class ChatApp:
    """One terminal chat session over any number of conversations."""

    def __init__(self, config: Config, console: Optional[Console] = None,
                 provider: Optional[CompletionProvider] = None,
                 store: Optional[JsonStore] = None):
        self.config = config
        self.console = console or Console()
        if provider is None:
            preset = config.get_active_preset()
            provider = LiteLLMProvider(**preset.get_provider_kwargs()) if preset else LiteLLMProvider()
        self.provider = provider
        self.store = store or JsonStore(STORE_DIR)
        self.usage: Dict[str, UsageSnapshot] = {}

        self.registry = ConversationRegistry(
            config.view_settings(self.container_height()), on_usage=self._on_usage)
        self.controller = SessionController(
            provider, self.registry,
            model=config.active_model,
            system_prompt=config.system_prompt,
            temperature=config.temperature,
            keep_recent_count=config.keep_recent_count,
            target_fraction=config.truncate_target,
            profile_lookup=config.get_profile,
        )
        self.transcript = TranscriptView(self.console)
        self.saved: List[SavedConversation] = load_conversations(self.store)
        self._prompt_app = None
        self._live: Optional[Live] = None
        self.controller.on_fragment(self._on_fragment)
        # Conversations opened without a name get a generated title when first saved.
        self._untitled: set = set()

    # ── Conversations ──

    def container_height(self) -> int:
        return max(1, self.console.size.height - RESERVED_ROWS)

    @property
    def active(self) -> ConversationState:
        state = self.registry.active
        if state is None:
            state = self.new_conversation()
        return state

    @property
    def profile(self):
        return self.config.get_profile()

    def find_saved(self, name: str) -> Optional[SavedConversation]:
        for conv in self.saved:
            if conv.id == name or conv.title == name:
                return conv
        return None

    def switch(self, name: str) -> ConversationState:
        """Show conversation ``name``, loading it from the store if needed."""
        saved = self.find_saved(name)
        conversation_id = saved.id if saved is not None else name
        messages = saved.messages if saved is not None and conversation_id not in self.registry else None
        state = self.registry.switch(conversation_id, messages)
        state.view.resize(self.container_height())
        self.refresh_usage(state)
        logger.info("Switched to conversation %s (%d messages)", conversation_id, len(state.messages))
        return state

    def new_conversation(self) -> ConversationState:
        conversation_id = uuid.uuid4().hex[:8]
        self._untitled.add(conversation_id)
        return self.switch(conversation_id)

    def refresh_usage(self, state: ConversationState) -> UsageSnapshot:
        snapshot = compute_usage(state.messages, self.config.system_prompt,
                                 state.draft, self.profile)
        self.usage[state.conversation_id] = snapshot
        return snapshot

    def title_of(self, conversation_id: str) -> str:
        saved = self.find_saved(conversation_id)
        return saved.title if saved is not None else conversation_id

    # ── Usage indicator ──

    def _on_usage(self, conversation_id: str, snapshot: UsageSnapshot) -> None:
        self.usage[conversation_id] = snapshot
        if self._prompt_app is not None:
            self._prompt_app.invalidate()

    def _on_draft_changed(self, buffer) -> None:
        state = self.registry.active
        if state is not None:
            state.set_draft(buffer.text, self.config.system_prompt, self.profile)

    def toolbar(self):
        state = self.registry.active
        if state is None or state.conversation_id not in self.usage:
            return ""
        snapshot = self.usage[state.conversation_id]
        style = f"fg:{LEVEL_STYLES[snapshot.level]}"
        return [
            (style, f" {LEVEL_ICONS[snapshot.level]} {percent(snapshot)}% "),
            ("", f" {format_token_usage(snapshot)}  ·  {self.title_of(state.conversation_id)} "),
        ]

    # ── Streaming ──

    def _on_fragment(self, session: StreamSession, fragment: str) -> None:
        _ = fragment
        state = self.registry.active
        if self._live is not None and state is not None and state.conversation_id == session.conversation_id:
            self._live.refresh()

    def render_tail(self, state: ConversationState) -> RenderableType:
        rows = self.container_height()
        state.view.resize(rows)
        renderable = self.transcript.render(state, follow=True)
        lines = self.console.render_lines(renderable, self.console.options, pad=False,
                                          new_lines=True)
        return Segments([segment for line in lines[-rows:] for segment in line])

    async def send(self, text: str) -> Optional[StreamSession]:
        """Submit ``text`` to the active conversation and show the reply as it streams."""
        state = self.active
        conversation_id = state.conversation_id
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.controller.cancel, conversation_id)
            interruptible = True
        except (NotImplementedError, RuntimeError):
            interruptible = False

        live = Live(console=self.console, get_renderable=lambda: self.render_tail(state),
                    auto_refresh=False, transient=True)
        self._live = live
        live.start()
        try:
            session = await self.controller.submit(conversation_id, text,
                                                   self.config.system_prompt)
        except ChatError as e:
            self.console.print(f"  [{ERROR}]{e}[/{ERROR}]")
            return None
        finally:
            self._live = None
            live.stop()
            if interruptible:
                loop.remove_signal_handler(signal.SIGINT)

        if session is None:
            return None
        if session.committed is not None:
            self.console.print(self.transcript.render_message(session.committed))
        if session.status is SessionStatus.ABORTED:
            self.console.print(f"  [{WARN}]Interrupted.[/{WARN}]")
        self.console.print(render_usage(self.refresh_usage(state), compact=True))
        await self.persist(state)
        return session

    # ── Persistence ──

    async def persist(self, state: ConversationState) -> Optional[SavedConversation]:
        if not state.messages:
            return None
        saved = self.find_saved(state.conversation_id)
        if saved is None and state.conversation_id in self._untitled:
            saved = find_existing_conversation(self.saved, state.messages)
        if saved is None:
            fallback = fallback_title(state.messages)
            title = state.conversation_id
            if state.conversation_id in self._untitled:
                generate = getattr(self.provider, "generate_title", None)
                title = await generate(state.messages, self.profile.id, fallback) if generate else fallback
            title = ensure_unique_title(title, [c.title for c in self.saved])
            saved = make_conversation(state.conversation_id, title, state.messages)
            self.saved.insert(0, saved)
        else:
            saved.messages = list(state.messages)
            saved.timestamp = time.time()
        save_conversations(self.store, self.saved)
        return saved

    # ── REPL ──

    async def run(self, conversation: Optional[str] = None) -> None:
        from prompt_toolkit import PromptSession
        from prompt_toolkit.history import FileHistory

        from .commands import handle_command

        if conversation:
            self.switch(conversation)
        else:
            self.new_conversation()

        HISTORY_FILE.parent.mkdir(parents=True, exist_ok=True)
        session = PromptSession(history=FileHistory(str(HISTORY_FILE)), multiline=False)
        session.default_buffer.on_text_changed += self._on_draft_changed
        self._prompt_app = session.app

        pending_ctrl_d_exit = False
        try:
            while True:
                try:
                    user_input = (await session.prompt_async(
                        "› ", bottom_toolbar=self.toolbar)).strip()
                    pending_ctrl_d_exit = False
                except EOFError:
                    if pending_ctrl_d_exit:
                        self.console.print(f"\n[{DIM}]Goodbye![/{DIM}]")
                        break
                    pending_ctrl_d_exit = True
                    self.console.print(f"\n[{DIM}]Press Ctrl-D again to exit.[/{DIM}]")
                    continue
                except KeyboardInterrupt:
                    self.console.print(f"\n[{DIM}]Goodbye![/{DIM}]")
                    break

                if not user_input:
                    continue

                if user_input.startswith("/"):
                    if handle_command(user_input, console=self.console, app=self) == "quit":
                        break
                    continue

                try:
                    await self.send(user_input)
                except Exception as error:
                    logger.exception("Unexpected error while sending")
                    self.console.print(f"\n[{ERROR}]  Error: {error}[/{ERROR}]")
        finally:
            self._prompt_app = None
            self.close()

    def close(self) -> None:
        self.controller.cancel_all()
        self.registry.close()
