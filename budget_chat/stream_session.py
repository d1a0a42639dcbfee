"""Streaming session lifecycle: submit, stream, commit, cancel, fail.

Each conversation has at most one active ``StreamSession``. A session moves
``SUBMITTING -> STREAMING`` and always ends in exactly one of ``COMPLETED``,
``ABORTED`` or ``FAILED``; the conversation is then idle again. The live
buffer is committed to history at most once, whichever terminal path wins.
"""

import asyncio
import contextlib
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .context_window import ContextWindowManager, DEFAULT_KEEP_RECENT, DEFAULT_TARGET_FRACTION
from .errors import ErrorKind, ProviderError, SessionBusyError, classify_error, describe_error
from .llm import CompletionProvider, CompletionRequest, DEFAULT_SYSTEM_PROMPT, DEFAULT_TEMPERATURE
from .logger import conversation_context
from .messages import Message
from .profiles import ModelProfile, get_model_profile
from .registry import ConversationRegistry, ConversationState
from .sanitize import sanitize_input
from .tasks import CancelHandle, iterate_until_cancelled

__all__ = ["SessionStatus", "StreamSession", "SessionController"]

logger = logging.getLogger(__name__)


class SessionStatus(str, enum.Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.ABORTED,
                               SessionStatus.FAILED})


@dataclass
class StreamSession:
    conversation_id: str
    status: SessionStatus = SessionStatus.SUBMITTING
    cancel_handle: CancelHandle = field(default_factory=CancelHandle)
    live_buffer: str = ""
    committed: Optional[Message] = None
    error: Optional[ErrorKind] = None
    fragments: int = 0

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_STATUSES


FragmentListener = Callable[[StreamSession, str], None]
FinishListener = Callable[[StreamSession], None]


class SessionController:
    """Drives completion requests for every conversation in a registry."""

    def __init__(self, provider: CompletionProvider, registry: ConversationRegistry,
                 model: Optional[str] = None,
                 system_prompt: str = DEFAULT_SYSTEM_PROMPT,
                 temperature: float = DEFAULT_TEMPERATURE,
                 keep_recent_count: int = DEFAULT_KEEP_RECENT,
                 target_fraction: float = DEFAULT_TARGET_FRACTION,
                 profile_lookup: Optional[Callable[[Optional[str]], ModelProfile]] = None):
        self.provider = provider
        self.registry = registry
        self.model = model
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.keep_recent_count = keep_recent_count
        self.target_fraction = target_fraction
        self.profile_lookup = profile_lookup or get_model_profile
        self._fragment_listeners: List[FragmentListener] = []
        self._finish_listeners: List[FinishListener] = []

    def on_fragment(self, listener: FragmentListener) -> None:
        self._fragment_listeners.append(listener)

    def on_finish(self, listener: FinishListener) -> None:
        self._finish_listeners.append(listener)

    def active_session(self, conversation_id: str) -> Optional[StreamSession]:
        state = self.registry.get(conversation_id)
        if state is None or not state.streaming:
            return None
        return state.session

    def status(self, conversation_id: str) -> SessionStatus:
        session = self.active_session(conversation_id)
        return session.status if session is not None else SessionStatus.IDLE

    def _window_manager(self, profile: ModelProfile) -> ContextWindowManager:
        return ContextWindowManager(profile, self.keep_recent_count, self.target_fraction)

    async def submit(self, conversation_id: str, raw_text: str,
                     system_prompt: Optional[str] = None,
                     model: Optional[str] = None) -> Optional[StreamSession]:
        """Send ``raw_text`` as the next user turn and stream the reply.

        Returns the finished session, or ``None`` for blank input. Raises
        ``SessionBusyError`` if this conversation is already streaming.
        """
        text = sanitize_input(raw_text)
        if not text:
            return None

        state = self.registry.get_or_create(conversation_id)
        if state.streaming:
            raise SessionBusyError(conversation_id)

        system_prompt = system_prompt or state.system_prompt or self.system_prompt
        profile = self.profile_lookup(model or state.model or self.model)

        session = StreamSession(conversation_id)
        state.session = session
        with conversation_context(conversation_id):
            await self._run(state, session, text, system_prompt, profile)
        return session

    async def _run(self, state: ConversationState, session: StreamSession, text: str,
                   system_prompt: str, profile: ModelProfile) -> None:
        logger.debug("Submitting (%d committed messages)", len(state.messages))
        try:
            base = state.history_for_request()
            user_msg = Message.user(text)
            state.append(user_msg)
            state.draft = ""
            state.usage.cancel()

            reduced = await self._window_manager(profile).reduce(base, system_prompt)
            if reduced.reduced:
                logger.info("Sending reduced history: %d of %d messages elided",
                            reduced.elided, len(base))

            request = CompletionRequest(
                system_message=system_prompt,
                turns=reduced.messages + [user_msg],
                model=profile.id,
                temperature=self.temperature,
            )
            session.status = SessionStatus.STREAMING
            stream = self.provider.stream(request, session.cancel_handle)
            async with contextlib.aclosing(
                    iterate_until_cancelled(stream, session.cancel_handle)) as fragments:
                async for fragment in fragments:
                    if session.finished:
                        break
                    self._apply_fragment(session, fragment)
        except asyncio.CancelledError:
            self._abort(state, session)
            raise
        except Exception as exc:
            if session.finished:
                logger.debug("Error after cancellation ignored: %s", exc)
            else:
                self._fail(state, session, exc, system_prompt, profile)
        else:
            if session.cancel_handle.cancelled:
                self._abort(state, session)
            else:
                self._complete(state, session)
        finally:
            if not session.finished:
                self._abort(state, session)

    def cancel(self, conversation_id: str) -> bool:
        """Abort the active session, committing any partial reply.

        Returns ``False`` (and does nothing) when there is nothing to cancel,
        including a second cancel of the same session.
        """
        state = self.registry.get(conversation_id)
        if state is None or not state.streaming:
            return False
        session = state.session
        session.cancel_handle.cancel()
        with conversation_context(conversation_id):
            self._abort(state, session)
        return True

    def cancel_all(self) -> int:
        return sum(1 for cid in self.registry.ids() if self.cancel(cid))

    def _apply_fragment(self, session: StreamSession, fragment: str) -> None:
        session.live_buffer += fragment
        session.fragments += 1
        for listener in self._fragment_listeners:
            listener(session, fragment)

    def _commit(self, state: ConversationState, session: StreamSession, text: str) -> None:
        message = Message.assistant(text)
        state.append(message)
        session.committed = message
        session.live_buffer = ""

    def _finish(self, state: ConversationState, session: StreamSession,
                status: SessionStatus) -> None:
        session.status = status
        if state.session is session:
            state.session = None
        logger.debug("Session %s", status.value)
        for listener in self._finish_listeners:
            listener(session)

    def _complete(self, state: ConversationState, session: StreamSession) -> None:
        if session.live_buffer:
            self._commit(state, session, session.live_buffer)
        else:
            logger.warning("Provider returned an empty response")
        state.reduction_window = None
        self._finish(state, session, SessionStatus.COMPLETED)

    def _abort(self, state: ConversationState, session: StreamSession) -> None:
        if session.finished:
            return
        if session.live_buffer:
            self._commit(state, session, session.live_buffer)
        self._finish(state, session, SessionStatus.ABORTED)

    def _fail(self, state: ConversationState, session: StreamSession, exc: Exception,
              system_prompt: str, profile: ModelProfile) -> None:
        kind = classify_error(exc)
        detail = exc.detail if isinstance(exc, ProviderError) else f"{type(exc).__name__}: {exc}"
        logger.warning("Request failed (%s): %s", kind.value, detail)

        text = describe_error(kind, detail)
        if session.live_buffer:
            text = f"{session.live_buffer}\n\n{text}"
        session.error = kind

        if kind is ErrorKind.CONTEXT_LENGTH:
            # The provider's own limit was hit despite the local estimate.
            state.reduction_window = self._window_manager(profile).truncate(
                state.messages, system_prompt)
            logger.info("Retaining truncation window: %d messages elided",
                        state.reduction_window.elided)

        self._commit(state, session, text)
        self._finish(state, session, SessionStatus.FAILED)
