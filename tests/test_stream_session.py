"""Tests for the streaming session lifecycle."""

import asyncio

import pytest

from budget_chat.context_window import summary_placeholder
from budget_chat.errors import (ContextLengthExceededError, ErrorKind, ProviderAuthError,
                                SessionBusyError, describe_error)
from budget_chat.messages import Message
from budget_chat.registry import ConversationRegistry
from budget_chat.stream_session import SessionController, SessionStatus

from conftest import FakeProvider, make_history


def make_controller(provider, **kwargs):
    registry = ConversationRegistry()
    return SessionController(provider, registry, model="gpt-4o", **kwargs), registry


class TestComplete:

    @pytest.mark.asyncio
    async def test_fragments_committed_once(self, fake_provider):
        controller, registry = make_controller(fake_provider)
        seen = []
        controller.on_fragment(lambda session, fragment: seen.append(fragment))

        session = await controller.submit("c1", "Hi there")

        assert session.status is SessionStatus.COMPLETED
        assert seen == ["Hello", ", ", "world"]
        state = registry.get("c1")
        assert state.messages == [Message.user("Hi there"), Message.assistant("Hello, world")]
        assert session.committed == Message.assistant("Hello, world")
        assert session.live_buffer == ""
        assert not state.streaming
        assert controller.status("c1") is SessionStatus.IDLE
        assert fake_provider.closed

    @pytest.mark.asyncio
    async def test_request_shape(self, fake_provider):
        controller, registry = make_controller(fake_provider, system_prompt="Be brief.")
        registry.get_or_create("c1", make_history(2))
        await controller.submit("c1", "next question")

        request = fake_provider.requests[0]
        assert request.system_message == "Be brief."
        assert request.model == "gpt-4o"
        assert request.turns == make_history(2) + [Message.user("next question")]
        assert request.to_messages()[0] == {"role": "system", "content": "Be brief."}

    @pytest.mark.asyncio
    async def test_blank_input_is_ignored(self, fake_provider):
        controller, registry = make_controller(fake_provider)
        assert await controller.submit("c1", "   ") is None
        assert await controller.submit("c1", "<script>x()</script>") is None
        assert fake_provider.requests == []
        assert registry.get("c1") is None

    @pytest.mark.asyncio
    async def test_input_is_sanitized(self, fake_provider):
        controller, registry = make_controller(fake_provider)
        await controller.submit("c1", "<b>hello</b>\nworld")
        assert registry.get("c1").messages[0] == Message.user("hello\nworld")

    @pytest.mark.asyncio
    async def test_empty_response_commits_nothing(self):
        controller, registry = make_controller(FakeProvider([]))
        session = await controller.submit("c1", "hello")
        assert session.status is SessionStatus.COMPLETED
        assert session.committed is None
        assert registry.get("c1").messages == [Message.user("hello")]

    @pytest.mark.asyncio
    async def test_finish_listener_called_once(self, fake_provider):
        controller, _ = make_controller(fake_provider)
        finished = []
        controller.on_finish(finished.append)
        session = await controller.submit("c1", "hello")
        assert finished == [session]

    @pytest.mark.asyncio
    async def test_large_history_is_reduced(self, small_profile):
        provider = FakeProvider(["ok"])
        controller, registry = make_controller(
            provider, profile_lookup=lambda model: small_profile)
        history = make_history(5)
        registry.get_or_create("c1", history)

        await controller.submit("c1", "more", system_prompt="s" * 80)

        turns = provider.requests[0].turns
        assert turns == [history[-1], Message.user("more")]
        # Local history is never rewritten by a reduction.
        assert registry.get("c1").messages[:5] == history


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_commits_partial_once(self):
        provider = FakeProvider(["a", "b", "c", "d"])
        controller, registry = make_controller(provider)
        results = []

        def on_fragment(session, fragment):
            if session.fragments == 2:
                results.append(controller.cancel("c1"))
                results.append(controller.cancel("c1"))

        controller.on_fragment(on_fragment)
        session = await controller.submit("c1", "go")

        assert results == [True, False]
        assert session.status is SessionStatus.ABORTED
        assert registry.get("c1").messages == [Message.user("go"), Message.assistant("ab")]
        assert provider.closed

    @pytest.mark.asyncio
    async def test_cancel_from_outside_while_streaming(self):
        provider = FakeProvider(["a", "b", "c", "d", "e"], delay=0.02)
        controller, registry = make_controller(provider)

        task = asyncio.ensure_future(controller.submit("c1", "go"))
        await asyncio.sleep(0.05)
        assert controller.status("c1") is SessionStatus.STREAMING
        assert controller.cancel("c1") is True
        partial = registry.get("c1").messages[-1].text
        session = await asyncio.wait_for(task, timeout=1)

        assert session.status is SessionStatus.ABORTED
        assert 0 < len(partial) < 5
        # Nothing delivered after the cancel reaches history.
        assert registry.get("c1").messages == [Message.user("go"), Message.assistant(partial)]

    @pytest.mark.asyncio
    async def test_cancel_before_any_fragment(self):
        provider = FakeProvider([], stall=True)
        controller, registry = make_controller(provider)
        task = asyncio.ensure_future(controller.submit("c1", "go"))
        await asyncio.sleep(0.02)
        assert controller.cancel("c1") is True
        session = await asyncio.wait_for(task, timeout=1)
        assert session.status is SessionStatus.ABORTED
        assert session.committed is None
        assert registry.get("c1").messages == [Message.user("go")]

    @pytest.mark.asyncio
    async def test_stalled_stream_cannot_outlive_cancel(self):
        provider = FakeProvider(["partial"], stall=True)
        controller, registry = make_controller(provider)
        task = asyncio.ensure_future(controller.submit("c1", "go"))
        await asyncio.sleep(0.02)
        controller.cancel("c1")
        await asyncio.wait_for(task, timeout=1)
        assert registry.get("c1").messages[-1] == Message.assistant("partial")
        assert provider.closed

    @pytest.mark.asyncio
    async def test_cancel_idle_conversation(self, fake_provider):
        controller, _ = make_controller(fake_provider)
        assert controller.cancel("nobody") is False
        await controller.submit("c1", "hi")
        assert controller.cancel("c1") is False

    @pytest.mark.asyncio
    async def test_task_cancellation_aborts_session(self):
        provider = FakeProvider(["x"], stall=True)
        controller, registry = make_controller(provider)
        finished = []
        controller.on_finish(finished.append)
        task = asyncio.ensure_future(controller.submit("c1", "go"))
        await asyncio.sleep(0.02)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert [s.status for s in finished] == [SessionStatus.ABORTED]
        assert registry.get("c1").messages[-1] == Message.assistant("x")
        assert not registry.get("c1").streaming


class TestFailure:

    @pytest.mark.asyncio
    async def test_auth_error_without_partial(self):
        controller, registry = make_controller(FakeProvider(error=ProviderAuthError("bad key")))
        session = await controller.submit("c1", "hi")

        assert session.status is SessionStatus.FAILED
        assert session.error is ErrorKind.AUTH
        assert registry.get("c1").messages[-1] == Message.assistant(
            describe_error(ErrorKind.AUTH, "bad key"))

    @pytest.mark.asyncio
    async def test_partial_text_and_error_in_one_message(self):
        provider = FakeProvider(["half an ans"], error=RuntimeError("429 rate limit"))
        controller, registry = make_controller(provider)
        session = await controller.submit("c1", "hi")

        messages = registry.get("c1").messages
        assert len(messages) == 2
        assert messages[-1].text.startswith("half an ans\n\n")
        assert "Rate limit" in messages[-1].text
        assert session.error is ErrorKind.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_failure_leaves_conversation_usable(self):
        provider = FakeProvider(error=RuntimeError("boom"))
        controller, registry = make_controller(provider)
        await controller.submit("c1", "first")
        provider.error = None
        provider.fragments = ["fine"]
        session = await controller.submit("c1", "second")
        assert session.status is SessionStatus.COMPLETED
        assert registry.get("c1").messages[-1] == Message.assistant("fine")

    @pytest.mark.asyncio
    async def test_context_length_retains_truncation_window(self, small_profile):
        provider = FakeProvider(error=ContextLengthExceededError("maximum context length"))
        controller, registry = make_controller(
            provider, profile_lookup=lambda model: small_profile)
        registry.get_or_create("c1", make_history(3, 40))

        session = await controller.submit("c1", "question")
        assert session.error is ErrorKind.CONTEXT_LENGTH
        state = registry.get("c1")
        assert state.reduction_window is not None
        assert state.reduction_window.reduced

        provider.error = None
        provider.fragments = ["answer"]
        await controller.submit("c1", "again")
        turns = provider.requests[-1].turns
        assert turns[-1] == Message.user("again")
        assert len(turns) < len(state.messages)
        # A successful reply clears the retained window.
        assert state.reduction_window is None


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_same_conversation_is_busy(self):
        provider = FakeProvider(["a"], stall=True)
        controller, _ = make_controller(provider)
        task = asyncio.ensure_future(controller.submit("c1", "one"))
        await asyncio.sleep(0.02)
        with pytest.raises(SessionBusyError):
            await controller.submit("c1", "two")
        controller.cancel("c1")
        await task

    @pytest.mark.asyncio
    async def test_conversations_stream_independently(self):
        provider = FakeProvider(["r1", "r2"], delay=0.01)
        controller, registry = make_controller(provider)
        first, second = await asyncio.gather(
            controller.submit("c1", "one"), controller.submit("c2", "two"))
        assert first.status is second.status is SessionStatus.COMPLETED
        assert registry.get("c1").messages[-1] == Message.assistant("r1r2")
        assert registry.get("c2").messages[-1] == Message.assistant("r1r2")

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        provider = FakeProvider(["x"], stall=True)
        controller, registry = make_controller(provider)
        tasks = [asyncio.ensure_future(controller.submit(cid, "go")) for cid in ("a", "b")]
        await asyncio.sleep(0.02)
        assert controller.cancel_all() == 2
        await asyncio.gather(*tasks)
        assert all(not registry.get(cid).streaming for cid in ("a", "b"))


def test_summary_placeholder_is_assistant_message():
    assert summary_placeholder(3).role == "assistant"
