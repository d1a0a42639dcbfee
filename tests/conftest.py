"""Shared fixtures for budget-chat tests."""

import asyncio
import os
from typing import List, Optional

import pytest
import yaml

from budget_chat.messages import Message
from budget_chat.profiles import ModelProfile


@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a temporary directory and cd into it."""
    orig = os.getcwd()
    os.chdir(tmp_path)
    yield tmp_path
    os.chdir(orig)


@pytest.fixture
def isolated_home(tmp_path, monkeypatch):
    """Point the global config paths at a temp dir."""
    from budget_chat import config as config_mod

    home = tmp_path / "home"
    monkeypatch.setattr(config_mod, "CONFIG_DIR", home)
    monkeypatch.setattr(config_mod, "CONFIG_FILE", home / "config.yml")
    for var in ("CHAT_MODEL", "CHAT_VERBOSE", "CHAT_DEBOUNCE_MS"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def sample_config_data():
    """Minimal .chat.conf.yml data dict."""
    return {
        "active-model": "local",
        "system-prompt": "You are terse.",
        "temperature": 0.2,
        "debounce-ms": 150,
        "keep-recent-count": 4,
        "truncate-target": 0.5,
        "overscan": 3,
        "estimated-item-height": 6,
        "virtualize-threshold": 20,
        "verbose": False,
        "models": {
            "local": {
                "model": "openai/model",
                "description": "Local test model",
                "context-window": 10000,
                "max-tokens": 512,
                "api-base": "http://localhost:8080/v1",
                "api-key": "not-needed",
            }
        },
    }


@pytest.fixture
def config_yaml_file(tmp_dir, sample_config_data):
    """Write a config YAML to tmp_dir and return its Path."""
    path = tmp_dir / ".chat.conf.yml"
    with open(path, "w") as f:
        yaml.dump(sample_config_data, f, default_flow_style=False)
    return path


@pytest.fixture
def small_profile():
    """A profile with a 1000-token soft limit."""
    return ModelProfile(id="small", soft_limit=1000, context_window=1250)


def make_history(count: int, chars: int = 200) -> List[Message]:
    """Alternating user/assistant messages of ``chars`` plain characters each."""
    history = []
    for i in range(count):
        text = f"{i:04d}" + "x" * (chars - 4)
        history.append(Message.user(text) if i % 2 == 0 else Message.assistant(text))
    return history


class FakeProvider:
    """Scripted completion provider.

    ``fragments`` are yielded in order with an optional ``delay`` between
    them; ``error`` is raised after they are exhausted; ``stall`` blocks
    forever after the fragments (until cancelled).
    """

    def __init__(self, fragments=(), error: Optional[BaseException] = None,
                 delay: float = 0.0, stall: bool = False):
        self.fragments = list(fragments)
        self.error = error
        self.delay = delay
        self.stall = stall
        self.requests = []
        self.closed = False

    async def stream(self, request, cancel):
        self.requests.append(request)
        try:
            for fragment in self.fragments:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield fragment
            if self.error is not None:
                raise self.error
            if self.stall:
                await asyncio.Event().wait()
        finally:
            self.closed = True

    async def generate_title(self, messages, model, fallback):
        return "Generated Title"


@pytest.fixture
def fake_provider():
    return FakeProvider(["Hello", ", ", "world"])
