"""Conversation message types."""

from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Iterable

__all__ = ["Message", "USER", "ASSISTANT", "ROLES", "to_provider_turns",
           "messages_from_dicts", "messages_to_dicts"]

USER = "user"
ASSISTANT = "assistant"
ROLES = (USER, ASSISTANT)


@dataclass(frozen=True)
class Message:
    role: str
    text: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(USER, text)

    @classmethod
    def assistant(cls, text: str) -> "Message":
        return cls(ASSISTANT, text)

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        # Saved conversations from older builds used sender/message with "bot".
        role = data.get("role") or data.get("sender") or USER
        if role == "bot":
            role = ASSISTANT
        text = data.get("text")
        if text is None:
            text = data.get("message", "")
        return cls(role, str(text))


def to_provider_turns(messages: Iterable[Message]) -> List[Dict[str, str]]:
    """Convert messages to the ``{"role", "content"}`` shape chat APIs expect."""
    return [{"role": m.role, "content": m.text} for m in messages]


def messages_from_dicts(items: Iterable[Dict[str, Any]]) -> List[Message]:
    return [Message.from_dict(item) for item in items]


def messages_to_dicts(messages: Iterable[Message]) -> List[Dict[str, str]]:
    return [m.to_dict() for m in messages]
