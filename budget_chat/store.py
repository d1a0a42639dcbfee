"""Conversation persistence: a JSON key-value store and conversation helpers."""

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from .messages import Message, messages_from_dicts, messages_to_dicts, USER

__all__ = ["JsonStore", "SavedConversation", "make_conversation", "ensure_unique_title",
           "sort_conversations_by_timestamp", "find_existing_conversation",
           "fallback_title", "load_conversations", "save_conversations",
           "CONVERSATIONS_KEY"]

logger = logging.getLogger(__name__)

CONVERSATIONS_KEY = "conversations"
DEFAULT_MAX_SIZE_KB = 1024
CONVERSATIONS_MAX_SIZE_KB = 2048


class JsonStore:
    """String key -> JSON value, one file per key under ``root``.

    Writes are best-effort: failures are logged, never raised.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser()

    def _path(self, key: str) -> Path:
        safe_name = "".join(c if c.isalnum() or c in "-_" else "_" for c in key)
        return self.root / f"{safe_name}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error("Failed to load key %s: %s", key, e)
            return default

    def set(self, key: str, value: Any, max_size_kb: Optional[int] = None) -> bool:
        if max_size_kb is None:
            max_size_kb = CONVERSATIONS_MAX_SIZE_KB if CONVERSATIONS_KEY in key else DEFAULT_MAX_SIZE_KB
        try:
            serialized = json.dumps(value, ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as e:
            logger.error("Value for key %s is not JSON serializable: %s", key, e)
            return False

        size_kb = len(serialized.encode("utf-8")) / 1024
        if size_kb > max_size_kb and isinstance(value, list):
            logger.warning("Data too large for key %s: %.0fKB > %dKB limit; keeping newest half",
                           key, size_kb, max_size_kb)
            serialized = json.dumps(value[-(len(value) // 2):] if len(value) > 1 else value,
                                    ensure_ascii=False, indent=2)

        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with open(self._path(key), "w", encoding="utf-8") as f:
                f.write(serialized)
        except OSError as e:
            logger.error("Failed to save key %s: %s", key, e)
            return False
        return True

    def remove(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Failed to remove key %s: %s", key, e)
            return False
        return True


@dataclass
class SavedConversation:
    id: str
    title: str
    messages: List[Message] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title,
                "messages": messages_to_dicts(self.messages), "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SavedConversation":
        return cls(id=str(data.get("id") or uuid.uuid4().hex),
                   title=data.get("title", "Untitled"),
                   messages=messages_from_dicts(data.get("messages", [])),
                   timestamp=float(data.get("timestamp", 0)))


def make_conversation(conversation_id: Optional[str], title: str,
                      messages: Sequence[Message],
                      timestamp: Optional[float] = None) -> SavedConversation:
    return SavedConversation(id=conversation_id or uuid.uuid4().hex, title=title,
                             messages=list(messages),
                             timestamp=timestamp if timestamp is not None else time.time())


def ensure_unique_title(base_title: str, existing_titles: Sequence[str]) -> str:
    """Append `` (2)``, `` (3)``... until the title is unused."""
    title = base_title
    counter = 1
    while title in existing_titles:
        counter += 1
        title = f"{base_title} ({counter})"
    return title


def sort_conversations_by_timestamp(conversations: Sequence[SavedConversation]) -> List[SavedConversation]:
    return sorted(conversations, key=lambda c: c.timestamp, reverse=True)


def _first_user(messages: Sequence[Message]) -> Optional[Message]:
    return next((m for m in messages if m.role == USER), None)


def find_existing_conversation(conversations: Sequence[SavedConversation],
                               messages: Sequence[Message]) -> Optional[SavedConversation]:
    """Saved conversation whose first user message matches ``messages``."""
    first = _first_user(messages)
    if first is None:
        return None
    for conv in conversations:
        conv_first = _first_user(conv.messages)
        if conv_first is not None and conv_first.text == first.text:
            return conv
    return None


def fallback_title(messages: Sequence[Message], prefix: Optional[str] = None) -> str:
    first = _first_user(messages)
    if first is None:
        return "New Conversation"
    if prefix:
        return f"{prefix} Chat"
    truncated = first.text[:30]
    last_space = truncated.rfind(" ")
    if last_space > 15:
        return truncated[:last_space] + "..."
    return truncated + "..."


def load_conversations(store: JsonStore) -> List[SavedConversation]:
    raw = store.get(CONVERSATIONS_KEY, [])
    if not isinstance(raw, list):
        return []
    conversations = []
    for item in raw:
        if isinstance(item, dict):
            conversations.append(SavedConversation.from_dict(item))
    return sort_conversations_by_timestamp(conversations)


def save_conversations(store: JsonStore, conversations: Sequence[SavedConversation]) -> bool:
    ordered = sorted(conversations, key=lambda c: c.timestamp)
    return store.set(CONVERSATIONS_KEY, [c.to_dict() for c in ordered])
