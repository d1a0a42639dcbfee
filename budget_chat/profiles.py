"""Model profile table: model id -> soft token limit."""

from dataclasses import dataclass
from typing import Dict, Optional, Union

__all__ = ["ModelProfile", "MODEL_CONTEXT_WINDOWS", "DEFAULT_MODEL", "SOFT_LIMIT_RATIO",
           "soft_limit_for", "get_model_profile", "resolve_profile"]

# Local budget ceiling as a fraction of the provider's documented context size.
SOFT_LIMIT_RATIO = 0.8

DEFAULT_MODEL = "gpt-4.1"

MODEL_CONTEXT_WINDOWS: Dict[str, int] = {
    "gpt-4.1": 1_000_000,
    "gpt-4.1-mini": 1_000_000,
    "gpt-4.1-nano": 1_000_000,
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
}


def soft_limit_for(context_window: int) -> int:
    return int(context_window * SOFT_LIMIT_RATIO)


@dataclass(frozen=True)
class ModelProfile:
    id: str
    soft_limit: int
    context_window: int = 0

    @classmethod
    def from_context_window(cls, model_id: str, context_window: int) -> "ModelProfile":
        return cls(id=model_id, soft_limit=soft_limit_for(context_window),
                   context_window=context_window)


def get_model_profile(model_id: Optional[str] = None,
                      table: Optional[Dict[str, ModelProfile]] = None) -> ModelProfile:
    """Look up ``model_id``; unknown ids get the default profile."""
    if table and model_id in table:
        return table[model_id]
    window = MODEL_CONTEXT_WINDOWS.get(model_id or "")
    if window is not None:
        return ModelProfile.from_context_window(model_id, window)
    return ModelProfile.from_context_window(DEFAULT_MODEL, MODEL_CONTEXT_WINDOWS[DEFAULT_MODEL])


def resolve_profile(model: Union[str, ModelProfile, None]) -> ModelProfile:
    if isinstance(model, ModelProfile):
        return model
    return get_model_profile(model)
