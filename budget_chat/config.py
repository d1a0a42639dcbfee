"""
Configuration: model profile table plus chat/budget/view settings.

Loading priority:
  1. Project dir .chat.conf.yml
  2. Git root .chat.conf.yml
  3. Global ~/.budget-chat/config.yml

Environment overrides: CHAT_MODEL, CHAT_VERBOSE, CHAT_DEBOUNCE_MS.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Callable, Any

import yaml
from dotenv import load_dotenv

from .llm import DEFAULT_SYSTEM_PROMPT, DEFAULT_TEMPERATURE
from .profiles import (DEFAULT_MODEL, MODEL_CONTEXT_WINDOWS, ModelProfile,
                       get_model_profile)
from .registry import ViewSettings

CONFIG_DIR = Path.home() / ".budget-chat"
CONFIG_FILE = CONFIG_DIR / "config.yml"
HISTORY_FILE = CONFIG_DIR / "history.txt"
STORE_DIR = CONFIG_DIR / "store"
CONFIG_FILENAME = ".chat.conf.yml"

DEFAULT_CONTEXT_WINDOW = 128_000
MIN_CONTEXT_WINDOW = 1_000
MAX_CONTEXT_WINDOW = 100_000_000

# Environment variable -> config key; applied after the YAML file.
ENV_OVERRIDES = {
    "CHAT_MODEL": "active-model",
    "CHAT_VERBOSE": "verbose",
    "CHAT_DEBOUNCE_MS": "debounce-ms",
}


# ── Configuration metadata and validation ──


@dataclass
class ConfigFieldSpec:
    """Configuration field specification with validation rules."""
    key: str
    field_name: str
    description: str
    value_type: str  # "str", "int", "float", "bool"
    default: Any
    validator: Optional[Callable[[Any], tuple[bool, Any, str]]] = None  # (valid, coerced_value, error_msg)


def _validate_range(value: Any, lo, hi, cast: Callable[[Any], Any], type_error: str) -> tuple[bool, Any, str]:
    """Parse with ``cast`` and check ``lo <= value <= hi``; out-of-range values come back clamped."""
    try:
        parsed = cast(value)
    except (TypeError, ValueError):
        return False, cast(0), type_error
    clamped = max(lo, min(hi, parsed))
    if clamped != parsed:
        return False, clamped, f"Must be between {lo} and {hi}"
    return True, parsed, ""


def _validate_int_range(value: Any, lo: int, hi: int) -> tuple[bool, int, str]:
    return _validate_range(value, lo, hi, int, "Must be an integer")


def _validate_float_range(value: Any, lo: float, hi: float) -> tuple[bool, float, str]:
    return _validate_range(value, lo, hi, float, "Must be a number")


def _validate_bool(value: Any) -> tuple[bool, bool, str]:
    """Validate boolean value."""
    if isinstance(value, bool):
        return True, value, ""
    if isinstance(value, str):
        val_lower = value.strip().lower()
        if val_lower in ("1", "true", "yes", "on"):
            return True, True, ""
        if val_lower in ("0", "false", "no", "off"):
            return True, False, ""
    return False, False, "Must be true/false, yes/no, on/off, or 1/0"


def _clamp_int(value: Any, default: int, lo: int, hi: int) -> int:
    """Coerce ``value`` into ``[lo, hi]``; unparseable values give ``default``."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return max(lo, min(hi, parsed))


def _int_field(key: str, description: str, default: int, lo: int, hi: int) -> ConfigFieldSpec:
    return ConfigFieldSpec(key, key.replace("-", "_"), description, "int", default,
                           lambda v: _validate_int_range(v, lo, hi))


def _float_field(key: str, description: str, default: float, lo: float, hi: float) -> ConfigFieldSpec:
    return ConfigFieldSpec(key, key.replace("-", "_"), description, "float", default,
                           lambda v: _validate_float_range(v, lo, hi))


# active-model is checked against the loaded presets, not here.
CONFIG_FIELDS: Dict[str, ConfigFieldSpec] = {spec.key: spec for spec in [
    ConfigFieldSpec("active-model", "active_model", "Model profile used for new requests",
                    "str", DEFAULT_MODEL),
    ConfigFieldSpec("system-prompt", "system_prompt", "System prompt sent with every request",
                    "str", DEFAULT_SYSTEM_PROMPT),
    _float_field("temperature", "Sampling temperature", DEFAULT_TEMPERATURE, 0.0, 2.0),
    _int_field("debounce-ms", "Quiet period before token usage is recomputed", 300, 0, 5000),
    _int_field("keep-recent-count", "Messages kept verbatim when history is optimized", 6, 1, 100),
    _float_field("truncate-target", "Fraction of the soft limit history is truncated to",
                 0.7, 0.1, 1.0),
    _int_field("overscan", "Extra items rendered beyond the viewport", 5, 0, 50),
    _int_field("estimated-item-height", "Rows assumed for messages not measured yet", 4, 1, 1000),
    _int_field("virtualize-threshold", "Lists longer than this are rendered through a window",
               50, 0, 10000),
    ConfigFieldSpec("verbose", "verbose", "Enable verbose log output", "bool", False,
                    _validate_bool),
]}


def validate_config_value(key: str, value: Any) -> tuple[bool, Any, str]:
    """
    Validate a configuration value.

    Returns:
        (is_valid, coerced_value, error_message)
    """
    if key not in CONFIG_FIELDS:
        return False, value, f"Unknown configuration key: {key}"

    spec = CONFIG_FIELDS[key]
    if spec.validator:
        return spec.validator(value)

    if spec.value_type == "str":
        text = str(value).strip()
        if not text:
            return False, spec.default, "Must not be empty"
        return True, text, ""
    return True, value, ""


@dataclass
class ModelPreset:
    name: str
    model: str
    context_window: int = DEFAULT_CONTEXT_WINDOW
    api_base: Optional[str] = None
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None
    max_tokens: Optional[int] = None
    description: str = ""

    def resolve_api_key(self) -> Optional[str]:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None

    def profile(self) -> ModelProfile:
        return ModelProfile.from_context_window(self.name, self.context_window)

    def get_provider_kwargs(self) -> dict:
        """Return kwargs for LiteLLMProvider (direct, no env vars)."""
        return {
            "api_base": self.api_base,
            "api_key": self.resolve_api_key(),
            "max_tokens": self.max_tokens,
            "model_map": {self.name: self.model},
        }

    @classmethod
    def from_dict(cls, name: str, data: Optional[Dict[str, Any]]) -> "ModelPreset":
        """Build a preset from its kebab-case `models:` entry."""
        data = data or {}
        return cls(
            name=name,
            model=data.get("model", name),
            context_window=_clamp_int(data.get("context-window"), DEFAULT_CONTEXT_WINDOW,
                                      MIN_CONTEXT_WINDOW, MAX_CONTEXT_WINDOW),
            api_base=data.get("api-base"),
            api_key=data.get("api-key"),
            api_key_env=data.get("api-key-env"),
            max_tokens=data.get("max-tokens"),
            description=data.get("description", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"model": self.model, "context-window": self.context_window}
        optional = {"api-base": self.api_base, "api-key": self.api_key,
                    "api-key-env": self.api_key_env, "max-tokens": self.max_tokens,
                    "description": self.description}
        entry.update({key: value for key, value in optional.items() if value})
        return entry


@dataclass
class Config:
    active_model: str = DEFAULT_MODEL
    models: Dict[str, ModelPreset] = field(default_factory=dict)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    temperature: float = DEFAULT_TEMPERATURE
    debounce_ms: int = 300
    keep_recent_count: int = 6
    truncate_target: float = 0.7
    overscan: int = 5
    estimated_item_height: int = 4  # terminal rows
    virtualize_threshold: int = 50
    verbose: bool = False
    log_file: Optional[str] = None
    project_root: Optional[str] = None
    _config_source: str = ""

    @classmethod
    def load(cls, project_dir: str = ".") -> "Config":
        config = cls()
        project_path = Path(project_dir).resolve()

        for env_path in [CONFIG_DIR / ".env", project_path / ".env"]:
            if env_path.exists():
                load_dotenv(env_path, override=False)

        git_root = cls._find_git_root(project_path)
        for candidate in [
            project_path / CONFIG_FILENAME,
            (git_root / CONFIG_FILENAME) if git_root and git_root != project_path else None,
            CONFIG_FILE,
        ]:
            if candidate and candidate.exists():
                config._load_yaml(candidate)
                config._config_source = str(candidate)
                break
        else:
            config._add_default_presets()
            config._config_source = str(CONFIG_FILE)

        config._apply_env()
        config.project_root = str(project_path)
        return config

    @classmethod
    def get_default_presets(cls) -> Dict[str, ModelPreset]:
        presets = {
            name: ModelPreset(name=name, model=name, context_window=window,
                              api_key_env="OPENAI_API_KEY",
                              description=f"OpenAI {name}")
            for name, window in MODEL_CONTEXT_WINDOWS.items()
        }
        presets["local"] = ModelPreset(
            name="local", model="openai/model", context_window=32000,
            api_base="http://localhost:8080/v1", api_key="not-needed",
            description="Local model (vLLM / llama.cpp on :8080)",
        )
        return presets

    def _add_default_presets(self):
        self.models = self.get_default_presets()

    def _load_yaml(self, filepath: Path):
        try:
            with open(filepath) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError):
            self._add_default_presets()
            return
        if not isinstance(data, dict):
            data = {}

        for key in CONFIG_FIELDS:
            if key in data:
                self._apply_value(key, data[key])
        self.log_file = data.get("log-file")

        self.models = {}
        for name, entry in (data.get("models") or {}).items():
            self.models[name] = ModelPreset.from_dict(name, entry)
        if not self.models:
            self._add_default_presets()

    def _apply_env(self):
        for env_var, key in ENV_OVERRIDES.items():
            raw = os.environ.get(env_var)
            if raw:
                self._apply_value(key, raw)

    def _apply_value(self, key: str, raw: Any) -> None:
        spec = CONFIG_FIELDS[key]
        ok, value, _ = validate_config_value(key, raw)
        # Out-of-range numbers come back clamped; keep them.
        if ok or (spec.value_type in ("int", "float") and value != 0):
            setattr(self, spec.field_name, value)

    def save(self, filepath: Optional[str] = None):
        target = Path(filepath) if filepath else (
            Path(self._config_source) if self._config_source else CONFIG_FILE
        )
        target.parent.mkdir(parents=True, exist_ok=True)

        data: Dict[str, Any] = {
            key: getattr(self, spec.field_name) for key, spec in CONFIG_FIELDS.items()
        }
        if self.log_file:
            data["log-file"] = self.log_file
        data["models"] = {name: preset.to_dict() for name, preset in self.models.items()}

        with open(target, "w") as f:
            yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    # ── Model profiles ──

    def profile_table(self) -> Dict[str, ModelProfile]:
        return {name: preset.profile() for name, preset in self.models.items()}

    def get_profile(self, model_id: Optional[str] = None) -> ModelProfile:
        """Profile for ``model_id`` (default: the active model); unknown ids fall back."""
        return get_model_profile(model_id or self.active_model, self.profile_table())

    def get_active_preset(self) -> Optional[ModelPreset]:
        return self.models.get(self.active_model)

    def set_active_model(self, name: str) -> bool:
        if name in self.models:
            self.active_model = name
            return True
        return False

    def list_models(self) -> List[Dict]:
        return [{"name": n, "model": p.model, "context_window": p.context_window,
                 "soft_limit": p.profile().soft_limit, "description": p.description,
                 "active": n == self.active_model}
                for n, p in self.models.items()]

    def view_settings(self, container_height: float = 600) -> ViewSettings:
        return ViewSettings(
            debounce_seconds=self.debounce_ms / 1000.0,
            container_height=container_height,
            estimated_item_height=self.estimated_item_height,
            overscan=self.overscan,
            virtualize_threshold=self.virtualize_threshold,
        )

    @staticmethod
    def _find_git_root(path: Path) -> Optional[Path]:
        current = path
        while current != current.parent:
            if (current / ".git").exists():
                return current
            current = current.parent
        return None

    def get_config_value(self, key: str) -> Any:
        """Get configuration value by key."""
        if key not in CONFIG_FIELDS:
            return None
        spec = CONFIG_FIELDS[key]
        return getattr(self, spec.field_name, spec.default)

    def set_config_value(self, key: str, value: Any) -> tuple[bool, str]:
        """
        Set configuration value with validation.

        Returns:
            (success, error_message)
        """
        if key == "active-model":
            if value not in self.models:
                return False, f"Model '{value}' not found. Use `budget-chat models` to list them."
            self.active_model = value
            self.save()
            return True, ""

        is_valid, coerced_value, error_msg = validate_config_value(key, value)
        if not is_valid:
            return False, error_msg

        spec = CONFIG_FIELDS[key]
        setattr(self, spec.field_name, coerced_value)
        self.save()
        return True, ""

    def reset_config_value(self, key: str) -> tuple[bool, str]:
        """Reset configuration value to default."""
        if key not in CONFIG_FIELDS:
            return False, f"Unknown configuration key: {key}"

        spec = CONFIG_FIELDS[key]
        setattr(self, spec.field_name, spec.default)
        self.save()
        return True, ""
