"""
Config loader for cantor.
Reads config.yaml once at startup. All other modules import from here.
The chat-facing values are frozen into a ChatSettings object so nothing
downstream can mutate persona, model or limits at runtime.
"""

import os
import re
import yaml
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

_config: dict | None = None

DEFAULT_PERSONA = (
    "You are Johann Sebastian Bach helping modern music students prepare for theory and history exams.\n"
    "Respond with the warmth of a mentor, sprinkle in short Baroque metaphors, and emphasize how concepts "
    "connect to real compositions.\n"
    "Keep answers focused, cite relevant works when possible, and suggest short exercises students can try "
    "at the keyboard."
)
DEFAULT_MODEL = "@cf/meta/llama-3.1-8b-instruct"
DEFAULT_HISTORY_LIMIT = 12


@dataclass(frozen=True)
class ChatSettings:
    """Immutable per-process chat configuration."""
    persona: str = DEFAULT_PERSONA
    model: str = DEFAULT_MODEL
    history_limit: int = DEFAULT_HISTORY_LIMIT
    temperature: float = 0.35
    max_tokens: int = 512
    mock: bool = False

    def __post_init__(self):
        if self.history_limit < 2:
            raise ValueError(
                f"history_limit must leave room for a user/assistant pair, got {self.history_limit}"
            )


@dataclass(frozen=True)
class SessionSettings:
    header: str = "X-Session-ID"
    cookie: str = "bach_session"
    cookie_max_age_days: int = 30


def _resolve_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with actual environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def _walk_and_resolve(obj):
    """Recursively resolve env vars in all string values."""
    if isinstance(obj, dict):
        return {k: _walk_and_resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_walk_and_resolve(v) for v in obj]
    elif isinstance(obj, str):
        return _resolve_env_vars(obj)
    return obj


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def load_config(path: Path | None = None) -> dict:
    """Load and cache config from YAML file."""
    global _config
    if _config is not None:
        return _config

    config_path = path or _CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    _config = _walk_and_resolve(raw)
    return _config


def get_config() -> dict:
    """Return cached base config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def get_chat_settings(cfg: dict | None = None) -> ChatSettings:
    """
    Build ChatSettings from the `chat:` block.
    MOCK_AI=true in the environment turns on mock replies regardless of YAML.
    """
    cfg = get_config() if cfg is None else cfg
    chat = cfg.get("chat", {}) or {}
    mock = _as_bool(chat.get("mock", False)) or _as_bool(os.environ.get("MOCK_AI", ""))
    return ChatSettings(
        persona=chat.get("persona") or DEFAULT_PERSONA,
        model=chat.get("model") or DEFAULT_MODEL,
        history_limit=int(chat.get("history_limit", DEFAULT_HISTORY_LIMIT)),
        temperature=float(chat.get("temperature", 0.35)),
        max_tokens=int(chat.get("max_tokens", 512)),
        mock=mock,
    )


def get_session_settings(cfg: dict | None = None) -> SessionSettings:
    cfg = get_config() if cfg is None else cfg
    sess = cfg.get("session", {}) or {}
    return SessionSettings(
        header=sess.get("header") or "X-Session-ID",
        cookie=sess.get("cookie") or "bach_session",
        cookie_max_age_days=int(sess.get("cookie_max_age_days", 30)),
    )
