from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional, Set


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _split_csv(raw: str) -> List[str]:
    return [x.strip() for x in (raw or "").split(",") if x.strip()]


DEFAULT_MAX_STEPS = 10


@dataclass(frozen=True)
class ChatPolicy:
    # Master switch
    enabled: bool = True

    # Cost caps
    max_steps: int = DEFAULT_MAX_STEPS
    max_rows: int = 200
    tool_timeout_seconds: int = 30

    # Extra tool names that must be confirmed by a human before running.
    # None keeps the registry's own declarations.
    confirmation_tools: Optional[Set[str]] = None

    # In-memory conversations kept before the least recently used is dropped
    max_sessions: int = 1000


def load_chat_policy() -> ChatPolicy:
    """
    Load chat policy from env.

    Recommended vars:
    - CHAT_ENABLED=1
    - CHAT_MAX_STEPS=10
    - CHAT_MAX_ROWS=200
    - CHAT_TOOL_TIMEOUT_SECONDS=30
    - CHAT_CONFIRMATION_TOOLS=queryDatabase
    - CHAT_MAX_SESSIONS=1000
    """
    confirm = _split_csv(os.getenv("CHAT_CONFIRMATION_TOOLS", ""))

    return ChatPolicy(
        enabled=_env_bool("CHAT_ENABLED", True),
        max_steps=max(1, min(_env_int("CHAT_MAX_STEPS", DEFAULT_MAX_STEPS), 50)),
        max_rows=max(1, min(_env_int("CHAT_MAX_ROWS", 200), 5000)),
        tool_timeout_seconds=max(1, min(_env_int("CHAT_TOOL_TIMEOUT_SECONDS", 30), 300)),
        confirmation_tools=set(confirm) if confirm else None,
        max_sessions=max(1, min(_env_int("CHAT_MAX_SESSIONS", 1000), 100000)),
    )
