"""
Pytest config.

Tests import the local `curling_chat/` package directly, so the repo root must be
on sys.path even when a global `pytest` entrypoint is used without installing the
project. We pin that here.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()


@pytest.fixture(autouse=True)
def _isolate_env_for_unit_tests(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Unit tests never talk to a real database or model provider.

    Clear the env vars that would point them at one; individual tests set what
    they need.
    """
    for name in (
        "POSTGRES_DSN",
        "POSTGRES_HOST",
        "POSTGRES_DB",
        "POSTGRES_USER",
        "POSTGRES_PASSWORD",
        "LLM_MOCK",
        "LLM_PROVIDER",
        "CHAT_MAX_STEPS",
        "CHAT_CONFIRMATION_TOOLS",
        "CHAT_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)
