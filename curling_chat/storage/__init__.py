"""Curling shot store (Postgres).

Dependency-light at import time: psycopg is imported inside the functions that
connect, so the chat and client packages import without a database driver.
"""

from __future__ import annotations
