"""
Read-only access to the curling shot database.

Schema (join pattern: events -> games -> ends -> shots -> stone_positions):

    events(id, name, start_date, end_date)
    games(id, event_id, session, name, sheet, type, start_date, start_time,
          team_red, team_yellow, final_score_red, final_score_yellow)
    ends(id, game_id, number, direction, color_hammer, score_red, score_yellow,
         time_left_red, time_left_yellow)
    shots(id, end_id, number, color, team, player_name, type, turn, percent_score)
    stone_positions(id, shot_id, color, x, y)

All helpers return `(ok, msg, obj)` and never raise. The async variants run the
blocking psycopg calls in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from curling_chat.storage.config import build_postgres_dsn, load_store_config

logger = logging.getLogger(__name__)

ERR_NOT_CONFIGURED = "not_configured"
ERR_NOT_FOUND = "not_found"
ERR_QUERY_FAILED = "query_failed"
ERR_SELECT_ONLY = "select_only"

SHOT_DETAILS_SQL = """
SELECT
  s.id AS shot_id,
  s.number AS shot_number,
  s.color AS shot_color,
  s.team AS shot_team,
  s.player_name,
  s.type AS shot_type,
  s.turn,
  s.percent_score,
  e.id AS end_id,
  e.number AS end_number,
  e.direction,
  e.color_hammer,
  e.score_red,
  e.score_yellow,
  g.id AS game_id,
  g.session,
  g.name AS game_name,
  g.sheet,
  g.type AS game_type,
  g.start_date,
  g.start_time,
  g.team_red,
  g.team_yellow,
  g.final_score_red,
  g.final_score_yellow,
  ev.name AS event_name,
  ev.start_date AS event_start_date,
  ev.end_date AS event_end_date
FROM shots s
JOIN ends e ON s.end_id = e.id
JOIN games g ON e.game_id = g.id
JOIN events ev ON g.event_id = ev.id
WHERE s.id = %s
"""

STONE_POSITIONS_SQL = """
SELECT color, x, y
FROM stone_positions
WHERE shot_id = %s
ORDER BY id
"""


@dataclass(frozen=True)
class ShotRecord:
    shot: Dict[str, Any]
    stones: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class SelectResult:
    rows: List[Dict[str, Any]]
    truncated: bool = False


def _connect(dsn: str):
    import psycopg
    from psycopg.rows import dict_row

    return psycopg.connect(dsn, row_factory=dict_row)


def _dsn() -> Optional[str]:
    return build_postgres_dsn(load_store_config())


def is_select_query(query: str) -> bool:
    q = (query or "").strip().lower()
    return q.startswith("select") or q.startswith("with")


def _stone_row(row: Dict[str, Any]) -> Dict[str, Any]:
    # NULL coordinates pass through as None.
    x, y = row.get("x"), row.get("y")
    return {"color": row.get("color"), "x": float(x) if x is not None else None, "y": float(y) if y is not None else None}


def lookup_shot(shot_id: int) -> Tuple[bool, str, Optional[ShotRecord]]:
    dsn = _dsn()
    if not dsn:
        return False, ERR_NOT_CONFIGURED, None
    try:
        with _connect(dsn) as conn:
            shot = conn.execute(SHOT_DETAILS_SQL, (int(shot_id),)).fetchone()
            if not shot:
                return False, ERR_NOT_FOUND, None
            stones = conn.execute(STONE_POSITIONS_SQL, (int(shot_id),)).fetchall()
            return True, "ok", ShotRecord(shot=dict(shot), stones=[_stone_row(r) for r in stones or []])
    except Exception as e:
        logger.warning("Shot lookup failed: shot_id=%s error=%s", shot_id, str(e)[:200])
        return False, ERR_QUERY_FAILED, None


def run_select(query: str, params: Optional[Sequence[Any]] = None, *, max_rows: int = 200) -> Tuple[bool, str, Optional[SelectResult]]:
    if not is_select_query(query):
        return False, ERR_SELECT_ONLY, None
    dsn = _dsn()
    if not dsn:
        return False, ERR_NOT_CONFIGURED, None
    timeout_ms = load_store_config().statement_timeout_ms
    try:
        with _connect(dsn) as conn:
            with conn.transaction():
                conn.execute("SET TRANSACTION READ ONLY")
                conn.execute("SELECT set_config('statement_timeout', %s, true)", (str(timeout_ms),))
                cur = conn.execute(query, tuple(params or ()))
                rows = cur.fetchmany(max_rows + 1)
        out = [dict(r) for r in rows[:max_rows]]
        return True, "ok", SelectResult(rows=out, truncated=len(rows) > max_rows)
    except Exception as e:
        logger.warning("Select failed: query=%s error=%s", (query or "")[:100], str(e)[:200])
        return False, f"{ERR_QUERY_FAILED}:{str(e)[:200]}", None


def run_statement(statement: str, params: Optional[Sequence[Any]] = None) -> Tuple[bool, str, Optional[int]]:
    """Execute a data-modifying statement. Only reachable after a human approved it."""
    dsn = _dsn()
    if not dsn:
        return False, ERR_NOT_CONFIGURED, None
    try:
        with _connect(dsn) as conn:
            with conn.transaction():
                cur = conn.execute(statement, tuple(params or ()))
                return True, "ok", int(cur.rowcount)
    except Exception as e:
        logger.warning("Statement failed: statement=%s error=%s", (statement or "")[:100], str(e)[:200])
        return False, f"{ERR_QUERY_FAILED}:{str(e)[:200]}", None


async def lookup_shot_async(shot_id: int) -> Tuple[bool, str, Optional[ShotRecord]]:
    return await asyncio.to_thread(lookup_shot, shot_id)


async def run_select_async(
    query: str, params: Optional[Sequence[Any]] = None, *, max_rows: int = 200
) -> Tuple[bool, str, Optional[SelectResult]]:
    return await asyncio.to_thread(run_select, query, params, max_rows=max_rows)


async def run_statement_async(statement: str, params: Optional[Sequence[Any]] = None) -> Tuple[bool, str, Optional[int]]:
    return await asyncio.to_thread(run_statement, statement, params)
