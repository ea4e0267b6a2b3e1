from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import pytest

from curling_chat.storage import shots
from curling_chat.storage.config import build_postgres_dsn, load_store_config


class _Cursor:
    def __init__(self, rows: List[Dict[str, Any]], rowcount: int = 0) -> None:
        self._rows = rows
        self.rowcount = rowcount

    def fetchone(self) -> Optional[Dict[str, Any]]:
        return self._rows[0] if self._rows else None

    def fetchall(self) -> List[Dict[str, Any]]:
        return list(self._rows)

    def fetchmany(self, n: int) -> List[Dict[str, Any]]:
        return list(self._rows[:n])


class FakeConn:
    def __init__(self, responses: Dict[str, List[Dict[str, Any]]], *, fail: Optional[Exception] = None) -> None:
        self.responses = responses
        self.fail = fail
        self.executed: List[Any] = []

    def __enter__(self) -> "FakeConn":
        return self

    def __exit__(self, *exc) -> None:
        return None

    @contextmanager
    def transaction(self):
        yield

    def execute(self, sql: str, params=None) -> _Cursor:
        self.executed.append((sql.strip(), params))
        if self.fail is not None:
            raise self.fail
        for key, rows in self.responses.items():
            if key in sql:
                return _Cursor(rows, rowcount=len(rows))
        return _Cursor([], rowcount=0)


def _use(monkeypatch, conn: FakeConn) -> None:
    monkeypatch.setattr(shots, "_dsn", lambda: "postgresql://test")
    monkeypatch.setattr(shots, "_connect", lambda _dsn: conn)


def test_dsn_from_parts(monkeypatch) -> None:
    monkeypatch.setenv("POSTGRES_HOST", "db")
    monkeypatch.setenv("POSTGRES_DB", "curling")
    monkeypatch.setenv("POSTGRES_USER", "u")
    monkeypatch.setenv("POSTGRES_PASSWORD", "p")
    dsn = build_postgres_dsn(load_store_config())
    assert dsn is not None
    assert "host=db" in dsn
    assert "dbname=curling" in dsn


def test_not_configured_without_env() -> None:
    assert build_postgres_dsn(load_store_config()) is None
    assert shots.lookup_shot(42) == (False, shots.ERR_NOT_CONFIGURED, None)
    assert shots.run_select("SELECT 1")[1] == shots.ERR_NOT_CONFIGURED


def test_lookup_shot_found(monkeypatch) -> None:
    conn = FakeConn(
        {
            "FROM shots s": [{"shot_id": 42, "player_name": "Anna"}],
            "FROM stone_positions": [{"color": "red", "x": "0.25", "y": None}, {"color": "yellow", "x": 0, "y": "-1.5"}],
        }
    )
    _use(monkeypatch, conn)
    ok, msg, rec = shots.lookup_shot(42)
    assert ok and msg == "ok"
    assert rec is not None
    assert rec.shot["player_name"] == "Anna"
    assert rec.stones == [{"color": "red", "x": 0.25, "y": None}, {"color": "yellow", "x": 0.0, "y": -1.5}]
    assert conn.executed[0][1] == (42,)


def test_lookup_shot_not_found(monkeypatch) -> None:
    _use(monkeypatch, FakeConn({}))
    assert shots.lookup_shot(9999) == (False, shots.ERR_NOT_FOUND, None)


def test_lookup_shot_query_failure_is_contained(monkeypatch) -> None:
    _use(monkeypatch, FakeConn({}, fail=RuntimeError("connection reset")))
    assert shots.lookup_shot(1) == (False, shots.ERR_QUERY_FAILED, None)


def test_run_select_is_read_only_and_capped(monkeypatch) -> None:
    conn = FakeConn({"FROM games": [{"id": i} for i in range(5)]})
    _use(monkeypatch, conn)
    ok, _, res = shots.run_select("SELECT id FROM games", max_rows=3)
    assert ok and res is not None
    assert [r["id"] for r in res.rows] == [0, 1, 2]
    assert res.truncated is True
    assert conn.executed[0][0] == "SET TRANSACTION READ ONLY"


def test_run_select_rejects_non_select(monkeypatch) -> None:
    conn = FakeConn({})
    _use(monkeypatch, conn)
    assert shots.run_select("DROP TABLE shots") == (False, shots.ERR_SELECT_ONLY, None)
    assert conn.executed == []
    assert shots.is_select_query("  with x as (select 1) select * from x")


def test_run_select_failure_carries_message(monkeypatch) -> None:
    _use(monkeypatch, FakeConn({}, fail=RuntimeError('relation "shotz" does not exist')))
    ok, err, res = shots.run_select("SELECT * FROM shotz")
    assert not ok and res is None
    assert err.startswith(shots.ERR_QUERY_FAILED + ":")
    assert "shotz" in err


@pytest.mark.asyncio
async def test_async_wrappers(monkeypatch) -> None:
    _use(monkeypatch, FakeConn({"UPDATE": [{}, {}]}))
    ok, _, n = await shots.run_statement_async("UPDATE shots SET team = %s", ["SWE"])
    assert ok and n == 2
