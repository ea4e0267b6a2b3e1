from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional, Tuple

ToolOutcome = Literal["ok", "empty", "failed", "error", "skipped", "pending"]


def _truncate(s: str, n: int) -> str:
    txt = (s or "").strip()
    if len(txt) <= n:
        return txt
    return txt[: max(0, n - 1)].rstrip() + "…"


def _jsonable(v: Any, *, _depth: int = 0, _max_depth: int = 6) -> Any:
    """
    Best-effort convert values to JSON-serializable objects.
    """
    if _depth >= _max_depth:
        return str(v)
    if v is None or isinstance(v, (str, int, float, bool)):
        return v
    if isinstance(v, datetime):
        return v.isoformat()
    if isinstance(v, dict):
        return {str(k): _jsonable(vv, _depth=_depth + 1, _max_depth=_max_depth) for k, vv in v.items()}
    if isinstance(v, (list, tuple, set)):
        return [_jsonable(x, _depth=_depth + 1, _max_depth=_max_depth) for x in list(v)]
    if hasattr(v, "model_dump"):
        return _jsonable(v.model_dump(mode="json"), _depth=_depth + 1, _max_depth=_max_depth)
    return str(v)


def compact_args_for_log(args: Dict[str, Any], *, max_keys: int = 6, max_value_chars: int = 80) -> Dict[str, Any]:
    """
    Keep log lines small while still showing what was called.
    """
    if not isinstance(args, dict):
        return {}
    out: Dict[str, Any] = {}
    for i, (k, v) in enumerate(args.items()):
        if i >= max_keys:
            break
        vv = _jsonable(v)
        if isinstance(vv, str):
            vv = _truncate(vv, max_value_chars)
        elif isinstance(vv, list):
            vv = f"[{len(vv)} items]"
        out[str(k)] = vv
    return out


def summarize_tool_result(
    *, tool: str, state: str, output: Any, error_text: Optional[str] = None
) -> Tuple[ToolOutcome, str]:
    """
    Return (outcome, summary) for logs and tool cards.
    """
    t = str(tool or "").strip()
    if state == "output-error":
        return "error", _truncate(f"{t}: error {str(error_text or '').strip() or 'unknown'}", 160)
    if state != "output-available":
        return "pending", _truncate(f"{t}: awaiting decision", 160)

    if isinstance(output, dict):
        if output.get("skipped"):
            return "skipped", _truncate(f"{t}: skipped by user", 160)
        if output.get("success") is False:
            return "failed", _truncate(f"{t}: failed {str(output.get('error') or '').strip()}", 160)

        if t == "queryDatabase":
            n = output.get("count")
            if n == 0:
                return "empty", f"{t}: empty (0 rows)"
            suffix = " (truncated)" if output.get("truncated") else ""
            return "ok", _truncate(f"{t}: ok ({n} rows){suffix}", 160)

        if t == "queryShotDetails":
            shot = output.get("shot") if isinstance(output.get("shot"), dict) else {}
            parts = [f"{t}: ok"]
            if shot.get("player_name"):
                parts.append(f"player={shot.get('player_name')}")
            if shot.get("shot_type"):
                parts.append(f"type={shot.get('shot_type')}")
            parts.append(f"stones={output.get('count') or 0}")
            return "ok", _truncate("; ".join(parts), 160)

        if t == "visualizeCurlingShot":
            viz = output.get("visualization") if isinstance(output.get("visualization"), dict) else {}
            stones = viz.get("stones") if isinstance(viz.get("stones"), list) else []
            return "ok", _truncate(f"{t}: shot {viz.get('shotId')} with {len(stones)} stones", 160)

        if t == "setShotId":
            return "ok", _truncate(f"{t}: shot {output.get('shotId')}", 160)

        if t == "executeStatement":
            return "ok", _truncate(f"{t}: ok ({output.get('rowCount')} rows affected)", 160)

    # Fallback
    return "ok", _truncate(f"{t}: ok", 160)
