from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from curling_chat.chat.policy import ChatPolicy
from curling_chat.chat.registry import ToolDefinition, ToolRegistry
from curling_chat.storage import shots
from curling_chat.storage.shots import ShotRecord, SelectResult

logger = logging.getLogger(__name__)

ShotLookupFn = Callable[[int], Awaitable[Tuple[bool, str, Optional[ShotRecord]]]]
SelectFn = Callable[..., Awaitable[Tuple[bool, str, Optional[SelectResult]]]]
StatementFn = Callable[..., Awaitable[Tuple[bool, str, Optional[int]]]]

CURLING_CONTEXT = """CURLING CONTEXT:
- Curling is played with 8 stones per team (red vs yellow) over 10 ends
- Each player throws 2 stones per end (16 total stones per end)
- Teams alternate throwing, with the team having 'hammer' (last stone advantage) going last
- Shots are scored 0-100% based on execution quality
- Stone positions are tracked with x,y coordinates relative to the button (center of target)

DATA QUALITY NOTES:
- Some games have final_score_red/final_score_yellow as 'NaN' (string, not NULL) - filter these out
- Score of 999 represents a Win/Loss game (999=Win, 0=Loss)
- Some ends have color_hammer = 'error_color' - these are parsing errors, filter out if needed
- Turn column has two formats: 'Clockwise'/'Counter-clockwise' OR 'In'/'Out' (depends on handedness)
- Join pattern: events -> games -> ends -> shots -> stone_positions (use proper JOINs)

DATABASE SCHEMA:
  events(id, name, start_date, end_date)
  games(id, event_id, session, name, sheet, type, start_date, start_time, team_red, team_yellow,
        final_score_red, final_score_yellow)
  ends(id, game_id, number, direction, color_hammer, score_red, score_yellow, time_left_red, time_left_yellow)
  shots(id, end_id, number, color, team, player_name, type, turn, percent_score)
  stone_positions(id, shot_id, color, x, y)"""


class _ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class QueryDatabaseInput(_ToolInput):
    query: str = Field(description="The SELECT SQL query to execute. Only SELECT statements are allowed.")
    params: Optional[List[Any]] = Field(
        default=None, description="Optional positional parameters (%s placeholders) for the SQL query"
    )


class QueryShotDetailsInput(_ToolInput):
    shot_id: int = Field(alias="shotId", description="The ID of the shot to query")


class StonePosition(_ToolInput):
    color: Literal["red", "yellow"] = Field(description="The color of the stone")
    x: float = Field(description="X coordinate relative to button (center)")
    y: float = Field(description="Y coordinate relative to button (center)")


class VisualizeCurlingShotInput(_ToolInput):
    shot_id: int = Field(alias="shotId", description="The ID of the shot being visualized")
    player: str = Field(description="The name of the player taking the shot")
    team: str = Field(description="The team name (3-letter code)")
    shot_type: str = Field(alias="shotType", description="The type of shot (e.g., Draw, Take-out, etc.)")
    stones: List[StonePosition] = Field(description="Array of stone positions after this shot")


class SetShotIdInput(_ToolInput):
    shot_id: int = Field(alias="shotId", description="The shot ID to display in the UI")
    reason: Optional[str] = Field(default=None, description="Optional reason for updating the shot ID")


class ExecuteStatementInput(_ToolInput):
    statement: str = Field(description="A data-modifying SQL statement (INSERT/UPDATE/DELETE)")
    params: Optional[List[Any]] = Field(default=None, description="Optional positional parameters (%s placeholders)")


def _store_error(err: str) -> str:
    if err == shots.ERR_NOT_CONFIGURED:
        return "Database not configured. Please set POSTGRES_DSN."
    if err == shots.ERR_SELECT_ONLY:
        return "Only SELECT queries are allowed with this tool. Use executeStatement for other operations."
    if err.startswith(shots.ERR_QUERY_FAILED):
        return err.split(":", 1)[1] if ":" in err else "Database query failed"
    return err


def build_tool_registry(
    *,
    policy: Optional[ChatPolicy] = None,
    lookup: ShotLookupFn = shots.lookup_shot_async,
    select: SelectFn = shots.run_select_async,
    statement: StatementFn = shots.run_statement_async,
) -> ToolRegistry:
    """
    Build the curling tool set bound to a query interface.

    Collaborator failures are returned as `{success: False, error}` payloads so
    nothing raised by the store crosses into the processor or the model loop.
    """
    pol = policy or ChatPolicy()

    async def query_database(inp: QueryDatabaseInput) -> dict:
        ok, err, res = await select(inp.query, inp.params, max_rows=pol.max_rows)
        if not ok or res is None:
            return {"success": False, "error": _store_error(err)}
        return {"success": True, "rows": res.rows, "count": len(res.rows), "truncated": res.truncated}

    async def query_shot_details(inp: QueryShotDetailsInput) -> dict:
        ok, err, rec = await lookup(inp.shot_id)
        if not ok or rec is None:
            if err == shots.ERR_NOT_FOUND:
                return {"success": False, "error": f"Shot with ID {inp.shot_id} not found"}
            return {"success": False, "error": _store_error(err)}
        return {"success": True, "shot": rec.shot, "stones": rec.stones, "count": len(rec.stones)}

    async def visualize_curling_shot(inp: VisualizeCurlingShotInput) -> dict:
        stones = [s.model_dump() for s in inp.stones]
        return {
            "success": True,
            "visualization": {
                "shotId": inp.shot_id,
                "player": inp.player,
                "team": inp.team,
                "shotType": inp.shot_type,
                "stones": stones,
            },
            "message": (
                f"Visualized shot {inp.shot_id} by {inp.player} ({inp.team}): "
                f"{inp.shot_type} with {len(stones)} stones in play."
            ),
        }

    async def set_shot_id(inp: SetShotIdInput) -> dict:
        return {
            "success": True,
            "shotId": inp.shot_id,
            "message": inp.reason or f"Updated display to show shot {inp.shot_id}",
            "updateShotId": True,
        }

    async def execute_statement(inp: ExecuteStatementInput) -> dict:
        ok, err, rowcount = await statement(inp.statement, inp.params)
        if not ok:
            return {"success": False, "error": _store_error(err)}
        return {"success": True, "rowCount": rowcount}

    tools: Sequence[ToolDefinition] = [
        ToolDefinition(
            name="queryDatabase",
            description=(
                "Execute SELECT queries against the curling analytics database. This contains comprehensive "
                "curling match data including shot-by-shot analysis, stone positions, and performance metrics.\n\n"
                + CURLING_CONTEXT
            ),
            input_model=QueryDatabaseInput,
            execute=query_database,
        ),
        ToolDefinition(
            name="queryShotDetails",
            description=(
                "Query detailed information about a specific shot including game, player, team, and stone "
                "positions. This tool automatically performs the necessary joins to get comprehensive shot data."
            ),
            input_model=QueryShotDetailsInput,
            execute=query_shot_details,
        ),
        ToolDefinition(
            name="visualizeCurlingShot",
            description=(
                "Visualize a curling shot with stone positions on the curling house. This renders the stones "
                "next to the chat. Use this after querying stone positions from the database to show the visual "
                "state of the game."
            ),
            input_model=VisualizeCurlingShotInput,
            execute=visualize_curling_shot,
        ),
        ToolDefinition(
            name="setShotId",
            description=(
                "Update the current shot ID in the UI. Use this when the user asks about a specific shot by ID "
                "number, or when you want to show a particular shot in the curling house visualization. This will "
                "automatically load and display the shot data in the curling house."
            ),
            input_model=SetShotIdInput,
            execute=set_shot_id,
        ),
        ToolDefinition(
            name="executeStatement",
            description=(
                "Run a data-modifying SQL statement against the curling database. A human must approve the "
                "statement before it runs; explain what it changes before calling it."
            ),
            input_model=ExecuteStatementInput,
            requires_confirmation=True,
        ),
    ]

    registry = ToolRegistry.from_tools(tools, executions={"executeStatement": execute_statement})
    if pol.confirmation_tools:
        registry = registry.with_confirmation(pol.confirmation_tools)
    return registry
