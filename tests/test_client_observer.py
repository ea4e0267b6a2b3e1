"""Tests for projecting tool results into the curling house view."""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from curling_chat.chat.types import Message, TextPart, ToolInvocationPart, user_message
from curling_chat.client.observer import ClientResultObserver, VisualizationState

SHOTS: Dict[int, Dict[str, Any]] = {
    42: {
        "success": True,
        "shot": {"shot_id": 42, "player_name": "Anna", "shot_team": "SWE", "shot_type": "Draw"},
        "stones": [{"color": "red", "x": 0.0, "y": 0.1}],
    },
    150: {
        "success": True,
        "shot": {"shot_id": 150, "player_name": "Bo", "shot_team": "CAN", "shot_type": "Take-out"},
        "stones": [{"color": "yellow", "x": 1.0, "y": -1.0}, {"color": "red", "x": 0.5, "y": 0.5}],
    },
}


class FakeShots:
    def __init__(self) -> None:
        self.calls: List[int] = []

    async def __call__(self, shot_id: int) -> Dict[str, Any]:
        self.calls.append(shot_id)
        return SHOTS.get(shot_id) or {"success": False, "error": f"Shot with ID {shot_id} not found"}


def _set_shot(call_id: str, shot_id: int, *, success: bool = True) -> ToolInvocationPart:
    return ToolInvocationPart(
        tool_call_id=call_id,
        tool_name="setShotId",
        state="output-available",
        input={"shotId": shot_id},
        output={"success": success, "shotId": shot_id, "updateShotId": True},
    )


def _viz(call_id: str, shot_id: int, stones: List[Dict[str, Any]]) -> ToolInvocationPart:
    return ToolInvocationPart(
        tool_call_id=call_id,
        tool_name="visualizeCurlingShot",
        state="output-available",
        output={
            "success": True,
            "visualization": {"shotId": shot_id, "player": "P", "team": "T", "shotType": "Draw", "stones": stones},
        },
    )


def _assistant(*parts) -> Message:
    return Message(role="assistant", parts=list(parts))


@pytest.mark.asyncio
async def test_each_call_is_handled_once_across_rescans() -> None:
    fetch = FakeShots()
    obs = ClientResultObserver(fetch_shot=fetch)
    msgs = [user_message("shot 150"), _assistant(_set_shot("c1", 150))]

    assert await obs.observe(msgs) == 1
    assert await obs.observe(msgs) == 0
    assert await obs.observe(list(msgs)) == 0
    assert fetch.calls == [150]
    assert obs.shot_id == 150
    assert "c1" in obs.processed


@pytest.mark.asyncio
async def test_visualize_replaces_view_wholesale() -> None:
    obs = ClientResultObserver(fetch_shot=FakeShots())
    await obs.load_shot(42)
    assert obs.state.shot is not None

    stones = [{"color": "yellow", "x": 0.3, "y": 0.3}]
    await obs.observe([_assistant(_viz("v1", 7, stones))])
    assert obs.state == VisualizationState.from_visualization(
        {"shotId": 7, "player": "P", "team": "T", "shotType": "Draw", "stones": stones}
    )
    assert obs.state.shot is None


@pytest.mark.asyncio
async def test_view_reflects_most_recent_accepted_output() -> None:
    """Three shot ids in a row: the view ends on the last one, each looked up once."""
    fetch = FakeShots()
    obs = ClientResultObserver(fetch_shot=fetch)
    msgs = [user_message("42")]
    msgs = msgs + [_assistant(_set_shot("a", 42))]
    await obs.observe(msgs)
    msgs = msgs + [user_message("150"), _assistant(_set_shot("b", 150))]
    await obs.observe(msgs)
    msgs = msgs + [user_message("42 again"), _assistant(TextPart(text="ok"), _set_shot("c", 42))]
    await obs.observe(msgs)

    assert fetch.calls == [42, 150, 42]
    assert obs.shot_id == 42
    assert obs.state.shot["player_name"] == "Anna"
    assert len(obs.processed) == 3


@pytest.mark.asyncio
async def test_failed_lookup_leaves_view_unchanged_and_is_not_retried() -> None:
    errors: List[str] = []
    fetch = FakeShots()
    obs = ClientResultObserver(fetch_shot=fetch, on_error=errors.append)
    await obs.load_shot(42)
    before = obs.state

    msgs = [_assistant(_set_shot("x", 9999))]
    await obs.observe(msgs)
    await obs.observe(msgs)

    assert obs.state is before
    assert obs.shot_id == 9999
    assert fetch.calls == [42, 9999]
    assert errors == ["Error: Shot with ID 9999 not found"]


@pytest.mark.asyncio
async def test_lookup_exception_is_reported_not_raised() -> None:
    errors: List[str] = []

    async def broken(_shot_id: int):
        raise ConnectionError("server down")

    obs = ClientResultObserver(fetch_shot=broken, on_error=errors.append)
    ok = await obs.load_shot(1)
    assert ok is False
    assert obs.state == VisualizationState()
    assert errors and "server down" in errors[0]


@pytest.mark.asyncio
async def test_unsuccessful_and_unrelated_outputs_are_seen_but_change_nothing() -> None:
    fetch = FakeShots()
    obs = ClientResultObserver(fetch_shot=fetch)
    other = ToolInvocationPart(
        tool_call_id="q", tool_name="queryDatabase", state="output-available", output={"success": True, "rows": []}
    )
    pending = ToolInvocationPart(tool_call_id="p", tool_name="setShotId", state="input-available", input={"shotId": 5})
    msgs = [_assistant(_set_shot("f", 150, success=False), other, pending)]

    assert await obs.observe(msgs) == 0
    assert fetch.calls == []
    assert obs.state == VisualizationState()
    assert set(obs.processed) == {"f", "q"}
    assert "p" not in obs.processed

    # Once the pending call completes it is dispatched; the others are not revisited.
    done = pending.model_copy(
        update={"state": "output-available", "output": {"success": True, "shotId": 150, "updateShotId": True}}
    )
    assert await obs.observe([_assistant(_set_shot("f", 150, success=False), other, done)]) == 1
    assert fetch.calls == [150]
    assert set(obs.processed) == {"f", "p", "q"}


@pytest.mark.asyncio
async def test_shot_42_lookup_then_visualize() -> None:
    """setShotId, queryShotDetails and visualizeCurlingShot in one answer."""
    fetch = FakeShots()
    obs = ClientResultObserver(fetch_shot=fetch, shot_id=1)
    details = ToolInvocationPart(
        tool_call_id="c_q",
        tool_name="queryShotDetails",
        state="output-available",
        input={"shotId": 42},
        output={"success": True, "shot": SHOTS[42]["shot"], "stones": SHOTS[42]["stones"], "count": 1},
    )
    stones = [{"color": "red", "x": 0.0, "y": 0.1}, {"color": "yellow", "x": -0.4, "y": 0.9}]
    msgs = [
        user_message("Show me shot 42"),
        _assistant(_set_shot("c_set", 42), details, _viz("c_viz", 42, stones), TextPart(text="Here is shot 42.")),
    ]

    await obs.observe(msgs)
    await obs.observe(msgs)

    assert fetch.calls == [42]
    assert obs.shot_id == 42
    assert obs.state.stones == stones
    assert obs.state.shot_info["shotId"] == 42
    assert set(obs.processed) == {"c_set", "c_q", "c_viz"}
    assert len(obs.processed) == 3


@pytest.mark.asyncio
async def test_user_messages_are_not_scanned() -> None:
    fetch = FakeShots()
    obs = ClientResultObserver(fetch_shot=fetch)
    odd = Message(role="user", parts=[_set_shot("u", 150)])
    assert await obs.observe([odd]) == 0
    assert fetch.calls == []


def test_summary_mentions_shot_and_stones() -> None:
    st = VisualizationState.from_lookup(SHOTS[150])
    s = st.summary()
    assert "150" in s
    assert "Bo" in s
    assert "2 stones" in s
