from __future__ import annotations

from curling_chat.chat.sanitize import sanitize_messages
from curling_chat.chat.types import Message, TextPart, ToolApproval, ToolInvocationPart, user_message


def _call(call_id: str, *, state: str = "input-available", output=None, approval=None) -> ToolInvocationPart:
    return ToolInvocationPart(
        tool_call_id=call_id, tool_name="queryShotDetails", state=state, input={"shotId": 1}, output=output, approval=approval
    )


def test_trailing_incomplete_calls_are_dropped() -> None:
    msgs = [
        user_message("show shot 1"),
        Message(role="assistant", parts=[TextPart(text="Looking it up"), _call("c1"), _call("c2", state="input-streaming")]),
    ]
    out = sanitize_messages(msgs)
    assert len(out) == 2
    assert [p.type for p in out[-1].parts] == ["text"]
    # input untouched
    assert len(msgs[-1].parts) == 3


def test_message_with_only_incomplete_calls_is_dropped_and_tail_rechecked() -> None:
    msgs = [
        user_message("q"),
        Message(role="assistant", parts=[TextPart(text="a"), _call("c1")]),
        Message(role="assistant", parts=[_call("c2")]),
    ]
    out = sanitize_messages(msgs)
    assert [m.role for m in out] == ["user", "assistant"]
    assert [p.type for p in out[-1].parts] == ["text"]


def test_sanitize_is_idempotent() -> None:
    msgs = [
        user_message("q"),
        Message(role="assistant", parts=[_call("c0", state="output-available", output={"success": True}), _call("c1")]),
        Message(role="assistant", parts=[_call("c2")]),
    ]
    once = sanitize_messages(msgs)
    twice = sanitize_messages(once)
    assert [m.model_dump() for m in once] == [m.model_dump() for m in twice]


def test_interior_incomplete_calls_are_kept() -> None:
    interior = Message(role="assistant", parts=[_call("c1")])
    msgs = [user_message("a"), interior, user_message("b")]
    out = sanitize_messages(msgs)
    assert len(out) == 3
    assert out[1].parts[0].tool_call_id == "c1"


def test_completed_and_decided_calls_are_kept() -> None:
    msgs = [
        Message(
            role="assistant",
            parts=[
                _call("done", state="output-available", output={"success": True}),
                _call("decided", approval=ToolApproval(decision="approve")),
            ],
        )
    ]
    out = sanitize_messages(msgs)
    assert [p.tool_call_id for p in out[0].parts] == ["done", "decided"]


def test_clean_history_is_returned_unchanged() -> None:
    msgs = [user_message("hi"), Message(role="assistant", parts=[TextPart(text="hello")])]
    out = sanitize_messages(msgs)
    assert out == msgs
    assert out is not msgs


def test_empty_history() -> None:
    assert sanitize_messages([]) == []
