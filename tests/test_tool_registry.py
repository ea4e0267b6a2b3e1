from __future__ import annotations

import pytest
from pydantic import BaseModel, Field

from curling_chat.chat.registry import ToolDefinition, ToolRegistry, UnknownTool


class _ShotInput(BaseModel):
    shot_id: int = Field(alias="shotId")


async def _noop(_inp):
    return {"success": True}


def _registry() -> ToolRegistry:
    return ToolRegistry.from_tools(
        [
            ToolDefinition(name="lookup", description="Look up a shot", input_model=_ShotInput, execute=_noop),
            ToolDefinition(name="delete", description="Delete", input_model=_ShotInput, requires_confirmation=True),
        ],
        executions={"delete": _noop},
    )


def test_get_unknown_tool_returns_typed_outcome() -> None:
    reg = _registry()
    t = reg.get("nope")
    assert isinstance(t, UnknownTool)
    assert t.error == "unknown tool: nope"
    assert isinstance(reg.get("lookup"), ToolDefinition)


def test_confirmation_tool_cannot_declare_execute() -> None:
    with pytest.raises(ValueError):
        ToolDefinition(name="x", description="", input_model=_ShotInput, requires_confirmation=True, execute=_noop)


def test_duplicate_names_rejected() -> None:
    t = ToolDefinition(name="lookup", description="", input_model=_ShotInput, execute=_noop)
    with pytest.raises(ValueError):
        ToolRegistry.from_tools([t, t])


def test_execution_only_for_confirmation_tools() -> None:
    t = ToolDefinition(name="lookup", description="", input_model=_ShotInput, execute=_noop)
    with pytest.raises(ValueError):
        ToolRegistry.from_tools([t], executions={"lookup": _noop})


def test_validate_input_accepts_alias_and_reports_errors() -> None:
    reg = _registry()
    model, err = reg.validate_input("lookup", {"shotId": 42})
    assert err is None
    assert model.shot_id == 42  # type: ignore[union-attr]

    model, err = reg.validate_input("lookup", {"shotId": "not-a-number"})
    assert model is None
    assert err is not None and err.startswith("invalid input for lookup")

    model, err = reg.validate_input("ghost", {})
    assert model is None
    assert err == "unknown tool: ghost"


def test_input_schema_uses_aliases() -> None:
    reg = _registry()
    tool = reg.get("lookup")
    assert isinstance(tool, ToolDefinition)
    schema = tool.as_openai_tool()
    assert schema["type"] == "function"
    assert schema["function"]["name"] == "lookup"
    assert "shotId" in schema["function"]["parameters"]["properties"]


def test_with_confirmation_moves_execute_to_executions() -> None:
    reg = _registry().with_confirmation({"lookup"})
    t = reg.get("lookup")
    assert isinstance(t, ToolDefinition)
    assert t.requires_confirmation is True
    assert t.execute is None
    assert reg.execution_for("lookup") is _noop
    assert reg.requires_confirmation("delete") is True


def test_registry_container_protocol() -> None:
    reg = _registry()
    assert "lookup" in reg
    assert len(reg) == 2
    assert reg.names() == ["lookup", "delete"]
    assert [t.name for t in reg] == ["lookup", "delete"]
