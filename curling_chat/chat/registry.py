"""
Tool catalog.

Tools are looked up by name through a closed table. Unknown names resolve to an
`UnknownTool` outcome instead of raising, so callers can turn them into an
`output-error` part.

A tool either executes automatically (`execute` is set) or requires a human
decision first (`requires_confirmation`). Confirmation-required tools keep
their approved behavior in the registry's `executions` table.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Type, Union

from pydantic import BaseModel, ValidationError

ToolExecute = Callable[[Any], Awaitable[Any]]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_model: Type[BaseModel]
    requires_confirmation: bool = False
    execute: Optional[ToolExecute] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("tool name is required")
        if self.requires_confirmation and self.execute is not None:
            raise ValueError(f"tool {self.name} requires confirmation and must not declare execute")

    @property
    def input_schema(self) -> Dict[str, Any]:
        return self.input_model.model_json_schema(by_alias=True)

    def as_openai_tool(self) -> Dict[str, Any]:
        """Function-tool shape accepted by LangChain `bind_tools`."""
        schema = dict(self.input_schema)
        schema.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": schema,
            },
        }


@dataclass(frozen=True)
class UnknownTool:
    name: str

    @property
    def error(self) -> str:
        return f"unknown tool: {self.name}"


ToolLookup = Union[ToolDefinition, UnknownTool]


def _validation_message(e: ValidationError) -> str:
    parts = []
    for err in e.errors()[:5]:
        loc = ".".join(str(x) for x in err.get("loc") or ())
        parts.append(f"{loc or 'input'}: {err.get('msg')}")
    return "; ".join(parts) or "invalid input"


@dataclass(frozen=True)
class ToolRegistry:
    tools: Dict[str, ToolDefinition]
    executions: Dict[str, ToolExecute] = field(default_factory=dict)

    @classmethod
    def from_tools(
        cls, tools: Iterable[ToolDefinition], executions: Optional[Dict[str, ToolExecute]] = None
    ) -> "ToolRegistry":
        table: Dict[str, ToolDefinition] = {}
        for t in tools:
            if t.name in table:
                raise ValueError(f"duplicate tool name: {t.name}")
            table[t.name] = t
        execs = dict(executions or {})
        for name in execs:
            if name not in table or not table[name].requires_confirmation:
                raise ValueError(f"execution registered for non-confirmation tool: {name}")
        return cls(tools=table, executions=execs)

    def __contains__(self, name: object) -> bool:
        return name in self.tools

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self.tools.values())

    def __len__(self) -> int:
        return len(self.tools)

    def names(self) -> List[str]:
        return list(self.tools.keys())

    def definitions(self) -> List[ToolDefinition]:
        return list(self.tools.values())

    def get(self, name: str) -> ToolLookup:
        t = self.tools.get((name or "").strip())
        return t if t is not None else UnknownTool(name=name)

    def requires_confirmation(self, name: str) -> bool:
        t = self.tools.get(name)
        return bool(t and t.requires_confirmation)

    def execution_for(self, name: str) -> Optional[ToolExecute]:
        return self.executions.get(name)

    def validate_input(self, name: str, raw: Any) -> Tuple[Optional[BaseModel], Optional[str]]:
        """Returns (model, err). Exactly one is None."""
        t = self.get(name)
        if isinstance(t, UnknownTool):
            return None, t.error
        try:
            return t.input_model.model_validate(raw if isinstance(raw, dict) else {}), None
        except ValidationError as e:
            return None, f"invalid input for {name}: {_validation_message(e)}"

    def with_confirmation(self, names: Set[str]) -> "ToolRegistry":
        """
        Copy of this registry where the named tools wait for a human decision.
        Their automatic `execute` moves into the executions table.
        """
        tools: Dict[str, ToolDefinition] = {}
        execs = dict(self.executions)
        for name, t in self.tools.items():
            if name in names and not t.requires_confirmation:
                if t.execute is not None:
                    execs[name] = t.execute
                t = dataclasses.replace(t, requires_confirmation=True, execute=None)
            tools[name] = t
        return ToolRegistry(tools=tools, executions=execs)
