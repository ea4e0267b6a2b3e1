"""
Streaming, tool-calling model step.

One call to `stream_step` is one model step: the model sees the system prompt,
the conversation and the tool set, and streams text deltas followed by the
tool calls it wants made. Tool execution is not done here; the orchestrator
runs the calls and feeds results back on the next step.

Text is yielded as soon as the provider produces it. Tool-call argument chunks
are accumulated (`AIMessageChunk` addition) and yielded once complete.
Provider failures mid-stream are yielded as an `error` delta, never raised;
cancellation propagates.

Usage:
    model, err = get_chat_model()
    async for delta in model.stream_step(system=..., messages=..., tools=...):
        if delta.kind == "text":
            print(delta.text, end="", flush=True)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Protocol, Sequence, Tuple

from curling_chat.chat.registry import ToolDefinition
from curling_chat.chat.types import Message, TextPart, ToolInvocationPart, new_id
from curling_chat.llm.client import LLMConfig, _env_bool, _load_config, classify_error, get_llm_instance

logger = logging.getLogger(__name__)

MOCK_REPLY = "LLM_MOCK enabled: no external call was made."


@dataclass
class ModelDelta:
    """Single item streamed from a model step."""

    kind: Literal["text", "tool-call", "error"]
    text: str = ""
    tool_call_id: str = ""
    tool_name: str = ""
    args: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


class ChatModel(Protocol):
    def stream_step(
        self, *, system: str, messages: Sequence[Message], tools: Sequence[ToolDefinition]
    ) -> AsyncIterator[ModelDelta]: ...


def _tool_result_content(part: ToolInvocationPart) -> str:
    payload = part.output if part.state == "output-available" else {"error": part.error_text or "tool failed"}
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except Exception:
        return str(payload)


def to_langchain_messages(system: str, messages: Sequence[Message]) -> List[Any]:
    """
    Convert the conversation into LangChain messages.

    Assistant messages are split into AIMessage(tool_calls) + ToolMessage runs,
    in part order. Calls without a terminal result are left out because
    providers reject a tool call that has no matching result.
    """
    from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

    out: List[Any] = [SystemMessage(content=system)]
    for msg in messages:
        if msg.role == "user":
            out.append(HumanMessage(content=msg.text()))
            continue
        if msg.role == "system":
            out.append(SystemMessage(content=msg.text()))
            continue

        text: List[str] = []
        calls: List[ToolInvocationPart] = []

        def _flush() -> None:
            if not text and not calls:
                return
            out.append(
                AIMessage(
                    content="".join(text),
                    tool_calls=[{"id": c.tool_call_id, "name": c.tool_name, "args": c.input or {}} for c in calls],
                )
            )
            for c in calls:
                out.append(ToolMessage(content=_tool_result_content(c), tool_call_id=c.tool_call_id))
            text.clear()
            calls.clear()

        for part in msg.parts:
            if isinstance(part, TextPart):
                if calls:
                    _flush()
                text.append(part.text)
            elif isinstance(part, ToolInvocationPart) and part.is_terminal:
                calls.append(part)
        _flush()
    return out


def _chunk_text(chunk: Any) -> str:
    content = getattr(chunk, "content", None)
    if isinstance(content, str):
        return content
    out = ""
    if isinstance(content, list):
        # Anthropic returns a list of content blocks
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                out += str(block.get("text") or "")
            elif isinstance(block, str):
                out += block
    return out


class LangChainChatModel:
    def __init__(self, llm: Any, *, model_name: str = "") -> None:
        self._llm = llm
        self._model_name = model_name

    async def stream_step(
        self, *, system: str, messages: Sequence[Message], tools: Sequence[ToolDefinition]
    ) -> AsyncIterator[ModelDelta]:
        from langchain_core.messages import AIMessageChunk

        bound = self._llm.bind_tools([t.as_openai_tool() for t in tools]) if tools else self._llm
        lc_messages = to_langchain_messages(system, messages)

        acc: Optional[Any] = None
        try:
            async for chunk in bound.astream(lc_messages):
                if not isinstance(chunk, AIMessageChunk):
                    continue
                acc = chunk if acc is None else acc + chunk
                text = _chunk_text(chunk)
                if text:
                    yield ModelDelta(kind="text", text=text)
        except Exception as e:
            err = classify_error(e, model=self._model_name)
            logger.warning("Model stream failed: %s (%s)", err, str(e)[:200])
            yield ModelDelta(kind="error", error=err)
            return

        if acc is None:
            return
        for tc in acc.tool_calls or []:
            name = str(tc.get("name") or "").strip()
            if not name:
                continue
            yield ModelDelta(
                kind="tool-call",
                tool_call_id=str(tc.get("id") or new_id("call")),
                tool_name=name,
                args=dict(tc.get("args") or {}),
            )
        for bad in getattr(acc, "invalid_tool_calls", None) or []:
            yield ModelDelta(
                kind="tool-call",
                tool_call_id=str(bad.get("id") or new_id("call")),
                tool_name=str(bad.get("name") or ""),
                error=f"invalid tool arguments: {str(bad.get('error') or bad.get('args') or '')[:200]}",
            )


class MockChatModel:
    """Deterministic stub for LLM_MOCK=1: answers with fixed text and never calls tools."""

    async def stream_step(
        self, *, system: str, messages: Sequence[Message], tools: Sequence[ToolDefinition]
    ) -> AsyncIterator[ModelDelta]:
        yield ModelDelta(kind="text", text=MOCK_REPLY)


def get_chat_model(cfg: Optional[LLMConfig] = None) -> Tuple[Optional[ChatModel], Optional[str]]:
    """Returns (model, err_code). Exactly one is None."""
    if _env_bool("LLM_MOCK", False):
        return MockChatModel(), None
    c = cfg or _load_config()
    llm, err = get_llm_instance(c)
    if err:
        return None, err
    return LangChainChatModel(llm, model_name=c.model), None
