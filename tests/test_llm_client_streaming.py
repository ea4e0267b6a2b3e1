"""
Unit tests for the streaming tool-calling model step.

A fake LangChain chat model yields `AIMessageChunk`s so argument accumulation,
text streaming and error mapping are checked without a provider.
"""

from __future__ import annotations

from typing import Any, List

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage, ToolMessage

from curling_chat.chat.tools import build_tool_registry
from curling_chat.chat.types import Message, TextPart, ToolInvocationPart, user_message
from curling_chat.llm.client_streaming import MOCK_REPLY, LangChainChatModel, MockChatModel, to_langchain_messages


class FakeLLM:
    def __init__(self, chunks: List[Any], *, fail: Exception = None) -> None:  # type: ignore[assignment]
        self.chunks = chunks
        self.fail = fail
        self.bound_tools: List[Any] = []
        self.received: List[Any] = []

    def bind_tools(self, tools):
        self.bound_tools = list(tools)
        return self

    async def astream(self, messages):
        self.received = list(messages)
        for c in self.chunks:
            yield c
        if self.fail is not None:
            raise self.fail


async def _deltas(model, messages=None, tools=None):
    return [
        d
        async for d in model.stream_step(
            system="sys", messages=messages or [user_message("hi")], tools=tools if tools is not None else []
        )
    ]


@pytest.mark.asyncio
async def test_text_then_accumulated_tool_call() -> None:
    llm = FakeLLM(
        [
            AIMessageChunk(content="Setting "),
            AIMessageChunk(content="shot"),
            AIMessageChunk(
                content="", tool_call_chunks=[{"name": "setShotId", "args": '{"shotId": 4', "id": "c1", "index": 0}]
            ),
            AIMessageChunk(content="", tool_call_chunks=[{"name": None, "args": "2}", "id": None, "index": 0}]),
        ]
    )
    reg = build_tool_registry()
    out = await _deltas(LangChainChatModel(llm, model_name="m"), tools=reg.definitions())

    assert [d.kind for d in out] == ["text", "text", "tool-call"]
    assert "".join(d.text for d in out if d.kind == "text") == "Setting shot"
    call = out[-1]
    assert call.tool_call_id == "c1"
    assert call.tool_name == "setShotId"
    assert call.args == {"shotId": 42}
    assert [t["function"]["name"] for t in llm.bound_tools] == reg.names()
    assert isinstance(llm.received[0], SystemMessage)


@pytest.mark.asyncio
async def test_anthropic_style_content_blocks() -> None:
    llm = FakeLLM([AIMessageChunk(content=[{"type": "text", "text": "Hello", "index": 0}])])
    out = await _deltas(LangChainChatModel(llm))
    assert [(d.kind, d.text) for d in out] == [("text", "Hello")]


@pytest.mark.asyncio
async def test_stream_failure_becomes_error_delta() -> None:
    llm = FakeLLM([AIMessageChunk(content="par")], fail=RuntimeError("429 rate limit exceeded"))
    out = await _deltas(LangChainChatModel(llm, model_name="m"))
    assert [d.kind for d in out] == ["text", "error"]
    assert out[-1].error == "rate_limited"


@pytest.mark.asyncio
async def test_mock_model_answers_without_tools() -> None:
    out = await _deltas(MockChatModel())
    assert [(d.kind, d.text) for d in out] == [("text", MOCK_REPLY)]


def test_history_conversion_pairs_calls_with_results() -> None:
    done = ToolInvocationPart(
        tool_call_id="c1", tool_name="setShotId", state="output-available", input={"shotId": 42}, output={"success": True}
    )
    failed = ToolInvocationPart(
        tool_call_id="c2", tool_name="queryShotDetails", state="output-error", input={"shotId": 42}, error_text="boom"
    )
    pending = ToolInvocationPart(tool_call_id="c3", tool_name="executeStatement", input={"statement": "x"})
    history = [
        user_message("shot 42"),
        Message(role="assistant", parts=[TextPart(text="On it."), done, failed, pending, TextPart(text="Here it is.")]),
    ]
    out = to_langchain_messages("system prompt", history)

    assert isinstance(out[0], SystemMessage)
    assert isinstance(out[1], HumanMessage)
    ai = out[2]
    assert isinstance(ai, AIMessage)
    assert ai.content == "On it."
    assert [tc["id"] for tc in ai.tool_calls] == ["c1", "c2"]
    assert isinstance(out[3], ToolMessage) and out[3].tool_call_id == "c1"
    assert isinstance(out[4], ToolMessage) and "boom" in out[4].content
    assert isinstance(out[5], AIMessage) and out[5].content == "Here it is."
    assert len(out) == 6
