"""
Tool call resolution.

`run_tool_call` takes one tool invocation to a terminal state. Failures are
contained per call: an unknown tool, invalid input, a timeout or an exception
raised by `execute` all become an `output-error` part, never an exception for
the caller. Cancellation is not caught.

`process_tool_calls` walks a sanitized history before the model runs, resolves
every call that can be resolved (automatic tools and confirmation-required
tools with a recorded human decision) and writes one `tool-result` event per
resolved call. Confirmation-required calls with no decision stay pending.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from curling_chat.chat.channel import StreamWriter
from curling_chat.chat.policy import ChatPolicy
from curling_chat.chat.registry import ToolExecute, ToolRegistry, UnknownTool
from curling_chat.chat.tool_summaries import compact_args_for_log, summarize_tool_result
from curling_chat.chat.types import Message, StreamEvent, ToolInvocationPart

logger = logging.getLogger(__name__)

SKIPPED_OUTPUT: Dict[str, Any] = {"skipped": True}


def _error_payload(code: str, message: str) -> Dict[str, Any]:
    return {"success": False, "error": message, "code": code}


def error_part(part: ToolInvocationPart, code: str, message: str) -> ToolInvocationPart:
    return part.model_copy(update={"state": "output-error", "output": _error_payload(code, message), "error_text": message})


def complete_part(part: ToolInvocationPart, output: Any) -> ToolInvocationPart:
    return part.model_copy(update={"state": "output-available", "output": output, "error_text": None})


async def _execute(
    fn: ToolExecute,
    part: ToolInvocationPart,
    registry: ToolRegistry,
    policy: ChatPolicy,
    *,
    log: logging.Logger,
) -> ToolInvocationPart:
    inp, err = registry.validate_input(part.tool_name, part.input)
    if err or inp is None:
        log.warning("Tool %s rejected input: %s", part.tool_name, err)
        return error_part(part, "invalid_input", err or "invalid input")

    log.info("Tool call: %s args=%s id=%s", part.tool_name, compact_args_for_log(part.input), part.tool_call_id)
    try:
        output = await asyncio.wait_for(fn(inp), timeout=policy.tool_timeout_seconds)
    except asyncio.TimeoutError:
        log.warning("Tool %s timed out after %ss", part.tool_name, policy.tool_timeout_seconds)
        return error_part(part, "timeout", f"{part.tool_name} timed out after {policy.tool_timeout_seconds}s")
    except Exception as e:
        log.exception("Tool %s raised unhandled exception", part.tool_name)
        return error_part(part, "execution_failed", f"{type(e).__name__}: {str(e)[:200]}")
    return complete_part(part, output)


async def run_tool_call(
    part: ToolInvocationPart,
    registry: ToolRegistry,
    policy: Optional[ChatPolicy] = None,
    *,
    caller_logger: Optional[logging.Logger] = None,
) -> ToolInvocationPart:
    """
    Resolve a single `input-available` call.

    Returns the part unchanged when it is waiting for a human decision.
    """
    pol = policy or ChatPolicy()
    log = caller_logger or logger
    if part.state != "input-available":
        return part

    tool = registry.get(part.tool_name)
    if isinstance(tool, UnknownTool):
        log.warning("Tool call for unknown tool %s id=%s", part.tool_name, part.tool_call_id)
        resolved = error_part(part, "unknown_tool", tool.error)
    elif tool.requires_confirmation:
        approval = part.approval
        if approval is None:
            return part
        if approval.decision == "reject":
            log.info("Tool %s id=%s rejected by user", part.tool_name, part.tool_call_id)
            resolved = complete_part(part, dict(SKIPPED_OUTPUT))
        else:
            fn = registry.execution_for(tool.name)
            if fn is not None:
                resolved = await _execute(fn, part, registry, pol, log=log)
            elif approval.output is not None:
                resolved = complete_part(part, approval.output)
            else:
                resolved = error_part(part, "no_execution", f"no execution registered for {tool.name}")
    elif tool.execute is not None:
        resolved = await _execute(tool.execute, part, registry, pol, log=log)
    elif part.approval is not None and part.approval.output is not None:
        # Resolved outside the server (client-side tool).
        resolved = complete_part(part, part.approval.output)
    else:
        return part

    outcome, summary = summarize_tool_result(
        tool=resolved.tool_name, state=resolved.state, output=resolved.output, error_text=resolved.error_text
    )
    log.info("Tool result: %s outcome=%s id=%s", summary, outcome, resolved.tool_call_id)
    return resolved


async def process_tool_calls(
    *,
    messages: Sequence[Message],
    registry: ToolRegistry,
    writer: StreamWriter,
    policy: Optional[ChatPolicy] = None,
) -> List[Message]:
    """
    Resolve pending tool calls left in the history.

    Returns a new message list; messages with no resolved call are passed
    through as-is. One `tool-result` event is written per resolved call before
    this returns.
    """
    out: List[Message] = []
    for msg in messages:
        changed = False
        new_parts = []
        for part in msg.parts:
            if isinstance(part, ToolInvocationPart) and part.state == "input-available":
                resolved = await run_tool_call(part, registry, policy)
                if resolved is not part:
                    changed = True
                    await writer.write(StreamEvent.tool_result(msg.id, resolved))
                new_parts.append(resolved)
            else:
                new_parts.append(part)
        out.append(msg.model_copy(update={"parts": new_parts}) if changed else msg)
    return out
