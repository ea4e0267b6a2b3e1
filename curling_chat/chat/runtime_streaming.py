"""
Streaming chat turn.

One `ChatTurn` drives a single round of the conversation:

1. History cleanup: trailing tool calls that were never completed are dropped.
2. Pending calls: calls with a recorded human decision (or an automatic tool
   that never ran) are resolved, one `tool-result` event each.
3. Model loop: up to `ChatPolicy.max_steps` steps. Each step streams text
   deltas as they arrive, announces the tool calls the model asked for, runs
   the executable ones concurrently and writes each result as it settles.
   All calls of a step settle before the next step starts.

A step that asks for a confirmation-required tool ends the turn with
`awaiting-confirmation`; the call stays `input-available` until a human
decides. Model failures become an `error` event followed by `finish`; a turn
never ends without a `finish` event unless the consumer went away.

Events flow through a single-producer `EventChannel`, so the model loop waits
for the transport to take each event before producing the next one.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional, Sequence

from curling_chat.chat.channel import EventChannel
from curling_chat.chat.policy import ChatPolicy
from curling_chat.chat.processor import error_part, process_tool_calls, run_tool_call
from curling_chat.chat.prompts import SYSTEM_PROMPT
from curling_chat.chat.registry import ToolRegistry, UnknownTool
from curling_chat.chat.sanitize import sanitize_messages
from curling_chat.chat.types import (
    FinishReason,
    Message,
    Part,
    StreamEvent,
    TextPart,
    ToolInvocationPart,
    new_id,
    utcnow,
)
from curling_chat.llm.client_streaming import ChatModel

logger = logging.getLogger(__name__)


class ChatTurn:
    def __init__(
        self,
        *,
        model: Optional[ChatModel],
        registry: ToolRegistry,
        messages: Sequence[Message],
        policy: Optional[ChatPolicy] = None,
        system_prompt: str = SYSTEM_PROMPT,
        abort: Optional[asyncio.Event] = None,
        model_error: Optional[str] = None,
    ) -> None:
        self._model = model
        self._model_error = model_error
        self._registry = registry
        self._history: List[Message] = list(messages)
        self._policy = policy or ChatPolicy()
        self._system = system_prompt
        self._abort = abort

        self.message_id = new_id("msg")
        self._parts: List[Part] = []
        self._processed: List[Message] = list(self._history)

        # Filled in as the turn runs
        self.messages: List[Message] = list(self._history)
        self.finish_reason: Optional[FinishReason] = None
        self.steps = 0

    async def events(self) -> AsyncIterator[StreamEvent]:
        """
        Run the turn and yield its events in order.

        Stopping iteration early (consumer disconnect) cancels the model loop
        and any tool still running. Events already yielded stay valid.
        """
        channel = EventChannel()
        producer = asyncio.create_task(self._produce(channel))
        try:
            async for event in channel:
                yield event
        finally:
            if not producer.done():
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)

    # ----- producer -----

    async def _produce(self, channel: EventChannel) -> None:
        work = asyncio.create_task(self._run(channel))
        waiters = {work}
        abort_wait: Optional[asyncio.Task] = None
        if self._abort is not None:
            abort_wait = asyncio.create_task(self._abort.wait())
            waiters.add(abort_wait)
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            if work.done():
                reason: FinishReason = work.result()
            else:
                logger.info("Chat turn %s aborted after %d step(s)", self.message_id, self.steps)
                work.cancel()
                await asyncio.gather(work, return_exceptions=True)
                reason = "aborted"
            self.finish_reason = reason
            await channel.write(
                StreamEvent(type="finish", message_id=self.message_id, finish_reason=reason, steps=self.steps)
            )
        finally:
            leftover = [t for t in (work, abort_wait) if t is not None and not t.done()]
            for t in leftover:
                t.cancel()
            if leftover:
                await asyncio.gather(*leftover, return_exceptions=True)
            self._finalize()
            channel.close()

    async def _run(self, channel: EventChannel) -> FinishReason:
        try:
            self._processed = await process_tool_calls(
                messages=sanitize_messages(self._history),
                registry=self._registry,
                writer=channel,
                policy=self._policy,
            )
            await channel.write(StreamEvent(type="start", message_id=self.message_id, created_at=utcnow()))

            if self._model is None:
                err = self._model_error or "provider_not_configured"
                logger.warning("Chat turn %s without a model: %s", self.message_id, err)
                await self._fail(channel, f"LLM not available ({err}). Check LLM_PROVIDER and credentials.")
                return "error"

            for step in range(1, self._policy.max_steps + 1):
                self.steps = step
                reason = await self._step(channel)
                if reason is not None:
                    return reason
            logger.info("Chat turn %s reached step limit (%d)", self.message_id, self._policy.max_steps)
            return "step-limit"
        except Exception as e:
            logger.exception("Chat turn %s failed", self.message_id)
            await self._fail(channel, f"{type(e).__name__}: {str(e)[:200]}")
            return "error"

    async def _step(self, channel: EventChannel) -> Optional[FinishReason]:
        """Run one model step. Returns a finish reason, or None to keep going."""
        calls: List[ToolInvocationPart] = []
        rejected = 0
        stream = self._model.stream_step(  # type: ignore[union-attr]
            system=self._system,
            messages=self._conversation(),
            tools=self._registry.definitions(),
        )
        async for delta in stream:
            if delta.kind == "text":
                if not delta.text:
                    continue
                self._append_text(delta.text)
                await channel.write(StreamEvent(type="text-delta", message_id=self.message_id, delta=delta.text))
            elif delta.kind == "tool-call":
                part = ToolInvocationPart(
                    tool_call_id=delta.tool_call_id or new_id("call"),
                    tool_name=delta.tool_name,
                    input=dict(delta.args or {}),
                )
                self._parts.append(part)
                await channel.write(
                    StreamEvent(
                        type="tool-call",
                        message_id=self.message_id,
                        tool_call_id=part.tool_call_id,
                        tool_name=part.tool_name,
                        input=part.input,
                        state=part.state,
                    )
                )
                if delta.error:
                    failed = error_part(part, "invalid_input", delta.error)
                    self._replace_part(failed)
                    await channel.write(StreamEvent.tool_result(self.message_id, failed))
                    rejected += 1
                    continue
                calls.append(part)
            else:
                await self._fail(channel, f"Model error: {delta.error or 'unknown'}")
                return "error"

        if not calls:
            # Calls with unusable arguments go back to the model as errors.
            return None if rejected else "stop"

        runnable = [c for c in calls if self._runs_automatically(c.tool_name)]
        waiting = [c for c in calls if not self._runs_automatically(c.tool_name)]
        if runnable:
            await self._run_calls(channel, runnable)
        if waiting:
            logger.info(
                "Chat turn %s waiting for confirmation: %s",
                self.message_id,
                ", ".join(f"{c.tool_name}({c.tool_call_id})" for c in waiting),
            )
            return "awaiting-confirmation"
        return None

    async def _run_calls(self, channel: EventChannel, calls: Sequence[ToolInvocationPart]) -> None:
        tasks: Dict[asyncio.Task, ToolInvocationPart] = {
            asyncio.create_task(run_tool_call(c, self._registry, self._policy)): c for c in calls
        }
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for t in done:
                    resolved = t.result()
                    self._replace_part(resolved)
                    await channel.write(StreamEvent.tool_result(self.message_id, resolved))
        finally:
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    # ----- helpers -----

    def _runs_automatically(self, name: str) -> bool:
        tool = self._registry.get(name)
        if isinstance(tool, UnknownTool):
            # Resolves immediately to an output-error part.
            return True
        return tool.execute is not None and not tool.requires_confirmation

    def _conversation(self) -> List[Message]:
        out = list(self._processed)
        if self._parts:
            out.append(self._assistant_message())
        return out

    def _assistant_message(self) -> Message:
        return Message(id=self.message_id, role="assistant", parts=list(self._parts))

    def _append_text(self, text: str) -> None:
        if self._parts and isinstance(self._parts[-1], TextPart):
            self._parts[-1] = TextPart(text=self._parts[-1].text + text)
        else:
            self._parts.append(TextPart(text=text))

    def _replace_part(self, part: ToolInvocationPart) -> None:
        for i, p in enumerate(self._parts):
            if isinstance(p, ToolInvocationPart) and p.tool_call_id == part.tool_call_id:
                self._parts[i] = part
                return
        self._parts.append(part)

    async def _fail(self, channel: EventChannel, message: str) -> None:
        await channel.write(StreamEvent(type="error", message_id=self.message_id, error_text=message))

    def _finalize(self) -> None:
        out = list(self._processed)
        if self._parts:
            out.append(self._assistant_message())
        self.messages = out
