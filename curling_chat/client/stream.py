"""
Client side of the chat stream.

`decode_sse` turns `text/event-stream` lines into `StreamEvent`s and
`MessageAccumulator` folds those events into the message list the UI renders.
Every applied event produces a new list, so observers can compare references
to detect a change.
"""

from __future__ import annotations

import json
import logging
from typing import Iterable, Iterator, List, Optional, Sequence

from pydantic import ValidationError

from curling_chat.chat.types import Message, StreamEvent, TextPart, ToolInvocationPart

logger = logging.getLogger(__name__)


def _parse_frame(data_lines: List[str]) -> Optional[StreamEvent]:
    if not data_lines:
        return None
    raw = "\n".join(data_lines)
    try:
        return StreamEvent.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Dropping malformed stream frame: %s", str(e)[:200])
        return None


def decode_sse(lines: Iterable[str]) -> Iterator[StreamEvent]:
    """
    Decode SSE lines (without trailing newlines) into events.

    The `event:` field is informational; the event type travels in the JSON
    payload. Comment lines (`:`) are keep-alives and are skipped.
    """
    data: List[str] = []
    for line in lines:
        if line is None:
            continue
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        line = line.rstrip("\r")
        if not line:
            ev = _parse_frame(data)
            data = []
            if ev is not None:
                yield ev
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            data.append(line[5:].lstrip(" "))
    ev = _parse_frame(data)
    if ev is not None:
        yield ev


class MessageAccumulator:
    """
    Applies stream events to a message list.

    Events may target any message id, not only the newest: the results of
    calls resolved at the start of a turn belong to earlier assistant messages.
    """

    def __init__(self, messages: Optional[Sequence[Message]] = None) -> None:
        self.messages: List[Message] = list(messages or [])

    def append(self, message: Message) -> List[Message]:
        self.messages = self.messages + [message]
        return self.messages

    def apply(self, event: StreamEvent) -> List[Message]:
        if event.type == "finish":
            return self.messages

        idx = self._index(event.message_id)
        if idx is None:
            self.messages = self.messages + [Message(id=event.message_id, role="assistant")]
            idx = len(self.messages) - 1
        msg = self.messages[idx]
        parts = list(msg.parts)

        if event.type == "start":
            return self.messages
        if event.type == "text-delta":
            if parts and isinstance(parts[-1], TextPart):
                parts[-1] = TextPart(text=parts[-1].text + (event.delta or ""))
            else:
                parts.append(TextPart(text=event.delta or ""))
        elif event.type == "error":
            parts.append(TextPart(text=event.error_text or "error"))
        elif event.type == "tool-call":
            parts.append(
                ToolInvocationPart(
                    tool_call_id=event.tool_call_id or "",
                    tool_name=event.tool_name or "",
                    state=event.state or "input-available",
                    input=dict(event.input or {}),
                )
            )
        elif event.type == "tool-result":
            pi = next(
                (
                    i
                    for i, p in enumerate(parts)
                    if isinstance(p, ToolInvocationPart) and p.tool_call_id == event.tool_call_id
                ),
                None,
            )
            if pi is None:
                parts.append(
                    ToolInvocationPart(
                        tool_call_id=event.tool_call_id or "",
                        tool_name=event.tool_name or "",
                        state=event.state or "output-available",
                        output=event.output,
                        error_text=event.error_text,
                    )
                )
            else:
                parts[pi] = parts[pi].model_copy(
                    update={"state": event.state or "output-available", "output": event.output, "error_text": event.error_text}
                )

        updated = list(self.messages)
        updated[idx] = msg.model_copy(update={"parts": parts})
        self.messages = updated
        return self.messages

    def _index(self, message_id: str) -> Optional[int]:
        for i in range(len(self.messages) - 1, -1, -1):
            if self.messages[i].id == message_id:
                return i
        return None
