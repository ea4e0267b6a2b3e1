from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

MessageRole = Literal["user", "assistant", "system"]
ToolInvocationState = Literal["input-streaming", "input-available", "output-available", "output-error"]
ToolDecision = Literal["approve", "reject"]
StreamEventType = Literal["start", "text-delta", "tool-call", "tool-result", "error", "finish"]
FinishReason = Literal["stop", "step-limit", "awaiting-confirmation", "aborted", "error"]

TERMINAL_STATES = ("output-available", "output-error")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolApproval(BaseModel):
    """Human decision recorded on a confirmation-required call."""

    decision: ToolDecision
    output: Any = None


class ToolInvocationPart(BaseModel):
    type: Literal["tool"] = "tool"
    tool_call_id: str
    tool_name: str
    state: ToolInvocationState = "input-available"
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    error_text: Optional[str] = None
    approval: Optional[ToolApproval] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_incomplete(self) -> bool:
        # A recorded decision means the call is resolvable, not abandoned.
        if self.state == "input-streaming":
            return True
        return self.state == "input-available" and self.output is None and self.approval is None


Part = Annotated[Union[TextPart, ToolInvocationPart], Field(discriminator="type")]


class MessageMetadata(BaseModel):
    created_at: datetime = Field(default_factory=utcnow)


class Message(BaseModel):
    id: str = Field(default_factory=lambda: new_id("msg"))
    role: MessageRole
    parts: List[Part] = Field(default_factory=list)
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)

    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def tool_parts(self) -> List[ToolInvocationPart]:
        return [p for p in self.parts if isinstance(p, ToolInvocationPart)]


def user_message(text: str) -> Message:
    return Message(role="user", parts=[TextPart(text=text)])


class StreamEvent(BaseModel):
    """Single event on the outgoing stream. Every event names the message it belongs to."""

    type: StreamEventType
    message_id: str
    delta: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    input: Optional[Dict[str, Any]] = None
    state: Optional[ToolInvocationState] = None
    output: Any = None
    error_text: Optional[str] = None
    finish_reason: Optional[FinishReason] = None
    steps: Optional[int] = None
    created_at: Optional[datetime] = None

    @classmethod
    def tool_result(cls, message_id: str, part: ToolInvocationPart) -> "StreamEvent":
        return cls(
            type="tool-result",
            message_id=message_id,
            tool_call_id=part.tool_call_id,
            tool_name=part.tool_name,
            state=part.state,
            output=part.output,
            error_text=part.error_text,
        )


class ChatSendRequest(BaseModel):
    message: str


class ToolConfirmationRequest(BaseModel):
    tool_call_id: str
    decision: ToolDecision
    output: Any = None
