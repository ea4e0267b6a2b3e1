"""
In-memory conversation store.

Conversations live for the lifetime of the process, up to `max_sessions`;
past that the least recently used idle conversation is dropped. A turn claims
its conversation with `begin_turn` before any history is touched and gives it
back with `end_turn`, so only one turn (or confirmation) runs per session.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from curling_chat.chat.types import Message, ToolApproval, ToolDecision, ToolInvocationPart, user_message

logger = logging.getLogger(__name__)

DecisionResult = Literal["ok", "not_found", "not_pending"]

DEFAULT_MAX_SESSIONS = 1000


@dataclass
class Conversation:
    session_id: str
    messages: List[Message] = field(default_factory=list)
    busy: bool = False
    last_used: int = 0


class ConversationStore:
    def __init__(self, max_sessions: int = DEFAULT_MAX_SESSIONS) -> None:
        self._sessions: Dict[str, Conversation] = {}
        self._max_sessions = max(1, int(max_sessions))
        self._clock = itertools.count(1)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[Conversation]:
        return self._sessions.get(session_id)

    def is_busy(self, session_id: str) -> bool:
        conv = self._sessions.get(session_id)
        return bool(conv and conv.busy)

    def get_or_create(self, session_id: str) -> Conversation:
        conv = self._sessions.get(session_id)
        if conv is None:
            self._evict()
            conv = Conversation(session_id=session_id)
            self._sessions[session_id] = conv
        conv.last_used = next(self._clock)
        return conv

    def begin_turn(self, session_id: str) -> Optional[Conversation]:
        """
        Claim the conversation for one turn. Returns None if a turn already holds it.

        Check and claim happen without an await in between, so two requests
        for the same session cannot both get through.
        """
        conv = self.get_or_create(session_id)
        if conv.busy:
            return None
        conv.busy = True
        return conv

    def end_turn(self, conv: Conversation) -> None:
        conv.busy = False
        conv.last_used = next(self._clock)

    def messages(self, session_id: str) -> List[Message]:
        conv = self._sessions.get(session_id)
        return list(conv.messages) if conv else []

    def append_user_message(self, session_id: str, text: str) -> List[Message]:
        conv = self.get_or_create(session_id)
        conv.messages = conv.messages + [user_message(text)]
        return list(conv.messages)

    def replace(self, session_id: str, messages: Sequence[Message]) -> None:
        self.get_or_create(session_id).messages = list(messages)

    def clear(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def record_decision(
        self, session_id: str, tool_call_id: str, decision: ToolDecision, output: Any = None
    ) -> Tuple[DecisionResult, Optional[ToolInvocationPart]]:
        """
        Attach a human decision to a pending call.

        Only an `input-available` call with no earlier decision can be
        decided; anything else returns `not_pending` and leaves history as is.
        """
        conv = self._sessions.get(session_id)
        if conv is None:
            return "not_found", None
        for mi, msg in enumerate(conv.messages):
            for pi, part in enumerate(msg.parts):
                if not isinstance(part, ToolInvocationPart) or part.tool_call_id != tool_call_id:
                    continue
                if part.state != "input-available" or part.approval is not None:
                    return "not_pending", part
                decided = part.model_copy(update={"approval": ToolApproval(decision=decision, output=output)})
                parts = list(msg.parts)
                parts[pi] = decided
                updated = list(conv.messages)
                updated[mi] = msg.model_copy(update={"parts": parts})
                conv.messages = updated
                return "ok", decided
        return "not_found", None

    def _evict(self) -> None:
        while len(self._sessions) >= self._max_sessions:
            idle = [c for c in self._sessions.values() if not c.busy]
            if not idle:
                # Every conversation has a turn running; grow past the cap.
                return
            oldest = min(idle, key=lambda c: c.last_used)
            logger.info("Evicting idle conversation %s", oldest.session_id)
            self._sessions.pop(oldest.session_id, None)
