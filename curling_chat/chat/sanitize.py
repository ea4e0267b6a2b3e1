from __future__ import annotations

from typing import List, Sequence

from curling_chat.chat.types import Message, ToolInvocationPart


def _is_incomplete_tool_part(part: object) -> bool:
    return isinstance(part, ToolInvocationPart) and part.is_incomplete


def sanitize_messages(messages: Sequence[Message]) -> List[Message]:
    """
    Return a history that is safe to resend to the model.

    Tool calls left incomplete at the very end of the history (the model asked
    for a call but no output or human decision was ever recorded, e.g. the
    session ended mid-call) are dropped. A message left without parts is
    dropped with them, and the check repeats on the new tail, so running this
    twice gives the same result as running it once.

    Incomplete calls that are followed by anything else are left as they are.
    The input list and its messages are not modified.
    """
    out = list(messages)
    while out:
        last = out[-1]
        parts = list(last.parts)
        trimmed = len(parts)
        while trimmed and _is_incomplete_tool_part(parts[trimmed - 1]):
            trimmed -= 1
        if trimmed == len(parts):
            break
        if trimmed == 0:
            out.pop()
            continue
        out[-1] = last.model_copy(update={"parts": parts[:trimmed]})
        break
    return out
