"""
Projects tool results from the conversation into the curling house view.

The observer rescans every assistant message each time the message list
changes and handles each completed tool call at most once, tracked by call id
in a set that only grows for the life of the session.

Handled tools:
- visualizeCurlingShot: the visualization payload replaces the view.
- setShotId: the tracked shot id changes and the shot is looked up; a
  successful lookup replaces the view, a failed one leaves it as it was.

Every completed call is marked processed after the dispatch attempt, including
calls to other tools and outputs without a truthy `success`; those are no-ops.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Set

from curling_chat.chat.types import Message, ToolInvocationPart

logger = logging.getLogger(__name__)

ShotFetch = Callable[[int], Awaitable[Dict[str, Any]]]
ErrorSink = Callable[[str], None]


@dataclass(frozen=True)
class VisualizationState:
    stones: List[Dict[str, Any]] = field(default_factory=list)
    shot_info: Optional[Dict[str, Any]] = None
    shot: Optional[Dict[str, Any]] = None

    @classmethod
    def from_visualization(cls, viz: Dict[str, Any]) -> "VisualizationState":
        return cls(
            stones=list(viz.get("stones") or []),
            shot_info={
                "player": viz.get("player"),
                "team": viz.get("team"),
                "type": viz.get("shotType"),
                "shotId": viz.get("shotId"),
            },
        )

    @classmethod
    def from_lookup(cls, data: Dict[str, Any]) -> "VisualizationState":
        return cls(stones=list(data.get("stones") or []), shot=data.get("shot"))

    def summary(self) -> str:
        info = self.shot_info or {}
        shot = self.shot or {}
        who = info.get("player") or shot.get("player_name") or "?"
        team = info.get("team") or shot.get("shot_team") or "?"
        kind = info.get("type") or shot.get("shot_type") or "?"
        sid = info.get("shotId") or shot.get("shot_id") or "?"
        return f"shot {sid}: {who} ({team}) {kind}, {len(self.stones)} stones"


class ProcessedCallSet:
    """Completed call ids the observer has already seen. Never shrinks."""

    def __init__(self) -> None:
        self._ids: Set[str] = set()

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._ids))

    def add(self, call_id: str) -> None:
        self._ids.add(call_id)


class ClientResultObserver:
    def __init__(
        self,
        *,
        fetch_shot: ShotFetch,
        shot_id: int = 42,
        on_error: Optional[ErrorSink] = None,
    ) -> None:
        self._fetch_shot = fetch_shot
        self._on_error = on_error
        self._lock = asyncio.Lock()
        self.processed = ProcessedCallSet()
        self.state = VisualizationState()
        self.shot_id = shot_id

    async def load_shot(self, shot_id: int) -> bool:
        """Look up a shot and show it. Returns False (view unchanged) on failure."""
        try:
            data = await self._fetch_shot(shot_id)
        except Exception as e:
            logger.warning("Shot lookup %s failed: %s", shot_id, e)
            self._report(f"Error querying shot {shot_id}: {e}")
            return False
        if data.get("success") and data.get("shot") and data.get("stones") is not None:
            self.state = VisualizationState.from_lookup(data)
            return True
        self._report(f"Error: {data.get('error') or f'Shot {shot_id} not found'}")
        return False

    async def observe(self, messages: Sequence[Message]) -> int:
        """
        Handle every completed, not yet processed call in `messages`.

        Passes are serialized so two overlapping renders cannot handle the
        same call twice. Returns the number of calls that changed the view or
        the tracked shot id in this pass.
        """
        async with self._lock:
            handled = 0
            for msg in messages:
                if msg.role != "assistant":
                    continue
                for part in msg.parts:
                    if not isinstance(part, ToolInvocationPart) or part.state != "output-available":
                        continue
                    if part.tool_call_id in self.processed:
                        continue
                    if await self._dispatch(part):
                        handled += 1
                    self.processed.add(part.tool_call_id)
            return handled

    async def _dispatch(self, part: ToolInvocationPart) -> bool:
        result = part.output if isinstance(part.output, dict) else {}
        if not result.get("success"):
            return False

        if part.tool_name == "visualizeCurlingShot":
            viz = result.get("visualization")
            if not isinstance(viz, dict):
                return False
            self.state = VisualizationState.from_visualization(viz)
            logger.debug("View replaced from visualization %s", part.tool_call_id)
            return True

        if part.tool_name == "setShotId":
            if not result.get("updateShotId"):
                return False
            try:
                shot_id = int(result.get("shotId"))
            except (TypeError, ValueError):
                return False
            self.shot_id = shot_id
            # A failed lookup is reported once and not retried.
            await self.load_shot(shot_id)
            return True

        return False

    def _report(self, message: str) -> None:
        if self._on_error is not None:
            self._on_error(message)
