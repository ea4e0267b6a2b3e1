"""
Client chat session.

Owns everything one chat window holds: the message list, the processed-call
set, the curling house view and the tracked shot id. The session must be
opened before use and closed when done; closing drops all of that state.

HTTP goes through `requests`; blocking calls run in worker threads so the
event loop keeps processing stream events while a response is being read.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional

import requests

from curling_chat.chat.types import FinishReason, Message, StreamEvent, ToolDecision, ToolInvocationPart, user_message
from curling_chat.client.observer import ClientResultObserver, VisualizationState
from curling_chat.client.stream import MessageAccumulator, decode_sse

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:8080"
DEFAULT_SHOT_ID = 42

EventCallback = Callable[[StreamEvent], None]

_DONE = object()


class ChatClientError(Exception):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChatSession:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        session_id: Optional[str] = None,
        initial_shot_id: int = DEFAULT_SHOT_ID,
        timeout: float = 120.0,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("CURLING_CHAT_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.session_id = session_id or uuid.uuid4().hex
        self._initial_shot_id = initial_shot_id
        self._timeout = timeout
        self._http_override = http
        self._http: Optional[requests.Session] = None
        self._close_stream: Optional[Callable[[], None]] = None
        self._accumulator: Optional[MessageAccumulator] = None
        self._observer: Optional[ClientResultObserver] = None
        self.errors: List[str] = []
        self.last_finish_reason: Optional[FinishReason] = None

    # ----- lifecycle -----

    @property
    def is_open(self) -> bool:
        return self._http is not None

    async def open(self) -> None:
        if self.is_open:
            return
        self._http = self._http_override or requests.Session()
        self._accumulator = MessageAccumulator()
        self._observer = ClientResultObserver(
            fetch_shot=self.fetch_shot, shot_id=self._initial_shot_id, on_error=self.errors.append
        )
        await self._observer.load_shot(self._initial_shot_id)

    async def close(self) -> None:
        if self._close_stream is not None:
            self._close_stream()
            self._close_stream = None
        if self._http is not None and self._http_override is None:
            self._http.close()
        self._http = None
        self._accumulator = None
        self._observer = None
        self.errors = []
        self.last_finish_reason = None

    async def __aenter__(self) -> "ChatSession":
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ----- state -----

    @property
    def messages(self) -> List[Message]:
        return list(self._require_accumulator().messages)

    @property
    def visualization(self) -> VisualizationState:
        return self._require_observer().state

    @property
    def shot_id(self) -> int:
        return self._require_observer().shot_id

    @property
    def pending_confirmation(self) -> bool:
        """True while the latest assistant message has a call waiting for a decision."""
        return bool(self.pending_calls())

    def pending_calls(self) -> List[ToolInvocationPart]:
        for msg in reversed(self._require_accumulator().messages):
            if msg.role == "assistant":
                return [p for p in msg.tool_parts() if p.state == "input-available" and p.approval is None]
        return []

    # ----- actions -----

    async def send(self, text: str, *, on_event: Optional[EventCallback] = None) -> Optional[FinishReason]:
        if self.pending_confirmation:
            raise ChatClientError("a tool call is waiting for confirmation")
        acc = self._require_accumulator()
        acc.append(user_message(text))
        return await self._stream(f"/api/v1/chat/{self.session_id}/send", {"message": text}, on_event)

    async def confirm(
        self,
        tool_call_id: str,
        decision: ToolDecision,
        output: Any = None,
        *,
        on_event: Optional[EventCallback] = None,
    ) -> Optional[FinishReason]:
        self._require_accumulator()
        payload = {"tool_call_id": tool_call_id, "decision": decision, "output": output}
        return await self._stream(f"/api/v1/chat/{self.session_id}/confirm", payload, on_event)

    async def fetch_shot(self, shot_id: int) -> Dict[str, Any]:
        http = self._require_http()
        url = f"{self.base_url}/api/shot"

        def _get() -> Dict[str, Any]:
            resp = http.get(url, params={"id": shot_id}, timeout=self._timeout)
            try:
                data = resp.json()
            except ValueError:
                return {"success": False, "error": f"HTTP {resp.status_code}"}
            return data if isinstance(data, dict) else {"success": False, "error": "unexpected response"}

        return await asyncio.to_thread(_get)

    async def abort(self) -> bool:
        """
        Ask the server to stop the running turn and stop reading its stream.

        Returns True when the server had a turn to abort.
        """
        http = self._require_http()
        url = f"{self.base_url}/api/v1/chat/{self.session_id}/abort"
        if self._close_stream is not None:
            self._close_stream()

        def _post() -> bool:
            resp = http.post(url, timeout=self._timeout)
            try:
                data = resp.json()
            except ValueError:
                return False
            return bool(isinstance(data, dict) and data.get("aborted"))

        return await asyncio.to_thread(_post)

    # ----- internals -----

    async def _stream(
        self, path: str, payload: Dict[str, Any], on_event: Optional[EventCallback]
    ) -> Optional[FinishReason]:
        """
        POST `payload` and apply the streamed events until the server finishes.

        The response is read on a daemon thread. If the caller is cancelled
        (or the stream is closed by `abort`) the response is closed from the
        loop side and the thread is left to wind down on its own, so the
        server sees the disconnect and stops the turn.
        """
        http = self._require_http()
        acc = self._require_accumulator()
        observer = self._require_observer()
        loop = asyncio.get_running_loop()
        queue: "asyncio.Queue[object]" = asyncio.Queue()
        url = f"{self.base_url}{path}"
        stopped = threading.Event()
        active: Dict[str, Any] = {}

        def _put(item: object) -> None:
            if stopped.is_set():
                return
            loop.call_soon_threadsafe(queue.put_nowait, item)

        def _pump() -> None:
            try:
                with http.post(url, json=payload, stream=True, timeout=self._timeout) as resp:
                    active["resp"] = resp
                    if stopped.is_set():
                        return
                    if resp.status_code >= 400:
                        _put(ChatClientError(f"HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code))
                        return
                    for ev in decode_sse(resp.iter_lines(decode_unicode=True)):
                        if stopped.is_set():
                            break
                        _put(ev)
            except requests.RequestException as e:
                _put(ChatClientError(f"request failed: {e}"))
            except Exception as e:
                if not stopped.is_set():
                    logger.exception("Chat stream reader failed")
                    _put(ChatClientError(f"stream failed: {e}"))
            finally:
                _put(_DONE)

        def _close() -> None:
            stopped.set()
            resp = active.get("resp")
            if resp is not None:
                resp.close()
            loop.call_soon_threadsafe(queue.put_nowait, _DONE)

        threading.Thread(target=_pump, name="chat-stream", daemon=True).start()
        self._close_stream = _close
        finish: Optional[FinishReason] = None
        failure: Optional[ChatClientError] = None
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                if isinstance(item, ChatClientError):
                    failure = item
                    continue
                ev: StreamEvent = item  # type: ignore[assignment]
                if on_event is not None:
                    on_event(ev)
                if ev.type == "finish":
                    finish = ev.finish_reason
                messages = acc.apply(ev)
                await observer.observe(messages)
        except BaseException:
            _close()
            raise
        finally:
            if self._close_stream is _close:
                self._close_stream = None

        if failure is not None:
            raise failure
        if stopped.is_set() and finish is None:
            finish = "aborted"
        self.last_finish_reason = finish
        return finish

    def _require_http(self) -> requests.Session:
        if self._http is None:
            raise ChatClientError("session is not open")
        return self._http

    def _require_accumulator(self) -> MessageAccumulator:
        if self._accumulator is None:
            raise ChatClientError("session is not open")
        return self._accumulator

    def _require_observer(self) -> ClientResultObserver:
        if self._observer is None:
            raise ChatClientError("session is not open")
        return self._observer
