"""
HTTP transport for the curling chat.

Chat turns are streamed as Server-Sent Events, one frame per stream event.
Conversations are kept in memory; only one turn runs per session at a time.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse

from curling_chat.chat.policy import load_chat_policy
from curling_chat.chat.runtime_streaming import ChatTurn
from curling_chat.chat.sessions import Conversation, ConversationStore
from curling_chat.chat.tools import build_tool_registry
from curling_chat.chat.types import ChatSendRequest, StreamEvent, ToolConfirmationRequest
from curling_chat.llm.client import provider_status
from curling_chat.llm.client_streaming import get_chat_model
from curling_chat.storage import shots

logger = logging.getLogger(__name__)

app = FastAPI(title="Curling analytics chat")

_store = ConversationStore(max_sessions=load_chat_policy().max_sessions)
_aborts: Dict[str, asyncio.Event] = {}

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def _format_sse_event(event: StreamEvent) -> str:
    """Format a stream event as one SSE frame."""
    data = event.model_dump(mode="json", exclude_none=True)
    return f"event: {event.type}\ndata: {json.dumps(data, default=str)}\n\n"


async def _turn_stream(conv: Conversation) -> AsyncIterator[str]:
    """Run one turn on a conversation already claimed with `begin_turn`."""
    session_id = conv.session_id
    abort = asyncio.Event()
    _aborts[session_id] = abort
    turn: Optional[ChatTurn] = None
    try:
        policy = load_chat_policy()
        registry = build_tool_registry(policy=policy)
        model, model_err = get_chat_model()
        turn = ChatTurn(
            model=model,
            model_error=model_err,
            registry=registry,
            messages=conv.messages,
            policy=policy,
            abort=abort,
        )
        async for event in turn.events():
            yield _format_sse_event(event)
    finally:
        if turn is not None:
            # Aborted and disconnected turns keep what was produced so far.
            _store.replace(session_id, turn.messages)
            logger.info(
                "Chat turn finished session=%s reason=%s steps=%d", session_id, turn.finish_reason, turn.steps
            )
        if _aborts.get(session_id) is abort:
            _aborts.pop(session_id, None)
        _store.end_turn(conv)


def _claim(session_id: str) -> Conversation:
    conv = _store.begin_turn(session_id)
    if conv is None:
        raise HTTPException(status_code=409, detail="A turn is already running for this session")
    return conv


def _stream_response(conv: Conversation) -> StreamingResponse:
    return StreamingResponse(_turn_stream(conv), media_type="text/event-stream", headers=_SSE_HEADERS)


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.get("/api/v1/llm/status")
def llm_status() -> Dict[str, Any]:
    configured, detail = provider_status()
    if configured:
        return {"configured": True, "provider": detail}
    return {"configured": False, "error": detail}


@app.post("/api/v1/chat/{session_id}/send")
async def chat_send(session_id: str, req: ChatSendRequest) -> StreamingResponse:
    """Append a user message and stream the assistant turn."""
    if not load_chat_policy().enabled:
        raise HTTPException(status_code=403, detail="Chat is disabled by policy")
    text = (req.message or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message is required")

    conv = _claim(session_id)
    _store.append_user_message(session_id, text)
    return _stream_response(conv)


@app.post("/api/v1/chat/{session_id}/confirm")
async def chat_confirm(session_id: str, req: ToolConfirmationRequest) -> StreamingResponse:
    """Record a human decision on a pending tool call and stream the continuation."""
    if not load_chat_policy().enabled:
        raise HTTPException(status_code=403, detail="Chat is disabled by policy")
    if session_id not in _store:
        raise HTTPException(status_code=404, detail="Tool call not found")

    conv = _claim(session_id)
    result, _part = _store.record_decision(session_id, req.tool_call_id, req.decision, req.output)
    if result != "ok":
        _store.end_turn(conv)
        if result == "not_found":
            raise HTTPException(status_code=404, detail="Tool call not found")
        raise HTTPException(status_code=409, detail="Tool call is not waiting for a decision")
    logger.info("Tool call %s %sd session=%s", req.tool_call_id, req.decision, session_id)
    return _stream_response(conv)


@app.post("/api/v1/chat/{session_id}/abort")
async def chat_abort(session_id: str) -> Dict[str, Any]:
    ev = _aborts.get(session_id)
    if ev is None:
        return {"ok": True, "aborted": False}
    ev.set()
    return {"ok": True, "aborted": True}


@app.get("/api/v1/chat/{session_id}/messages")
def chat_messages(session_id: str) -> Dict[str, Any]:
    msgs: List[Dict[str, Any]] = [m.model_dump(mode="json") for m in _store.messages(session_id)]
    return {"session_id": session_id, "messages": msgs}


@app.delete("/api/v1/chat/{session_id}/messages")
def chat_clear(session_id: str) -> Dict[str, Any]:
    if _store.is_busy(session_id):
        raise HTTPException(status_code=409, detail="A turn is already running for this session")
    _store.clear(session_id)
    return {"ok": True}


@app.get("/api/shot")
async def get_shot(shot_id: Optional[str] = Query(None, alias="id")) -> JSONResponse:
    try:
        sid = int(str(shot_id or "").strip())
    except ValueError:
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid shot ID"})

    ok, err, rec = await shots.lookup_shot_async(sid)
    if ok and rec is not None:
        return JSONResponse(content={"success": True, "shot": rec.shot, "stones": rec.stones})
    if err == shots.ERR_NOT_FOUND:
        return JSONResponse(status_code=404, content={"success": False, "error": f"Shot with ID {sid} not found"})
    if err == shots.ERR_NOT_CONFIGURED:
        return JSONResponse(status_code=500, content={"success": False, "error": "Database not configured"})
    logger.warning("Shot lookup failed for %s: %s", sid, err)
    return JSONResponse(status_code=500, content={"success": False, "error": "Failed to query shot"})


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting chat server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
