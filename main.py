#!/usr/bin/env python3
"""
Curling Analytics Chat
Ask questions about a curling shot database; tool results drive the curling house view.
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import Optional

from dateutil import parser as date_parser

# Configure logging
logging.basicConfig(
    level=logging.WARNING, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep curling_chat imports lazy (inside functions) so `serve` does not load
# the client stack and `chat` does not load FastAPI.
#


def format_timestamp_for_display(timestamp_str: Optional[str]) -> str:
    """Format ISO timestamp to compact display format (HH:MM:SSZ)."""
    if not timestamp_str:
        return "N/A"
    try:
        dt = date_parser.isoparse(timestamp_str)
        return dt.strftime("%H:%M:%SZ")
    except (ValueError, TypeError, AttributeError):
        return str(timestamp_str)[:19]


def _print_event(event) -> None:
    if event.type == "start":
        ts = format_timestamp_for_display(event.created_at.isoformat() if event.created_at else None)
        print(f"\n[{ts}] ", end="", flush=True)
    elif event.type == "text-delta":
        print(event.delta or "", end="", flush=True)
    elif event.type == "tool-call":
        print(f"\n   -> {event.tool_name} {event.input or {}}", flush=True)
    elif event.type == "tool-result":
        mark = "ok" if event.state == "output-available" else "failed"
        print(f"   {mark} {event.tool_name} ({event.tool_call_id})", flush=True)
    elif event.type == "error":
        print(f"\nError: {event.error_text}", flush=True)
    elif event.type == "finish":
        print(f"\n   [finish: {event.finish_reason}, steps={event.steps}]", flush=True)


async def _send_stoppable(session, text: str) -> None:
    """Send one message; Ctrl-C while the answer streams stops the turn."""
    loop = asyncio.get_running_loop()
    stopping: list = []

    def _stop() -> None:
        if not stopping:
            print("\n   [stopping]", flush=True)
            stopping.append(asyncio.ensure_future(session.abort()))

    handled = False
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, _stop)
        handled = True
    try:
        await session.send(text, on_event=_print_event)
        if stopping:
            await stopping[0]
    finally:
        if handled:
            loop.remove_signal_handler(signal.SIGINT)


async def _ask_confirmations(session) -> None:
    while session.pending_confirmation:
        for part in session.pending_calls():
            print(f"\nConfirm: {part.tool_name} wants to run with {part.input}")
            answer = (await asyncio.to_thread(input, "   Approve? [y/N] ")).strip().lower()
            decision = "approve" if answer in ("y", "yes") else "reject"
            await session.confirm(part.tool_call_id, decision, on_event=_print_event)
            break


async def run_chat(base_url: Optional[str], shot_id: int) -> None:
    """Interactive terminal chat against a running server."""
    from curling_chat.client.session import ChatSession

    async with ChatSession(base_url, initial_shot_id=shot_id) as session:
        print(f"Connected to {session.base_url} (session {session.session_id})")
        print(f"View: {session.visualization.summary()}")
        for err in session.errors:
            print(f"Error: {err}")
        print("Type a question, or 'quit' to exit. Ctrl-C stops a running answer.\n")

        while True:
            try:
                text = (await asyncio.to_thread(input, "you> ")).strip()
            except EOFError:
                break
            if not text:
                continue
            if text.lower() in ("quit", "exit"):
                break

            seen_errors = len(session.errors)
            await _send_stoppable(session, text)
            await _ask_confirmations(session)

            for err in session.errors[seen_errors:]:
                print(f"Error: {err}")
            print(f"View: {session.visualization.summary()}\n")


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Curling analytics chat",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the API server
  python main.py serve --port 8080

  # Chat from the terminal against a running server
  python main.py chat --url http://127.0.0.1:8080 --shot 42
        """,
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the chat API server")
    serve.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, default=8080, help="Listen port (default: 8080)")

    chat = sub.add_parser("chat", help="Interactive terminal chat")
    chat.add_argument("--url", default=None, help="Server base URL (default: $CURLING_CHAT_URL or http://127.0.0.1:8080)")
    chat.add_argument("--shot", type=int, default=42, help="Shot to show at start (default: 42)")

    args = parser.parse_args()

    try:
        if args.command == "serve":
            from curling_chat.api.server import run as run_server

            run_server(host=args.host, port=args.port)
            return

        if args.command == "chat":
            asyncio.run(run_chat(args.url, args.shot))
            return

        parser.print_help()

    except KeyboardInterrupt:
        print("\nBye.")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
