"""
SSE helpers for tests.

Build chat stream bodies in the backend's wire format so tests can feed them
through respx, an httpx MockTransport or a local socket server.
"""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from culi.reasoning_models import StreamEvent


def sse_event(event: str, data: dict[str, Any] | None = None) -> str:
    """One SSE block in the backend's ``{"event": ..., "data": ...}`` shape."""
    return f"data: {json.dumps({'event': event, 'data': data or {}}, ensure_ascii=False)}\n\n"


def sse_body(*events: tuple[str, dict[str, Any]]) -> str:
    """Concatenate ``(event, data)`` pairs into a stream body."""
    return "".join(sse_event(event, data) for event, data in events)


def make_event(event: str, **data: Any) -> StreamEvent:
    """Build a StreamEvent directly, bypassing the wire format."""
    return StreamEvent(event=event, data=data)


# A typical successful turn: intent, plan, two steps, search, answer, done
TYPICAL_TURN: list[tuple[str, dict[str, Any]]] = [
    ("node_start", {"node": "classify_intent", "timestamp": "2024-03-15T10:30:00Z"}),
    ("intent", {"intent": "revenue_report"}),
    ("node_end", {"node": "classify_intent"}),
    ("node_start", {"node": "create_plan"}),
    ("plan", {"plan": {"steps": [{"action": "fetch_orders"}, {"action": "sum_revenue"}]}}),
    ("node_end", {"node": "create_plan"}),
    ("step", {
        "step": {"status": "completed", "action": "fetch_orders", "output": "156 orders"},
        "current_step": 1,
        "total_steps": 2,
    }),
    ("step", {
        "step": {"status": "completed", "action": "sum_revenue", "output": "45,230,000 VND"},
        "current_step": 2,
        "total_steps": 2,
    }),
    ("web_search", {"results_count": 4}),
    ("answer", {"content": "Doanh thu tháng 3"}),
    ("done", {"answer": "Doanh thu tháng 3/2024 là 45,230,000 VNĐ.", "conversation_id": 42}),
]


@asynccontextmanager
async def stalled_sse_server(*events: tuple[str, dict[str, Any]]) -> AsyncIterator[str]:
    """
    Serve ``events`` over a real socket, then hold the connection open.

    Unlike a MockTransport body, a read pending on this server is interrupted
    when the client closes the response, so cross-task cancellation can be
    exercised. Yields the API root URL of the server.
    """
    release = asyncio.Event()

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await reader.readuntil(b"\r\n\r\n")
        writer.write(
            b"HTTP/1.1 200 OK\r\n"
            b"Content-Type: text/event-stream\r\n"
            b"Connection: close\r\n\r\n",
        )
        writer.write(sse_body(*events).encode())
        await writer.drain()
        await release.wait()
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        yield f"http://127.0.0.1:{port}/api/v1"
    finally:
        release.set()
        server.close()
        await server.wait_closed()
