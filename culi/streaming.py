"""
Streaming transport for chat turns.

``ChatStream`` opens one Server-Sent Events (SSE) connection per outgoing
message and delivers parsed ``StreamEvent`` objects in arrival order as an
async iterator. Transport problems never escape the iterator: they become a
single synthetic ``error`` event, so consumers only ever handle events.

Usage:
    async with ChatStream(http_client, session, workspace_id=1, message="Doanh thu?") as stream:
        async for event in stream:
            reducer.apply(event)
"""

import asyncio
import inspect
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

import httpx
from pydantic import ValidationError

from .config import settings
from .exceptions import CuliAPIError
from .models import ChatRequest
from .reasoning_models import StreamEvent, StreamEventType
from .session import Session

logger = logging.getLogger(__name__)

SSE_DONE_MARKER = "[DONE]"

EventCallback = Callable[[StreamEvent], Awaitable[None] | None]
ErrorCallback = Callable[[str], Awaitable[None] | None]


def is_sse(value: str) -> bool:
    """
    Check if a line is an SSE field line (``data:``, ``event:``, ``id:``, ``retry:``).

    Comment lines (leading ``:``) and blank separators are not field lines.
    """
    if not value or value.startswith(":"):
        return False
    field = value.partition(":")[0]
    return field in ("data", "event", "id", "retry")


def parse_sse_event(lines: list[str]) -> StreamEvent | None:
    """
    Parse one SSE block into a stream event.

    The backend sends ``data: {"event": <kind>, "data": {...}}``. When the JSON
    has no ``event`` key, the block's ``event:`` field names the kind and the
    whole JSON object is the payload.

    Args:
        lines: The lines of one block, without the blank separator line.

    Returns:
        The parsed event, or None for end markers, keep-alives and anything
        that does not form a valid event.
    """
    event_name: str | None = None
    data_lines: list[str] = []
    for line in lines:
        if not is_sse(line):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_name = value.strip()
        elif field == "data":
            data_lines.append(value)

    if not data_lines:
        return None
    data = "\n".join(data_lines).strip()
    if not data or data == SSE_DONE_MARKER:
        return None

    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Dropping SSE block with invalid JSON: %.200s", data)
        return None
    if not isinstance(payload, dict):
        logger.debug("Dropping SSE block whose payload is not an object")
        return None

    if "event" in payload:
        kind = payload.get("event")
        body = payload.get("data")
        if body is None:
            body = {}
    else:
        kind = event_name
        body = payload

    try:
        return StreamEvent(event=kind, data=body)
    except ValidationError as e:
        logger.debug("Dropping unrecognised stream event %r: %s", kind, e.errors()[0]["msg"])
        return None


class ChatStream:
    """
    One streaming chat request, consumed as an async iterator of events.

    Guarantees:
        - events are delivered in arrival order;
        - at most one terminal event (``done`` or ``error``) is delivered, and
          nothing after it;
        - a transport failure, a non-2xx status, a stream that ends without a
          terminal event, or ``idle_timeout`` seconds without data each
          produce exactly one synthetic ``error`` event;
        - after ``cancel()``/``aclose()`` nothing more is delivered and the
          connection is released.
    """

    def __init__(
            self,
            http_client: httpx.AsyncClient,
            session: Session,
            workspace_id: int,
            message: str,
            conversation_id: int | None = None,
            idle_timeout: float | None = None,
        ):
        self._http_client = http_client
        self._session = session
        self.workspace_id = workspace_id
        self.request = ChatRequest(message=message, conversation_id=conversation_id)
        if idle_timeout is None:
            idle_timeout = settings.stream_idle_timeout
        self.idle_timeout = idle_timeout if idle_timeout > 0 else None

        self._events: AsyncIterator[StreamEvent] | None = None
        self._response: httpx.Response | None = None
        self._cancelled = False
        self._terminated = False
        self._reading = False

    @property
    def path(self) -> str:
        """Endpoint path, relative to the client's base URL."""
        return f"/workspaces/{self.workspace_id}/chat/stream"

    @property
    def cancelled(self) -> bool:
        """Whether ``cancel()`` was called."""
        return self._cancelled

    def __aiter__(self) -> 'ChatStream':
        return self

    async def __anext__(self) -> StreamEvent:
        if self._cancelled or self._terminated:
            raise StopAsyncIteration
        if self._events is None:
            self._events = self._iterate()

        self._reading = True
        try:
            event = await self._events.__anext__()
        except StopAsyncIteration:
            self._terminated = True
            raise
        finally:
            self._reading = False

        # closed while this read was pending
        if self._cancelled or self._terminated:
            await self._close_events()
            raise StopAsyncIteration
        if event.event.is_terminal:
            self._terminated = True
            await self._close_events()
        return event

    async def __aenter__(self) -> 'ChatStream':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.aclose()

    async def cancel(self) -> None:
        """Stop delivering events and release the connection, silently."""
        if not self._cancelled and not self._terminated:
            logger.debug("Cancelling chat stream for workspace %s", self.workspace_id)
        self._cancelled = True
        await self.aclose()

    async def aclose(self) -> None:
        """Stop iteration and release the connection."""
        self._terminated = True
        response = self._response
        if response is not None and not response.is_closed:
            await response.aclose()
        await self._close_events()

    async def consume(
            self,
            on_event: EventCallback,
            on_error: ErrorCallback | None = None,
            on_done: EventCallback | None = None,
        ) -> None:
        """
        Drive the stream with callbacks.

        ``on_event`` sees every event, terminal ones included. Afterwards
        exactly one of ``on_done`` (for ``done``) or ``on_error`` (for
        ``error``) is called, unless the stream was cancelled first.
        """
        async for event in self:
            await _maybe_await(on_event(event))
            if event.event == StreamEventType.DONE:
                if on_done is not None:
                    await _maybe_await(on_done(event))
            elif event.event == StreamEventType.ERROR:
                if on_error is not None:
                    await _maybe_await(on_error(str(event.data.error or "Unknown error")))

    async def _close_events(self) -> None:
        events = self._events
        # a pending read finishes on its own once the response is closed
        if events is None or self._reading:
            return
        await events.aclose()

    async def _next_line(self, lines: AsyncIterator[str]) -> str:
        async def read() -> str:
            return await lines.__anext__()

        if self.idle_timeout is None:
            return await read()
        return await asyncio.wait_for(read(), timeout=self.idle_timeout)

    async def _iterate(self) -> AsyncIterator[StreamEvent]:  # noqa: PLR0912
        payload = self.request.model_dump(exclude_none=True)
        headers = {
            "Accept": "text/event-stream",
            "Content-Type": "application/json",
            **self._session.auth_headers,
        }
        # Reads are bounded by idle_timeout, not the client's read timeout
        timeout = httpx.Timeout(
            connect=settings.http_connect_timeout,
            read=None,
            write=settings.http_write_timeout,
            pool=settings.http_connect_timeout,
        )

        try:
            async with self._http_client.stream(
                "POST", self.path, json=payload, headers=headers, timeout=timeout,
            ) as response:
                self._response = response

                if response.status_code == 401:
                    self._session.invalidate()
                    yield StreamEvent.error("Unauthorized - Please login again")
                    return
                if response.is_error:
                    await response.aread()
                    error = CuliAPIError.from_response(response)
                    logger.warning("Chat stream rejected (%s): %s", error.status_code, error.detail)
                    yield StreamEvent.error(error.detail)
                    return

                lines = response.aiter_lines()
                block: list[str] = []
                while True:
                    try:
                        line = await self._next_line(lines)
                    except StopAsyncIteration:
                        break
                    line = line.rstrip("\r")
                    if line:
                        block.append(line)
                        continue
                    event = parse_sse_event(block)
                    block = []
                    if event is None:
                        continue
                    yield event
                    if event.event.is_terminal:
                        return

                event = parse_sse_event(block)
                if event is not None:
                    yield event
                    if event.event.is_terminal:
                        return

        except asyncio.TimeoutError:
            if self._cancelled:
                return
            logger.warning("Chat stream idle for %ss, giving up", self.idle_timeout)
            yield StreamEvent.error(f"Stream timed out after {self.idle_timeout:g}s without data")
            return
        except (httpx.HTTPError, httpx.StreamError) as e:
            if self._cancelled:
                return
            logger.warning("Chat stream transport error: %s", e)
            yield StreamEvent.error(f"Connection error: {e!s}" if str(e) else "Connection error")
            return
        finally:
            self._response = None

        if not self._cancelled:
            logger.warning("Chat stream closed without a terminal event")
            yield StreamEvent.error("Stream ended unexpectedly")


async def _maybe_await(result: object) -> None:
    if inspect.isawaitable(result):
        await result
