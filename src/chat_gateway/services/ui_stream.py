"""
UI message stream protocol (Server-Sent Events).

Each frame is ``data: <json>\\n\\n`` carrying one protocol event; the
stream ends with ``data: [DONE]\\n\\n``. Browser clients identify the
protocol by the ``x-vercel-ai-ui-message-stream: v1`` response header.

Event order for one assistant reply:

    start{messageId}
    data-context{data: {messages}, transient: true}   # echoed client messages
    start-step
    text-start{id}
    text-delta{id, delta}   (repeated)
    text-end{id}
    finish-step
    finish
    [DONE]

A failure while streaming closes any open text block, emits
``error{errorText}`` and terminates the stream; the HTTP status that was
already sent is unchanged.
"""
from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import anyio
import structlog
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from chat_gateway.services.errors import error_message

logger = structlog.get_logger(__name__)

UI_MESSAGE_STREAM_HEADERS: dict[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "x-vercel-ai-ui-message-stream": "v1",
}

DONE_FRAME: str = "data: [DONE]\n\n"


def sse_frame(event: dict[str, Any]) -> str:
    """Encode one protocol event as an SSE data frame."""
    return f"data: {json.dumps(event, ensure_ascii=False, separators=(',', ':'))}\n\n"


def generate_id() -> str:
    return uuid.uuid4().hex


def resolve_message_id(original_messages: list[Any]) -> str:
    """Reuse the id of a trailing assistant message, else generate one.

    A trailing assistant message means the client is continuing that
    message, so deltas must attach to it.
    """
    if original_messages:
        last = original_messages[-1]
        if isinstance(last, dict) and last.get("role") == "assistant":
            last_id = last.get("id")
            if isinstance(last_id, str) and last_id:
                return last_id
    return generate_id()


async def ui_message_stream(
    deltas: AsyncIterator[str],
    *,
    original_messages: list[Any],
    message_id: Optional[str] = None,
    on_error: Callable[[BaseException], str] = error_message,
) -> AsyncIterator[str]:
    """Map text deltas onto UI message stream frames.

    Deltas are forwarded as they arrive, in order, without buffering.

    Args:
        deltas: Text fragments produced by the upstream model.
        original_messages: Client messages, echoed back as context.
        message_id: Assistant message id; resolved from the messages if omitted.
        on_error: Converts a mid-stream exception into the ``errorText``.

    Yields:
        str: SSE frames.
    """
    yield sse_frame({"type": "start", "messageId": message_id or resolve_message_id(original_messages)})
    yield sse_frame({"type": "data-context", "data": {"messages": original_messages}, "transient": True})
    yield sse_frame({"type": "start-step"})

    text_id = generate_id()
    text_open = False
    try:
        async for delta in deltas:
            if not delta:
                continue
            if not text_open:
                yield sse_frame({"type": "text-start", "id": text_id})
                text_open = True
            yield sse_frame({"type": "text-delta", "id": text_id, "delta": delta})
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning(
            "ui_stream.error",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        if text_open:
            yield sse_frame({"type": "text-end", "id": text_id})
        yield sse_frame({"type": "error", "errorText": on_error(exc)})
        yield DONE_FRAME
        return
    finally:
        aclose = getattr(deltas, "aclose", None)
        if aclose is not None:
            await aclose()

    if text_open:
        yield sse_frame({"type": "text-end", "id": text_id})
    yield sse_frame({"type": "finish-step"})
    yield sse_frame({"type": "finish"})
    yield DONE_FRAME


async def single_text(text: str) -> AsyncIterator[str]:
    """A delta source that yields *text* once."""
    yield text


# ============================================================================
# Response
# ============================================================================

CloseCallback = Callable[[], Awaitable[None]]


class _OwnedFrames:
    """Frame iterator that runs ``on_close`` exactly once when it ends.

    Ending means exhausted, failed, cancelled or closed, including closed
    before the first frame was pulled.
    """

    def __init__(self, frames: AsyncIterator[str], on_close: Optional[CloseCallback]) -> None:
        self._frames = frames
        self._on_close = on_close
        self._closed = False

    def __aiter__(self) -> "_OwnedFrames":
        return self

    async def __anext__(self) -> str:
        try:
            return await self._frames.__anext__()
        except BaseException:
            await self.aclose()
            raise

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        with anyio.CancelScope(shield=True):
            try:
                aclose = getattr(self._frames, "aclose", None)
                if aclose is not None:
                    await aclose()
            finally:
                if self._on_close is not None:
                    await self._on_close()


class UIMessageStreamResponse(StreamingResponse):
    """
    Streaming response for a UI message stream.

    Args:
        frames: SSE frames, usually from ui_message_stream()
        on_close: Releases the resource behind the frames (the upstream
            stream). Runs once however the response ends, including a
            client disconnect before the first frame is sent.
    """

    def __init__(self, frames: AsyncIterator[str], *, on_close: Optional[CloseCallback] = None) -> None:
        super().__init__(
            _OwnedFrames(frames, on_close),
            status_code=200,
            headers=dict(UI_MESSAGE_STREAM_HEADERS),
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.body_iterator.aclose()
