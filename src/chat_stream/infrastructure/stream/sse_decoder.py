"""Server-sent-event decoder for the backend reply stream.

Frames look like ``data: <json>\\n\\n`` and the stream ends with
``data: [DONE]\\n\\n``. Physical reads may split a frame (or a multi-byte
character) anywhere, so bytes go through an incremental UTF-8 decoder and
partial frames stay buffered until their blank-line delimiter arrives.
"""
from __future__ import annotations

import codecs
import logging
from typing import AsyncIterable, AsyncIterator

from pydantic import ValidationError as PydanticValidationError

from chat_stream.application.exceptions import ProtocolError
from chat_stream.application.ports.transport import ReplyChannel
from chat_stream.config import settings
from chat_stream.domain.events.stream import (
    DeltaEvent,
    DoneEvent,
    ErrorEvent,
    FinalEvent,
    StreamEvent,
)
from chat_stream.domain.value_objects.enums import Role
from chat_stream.infrastructure.http.protocol import CompleteReply, StreamFrame

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class SSEDecoder:
    """Turns raw byte chunks into typed stream events.

    After a ``DoneEvent`` or ``FinalEvent`` no further event may appear; a
    violation raises ProtocolError. The one ``[DONE]`` sentinel that follows a
    final frame is absorbed silently.
    """

    def __init__(self, *, max_buffer_bytes: int | None = None) -> None:
        self._max_buffer = max_buffer_bytes or settings.SSE_MAX_BUFFER_BYTES
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._final_seen = False
        self._sentinel_absorbed = False
        self._done = False
        self._closed = False

    @property
    def finished(self) -> bool:
        return self._done or self._final_seen

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        if self._closed:
            raise ProtocolError("decoder already closed")
        try:
            text = self._decoder.decode(chunk)
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"invalid UTF-8 in stream: {exc}") from exc

        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        if len(self._buffer) > self._max_buffer:
            self._buffer = ""
            raise ProtocolError("stream buffer overflow")

        *frames, self._buffer = self._buffer.split("\n\n")
        return self._emit_all(frames)

    def close(self) -> list[StreamEvent]:
        """Flush whatever is left once the channel reaches EOF."""
        if self._closed:
            return []
        self._closed = True
        try:
            tail = self._decoder.decode(b"", final=True)
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"stream ended inside a character: {exc}") from exc
        remainder, self._buffer = (self._buffer + tail).strip(), ""
        if not remainder:
            return []
        return self._emit_all([remainder])

    def _emit_all(self, frames: list[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for frame in frames:
            event = self._parse_frame(frame)
            if event is not None and self._accept(event):
                events.append(event)
        return events

    def _accept(self, event: StreamEvent) -> bool:
        if self._done:
            raise ProtocolError(f"{type(event).__name__} after end of stream")
        if self._final_seen:
            if isinstance(event, DoneEvent) and not self._sentinel_absorbed:
                self._sentinel_absorbed = True
                return False
            raise ProtocolError(f"{type(event).__name__} after final message")
        if isinstance(event, DoneEvent):
            self._done = True
        elif isinstance(event, FinalEvent):
            self._final_seen = True
        return True

    def _parse_frame(self, frame: str) -> StreamEvent | None:
        data_lines: list[str] = []
        for line in frame.split("\n"):
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if name != "data":
                # event:, id:, retry: carry nothing we use
                continue
            data_lines.append(value[1:] if value.startswith(" ") else value)
        if not data_lines:
            return None

        payload = "\n".join(data_lines)
        if payload.strip() == DONE_SENTINEL:
            return DoneEvent()

        try:
            parsed = StreamFrame.model_validate_json(payload)
        except PydanticValidationError as exc:
            logger.warning("Malformed stream frame: %s", payload[:100])
            raise ProtocolError(f"malformed stream frame: {exc.errors()[0]['msg']}") from exc

        if parsed.error is not None:
            return ErrorEvent(parsed.error, conversation_id=parsed.conversation_id)

        choice = parsed.choices[0]
        if choice.message is not None:
            try:
                role = Role(choice.message.role)
            except ValueError as exc:
                raise ProtocolError(f"unknown role {choice.message.role!r}") from exc
            return FinalEvent(
                role,
                choice.message.content,
                conversation_id=parsed.conversation_id,
                timestamp=parsed.timestamp,
            )
        if choice.delta is not None:
            if not choice.delta.content:
                return None
            return DeltaEvent(
                choice.delta.content,
                conversation_id=parsed.conversation_id,
                timestamp=parsed.timestamp,
            )
        raise ProtocolError("choice carries neither delta nor message")


async def decode_stream(
    chunks: AsyncIterable[bytes],
    *,
    max_buffer_bytes: int | None = None,
) -> AsyncIterator[StreamEvent]:
    """Async wrapper over SSEDecoder. Awaits nothing but the upstream reads."""
    decoder = SSEDecoder(max_buffer_bytes=max_buffer_bytes)
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.close():
        yield event


async def decode_reply(channel: ReplyChannel) -> AsyncIterator[StreamEvent]:
    """Decode either a streamed reply or a single JSON object reply."""
    chunks = channel.chunks()
    first = b""
    async for first in chunks:
        if first.strip():
            break
    head = first.lstrip()

    if channel.is_event_stream or head.startswith((b"data:", b":")):
        async for event in decode_stream(_prepend(first, chunks)):
            yield event
        return

    body = bytearray(first)
    async for chunk in chunks:
        body.extend(chunk)
    try:
        reply = CompleteReply.model_validate_json(bytes(body))
    except PydanticValidationError as exc:
        raise ProtocolError(f"malformed reply body: {exc.errors()[0]['msg']}") from exc
    yield FinalEvent(Role.ASSISTANT, reply.content, timestamp=reply.timestamp)


async def _prepend(first: bytes, rest: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    if first:
        yield first
    async for chunk in rest:
        yield chunk
