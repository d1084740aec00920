"""Engine UI ports backed by a WebSocket connection.

Engine callbacks are synchronous, so outbound frames go through a queue that
a writer task drains onto the socket in order.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import UUID

from fastapi import WebSocket

from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.infrastructure.ws.protocol import LayoutData, ScrollData, WsOutbound

logger = logging.getLogger(__name__)


class FrameSink:
    def __init__(self) -> None:
        self._queue: asyncio.Queue[WsOutbound | None] = asyncio.Queue()

    def emit(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        self._queue.put_nowait(WsOutbound(type=event_type, data=data or {}))

    def close(self) -> None:
        self._queue.put_nowait(None)

    async def pump(self, ws: WebSocket) -> None:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            await ws.send_text(frame.model_dump_json())


class RemoteViewport:
    """Last geometry reported by the client; scroll requests go out as ``scroll.to`` frames."""

    def __init__(self, sink: FrameSink) -> None:
        self._sink = sink
        self.scroll_top = 0.0
        self.scroll_height = 0.0
        self.client_height = 0.0
        self._offsets: dict[UUID, float] = {}

    def scroll_to(self, top: float) -> None:
        self.scroll_top = top
        self._sink.emit("scroll.to", {"top": top})

    def scroll_to_bottom(self) -> None:
        # resolved by the client against its current layout
        self.scroll_top = max(0.0, self.scroll_height - self.client_height)
        self._sink.emit("scroll.to", {"bottom": True})

    def offset_of(self, message_id: UUID) -> float | None:
        return self._offsets.get(message_id)

    def apply_scroll(self, data: ScrollData) -> None:
        self.scroll_top = data.scroll_top
        self.scroll_height = data.scroll_height
        self.client_height = data.client_height

    def apply_layout(self, data: LayoutData) -> None:
        if data.scroll_top is not None:
            self.scroll_top = data.scroll_top
        if data.scroll_height is not None:
            self.scroll_height = data.scroll_height
        if data.client_height is not None:
            self.client_height = data.client_height
        self._offsets.update(data.offsets)

    def forget(self) -> None:
        self._offsets.clear()


class RemoteNavigator:
    """Navigation state mirrored to the client as ``conversation.navigated`` frames."""

    def __init__(self, sink: FrameSink, initial: ConversationRef | None = None) -> None:
        self._sink = sink
        self._current = initial

    def current(self) -> ConversationRef | None:
        return self._current

    def push(self, conversation: ConversationRef) -> None:
        self._navigate(conversation, replace=False)

    def replace(self, conversation: ConversationRef | None) -> None:
        self._navigate(conversation, replace=True)

    def _navigate(self, conversation: ConversationRef | None, *, replace: bool) -> None:
        self._current = conversation
        self._sink.emit(
            "conversation.navigated",
            {"conversation_id": str(conversation) if conversation else None, "replace": replace},
        )
