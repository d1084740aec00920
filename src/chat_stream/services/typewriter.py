"""Progressive reveal of streamed assistant text."""
from __future__ import annotations

import logging
import math
from enum import StrEnum
from typing import Callable, assert_never
from uuid import UUID

from chat_stream.application.ports.scheduler import Cancellable, Scheduler
from chat_stream.config import settings
from chat_stream.domain.entities.message import AssistantMessage, Message, SystemMessage, UserMessage
from chat_stream.domain.events.store import (
    LogSwapped,
    MessageAdded,
    MessageFinalized,
    MessageRemoved,
    MessageUpdated,
    StoreEvent,
)
from chat_stream.services.message_store import MessageStore

logger = logging.getLogger(__name__)

FrameCallback = Callable[[str, bool], None]
RenderCallback = Callable[[UUID, str, bool], None]


class TypewriterState(StrEnum):
    IDLE = "idle"
    REVEALING = "revealing"
    DONE = "done"


class Typewriter:
    """Reveals a growing target string a few characters per tick.

    Each tick shows ``max(chars_per_tick, ceil(backlog / max_lag_ticks))``
    characters, so a backlog of any size drains within ``max_lag_ticks``
    ticks. Finishing or exceeding ``instant_threshold`` shows everything.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        on_frame: FrameCallback,
        *,
        tick_seconds: float | None = None,
        chars_per_tick: int | None = None,
        max_lag_ticks: int | None = None,
        instant_threshold: int | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._on_frame = on_frame
        self._tick_seconds = tick_seconds or settings.TYPEWRITER_TICK_SECONDS
        self._chars_per_tick = max(1, chars_per_tick or settings.TYPEWRITER_CHARS_PER_TICK)
        self._max_lag_ticks = max(1, max_lag_ticks or settings.TYPEWRITER_MAX_LAG_TICKS)
        self._instant_threshold = instant_threshold or settings.TYPEWRITER_INSTANT_THRESHOLD

        self.state = TypewriterState.IDLE
        self._target = ""
        self._shown = 0
        self._finished = False
        self._instant = False
        self._cancelled = False
        self._timer: Cancellable | None = None

    @property
    def displayed(self) -> str:
        return self._target[: self._shown]

    @property
    def is_revealing(self) -> bool:
        return self.state == TypewriterState.REVEALING

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def update(self, target: str, *, finished: bool = False) -> None:
        if self._cancelled or self.state == TypewriterState.DONE:
            return
        extends = target.startswith(self.displayed)
        self._target = target
        self._finished = self._finished or finished
        if (
            self._finished
            or self._instant
            or not extends
            or len(target) > self._instant_threshold
        ):
            self._flush()
            return
        if self._shown < len(target) and self._timer is None:
            self.state = TypewriterState.REVEALING
            self._schedule()

    def reveal_all(self) -> None:
        """Show everything now and keep later text instant (click-to-reveal)."""
        if self._cancelled:
            return
        self._instant = True
        self._flush()

    def cancel(self) -> None:
        self._cancelled = True
        self.state = TypewriterState.DONE
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self) -> None:
        self._timer = self._scheduler.call_later(self._tick_seconds, self._tick)

    def _tick(self) -> None:
        self._timer = None
        if self._cancelled or self.state == TypewriterState.DONE:
            return
        backlog = len(self._target) - self._shown
        if backlog <= 0:
            self.state = TypewriterState.IDLE
            return
        step = max(self._chars_per_tick, math.ceil(backlog / self._max_lag_ticks))
        self._shown = min(len(self._target), self._shown + step)
        if self._shown < len(self._target):
            self._on_frame(self.displayed, True)
            self._schedule()
        else:
            self.state = TypewriterState.IDLE
            self._on_frame(self.displayed, False)

    def _flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._shown = len(self._target)
        self.state = TypewriterState.DONE if self._finished else TypewriterState.IDLE
        self._on_frame(self.displayed, False)


class TypewriterRenderer:
    """Keeps one typewriter per streaming reply of the active conversation.

    User and system messages, history loaded on a log swap and finished
    replies render instantly.
    """

    def __init__(
        self,
        store: MessageStore,
        scheduler: Scheduler,
        render: RenderCallback,
        **typewriter_options: int | float | None,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._render = render
        self._options = typewriter_options
        self._typewriters: dict[UUID, Typewriter] = {}
        self._unsubscribe = store.subscribe(self._on_store_event)

    def typewriter(self, message_id: UUID) -> Typewriter | None:
        return self._typewriters.get(message_id)

    def reveal_all(self, message_id: UUID) -> None:
        tw = self._typewriters.get(message_id)
        if tw is not None:
            tw.reveal_all()

    def close(self) -> None:
        self._unsubscribe()
        self._cancel_all()

    def _cancel_all(self) -> None:
        for tw in self._typewriters.values():
            tw.cancel()
        self._typewriters.clear()

    def _on_store_event(self, event: StoreEvent) -> None:
        match event:
            case MessageAdded(message=message) | MessageUpdated(message=message):
                if self._store.is_active(message.conversation):
                    self._show(message, finished=not message.is_streaming)
            case MessageFinalized(message=message):
                if self._store.is_active(message.conversation):
                    self._show(message, finished=True)
            case MessageRemoved(message_id=message_id):
                tw = self._typewriters.pop(message_id, None)
                if tw is not None:
                    tw.cancel()
            case LogSwapped(current=current):
                self._cancel_all()
                if current is not None:
                    for message in self._store.messages(current):
                        self._render(message.id, message.content, False)
            case _:
                assert_never(event)

    def _show(self, message: Message, *, finished: bool) -> None:
        match message:
            case AssistantMessage():
                tw = self._typewriters.get(message.id)
                if tw is None:
                    if finished:
                        self._render(message.id, message.content, False)
                        return
                    tw = self._typewriters[message.id] = self._new_typewriter(message.id)
                tw.update(message.content, finished=finished)
                if tw.state == TypewriterState.DONE:
                    del self._typewriters[message.id]
            case UserMessage() | SystemMessage():
                self._render(message.id, message.content, False)
            case _:
                assert_never(message)

    def _new_typewriter(self, message_id: UUID) -> Typewriter:
        def on_frame(text: str, revealing: bool) -> None:
            self._render(message_id, text, revealing)

        return Typewriter(self._scheduler, on_frame, **self._options)  # type: ignore[arg-type]
