"""Auto-follow vs pinned-away scrolling for the chat viewport."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, assert_never
from uuid import UUID

from chat_stream.application.ports.clock import Clock, SystemClock
from chat_stream.application.ports.scheduler import Cancellable, Scheduler
from chat_stream.application.ports.ui import Viewport
from chat_stream.config import settings
from chat_stream.domain.entities.message import AssistantMessage, SystemMessage, UserMessage
from chat_stream.domain.events.store import (
    LogSwapped,
    MessageAdded,
    MessageFinalized,
    MessageRemoved,
    MessageUpdated,
    StoreEvent,
)
from chat_stream.domain.value_objects.enums import InputKind, ScrollMode
from chat_stream.services.message_store import MessageStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ScrollState:
    is_near_bottom: bool = True
    is_user_scrolling: bool = False
    is_streaming: bool = False
    last_new_message_at: float | None = None


class ScrollController:
    """Decides whether new content scrolls the viewport or bumps a counter.

    ``FOLLOWING`` keeps the bottom in view on every store change.
    ``PINNED_AWAY`` is entered only by a user scroll past the near-bottom
    threshold; it leaves the viewport alone and counts completed messages
    until the user scrolls back or jumps to the latest message.
    """

    def __init__(
        self,
        store: MessageStore,
        viewport: Viewport,
        scheduler: Scheduler,
        *,
        clock: Clock | None = None,
        input_kind: InputKind = InputKind.POINTER,
        on_change: Callable[[ScrollController], None] | None = None,
    ) -> None:
        self._store = store
        self._viewport = viewport
        self._scheduler = scheduler
        self._clock = clock or SystemClock()
        self._on_change = on_change
        self.input_kind = input_kind

        self.mode = ScrollMode.FOLLOWING
        self.new_message_count = 0
        self.state = ScrollState()

        self._pending_target: UUID | None = None
        self._pending_retry: Cancellable | None = None
        self._user_scroll_timer: Cancellable | None = None
        self._unsubscribe = store.subscribe(self._on_store_event)

    # -- geometry ----------------------------------------------------------

    @property
    def threshold(self) -> float:
        if self.input_kind == InputKind.TOUCH:
            return settings.SCROLL_NEAR_BOTTOM_TOUCH_PX
        return settings.SCROLL_NEAR_BOTTOM_POINTER_PX

    @property
    def distance_from_bottom(self) -> float:
        vp = self._viewport
        return vp.scroll_height - vp.scroll_top - vp.client_height

    @property
    def max_scroll_top(self) -> float:
        return max(0.0, self._viewport.scroll_height - self._viewport.client_height)

    @property
    def show_jump_affordance(self) -> bool:
        return self.mode == ScrollMode.PINNED_AWAY

    @property
    def pending_target(self) -> UUID | None:
        return self._pending_target

    def _recompute(self) -> None:
        self.state.is_near_bottom = self.distance_from_bottom <= self.threshold
        active = self._store.active
        self.state.is_streaming = active is not None and self._store.streaming_message(active) is not None

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self)

    # -- viewport input ----------------------------------------------------

    def set_input_kind(self, kind: InputKind) -> None:
        self.input_kind = kind
        self._recompute()

    def on_scroll(self, user_initiated: bool) -> None:
        self._recompute()
        if user_initiated:
            self.state.is_user_scrolling = True
            if self._user_scroll_timer is not None:
                self._user_scroll_timer.cancel()
            self._user_scroll_timer = self._scheduler.call_later(
                settings.SCROLL_USER_DEBOUNCE_SECONDS, self._end_user_scroll,
            )
            if self.state.is_near_bottom:
                self._follow()
            else:
                if self.mode == ScrollMode.FOLLOWING:
                    logger.debug("Scroll pinned away (%.0fpx from bottom)", self.distance_from_bottom)
                self.mode = ScrollMode.PINNED_AWAY
                self._clear_pending()
        self._changed()

    def _end_user_scroll(self) -> None:
        self._user_scroll_timer = None
        self.state.is_user_scrolling = False
        self._changed()

    def on_layout(self) -> None:
        """Next layout tick: retry a scroll target that was not mounted yet."""
        if self._pending_target is not None:
            self._try_pending()
        self._recompute()
        self._changed()

    def jump_to_latest(self) -> None:
        self._follow()
        self._clear_pending()
        self._scroll_to_bottom()
        self._changed()

    def close(self) -> None:
        self._unsubscribe()
        self._clear_pending()
        if self._user_scroll_timer is not None:
            self._user_scroll_timer.cancel()
            self._user_scroll_timer = None

    # -- scrolling primitives ---------------------------------------------

    def _follow(self) -> None:
        self.mode = ScrollMode.FOLLOWING
        self.new_message_count = 0

    def _scroll_to_bottom(self) -> None:
        self._viewport.scroll_to_bottom()
        self._recompute()

    def _scroll_to_message(self, message_id: UUID) -> None:
        self._clear_pending()
        self._pending_target = message_id
        if not self._try_pending():
            self._pending_retry = self._scheduler.call_soon(self._retry_pending)

    def _retry_pending(self) -> None:
        self._pending_retry = None
        if self._pending_target is not None and self._try_pending():
            self._changed()

    def _try_pending(self) -> bool:
        target = self._pending_target
        if target is None:
            return True
        offset = self._viewport.offset_of(target)
        if offset is None:
            return False
        top = min(max(0.0, offset - settings.SCROLL_USER_MESSAGE_PADDING_PX), self.max_scroll_top)
        self._viewport.scroll_to(top)
        self._pending_target = None
        self._recompute()
        return True

    def _clear_pending(self) -> None:
        self._pending_target = None
        if self._pending_retry is not None:
            self._pending_retry.cancel()
            self._pending_retry = None

    def _bump(self) -> None:
        self.new_message_count += 1
        self.state.last_new_message_at = self._clock.monotonic()

    # -- store notifications ----------------------------------------------

    def _on_store_event(self, event: StoreEvent) -> None:
        match event:
            case MessageAdded(message=UserMessage() as message):
                if not self._store.is_active(message.conversation):
                    return
                self._follow()
                self.state.last_new_message_at = self._clock.monotonic()
                self._scroll_to_message(message.id)
            case MessageAdded(message=message):
                if not self._store.is_active(message.conversation):
                    return
                if self.mode == ScrollMode.FOLLOWING:
                    self._keep_following()
                elif isinstance(message, SystemMessage):
                    self._bump()
            case MessageUpdated(message=message):
                if not self._store.is_active(message.conversation):
                    return
                if self.mode == ScrollMode.FOLLOWING:
                    self._keep_following()
            case MessageFinalized(message=message, cancelled=cancelled):
                if not self._store.is_active(message.conversation):
                    return
                if self.mode == ScrollMode.FOLLOWING:
                    self._keep_following()
                elif isinstance(message, AssistantMessage) and not cancelled:
                    self._bump()
            case MessageRemoved(conversation=conversation):
                if not self._store.is_active(conversation):
                    return
            case LogSwapped():
                self._follow()
                self._clear_pending()
                self._scroll_to_bottom()
            case _:
                assert_never(event)
        self._recompute()
        self._changed()

    def _keep_following(self) -> None:
        # a user-message target still waiting for layout wins over the bottom
        if self._pending_target is not None:
            self._try_pending()
        else:
            self._scroll_to_bottom()
