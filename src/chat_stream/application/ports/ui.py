"""Ports implemented by whatever renders the chat view."""
from __future__ import annotations

from typing import Protocol
from uuid import UUID

from chat_stream.domain.value_objects.ids import ConversationRef


class Viewport(Protocol):
    @property
    def scroll_top(self) -> float: ...

    @property
    def scroll_height(self) -> float: ...

    @property
    def client_height(self) -> float: ...

    def scroll_to(self, top: float) -> None: ...

    def scroll_to_bottom(self) -> None:
        """Bring the end of the content into view against the current layout."""
        ...

    def offset_of(self, message_id: UUID) -> float | None:
        """Top offset of a mounted message, or None when it is not mounted yet."""
        ...


class Navigator(Protocol):
    def current(self) -> ConversationRef | None: ...

    def push(self, conversation: ConversationRef) -> None: ...

    def replace(self, conversation: ConversationRef | None) -> None: ...
