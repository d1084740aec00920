"""Ordered per-conversation message logs with synchronous change notifications."""
from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Callable, Iterable, Sequence
from uuid import UUID

from chat_stream.application.dto.chat_request import HistoryEntry
from chat_stream.application.exceptions import ConflictError, NotFoundError, ValidationError
from chat_stream.application.ports.clock import Clock, SystemClock
from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.entities.message import AssistantMessage, Message, SystemMessage, UserMessage
from chat_stream.domain.events.store import (
    LogSwapped,
    MessageAdded,
    MessageFinalized,
    MessageRemoved,
    MessageUpdated,
    StoreEvent,
)
from chat_stream.domain.value_objects.enums import Role
from chat_stream.domain.value_objects.ids import ConversationRef

logger = logging.getLogger(__name__)

StoreListener = Callable[[StoreEvent], None]


class MessageStore:
    """Holds one ordered log per conversation plus the active one.

    Listeners run synchronously right after each mutation is applied, so a
    listener reading the store always sees the state that produced the event.
    A conversation has at most one streaming message at a time.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._logs: dict[ConversationRef, list[Message]] = {}
        self._owner: dict[UUID, ConversationRef] = {}
        self._active: ConversationRef | None = None
        self._listeners: list[StoreListener] = []

    # -- subscriptions -----------------------------------------------------

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: StoreEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Store listener failed on %s", type(event).__name__)

    # -- reads -------------------------------------------------------------

    @property
    def active(self) -> ConversationRef | None:
        return self._active

    def is_active(self, conversation: ConversationRef) -> bool:
        return self._active == conversation

    def messages(self, conversation: ConversationRef | None = None) -> tuple[Message, ...]:
        ref = conversation or self._active
        if ref is None:
            return ()
        return tuple(self._logs.get(ref, ()))

    def find(self, message_id: UUID) -> Message | None:
        ref = self._owner.get(message_id)
        if ref is None:
            return None
        for message in self._logs.get(ref, ()):
            if message.id == message_id:
                return message
        return None

    def get(self, message_id: UUID) -> Message:
        message = self.find(message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")
        return message

    def streaming_message(self, conversation: ConversationRef) -> AssistantMessage | None:
        for message in reversed(self._logs.get(conversation, ())):
            if isinstance(message, AssistantMessage) and message.is_streaming:
                return message
        return None

    def history(
        self, conversation: ConversationRef, limit: int, *, before: UUID | None = None,
    ) -> list[HistoryEntry]:
        """Last ``limit`` finished user/assistant turns preceding ``before``, oldest first."""
        log = self._logs.get(conversation, [])
        if before is not None:
            cut = next((i for i, m in enumerate(log) if m.id == before), len(log))
            log = log[:cut]
        entries = [
            HistoryEntry(role=m.role, content=m.content)
            for m in log
            if not isinstance(m, SystemMessage) and not m.is_streaming and m.content
        ]
        return entries[-limit:] if limit > 0 else []

    # -- internal mutation helpers ----------------------------------------

    def _append(self, message: Message) -> None:
        self._logs.setdefault(message.conversation, []).append(message)
        self._owner[message.id] = message.conversation
        self._notify(MessageAdded(message))

    def _put(self, message: Message) -> None:
        log = self._logs[message.conversation]
        for i, existing in enumerate(log):
            if existing.id == message.id:
                log[i] = message
                return
        raise NotFoundError(f"Message {message.id} not found")

    # -- streaming lifecycle ----------------------------------------------

    def create_placeholder(self, conversation: ConversationRef, role: Role = Role.ASSISTANT) -> UUID:
        if role != Role.ASSISTANT:
            raise ValidationError(f"Only assistant replies stream, got {role}")
        current = self.streaming_message(conversation)
        if current is not None:
            raise ConflictError(f"Conversation {conversation} is already streaming {current.id}")
        message = AssistantMessage(
            id=uuid.uuid4(),
            conversation=conversation,
            content="",
            created_at=self._clock.now(),
            is_streaming=True,
        )
        self._append(message)
        return message.id

    def append_delta(self, message_id: UUID, text: str) -> None:
        message = self.get(message_id)
        if not isinstance(message, AssistantMessage) or not message.is_streaming:
            raise ConflictError(f"Message {message_id} is not streaming")
        if not text:
            return
        updated = replace(message, content=message.content + text)
        self._put(updated)
        self._notify(MessageUpdated(updated, delta=text))

    def finalize(self, message_id: UUID, content: str | None = None) -> AssistantMessage:
        message = self.get(message_id)
        if not isinstance(message, AssistantMessage):
            raise ConflictError(f"Message {message_id} is not an assistant reply")
        if not message.is_streaming:
            if content is None or content == message.content:
                return message
            raise ConflictError(f"Message {message_id} was already finalized with different content")
        final = replace(
            message,
            content=message.content if content is None else content,
            is_streaming=False,
        )
        self._put(final)
        self._notify(MessageFinalized(final))
        return final

    def cancel(self, message_id: UUID) -> bool:
        """Stop streaming and keep what arrived. False when there was nothing to stop."""
        message = self.find(message_id)
        if not isinstance(message, AssistantMessage) or not message.is_streaming:
            return False
        stopped = replace(message, is_streaming=False)
        self._put(stopped)
        self._notify(MessageFinalized(stopped, cancelled=True))
        return True

    # -- user-facing mutations --------------------------------------------

    def add_user_message(
        self,
        conversation: ConversationRef,
        content: str,
        attachments: Sequence[Attachment] = (),
    ) -> UserMessage:
        message = UserMessage(
            id=uuid.uuid4(),
            conversation=conversation,
            content=content,
            created_at=self._clock.now(),
            attachments=tuple(attachments),
        )
        self._append(message)
        return message

    def add_system_message(
        self,
        conversation: ConversationRef,
        content: str,
        *,
        retryable: bool = False,
        retry_of: UUID | None = None,
    ) -> SystemMessage:
        message = SystemMessage(
            id=uuid.uuid4(),
            conversation=conversation,
            content=content,
            created_at=self._clock.now(),
            retryable=retryable,
            retry_of=retry_of,
        )
        self._append(message)
        return message

    def edit_message(self, message_id: UUID, content: str) -> UserMessage:
        message = self.get(message_id)
        if not isinstance(message, UserMessage):
            raise ValidationError("Only user messages can be edited")
        if not content.strip():
            raise ValidationError("Message must not be empty")
        edited = replace(message, content=content, is_edited=True)
        self._put(edited)
        self._notify(MessageUpdated(edited))
        return edited

    def toggle_pin(self, message_id: UUID) -> Message:
        message = self.get(message_id)
        if isinstance(message, SystemMessage):
            raise ValidationError("System messages cannot be pinned")
        pinned = replace(message, is_pinned=not message.is_pinned)
        self._put(pinned)
        self._notify(MessageUpdated(pinned))
        return pinned

    def remove_message(self, message_id: UUID) -> Message:
        message = self.get(message_id)
        self._logs[message.conversation].remove(message)
        del self._owner[message_id]
        self._notify(MessageRemoved(message.conversation, message_id))
        return message

    # -- log management ----------------------------------------------------

    def activate(self, conversation: ConversationRef | None, messages: Iterable[Message] | None = None) -> None:
        """Make ``conversation`` the active log, replacing its contents when ``messages`` is given."""
        previous = self._active
        if conversation is not None and messages is not None:
            self._replace_log(conversation, list(messages))
        self._active = conversation
        self._notify(LogSwapped(previous, conversation))

    def _replace_log(self, conversation: ConversationRef, messages: list[Message]) -> None:
        for old in self._logs.get(conversation, ()):
            self._owner.pop(old.id, None)
        self._logs[conversation] = messages
        for message in messages:
            self._owner[message.id] = conversation

    def rekey(self, old: ConversationRef, new: ConversationRef) -> None:
        """Move a log to a new ref (transient → durable) without notifying listeners."""
        if old == new:
            return
        log = self._logs.pop(old, [])
        moved = [replace(m, conversation=new) for m in log]
        self._logs[new] = moved
        for message in moved:
            self._owner[message.id] = new
        if self._active == old:
            self._active = new
        logger.debug("Message log %s rekeyed to %s (%d messages)", old, new, len(moved))

    def drop(self, conversation: ConversationRef) -> None:
        for message in self._logs.pop(conversation, ()):
            self._owner.pop(message.id, None)
        if self._active == conversation:
            self._active = None
            self._notify(LogSwapped(conversation, None))
