"""Guest conversation store on top of a key-value store.

Keys are scoped by the stable device id: one key holds the conversation
metadata list, one key per conversation holds its transcript. Every call
writes through before it returns; index updates are serialised per device.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Sequence

from chat_stream.application.exceptions import NotFoundError, ValidationError
from chat_stream.application.ports.kv import KeyValueStore
from chat_stream.config import settings
from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.entities.conversation import DEFAULT_TITLE, Conversation, preview
from chat_stream.domain.entities.message import Message, SystemMessage
from chat_stream.domain.value_objects.enums import Track
from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.infrastructure.kv.records import (
    StoredConversation,
    conversation_list,
    message_list,
    message_to_record,
    record_to_conversation,
    record_to_message,
)

logger = logging.getLogger(__name__)


class EphemeralConversationStore:
    """Implements application.repositories.conversation.ConversationStore for guests."""

    def __init__(
        self,
        kv: KeyValueStore,
        device_id: str,
        *,
        now: Callable[[], datetime],
        prefix: str | None = None,
        index_lock: asyncio.Lock | None = None,
    ) -> None:
        self._kv = kv
        self._device_id = device_id
        self._now = now
        self._prefix = f"{prefix or settings.GUEST_KEY_PREFIX}:{device_id}"
        # index writes are read-modify-write over the whole list
        self._index_lock = index_lock or asyncio.Lock()

    @property
    def track(self) -> Track:
        return Track.EPHEMERAL

    def accepts(self, conversation: ConversationRef) -> bool:
        return conversation.is_guest

    def _check(self, conversation: ConversationRef) -> None:
        if not self.accepts(conversation):
            raise ValidationError(f"Guest storage cannot hold {conversation}")

    @property
    def _index_key(self) -> str:
        return f"{self._prefix}:conversations"

    def _messages_key(self, conversation: ConversationRef) -> str:
        return f"{self._prefix}:messages:{conversation.value}"

    async def _load_index(self) -> list[StoredConversation]:
        raw = await self._kv.get(self._index_key)
        if not raw:
            return []
        return conversation_list.validate_json(raw)

    async def _save_index(self, records: list[StoredConversation]) -> None:
        await self._kv.set(self._index_key, conversation_list.dump_json(records).decode())

    def _new_record(self, conversation: ConversationRef, title: str) -> StoredConversation:
        now = self._now()
        return StoredConversation(
            id=str(conversation),
            title=title,
            created_at=now,
            updated_at=now,
            user_id=self._device_id,
        )

    async def _update(self, conversation: ConversationRef, **changes: object) -> None:
        async with self._index_lock:
            records = await self._load_index()
            self._apply(records, conversation, changes)
            await self._save_index(records)

    def _apply(
        self,
        records: list[StoredConversation],
        conversation: ConversationRef,
        changes: dict[str, object],
    ) -> None:
        key = str(conversation)
        for i, record in enumerate(records):
            if record.id == key:
                records[i] = record.model_copy(update={**changes, "updated_at": self._now()})
                return
        raise NotFoundError(f"Conversation {conversation} not found")

    async def list_conversations(self, *, include_archived: bool = False) -> list[Conversation]:
        records = await self._load_index()
        if not include_archived:
            records = [r for r in records if not r.archived]
        records.sort(key=lambda r: r.updated_at, reverse=True)
        return [record_to_conversation(r) for r in records]

    async def get(self, conversation: ConversationRef) -> Conversation | None:
        self._check(conversation)
        key = str(conversation)
        for record in await self._load_index():
            if record.id == key:
                return record_to_conversation(record)
        return None

    async def create_conversation(self, title: str = DEFAULT_TITLE) -> Conversation:
        ref = ConversationRef.guest()
        record = self._new_record(ref, title or DEFAULT_TITLE)
        async with self._index_lock:
            await self._save_index([record, *await self._load_index()])
        logger.debug("Guest conversation %s created for device %s", ref, self._device_id)
        return record_to_conversation(record)

    async def load_messages(self, conversation: ConversationRef) -> list[Message]:
        self._check(conversation)
        raw = await self._kv.get(self._messages_key(conversation))
        if not raw:
            return []
        return [record_to_message(r, conversation) for r in message_list.validate_json(raw)]

    async def sync_messages(self, conversation: ConversationRef, messages: Sequence[Message]) -> None:
        self._check(conversation)
        # system notices are session-only; a streaming reply is written once it stops
        kept = [m for m in messages if not isinstance(m, SystemMessage) and not m.is_streaming]
        records = [message_to_record(m) for m in kept]
        await self._kv.set(self._messages_key(conversation), message_list.dump_json(records).decode())

        async with self._index_lock:
            index = await self._load_index()
            key = str(conversation)
            if not any(r.id == key for r in index):
                title = DEFAULT_TITLE
                if kept:
                    title = preview(kept[0].content, settings.TITLE_PREVIEW_LENGTH) or DEFAULT_TITLE
                index.insert(0, self._new_record(conversation, title))
            for i, record in enumerate(index):
                if record.id == key:
                    index[i] = record.model_copy(update={
                        "message_count": len(kept),
                        "last_message_preview": (
                            preview(kept[-1].content, settings.MESSAGE_PREVIEW_LENGTH) if kept else ""
                        ),
                    })
            await self._save_index(index)

    async def append_message_pair(
        self,
        conversation: ConversationRef,
        user_text: str,
        assistant_text: str,
        *,
        attachments: Sequence[Attachment] = (),
    ) -> None:
        # the transcript itself already went through sync_messages
        self._check(conversation)
        key = str(conversation)
        changes: dict[str, object] = {
            "last_message_preview": preview(assistant_text, settings.MESSAGE_PREVIEW_LENGTH),
        }
        async with self._index_lock:
            records = await self._load_index()
            current = next((r for r in records if r.id == key), None)
            if current is None:
                records.insert(0, self._new_record(
                    conversation, preview(user_text, settings.TITLE_PREVIEW_LENGTH) or DEFAULT_TITLE,
                ))
                changes["message_count"] = 2
            elif current.title == DEFAULT_TITLE and user_text.strip():
                changes["title"] = preview(user_text, settings.TITLE_PREVIEW_LENGTH)
            self._apply(records, conversation, changes)
            await self._save_index(records)

    async def rename(self, conversation: ConversationRef, title: str) -> None:
        self._check(conversation)
        if not title.strip():
            raise ValidationError("Title must not be empty")
        await self._update(conversation, title=title.strip())

    async def archive(self, conversation: ConversationRef, archived: bool = True) -> None:
        self._check(conversation)
        await self._update(conversation, archived=archived)

    async def delete(self, conversation: ConversationRef) -> None:
        self._check(conversation)
        key = str(conversation)
        async with self._index_lock:
            records = await self._load_index()
            remaining = [r for r in records if r.id != key]
            if len(remaining) == len(records):
                raise NotFoundError(f"Conversation {conversation} not found")
            await self._save_index(remaining)
        await self._kv.delete(self._messages_key(conversation))
