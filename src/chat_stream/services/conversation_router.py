from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from chat_stream.application.context import ChatContext
from chat_stream.application.exceptions import NotFoundError, ValidationError
from chat_stream.application.ports.ui import Navigator
from chat_stream.config import settings
from chat_stream.domain.entities.conversation import Conversation
from chat_stream.domain.entities.message import Message
from chat_stream.domain.value_objects.enums import ConversationFilter, Track
from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.services.draft_queue import DraftQueueManager
from chat_stream.services.message_store import MessageStore

logger = logging.getLogger(__name__)

CancelStream = Callable[[ConversationRef], None]


def _no_stream(_conversation: ConversationRef) -> None:
    return None


class ConversationRouter:
    """Owns which conversation is active and what happens when that changes.

    Leaving a conversation cancels its in-flight stream and drops its draft
    before the new log is swapped in.
    """

    def __init__(
        self,
        context: ChatContext,
        store: MessageStore,
        drafts: DraftQueueManager,
        navigator: Navigator,
        *,
        cancel_stream: CancelStream = _no_stream,
        archive_on_new: bool | None = None,
    ) -> None:
        self._context = context
        self._store = store
        self._drafts = drafts
        self._navigator = navigator
        self._cancel_stream = cancel_stream
        self._archive_on_new = (
            settings.ARCHIVE_ON_NEW_CONVERSATION if archive_on_new is None else archive_on_new
        )
        self._background: set[asyncio.Task[None]] = set()

    def bind_cancel(self, cancel_stream: CancelStream) -> None:
        self._cancel_stream = cancel_stream

    @property
    def active(self) -> ConversationRef | None:
        return self._store.active

    def _usable(self, conversation: ConversationRef) -> bool:
        if conversation.is_transient:
            return self._context.track == Track.DURABLE
        return self._context.store.accepts(conversation)

    # -- resolution and switching -----------------------------------------

    async def resolve_active(self) -> ConversationRef:
        """Navigation state, else the latest conversation, else a fresh one."""
        requested = self._navigator.current()
        if requested is not None:
            if requested == self._store.active:
                return requested
            if self._usable(requested):
                try:
                    await self._open(requested)
                    return requested
                except NotFoundError:
                    logger.info("Conversation %s from navigation no longer exists", requested)
            else:
                logger.warning("Ignoring %s: not valid on the %s track", requested, self._context.track)

        if self._store.active is not None:
            self._navigator.replace(self._store.active)
            return self._store.active

        latest = await self._context.store.list_conversations()
        ref = latest[0].id if latest else await self._fresh_ref()
        await self._open(ref)
        self._navigator.replace(ref)
        return ref

    async def switch_to(self, conversation: ConversationRef) -> None:
        if conversation == self._store.active:
            return
        if not self._usable(conversation):
            raise ValidationError(f"{conversation} is not valid on the {self._context.track} track")
        await self._open(conversation)
        self._navigator.push(conversation)
        logger.debug("Switched to conversation %s", conversation)

    async def new_conversation(self) -> ConversationRef:
        previous = self._store.active
        self._leave(previous)
        ref = await self._fresh_ref()
        self._store.activate(ref, [])
        self._navigator.push(ref)
        if self._archive_on_new and previous is not None and self._context.store.accepts(previous):
            self._spawn(self._context.store.archive(previous), f"archive {previous}")
        return ref

    def promote(self, transient: ConversationRef, durable: ConversationRef) -> None:
        self._store.rekey(transient, durable)
        self._drafts.rekey(transient, durable)
        if self._navigator.current() == transient:
            self._navigator.replace(durable)
        logger.info("Conversation %s promoted to %s", transient, durable)

    async def _open(self, conversation: ConversationRef) -> None:
        messages = await self._load(conversation)
        if conversation != self._store.active:
            self._leave(self._store.active)
        self._store.activate(conversation, messages)

    async def _load(self, conversation: ConversationRef) -> list[Message]:
        if conversation.is_transient:
            return list(self._store.messages(conversation))
        return await self._context.store.load_messages(conversation)

    async def _fresh_ref(self) -> ConversationRef:
        if self._context.track == Track.DURABLE:
            # server id is issued on the first successful reply
            return ConversationRef.transient()
        created = await self._context.store.create_conversation()
        return created.id

    def _leave(self, conversation: ConversationRef | None) -> None:
        if conversation is None:
            return
        self._cancel_stream(conversation)
        self._drafts.discard(conversation)

    # -- sidebar -----------------------------------------------------------

    async def list_conversations(
        self,
        conversation_filter: ConversationFilter = ConversationFilter.ACTIVE,
        search: str | None = None,
    ) -> list[Conversation]:
        items = await self._context.store.list_conversations(
            include_archived=conversation_filter != ConversationFilter.ACTIVE,
        )
        if conversation_filter == ConversationFilter.ARCHIVED:
            items = [c for c in items if c.archived]
        if search and search.strip():
            needle = search.strip().casefold()
            items = [
                c for c in items
                if needle in c.title.casefold() or needle in c.last_preview.casefold()
            ]
        return items

    async def rename(self, conversation: ConversationRef, title: str) -> None:
        await self._context.store.rename(conversation, title)

    async def archive(self, conversation: ConversationRef, archived: bool = True) -> None:
        await self._context.store.archive(conversation, archived)

    async def delete(self, conversation: ConversationRef) -> None:
        was_active = conversation == self._store.active
        if not conversation.is_transient:
            await self._context.store.delete(conversation)
        self._leave(conversation)
        self._store.drop(conversation)
        if was_active:
            await self.new_conversation()

    # -- background work ---------------------------------------------------

    def _spawn(self, work: Awaitable[None], label: str) -> None:
        async def run() -> None:
            await work

        task = asyncio.create_task(run(), name=f"router-{label}")
        self._background.add(task)
        task.add_done_callback(lambda t: self._on_background_done(t, label))

    def _on_background_done(self, task: asyncio.Task[None], label: str) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background %s failed", label, exc_info=exc)

    async def drain(self) -> None:
        """Wait for fire-and-forget work (tests and shutdown)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
