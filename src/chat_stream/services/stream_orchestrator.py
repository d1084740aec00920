"""Request lifecycle: submit, read loop, cancellation, failure and persistence."""
from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from enum import StrEnum
from functools import partial
from typing import Awaitable, Callable, Sequence, assert_never
from uuid import UUID

from chat_stream.application.cancellation import CancellationToken
from chat_stream.application.context import ChatContext
from chat_stream.application.dto.chat_request import OutboundRequest
from chat_stream.application.exceptions import (
    AppError,
    AuthenticationError,
    CancellationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ProtocolError,
    ValidationError,
)
from chat_stream.application.ports.clock import Clock, SystemClock
from chat_stream.application.ports.transport import ChatTransport, ReplyChannel
from chat_stream.config import settings
from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.entities.conversation import preview
from chat_stream.domain.entities.message import AssistantMessage, SystemMessage, UserMessage
from chat_stream.domain.events.stream import DeltaEvent, DoneEvent, ErrorEvent, FinalEvent
from chat_stream.domain.value_objects.enums import AttachmentStatus, StreamOutcome, Track
from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.infrastructure.stream.sse_decoder import decode_reply
from chat_stream.services.conversation_router import ConversationRouter
from chat_stream.services.draft_queue import DraftQueueManager
from chat_stream.services.message_store import MessageStore

logger = logging.getLogger(__name__)

FinishedCallback = Callable[[ConversationRef, StreamOutcome], None]


class SubmitResult(StrEnum):
    SENT = "sent"
    QUEUED = "queued"


@dataclass(slots=True)
class ActiveStream:
    conversation: ConversationRef
    user_message_id: UUID
    placeholder_id: UUID
    token: CancellationToken
    task: asyncio.Task[None] | None = None


def describe_failure(exc: AppError) -> str:
    """User-facing text for a failed request."""
    match exc:
        case AuthenticationError():
            return "Authentication error. Please sign in again to continue."
        case ProtocolError():
            return "The reply could not be read. Please try again."
        case ExternalServiceError(status=429):
            return "Too many requests. Please slow down and try again."
        case ExternalServiceError(status=int(status)) if status >= 500:
            return "Server error. Our servers are experiencing issues. Please try again in a moment."
        case ExternalServiceError(status=None):
            return "Network error. Please check your connection and try again."
        case _:
            return "Something went wrong. Please try again."


class StreamOrchestrator:
    """Owns one cancellation token per in-flight request.

    Stream events are applied to the message store strictly in arrival order
    and the token is checked before each one. Network and protocol failures
    end as one dismissible system message; persistence only happens after a
    reply completed.
    """

    def __init__(
        self,
        context: ChatContext,
        store: MessageStore,
        router: ConversationRouter,
        drafts: DraftQueueManager,
        transport: ChatTransport,
        *,
        clock: Clock | None = None,
        on_finished: FinishedCallback | None = None,
    ) -> None:
        self._context = context
        self._store = store
        self._router = router
        self._drafts = drafts
        self._transport = transport
        self._clock = clock or SystemClock()
        self._on_finished = on_finished
        self._streams: dict[ConversationRef, ActiveStream] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        router.bind_cancel(self.cancel)

    def is_streaming(self, conversation: ConversationRef | None = None) -> bool:
        ref = conversation or self._store.active
        return ref is not None and ref in self._streams

    # -- submit ------------------------------------------------------------

    async def submit(self, text: str, attachments: Sequence[Attachment] = ()) -> SubmitResult:
        if self._context.closed:
            raise ValidationError("Chat session is closed")
        content = text.strip()
        if not content:
            raise ValidationError("Message must not be empty")
        if len(content) > settings.MESSAGE_MAX_LENGTH:
            raise ValidationError(f"Message exceeds {settings.MESSAGE_MAX_LENGTH} characters")
        not_ready = [a.name for a in attachments if a.status != AttachmentStatus.ATTACHED]
        if not_ready:
            raise ValidationError(f"Attachments not uploaded: {', '.join(not_ready)}")

        conversation = await self._router.resolve_active()
        return await self._send(conversation, content, attachments)

    async def _send(
        self,
        conversation: ConversationRef,
        content: str,
        attachments: Sequence[Attachment],
    ) -> SubmitResult:
        if conversation in self._streams:
            self._drafts.queue(conversation, content, attachments)
            logger.info("Reply in flight for %s, draft queued", conversation)
            return SubmitResult.QUEUED
        user = self._store.add_user_message(conversation, content, attachments)
        self._start(conversation, user)
        await self._sync(conversation)
        return SubmitResult.SENT

    def _start(self, conversation: ConversationRef, user: UserMessage) -> ActiveStream:
        placeholder_id = self._store.create_placeholder(conversation)
        stream = ActiveStream(
            conversation=conversation,
            user_message_id=user.id,
            placeholder_id=placeholder_id,
            token=CancellationToken(label=str(conversation)),
        )
        self._streams[conversation] = stream

        request = OutboundRequest(
            message=user.content,
            conversation_id=conversation.value if conversation.is_durable else None,
            user_id=self._context.user_id,
            timestamp=self._clock.now(),
            history=tuple(
                self._store.history(conversation, settings.MESSAGE_CONTEXT, before=user.id)
            ),
            files=tuple(a.url for a in user.attachments if a.url),
        )
        task = asyncio.create_task(self._run(stream, request), name=f"stream-{conversation}")
        stream.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(partial(self._on_task_done, stream))
        stream.token.add_callback(partial(self._on_cancel, stream))
        logger.info(
            "Stream started for %s (history=%d, files=%d)",
            conversation, len(request.history), len(request.files),
        )
        return stream

    # -- cancellation ------------------------------------------------------

    def cancel(self, conversation: ConversationRef | None = None) -> bool:
        """Stop the in-flight reply. Safe to call repeatedly and with nothing running."""
        ref = conversation or self._store.active
        stream = self._streams.get(ref) if ref is not None else None
        if stream is None:
            return False
        return stream.token.cancel()

    def _on_cancel(self, stream: ActiveStream) -> None:
        self._store.cancel(stream.placeholder_id)
        if stream.task is not None and not stream.task.done():
            stream.task.cancel()
        logger.info("Stream for %s cancelled", stream.conversation)

    def close(self) -> None:
        """Leave the chat view: cancel everything in flight."""
        for stream in list(self._streams.values()):
            stream.token.cancel()

    async def aclose(self) -> None:
        self.close()
        await self.drain()

    async def drain(self) -> None:
        """Wait until nothing is in flight, including drafts released meanwhile."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # -- read loop ---------------------------------------------------------

    async def _run(self, stream: ActiveStream, request: OutboundRequest) -> None:
        outcome = StreamOutcome.FAILED
        channel: ReplyChannel | None = None
        try:
            stream.token.raise_if_cancelled()
            channel = await self._transport.open(request, auth_token=self._context.auth_token)
            await self._consume(stream, channel)
            outcome = StreamOutcome.COMPLETED
        except asyncio.CancelledError:
            if not stream.token.cancelled:
                raise
            current = asyncio.current_task()
            if current is not None:
                current.uncancel()
            outcome = StreamOutcome.CANCELLED
        except CancellationError:
            outcome = StreamOutcome.CANCELLED
        except (ExternalServiceError, ProtocolError, AuthenticationError) as exc:
            self._fail(stream, exc)
        except (ConflictError, NotFoundError) as exc:
            # placeholder was removed or stopped underneath the loop
            logger.warning("Stream for %s lost its placeholder: %s", stream.conversation, exc.detail)
            outcome = StreamOutcome.CANCELLED
        except Exception as exc:
            logger.exception("Unexpected stream failure for %s", stream.conversation)
            self._fail(stream, AppError(str(exc)))
        finally:
            if channel is not None:
                await channel.aclose()
            self._release(stream)

        await self._after(stream, outcome)

    async def _consume(self, stream: ActiveStream, channel: ReplyChannel) -> None:
        pid = stream.placeholder_id
        async with aclosing(decode_reply(channel)) as events:
            async for event in events:
                stream.token.raise_if_cancelled()
                match event:
                    case DeltaEvent(text=text):
                        self._store.append_delta(pid, text)
                    case FinalEvent(content=content):
                        self._store.finalize(pid, content)
                        return
                    case DoneEvent():
                        self._store.finalize(pid)
                        return
                    case ErrorEvent(message=message):
                        raise ExternalServiceError(f"Backend reported: {message}", status=502)
                    case _:
                        assert_never(event)

        stream.token.raise_if_cancelled()
        reply = self._store.get(pid)
        if not reply.content:
            raise ProtocolError("Stream closed before any content arrived")
        logger.warning("Stream for %s ended without a terminal frame", stream.conversation)
        self._store.finalize(pid)

    def _fail(self, stream: ActiveStream, exc: AppError) -> None:
        logger.warning("Stream for %s failed: %s", stream.conversation, exc.detail)
        reply = self._store.find(stream.placeholder_id)
        if isinstance(reply, AssistantMessage):
            if not reply.content:
                self._store.remove_message(reply.id)
            elif reply.is_streaming:
                self._store.finalize(reply.id)
        if self._store.find(stream.user_message_id) is None:
            return
        self._store.add_system_message(
            stream.conversation,
            describe_failure(exc),
            retryable=not isinstance(exc, AuthenticationError),
            retry_of=stream.user_message_id,
        )

    def _release(self, stream: ActiveStream) -> None:
        if self._streams.get(stream.conversation) is stream:
            del self._streams[stream.conversation]

    def _on_task_done(self, stream: ActiveStream, task: asyncio.Task[None]) -> None:
        self._release(stream)
        if task.cancelled():
            # cancelled before the read loop ever ran, or torn down with the loop
            self._store.cancel(stream.placeholder_id)
            if stream.token.cancelled and not self._context.closed:
                self._spawn(self._after(stream, StreamOutcome.CANCELLED))
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Stream task for %s crashed", stream.conversation, exc_info=exc)

    # -- completion --------------------------------------------------------

    async def _after(self, stream: ActiveStream, outcome: StreamOutcome) -> None:
        conversation = stream.conversation
        if outcome == StreamOutcome.COMPLETED:
            conversation = await self._persist(stream)
        await self._sync(conversation)
        logger.info("Stream for %s finished: %s", conversation, outcome)
        if self._on_finished is not None:
            self._on_finished(conversation, outcome)

        draft = self._drafts.on_stream_finished(conversation, outcome, self._store.active)
        if draft is None or self._context.closed:
            return
        try:
            await self._send(draft.conversation, draft.content, draft.attachments)
        except AppError:
            logger.exception("Queued draft for %s could not be sent", conversation)

    async def _persist(self, stream: ActiveStream) -> ConversationRef:
        conversation = stream.conversation
        user = self._store.find(stream.user_message_id)
        reply = self._store.find(stream.placeholder_id)
        if not isinstance(user, UserMessage) or not isinstance(reply, AssistantMessage):
            return conversation
        conversations = self._context.store
        try:
            if conversation.is_transient:
                created = await conversations.create_conversation(
                    preview(user.content, settings.TITLE_PREVIEW_LENGTH),
                )
                self._router.promote(conversation, created.id)
                conversation = stream.conversation = created.id
            if not conversations.accepts(conversation):
                logger.error("Refusing to persist %s on the %s track", conversation, conversations.track)
                return conversation
            await conversations.append_message_pair(
                conversation, user.content, reply.content, attachments=user.attachments,
            )
        except Exception:
            logger.exception("Persisting exchange for %s failed", conversation)
        return conversation

    async def _sync(self, conversation: ConversationRef) -> None:
        conversations = self._context.store
        if conversations.track != Track.EPHEMERAL or not conversations.accepts(conversation):
            return
        try:
            await conversations.sync_messages(conversation, self._store.messages(conversation))
        except Exception:
            logger.exception("Guest transcript sync for %s failed", conversation)

    def _spawn(self, work: Awaitable[None]) -> None:
        async def run() -> None:
            await work

        task = asyncio.create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- user-facing message operations -----------------------------------

    async def regenerate(self, message_id: UUID | None = None) -> SubmitResult:
        """Retry the request behind a failed or unwanted reply without duplicating the user message."""
        conversation = self._store.active
        if conversation is None:
            raise ValidationError("No active conversation")
        if conversation in self._streams:
            raise ConflictError("A reply is still streaming")

        user = self._originating_user_message(conversation, message_id)
        log = self._store.messages(conversation)
        position = log.index(user)
        stale = [
            m.id for m in log
            if isinstance(m, SystemMessage) and m.retry_of == user.id
        ]
        following = log[position + 1] if position + 1 < len(log) else None
        if isinstance(following, AssistantMessage):
            stale.append(following.id)
        for stale_id in stale:
            self._store.remove_message(stale_id)

        self._start(conversation, user)
        await self._sync(conversation)
        return SubmitResult.SENT

    def _originating_user_message(
        self, conversation: ConversationRef, message_id: UUID | None,
    ) -> UserMessage:
        log = self._store.messages(conversation)
        if message_id is None:
            for message in reversed(log):
                if isinstance(message, UserMessage):
                    return message
            raise NotFoundError("Nothing to regenerate")

        target = self._store.get(message_id)
        if target.conversation != conversation:
            raise ValidationError("Message belongs to another conversation")
        match target:
            case UserMessage():
                return target
            case SystemMessage(retry_of=UUID() as origin):
                found = self._store.get(origin)
                if isinstance(found, UserMessage):
                    return found
                raise NotFoundError("Original message is gone")
            case SystemMessage():
                raise ValidationError("This notice cannot be retried")
            case AssistantMessage():
                position = log.index(target)
                for message in reversed(log[:position]):
                    if isinstance(message, UserMessage):
                        return message
                raise NotFoundError("No user message precedes this reply")
            case _:
                assert_never(target)

    async def edit_message(self, message_id: UUID, content: str) -> None:
        if len(content) > settings.MESSAGE_MAX_LENGTH:
            raise ValidationError(f"Message exceeds {settings.MESSAGE_MAX_LENGTH} characters")
        edited = self._store.edit_message(message_id, content)
        await self._sync(edited.conversation)

    async def delete_message(self, message_id: UUID) -> None:
        message = self._store.get(message_id)
        stream = self._streams.get(message.conversation)
        if stream is not None and message.id in (stream.placeholder_id, stream.user_message_id):
            stream.token.cancel()
        self._store.remove_message(message_id)
        await self._sync(message.conversation)

    async def toggle_pin(self, message_id: UUID) -> bool:
        pinned = self._store.toggle_pin(message_id)
        await self._sync(pinned.conversation)
        return pinned.is_pinned

    def dismiss(self, message_id: UUID) -> None:
        message = self._store.get(message_id)
        if not isinstance(message, SystemMessage):
            raise ValidationError("Only notices can be dismissed")
        self._store.remove_message(message_id)
