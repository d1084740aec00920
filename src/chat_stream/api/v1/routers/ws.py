from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any
from uuid import UUID

import pydantic
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from chat_stream.api.deps import get_transport, open_chat_context
from chat_stream.application.context import ChatContext
from chat_stream.application.exceptions import (
    AppError,
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from chat_stream.config import settings
from chat_stream.domain.events.store import (
    LogSwapped,
    MessageAdded,
    MessageFinalized,
    MessageRemoved,
    MessageUpdated,
    StoreEvent,
)
from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.value_objects.enums import StreamOutcome
from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.infrastructure.ws.protocol import (
    ArchiveData,
    AttachmentAddData,
    AttachmentFailedData,
    AttachmentRefData,
    AttachmentUploadedData,
    ConversationData,
    EditData,
    LayoutData,
    ListData,
    MessageRefData,
    OptionalMessageRefData,
    RenameData,
    ScrollData,
    SendData,
    WsInbound,
    attachment_payload,
    conversation_payload,
    message_payload,
)
from chat_stream.infrastructure.ws.session import FrameSink, RemoteNavigator, RemoteViewport
from chat_stream.services.engine import ChatEngine
from chat_stream.services.scroll_controller import ScrollController

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])


def _error_code(exc: AppError) -> str:
    match exc:
        case NotFoundError():
            return "not_found"
        case ValidationError():
            return "invalid_data"
        case ConflictError():
            return "conflict"
        case AuthenticationError():
            return "unauthenticated"
        case _:
            return "failed"


def _parse_ref(raw: str) -> ConversationRef:
    try:
        return ConversationRef.parse(raw)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


class ChatSocketSession:
    """Translates inbound frames into engine calls and engine notifications into outbound frames."""

    def __init__(self, websocket: WebSocket, context: ChatContext) -> None:
        self.sink = FrameSink()
        self.viewport = RemoteViewport(self.sink)
        self.navigator = RemoteNavigator(self.sink)
        self.engine = ChatEngine(
            context,
            get_transport(websocket),
            viewport=self.viewport,
            navigator=self.navigator,
            render=self._on_render,
            on_store_event=self._on_store_event,
            on_scroll_change=self._on_scroll_change,
            on_finished=self._on_finished,
            on_attachment_change=self._on_attachment_change,
        )

    # -- engine → client ---------------------------------------------------

    def _on_store_event(self, event: StoreEvent) -> None:
        match event:
            case MessageAdded(message=message):
                self.sink.emit("message.added", message_payload(message))
            case MessageUpdated(message=message, delta=delta):
                self.sink.emit("message.updated", {**message_payload(message), "delta": delta})
            case MessageFinalized(message=message, cancelled=cancelled):
                self.sink.emit("message.finalized", {**message_payload(message), "cancelled": cancelled})
            case MessageRemoved(conversation=conversation, message_id=message_id):
                self.sink.emit(
                    "message.removed",
                    {"conversation_id": str(conversation), "id": str(message_id)},
                )
            case LogSwapped(current=current):
                self.viewport.forget()
                self.sink.emit(
                    "conversation.loaded",
                    {
                        "conversation_id": str(current) if current else None,
                        "messages": [message_payload(m) for m in self.engine.store.messages(current)]
                        if current else [],
                    },
                )

    def _on_render(self, message_id: UUID, text: str, revealing: bool) -> None:
        self.sink.emit(
            "render.text", {"message_id": str(message_id), "text": text, "revealing": revealing},
        )

    def _on_scroll_change(self, scroll: ScrollController) -> None:
        self.sink.emit(
            "scroll.state",
            {
                "mode": scroll.mode,
                "new_message_count": scroll.new_message_count,
                "show_jump_affordance": scroll.show_jump_affordance,
                "is_near_bottom": scroll.state.is_near_bottom,
                "is_user_scrolling": scroll.state.is_user_scrolling,
                "is_streaming": scroll.state.is_streaming,
            },
        )

    def _on_finished(self, conversation: ConversationRef, outcome: StreamOutcome) -> None:
        self.sink.emit(
            "stream.finished", {"conversation_id": str(conversation), "outcome": outcome},
        )

    def _on_attachment_change(self, attachment: Attachment) -> None:
        self.sink.emit("attachment.updated", attachment_payload(attachment))

    # -- client → engine ---------------------------------------------------

    async def dispatch(self, msg: WsInbound) -> None:
        try:
            await self._handle(msg.type, msg.data)
        except pydantic.ValidationError as exc:
            self.sink.emit(
                "error", {"code": "invalid_data", "type": msg.type, "detail": str(exc)},
            )
        except AppError as exc:
            self.sink.emit(
                "error", {"code": _error_code(exc), "type": msg.type, "detail": exc.detail},
            )

    async def _handle(self, msg_type: str, data: dict[str, Any]) -> None:
        engine = self.engine
        orchestrator = engine.orchestrator

        if msg_type == "ping":
            self.sink.emit("pong")

        elif msg_type == "message.send":
            payload = SendData.model_validate(data)
            result = await engine.send(payload.content)
            self.sink.emit("message.submitted", {"result": result})

        elif msg_type == "attachment.add":
            payload = AttachmentAddData.model_validate(data)
            engine.attachments.add(payload.name, payload.type, payload.size)

        elif msg_type == "attachment.uploaded":
            payload = AttachmentUploadedData.model_validate(data)
            engine.attachments.mark_uploaded(payload.handle, payload.url)

        elif msg_type == "attachment.failed":
            payload = AttachmentFailedData.model_validate(data)
            engine.attachments.mark_failed(payload.handle, payload.error)

        elif msg_type == "attachment.retry":
            engine.attachments.retry(AttachmentRefData.model_validate(data).handle)

        elif msg_type == "attachment.remove":
            handle = AttachmentRefData.model_validate(data).handle
            engine.attachments.remove(handle)
            self.sink.emit("attachment.removed", {"handle": handle})

        elif msg_type == "stream.stop":
            orchestrator.cancel()

        elif msg_type == "message.regenerate":
            payload = OptionalMessageRefData.model_validate(data)
            await orchestrator.regenerate(payload.message_id)

        elif msg_type == "message.edit":
            payload = EditData.model_validate(data)
            await orchestrator.edit_message(payload.message_id, payload.content)

        elif msg_type == "message.delete":
            await orchestrator.delete_message(MessageRefData.model_validate(data).message_id)

        elif msg_type == "message.pin":
            await orchestrator.toggle_pin(MessageRefData.model_validate(data).message_id)

        elif msg_type == "system.dismiss":
            orchestrator.dismiss(MessageRefData.model_validate(data).message_id)

        elif msg_type == "conversation.select":
            ref = _parse_ref(ConversationData.model_validate(data).conversation_id)
            await engine.router.switch_to(ref)

        elif msg_type == "conversation.new":
            await engine.router.new_conversation()

        elif msg_type == "conversation.list":
            payload = ListData.model_validate(data)
            items = await engine.router.list_conversations(payload.filter, payload.search)
            self.sink.emit(
                "conversation.list", {"items": [conversation_payload(c) for c in items]},
            )

        elif msg_type == "conversation.rename":
            payload = RenameData.model_validate(data)
            await engine.router.rename(_parse_ref(payload.conversation_id), payload.title)

        elif msg_type == "conversation.archive":
            payload = ArchiveData.model_validate(data)
            await engine.router.archive(_parse_ref(payload.conversation_id), payload.archived)

        elif msg_type == "conversation.delete":
            ref = _parse_ref(ConversationData.model_validate(data).conversation_id)
            await engine.router.delete(ref)

        elif msg_type == "viewport.scroll":
            payload = ScrollData.model_validate(data)
            self.viewport.apply_scroll(payload)
            if payload.input_kind is not None:
                engine.scroll.set_input_kind(payload.input_kind)
            engine.scroll.on_scroll(payload.user_initiated)

        elif msg_type == "viewport.layout":
            self.viewport.apply_layout(LayoutData.model_validate(data))
            engine.scroll.on_layout()

        elif msg_type == "scroll.jump_latest":
            engine.scroll.jump_to_latest()

        else:
            self.sink.emit("error", {"code": "unknown_type", "type": msg_type})

    async def aclose(self) -> None:
        await self.engine.aclose()
        self.sink.close()


@router.websocket("/ws/chat")
async def ws_chat(
    websocket: WebSocket,
    token: str | None = Query(None),
    device_id: str | None = Query(None, max_length=128),
) -> None:
    device = device_id or uuid.uuid4().hex
    try:
        context = await open_chat_context(
            token, device, redis=getattr(websocket.app.state, "redis", None),
        )
    except AuthenticationError:
        logger.debug("WS auth failed", exc_info=True)
        await websocket.close(code=4001, reason="Authentication failed")
        return

    await websocket.accept()
    session = ChatSocketSession(websocket, context)
    writer_task = asyncio.create_task(session.sink.pump(websocket), name=f"ws-writer-{device}")
    heartbeat_task = asyncio.create_task(_heartbeat(session.sink), name=f"ws-heartbeat-{device}")
    try:
        await session.engine.start()
        await _read_loop(websocket, session)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WS error for %s", context.user_id)
    finally:
        heartbeat_task.cancel()
        await session.aclose()
        await asyncio.gather(writer_task, return_exceptions=True)


async def _heartbeat(sink: FrameSink) -> None:
    interval = settings.WS_HEARTBEAT_SECONDS
    try:
        while True:
            await asyncio.sleep(interval)
            sink.emit("pong")
    except asyncio.CancelledError:
        pass


async def _read_loop(ws: WebSocket, session: ChatSocketSession) -> None:
    while True:
        raw = await ws.receive_text()
        try:
            msg = WsInbound.model_validate_json(raw)
        except pydantic.ValidationError:
            session.sink.emit("error", {"code": "invalid_payload"})
            continue
        await session.dispatch(msg)
