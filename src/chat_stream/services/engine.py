"""Per-session assembly of the streaming engine components."""
from __future__ import annotations

import logging
from typing import Callable

from chat_stream.application.context import ChatContext
from chat_stream.application.ports.clock import Clock, SystemClock
from chat_stream.application.ports.scheduler import AsyncioScheduler, Scheduler
from chat_stream.application.ports.transport import ChatTransport
from chat_stream.application.ports.ui import Navigator, Viewport
from chat_stream.domain.value_objects.enums import InputKind
from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.services.attachment_tray import AttachmentTray, TrayListener
from chat_stream.services.conversation_router import ConversationRouter
from chat_stream.services.draft_queue import DraftQueueManager
from chat_stream.services.message_store import MessageStore, StoreListener
from chat_stream.services.scroll_controller import ScrollController
from chat_stream.services.stream_orchestrator import FinishedCallback, StreamOrchestrator, SubmitResult
from chat_stream.services.typewriter import RenderCallback, TypewriterRenderer

logger = logging.getLogger(__name__)


class ChatEngine:
    """Wires store, drafts, router, orchestrator, typewriter and scroll for one session.

    Listener order matters: the typewriter renders a mutation before the
    scroll controller measures the result.
    """

    def __init__(
        self,
        context: ChatContext,
        transport: ChatTransport,
        *,
        viewport: Viewport,
        navigator: Navigator,
        render: RenderCallback,
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
        input_kind: InputKind = InputKind.POINTER,
        on_store_event: StoreListener | None = None,
        on_scroll_change: Callable[[ScrollController], None] | None = None,
        on_finished: FinishedCallback | None = None,
        on_attachment_change: TrayListener | None = None,
        typewriter_options: dict[str, int | float | None] | None = None,
    ) -> None:
        self.context = context
        clock = clock or SystemClock()
        scheduler = scheduler or AsyncioScheduler()

        self.store = MessageStore(clock)
        if on_store_event is not None:
            self._unsubscribe_events = self.store.subscribe(on_store_event)
        else:
            self._unsubscribe_events = None
        self.renderer = TypewriterRenderer(self.store, scheduler, render, **(typewriter_options or {}))
        self.scroll = ScrollController(
            self.store,
            viewport,
            scheduler,
            clock=clock,
            input_kind=input_kind,
            on_change=on_scroll_change,
        )
        self.drafts = DraftQueueManager(context, clock=clock)
        self.router = ConversationRouter(context, self.store, self.drafts, navigator)
        self.orchestrator = StreamOrchestrator(
            context,
            self.store,
            self.router,
            self.drafts,
            transport,
            clock=clock,
            on_finished=on_finished,
        )
        self.attachments = AttachmentTray(on_attachment_change)

    async def start(self) -> ConversationRef:
        ref = await self.router.resolve_active()
        logger.info(
            "Chat engine started for %s on the %s track (conversation=%s)",
            self.context.user_id, self.context.track, ref,
        )
        return ref

    async def send(self, text: str) -> SubmitResult:
        """Submit the composer: text plus every uploaded attachment, which then leave the tray."""
        staged = self.attachments.ready()
        result = await self.orchestrator.submit(text, staged)
        self.attachments.detach(staged)
        return result

    async def aclose(self) -> None:
        self.context.close()
        await self.orchestrator.aclose()
        await self.router.drain()
        self.renderer.close()
        self.scroll.close()
        if self._unsubscribe_events is not None:
            self._unsubscribe_events()
