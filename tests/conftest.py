"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable
from uuid import UUID

import pytest

from chat_stream.application.context import ChatContext
from chat_stream.application.dto.chat_request import OutboundRequest
from chat_stream.application.dto.principal import Principal
from chat_stream.application.exceptions import NotFoundError
from chat_stream.domain.entities.conversation import DEFAULT_TITLE, Conversation
from chat_stream.domain.value_objects.enums import Track
from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.infrastructure.kv.ephemeral_store import EphemeralConversationStore
from chat_stream.infrastructure.kv.memory import InMemoryKeyValueStore

# -- time ------------------------------------------------------------------


class FakeClock:
    """Wall clock that advances one second per read; monotonic clock set by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        self.mono = 0.0

    def now(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now

    def monotonic(self) -> float:
        return self.mono


@dataclass
class _Timer:
    due: float
    seq: int
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic Scheduler: nothing runs until ``advance``/``run_soon`` is called."""

    def __init__(self) -> None:
        self.time = 0.0
        self._timers: list[_Timer] = []
        self._seq = 0

    def call_later(self, delay: float, callback: Callable[[], None]) -> _Timer:
        self._seq += 1
        timer = _Timer(self.time + delay, self._seq, callback)
        self._timers.append(timer)
        return timer

    def call_soon(self, callback: Callable[[], None]) -> _Timer:
        return self.call_later(0.0, callback)

    @property
    def pending(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)

    def run_soon(self) -> None:
        self.advance(0.0)

    def advance(self, seconds: float) -> None:
        deadline = self.time + seconds
        while True:
            due = sorted(
                (t for t in self._timers if not t.cancelled and t.due <= deadline),
                key=lambda t: (t.due, t.seq),
            )
            if not due:
                break
            timer = due[0]
            self._timers.remove(timer)
            self.time = max(self.time, timer.due)
            timer.callback()
        self.time = deadline
        self._timers = [t for t in self._timers if not t.cancelled]

    def ticks_until_idle(self, tick: float, limit: int = 10_000) -> int:
        count = 0
        while self.pending and count < limit:
            self.advance(tick)
            count += 1
        return count


# -- UI ports ----------------------------------------------------------------


class FakeViewport:
    def __init__(self, *, scroll_height: float = 1000.0, client_height: float = 500.0) -> None:
        self.scroll_height = scroll_height
        self.client_height = client_height
        self.scroll_top = scroll_height - client_height
        self.offsets: dict[UUID, float] = {}
        self.scrolls: list[float] = []

    def scroll_to(self, top: float) -> None:
        self.scroll_top = top
        self.scrolls.append(top)

    def scroll_to_bottom(self) -> None:
        self.scroll_to(max(0.0, self.scroll_height - self.client_height))

    def offset_of(self, message_id: UUID) -> float | None:
        return self.offsets.get(message_id)

    def grow(self, amount: float) -> None:
        self.scroll_height += amount

    def user_scroll(self, top: float) -> None:
        self.scroll_top = top


class FakeNavigator:
    def __init__(self, initial: ConversationRef | None = None) -> None:
        self._current = initial
        self.history: list[tuple[str, ConversationRef | None]] = []

    def current(self) -> ConversationRef | None:
        return self._current

    def push(self, conversation: ConversationRef) -> None:
        self._current = conversation
        self.history.append(("push", conversation))

    def replace(self, conversation: ConversationRef | None) -> None:
        self._current = conversation
        self.history.append(("replace", conversation))


class YieldingKeyValueStore(InMemoryKeyValueStore):
    """Gives the loop a turn on every call, like a network round trip."""

    async def get(self, key: str) -> str | None:
        await asyncio.sleep(0)
        return await super().get(key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.sleep(0)
        await super().set(key, value)

    async def delete(self, key: str) -> None:
        await asyncio.sleep(0)
        await super().delete(key)


# -- transport ---------------------------------------------------------------


def sse_delta(text: str) -> bytes:
    frame = {"choices": [{"delta": {"content": text}}]}
    return f"data: {json.dumps(frame)}\n\n".encode()


def sse_final(text: str) -> bytes:
    frame = {"choices": [{"message": {"role": "assistant", "content": text}}]}
    return f"data: {json.dumps(frame)}\n\n".encode()


def sse_error(message: str) -> bytes:
    return f"data: {json.dumps({'error': message})}\n\n".encode()


SSE_DONE = b"data: [DONE]\n\n"


class FakeChannel:
    """ReplyChannel over a fixed chunk list; ``gate_after`` pauses before that chunk index."""

    def __init__(
        self,
        chunks: list[bytes],
        *,
        event_stream: bool = True,
        gate_after: int | None = None,
    ) -> None:
        self._chunks = chunks
        self._event_stream = event_stream
        self.gate_after = gate_after
        self.gate = asyncio.Event()
        self.reached_gate = asyncio.Event()
        self.closed = False
        self.delivered = 0

    @property
    def is_event_stream(self) -> bool:
        return self._event_stream

    async def chunks(self) -> AsyncIterator[bytes]:
        for i, chunk in enumerate(self._chunks):
            if self.gate_after is not None and i == self.gate_after:
                self.reached_gate.set()
                await self.gate.wait()
            self.delivered += 1
            yield chunk
            await asyncio.sleep(0)

    async def aclose(self) -> None:
        self.closed = True


class FakeTransport:
    """Hands out queued channels (or raises queued errors) in order."""

    def __init__(self, *replies: FakeChannel | Exception) -> None:
        self.replies: list[FakeChannel | Exception] = list(replies)
        self.requests: list[OutboundRequest] = []
        self.tokens: list[str | None] = []

    def queue(self, reply: FakeChannel | Exception) -> None:
        self.replies.append(reply)

    async def open(self, request: OutboundRequest, *, auth_token: str | None = None) -> FakeChannel:
        self.requests.append(request)
        self.tokens.append(auth_token)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


# -- durable store -----------------------------------------------------------


@dataclass
class FakeDurableStore:
    """In-memory ConversationStore for the durable track."""

    conversations: dict[ConversationRef, Conversation] = field(default_factory=dict)
    pairs: list[tuple[ConversationRef, str, str]] = field(default_factory=list)
    created_titles: list[str] = field(default_factory=list)
    archived: list[ConversationRef] = field(default_factory=list)
    fail_append: bool = False
    clock: FakeClock = field(default_factory=FakeClock)

    @property
    def track(self) -> Track:
        return Track.DURABLE

    def accepts(self, conversation: ConversationRef) -> bool:
        return conversation.is_durable

    async def list_conversations(self, *, include_archived: bool = False):
        items = [c for c in self.conversations.values() if include_archived or not c.archived]
        return sorted(items, key=lambda c: c.updated_at, reverse=True)

    async def get(self, conversation: ConversationRef):
        return self.conversations.get(conversation)

    async def create_conversation(self, title: str = DEFAULT_TITLE) -> Conversation:
        now = self.clock.now()
        conv = Conversation(
            id=ConversationRef.durable(uuid.uuid4()),
            title=title,
            message_count=0,
            last_preview="",
            created_at=now,
            updated_at=now,
        )
        self.conversations[conv.id] = conv
        self.created_titles.append(title)
        return conv

    async def load_messages(self, conversation: ConversationRef) -> list:
        if conversation not in self.conversations:
            raise NotFoundError(f"{conversation} not found")
        return []

    async def append_message_pair(self, conversation, user_text, assistant_text, *, attachments=()):
        if self.fail_append:
            raise RuntimeError("database unavailable")
        self.pairs.append((conversation, user_text, assistant_text))

    async def sync_messages(self, conversation, messages) -> None:
        return None

    async def rename(self, conversation, title) -> None:
        pass

    async def archive(self, conversation, archived=True) -> None:
        self.archived.append(conversation)

    async def delete(self, conversation) -> None:
        self.conversations.pop(conversation, None)


# -- fixtures ----------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def guest_context(kv: InMemoryKeyValueStore, clock: FakeClock) -> ChatContext:
    store = EphemeralConversationStore(kv, "device-1", now=clock.now, prefix="test")
    return ChatContext(device_id="device-1", store=store)


@pytest.fixture
def durable_store(clock: FakeClock) -> FakeDurableStore:
    return FakeDurableStore(clock=clock)


@pytest.fixture
def user_context(durable_store: FakeDurableStore) -> ChatContext:
    principal = Principal(subject_id="42", email="u@example.com", token="session-token")
    return ChatContext(device_id="device-1", store=durable_store, principal=principal)
