from __future__ import annotations

import pytest

from chat_stream.application.exceptions import ValidationError
from chat_stream.domain.value_objects.enums import ConversationFilter
from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.services.conversation_router import ConversationRouter
from chat_stream.services.draft_queue import DraftQueueManager
from chat_stream.services.message_store import MessageStore
from tests.conftest import FakeNavigator


def _router(context, clock, *, navigator=None, archive_on_new=True):
    store = MessageStore(clock)
    drafts = DraftQueueManager(context, clock=clock)
    cancelled: list[ConversationRef] = []
    router = ConversationRouter(
        context,
        store,
        drafts,
        navigator or FakeNavigator(),
        cancel_stream=cancelled.append,
        archive_on_new=archive_on_new,
    )
    return router, store, drafts, cancelled


@pytest.mark.asyncio
async def test_guest_session_creates_a_conversation(guest_context, clock):
    router, store, _, _ = _router(guest_context, clock)

    ref = await router.resolve_active()

    assert ref.is_guest
    assert store.active == ref
    assert await router.resolve_active() == ref
    assert len(await guest_context.store.list_conversations()) == 1


@pytest.mark.asyncio
async def test_durable_session_starts_transient(user_context, clock):
    router, store, _, _ = _router(user_context, clock)

    ref = await router.resolve_active()

    assert ref.is_transient
    assert store.active == ref


@pytest.mark.asyncio
async def test_resolve_prefers_latest_existing_conversation(guest_context, clock):
    older = await guest_context.store.create_conversation("older")
    newer = await guest_context.store.create_conversation("newer")
    router, _, _, _ = _router(guest_context, clock)

    assert await router.resolve_active() == newer.id
    assert older.id != newer.id


@pytest.mark.asyncio
async def test_navigation_ref_from_other_track_is_ignored(guest_context, clock):
    durable = ConversationRef.durable("3d1c61b7-31a5-4a53-8f3b-7a3ec7d7d0a1")
    navigator = FakeNavigator(durable)
    router, _, _, _ = _router(guest_context, clock, navigator=navigator)

    ref = await router.resolve_active()

    assert ref.is_guest
    assert navigator.current() == ref


@pytest.mark.asyncio
async def test_switch_isolates_logs_and_cancels_stream(guest_context, clock):
    router, store, drafts, cancelled = _router(guest_context, clock)
    first = await router.resolve_active()
    store.add_user_message(first, "in first")
    await guest_context.store.sync_messages(first, store.messages(first))
    drafts.queue(first, "pending")
    second = (await guest_context.store.create_conversation("second")).id

    await router.switch_to(second)

    assert store.active == second
    assert store.messages() == ()
    assert cancelled == [first]
    assert drafts.get(first) is None

    await router.switch_to(first)
    assert [m.content for m in store.messages()] == ["in first"]


@pytest.mark.asyncio
async def test_switch_to_durable_ref_on_guest_track_rejected(guest_context, clock):
    router, _, _, _ = _router(guest_context, clock)
    await router.resolve_active()

    with pytest.raises(ValidationError):
        await router.switch_to(ConversationRef.durable("3d1c61b7-31a5-4a53-8f3b-7a3ec7d7d0a1"))


@pytest.mark.asyncio
async def test_new_conversation_archives_previous(guest_context, clock):
    router, store, _, cancelled = _router(guest_context, clock)
    first = await router.resolve_active()

    fresh = await router.new_conversation()
    await router.drain()

    assert fresh != first
    assert store.active == fresh
    assert store.messages() == ()
    assert cancelled == [first]
    archived = await guest_context.store.list_conversations(include_archived=True)
    assert {c.id: c.archived for c in archived}[first] is True


@pytest.mark.asyncio
async def test_new_conversation_without_archiving(guest_context, clock):
    router, _, _, _ = _router(guest_context, clock, archive_on_new=False)
    first = await router.resolve_active()

    await router.new_conversation()
    await router.drain()

    active = await guest_context.store.list_conversations()
    assert first in {c.id for c in active}


@pytest.mark.asyncio
async def test_promote_rekeys_log_draft_and_navigation(user_context, clock):
    navigator = FakeNavigator()
    router, store, drafts, _ = _router(user_context, clock, navigator=navigator)
    temp = await router.resolve_active()
    store.add_user_message(temp, "q")
    drafts.queue(temp, "next")
    durable = ConversationRef.durable("5a0f0b7e-9d0e-4c61-8f44-1e54d1f8d5b2")

    router.promote(temp, durable)

    assert store.active == durable
    assert [m.content for m in store.messages(durable)] == ["q"]
    assert drafts.get(durable).content == "next"
    assert navigator.current() == durable


@pytest.mark.asyncio
async def test_delete_active_starts_new_conversation(guest_context, clock):
    router, store, _, _ = _router(guest_context, clock, archive_on_new=False)
    first = await router.resolve_active()

    await router.delete(first)

    assert store.active is not None and store.active != first
    assert first not in {c.id for c in await guest_context.store.list_conversations()}


@pytest.mark.asyncio
async def test_list_filter_and_search(guest_context, clock):
    router, _, _, _ = _router(guest_context, clock)
    travel = await guest_context.store.create_conversation("Trip to Lisbon")
    stocks = await guest_context.store.create_conversation("Stock tips")
    await guest_context.store.archive(stocks.id)

    active = await router.list_conversations()
    archived = await router.list_conversations(ConversationFilter.ARCHIVED)
    found = await router.list_conversations(ConversationFilter.ALL, search="lisbon")

    assert [c.id for c in active] == [travel.id]
    assert [c.id for c in archived] == [stocks.id]
    assert [c.id for c in found] == [travel.id]
