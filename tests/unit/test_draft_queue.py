from __future__ import annotations

from chat_stream.domain.value_objects.enums import StreamOutcome
from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.services.draft_queue import DraftQueueManager


def test_queue_overwrites_previous_draft(guest_context, clock):
    drafts = DraftQueueManager(guest_context, clock=clock)
    conv = ConversationRef.guest()

    drafts.queue(conv, "first")
    drafts.queue(conv, "second")

    assert drafts.get(conv).content == "second"
    assert len(guest_context.drafts) == 1


def test_completed_stream_releases_draft_once(guest_context, clock):
    drafts = DraftQueueManager(guest_context, clock=clock)
    conv = ConversationRef.guest()
    drafts.queue(conv, "follow-up")

    released = drafts.on_stream_finished(conv, StreamOutcome.COMPLETED, conv)

    assert released is not None and released.content == "follow-up"
    assert drafts.on_stream_finished(conv, StreamOutcome.COMPLETED, conv) is None


def test_failed_stream_keeps_draft(guest_context, clock):
    drafts = DraftQueueManager(guest_context, clock=clock)
    conv = ConversationRef.guest()
    drafts.queue(conv, "wait")

    assert drafts.on_stream_finished(conv, StreamOutcome.FAILED, conv) is None
    assert drafts.get(conv) is not None


def test_cancel_release_is_configurable(guest_context, clock):
    conv = ConversationRef.guest()
    keep = DraftQueueManager(guest_context, clock=clock, release_on_cancel=False)
    keep.queue(conv, "held")
    assert keep.on_stream_finished(conv, StreamOutcome.CANCELLED, conv) is None

    release = DraftQueueManager(guest_context, clock=clock, release_on_cancel=True)
    assert release.on_stream_finished(conv, StreamOutcome.CANCELLED, conv).content == "held"


def test_inactive_conversation_keeps_draft(guest_context, clock):
    drafts = DraftQueueManager(guest_context, clock=clock)
    conv, other = ConversationRef.guest(), ConversationRef.guest()
    drafts.queue(conv, "later")

    assert drafts.on_stream_finished(conv, StreamOutcome.COMPLETED, other) is None
    assert drafts.get(conv) is not None


def test_rekey_follows_promotion(guest_context, clock):
    drafts = DraftQueueManager(guest_context, clock=clock)
    temp = ConversationRef.transient()
    durable = ConversationRef.durable("0b9f6f5e-4b8a-4a4e-9d8e-2f3c6a1b7c90")
    drafts.queue(temp, "queued before promotion")

    drafts.rekey(temp, durable)

    assert drafts.get(temp) is None
    moved = drafts.get(durable)
    assert moved.conversation == durable
    assert moved.content == "queued before promotion"


def test_discard(guest_context, clock):
    drafts = DraftQueueManager(guest_context, clock=clock)
    conv = ConversationRef.guest()
    drafts.queue(conv, "gone")

    assert drafts.discard(conv).content == "gone"
    assert drafts.get(conv) is None
