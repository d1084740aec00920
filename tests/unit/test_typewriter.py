from __future__ import annotations

import math

import pytest

from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.services.message_store import MessageStore
from chat_stream.services.typewriter import Typewriter, TypewriterRenderer, TypewriterState
from tests.conftest import FakeClock, ManualScheduler

TICK = 0.03


def _typewriter(scheduler, frames, **kwargs) -> Typewriter:
    options = {
        "tick_seconds": TICK,
        "chars_per_tick": 2,
        "max_lag_ticks": 5,
        "instant_threshold": 10_000,
    }
    options.update(kwargs)
    return Typewriter(scheduler, lambda text, revealing: frames.append((text, revealing)), **options)


def test_reveals_progressively(scheduler: ManualScheduler):
    frames = []
    tw = _typewriter(scheduler, frames)

    tw.update("abcdef")
    assert tw.displayed == ""
    assert tw.state == TypewriterState.REVEALING

    scheduler.advance(TICK)
    assert tw.displayed == "ab"
    scheduler.advance(TICK)
    assert tw.displayed == "abcd"
    scheduler.advance(TICK)
    assert tw.displayed == "abcdef"
    assert tw.state == TypewriterState.IDLE
    assert frames[-1] == ("abcdef", False)


def test_displayed_is_always_prefix_of_target(scheduler: ManualScheduler):
    frames = []
    tw = _typewriter(scheduler, frames)
    target = ""
    for word in ["Lorem ", "ipsum ", "dolor ", "sit ", "amet"]:
        target += word
        tw.update(target)
        scheduler.advance(TICK)
        assert target.startswith(tw.displayed)

    lengths = [len(text) for text, _ in frames]
    assert lengths == sorted(lengths)


def test_large_backlog_drains_within_max_lag_ticks(scheduler: ManualScheduler):
    frames = []
    tw = _typewriter(scheduler, frames, chars_per_tick=1, max_lag_ticks=5)

    tw.update("x" * 1000)
    ticks = scheduler.ticks_until_idle(TICK)

    assert tw.displayed == "x" * 1000
    assert ticks <= 5


def test_step_is_at_least_backlog_over_max_lag(scheduler: ManualScheduler):
    frames = []
    tw = _typewriter(scheduler, frames, chars_per_tick=1, max_lag_ticks=4)

    tw.update("y" * 100)
    scheduler.advance(TICK)

    assert len(tw.displayed) == math.ceil(100 / 4)


def test_finished_target_shows_instantly(scheduler: ManualScheduler):
    frames = []
    tw = _typewriter(scheduler, frames)

    tw.update("partial")
    tw.update("partial and the rest", finished=True)

    assert tw.displayed == "partial and the rest"
    assert tw.state == TypewriterState.DONE
    assert scheduler.pending == 0


def test_over_threshold_shows_instantly(scheduler: ManualScheduler):
    frames = []
    tw = _typewriter(scheduler, frames, instant_threshold=20)

    tw.update("z" * 21)

    assert tw.displayed == "z" * 21
    assert frames == [("z" * 21, False)]


def test_non_extending_target_resets_display(scheduler: ManualScheduler):
    frames = []
    tw = _typewriter(scheduler, frames)
    tw.update("hello")
    scheduler.advance(TICK)

    tw.update("goodbye")

    assert tw.displayed == "goodbye"


def test_reveal_all_makes_later_updates_instant(scheduler: ManualScheduler):
    frames = []
    tw = _typewriter(scheduler, frames)
    tw.update("first chunk")

    tw.reveal_all()
    tw.update("first chunk, second chunk")

    assert tw.displayed == "first chunk, second chunk"


def test_cancel_stops_ticks(scheduler: ManualScheduler):
    frames = []
    tw = _typewriter(scheduler, frames)
    tw.update("abcdefgh")
    scheduler.advance(TICK)

    tw.cancel()
    shown = tw.displayed
    scheduler.advance(TICK * 10)
    tw.update("abcdefgh more")

    assert tw.displayed == shown
    assert tw.cancelled


@pytest.fixture
def renderer_setup(scheduler: ManualScheduler):
    store = MessageStore(FakeClock())
    frames: list[tuple[object, str, bool]] = []
    renderer = TypewriterRenderer(
        store,
        scheduler,
        lambda mid, text, revealing: frames.append((mid, text, revealing)),
        tick_seconds=TICK,
        chars_per_tick=2,
        max_lag_ticks=5,
    )
    conv = ConversationRef.guest()
    store.activate(conv, [])
    frames.clear()
    return store, renderer, frames, conv


def test_renderer_user_message_instant(renderer_setup):
    store, _, frames, conv = renderer_setup

    user = store.add_user_message(conv, "Hello there")

    assert frames == [(user.id, "Hello there", False)]


def test_renderer_streams_then_finishes(renderer_setup, scheduler: ManualScheduler):
    store, renderer, frames, conv = renderer_setup
    pid = store.create_placeholder(conv)
    store.append_delta(pid, "abcdef")
    scheduler.advance(TICK)

    assert renderer.typewriter(pid) is not None
    assert frames[-1] == (pid, "ab", True)

    store.finalize(pid)

    assert frames[-1] == (pid, "abcdef", False)
    assert renderer.typewriter(pid) is None


def test_renderer_ignores_inactive_conversation(renderer_setup):
    store, _, frames, _conv = renderer_setup
    other = ConversationRef.guest()

    pid = store.create_placeholder(other)
    store.append_delta(pid, "background")

    assert frames == []


def test_renderer_log_swap_renders_history_instantly(renderer_setup, scheduler: ManualScheduler):
    store, renderer, frames, conv = renderer_setup
    pid = store.create_placeholder(conv)
    store.append_delta(pid, "in flight")
    other = ConversationRef.guest()

    store.activate(other, [])
    store.activate(conv)

    assert renderer.typewriter(pid) is None
    assert frames[-1] == (pid, "in flight", False)
    assert scheduler.pending == 0
