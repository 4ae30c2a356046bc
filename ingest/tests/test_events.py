"""Tests for the progress event bridge."""

import logging

import pytest

from ingest.events import EVENT_NAMES, FINISH, PROGRESS, START, ProgressBridge, get_progress_bridge


def test_emit_reaches_subscribers(bridge):
    received = []
    bridge.subscribe(lambda event, payload: received.append((event, payload)))

    bridge.emit(START)
    bridge.emit(PROGRESS, {"current": 1})

    assert received == [(START, {}), (PROGRESS, {"current": 1})]


def test_subscribe_to_selected_events(bridge):
    received = []
    bridge.subscribe(lambda event, payload: received.append(event), events=[FINISH])

    bridge.emit(START)
    bridge.emit(FINISH, {"processed": 0})

    assert received == [FINISH]


def test_unsubscribe(bridge):
    received = []

    def listener(event, payload):
        received.append(event)

    bridge.subscribe(listener)
    assert bridge.listener_count() == len(EVENT_NAMES)
    bridge.unsubscribe(listener)
    bridge.emit(START)

    assert received == []
    assert bridge.listener_count() == 0


def test_subscription_context_manager(bridge):
    with bridge.subscription(lambda e, p: None, events=[START, FINISH]):
        assert bridge.listener_count(START) == 1
        assert bridge.listener_count(PROGRESS) == 0
    assert bridge.listener_count() == 0


def test_failing_listener_does_not_block_others(bridge, caplog):
    received = []

    def broken(event, payload):
        raise RuntimeError("consumer went away")

    bridge.subscribe(broken)
    bridge.subscribe(lambda event, payload: received.append(event))

    with caplog.at_level(logging.ERROR):
        bridge.emit(START)

    assert received == [START]
    assert "Progress listener failed" in caplog.text


def test_payload_is_copied(bridge):
    received = []
    bridge.subscribe(lambda event, payload: received.append(payload))
    payload = {"current": 1}

    bridge.emit(PROGRESS, payload)
    payload["current"] = 2

    assert received == [{"current": 1}]


def test_unknown_event_rejected(bridge):
    with pytest.raises(ValueError):
        bridge.emit("paused")
    with pytest.raises(ValueError):
        bridge.subscribe(lambda e, p: None, events=["paused"])


def test_process_wide_bridge_is_shared():
    assert get_progress_bridge() is get_progress_bridge()
    assert isinstance(get_progress_bridge(), ProgressBridge)
