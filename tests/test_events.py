import json
import threading

import pytest

from markdrop.api.routes import iter_event_stream
from markdrop.services.events import ITEM_FAILED, ITEM_SENT, EventNotifier


@pytest.fixture
def notifier(app):
    notifier = EventNotifier(app.logger)
    yield notifier
    notifier.shutdown()


def test_subscribers_receive_events_in_order(notifier):
    subscription = notifier.subscribe()

    notifier.item_failed(3)
    notifier.item_sent(3)

    first = subscription.get(timeout=1)
    second = subscription.get(timeout=1)
    assert (first.kind, first.item_id) == (ITEM_FAILED, 3)
    assert (second.kind, second.item_id) == (ITEM_SENT, 3)
    assert subscription.get(timeout=0.01) is None


def test_closed_subscription_stops_receiving(notifier):
    with notifier.subscribe() as subscription:
        pass

    notifier.item_sent(1)

    assert subscription.closed is True
    assert subscription.get(timeout=0.01) is None


def test_full_subscriber_does_not_block_publisher(notifier, caplog):
    slow = notifier.subscribe(maxsize=1)
    fast = notifier.subscribe()

    notifier.item_sent(1)
    notifier.item_sent(2)

    assert slow.get(timeout=0.1).item_id == 1
    assert slow.get(timeout=0.01) is None
    assert [fast.get(timeout=0.1).item_id, fast.get(timeout=0.1).item_id] == [1, 2]
    assert "subscriber is full" in caplog.text


def test_listener_callbacks_run_off_the_publishing_thread(notifier):
    received = []
    done = threading.Event()
    publisher = threading.current_thread()

    def _listener(event):
        received.append((event.kind, event.item_id, threading.current_thread()))
        done.set()

    notifier.add_listener(_listener)
    notifier.item_sent(7)

    assert done.wait(timeout=2)
    kind, item_id, thread = received[0]
    assert (kind, item_id) == (ITEM_SENT, 7)
    assert thread is not publisher


def test_failing_listener_does_not_affect_others(notifier):
    done = threading.Event()

    def _broken(event):
        raise RuntimeError("listener bug")

    notifier.add_listener(_broken)
    notifier.add_listener(lambda event: done.set())

    notifier.item_failed(2)

    assert done.wait(timeout=2)


def test_removed_listener_is_not_called(notifier):
    calls = []
    listener = calls.append
    notifier.add_listener(listener)
    notifier.remove_listener(listener)

    notifier.item_sent(1)
    notifier.shutdown()

    assert calls == []


def test_unknown_event_kind_is_rejected(notifier):
    with pytest.raises(ValueError):
        notifier.publish("item_vanished", 1)


def test_event_stream_formats_server_sent_events(notifier):
    stream = iter_event_stream(notifier, keepalive=0.01, max_events=1)

    assert next(stream) == "retry: 5000\n\n"
    notifier.item_sent(5)
    header, data, _blank = next(stream).split("\n", 2)

    assert header == "event: item_sent"
    assert json.loads(data.removeprefix("data: "))["item_id"] == 5
    assert list(stream) == []
    assert notifier._subscriptions == []


def test_event_stream_sends_keepalive_when_idle(notifier):
    stream = iter_event_stream(notifier, keepalive=0.01)

    assert next(stream) == "retry: 5000\n\n"
    assert next(stream) == ": keepalive\n\n"
    stream.close()

    assert notifier._subscriptions == []


def test_unstarted_event_stream_holds_no_subscription(notifier, caplog):
    stream = iter_event_stream(notifier, keepalive=0.01)
    del stream

    for item_id in range(150):
        notifier.item_sent(item_id)

    assert notifier._subscriptions == []
    assert "subscriber is full" not in caplog.text
