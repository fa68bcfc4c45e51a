import json
from unittest import mock

import pytest

from notifier import (
    EVENT_TYPING,
    EventNotifier,
    MemoryNotifier,
    RedisNotifier,
    RedisSubscription,
    build_notifier,
    get_room_channel_name,
)


def test_publish_wraps_payload_in_envelope():
    notifier = MemoryNotifier()
    assert notifier.publish("AB12CD", EVENT_TYPING, {"username": "alice", "is_typing": True}) is True

    [envelope] = notifier.published
    assert envelope["event"] == EVENT_TYPING
    assert envelope["room_id"] == "AB12CD"
    assert envelope["data"] == {"username": "alice", "is_typing": True}
    assert isinstance(envelope["timestamp"], int)


def test_subscribers_only_see_their_room():
    notifier = MemoryNotifier()
    subscription = notifier.subscribe("AB12CD")

    notifier.publish("OTHER1", EVENT_TYPING, {})
    notifier.publish("AB12CD", EVENT_TYPING, {"n": 1})

    assert subscription.get_message(timeout=0.1)["data"] == {"n": 1}
    assert subscription.get_message(timeout=0.01) is None

    subscription.close()
    notifier.publish("AB12CD", EVENT_TYPING, {"n": 2})
    assert subscription.get_message(timeout=0.01) is None


def test_redis_notifier_publishes_json_on_room_channel():
    client = mock.MagicMock()
    notifier = RedisNotifier(client)

    notifier.publish("AB12CD", EVENT_TYPING, {"username": "alice"})

    channel, message = client.publish.call_args[0]
    assert channel == get_room_channel_name("AB12CD") == "room:channel:AB12CD"
    assert json.loads(message)["data"] == {"username": "alice"}


def test_redis_notifier_swallows_publish_errors():
    client = mock.MagicMock()
    client.publish.side_effect = ConnectionError("down")
    assert RedisNotifier(client).publish("AB12CD", EVENT_TYPING, {}) is False


def test_build_notifier_follows_store(store):
    assert isinstance(build_notifier(store), MemoryNotifier)
    redis_store = mock.MagicMock()
    assert isinstance(build_notifier(redis_store), RedisNotifier)


def test_memory_notifier_history_is_bounded():
    notifier = MemoryNotifier(history_size=50)
    for n in range(1000):
        notifier.publish("AB12CD", EVENT_TYPING, {"n": n})

    assert len(notifier.published) == 50
    assert notifier.published[0]["data"] == {"n": 950}
    assert notifier.published[-1]["data"] == {"n": 999}


def test_memory_subscription_drops_undecodable_messages():
    notifier = MemoryNotifier()
    subscription = notifier.subscribe("AB12CD")
    subscription.queue.put("not json")
    notifier.publish("AB12CD", EVENT_TYPING, {"n": 1})

    assert subscription.get_message(timeout=0.1) is None
    assert subscription.get_message(timeout=0.1)["data"] == {"n": 1}


def test_redis_notifier_subscribes_on_room_channel():
    client = mock.MagicMock()
    subscription = RedisNotifier(client).subscribe("AB12CD")

    client.pubsub.assert_called_once_with(ignore_subscribe_messages=True)
    client.pubsub.return_value.subscribe.assert_called_once_with("room:channel:AB12CD")
    assert isinstance(subscription, RedisSubscription)


def test_redis_subscription_decodes_only_channel_messages():
    pubsub = mock.MagicMock()
    envelope = {"event": EVENT_TYPING, "room_id": "AB12CD", "data": {}, "timestamp": 1}
    pubsub.get_message.side_effect = [
        None,
        {"type": "subscribe", "channel": "room:channel:AB12CD", "data": 1},
        {"type": "message", "channel": "room:channel:AB12CD", "data": json.dumps(envelope)},
        {"type": "message", "channel": "room:channel:AB12CD", "data": "not json"},
    ]
    subscription = RedisSubscription(pubsub)

    assert subscription.get_message(timeout=0.5) is None
    assert subscription.get_message(timeout=0.5) is None
    assert subscription.get_message(timeout=0.5) == envelope
    assert subscription.get_message(timeout=0.5) is None
    pubsub.get_message.assert_called_with(timeout=0.5, ignore_subscribe_messages=True)

    subscription.close()
    pubsub.close.assert_called_once()


def test_event_notifier_is_abstract():
    with pytest.raises(TypeError):
        EventNotifier()

    class PublishOnly(EventNotifier):
        def _send(self, channel, message):
            pass

    with pytest.raises(TypeError):
        PublishOnly()
