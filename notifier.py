import json
import queue
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Dict, List, Optional

import redis

from redis_keys import REDIS_ROOM_CHANNEL
from logging_config import get_logger

logger = get_logger(__name__)

EVENT_PARTICIPANT_JOINED = "participant.joined"
EVENT_MESSAGE = "message.posted"
EVENT_ROOM_DESTROYED = "room.destroyed"
EVENT_TYPING = "typing"

# Envelopes MemoryNotifier keeps for inspection
MEMORY_EVENT_HISTORY = 200


def now_ms() -> int:
    return int(time.time() * 1000)


def get_room_channel_name(room_id: str) -> str:
    """Get the pub/sub channel name for a room."""
    return REDIS_ROOM_CHANNEL.format(slug=room_id)


def decode_event(raw: str) -> Optional[dict]:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Dropping undecodable pub/sub message: {e}")
        return None


class EventNotifier(ABC):
    """Best-effort push of room events to already connected clients.

    Publishing never raises: the store mutation that triggered the event has
    already happened, and clients re-fetch state from the API anyway.
    """

    def publish(self, room_id: str, event: str, payload: dict) -> bool:
        channel = get_room_channel_name(room_id)
        envelope = {
            "event": event,
            "room_id": room_id,
            "data": payload,
            "timestamp": now_ms(),
        }
        try:
            self._send(channel, json.dumps(envelope))
        except Exception as e:
            logger.warning(f"Failed to publish {event} to room {room_id}: {e}", exc_info=True)
            return False
        logger.debug(f"Published {event} to room {room_id} channel {channel}")
        return True

    @abstractmethod
    def _send(self, channel: str, message: str): ...

    @abstractmethod
    def subscribe(self, room_id: str):
        """Subscription exposing `get_message(timeout)` and `close()`."""


class RedisNotifier(EventNotifier):
    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    def _send(self, channel: str, message: str):
        subscribers = self.redis_client.publish(channel, message)
        logger.debug(f"{subscribers} subscribers on {channel}")

    def subscribe(self, room_id: str):
        channel = get_room_channel_name(room_id)
        logger.debug(f"Subscribing to Redis channel {channel} for room {room_id}")
        # Subscribed connections cannot issue other commands, so take a dedicated one
        pubsub = self.redis_client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(channel)
        return RedisSubscription(pubsub)


class RedisSubscription:
    def __init__(self, pubsub):
        self.pubsub = pubsub

    def get_message(self, timeout: float = 1.0) -> Optional[dict]:
        message = self.pubsub.get_message(timeout=timeout, ignore_subscribe_messages=True)
        if message is None or message.get("type") != "message":
            return None
        return decode_event(message["data"])

    def close(self):
        self.pubsub.close()


class MemoryNotifier(EventNotifier):
    """In-process fan-out. The last `history_size` envelopes stay in `published`."""

    def __init__(self, history_size: int = MEMORY_EVENT_HISTORY):
        self.published: Deque[dict] = deque(maxlen=history_size)
        self._subscribers: Dict[str, List["MemorySubscription"]] = {}
        self._lock = threading.Lock()

    def _send(self, channel: str, message: str):
        with self._lock:
            self.published.append(json.loads(message))
            subscribers = list(self._subscribers.get(channel, ()))
        for subscription in subscribers:
            subscription.queue.put(message)

    def subscribe(self, room_id: str):
        channel = get_room_channel_name(room_id)
        subscription = MemorySubscription(self, channel)
        with self._lock:
            self._subscribers.setdefault(channel, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: "MemorySubscription"):
        with self._lock:
            subscribers = self._subscribers.get(subscription.channel, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.channel, None)

    def events(self, room_id: str, event: str = None) -> List[dict]:
        return [
            e for e in self.published
            if e["room_id"] == room_id and (event is None or e["event"] == event)
        ]


class MemorySubscription:
    def __init__(self, notifier: MemoryNotifier, channel: str):
        self.notifier = notifier
        self.channel = channel
        self.queue = queue.Queue()

    def get_message(self, timeout: float = 1.0) -> Optional[dict]:
        try:
            raw = self.queue.get(timeout=timeout)
        except queue.Empty:
            return None
        return decode_event(raw)

    def close(self):
        self.notifier.unsubscribe(self)


def build_notifier(store) -> EventNotifier:
    redis_client = getattr(store, "redis_client", None)
    if redis_client is not None:
        return RedisNotifier(redis_client)
    return MemoryNotifier()
