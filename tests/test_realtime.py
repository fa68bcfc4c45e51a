import asyncio
import json

from app import ConnectionHub
from notifier import EVENT_TYPING, MemoryNotifier, get_room_channel_name

ROOM = "AB12CD"


class FakeSocket:
    def __init__(self):
        self.sent = []

    async def send_text(self, text):
        self.sent.append(json.loads(text))

    async def close(self, code=1000, reason=None):
        pass


class FlakySubscription:
    """Fails on the first read, then yields queued events."""

    def __init__(self, events):
        self.events = list(events)
        self.reads = 0
        self.closed = False

    def get_message(self, timeout=1.0):
        self.reads += 1
        if self.reads == 1:
            raise ConnectionError("connection reset")
        if self.events:
            return self.events.pop(0)
        return None

    def close(self):
        self.closed = True


class FlakyNotifier(MemoryNotifier):
    def __init__(self, subscription):
        super().__init__()
        self.subscription = subscription

    def subscribe(self, room_id):
        return self.subscription


async def wait_for(condition, attempts=100):
    for _ in range(attempts):
        if condition():
            return True
        await asyncio.sleep(0.02)
    return False


def test_listener_survives_undecodable_message():
    notifier = MemoryNotifier()

    async def scenario():
        hub = ConnectionHub(notifier)
        hub.error_backoff = 0
        socket = FakeSocket()
        await hub.connect(ROOM, socket)

        [subscription] = notifier._subscribers[get_room_channel_name(ROOM)]
        subscription.queue.put("not json")
        notifier.publish(ROOM, EVENT_TYPING, {"username": "alice", "is_typing": True})

        delivered = await wait_for(lambda: socket.sent)
        alive = not hub.room_tasks[ROOM].done()
        await hub.disconnect(ROOM, socket)
        return delivered, alive, socket.sent

    delivered, alive, sent = asyncio.run(scenario())
    assert delivered
    assert alive
    assert [e["event"] for e in sent] == [EVENT_TYPING]


def test_listener_survives_read_errors():
    event = {"event": EVENT_TYPING, "room_id": ROOM, "data": {}, "timestamp": 1}
    subscription = FlakySubscription([event])

    async def scenario():
        hub = ConnectionHub(FlakyNotifier(subscription))
        hub.error_backoff = 0
        socket = FakeSocket()
        await hub.connect(ROOM, socket)

        delivered = await wait_for(lambda: socket.sent)
        alive = not hub.room_tasks[ROOM].done()
        await hub.disconnect(ROOM, socket)
        return delivered, alive, socket.sent

    delivered, alive, sent = asyncio.run(scenario())
    assert delivered
    assert alive
    assert sent == [event]
    assert subscription.closed
