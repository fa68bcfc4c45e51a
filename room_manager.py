import secrets
from dataclasses import dataclass
from typing import Callable, Optional

from auth import TokenAuthenticator
from backend import TTL_MISSING, StoreBackend
from constants import (
    DEFAULT_USERNAME,
    MAX_ROOM_MEMBERS,
    PENDING_TTL_SECONDS,
    ROOM_CODE_ALPHABET,
    ROOM_CODE_ATTEMPTS,
    ROOM_CODE_LENGTH,
    ROOM_TTL_SECONDS,
)
from errors import NotFound, RoomFull
from notifier import EVENT_PARTICIPANT_JOINED, EVENT_ROOM_DESTROYED, EventNotifier, now_ms
from redis_keys import REDIS_CONNECTED_KEY, REDIS_META_KEY, room_keys
from logging_config import get_logger

logger = get_logger(__name__)

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(length))


def generate_token() -> str:
    return secrets.token_urlsafe(16)


@dataclass
class Membership:
    token: str
    ttl: int
    is_new: bool


@dataclass
class RoomDetails:
    room_id: str
    status: str
    created_at: Optional[int]
    started_at: Optional[int]
    ttl: int
    member_count: int
    max_members: int


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class RoomManager:
    """Room creation, activation, membership and teardown.

    A room starts `pending` with a long grace TTL so the creator can share the
    code. The first join activates it: status flips to `active` and the TTL is
    reset to the shorter live window, which is the countdown participants see.
    Membership tokens live in a set whose TTL follows the room's.
    """

    def __init__(
        self,
        store: StoreBackend,
        notifier: EventNotifier,
        authenticator: TokenAuthenticator = None,
        room_ttl: int = ROOM_TTL_SECONDS,
        pending_ttl: int = PENDING_TTL_SECONDS,
        max_members: int = MAX_ROOM_MEMBERS,
        code_generator: Callable[[], str] = generate_room_code,
        token_generator: Callable[[], str] = generate_token,
    ):
        self.store = store
        self.notifier = notifier
        self.authenticator = authenticator or TokenAuthenticator(store)
        self.room_ttl = room_ttl
        self.pending_ttl = pending_ttl
        self.max_members = max_members
        self.code_generator = code_generator
        self.token_generator = token_generator

    def create(self) -> str:
        for attempt in range(1, max(ROOM_CODE_ATTEMPTS, 1) + 1):
            room_id = self.code_generator()
            if not self.exists(room_id):
                break
            logger.warning(f"Room code {room_id} already live (attempt {attempt}/{ROOM_CODE_ATTEMPTS})")
        else:
            raise RuntimeError("Could not allocate a free room code")

        self.store.set_hash(REDIS_META_KEY.format(slug=room_id), {
            "status": STATUS_PENDING,
            "created_at": now_ms(),
        }, ttl=self.pending_ttl)
        logger.info(f"Room {room_id} created, pending for {self.pending_ttl}s")
        return room_id

    def exists(self, room_id: str) -> bool:
        return self.store.exists(REDIS_META_KEY.format(slug=room_id))

    def check_access(self, room_id: str, token: Optional[str] = None) -> bool:
        """Pre-join gate. True for existing members, False if a join may proceed."""
        if not room_id or not self.exists(room_id):
            raise NotFound("Room not found")
        if self.authenticator.is_member(room_id, token):
            return True
        if self.store.set_cardinality(REDIS_CONNECTED_KEY.format(slug=room_id)) >= self.max_members:
            raise RoomFull()
        return False

    def join(self, room_id: str, display_name: Optional[str] = None, token: Optional[str] = None) -> Membership:
        meta_key = REDIS_META_KEY.format(slug=room_id)
        connected_key = REDIS_CONNECTED_KEY.format(slug=room_id)

        if not self.store.exists(meta_key):
            logger.warning(f"Join failed: Room {room_id} not found")
            raise NotFound("Room not found")

        if self.authenticator.is_member(room_id, token):
            logger.debug(f"Join for room {room_id} with an existing membership token")
            return Membership(token=token, ttl=max(self.store.get_ttl(meta_key), 0), is_new=False)

        count = self.store.set_cardinality(connected_key)
        if count >= self.max_members:
            logger.warning(f"Join failed: Room {room_id} is full ({count}/{self.max_members})")
            raise RoomFull()

        meta = self.store.get_hash(meta_key)
        if not meta:
            logger.warning(f"Join failed: Room {room_id} expired while joining")
            raise NotFound("Room not found")
        if meta.get("status") == STATUS_PENDING:
            self.store.set_hash(meta_key, {
                "status": STATUS_ACTIVE,
                "started_at": now_ms(),
            }, ttl=self.room_ttl)
            ttl = self.room_ttl
            logger.info(f"Room {room_id} activated, live for {ttl}s")
        else:
            remaining = self.store.get_ttl(meta_key)
            if remaining == TTL_MISSING:
                logger.warning(f"Join failed: Room {room_id} expired while joining")
                raise NotFound("Room not found")
            ttl = remaining if remaining > 0 else self.room_ttl

        new_token = self.token_generator()
        self.store.add_to_set(connected_key, new_token)
        self.store.set_ttl(connected_key, ttl)

        username = display_name or DEFAULT_USERNAME
        self.notifier.publish(room_id, EVENT_PARTICIPANT_JOINED, {
            "username": username,
            "action": "joined",
            "timestamp": now_ms(),
        })
        logger.info(f"{username} joined room {room_id} ({count + 1}/{self.max_members})")
        return Membership(token=new_token, ttl=ttl, is_new=True)

    def get_ttl(self, room_id: str, token: str) -> int:
        self.authenticator.authenticate(room_id, token)
        ttl = self.store.get_ttl(REDIS_META_KEY.format(slug=room_id))
        return ttl if ttl > 0 else 0

    def get_details(self, room_id: str, token: str) -> RoomDetails:
        self.authenticator.authenticate(room_id, token)
        meta_key = REDIS_META_KEY.format(slug=room_id)
        meta = self.store.get_hash(meta_key)
        if not meta:
            raise NotFound("Room not found")
        return RoomDetails(
            room_id=room_id,
            status=meta.get("status", STATUS_PENDING),
            created_at=_as_int(meta.get("created_at")),
            started_at=_as_int(meta.get("started_at")),
            ttl=max(self.store.get_ttl(meta_key), 0),
            member_count=self.store.set_cardinality(REDIS_CONNECTED_KEY.format(slug=room_id)),
            max_members=self.max_members,
        )

    def destroy(self, room_id: str, token: str) -> None:
        self.authenticator.authenticate(room_id, token)
        # Clients stop interacting on this event, so it goes out before the keys vanish
        self.notifier.publish(room_id, EVENT_ROOM_DESTROYED, {"is_destroyed": True})
        deleted = self.store.delete(*room_keys(room_id))
        logger.info(f"Room {room_id} destroyed ({deleted} keys removed)")
