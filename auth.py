import hashlib
from dataclasses import dataclass
from typing import Optional

from backend import StoreBackend
from errors import Unauthorized
from redis_keys import REDIS_CONNECTED_KEY
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthContext:
    room_id: str
    token: str

    @property
    def reactor(self) -> str:
        return reactor_id(self.token)


def reactor_id(token: str) -> str:
    """Stable public identity for a member, safe to show to other participants."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


class TokenAuthenticator:
    """Checks that a caller's token is a current member of the room."""

    def __init__(self, store: StoreBackend):
        self.store = store

    def is_member(self, room_id: str, token: Optional[str]) -> bool:
        if not room_id or not token:
            return False
        return self.store.is_set_member(REDIS_CONNECTED_KEY.format(slug=room_id), token)

    def authenticate(self, room_id: Optional[str], token: Optional[str]) -> AuthContext:
        if not room_id or not token:
            logger.warning(f"Auth failed: missing room id or token (room_id={room_id})")
            raise Unauthorized("Missing room id or token")
        if not self.is_member(room_id, token):
            logger.warning(f"Auth failed: token is not a member of room {room_id}")
            raise Unauthorized("Invalid token")
        return AuthContext(room_id=room_id, token=token)
