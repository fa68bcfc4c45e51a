from dataclasses import dataclass
from typing import Optional

from fastapi import Cookie, Query, Request

from constants import TOKEN_COOKIE_NAME
from message_store import MessageStore
from room_manager import RoomManager


@dataclass
class Credentials:
    room_id: Optional[str]
    token: Optional[str]


def get_room_manager(request: Request) -> RoomManager:
    return request.app.state.room_manager


def get_message_store(request: Request) -> MessageStore:
    return request.app.state.message_store


def get_credentials(
    room_id: Optional[str] = Query(None),
    token: Optional[str] = Cookie(None, alias=TOKEN_COOKIE_NAME),
) -> Credentials:
    # Membership itself is checked by the room manager / message store
    return Credentials(room_id=room_id, token=token)
