from pydantic import BaseModel, Field
from typing import Optional

from constants import MAX_SENDER_LENGTH


class CreateRoomResponse(BaseModel):
    room_id: str

class RoomExistsResponse(BaseModel):
    exists: bool

class RoomAccessResponse(BaseModel):
    allowed: bool
    is_member: bool

class JoinRoomRequest(BaseModel):
    room_id: str
    username: Optional[str] = Field(None, max_length=MAX_SENDER_LENGTH)

class JoinRoomResponse(BaseModel):
    token: str
    ttl: int

class RoomTTLResponse(BaseModel):
    ttl: int

class RoomDetailsResponse(BaseModel):
    room_id: str
    status: str
    created_at: Optional[int]
    started_at: Optional[int]
    ttl: int
    member_count: int
    max_members: int
    is_full: bool
