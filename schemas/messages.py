from pydantic import BaseModel, Field
from typing import Optional

from constants import MAX_EMOJI_LENGTH, MAX_MESSAGE_LENGTH, MAX_SENDER_LENGTH


class Reaction(BaseModel):
    emoji: str
    reactor: str
    timestamp: int

class StoredMessage(BaseModel):
    # Shape of a message inside the room's message list. `token` is the author's
    # membership token and never leaves the server.
    id: str
    room_id: str
    sender: str
    text: str
    timestamp: int
    token: str
    reactions: list[Reaction] = []
    deleted: bool = False

class ReactionGroup(BaseModel):
    emoji: str
    count: int
    reacted_by_me: bool

class MessageOut(BaseModel):
    id: str
    room_id: str
    sender: str
    text: str
    timestamp: int
    reactions: list[Reaction] = []
    reaction_summary: list[ReactionGroup] = []
    deleted: bool = False
    is_me: bool

class MessagesResponse(BaseModel):
    messages: list[MessageOut]

class PostMessageRequest(BaseModel):
    sender: str = Field(min_length=1, max_length=MAX_SENDER_LENGTH)
    text: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)

class ReactRequest(BaseModel):
    message_id: str
    emoji: str = Field(min_length=1, max_length=MAX_EMOJI_LENGTH)

class TypingRequest(BaseModel):
    is_typing: bool
    username: Optional[str] = Field(None, max_length=MAX_SENDER_LENGTH)

class SuccessResponse(BaseModel):
    success: bool = True
