from fastapi import APIRouter, Depends
from schemas.messages import (
    MessageOut,
    MessagesResponse,
    PostMessageRequest,
    ReactRequest,
    SuccessResponse,
    TypingRequest,
)
from dependencies import Credentials, get_credentials, get_message_store
from message_store import MessageStore

messages_router = APIRouter(prefix="/messages", tags=["messages"])


@messages_router.post("", response_model=MessageOut)
async def post_message(
    body: PostMessageRequest,
    credentials: Credentials = Depends(get_credentials),
    messages: MessageStore = Depends(get_message_store),
):
    return messages.post(credentials.room_id, credentials.token, body.sender, body.text)


@messages_router.get("", response_model=MessagesResponse)
async def list_messages(
    credentials: Credentials = Depends(get_credentials),
    messages: MessageStore = Depends(get_message_store),
):
    return MessagesResponse(messages=messages.list(credentials.room_id, credentials.token))


@messages_router.post("/react", response_model=MessageOut)
async def react_to_message(
    body: ReactRequest,
    credentials: Credentials = Depends(get_credentials),
    messages: MessageStore = Depends(get_message_store),
):
    # Same emoji from the same member twice removes the reaction again
    return messages.react(credentials.room_id, credentials.token, body.message_id, body.emoji)


@messages_router.post("/typing", response_model=SuccessResponse)
async def typing(
    body: TypingRequest,
    credentials: Credentials = Depends(get_credentials),
    messages: MessageStore = Depends(get_message_store),
):
    messages.typing(credentials.room_id, credentials.token, body.is_typing, body.username)
    return SuccessResponse()


@messages_router.delete("/{message_id}", response_model=MessageOut)
async def delete_message(
    message_id: str,
    credentials: Credentials = Depends(get_credentials),
    messages: MessageStore = Depends(get_message_store),
):
    return messages.delete(credentials.room_id, credentials.token, message_id)
