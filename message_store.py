import uuid
from typing import List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from auth import AuthContext, TokenAuthenticator, reactor_id
from backend import TTL_MISSING, StoreBackend
from constants import (
    DEFAULT_USERNAME,
    DELETED_MESSAGE_TEXT,
    MAX_EMOJI_LENGTH,
    MAX_MESSAGE_LENGTH,
    MAX_SENDER_LENGTH,
)
from errors import NotFound, RoomGone, Unauthorized, ValidationError
from notifier import EVENT_MESSAGE, EVENT_TYPING, EventNotifier, now_ms
from redis_keys import REDIS_MESSAGES_KEY, REDIS_META_KEY, child_keys
from schemas.messages import MessageOut, Reaction, ReactionGroup, StoredMessage
from logging_config import get_logger

logger = get_logger(__name__)


def group_reactions(reactions: List[Reaction], reactor: Optional[str] = None) -> List[ReactionGroup]:
    """Count reactions per emoji, ordered by each emoji's first appearance."""
    groups = {}
    for reaction in reactions:
        group = groups.get(reaction.emoji)
        if group is None:
            group = groups[reaction.emoji] = ReactionGroup(emoji=reaction.emoji, count=0, reacted_by_me=False)
        group.count += 1
        if reactor is not None and reaction.reactor == reactor:
            group.reacted_by_me = True
    return list(groups.values())


def to_public(message: StoredMessage, token: str) -> MessageOut:
    return MessageOut(
        id=message.id,
        room_id=message.room_id,
        sender=message.sender,
        text=message.text,
        timestamp=message.timestamp,
        reactions=message.reactions,
        reaction_summary=group_reactions(message.reactions, reactor_id(token)),
        deleted=message.deleted,
        is_me=message.token == token,
    )


def _event_payload(message: StoredMessage) -> dict:
    return message.model_dump(exclude={"token"})


def _check_length(field: str, value, max_length: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must not be empty")
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value


class MessageStore:
    """Message log of a room, stored as a list in author order.

    Messages are never removed individually: reactions and deletions rewrite
    the message in place at its list position. The list expires together
    with the room.
    """

    def __init__(
        self,
        store: StoreBackend,
        notifier: EventNotifier,
        authenticator: TokenAuthenticator = None,
        deleted_text: str = DELETED_MESSAGE_TEXT,
    ):
        self.store = store
        self.notifier = notifier
        self.authenticator = authenticator or TokenAuthenticator(store)
        self.deleted_text = deleted_text

    def _load(self, room_id: str) -> List[Tuple[int, StoredMessage]]:
        loaded = []
        raw_messages = self.store.get_list_range(REDIS_MESSAGES_KEY.format(slug=room_id), 0, -1)
        for index, raw in enumerate(raw_messages):
            try:
                loaded.append((index, StoredMessage.model_validate_json(raw)))
            except PydanticValidationError as e:
                logger.warning(f"Skipping unreadable message #{index} in room {room_id}: {e}")
        return loaded

    def _find(self, room_id: str, message_id: str) -> Tuple[int, StoredMessage]:
        for index, message in self._load(room_id):
            if message.id == message_id:
                return index, message
        raise NotFound("Message not found")

    def _write_back(self, auth: AuthContext, index: int, message: StoredMessage):
        try:
            self.store.set_list_element(REDIS_MESSAGES_KEY.format(slug=auth.room_id), index, message.model_dump_json())
        except IndexError:
            # The list went away between the scan and the write, i.e. the room is gone
            raise NotFound("Message not found")
        self.notifier.publish(auth.room_id, EVENT_MESSAGE, _event_payload(message))

    def sync_ttl(self, room_id: str):
        """Give the room's child keys the room's remaining TTL.

        Failures are logged only: the mutation that called this already succeeded.
        """
        try:
            remaining = self.store.get_ttl(REDIS_META_KEY.format(slug=room_id))
            if remaining > 0:
                for key in child_keys(room_id):
                    self.store.set_ttl(key, remaining)
            elif remaining == TTL_MISSING:
                logger.info(f"Room {room_id} expired during a write, dropping its leftover keys")
                self.store.delete(*child_keys(room_id))
        except Exception as e:
            logger.warning(f"TTL resync failed for room {room_id}: {e}", exc_info=True)

    def post(self, room_id: str, token: str, sender: str, text: str) -> MessageOut:
        auth = self.authenticator.authenticate(room_id, token)
        _check_length("sender", sender, MAX_SENDER_LENGTH)
        _check_length("text", text, MAX_MESSAGE_LENGTH)

        if not self.store.exists(REDIS_META_KEY.format(slug=room_id)):
            logger.warning(f"Post rejected: Room {room_id} no longer exists")
            raise RoomGone()

        message = StoredMessage(
            id=uuid.uuid4().hex,
            room_id=room_id,
            sender=sender,
            text=text,
            timestamp=now_ms(),
            token=auth.token,
        )
        self.store.append_to_list(REDIS_MESSAGES_KEY.format(slug=room_id), message.model_dump_json())
        self.sync_ttl(room_id)
        self.notifier.publish(room_id, EVENT_MESSAGE, _event_payload(message))
        logger.debug(f"Message {message.id} posted to room {room_id}")
        return to_public(message, auth.token)

    def list(self, room_id: str, token: str) -> List[MessageOut]:
        auth = self.authenticator.authenticate(room_id, token)
        return [to_public(message, auth.token) for _, message in self._load(room_id)]

    def react(self, room_id: str, token: str, message_id: str, emoji: str) -> MessageOut:
        auth = self.authenticator.authenticate(room_id, token)
        _check_length("emoji", emoji, MAX_EMOJI_LENGTH)
        index, message = self._find(room_id, message_id)

        reactor = auth.reactor
        existing = next(
            (i for i, r in enumerate(message.reactions) if r.emoji == emoji and r.reactor == reactor),
            None,
        )
        if existing is not None:
            message.reactions.pop(existing)
        else:
            message.reactions.append(Reaction(emoji=emoji, reactor=reactor, timestamp=now_ms()))

        self._write_back(auth, index, message)
        logger.debug(f"Reaction {emoji} {'removed from' if existing is not None else 'added to'} message {message_id} in room {room_id}")
        return to_public(message, auth.token)

    def delete(self, room_id: str, token: str, message_id: str) -> MessageOut:
        auth = self.authenticator.authenticate(room_id, token)
        index, message = self._find(room_id, message_id)
        if message.token != auth.token:
            logger.warning(f"Delete rejected: caller does not own message {message_id} in room {room_id}")
            raise Unauthorized("Only the author can delete a message")

        message.deleted = True
        message.text = self.deleted_text
        self._write_back(auth, index, message)
        logger.debug(f"Message {message_id} deleted in room {room_id}")
        return to_public(message, auth.token)

    def typing(self, room_id: str, token: str, is_typing: bool, display_name: Optional[str] = None) -> None:
        self.authenticator.authenticate(room_id, token)
        self.notifier.publish(room_id, EVENT_TYPING, {
            "username": display_name or DEFAULT_USERNAME,
            "is_typing": bool(is_typing),
        })
