REDIS_META_KEY = "room:meta:{slug}" # room code - hash with status/created_at/started_at
REDIS_CONNECTED_KEY = "room:connected:{slug}" # room code - set of membership tokens
REDIS_MESSAGES_KEY = "room:messages:{slug}" # room code - list of JSON encoded messages
REDIS_ROOM_CHANNEL = "room:channel:{slug}" # room code - pub/sub channel name


def room_keys(slug: str) -> list:
    """Every key owned by a room. Destroying a room deletes exactly these."""
    return [
        REDIS_META_KEY.format(slug=slug),
        REDIS_CONNECTED_KEY.format(slug=slug),
        REDIS_MESSAGES_KEY.format(slug=slug),
    ]


def child_keys(slug: str) -> list:
    """Keys whose TTL must follow the room's meta key."""
    return [
        REDIS_CONNECTED_KEY.format(slug=slug),
        REDIS_MESSAGES_KEY.format(slug=slug),
    ]

# **Example `room:meta:{code}` hash fields**
# - `status` = pending | active
# - `created_at` = epoch milliseconds
# - `started_at` = epoch milliseconds, set when the room activates
