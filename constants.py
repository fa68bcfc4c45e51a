import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

REDIS_URL = os.getenv("REDIS_URL", None)

# "redis" relies on Redis key expiry, "memory" runs an explicit sweep
STORE_BACKEND = os.getenv("STORE_BACKEND", "redis")

ROOM_TTL_SECONDS = int(os.getenv("ROOM_TTL_SECONDS", 60 * 10))
PENDING_TTL_SECONDS = int(os.getenv("PENDING_TTL_SECONDS", 60 * 60))
MAX_ROOM_MEMBERS = int(os.getenv("MAX_ROOM_MEMBERS", 2))

ROOM_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
ROOM_CODE_LENGTH = int(os.getenv("ROOM_CODE_LENGTH", 6))
ROOM_CODE_ATTEMPTS = int(os.getenv("ROOM_CODE_ATTEMPTS", 5))

MAX_SENDER_LENGTH = int(os.getenv("MAX_SENDER_LENGTH", 100))
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", 1000))
MAX_EMOJI_LENGTH = int(os.getenv("MAX_EMOJI_LENGTH", 32))
DELETED_MESSAGE_TEXT = "This message was deleted."
DEFAULT_USERNAME = "Anonymous"

TOKEN_COOKIE_NAME = os.getenv("TOKEN_COOKIE_NAME", "x-auth-token")
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")

SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", 5))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)
RELOAD = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")
