class ChatError(Exception):
    """Base class for errors surfaced to API callers.

    `code` is the machine readable reason clients branch on, `status_code` is
    the HTTP status the API answers with.
    """
    code = "error"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(ChatError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class Unauthorized(ChatError):
    code = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class RoomFull(ChatError):
    code = "room_full"
    status_code = 409
    default_message = "Room is full"


class RoomGone(ChatError):
    code = "room_gone"
    status_code = 410
    default_message = "Room does not exist anymore"


class ValidationError(ChatError):
    code = "validation_error"
    status_code = 422
    default_message = "Invalid input"
