"""Error taxonomy shared by the REST and WebSocket surfaces.

Every failure a handler can report to a caller is a ``ChatError``. The
HTTP layer maps ``status_code`` onto the response; the WebSocket layer
sends ``code`` and the message back as an ``error`` event and keeps the
connection open.
"""


class ChatError(Exception):
    """Base class for all reportable failures."""

    code = "internal"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(ChatError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Authentication required"


class MissingCredential(Unauthenticated):
    default_message = "Access token required"


class InvalidCredential(Unauthenticated):
    default_message = "Invalid token"


class ExpiredCredential(Unauthenticated):
    default_message = "Token has expired"


class Forbidden(ChatError):
    code = "forbidden"
    status_code = 403
    default_message = "Access denied"


class NotFound(ChatError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class ValidationFailed(ChatError):
    code = "validation"
    status_code = 400
    default_message = "Validation error"


class Conflict(ChatError):
    code = "conflict"
    status_code = 409
    default_message = "Conflict"


class Transient(ChatError):
    code = "transient"
    status_code = 503
    default_message = "Service temporarily unavailable"


class Internal(ChatError):
    pass


# Membership failures and missing entities share one message so callers
# can not probe for chats or messages they are not part of.
CHAT_NOT_ACCESSIBLE = "Chat not found or access denied"
MESSAGE_NOT_ACCESSIBLE = "Message not found or access denied"
