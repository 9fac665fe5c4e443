"""WebSocket event contracts.

Every frame on the socket is a JSON object with a ``type`` field. Inbound
frames are parsed into exactly one of the variants below (a discriminated
union); anything else is rejected with an ``error`` event. Outbound
events are likewise one model per event name.

Inbound:
    joinRoom, leaveRoom, sendMessage, typing, markAsRead, reactMessage,
    editMessage, deleteMessage, createGroup, joinGroup, leaveGroup, ping

Outbound:
    connected, pong, roomJoined, roomLeft, message, typing, userOnline,
    userOffline, messageRead, newChat, chatUpdated, userJoined, userLeft,
    messageUpdated, messageDeleted, reactionUpdated, error
"""
import time
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from parley.errors import ValidationFailed
from parley.store import ChatView, MessageType, MessageView, UserPublic

# =============================================================================
# Inbound (client -> server)
# =============================================================================


class _Inbound(BaseModel):
    model_config = ConfigDict(extra="ignore")


class JoinRoom(_Inbound):
    type: Literal["joinRoom"]
    chatId: str = Field(..., min_length=1)


class LeaveRoom(_Inbound):
    type: Literal["leaveRoom"]
    chatId: str = Field(..., min_length=1)


class ForwardRef(_Inbound):
    """Source of a forwarded message; provenance is filled in server-side."""
    messageId: str = Field(..., min_length=1)


class SendMessage(_Inbound):
    type: Literal["sendMessage"]
    chatId: str = Field(..., min_length=1)
    content: str
    messageType: MessageType = MessageType.TEXT
    parentMessageId: Optional[str] = None
    threadRootId: Optional[str] = None
    forwardedFrom: Optional[ForwardRef] = None


class Typing(_Inbound):
    type: Literal["typing"]
    chatId: str = Field(..., min_length=1)
    isTyping: bool = True


class MarkAsRead(_Inbound):
    type: Literal["markAsRead"]
    messageId: str = Field(..., min_length=1)


class ReactMessage(_Inbound):
    type: Literal["reactMessage"]
    messageId: str = Field(..., min_length=1)
    chatId: Optional[str] = None
    emoji: str


class EditMessage(_Inbound):
    type: Literal["editMessage"]
    messageId: str = Field(..., min_length=1)
    chatId: Optional[str] = None
    content: str


class DeleteMessage(_Inbound):
    type: Literal["deleteMessage"]
    messageId: str = Field(..., min_length=1)
    chatId: Optional[str] = None


class CreateGroup(_Inbound):
    type: Literal["createGroup"]
    name: str
    description: Optional[str] = None
    participantIds: List[str]


class JoinGroup(_Inbound):
    type: Literal["joinGroup"]
    chatId: str = Field(..., min_length=1)


class LeaveGroup(_Inbound):
    type: Literal["leaveGroup"]
    chatId: str = Field(..., min_length=1)


class Ping(_Inbound):
    type: Literal["ping"]


InboundEvent = Annotated[
    Union[
        JoinRoom,
        LeaveRoom,
        SendMessage,
        Typing,
        MarkAsRead,
        ReactMessage,
        EditMessage,
        DeleteMessage,
        CreateGroup,
        JoinGroup,
        LeaveGroup,
        Ping,
    ],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundEvent)

INBOUND_TYPES = frozenset(
    get_args(model.model_fields["type"].annotation)[0]
    for model in (
        JoinRoom, LeaveRoom, SendMessage, Typing, MarkAsRead, ReactMessage,
        EditMessage, DeleteMessage, CreateGroup, JoinGroup, LeaveGroup, Ping,
    )
)


def parse_inbound(data: Any) -> InboundEvent:
    """Validate a decoded frame into its inbound variant.

    Raises:
        ValidationFailed: Unknown ``type`` or a payload that does not fit it.
    """
    if not isinstance(data, dict):
        raise ValidationFailed("Event must be a JSON object")
    event_type = data.get("type")
    if not isinstance(event_type, str) or event_type not in INBOUND_TYPES:
        raise ValidationFailed(f"Unknown event type: {event_type}")
    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"][1:]) or "payload"
        raise ValidationFailed(f"Invalid {event_type} event: {field}: {first['msg']}")


# =============================================================================
# Outbound (server -> client)
# =============================================================================


class Connected(BaseModel):
    type: Literal["connected"] = "connected"
    userId: str
    handle: str


class Pong(BaseModel):
    type: Literal["pong"] = "pong"
    ts: float = Field(default_factory=time.time)


class RoomJoined(BaseModel):
    type: Literal["roomJoined"] = "roomJoined"
    chatId: str


class RoomLeft(BaseModel):
    type: Literal["roomLeft"] = "roomLeft"
    chatId: str


class MessageCreated(BaseModel):
    type: Literal["message"] = "message"
    message: MessageView


class TypingChanged(BaseModel):
    type: Literal["typing"] = "typing"
    chatId: str
    user: UserPublic
    isTyping: bool


class UserOnline(BaseModel):
    type: Literal["userOnline"] = "userOnline"
    userId: str


class UserOffline(BaseModel):
    type: Literal["userOffline"] = "userOffline"
    userId: str
    lastSeen: Optional[datetime] = None


class MessageRead(BaseModel):
    type: Literal["messageRead"] = "messageRead"
    messageId: str
    chatId: str
    readBy: str


class NewChat(BaseModel):
    type: Literal["newChat"] = "newChat"
    chat: ChatView


class ChatUpdated(BaseModel):
    type: Literal["chatUpdated"] = "chatUpdated"
    chat: ChatView


class UserJoined(BaseModel):
    type: Literal["userJoined"] = "userJoined"
    chatId: str
    user: UserPublic


class UserLeft(BaseModel):
    type: Literal["userLeft"] = "userLeft"
    chatId: str
    userId: str


class MessageUpdated(BaseModel):
    type: Literal["messageUpdated"] = "messageUpdated"
    message: MessageView


class MessageDeleted(BaseModel):
    type: Literal["messageDeleted"] = "messageDeleted"
    messageId: str
    chatId: str
    deletedBy: str
    deletedAt: Optional[datetime] = None


class ReactionUpdated(BaseModel):
    """Reaction toggle result; ``reactions`` is the full mapping, not a delta."""
    type: Literal["reactionUpdated"] = "reactionUpdated"
    messageId: str
    chatId: str
    emoji: str
    userId: str
    action: Literal["add", "remove"]
    reactions: Dict[str, List[str]]


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str
    code: str = "internal"


OutboundEvent = Union[
    Connected,
    Pong,
    RoomJoined,
    RoomLeft,
    MessageCreated,
    TypingChanged,
    UserOnline,
    UserOffline,
    MessageRead,
    NewChat,
    ChatUpdated,
    UserJoined,
    UserLeft,
    MessageUpdated,
    MessageDeleted,
    ReactionUpdated,
    ErrorEvent,
]


def encode(event: OutboundEvent) -> dict:
    """JSON-ready dict for an outbound event."""
    return event.model_dump(mode="json")
