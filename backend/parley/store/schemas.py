"""Pydantic records for users, chats and messages.

Field names are camelCase because these models are serialised straight
onto the wire (REST envelopes and WebSocket events).
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ChatType(str, Enum):
    """Kind of conversation.

    Attributes:
        DIRECT: One-to-one conversation; exactly two participants.
        GROUP: Named conversation with an admin and any number of members.
    """
    DIRECT = "direct"
    GROUP = "group"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class UserPublic(BaseModel):
    """User identity as seen by other users (no secrets)."""
    id: str
    username: str
    email: str
    avatar: Optional[str] = None
    isOnline: bool = False
    lastSeen: Optional[datetime] = None


class UserRecord(UserPublic):
    """Full stored user, including the password digest."""
    passwordHash: str
    createdAt: datetime

    def public(self) -> UserPublic:
        return UserPublic(**self.model_dump(include=set(UserPublic.model_fields)))


class Chat(BaseModel):
    """A direct or group conversation.

    ``unreadCount`` holds one entry per current participant and nothing
    else; entries are created on join and pruned on leave.
    """
    id: str
    type: ChatType
    participants: List[str] = Field(default_factory=list)
    name: Optional[str] = None
    description: Optional[str] = None
    avatar: Optional[str] = None
    admin: Optional[str] = None
    lastMessageId: Optional[str] = None
    unreadCount: Dict[str, int] = Field(default_factory=dict)
    createdAt: datetime
    updatedAt: datetime

    def has_member(self, user_id: str) -> bool:
        return user_id in self.participants


class ForwardedFrom(BaseModel):
    """Provenance of a forwarded message."""
    userId: str
    chatId: str
    messageId: str
    at: datetime


class Message(BaseModel):
    """A stored chat message.

    ``readBy`` only ever grows. Deleting a message replaces ``content``
    with a tombstone and stamps ``deletedAt``/``deletedBy``; ``readBy`` is
    left alone.
    """
    id: str
    chatId: str
    senderId: str
    content: str
    messageType: MessageType = MessageType.TEXT
    readBy: List[str] = Field(default_factory=list)
    parentMessageId: Optional[str] = None
    threadRootId: Optional[str] = None
    forwardedFrom: Optional[ForwardedFrom] = None
    reactions: Dict[str, List[str]] = Field(default_factory=dict)
    editedAt: Optional[datetime] = None
    editedBy: Optional[str] = None
    deletedAt: Optional[datetime] = None
    deletedBy: Optional[str] = None
    createdAt: datetime
    seq: int = 0

    @property
    def is_deleted(self) -> bool:
        return self.deletedAt is not None


class MessageView(Message):
    """Message with the sender's public profile attached."""
    sender: Optional[UserPublic] = None


class ChatView(BaseModel):
    """Chat as returned to one particular viewer.

    Participants and admin are expanded to public profiles and
    ``unreadCount`` is the viewer's own counter.
    """
    id: str
    type: ChatType
    participants: List[UserPublic] = Field(default_factory=list)
    name: Optional[str] = None
    description: Optional[str] = None
    avatar: Optional[str] = None
    admin: Optional[UserPublic] = None
    lastMessage: Optional[MessageView] = None
    unreadCount: int = 0
    createdAt: datetime
    updatedAt: datetime
