"""Conversation store: users, chats, messages and unread counters in DuckDB."""
from .schemas import (
    Chat,
    ChatType,
    ChatView,
    ForwardedFrom,
    Message,
    MessageType,
    MessageView,
    UserPublic,
    UserRecord,
)
from .service import ChatStore

__all__ = [
    "Chat",
    "ChatStore",
    "ChatType",
    "ChatView",
    "ForwardedFrom",
    "Message",
    "MessageType",
    "MessageView",
    "UserPublic",
    "UserRecord",
]
