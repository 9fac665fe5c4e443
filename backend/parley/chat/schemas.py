"""Request bodies for the chat REST endpoints."""
from typing import List, Optional

from pydantic import BaseModel, Field

from parley.store import MessageType


class DirectChatRequest(BaseModel):
    participantId: str = Field(..., min_length=1)


class GroupChatRequest(BaseModel):
    name: str
    description: Optional[str] = None
    participants: List[str] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    """REST fallback for sending when the client has no live socket."""
    content: str
    messageType: MessageType = MessageType.TEXT
    parentMessageId: Optional[str] = None
    threadRootId: Optional[str] = None
    forwardedMessageId: Optional[str] = None
