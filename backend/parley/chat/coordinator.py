"""Delivery coordinator: authorize, apply, fan out.

Each handler is a short transaction over the chat store, the unread
ledger and the presence registry:

    1. Authorize: the actor must be a current participant of the target
       chat. Missing chats/messages and non-membership raise the same
       ``NotFound`` so callers can not probe for foreign conversations.
    2. Apply: persist the change. Ledger increments run only after the
       message row exists and ledger resets only after the read receipt
       exists, so a failure in between under-counts rather than
       over-counts.
    3. Fan out: build one outbound event and hand it to the transport
       with an explicit handle set computed from current membership.

Mutations for one chat are serialized by a per-chat lock, which is what
gives room members a stable per-conversation delivery order.
"""
import asyncio
import logging
import unicodedata
import weakref
from typing import Iterable, List, Optional, Set, Tuple

from parley.config import ChatSettings
from parley.errors import (
    CHAT_NOT_ACCESSIBLE,
    MESSAGE_NOT_ACCESSIBLE,
    Forbidden,
    NotFound,
    ValidationFailed,
)
from parley.presence import PresenceRegistry
from parley.store import (
    Chat,
    ChatStore,
    ChatType,
    ChatView,
    ForwardedFrom,
    Message,
    MessageType,
    MessageView,
    UserPublic,
)

from . import events
from .ledger import UnreadLedger
from .manager import ConnectionManager

logger = logging.getLogger(__name__)

GROUP_NOT_FOUND = "Group not found"
MAX_EMOJI_LENGTH = 16


class DeliveryCoordinator:
    """Protocol handlers shared by the WebSocket and REST surfaces."""

    def __init__(
        self,
        store: ChatStore,
        ledger: UnreadLedger,
        presence: PresenceRegistry,
        transport: ConnectionManager,
        settings: Optional[ChatSettings] = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.presence = presence
        self.transport = transport
        self.settings = settings or ChatSettings()
        # entries vanish once no handler holds or waits on the lock
        self._chat_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _chat_lock(self, chat_id: str) -> asyncio.Lock:
        """Lock serializing mutations of one chat. Only call for authorized chats."""
        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = self._chat_locks[chat_id] = asyncio.Lock()
        return lock

    # =========================================================================
    # Lookups and views
    # =========================================================================

    def _member_chat(self, chat_id: str, actor_id: str) -> Chat:
        chat = self.store.get_chat_for_member(chat_id, actor_id)
        if chat is None:
            raise NotFound(CHAT_NOT_ACCESSIBLE)
        return chat

    def _accessible_message(
        self,
        message_id: str,
        actor_id: str,
        chat_id: Optional[str] = None,
    ) -> Tuple[Message, Chat]:
        """Load a message whose chat the actor belongs to.

        ``chat_id`` is optional on the wire; when given it has to match.
        """
        message = self.store.get_message(message_id)
        if message is None or (chat_id and message.chatId != chat_id):
            raise NotFound(MESSAGE_NOT_ACCESSIBLE)
        chat = self.store.get_chat_for_member(message.chatId, actor_id)
        if chat is None:
            raise NotFound(MESSAGE_NOT_ACCESSIBLE)
        return message, chat

    def _user(self, user_id: str) -> UserPublic:
        user = self.store.get_users([user_id]).get(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def message_view(self, message: Message) -> MessageView:
        sender = self.store.get_users([message.senderId]).get(message.senderId)
        return MessageView(**message.model_dump(), sender=sender)

    def chat_view(self, chat: Chat, viewer_id: str) -> ChatView:
        """The chat as ``viewer_id`` sees it: expanded profiles, own unread count."""
        ids = list(chat.participants)
        if chat.admin:
            ids.append(chat.admin)
        users = self.store.get_users(ids)
        last = None
        if chat.lastMessageId:
            message = self.store.get_message(chat.lastMessageId)
            if message is not None:
                last = self.message_view(message)
        return ChatView(
            id=chat.id,
            type=chat.type,
            participants=[users[p] for p in chat.participants if p in users],
            name=chat.name,
            description=chat.description,
            avatar=chat.avatar,
            admin=users.get(chat.admin) if chat.admin else None,
            lastMessage=last,
            unreadCount=chat.unreadCount.get(viewer_id, 0),
            createdAt=chat.createdAt,
            updatedAt=chat.updatedAt,
        )

    # =========================================================================
    # Reads (REST)
    # =========================================================================

    def get_chat(self, actor_id: str, chat_id: str) -> ChatView:
        return self.chat_view(self._member_chat(chat_id, actor_id), actor_id)

    def list_chats(self, actor_id: str, offset: int, limit: int) -> Tuple[List[ChatView], int]:
        chats, total = self.store.list_chats_for_user(actor_id, offset, limit)
        return [self.chat_view(chat, actor_id) for chat in chats], total

    def history(
        self,
        actor_id: str,
        chat_id: str,
        offset: int,
        limit: int,
    ) -> Tuple[List[MessageView], int]:
        """One page of history, oldest first within the page."""
        chat = self._member_chat(chat_id, actor_id)
        messages, total = self.store.list_messages(chat.id, offset, limit)
        senders = self.store.get_users([m.senderId for m in messages])
        views = [MessageView(**m.model_dump(), sender=senders.get(m.senderId)) for m in messages]
        return views, total

    def _room_recipients(self, chat: Chat, exclude_user: Optional[str] = None) -> Set[str]:
        """Handles subscribed to the chat's room whose owner is still a participant."""
        recipients = set()
        for handle in self.transport.room_handles(chat.id):
            owner = self.transport.owner_of(handle)
            if owner is None or owner == exclude_user or not chat.has_member(owner):
                continue
            recipients.add(handle)
        return recipients

    async def _refresh_chat_lists(self, chat_id: str, skip: Iterable[str] = ()) -> None:
        """Push ``chatUpdated`` to participants' connections outside the room."""
        chat = self.store.get_chat(chat_id)
        if chat is None:
            return
        in_room = self.transport.room_handles(chat.id)
        skipped = set(skip)
        for participant in chat.participants:
            if participant in skipped:
                continue
            handles = self.presence.connections_for(participant) - in_room
            if handles:
                view = self.chat_view(chat, participant)
                await self.transport.deliver(events.ChatUpdated(chat=view), handles)

    def _clean_content(self, content: Optional[str]) -> str:
        content = (content or "").strip()
        if not content:
            raise ValidationFailed("Message content is required")
        if len(content) > self.settings.max_message_length:
            raise ValidationFailed(
                f"Message cannot exceed {self.settings.max_message_length} characters"
            )
        return content

    # =========================================================================
    # Rooms
    # =========================================================================

    async def join_room(self, actor_id: str, handle: str, chat_id: str) -> Chat:
        chat = self._member_chat(chat_id, actor_id)
        self.transport.join(handle, chat.id)
        await self.transport.send(handle, events.RoomJoined(chatId=chat.id))
        logger.info(f"[Coordinator] {actor_id} joined room {chat.id}")
        return chat

    async def leave_room(self, actor_id: str, handle: str, chat_id: str) -> None:
        """Unsubscribe unconditionally; leaving a room you are not in is a no-op."""
        self.transport.leave(handle, chat_id)
        await self.transport.send(handle, events.RoomLeft(chatId=chat_id))

    # =========================================================================
    # Messages
    # =========================================================================

    async def send_message(
        self,
        actor_id: str,
        chat_id: str,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        parent_message_id: Optional[str] = None,
        thread_root_id: Optional[str] = None,
        forwarded_message_id: Optional[str] = None,
    ) -> MessageView:
        """Persist a message, bump the other members' counters, and fan it out.

        Raises:
            ValidationFailed: Empty or over-long content, or a reply/thread
                reference that does not belong to the same chat.
            NotFound: The actor is not a participant, or the forwarded
                message is not readable by the actor.
        """
        content = self._clean_content(content)
        chat = self._member_chat(chat_id, actor_id)
        async with self._chat_lock(chat.id):
            # membership may have changed while waiting for the lock
            chat = self._member_chat(chat.id, actor_id)

            for ref in (parent_message_id, thread_root_id):
                if ref is None:
                    continue
                referenced = self.store.get_message(ref)
                if referenced is None or referenced.chatId != chat.id:
                    raise ValidationFailed("Referenced message must belong to the same chat")

            forwarded = None
            if forwarded_message_id:
                source, _ = self._accessible_message(forwarded_message_id, actor_id)
                forwarded = ForwardedFrom(
                    userId=source.senderId,
                    chatId=source.chatId,
                    messageId=source.id,
                    at=source.createdAt,
                )

            message = self.store.create_message(
                chat.id,
                actor_id,
                content,
                message_type=message_type,
                parent_message_id=parent_message_id,
                thread_root_id=thread_root_id,
                forwarded_from=forwarded,
            )
            await self.ledger.increment(chat.id, exclude_user_id=actor_id)

            view = self.message_view(message)
            await self.transport.deliver(events.MessageCreated(message=view), self._room_recipients(chat))
            await self._refresh_chat_lists(chat.id)

        logger.info(f"[Coordinator] Message {message.id} sent in chat {chat.id} by {actor_id}")
        return view

    async def mark_read(self, actor_id: str, message_id: str) -> Message:
        """Add the actor to ``readBy`` and clear their counter for the chat.

        Re-marking is a no-op for ``readBy``; the receipt is still
        re-broadcast so a client that missed it converges.
        """
        message, chat = self._accessible_message(message_id, actor_id)
        async with self._chat_lock(chat.id):
            self.store.add_read(message.id, actor_id)
            await self.transport.deliver(
                events.MessageRead(messageId=message.id, chatId=chat.id, readBy=actor_id),
                self._room_recipients(chat),
            )
            await self.ledger.reset(chat.id, actor_id)
        return self.store.get_message(message.id)

    async def mark_all_read(self, actor_id: str, chat_id: str) -> List[str]:
        """Read every message from others in the chat. Returns the newly read ids."""
        chat = self._member_chat(chat_id, actor_id)
        async with self._chat_lock(chat.id):
            newly_read = self.store.mark_chat_read(chat.id, actor_id)
            recipients = self._room_recipients(chat)
            for message_id in newly_read:
                await self.transport.deliver(
                    events.MessageRead(messageId=message_id, chatId=chat.id, readBy=actor_id),
                    recipients,
                )
            await self.ledger.reset(chat.id, actor_id)
        return newly_read

    async def typing(self, actor_id: str, chat_id: str, is_typing: bool) -> None:
        chat = self._member_chat(chat_id, actor_id)
        user = self._user(actor_id)
        await self.transport.deliver(
            events.TypingChanged(chatId=chat.id, user=user, isTyping=is_typing),
            self._room_recipients(chat, exclude_user=actor_id),
        )

    async def react_to_message(
        self,
        actor_id: str,
        message_id: str,
        emoji: str,
        chat_id: Optional[str] = None,
    ) -> events.ReactionUpdated:
        """Toggle the actor's reaction and broadcast the full reaction mapping."""
        emoji = unicodedata.normalize("NFC", (emoji or "").strip())
        if not emoji or len(emoji) > MAX_EMOJI_LENGTH:
            raise ValidationFailed(f"Emoji must be 1-{MAX_EMOJI_LENGTH} characters")

        message, chat = self._accessible_message(message_id, actor_id, chat_id)
        async with self._chat_lock(chat.id):
            message = self.store.get_message(message.id)
            if message.is_deleted:
                raise ValidationFailed("Cannot react to a deleted message")
            action = self.store.toggle_reaction(message.id, emoji, actor_id)
            updated = self.store.get_message(message.id)
            event = events.ReactionUpdated(
                messageId=message.id,
                chatId=chat.id,
                emoji=emoji,
                userId=actor_id,
                action=action,
                reactions=updated.reactions,
            )
            await self.transport.deliver(event, self._room_recipients(chat))
        return event

    async def edit_message(
        self,
        actor_id: str,
        message_id: str,
        content: str,
        chat_id: Optional[str] = None,
    ) -> MessageView:
        content = self._clean_content(content)
        message, chat = self._accessible_message(message_id, actor_id, chat_id)
        async with self._chat_lock(chat.id):
            message = self.store.get_message(message.id)
            if message.senderId != actor_id:
                raise Forbidden("Only the sender can edit this message")
            if message.is_deleted:
                raise ValidationFailed("Cannot edit a deleted message")
            view = self.message_view(self.store.update_content(message.id, content, actor_id))
            await self.transport.deliver(events.MessageUpdated(message=view), self._room_recipients(chat))
        return view

    async def delete_message(
        self,
        actor_id: str,
        message_id: str,
        chat_id: Optional[str] = None,
    ) -> Message:
        """Tombstone a message. Allowed for its sender or the group admin."""
        message, chat = self._accessible_message(message_id, actor_id, chat_id)
        async with self._chat_lock(chat.id):
            message = self.store.get_message(message.id)
            is_admin = chat.type == ChatType.GROUP and chat.admin == actor_id
            if message.senderId != actor_id and not is_admin:
                raise Forbidden("Not allowed to delete this message")
            if message.is_deleted:
                raise ValidationFailed("Message is already deleted")
            deleted = self.store.soft_delete(message.id, actor_id)
            await self.transport.deliver(
                events.MessageDeleted(
                    messageId=deleted.id,
                    chatId=chat.id,
                    deletedBy=actor_id,
                    deletedAt=deleted.deletedAt,
                ),
                self._room_recipients(chat),
            )
        logger.info(f"[Coordinator] Message {deleted.id} deleted by {actor_id}")
        return deleted

    # =========================================================================
    # Chats and groups
    # =========================================================================

    async def create_group(
        self,
        actor_id: str,
        name: str,
        participant_ids: List[str],
        description: Optional[str] = None,
        min_others: int = 1,
    ) -> ChatView:
        """Create a group with the actor as admin and notify online participants.

        ``newChat`` goes straight to each participant's connections because
        nobody has joined the new room yet.
        """
        name = (name or "").strip()
        if not name or len(name) > self.settings.max_group_name_length:
            raise ValidationFailed(
                f"Group name must be 1-{self.settings.max_group_name_length} characters"
            )
        description = (description or "").strip() or None
        if description and len(description) > self.settings.max_description_length:
            raise ValidationFailed(
                f"Description cannot exceed {self.settings.max_description_length} characters"
            )

        others = [p for p in dict.fromkeys(participant_ids or []) if p != actor_id]
        if len(others) < min_others:
            raise ValidationFailed(f"At least {min_others} other participant(s) required")
        known = self.store.get_users(others)
        if len(known) != len(others):
            raise ValidationFailed("One or more participants not found")

        chat = self.store.create_chat(
            ChatType.GROUP,
            [actor_id] + others,
            name=name,
            description=description,
            admin_id=actor_id,
        )
        for participant in chat.participants:
            if not self.presence.is_online(participant):
                continue
            await self.transport.deliver(
                events.NewChat(chat=self.chat_view(chat, participant)),
                self.presence.connections_for(participant),
            )
        logger.info(f"[Coordinator] Group {chat.id} created by {actor_id} with {len(chat.participants)} members")
        return self.chat_view(chat, actor_id)

    async def join_group(self, actor_id: str, chat_id: str, handle: Optional[str] = None) -> ChatView:
        chat = self.store.get_chat(chat_id)
        if chat is None or chat.type != ChatType.GROUP:
            raise NotFound(GROUP_NOT_FOUND)
        async with self._chat_lock(chat.id):
            added = self.store.add_member(chat.id, actor_id)
            chat = self.store.get_chat(chat.id)
            if handle is not None:
                self.transport.join(handle, chat.id)
            if added:
                await self.transport.deliver(
                    events.UserJoined(chatId=chat.id, user=self._user(actor_id)),
                    self._room_recipients(chat),
                )
                await self._refresh_chat_lists(chat.id)
        if added:
            logger.info(f"[Coordinator] {actor_id} joined group {chat.id}")
        return self.chat_view(chat, actor_id)

    async def leave_group(self, actor_id: str, chat_id: str) -> None:
        chat = self.store.get_chat_for_member(chat_id, actor_id)
        if chat is None or chat.type != ChatType.GROUP:
            raise NotFound(GROUP_NOT_FOUND)
        async with self._chat_lock(chat.id):
            # the leaver still receives userLeft as confirmation
            recipients = self._room_recipients(chat)
            self.store.remove_member(chat.id, actor_id)
            await self.transport.deliver(events.UserLeft(chatId=chat.id, userId=actor_id), recipients)
            self.transport.leave_user(actor_id, chat.id)
            await self._refresh_chat_lists(chat.id)
        logger.info(f"[Coordinator] {actor_id} left group {chat.id}")

    async def find_or_create_direct_chat(self, actor_id: str, other_id: str) -> Tuple[ChatView, bool]:
        """Return the single direct chat for the pair, creating it on first use."""
        if not other_id or other_id == actor_id:
            raise ValidationFailed("Cannot create a direct chat with yourself")
        if self.store.get_user(other_id) is None:
            raise NotFound("User not found")
        chat, created = self.store.find_or_create_direct(actor_id, other_id)
        if created and self.presence.is_online(other_id):
            await self.transport.deliver(
                events.NewChat(chat=self.chat_view(chat, other_id)),
                self.presence.connections_for(other_id),
            )
        return self.chat_view(chat, actor_id), created

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, user: UserPublic, handle: str) -> bool:
        """Register presence for a freshly accepted connection."""
        came_online = await self.presence.register(user.id, handle)
        if came_online:
            others = self.transport.handles() - {handle}
            await self.transport.deliver(events.UserOnline(userId=user.id), others)
        return came_online

    async def disconnect(self, user_id: str, handle: str) -> bool:
        """Drop the connection and, if it was the user's last, announce userOffline."""
        self.transport.drop(handle)
        went_offline = await self.presence.unregister(user_id, handle)
        if went_offline:
            user = self.store.get_user(user_id)
            await self.transport.deliver(
                events.UserOffline(userId=user_id, lastSeen=user.lastSeen if user else None),
                self.transport.handles(),
            )
        return went_offline

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(self, actor_id: str, handle: str, event: events.InboundEvent) -> None:
        """Route one parsed inbound event to its handler."""
        if isinstance(event, events.JoinRoom):
            await self.join_room(actor_id, handle, event.chatId)
        elif isinstance(event, events.LeaveRoom):
            await self.leave_room(actor_id, handle, event.chatId)
        elif isinstance(event, events.SendMessage):
            await self.send_message(
                actor_id,
                event.chatId,
                event.content,
                message_type=event.messageType,
                parent_message_id=event.parentMessageId,
                thread_root_id=event.threadRootId,
                forwarded_message_id=event.forwardedFrom.messageId if event.forwardedFrom else None,
            )
        elif isinstance(event, events.Typing):
            await self.typing(actor_id, event.chatId, event.isTyping)
        elif isinstance(event, events.MarkAsRead):
            await self.mark_read(actor_id, event.messageId)
        elif isinstance(event, events.ReactMessage):
            await self.react_to_message(actor_id, event.messageId, event.emoji, chat_id=event.chatId)
        elif isinstance(event, events.EditMessage):
            await self.edit_message(actor_id, event.messageId, event.content, chat_id=event.chatId)
        elif isinstance(event, events.DeleteMessage):
            await self.delete_message(actor_id, event.messageId, chat_id=event.chatId)
        elif isinstance(event, events.CreateGroup):
            await self.create_group(
                actor_id, event.name, event.participantIds, description=event.description
            )
        elif isinstance(event, events.JoinGroup):
            await self.join_group(actor_id, event.chatId, handle=handle)
        elif isinstance(event, events.LeaveGroup):
            await self.leave_group(actor_id, event.chatId)
        elif isinstance(event, events.Ping):
            await self.transport.send(handle, events.Pong())
        else:
            raise ValidationFailed(f"Unsupported event: {type(event).__name__}")
