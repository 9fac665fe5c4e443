"""DuckDB-backed conversation store.

This module owns every persistent record of the chat service: user
accounts, chats and their membership, messages, read receipts and
reactions. Unread counters live on the membership rows so that
increments and resets are single SQL statements.

Database Schema:
    users:             one row per account
    chats:             one row per conversation
    chat_members:      (chat_id, user_id) -> position, unread_count
    direct_pairs:      sorted "a:b" key -> chat_id (one direct chat per pair)
    messages:          one row per message, ``seq`` gives a total order
    message_reads:     (message_id, user_id), insert-only
    message_reactions: (message_id, emoji, user_id)

Thread Safety:
    The DuckDB connection is NOT thread-safe. Every public method runs
    under one re-entrant lock and one transaction, so a method that writes
    several rows either applies all of them or none. DuckDB errors roll the
    call back and are reported as ``Transient``.

Usage:
    store = ChatStore(db_path=":memory:")
    user = store.create_user("alice", "alice@example.com", digest)
    chat, created = store.find_or_create_direct(user.id, other.id)
"""
import functools
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import duckdb

from parley.errors import Conflict, NotFound, Transient

from .schemas import (
    Chat,
    ChatType,
    ForwardedFrom,
    Message,
    MessageType,
    UserPublic,
    UserRecord,
)

logger = logging.getLogger(__name__)

TOMBSTONE = "This message was deleted"

_SCHEMA = [
    "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1",
    "CREATE SEQUENCE IF NOT EXISTS reads_seq START 1",
    "CREATE SEQUENCE IF NOT EXISTS reactions_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS users (
        id            VARCHAR PRIMARY KEY,
        username      VARCHAR NOT NULL,
        email         VARCHAR NOT NULL,
        password_hash VARCHAR NOT NULL,
        avatar        VARCHAR,
        is_online     BOOLEAN NOT NULL DEFAULT FALSE,
        last_seen     TIMESTAMP,
        created_at    TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chats (
        id              VARCHAR PRIMARY KEY,
        type            VARCHAR NOT NULL,
        name            VARCHAR,
        description     VARCHAR,
        avatar          VARCHAR,
        admin_id        VARCHAR,
        last_message_id VARCHAR,
        created_at      TIMESTAMP NOT NULL,
        updated_at      TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_members (
        chat_id      VARCHAR NOT NULL,
        user_id      VARCHAR NOT NULL,
        position     INTEGER NOT NULL,
        unread_count INTEGER NOT NULL DEFAULT 0,
        joined_at    TIMESTAMP NOT NULL,
        PRIMARY KEY (chat_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS direct_pairs (
        pair_key VARCHAR PRIMARY KEY,
        chat_id  VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id                VARCHAR PRIMARY KEY,
        seq               BIGINT DEFAULT nextval('messages_seq'),
        chat_id           VARCHAR NOT NULL,
        sender_id         VARCHAR NOT NULL,
        content           VARCHAR NOT NULL,
        message_type      VARCHAR NOT NULL DEFAULT 'text',
        parent_message_id VARCHAR,
        thread_root_id    VARCHAR,
        fwd_user_id       VARCHAR,
        fwd_chat_id       VARCHAR,
        fwd_message_id    VARCHAR,
        fwd_at            TIMESTAMP,
        edited_at         TIMESTAMP,
        edited_by         VARCHAR,
        deleted_at        TIMESTAMP,
        deleted_by        VARCHAR,
        created_at        TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_reads (
        message_id VARCHAR NOT NULL,
        user_id    VARCHAR NOT NULL,
        seq        BIGINT DEFAULT nextval('reads_seq'),
        read_at    TIMESTAMP NOT NULL,
        PRIMARY KEY (message_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_reactions (
        message_id VARCHAR NOT NULL,
        emoji      VARCHAR NOT NULL,
        user_id    VARCHAR NOT NULL,
        seq        BIGINT DEFAULT nextval('reactions_seq'),
        PRIMARY KEY (message_id, emoji, user_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_members_user ON chat_members(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id)",
]


def utcnow() -> datetime:
    """Naive UTC timestamp (DuckDB TIMESTAMP columns carry no zone)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


def pair_key(user_a: str, user_b: str) -> str:
    """Order-independent key for a direct conversation between two users."""
    return ":".join(sorted((user_a, user_b)))


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


def _guarded(method):
    """Run a store method under the store lock in one transaction.

    Nested guarded calls join the outer transaction. Any failure rolls the
    whole call back, and DuckDB failures are reported as Transient.
    """
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            if self._in_transaction:
                return method(self, *args, **kwargs)
            self._in_transaction = True
            try:
                with self._transaction():
                    return method(self, *args, **kwargs)
            except duckdb.Error as exc:
                logger.error("[ChatStore] %s failed: %s", method.__name__, exc)
                raise Transient() from exc
            finally:
                self._in_transaction = False
    return wrapper


class ChatStore:
    """Persistent store for users, chats and messages.

    Attributes:
        _db_path: Path to the DuckDB file, or ``:memory:``.
    """

    _db_path: str = "parley.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open (or create) the database and its schema.

        Args:
            db_path: Path to DuckDB file. Defaults to "parley.duckdb".
        """
        if db_path:
            self._db_path = db_path
        self._lock = threading.RLock()
        self._in_transaction = False
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info("[ChatStore] Initialized with db=%s", self._db_path)

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    @contextmanager
    def _transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        conn = self._get_connection()
        conn.begin()
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        for statement in _SCHEMA:
            conn.execute(statement)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def _rows(self, sql: str, params: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        cursor = self._get_connection().execute(sql, list(params))
        columns = [col[0] for col in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def _row(self, sql: str, params: Iterable[Any] = ()) -> Optional[Dict[str, Any]]:
        rows = self._rows(sql, params)
        return rows[0] if rows else None

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> None:
        self._get_connection().execute(sql, list(params))

    # -----------------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------------

    @staticmethod
    def _to_user(row: Dict[str, Any]) -> UserRecord:
        return UserRecord(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            avatar=row["avatar"],
            isOnline=row["is_online"],
            lastSeen=row["last_seen"],
            passwordHash=row["password_hash"],
            createdAt=row["created_at"],
        )

    @_guarded
    def create_user(self, username: str, email: str, password_hash: str) -> UserRecord:
        """Create an account.

        Raises:
            Conflict: If the username or email is already taken.
        """
        email = email.strip().lower()
        username = username.strip()
        taken = self._row(
            "SELECT id FROM users WHERE email = ? OR lower(username) = lower(?)",
            [email, username],
        )
        if taken:
            raise Conflict("User with this email or username already exists")

        user_id = new_id()
        now = utcnow()
        self._execute(
            """
            INSERT INTO users (id, username, email, password_hash, avatar, is_online, last_seen, created_at)
            VALUES (?, ?, ?, ?, NULL, FALSE, ?, ?)
            """,
            [user_id, username, email, password_hash, now, now],
        )
        return self.get_user(user_id)

    @_guarded
    def get_user(self, user_id: str) -> Optional[UserRecord]:
        row = self._row("SELECT * FROM users WHERE id = ?", [user_id])
        return self._to_user(row) if row else None

    @_guarded
    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        row = self._row("SELECT * FROM users WHERE email = ?", [email.strip().lower()])
        return self._to_user(row) if row else None

    @_guarded
    def get_users(self, user_ids: Sequence[str]) -> Dict[str, UserPublic]:
        """Public profiles keyed by id; unknown ids are simply absent."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        rows = self._rows(f"SELECT * FROM users WHERE id IN ({_placeholders(ids)})", ids)
        return {row["id"]: self._to_user(row).public() for row in rows}

    @_guarded
    def list_users(self, exclude_id: Optional[str] = None) -> List[UserPublic]:
        rows = self._rows(
            "SELECT * FROM users WHERE id <> ? ORDER BY username",
            [exclude_id or ""],
        )
        return [self._to_user(row).public() for row in rows]

    @_guarded
    def search_users(self, query: str, exclude_id: str, limit: int = 10) -> List[UserPublic]:
        """Case-insensitive substring match on username or email, excluding one user."""
        rows = self._rows(
            """
            SELECT * FROM users
            WHERE id <> ?
              AND (strpos(lower(username), lower(?)) > 0 OR strpos(lower(email), lower(?)) > 0)
            ORDER BY username
            LIMIT ?
            """,
            [exclude_id, query, query, limit],
        )
        return [self._to_user(row).public() for row in rows]

    @_guarded
    def update_profile(
        self,
        user_id: str,
        username: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> UserRecord:
        """Change username and/or avatar.

        Raises:
            NotFound: If the user does not exist.
            Conflict: If the new username belongs to someone else.
        """
        user = self.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        if username and username.lower() != user.username.lower():
            taken = self._row(
                "SELECT id FROM users WHERE lower(username) = lower(?) AND id <> ?",
                [username, user_id],
            )
            if taken:
                raise Conflict("Username already taken")
        self._execute(
            "UPDATE users SET username = ?, avatar = ? WHERE id = ?",
            [username or user.username, avatar if avatar is not None else user.avatar, user_id],
        )
        return self.get_user(user_id)

    @_guarded
    def set_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> None:
        self._execute(
            "UPDATE users SET is_online = ?, last_seen = ? WHERE id = ?",
            [is_online, last_seen, user_id],
        )

    # -----------------------------------------------------------------------
    # Chats
    # -----------------------------------------------------------------------

    def _load_chats(self, rows: List[Dict[str, Any]]) -> List[Chat]:
        if not rows:
            return []
        ids = [row["id"] for row in rows]
        members: Dict[str, List[Tuple[str, int]]] = {chat_id: [] for chat_id in ids}
        for m in self._rows(
            f"""
            SELECT chat_id, user_id, unread_count FROM chat_members
            WHERE chat_id IN ({_placeholders(ids)})
            ORDER BY position
            """,
            ids,
        ):
            members[m["chat_id"]].append((m["user_id"], m["unread_count"]))
        return [
            Chat(
                id=row["id"],
                type=ChatType(row["type"]),
                participants=[user_id for user_id, _ in members[row["id"]]],
                name=row["name"],
                description=row["description"],
                avatar=row["avatar"],
                admin=row["admin_id"],
                lastMessageId=row["last_message_id"],
                unreadCount={user_id: count for user_id, count in members[row["id"]]},
                createdAt=row["created_at"],
                updatedAt=row["updated_at"],
            )
            for row in rows
        ]

    def _insert_member(self, chat_id: str, user_id: str, now: datetime) -> None:
        self._execute(
            """
            INSERT INTO chat_members (chat_id, user_id, position, unread_count, joined_at)
            SELECT ?, ?, COALESCE(MAX(position), -1) + 1, 0, ?
            FROM chat_members WHERE chat_id = ?
            """,
            [chat_id, user_id, now, chat_id],
        )

    @_guarded
    def create_chat(
        self,
        chat_type: ChatType,
        participants: Sequence[str],
        name: Optional[str] = None,
        description: Optional[str] = None,
        avatar: Optional[str] = None,
        admin_id: Optional[str] = None,
    ) -> Chat:
        """Create a chat with the given participants (duplicates collapsed, order kept)."""
        chat_id = new_id()
        now = utcnow()
        self._execute(
            """
            INSERT INTO chats (id, type, name, description, avatar, admin_id, last_message_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, NULL, ?, ?)
            """,
            [chat_id, chat_type.value, name, description, avatar, admin_id, now, now],
        )
        for user_id in dict.fromkeys(participants):
            self._insert_member(chat_id, user_id, now)
        return self.get_chat(chat_id)

    @_guarded
    def find_or_create_direct(self, user_a: str, user_b: str) -> Tuple[Chat, bool]:
        """Return the direct chat between two users, creating it if needed.

        The pair lookup and creation run under the store lock, and the
        ``direct_pairs`` primary key rejects a second chat for the same pair.

        Returns:
            Tuple of (chat, created).
        """
        key = pair_key(user_a, user_b)
        existing = self._row("SELECT chat_id FROM direct_pairs WHERE pair_key = ?", [key])
        if existing:
            return self.get_chat(existing["chat_id"]), False

        chat = self.create_chat(ChatType.DIRECT, [user_a, user_b])
        self._execute(
            "INSERT INTO direct_pairs (pair_key, chat_id) VALUES (?, ?)",
            [key, chat.id],
        )
        logger.info("[ChatStore] Created direct chat %s for pair %s", chat.id, key)
        return chat, True

    @_guarded
    def get_chat(self, chat_id: str) -> Optional[Chat]:
        chats = self._load_chats(self._rows("SELECT * FROM chats WHERE id = ?", [chat_id]))
        return chats[0] if chats else None

    @_guarded
    def get_chat_for_member(self, chat_id: str, user_id: str) -> Optional[Chat]:
        """The chat, only if ``user_id`` is currently a participant."""
        chat = self.get_chat(chat_id)
        if chat is None or not chat.has_member(user_id):
            return None
        return chat

    @_guarded
    def list_chats_for_user(self, user_id: str, offset: int, limit: int) -> Tuple[List[Chat], int]:
        """Chats the user participates in, most recently updated first."""
        rows = self._rows(
            """
            SELECT c.* FROM chats c
            JOIN chat_members m ON m.chat_id = c.id
            WHERE m.user_id = ?
            ORDER BY c.updated_at DESC, c.id
            LIMIT ? OFFSET ?
            """,
            [user_id, limit, offset],
        )
        total = self._row(
            "SELECT COUNT(*) AS n FROM chat_members WHERE user_id = ?", [user_id]
        )["n"]
        return self._load_chats(rows), total

    @_guarded
    def add_member(self, chat_id: str, user_id: str) -> bool:
        """Add a participant with a zero unread counter. Returns False if already present."""
        if self._row(
            "SELECT 1 AS x FROM chat_members WHERE chat_id = ? AND user_id = ?",
            [chat_id, user_id],
        ):
            return False
        now = utcnow()
        self._insert_member(chat_id, user_id, now)
        self._execute("UPDATE chats SET updated_at = ? WHERE id = ?", [now, chat_id])
        return True

    @_guarded
    def remove_member(self, chat_id: str, user_id: str) -> bool:
        """Remove a participant and prune their unread counter."""
        removed = self._rows(
            "DELETE FROM chat_members WHERE chat_id = ? AND user_id = ? RETURNING user_id",
            [chat_id, user_id],
        )
        if removed:
            self._execute("UPDATE chats SET updated_at = ? WHERE id = ?", [utcnow(), chat_id])
        return bool(removed)

    @_guarded
    def set_last_message(self, chat_id: str, message_id: str, at: datetime) -> None:
        self._execute(
            "UPDATE chats SET last_message_id = ?, updated_at = ? WHERE id = ?",
            [message_id, at, chat_id],
        )

    # -----------------------------------------------------------------------
    # Unread counters
    # -----------------------------------------------------------------------

    def _require_chat(self, chat_id: str) -> None:
        if not self._row("SELECT 1 AS x FROM chats WHERE id = ?", [chat_id]):
            raise NotFound(f"Chat {chat_id} does not exist")

    @_guarded
    def increment_unread(self, chat_id: str, exclude_user_id: str) -> List[str]:
        """Add one to every member's counter except ``exclude_user_id``.

        Returns:
            The user ids whose counter was incremented.
        """
        self._require_chat(chat_id)
        rows = self._rows(
            """
            UPDATE chat_members SET unread_count = unread_count + 1
            WHERE chat_id = ? AND user_id <> ?
            RETURNING user_id
            """,
            [chat_id, exclude_user_id],
        )
        return [row["user_id"] for row in rows]

    @_guarded
    def reset_unread(self, chat_id: str, user_id: str) -> int:
        """Zero one member's counter.

        Returns:
            The counter value before the reset (0 if the user is not a member).
        """
        self._require_chat(chat_id)
        row = self._row(
            "SELECT unread_count FROM chat_members WHERE chat_id = ? AND user_id = ?",
            [chat_id, user_id],
        )
        if row is None:
            return 0
        if row["unread_count"] > 0:
            self._execute(
                "UPDATE chat_members SET unread_count = 0 WHERE chat_id = ? AND user_id = ?",
                [chat_id, user_id],
            )
        return row["unread_count"]

    @_guarded
    def get_unread(self, chat_id: str, user_id: str) -> int:
        self._require_chat(chat_id)
        row = self._row(
            "SELECT unread_count FROM chat_members WHERE chat_id = ? AND user_id = ?",
            [chat_id, user_id],
        )
        return row["unread_count"] if row else 0

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    def _load_messages(self, rows: List[Dict[str, Any]]) -> List[Message]:
        if not rows:
            return []
        ids = [row["id"] for row in rows]
        read_by: Dict[str, List[str]] = {message_id: [] for message_id in ids}
        for r in self._rows(
            f"SELECT message_id, user_id FROM message_reads WHERE message_id IN ({_placeholders(ids)}) ORDER BY seq",
            ids,
        ):
            read_by[r["message_id"]].append(r["user_id"])
        reactions: Dict[str, Dict[str, List[str]]] = {message_id: {} for message_id in ids}
        for r in self._rows(
            f"SELECT message_id, emoji, user_id FROM message_reactions WHERE message_id IN ({_placeholders(ids)}) ORDER BY seq",
            ids,
        ):
            reactions[r["message_id"]].setdefault(r["emoji"], []).append(r["user_id"])

        messages = []
        for row in rows:
            forwarded = None
            if row["fwd_message_id"]:
                forwarded = ForwardedFrom(
                    userId=row["fwd_user_id"],
                    chatId=row["fwd_chat_id"],
                    messageId=row["fwd_message_id"],
                    at=row["fwd_at"],
                )
            messages.append(Message(
                id=row["id"],
                chatId=row["chat_id"],
                senderId=row["sender_id"],
                content=row["content"],
                messageType=MessageType(row["message_type"]),
                readBy=read_by[row["id"]],
                parentMessageId=row["parent_message_id"],
                threadRootId=row["thread_root_id"],
                forwardedFrom=forwarded,
                reactions=reactions[row["id"]],
                editedAt=row["edited_at"],
                editedBy=row["edited_by"],
                deletedAt=row["deleted_at"],
                deletedBy=row["deleted_by"],
                createdAt=row["created_at"],
                seq=row["seq"],
            ))
        return messages

    @_guarded
    def create_message(
        self,
        chat_id: str,
        sender_id: str,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        parent_message_id: Optional[str] = None,
        thread_root_id: Optional[str] = None,
        forwarded_from: Optional[ForwardedFrom] = None,
    ) -> Message:
        """Persist a message with ``readBy = [sender]`` and point the chat at it."""
        message_id = new_id()
        now = utcnow()
        fwd = forwarded_from
        self._execute(
            """
            INSERT INTO messages
              (id, chat_id, sender_id, content, message_type, parent_message_id,
               thread_root_id, fwd_user_id, fwd_chat_id, fwd_message_id, fwd_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                message_id, chat_id, sender_id, content, message_type.value,
                parent_message_id, thread_root_id,
                fwd.userId if fwd else None,
                fwd.chatId if fwd else None,
                fwd.messageId if fwd else None,
                fwd.at if fwd else None,
                now,
            ],
        )
        self._execute(
            "INSERT INTO message_reads (message_id, user_id, read_at) VALUES (?, ?, ?)",
            [message_id, sender_id, now],
        )
        self.set_last_message(chat_id, message_id, now)
        return self.get_message(message_id)

    @_guarded
    def get_message(self, message_id: str) -> Optional[Message]:
        messages = self._load_messages(self._rows("SELECT * FROM messages WHERE id = ?", [message_id]))
        return messages[0] if messages else None

    @_guarded
    def list_messages(self, chat_id: str, offset: int, limit: int) -> Tuple[List[Message], int]:
        """One page of a chat's history, newest page first, returned oldest-first."""
        rows = self._rows(
            "SELECT * FROM messages WHERE chat_id = ? ORDER BY seq DESC LIMIT ? OFFSET ?",
            [chat_id, limit, offset],
        )
        total = self._row("SELECT COUNT(*) AS n FROM messages WHERE chat_id = ?", [chat_id])["n"]
        return list(reversed(self._load_messages(rows))), total

    @_guarded
    def add_read(self, message_id: str, user_id: str) -> bool:
        """Record a read receipt. Returns False if it already existed."""
        if self._row(
            "SELECT 1 AS x FROM message_reads WHERE message_id = ? AND user_id = ?",
            [message_id, user_id],
        ):
            return False
        self._execute(
            "INSERT INTO message_reads (message_id, user_id, read_at) VALUES (?, ?, ?)",
            [message_id, user_id, utcnow()],
        )
        return True

    @_guarded
    def mark_chat_read(self, chat_id: str, user_id: str) -> List[str]:
        """Mark every message not sent by and not yet read by ``user_id`` as read.

        Returns:
            Ids of the messages that were newly marked, oldest first.
        """
        rows = self._rows(
            """
            SELECT m.id FROM messages m
            WHERE m.chat_id = ? AND m.sender_id <> ?
              AND NOT EXISTS (
                  SELECT 1 FROM message_reads r WHERE r.message_id = m.id AND r.user_id = ?
              )
            ORDER BY m.seq
            """,
            [chat_id, user_id, user_id],
        )
        now = utcnow()
        for row in rows:
            self._execute(
                "INSERT INTO message_reads (message_id, user_id, read_at) VALUES (?, ?, ?)",
                [row["id"], user_id, now],
            )
        return [row["id"] for row in rows]

    @_guarded
    def toggle_reaction(self, message_id: str, emoji: str, user_id: str) -> str:
        """Add the reaction if absent, remove it if present.

        Returns:
            "add" or "remove".
        """
        removed = self._rows(
            """
            DELETE FROM message_reactions
            WHERE message_id = ? AND emoji = ? AND user_id = ?
            RETURNING user_id
            """,
            [message_id, emoji, user_id],
        )
        if removed:
            return "remove"
        self._execute(
            "INSERT INTO message_reactions (message_id, emoji, user_id) VALUES (?, ?, ?)",
            [message_id, emoji, user_id],
        )
        return "add"

    @_guarded
    def update_content(self, message_id: str, content: str, editor_id: str) -> Message:
        self._execute(
            "UPDATE messages SET content = ?, edited_at = ?, edited_by = ? WHERE id = ?",
            [content, utcnow(), editor_id, message_id],
        )
        return self.get_message(message_id)

    @_guarded
    def soft_delete(self, message_id: str, deleter_id: str) -> Message:
        """Replace the content with the tombstone; read receipts are untouched."""
        self._execute(
            "UPDATE messages SET content = ?, deleted_at = ?, deleted_by = ? WHERE id = ?",
            [TOMBSTONE, utcnow(), deleter_id, message_id],
        )
        return self.get_message(message_id)
