"""Unit tests for the DuckDB chat store."""
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor

import duckdb
import pytest

from parley.errors import Conflict, NotFound, Transient
from parley.store import ChatStore, ChatType, ForwardedFrom, MessageType
from parley.store.service import TOMBSTONE, pair_key, utcnow


@pytest.fixture
def users(store):
    """Three accounts: alice, bob, carol."""
    return [
        store.create_user(name, f"{name}@example.com", "digest")
        for name in ("alice", "bob", "carol")
    ]


def unread_by(store, chat_id, user_id):
    """Messages from others in the chat that ``user_id`` has no receipt for."""
    messages, _ = store.list_messages(chat_id, 0, 1000)
    return sum(1 for m in messages if m.senderId != user_id and user_id not in m.readBy)


@pytest.fixture
def temp_db():
    db_path = tempfile.mktemp(suffix=".duckdb")
    yield db_path
    for path in (db_path, db_path + ".wal"):
        if os.path.exists(path):
            os.remove(path)


class TestUsers:
    def test_create_and_lookup(self, store):
        user = store.create_user("Alice", "ALICE@Example.com", "digest")
        assert user.email == "alice@example.com"
        assert user.isOnline is False
        assert store.get_user_by_email("alice@example.com").id == user.id
        assert store.get_user("missing") is None

    def test_username_and_email_unique(self, store, users):
        with pytest.raises(Conflict):
            store.create_user("ALICE", "new@example.com", "digest")
        with pytest.raises(Conflict):
            store.create_user("newname", "bob@example.com", "digest")

    def test_get_users_skips_unknown(self, store, users):
        alice, bob, _ = users
        found = store.get_users([alice.id, bob.id, "ghost", alice.id])
        assert set(found) == {alice.id, bob.id}

    def test_search_excludes_self(self, store, users):
        alice, bob, carol = users
        results = store.search_users("example.com", exclude_id=alice.id)
        assert [u.id for u in results] == [bob.id, carol.id]
        assert [u.username for u in store.search_users("CAR", exclude_id=alice.id)] == ["carol"]

    def test_search_respects_limit(self, store, users):
        assert len(store.search_users("example", exclude_id=users[0].id, limit=1)) == 1

    def test_update_profile(self, store, users):
        alice, bob, _ = users
        updated = store.update_profile(alice.id, avatar="a.png")
        assert updated.avatar == "a.png"
        assert updated.username == "alice"
        with pytest.raises(Conflict):
            store.update_profile(alice.id, username="Bob")
        with pytest.raises(NotFound):
            store.update_profile("ghost", avatar="x")

    def test_set_presence(self, store, users):
        at = utcnow()
        store.set_presence(users[0].id, False, at)
        assert store.get_user(users[0].id).lastSeen == at


class TestChats:
    def test_direct_chat_is_unique_per_pair(self, store, users):
        alice, bob, _ = users
        first, created = store.find_or_create_direct(alice.id, bob.id)
        second, created_again = store.find_or_create_direct(bob.id, alice.id)
        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert first.type == ChatType.DIRECT
        assert first.participants == [alice.id, bob.id]
        assert first.unreadCount == {alice.id: 0, bob.id: 0}

    def test_concurrent_direct_creation_yields_one_chat(self, store, users):
        alice, bob, _ = users
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(
                lambda i: store.find_or_create_direct(*((alice.id, bob.id) if i % 2 else (bob.id, alice.id))),
                range(16),
            ))
        assert len({chat.id for chat, _ in results}) == 1
        assert sum(1 for _, created in results if created) == 1

    def test_pair_key_is_order_independent(self):
        assert pair_key("a", "b") == pair_key("b", "a")

    def test_group_membership(self, store, users):
        alice, bob, carol = users
        group = store.create_chat(ChatType.GROUP, [alice.id, bob.id, bob.id], name="Trip", admin_id=alice.id)
        assert group.participants == [alice.id, bob.id]
        assert group.admin == alice.id

        assert store.add_member(group.id, carol.id) is True
        assert store.add_member(group.id, carol.id) is False
        assert store.get_chat(group.id).participants == [alice.id, bob.id, carol.id]

        assert store.remove_member(group.id, bob.id) is True
        assert store.remove_member(group.id, bob.id) is False
        chat = store.get_chat(group.id)
        assert chat.participants == [alice.id, carol.id]
        assert set(chat.unreadCount) == {alice.id, carol.id}

    def test_get_chat_for_member(self, store, users):
        alice, bob, carol = users
        chat, _ = store.find_or_create_direct(alice.id, bob.id)
        assert store.get_chat_for_member(chat.id, alice.id).id == chat.id
        assert store.get_chat_for_member(chat.id, carol.id) is None
        assert store.get_chat_for_member("missing", alice.id) is None

    def test_list_chats_most_recent_first(self, store, users):
        alice, bob, carol = users
        with_bob, _ = store.find_or_create_direct(alice.id, bob.id)
        with_carol, _ = store.find_or_create_direct(alice.id, carol.id)
        store.create_message(with_bob.id, bob.id, "latest")

        chats, total = store.list_chats_for_user(alice.id, offset=0, limit=10)
        assert total == 2
        assert [c.id for c in chats] == [with_bob.id, with_carol.id]

        page, _ = store.list_chats_for_user(alice.id, offset=1, limit=1)
        assert [c.id for c in page] == [with_carol.id]


class TestUnreadCounters:
    def test_increment_and_reset(self, store, users):
        alice, bob, carol = users
        group = store.create_chat(ChatType.GROUP, [alice.id, bob.id, carol.id], name="g", admin_id=alice.id)
        assert sorted(store.increment_unread(group.id, alice.id)) == sorted([bob.id, carol.id])
        store.increment_unread(group.id, alice.id)
        assert store.get_unread(group.id, bob.id) == 2
        assert store.get_unread(group.id, alice.id) == 0

        assert store.reset_unread(group.id, bob.id) == 2
        assert store.get_unread(group.id, bob.id) == 0
        assert store.reset_unread(group.id, bob.id) == 0

    def test_missing_chat(self, store):
        with pytest.raises(NotFound):
            store.increment_unread("missing", "x")
        with pytest.raises(NotFound):
            store.reset_unread("missing", "x")
        with pytest.raises(NotFound):
            store.get_unread("missing", "x")


class TestMessages:
    @pytest.fixture
    def chat(self, store, users):
        chat, _ = store.find_or_create_direct(users[0].id, users[1].id)
        return chat

    def test_create_message(self, store, users, chat):
        alice = users[0]
        message = store.create_message(chat.id, alice.id, "hi")
        assert message.readBy == [alice.id]
        assert message.messageType == MessageType.TEXT
        assert store.get_chat(chat.id).lastMessageId == message.id

    def test_sequence_orders_history(self, store, users, chat):
        alice, bob, _ = users
        ids = [store.create_message(chat.id, alice.id if i % 2 else bob.id, f"m{i}").id for i in range(5)]
        page, total = store.list_messages(chat.id, offset=0, limit=3)
        assert total == 5
        assert [m.id for m in page] == ids[2:]
        older, _ = store.list_messages(chat.id, offset=3, limit=3)
        assert [m.id for m in older] == ids[:2]

    def test_forward_provenance_persists(self, store, users, chat):
        alice = users[0]
        source = store.create_message(chat.id, alice.id, "original")
        fwd = ForwardedFrom(userId=alice.id, chatId=chat.id, messageId=source.id, at=source.createdAt)
        copy = store.create_message(chat.id, alice.id, "original", forwarded_from=fwd)
        assert copy.forwardedFrom == fwd

    def test_add_read_is_idempotent(self, store, users, chat):
        alice, bob, _ = users
        message = store.create_message(chat.id, alice.id, "hi")
        assert store.add_read(message.id, bob.id) is True
        assert store.add_read(message.id, bob.id) is False
        assert store.get_message(message.id).readBy == [alice.id, bob.id]

    def test_mark_chat_read(self, store, users, chat):
        alice, bob, _ = users
        first = store.create_message(chat.id, alice.id, "one")
        store.create_message(chat.id, bob.id, "mine")
        second = store.create_message(chat.id, alice.id, "two")
        assert unread_by(store, chat.id, bob.id) == 2
        assert store.mark_chat_read(chat.id, bob.id) == [first.id, second.id]
        assert store.mark_chat_read(chat.id, bob.id) == []
        assert unread_by(store, chat.id, bob.id) == 0

    def test_reaction_toggle(self, store, users, chat):
        alice, bob, _ = users
        message = store.create_message(chat.id, alice.id, "hi")
        assert store.toggle_reaction(message.id, "👍", bob.id) == "add"
        assert store.toggle_reaction(message.id, "👍", alice.id) == "add"
        assert store.get_message(message.id).reactions == {"👍": [bob.id, alice.id]}
        assert store.toggle_reaction(message.id, "👍", bob.id) == "remove"
        assert store.toggle_reaction(message.id, "👍", alice.id) == "remove"
        assert store.get_message(message.id).reactions == {}

    def test_edit(self, store, users, chat):
        alice = users[0]
        message = store.create_message(chat.id, alice.id, "hi")
        edited = store.update_content(message.id, "hello", alice.id)
        assert edited.content == "hello"
        assert edited.editedBy == alice.id
        assert edited.editedAt is not None

    def test_soft_delete_keeps_read_receipts(self, store, users, chat):
        alice, bob, _ = users
        message = store.create_message(chat.id, alice.id, "secret")
        store.add_read(message.id, bob.id)
        deleted = store.soft_delete(message.id, alice.id)
        assert deleted.content == TOMBSTONE
        assert deleted.deletedBy == alice.id
        assert deleted.is_deleted
        assert deleted.readBy == [alice.id, bob.id]

    @staticmethod
    def fail_on(store, monkeypatch, fragment):
        """Make the store's next write containing ``fragment`` raise a DuckDB error."""
        real_execute = store._execute

        def execute(sql, params=()):
            if fragment in sql:
                raise duckdb.IOException("disk went away")
            return real_execute(sql, params)

        monkeypatch.setattr(store, "_execute", execute)

    def test_failed_create_message_leaves_nothing_behind(self, store, users, chat, monkeypatch):
        alice = users[0]
        self.fail_on(store, monkeypatch, "INSERT INTO message_reads")
        with pytest.raises(Transient):
            store.create_message(chat.id, alice.id, "lost")
        monkeypatch.undo()

        messages, total = store.list_messages(chat.id, 0, 10)
        assert (messages, total) == ([], 0)
        assert store.get_chat(chat.id).lastMessageId is None

        kept = store.create_message(chat.id, alice.id, "after")
        assert kept.readBy == [alice.id]

    def test_failed_mark_chat_read_is_all_or_nothing(self, store, users, chat, monkeypatch):
        alice, bob, _ = users
        store.create_message(chat.id, alice.id, "one")
        store.create_message(chat.id, alice.id, "two")
        calls = []
        real_execute = store._execute

        def execute(sql, params=()):
            if "INSERT INTO message_reads" in sql:
                calls.append(params)
                if len(calls) == 2:
                    raise duckdb.IOException("disk went away")
            return real_execute(sql, params)

        monkeypatch.setattr(store, "_execute", execute)
        with pytest.raises(Transient):
            store.mark_chat_read(chat.id, bob.id)
        monkeypatch.undo()

        assert unread_by(store, chat.id, bob.id) == 2

    def test_failed_group_creation_leaves_no_chat(self, store, users, monkeypatch):
        alice, bob, carol = users
        self.fail_on(store, monkeypatch, "INSERT INTO chat_members")
        with pytest.raises(Transient):
            store.create_chat(ChatType.GROUP, [alice.id, bob.id, carol.id], name="G", admin_id=alice.id)
        monkeypatch.undo()

        chats, total = store.list_chats_for_user(alice.id, 0, 10)
        assert (chats, total) == ([], 0)


class TestPersistence:
    def test_data_survives_reopen(self, temp_db):
        first = ChatStore(db_path=temp_db)
        user = first.create_user("alice", "alice@example.com", "digest")
        first.close()

        second = ChatStore(db_path=temp_db)
        try:
            assert second.get_user(user.id).username == "alice"
        finally:
            second.close()
