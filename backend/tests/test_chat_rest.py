"""Tests for the /chats REST endpoints."""
import pytest

from test_chat import receive_credentials, receive_until


@pytest.fixture
def trio(register_user):
    """alice, bob and carol as (user, token) pairs."""
    return [register_user(name) for name in ("alice", "bob", "carol")]


def create_direct(api_client, auth_headers, token, other_id):
    return api_client.post("/chats/private", json={"participantId": other_id}, headers=auth_headers(token))


class TestDirectChats:
    def test_find_or_create(self, api_client, auth_headers, trio):
        (alice, token_a), (bob, token_b), _ = trio
        first = create_direct(api_client, auth_headers, token_a, bob["id"])
        assert first.status_code == 201
        chat = first.json()["data"]
        assert chat["type"] == "direct"
        assert {p["id"] for p in chat["participants"]} == {alice["id"], bob["id"]}

        again = create_direct(api_client, auth_headers, token_b, alice["id"])
        assert again.status_code == 200
        assert again.json()["data"]["id"] == chat["id"]

    def test_cannot_chat_with_self_or_ghost(self, api_client, auth_headers, trio):
        (alice, token_a), _, _ = trio
        assert create_direct(api_client, auth_headers, token_a, alice["id"]).status_code == 400
        assert create_direct(api_client, auth_headers, token_a, "ghost").status_code == 404

    def test_requires_auth(self, api_client):
        assert api_client.get("/chats").status_code == 401


class TestGroupChats:
    def test_create_group(self, api_client, auth_headers, trio):
        (alice, token_a), (bob, _), (carol, _) = trio
        resp = api_client.post(
            "/chats/group",
            json={"name": "Trip", "description": "Summer", "participants": [bob["id"], carol["id"]]},
            headers=auth_headers(token_a),
        )
        assert resp.status_code == 201
        group = resp.json()["data"]
        assert group["admin"]["id"] == alice["id"]
        assert group["description"] == "Summer"
        assert [p["id"] for p in group["participants"]] == [alice["id"], bob["id"], carol["id"]]

    def test_group_needs_two_participants(self, api_client, auth_headers, trio):
        (_, token_a), (bob, _), _ = trio
        resp = api_client.post(
            "/chats/group", json={"name": "Pair", "participants": [bob["id"]]}, headers=auth_headers(token_a)
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Name and at least 2 participants required"

    def test_unknown_participant(self, api_client, auth_headers, trio):
        (_, token_a), (bob, _), _ = trio
        resp = api_client.post(
            "/chats/group", json={"name": "G", "participants": [bob["id"], "ghost"]}, headers=auth_headers(token_a)
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "One or more participants not found"


class TestMessagesEndpoints:
    def test_history_pagination_is_ascending(self, api_client, auth_headers, trio):
        (_, token_a), (bob, _), _ = trio
        chat_id = create_direct(api_client, auth_headers, token_a, bob["id"]).json()["data"]["id"]
        for i in range(5):
            resp = api_client.post(f"/chats/{chat_id}/messages", json={"content": f"m{i}"}, headers=auth_headers(token_a))
            assert resp.status_code == 201

        newest = api_client.get(f"/chats/{chat_id}/messages?page=1&limit=2", headers=auth_headers(token_a)).json()
        assert [m["content"] for m in newest["data"]] == ["m3", "m4"]
        assert newest["pagination"] == {"page": 1, "limit": 2, "total": 5, "totalPages": 3}

        oldest = api_client.get(f"/chats/{chat_id}/messages?page=3&limit=2", headers=auth_headers(token_a)).json()
        assert [m["content"] for m in oldest["data"]] == ["m0"]

    def test_send_validation(self, api_client, auth_headers, trio):
        (_, token_a), (bob, _), _ = trio
        chat_id = create_direct(api_client, auth_headers, token_a, bob["id"]).json()["data"]["id"]
        resp = api_client.post(f"/chats/{chat_id}/messages", json={"content": "   "}, headers=auth_headers(token_a))
        assert resp.status_code == 400
        resp = api_client.post(f"/chats/{chat_id}/messages", json={"content": "x" * 1001}, headers=auth_headers(token_a))
        assert resp.status_code == 400

    def test_outsider_cannot_read_or_write(self, api_client, auth_headers, trio):
        (_, token_a), (bob, _), (_, token_c) = trio
        chat_id = create_direct(api_client, auth_headers, token_a, bob["id"]).json()["data"]["id"]
        for resp in (
            api_client.get(f"/chats/{chat_id}", headers=auth_headers(token_c)),
            api_client.get(f"/chats/{chat_id}/messages", headers=auth_headers(token_c)),
            api_client.post(f"/chats/{chat_id}/messages", json={"content": "x"}, headers=auth_headers(token_c)),
            api_client.put(f"/chats/{chat_id}/read", headers=auth_headers(token_c)),
        ):
            assert resp.status_code == 404
            assert resp.json()["message"] == "Chat not found or access denied"

    def test_mark_all_read(self, api_client, auth_headers, trio):
        (_, token_a), (bob, token_b), _ = trio
        chat_id = create_direct(api_client, auth_headers, token_a, bob["id"]).json()["data"]["id"]
        for text in ("one", "two"):
            api_client.post(f"/chats/{chat_id}/messages", json={"content": text}, headers=auth_headers(token_a))
        assert api_client.get(f"/chats/{chat_id}", headers=auth_headers(token_b)).json()["data"]["unreadCount"] == 2

        resp = api_client.put(f"/chats/{chat_id}/read", headers=auth_headers(token_b))
        assert resp.json()["data"] == {"chatId": chat_id, "markedCount": 2}
        assert api_client.get(f"/chats/{chat_id}", headers=auth_headers(token_b)).json()["data"]["unreadCount"] == 0

    def test_list_chats_orders_by_activity(self, api_client, auth_headers, trio):
        (_, token_a), (bob, _), (carol, _) = trio
        with_bob = create_direct(api_client, auth_headers, token_a, bob["id"]).json()["data"]["id"]
        with_carol = create_direct(api_client, auth_headers, token_a, carol["id"]).json()["data"]["id"]
        api_client.post(f"/chats/{with_bob}/messages", json={"content": "bump"}, headers=auth_headers(token_a))

        body = api_client.get("/chats?limit=1", headers=auth_headers(token_a)).json()
        assert [c["id"] for c in body["data"]] == [with_bob]
        assert body["data"][0]["lastMessage"]["content"] == "bump"
        assert body["pagination"]["total"] == 2
        page_two = api_client.get("/chats?page=2&limit=1", headers=auth_headers(token_a)).json()
        assert [c["id"] for c in page_two["data"]] == [with_carol]


class TestRestFanOut:
    def test_rest_send_and_read_reach_live_sockets(self, api_client, auth_headers, trio):
        (alice, token_a), (bob, token_b), _ = trio
        chat_id = create_direct(api_client, auth_headers, token_a, bob["id"]).json()["data"]["id"]

        with api_client.websocket_connect(f"/ws?token={token_a}") as ws_a:
            receive_credentials(ws_a, alice["id"])
            ws_a.send_json({"type": "joinRoom", "chatId": chat_id})
            receive_until(ws_a, "roomJoined")

            resp = api_client.post(f"/chats/{chat_id}/messages", json={"content": "fallback"}, headers=auth_headers(token_b))
            message_id = resp.json()["data"]["id"]
            assert receive_until(ws_a, "message")["message"]["content"] == "fallback"

            api_client.put(f"/chats/{chat_id}/read", headers=auth_headers(token_a))
            read = receive_until(ws_a, "messageRead")
            assert read["messageId"] == message_id
            assert read["readBy"] == alice["id"]
