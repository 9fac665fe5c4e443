"""Tests for the /users directory endpoints."""


class TestUsersEndpoints:
    def test_list_excludes_caller(self, api_client, register_user, auth_headers):
        register_user("bob")
        register_user("carol")
        alice, token = register_user("alice")
        data = api_client.get("/users", headers=auth_headers(token)).json()["data"]
        assert [u["username"] for u in data] == ["bob", "carol"]
        assert all("passwordHash" not in u for u in data)

    def test_me(self, api_client, register_user, auth_headers):
        alice, token = register_user("alice")
        assert api_client.get("/users/me", headers=auth_headers(token)).json()["data"]["id"] == alice["id"]

    def test_search(self, api_client, register_user, auth_headers):
        register_user("bobby")
        register_user("robert")
        _, token = register_user("alice")

        found = api_client.get("/users/search?query=BOB", headers=auth_headers(token)).json()["data"]
        assert [u["username"] for u in found] == ["bobby"]

        found = api_client.get("/users/search?query=example.com", headers=auth_headers(token)).json()["data"]
        assert {u["username"] for u in found} == {"bobby", "robert"}

    def test_search_requires_query(self, api_client, register_user, auth_headers):
        _, token = register_user("alice")
        resp = api_client.get("/users/search", headers=auth_headers(token))
        assert resp.status_code == 400

    def test_blank_search_is_rejected(self, api_client, register_user, auth_headers):
        register_user("bob")
        _, token = register_user("alice")
        resp = api_client.get("/users/search", params={"query": "   "}, headers=auth_headers(token))
        assert resp.status_code == 400
        assert resp.json()["message"] == "Search query is required"

    def test_get_by_id(self, api_client, register_user, auth_headers):
        bob, _ = register_user("bob")
        _, token = register_user("alice")
        resp = api_client.get(f"/users/{bob['id']}", headers=auth_headers(token))
        assert resp.json()["data"]["username"] == "bob"
        assert api_client.get("/users/ghost", headers=auth_headers(token)).status_code == 404

    def test_requires_auth(self, api_client):
        assert api_client.get("/users").status_code == 401
