"""HTTP contract tests, run against the app in-process."""

import pytest
from fastapi.testclient import TestClient

from agent_relay.main import create_app
from agent_relay.models import utcnow
from conftest import FakeClock, register, send


def post_raw(client, body, api_key=None):
    headers = {"Content-Type": "application/json"}
    if api_key is not None:
        headers["X-Agent-Key"] = api_key
    return client.post("/api/message", content=body, headers=headers)


class TestRegister:
    def test_register(self, client):
        resp = client.post("/api/register", json={"name": "Alice", "description": "tester"})
        assert resp.status_code == 200
        body = resp.json()
        assert set(body) == {"agentId", "apiKey", "name"}
        assert body["name"] == "Alice"

    def test_description_optional(self, client):
        resp = client.post("/api/register", json={"name": "Bob"})
        assert resp.status_code == 200

    @pytest.mark.parametrize("payload", [{}, {"name": ""}, {"name": "   "}, {"description": "no name"}])
    def test_missing_or_blank_name(self, client, payload):
        resp = client.post("/api/register", json=payload)
        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_malformed_body(self, client):
        resp = client.post("/api/register", content=b"not json",
                           headers={"Content-Type": "application/json"})
        assert resp.status_code == 400

    def test_same_name_twice(self, client):
        a = register(client, "Twin")
        b = register(client, "Twin")
        assert a[0] != b[0] and a[1] != b[1]


class TestSend:
    def test_send(self, client):
        _, key = register(client)
        resp = send(client, key, "hello")
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert isinstance(body["messageId"], int)

    def test_missing_key(self, client):
        resp = client.post("/api/message", json={"content": "hi"})
        assert resp.status_code == 401
        assert resp.json()["error"]

    def test_invalid_key(self, client):
        resp = send(client, "bogus", "hi")
        assert resp.status_code == 403

    def test_key_in_body_is_not_a_credential(self, client):
        _, key = register(client)
        resp = client.post("/api/message", json={"content": "hi", "apiKey": key})
        assert resp.status_code == 401

    @pytest.mark.parametrize("content", ["", "   "])
    def test_empty_content(self, client, content):
        _, key = register(client)
        assert send(client, key, content).status_code == 400

    def test_rejected_sends_never_stored(self, client):
        _, key = register(client)
        send(client, "bogus", "forged")
        send(client, key, "   ")
        assert client.get("/api/messages/all").json()["messages"] == []

    def test_auth_checked_before_content(self, client):
        assert send(client, "bogus", "").status_code == 403
        resp = client.post("/api/message", json={"content": ""})
        assert resp.status_code == 401

    @pytest.mark.parametrize("body", [b'{"content": 123}', b"not json", b"[1, 2]", b""])
    def test_bad_body_with_invalid_key(self, client, body):
        resp = post_raw(client, body, "bogus")
        assert resp.status_code == 403

    @pytest.mark.parametrize("body", [b'{"content": 123}', b"not json"])
    def test_bad_body_without_key(self, client, body):
        assert post_raw(client, body).status_code == 401

    @pytest.mark.parametrize("body, error", [
        (b'{"content": 123}', "content must be a string"),
        (b'{"content": "hi", "room": 7}', "room must be a string"),
        (b"not json", "content is required"),
        (b'["hi"]', "content is required"),
    ])
    def test_bad_body_with_valid_key(self, client, body, error):
        _, key = register(client)
        resp = post_raw(client, body, key)
        assert resp.status_code == 400
        assert resp.json() == {"error": error}


class TestEndToEnd:
    def test_register_send_query(self, client):
        _, key = register(client, "Alice")
        before = utcnow()
        assert send(client, key, "hi").status_code == 200
        resp = client.get("/api/messages", params={"room": "general", "since": before})
        assert resp.status_code == 200
        messages = resp.json()["messages"]
        assert len(messages) == 1
        msg = messages[0]
        assert msg["content"] == "hi"
        assert msg["agentName"] == "Alice"
        assert msg["room"] == "general"
        assert set(msg) == {"id", "agentId", "agentName", "content", "room", "timestamp"}

    def test_room_defaults_and_isolation(self, client):
        _, key = register(client)
        send(client, key, "tech only", room="tech")
        send(client, key, "for everyone")
        general = client.get("/api/messages").json()["messages"]
        assert [m["content"] for m in general] == ["for everyone"]
        tech = client.get("/api/messages", params={"room": "tech"}).json()["messages"]
        assert [m["content"] for m in tech] == ["tech only"]

    def test_all_rooms(self, client):
        _, key = register(client)
        send(client, key, "one", room="a")
        send(client, key, "two", room="b")
        everything = client.get("/api/messages/all").json()["messages"]
        assert [m["content"] for m in everything] == ["one", "two"]
        since_first = client.get("/api/messages/all", params={"since": everything[0]["timestamp"]})
        assert [m["content"] for m in since_first.json()["messages"]] == ["two"]

    def test_js_style_cursor(self, client):
        _, key = register(client)
        send(client, key, "old")
        resp = client.get("/api/messages", params={"since": "2000-01-01T00:00:00.000Z"})
        assert [m["content"] for m in resp.json()["messages"]] == ["old"]

    @pytest.mark.parametrize("since", ["not-a-time", "9999-12-31T23:59:59-01:00"])
    def test_bad_cursor(self, client, since):
        resp = client.get("/api/messages", params={"since": since})
        assert resp.status_code == 400
        assert resp.json() == {"error": "bad timestamp"}


class TestListings:
    def test_rooms_default(self, client):
        assert client.get("/api/rooms").json() == {"rooms": ["general"]}

    def test_rooms_after_use(self, client):
        _, key = register(client)
        send(client, key, "x", room="tech")
        assert sorted(client.get("/api/rooms").json()["rooms"]) == ["general", "tech"]

    def test_agents_hide_keys(self, client):
        _, key = register(client, "Alice", "desc")
        agents = client.get("/api/agents").json()["agents"]
        assert len(agents) == 1
        assert set(agents[0]) == {"id", "name", "description", "createdAt", "lastSeen"}
        assert key not in str(agents)

    def test_agents_most_recent_first(self, client):
        alice_id, alice_key = register(client, "Alice")
        bob_id, _ = register(client, "Bob")
        send(client, alice_key, "I'm back")
        ids = [a["id"] for a in client.get("/api/agents").json()["agents"]]
        assert ids == [alice_id, bob_id]


class TestHealth:
    def test_index(self, client):
        assert client.get("/").json()["status"] == "up"

    def test_healthz(self, client):
        assert client.get("/healthz").json() == {"ok": True}


class TestRateLimit:
    @pytest.fixture
    def limited(self, settings):
        settings = settings.model_copy(update={"cooldown_seconds": 30})
        app = create_app(settings)
        clock = FakeClock()
        app.state.relay.limiter.clock = clock
        with TestClient(app) as c:
            yield c, clock

    def test_second_send_within_window(self, limited):
        client, clock = limited
        _, key = register(client)
        assert send(client, key, "first").status_code == 200
        clock.advance(5)
        resp = send(client, key, "second")
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "25"
        assert len(client.get("/api/messages").json()["messages"]) == 1

    def test_send_after_cooldown(self, limited):
        client, clock = limited
        _, key = register(client)
        assert send(client, key, "first").status_code == 200
        clock.advance(30)
        assert send(client, key, "second").status_code == 200

    def test_other_agents_unaffected(self, limited):
        client, _ = limited
        _, alice = register(client, "Alice")
        _, bob = register(client, "Bob")
        assert send(client, alice, "hi").status_code == 200
        assert send(client, bob, "hi back").status_code == 200

    def test_admission_checked_before_content(self, limited):
        client, _ = limited
        _, key = register(client)
        send(client, key, "first")
        assert send(client, key, "").status_code == 429

    @pytest.mark.parametrize("body", [b'{"content": 123}', b"not json", b'{"content": "x", "room": []}'])
    def test_admission_checked_before_body(self, limited, body):
        client, _ = limited
        _, key = register(client)
        assert send(client, key, "first").status_code == 200
        resp = post_raw(client, body, key)
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "30"

    def test_bad_room_does_not_start_cooldown(self, limited):
        client, _ = limited
        _, key = register(client)
        assert post_raw(client, b'{"content": "x", "room": 5}', key).status_code == 400
        assert send(client, key, "real one").status_code == 200

    def test_empty_message_does_not_start_cooldown(self, limited):
        client, _ = limited
        _, key = register(client)
        assert send(client, key, "  ").status_code == 400
        assert send(client, key, "real one").status_code == 200

    def test_invalid_key_not_rate_limited_as_agent(self, limited):
        client, _ = limited
        assert send(client, "bogus", "x").status_code == 403
        assert send(client, "bogus", "x").status_code == 403


class TestPersistence:
    def test_messages_survive_restart(self, settings):
        with TestClient(create_app(settings)) as c:
            _, key = register(c)
            send(c, key, "remember me")
        with TestClient(create_app(settings)) as c:
            messages = c.get("/api/messages").json()["messages"]
            assert [m["content"] for m in messages] == ["remember me"]
            assert send(c, key, "still me").status_code == 200
            stamps = [m["timestamp"] for m in c.get("/api/messages").json()["messages"]]
            assert stamps == sorted(stamps)
