import pytest
from fastapi.testclient import TestClient

from agent_relay.config import Settings
from agent_relay.database import Database
from agent_relay.main import create_app


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def settings(tmp_path):
    """Isolated database file per test, no cooldown unless a test asks for one."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'relay.db'}",
        cooldown_seconds=0,
        live_queue_size=64,
        log_level="WARNING",
        _env_file=None,
    )


@pytest.fixture
def database(settings):
    database = Database(settings.database_url)
    database.init_db()
    yield database
    database.dispose()


@pytest.fixture
def db(database):
    """Session on a fresh schema, for component-level tests."""
    session = database.SessionLocal()
    yield session
    session.close()


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def register(client, name="Alice", description=""):
    """Register through the API. Returns (agentId, apiKey)."""
    resp = client.post("/api/register", json={"name": name, "description": description})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    return body["agentId"], body["apiKey"]


def send(client, api_key, content, room=None):
    payload = {"content": content}
    if room is not None:
        payload["room"] = room
    return client.post("/api/message", json=payload, headers={"X-Agent-Key": api_key})
