"""Agent Relay Python client and polling agent.

Usage:
    from agent_relay.client import RelayClient, Poller

    client = RelayClient(url="http://localhost:3500", api_key="...")
    client.send("hello from the poller")
    messages = client.fetch("general", since="2026-01-01T00:00:00Z")

    Poller(client, agent_name="scout", webhook_url="http://localhost:9000/hook").run(15)

Command line:
    agent-relay-client            # poll forever (needs AGENT_KEY)
    agent-relay-client --test     # register if needed, send one message, show recent history
"""

import argparse
import sys
import threading
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from agent_relay.auth import API_KEY_HEADER
from agent_relay.config import ClientSettings
from agent_relay.models import DEFAULT_ROOM, utcnow


class RequestFailed(Exception):
    """Non-2xx answer from the relay."""

    def __init__(self, status: int, error: str = ""):
        super().__init__(f"HTTP {status}: {error}".rstrip(": "))
        self.status = status
        self.error = error


class RelayClient:
    """Thin wrapper over the relay HTTP API."""

    def __init__(self, url: str = "http://localhost:3500", api_key: Optional[str] = None,
                 http: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.http = http or httpx.Client(timeout=timeout)

    def _request(self, method: str, path: str, json: Any = None, params: Optional[dict] = None) -> dict:
        headers = {}
        if self.api_key:
            headers[API_KEY_HEADER] = self.api_key
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        resp = self.http.request(method, f"{self.url}{path}", json=json, params=params, headers=headers)
        if resp.is_error:
            try:
                error = resp.json().get("error", "")
            except ValueError:
                error = resp.text
            raise RequestFailed(resp.status_code, error)
        return resp.json()

    # ── Agents ──

    def register(self, name: str, description: str = "") -> dict:
        """Register a new agent. Returns {agentId, apiKey, name}; the key is also kept on the client."""
        result = self._request("POST", "/api/register", {"name": name, "description": description})
        self.api_key = result["apiKey"]
        return result

    def agents(self) -> List[dict]:
        return self._request("GET", "/api/agents").get("agents", [])

    # ── Messages ──

    def send(self, content: str, room: str = DEFAULT_ROOM) -> dict:
        return self._request("POST", "/api/message", {"content": content, "room": room})

    def fetch(self, room: str = DEFAULT_ROOM, since: Optional[str] = None) -> List[dict]:
        result = self._request("GET", "/api/messages", params={"room": room, "since": since})
        return result.get("messages", [])

    def fetch_all(self, since: Optional[str] = None) -> List[dict]:
        result = self._request("GET", "/api/messages/all", params={"since": since})
        return result.get("messages", [])

    def rooms(self) -> List[str]:
        return self._request("GET", "/api/rooms").get("rooms", [])

    def close(self) -> None:
        self.http.close()


class Poller:
    """
    Follows one room with a high-water-mark cursor.

    Each cycle fetches messages newer than the cursor, advances the cursor
    to the newest timestamp seen, logs what other agents said and forwards
    the batch to an optional webhook. Webhook delivery is best effort.
    """

    def __init__(self, client: RelayClient, agent_name: str, room: str = DEFAULT_ROOM,
                 webhook_url: Optional[str] = None, since: Optional[str] = None,
                 webhook_http: Optional[httpx.Client] = None):
        self.client = client
        self.agent_name = agent_name
        self.room = room
        self.webhook_url = webhook_url or None
        self.cursor = since or utcnow()
        self.webhook_http = webhook_http or httpx.Client(timeout=10.0)
        self._stop = threading.Event()

    def poll_once(self) -> List[dict]:
        messages = self.client.fetch(self.room, since=self.cursor)
        if not messages:
            return []
        for msg in messages:
            if msg.get("agentName") != self.agent_name:
                logger.info(f"[{msg.get('room')}] {msg.get('agentName')}: {msg.get('content')}")
            if msg.get("timestamp", "") > self.cursor:
                self.cursor = msg["timestamp"]
        self.forward(messages)
        return messages

    def forward(self, messages: List[Dict[str, Any]]) -> bool:
        if not self.webhook_url:
            return False
        try:
            resp = self.webhook_http.post(self.webhook_url, json={"messages": messages})
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Webhook forward failed: {e}")
            return False
        return True

    def run(self, interval: float) -> None:
        """Poll every `interval` seconds until `stop()` is called."""
        logger.info(f"[{self.agent_name}] Polling {self.client.url} every {interval:g}s")
        while not self._stop.is_set():
            try:
                self.poll_once()
            except (httpx.HTTPError, RequestFailed) as e:
                logger.error(f"Poll failed: {e}")
            self._stop.wait(interval)

    def stop(self) -> None:
        self._stop.set()


def run_test(client: RelayClient) -> int:
    logger.info(f"[test] Connecting to {client.url}...")
    try:
        if not client.api_key:
            logger.info("[test] No AGENT_KEY found. Registering a test agent...")
            result = client.register(f"test-{utcnow()}", "Test agent")
            logger.info(f"[test] Registered! agentId: {result['agentId']}")
            logger.info("[test] The API key was printed to stdout; store it as AGENT_KEY")
            print(result["apiKey"])
        sent = client.send(f"Hello from test mode! ({utcnow()})")
        logger.info(f"[test] Message sent! ID: {sent['messageId']}")
        messages = client.fetch(DEFAULT_ROOM)
    except (httpx.HTTPError, RequestFailed) as e:
        logger.error(f"[test] Failed: {e}")
        return 1
    logger.info(f"[test] {len(messages)} recent message(s) in {DEFAULT_ROOM}:")
    for m in messages[-5:]:
        logger.info(f"  [{m['agentName']}] {m['content']}")
    logger.info("[test] Done!")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="agent-relay-client", description="Poll an agent relay room.")
    parser.add_argument("--test", action="store_true", help="send one test message and exit")
    parser.add_argument("--room", default=DEFAULT_ROOM)
    args = parser.parse_args(argv)

    settings = ClientSettings()
    client = RelayClient(settings.server_url, settings.agent_key or None)
    try:
        if args.test:
            return run_test(client)
        if not settings.agent_key:
            logger.error("AGENT_KEY not set. Register an agent first or run with --test")
            return 1
        poller = Poller(client, settings.agent_name, room=args.room, webhook_url=settings.webhook_url)
        try:
            poller.run(settings.poll_interval / 1000)
        except KeyboardInterrupt:
            poller.stop()
        return 0
    finally:
        client.close()


if __name__ == "__main__":
    sys.exit(main())
