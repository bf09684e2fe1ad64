# agent_relay/auth.py
from typing import Optional

from fastapi import Security
from fastapi.security import APIKeyHeader

from agent_relay.errors import MissingKeyError

API_KEY_HEADER = "X-Agent-Key"

agent_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def require_key(api_key: Optional[str] = Security(agent_key_header)) -> str:
    """Pull the agent key out of its header. Whether it is valid is the directory's call."""
    api_key = (api_key or "").strip()
    if not api_key:
        raise MissingKeyError("Missing API key")
    return api_key
