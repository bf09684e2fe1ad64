"""
Agent directory: registration, key lookup, listing.

Only the SHA-256 digest of each API key is stored; the raw key is handed
out once, at registration.
"""

import hashlib
import secrets
import uuid
from typing import Callable, List, Optional, Tuple

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agent_relay.errors import AuthError, StorageError, ValidationError
from agent_relay.models import Agent, utcnow


def hash_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode()).hexdigest()


class AgentDirectory:
    def __init__(self, on_joined: Optional[Callable[[Agent], None]] = None):
        self.on_joined = on_joined

    def register(self, db: Session, name: str, description: str = "") -> Tuple[Agent, str]:
        """Create an agent. Returns the record and its raw API key."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required")

        api_key = secrets.token_hex(32)
        now = utcnow()
        agent = Agent(
            id=str(uuid.uuid4()),
            name=name,
            description=(description or "").strip(),
            api_key_hash=hash_key(api_key),
            created_at=now,
            last_seen=now,
        )
        try:
            db.add(agent)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to register agent {name!r}: {e}")
            raise StorageError("could not register agent") from e

        logger.info(f"Registered agent {agent.id} ({agent.name})")
        if self.on_joined is not None:
            self.on_joined(agent)
        return agent, api_key

    def authenticate(self, db: Session, api_key: str) -> Agent:
        """Resolve a key to its agent and touch lastSeen."""
        try:
            agent = db.query(Agent).filter(Agent.api_key_hash == hash_key(api_key)).first()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Agent lookup failed: {e}")
            raise StorageError("could not look up agent") from e
        if agent is None:
            logger.warning("Rejected request with unknown API key")
            raise AuthError("Invalid API key")

        # best effort: a failed touch must not fail the request
        try:
            agent.last_seen = utcnow()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Could not update lastSeen for {agent.id}: {e}")
        return agent

    def list(self, db: Session) -> List[Agent]:
        try:
            return (
                db.query(Agent)
                .order_by(Agent.last_seen.desc(), Agent.created_at.desc())
                .all()
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Agent listing failed: {e}")
            raise StorageError("could not list agents") from e
