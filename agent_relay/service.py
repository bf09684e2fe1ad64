"""
Ingestion and query service.

Holds no state of its own beyond references to the components it
orchestrates. Send path: authenticate -> admission -> validate -> append -> broadcast.
"""

from typing import Any, List, Optional, Tuple

from loguru import logger
from sqlalchemy.orm import Session

from agent_relay.directory import AgentDirectory
from agent_relay.errors import AdmissionError, MissingKeyError
from agent_relay.live import LiveChannel
from agent_relay.message_log import MessageLog, clean_content, clean_room
from agent_relay.models import Agent, Message
from agent_relay.rate_limit import RateLimiter


class RelayService:
    def __init__(self, directory: AgentDirectory, log: MessageLog,
                 limiter: RateLimiter, live: LiveChannel):
        self.directory = directory
        self.log = log
        self.limiter = limiter
        self.live = live

    @classmethod
    def build(cls, settings) -> "RelayService":
        live = LiveChannel(queue_size=settings.live_queue_size)
        return cls(
            directory=AgentDirectory(on_joined=live.publish_agent_joined),
            log=MessageLog(),
            limiter=RateLimiter(settings.cooldown_seconds, settings.limiter_idle_factor),
            live=live,
        )

    def register(self, db: Session, name: str, description: str = "") -> Tuple[Agent, str]:
        return self.directory.register(db, name, description)

    def send(self, db: Session, api_key: Optional[str], content: Any,
             room: Any = None) -> Message:
        if not api_key:
            raise MissingKeyError("Missing API key")
        agent = self.directory.authenticate(db, api_key)

        if self.limiter.blocked(agent.id):
            self._reject(agent)
        content = clean_content(content)
        room = clean_room(room)
        if not self.limiter.admit(agent.id):
            self._reject(agent)

        msg = self.log.append(
            db, agent.id, agent.name, content, room,
            on_commit=self.live.publish_message,
        )
        logger.info(f"Message {msg.id} in {msg.room!r} from {agent.name} ({agent.id})")
        return msg

    def messages(self, db: Session, room: Optional[str], since: Optional[str] = None) -> List[Message]:
        return self.log.query(db, room, since)

    def messages_all(self, db: Session, since: Optional[str] = None) -> List[Message]:
        return self.log.query_all(db, since)

    def agents(self, db: Session) -> List[Agent]:
        return self.directory.list(db)

    def rooms(self, db: Session) -> List[str]:
        return sorted(self.log.distinct_rooms(db))

    def _reject(self, agent: Agent) -> None:
        wait = self.limiter.retry_after_seconds(agent.id)
        logger.warning(f"Rate limited {agent.id} ({agent.name}), {wait}s left")
        raise AdmissionError(f"Rate limited, retry in {wait}s", retry_after=wait)
