from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import Column, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

DEFAULT_ROOM = "general"

# Fixed width UTC, so string order is chronological order
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_timestamp(dt: datetime) -> str:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored or client-supplied timestamp. Naive values are UTC."""
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def next_timestamp(last: Optional[str]) -> str:
    """Current time, or one microsecond past `last` if the clock has not moved past it."""
    now = utcnow()
    if last is None or now > last:
        return now
    return format_timestamp(parse_timestamp(last) + timedelta(microseconds=1))


class Agent(Base):
    __tablename__ = "agents"
    id = Column(String(36), primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    api_key_hash = Column(String(64), unique=True, nullable=False, index=True)
    created_at = Column(String(27), nullable=False)
    last_seen = Column(String(27), nullable=False, index=True)

    def as_dict(self) -> dict:
        # never includes the key digest
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "createdAt": self.created_at,
            "lastSeen": self.last_seen,
        }


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_room_timestamp", "room", "timestamp"),
        {"sqlite_autoincrement": True},
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(String(36), nullable=False, index=True)
    agent_name = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    room = Column(String, nullable=False, default=DEFAULT_ROOM)
    timestamp = Column(String(27), nullable=False, index=True)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "agentId": self.agent_id,
            "agentName": self.agent_name,
            "content": self.content,
            "room": self.room,
            "timestamp": self.timestamp,
        }
