"""
Room-partitioned, append-only message log.

The log is the only place ids and timestamps are assigned. Appends go
through a single lock so id order, timestamp order and commit order
always agree; reads take no lock.
"""

import threading
from typing import Any, Callable, List, Optional, Set

from loguru import logger
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agent_relay.errors import StorageError, ValidationError
from agent_relay.models import DEFAULT_ROOM, Message, format_timestamp, next_timestamp, parse_timestamp

SINCE_LIMIT = 200
LATEST_LIMIT = 100


def clean_content(content: Any) -> str:
    if content is not None and not isinstance(content, str):
        raise ValidationError("content must be a string")
    content = (content or "").strip()
    if not content:
        raise ValidationError("content is required")
    return content


def clean_room(room: Any) -> str:
    if room is not None and not isinstance(room, str):
        raise ValidationError("room must be a string")
    room = (room or "").strip()
    return room or DEFAULT_ROOM


def normalize_cursor(since: Optional[str]) -> Optional[str]:
    """Bring a client cursor into the stored timestamp format. Blank means no cursor."""
    if since is None or not since.strip():
        return None
    try:
        return format_timestamp(parse_timestamp(since))
    except (ValueError, OverflowError):
        raise ValidationError("bad timestamp") from None


class MessageLog:
    def __init__(self):
        self._write_lock = threading.Lock()
        self._last_timestamp: Optional[str] = None

    def append(self, db: Session, agent_id: str, agent_name: str, content: str,
               room: Optional[str] = None,
               on_commit: Optional[Callable[[Message], None]] = None) -> Message:
        """
        Persist one message and return it with its id and timestamp.

        `on_commit` runs after the commit, still inside the write lock, so
        callbacks observe messages in commit order. It must not block.
        """
        content = clean_content(content)
        room = clean_room(room)

        with self._write_lock:
            try:
                if self._last_timestamp is None:
                    self._last_timestamp = db.query(func.max(Message.timestamp)).scalar()
                timestamp = next_timestamp(self._last_timestamp)
                msg = Message(
                    agent_id=agent_id,
                    agent_name=agent_name,
                    content=content,
                    room=room,
                    timestamp=timestamp,
                )
                db.add(msg)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Append to room {room!r} failed: {e}")
                raise StorageError("could not store message") from e

            self._last_timestamp = timestamp
            logger.debug(f"Appended message {msg.id} to {room!r} from {agent_id}")
            if on_commit is not None:
                # committed already; callback failures are only logged
                try:
                    on_commit(msg)
                except Exception:
                    logger.exception(f"on_commit callback failed for message {msg.id}")
        return msg

    def query(self, db: Session, room: Optional[str], since: Optional[str] = None) -> List[Message]:
        return self._select(db, clean_room(room), since)

    def query_all(self, db: Session, since: Optional[str] = None) -> List[Message]:
        return self._select(db, None, since)

    def distinct_rooms(self, db: Session) -> Set[str]:
        try:
            rooms = {row[0] for row in db.query(Message.room).distinct()}
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Room listing failed: {e}")
            raise StorageError("could not list rooms") from e
        rooms.add(DEFAULT_ROOM)
        return rooms

    def _select(self, db: Session, room: Optional[str], since: Optional[str]) -> List[Message]:
        cursor = normalize_cursor(since)
        q = db.query(Message)
        if room is not None:
            q = q.filter(Message.room == room)
        try:
            if cursor is not None:
                return (
                    q.filter(Message.timestamp > cursor)
                    .order_by(Message.timestamp.asc(), Message.id.asc())
                    .limit(SINCE_LIMIT)
                    .all()
                )
            latest = (
                q.order_by(Message.timestamp.desc(), Message.id.desc())
                .limit(LATEST_LIMIT)
                .all()
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Message query failed: {e}")
            raise StorageError("could not read messages") from e
        latest.reverse()
        return latest
