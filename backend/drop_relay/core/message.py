# drop_relay/core/message.py

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from drop_relay.core.clock import Clock, utc_now
from drop_relay.core.errors import StorageError
from drop_relay.infra.database import Database
from drop_relay.models.message import Message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredMessage:
    id: int
    from_fingerprint: str
    to_fingerprint: str
    encrypted_payload: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_public_key": self.from_fingerprint,
            "encrypted_data": self.encrypted_payload,
            "created_at": self.created_at.replace(tzinfo=timezone.utc).isoformat(),
        }


class MessageStore:
    """Per-recipient mailbox on top of the ``messages`` table."""

    def __init__(self, database: Database, clock: Clock = utc_now):
        self.database = database
        self.clock = clock

    def send(self, from_fingerprint: str, to_fingerprint: str, payload: str) -> int:
        """Queue an encrypted payload for a recipient. Returns the message id."""
        try:
            with self.database.session() as session:
                message = Message(
                    from_fingerprint=from_fingerprint,
                    to_fingerprint=to_fingerprint,
                    encrypted_payload=payload,
                    created_at=self.clock(),
                )
                session.add(message)
                session.flush()
                message_id = message.id
        except SQLAlchemyError as e:
            logger.error("Failed to store message", exc_info=True, extra={"to_fingerprint": to_fingerprint})
            raise StorageError() from e

        logger.info(
            "Message stored",
            extra={"from_fingerprint": from_fingerprint, "to_fingerprint": to_fingerprint, "message_id": message_id},
        )
        return message_id

    def poll(self, recipient: str) -> List[StoredMessage]:
        """Collect and delete every message queued for ``recipient``.

        One DELETE ... RETURNING statement, so a row is handed to exactly one
        caller even when polls for the same mailbox overlap.
        """
        stmt = (
            delete(Message)
            .where(Message.to_fingerprint == recipient)
            .returning(
                Message.id,
                Message.from_fingerprint,
                Message.to_fingerprint,
                Message.encrypted_payload,
                Message.created_at,
            )
        )
        try:
            with self.database.session() as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.error("Failed to collect messages", exc_info=True, extra={"to_fingerprint": recipient})
            raise StorageError() from e

        messages = sorted((StoredMessage(*row) for row in rows), key=lambda m: m.id)
        if messages:
            logger.info(
                "Messages retrieved and deleted",
                extra={"to_fingerprint": recipient, "count": len(messages)},
            )
        else:
            logger.debug("No messages found for polling", extra={"to_fingerprint": recipient})
        return messages

    def purge_older_than(self, cutoff: datetime) -> int:
        """Delete every message created before ``cutoff``. Returns rows removed."""
        try:
            with self.database.session() as session:
                result = session.execute(delete(Message).where(Message.created_at < cutoff))
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise StorageError() from e

    def ping(self):
        try:
            self.database.ping()
        except SQLAlchemyError as e:
            raise StorageError("Database connection failed") from e
