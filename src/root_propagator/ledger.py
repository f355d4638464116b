"""
Durable message ledger.

The ledger is the only shared mutable state in the relayer. Every component
goes through these operations; each one is atomic for a single row.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine, delete, func, select, text, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .exceptions import IllegalStatusTransition, PersistenceError
from .models import MessageStatus, RelayMessage
from .schema import Base, MessageRecord, utcnow
from .utils.hex_utility import to_hex_string

logger = logging.getLogger(__name__)


class MessageLedger:
    """SQLite-backed store of relay messages keyed by message hash."""

    def __init__(self, database_url: str) -> None:
        """
        Initialize the ledger.

        Args:
            database_url: SQLAlchemy URL of the backing database
        """
        self.database_url = database_url
        self.engine = create_engine(database_url)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)

    @classmethod
    def from_path(cls, path: str | Path) -> "MessageLedger":
        return cls(f"sqlite:///{Path(path)}")

    def connect(self) -> None:
        """Create the schema if needed and verify the database is reachable.

        Raises:
            PersistenceError: If the database cannot be opened
        """
        try:
            Base.metadata.create_all(self.engine)
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot open ledger at {self.database_url}: {e}") from e
        logger.info(f"Message ledger ready at {self.database_url}")

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Ledger {operation} failed: {e}") from e
        finally:
            session.close()

    def upsert_pending(self, message: RelayMessage) -> bool:
        """
        Insert a message as pending, ignoring it if the hash is already known.

        Args:
            message: Decoded message from the L1 listener

        Returns:
            True if a new row was inserted, False if the hash already existed
        """
        now = utcnow()
        stmt = (
            sqlite_insert(MessageRecord)
            .values(
                message_hash=to_hex_string(message.message_hash),
                message_sender=message.message_sender,
                destination=message.destination,
                fee=str(message.fee),
                value=str(message.value),
                nonce=str(message.nonce),
                calldata=message.calldata,
                status=MessageStatus.PENDING.value,
                block_number=message.block_number,
                transaction_hash=message.transaction_hash,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["message_hash"])
        )
        with self._session("upsert") as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    def mark_status(self, message_hash: str, new_status: MessageStatus) -> bool:
        """
        Move a message to a new status.

        The update is a compare-and-set on the status read, so a concurrent
        writer cannot be silently overwritten.

        Args:
            message_hash: Hash of the message
            new_status: Requested status

        Returns:
            True if the row changed, False if no such row exists or it already
            has the requested status

        Raises:
            IllegalStatusTransition: If the change would move the message backwards
            PersistenceError: On storage failure or a lost compare-and-set
        """
        message_hash = to_hex_string(message_hash)
        with self._session("mark_status") as session:
            record = session.get(MessageRecord, message_hash)
            if record is None:
                return False

            current = MessageStatus(record.status)
            if current == new_status:
                return False
            if not current.can_transition_to(new_status):
                raise IllegalStatusTransition(message_hash, current.value, new_status.value)

            result = session.execute(
                update(MessageRecord)
                .where(
                    MessageRecord.message_hash == message_hash,
                    MessageRecord.status == current.value,
                )
                .values(status=new_status.value, updated_at=utcnow())
            )
            session.commit()

        if result.rowcount != 1:
            raise PersistenceError(
                f"Status of {message_hash} changed concurrently, {new_status.value} not applied"
            )
        logger.info(f"Message status updated message_hash={message_hash} {current.value} -> {new_status.value}")
        return True

    def get(self, message_hash: str) -> RelayMessage | None:
        with self._session("get") as session:
            record = session.get(MessageRecord, to_hex_string(message_hash))
            return self._to_message(record) if record else None

    def list_by_status(self, status: MessageStatus) -> list[RelayMessage]:
        """Return a snapshot of all messages with the given status."""
        with self._session("list_by_status") as session:
            records = session.scalars(
                select(MessageRecord).where(MessageRecord.status == status.value)
            ).all()
        messages = [self._to_message(record) for record in records]
        messages.sort(key=lambda m: (m.nonce, m.message_hash))
        return messages

    def delete_by_status(self, status: MessageStatus, older_than: datetime | None = None) -> int:
        """
        Delete messages in a status, optionally only those untouched since a cutoff.

        Args:
            status: Status to prune
            older_than: Only delete rows whose last update is before this time

        Returns:
            Number of rows deleted
        """
        stmt = delete(MessageRecord).where(MessageRecord.status == status.value)
        if older_than is not None:
            stmt = stmt.where(MessageRecord.updated_at < older_than)
        with self._session("delete_by_status") as session:
            result = session.execute(stmt)
            session.commit()
        if result.rowcount:
            logger.info(f"Deleted {result.rowcount} {status.value} messages")
        return result.rowcount

    def count_by_status(self) -> dict[str, int]:
        with self._session("count_by_status") as session:
            rows = session.execute(
                select(MessageRecord.status, func.count()).group_by(MessageRecord.status)
            ).all()
        counts = {status.value: 0 for status in MessageStatus}
        counts.update({status: count for status, count in rows})
        return counts

    @staticmethod
    def _to_message(record: MessageRecord) -> RelayMessage:
        return RelayMessage(
            message_hash=record.message_hash,
            message_sender=record.message_sender,
            destination=record.destination,
            fee=int(record.fee),
            value=int(record.value),
            nonce=int(record.nonce),
            calldata=bytes(record.calldata),
            block_number=record.block_number,
            transaction_hash=record.transaction_hash,
            status=MessageStatus(record.status),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
