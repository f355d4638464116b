"""Database schema for the message ledger."""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Index, LargeBinary, String
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class MessageRecord(Base):
    """One row per cross-chain message, keyed by message hash."""
    __tablename__ = "messages"

    message_hash = Column(String(66), primary_key=True)
    message_sender = Column(String(42), nullable=False)
    destination = Column(String(42), nullable=False)
    # Amounts as decimal strings to avoid precision loss
    fee = Column(String(78), nullable=False)
    value = Column(String(78), nullable=False)
    nonce = Column(String(78), nullable=False)
    calldata = Column(LargeBinary, nullable=False)
    status = Column(String(16), nullable=False, index=True)
    block_number = Column(BigInteger, nullable=False)
    transaction_hash = Column(String(66), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("ix_messages_status_updated_at", "status", "updated_at"),)
