"""
Shared data models for the root propagator.

This module contains the message entity tracked by the ledger, its status
state machine, and the decoded event types produced by the listeners.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any


class MessageStatus(str, Enum):
    """Delivery status of a relayed message."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CLAIMED = "claimed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MessageStatus.CLAIMED, MessageStatus.FAILED)

    def can_transition_to(self, new_status: "MessageStatus") -> bool:
        return new_status in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[MessageStatus, frozenset[MessageStatus]] = {
    MessageStatus.PENDING: frozenset({MessageStatus.CONFIRMED}),
    MessageStatus.CONFIRMED: frozenset({MessageStatus.CLAIMED, MessageStatus.FAILED}),
    MessageStatus.CLAIMED: frozenset(),
    MessageStatus.FAILED: frozenset(),
}


class DeliveryState(IntEnum):
    """Inbox status reported by the L2 message service."""
    UNKNOWN = 0
    RECEIVED = 1
    CLAIMED = 2


@dataclass(frozen=True, slots=True)
class RelayMessage:
    """A cross-chain message emitted by the L1 message service.

    Attributes:
        message_hash: 0x-prefixed lowercase hash, unique per message
        message_sender: Address that sent the message on L1
        destination: Address the message is delivered to on L2
        fee: Fee paid to the claimer, in wei
        value: Value forwarded to the destination, in wei
        nonce: Message nonce assigned by the L1 message service
        calldata: Payload forwarded verbatim to the destination
        block_number: L1 block of the MessageSent event
        transaction_hash: L1 transaction that emitted the event
        status: Current delivery status
    """
    message_hash: str
    message_sender: str
    destination: str
    fee: int
    value: int
    nonce: int
    calldata: bytes
    block_number: int
    transaction_hash: str
    status: MessageStatus = MessageStatus.PENDING
    created_at: datetime | None = field(default=None, compare=False)
    updated_at: datetime | None = field(default=None, compare=False)

    def __str__(self) -> str:
        return (
            f"RelayMessage(hash={self.message_hash[:10]}..., "
            f"nonce={self.nonce}, status={self.status.value})"
        )

    def claim_args(self, fee_recipient: str) -> tuple[Any, ...]:
        """Arguments for ``claimMessage`` in ABI order."""
        return (
            self.message_sender,
            self.destination,
            self.fee,
            self.value,
            fee_recipient,
            self.calldata,
            self.nonce,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_hash": self.message_hash,
            "message_sender": self.message_sender,
            "destination": self.destination,
            "fee": str(self.fee),
            "value": str(self.value),
            "nonce": str(self.nonce),
            "calldata": "0x" + self.calldata.hex(),
            "block_number": self.block_number,
            "transaction_hash": self.transaction_hash,
            "status": self.status.value,
        }


@dataclass(frozen=True, slots=True)
class InboxBatch:
    """Message hashes added to the L2 inbox in one transaction."""
    message_hashes: tuple[str, ...]
    block_number: int
    transaction_hash: str


@dataclass(frozen=True, slots=True)
class TreeChangedEvent:
    """A root change on the L1 identity manager."""
    pre_root: int
    kind: int
    post_root: int
    block_number: int
    transaction_hash: str

    def __str__(self) -> str:
        return (
            f"TreeChanged(post_root={hex(self.post_root)[:12]}..., "
            f"kind={self.kind}, block={self.block_number})"
        )
