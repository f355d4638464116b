"""
Event processor for decoding bridge events.

This module turns raw web3 log entries into the relayer's domain types,
keeping decoding separate from the listeners that deliver the logs.
"""

import logging
from collections.abc import Mapping
from typing import Any

from web3 import Web3
from web3.types import EventData

from .exceptions import DecodeError
from .models import InboxBatch, RelayMessage, TreeChangedEvent
from .utils.hex_utility import to_bytes, to_hex_string

logger = logging.getLogger(__name__)


class EventProcessor:
    """Decodes MessageSent, inbox and TreeChanged events."""

    def __init__(self) -> None:
        self.decoded_count = 0
        self.failed_count = 0

    @staticmethod
    def _provenance(event: EventData) -> tuple[int, str]:
        match event.get('transactionHash'):
            case None:
                raise DecodeError("Event missing transaction hash")
            case bytes() | str() as tx_hash:
                pass
            case other:
                raise DecodeError(f"Unexpected transaction hash type: {type(other).__name__}")

        block_number = event.get('blockNumber')
        if block_number is None:
            raise DecodeError("Event missing block number")
        return int(block_number), to_hex_string(tx_hash)

    def _decode(self, kind: str, event: EventData, decoder) -> Any:
        try:
            result = decoder(event)
        except DecodeError:
            self.failed_count += 1
            raise
        except (KeyError, TypeError, ValueError) as e:
            self.failed_count += 1
            raise DecodeError(f"Malformed {kind} event: {e!r}") from e
        self.decoded_count += 1
        return result

    def decode_message_sent(self, event: EventData) -> RelayMessage:
        """
        Decode a MessageSent event into a pending message.

        Args:
            event: The MessageSent event data

        Returns:
            RelayMessage with status pending

        Raises:
            DecodeError: If a field is missing or malformed
        """
        def _decode(event: EventData) -> RelayMessage:
            block_number, tx_hash = self._provenance(event)
            args: Mapping[str, Any] = event['args']
            return RelayMessage(
                message_hash=to_hex_string(args['_messageHash']),
                message_sender=Web3.to_checksum_address(args['_from']),
                destination=Web3.to_checksum_address(args['_to']),
                fee=int(args['_fee']),
                value=int(args['_value']),
                nonce=int(args['_nonce']),
                calldata=to_bytes(args['_calldata']),
                block_number=block_number,
                transaction_hash=tx_hash,
            )

        message = self._decode("MessageSent", event, _decode)
        logger.info(
            f"MessageSent detected - message_hash={message.message_hash} nonce={message.nonce} "
            f"block={message.block_number} tx_hash={message.transaction_hash}"
        )
        return message

    def decode_inbox_batch(self, event: EventData) -> InboxBatch:
        """Decode an L1L2MessageHashesAddedToInbox event.

        Raises:
            DecodeError: If a field is missing or malformed
        """
        def _decode(event: EventData) -> InboxBatch:
            block_number, tx_hash = self._provenance(event)
            hashes = tuple(to_hex_string(h) for h in event['args']['messageHashes'])
            return InboxBatch(message_hashes=hashes, block_number=block_number, transaction_hash=tx_hash)

        batch = self._decode("L1L2MessageHashesAddedToInbox", event, _decode)
        logger.info(
            f"Inbox batch detected - {len(batch.message_hashes)} hashes "
            f"block={batch.block_number} tx_hash={batch.transaction_hash}"
        )
        return batch

    def decode_tree_changed(self, event: EventData) -> TreeChangedEvent:
        def _decode(event: EventData) -> TreeChangedEvent:
            block_number, tx_hash = self._provenance(event)
            args: Mapping[str, Any] = event['args']
            return TreeChangedEvent(
                pre_root=int(args['preRoot']),
                kind=int(args['kind']),
                post_root=int(args['postRoot']),
                block_number=block_number,
                transaction_hash=tx_hash,
            )

        tree_changed = self._decode("TreeChanged", event, _decode)
        logger.info(f"{tree_changed} tx_hash={tree_changed.transaction_hash}")
        return tree_changed

    def get_stats(self) -> dict[str, int]:
        return {
            "decoded": self.decoded_count,
            "failed": self.failed_count,
        }
