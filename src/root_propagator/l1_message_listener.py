"""
L1 message listener.

Records every MessageSent event emitted by the L1 message service on behalf
of the state bridge as a pending ledger row.
"""

import logging
from typing import Any

from web3.types import EventData

from .event_processor import EventProcessor
from .ledger import MessageLedger
from .utils.polling_event_listener import PollingEventListener

logger = logging.getLogger(__name__)


class L1MessageListener:
    """Feeds MessageSent events into the ledger."""

    EVENT_NAME = "MessageSent"

    def __init__(
        self,
        listener: PollingEventListener,
        ledger: MessageLedger,
        processor: EventProcessor,
        polling_interval: float = 12,
    ) -> None:
        self.listener = listener
        self.ledger = ledger
        self.processor = processor
        self.polling_interval = polling_interval
        self.inserted_count = 0
        self.duplicate_count = 0

    async def handle_event(self, event: EventData) -> bool:
        """
        Decode one MessageSent event and upsert it as pending.

        Returns:
            True if a new row was written, False if the message was already known

        Raises:
            DecodeError: If the event cannot be decoded
            PersistenceError: If the ledger write failed
        """
        message = self.processor.decode_message_sent(event)
        inserted = self.ledger.upsert_pending(message)
        if inserted:
            self.inserted_count += 1
            logger.info(f"Stored pending message message_hash={message.message_hash} nonce={message.nonce}")
        else:
            self.duplicate_count += 1
            logger.debug(f"Message already known message_hash={message.message_hash}")
        return inserted

    async def run(self) -> None:
        await self.listener.start_polling(self.handle_event, self.polling_interval)

    async def stop(self) -> None:
        await self.listener.stop()

    def get_status(self) -> dict[str, Any]:
        return {
            **self.listener.get_status(),
            "inserted": self.inserted_count,
            "duplicates": self.duplicate_count,
        }
