"""
L2 inbox monitor.

Marks ledger rows confirmed when the L2 message service reports their hashes
as added to its inbox.
"""

import asyncio
import logging
from typing import Any

from web3.types import EventData

from .event_processor import EventProcessor
from .exceptions import IllegalStatusTransition, RelayerError
from .ledger import MessageLedger
from .models import InboxBatch, MessageStatus
from .utils.polling_event_listener import PollingEventListener

logger = logging.getLogger(__name__)


class L2InboxMonitor:
    """Feeds L1L2MessageHashesAddedToInbox events into the ledger."""

    EVENT_NAME = "L1L2MessageHashesAddedToInbox"

    def __init__(
        self,
        listener: PollingEventListener,
        ledger: MessageLedger,
        processor: EventProcessor,
        polling_interval: float = 30,
    ) -> None:
        self.listener = listener
        self.ledger = ledger
        self.processor = processor
        self.polling_interval = polling_interval
        self.confirmed_count = 0
        self.ignored_count = 0
        self.failed_count = 0

    async def _confirm(self, message_hash: str) -> bool:
        return self.ledger.mark_status(message_hash, MessageStatus.CONFIRMED)

    async def confirm_batch(self, batch: InboxBatch) -> dict[str, int]:
        """
        Mark every hash of a batch confirmed, independently of the others.

        Hashes without a ledger row belong to other senders and are ignored.

        Returns:
            Counts of confirmed, ignored and failed hashes
        """
        results = await asyncio.gather(
            *(self._confirm(message_hash) for message_hash in batch.message_hashes),
            return_exceptions=True,
        )

        summary = {"confirmed": 0, "ignored": 0, "failed": 0}
        for message_hash, result in zip(batch.message_hashes, results):
            match result:
                case True:
                    summary["confirmed"] += 1
                case False:
                    summary["ignored"] += 1
                case IllegalStatusTransition() as e:
                    # Already claimed or failed, the inbox event was seen again
                    logger.warning(f"Not confirming message_hash={message_hash}: {e}")
                    summary["ignored"] += 1
                case RelayerError() as e:
                    logger.error(f"Failed to confirm message_hash={message_hash}: {e}")
                    summary["failed"] += 1
                case BaseException() as e:
                    raise e

        self.confirmed_count += summary["confirmed"]
        self.ignored_count += summary["ignored"]
        self.failed_count += summary["failed"]
        logger.info(
            f"Inbox batch tx_hash={batch.transaction_hash}: {summary['confirmed']} confirmed, "
            f"{summary['ignored']} ignored, {summary['failed']} failed"
        )
        return summary

    async def handle_event(self, event: EventData) -> dict[str, int]:
        batch = self.processor.decode_inbox_batch(event)
        return await self.confirm_batch(batch)

    async def run(self) -> None:
        await self.listener.start_polling(self.handle_event, self.polling_interval)

    async def stop(self) -> None:
        await self.listener.stop()

    def get_status(self) -> dict[str, Any]:
        return {
            **self.listener.get_status(),
            "confirmed": self.confirmed_count,
            "ignored": self.ignored_count,
            "failed": self.failed_count,
        }
