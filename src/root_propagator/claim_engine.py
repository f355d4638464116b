"""
Claim engine.

Periodically claims confirmed messages on L2 and prunes terminal rows from
the ledger.
"""

import asyncio
import logging
from collections import Counter
from datetime import timedelta
from enum import Enum
from typing import Any

from .exceptions import (
    DecodeError,
    NonRetryableRevertError,
    PersistenceError,
    ReceiptTimeoutError,
    RelayerError,
    RevertError,
    UnpredictableGasError,
)
from .ledger import MessageLedger
from .models import DeliveryState, MessageStatus, RelayMessage
from .schema import utcnow
from .utils.chain_gateway import ChainGateway
from .utils.hex_utility import to_bytes32

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class ClaimOutcome(str, Enum):
    CLAIMED = "claimed"
    ALREADY_CLAIMED = "already_claimed"
    NOT_READY = "not_ready"
    RETRY_LATER = "retry_later"
    FAILED = "failed"
    ERROR = "error"


class ClaimEngine:
    """Claims confirmed messages on the L2 message service."""

    CLAIM_FN = "claimMessage"
    STATUS_FN = "inboxL1L2MessageStatus"

    def __init__(
        self,
        gateway: ChainGateway,
        ledger: MessageLedger,
        message_service_address: str,
        message_service_abi: list[dict[str, Any]],
        claim_interval: float = 60,
        gas_buffer_percent: int = 20,
        failed_retention: float = 86_400,
        fee_recipient: str = ZERO_ADDRESS,
    ) -> None:
        """
        Initialize the claim engine.

        Args:
            gateway: L2 gateway with the signing account
            ledger: Message ledger
            message_service_address: L2 message service
            message_service_abi: ABI of the L2 message service
            claim_interval: Seconds between claim runs
            gas_buffer_percent: Headroom added on top of the gas estimate
            failed_retention: Seconds a failed row is kept before pruning
            fee_recipient: Recipient of the message fee, zero means the sender of the claim
        """
        self.gateway = gateway
        self.ledger = ledger
        self.message_service_address = message_service_address
        self.message_service_abi = message_service_abi
        self.claim_interval = claim_interval
        self.gas_buffer_percent = gas_buffer_percent
        self.failed_retention = failed_retention
        self.fee_recipient = fee_recipient

        self._stop_event = asyncio.Event()
        self.runs = 0
        self.totals: Counter[str] = Counter()

    async def delivery_state(self, message: RelayMessage) -> DeliveryState:
        """Inbox status of a message on L2.

        Raises:
            DecodeError: If the contract returns a value outside the known states
        """
        raw = await self.gateway.retry(
            lambda: self.gateway.call(
                self.message_service_address,
                self.message_service_abi,
                self.STATUS_FN,
                to_bytes32(message.message_hash),
            ),
            label=f"{self.STATUS_FN} {message.message_hash}",
        )
        try:
            return DeliveryState(int(raw))
        except ValueError as e:
            raise DecodeError(f"Unknown inbox status {raw} for message_hash={message.message_hash}") from e

    async def submit_claim(self, message: RelayMessage) -> str:
        """
        Send ``claimMessage`` for a message and wait for it to be mined.

        Returns:
            Hash of the successful claim transaction

        Raises:
            UnpredictableGasError: If the claim would revert
            RevertError: If the mined claim reverted
            ReceiptTimeoutError: If the claim was not mined in time
            RpcError: On transport failure
        """
        args = message.claim_args(self.fee_recipient)
        estimate = await self.gateway.estimate_gas(
            self.message_service_address, self.message_service_abi, self.CLAIM_FN, *args
        )
        gas = estimate * (100 + self.gas_buffer_percent) // 100

        tx_hash = await self.gateway.send_transaction(
            self.message_service_address, self.message_service_abi, self.CLAIM_FN, *args, gas=gas
        )
        logger.info(f"Claim submitted message_hash={message.message_hash} tx_hash={tx_hash}")

        receipt = await self.gateway.wait_for_receipt(tx_hash)
        if receipt["status"] != 1:
            revert = await self.gateway.replay_revert(
                self.message_service_address,
                self.message_service_abi,
                self.CLAIM_FN,
                *args,
                block_identifier=max(0, receipt["blockNumber"] - 1),
            )
            raise revert or NonRetryableRevertError(f"{self.CLAIM_FN} reverted in tx_hash={tx_hash}")
        return tx_hash

    def _handle_revert(self, message: RelayMessage, revert: RevertError) -> ClaimOutcome:
        if revert.retryable:
            logger.warning(f"Claim for message_hash={message.message_hash} hit a transient revert, retrying next run: {revert}")
            return ClaimOutcome.RETRY_LATER

        logger.error(f"Claim for message_hash={message.message_hash} failed permanently: {revert}")
        self.ledger.mark_status(message.message_hash, MessageStatus.FAILED)
        return ClaimOutcome.FAILED

    async def process_message(self, message: RelayMessage) -> ClaimOutcome:
        """
        Advance one confirmed message.

        Raises:
            RelayerError: For transport, timeout and ledger failures; the row
                stays confirmed and is retried on the next run
        """
        state = await self.delivery_state(message)

        if state is DeliveryState.CLAIMED:
            self.ledger.mark_status(message.message_hash, MessageStatus.CLAIMED)
            logger.info(f"Message already claimed on L2 message_hash={message.message_hash}")
            return ClaimOutcome.ALREADY_CLAIMED

        if state is DeliveryState.UNKNOWN:
            logger.debug(f"Message not yet claimable message_hash={message.message_hash}")
            return ClaimOutcome.NOT_READY

        try:
            tx_hash = await self.submit_claim(message)
        except UnpredictableGasError as e:
            return self._handle_revert(message, e.revert)
        except RevertError as e:
            return self._handle_revert(message, e)

        self.ledger.mark_status(message.message_hash, MessageStatus.CLAIMED)
        logger.info(f"Message claimed message_hash={message.message_hash} tx_hash={tx_hash}")
        return ClaimOutcome.CLAIMED

    async def reconcile_pending(self) -> int:
        """
        Confirm pending messages that L2 already reports as received or claimed.

        Covers inbox events handled before the matching MessageSent was
        recorded, which the inbox monitor ignores.

        Returns:
            Number of messages moved to confirmed
        """
        reconciled = 0
        for message in self.ledger.list_by_status(MessageStatus.PENDING):
            try:
                state = await self.delivery_state(message)
                if state is DeliveryState.UNKNOWN:
                    continue
                if self.ledger.mark_status(message.message_hash, MessageStatus.CONFIRMED):
                    reconciled += 1
                    logger.info(
                        f"Pending message found in L2 inbox, confirmed message_hash={message.message_hash} "
                        f"state={state.name}"
                    )
            except PersistenceError:
                raise
            except RelayerError as e:
                logger.error(f"Error checking pending message_hash={message.message_hash} on L2: {e}")
        return reconciled

    def cleanup(self) -> dict[str, int]:
        """Prune claimed rows, and failed rows older than the retention period."""
        cutoff = utcnow() - timedelta(seconds=self.failed_retention)
        return {
            MessageStatus.CLAIMED.value: self.ledger.delete_by_status(MessageStatus.CLAIMED),
            MessageStatus.FAILED.value: self.ledger.delete_by_status(MessageStatus.FAILED, older_than=cutoff),
        }

    async def run_once(self) -> dict[str, int]:
        """
        Confirm pending messages already in the L2 inbox, process every
        confirmed message once, then prune.

        Messages are handled in nonce order, one at a time; a failure on one
        never stops the others.

        Returns:
            Number of messages per outcome
        """
        reconciled = await self.reconcile_pending()
        messages = self.ledger.list_by_status(MessageStatus.CONFIRMED)
        outcomes: Counter[str] = Counter()
        if reconciled:
            outcomes["reconciled"] = reconciled

        for message in messages:
            try:
                outcome = await self.process_message(message)
            except ReceiptTimeoutError as e:
                logger.warning(f"Claim for message_hash={message.message_hash} unconfirmed, retrying next run: {e}")
                outcome = ClaimOutcome.RETRY_LATER
            except RelayerError as e:
                logger.error(f"Error processing message_hash={message.message_hash}: {e}")
                outcome = ClaimOutcome.ERROR
            outcomes[outcome.value] += 1

        self.cleanup()
        self.runs += 1
        self.totals.update(outcomes)

        if messages:
            logger.info(f"Claim run finished for {len(messages)} confirmed messages: {dict(outcomes)}")
        return dict(outcomes)

    async def run(self) -> None:
        """Run claim passes every ``claim_interval`` seconds until stopped."""
        logger.info(f"Claim engine running every {self.claim_interval}s")
        while True:
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.claim_interval)
            except asyncio.TimeoutError:
                continue
            break
        logger.info("Claim engine stopped")

    async def stop(self) -> None:
        self._stop_event.set()

    def get_status(self) -> dict[str, Any]:
        return {
            "runs": self.runs,
            **self.totals,
        }
