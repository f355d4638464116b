"""
Root propagator.

Copies the identity manager's root to L2 by calling ``propagateRoot`` on the
L1 state bridge. Triggered at startup when L2 has no root yet, on every
TreeChanged event, and on a fixed schedule.
"""

import asyncio
import logging
from typing import Any

from web3.types import EventData

from .event_processor import EventProcessor
from .exceptions import (
    NonRetryableRevertError,
    ReceiptTimeoutError,
    RevertError,
    RpcError,
    UnpredictableGasError,
)
from .utils.chain_gateway import ChainGateway
from .utils.polling_event_listener import PollingEventListener

logger = logging.getLogger(__name__)


class RootPropagator:
    """Submits paid root propagations, one at a time."""

    EVENT_NAME = "TreeChanged"
    PROPAGATE_FN = "propagateRoot"
    FEE_FN = "getFeePropagateRoot"

    def __init__(
        self,
        l1_gateway: ChainGateway,
        l2_gateway: ChainGateway,
        listener: PollingEventListener,
        processor: EventProcessor,
        state_bridge_address: str,
        state_bridge_abi: list[dict[str, Any]],
        world_id_bridge_address: str,
        world_id_bridge_abi: list[dict[str, Any]],
        propagation_fee_wei: int = 0,
        gas_buffer_percent: int = 20,
        polling_interval: float = 12,
        propagation_period: float = 3600,
        init_delay: float = 5,
    ) -> None:
        """
        Initialize the root propagator.

        Args:
            l1_gateway: Gateway used to read the fee and send propagations
            l2_gateway: Gateway used to read the root stored on L2
            listener: TreeChanged listener on the identity manager
            processor: Event decoder
            state_bridge_address: L1 state bridge
            state_bridge_abi: ABI of the state bridge
            world_id_bridge_address: L2 bridge holding the propagated root
            world_id_bridge_abi: ABI of the L2 bridge
            propagation_fee_wei: Fee attached when the bridge exposes no fee quote
            gas_buffer_percent: Headroom added on top of the gas estimate
            polling_interval: Seconds between TreeChanged polls
            propagation_period: Seconds between scheduled propagations, 0 disables
            init_delay: Seconds to wait before the startup root check
        """
        self.l1_gateway = l1_gateway
        self.l2_gateway = l2_gateway
        self.listener = listener
        self.processor = processor
        self.state_bridge_address = state_bridge_address
        self.state_bridge_abi = state_bridge_abi
        self.world_id_bridge_address = world_id_bridge_address
        self.world_id_bridge_abi = world_id_bridge_abi
        self.propagation_fee_wei = propagation_fee_wei
        self.gas_buffer_percent = gas_buffer_percent
        self.polling_interval = polling_interval
        self.propagation_period = propagation_period
        self.init_delay = init_delay

        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self.last_fee: int | None = None
        self.last_tx_hash: str | None = None
        self.propagated_count = 0
        self.failed_count = 0

    async def read_root(self) -> int:
        return await self.l2_gateway.retry(
            lambda: self.l2_gateway.call(self.world_id_bridge_address, self.world_id_bridge_abi, "latestRoot"),
            label="latestRoot",
        )

    async def read_fee(self) -> int:
        """Current propagation fee in wei, falling back to the configured fee."""
        try:
            fee = await self.l1_gateway.call(self.state_bridge_address, self.state_bridge_abi, self.FEE_FN)
        except RevertError as e:
            logger.debug(f"{self.FEE_FN} unavailable ({e}), using configured fee {self.propagation_fee_wei} wei")
            return self.propagation_fee_wei
        return int(fee)

    async def _submit(self) -> str:
        fee = await self.read_fee()
        self.last_fee = fee

        estimate = await self.l1_gateway.estimate_gas(
            self.state_bridge_address, self.state_bridge_abi, self.PROPAGATE_FN, value=fee
        )
        gas = estimate * (100 + self.gas_buffer_percent) // 100

        return await self.l1_gateway.send_transaction(
            self.state_bridge_address, self.state_bridge_abi, self.PROPAGATE_FN, gas=gas, value=fee
        )

    async def _confirm(self, tx_hash: str) -> None:
        # After broadcast only the receipt lookup is retried
        receipt = await self.l1_gateway.retry(
            lambda: self.l1_gateway.wait_for_receipt(tx_hash),
            label=f"{self.PROPAGATE_FN} receipt {tx_hash}",
        )

        if receipt["status"] != 1:
            revert = await self.l1_gateway.replay_revert(
                self.state_bridge_address,
                self.state_bridge_abi,
                self.PROPAGATE_FN,
                value=self.last_fee,
                block_identifier=max(0, receipt["blockNumber"] - 1),
            )
            raise revert or NonRetryableRevertError(f"{self.PROPAGATE_FN} reverted in tx_hash={tx_hash}")

    async def propagate(self, reason: str) -> bool:
        """
        Run one propagation attempt.

        Transport failures are retried per the gateway's policy. Before
        broadcast the whole submission is retried; after it, only the receipt
        wait for the same transaction.
        Anything else abandons the attempt. A later trigger tries again.

        Returns:
            True if the propagation was mined successfully
        """
        async with self._lock:
            logger.info(f"Propagating root ({reason})")
            try:
                tx_hash = await self.l1_gateway.retry(self._submit, label=self.PROPAGATE_FN)
                await self._confirm(tx_hash)
            except UnpredictableGasError as e:
                logger.error(
                    f"Gas estimation for {self.PROPAGATE_FN} reverted with fee {self.last_fee} wei attached, "
                    f"fee mismatch likely. Abandoning propagation ({reason}): {e}"
                )
            except ReceiptTimeoutError as e:
                logger.error(f"Propagation tx_hash={e.tx_hash} not confirmed, abandoning ({reason}): {e}")
            except RevertError as e:
                logger.error(f"Propagation reverted, abandoning ({reason}): {e}")
            except RpcError as e:
                logger.error(f"Propagation failed after retries, abandoning ({reason}): {e}")
            else:
                self.last_tx_hash = tx_hash
                self.propagated_count += 1
                logger.info(f"Root propagated tx_hash={tx_hash} fee={self.last_fee} ({reason})")
                return True

            self.failed_count += 1
            return False

    async def propagate_if_missing(self) -> bool:
        """Propagate immediately if the L2 bridge holds no root yet.

        Returns:
            True if a propagation was attempted
        """
        try:
            root = await self.read_root()
        except (RpcError, RevertError) as e:
            logger.error(f"Could not read latestRoot on L2: {e}")
            return False

        if root != 0:
            logger.info(f"L2 root present: {hex(root)}")
            return False

        logger.info("L2 has no root yet")
        await self.propagate("startup, no root on L2")
        return True

    async def handle_event(self, event: EventData) -> bool:
        tree_changed = self.processor.decode_tree_changed(event)
        return await self.propagate(f"TreeChanged post_root={hex(tree_changed.post_root)}")

    async def _wait(self, seconds: float) -> bool:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def run(self) -> None:
        """Startup root check, then propagate on every TreeChanged event."""
        if await self._wait(self.init_delay):
            return
        await self.propagate_if_missing()
        await self.listener.start_polling(self.handle_event, self.polling_interval)

    async def run_scheduled(self) -> None:
        """Propagate every ``propagation_period`` seconds until stopped."""
        if not self.propagation_period:
            logger.info("Scheduled propagation disabled")
            return

        logger.info(f"Scheduled propagation every {self.propagation_period}s")
        while not await self._wait(self.propagation_period):
            await self.propagate("scheduled")

    async def stop(self) -> None:
        self._stop_event.set()
        await self.listener.stop()

    def get_status(self) -> dict[str, Any]:
        return {
            **self.listener.get_status(),
            "propagated": self.propagated_count,
            "failed": self.failed_count,
            "last_tx_hash": self.last_tx_hash,
            "last_fee": self.last_fee,
        }
