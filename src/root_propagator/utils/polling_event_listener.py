"""
Polling-based event listener utility for blockchain event monitoring.

A listener first catches up over a bounded lookback window, then polls for new
blocks from its watermark. Both phases hand events to the same callback.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from web3.types import EventData

from ..exceptions import DecodeError, PersistenceError, RangeTooLargeError, RelayerError
from .chain_gateway import ChainGateway
from .hex_utility import to_hex_string


class PollingEventListener:
    """
    Utility for polling contract events through a ChainGateway.

    The watermark (``last_processed_block``) only advances after every event
    up to it has been handed to the callback, so a failed poll is re-scanned
    on the next cycle.
    """

    def __init__(
        self,
        gateway: ChainGateway,
        contract_address: str,
        event_name: str,
        abi: list[dict[str, Any]],
        lookback_blocks: int = 100,
        max_block_range: int = 10_000,
        argument_filters: dict[str, Any] | None = None,
    ):
        """
        Initialize the polling event listener.

        Args:
            gateway: Gateway of the chain the contract lives on
            contract_address: Address of the contract to monitor
            event_name: Name of the event to listen for
            abi: Contract ABI
            lookback_blocks: Number of blocks to look back on startup
            max_block_range: Largest block span per log query
            argument_filters: Indexed-argument filter passed to every query
        """
        if not any(item.get("type") == "event" and item.get("name") == event_name for item in abi):
            raise ValueError(f"Event {event_name} not found in contract ABI")

        self.gateway = gateway
        self.contract_address = contract_address
        self.event_name = event_name
        self.abi = abi
        self.lookback_blocks = lookback_blocks
        self.max_block_range = max_block_range
        self.argument_filters = argument_filters

        # State tracking
        self.last_processed_block: int | None = None
        self.is_running = False
        self._stop_event = asyncio.Event()

        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def _query_chunk(self, from_block: int, to_block: int) -> list[EventData]:
        try:
            return await self.gateway.retry(
                lambda: self.gateway.query_logs(
                    self.contract_address,
                    self.abi,
                    self.event_name,
                    from_block,
                    to_block,
                    self.argument_filters,
                ),
                label=f"{self.event_name} logs {from_block}-{to_block}",
            )
        except RangeTooLargeError:
            if from_block >= to_block:
                raise
            middle = (from_block + to_block) // 2
            self.logger.warning(
                f"Range {from_block}-{to_block} too large for {self.event_name}, splitting at {middle}"
            )
            return await self._query_chunk(from_block, middle) + await self._query_chunk(middle + 1, to_block)

    async def _query_range(self, from_block: int, to_block: int) -> list[EventData]:
        """Query an inclusive range in chunks of ``max_block_range``, in block order."""
        events: list[EventData] = []
        start = from_block
        while start <= to_block:
            end = min(start + self.max_block_range - 1, to_block)
            events.extend(await self._query_chunk(start, end))
            start = end + 1
        return events

    async def catch_up(self) -> AsyncIterator[EventData]:
        """
        Yield historical events from the lookback window, oldest first.

        Sets the watermark to the head observed at the start once every event
        has been yielded.
        """
        current_block = await self.gateway.retry(self.gateway.current_height, label="current_height")
        from_block = max(0, current_block - self.lookback_blocks)

        self.logger.info(
            f"Initial sync for {self.event_name} events "
            f"from block {from_block} to {current_block}"
        )

        events = await self._query_range(from_block, current_block)
        if events:
            self.logger.info(f"Found {len(events)} historical {self.event_name} events")
        else:
            self.logger.info(f"No historical {self.event_name} events found")

        for event in events:
            yield event

        self.last_processed_block = current_block

    async def poll_for_events(self) -> tuple[int, list[EventData]]:
        """
        Fetch events in blocks after the watermark.

        Returns:
            The head the query ran up to and the events found; the caller
            advances the watermark once the events are handled
        """
        current_block = await self.gateway.retry(self.gateway.current_height, label="current_height")

        # Skip if no new blocks
        if self.last_processed_block is not None and current_block <= self.last_processed_block:
            return current_block, []

        from_block = (
            self.last_processed_block + 1 if self.last_processed_block is not None else current_block
        )
        events = await self._query_range(from_block, current_block)

        if events:
            self.logger.info(
                f"Found {len(events)} new {self.event_name} events "
                f"in blocks {from_block}-{current_block}"
            )
        return current_block, events

    async def live(self, interval: float) -> AsyncIterator[EventData]:
        """Yield new events every ``interval`` seconds until stopped."""
        while self.is_running:
            if await self._wait(interval):
                break

            try:
                current_block, events = await self.poll_for_events()
            except RelayerError as e:
                # Watermark stays put so the same blocks are re-scanned next cycle
                self.logger.error(f"Error polling for {self.event_name} events: {e}")
                continue

            for event in events:
                yield event

            self.last_processed_block = current_block

    async def _wait(self, interval: float) -> bool:
        """Sleep for ``interval`` seconds; True if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            return False
        return True

    async def _deliver(self, callback: Callable[[EventData], Awaitable[Any]], event: EventData) -> None:
        tx_hash = to_hex_string(event["transactionHash"]) if event.get("transactionHash") else "unknown"
        try:
            await callback(event)
        except DecodeError as e:
            self.logger.warning(f"Skipping undecodable {self.event_name} event tx_hash={tx_hash}: {e}")
        except PersistenceError:
            # The event was not recorded; the watermark must not move past it
            raise
        except RelayerError as e:
            self.logger.error(f"Error handling {self.event_name} event tx_hash={tx_hash}: {e}")

    async def start_polling(
        self,
        callback: Callable[[EventData], Awaitable[Any]],
        interval: float = 30
    ) -> None:
        """
        Catch up, then poll for events at the specified interval.

        A failure on one event is logged and never stops delivery of the rest.
        A ledger failure stops polling without advancing the watermark.

        Args:
            callback: Async function to call for each event
            interval: Polling interval in seconds

        Raises:
            PersistenceError: If the callback could not record an event
        """
        if self.is_running:
            self.logger.warning("Polling already running")
            return

        self.is_running = True
        self._stop_event.clear()
        self.logger.info(
            f"Starting polling for {self.event_name} events "
            f"on {self.contract_address} every {interval} seconds"
        )

        while self.is_running and self.last_processed_block is None:
            try:
                async for event in self.catch_up():
                    await self._deliver(callback, event)
            except PersistenceError:
                self.is_running = False
                raise
            except RelayerError as e:
                self.logger.error(f"Initial sync for {self.event_name} failed: {e}. Retrying in {interval}s")
                if await self._wait(interval):
                    break

        try:
            async for event in self.live(interval):
                await self._deliver(callback, event)
        except PersistenceError:
            self.is_running = False
            raise

        self.logger.info(f"Polling for {self.event_name} events stopped")

    async def stop(self) -> None:
        """Stop the polling loop."""
        self.logger.info(f"Stopping polling for {self.event_name} events")
        self.is_running = False
        self._stop_event.set()

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the polling listener.

        Returns:
            Dictionary with status information
        """
        return {
            "is_running": self.is_running,
            "last_processed_block": self.last_processed_block,
            "contract_address": self.contract_address,
            "event_name": self.event_name,
            "endpoint": self.gateway.endpoint,
        }
