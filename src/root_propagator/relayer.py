"""
Root relayer service.

This module wires the gateways, listeners, propagator and claim engine
together and owns their lifecycle: startup, health checks, periodic status
and graceful shutdown.
"""

import asyncio
import logging
from typing import Any

from eth_account.signers.local import LocalAccount

from .claim_engine import ClaimEngine
from .config import ChainConfig, RelayerConfig, SignerConfig
from .event_processor import EventProcessor
from .exceptions import RelayerError
from .l1_message_listener import L1MessageListener
from .l2_inbox_monitor import L2InboxMonitor
from .ledger import MessageLedger
from .root_propagator import RootPropagator
from .utils.appd_utility import AppdUtility
from .utils.chain_gateway import ChainGateway
from .utils.contract_utility import ContractUtility
from .utils.polling_event_listener import PollingEventListener
from .utils.retry_policy import RetryPolicy
from .utils.revert_classifier import RevertClassifier

logger = logging.getLogger(__name__)


class RootRelayer:
    """
    Main relayer service that orchestrates the relay components.

    Every component runs as its own task; the relayer only coordinates them
    and stops the process when one of them dies.
    """

    # Tasks allowed to return before shutdown
    OPTIONAL_TASKS = frozenset({"status", "scheduled_propagation"})

    def __init__(
        self,
        config: RelayerConfig,
        account: LocalAccount,
        ledger: MessageLedger | None = None,
        contract_util: ContractUtility | None = None,
    ):
        """
        Initialize the relayer.

        Args:
            config: Relayer configuration
            account: Account signing propagations and claims
            ledger: Message ledger, opened from ``config.database_path`` if omitted
            contract_util: ABI loader
        """
        self.config = config
        self.account = account
        self.running = False
        self.ledger = ledger or MessageLedger.from_path(config.database_path)
        self.contract_util = contract_util or ContractUtility()
        self.event_processor = EventProcessor()

        self._init_gateways()
        self._init_components()

        # Async coordination
        self.shutdown_event = asyncio.Event()

    def _make_gateway(self, chain: ChainConfig) -> ChainGateway:
        monitoring = self.config.monitoring
        return ChainGateway(
            name=chain.name,
            rpc_urls=chain.rpc_urls,
            account=self.account,
            request_timeout=monitoring.request_timeout,
            receipt_timeout=monitoring.receipt_timeout,
            retry_policy=RetryPolicy(
                max_attempts=monitoring.retry_count,
                base_delay=monitoring.retry_base_delay,
            ),
            revert_classifier=self.revert_classifier,
            fee_bump_percent=monitoring.fee_bump_percent,
        )

    def _init_gateways(self) -> None:
        self.revert_classifier = RevertClassifier(self.config.retryable_revert_signatures)
        self.l1_gateway = self._make_gateway(self.config.l1)
        self.l2_gateway = self._make_gateway(self.config.l2)
        logger.info(f"Signing as {self.account.address}")

    def _init_components(self) -> None:
        contracts = self.config.contracts
        monitoring = self.config.monitoring

        l1_message_service_abi = self.contract_util.get_contract_abi("L1MessageService")
        state_bridge_abi = self.contract_util.get_contract_abi("LineaStateBridge")
        identity_manager_abi = self.contract_util.get_contract_abi("WorldIDIdentityManager")
        l2_message_service_abi = self.contract_util.get_contract_abi("L2MessageService")
        world_id_bridge_abi = self.contract_util.get_contract_abi("L2WorldIDBridge")

        self.l1_listener = L1MessageListener(
            listener=PollingEventListener(
                gateway=self.l1_gateway,
                contract_address=contracts.l1_message_service,
                event_name=L1MessageListener.EVENT_NAME,
                abi=l1_message_service_abi,
                lookback_blocks=self.config.l1.lookback_blocks,
                max_block_range=monitoring.max_block_range,
                argument_filters={"_from": contracts.state_bridge},
            ),
            ledger=self.ledger,
            processor=self.event_processor,
            polling_interval=self.config.l1.polling_interval,
        )

        self.l2_monitor = L2InboxMonitor(
            listener=PollingEventListener(
                gateway=self.l2_gateway,
                contract_address=contracts.l2_message_service,
                event_name=L2InboxMonitor.EVENT_NAME,
                abi=l2_message_service_abi,
                lookback_blocks=self.config.l2.lookback_blocks,
                max_block_range=monitoring.max_block_range,
            ),
            ledger=self.ledger,
            processor=self.event_processor,
            polling_interval=self.config.l2.polling_interval,
        )

        self.root_propagator = RootPropagator(
            l1_gateway=self.l1_gateway,
            l2_gateway=self.l2_gateway,
            # Only new tree changes trigger propagation; startup is covered by the root check
            listener=PollingEventListener(
                gateway=self.l1_gateway,
                contract_address=contracts.identity_manager,
                event_name=RootPropagator.EVENT_NAME,
                abi=identity_manager_abi,
                lookback_blocks=0,
                max_block_range=monitoring.max_block_range,
            ),
            processor=self.event_processor,
            state_bridge_address=contracts.state_bridge,
            state_bridge_abi=state_bridge_abi,
            world_id_bridge_address=contracts.l2_world_id_bridge,
            world_id_bridge_abi=world_id_bridge_abi,
            propagation_fee_wei=monitoring.propagation_fee_wei,
            gas_buffer_percent=monitoring.gas_buffer_percent,
            polling_interval=self.config.l1.polling_interval,
            propagation_period=monitoring.propagation_period,
            init_delay=monitoring.listener_init_delay,
        )

        self.claim_engine = ClaimEngine(
            gateway=self.l2_gateway,
            ledger=self.ledger,
            message_service_address=contracts.l2_message_service,
            message_service_abi=l2_message_service_abi,
            claim_interval=monitoring.claim_interval,
            gas_buffer_percent=monitoring.gas_buffer_percent,
            failed_retention=monitoring.failed_retention,
        )

    @staticmethod
    async def load_account(signer: SignerConfig) -> LocalAccount:
        """Resolve the signing account from the configured key source."""
        if signer.key_source == "appd":
            secret = await AppdUtility(signer.appd_url).fetch_key(signer.appd_key_id)
        else:
            secret = signer.private_key or ""
        return ContractUtility.load_account(secret)

    @classmethod
    async def from_config(cls, config: RelayerConfig) -> "RootRelayer":
        """Log the configuration, resolve the signing account and build the relayer."""
        config.log_config()
        account = await cls.load_account(config.signer)
        return cls(config, account)

    async def _wait_for_shutdown(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def get_status(self) -> dict[str, Any]:
        return {
            "ledger": self.ledger.count_by_status(),
            "l1_messages": self.l1_listener.get_status(),
            "l2_inbox": self.l2_monitor.get_status(),
            "root_propagator": self.root_propagator.get_status(),
            "claims": self.claim_engine.get_status(),
            "l1_gateway": self.l1_gateway.get_status(),
            "l2_gateway": self.l2_gateway.get_status(),
            "events": self.event_processor.get_stats(),
        }

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        interval = self.config.monitoring.status_log_interval
        while not await self._wait_for_shutdown(interval):
            counts = self.ledger.count_by_status()
            logger.info(
                f"Status: {counts['pending']} pending, {counts['confirmed']} confirmed, "
                f"{counts['claimed']} claimed, {counts['failed']} failed | "
                f"L1 block {self.l1_listener.listener.last_processed_block}, "
                f"L2 block {self.l2_monitor.listener.last_processed_block} | "
                f"{self.root_propagator.propagated_count} propagations, "
                f"{self.claim_engine.runs} claim runs"
            )

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> BaseException | None:
        """Return the failure of the first critical task that has stopped, if any."""
        for name, task in tasks.items():
            if not task.done():
                continue
            if task.cancelled():
                return RelayerError(f"{name} task was cancelled")
            error = task.exception()
            if error is not None:
                logger.error(f"{name} task failed: {error}", exc_info=error)
                return error
            if name not in self.OPTIONAL_TASKS:
                return RelayerError(f"{name} task exited unexpectedly")
        return None

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Stop every component, give in-flight work a grace period, then cancel."""
        await self.l1_listener.stop()
        await self.l2_monitor.stop()
        await self.root_propagator.stop()
        await self.claim_engine.stop()

        pending = [task for task in tasks.values() if not task.done()]
        if pending:
            _, pending = await asyncio.wait(pending, timeout=self.config.monitoring.shutdown_grace)

        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} tasks still running after the grace period")
        await asyncio.gather(*tasks.values(), return_exceptions=True)

    async def _close_gateways(self) -> None:
        await self.l1_gateway.close()
        await self.l2_gateway.close()

    async def run(self) -> None:
        """
        Main loop for the relayer service.

        Raises:
            PersistenceError: If the ledger cannot be opened
            BaseException: Whatever made a critical task fail
        """
        self.running = True
        logger.info("Root relayer starting...")
        self.ledger.connect()

        tasks: dict[str, asyncio.Task] = {}
        failure: BaseException | None = None
        try:
            tasks = {
                "l1_messages": asyncio.create_task(self.l1_listener.run()),
                "l2_inbox": asyncio.create_task(self.l2_monitor.run()),
                "root_propagator": asyncio.create_task(self.root_propagator.run()),
                "scheduled_propagation": asyncio.create_task(self.root_propagator.run_scheduled()),
                "claims": asyncio.create_task(self.claim_engine.run()),
                "status": asyncio.create_task(self._periodic_status_logger()),
            }

            logger.info("Relay started, waiting for events...")

            # Wait until shutdown or task failure
            while self.running:
                if await self._wait_for_shutdown(1.0):
                    break

                failure = await self._check_task_health(tasks)
                if failure is not None:
                    logger.error("Critical task failure, shutting down")
                    break
        finally:
            await self._cleanup_tasks(tasks)
            await self._close_gateways()
            self.ledger.close()
            logger.info("Root relayer stopped")

        if failure is not None:
            raise failure

    async def run_once(self) -> dict[str, Any]:
        """Run one propagation check and one claim pass, then return."""
        self.ledger.connect()
        try:
            propagated = await self.root_propagator.propagate_if_missing()
            outcomes = await self.claim_engine.run_once()
        finally:
            await self._close_gateways()
            self.ledger.close()
        logger.info(f"Single pass finished: propagation attempted={propagated}, claims={outcomes}")
        return {"propagation_attempted": propagated, "claims": outcomes}

    def stop(self) -> None:
        """Stop the relayer service."""
        self.running = False
        self.shutdown_event.set()
