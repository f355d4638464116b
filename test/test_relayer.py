#!/usr/bin/env python3
"""Tests for RootRelayer wiring and task supervision."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from web3 import Web3

from conftest import PRIVATE_KEY
from root_propagator.config import (
    ChainConfig,
    ContractsConfig,
    MonitoringConfig,
    RelayerConfig,
    SignerConfig,
)
from root_propagator.exceptions import PersistenceError, RelayerError, RpcError
from root_propagator.relayer import RootRelayer
from root_propagator.utils.contract_utility import ContractUtility

L1_MESSAGE_SERVICE = Web3.to_checksum_address("0x" + "d1" * 20)
STATE_BRIDGE = Web3.to_checksum_address("0x" + "5b" * 20)
IDENTITY_MANAGER = Web3.to_checksum_address("0x" + "f7" * 20)
L2_MESSAGE_SERVICE = Web3.to_checksum_address("0x" + "50" * 20)
WORLD_ID_BRIDGE = Web3.to_checksum_address("0x" + "85" * 20)


@pytest.fixture
def config(tmp_path):
    return RelayerConfig(
        l1=ChainConfig(name="L1", rpc_urls=("https://l1.test", "https://l1-backup.test"), lookback_blocks=500),
        l2=ChainConfig(name="L2", rpc_urls=("https://l2.test",), polling_interval=30),
        contracts=ContractsConfig(
            l1_message_service=L1_MESSAGE_SERVICE,
            state_bridge=STATE_BRIDGE.lower(),
            identity_manager=IDENTITY_MANAGER,
            l2_message_service=L2_MESSAGE_SERVICE,
            l2_world_id_bridge=WORLD_ID_BRIDGE,
        ),
        signer=SignerConfig(private_key=PRIVATE_KEY),
        monitoring=MonitoringConfig(shutdown_grace=1, propagation_fee_wei=5, retry_count=2),
        database_path=str(tmp_path / "relayer.db"),
    )


@pytest.fixture
def relayer(config, ledger):
    return RootRelayer(config, ContractUtility.load_account(PRIVATE_KEY), ledger=ledger)


async def block_until_cancelled():
    await asyncio.Event().wait()


class TestWiring:
    """Components are built from the configuration."""

    def test_gateways(self, relayer):
        assert relayer.l1_gateway.rpc_urls == ["https://l1.test", "https://l1-backup.test"]
        assert relayer.l2_gateway.name == "L2"
        assert relayer.l1_gateway.retry_policy.max_attempts == 2
        assert relayer.l1_gateway.account.address == relayer.account.address
        assert relayer.l1_gateway.revert_classifier is relayer.l2_gateway.revert_classifier

    def test_message_listener_filters_on_state_bridge(self, relayer):
        listener = relayer.l1_listener.listener

        assert listener.contract_address == L1_MESSAGE_SERVICE
        assert listener.event_name == "MessageSent"
        assert listener.lookback_blocks == 500
        assert listener.argument_filters == {"_from": STATE_BRIDGE}

    def test_inbox_monitor_on_l2(self, relayer):
        listener = relayer.l2_monitor.listener

        assert listener.gateway is relayer.l2_gateway
        assert listener.event_name == "L1L2MessageHashesAddedToInbox"
        assert relayer.l2_monitor.polling_interval == 30

    def test_propagator_and_claims(self, relayer):
        assert relayer.root_propagator.listener.lookback_blocks == 0
        assert relayer.root_propagator.listener.contract_address == IDENTITY_MANAGER
        assert relayer.root_propagator.propagation_fee_wei == 5
        assert relayer.claim_engine.gateway is relayer.l2_gateway
        assert relayer.claim_engine.message_service_address == L2_MESSAGE_SERVICE

    def test_status(self, relayer):
        status = relayer.get_status()

        assert status["ledger"]["pending"] == 0
        assert status["l1_gateway"]["endpoints"] == 2
        assert status["root_propagator"]["event_name"] == "TreeChanged"


class TestRunOnce:
    """Single pass mode."""

    @pytest.mark.asyncio
    async def test_run_once(self, relayer):
        relayer.root_propagator.propagate_if_missing = AsyncMock(return_value=False)
        relayer.claim_engine.run_once = AsyncMock(return_value={"claimed": 2})

        result = await relayer.run_once()

        assert result == {"propagation_attempted": False, "claims": {"claimed": 2}}

    @pytest.mark.asyncio
    async def test_from_config(self, config):
        relayer = await RootRelayer.from_config(config)

        assert relayer.account.address == ContractUtility.load_account(PRIVATE_KEY).address
        assert relayer.config is config


class TestSupervision:
    """Task health checks and shutdown."""

    @pytest.mark.asyncio
    async def test_health_check(self, relayer):
        async def fail():
            raise RpcError("node gone")

        async def finish():
            return None

        tasks = {
            "claims": asyncio.create_task(block_until_cancelled()),
            "status": asyncio.create_task(finish()),
        }
        await asyncio.sleep(0)
        assert await relayer._check_task_health(tasks) is None

        tasks["l1_messages"] = asyncio.create_task(fail())
        await asyncio.sleep(0)
        assert isinstance(await relayer._check_task_health(tasks), RpcError)

        tasks["claims"].cancel()

    @pytest.mark.asyncio
    async def test_unexpected_exit_is_a_failure(self, relayer):
        async def finish():
            return None

        task = asyncio.create_task(finish())
        await task

        failure = await relayer._check_task_health({"l2_inbox": task})
        assert isinstance(failure, RelayerError)
        assert "exited unexpectedly" in str(failure)

    def _stub_components(self, relayer, **overrides):
        for component in (relayer.l1_listener, relayer.l2_monitor, relayer.claim_engine):
            component.run = overrides.get(type(component).__name__, block_until_cancelled)
        relayer.root_propagator.run = block_until_cancelled
        relayer.root_propagator.run_scheduled = block_until_cancelled

    @pytest.mark.asyncio
    async def test_stop_shuts_down_cleanly(self, relayer):
        self._stub_components(relayer)
        relayer.l1_gateway.close = AsyncMock()
        relayer.l2_gateway.close = AsyncMock()

        run = asyncio.create_task(relayer.run())
        await asyncio.sleep(0.1)
        relayer.stop()
        await asyncio.wait_for(run, timeout=5)

        assert relayer.running is False
        relayer.l1_gateway.close.assert_awaited_once()
        relayer.l2_gateway.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_component_failure_stops_relayer(self, relayer):
        async def broken_claims():
            raise PersistenceError("disk full")

        self._stub_components(relayer, ClaimEngine=broken_claims)

        with pytest.raises(PersistenceError, match="disk full"):
            await asyncio.wait_for(relayer.run(), timeout=5)
