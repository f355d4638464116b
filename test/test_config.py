#!/usr/bin/env python3
"""Tests for the configuration module."""

import logging
import os
from unittest.mock import patch

import pytest

from root_propagator.config import (
    DEFAULT_RETRYABLE_REVERT_SIGNATURES,
    ChainConfig,
    ContractsConfig,
    MonitoringConfig,
    RelayerConfig,
    SignerConfig,
)
from root_propagator.exceptions import ConfigError

ADDRESS = "0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d"

BASE_ENV = {
    "L1_RPC_URLS": "https://eth.rpc.test",
    "L2_RPC_URLS": "https://linea.rpc.test",
    "L1_MESSAGE_SERVICE_ADDRESS": ADDRESS,
    "LINEA_STATE_BRIDGE_ADDRESS": ADDRESS,
    "WORLD_ID_IDENTITY_MANAGER_ADDRESS": ADDRESS,
    "L2_MESSAGE_SERVICE_ADDRESS": ADDRESS,
    "L2_WORLD_ID_BRIDGE_ADDRESS": ADDRESS,
    "PRIVATE_KEY": "0x" + "11" * 32,
}


def make_contracts(**overrides) -> ContractsConfig:
    fields = dict(
        l1_message_service=ADDRESS,
        state_bridge=ADDRESS,
        identity_manager=ADDRESS,
        l2_message_service=ADDRESS,
        l2_world_id_bridge=ADDRESS,
    )
    fields.update(overrides)
    return ContractsConfig(**fields)


class TestChainConfig:
    """Tests for ChainConfig."""

    def test_valid_chain_config(self):
        config = ChainConfig(name="L1", rpc_urls=("https://a.test", "http://b.test:8545"))

        assert config.rpc_urls == ("https://a.test", "http://b.test:8545")
        assert config.lookback_blocks == 100_000

    def test_missing_rpc_urls(self):
        with pytest.raises(ConfigError, match="L2 RPC URL is required"):
            ChainConfig(name="L2", rpc_urls=())

    @pytest.mark.parametrize("url", ["wss://eth.test", "ftp://eth.test", "eth.test", "https://"])
    def test_invalid_rpc_url(self, url):
        with pytest.raises(ConfigError, match="Invalid URL for L1_RPC_URLS"):
            ChainConfig(name="L1", rpc_urls=(url,))

    def test_negative_lookback(self):
        with pytest.raises(ConfigError, match="lookback"):
            ChainConfig(name="L1", rpc_urls=("https://a.test",), lookback_blocks=-1)

    def test_config_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            ChainConfig(name="L1", rpc_urls=("https://a.test",), polling_interval=0)


class TestContractsConfig:
    """Tests for ContractsConfig."""

    def test_addresses_are_checksummed(self):
        config = make_contracts(state_bridge=ADDRESS.lower())

        assert config.state_bridge == ADDRESS

    def test_invalid_address_names_variable(self):
        with pytest.raises(ConfigError, match="L2_WORLD_ID_BRIDGE_ADDRESS"):
            make_contracts(l2_world_id_bridge="invalid-address")

    def test_missing_address(self):
        with pytest.raises(ConfigError, match="L1_MESSAGE_SERVICE_ADDRESS is required"):
            make_contracts(l1_message_service="")


class TestSignerConfig:
    """Tests for SignerConfig."""

    def test_env_key_without_prefix(self):
        assert SignerConfig(private_key="22" * 32).private_key == "22" * 32

    def test_env_key_required(self):
        with pytest.raises(ConfigError, match="PRIVATE_KEY is required"):
            SignerConfig(key_source="env")

    def test_key_length(self):
        with pytest.raises(ConfigError, match="Invalid private key length"):
            SignerConfig(private_key="0x1234")

    def test_key_not_hex(self):
        with pytest.raises(ConfigError, match="hexadecimal"):
            SignerConfig(private_key="zz" * 32)

    def test_appd_needs_no_private_key(self):
        assert SignerConfig(key_source="appd").private_key is None

    def test_unknown_source(self):
        with pytest.raises(ConfigError, match="Unsupported KEY_SOURCE"):
            SignerConfig(key_source="vault")


class TestMonitoringConfig:
    """Tests for MonitoringConfig."""

    def test_defaults(self):
        config = MonitoringConfig()

        assert config.retry_count == 3
        assert config.propagation_period == 3600
        assert config.gas_buffer_percent == 20

    def test_scheduled_propagation_can_be_disabled(self):
        assert MonitoringConfig(propagation_period=0).propagation_period == 0

    @pytest.mark.parametrize("overrides, match", [
        ({"max_block_range": 0}, "Max block range"),
        ({"claim_interval": 0}, "Claim interval"),
        ({"retry_count": 0}, "Retry count"),
        ({"retry_count": 11}, "Retry count"),
        ({"gas_buffer_percent": 101}, "Gas buffer"),
        ({"propagation_fee_wei": -1}, "Propagation fee"),
        ({"receipt_timeout": 0}, "timeouts"),
        ({"status_log_interval": 0}, "Status log interval"),
    ])
    def test_invalid_values(self, overrides, match):
        with pytest.raises(ConfigError, match=match):
            MonitoringConfig(**overrides)


class TestRelayerConfigFromEnv:
    """Tests for loading RelayerConfig from the environment."""

    def test_from_env(self):
        env = {
            **BASE_ENV,
            "L1_RPC_URLS": "https://a.test, https://b.test",
            "PROPAGATION_FEE_WEI": "1000",
            "RETRYABLE_REVERT_SIGNATURES": "Paused(),RateLimitExceeded(uint256)",
            "LOG_LEVEL": "debug",
            "LOG_TO_FILE": "true",
            "STATUS_LOG_INTERVAL": "15",
            "APPD_URL": "http://appd.test",
        }
        with patch.dict(os.environ, env, clear=True):
            config = RelayerConfig.from_env()

        assert config.l1.rpc_urls == ("https://a.test", "https://b.test")
        assert config.l2.polling_interval == 30
        assert config.monitoring.propagation_fee_wei == 1000
        assert config.retryable_revert_signatures == ("Paused()", "RateLimitExceeded(uint256)")
        assert config.log_level == "DEBUG"
        assert config.log_to_file is True
        assert config.monitoring.status_log_interval == 15
        assert config.signer.appd_url == "http://appd.test"
        assert config.database_path == "messages.db"

    def test_single_url_fallback(self):
        env = {**BASE_ENV, "L2_RPC_URL": "https://single.test"}
        del env["L2_RPC_URLS"]
        with patch.dict(os.environ, env, clear=True):
            config = RelayerConfig.from_env()

        assert config.l2.rpc_urls == ("https://single.test",)

    def test_default_revert_signatures(self):
        with patch.dict(os.environ, BASE_ENV, clear=True):
            config = RelayerConfig.from_env()

        assert config.retryable_revert_signatures == DEFAULT_RETRYABLE_REVERT_SIGNATURES

    def test_missing_rpc(self):
        env = dict(BASE_ENV)
        del env["L1_RPC_URLS"]
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigError, match="L1_RPC_URLS"):
                RelayerConfig.from_env()

    def test_bad_integer(self):
        with patch.dict(os.environ, {**BASE_ENV, "CLAIM_INTERVAL": "soon"}, clear=True):
            with pytest.raises(ConfigError, match="CLAIM_INTERVAL must be an integer"):
                RelayerConfig.from_env()

    def test_log_config_hides_key(self, caplog):
        with patch.dict(os.environ, BASE_ENV, clear=True):
            config = RelayerConfig.from_env()

        with caplog.at_level(logging.INFO):
            config.log_config()

        assert "[SET]" in caplog.text
        assert BASE_ENV["PRIVATE_KEY"] not in caplog.text
