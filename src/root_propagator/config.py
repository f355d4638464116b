"""Configuration management for the root propagator.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from environment variables once at startup and the
resulting frozen object is passed to every component.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import ClassVar
from urllib.parse import urlparse

from web3 import Web3

from .exceptions import ConfigError

# Get logger for this module
logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE_REVERT_SIGNATURES: tuple[str, ...] = (
    "RateLimitExceeded(uint256)",
    "IsPaused(uint8)",
    "MessageDoesNotExistOrHasAlreadyBeenClaimed(bytes32)",
)


def _validate_address(name: str, value: str) -> str:
    """Validate an address and return its checksummed form."""
    if not value:
        raise ConfigError(f"{name} is required")
    if not Web3.is_address(value):
        raise ConfigError(f"Invalid Ethereum address for {name}: {value}")
    return Web3.to_checksum_address(value)


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for one chain.

    Attributes:
        name: Short label used in logs ("L1" or "L2")
        rpc_urls: Endpoints tried round-robin, first one preferred
        lookback_blocks: Catch-up window on startup
        polling_interval: Seconds between log polls
    """

    name: str
    rpc_urls: tuple[str, ...]
    lookback_blocks: int = 100_000
    polling_interval: int = 12

    ALLOWED_SCHEMES: ClassVar[tuple[str, ...]] = ('http', 'https')

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.rpc_urls:
            raise ConfigError(f"{self.name} RPC URL is required ({self.name}_RPC_URLS)")

        for url in self.rpc_urls:
            parsed = urlparse(url)
            if parsed.scheme not in self.ALLOWED_SCHEMES or not parsed.netloc:
                raise ConfigError(f"Invalid URL for {self.name}_RPC_URLS: {url}")

        if self.lookback_blocks < 0:
            raise ConfigError(f"{self.name} lookback blocks must be non-negative, got {self.lookback_blocks}")
        if self.polling_interval <= 0:
            raise ConfigError(f"{self.name} polling interval must be positive, got {self.polling_interval}")


@dataclass(frozen=True, slots=True)
class ContractsConfig:
    """Addresses of the contracts the relayer talks to."""

    l1_message_service: str
    state_bridge: str
    identity_manager: str
    l2_message_service: str
    l2_world_id_bridge: str

    def __post_init__(self) -> None:
        """Validate and checksum every address."""
        for attr, env_name in (
            ('l1_message_service', 'L1_MESSAGE_SERVICE_ADDRESS'),
            ('state_bridge', 'LINEA_STATE_BRIDGE_ADDRESS'),
            ('identity_manager', 'WORLD_ID_IDENTITY_MANAGER_ADDRESS'),
            ('l2_message_service', 'L2_MESSAGE_SERVICE_ADDRESS'),
            ('l2_world_id_bridge', 'L2_WORLD_ID_BRIDGE_ADDRESS'),
        ):
            object.__setattr__(self, attr, _validate_address(env_name, getattr(self, attr)))


@dataclass(frozen=True, slots=True)
class SignerConfig:
    """Where the transaction signing key comes from."""

    key_source: str = "env"
    private_key: str | None = None
    appd_key_id: str = "root-propagator"
    appd_url: str = ""

    SUPPORTED_SOURCES: ClassVar[set[str]] = {'env', 'appd'}

    def __post_init__(self) -> None:
        if self.key_source not in self.SUPPORTED_SOURCES:
            raise ConfigError(
                f"Unsupported KEY_SOURCE: {self.key_source}. "
                f"Supported: {', '.join(sorted(self.SUPPORTED_SOURCES))}"
            )

        if self.key_source == 'env':
            if not self.private_key:
                raise ConfigError("PRIVATE_KEY is required when KEY_SOURCE=env")

            key = self.private_key.removeprefix('0x')
            if len(key) != 64:
                raise ConfigError(
                    f"Invalid private key length. Expected 64 hex characters, got {len(key)}"
                )
            try:
                int(key, 16)
            except ValueError:
                raise ConfigError("Invalid private key format. Must be hexadecimal") from None


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Timing, retry and fee settings."""
    max_block_range: int = 10_000  # blocks per log query chunk
    claim_interval: int = 60  # seconds between claim runs
    propagation_period: int = 3600  # seconds, 0 disables scheduled propagation
    listener_init_delay: int = 5  # seconds before the first propagation
    request_timeout: int = 30  # per RPC call
    receipt_timeout: int = 180
    retry_count: int = 3
    retry_base_delay: float = 2.0  # seconds, grows linearly per attempt
    fee_bump_percent: int = 15
    gas_buffer_percent: int = 20
    propagation_fee_wei: int = 0
    failed_retention: int = 86_400  # seconds before failed rows are pruned
    shutdown_grace: int = 10
    status_log_interval: int = 60

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.max_block_range <= 0:
            raise ConfigError(f"Max block range must be positive, got {self.max_block_range}")
        if self.claim_interval <= 0:
            raise ConfigError(f"Claim interval must be positive, got {self.claim_interval}")
        if self.propagation_period < 0:
            raise ConfigError(f"Propagation period must be non-negative, got {self.propagation_period}")
        if self.request_timeout <= 0 or self.receipt_timeout <= 0:
            raise ConfigError("Request and receipt timeouts must be positive")
        if not 1 <= self.retry_count <= 10:
            raise ConfigError(f"Retry count must be between 1 and 10, got {self.retry_count}")
        if self.retry_base_delay < 0:
            raise ConfigError(f"Retry base delay must be non-negative, got {self.retry_base_delay}")
        if not 0 <= self.gas_buffer_percent <= 100:
            raise ConfigError(f"Gas buffer must be between 0 and 100 percent, got {self.gas_buffer_percent}")
        if self.fee_bump_percent <= 0:
            raise ConfigError(f"Fee bump must be positive, got {self.fee_bump_percent}")
        if self.propagation_fee_wei < 0:
            raise ConfigError(f"Propagation fee must be non-negative, got {self.propagation_fee_wei}")
        if self.failed_retention < 0:
            raise ConfigError(f"Failed retention must be non-negative, got {self.failed_retention}")
        if self.status_log_interval <= 0:
            raise ConfigError(f"Status log interval must be positive, got {self.status_log_interval}")


@dataclass(frozen=True, slots=True)
class RelayerConfig:
    """Main configuration for the root propagator.

    Attributes:
        l1: Source chain settings
        l2: Destination chain settings
        contracts: Contract addresses on both chains
        signer: Signing key source
        monitoring: Timing, retry and fee settings
        database_path: SQLite file backing the message ledger
        retryable_revert_signatures: Error signatures treated as transient
        log_level: Logging level name
        log_to_file: Also write rotating log files
    """

    l1: ChainConfig
    l2: ChainConfig
    contracts: ContractsConfig
    signer: SignerConfig
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    database_path: str = "messages.db"
    retryable_revert_signatures: tuple[str, ...] = DEFAULT_RETRYABLE_REVERT_SIGNATURES
    log_level: str = "INFO"
    log_to_file: bool = False

    @classmethod
    def from_env(cls) -> "RelayerConfig":
        """Load configuration from environment variables.

        Returns:
            RelayerConfig instance with loaded values

        Raises:
            ConfigError: If required variables are missing or invalid
        """
        l1 = ChainConfig(
            name="L1",
            rpc_urls=_env_list("L1_RPC_URLS", "L1_RPC_URL"),
            lookback_blocks=_env_int("L1_BLOCKS_TO_QUERY", 100_000),
            polling_interval=_env_int("L1_POLLING_INTERVAL", 12),
        )
        l2 = ChainConfig(
            name="L2",
            rpc_urls=_env_list("L2_RPC_URLS", "L2_RPC_URL"),
            lookback_blocks=_env_int("L2_BLOCKS_TO_QUERY", 100_000),
            polling_interval=_env_int("L2_POLLING_INTERVAL", 30),
        )

        contracts = ContractsConfig(
            l1_message_service=os.environ.get("L1_MESSAGE_SERVICE_ADDRESS", ""),
            state_bridge=os.environ.get("LINEA_STATE_BRIDGE_ADDRESS", ""),
            identity_manager=os.environ.get("WORLD_ID_IDENTITY_MANAGER_ADDRESS", ""),
            l2_message_service=os.environ.get("L2_MESSAGE_SERVICE_ADDRESS", ""),
            l2_world_id_bridge=os.environ.get("L2_WORLD_ID_BRIDGE_ADDRESS", ""),
        )

        signer = SignerConfig(
            key_source=os.environ.get("KEY_SOURCE", "env"),
            private_key=os.environ.get("PRIVATE_KEY") or None,
            appd_key_id=os.environ.get("APPD_KEY_ID", "root-propagator"),
            appd_url=os.environ.get("APPD_URL", ""),
        )

        monitoring = MonitoringConfig(
            max_block_range=_env_int("MAX_BLOCK_RANGE", 10_000),
            claim_interval=_env_int("CLAIM_INTERVAL", 60),
            propagation_period=_env_int("PROPAGATION_PERIOD", 3600),
            listener_init_delay=_env_int("LISTENER_INIT_DELAY", 5),
            request_timeout=_env_int("REQUEST_TIMEOUT", 30),
            receipt_timeout=_env_int("RECEIPT_TIMEOUT", 180),
            retry_count=_env_int("RETRY_COUNT", 3),
            retry_base_delay=_env_float("RETRY_BASE_DELAY", 2.0),
            fee_bump_percent=_env_int("FEE_BUMP_PERCENT", 15),
            gas_buffer_percent=_env_int("GAS_BUFFER_PERCENT", 20),
            propagation_fee_wei=_env_int("PROPAGATION_FEE_WEI", 0),
            failed_retention=_env_int("FAILED_RETENTION", 86_400),
            shutdown_grace=_env_int("SHUTDOWN_GRACE", 10),
            status_log_interval=_env_int("STATUS_LOG_INTERVAL", 60),
        )

        signatures = _env_list("RETRYABLE_REVERT_SIGNATURES", required=False)

        return cls(
            l1=l1,
            l2=l2,
            contracts=contracts,
            signer=signer,
            monitoring=monitoring,
            database_path=os.environ.get("DATABASE_PATH", "messages.db"),
            retryable_revert_signatures=signatures or DEFAULT_RETRYABLE_REVERT_SIGNATURES,
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            log_to_file=os.environ.get("LOG_TO_FILE", "false").lower() == "true",
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format, hiding the key."""
        logger.info("=" * 60)
        logger.info("Root Propagator Configuration")
        logger.info("=" * 60)

        for chain in (self.l1, self.l2):
            logger.info(f"{chain.name}:")
            logger.info(f"  RPC URLs: {', '.join(chain.rpc_urls)}")
            logger.info(f"  Lookback Blocks: {chain.lookback_blocks}")
            logger.info(f"  Polling Interval: {chain.polling_interval} seconds")

        logger.info("Contracts:")
        logger.info(f"  L1 Message Service: {self.contracts.l1_message_service}")
        logger.info(f"  State Bridge: {self.contracts.state_bridge}")
        logger.info(f"  Identity Manager: {self.contracts.identity_manager}")
        logger.info(f"  L2 Message Service: {self.contracts.l2_message_service}")
        logger.info(f"  L2 World ID Bridge: {self.contracts.l2_world_id_bridge}")

        logger.info("Signer:")
        logger.info(f"  Key Source: {self.signer.key_source}")
        logger.info(f"  Private Key: {'[SET]' if self.signer.private_key else '[NOT SET]'}")

        logger.info("Monitoring Settings:")
        logger.info(f"  Claim Interval: {self.monitoring.claim_interval} seconds")
        logger.info(f"  Propagation Period: {self.monitoring.propagation_period} seconds")
        logger.info(f"  Request Timeout: {self.monitoring.request_timeout} seconds")
        logger.info(f"  Retry Count: {self.monitoring.retry_count}")
        logger.info(f"  Database: {self.database_path}")
        logger.info("=" * 60)


def _env_list(name: str, fallback: str | None = None, required: bool = True) -> tuple[str, ...]:
    raw = os.environ.get(name, "")
    if not raw and fallback:
        raw = os.environ.get(fallback, "")
    items = tuple(item.strip() for item in raw.split(",") if item.strip())
    if required and not items:
        raise ConfigError(f"Missing required configuration: {name}")
    return items


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
