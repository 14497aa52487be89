"""Configuration management for the schedule relay.

This module provides type-safe configuration dataclasses with validation
for the relay service. Configuration is loaded from environment variables
with sensible defaults where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import ClassVar
from urllib.parse import urlparse

from web3 import Web3

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    try:
        return int(value) if value else default
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name, "")
    try:
        return float(value) if value else default
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


@dataclass(frozen=True, slots=True)
class OriginChainConfig:
    """Configuration for the origin EVM chain.

    Attributes:
        rpc_url: HTTP(S) RPC endpoint for the origin chain
        contract_address: Checksummed address of the ScheduleEmitter contract
        private_key: Relay identity key used to send markBridged (optional in dry-run)
    """

    rpc_url: str
    contract_address: str
    private_key: str = ""

    def __post_init__(self) -> None:
        """Validate origin chain configuration."""
        if not self.rpc_url:
            raise ValueError("Origin RPC URL is required (ORIGIN_RPC_URL)")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(
                f"Invalid RPC URL scheme: {parsed.scheme}. "
                "Expected http or https"
            )

        if not self.contract_address:
            raise ValueError(
                "Origin contract address is required (ORIGIN_CONTRACT_ADDRESS)"
            )

        if not Web3.is_address(self.contract_address):
            raise ValueError(
                f"Invalid origin contract address: {self.contract_address}"
            )

        checksummed = Web3.to_checksum_address(self.contract_address)
        if checksummed != self.contract_address:
            object.__setattr__(self, 'contract_address', checksummed)

        if self.private_key:
            key = self.private_key.removeprefix('0x')
            if len(key) != 64:
                raise ValueError(
                    f"Invalid private key length. Expected 64 hex characters, got {len(key)}"
                )
            try:
                int(key, 16)
            except ValueError:
                raise ValueError(
                    "Invalid private key format. Must be hexadecimal"
                ) from None


@dataclass(frozen=True, slots=True)
class DestinationConfig:
    """Configuration for the Flow destination ledger.

    Attributes:
        network: Flow network name as defined in flow.json
        signer: flow.json account that signs schedule transactions
        schedule_transaction: Cadence transaction scheduling a payment for an origin request
        lookup_script: Cadence script returning the payment id for an origin key
        config_path: Optional path to flow.json
    """

    network: str = "emulator"
    signer: str = "emulator-account"
    schedule_transaction: str = "cadence/transactions/SchedulePaymentFromOrigin.cdc"
    lookup_script: str = "cadence/scripts/GetPaymentByOrigin.cdc"
    config_path: str | None = None

    SUPPORTED_NETWORKS: ClassVar[set[str]] = {
        'emulator',
        'testnet',
        'mainnet',
        'previewnet',
    }

    def __post_init__(self) -> None:
        """Validate destination configuration."""
        if self.network not in self.SUPPORTED_NETWORKS:
            raise ValueError(
                f"Unsupported network: {self.network}. "
                f"Supported networks: {', '.join(sorted(self.SUPPORTED_NETWORKS))}"
            )
        if not self.signer:
            raise ValueError("Flow signer account is required (FLOW_SIGNER)")
        if not self.schedule_transaction:
            raise ValueError("Schedule transaction path is required (FLOW_SCHEDULE_TRANSACTION)")


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for event monitoring and submission."""
    polling_interval: int = 12  # seconds between live polls
    rescan_interval: int = 60  # seconds between rescans
    rescan_window: int = 100  # blocks re-read by each rescan
    lookback_blocks: int = 100  # blocks to look back on startup
    max_in_flight: int = 4  # concurrent destination submissions
    retry_count: int = 3  # retries for transient failures
    retry_base_delay: float = 1.0  # seconds, doubled per retry
    retry_max_delay: float = 30.0
    submit_timeout: int = 60  # seconds per destination attempt
    shutdown_timeout: int = 30  # seconds to drain the queue on shutdown

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if not 1 <= self.polling_interval <= 300:
            raise ValueError(f"Polling interval must be between 1 and 300s, got {self.polling_interval}")
        if not 1 <= self.rescan_interval <= 3600:
            raise ValueError(f"Rescan interval must be between 1 and 3600s, got {self.rescan_interval}")
        if not 1 <= self.rescan_window <= 10_000:
            raise ValueError(f"Rescan window must be between 1 and 10000 blocks, got {self.rescan_window}")
        if not 0 <= self.lookback_blocks <= 10_000:
            raise ValueError(f"Lookback blocks must be between 0 and 10000, got {self.lookback_blocks}")
        if not 1 <= self.max_in_flight <= 32:
            raise ValueError(f"Max in-flight submissions must be between 1 and 32, got {self.max_in_flight}")
        if not 0 <= self.retry_count <= 10:
            raise ValueError(f"Retry count must be between 0 and 10, got {self.retry_count}")
        if not 0 < self.retry_base_delay <= 60:
            raise ValueError(f"Retry base delay must be in (0, 60]s, got {self.retry_base_delay}")
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError(
                f"Retry max delay ({self.retry_max_delay}s) must not be below "
                f"the base delay ({self.retry_base_delay}s)"
            )
        if not 1 <= self.submit_timeout <= 600:
            raise ValueError(f"Submit timeout must be between 1 and 600s, got {self.submit_timeout}")
        if not 1 <= self.shutdown_timeout <= 300:
            raise ValueError(f"Shutdown timeout must be between 1 and 300s, got {self.shutdown_timeout}")


@dataclass(frozen=True, slots=True)
class RelayerConfig:
    """Main configuration for the schedule relay.

    Attributes:
        origin_chain: Configuration for the origin chain
        destination: Configuration for the Flow destination ledger
        monitoring: Configuration for monitoring and submission
        cursor_path: File the relay cursor is persisted to (None keeps it in memory)
        alert_webhook_url: Endpoint receiving permanent failure reports
        dry_run: Schedule into an in-memory ledger and skip markBridged
    """

    origin_chain: OriginChainConfig
    destination: DestinationConfig = field(default_factory=DestinationConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    cursor_path: str | None = None
    alert_webhook_url: str | None = None
    dry_run: bool = False

    def __post_init__(self) -> None:
        """Validate relay configuration."""
        if not self.dry_run and not self.origin_chain.private_key:
            raise ValueError(
                "RELAY_PRIVATE_KEY environment variable is required unless running with --dry-run. "
                "It signs markBridged transactions on the origin chain"
            )

        if self.alert_webhook_url:
            parsed = urlparse(self.alert_webhook_url)
            if parsed.scheme not in ('http', 'https'):
                raise ValueError(f"Invalid alert webhook URL: {self.alert_webhook_url}")

    @classmethod
    def from_env(cls, dry_run: bool = False) -> "RelayerConfig":
        """Load configuration from environment variables.

        Args:
            dry_run: Whether to run against an in-memory destination ledger

        Returns:
            RelayerConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        origin_rpc_url = os.environ.get("ORIGIN_RPC_URL", "")
        if not origin_rpc_url:
            raise ValueError(
                "ORIGIN_RPC_URL environment variable is required. "
                "Example: https://testnet.evm.nodes.onflow.org"
            )

        origin_contract = os.environ.get("ORIGIN_CONTRACT_ADDRESS", "")
        if not origin_contract:
            raise ValueError(
                "ORIGIN_CONTRACT_ADDRESS environment variable is required. "
                "This should be the ScheduleEmitter contract address."
            )

        origin_config = OriginChainConfig(
            rpc_url=origin_rpc_url,
            contract_address=origin_contract,
            private_key=os.environ.get("RELAY_PRIVATE_KEY", ""),
        )

        destination_config = DestinationConfig(
            network=os.environ.get("FLOW_NETWORK", "emulator"),
            signer=os.environ.get("FLOW_SIGNER", "emulator-account"),
            schedule_transaction=os.environ.get(
                "FLOW_SCHEDULE_TRANSACTION",
                "cadence/transactions/SchedulePaymentFromOrigin.cdc",
            ),
            lookup_script=os.environ.get(
                "FLOW_LOOKUP_SCRIPT",
                "cadence/scripts/GetPaymentByOrigin.cdc",
            ),
            config_path=os.environ.get("FLOW_CONFIG_PATH") or None,
        )

        monitoring_config = MonitoringConfig(
            polling_interval=_env_int("POLLING_INTERVAL", 12),
            rescan_interval=_env_int("RESCAN_INTERVAL", 60),
            rescan_window=_env_int("RESCAN_WINDOW", 100),
            lookback_blocks=_env_int("LOOKBACK_BLOCKS", 100),
            max_in_flight=_env_int("MAX_IN_FLIGHT", 4),
            retry_count=_env_int("RETRY_COUNT", 3),
            retry_base_delay=_env_float("RETRY_BASE_DELAY", 1.0),
            retry_max_delay=_env_float("RETRY_MAX_DELAY", 30.0),
            submit_timeout=_env_int("SUBMIT_TIMEOUT", 60),
            shutdown_timeout=_env_int("SHUTDOWN_TIMEOUT", 30),
        )

        return cls(
            origin_chain=origin_config,
            destination=destination_config,
            monitoring=monitoring_config,
            cursor_path=os.environ.get("CURSOR_PATH") or None,
            alert_webhook_url=os.environ.get("ALERT_WEBHOOK_URL") or None,
            dry_run=dry_run,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format, hiding secrets."""
        logger.info("=" * 60)
        logger.info("Schedule Relay Configuration")
        logger.info("=" * 60)

        logger.info("Origin Chain:")
        logger.info(f"  RPC URL: {self.origin_chain.rpc_url}")
        logger.info(f"  ScheduleEmitter: {self.origin_chain.contract_address}")
        logger.info(f"  Relay Key: {'[SET]' if self.origin_chain.private_key else '[NOT SET]'}")

        logger.info("Destination (Flow):")
        logger.info(f"  Network: {self.destination.network}")
        logger.info(f"  Signer: {self.destination.signer}")
        logger.info(f"  Schedule Transaction: {self.destination.schedule_transaction}")
        logger.info(f"  Lookup Script: {self.destination.lookup_script}")
        if self.destination.config_path:
            logger.info(f"  Config Path: {self.destination.config_path}")

        logger.info("Monitoring Settings:")
        logger.info(f"  Polling Interval: {self.monitoring.polling_interval} seconds")
        logger.info(f"  Rescan: every {self.monitoring.rescan_interval}s over {self.monitoring.rescan_window} blocks")
        logger.info(f"  Lookback Blocks: {self.monitoring.lookback_blocks}")
        logger.info(f"  Max In Flight: {self.monitoring.max_in_flight}")
        logger.info(f"  Retry Count: {self.monitoring.retry_count} (base delay {self.monitoring.retry_base_delay}s)")
        logger.info(f"  Submit Timeout: {self.monitoring.submit_timeout} seconds")
        logger.info(f"  Shutdown Timeout: {self.monitoring.shutdown_timeout} seconds")

        logger.info("Relay Settings:")
        logger.info(f"  Mode: {'DRY RUN' if self.dry_run else 'PRODUCTION'}")
        logger.info(f"  Cursor: {self.cursor_path or '[IN MEMORY]'}")
        logger.info(f"  Alert Webhook: {'[SET]' if self.alert_webhook_url else '[NOT SET]'}")

        logger.info("=" * 60)
