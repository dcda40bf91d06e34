"""Configuration management for the localnet relay.

Type-safe configuration dataclasses with validation. Values come from
environment variables with localnet defaults, and contract addresses can be
filled in from the address list written by the localnet setup.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from web3 import Web3

from .constants import ANVIL_MNEMONIC, FUNGIBLE_MODULE_ADDRESS, TSS_PATH, NetworkID, chain_name

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "http://127.0.0.1:8545"


def _validate_url(url: str, label: str) -> None:
    if not url:
        raise ValueError(f"{label} RPC URL is required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Invalid {label} RPC URL scheme: {parsed.scheme}. Expected http or https")


def _checksum(config: Any, name: str, label: str, required: bool = True) -> None:
    """Validate an address attribute and store its checksummed form."""
    value = getattr(config, name)
    if not value:
        if required:
            raise ValueError(f"{label} address is required")
        return
    if not Web3.is_address(value):
        raise ValueError(f"Invalid {label} address: {value}")
    checksummed = Web3.to_checksum_address(value)
    if checksummed != value:
        # Use object.__setattr__ since dataclass is frozen
        object.__setattr__(config, name, checksummed)


def _mask(secret: str | None) -> str:
    return "[SET]" if secret else "[NOT SET]"


@dataclass(frozen=True, slots=True)
class HubChainConfig:
    """Hub chain endpoint and contracts.

    Attributes:
        rpc_url: HTTP RPC endpoint of the hub node
        gateway_zevm: GatewayZEVM address
        uniswap_router: Uniswap V2 router used for gas-cover swaps
        wzeta: Wrapped hub native token
        fungible_module: Module account that sends hub-side transactions
        core_registry: Core registry contract, used to bootstrap the asset registry
    """

    rpc_url: str
    gateway_zevm: str
    uniswap_router: str | None = None
    wzeta: str | None = None
    fungible_module: str = FUNGIBLE_MODULE_ADDRESS
    core_registry: str | None = None

    def __post_init__(self) -> None:
        _validate_url(self.rpc_url, "Hub")
        _checksum(self, "gateway_zevm", "GatewayZEVM")
        _checksum(self, "uniswap_router", "Uniswap router", required=False)
        _checksum(self, "wzeta", "WZETA", required=False)
        _checksum(self, "fungible_module", "Fungible module")
        _checksum(self, "core_registry", "Core registry", required=False)


@dataclass(frozen=True, slots=True)
class EVMChainConfig:
    """A connected EVM chain."""

    chain_id: str
    rpc_url: str
    gateway_evm: str
    custody: str | None = None
    name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", chain_name(self.chain_id))
        if self.chain_id not in (NetworkID.ETHEREUM, NetworkID.BNB):
            raise ValueError(f"Unsupported EVM chain id: {self.chain_id}")
        _validate_url(self.rpc_url, f"EVM chain {self.chain_id}")
        _checksum(self, "gateway_evm", f"GatewayEVM on {self.chain_id}")
        _checksum(self, "custody", f"ERC20Custody on {self.chain_id}", required=False)


@dataclass(frozen=True, slots=True)
class SolanaConfig:
    rpc_url: str
    gateway_program: str
    payer_secret: str
    tss_private_key: str

    def __post_init__(self) -> None:
        _validate_url(self.rpc_url, "Solana")
        if not self.gateway_program:
            raise ValueError("Solana gateway program id is required (SOLANA_GATEWAY_PROGRAM)")
        if not self.payer_secret:
            raise ValueError("Solana payer secret is required (SOLANA_PAYER_SECRET)")


@dataclass(frozen=True, slots=True)
class SuiConfig:
    rpc_url: str
    package_id: str
    gateway_object: str
    withdraw_cap: str
    signer_secret: str

    def __post_init__(self) -> None:
        _validate_url(self.rpc_url, "Sui")
        for name in ("package_id", "gateway_object", "withdraw_cap", "signer_secret"):
            if not getattr(self, name):
                raise ValueError(f"Sui {name} is required")


@dataclass(frozen=True, slots=True)
class TonConfig:
    rpc_url: str
    gateway_address: str
    api_key: str | None = None

    def __post_init__(self) -> None:
        _validate_url(self.rpc_url, "TON")
        if not self.gateway_address:
            raise ValueError("TON gateway address is required (TON_GATEWAY_ADDRESS)")


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for event monitoring."""

    evm_polling_interval: float = 1.0  # seconds between log polls
    solana_polling_interval: float = 1.0
    sui_polling_interval: float = 3.0
    ton_polling_interval: float = 1.0
    lookback_blocks: int = 0  # blocks replayed on startup
    retry_count: int = 3  # fetch retries per poll tick
    request_timeout: int = 30  # HTTP request timeout in seconds

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        for name in (
            "evm_polling_interval",
            "solana_polling_interval",
            "sui_polling_interval",
            "ton_polling_interval",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
            if value > 60:
                raise ValueError(f"{name} too long (max 60s), got {value}")

        if self.lookback_blocks < 0:
            raise ValueError(f"Lookback blocks must be non-negative, got {self.lookback_blocks}")
        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if not 0 <= self.retry_count <= 10:
            raise ValueError(f"Retry count must be between 0 and 10, got {self.retry_count}")


def load_addresses(path: str | Path) -> dict[tuple[str, str], str]:
    """
    Read the localnet address list.

    Args:
        path: JSON file holding ``[{"address", "chain", "type"}, ...]``

    Returns:
        Mapping of ``(chain, type)`` to address
    """
    with Path(path).open() as file:
        entries = json.load(file)
    return {(entry["chain"], entry["type"]): entry["address"] for entry in entries}


@dataclass(frozen=True, slots=True)
class RelayConfig:
    """Main configuration for the localnet relay.

    Attributes:
        hub: Hub chain configuration
        evm_chains: Connected EVM chains
        solana: Solana configuration, None when the chain is not running
        sui: Sui configuration, None when the chain is not running
        ton: TON configuration, None when the chain is not running
        monitoring: Polling and retry settings
        mnemonic: Mnemonic the TSS account is derived from
        tss_path: Derivation path of the TSS account
        exit_on_error: Crash on execution failures instead of reverting
        registry_file: Persisted registry artifact to load or write
        addresses_file: Localnet address list the addresses were read from
    """

    hub: HubChainConfig
    evm_chains: tuple[EVMChainConfig, ...] = ()
    solana: SolanaConfig | None = None
    sui: SuiConfig | None = None
    ton: TonConfig | None = None
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    mnemonic: str = ANVIL_MNEMONIC
    tss_path: str = TSS_PATH
    exit_on_error: bool = False
    registry_file: str | None = None
    addresses_file: str | None = None

    def __post_init__(self) -> None:
        if len(self.mnemonic.split()) not in (12, 15, 18, 21, 24):
            raise ValueError("Mnemonic must have 12, 15, 18, 21 or 24 words")
        chain_ids = [c.chain_id for c in self.evm_chains]
        if len(set(chain_ids)) != len(chain_ids):
            raise ValueError(f"Duplicate EVM chain configuration: {chain_ids}")

    @classmethod
    def from_env(cls, exit_on_error: bool | None = None) -> "RelayConfig":
        """Load configuration from environment variables.

        Args:
            exit_on_error: Overrides ``EXIT_ON_ERROR`` when given

        Returns:
            RelayConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        env = os.environ
        addresses_file = env.get("ADDRESSES_FILE")
        addresses = load_addresses(addresses_file) if addresses_file else {}

        def lookup(var: str, chain: str, kind: str, default: str = "") -> str:
            return env.get(var) or addresses.get((chain, kind), default)

        default_rpc = env.get("RPC_URL", DEFAULT_RPC_URL)
        gateway_zevm = lookup("GATEWAY_ZEVM_ADDRESS", "zetachain", "gatewayZEVM")
        if not gateway_zevm:
            raise ValueError(
                "GATEWAY_ZEVM_ADDRESS environment variable (or ADDRESSES_FILE) is required. "
                "This should be the GatewayZEVM contract on the hub chain."
            )
        hub = HubChainConfig(
            rpc_url=env.get("HUB_RPC_URL", default_rpc),
            gateway_zevm=gateway_zevm,
            uniswap_router=lookup("UNISWAP_ROUTER_ADDRESS", "zetachain", "uniswapRouterInstance") or None,
            wzeta=lookup("WZETA_ADDRESS", "zetachain", "wzeta") or None,
            fungible_module=lookup("FUNGIBLE_MODULE_ADDRESS", "zetachain", "fungibleModule", FUNGIBLE_MODULE_ADDRESS),
            core_registry=lookup("CORE_REGISTRY_ADDRESS", "zetachain", "coreRegistry") or None,
        )

        evm_chains = []
        for chain_id, prefix, chain in ((NetworkID.ETHEREUM, "ETHEREUM", "ethereum"), (NetworkID.BNB, "BNB", "bnb")):
            gateway = lookup(f"{prefix}_GATEWAY_ADDRESS", chain, "gatewayEVM")
            if not gateway:
                continue
            evm_chains.append(
                EVMChainConfig(
                    chain_id=chain_id,
                    rpc_url=env.get(f"{prefix}_RPC_URL", default_rpc),
                    gateway_evm=gateway,
                    custody=lookup(f"{prefix}_CUSTODY_ADDRESS", chain, "custody") or None,
                )
            )

        tss_key = env.get("TSS_PRIVATE_KEY", "")

        solana = None
        if program := lookup("SOLANA_GATEWAY_PROGRAM", "solana", "gatewayProgram"):
            solana = SolanaConfig(
                rpc_url=env.get("SOLANA_RPC_URL", "http://127.0.0.1:8899"),
                gateway_program=program,
                payer_secret=env.get("SOLANA_PAYER_SECRET", ""),
                tss_private_key=tss_key,
            )

        sui = None
        if package_id := lookup("SUI_PACKAGE_ID", "sui", "gatewayPackageId"):
            sui = SuiConfig(
                rpc_url=env.get("SUI_RPC_URL", "http://127.0.0.1:9000"),
                package_id=package_id,
                gateway_object=lookup("SUI_GATEWAY_OBJECT_ID", "sui", "gatewayObjectId"),
                withdraw_cap=lookup("SUI_WITHDRAW_CAP_ID", "sui", "withdrawCapObjectId"),
                signer_secret=env.get("SUI_SIGNER_SECRET", ""),
            )

        ton = None
        if ton_gateway := lookup("TON_GATEWAY_ADDRESS", "ton", "gateway"):
            ton = TonConfig(
                rpc_url=env.get("TON_RPC_URL", "http://127.0.0.1:8081/jsonRPC"),
                gateway_address=ton_gateway,
                api_key=env.get("TON_API_KEY") or None,
            )

        monitoring = MonitoringConfig(
            evm_polling_interval=float(env.get("EVM_POLLING_INTERVAL", "1")),
            solana_polling_interval=float(env.get("SOLANA_POLLING_INTERVAL", "1")),
            sui_polling_interval=float(env.get("SUI_POLLING_INTERVAL", "3")),
            ton_polling_interval=float(env.get("TON_POLLING_INTERVAL", "1")),
            lookback_blocks=int(env.get("LOOKBACK_BLOCKS", "0")),
            retry_count=int(env.get("RETRY_COUNT", "3")),
            request_timeout=int(env.get("REQUEST_TIMEOUT", "30")),
        )

        if exit_on_error is None:
            exit_on_error = env.get("EXIT_ON_ERROR", "false").lower() in ("1", "true", "yes")

        return cls(
            hub=hub,
            evm_chains=tuple(evm_chains),
            solana=solana,
            sui=sui,
            ton=ton,
            monitoring=monitoring,
            mnemonic=env.get("MNEMONIC", ANVIL_MNEMONIC),
            tss_path=env.get("TSS_PATH", TSS_PATH),
            exit_on_error=exit_on_error,
            registry_file=env.get("REGISTRY_FILE") or None,
            addresses_file=addresses_file or None,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Localnet Relay Configuration")
        logger.info("=" * 60)

        logger.info("Hub Chain:")
        logger.info(f"  RPC URL: {self.hub.rpc_url}")
        logger.info(f"  GatewayZEVM: {self.hub.gateway_zevm}")
        logger.info(f"  Uniswap Router: {self.hub.uniswap_router or '[NOT SET]'}")
        logger.info(f"  Core Registry: {self.hub.core_registry or '[NOT SET]'}")

        for chain in self.evm_chains:
            logger.info(f"EVM Chain {chain.chain_id}:")
            logger.info(f"  RPC URL: {chain.rpc_url}")
            logger.info(f"  GatewayEVM: {chain.gateway_evm}")
            logger.info(f"  Custody: {chain.custody or '[NOT SET]'}")

        if self.solana:
            logger.info("Solana:")
            logger.info(f"  RPC URL: {self.solana.rpc_url}")
            logger.info(f"  Gateway Program: {self.solana.gateway_program}")
            logger.info(f"  Payer: {_mask(self.solana.payer_secret)}")
        if self.sui:
            logger.info("Sui:")
            logger.info(f"  RPC URL: {self.sui.rpc_url}")
            logger.info(f"  Package: {self.sui.package_id}")
            logger.info(f"  Signer: {_mask(self.sui.signer_secret)}")
        if self.ton:
            logger.info("TON:")
            logger.info(f"  RPC URL: {self.ton.rpc_url}")
            logger.info(f"  Gateway: {self.ton.gateway_address}")
            logger.info(f"  API Key: {_mask(self.ton.api_key)}")

        logger.info("Monitoring Settings:")
        logger.info(f"  EVM Polling Interval: {self.monitoring.evm_polling_interval}s")
        logger.info(f"  Solana/Sui/TON Intervals: {self.monitoring.solana_polling_interval}s/"
                    f"{self.monitoring.sui_polling_interval}s/{self.monitoring.ton_polling_interval}s")
        logger.info(f"  Lookback Blocks: {self.monitoring.lookback_blocks}")
        logger.info(f"  Retry Count: {self.monitoring.retry_count}")

        logger.info("Relay Settings:")
        logger.info(f"  Mnemonic: {'[DEFAULT]' if self.mnemonic == ANVIL_MNEMONIC else '[SET]'}")
        logger.info(f"  Exit On Error: {self.exit_on_error}")
        logger.info(f"  Registry File: {self.registry_file or '[NOT SET]'}")
        logger.info(f"  Addresses File: {self.addresses_file or '[NOT SET]'}")
        logger.info("=" * 60)
