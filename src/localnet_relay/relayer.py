"""
Localnet relay service.

This module contains the main relay service that builds the chain adapters,
bootstraps the foreign asset registry and supervises the observation tasks
that feed the relay orchestrator.
"""

import asyncio
import logging
from pathlib import Path

from .adapters.base import ChainAdapter
from .adapters.evm import EVMAdapter
from .adapters.hub import HubAdapter
from .adapters.solana import SolanaAdapter, load_keypair
from .adapters.sui import SuiAdapter, SuiKeypair
from .adapters.ton import TonAdapter
from .config import RelayConfig
from .event_queue import StartupEventQueue
from .models import InboundEvent
from .orchestrator import CrossChainRelayOrchestrator
from .registry import ForeignAssetRegistry, build_registry_artifact, write_registry_artifact
from .utils.contract_utility import ContractUtility, derive_account
from .utils.json_rpc import JsonRpcClient
from .utils.signer import SignerPool, TransactionSigner

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class LocalnetRelayer:
    """
    Main relay service that orchestrates chain observation and relaying.

    This class focuses on wiring and lifecycle management, delegating event
    handling to the CrossChainRelayOrchestrator.
    """

    STATUS_LOG_INTERVAL = 30  # seconds

    def __init__(self, config: RelayConfig):
        """
        Initialize the relayer.

        Args:
            config: Relay configuration
        """
        self.config = config
        self.running = False

        self.registry = ForeignAssetRegistry()
        self.queue = StartupEventQueue(propagate_errors=config.exit_on_error)
        self.signers = SignerPool()
        self.rpc_clients: list[JsonRpcClient] = []

        self.tss_account = derive_account(config.mnemonic, config.tss_path)

        self.hub = self._init_hub()
        self.adapters: dict[str, ChainAdapter] = self._init_adapters()
        self.orchestrator = CrossChainRelayOrchestrator(
            registry=self.registry,
            hub=self.hub,
            adapters=self.adapters,
            exit_on_error=config.exit_on_error,
        )

        # Async coordination
        self.shutdown_event = asyncio.Event()

    def _init_hub(self) -> HubAdapter:
        """Build the hub adapter. Hub writes are sent from the impersonated fungible module."""
        hub_config = self.config.hub
        self.hub_contracts = ContractUtility(hub_config.rpc_url)
        signer = self.signers.get(self.hub_contracts.w3, hub_config.rpc_url, hub_config.fungible_module)
        return HubAdapter(
            contracts=self.hub_contracts,
            signer=signer,
            gateway_address=hub_config.gateway_zevm,
            router_address=hub_config.uniswap_router,
            wzeta_address=hub_config.wzeta,
            core_registry_address=hub_config.core_registry,
            poll_interval=self.config.monitoring.evm_polling_interval,
            lookback_blocks=self.config.monitoring.lookback_blocks,
        )

    def _json_rpc(self, url: str, headers: dict[str, str] | None = None) -> JsonRpcClient:
        client = JsonRpcClient(url, timeout=self.config.monitoring.request_timeout, headers=headers)
        self.rpc_clients.append(client)
        return client

    def _init_adapters(self) -> dict[str, ChainAdapter]:
        """Build one adapter per configured connected chain."""
        monitoring = self.config.monitoring
        tss_key = self.tss_account.key.hex()
        adapters: dict[str, ChainAdapter] = {}

        for chain in self.config.evm_chains:
            contracts = ContractUtility(chain.rpc_url, accounts=[self.tss_account])
            tss: TransactionSigner = self.signers.get(contracts.w3, chain.rpc_url, self.tss_account.address)
            adapters[chain.chain_id] = EVMAdapter(
                chain_id=chain.chain_id,
                contracts=contracts,
                tss=tss,
                gateway_address=chain.gateway_evm,
                custody_address=chain.custody,
                poll_interval=monitoring.evm_polling_interval,
                lookback_blocks=monitoring.lookback_blocks,
            )

        if solana := self.config.solana:
            adapter = SolanaAdapter(
                rpc=self._json_rpc(solana.rpc_url),
                program_id=solana.gateway_program,
                payer=load_keypair(solana.payer_secret),
                tss_private_key=solana.tss_private_key or tss_key,
                poll_interval=monitoring.solana_polling_interval,
                retry_count=monitoring.retry_count,
            )
            adapters[adapter.chain_id] = adapter

        if sui := self.config.sui:
            adapter = SuiAdapter(
                rpc=self._json_rpc(sui.rpc_url),
                package_id=sui.package_id,
                gateway_object_id=sui.gateway_object,
                withdraw_cap_id=sui.withdraw_cap,
                keypair=SuiKeypair.from_secret(sui.signer_secret),
                poll_interval=monitoring.sui_polling_interval,
                retry_count=monitoring.retry_count,
            )
            adapters[adapter.chain_id] = adapter

        if ton := self.config.ton:
            headers = {"X-API-Key": ton.api_key} if ton.api_key else None
            adapter = TonAdapter(
                rpc=self._json_rpc(ton.rpc_url, headers=headers),
                gateway_address=ton.gateway_address,
                tss_private_key=tss_key,
                poll_interval=monitoring.ton_polling_interval,
                retry_count=monitoring.retry_count,
            )
            adapters[adapter.chain_id] = adapter

        logger.info(f"Initialized adapters for chains: {', '.join(a.name for a in adapters.values())}")
        return adapters

    @classmethod
    def from_env(cls, exit_on_error: bool | None = None) -> "LocalnetRelayer":
        """
        Create a LocalnetRelayer instance from environment variables.

        Args:
            exit_on_error: Overrides ``EXIT_ON_ERROR`` when given

        Returns:
            Configured LocalnetRelayer instance

        Raises:
            ValueError: If required environment variables are missing
        """
        config = RelayConfig.from_env(exit_on_error=exit_on_error)
        config.log_config()
        return cls(config)

    async def on_event(self, event: InboundEvent) -> None:
        """Observation callback shared by every adapter."""
        await self.queue.enqueue(self.orchestrator.relay, event)

    async def bootstrap_registry(self) -> int:
        """
        Populate and freeze the foreign asset registry.

        A persisted registry file is preferred; otherwise the hub core
        registry is read and, when a registry file is configured, written out.

        Returns:
            Number of coins registered
        """
        registry_file = self.config.registry_file
        if registry_file and Path(registry_file).exists():
            count = self.registry.load_artifact_file(registry_file)
        elif self.hub.core_registry is not None:
            logger.info("Reading foreign coins from the core registry...")
            chains, contracts, tokens = await self.hub.read_core_registry()
            artifact = build_registry_artifact(chains, contracts, tokens)
            count = self.registry.load_artifact(artifact)
            if registry_file:
                write_registry_artifact(artifact, registry_file)
        else:
            logger.warning("No registry file or core registry configured, relaying with an empty registry")
            count = 0

        self.registry.freeze()
        return count

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.STATUS_LOG_INTERVAL)
            stats = self.orchestrator.get_stats()
            if stats["relayed"] > 0 or len(self.queue) > 0:
                logger.info(
                    f"Status: {stats['relayed']} events relayed, "
                    f"{len(self.queue)} queued, "
                    f"states {stats['by_state']}, "
                    f"fallback {stats['fallback']}"
                )

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has failed."""
        for name, task in tasks.items():
            if task.done() and name != "status":  # status task can end normally
                try:
                    await task
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                return False
        return True

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Clean up all tasks, adapters and RPC clients."""
        for adapter in [self.hub, *self.adapters.values()]:
            await adapter.stop()

        # Cancel all running tasks
        for name, task in tasks.items():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling

        for client in self.rpc_clients:
            await client.aclose()

    async def run(self) -> None:
        """Main event loop for the relay service."""
        self.running = True
        logger.info("Localnet relay starting...")

        tasks: dict[str, asyncio.Task] = {}
        try:
            await self.hub_contracts.impersonate(self.config.hub.fungible_module)

            # Observation starts before bootstrap; early events wait in the queue
            for adapter in [self.hub, *self.adapters.values()]:
                tasks[adapter.name] = asyncio.create_task(adapter.observe_inbound(self.on_event))

            count = await self.bootstrap_registry()
            logger.info(f"Registry ready with {count} foreign coins")
            await self.queue.drain()

            tasks["status"] = asyncio.create_task(self._periodic_status_logger())
            logger.info("Event monitoring started, waiting for events...")

            # Wait until shutdown or task failure
            while self.running:
                # Check for shutdown signal
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass  # Continue running

                # Check task health
                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            self.running = False
            await self._cleanup_tasks(tasks)
            logger.info("Localnet relay stopped")

    def stop(self) -> None:
        """Stop the relay service."""
        self.running = False
        self.shutdown_event.set()
