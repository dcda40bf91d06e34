#!/usr/bin/env python3
"""Tests for the relay service wiring and lifecycle."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from conftest import RECEIVER, SENDER
from localnet_relay.config import HubChainConfig, RelayConfig, SolanaConfig
from localnet_relay.constants import NetworkID
from localnet_relay.models import DepositedEvent, RevertOptions
from localnet_relay.registry import ForeignAssetRegistry, write_registry_artifact
from localnet_relay.relayer import LocalnetRelayer

GATEWAY = "0x5FC8d32690cc91D4c39d9d3abcBD16989F875707"


def make_config(**kwargs) -> RelayConfig:
    hub = HubChainConfig(rpc_url="http://127.0.0.1:8545", gateway_zevm=GATEWAY)
    return RelayConfig(hub=hub, **kwargs)


def deposit_event() -> DepositedEvent:
    return DepositedEvent(
        chain_id=NetworkID.ETHEREUM,
        sender=SENDER,
        receiver=RECEIVER,
        amount=10,
        asset=None,
        revert_options=RevertOptions(revert_address=SENDER),
    )


class TestLocalnetRelayer:
    """Tests for LocalnetRelayer."""

    def test_tss_account_derived_from_mnemonic(self):
        """Test that the default anvil mnemonic yields the second anvil account as TSS."""
        relayer = LocalnetRelayer(make_config())

        assert relayer.tss_account.address == "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
        assert relayer.adapters == {}

    def test_solana_tss_key_defaults_to_tss_account(self):
        solana = SolanaConfig(
            rpc_url="http://127.0.0.1:8899",
            gateway_program=str(Pubkey.new_unique()),
            payer_secret=str(Keypair()),
            tss_private_key="",
        )
        relayer = LocalnetRelayer(make_config(solana=solana))

        adapter = relayer.adapters[NetworkID.SOLANA]
        assert adapter.tss_key.public_key.to_checksum_address() == relayer.tss_account.address
        assert len(relayer.rpc_clients) == 1

    @pytest.mark.asyncio
    async def test_bootstrap_from_registry_file(self, coins, tmp_path):
        path = tmp_path / "registry.json"
        write_registry_artifact(ForeignAssetRegistry(coins).to_artifact(), path)
        relayer = LocalnetRelayer(make_config(registry_file=str(path)))

        assert await relayer.bootstrap_registry() == 3
        assert relayer.registry.frozen
        assert relayer.registry.gas_coin(NetworkID.SOLANA).symbol == "SOL.SOL"

    @pytest.mark.asyncio
    async def test_bootstrap_without_sources_freezes_empty_registry(self, caplog):
        relayer = LocalnetRelayer(make_config())

        assert await relayer.bootstrap_registry() == 0
        assert relayer.registry.frozen
        assert "empty registry" in caplog.text

    @pytest.mark.asyncio
    async def test_events_wait_for_registry(self):
        """Test that events observed before bootstrap are relayed after the drain."""
        relayer = LocalnetRelayer(make_config())
        relayer.orchestrator.relay = AsyncMock()
        event = deposit_event()

        await relayer.on_event(event)
        relayer.orchestrator.relay.assert_not_awaited()
        assert len(relayer.queue) == 1

        await relayer.queue.drain()
        relayer.orchestrator.relay.assert_awaited_once_with(event)

        await relayer.on_event(event)
        assert relayer.orchestrator.relay.await_count == 2

    @pytest.mark.asyncio
    async def test_task_health(self):
        relayer = LocalnetRelayer(make_config())

        async def fail():
            raise RuntimeError("listener crashed")

        healthy = asyncio.create_task(asyncio.sleep(10))
        failed = asyncio.create_task(fail())
        await asyncio.sleep(0)

        assert await relayer._check_task_health({"ZetaChain": healthy}) is True
        assert await relayer._check_task_health({"ZetaChain": healthy, "Solana": failed}) is False
        healthy.cancel()

    def test_stop(self):
        relayer = LocalnetRelayer(make_config())
        relayer.running = True

        relayer.stop()

        assert relayer.running is False
        assert relayer.shutdown_event.is_set()

