#!/usr/bin/env python3
"""Tests for the revert/abort protocol."""

from dataclasses import replace

import pytest

from conftest import ABORT_ADDRESS, ETH_ZRC20, REVERT_ADDRESS, SENDER, SOLANA_SENDER, USDC_ZRC20
from localnet_relay.constants import ZERO_ADDRESS, NetworkID
from localnet_relay.errors import ExecutionError
from localnet_relay.fallback import FailureContext, RevertAbortProtocol
from localnet_relay.models import CalledEvent, RelayOutcome, RelayState, RevertOptions


@pytest.fixture
def protocol(hub):
    return RevertAbortProtocol(hub)


@pytest.fixture
def outcome(revert_options):
    event = CalledEvent(
        chain_id=NetworkID.ETHEREUM,
        sender=SENDER,
        receiver=SENDER,
        message=b"",
        revert_options=revert_options,
    )
    return RelayOutcome(event=event)


@pytest.fixture
def ctx(revert_options):
    return FailureContext(
        chain_id=NetworkID.ETHEREUM,
        sender=SENDER,
        asset=USDC_ZRC20,
        amount=1_000,
        revert_options=revert_options,
        outgoing=True,
    )


class TestRevertOnHub:
    """Tests for reverts executed on the hub."""

    @pytest.mark.asyncio
    async def test_plain_revert_transfers_zrc20(self, protocol, hub, outcome, ctx):
        result = await protocol.revert_on_hub(outcome, ctx)

        assert result.state is RelayState.REVERTED
        assert result.history == [RelayState.DISPATCHED, RelayState.REVERTING, RelayState.REVERTED]
        hub.transfer_zrc20.assert_awaited_once_with(USDC_ZRC20, REVERT_ADDRESS, 1_000)
        hub.execute_abort.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_call_on_revert_with_asset(self, protocol, hub, outcome, ctx):
        """Test that callOnRevert delivers the asset through depositAndRevert."""
        ctx = replace(ctx, revert_options=replace(ctx.revert_options, call_on_revert=True))

        await protocol.revert_on_hub(outcome, ctx)

        hub.deposit_and_revert.assert_awaited_once_with(
            USDC_ZRC20, 1_000, REVERT_ADDRESS, (SENDER, USDC_ZRC20, 1_000, b"revert")
        )
        assert outcome.state is RelayState.REVERTED

    @pytest.mark.asyncio
    async def test_call_on_revert_without_asset(self, protocol, hub, outcome, ctx):
        """Test that a failed hub call reverts through executeRevert."""
        ctx = replace(
            ctx,
            asset=ZERO_ADDRESS,
            amount=0,
            revert_options=replace(ctx.revert_options, call_on_revert=True),
        )

        await protocol.revert_on_hub(outcome, ctx)

        hub.execute_hub_revert.assert_awaited_once_with(REVERT_ADDRESS, (SENDER, ZERO_ADDRESS, 0, b"revert"))
        hub.deposit_and_revert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_to_return(self, protocol, hub, outcome, ctx):
        await protocol.revert_on_hub(outcome, replace(ctx, asset=ZERO_ADDRESS, amount=0))

        assert outcome.state is RelayState.REVERTED
        hub.transfer_zrc20.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_revert_escalates_to_abort(self, protocol, hub, outcome, ctx):
        """Test that the abort receives the same amount as the failed revert."""
        hub.transfer_zrc20.side_effect = [ExecutionError("revert failed"), None]

        await protocol.revert_on_hub(outcome, ctx)

        assert outcome.state is RelayState.ABORTED
        assert outcome.history[-3:] == [RelayState.REVERTING, RelayState.ABORTING, RelayState.ABORTED]
        assert hub.transfer_zrc20.await_args_list[1].args == (USDC_ZRC20, ABORT_ADDRESS, 1_000)
        abort_context = hub.execute_abort.await_args.args[1]
        assert abort_context == (SENDER.encode(), USDC_ZRC20, 1_000, True, 5, b"revert")

    @pytest.mark.asyncio
    async def test_missing_revert_address_aborts(self, protocol, hub, outcome, ctx):
        ctx = replace(ctx, revert_options=replace(ctx.revert_options, revert_address=ZERO_ADDRESS))

        await protocol.revert_on_hub(outcome, ctx)

        assert outcome.state is RelayState.ABORTED
        hub.execute_abort.assert_awaited_once()


class TestRevertOnOrigin:
    """Tests for returning failed deposits to their origin chain."""

    @pytest.mark.asyncio
    async def test_revert_amount_excludes_gas_fee(self, protocol, outcome, ctx, ethereum, registry):
        """Test that the origin receives the deposit less the revert fee."""
        coin = registry.find_by_zrc20(USDC_ZRC20)

        await protocol.revert_on_origin(outcome, ctx, ethereum, coin, revert_gas_fee=150)

        assert outcome.state is RelayState.REVERTED
        assert outcome.revert_gas_fee == 150
        assert outcome.revert_amount == 850
        ethereum.execute_revert.assert_awaited_once_with(
            amount=850, coin=coin, sender=SENDER, revert_options=ctx.revert_options
        )

    @pytest.mark.parametrize("fee", [1_000, 1_001, 50_000])
    @pytest.mark.asyncio
    async def test_fee_not_covered_aborts_full_amount(self, protocol, hub, outcome, ctx, ethereum, registry, fee):
        """Test that a revert that would return nothing aborts the whole deposit."""
        coin = registry.find_by_zrc20(USDC_ZRC20)

        await protocol.revert_on_origin(outcome, ctx, ethereum, coin, revert_gas_fee=fee)

        assert outcome.state is RelayState.ABORTED
        assert RelayState.REVERTING not in outcome.history
        ethereum.execute_revert.assert_not_awaited()
        hub.transfer_zrc20.assert_awaited_once_with(USDC_ZRC20, ABORT_ADDRESS, 1_000)

    @pytest.mark.asyncio
    async def test_failed_origin_revert_aborts_revert_amount(self, protocol, hub, outcome, ctx, ethereum, registry):
        coin = registry.find_by_zrc20(USDC_ZRC20)
        ethereum.execute_revert.side_effect = ExecutionError("origin revert failed")

        await protocol.revert_on_origin(outcome, ctx, ethereum, coin, revert_gas_fee=100)

        assert outcome.state is RelayState.ABORTED
        hub.transfer_zrc20.assert_awaited_once_with(USDC_ZRC20, ABORT_ADDRESS, 900)


class TestAbort:
    """Tests for the terminal abort step."""

    @pytest.mark.asyncio
    async def test_abort_hook_called_without_asset(self, protocol, hub, outcome, ctx):
        await protocol.abort(outcome, replace(ctx, asset=ZERO_ADDRESS, amount=0, outgoing=False))

        hub.transfer_zrc20.assert_not_awaited()
        hub.execute_abort.assert_awaited_once_with(
            ABORT_ADDRESS, (SENDER.encode(), ZERO_ADDRESS, 0, False, 5, b"revert")
        )
        assert protocol.get_stats()["aborts"] == 1

    @pytest.mark.asyncio
    async def test_zero_abort_address_returns_to_sender(self, protocol, hub, outcome, ctx):
        """Test that tokens go back to an EVM sender when no abort address is set."""
        ctx = replace(ctx, revert_options=RevertOptions(revert_address=REVERT_ADDRESS))

        await protocol.abort(outcome, ctx)

        assert outcome.state is RelayState.ABORTED
        hub.transfer_zrc20.assert_awaited_once_with(USDC_ZRC20, SENDER, 1_000)
        hub.execute_abort.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_zero_abort_address_non_evm_sender_fails(self, protocol, hub, outcome, ctx):
        """Test that funds with nowhere to go end in FAILED."""
        ctx = replace(
            ctx,
            chain_id=NetworkID.SOLANA,
            sender=SOLANA_SENDER,
            revert_options=RevertOptions(abort_address=SOLANA_SENDER),
        )

        await protocol.abort(outcome, ctx)

        assert outcome.state is RelayState.FAILED
        assert "abort failed" in outcome.error
        hub.transfer_zrc20.assert_not_awaited()
        assert protocol.get_stats()["failures"] == 1

    @pytest.mark.asyncio
    async def test_abort_hook_failure_is_terminal(self, protocol, hub, outcome, ctx):
        hub.execute_abort.side_effect = ExecutionError("onAbort reverted")

        await protocol.abort(outcome, ctx)

        assert outcome.state is RelayState.FAILED
        assert outcome.is_terminal
        assert "onAbort reverted" in outcome.error

    @pytest.mark.asyncio
    async def test_gas_asset_abort_transfers_before_hook(self, protocol, hub, outcome, ctx):
        await protocol.abort(outcome, replace(ctx, asset=ETH_ZRC20, amount=7))

        hub.transfer_zrc20.assert_awaited_once_with(ETH_ZRC20, ABORT_ADDRESS, 7)
        hub.execute_abort.assert_awaited_once()
