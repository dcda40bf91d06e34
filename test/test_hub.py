#!/usr/bin/env python3
"""Tests for the hub adapter's gateway, token, router and registry primitives."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import ABORT_ADDRESS, ETH_ZRC20, RECEIVER, REVERT_ADDRESS, ROUTER, SENDER, USDC_ZRC20, WZETA
from localnet_relay.adapters.hub import HubAdapter
from localnet_relay.constants import HUB_GAS_LIMIT, SWAP_DEADLINE_SECONDS
from localnet_relay.models import MessageContext
from localnet_relay.utils.contract_utility import ContractUtility

GATEWAY_ZEVM = "0x2525252525252525252525252525252525252525"
CORE_REGISTRY = "0x2626262626262626262626262626262626262626"

CONTEXT = MessageContext(sender=bytes.fromhex(SENDER[2:]), sender_evm=SENDER, chain_id=5)
REVERT_CONTEXT = (SENDER, USDC_ZRC20, 400, b"revert")


@pytest.fixture
def signer():
    signer = MagicMock()
    signer.transact = AsyncMock(return_value={"status": 1, "logs": []})
    return signer


@pytest.fixture
def adapter(signer):
    contracts = ContractUtility("http://127.0.0.1:8546")
    return HubAdapter(contracts, signer, GATEWAY_ZEVM, ROUTER, WZETA, CORE_REGISTRY)


def submitted(signer):
    function, params = signer.transact.await_args.args
    assert params == {"gas": HUB_GAS_LIMIT}
    return function


def stub_call(contract: MagicMock, function_name: str, result) -> AsyncMock:
    """Make ``contract.functions.<function_name>(...).call()`` return ``result``."""
    call = AsyncMock(return_value=result)
    getattr(contract.functions, function_name).return_value.call = call
    return call


class TestForwardPrimitives:
    """Tests for hub deposits and calls."""

    @pytest.mark.asyncio
    async def test_deposit(self, adapter, signer):
        await adapter.deposit(USDC_ZRC20, 1_000, RECEIVER)

        function = submitted(signer)
        assert function.fn_name == "deposit"
        assert function.address == GATEWAY_ZEVM
        assert function.args == (USDC_ZRC20, 1_000, RECEIVER)

    @pytest.mark.asyncio
    async def test_deposit_and_call_passes_context(self, adapter, signer):
        await adapter.deposit_and_call(CONTEXT, USDC_ZRC20, 1_000, RECEIVER, b"\x01")

        function = submitted(signer)
        assert function.fn_name == "depositAndCall"
        assert function.args == ((bytes.fromhex(SENDER[2:]), SENDER, 5), USDC_ZRC20, 1_000, RECEIVER, b"\x01")

    @pytest.mark.asyncio
    async def test_execute_call_moves_no_value(self, adapter, signer):
        await adapter.execute_call(CONTEXT, ETH_ZRC20, RECEIVER, b"hi")

        function = submitted(signer)
        assert function.fn_name == "execute"
        assert function.args == (CONTEXT.as_tuple(), ETH_ZRC20, 0, RECEIVER, b"hi")


class TestFallbackPrimitives:
    """Tests for hub-side reverts and aborts."""

    @pytest.mark.asyncio
    async def test_execute_hub_revert(self, adapter, signer):
        await adapter.execute_hub_revert(REVERT_ADDRESS, REVERT_CONTEXT)

        function = submitted(signer)
        assert function.fn_name == "executeRevert"
        assert function.args == (REVERT_ADDRESS, REVERT_CONTEXT)

    @pytest.mark.asyncio
    async def test_deposit_and_revert(self, adapter, signer):
        await adapter.deposit_and_revert(USDC_ZRC20, 400, REVERT_ADDRESS, REVERT_CONTEXT)

        function = submitted(signer)
        assert function.fn_name == "depositAndRevert"
        assert function.args == (USDC_ZRC20, 400, REVERT_ADDRESS, REVERT_CONTEXT)

    @pytest.mark.asyncio
    async def test_execute_abort(self, adapter, signer):
        abort_context = (bytes.fromhex(SENDER[2:]), USDC_ZRC20, 400, True, 5, b"revert")

        await adapter.execute_abort(ABORT_ADDRESS, abort_context)

        function = submitted(signer)
        assert function.fn_name == "executeAbort"
        assert function.args == (ABORT_ADDRESS, abort_context)

    @pytest.mark.asyncio
    async def test_transfer_zrc20(self, adapter, signer):
        await adapter.transfer_zrc20(ETH_ZRC20, ABORT_ADDRESS, 20_000)

        function = submitted(signer)
        assert function.fn_name == "transfer"
        assert function.address == ETH_ZRC20
        assert function.args == (ABORT_ADDRESS, 20_000)

    @pytest.mark.asyncio
    async def test_receipt_events_logged(self, adapter, signer, caplog):
        """Test that only events emitted by the hooked contract are logged."""
        signer.transact.return_value = {
            "status": 1,
            "logs": [
                {"address": REVERT_ADDRESS.lower(), "topics": [b"\xaa" * 32]},
                {"address": ABORT_ADDRESS, "topics": [b"\xbb" * 32]},
            ],
        }

        with caplog.at_level(logging.INFO):
            await adapter.execute_hub_revert(REVERT_ADDRESS, REVERT_CONTEXT)

        assert "0x" + "aa" * 32 in caplog.text
        assert "0x" + "bb" * 32 not in caplog.text


class TestQuotesAndSwaps:
    """Tests for gas fee quotes and router swaps."""

    @pytest.mark.asyncio
    async def test_withdraw_gas_fee(self, adapter):
        token = MagicMock()
        call = stub_call(token, "withdrawGasFeeWithGasLimit", (ETH_ZRC20.lower(), 21_000))
        adapter._zrc20[USDC_ZRC20.lower()] = token

        assert await adapter.withdraw_gas_fee(USDC_ZRC20, 50_000) == (ETH_ZRC20, 21_000)
        token.functions.withdrawGasFeeWithGasLimit.assert_called_once_with(50_000)
        call.assert_awaited_once()

    def test_zrc20_contracts_are_cached(self, adapter):
        assert adapter.zrc20(ETH_ZRC20) is adapter.zrc20(ETH_ZRC20.lower())

    @pytest.mark.asyncio
    async def test_get_amounts_in(self, adapter):
        adapter.router = MagicMock()
        stub_call(adapter.router, "getAmountsIn", [400, 21_000])

        assert await adapter.get_amounts_in(21_000, [USDC_ZRC20, WZETA, ETH_ZRC20]) == [400, 21_000]
        adapter.router.functions.getAmountsIn.assert_called_once_with(21_000, [USDC_ZRC20, WZETA, ETH_ZRC20])

    @pytest.mark.asyncio
    async def test_swap_uses_block_deadline(self, adapter, signer):
        adapter.w3 = MagicMock()
        adapter.w3.eth.get_block = AsyncMock(return_value={"timestamp": 1_000})

        await adapter.swap_tokens_for_exact_tokens(21_000, 400, [USDC_ZRC20, ETH_ZRC20], GATEWAY_ZEVM)

        function = submitted(signer)
        assert function.fn_name == "swapTokensForExactTokens"
        assert function.address == ROUTER
        assert function.args == (21_000, 400, [USDC_ZRC20, ETH_ZRC20], GATEWAY_ZEVM, 1_000 + SWAP_DEADLINE_SECONDS)

    @pytest.mark.asyncio
    async def test_approve(self, adapter, signer):
        await adapter.approve(USDC_ZRC20, ROUTER, 400)

        function = submitted(signer)
        assert function.fn_name == "approve"
        assert function.address == USDC_ZRC20
        assert function.args == (ROUTER, 400)

    @pytest.mark.asyncio
    async def test_swaps_require_router(self, signer):
        adapter = HubAdapter(ContractUtility("http://127.0.0.1:8546"), signer, GATEWAY_ZEVM)

        with pytest.raises(RuntimeError, match="router and WZETA"):
            await adapter.get_amounts_in(1, [USDC_ZRC20, ETH_ZRC20])


class TestCoreRegistry:
    @pytest.mark.asyncio
    async def test_read_core_registry(self, adapter):
        adapter.core_registry = MagicMock()
        stub_call(adapter.core_registry, "getAllChains", [(True, 5, ETH_ZRC20, b"")])
        stub_call(adapter.core_registry, "getAllContracts", [])
        stub_call(adapter.core_registry, "getAllZRC20Tokens", [(True, ETH_ZRC20, b"", 5, "ETH.ETH", "gas", 18)])

        chains, contracts, tokens = await adapter.read_core_registry()

        assert chains == [(True, 5, ETH_ZRC20, b"")]
        assert contracts == []
        assert tokens[0][4] == "ETH.ETH"

    @pytest.mark.asyncio
    async def test_missing_core_registry(self, signer):
        adapter = HubAdapter(ContractUtility("http://127.0.0.1:8546"), signer, GATEWAY_ZEVM)

        with pytest.raises(RuntimeError, match="Core registry address"):
            await adapter.read_core_registry()
