"""Shared fixtures: a fixture registry and faked chain adapters."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from web3 import Web3

from localnet_relay.adapters.base import ChainAdapter
from localnet_relay.constants import NetworkID
from localnet_relay.models import CoinType, ForeignCoin, RevertOptions
from localnet_relay.registry import ForeignAssetRegistry

# Digit-only addresses are already in checksum form
ETH_ZRC20 = "0x1111111111111111111111111111111111111111"
USDC_ZRC20 = "0x2222222222222222222222222222222222222222"
SOL_ZRC20 = "0x3333333333333333333333333333333333333333"
WZETA = "0x4444444444444444444444444444444444444444"
ROUTER = "0x5555555555555555555555555555555555555555"
USDC_ERC20 = "0x6666666666666666666666666666666666666666"
RECEIVER = "0x7777777777777777777777777777777777777777"
SENDER = "0x8888888888888888888888888888888888888888"
REVERT_ADDRESS = "0x9999999999999999999999999999999999999999"
ABORT_ADDRESS = "0x1212121212121212121212121212121212121212"
SOLANA_SENDER = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


class FakeAdapter(ChainAdapter):
    """Chain adapter whose outbound primitives are AsyncMocks."""

    def __init__(self, chain_id: str, is_evm: bool = True):
        super().__init__(chain_id)
        self.is_evm = is_evm
        self.execute = AsyncMock()
        self.withdraw = AsyncMock()
        self.withdraw_and_call = AsyncMock()
        self.execute_revert = AsyncMock()

    async def observe_inbound(self, on_event):
        return None

    def encode_sender(self, sender: str) -> bytes:
        if self.is_evm:
            return bytes.fromhex(sender[2:])
        return sender.encode("utf-8")

    def decode_recipient(self, receiver):
        if self.is_evm and isinstance(receiver, bytes) and len(receiver) == 20:
            return Web3.to_checksum_address(receiver)
        return super().decode_recipient(receiver)

    def revert_gas_limit(self, revert_options):
        if self.is_evm:
            return revert_options.on_revert_gas_limit
        return super().revert_gas_limit(revert_options)


def make_hub() -> MagicMock:
    """Hub adapter double with every hub primitive as an AsyncMock."""
    hub = MagicMock()
    hub.chain_id = NetworkID.ZETACHAIN
    hub.name = "ZetaChain"
    hub.is_evm = True
    hub.wzeta = WZETA
    hub.router.address = ROUTER
    for method in (
        "deposit",
        "deposit_and_call",
        "execute_call",
        "execute_hub_revert",
        "deposit_and_revert",
        "transfer_zrc20",
        "execute_abort",
        "withdraw_gas_fee",
        "get_amounts_in",
        "approve",
        "swap_tokens_for_exact_tokens",
    ):
        setattr(hub, method, AsyncMock())
    hub.withdraw_gas_fee.return_value = (ETH_ZRC20, 21_000)
    return hub


@pytest.fixture
def coins():
    return [
        ForeignCoin(
            zrc20_address=ETH_ZRC20,
            native_asset=None,
            chain_id=NetworkID.ETHEREUM,
            coin_type=CoinType.GAS,
            decimals=18,
            symbol="ETH.ETH",
        ),
        ForeignCoin(
            zrc20_address=USDC_ZRC20,
            native_asset=USDC_ERC20,
            chain_id=NetworkID.ETHEREUM,
            coin_type=CoinType.ERC20,
            decimals=6,
            symbol="USDC.ETH",
        ),
        ForeignCoin(
            zrc20_address=SOL_ZRC20,
            native_asset=None,
            chain_id=NetworkID.SOLANA,
            coin_type=CoinType.GAS,
            decimals=9,
            symbol="SOL.SOL",
        ),
    ]


@pytest.fixture
def registry(coins):
    registry = ForeignAssetRegistry(coins)
    registry.freeze()
    return registry


@pytest.fixture
def hub():
    return make_hub()


@pytest.fixture
def ethereum():
    return FakeAdapter(NetworkID.ETHEREUM)


@pytest.fixture
def solana():
    return FakeAdapter(NetworkID.SOLANA, is_evm=False)


@pytest.fixture
def revert_options():
    return RevertOptions(
        revert_address=REVERT_ADDRESS,
        call_on_revert=False,
        abort_address=ABORT_ADDRESS,
        revert_message=b"revert",
        on_revert_gas_limit=50_000,
    )
