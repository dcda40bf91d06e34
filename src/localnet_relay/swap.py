"""
Gas-cover swap engine.

Before an automatic revert of a failed deposit the hub must hold the
destination chain's gas token. When the deposited ZRC20 is not that token,
part of the deposit is swapped into it through the hub AMM.
"""

from dataclasses import dataclass

from web3.exceptions import Web3Exception

from .adapters.hub import HubAdapter
from .constants import FUNGIBLE_MODULE_ADDRESS, NetworkID
from .errors import ExecutionError
from .models import ForeignCoin
from .utils.chain_logger import get_chain_logger


@dataclass(frozen=True, slots=True)
class SwapResult:
    """Outcome of covering the revert gas fee for one deposit.

    ``revert_gas_fee`` is denominated in the deposited ZRC20.
    """

    is_gas: bool
    revert_gas_fee: int
    gas_zrc20: str
    zrc20: str
    swapped: bool = False


class GasCoverSwapEngine:
    """Sizes and executes the exact-output swap that funds a revert."""

    def __init__(self, hub: HubAdapter, recipient: str = FUNGIBLE_MODULE_ADDRESS):
        """
        Initialize the engine.

        Args:
            hub: Hub adapter used for fee quotes and router calls
            recipient: Account receiving the swapped gas token
        """
        self.hub = hub
        self.recipient = recipient
        self.logger = get_chain_logger(f"{__name__}.{self.__class__.__name__}", NetworkID.ZETACHAIN)

    async def cover(self, coin: ForeignCoin, amount: int, gas_limit: int) -> SwapResult:
        """
        Compute the revert gas fee for ``amount`` of ``coin`` and swap for it.

        Args:
            coin: Registry entry of the deposited asset
            amount: Deposited amount in ``coin`` units
            gas_limit: Gas limit of the revert on the origin chain

        Returns:
            SwapResult whose ``revert_gas_fee`` is the amount of ``coin`` consumed

        Raises:
            ExecutionError: If the gas fee itself cannot be quoted
        """
        zrc20 = coin.zrc20_address
        try:
            gas_zrc20, gas_fee = await self.hub.withdraw_gas_fee(zrc20, gas_limit)
        except (Web3Exception, ValueError) as e:
            raise ExecutionError(f"Cannot quote withdraw gas fee for {coin.symbol}: {e}") from e

        if gas_zrc20.lower() == zrc20.lower():
            self.logger.info(f"{coin.symbol} is the gas token, revert gas fee {gas_fee}")
            return SwapResult(is_gas=True, revert_gas_fee=gas_fee, gas_zrc20=gas_zrc20, zrc20=zrc20)

        try:
            amount_in = await self.quote_amount_in(zrc20, gas_zrc20, gas_fee)
        except (Web3Exception, ValueError, RuntimeError) as e:
            self.logger.error(f"Cannot quote gas-cover swap for {coin.symbol}: {e}")
            return SwapResult(is_gas=False, revert_gas_fee=gas_fee, gas_zrc20=gas_zrc20, zrc20=zrc20)

        if amount_in > amount:
            self.logger.warning(
                f"Swap needs {amount_in} {coin.symbol} to cover gas fee {gas_fee}, only {amount} deposited"
            )
            return SwapResult(is_gas=False, revert_gas_fee=amount_in, gas_zrc20=gas_zrc20, zrc20=zrc20)

        try:
            await self.hub.approve(zrc20, self.hub.router.address, amount)
            await self.hub.swap_tokens_for_exact_tokens(
                gas_fee, amount, [zrc20, self.hub.wzeta, gas_zrc20], self.recipient
            )
        except ExecutionError as e:
            self.logger.error(f"Error performing gas-cover swap: {e}")
            return SwapResult(is_gas=False, revert_gas_fee=gas_fee, gas_zrc20=gas_zrc20, zrc20=zrc20)

        self.logger.info(f"Swapped {amount_in} {coin.symbol} for {gas_fee} of gas token {gas_zrc20}")
        return SwapResult(
            is_gas=False, revert_gas_fee=amount_in, gas_zrc20=gas_zrc20, zrc20=zrc20, swapped=True
        )

    async def quote_amount_in(self, zrc20: str, gas_zrc20: str, gas_fee: int) -> int:
        """Input of ``zrc20`` needed for ``gas_fee`` of ``gas_zrc20`` via the wrapped hub token."""
        wzeta = self.hub.wzeta
        amounts_zeta = await self.hub.get_amounts_in(gas_fee, [wzeta, gas_zrc20])
        amounts_zrc20 = await self.hub.get_amounts_in(amounts_zeta[0], [zrc20, wzeta])
        return amounts_zrc20[0]
