"""
Revert/abort protocol.

When a relayed action fails the engine first tries to revert (return the
funds, optionally through the ``onRevert`` hook) and, when that is impossible
or fails itself, aborts (hand the funds to the abort address and call its
``onAbort`` hook). A failing abort is terminal and only logged.
"""

from dataclasses import dataclass, replace

from web3 import Web3

from .adapters.base import ChainAdapter
from .adapters.hub import HubAdapter
from .constants import ZERO_ADDRESS, NetworkID
from .errors import TerminalFailure
from .models import ForeignCoin, RelayOutcome, RelayState, RevertOptions
from .registry import is_zero
from .utils.chain_logger import get_chain_logger


@dataclass(frozen=True, slots=True)
class FailureContext:
    """What the fallback needs to know about a failed relay.

    ``asset`` is the hub ZRC20 (zero address when no asset moved) and
    ``outgoing`` is True for failures on the destination side of a withdrawal.
    """

    chain_id: str
    sender: str
    asset: str
    amount: int
    revert_options: RevertOptions
    outgoing: bool


def _has_evm_address(address: str) -> bool:
    return Web3.is_address(address) and not is_zero(address)


class RevertAbortProtocol:
    """Runs the revert and abort escalation and records it on a RelayOutcome."""

    def __init__(self, hub: HubAdapter):
        self.hub = hub
        self.logger = get_chain_logger(f"{__name__}.{self.__class__.__name__}", NetworkID.ZETACHAIN)
        self.reverts = 0
        self.aborts = 0
        self.failures = 0

    async def revert_on_hub(self, outcome: RelayOutcome, ctx: FailureContext) -> RelayOutcome:
        """
        Revert on the hub after a failure on a connected chain.

        With ``callOnRevert`` the gateway delivers the asset to ``revertAddress``
        and invokes its ``onRevert`` hook, otherwise the ZRC20 is transferred
        back. Any failure escalates to an abort with the same amount.
        """
        options = ctx.revert_options
        log = self.logger.for_chain(ctx.chain_id)
        outcome.transition(RelayState.REVERTING)

        if not _has_evm_address(options.revert_address):
            log.error(f"revertAddress {options.revert_address} is not usable, aborting")
            return await self.abort(outcome, ctx)

        revert_context = (ctx.sender, ctx.asset, ctx.amount, options.revert_message)
        try:
            if options.call_on_revert:
                log.info(f"Executing onRevert on revertAddress {options.revert_address}, context: {revert_context}")
                if is_zero(ctx.asset):
                    await self.hub.execute_hub_revert(options.revert_address, revert_context)
                else:
                    await self.hub.deposit_and_revert(ctx.asset, ctx.amount, options.revert_address, revert_context)
            elif is_zero(ctx.asset) or ctx.amount == 0:
                log.info(f"Nothing to return to revertAddress {options.revert_address}")
            else:
                log.info(f"Transferring {ctx.amount} of {ctx.asset} to revertAddress {options.revert_address}")
                await self.hub.transfer_zrc20(ctx.asset, options.revert_address, ctx.amount)
        except Exception as e:
            log.error(f"onRevert failed: {e}")
            return await self.abort(outcome, ctx)

        self.reverts += 1
        outcome.revert_amount = ctx.amount
        outcome.transition(RelayState.REVERTED)
        return outcome

    async def revert_on_origin(
        self,
        outcome: RelayOutcome,
        ctx: FailureContext,
        origin: ChainAdapter,
        coin: ForeignCoin,
        revert_gas_fee: int,
    ) -> RelayOutcome:
        """
        Return a failed deposit to its origin chain, less the revert gas fee.

        When nothing would be left after the fee, or the revert address is
        unusable, the full deposit is aborted instead.
        """
        options = ctx.revert_options
        log = self.logger.for_chain(ctx.chain_id)
        revert_amount = ctx.amount - revert_gas_fee
        outcome.revert_gas_fee = revert_gas_fee
        outcome.revert_amount = revert_amount

        if revert_amount <= 0:
            log.error(f"Revert amount {revert_amount} is not enough to make a revert back, aborting {ctx.amount}")
            return await self.abort(outcome, ctx)

        outcome.transition(RelayState.REVERTING)
        if not options.revert_address or is_zero(options.revert_address):
            log.error("revertAddress is zero, aborting")
            return await self.abort(outcome, ctx)

        log.info(f"Reverting {revert_amount} {coin.symbol} to {options.revert_address}")
        try:
            await origin.execute_revert(
                amount=revert_amount,
                coin=coin,
                sender=ctx.sender,
                revert_options=options,
            )
        except Exception as e:
            log.error(f"Revert on {origin.name} failed: {e}")
            return await self.abort(outcome, replace(ctx, amount=revert_amount))

        self.reverts += 1
        outcome.transition(RelayState.REVERTED)
        return outcome

    async def abort(self, outcome: RelayOutcome, ctx: FailureContext) -> RelayOutcome:
        """
        Hand the asset to the abort address and invoke its ``onAbort`` hook.

        Without a usable abort address a non-zero ZRC20 amount goes back to the
        sender instead. Failures end in the terminal ``FAILED`` state.
        """
        options = ctx.revert_options
        log = self.logger.for_chain(ctx.chain_id)
        outcome.transition(RelayState.ABORTING)
        has_asset = not is_zero(ctx.asset) and ctx.amount > 0

        try:
            if not _has_evm_address(options.abort_address):
                log.error("abortAddress is zero")
                if not has_asset or not _has_evm_address(ctx.sender):
                    raise TerminalFailure(f"Can't transfer {ctx.amount} of {ctx.asset} tokens")
                log.error(f"Transferring {ctx.amount} of {ctx.asset} tokens to sender {ctx.sender}")
                await self.hub.transfer_zrc20(ctx.asset, ctx.sender, ctx.amount)
            else:
                if has_asset:
                    log.info(f"Transferring tokens to abortAddress {options.abort_address}")
                    await self.hub.transfer_zrc20(ctx.asset, options.abort_address, ctx.amount)
                abort_context = (
                    ctx.sender.encode("utf-8"),
                    ctx.asset or ZERO_ADDRESS,
                    ctx.amount,
                    ctx.outgoing,
                    int(ctx.chain_id),
                    options.revert_message,
                )
                log.info(f"Contract {options.abort_address} executing onAbort, context: {abort_context}")
                await self.hub.execute_abort(options.abort_address, abort_context)
        except Exception as e:
            self.failures += 1
            log.error(f"Abort processing failed: {e}")
            outcome.transition(RelayState.FAILED, error=f"abort failed: {e}")
            return outcome

        self.aborts += 1
        outcome.transition(RelayState.ABORTED)
        return outcome

    def get_stats(self) -> dict[str, int]:
        return {"reverts": self.reverts, "aborts": self.aborts, "failures": self.failures}
