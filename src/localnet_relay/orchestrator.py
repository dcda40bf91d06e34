"""
Cross-chain relay orchestrator.

Turns every observed gateway event into the matching action on its
destination chain and, when that action fails, runs the fallback path:

    Call             -> hub onCall              | abort
    Deposit          -> hub deposit             | gas-cover swap, revert on origin, abort
    DepositAndCall   -> hub depositAndCall      | gas-cover swap, revert on origin, abort
    Called (hub)     -> destination execute     | revert on hub, abort
    Withdraw         -> destination release     | revert on hub, abort
    WithdrawAndCall  -> destination release+call| revert on hub, abort

Each dispatch produces a ``RelayOutcome``. The orchestrator holds no state
besides a bounded history of those outcomes.
"""

from collections import Counter, OrderedDict
from collections.abc import Mapping
from itertools import count
from typing import Any

from web3 import Web3

from .adapters.base import ChainAdapter
from .adapters.hub import HubAdapter
from .constants import ZERO_ADDRESS, NetworkID, chain_name, is_evm_chain
from .errors import ConfigurationError, EventValidationError, ExecutionError
from .fallback import FailureContext, RevertAbortProtocol
from .models import (
    CallOptions,
    CalledEvent,
    DepositedAndCalledEvent,
    DepositedEvent,
    InboundEvent,
    MessageContext,
    RelayOutcome,
    RelayState,
    WithdrawnAndCalledEvent,
    WithdrawnEvent,
)
from .registry import ForeignAssetRegistry
from .swap import GasCoverSwapEngine
from .utils.chain_logger import get_chain_logger

MAX_OUTCOMES = 1000


class CrossChainRelayOrchestrator:
    """Per-event dispatch from observation to forward execution and fallback."""

    def __init__(
        self,
        registry: ForeignAssetRegistry,
        hub: HubAdapter,
        adapters: Mapping[str, ChainAdapter],
        swap_engine: GasCoverSwapEngine | None = None,
        fallback: RevertAbortProtocol | None = None,
        exit_on_error: bool = False,
        max_outcomes: int = MAX_OUTCOMES,
    ):
        """
        Initialize the orchestrator.

        Args:
            registry: Foreign asset registry shared with the relayer
            hub: Hub chain adapter
            adapters: Connected chain adapters by network id
            swap_engine: Gas-cover swap engine, built on ``hub`` when omitted
            fallback: Revert/abort protocol, built on ``hub`` when omitted
            exit_on_error: Re-raise execution failures instead of falling back
            max_outcomes: Number of recent outcomes kept for inspection
        """
        self.registry = registry
        self.hub = hub
        self.adapters = dict(adapters)
        self.swap_engine = swap_engine or GasCoverSwapEngine(hub)
        self.fallback = fallback or RevertAbortProtocol(hub)
        self.exit_on_error = exit_on_error
        self.max_outcomes = max_outcomes

        self.outcomes: OrderedDict[int, RelayOutcome] = OrderedDict()
        self._sequence = count(1)
        self.state_counts: Counter[str] = Counter()
        self.kind_counts: Counter[str] = Counter()

        self.logger = get_chain_logger(f"{__name__}.{self.__class__.__name__}")

    def adapter(self, chain_id: str) -> ChainAdapter:
        """
        Adapter for ``chain_id``.

        Raises:
            ConfigurationError: If no adapter serves the chain
        """
        if chain_id == NetworkID.ZETACHAIN:
            return self.hub
        try:
            return self.adapters[chain_id]
        except KeyError:
            raise ConfigurationError(f"No adapter configured for chain {chain_name(chain_id)}") from None

    async def relay(self, event: InboundEvent) -> RelayOutcome:
        """
        Relay one inbound event.

        Configuration problems drop the event. Execution failures run the
        fallback path, or are re-raised when ``exit_on_error`` is set.

        Returns:
            The outcome in a terminal state
        """
        outcome = RelayOutcome(event=event)
        log = self.logger.for_chain(event.chain_id)
        self.kind_counts[event.kind.value] += 1

        try:
            if self.registry.registering_gateways and is_evm_chain(event.chain_id):
                log.info(f"Skipping {event.kind} while gateways are being registered")
                outcome.transition(RelayState.DROPPED, error="gateway registration in progress")
                return outcome

            match event:
                case WithdrawnEvent():
                    await self._relay_withdraw(event, outcome)
                case DepositedEvent():
                    await self._relay_deposit(event, outcome)
                case CalledEvent(chain_id=NetworkID.ZETACHAIN):
                    await self._relay_hub_call(event, outcome)
                case CalledEvent():
                    await self._relay_inbound_call(event, outcome)
                case _:
                    raise EventValidationError(f"Unsupported event type {type(event).__name__}")
        except ConfigurationError as e:
            if outcome.state is not RelayState.DISPATCHED:
                raise
            log.error(f"Dropping {event.kind} from {event.tx_hash}: {e}")
            outcome.transition(RelayState.DROPPED, error=str(e))
        finally:
            self._record(outcome)

        return outcome

    # Connected chain -> hub

    def _message_context(self, origin: ChainAdapter, sender: str, chain_id: str) -> MessageContext:
        return MessageContext(
            sender=origin.encode_sender(sender),
            sender_evm=Web3.to_checksum_address(sender) if origin.is_evm else ZERO_ADDRESS,
            chain_id=int(chain_id),
        )

    async def _relay_inbound_call(self, event: CalledEvent, outcome: RelayOutcome) -> None:
        log = self.logger.for_chain(event.chain_id)
        origin = self.adapter(event.chain_id)
        gas_coin = self.registry.gas_coin(event.chain_id)
        receiver = _hub_address(event.receiver)
        context = self._message_context(origin, event.sender, event.chain_id)

        log.info(f"Call from {event.sender} to universal contract {receiver}")
        try:
            await self.hub.execute_call(context, gas_coin.zrc20_address, receiver, event.message)
        except Exception as e:
            self._on_forward_failure(outcome, e)
            ctx = FailureContext(
                chain_id=event.chain_id,
                sender=event.sender,
                asset=ZERO_ADDRESS,
                amount=0,
                revert_options=event.revert_options,
                outgoing=False,
            )
            await self.fallback.abort(outcome, ctx)
            return
        outcome.transition(RelayState.FORWARDED)

    async def _relay_deposit(self, event: DepositedEvent, outcome: RelayOutcome) -> None:
        log = self.logger.for_chain(event.chain_id)
        origin = self.adapter(event.chain_id)
        coin = self.registry.find(event.chain_id, event.asset)
        receiver = _hub_address(event.receiver)
        context = self._message_context(origin, event.sender, event.chain_id)

        try:
            if isinstance(event, DepositedAndCalledEvent):
                log.info(f"Deposit of {event.amount} {coin.symbol} and call to {receiver}")
                await self.hub.deposit_and_call(context, coin.zrc20_address, event.amount, receiver, event.message)
            else:
                log.info(f"Deposit of {event.amount} {coin.symbol} to {receiver}")
                await self.hub.deposit(coin.zrc20_address, event.amount, receiver)
        except Exception as e:
            self._on_forward_failure(outcome, e)
            ctx = FailureContext(
                chain_id=event.chain_id,
                sender=event.sender,
                asset=coin.zrc20_address,
                amount=event.amount,
                revert_options=event.revert_options,
                outgoing=False,
            )
            try:
                swap = await self.swap_engine.cover(
                    coin, event.amount, origin.revert_gas_limit(event.revert_options)
                )
                revert_gas_fee = swap.revert_gas_fee
            except Exception as swap_error:
                log.error(f"Cannot cover revert gas: {swap_error}", exc_info=not isinstance(swap_error, ExecutionError))
                revert_gas_fee = event.amount
            await self.fallback.revert_on_origin(outcome, ctx, origin, coin, revert_gas_fee)
            return
        outcome.transition(RelayState.FORWARDED)

    # Hub -> connected chain

    async def _relay_hub_call(self, event: CalledEvent, outcome: RelayOutcome) -> None:
        if not event.dest_asset:
            raise EventValidationError("Hub call without a destination asset")
        coin = self.registry.find_by_zrc20(event.dest_asset)
        destination = self.adapter(coin.chain_id)
        receiver = _recipient(destination, event.receiver)
        log = self.logger.for_chain(coin.chain_id)

        log.info(f"Call from {event.sender} to {receiver}")
        try:
            await destination.execute(
                receiver,
                event.message,
                sender=event.sender,
                call_options=event.call_options or CallOptions(),
            )
        except Exception as e:
            self._on_forward_failure(outcome, e)
            ctx = FailureContext(
                chain_id=coin.chain_id,
                sender=event.sender,
                asset=ZERO_ADDRESS,
                amount=0,
                revert_options=event.revert_options,
                outgoing=True,
            )
            await self.fallback.revert_on_hub(outcome, ctx)
            return
        outcome.transition(RelayState.FORWARDED)

    async def _relay_withdraw(self, event: WithdrawnEvent, outcome: RelayOutcome) -> None:
        coin = self.registry.find_by_zrc20(event.asset)
        chain_id = event.dest_chain_id or coin.chain_id
        if chain_id != coin.chain_id:
            raise ConfigurationError(
                f"{coin.symbol} belongs to chain {coin.chain_id}, withdrawal targets {chain_id}"
            )
        destination = self.adapter(chain_id)
        recipient = _recipient(destination, event.receiver)
        log = self.logger.for_chain(chain_id)

        try:
            if isinstance(event, WithdrawnAndCalledEvent):
                log.info(f"Withdraw of {event.amount} {coin.symbol} and call to {recipient}")
                await destination.withdraw_and_call(
                    recipient,
                    event.amount,
                    coin,
                    event.message,
                    sender=event.sender,
                    call_options=event.call_options,
                )
            else:
                log.info(f"Withdraw of {event.amount} {coin.symbol} to {recipient}")
                await destination.withdraw(recipient, event.amount, coin)
        except Exception as e:
            self._on_forward_failure(outcome, e)
            ctx = FailureContext(
                chain_id=chain_id,
                sender=event.sender,
                asset=coin.zrc20_address,
                amount=event.amount,
                revert_options=event.revert_options,
                outgoing=True,
            )
            await self.fallback.revert_on_hub(outcome, ctx)
            return
        outcome.transition(RelayState.FORWARDED)

    def _on_forward_failure(self, outcome: RelayOutcome, error: Exception) -> None:
        event = outcome.event
        log = self.logger.for_chain(event.chain_id)
        if isinstance(error, ExecutionError):
            log.error(f"{event.kind} from {event.tx_hash} failed: {error}")
        else:
            log.error(f"{event.kind} from {event.tx_hash} failed: {error}", exc_info=True)
        outcome.error = str(error)
        if self.exit_on_error:
            outcome.transition(RelayState.FAILED, error=str(error))
            raise error

    # Outcomes

    def _record(self, outcome: RelayOutcome) -> None:
        self.outcomes[next(self._sequence)] = outcome
        while len(self.outcomes) > self.max_outcomes:
            self.outcomes.popitem(last=False)
        self.state_counts[outcome.state.value] += 1

    def recent_outcomes(self, limit: int = 20) -> list[RelayOutcome]:
        """Most recent outcomes, newest last."""
        return list(self.outcomes.values())[-limit:]

    def outcomes_for(self, tx_hash: str) -> list[RelayOutcome]:
        return [o for o in self.outcomes.values() if o.event.tx_hash == tx_hash]

    def get_stats(self) -> dict[str, Any]:
        return {
            "relayed": sum(self.kind_counts.values()),
            "by_kind": dict(self.kind_counts),
            "by_state": dict(self.state_counts),
            "fallback": self.fallback.get_stats(),
            "exit_on_error": self.exit_on_error,
        }


def _hub_address(receiver: str | bytes) -> str:
    """Checksummed hub address of a receiver.

    Raises:
        EventValidationError: If the receiver is not an EVM address
    """
    if isinstance(receiver, (bytes, bytearray)):
        receiver = bytes(receiver).decode("utf-8") if len(receiver) != 20 else Web3.to_hex(receiver)
    if not Web3.is_address(receiver):
        raise EventValidationError(f"Receiver {receiver} is not a hub address")
    return Web3.to_checksum_address(receiver)


def _recipient(adapter: ChainAdapter, receiver: str | bytes) -> str:
    try:
        return adapter.decode_recipient(receiver)
    except ValueError as e:
        raise EventValidationError(f"Cannot decode recipient for {adapter.name}: {e}") from e
