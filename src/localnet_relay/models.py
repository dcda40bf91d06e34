"""
Data models for the relay engine.

Events and registry entries are frozen once observed. ``RelayOutcome`` is the
only mutable record: it follows one event through the relay state machine.
"""

from dataclasses import dataclass, field
from enum import Enum, StrEnum
from typing import Any, TypeAlias

from .constants import ZERO_ADDRESS


class CoinType(StrEnum):
    """Kind of native asset a ZRC20 token represents."""

    GAS = "Gas"
    ERC20 = "ERC20"
    SPL = "SPL"
    SUI = "SUI"
    ZETA = "ZETA"

    @classmethod
    def parse(cls, value: "str | int | CoinType") -> "CoinType":
        """Parse registry and contract representations of a coin type.

        Accepts the enum names in any case and the ``COIN_TYPE()`` integers
        of the ZRC20 contract (0 = Zeta, 1 = Gas, 2 = ERC20).
        """
        if isinstance(value, CoinType):
            return value
        if isinstance(value, int):
            match value:
                case 0:
                    return cls.ZETA
                case 1:
                    return cls.GAS
                case 2:
                    return cls.ERC20
                case _:
                    raise ValueError(f"Unknown coin type value: {value}")
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValueError(f"Unknown coin type: {value}")


@dataclass(frozen=True, slots=True)
class ForeignCoin:
    """Hub-side wrapped representation of an asset native to another chain."""

    zrc20_address: str
    native_asset: str | None
    chain_id: str
    coin_type: CoinType
    decimals: int
    symbol: str
    name: str = ""

    def __post_init__(self) -> None:
        if self.coin_type is CoinType.GAS and self.native_asset:
            raise ValueError(f"Gas coin {self.symbol} must not carry a native asset")
        if self.coin_type is not CoinType.GAS and not self.native_asset:
            raise ValueError(f"{self.coin_type} coin {self.symbol} requires a native asset")
        if self.decimals < 0:
            raise ValueError(f"Decimals must be non-negative, got {self.decimals}")


@dataclass(frozen=True, slots=True)
class RevertOptions:
    """Revert instructions carried unchanged through the fallback chain."""

    revert_address: str = ZERO_ADDRESS
    call_on_revert: bool = False
    abort_address: str = ZERO_ADDRESS
    revert_message: bytes = b""
    on_revert_gas_limit: int = 0

    def as_tuple(self) -> tuple[str, bool, str, bytes, int]:
        return (
            self.revert_address,
            self.call_on_revert,
            self.abort_address,
            self.revert_message,
            self.on_revert_gas_limit,
        )


@dataclass(frozen=True, slots=True)
class CallOptions:
    """Destination call parameters. Arbitrary calls hide the true sender."""

    gas_limit: int = 0
    is_arbitrary_call: bool = False


@dataclass(frozen=True, slots=True)
class MessageContext:
    """Context handed to universal contracts on the hub."""

    sender: bytes
    sender_evm: str
    chain_id: int

    def as_tuple(self) -> tuple[bytes, str, int]:
        return (self.sender, self.sender_evm, self.chain_id)


class EventKind(StrEnum):
    CALL = "Call"
    DEPOSIT = "Deposit"
    DEPOSIT_AND_CALL = "DepositAndCall"
    WITHDRAW = "Withdraw"
    WITHDRAW_AND_CALL = "WithdrawAndCall"


@dataclass(frozen=True, slots=True, kw_only=True)
class CalledEvent:
    """A call request.

    Side chains emit it towards the hub; the hub emits it towards the chain
    that owns ``dest_asset`` (with ``call_options`` set).
    """

    chain_id: str
    sender: str
    receiver: str | bytes
    message: bytes
    revert_options: RevertOptions
    dest_asset: str | None = None
    call_options: CallOptions | None = None
    tx_hash: str | None = None

    @property
    def kind(self) -> EventKind:
        return EventKind.CALL


@dataclass(frozen=True, slots=True, kw_only=True)
class DepositedEvent:
    chain_id: str
    sender: str
    receiver: str
    amount: int
    asset: str | None
    revert_options: RevertOptions
    message: bytes = b""
    tx_hash: str | None = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"Deposit amount must be non-negative, got {self.amount}")

    @property
    def kind(self) -> EventKind:
        return EventKind.DEPOSIT


@dataclass(frozen=True, slots=True, kw_only=True)
class DepositedAndCalledEvent(DepositedEvent):
    """A deposit whose receiver is also called with ``message``."""

    def __post_init__(self) -> None:
        super(DepositedAndCalledEvent, self).__post_init__()
        if not self.message:
            raise ValueError("DepositedAndCalled requires a non-empty message")

    @property
    def kind(self) -> EventKind:
        return EventKind.DEPOSIT_AND_CALL


@dataclass(frozen=True, slots=True, kw_only=True)
class WithdrawnEvent:
    """Hub withdrawal of ``amount`` of the ZRC20 ``asset`` to ``dest_chain_id``."""

    chain_id: str
    sender: str
    dest_chain_id: str
    receiver: bytes
    asset: str
    amount: int
    revert_options: RevertOptions
    gas_fee: int = 0
    protocol_flat_fee: int = 0
    tx_hash: str | None = None

    @property
    def kind(self) -> EventKind:
        return EventKind.WITHDRAW


@dataclass(frozen=True, slots=True, kw_only=True)
class WithdrawnAndCalledEvent(WithdrawnEvent):
    message: bytes = b""
    call_options: CallOptions = field(default_factory=CallOptions)

    @property
    def kind(self) -> EventKind:
        return EventKind.WITHDRAW_AND_CALL


InboundEvent: TypeAlias = CalledEvent | DepositedEvent | WithdrawnEvent


class RelayState(Enum):
    """States of a single relay dispatch."""

    DISPATCHED = "dispatched"
    FORWARDED = "forwarded"
    REVERTING = "reverting"
    REVERTED = "reverted"
    ABORTING = "aborting"
    ABORTED = "aborted"
    FAILED = "failed"
    DROPPED = "dropped"


TERMINAL_STATES: frozenset[RelayState] = frozenset(
    {
        RelayState.FORWARDED,
        RelayState.REVERTED,
        RelayState.ABORTED,
        RelayState.FAILED,
        RelayState.DROPPED,
    }
)

ALLOWED_TRANSITIONS: dict[RelayState, frozenset[RelayState]] = {
    RelayState.DISPATCHED: frozenset(
        {
            RelayState.FORWARDED,
            RelayState.REVERTING,
            RelayState.ABORTING,
            RelayState.FAILED,
            RelayState.DROPPED,
        }
    ),
    RelayState.REVERTING: frozenset({RelayState.REVERTED, RelayState.ABORTING}),
    RelayState.ABORTING: frozenset({RelayState.ABORTED, RelayState.FAILED}),
}


@dataclass(slots=True)
class RelayOutcome:
    """Queryable result of relaying one inbound event."""

    event: InboundEvent
    state: RelayState = RelayState.DISPATCHED
    history: list[RelayState] = field(default_factory=lambda: [RelayState.DISPATCHED])
    error: str | None = None
    revert_gas_fee: int | None = None
    revert_amount: int | None = None

    def transition(self, state: RelayState, error: str | None = None) -> None:
        """Move to ``state``.

        Raises:
            ValueError: If the transition is not part of the state machine
        """
        if state not in ALLOWED_TRANSITIONS.get(self.state, frozenset()):
            raise ValueError(f"Invalid relay transition {self.state.name} -> {state.name}")
        self.state = state
        self.history.append(state)
        if error is not None:
            self.error = error

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.event.kind.value,
            "chain_id": self.event.chain_id,
            "tx_hash": self.event.tx_hash,
            "state": self.state.value,
            "history": [s.value for s in self.history],
            "error": self.error,
            "revert_gas_fee": self.revert_gas_fee,
            "revert_amount": self.revert_amount,
        }
