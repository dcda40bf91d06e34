"""
Wire-shape validation for gateway events.

Gateways emit positional tuples whose field order is load-bearing. Each schema
lists its fields in wire order, validates the values with pydantic and turns
the result into one of the immutable event models.
"""

from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

from hexbytes import HexBytes
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import EventValidationError
from .models import (
    CallOptions,
    CalledEvent,
    DepositedAndCalledEvent,
    DepositedEvent,
    InboundEvent,
    RevertOptions,
    WithdrawnAndCalledEvent,
    WithdrawnEvent,
)

# Placeholder for wire positions the relay does not read
SKIP = "_"


def _to_bytes(value: Any) -> Any:
    match value:
        case None:
            return b""
        case HexBytes() | bytes() | bytearray() | memoryview():
            return bytes(value)
        case str() if value.startswith("0x"):
            try:
                return bytes(HexBytes(value))
            except ValueError:
                raise ValueError(f"Invalid hex bytes: {value}") from None
        case str():
            return value.encode("utf-8")
        case _:
            return value


def _positional(fields: Sequence[str], values: Any) -> dict[str, Any]:
    """Map a positional tuple (or an ordered mapping) onto field names."""
    if isinstance(values, Mapping):
        values = tuple(values.values())
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise ValueError(f"Expected a tuple of {len(fields)} values, got {type(values).__name__}")
    if len(values) != len(fields):
        raise ValueError(f"Expected {len(fields)} values, got {len(values)}")
    return {name: value for name, value in zip(fields, values) if name != SKIP}


class WireSchema(BaseModel):
    """Base for schemas built from positional tuples."""

    model_config = ConfigDict(frozen=True)

    FIELDS: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def from_tuple(cls, values: Any) -> "WireSchema":
        """Validate a positional tuple.

        Raises:
            EventValidationError: If the tuple is malformed
        """
        try:
            return cls.model_validate(_positional(cls.FIELDS, values))
        except (ValidationError, ValueError) as e:
            raise EventValidationError(f"Malformed {cls.__name__}: {e}") from e


class RevertOptionsSchema(WireSchema):
    FIELDS: ClassVar[tuple[str, ...]] = (
        "revert_address",
        "call_on_revert",
        "abort_address",
        "revert_message",
        "on_revert_gas_limit",
    )

    revert_address: str
    call_on_revert: bool
    abort_address: str
    revert_message: bytes = b""
    on_revert_gas_limit: int = Field(default=0, ge=0)

    @field_validator("revert_message", mode="before")
    @classmethod
    def coerce_revert_message(cls, value: Any) -> Any:
        return _to_bytes(value)

    def to_model(self) -> RevertOptions:
        return RevertOptions(
            revert_address=self.revert_address,
            call_on_revert=self.call_on_revert,
            abort_address=self.abort_address,
            revert_message=self.revert_message,
            on_revert_gas_limit=self.on_revert_gas_limit,
        )


class CallOptionsSchema(WireSchema):
    FIELDS: ClassVar[tuple[str, ...]] = ("gas_limit", "is_arbitrary_call")

    gas_limit: int = Field(ge=0)
    is_arbitrary_call: bool

    def to_model(self) -> CallOptions:
        return CallOptions(gas_limit=self.gas_limit, is_arbitrary_call=self.is_arbitrary_call)


def _nested(schema: type[WireSchema], value: Any) -> Any:
    if isinstance(value, schema):
        return value
    return _positional(schema.FIELDS, value)


class EventSchema(WireSchema):
    revert_options: RevertOptionsSchema

    @field_validator("revert_options", mode="before")
    @classmethod
    def coerce_revert_options(cls, value: Any) -> Any:
        return _nested(RevertOptionsSchema, value)


class CalledSchema(EventSchema):
    """Hub ``Called``: the hub asks a connected chain to run a call."""

    FIELDS: ClassVar[tuple[str, ...]] = (
        "sender",
        "dest_asset",
        "receiver",
        "message",
        "call_options",
        "revert_options",
    )

    sender: str
    dest_asset: str
    receiver: bytes
    message: bytes
    call_options: CallOptionsSchema

    @field_validator("receiver", "message", mode="before")
    @classmethod
    def coerce_payload(cls, value: Any) -> Any:
        return _to_bytes(value)

    @field_validator("call_options", mode="before")
    @classmethod
    def coerce_call_options(cls, value: Any) -> Any:
        return _nested(CallOptionsSchema, value)


class GatewayCalledSchema(EventSchema):
    """Connected-chain ``Called``: a call towards the hub."""

    FIELDS: ClassVar[tuple[str, ...]] = ("sender", "receiver", "message", "revert_options")

    sender: str
    receiver: str
    message: bytes

    @field_validator("message", mode="before")
    @classmethod
    def coerce_message(cls, value: Any) -> Any:
        return _to_bytes(value)


class DepositedSchema(EventSchema):
    FIELDS: ClassVar[tuple[str, ...]] = (
        "sender",
        "receiver",
        "amount",
        "asset",
        "message",
        "revert_options",
    )

    sender: str
    receiver: str
    amount: int = Field(ge=0)
    asset: str | None
    message: bytes = b""

    @field_validator("message", mode="before")
    @classmethod
    def coerce_message(cls, value: Any) -> Any:
        return _to_bytes(value)


class WithdrawnSchema(EventSchema):
    FIELDS: ClassVar[tuple[str, ...]] = (
        "sender",
        "dest_chain_id",
        "receiver",
        "asset",
        "amount",
        "gas_fee",
        "protocol_flat_fee",
        SKIP,
        SKIP,
        "revert_options",
    )

    sender: str
    dest_chain_id: int
    receiver: bytes
    asset: str
    amount: int = Field(ge=0)
    gas_fee: int = Field(default=0, ge=0)
    protocol_flat_fee: int = Field(default=0, ge=0)

    @field_validator("receiver", mode="before")
    @classmethod
    def coerce_receiver(cls, value: Any) -> Any:
        return _to_bytes(value)


class WithdrawnAndCalledSchema(WithdrawnSchema):
    FIELDS: ClassVar[tuple[str, ...]] = (
        "sender",
        "dest_chain_id",
        "receiver",
        "asset",
        "amount",
        "gas_fee",
        "protocol_flat_fee",
        "message",
        "call_options",
        "revert_options",
    )

    message: bytes
    call_options: CallOptionsSchema

    @field_validator("message", mode="before")
    @classmethod
    def coerce_message(cls, value: Any) -> Any:
        return _to_bytes(value)

    @field_validator("call_options", mode="before")
    @classmethod
    def coerce_call_options(cls, value: Any) -> Any:
        return _nested(CallOptionsSchema, value)


def decode_event(
    event_name: str,
    chain_id: str,
    values: Any,
    tx_hash: str | None = None,
) -> InboundEvent:
    """
    Validate a gateway event tuple and build the matching event model.

    Args:
        event_name: Gateway event name (``Called``, ``Deposited``, ...)
        chain_id: Chain the event was observed on
        values: Positional tuple in wire order, or an ordered mapping
        tx_hash: Transaction that emitted the event

    Returns:
        The immutable inbound event

    Raises:
        EventValidationError: If the name is unknown or the tuple is malformed
    """
    try:
        match event_name, chain_id:
            case "Called", _ if _is_hub_called(values):
                s = CalledSchema.from_tuple(values)
                return CalledEvent(
                    chain_id=chain_id,
                    sender=s.sender,
                    receiver=s.receiver,
                    message=s.message,
                    dest_asset=s.dest_asset,
                    call_options=s.call_options.to_model(),
                    revert_options=s.revert_options.to_model(),
                    tx_hash=tx_hash,
                )
            case "Called", _:
                s = GatewayCalledSchema.from_tuple(values)
                return CalledEvent(
                    chain_id=chain_id,
                    sender=s.sender,
                    receiver=s.receiver,
                    message=s.message,
                    revert_options=s.revert_options.to_model(),
                    tx_hash=tx_hash,
                )
            case ("Deposited" | "DepositedAndCalled") as name, _:
                s = DepositedSchema.from_tuple(values)
                event_cls = DepositedAndCalledEvent if name == "DepositedAndCalled" else DepositedEvent
                return event_cls(
                    chain_id=chain_id,
                    sender=s.sender,
                    receiver=s.receiver,
                    amount=s.amount,
                    asset=s.asset,
                    message=s.message,
                    revert_options=s.revert_options.to_model(),
                    tx_hash=tx_hash,
                )
            case "Withdrawn", _:
                s = WithdrawnSchema.from_tuple(values)
                return WithdrawnEvent(
                    chain_id=chain_id,
                    sender=s.sender,
                    dest_chain_id=str(s.dest_chain_id),
                    receiver=s.receiver,
                    asset=s.asset,
                    amount=s.amount,
                    gas_fee=s.gas_fee,
                    protocol_flat_fee=s.protocol_flat_fee,
                    revert_options=s.revert_options.to_model(),
                    tx_hash=tx_hash,
                )
            case "WithdrawnAndCalled", _:
                s = WithdrawnAndCalledSchema.from_tuple(values)
                return WithdrawnAndCalledEvent(
                    chain_id=chain_id,
                    sender=s.sender,
                    dest_chain_id=str(s.dest_chain_id),
                    receiver=s.receiver,
                    asset=s.asset,
                    amount=s.amount,
                    gas_fee=s.gas_fee,
                    protocol_flat_fee=s.protocol_flat_fee,
                    message=s.message,
                    call_options=s.call_options.to_model(),
                    revert_options=s.revert_options.to_model(),
                    tx_hash=tx_hash,
                )
            case _:
                raise EventValidationError(f"Unknown gateway event: {event_name}")
    except ValueError as e:
        raise EventValidationError(f"Invalid {event_name} event: {e}") from e


def _is_hub_called(values: Any) -> bool:
    if isinstance(values, Mapping):
        return len(values) == len(CalledSchema.FIELDS)
    return isinstance(values, Sequence) and len(values) == len(CalledSchema.FIELDS)
