"""
BCS encoding of Sui programmable transactions.

Only the subset the gateway needs: pure and object inputs, move calls and
object transfers inside a V1 ``TransactionData``.
"""

import struct
from dataclasses import dataclass, field

import base58

INTENT_TRANSACTION = bytes([0, 0, 0])


def uleb128(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def address_bytes(address: str) -> bytes:
    """32-byte Sui address from hex, padding short forms such as ``0x2``."""
    raw = address[2:] if address.startswith("0x") else address
    return bytes.fromhex(raw.rjust(64, "0"))


def encode_u64(value: int) -> bytes:
    return struct.pack("<Q", value)


def encode_bytes(value: bytes) -> bytes:
    return uleb128(len(value)) + bytes(value)


def encode_string(value: str) -> bytes:
    return encode_bytes(value.encode("utf-8"))


def encode_vector(items: list[bytes]) -> bytes:
    return uleb128(len(items)) + b"".join(items)


def encode_type_tag(tag: str) -> bytes:
    """Encode a Move type such as ``0x2::sui::SUI`` or ``vector<u8>``."""
    tag = tag.strip()
    primitives = {"bool": 0, "u8": 1, "u64": 2, "u128": 3, "address": 4, "signer": 5, "u16": 8, "u32": 9, "u256": 10}
    if tag in primitives:
        return bytes([primitives[tag]])
    if tag.startswith("vector<") and tag.endswith(">"):
        return bytes([6]) + encode_type_tag(tag[7:-1])

    params: list[str] = []
    if "<" in tag:
        base, inner = tag.split("<", 1)
        params = _split_type_params(inner[:-1])
    else:
        base = tag
    address, module, name = base.split("::")
    return (
        bytes([7])
        + address_bytes(address)
        + encode_string(module)
        + encode_string(name)
        + encode_vector([encode_type_tag(p) for p in params])
    )


def _split_type_params(inner: str) -> list[str]:
    params, depth, current = [], 0, ""
    for char in inner:
        if char == "," and depth == 0:
            params.append(current)
            current = ""
            continue
        depth += char == "<"
        depth -= char == ">"
        current += char
    if current.strip():
        params.append(current)
    return params


@dataclass(frozen=True, slots=True)
class ObjectRef:
    object_id: str
    version: int
    digest: str

    def encode(self) -> bytes:
        return address_bytes(self.object_id) + encode_u64(self.version) + encode_bytes(base58.b58decode(self.digest))


@dataclass(frozen=True, slots=True)
class SharedObject:
    object_id: str
    initial_shared_version: int
    mutable: bool = True


@dataclass(frozen=True, slots=True)
class Argument:
    """Reference to the gas coin, an input or a command result."""

    kind: int
    index: int = 0
    nested: int | None = None

    @classmethod
    def input(cls, index: int) -> "Argument":
        return cls(1, index)

    @classmethod
    def result(cls, index: int, nested: int | None = None) -> "Argument":
        return cls(2 if nested is None else 3, index, nested)

    def encode(self) -> bytes:
        match self.kind:
            case 0:
                return bytes([0])
            case 1 | 2:
                return bytes([self.kind]) + struct.pack("<H", self.index)
            case 3:
                return bytes([3]) + struct.pack("<HH", self.index, self.nested)
            case _:
                raise ValueError(f"Unknown argument kind {self.kind}")


@dataclass(slots=True)
class ProgrammableTransaction:
    """Builder for a programmable transaction block."""

    inputs: list[bytes] = field(default_factory=list)
    commands: list[bytes] = field(default_factory=list)

    def pure(self, value: bytes) -> Argument:
        self.inputs.append(bytes([0]) + encode_bytes(value))
        return Argument.input(len(self.inputs) - 1)

    def owned_object(self, ref: ObjectRef) -> Argument:
        self.inputs.append(bytes([1, 0]) + ref.encode())
        return Argument.input(len(self.inputs) - 1)

    def shared_object(self, obj: SharedObject) -> Argument:
        self.inputs.append(
            bytes([1, 1])
            + address_bytes(obj.object_id)
            + encode_u64(obj.initial_shared_version)
            + bytes([1 if obj.mutable else 0])
        )
        return Argument.input(len(self.inputs) - 1)

    def move_call(self, target: str, arguments: list[Argument], type_arguments: list[str] | None = None) -> Argument:
        package, module, function = target.split("::")
        self.commands.append(
            bytes([0])
            + address_bytes(package)
            + encode_string(module)
            + encode_string(function)
            + encode_vector([encode_type_tag(t) for t in type_arguments or []])
            + encode_vector([a.encode() for a in arguments])
        )
        return Argument.result(len(self.commands) - 1)

    def transfer_objects(self, objects: list[Argument], recipient: Argument) -> None:
        self.commands.append(bytes([1]) + encode_vector([o.encode() for o in objects]) + recipient.encode())

    def transaction_data(self, sender: str, gas_payment: list[ObjectRef], gas_price: int, gas_budget: int) -> bytes:
        """Serialize a ``TransactionData::V1`` with no expiration."""
        kind = bytes([0]) + encode_vector(self.inputs) + encode_vector(self.commands)
        gas_data = (
            encode_vector([ref.encode() for ref in gas_payment])
            + address_bytes(sender)
            + encode_u64(gas_price)
            + encode_u64(gas_budget)
        )
        return bytes([0]) + kind + address_bytes(sender) + gas_data + bytes([0])
