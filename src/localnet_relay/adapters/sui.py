"""
Sui adapter.

Polls gateway deposit events through ``suix_queryEvents`` and withdraws from
the gateway object with the withdraw capability held by the relay key.
"""

import asyncio
import base64
import hashlib
from collections.abc import Awaitable, Callable
from typing import Any

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from ..constants import SUI_NATIVE_COIN, SUI_WITHDRAW_GAS_BUDGET, NetworkID
from ..errors import EventValidationError, ExecutionError, JsonRpcError
from ..models import CallOptions, ForeignCoin, InboundEvent, RevertOptions
from ..schemas import decode_event
from ..utils.bcs import (
    INTENT_TRANSACTION,
    Argument,
    ObjectRef,
    ProgrammableTransaction,
    SharedObject,
    address_bytes,
    encode_bytes,
    encode_u64,
)
from ..utils.json_rpc import JsonRpcClient
from ..utils.polling import CursorPoller, PollBatch
from .base import ChainAdapter, EventCallback

ED25519_FLAG = 0x00

# Gas budget of programmable withdraw-and-call transactions, in MIST
CALL_GAS_BUDGET = 100_000_000


class SuiKeypair:
    """Ed25519 key in Sui's address and signature formats."""

    def __init__(self, private_key: Ed25519PrivateKey):
        self.private_key = private_key
        self.public_key = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    @classmethod
    def from_secret(cls, secret: str) -> "SuiKeypair":
        """Load a key from hex seed bytes or a base64 keystore entry (flag byte and seed)."""
        secret = secret.strip()
        if secret.startswith("0x") or len(secret) == 64:
            seed = bytes.fromhex(secret.removeprefix("0x"))
        else:
            raw = base64.b64decode(secret)
            if len(raw) != 33 or raw[0] != ED25519_FLAG:
                raise ValueError("Sui keystore entry must be an Ed25519 flag byte followed by a 32-byte seed")
            seed = raw[1:]
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @property
    def address(self) -> str:
        digest = hashlib.blake2b(bytes([ED25519_FLAG]) + self.public_key, digest_size=32).digest()
        return "0x" + digest.hex()

    def sign_transaction(self, tx_bytes: bytes) -> str:
        """Serialized signature over the transaction intent digest."""
        digest = hashlib.blake2b(INTENT_TRANSACTION + tx_bytes, digest_size=32).digest()
        signature = self.private_key.sign(digest)
        return base64.b64encode(bytes([ED25519_FLAG]) + signature + self.public_key).decode()


def decode_call_message(message: bytes) -> tuple[list[str], list[str], bytes]:
    """Split a withdraw-and-call payload into type arguments, object ids and call data.

    The payload is ABI-encoded as ``(string[] typeArguments, bytes32[] objects, bytes data)``.
    """
    try:
        ((type_arguments, objects, data),) = abi_decode(["(string[],bytes32[],bytes)"], message)
    except DecodingError as e:
        raise ExecutionError(f"Cannot decode Sui call message: {e}") from e
    return list(type_arguments), ["0x" + bytes(o).hex() for o in objects], bytes(data)


class SuiEventPoller(CursorPoller[dict, dict]):
    """Cursor is the ``EventID`` of the newest processed event."""

    PAGE_LIMIT = 50

    def __init__(self, adapter: "SuiAdapter", on_event: EventCallback, interval: float, **kwargs: Any):
        super().__init__("Sui gateway", interval, **kwargs)
        self.adapter = adapter
        self.on_event = on_event

    async def fetch(self, cursor: dict | None) -> PollBatch[dict, dict]:
        records: list[dict] = []
        next_cursor = cursor
        while True:
            page = await self.adapter.rpc.call(
                "suix_queryEvents",
                [
                    {"MoveEventModule": {"package": self.adapter.package_id, "module": "gateway"}},
                    next_cursor,
                    self.PAGE_LIMIT,
                    False,
                ],
            )
            records.extend(page.get("data", []))
            if page.get("nextCursor"):
                next_cursor = page["nextCursor"]
            if not page.get("hasNextPage"):
                break
        return PollBatch(records=records, cursor=next_cursor)

    async def dispatch(self, record: dict) -> None:
        event = self.adapter.decode_event(record)
        if event is not None:
            await self.on_event(event)


class SuiAdapter(ChainAdapter):
    """Adapter for the Sui gateway package."""

    def __init__(
        self,
        rpc: JsonRpcClient,
        package_id: str,
        gateway_object_id: str,
        withdraw_cap_id: str,
        keypair: SuiKeypair,
        poll_interval: float = 3.0,
        retry_count: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(NetworkID.SUI)
        self.rpc = rpc
        self.package_id = package_id
        self.gateway_object_id = gateway_object_id
        self.withdraw_cap_id = withdraw_cap_id
        self.keypair = keypair
        self.poll_interval = poll_interval
        self.retry_count = retry_count
        self._sleep = sleep
        self._send_lock = asyncio.Lock()
        self.poller: SuiEventPoller | None = None

    def encode_sender(self, sender: str) -> bytes:
        return bytes.fromhex(sender.removeprefix("0x"))

    def decode_recipient(self, receiver: bytes | str) -> str:
        if isinstance(receiver, str):
            return receiver
        raw = bytes(receiver)
        if len(raw) == 32:
            return "0x" + raw.hex()
        return raw.decode("utf-8")

    # Observation

    async def observe_inbound(self, on_event: EventCallback) -> None:
        self.poller = SuiEventPoller(self, on_event, self.poll_interval, retry_count=self.retry_count, sleep=self._sleep)
        await self.poller.start_polling()

    async def stop(self) -> None:
        if self.poller:
            await self.poller.stop()

    def decode_event(self, record: dict) -> InboundEvent | None:
        """Deposited or DepositedAndCalled event for a gateway event record, None for other gateway events."""
        event_type = record.get("type", "")
        match event_type.rsplit("::", 1)[-1]:
            case "DepositEvent":
                event_name = "Deposited"
            case "DepositAndCallEvent":
                event_name = "DepositedAndCalled"
            case _:
                return None

        fields = record.get("parsedJson") or {}
        tx_hash = (record.get("id") or {}).get("txDigest")
        try:
            sender = fields["sender"]
            payload = bytes(fields.get("payload") or [])
            coin_type = fields["coin_type"]
            values = (
                sender,
                fields["receiver"],
                int(fields["amount"]),
                coin_type,
                payload,
                (sender, False, sender, b"", 0),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise EventValidationError(f"Malformed Sui {event_type} in {tx_hash}: {e}") from e

        self.logger.info(f"Gateway {event_name} observed in {tx_hash}")
        return decode_event(event_name, self.chain_id, values, tx_hash)

    # Outbound

    async def fetch_gateway_nonce(self) -> int:
        result = await self.rpc.call("sui_getObject", [self.gateway_object_id, {"showContent": True}])
        content = (result.get("data") or {}).get("content") or {}
        if content.get("dataType") != "moveObject":
            raise ExecutionError(f"Gateway {self.gateway_object_id} is not a Move object")
        nonce = int(content["fields"]["nonce"])
        self.logger.info(f"Gateway nonce: {nonce}")
        return nonce

    @staticmethod
    def _coin_type(coin: ForeignCoin) -> str:
        return coin.native_asset or SUI_NATIVE_COIN

    async def withdraw(self, recipient: str, amount: int, coin: ForeignCoin) -> str:
        async with self._send_lock:
            nonce = await self.fetch_gateway_nonce()
            built = await self.rpc.call(
                "unsafe_moveCall",
                [
                    self.keypair.address,
                    self.package_id,
                    "gateway",
                    "withdraw",
                    [self._coin_type(coin)],
                    [
                        self.gateway_object_id,
                        str(amount),
                        str(nonce),
                        recipient,
                        str(SUI_WITHDRAW_GAS_BUDGET),
                        self.withdraw_cap_id,
                    ],
                    None,
                    str(CALL_GAS_BUDGET),
                ],
            )
            digest = await self.execute_transaction(base64.b64decode(built["txBytes"]), f"withdraw to {recipient}")
        self.logger.info(f"Withdrew {amount} {coin.symbol} from the gateway to {recipient}")
        return digest

    async def withdraw_and_call(
        self,
        recipient: str,
        amount: int,
        coin: ForeignCoin,
        message: bytes,
        *,
        sender: str,
        call_options: CallOptions,
    ) -> str:
        type_arguments, object_ids, data = decode_call_message(message)
        coin_type = self._coin_type(coin)

        async with self._send_lock:
            nonce = await self.fetch_gateway_nonce()
            ptb = ProgrammableTransaction()
            withdrawn = ptb.move_call(
                f"{self.package_id}::gateway::withdraw_impl",
                [
                    ptb.shared_object(await self.shared_object(self.gateway_object_id)),
                    ptb.pure(encode_u64(amount)),
                    ptb.pure(encode_u64(nonce)),
                    ptb.pure(encode_u64(SUI_WITHDRAW_GAS_BUDGET)),
                    ptb.owned_object(await self.object_ref(self.withdraw_cap_id)),
                ],
                [coin_type],
            )
            coins = Argument.result(withdrawn.index, 0)
            budget = Argument.result(withdrawn.index, 1)
            ptb.transfer_objects([budget], ptb.pure(address_bytes(self.keypair.address)))

            call_arguments = [coins]
            for object_id in object_ids:
                call_arguments.append(await self.object_argument(ptb, object_id))
            call_arguments.append(ptb.pure(encode_bytes(data)))
            ptb.move_call(f"{recipient}::connected::on_call", call_arguments, [coin_type, *type_arguments])

            tx_bytes = ptb.transaction_data(
                sender=self.keypair.address,
                gas_payment=[await self.gas_coin()],
                gas_price=int(await self.rpc.call("suix_getReferenceGasPrice", [])),
                gas_budget=CALL_GAS_BUDGET,
            )
            digest = await self.execute_transaction(tx_bytes, f"withdraw and call {recipient}")
        self.logger.info(f"Withdrew {amount} {coin.symbol} and called {recipient}::connected::on_call")
        return digest

    async def execute_revert(
        self,
        *,
        amount: int,
        coin: ForeignCoin,
        sender: str,
        revert_options: RevertOptions,
    ) -> str:
        if revert_options.call_on_revert:
            self.logger.warning("Sui revert hooks are not supported, returning funds instead")
        return await self.withdraw(revert_options.revert_address, amount, coin)

    async def _get_object(self, object_id: str) -> dict:
        result = await self.rpc.call("sui_getObject", [object_id, {"showOwner": True}])
        data = result.get("data")
        if not data:
            raise ExecutionError(f"Sui object {object_id} not found")
        return data

    async def object_ref(self, object_id: str) -> ObjectRef:
        data = await self._get_object(object_id)
        return ObjectRef(data["objectId"], int(data["version"]), data["digest"])

    async def shared_object(self, object_id: str) -> SharedObject:
        data = await self._get_object(object_id)
        owner = data.get("owner")
        if not isinstance(owner, dict) or "Shared" not in owner:
            raise ExecutionError(f"Sui object {object_id} is not shared")
        return SharedObject(object_id, int(owner["Shared"]["initial_shared_version"]))

    async def object_argument(self, ptb: ProgrammableTransaction, object_id: str) -> Argument:
        data = await self._get_object(object_id)
        owner = data.get("owner")
        if isinstance(owner, dict) and "Shared" in owner:
            return ptb.shared_object(SharedObject(object_id, int(owner["Shared"]["initial_shared_version"])))
        return ptb.owned_object(ObjectRef(data["objectId"], int(data["version"]), data["digest"]))

    async def gas_coin(self) -> ObjectRef:
        coins = await self.rpc.call("suix_getCoins", [self.keypair.address, SUI_NATIVE_COIN, None, 1])
        if not coins.get("data"):
            raise ExecutionError(f"No SUI gas coin owned by {self.keypair.address}")
        coin = coins["data"][0]
        return ObjectRef(coin["coinObjectId"], int(coin["version"]), coin["digest"])

    async def execute_transaction(self, tx_bytes: bytes, label: str) -> str:
        """
        Sign and execute a transaction and require a successful effects status.

        Raises:
            ExecutionError: If the node rejects the transaction or its effects failed
        """
        signature = self.keypair.sign_transaction(tx_bytes)
        try:
            result = await self.rpc.call(
                "sui_executeTransactionBlock",
                [
                    base64.b64encode(tx_bytes).decode(),
                    [signature],
                    {"showEffects": True},
                    "WaitForLocalExecution",
                ],
            )
        except JsonRpcError as e:
            raise ExecutionError(f"Sui {label} rejected: {e.error}") from e

        digest = result.get("digest")
        status = ((result.get("effects") or {}).get("status")) or {}
        if status.get("status") != "success":
            raise ExecutionError(f"Transaction {digest} failed: {status.get('error')}, status {status.get('status')}")
        return digest

    def get_status(self) -> dict[str, Any]:
        status = super().get_status()
        status["package_id"] = self.package_id
        if self.poller:
            status["poller"] = self.poller.get_status()
        return status
