"""
TON adapter.

Follows the gateway account's transactions through a toncenter-style JSON-RPC
endpoint and withdraws with TSS-signed external messages.
"""

import asyncio
import base64
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from eth_keys import keys
from pytoniq_core import Address, Cell, ExternalMsgInfo, MessageAny, Slice, begin_cell
from web3 import Web3

from ..constants import NetworkID
from ..errors import EventValidationError, ExecutionError, JsonRpcError
from ..models import ForeignCoin, InboundEvent, RevertOptions
from ..schemas import decode_event
from ..utils.json_rpc import JsonRpcClient
from ..utils.polling import CursorPoller, PollBatch
from .base import ChainAdapter, EventCallback


class GatewayOp(IntEnum):
    DONATE = 100
    DEPOSIT = 101
    DEPOSIT_AND_CALL = 102
    CALL = 103
    WITHDRAW = 200


# op code (32 bits) and query id (64 bits)
HEADER_BITS = 32 + 64


@dataclass(frozen=True, slots=True, order=True)
class TransactionId:
    """Position in the gateway account's transaction list."""

    lt: int
    hash: str

    @classmethod
    def from_json(cls, value: dict) -> "TransactionId":
        return cls(lt=int(value["lt"]), hash=value["hash"])


def read_snake_bytes(cell: Cell) -> bytes:
    """Bytes stored in a cell and its chain of first references."""
    out = bytearray()
    current: Cell | None = cell
    while current is not None:
        part = current.begin_parse()
        out += part.load_bytes(part.remaining_bits // 8)
        current = part.load_ref() if part.remaining_refs else None
    return bytes(out)


def _body_cell(message: dict | None) -> Cell | None:
    body = ((message or {}).get("msg_data") or {}).get("body")
    if not body:
        return None
    return Cell.one_from_boc(base64.b64decode(body))


def raw_address(address: str) -> str:
    """Raw ``workchain:hex`` form of a TON address."""
    return Address(address).to_str(is_user_friendly=False)


def decode_gateway_transaction(transaction: dict) -> InboundEvent | None:
    """
    Decode one gateway transaction into an inbound event.

    Returns:
        The event, or None for donations, external messages and bodies too
        short to carry an op code

    Raises:
        EventValidationError: If the transaction JSON or an inbound message cannot be decoded
    """
    try:
        tx_id = TransactionId.from_json(transaction["transaction_id"])
        tx_hash = f"{tx_id.lt}:{tx_id.hash}"
        in_msg = transaction.get("in_msg") or {}
        source = in_msg.get("source")
        if not source:
            return None
        body = _body_cell(in_msg)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise EventValidationError(f"Malformed TON transaction: {e!r}") from e

    if body is None:
        return None
    reader: Slice = body.begin_parse()
    if reader.remaining_bits < HEADER_BITS:
        return None

    try:
        op = reader.load_uint(32)
        if op == GatewayOp.DONATE:
            return None
        reader.skip_bits(64)
        sender = raw_address(source)
        receiver = Web3.to_checksum_address(reader.load_bytes(20))
        revert = (sender, False, sender, b"\x00", 0)

        match op:
            case GatewayOp.DEPOSIT | GatewayOp.DEPOSIT_AND_CALL:
                out_msgs = transaction.get("out_msgs") or []
                log_cell = _body_cell(out_msgs[0]) if out_msgs else None
                if log_cell is None:
                    return None
                amount = log_cell.begin_parse().load_coins()
                message = read_snake_bytes(reader.load_ref()) if op == GatewayOp.DEPOSIT_AND_CALL else b""
                event_name = "DepositedAndCalled" if op == GatewayOp.DEPOSIT_AND_CALL else "Deposited"
                return decode_event(
                    event_name, NetworkID.TON, (sender, receiver, amount, None, message, revert), tx_hash
                )
            case GatewayOp.CALL:
                message = read_snake_bytes(reader.load_ref())
                return decode_event("Called", NetworkID.TON, (sender, receiver, message, revert), tx_hash)
            case _:
                raise EventValidationError(f"Irrelevant op code {op} in {tx_hash}")
    except (ValueError, IndexError) as e:
        raise EventValidationError(f"Cannot decode TON transaction {tx_hash}: {e}") from e


class TonTransactionPoller(CursorPoller[TransactionId, dict]):
    """Cursor is the last processed ``(lt, hash)`` of the gateway account."""

    PAGE_LIMIT = 100

    def __init__(self, adapter: "TonAdapter", on_event: EventCallback, interval: float, **kwargs: Any):
        super().__init__("TON gateway", interval, **kwargs)
        self.adapter = adapter
        self.on_event = on_event

    async def initialize(self) -> None:
        self.cursor = await self.adapter.last_transaction()

    async def fetch(self, cursor: TransactionId | None) -> PollBatch[TransactionId, dict]:
        latest = await self.adapter.last_transaction()
        if latest is None or (cursor is not None and latest.lt == cursor.lt):
            return PollBatch()

        params: dict[str, Any] = {
            "address": self.adapter.gateway_address,
            "limit": self.PAGE_LIMIT,
            "lt": str(latest.lt),
            "hash": latest.hash,
            "archival": True,
        }
        if cursor is not None:
            params["to_lt"] = str(cursor.lt)
        transactions = await self.adapter.rpc.call("getTransactions", params) or []

        # Newest first, down to the cursor inclusive
        records = [
            tx
            for tx in reversed(transactions)
            if cursor is None or TransactionId.from_json(tx["transaction_id"]).lt != cursor.lt
        ]
        return PollBatch(records=records, cursor=latest)

    async def dispatch(self, record: dict) -> None:
        event = decode_gateway_transaction(record)
        if event is not None:
            self.adapter.logger.info(f"Gateway {event.kind} observed in {event.tx_hash}")
            await self.on_event(event)


class TonAdapter(ChainAdapter):
    """Adapter for the TON gateway contract."""

    def __init__(
        self,
        rpc: JsonRpcClient,
        gateway_address: str,
        tss_private_key: str,
        poll_interval: float = 1.0,
        retry_count: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(NetworkID.TON)
        self.rpc = rpc
        self.gateway_address = gateway_address
        self.tss_key = keys.PrivateKey(bytes.fromhex(tss_private_key.removeprefix("0x")))
        self.poll_interval = poll_interval
        self.retry_count = retry_count
        self._sleep = sleep
        self._send_lock = asyncio.Lock()
        self.poller: TonTransactionPoller | None = None

    # Observation

    async def observe_inbound(self, on_event: EventCallback) -> None:
        self.poller = TonTransactionPoller(
            self, on_event, self.poll_interval, retry_count=self.retry_count, sleep=self._sleep
        )
        await self.poller.start_polling()

    async def stop(self) -> None:
        if self.poller:
            await self.poller.stop()

    async def last_transaction(self) -> TransactionId | None:
        info = await self.rpc.call("getAddressInformation", {"address": self.gateway_address})
        last = (info or {}).get("last_transaction_id")
        if not last or int(last.get("lt", 0)) == 0:
            return None
        return TransactionId.from_json(last)

    # Outbound

    async def get_seqno(self) -> int:
        result = await self.rpc.call(
            "runGetMethod", {"address": self.gateway_address, "method": "seqno", "stack": []}
        )
        if result.get("exit_code", 0) != 0:
            raise ExecutionError(f"Gateway seqno getter failed with exit code {result['exit_code']}")
        _, value = result["stack"][0]
        return int(value, 16) if isinstance(value, str) else int(value)

    def sign_cell(self, cell: Cell) -> Cell:
        """ECDSA signature over the cell hash as ``v(8) r(256) s(256)``."""
        signature = self.tss_key.sign_msg_hash(cell.hash)
        return (
            begin_cell()
            .store_uint(signature.v + 27, 8)
            .store_uint(signature.r, 256)
            .store_uint(signature.s, 256)
            .end_cell()
        )

    async def withdraw(self, recipient: str, amount: int, coin: ForeignCoin) -> str:
        self.logger.info(f"Executing withdrawal to {recipient}, amount: {amount}")
        async with self._send_lock:
            seqno = await self.get_seqno()
            payload = (
                begin_cell()
                .store_uint(GatewayOp.WITHDRAW, 32)
                .store_address(Address(recipient))
                .store_coins(amount)
                .store_uint(seqno, 32)
                .end_cell()
            )
            body = begin_cell().store_cell(self.sign_cell(payload)).store_ref(payload).end_cell()
            message = MessageAny(
                info=ExternalMsgInfo(src=None, dest=Address(self.gateway_address), import_fee=0),
                init=None,
                body=body,
            )
            boc = base64.b64encode(message.serialize().to_boc()).decode()
            try:
                await self.rpc.call("sendBoc", {"boc": boc})
            except JsonRpcError as e:
                raise ExecutionError(f"TON withdrawal to {recipient} rejected: {e.error}") from e
        return boc

    async def execute_revert(
        self,
        *,
        amount: int,
        coin: ForeignCoin,
        sender: str,
        revert_options: RevertOptions,
    ) -> str:
        self.logger.info("Reverting inbound")
        return await self.withdraw(revert_options.revert_address, amount, coin)

    def get_status(self) -> dict[str, Any]:
        status = super().get_status()
        status["gateway"] = self.gateway_address
        if self.poller:
            status["poller"] = self.poller.get_status()
        return status
