"""
Solana adapter.

Polls the gateway program's signatures, decodes its Anchor instructions into
inbound events and submits TSS-authorised withdraw and execute instructions.
"""

import asyncio
import base64
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import base58
from eth_abi import decode as abi_decode
from eth_keys import keys
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from web3 import Web3

from ..constants import SOLANA_DEFAULT_PUBKEY, ZERO_ADDRESS, NetworkID
from ..errors import EventValidationError, ExecutionError, JsonRpcError
from ..models import CallOptions, ForeignCoin, InboundEvent, RevertOptions
from ..schemas import decode_event
from ..utils.borsh import BorshReader, BorshWriter, anchor_discriminator
from ..utils.json_rpc import JsonRpcClient
from ..utils.polling import CursorPoller, PollBatch
from .base import ChainAdapter, EventCallback

SYSTEM_PROGRAM_ID = Pubkey.from_string(SOLANA_DEFAULT_PUBKEY)
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW3cKwgcG4mnE2NJ6Y3")

# Prefix and instruction ids of TSS-signed gateway messages
MESSAGE_PREFIX = b"ZETACHAIN"
WITHDRAW_ID = 0x01
WITHDRAW_SPL_ID = 0x02
EXECUTE_ID = 0x05
EXECUTE_SPL_ID = 0x06

INBOUND_INSTRUCTIONS = {
    anchor_discriminator(name): name
    for name in ("deposit", "deposit_and_call", "call", "deposit_spl_token", "deposit_spl_token_and_call")
}

# Account index of the mint in SPL deposit instructions
SPL_MINT_ACCOUNT_INDEX = 3


@dataclass(frozen=True, slots=True)
class GatewayMeta:
    """Fields of the gateway ``meta`` PDA the relay needs."""

    nonce: int
    tss_address: str
    chain_id: int

    @classmethod
    def from_account_data(cls, data: bytes) -> "GatewayMeta":
        reader = BorshReader(data)
        reader.fixed(8)  # account discriminator
        nonce = reader.u64()
        tss = reader.fixed(20)
        reader.fixed(32)  # authority
        chain_id = reader.u64()
        return cls(nonce=nonce, tss_address=Web3.to_checksum_address(tss), chain_id=chain_id)


def load_keypair(secret: str) -> Keypair:
    """Keypair from a JSON byte array (CLI key file contents) or a base58 string."""
    secret = secret.strip()
    if secret.startswith("["):
        return Keypair.from_bytes(bytes(int(b) for b in secret.strip("[]").split(",")))
    return Keypair.from_base58_string(secret)


def associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)], ASSOCIATED_TOKEN_PROGRAM_ID
    )
    return address


def _read_revert_options(reader: BorshReader, sender: str) -> tuple:
    if not reader.option():
        return (sender, False, ZERO_ADDRESS, b"", 0)
    revert_address = str(Pubkey.from_bytes(reader.fixed(32)))
    abort_address = Web3.to_checksum_address(reader.fixed(20))
    call_on_revert = reader.bool()
    revert_message = reader.bytes()
    on_revert_gas_limit = reader.u64() if reader.remaining >= 8 else 0
    return (revert_address, call_on_revert, abort_address, revert_message, on_revert_gas_limit)


def decode_gateway_instruction(
    data: bytes,
    accounts: list[str],
    sender: str,
    tx_hash: str | None = None,
) -> InboundEvent | None:
    """
    Decode one gateway instruction into an inbound event.

    Args:
        data: Raw instruction data (discriminator and Borsh arguments)
        accounts: Instruction account keys in instruction order
        sender: Fee payer of the transaction
        tx_hash: Transaction signature

    Returns:
        The event, or None for instructions that are not inbound messages

    Raises:
        EventValidationError: If the arguments cannot be decoded
    """
    name = INBOUND_INSTRUCTIONS.get(bytes(data[:8]))
    if name is None:
        return None

    reader = BorshReader(data[8:])
    try:
        match name:
            case "call":
                receiver = Web3.to_checksum_address(reader.fixed(20))
                message = reader.bytes()
                revert = _read_revert_options(reader, sender)
                return decode_event("Called", NetworkID.SOLANA, (sender, receiver, message, revert), tx_hash)
            case "deposit" | "deposit_spl_token" | "deposit_and_call" | "deposit_spl_token_and_call":
                amount = reader.u64()
                receiver = Web3.to_checksum_address(reader.fixed(20))
                message = reader.bytes() if name.endswith("_and_call") else b""
                revert = _read_revert_options(reader, sender)
                asset = accounts[SPL_MINT_ACCOUNT_INDEX] if "spl" in name else None
                event_name = "DepositedAndCalled" if name.endswith("_and_call") else "Deposited"
                return decode_event(
                    event_name,
                    NetworkID.SOLANA,
                    (sender, receiver, amount, asset, message, revert),
                    tx_hash,
                )
    except (ValueError, IndexError) as e:
        raise EventValidationError(f"Cannot decode {name} instruction in {tx_hash}: {e}") from e
    return None


def decode_execute_message(message: bytes) -> tuple[list[AccountMeta], bytes]:
    """Split an execute payload into remaining accounts and program data.

    The payload is ABI-encoded as ``(tuple(bytes32,bool)[] accounts, bytes data)``.
    """
    accounts, data = abi_decode(["(bytes32,bool)[]", "bytes"], message)
    metas = [
        AccountMeta(pubkey=Pubkey.from_bytes(public_key), is_signer=False, is_writable=is_writable)
        for public_key, is_writable in accounts
    ]
    return metas, data


class SolanaSignaturePoller(CursorPoller[str, dict]):
    """Cursor is the newest processed signature."""

    SIGNATURE_LIMIT = 10

    def __init__(self, adapter: "SolanaAdapter", on_event: EventCallback, interval: float, **kwargs: Any):
        super().__init__("Solana gateway", interval, **kwargs)
        self.adapter = adapter
        self.on_event = on_event

    async def fetch(self, cursor: str | None) -> PollBatch[str, dict]:
        rpc = self.adapter.rpc
        signatures = await rpc.call(
            "getSignaturesForAddress",
            [str(self.adapter.program_id), {"limit": self.SIGNATURE_LIMIT, "commitment": "confirmed"}],
        )
        if not signatures:
            return PollBatch()

        fresh = []
        for entry in signatures:
            if entry["signature"] == cursor:
                break
            if entry.get("err") is None:
                fresh.append(entry["signature"])

        records = []
        for signature in reversed(fresh):
            transaction = await rpc.call(
                "getTransaction",
                [signature, {"encoding": "json", "commitment": "confirmed", "maxSupportedTransactionVersion": 0}],
            )
            if transaction:
                records.append(transaction)
        return PollBatch(records=records, cursor=signatures[0]["signature"])

    async def dispatch(self, record: dict) -> None:
        for event in self.adapter.decode_transaction(record):
            await self.on_event(event)


class SolanaAdapter(ChainAdapter):
    """Adapter for the Solana gateway program."""

    CONFIRM_ATTEMPTS = 30

    def __init__(
        self,
        rpc: JsonRpcClient,
        program_id: str,
        payer: Keypair,
        tss_private_key: str,
        poll_interval: float = 1.0,
        retry_count: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the Solana adapter.

        Args:
            rpc: JSON-RPC client for the validator
            program_id: Gateway program id
            payer: Fee payer and transaction signer
            tss_private_key: Hex secp256k1 key whose address the gateway trusts
            poll_interval: Seconds between signature polls
            retry_count: Fetch retries per poll tick
            sleep: Sleep function for polling and confirmation
        """
        super().__init__(NetworkID.SOLANA)
        self.rpc = rpc
        self.program_id = Pubkey.from_string(program_id)
        self.payer = payer
        self.tss_key = keys.PrivateKey(bytes.fromhex(tss_private_key.removeprefix("0x")))
        self.poll_interval = poll_interval
        self.retry_count = retry_count
        self._sleep = sleep
        self._send_lock = asyncio.Lock()
        self.poller: SolanaSignaturePoller | None = None
        self.meta_pda, _ = Pubkey.find_program_address([b"meta"], self.program_id)

    # Observation

    async def observe_inbound(self, on_event: EventCallback) -> None:
        self.poller = SolanaSignaturePoller(
            self, on_event, self.poll_interval, retry_count=self.retry_count, sleep=self._sleep
        )
        await self.poller.start_polling()

    async def stop(self) -> None:
        if self.poller:
            await self.poller.stop()

    def decode_transaction(self, transaction: dict) -> list[InboundEvent]:
        """
        Inbound events of all gateway instructions in a ``getTransaction`` result.

        Raises:
            EventValidationError: If the transaction JSON or a gateway instruction is malformed
        """
        program = str(self.program_id)
        try:
            message = transaction["transaction"]["message"]
            account_keys = list(message["accountKeys"])
            loaded = (transaction.get("meta") or {}).get("loadedAddresses") or {}
            account_keys += loaded.get("writable", []) + loaded.get("readonly", [])
            signature = transaction["transaction"]["signatures"][0]
            sender = account_keys[0]
            gateway_instructions = [
                (base58.b58decode(instruction["data"]), [account_keys[i] for i in instruction["accounts"]])
                for instruction in message["instructions"]
                if account_keys[instruction["programIdIndex"]] == program
            ]
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise EventValidationError(f"Malformed Solana transaction: {e!r}") from e

        events = []
        for data, accounts in gateway_instructions:
            event = decode_gateway_instruction(data, accounts, sender, signature)
            if event is not None:
                self.logger.info(f"Gateway {event.kind} observed in {signature}")
                events.append(event)
        return events

    # Outbound

    async def fetch_meta(self) -> GatewayMeta:
        result = await self.rpc.call("getAccountInfo", [str(self.meta_pda), {"encoding": "base64"}])
        if not result or result.get("value") is None:
            raise ExecutionError(f"Gateway meta account {self.meta_pda} not found")
        return GatewayMeta.from_account_data(base64.b64decode(result["value"]["data"][0]))

    def sign_message(self, message: bytes) -> tuple[bytes, int, bytes]:
        """TSS signature over ``keccak(message)`` as (r‖s, recovery id, hash)."""
        message_hash = Web3.keccak(message)
        signature = self.tss_key.sign_msg_hash(message_hash)
        rs = signature.r.to_bytes(32, "big") + signature.s.to_bytes(32, "big")
        return rs, signature.v, bytes(message_hash)

    @staticmethod
    def _signed_header(instruction_id: int, meta: GatewayMeta, amount: int) -> bytes:
        return (
            MESSAGE_PREFIX
            + bytes([instruction_id])
            + meta.chain_id.to_bytes(8, "big")
            + meta.nonce.to_bytes(8, "big")
            + amount.to_bytes(8, "big")
        )

    async def withdraw(self, recipient: str, amount: int, coin: ForeignCoin) -> str:
        meta = await self.fetch_meta()
        recipient_key = Pubkey.from_string(recipient)
        payer = self.payer.pubkey()

        match coin.native_asset:
            case None:
                message = self._signed_header(WITHDRAW_ID, meta, amount) + bytes(recipient_key)
                rs, recovery_id, message_hash = self.sign_message(message)
                data = (
                    BorshWriter()
                    .fixed(anchor_discriminator("withdraw"))
                    .u64(amount)
                    .fixed(rs)
                    .u8(recovery_id)
                    .fixed(message_hash)
                    .u64(meta.nonce)
                    .build()
                )
                accounts = [
                    AccountMeta(payer, is_signer=True, is_writable=True),
                    AccountMeta(self.meta_pda, is_signer=False, is_writable=True),
                    AccountMeta(recipient_key, is_signer=False, is_writable=True),
                    AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
                ]
                label = f"withdraw of {amount} lamports to {recipient}"
            case mint_address:
                mint = Pubkey.from_string(mint_address)
                recipient_ata = associated_token_address(recipient_key, mint)
                message = (
                    self._signed_header(WITHDRAW_SPL_ID, meta, amount) + bytes(mint) + bytes(recipient_ata)
                )
                rs, recovery_id, message_hash = self.sign_message(message)
                data = (
                    BorshWriter()
                    .fixed(anchor_discriminator("withdraw_spl_token"))
                    .u8(coin.decimals)
                    .u64(amount)
                    .fixed(rs)
                    .u8(recovery_id)
                    .fixed(message_hash)
                    .u64(meta.nonce)
                    .build()
                )
                accounts = [
                    AccountMeta(payer, is_signer=True, is_writable=True),
                    AccountMeta(self.meta_pda, is_signer=False, is_writable=True),
                    AccountMeta(associated_token_address(self.meta_pda, mint), is_signer=False, is_writable=True),
                    AccountMeta(mint, is_signer=False, is_writable=False),
                    AccountMeta(recipient_key, is_signer=False, is_writable=False),
                    AccountMeta(recipient_ata, is_signer=False, is_writable=True),
                    AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
                    AccountMeta(ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
                    AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
                ]
                label = f"withdraw of {amount} {coin.symbol} to {recipient}"

        self.logger.info(f"Executing gateway {label}")
        return await self.send_instruction(Instruction(self.program_id, data, accounts), label)

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
        remaining_accounts, program_data = decode_execute_message(message)
        meta = await self.fetch_meta()
        destination = Pubkey.from_string(recipient)
        destination_pda, _ = Pubkey.find_program_address([b"connected"], destination)
        sender_bytes = bytes.fromhex(sender.removeprefix("0x"))
        payer = self.payer.pubkey()

        is_spl = coin.native_asset is not None
        instruction_id = EXECUTE_SPL_ID if is_spl else EXECUTE_ID
        signed = self._signed_header(instruction_id, meta, amount) + bytes(destination) + program_data
        rs, recovery_id, message_hash = self.sign_message(signed)

        writer = BorshWriter().fixed(anchor_discriminator("execute_spl_token" if is_spl else "execute"))
        if is_spl:
            writer.u8(coin.decimals)
        data = (
            writer.u64(amount)
            .fixed(sender_bytes)
            .bytes(program_data)
            .fixed(rs)
            .u8(recovery_id)
            .fixed(message_hash)
            .u64(meta.nonce)
            .build()
        )
        accounts = [
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(self.meta_pda, is_signer=False, is_writable=True),
        ]
        if is_spl:
            mint = Pubkey.from_string(coin.native_asset)
            accounts += [
                AccountMeta(associated_token_address(self.meta_pda, mint), is_signer=False, is_writable=True),
                AccountMeta(mint, is_signer=False, is_writable=False),
            ]
        accounts += [
            AccountMeta(destination, is_signer=False, is_writable=False),
            AccountMeta(destination_pda, is_signer=False, is_writable=True),
        ]
        if is_spl:
            accounts += [
                AccountMeta(
                    associated_token_address(destination_pda, Pubkey.from_string(coin.native_asset)),
                    is_signer=False,
                    is_writable=True,
                ),
                AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
                AccountMeta(ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
                AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            ]
        accounts += remaining_accounts

        label = f"execute of {recipient} with {amount} {coin.symbol}"
        self.logger.info(f"Executing gateway {label}")
        return await self.send_instruction(Instruction(self.program_id, data, accounts), label)

    async def execute_revert(
        self,
        *,
        amount: int,
        coin: ForeignCoin,
        sender: str,
        revert_options: RevertOptions,
    ) -> str:
        if revert_options.call_on_revert:
            self.logger.warning("Solana revert hooks are not supported, returning funds instead")
        return await self.withdraw(revert_options.revert_address, amount, coin)

    async def send_instruction(self, instruction: Instruction, label: str) -> str:
        """
        Sign, submit and confirm a single-instruction transaction.

        Raises:
            ExecutionError: If the transaction is rejected or fails on chain
        """
        async with self._send_lock:
            latest = await self.rpc.call("getLatestBlockhash", [{"commitment": "confirmed"}])
            blockhash = Hash.from_string(latest["value"]["blockhash"])
            message = Message.new_with_blockhash([instruction], self.payer.pubkey(), blockhash)
            transaction = Transaction([self.payer], message, blockhash)
            encoded = base64.b64encode(bytes(transaction)).decode()
            try:
                signature = await self.rpc.call(
                    "sendTransaction",
                    [encoded, {"encoding": "base64", "preflightCommitment": "confirmed"}],
                )
            except JsonRpcError as e:
                raise ExecutionError(f"Solana {label} rejected: {e.error}") from e
            await self._confirm(signature, label)
            return signature

    async def _confirm(self, signature: str, label: str) -> None:
        for _ in range(self.CONFIRM_ATTEMPTS):
            result = await self.rpc.call("getSignatureStatuses", [[signature]])
            status = (result or {}).get("value", [None])[0]
            if status is not None:
                if status.get("err") is not None:
                    raise ExecutionError(f"Solana {label} failed: {status['err']}")
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    return
            await self._sleep(0.5)
        raise ExecutionError(f"Solana {label} not confirmed: {signature}")

    def get_status(self) -> dict[str, Any]:
        status = super().get_status()
        status["program_id"] = str(self.program_id)
        if self.poller:
            status["poller"] = self.poller.get_status()
        return status
