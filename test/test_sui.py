#!/usr/bin/env python3
"""Tests for the Sui adapter and BCS encoding."""

import base64
import hashlib
from unittest.mock import AsyncMock

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from eth_abi import encode as abi_encode

from conftest import RECEIVER
from localnet_relay.adapters.sui import SuiAdapter, SuiKeypair, decode_call_message
from localnet_relay.constants import NetworkID
from localnet_relay.errors import EventValidationError, ExecutionError
from localnet_relay.models import CoinType, DepositedAndCalledEvent, ForeignCoin, RevertOptions
from localnet_relay.utils.bcs import (
    INTENT_TRANSACTION,
    Argument,
    ObjectRef,
    ProgrammableTransaction,
    address_bytes,
    encode_type_tag,
    uleb128,
)

SEED = "0x" + "07" * 32
PACKAGE = "0x" + "ab" * 32
GATEWAY_OBJECT = "0x" + "cd" * 32
WITHDRAW_CAP = "0x" + "ef" * 32
SUI_SENDER = "0x" + "12" * 32
SUI_ZRC20 = "0x1313131313131313131313131313131313131313"


class TestBcs:
    """Tests for the BCS primitives."""

    def test_uleb128(self):
        assert uleb128(0) == b"\x00"
        assert uleb128(127) == b"\x7f"
        assert uleb128(300) == b"\xac\x02"

    def test_short_address_is_padded(self):
        assert address_bytes("0x2") == bytes(31) + b"\x02"

    def test_type_tags(self):
        assert encode_type_tag("u64") == b"\x02"
        assert encode_type_tag("vector<u8>") == b"\x06\x01"

        sui = encode_type_tag("0x2::sui::SUI")
        assert sui[0] == 7
        assert sui[1:33] == address_bytes("0x2")
        assert sui[33:] == b"\x03sui\x03SUI\x00"

    def test_generic_type_tag(self):
        coin = encode_type_tag("0x2::coin::Coin<0x2::sui::SUI>")
        assert coin.endswith(b"\x01" + encode_type_tag("0x2::sui::SUI"))

    def test_arguments(self):
        assert Argument(0).encode() == b"\x00"
        assert Argument.input(1).encode() == b"\x01\x01\x00"
        assert Argument.result(2, 1).encode() == b"\x03\x02\x00\x01\x00"

    def test_transaction_data_layout(self):
        ptb = ProgrammableTransaction()
        amount = ptb.pure(b"\x05")
        assert amount == Argument.input(0)
        call = ptb.move_call("0x2::coin::zero", [amount], ["0x2::sui::SUI"])
        assert call == Argument.result(0)

        gas = ObjectRef("0x" + "aa" * 32, 3, "11111111111111111111111111111111")
        tx = ptb.transaction_data(sender=SUI_SENDER, gas_payment=[gas], gas_price=1000, gas_budget=5000)

        assert tx[:2] == b"\x00\x00"
        assert tx.endswith(address_bytes(SUI_SENDER) + (1000).to_bytes(8, "little") + (5000).to_bytes(8, "little") + b"\x00")


class TestSuiKeypair:
    """Tests for Sui key handling."""

    def test_hex_and_keystore_formats_agree(self):
        from_hex = SuiKeypair.from_secret(SEED)
        keystore = base64.b64encode(b"\x00" + bytes.fromhex(SEED[2:])).decode()
        assert SuiKeypair.from_secret(keystore).address == from_hex.address

    def test_address_is_blake2b_of_flagged_key(self):
        keypair = SuiKeypair.from_secret(SEED)
        expected = hashlib.blake2b(b"\x00" + keypair.public_key, digest_size=32).hexdigest()
        assert keypair.address == "0x" + expected

    def test_non_ed25519_keystore_rejected(self):
        with pytest.raises(ValueError, match="Ed25519"):
            SuiKeypair.from_secret(base64.b64encode(b"\x01" + bytes(32)).decode())

    def test_signature_verifies_over_intent_digest(self):
        keypair = SuiKeypair.from_secret(SEED)
        raw = base64.b64decode(keypair.sign_transaction(b"tx-bytes"))

        assert raw[0] == 0
        assert raw[65:] == keypair.public_key
        digest = hashlib.blake2b(INTENT_TRANSACTION + b"tx-bytes", digest_size=32).digest()
        Ed25519PublicKey.from_public_bytes(keypair.public_key).verify(raw[1:65], digest)


class TestCallMessage:
    def test_decode(self):
        message = abi_encode(
            ["(string[],bytes32[],bytes)"], [(["0x2::sui::SUI"], [bytes.fromhex("ab" * 32)], b"\x01")]
        )

        type_arguments, objects, data = decode_call_message(message)

        assert type_arguments == ["0x2::sui::SUI"]
        assert objects == ["0x" + "ab" * 32]
        assert data == b"\x01"

    def test_garbage_rejected(self):
        with pytest.raises(ExecutionError, match="Cannot decode Sui call message"):
            decode_call_message(b"\x01\x02")


@pytest.fixture
def rpc():
    return AsyncMock()


@pytest.fixture
def adapter(rpc):
    return SuiAdapter(rpc, PACKAGE, GATEWAY_OBJECT, WITHDRAW_CAP, SuiKeypair.from_secret(SEED))


def event_record(kind="DepositEvent", **fields):
    parsed = {"sender": SUI_SENDER, "receiver": RECEIVER, "amount": "1000", "coin_type": "0x2::sui::SUI"}
    parsed.update(fields)
    return {"type": f"{PACKAGE}::gateway::{kind}", "parsedJson": parsed, "id": {"txDigest": "digest1"}}


class TestSuiAdapter:
    """Tests for Sui event decoding and outbound transactions."""

    def test_decode_deposit(self, adapter):
        event = adapter.decode_event(event_record())

        assert event.kind.value == "Deposit"
        assert event.chain_id == NetworkID.SUI
        assert event.amount == 1000
        assert event.asset == "0x2::sui::SUI"
        assert event.tx_hash == "digest1"
        assert event.revert_options == RevertOptions(revert_address=SUI_SENDER, abort_address=SUI_SENDER)

    def test_decode_deposit_and_call(self, adapter):
        event = adapter.decode_event(event_record("DepositAndCallEvent", payload=[1, 2, 3]))

        assert isinstance(event, DepositedAndCalledEvent)
        assert event.message == b"\x01\x02\x03"

    def test_other_events_ignored(self, adapter):
        assert adapter.decode_event(event_record("WithdrawEvent")) is None

    def test_malformed_event(self, adapter):
        record = event_record()
        del record["parsedJson"]["amount"]
        with pytest.raises(EventValidationError, match="Malformed Sui"):
            adapter.decode_event(record)

    def test_sender_and_recipient_encoding(self, adapter):
        assert adapter.encode_sender(SUI_SENDER) == bytes.fromhex("12" * 32)
        assert adapter.decode_recipient(bytes.fromhex("12" * 32)) == SUI_SENDER
        assert adapter.decode_recipient(SUI_SENDER.encode()) == SUI_SENDER

    @pytest.mark.asyncio
    async def test_withdraw(self, adapter, rpc):
        """Test the withdraw move call and its execution."""
        tx_bytes = b"built-tx"
        responses = {
            "sui_getObject": {"data": {"content": {"dataType": "moveObject", "fields": {"nonce": "4"}}}},
            "unsafe_moveCall": {"txBytes": base64.b64encode(tx_bytes).decode()},
            "sui_executeTransactionBlock": {"digest": "digest2", "effects": {"status": {"status": "success"}}},
        }
        rpc.call.side_effect = lambda method, params: responses[method]
        coin = ForeignCoin(SUI_ZRC20, None, NetworkID.SUI, CoinType.GAS, 9, "SUI.SUI")

        assert await adapter.withdraw(SUI_SENDER, 500, coin) == "digest2"

        calls = {c.args[0]: c.args[1] for c in rpc.call.call_args_list}
        move_call = calls["unsafe_moveCall"]
        assert move_call[3] == "withdraw"
        assert move_call[5][:4] == [GATEWAY_OBJECT, "500", "4", SUI_SENDER]
        assert move_call[5][-1] == WITHDRAW_CAP
        assert calls["sui_executeTransactionBlock"][0] == base64.b64encode(tx_bytes).decode()

    @pytest.mark.asyncio
    async def test_failed_effects_raise(self, adapter, rpc):
        rpc.call.return_value = {"digest": "d", "effects": {"status": {"status": "failure", "error": "MoveAbort"}}}

        with pytest.raises(ExecutionError, match="MoveAbort"):
            await adapter.execute_transaction(b"tx", "withdraw")

    @pytest.mark.asyncio
    async def test_revert_withdraws_to_sender(self, adapter):
        adapter.withdraw = AsyncMock(return_value="digest")
        coin = ForeignCoin(SUI_ZRC20, None, NetworkID.SUI, CoinType.GAS, 9, "SUI.SUI")
        options = RevertOptions(revert_address=SUI_SENDER, abort_address=SUI_SENDER)

        await adapter.execute_revert(amount=7, coin=coin, sender=SUI_SENDER, revert_options=options)

        adapter.withdraw.assert_awaited_once_with(SUI_SENDER, 7, coin)
