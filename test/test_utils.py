#!/usr/bin/env python3
"""Tests for retry, polling, JSON-RPC, signing and logging utilities."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from localnet_relay.constants import NetworkID
from localnet_relay.errors import (
    EventValidationError,
    ExecutionError,
    JsonRpcError,
    TransientChainError,
)
from localnet_relay.utils.chain_logger import get_chain_logger
from localnet_relay.utils.json_rpc import JsonRpcClient
from localnet_relay.utils.polling import CursorPoller, PollBatch
from localnet_relay.utils.retry import retry
from localnet_relay.utils.signer import SignerPool, TransactionSigner

SENDER = "0x8888888888888888888888888888888888888888"


class RecordingSleep:
    """Sleep replacement that records delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class TestRetry:
    """Tests for bounded exponential backoff."""

    @pytest.mark.asyncio
    async def test_backoff_doubles_and_caps(self):
        sleep = RecordingSleep()
        operation = AsyncMock(side_effect=TransientChainError("down"))
        failures = []

        with pytest.raises(TransientChainError):
            await retry(operation, retries=4, sleep=sleep, on_failure=failures.append)

        assert sleep.delays == [1.0, 2.0, 4.0, 5.0]
        assert operation.await_count == 5
        assert len(failures) == 1

    @pytest.mark.asyncio
    async def test_recovers_after_transient_error(self):
        sleep = RecordingSleep()
        operation = AsyncMock(side_effect=[httpx.ConnectError("refused"), "ok"])

        assert await retry(operation, sleep=sleep) == "ok"
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_non_transient_error_not_retried(self):
        operation = AsyncMock(side_effect=ExecutionError("reverted"))

        with pytest.raises(ExecutionError):
            await retry(operation, sleep=RecordingSleep())
        assert operation.await_count == 1


class ListPoller(CursorPoller[int, int]):
    """Poller over an in-memory list of integers; the cursor is the last value seen."""

    def __init__(self, items, fail_on=(), interval=1.0):
        super().__init__("test", interval, sleep=RecordingSleep())
        self.items = items
        self.fail_on = set(fail_on)
        self.seen = []

    async def fetch(self, cursor):
        fresh = [i for i in self.items if cursor is None or i > cursor]
        return PollBatch(records=fresh, cursor=fresh[-1] if fresh else None)

    async def dispatch(self, record):
        if record in self.fail_on:
            raise EventValidationError(f"bad record {record}")
        self.seen.append(record)


class TestCursorPoller:
    """Tests for cursor-driven polling."""

    @pytest.mark.asyncio
    async def test_tick_dispatches_only_new_records(self):
        poller = ListPoller([1, 2, 3])

        assert await poller.tick() == 3
        poller.items.append(4)
        assert await poller.tick() == 1
        assert poller.seen == [1, 2, 3, 4]
        assert poller.cursor == 4

    @pytest.mark.asyncio
    async def test_cursor_advances_past_bad_record(self):
        """Test that an undecodable record is dropped rather than stalling the cursor."""
        poller = ListPoller([1, 2, 3], fail_on={2})

        assert await poller.tick() == 2
        assert poller.cursor == 3
        assert poller.get_status()["dropped"] == 1
        assert await poller.tick() == 0

    @pytest.mark.asyncio
    async def test_cursor_advances_when_handler_raises(self):
        """Test forward progress when a handler aborts the tick."""
        poller = ListPoller([1, 2])
        poller.dispatch = AsyncMock(side_effect=ExecutionError("exit on error"))

        with pytest.raises(ExecutionError):
            await poller.tick()
        assert poller.cursor == 2

    @pytest.mark.asyncio
    async def test_empty_batch_keeps_cursor(self):
        poller = ListPoller([])
        poller.cursor = 7

        assert await poller.tick() == 0
        assert poller.cursor == 7

    @pytest.mark.asyncio
    async def test_start_polling_stops(self):
        poller = ListPoller([1])

        async def stop_after_sleep(delay):
            await poller.stop()

        poller._sleep = stop_after_sleep
        await asyncio.wait_for(poller.start_polling(), timeout=1)

        assert poller.seen == [1]
        assert poller.is_running is False

    def test_invalid_interval(self):
        with pytest.raises(ValueError, match="Polling interval must be positive"):
            ListPoller([], interval=0)


def rpc_client(handler) -> JsonRpcClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JsonRpcClient("http://node.test", client=client)


class TestJsonRpcClient:
    """Tests for the JSON-RPC client."""

    @pytest.mark.asyncio
    async def test_call_returns_result(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"slot": 5}})

        client = rpc_client(handler)
        assert await client.call("getSlot") == {"slot": 5}
        assert b'"method":"getSlot"' in requests[0].content.replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_error_object_raises(self):
        client = rpc_client(lambda request: httpx.Response(200, json={"error": {"code": -32000, "message": "bad"}}))
        with pytest.raises(JsonRpcError, match="bad"):
            await client.call("sendTransaction", ["tx"])

    @pytest.mark.asyncio
    async def test_toncenter_not_ok_raises(self):
        client = rpc_client(lambda request: httpx.Response(200, json={"ok": False, "description": "no such account"}))
        with pytest.raises(JsonRpcError, match="no such account"):
            await client.call("getAddressInformation", {"address": "EQ"})

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        client = rpc_client(lambda request: httpx.Response(503))
        with pytest.raises(TransientChainError):
            await client.call("getSlot")

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientChainError):
            await rpc_client(handler).call("getSlot")


def make_w3(status=1):
    w3 = MagicMock()
    w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": status, "blockNumber": 1})
    w3.eth.send_transaction = AsyncMock(return_value=b"\x01" * 32)
    return w3


class TestTransactionSigner:
    """Tests for serialized transaction submission."""

    @pytest.mark.asyncio
    async def test_transact_returns_receipt(self):
        signer = TransactionSigner(make_w3(), SENDER)
        function = MagicMock()
        function.transact = AsyncMock(return_value=b"\x02" * 32)

        receipt = await signer.transact(function, {"gas": 100}, description="deposit")

        assert receipt["status"] == 1
        function.transact.assert_awaited_once_with({"from": SENDER, "gas": 100})
        assert signer.submitted == 1

    @pytest.mark.asyncio
    async def test_failed_receipt_raises(self):
        signer = TransactionSigner(make_w3(status=0), SENDER)
        function = MagicMock()
        function.transact = AsyncMock(return_value=b"\x02" * 32)

        with pytest.raises(ExecutionError, match="reverted"):
            await signer.transact(function, description="deposit")

    @pytest.mark.asyncio
    async def test_rejected_call_raises(self):
        signer = TransactionSigner(make_w3(), SENDER)
        function = MagicMock()
        function.transact = AsyncMock(side_effect=ValueError("execution reverted"))

        with pytest.raises(ExecutionError, match="rejected"):
            await signer.transact(function)

    @pytest.mark.asyncio
    async def test_submissions_do_not_overlap(self):
        """Test that one signer has at most one transaction in flight."""
        signer = TransactionSigner(make_w3(), SENDER)
        timeline = []

        async def transact(params):
            timeline.append("start")
            await asyncio.sleep(0.01)
            timeline.append("end")
            return b"\x03" * 32

        function = MagicMock()
        function.transact = transact

        await asyncio.gather(signer.transact(function), signer.transact(function), signer.send_value(SENDER, 1))

        assert timeline == ["start", "end", "start", "end"]
        assert signer.submitted == 3

    def test_pool_shares_signer_per_account(self):
        pool = SignerPool()
        w3 = make_w3()
        first = pool.get(w3, "http://a", SENDER)
        assert pool.get(w3, "http://a", SENDER.upper().replace("0X", "0x")) is first
        assert pool.get(w3, "http://b", SENDER) is not first
        assert len(pool) == 2


class TestChainLogger:
    """Tests for chain-tagged logging."""

    def test_prefix_and_record_attribute(self, caplog):
        log = get_chain_logger("localnet_relay.test", NetworkID.SOLANA)

        with caplog.at_level(logging.INFO, logger="localnet_relay.test"):
            log.info("deposit seen")
            log.for_chain(NetworkID.TON).info("withdraw sent")

        first, second = caplog.records
        assert first.getMessage() == "[Solana] deposit seen"
        assert first.chain_id == NetworkID.SOLANA
        assert second.getMessage() == "[TON] withdraw sent"

    def test_untagged_logger(self, caplog):
        with caplog.at_level(logging.INFO, logger="localnet_relay.test"):
            get_chain_logger("localnet_relay.test").info("ready")
        assert caplog.records[0].getMessage() == "[localnet] ready"
