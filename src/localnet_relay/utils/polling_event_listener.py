"""
Polling-based contract log listener for EVM chains.

"""

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any

from web3 import AsyncWeb3
from web3.contract import AsyncContract
from web3.types import EventData

LogCallback = Callable[[str, EventData], Awaitable[Any]]


class PollingEventListener:
    """
    Delivers gateway logs to a callback, one invocation per log.

    Logs of all watched events are merged in (block, log index) order and each
    callback runs as its own task, so handlers for independent events may
    interleave at their suspension points.
    """

    MAX_SEEN_LOGS: int = 10_000

    def __init__(
        self,
        w3: AsyncWeb3,
        contract: AsyncContract,
        event_names: list[str],
        lookback_blocks: int = 0,
        label: str = "",
    ):
        """
        Initialize the polling event listener.

        Args:
            w3: Async Web3 connection
            contract: Contract whose logs are watched
            event_names: Names of the events to listen for
            lookback_blocks: Number of blocks to replay on startup
            label: Name used in logs
        """
        self.w3 = w3
        self.contract = contract
        self.contract_address = contract.address
        self.event_names = list(event_names)
        self.lookback_blocks = lookback_blocks
        self.label = label or str(contract.address)

        for name in self.event_names:
            if not hasattr(self.contract.events, name):
                raise ValueError(f"Event {name} not found in contract ABI")

        # State tracking
        self.last_processed_block: int | None = None
        self.is_running = False
        self.delivered = 0
        self.seen_logs: OrderedDict[tuple[str, int], None] = OrderedDict()
        self._handlers: set[asyncio.Task] = set()
        self._failure: BaseException | None = None

        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def _fetch_logs(self, from_block: int, to_block: int) -> list[tuple[str, EventData]]:
        logs: list[tuple[str, EventData]] = []
        for name in self.event_names:
            event_obj = getattr(self.contract.events, name)
            for event in await event_obj.get_logs(from_block=from_block, to_block=to_block):
                logs.append((name, event))
        logs.sort(key=lambda item: (item[1]["blockNumber"], item[1]["logIndex"]))
        return logs

    def _track_log(self, event: EventData) -> bool:
        """Remember a log; False if it was already delivered."""
        tx_hash = event["transactionHash"]
        key = (tx_hash.hex() if isinstance(tx_hash, bytes) else str(tx_hash), event["logIndex"])
        if key in self.seen_logs:
            return False
        self.seen_logs[key] = None
        if len(self.seen_logs) > self.MAX_SEEN_LOGS:
            self.seen_logs.popitem(last=False)
        return True

    def _deliver(self, callback: LogCallback, name: str, event: EventData) -> None:
        task = asyncio.create_task(callback(name, event))
        self._handlers.add(task)
        task.add_done_callback(self._handler_done)
        self.delivered += 1

    def _handler_done(self, task: asyncio.Task) -> None:
        self._handlers.discard(task)
        if task.cancelled():
            return
        if (error := task.exception()) is not None:
            self.logger.error(f"{self.label}: event handler failed: {error}")
            if self._failure is None:
                self._failure = error

    async def initial_sync(self, callback: LogCallback) -> None:
        """
        Catch up on recent events.

        Args:
            callback: Async function called with (event name, log) for each event
        """
        current_block = await self.w3.eth.block_number
        if self.lookback_blocks > 0:
            from_block = max(0, current_block - self.lookback_blocks)
            self.logger.info(
                f"{self.label}: initial sync of {', '.join(self.event_names)} "
                f"from block {from_block} to {current_block}"
            )
            for name, event in await self._fetch_logs(from_block, current_block):
                if self._track_log(event):
                    self._deliver(callback, name, event)
        self.last_processed_block = current_block

    async def poll_for_events(self, callback: LogCallback) -> int:
        """
        Deliver events mined since the last processed block.

        Args:
            callback: Async function called with (event name, log) for each event

        Returns:
            Number of logs delivered
        """
        current_block = await self.w3.eth.block_number

        # Skip if no new blocks
        if self.last_processed_block is not None and current_block <= self.last_processed_block:
            return 0

        from_block = (
            self.last_processed_block + 1 if self.last_processed_block is not None else current_block
        )
        count = 0
        for name, event in await self._fetch_logs(from_block, current_block):
            if self._track_log(event):
                self._deliver(callback, name, event)
                count += 1

        if count:
            self.logger.info(f"{self.label}: {count} new events in blocks {from_block}-{current_block}")
        self.last_processed_block = current_block
        return count

    async def start_polling(self, callback: LogCallback, interval: float = 1.0) -> None:
        """
        Start polling for events at the specified interval.

        Args:
            callback: Async function called with (event name, log)
            interval: Polling interval in seconds

        Raises:
            Exception: The first error a handler re-raised
        """
        if self.is_running:
            self.logger.warning(f"{self.label}: polling already running")
            return

        self.is_running = True
        self.logger.info(
            f"Watching {', '.join(self.event_names)} on {self.contract_address} every {interval}s"
        )
        await self.initial_sync(callback)

        while self.is_running:
            if self._failure is not None:
                self.is_running = False
                raise self._failure
            try:
                await asyncio.sleep(interval)
                await self.poll_for_events(callback)
            except asyncio.CancelledError:
                self.logger.info(f"{self.label}: polling cancelled")
                raise
            except Exception as e:
                # Block range is retried on the next tick
                self.logger.error(f"{self.label}: error polling for events: {e}")

    async def stop(self) -> None:
        """Stop the polling loop and wait for running handlers."""
        self.logger.info(f"{self.label}: stopping event polling")
        self.is_running = False
        if self._handlers:
            await asyncio.gather(*list(self._handlers), return_exceptions=True)

    def get_status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "last_processed_block": self.last_processed_block,
            "contract_address": self.contract_address,
            "event_names": self.event_names,
            "delivered": self.delivered,
            "in_flight": len(self._handlers),
        }
