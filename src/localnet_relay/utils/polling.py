"""
Cursor-driven polling for chains without log subscriptions.

A ``CursorPoller`` owns its cursor and exposes an idempotent ``tick``: fetch
activity newer than the cursor, dispatch it oldest first and advance the
cursor to the newest item even when dispatching part of the batch failed.
The sleep function is injected so tests can drive the loop deterministically.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from ..errors import ConfigurationError, ExecutionError, TransientChainError
from .retry import retry

C = TypeVar("C")
R = TypeVar("R")


@dataclass(slots=True)
class PollBatch(Generic[C, R]):
    """Records newer than the cursor, oldest first, and the cursor to advance to."""

    records: list[R] = field(default_factory=list)
    cursor: C | None = None


class CursorPoller(ABC, Generic[C, R]):
    """Fixed-interval poll loop with an owned cursor."""

    def __init__(
        self,
        name: str,
        interval: float,
        retry_count: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the poller.

        Args:
            name: Label used in logs and status output
            interval: Seconds between ticks
            retry_count: Retries for a failing fetch before the tick gives up
            sleep: Sleep function used between ticks and retries
        """
        if interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self.retry_count = retry_count
        self._sleep = sleep

        self.cursor: C | None = None
        self.is_running = False
        self.ticks = 0
        self.dispatched = 0
        self.dropped = 0

        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def initialize(self) -> None:
        """Set the starting cursor. Default: start from the chain's beginning."""

    @abstractmethod
    async def fetch(self, cursor: C | None) -> PollBatch[C, R]:
        """Fetch records newer than ``cursor``, oldest first."""

    @abstractmethod
    async def dispatch(self, record: R) -> None:
        """Decode and hand over one record."""

    async def tick(self) -> int:
        """
        Run one poll iteration.

        Returns:
            Number of records dispatched

        Raises:
            TransientChainError: If the fetch keeps failing after retries
            ExecutionError: If a handler re-raises (exit-on-error mode)
        """
        batch = await retry(
            lambda: self.fetch(self.cursor),
            retries=self.retry_count,
            sleep=self._sleep,
        )
        self.ticks += 1
        count = 0
        try:
            for record in batch.records:
                try:
                    await self.dispatch(record)
                    count += 1
                except ConfigurationError as e:
                    self.dropped += 1
                    self.logger.warning(f"{self.name}: dropping record: {e}")
        finally:
            if batch.cursor is not None:
                self.cursor = batch.cursor
            self.dispatched += count
        return count

    async def start_polling(self) -> None:
        """Poll until ``stop`` is called."""
        if self.is_running:
            self.logger.warning(f"{self.name}: polling already running")
            return

        self.is_running = True
        await self.initialize()
        self.logger.info(f"Starting {self.name} polling every {self.interval}s from cursor {self.cursor}")

        while self.is_running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                self.logger.info(f"{self.name}: polling cancelled")
                raise
            except ExecutionError:
                self.is_running = False
                raise
            except TransientChainError as e:
                self.logger.error(f"{self.name}: node unavailable: {e}")
            except Exception as e:
                self.logger.error(f"{self.name}: error in polling loop: {e}", exc_info=True)
            if self.is_running:
                await self._sleep(self.interval)

    async def stop(self) -> None:
        """Stop the polling loop after the current tick."""
        self.logger.info(f"Stopping {self.name} polling")
        self.is_running = False

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "is_running": self.is_running,
            "cursor": self.cursor,
            "ticks": self.ticks,
            "dispatched": self.dispatched,
            "dropped": self.dropped,
        }
