"""
Startup event queue.

Events observed while the asset registry is still bootstrapping are held here
and replayed in arrival order, one at a time, once bootstrap completes.
Events that arrive during the replay join the back of the queue, so nothing
observed later can overtake a buffered event.
"""

import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class PendingEvent:
    handler: Handler
    args: tuple[Any, ...]


class StartupEventQueue:
    """Buffers handler invocations until the registry is ready."""

    def __init__(self, propagate_errors: bool = False):
        """
        Initialize the queue.

        Args:
            propagate_errors: Re-raise handler errors during replay instead of
                logging them (exit-on-error mode)
        """
        self._pending: deque[PendingEvent] = deque()
        self._ready = False
        self._draining = False
        self.propagate_errors = propagate_errors
        self.replayed = 0

    @property
    def ready(self) -> bool:
        return self._ready

    def __len__(self) -> int:
        return len(self._pending)

    async def enqueue(self, handler: Handler, *args: Any) -> Any:
        """
        Run ``handler(*args)`` now if bootstrap is done, otherwise buffer it.

        Returns:
            The handler result, or None when the call was buffered
        """
        if self._ready:
            return await handler(*args)
        self._pending.append(PendingEvent(handler, args))
        logger.info(f"Registry not ready, queued event ({len(self._pending)} pending)")
        return None

    async def drain(self) -> int:
        """
        Replay buffered events in FIFO order and open the queue.

        Returns:
            Number of events replayed
        """
        if self._ready or self._draining:
            return 0

        self._draining = True
        count = 0
        try:
            while self._pending:
                item = self._pending.popleft()
                count += 1
                try:
                    await item.handler(*item.args)
                except Exception as e:
                    if self.propagate_errors:
                        raise
                    logger.error(f"Error replaying queued event: {e}", exc_info=True)
            # No await between the empty check and this flag
            self._ready = True
        finally:
            self._draining = False
            self.replayed += count

        logger.info(f"Replayed {count} queued events, relaying live")
        return count
