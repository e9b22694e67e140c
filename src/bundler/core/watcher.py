"""
Block watcher.

Turns the node's new block stream into callback invocations.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Set

import structlog

from bundler.node.interface import ChainReader

logger = structlog.get_logger(__name__)

BlockCallback = Callable[[int], Awaitable[None]]


class BlockWatcher:
    """
    Invokes a callback for every new block, in arrival order.

    Each invocation runs as its own task, so a slow callback may overlap
    the next one. Callers needing one cycle at a time must serialize
    inside the callback.
    """

    def __init__(self, node: ChainReader, callback: BlockCallback):
        self.node = node
        self.callback = callback
        self._stop_event = asyncio.Event()
        self._in_flight: Set[asyncio.Task] = set()
        self._last_block: Optional[int] = None

    @property
    def last_block(self) -> Optional[int]:
        return self._last_block

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request the watch loop to end."""
        if not self._stop_event.is_set():
            logger.info("block_watcher_stopping", last_block=self._last_block)
        self._stop_event.set()

    async def run(self) -> None:
        """
        Watch blocks until stop() is called.

        Returns after the subscription is closed and in-flight callbacks
        have finished. Errors from the subscription itself propagate.
        """
        self._stop_event.clear()
        consume = asyncio.create_task(self._consume())
        stopped = asyncio.create_task(self._stop_event.wait())

        try:
            await asyncio.wait({consume, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (consume, stopped):
                if not task.done():
                    task.cancel()
            await asyncio.gather(consume, stopped, return_exceptions=True)
            if self._in_flight:
                await asyncio.gather(*self._in_flight, return_exceptions=True)

        if not consume.cancelled() and consume.exception() is not None:
            raise consume.exception()

    async def _consume(self) -> None:
        """Read the block stream and dispatch callbacks."""
        blocks = self.node.subscribe_new_blocks()
        try:
            async for block_number in blocks:
                if self._stop_event.is_set():
                    break
                self._last_block = block_number
                logger.debug("new_block", block=block_number)
                task = asyncio.create_task(self.callback(block_number))
                self._in_flight.add(task)
                task.add_done_callback(self._on_callback_done)
        finally:
            await blocks.aclose()

    def _on_callback_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("block_callback_failed", error=str(error))
