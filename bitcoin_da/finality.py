"""Polling for finalized and not-yet-produced blocks.

Both loops wait on the remote chain without an upper bound. Every wait goes
through an injectable :class:`Clock` and observes an optional
:class:`CancelToken`, so a shutting-down service (or a test) can stop them
without waiting for the node.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional, Protocol

from .model import Block
from .node import NodeClient
from .rpc_client import NodeNotFoundError

logger = logging.getLogger(__name__)

FINALITY_DEPTH = 4
POLLING_INTERVAL_SECONDS = 10.0


class OperationCancelled(RuntimeError):
    """Raised when a polling wait is cancelled."""


class CancelToken:
    """Thread-safe cancellation flag shared between a caller and a poller."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Block for up to ``timeout`` seconds; return True if cancelled."""

        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled("Operation cancelled")


class Clock(Protocol):
    def sleep(self, seconds: float, cancel: Optional[CancelToken] = None) -> None:
        ...


class SystemClock:
    """Real-time clock whose sleeps wake up early on cancellation."""

    def sleep(self, seconds: float, cancel: Optional[CancelToken] = None) -> None:
        if cancel is None:
            time.sleep(seconds)
            return
        if cancel.wait(seconds):
            raise OperationCancelled("Operation cancelled while waiting")


class FinalityTracker:
    """Fetch blocks once they exist, or once they are buried deep enough."""

    def __init__(
        self,
        node: NodeClient,
        rollup_name: str,
        *,
        finality_depth: int = FINALITY_DEPTH,
        polling_interval: float = POLLING_INTERVAL_SECONDS,
        clock: Optional[Clock] = None,
    ) -> None:
        self.node = node
        self.rollup_name = rollup_name
        self.finality_depth = finality_depth
        self.polling_interval = polling_interval
        self.clock = clock or SystemClock()

    def _sleep(self, cancel: Optional[CancelToken]) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled()
        self.clock.sleep(self.polling_interval, cancel)

    def get_finalized_at(self, height: int, cancel: Optional[CancelToken] = None) -> Block:
        """Return the block at ``height`` once ``finality_depth`` blocks sit on top of it."""

        logger.info("Getting finalized block at height %d", height)
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            block_count = self.node.get_block_count()
            if block_count >= height + self.finality_depth:
                break
            logger.info(
                "Block %d not finalized (tip %d, need %d), waiting",
                height,
                block_count,
                height + self.finality_depth,
            )
            self._sleep(cancel)

        block_hash = self.node.get_block_hash(height)
        return self._fetch(block_hash, height)

    def get_block_at(self, height: int, cancel: Optional[CancelToken] = None) -> Block:
        """Return the block at ``height``, waiting until it has been produced.

        Only :class:`NodeNotFoundError` is retried; any other error is raised
        unchanged on the first occurrence.
        """

        logger.info("Getting block at height %d", height)
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                block_hash = self.node.get_block_hash(height)
            except NodeNotFoundError:
                logger.info("Block %d not found, waiting", height)
                self._sleep(cancel)
                continue
            break
        return self._fetch(block_hash, height)

    def _fetch(self, block_hash: str, height: int) -> Block:
        block = self.node.get_block(block_hash, self.rollup_name)
        block.height = height
        return block
