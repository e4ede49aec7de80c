from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Optional

from shared.protocol.constants import DEFAULT_TRANSFER_CHECK_INTERVAL

if TYPE_CHECKING:
    from peer.features.transfers import TransferTracker

logger = logging.getLogger(__name__)


class TimeoutSweeper:
    """Periodically drops inbound transfers that stopped making progress."""

    def __init__(self, tracker: "TransferTracker", interval: float = DEFAULT_TRANSFER_CHECK_INTERVAL) -> None:
        self.tracker = tracker
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="transfer-timeout-sweeper")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                expired = self.tracker.sweep_expired()
                if expired:
                    logger.info("Dropped %s stalled transfers", len(expired))
            except Exception as exc:
                logger.exception("Transfer sweep failed: %s", exc)


__all__ = ["TimeoutSweeper"]
