from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Optional

from shared.protocol.constants import DEFAULT_HEARTBEAT_INTERVAL, DEFAULT_HEARTBEAT_TIMEOUT
from shared.protocol.messages import HeartbeatMsg

from .channel import Channel

logger = logging.getLogger(__name__)

DeadCallback = Callable[[str], Awaitable[None]]


class HeartbeatMonitor:
    """
    Sends periodic liveness pings and watches for a dead session.

    Silence alone is only advisory: the session is declared dead when nothing
    has arrived for ``timeout`` seconds *and* the channel itself reports that
    it is no longer open. Backgrounded clients get their timers throttled, so
    a late tick must not tear down a link the transport still considers up.
    """

    def __init__(
        self,
        on_dead: DeadCallback,
        interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        timeout: float = DEFAULT_HEARTBEAT_TIMEOUT,
    ) -> None:
        self.on_dead = on_dead
        self.interval = interval
        self.timeout = timeout
        self.channel: Optional[Channel] = None
        self.last_seen: float = 0.0
        self._dead = False
        self._ping_task: Optional[asyncio.Task] = None
        self._check_task: Optional[asyncio.Task] = None
        self._dead_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._ping_task is not None or self._check_task is not None

    @property
    def dead(self) -> bool:
        return self._dead

    def start(self, channel: Channel) -> None:
        for task in (self._ping_task, self._check_task):
            if task:
                task.cancel()
        self.channel = channel
        self._dead = False
        self.touch()
        self._ping_task = asyncio.create_task(self._ping_loop(), name="heartbeat-ping")
        self._check_task = asyncio.create_task(self._check_loop(), name="heartbeat-check")
        logger.debug("Heartbeat started (interval=%ss, timeout=%ss)", self.interval, self.timeout)

    async def stop(self) -> None:
        tasks = [task for task in (self._ping_task, self._check_task) if task]
        self._ping_task = None
        self._check_task = None
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        for task in tasks:
            if task is not current:
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    def touch(self) -> None:
        self.last_seen = time.time()

    async def ping(self) -> bool:
        channel = self.channel
        if channel is None or not channel.is_open:
            return False
        try:
            await channel.send(HeartbeatMsg().to_wire())
            return True
        except Exception as exc:
            logger.warning("Heartbeat failed: %s", exc)
            return False

    def check(self, now: Optional[float] = None) -> bool:
        """Run one liveness check; True once the session has been declared dead."""
        if self._dead or self.channel is None:
            return self._dead
        now = time.time() if now is None else now
        elapsed = now - self.last_seen
        if elapsed <= self.timeout:
            return False
        if self.channel.is_open:
            logger.warning("No traffic for %.1fs but channel still reports open", elapsed)
            return False
        self._declare_dead(f"no traffic for {elapsed:.1f}s and channel closed")
        return True

    async def probe(self) -> bool:
        """
        Fast path for a client coming back to the foreground: one immediate
        ping, and a failed send or closed channel is fatal right away.
        """
        channel = self.channel
        if channel is None or self._dead:
            return False
        if not channel.is_open:
            await self._declare_dead("channel closed while in background")
            return False
        try:
            await channel.send(HeartbeatMsg().to_wire())
        except Exception as exc:
            logger.warning("Liveness probe failed: %s", exc)
            await self._declare_dead(f"liveness probe failed: {exc}")
            return False
        return True

    async def wait_dead(self) -> None:
        if self._dead_task:
            await self._dead_task

    def _declare_dead(self, reason: str) -> asyncio.Task:
        if self._dead and self._dead_task:
            return self._dead_task
        self._dead = True
        logger.warning("Session declared dead: %s", reason)
        # Own task: the teardown it triggers stops this monitor's loops.
        self._dead_task = asyncio.create_task(self.on_dead(reason), name="heartbeat-dead")
        return self._dead_task

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.ping()

    async def _check_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self.check():
                break


__all__ = ["HeartbeatMonitor", "DeadCallback"]
