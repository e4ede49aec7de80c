from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Type

import pytest

from peer.config import DEFAULT_CONFIG
from peer.controller import SessionController
from peer.core.channel import Channel
from peer.core.events import EventBus
from shared.protocol.errors import ChannelClosed, ChannelSendFailure


class FakeChannel(Channel):
    """Records outbound messages; inbound traffic is pushed in by the test."""

    def __init__(self) -> None:
        super().__init__()
        self.sent: List[Dict[str, Any]] = []
        self.open = True
        self.fail_on: Optional[Callable[[Dict[str, Any]], bool]] = None
        self.fail_with: Type[Exception] = ChannelSendFailure
        self.close_calls = 0

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, message: Dict[str, Any]) -> None:
        if not self.open:
            raise ChannelClosed()
        if self.fail_on and self.fail_on(message):
            raise self.fail_with("simulated send failure")
        self.sent.append(message)
        await asyncio.sleep(0)

    async def close(self) -> None:
        self.close_calls += 1
        self.open = False

    async def deliver(self, message: Dict[str, Any]) -> None:
        await self._dispatch(message)

    async def remote_close(self) -> None:
        self.open = False
        await self._notify_closed()

    async def remote_error(self, error: Exception) -> None:
        await self._notify_error(error)

    def kinds(self) -> List[str]:
        return [message["type"] for message in self.sent]


class Recorder:
    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    def __call__(self, payload: Dict[str, Any]) -> None:
        self.events.append(payload)

    def of(self, kind) -> List[Dict[str, Any]]:
        return [event for event in self.events if event["type"] == str(kind)]


@pytest.fixture
def config() -> Dict[str, Any]:
    # Timers far in the future so only the test drives heartbeat/sweep checks.
    return {
        **DEFAULT_CONFIG,
        "heartbeat_interval": 60.0,
        "heartbeat_timeout": 120.0,
        "transfer_check_interval": 60.0,
        "send_yield_delay": 0.0,
    }


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def bus(recorder: Recorder) -> EventBus:
    events = EventBus()
    events.subscribe(recorder)
    return events


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
async def controller(config, bus):
    ctrl = SessionController(config, bus)
    yield ctrl
    await ctrl.disconnect()
