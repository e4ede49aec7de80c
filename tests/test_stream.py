import asyncio
import os

import pytest

from peer.controller import SessionController
from peer.core.events import EventBus, EventType
from peer.core.stream import StreamChannel
from peer.features.transfers import Artifact
from shared.protocol.constants import MAX_PAYLOAD_SIZE, STREAM_READER_LIMIT
from shared.protocol.errors import ChannelClosed, ChannelSendFailure


async def _wait_for(predicate, attempts=200, delay=0.01):
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(delay)
    return predicate()


@pytest.fixture
async def stream_pair():
    accepted = asyncio.get_running_loop().create_future()

    async def handle(reader, writer):
        accepted.set_result(StreamChannel(reader, writer))

    server = await asyncio.start_server(handle, "127.0.0.1", 0, limit=STREAM_READER_LIMIT)
    port = server.sockets[0].getsockname()[1]
    reader, writer = await asyncio.open_connection("127.0.0.1", port, limit=STREAM_READER_LIMIT)
    client = StreamChannel(reader, writer)
    remote = await asyncio.wait_for(accepted, timeout=5)
    yield client, remote
    await client.close()
    await remote.close()
    server.close()
    await server.wait_closed()


async def test_messages_round_trip_over_tcp(stream_pair):
    client, remote = stream_pair
    received = []

    async def on_message(message):
        received.append(message)

    remote.set_handlers(on_message=on_message)
    await client.send({"type": "file-chunk", "fileId": "X", "chunkIndex": 0, "data": b"\x00\xff" * 40000})
    await client.send({"type": "text", "content": "hi", "timestamp": 1})

    assert await _wait_for(lambda: len(received) == 2)
    assert received[0]["data"] == b"\x00\xff" * 40000
    assert received[1]["content"] == "hi"


async def test_oversized_message_is_a_send_failure(stream_pair):
    client, _ = stream_pair
    with pytest.raises(ChannelSendFailure):
        await client.send({"type": "text", "content": "x" * MAX_PAYLOAD_SIZE, "timestamp": 1})
    assert client.is_open


async def test_send_after_close_raises(stream_pair):
    client, _ = stream_pair
    await client.close()
    assert not client.is_open
    with pytest.raises(ChannelClosed):
        await client.send({"type": "heartbeat", "timestamp": 1})


async def test_remote_eof_fires_close_handler(stream_pair):
    client, remote = stream_pair
    closed = asyncio.Event()

    async def on_close():
        closed.set()

    remote.set_handlers(on_close=on_close)
    await client.close()

    await asyncio.wait_for(closed.wait(), timeout=5)
    assert not remote.is_open


async def test_controllers_exchange_a_file_over_tcp(stream_pair, config):
    client, remote = stream_pair
    sender_events, receiver_events = [], []
    sender_bus, receiver_bus = EventBus(), EventBus()
    sender_bus.subscribe(sender_events.append)
    receiver_bus.subscribe(receiver_events.append)
    sender = SessionController(config, sender_bus)
    receiver = SessionController(config, receiver_bus)
    await sender.attach(client, "initiator")
    await receiver.attach(remote, "responder")

    data = os.urandom(150000)
    await sender.send_file(Artifact("photo.jpg", data))

    def complete():
        return [event for event in receiver_events if event["type"] == str(EventType.TRANSFER_COMPLETE)]

    assert await _wait_for(lambda: complete())
    assert complete()[0]["artifact"].data == data

    await sender.disconnect()
    assert await _wait_for(lambda: not receiver.connected)
    notices = [event["message"] for event in receiver_events if event["type"] == str(EventType.NOTICE)]
    assert notices[-1] == "Peer disconnected"
