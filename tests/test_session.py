import asyncio
import os

import pytest

from peer.controller import SessionController
from peer.core.events import EventType
from peer.core.session import Role
from peer.features.transfers import Artifact, TransferState
from shared.protocol import split
from shared.protocol.errors import (
    ChannelClosed,
    ChannelSendFailure,
    EmptyContentError,
    NotConnectedError,
    PeerUnreachable,
)


def _statuses(recorder):
    return [event["status"] for event in recorder.of(EventType.STATUS)]


def _notices(recorder):
    return [(event["severity"], event["message"]) for event in recorder.of(EventType.NOTICE)]


async def test_attach_reports_connected(controller, channel, recorder):
    session = await controller.attach(channel, "responder")

    assert controller.connected
    assert session.role == Role.RESPONDER
    assert session.age >= 0
    assert _statuses(recorder) == ["connected"]
    assert ("info", "Connected") in _notices(recorder)
    assert controller.heartbeat.running
    assert controller.sweeper.running


async def test_empty_text_is_rejected_before_connection_check(controller, channel):
    with pytest.raises(EmptyContentError):
        await controller.send_text("   ")

    await controller.attach(channel)
    with pytest.raises(EmptyContentError):
        await controller.send_text("\n\t ")
    assert channel.sent == []


async def test_text_without_connection_is_refused(controller):
    with pytest.raises(NotConnectedError):
        await controller.send_text("hello")


async def test_send_text_trims_content(controller, channel, recorder):
    await controller.attach(channel)
    message = await controller.send_text("  hello there \n")

    assert message.content == "hello there"
    (sent,) = channel.sent
    assert sent["type"] == "text"
    assert sent["content"] == "hello there"
    assert ("info", "Text sent") in _notices(recorder)


async def test_text_send_failure_keeps_session(controller, channel, recorder):
    await controller.attach(channel)
    channel.fail_on = lambda message: message["type"] == "text"

    with pytest.raises(ChannelSendFailure):
        await controller.send_text("hello")
    assert controller.connected
    assert ("error", "Sending text failed") in _notices(recorder)


async def test_file_without_connection_is_refused(controller, recorder):
    with pytest.raises(NotConnectedError):
        await controller.send_file(Artifact("a.txt", b"abc"))
    assert recorder.of(EventType.PROGRESS) == []


async def test_send_file_message_sequence(controller, channel, recorder):
    await controller.attach(channel)
    data = os.urandom(150000)

    transfer = await controller.send_file(Artifact("photo.jpg", data, "image/jpeg"))

    assert channel.kinds() == ["file-meta", "file-chunk", "file-chunk", "file-chunk", "file-complete"]
    meta = channel.sent[0]
    assert meta["fileId"] == transfer.file_id
    assert meta["size"] == 150000
    assert meta["totalChunks"] == 3
    assert meta["fileType"] == "image/jpeg"
    assert [message["chunkIndex"] for message in channel.sent[1:4]] == [0, 1, 2]
    assert b"".join(message["data"] for message in channel.sent[1:4]) == data

    assert transfer.state == TransferState.COMPLETED
    progress = [event["progress"] for event in recorder.of(EventType.PROGRESS)]
    assert progress == sorted(progress)
    assert progress[-1] == 100.0
    assert len(recorder.of(EventType.TRANSFER_COMPLETE)) == 1


async def test_send_empty_file(controller, channel):
    await controller.attach(channel)
    transfer = await controller.send_file(Artifact("empty.txt", b""))

    assert channel.kinds() == ["file-meta", "file-complete"]
    assert channel.sent[0]["totalChunks"] == 0
    assert transfer.state == TransferState.COMPLETED


async def test_chunk_failure_aborts_transfer_but_keeps_session(controller, channel, recorder):
    await controller.attach(channel)
    channel.fail_on = lambda message: message.get("chunkIndex") == 1

    transfer = await controller.send_file(Artifact("photo.jpg", os.urandom(150000)))

    assert transfer.state == TransferState.FAILED
    assert channel.kinds() == ["file-meta", "file-chunk"]
    assert len(recorder.of(EventType.TRANSFER_FAILED)) == 1
    assert recorder.of(EventType.TRANSFER_COMPLETE) == []
    assert controller.connected


async def test_concurrent_sends_do_not_interleave(controller, channel):
    await controller.attach(channel)
    controller.files.chunk_size = 100
    first, second = await asyncio.gather(
        controller.send_file(Artifact("a.bin", os.urandom(1000))),
        controller.send_file(Artifact("b.bin", os.urandom(1000))),
    )

    ids = [message["fileId"] for message in channel.sent]
    boundary = ids.index(second.file_id)
    assert set(ids[:boundary]) == {first.file_id}
    assert set(ids[boundary:]) == {second.file_id}


async def test_send_files_batches_in_order(controller, channel):
    await controller.attach(channel)
    transfers = await controller.send_files([Artifact("a.txt", b"a"), Artifact("b.txt", b"b")])

    assert [transfer.name for transfer in transfers] == ["a.txt", "b.txt"]
    assert channel.kinds().count("file-complete") == 2


async def test_out_of_order_chunks_reassemble(controller, channel, recorder):
    await controller.attach(channel)
    data = os.urandom(150000)
    chunks = list(split(data, 65536))

    await channel.deliver(
        {"type": "file-meta", "fileId": "X", "name": "photo.jpg", "size": 150000, "fileType": "image/jpeg", "totalChunks": 3}
    )
    for index in (2, 0, 1):
        await channel.deliver({"type": "file-chunk", "fileId": "X", "chunkIndex": index, "data": chunks[index][1]})
    assert recorder.of(EventType.TRANSFER_COMPLETE) == []

    await channel.deliver({"type": "file-complete", "fileId": "X"})
    (done,) = recorder.of(EventType.TRANSFER_COMPLETE)
    assert done["artifact"].data == data
    assert ("info", 'File "photo.jpg" received') in _notices(recorder)


async def test_received_file_can_be_saved(controller, channel, tmp_path):
    await controller.attach(channel)
    await channel.deliver({"type": "file-meta", "fileId": "X", "name": "a.txt", "size": 3, "totalChunks": 1})
    await channel.deliver({"type": "file-chunk", "fileId": "X", "chunkIndex": 0, "data": b"abc"})
    await channel.deliver({"type": "file-complete", "fileId": "X"})

    path = controller.files.save_received("X", tmp_path)
    assert path.read_bytes() == b"abc"
    assert controller.tracker.history["X"].downloaded
    with pytest.raises(KeyError):
        controller.files.save_received("missing", tmp_path)


async def test_incoming_text_is_surfaced(controller, channel, recorder):
    await controller.attach(channel)
    await channel.deliver({"type": "text", "content": "hi", "timestamp": 1700000000000})

    (text,) = recorder.of(EventType.TEXT)
    assert text["content"] == "hi"
    assert text["timestamp"] == 1700000000000
    assert ("info", "New text received") in _notices(recorder)


async def test_unknown_and_invalid_messages_are_dropped(controller, channel, recorder):
    await controller.attach(channel)
    before = len(recorder.events)

    await channel.deliver({"type": "presence", "user": "x"})
    await channel.deliver({"type": "file-chunk", "fileId": "X"})
    await channel.deliver({"type": "text", "content": 42, "timestamp": 1})

    assert len(recorder.events) == before
    assert controller.connected


async def test_any_message_refreshes_liveness(controller, channel):
    await controller.attach(channel)
    controller.heartbeat.last_seen = 0.0
    await channel.deliver({"type": "presence"})
    assert controller.heartbeat.last_seen > 0


async def test_heartbeat_only_liveness_policy(config, bus, channel):
    ctrl = SessionController({**config, "liveness_on_any_message": False}, bus)
    await ctrl.attach(channel)
    try:
        ctrl.heartbeat.last_seen = 0.0
        await channel.deliver({"type": "text", "content": "hi", "timestamp": 1})
        assert ctrl.heartbeat.last_seen == 0.0

        await channel.deliver({"type": "heartbeat", "timestamp": 1})
        assert ctrl.heartbeat.last_seen > 0
    finally:
        await ctrl.disconnect()


async def test_disconnect_discards_transfers_quietly(controller, channel, recorder):
    await controller.attach(channel)
    await channel.deliver({"type": "file-meta", "fileId": "X", "name": "a.bin", "size": 10, "totalChunks": 1})

    await controller.disconnect()
    await controller.disconnect()

    assert not controller.connected
    assert channel.close_calls == 1
    assert controller.tracker.inbound == {}
    assert _statuses(recorder) == ["connected", "disconnected"]
    assert recorder.of(EventType.TRANSFER_FAILED) == []
    assert recorder.of(EventType.TRANSFER_TIMEOUT) == []
    assert _notices(recorder)[-1] == ("info", "Disconnected")
    assert not controller.heartbeat.running
    assert not controller.sweeper.running

    before = len(recorder.events)
    await channel.deliver({"type": "file-chunk", "fileId": "X", "chunkIndex": 0, "data": b"x"})
    assert len(recorder.events) == before


async def test_remote_close_tears_down(controller, channel, recorder):
    await controller.attach(channel)
    await channel.remote_close()

    assert not controller.connected
    assert _statuses(recorder) == ["connected", "disconnected"]
    assert _notices(recorder)[-1] == ("error", "Peer disconnected")


async def test_heartbeat_death_tears_down_once(controller, channel, recorder):
    await controller.attach(channel)
    channel.open = False
    last_seen = controller.heartbeat.last_seen

    assert controller.heartbeat.check(now=last_seen + 16) is False  # still inside the 120s window
    assert controller.heartbeat.check(now=last_seen + 121) is True
    controller.heartbeat.check(now=last_seen + 500)
    await controller.heartbeat.wait_dead()

    assert _statuses(recorder) == ["connected", "disconnected"]
    assert _notices(recorder).count(("error", "Connection lost")) == 1
    assert controller.session is None


async def test_visibility_probe_failure_disconnects(controller, channel, recorder):
    await controller.attach(channel)
    channel.fail_on = lambda message: True

    assert await controller.on_visibility_change(True) is False
    assert not controller.connected
    assert _statuses(recorder) == ["connected", "disconnected"]


async def test_visibility_probe_success(controller, channel):
    await controller.attach(channel)
    assert await controller.on_visibility_change(False) is True
    assert channel.sent == []
    assert await controller.on_visibility_change(True) is True
    assert channel.kinds() == ["heartbeat"]


async def test_non_fatal_channel_error_keeps_session(controller, channel, recorder):
    await controller.attach(channel)
    await channel.remote_error(RuntimeError("glitch"))

    assert controller.connected
    assert _notices(recorder)[-1] == ("error", "Connection error")


async def test_unreachable_peer_is_explained(controller, channel, recorder):
    await controller.attach(channel)
    await channel.remote_error(PeerUnreachable("gone", kind="peer-unavailable"))

    assert not controller.connected
    assert _notices(recorder)[-1] == ("error", "Room does not exist or has been closed")


async def test_attach_replaces_previous_session(controller, channel, recorder):
    first = await controller.attach(channel)
    replacement = type(channel)()
    second = await controller.attach(replacement)

    assert channel.close_calls == 1
    assert not first.active
    assert controller.session is second
    assert _statuses(recorder) == ["connected", "disconnected", "connected"]


async def test_sweeper_expires_stalled_inbound(config, bus, channel, recorder):
    ctrl = SessionController({**config, "transfer_timeout": 0.02, "transfer_check_interval": 0.01}, bus)
    await ctrl.attach(channel)
    try:
        await channel.deliver({"type": "file-meta", "fileId": "X", "name": "a.bin", "size": 10, "totalChunks": 1})
        for _ in range(100):
            if recorder.of(EventType.TRANSFER_TIMEOUT):
                break
            await asyncio.sleep(0.01)

        assert len(recorder.of(EventType.TRANSFER_TIMEOUT)) == 1
        assert ctrl.tracker.inbound == {}
        assert ctrl.connected
    finally:
        await ctrl.disconnect()


async def test_channel_closed_during_file_send_ends_session(controller, channel, recorder):
    await controller.attach(channel)
    channel.fail_with = ChannelClosed
    channel.fail_on = lambda message: message.get("chunkIndex") == 1

    with pytest.raises(ChannelClosed):
        await controller.send_file(Artifact("photo.jpg", os.urandom(150000)))

    assert controller.session is None
    assert not controller.connected
    assert channel.close_calls == 1
    assert controller.tracker.outbound == {}
    assert len(recorder.of(EventType.TRANSFER_FAILED)) == 1
    assert _statuses(recorder) == ["connected", "disconnected"]
    assert _notices(recorder)[-1] == ("error", "Connection lost")


async def test_repeated_file_meta_keeps_progress(controller, channel, recorder):
    await controller.attach(channel)
    meta = {"type": "file-meta", "fileId": "X", "name": "photo.jpg", "size": 150000, "totalChunks": 3}
    await channel.deliver(meta)
    await channel.deliver({"type": "file-chunk", "fileId": "X", "chunkIndex": 0, "data": b"a" * 65536})
    first = controller.tracker.inbound["X"]

    await channel.deliver(meta)

    assert controller.tracker.inbound["X"] is first
    assert first.received_bytes == 65536
    await channel.deliver({"type": "file-chunk", "fileId": "X", "chunkIndex": 1, "data": b"b" * 65536})
    progress = [event["progress"] for event in recorder.of(EventType.PROGRESS)]
    assert progress == sorted(progress)


async def test_inconsistent_file_meta_is_dropped(controller, channel, recorder):
    await controller.attach(channel)
    before = len(recorder.events)

    await channel.deliver({"type": "file-meta", "fileId": "X", "name": "a.bin", "size": 10, "totalChunks": 50_000_000})
    await channel.deliver({"type": "file-chunk", "fileId": "X", "chunkIndex": 0, "data": b"z" * 10})

    assert "X" not in controller.tracker.inbound
    assert len(recorder.events) == before
    assert controller.connected


async def test_received_file_is_saved_once(controller, channel, tmp_path):
    await controller.attach(channel)
    await channel.deliver({"type": "file-meta", "fileId": "X", "name": "a.txt", "size": 3, "totalChunks": 1})
    await channel.deliver({"type": "file-chunk", "fileId": "X", "chunkIndex": 0, "data": b"abc"})
    await channel.deliver({"type": "file-complete", "fileId": "X"})

    controller.files.save_received("X", tmp_path)
    assert controller.tracker.history["X"].artifact is None
    with pytest.raises(KeyError):
        controller.files.save_received("X", tmp_path / "again")
