import asyncio
import json

import pytest

from transport import Outbox


class RecordingSocket:
    def __init__(self, fail_on_send=False):
        self.sent = []
        self.close_frame = None
        self.fail_on_send = fail_on_send

    async def send_text(self, data):
        if self.fail_on_send:
            raise RuntimeError("socket gone")
        self.sent.append(json.loads(data))

    async def close(self, code=1000, reason=""):
        self.close_frame = (code, reason)


@pytest.mark.asyncio
async def test_drain_flushes_then_closes():
    outbox = Outbox(maxsize=8)
    socket = RecordingSocket()
    outbox.send({"type": "welcome"})
    outbox.send({"type": "pong"})
    outbox.close(4001, "bye")

    await asyncio.wait_for(outbox.drain(socket), timeout=1)

    assert socket.sent == [{"type": "welcome"}, {"type": "pong"}]
    assert socket.close_frame == (4001, "bye")
    assert outbox.closed


@pytest.mark.asyncio
async def test_send_after_close_is_dropped():
    outbox = Outbox()
    outbox.close()
    assert outbox.send({"type": "pong"}) is False


@pytest.mark.asyncio
async def test_close_is_idempotent():
    outbox = Outbox()
    socket = RecordingSocket()
    outbox.close(1000, "first")
    outbox.close(1001, "second")

    await asyncio.wait_for(outbox.drain(socket), timeout=1)

    assert socket.close_frame == (1000, "first")


@pytest.mark.asyncio
async def test_full_outbox_drops_but_still_closes():
    outbox = Outbox(maxsize=2)
    socket = RecordingSocket()
    assert outbox.send({"type": "a"}) is True
    assert outbox.send({"type": "b"}) is True
    assert outbox.send({"type": "c"}) is False

    outbox.close()
    await asyncio.wait_for(outbox.drain(socket), timeout=1)

    assert socket.sent == [{"type": "b"}]
    assert socket.close_frame == (1000, "")


@pytest.mark.asyncio
async def test_send_failure_stops_writer():
    outbox = Outbox()
    outbox.send({"type": "pong"})

    await asyncio.wait_for(outbox.drain(RecordingSocket(fail_on_send=True)), timeout=1)

    assert outbox.closed
    assert outbox.send({"type": "pong"}) is False
