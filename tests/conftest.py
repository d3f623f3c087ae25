import pytest

from presence import PresenceLifecycle
from registry import Role, RoomTable
from router import MessageRouter


class FakeOutbox:
    """Records what the room table would have written to a socket."""

    def __init__(self):
        self.messages = []
        self.close_frame = None

    @property
    def closed(self):
        return self.close_frame is not None

    def send(self, message):
        if self.closed:
            return False
        self.messages.append(message)
        return True

    def close(self, code=1000, reason=""):
        if self.close_frame is None:
            self.close_frame = (code, reason)

    def types(self):
        return [m["type"] for m in self.messages]

    def of_type(self, type_):
        return [m for m in self.messages if m["type"] == type_]

    def clear(self):
        self.messages.clear()


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def room_table(clock):
    return RoomTable(clock=clock)


@pytest.fixture
def presence(room_table):
    return PresenceLifecycle(room_table)


@pytest.fixture
def message_router(room_table):
    return MessageRouter(room_table)


@pytest.fixture
def connect(presence):
    """Join through the presence layer and return (peer, outbox)."""

    async def _connect(room_id, role=Role.VIEWER, username=None):
        outbox = FakeOutbox()
        peer = await presence.connect(room_id, role, username, outbox)
        return peer, outbox

    return _connect
