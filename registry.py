"""In-memory room table and session index.

All membership state lives in one RoomTable instance. Mutations are
coroutines serialized on a single asyncio.Lock; reads are plain methods
that never await, so they always see the table between two mutations.
Callers only ever get PeerInfo / RoomSnapshot copies back, never the
records the table mutates.
"""
import asyncio
import itertools
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from constants import CLOSE_IDLE, CLOSE_SHUTDOWN, DEFAULT_DISPLAY_NAME
from logging_config import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    HOST = "host"
    VIEWER = "viewer"


class HostExistsError(Exception):
    def __init__(self, room_id: str, host_id: str):
        super().__init__(f"Room {room_id} already has host {host_id}")
        self.room_id = room_id
        self.host_id = host_id


@dataclass
class Connection:
    room_id: str
    role: Role
    display_name: str = DEFAULT_DISPLAY_NAME
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    connected_at: datetime = field(default_factory=datetime.now)
    last_seen: float = field(default_factory=time.monotonic)
    join_order: int = 0


@dataclass(frozen=True)
class PeerInfo:
    id: str
    name: str
    role: Role
    room_id: str
    connected_at: datetime

    @classmethod
    def of(cls, connection: Connection) -> "PeerInfo":
        return cls(
            id=connection.id,
            name=connection.display_name,
            role=connection.role,
            room_id=connection.room_id,
            connected_at=connection.connected_at,
        )

    def as_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class RoomSnapshot:
    room_id: str
    host: Optional[PeerInfo]
    viewers: Tuple[PeerInfo, ...]

    @property
    def viewer_count(self) -> int:
        return len(self.viewers)

    @property
    def members(self) -> Tuple[PeerInfo, ...]:
        if self.host is None:
            return self.viewers
        return (self.host,) + self.viewers


@dataclass(frozen=True)
class LeaveResult:
    departed: PeerInfo
    room_id: str
    room_deleted: bool
    promoted: Optional[PeerInfo] = None


@dataclass
class _Session:
    connection: Connection
    outbox: object


@dataclass
class _Room:
    id: str
    host_id: Optional[str] = None
    viewer_ids: Set[str] = field(default_factory=set)

    def is_empty(self) -> bool:
        return self.host_id is None and not self.viewer_ids

    def member_ids(self) -> List[str]:
        ids = list(self.viewer_ids)
        if self.host_id is not None:
            ids.insert(0, self.host_id)
        return ids


def clean_display_name(display_name: Optional[str]) -> str:
    if display_name and display_name.strip():
        return display_name.strip()
    return DEFAULT_DISPLAY_NAME


class RoomTable:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._rooms: Dict[str, _Room] = {}
        self._sessions: Dict[str, _Session] = {}
        self._lock = asyncio.Lock()
        self._join_counter = itertools.count()

    # -- mutations ---------------------------------------------------------

    async def join(self, room_id: str, role: Role, display_name: Optional[str], outbox) -> PeerInfo:
        """Register a new connection in ``room_id``.

        Raises HostExistsError without touching the table when a host is
        requested for a room that already has one.
        """
        async with self._lock:
            room = self._rooms.get(room_id)
            if role is Role.HOST and room is not None and room.host_id is not None:
                raise HostExistsError(room_id, room.host_id)

            connection = Connection(
                room_id=room_id,
                role=role,
                display_name=clean_display_name(display_name),
                last_seen=self._clock(),
                join_order=next(self._join_counter),
            )
            if room is None:
                room = _Room(id=room_id)
                self._rooms[room_id] = room
                logger.info(f"Room {room_id} created")

            if role is Role.HOST:
                room.host_id = connection.id
            else:
                room.viewer_ids.add(connection.id)
            self._sessions[connection.id] = _Session(connection=connection, outbox=outbox)

            logger.info(
                f"{role.value.capitalize()} {connection.id} ({connection.display_name}) joined room {room_id} "
                f"(viewers: {len(room.viewer_ids)})"
            )
            return PeerInfo.of(connection)

    async def leave(self, connection_id: str, promote_viewer: bool = False) -> Optional[LeaveResult]:
        """Remove a connection. Unknown ids return None, so repeated calls are no-ops."""
        async with self._lock:
            session = self._sessions.pop(connection_id, None)
            if session is None:
                logger.debug(f"Leave for unknown connection {connection_id}")
                return None

            connection = session.connection
            room = self._rooms.get(connection.room_id)
            promoted = None
            if room is not None:
                if room.host_id == connection_id:
                    room.host_id = None
                    if promote_viewer and room.viewer_ids:
                        promoted = self._promote(room)
                else:
                    room.viewer_ids.discard(connection_id)

            room_deleted = room is None
            if room is not None and room.is_empty():
                del self._rooms[room.id]
                room_deleted = True
                logger.info(f"Room {room.id} is empty, removed")

            logger.info(f"{connection.role.value.capitalize()} {connection_id} left room {connection.room_id}")
            return LeaveResult(
                departed=PeerInfo.of(connection),
                room_id=connection.room_id,
                room_deleted=room_deleted,
                promoted=promoted,
            )

    def _promote(self, room: _Room) -> PeerInfo:
        candidates = [self._sessions[vid].connection for vid in room.viewer_ids]
        successor = min(candidates, key=lambda c: c.join_order)
        room.viewer_ids.discard(successor.id)
        room.host_id = successor.id
        successor.role = Role.HOST
        logger.info(f"Viewer {successor.id} promoted to host of room {room.id}")
        return PeerInfo.of(successor)

    async def evict_room(self, room_id: str, cutoff: Optional[float] = None) -> Optional[List[PeerInfo]]:
        """Drop a whole room and close its members' outboxes.

        A room that is already gone returns an empty list. When ``cutoff`` is
        given and some member has been seen since then, the room is kept and
        None is returned.
        """
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return []
            members = [self._sessions[cid] for cid in room.member_ids() if cid in self._sessions]
            if cutoff is not None and any(s.connection.last_seen >= cutoff for s in members):
                return None

            del self._rooms[room_id]
            evicted = []
            for session in members:
                del self._sessions[session.connection.id]
                session.outbox.close(CLOSE_IDLE, "Room idle timeout")
                evicted.append(PeerInfo.of(session.connection))
            logger.info(f"Evicted room {room_id} with {len(evicted)} connection(s)")
            return evicted

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.outbox.close(CLOSE_SHUTDOWN, "Server shutting down")
        logger.info(f"Closed {len(self._sessions)} connection(s) across {len(self._rooms)} room(s)")
        self._sessions.clear()
        self._rooms.clear()

    # -- reads -------------------------------------------------------------

    def lookup(self, room_id: str) -> Optional[RoomSnapshot]:
        room = self._rooms.get(room_id)
        if room is None:
            return None
        return self._snapshot(room)

    def rooms(self) -> List[RoomSnapshot]:
        return [self._snapshot(room) for room in self._rooms.values()]

    def _snapshot(self, room: _Room) -> RoomSnapshot:
        host = None
        if room.host_id is not None:
            host = PeerInfo.of(self._sessions[room.host_id].connection)
        viewers = sorted(
            (self._sessions[vid].connection for vid in room.viewer_ids),
            key=lambda c: c.join_order,
        )
        return RoomSnapshot(
            room_id=room.id,
            host=host,
            viewers=tuple(PeerInfo.of(c) for c in viewers),
        )

    def find_connection(self, connection_id: str) -> Optional[Tuple[str, Role]]:
        session = self._sessions.get(connection_id)
        if session is None:
            return None
        return session.connection.room_id, session.connection.role

    def describe(self, connection_id: str) -> Optional[PeerInfo]:
        session = self._sessions.get(connection_id)
        if session is None:
            return None
        return PeerInfo.of(session.connection)

    def touch(self, connection_id: str) -> bool:
        session = self._sessions.get(connection_id)
        if session is None:
            return False
        session.connection.last_seen = self._clock()
        return True

    def deliver(self, connection_id: str, message: dict) -> bool:
        session = self._sessions.get(connection_id)
        if session is None:
            logger.debug(f"No live connection {connection_id} for {message.get('type')}")
            return False
        return session.outbox.send(message)

    def idle_rooms(self, cutoff: float) -> List[str]:
        idle = []
        for room_id, room in self._rooms.items():
            seen = [self._sessions[cid].connection.last_seen for cid in room.member_ids() if cid in self._sessions]
            if not seen or max(seen) < cutoff:
                idle.append(room_id)
        return idle

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def connection_count(self) -> int:
        return len(self._sessions)
