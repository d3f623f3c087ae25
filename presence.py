from typing import Optional

from constants import CLOSE_HOST_EXISTS, CLOSE_ROOM_REQUIRED
from logging_config import get_logger
from registry import HostExistsError, LeaveResult, PeerInfo, Role, RoomTable

logger = get_logger(__name__)


class AdmissionError(Exception):
    """A connection attempt that must be closed before it enters the table."""

    def __init__(self, code: int, reason: str):
        super().__init__(reason)
        self.code = code
        self.reason = reason


def parse_role(value: Optional[str]) -> Role:
    if not value:
        return Role.VIEWER
    try:
        return Role(value.strip().lower())
    except ValueError:
        logger.warning(f"Unrecognized role {value!r}, joining as viewer")
        return Role.VIEWER


class PresenceLifecycle:
    """Join and leave handling plus the notifications that go with them.

    Every notification is enqueued right after the awaited table mutation,
    with no await in between, so peers see events in mutation order.
    """

    def __init__(self, room_table: RoomTable, host_failover: bool = False):
        self.room_table = room_table
        self.host_failover = host_failover

    async def connect(self, room_id: Optional[str], role: Role, username: Optional[str], outbox) -> PeerInfo:
        if not room_id or not room_id.strip():
            logger.info("Connection rejected: room id missing")
            raise AdmissionError(CLOSE_ROOM_REQUIRED, "Room ID required")
        room_id = room_id.strip()

        try:
            peer = await self.room_table.join(room_id, role, username, outbox)
        except HostExistsError as e:
            logger.info(f"Connection rejected: room {room_id} already has host {e.host_id}")
            raise AdmissionError(CLOSE_HOST_EXISTS, "Host already exists for this room") from e

        deliver = self.room_table.deliver
        deliver(peer.id, {
            "type": "welcome",
            "userId": peer.id,
            "username": peer.name,
            "room": room_id,
            "role": peer.role.value,
        })

        snapshot = self.room_table.lookup(room_id)
        if peer.role is Role.VIEWER:
            if snapshot.host is not None:
                deliver(peer.id, {"type": "host-info", "hostId": snapshot.host.id, "hostName": snapshot.host.name})
                deliver(snapshot.host.id, {"type": "viewer-joined", "viewerId": peer.id, "viewerName": peer.name})
        elif snapshot.viewers:
            self._announce_host(peer, snapshot.viewers)
        return peer

    async def disconnect(self, connection_id: str) -> Optional[LeaveResult]:
        result = await self.room_table.leave(connection_id, promote_viewer=self.host_failover)
        if result is None:
            return None
        if result.room_deleted:
            return result

        deliver = self.room_table.deliver
        snapshot = self.room_table.lookup(result.room_id)
        if result.departed.role is Role.VIEWER:
            if snapshot.host is not None:
                deliver(snapshot.host.id, {"type": "viewer-left", "viewerId": result.departed.id})
            return result

        for viewer in snapshot.viewers:
            deliver(viewer.id, {"type": "host-left"})

        if result.promoted is not None:
            promoted = result.promoted
            deliver(promoted.id, {
                "type": "role-changed",
                "userId": promoted.id,
                "role": promoted.role.value,
                "room": result.room_id,
            })
            self._announce_host(promoted, snapshot.viewers)
        return result

    def _announce_host(self, host: PeerInfo, viewers) -> None:
        self.room_table.deliver(host.id, {"type": "viewers-list", "viewers": [v.as_dict() for v in viewers]})
        for viewer in viewers:
            self.room_table.deliver(viewer.id, {"type": "host-joined", "hostId": host.id, "hostName": host.name})
