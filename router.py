from typing import Optional, Union

from logging_config import get_logger
from registry import PeerInfo, Role, RoomTable
from schemas.messages import MalformedMessage, UnknownMessageType, load_frame, validate_message

logger = get_logger(__name__)


class MessageRouter:
    """Routes decoded inbound messages to their recipients.

    Routing misses (target gone, no host, wrong role) are normal operation
    and drop the message quietly. Unknown message types get an ``error``
    reply; malformed frames are discarded. Neither closes the connection.
    """

    def __init__(self, room_table: RoomTable):
        self.room_table = room_table
        self._handlers = {
            "offer": self._relay_sdp,
            "answer": self._relay_sdp,
            "ice-candidate": self._relay_candidate,
            "screen-request": self._screen_request,
            "screen-sharing-started": self._screen_sharing,
            "screen-sharing-stopped": self._screen_sharing,
            "chat": self._broadcast,
            "play": self._broadcast,
            "pause": self._broadcast,
            "seek": self._broadcast,
            "video-change": self._broadcast,
            "ping": self._ping,
            "get-room-info": self._room_info,
        }

    def handle(self, connection_id: str, raw: Union[str, bytes]) -> None:
        sender = self.room_table.describe(connection_id)
        if sender is None:
            logger.debug(f"Message from unregistered connection {connection_id} dropped")
            return
        self.room_table.touch(connection_id)

        try:
            payload = load_frame(raw)
            message = validate_message(payload)
        except UnknownMessageType as e:
            logger.info(f"Unknown message type {e.tag!r} from {connection_id} in room {sender.room_id}")
            self.room_table.deliver(sender.id, {"type": "error", "message": str(e)})
            return
        except MalformedMessage as e:
            logger.debug(f"Malformed message from {connection_id} in room {sender.room_id}: {e}")
            return

        logger.debug(f"Routing {message.type} from {sender.role.value} {connection_id} in room {sender.room_id}")
        self._handlers[message.type](sender, message, payload)

    # -- signaling relay -----------------------------------------------------

    def _relay_target(self, sender: PeerInfo, target_id: Optional[str]) -> Optional[str]:
        """Resolve who a handshake message from ``sender`` goes to.

        Hosts address one of their viewers explicitly; viewers always talk
        to their room's host.
        """
        if sender.role is Role.HOST:
            if not target_id:
                return None
            if self.room_table.find_connection(target_id) != (sender.room_id, Role.VIEWER):
                return None
            return target_id

        snapshot = self.room_table.lookup(sender.room_id)
        if snapshot is None or snapshot.host is None:
            return None
        return snapshot.host.id

    def _relay(self, sender: PeerInfo, message, field: str) -> None:
        target_id = self._relay_target(sender, message.target)
        if target_id is None:
            logger.debug(f"No live target for {message.type} from {sender.id} (target={message.target})")
            return
        self.room_table.deliver(target_id, {
            "type": message.type,
            "sender": sender.id,
            "senderName": sender.name,
            field: getattr(message, field),
        })

    def _relay_sdp(self, sender: PeerInfo, message, payload: dict) -> None:
        self._relay(sender, message, "sdp")

    def _relay_candidate(self, sender: PeerInfo, message, payload: dict) -> None:
        self._relay(sender, message, "candidate")

    # -- screen sharing ------------------------------------------------------

    def _screen_request(self, sender: PeerInfo, message, payload: dict) -> None:
        if sender.role is not Role.VIEWER:
            logger.debug(f"screen-request from non-viewer {sender.id} ignored")
            return
        snapshot = self.room_table.lookup(sender.room_id)
        if snapshot is None or snapshot.host is None:
            return
        self.room_table.deliver(snapshot.host.id, {
            "type": message.type,
            "viewerId": sender.id,
            "viewerName": sender.name,
        })

    def _screen_sharing(self, sender: PeerInfo, message, payload: dict) -> None:
        if sender.role is not Role.HOST:
            logger.debug(f"{message.type} from non-host {sender.id} ignored")
            return
        snapshot = self.room_table.lookup(sender.room_id)
        if snapshot is None:
            return
        envelope = {"type": message.type, "hostId": sender.id, "hostName": sender.name}
        for viewer in snapshot.viewers:
            self.room_table.deliver(viewer.id, envelope)

    # -- presence plane ------------------------------------------------------

    def _broadcast(self, sender: PeerInfo, message, payload: dict) -> None:
        snapshot = self.room_table.lookup(sender.room_id)
        if snapshot is None:
            return
        envelope = dict(payload)
        envelope.update(sender=sender.id, senderName=sender.name)
        for member in snapshot.members:
            if member.id != sender.id:
                self.room_table.deliver(member.id, envelope)

    # -- server queries ------------------------------------------------------

    def _ping(self, sender: PeerInfo, message, payload: dict) -> None:
        self.room_table.deliver(sender.id, {"type": "pong"})

    def _room_info(self, sender: PeerInfo, message, payload: dict) -> None:
        snapshot = self.room_table.lookup(sender.room_id)
        host = None
        viewers = []
        if snapshot is not None:
            host = snapshot.host.as_dict() if snapshot.host else None
            viewers = [v.as_dict() for v in snapshot.viewers]
        self.room_table.deliver(sender.id, {
            "type": "room-info",
            "host": host,
            "viewers": viewers,
            "viewerCount": len(viewers),
        })
