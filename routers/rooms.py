from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import CreateRoomRequest, CreateRoomResponse, Member, RoomDetailsResponse, RoomSummary, ServerStatus
from constants import WS_PATH
from registry import PeerInfo, RoomSnapshot
from urllib.parse import urlencode
import uuid
from logging_config import get_logger

logger = get_logger(__name__)

status_router = APIRouter(tags=["status"])
rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def _member(peer: PeerInfo) -> Member:
    return Member(
        connection_id=peer.id,
        display_name=peer.name,
        connected_at=peer.connected_at.isoformat(),
    )


def _summary(snapshot: RoomSnapshot) -> RoomSummary:
    return RoomSummary(
        room_id=snapshot.room_id,
        has_host=snapshot.host is not None,
        host_name=snapshot.host.name if snapshot.host else None,
        viewer_count=snapshot.viewer_count,
    )


@status_router.get("/", response_model=ServerStatus)
async def server_status(request: Request):
    room_table = request.app.state.room_table
    return ServerStatus(
        status="ok",
        rooms=room_table.room_count,
        connections=room_table.connection_count,
    )


@rooms_router.get("", response_model=list[RoomSummary])
async def list_rooms(request: Request):
    snapshots = request.app.state.room_table.rooms()
    logger.debug(f"Room listing requested: {len(snapshots)} room(s)")
    return [_summary(s) for s in snapshots]


@rooms_router.post("", response_model=CreateRoomResponse, status_code=201)
async def create_room(room: CreateRoomRequest, request: Request):
    """
    Mint a room id and the websocket URL to join it.

    The room itself only exists once its first member connects.
    """
    room_id = room.room_id.strip() if room.room_id and room.room_id.strip() else uuid.uuid4().hex
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Room creation request from {client_host}: {room_id}")

    # Construct WebSocket URL using request's base URL
    base_url = str(request.base_url).rstrip('/')
    ws_base = base_url.replace("http://", "ws://").replace("https://", "wss://")
    ws_url = f"{ws_base}{WS_PATH}?{urlencode({'room': room_id})}"

    return CreateRoomResponse(room_id=room_id, ws_url=ws_url)


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    """
    Current host and viewers of a live room.

    Returns 404 when nobody is connected to the room.
    """
    snapshot = request.app.state.room_table.lookup(room_id)
    if snapshot is None:
        logger.debug(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    return RoomDetailsResponse(
        room_id=snapshot.room_id,
        host=_member(snapshot.host) if snapshot.host else None,
        viewers=[_member(v) for v in snapshot.viewers],
        viewer_count=snapshot.viewer_count,
    )
