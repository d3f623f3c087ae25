from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from routers.rooms import rooms_router, status_router
from constants import HOST_FAILOVER, LOG_FILE, LOG_LEVEL, REAP_INTERVAL_SECONDS, STALE_AFTER_SECONDS, WS_PATH
from presence import AdmissionError, PresenceLifecycle, parse_role
from reaper import IdleReaper, keep_alive
from registry import RoomTable
from router import MessageRouter
from transport import Outbox
import asyncio
from typing import Optional
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    room_table = RoomTable()
    reaper = IdleReaper(room_table, interval=REAP_INTERVAL_SECONDS, stale_after=STALE_AFTER_SECONDS)
    app.state.room_table = room_table
    app.state.presence = PresenceLifecycle(room_table, host_failover=HOST_FAILOVER)
    app.state.message_router = MessageRouter(room_table)
    reaper.start()
    logger.info(f"Signaling server ready (host_failover={HOST_FAILOVER})")
    try:
        yield
    finally:
        await reaper.stop()
        room_table.close_all()
        logger.info("Signaling server stopped")


app = FastAPI(title="Screen Share Signaling", lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(status_router)
app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.websocket(WS_PATH)
async def websocket_endpoint(
    websocket: WebSocket,
    room: Optional[str] = None,
    username: Optional[str] = None,
    role: Optional[str] = None,
):
    """Signaling socket for one host or viewer.

    Query parameters:
    - room: room to join (required)
    - username: display name, defaults to "Anonymous"
    - role: "host" or "viewer" (default)
    """
    presence: PresenceLifecycle = websocket.app.state.presence
    message_router: MessageRouter = websocket.app.state.message_router
    logger.info(f"WebSocket connection attempt for room: {room}, username: {username}, role: {role}")

    # Accept first so rejections can carry a close code and reason
    await websocket.accept()
    outbox = Outbox(label=f"{room}/{username or '-'}")
    try:
        peer = await presence.connect(room, parse_role(role), username, outbox)
    except AdmissionError as e:
        await websocket.close(code=e.code, reason=e.reason)
        return

    outbox.label = peer.id
    writer = asyncio.create_task(outbox.drain(websocket))
    heartbeat = asyncio.create_task(keep_alive(presence.room_table, peer.id))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(
                    f"WebSocket disconnected for connection {peer.id} in room {peer.room_id} "
                    f"(code={message.get('code')})"
                )
                break
            data = message.get("text")
            if data is None:
                data = message.get("bytes")
            if data is not None:
                message_router.handle(peer.id, data)
    except Exception as e:
        logger.error(f"Error receiving from connection {peer.id} in room {peer.room_id}: {e}", exc_info=True)
    finally:
        heartbeat.cancel()
        await presence.disconnect(peer.id)
        outbox.close()
        await writer
