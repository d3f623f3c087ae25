import asyncio
import json
from typing import Optional, Tuple

from constants import OUTBOX_MAXSIZE
from logging_config import get_logger

logger = get_logger(__name__)

_CLOSE = object()


class Outbox:
    """Send buffer for one websocket connection.

    send() and close() never block, so the room table can call them while it
    holds its lock. drain() is the only coroutine that touches the socket.
    """

    def __init__(self, maxsize: int = OUTBOX_MAXSIZE, label: str = ""):
        self.label = label
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._close_frame: Optional[Tuple[int, str]] = None
        self._dead = False

    @property
    def closed(self) -> bool:
        return self._dead or self._close_frame is not None

    def send(self, message: dict) -> bool:
        if self.closed:
            logger.debug(f"Dropping {message.get('type')} for closed outbox {self.label}")
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Outbox {self.label} is full, dropping {message.get('type')}")
            return False
        return True

    def close(self, code: int = 1000, reason: str = "") -> None:
        if self._close_frame is not None:
            return
        self._close_frame = (code, reason)
        if self._dead:
            return
        try:
            self._queue.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            # the close marker must get through
            dropped = self._queue.get_nowait()
            logger.warning(f"Outbox {self.label} is full, discarding {dropped.get('type')} to close")
            self._queue.put_nowait(_CLOSE)

    async def drain(self, websocket) -> None:
        """Write queued messages to the socket until the outbox is closed."""
        try:
            while True:
                item = await self._queue.get()
                if item is _CLOSE:
                    code, reason = self._close_frame
                    try:
                        await websocket.close(code=code, reason=reason)
                    except Exception as e:
                        logger.debug(f"Error closing WebSocket for {self.label}: {e}")
                    return
                try:
                    await websocket.send_text(json.dumps(item))
                except Exception as e:
                    logger.warning(f"Error sending to connection {self.label}: {e}")
                    return
        finally:
            self._dead = True
