import asyncio
import time
from typing import Callable, List, Optional

from constants import KEEPALIVE_SECONDS, REAP_INTERVAL_SECONDS, STALE_AFTER_SECONDS
from logging_config import get_logger
from registry import RoomTable

logger = get_logger(__name__)


class IdleReaper:
    """Periodic sweep that evicts rooms nobody has been active in.

    Clean disconnects already remove rooms; this only catches members that
    vanished without a close (half-open sockets and the like).
    """

    def __init__(
        self,
        room_table: RoomTable,
        interval: float = REAP_INTERVAL_SECONDS,
        stale_after: float = STALE_AFTER_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.room_table = room_table
        self.interval = interval
        self.stale_after = stale_after
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info(f"Idle reaper started (interval={self.interval}s, stale_after={self.stale_after}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Idle reaper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Idle reaper sweep failed: {e}", exc_info=True)

    async def sweep(self, now: Optional[float] = None) -> List[str]:
        """Evict every room whose members have all been idle past the window."""
        if now is None:
            now = self._clock()
        cutoff = now - self.stale_after

        reaped = []
        for room_id in self.room_table.idle_rooms(cutoff):
            evicted = await self.room_table.evict_room(room_id, cutoff=cutoff)
            if evicted is None:
                logger.debug(f"Room {room_id} became active before eviction, kept")
                continue
            if not evicted:
                logger.debug(f"Room {room_id} was already removed")
            reaped.append(room_id)

        if reaped:
            logger.info(f"Reaped {len(reaped)} idle room(s): {', '.join(reaped)}")
        else:
            logger.debug(f"Idle sweep found nothing to reap ({self.room_table.room_count} room(s) live)")
        return reaped


async def keep_alive(room_table: RoomTable, connection_id: str, interval: float = KEEPALIVE_SECONDS) -> None:
    """Refresh ``connection_id``'s activity while its socket stays open.

    The server's websocket ping/pong closes dead sockets, so an open one is
    a live member even when it sends nothing. Returns once the connection
    is no longer registered.
    """
    while True:
        await asyncio.sleep(interval)
        if not room_table.touch(connection_id):
            logger.debug(f"Keepalive for {connection_id} stopped, connection gone")
            return
