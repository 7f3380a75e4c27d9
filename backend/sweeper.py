import asyncio
import logging
from typing import Callable, Optional

from closing import close_expired_auctions
from config import SWEEP_INTERVAL_SECONDS
from models import utcnow

logger = logging.getLogger(__name__)


class ClosingSweeper:
    """Background task that closes expired auctions every ``interval`` seconds.

    Owned by the host process: ``start()`` on startup, ``stop()`` on
    shutdown. A failed pass is logged and the next cycle tries again.
    """

    def __init__(
        self,
        session_factory,
        interval: float = SWEEP_INTERVAL_SECONDS,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.interval = interval
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._pass_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            logger.warning("Closing sweep already running")
            return
        self._task = asyncio.create_task(self._loop(), name="closing-sweep")
        logger.info("Closing sweep started, every %ss", self.interval)

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Closing sweep stopped")

    async def run_once(self) -> int:
        if self._pass_lock.locked():
            logger.warning("Previous closing sweep still running, skipping this one")
            return 0
        async with self._pass_lock:
            return await close_expired_auctions(self.session_factory, self.clock())

    async def _loop(self):
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Closing sweep failed, retrying in %ss", self.interval)
            await asyncio.sleep(self.interval)
