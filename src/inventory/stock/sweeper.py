"""Background task that periodically expires stale reservations.

Started from the FastAPI lifespan (see ``app.py``) or standalone via
``python src/server.py``. It talks to the rest of the system only through the
database, so any number of API workers can run alongside it.
"""

import asyncio

import structlog

from inventory.stock.expiry import ExpireStaleReservations, expire_stale_reservations
from shared.config import get_settings

logger = structlog.get_logger(__name__)

_ERROR_BACKOFF_SECONDS = 5.0


class ReservationSweeper:
    """Runs ``expire_stale_reservations`` every ``interval_seconds``."""

    def __init__(self, interval_seconds: float | None = None) -> None:
        self.interval_seconds = interval_seconds or get_settings().sweep_interval_seconds
        self._running = False
        self._task: asyncio.Task | None = None
        self.sweeps = 0
        self.expired_total = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self) -> int:
        loop = asyncio.get_running_loop()
        expired = await loop.run_in_executor(None, expire_stale_reservations, ExpireStaleReservations())
        self.sweeps += 1
        self.expired_total += expired
        return expired

    async def run(self) -> None:
        logger.info("Reservation sweeper started", interval_seconds=self.interval_seconds)
        self._running = True
        while self._running:
            try:
                await self.run_once()
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Reservation sweep failed", error=str(exc), exc_info=True)
                await asyncio.sleep(_ERROR_BACKOFF_SECONDS)
        self._running = False
        logger.info("Reservation sweeper stopped", sweeps=self.sweeps, expired_total=self.expired_total)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="reservation-sweeper")
        return self._task

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
