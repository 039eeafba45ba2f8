"""Background vouch expiry sweeper.

Periodically persists lazily computed vouch expiries. Correctness never
depends on it running: reads already treat lapsed vouches as expired.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from xnscore.vouching.ledger import VouchLedger

logger = logging.getLogger(__name__)


class VouchSweeper:
    """Asyncio task that calls ``VouchLedger.sweep_expired`` on an interval."""

    def __init__(self, ledger: VouchLedger, interval_seconds: float = 300.0) -> None:
        self._ledger = ledger
        self._interval_seconds = interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Vouch sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("Vouch sweeper started", extra={"interval_seconds": self._interval_seconds})

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        logger.info("Vouch sweeper stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                self._ledger.sweep_expired()
            except Exception as e:
                logger.error(f"Error in vouch sweep loop: {e}", exc_info=True)

            await asyncio.sleep(self._interval_seconds)
