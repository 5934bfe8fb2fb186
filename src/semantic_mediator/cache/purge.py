"""Background task that tombstones stale cache entries on a fixed interval."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from semantic_mediator.cache.transformation_cache import TransformationCache
from semantic_mediator.config import settings

logger = logging.getLogger(__name__)


class CachePurgeScheduler:
    """Periodically purges entries older than the retention window.

    The first purge runs one interval after start(). Failures are logged and
    the loop keeps going.

    Usage:
        scheduler = CachePurgeScheduler(cache)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        cache: TransformationCache,
        *,
        interval_seconds: float | None = None,
        retention_days: float | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._cache = cache
        self._interval = (
            settings.cache_purge_interval_seconds if interval_seconds is None else interval_seconds
        )
        self._retention = timedelta(
            days=settings.cache_retention_days if retention_days is None else retention_days
        )
        self._now = now_fn or (lambda: datetime.now(UTC))
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Purge everything last used before now - retention."""
        cutoff = self._now() - self._retention
        purged = await self._cache.purge(cutoff)
        logger.info("Scheduled cache purge tombstoned %d entries", purged)
        return purged

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="cache-purge")
        logger.info(
            "Cache purge scheduled every %.0fs (retention %s)", self._interval, self._retention
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Scheduled cache purge failed")
