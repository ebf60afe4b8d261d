import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitehooks.config import settings
from sitehooks.services import request_log, webhook_registry
from sitehooks.services.dispatcher import TickResult, WebhookDispatcher

logger = logging.getLogger(__name__)

PRUNE_INTERVAL = timedelta(hours=1)


class DeliveryScheduler:
    """Polls for webhooks with work to do and drains each one in its own
    asyncio task, so a slow endpoint only delays its own webhook.

    Lifecycle is managed through start() / stop(), called from the app
    lifespan.
    """

    def __init__(
        self,
        dispatcher: WebhookDispatcher,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        interval_seconds: float | None = None,
        retention_days: int | None = None,
        shutdown_timeout_seconds: float | None = None,
    ):
        self._dispatcher = dispatcher
        self._session_factory = session_factory
        self._interval = interval_seconds or settings.WEBHOOK_POLL_INTERVAL_SECONDS
        self._retention = timedelta(
            days=retention_days or settings.WEBHOOK_REQS_OUT_RETENTION_DAYS
        )
        self._shutdown_timeout = (
            shutdown_timeout_seconds or settings.WEBHOOK_REQUEST_TIMEOUT_SECONDS
        )
        self._drains: dict[tuple[int, int], asyncio.Task] = {}
        self._loop_task: asyncio.Task | None = None
        self._last_pruned_at: datetime | None = None

    @property
    def running_drains(self) -> set[tuple[int, int]]:
        return set(self._drains)

    async def start(self) -> None:
        self._loop_task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        # Let requests already sent get their outcome recorded.
        pending = list(self._drains.values())
        if pending:
            _done, not_done = await asyncio.wait(pending, timeout=self._shutdown_timeout)
            for task in not_done:
                task.cancel()
            await asyncio.gather(*not_done, return_exceptions=True)

    def kick(self, site_id: int, webhook_id: int) -> bool:
        """Start draining the webhook unless that's already happening."""
        key = (site_id, webhook_id)
        if key in self._drains:
            return False
        task = asyncio.create_task(self._drain(site_id, webhook_id))
        self._drains[key] = task
        task.add_done_callback(lambda _t: self._drains.pop(key, None))
        return True

    async def sweep(self) -> int:
        async with self._session_factory() as db:
            keys = await webhook_registry.list_dispatchable(db)
        return sum(1 for site_id, webhook_id in keys if self.kick(site_id, webhook_id))

    async def prune(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        async with self._session_factory() as db:
            deleted = await request_log.prune_older_than(db, now - self._retention)
            await db.commit()
        self._last_pruned_at = now
        return deleted

    async def wait_idle(self) -> None:
        while self._drains:
            await asyncio.gather(*self._drains.values(), return_exceptions=True)

    async def _drain(self, site_id: int, webhook_id: int) -> list[TickResult]:
        try:
            return await self._dispatcher.drain(site_id, webhook_id)
        except Exception:
            logger.exception("Site %s: draining webhook %s failed", site_id, webhook_id)
            return []

    async def _loop(self) -> None:
        logger.info("Webhook delivery scheduler started, polling every %.1fs", self._interval)
        while True:
            try:
                await asyncio.sleep(self._interval)
                started = await self.sweep()
                if started:
                    logger.debug("Started draining %d webhook(s)", started)

                now = datetime.now(timezone.utc)
                if self._last_pruned_at is None or now - self._last_pruned_at >= PRUNE_INTERVAL:
                    await self.prune(now)
            except asyncio.CancelledError:
                logger.info("Webhook delivery scheduler stopped")
                raise
            except Exception:
                logger.exception("Webhook delivery sweep failed")
