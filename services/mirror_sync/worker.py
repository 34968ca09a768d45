"""Provider mirror reconciliation worker."""

import asyncio
import json
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as aioredis
import structlog

from enrollment.src.calendar_sync.dual_write import MirrorReconciler

logger = structlog.get_logger(__name__)


class MirrorSyncWorker:
    """Periodically retries schedules whose provider mirror is not SYNCED.

    Features:
    - One reconciliation pass every N minutes (configurable)
    - Redis healthcheck (calendar:mirror_last_sync, TTL 1h)
    - Consecutive failure counter, logged as an alert after 3 failures
    - Graceful stop via shutdown_event (SIGTERM)
    """

    HEALTHCHECK_KEY = "calendar:mirror_last_sync"
    HEALTHCHECK_TTL = 3600  # 1 hour
    FAILURE_COUNTER_KEY = "calendar:mirror_sync_failures"
    MAX_CONSECUTIVE_FAILURES = 3

    def __init__(
        self,
        reconciler: MirrorReconciler,
        redis_client: aioredis.Redis,
        interval_minutes: int = 5,
        shutdown_event: Optional[asyncio.Event] = None,
    ):
        self.reconciler = reconciler
        self.redis = redis_client
        self.interval_seconds = interval_minutes * 60
        self.shutdown_event = shutdown_event or asyncio.Event()

    async def sync_once(self) -> bool:
        """Run a single reconciliation pass.

        Returns:
            True if the pass ran, False if it raised

        Side effects:
            - Updates the healthcheck key
            - Resets the failure counter on success, increments it on failure
        """
        try:
            result = await self.reconciler.run_once()

            if result.errors:
                logger.warning(
                    "Reconciliation completed with errors",
                    error_count=len(result.errors),
                    errors=result.errors,
                )

            healthcheck_data = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "events_created": result.events_created,
                "events_updated": result.events_updated,
                "events_deleted": result.events_deleted,
                "errors_count": len(result.errors),
            }
            await self.redis.set(
                self.HEALTHCHECK_KEY,
                json.dumps(healthcheck_data),
                ex=self.HEALTHCHECK_TTL,
            )
            await self.redis.delete(self.FAILURE_COUNTER_KEY)
            return True

        except Exception as e:
            logger.error("Reconciliation failed", error=str(e), exc_info=True)

            failure_count = await self.redis.incr(self.FAILURE_COUNTER_KEY)
            if failure_count >= self.MAX_CONSECUTIVE_FAILURES:
                logger.critical(
                    "Mirror reconciliation keeps failing",
                    consecutive_failures=failure_count,
                    last_error=str(e),
                )
            return False

    async def run(self) -> None:
        """Main loop: one pass, then wait for the interval or shutdown."""
        logger.info(
            "Mirror sync worker started",
            interval_s=self.interval_seconds,
        )

        try:
            while not self.shutdown_event.is_set():
                await self.sync_once()
                try:
                    await asyncio.wait_for(
                        self.shutdown_event.wait(),
                        timeout=self.interval_seconds,
                    )
                    break
                except asyncio.TimeoutError:
                    pass

        except asyncio.CancelledError:
            logger.info("Mirror sync worker shutting down gracefully")
            raise
