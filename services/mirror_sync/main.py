"""Provider mirror reconciliation daemon - entry point."""

import asyncio
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import asyncpg
import redis.asyncio as aioredis
import structlog

from config.logging import configure_logging
from enrollment.src.calendar_sync.config import CalendarSyncConfig, get_settings
from enrollment.src.calendar_sync.dual_write import MirrorReconciler, ScheduleService
from enrollment.src.calendar_sync.mirror import GoogleCalendarMirror, load_provider_credentials
from enrollment.src.calendar_sync.store import PostgresScheduleStore
from services.mirror_sync.worker import MirrorSyncWorker

logger = structlog.get_logger(__name__)


class MirrorSyncDaemon:
    """Owns the DB pool, Redis client and worker for the mirror job."""

    def __init__(self):
        self.settings = get_settings()
        self.db_pool: Optional[asyncpg.Pool] = None
        self.redis: Optional[aioredis.Redis] = None
        self.worker: Optional[MirrorSyncWorker] = None
        self.shutdown_event = asyncio.Event()

    async def setup(self) -> None:
        """Open connections and build the worker."""
        logger.info("Starting mirror sync daemon")
        settings = self.settings

        calendar_id = settings.calendar_id
        config_path = os.getenv("CALENDAR_CONFIG_PATH", "config/calendar_sync.yaml")
        if Path(config_path).exists():
            calendar_id = CalendarSyncConfig.from_yaml(config_path).default_calendar_id
            logger.info("Configuration loaded", path=config_path, calendar_id=calendar_id)

        if not settings.database_url:
            raise ValueError("CALENDAR_DATABASE_URL environment variable not set")

        self.db_pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=2,
            max_size=5,
            command_timeout=60,
        )
        store = PostgresScheduleStore(self.db_pool)
        await store.ensure_schema()
        logger.info("PostgreSQL connection pool created")

        self.redis = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        await self.redis.ping()
        logger.info("Redis connection established")

        mirror = GoogleCalendarMirror(
            credentials_loader=lambda: load_provider_credentials(
                credentials_json=settings.google_credentials_json,
                token_path=settings.google_token_path,
            )
        )
        service = ScheduleService(
            store,
            mirror,
            calendar_id=calendar_id,
            timezone_name=settings.timezone,
        )
        self.worker = MirrorSyncWorker(
            reconciler=MirrorReconciler(service),
            redis_client=self.redis,
            interval_minutes=settings.mirror_retry_interval_minutes,
            shutdown_event=self.shutdown_event,
        )

    async def run(self) -> None:
        """Run the worker until a stop signal arrives."""
        await self.setup()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.shutdown_event.set)

        try:
            await self.worker.run()
        except asyncio.CancelledError:
            logger.info("Worker cancelled, shutting down")
        finally:
            await self.cleanup()

    async def cleanup(self) -> None:
        """Close every connection."""
        if self.redis:
            await self.redis.aclose()
            logger.info("Redis connection closed")
        if self.db_pool:
            await self.db_pool.close()
            logger.info("PostgreSQL connection pool closed")
        logger.info("Mirror sync daemon stopped")


def main():
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    daemon = MirrorSyncDaemon()

    try:
        asyncio.run(daemon.run())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, exiting")
    except Exception as e:
        logger.error("Fatal error", error=str(e), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
