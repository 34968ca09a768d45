"""Dual-write of schedules: durable local store plus best-effort provider mirror.

The local write is awaited and is the source of truth. The provider write is
dispatched in the background and never blocks or rolls back the local write;
its outcome is recorded on the record as SyncStatus:

    create/update/archive -> PENDING --mirror ok--> SYNCED
                                     --mirror ko--> FAILED --reconciler--> ...

MirrorReconciler retries PENDING and FAILED records, one attempt per record
per pass.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import structlog

from config.exceptions import MirrorError, ValidationError

from .models import SyncResult, SyncStatus
from .mirror import ProviderMirror
from .normalizer import DEFAULT_TIMEZONE
from .store import ScheduleRecord, ScheduleStore

logger = structlog.get_logger(__name__)


class MirrorOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    SKIPPED = "skipped"
    FAILED = "failed"


class ScheduleService:
    """Create/update/archive schedules with a background provider mirror.

    Attributes:
        store: Local schedule store
        mirror: Provider mirror (None disables mirroring; records stay PENDING)
        calendar_id: Default calendar for new records
        timezone_name: Zone applied to wire bodies without one
    """

    def __init__(
        self,
        store: ScheduleStore,
        mirror: Optional[ProviderMirror] = None,
        calendar_id: str = "primary",
        timezone_name: str = DEFAULT_TIMEZONE,
    ):
        self.store = store
        self.mirror = mirror
        self.calendar_id = calendar_id
        self.timezone_name = timezone_name
        self._tasks: Set[asyncio.Task] = set()
        self._inflight: Set[str] = set()

    # ------------------------------------------------------------------
    # Local writes
    # ------------------------------------------------------------------

    async def create(self, body: Dict[str, Any]) -> ScheduleRecord:
        """Store a new schedule and dispatch its provider insert.

        Raises:
            ValidationError: If the body is malformed
        """
        record = ScheduleRecord.from_wire(body, self.calendar_id, self.timezone_name)
        record = await self.store.insert(record)
        logger.info("Schedule created", schedule_id=record.id, all_day=record.all_day)
        self._dispatch(record.id)
        return record

    async def update(self, record_id: str, body: Dict[str, Any]) -> Optional[ScheduleRecord]:
        """Replace a schedule's fields and dispatch its provider patch.

        Returns:
            The updated record, or None if it does not exist (or is archived)
        """
        if not record_id:
            raise ValidationError("Event ID is required for updating")
        parsed = ScheduleRecord.from_wire(body, self.calendar_id, self.timezone_name)
        changes = parsed.model_dump(
            include={
                "summary",
                "description",
                "location",
                "attendees",
                "start_at",
                "end_at",
                "all_day",
                "timezone",
            }
        )
        changes["sync_status"] = SyncStatus.PENDING
        record = await self.store.update(record_id, changes)
        if record is None:
            return None
        logger.info("Schedule updated", schedule_id=record_id)
        self._dispatch(record_id)
        return record

    async def archive(self, record_id: str) -> bool:
        """Archive a schedule locally and dispatch the provider delete.

        Returns:
            False if the schedule does not exist or is already archived
        """
        record = await self.store.archive(record_id)
        if record is None:
            return False
        if record.provider_event_id:
            await self.store.set_sync_status(record_id, SyncStatus.PENDING)
            self._dispatch(record_id)
        else:
            # Never reached the provider: nothing left to mirror.
            await self.store.set_sync_status(record_id, SyncStatus.SYNCED)
        logger.info("Schedule archived", schedule_id=record_id)
        return True

    async def list_window(
        self, time_min: datetime, time_max: datetime, calendar_id: Optional[str] = None
    ) -> Dict[str, List[Dict[str, Any]]]:
        """GET /calendar/events projection wrapped in the ``events`` envelope."""
        records = await self.store.list_range(calendar_id or self.calendar_id, time_min, time_max)
        return {"events": [record.to_wire() for record in records]}

    # ------------------------------------------------------------------
    # Provider mirror
    # ------------------------------------------------------------------

    def _dispatch(self, record_id: str) -> None:
        if self.mirror is None:
            return
        task = asyncio.get_running_loop().create_task(self.sync_record(record_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight background mirror writes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def sync_record(self, record_id: str) -> MirrorOutcome:
        """Mirror one record once and record the resulting SyncStatus.

        Never raises for provider failures: they end as FAILED on the record.
        """
        if self.mirror is None or record_id in self._inflight:
            return MirrorOutcome.SKIPPED

        self._inflight.add(record_id)
        try:
            record = await self.store.get(record_id)
            if record is None:
                return MirrorOutcome.SKIPPED
            return await self._mirror_record(record)
        finally:
            self._inflight.discard(record_id)

    async def _mirror_record(self, record: ScheduleRecord) -> MirrorOutcome:
        try:
            if record.archived:
                if record.provider_event_id:
                    await self.mirror.delete(record.calendar_id, record.provider_event_id)
                await self.store.set_sync_status(record.id, SyncStatus.SYNCED)
                return MirrorOutcome.DELETED

            body = record.to_provider_body()
            if record.provider_event_id:
                await self.mirror.patch(record.calendar_id, record.provider_event_id, body)
                await self.store.set_sync_status(record.id, SyncStatus.SYNCED)
                return MirrorOutcome.UPDATED

            created = await self.mirror.insert(record.calendar_id, body)
            await self.store.set_sync_status(
                record.id,
                SyncStatus.SYNCED,
                provider_event_id=created.get("id"),
                html_link=created.get("htmlLink"),
            )
            return MirrorOutcome.CREATED

        except MirrorError as e:
            logger.warning("Provider mirror failed", schedule_id=record.id, error=str(e))
            await self.store.set_sync_status(record.id, SyncStatus.FAILED, error=str(e))
            return MirrorOutcome.FAILED
        except Exception as e:
            logger.error(
                "Unexpected provider mirror error",
                schedule_id=record.id,
                error=str(e),
                exc_info=True,
            )
            await self.store.set_sync_status(record.id, SyncStatus.FAILED, error=str(e))
            return MirrorOutcome.FAILED

    async def push_pending(self) -> SyncResult:
        """Mirror every PENDING or FAILED record once (manual push action).

        Returns:
            SyncResult with counts per outcome and one error per failed record
        """
        result = SyncResult()
        records = await self.store.list_by_status([SyncStatus.PENDING, SyncStatus.FAILED])

        for record in records:
            outcome = await self.sync_record(record.id)
            if outcome is MirrorOutcome.CREATED:
                result.events_created += 1
            elif outcome is MirrorOutcome.UPDATED:
                result.events_updated += 1
            elif outcome is MirrorOutcome.DELETED:
                result.events_deleted += 1
            elif outcome is MirrorOutcome.FAILED:
                result.errors.append("Error mirroring schedule %s" % record.id)

        return result


class MirrorReconciler:
    """Background job retrying PENDING and FAILED records."""

    def __init__(self, service: ScheduleService):
        self.service = service

    async def run_once(self) -> SyncResult:
        """One reconciliation pass, at most one attempt per record."""
        result = await self.service.push_pending()
        logger.info(
            "Mirror reconciliation pass",
            created=result.events_created,
            updated=result.events_updated,
            deleted=result.events_deleted,
            errors=len(result.errors),
        )
        return result
