#!/usr/bin/env python3
"""
Local schedule store - durable source of truth for dashboard schedules.

Architecture:
    - ScheduleRecord : persisted schedule with its mirror SyncStatus
    - ScheduleStore : abstract interface
    - InMemoryScheduleStore : single-process implementation (tests, local dev)
    - PostgresScheduleStore : asyncpg implementation (table calendar.schedules)

Archive is logical: archived_at is set and the record leaves every range
query, but stays visible to list_by_status until the provider copy is gone.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

import asyncpg
import structlog
from pydantic import BaseModel, Field

from config.exceptions import ValidationError

from .models import SyncStatus, wire_shape_is_all_day
from .normalizer import DEFAULT_TIMEZONE, parse_boundary, resolve_timezone, to_internal

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleRecord(BaseModel):
    """A locally stored schedule.

    ``end_at`` is exclusive: for all-day records it is midnight after the
    last included day, exactly like the wire ``end.date``.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    calendar_id: str = "primary"
    summary: str
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
    start_at: datetime
    end_at: datetime
    all_day: bool = False
    timezone: str = DEFAULT_TIMEZONE
    provider_event_id: Optional[str] = None
    html_link: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.PENDING
    last_sync_error: Optional[str] = None
    archived_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def archived(self) -> bool:
        return self.archived_at is not None

    @classmethod
    def from_wire(
        cls,
        body: Dict[str, Any],
        calendar_id: str = "primary",
        timezone_name: str = DEFAULT_TIMEZONE,
    ) -> "ScheduleRecord":
        """Build a record from a POST/PATCH wire body.

        Raises:
            ValidationError: Missing title, missing or unparseable start/end,
                or an empty/negative time span
        """
        summary = (body.get("summary") or body.get("title") or "").strip()
        if not summary:
            raise ValidationError("Title is required")

        tz = resolve_timezone(timezone_name)
        all_day = wire_shape_is_all_day(body)
        start_at = parse_boundary(body.get("start"), all_day, tz)
        end_at = parse_boundary(body.get("end"), all_day, tz)
        if start_at is None or end_at is None:
            raise ValidationError("Start and end must be valid dates")
        if end_at <= start_at:
            raise ValidationError("End must be after start")

        event = to_internal(body, tz=tz)
        return cls(
            calendar_id=body.get("calendarId") or calendar_id,
            summary=summary,
            description=event.description,
            location=event.location,
            attendees=event.attendees,
            start_at=start_at,
            end_at=end_at,
            all_day=all_day,
            timezone=timezone_name,
        )

    def _date_part(self, instant: datetime) -> Dict[str, str]:
        if self.all_day:
            local = instant.astimezone(resolve_timezone(self.timezone))
            return {"date": local.date().isoformat()}
        return {"dateTime": instant.isoformat(), "timeZone": self.timezone}

    def to_provider_body(self) -> Dict[str, Any]:
        """Body for the external calendar insert/patch call."""
        body: Dict[str, Any] = {
            "summary": self.summary,
            "description": self.description or "",
            "start": self._date_part(self.start_at),
            "end": self._date_part(self.end_at),
        }
        if self.location:
            body["location"] = self.location
        if self.attendees:
            body["attendees"] = [{"email": email} for email in self.attendees if "@" in email]
        return body

    def to_wire(self) -> Dict[str, Any]:
        """Projection served by GET /calendar/events.

        No htmlLink: local schedules stay archivable through the local path
        even once mirrored.
        """
        body = self.to_provider_body()
        body["id"] = self.id
        body["calendarId"] = self.calendar_id
        body["syncStatus"] = self.sync_status.value
        return body


class ScheduleStore(ABC):
    """Abstract local schedule persistence."""

    @abstractmethod
    async def insert(self, record: ScheduleRecord) -> ScheduleRecord:
        ...

    @abstractmethod
    async def get(self, record_id: str) -> Optional[ScheduleRecord]:
        ...

    @abstractmethod
    async def update(self, record_id: str, changes: Dict[str, Any]) -> Optional[ScheduleRecord]:
        """Apply field changes to a live record; None if missing or archived."""

    @abstractmethod
    async def archive(self, record_id: str) -> Optional[ScheduleRecord]:
        """Mark a live record archived; None if missing or already archived."""

    @abstractmethod
    async def list_range(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> List[ScheduleRecord]:
        """Live records overlapping ``[start, end)``, ordered by start."""

    @abstractmethod
    async def list_by_status(self, statuses: Iterable[SyncStatus]) -> List[ScheduleRecord]:
        """Records (archived included) whose sync_status is in ``statuses``."""

    @abstractmethod
    async def set_sync_status(
        self,
        record_id: str,
        status: SyncStatus,
        provider_event_id: Optional[str] = None,
        html_link: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        ...


class InMemoryScheduleStore(ScheduleStore):
    """Dict-backed store for a single process."""

    def __init__(self):
        self._records: Dict[str, ScheduleRecord] = {}

    async def insert(self, record: ScheduleRecord) -> ScheduleRecord:
        self._records[record.id] = record
        return record

    async def get(self, record_id: str) -> Optional[ScheduleRecord]:
        return self._records.get(record_id)

    async def update(self, record_id: str, changes: Dict[str, Any]) -> Optional[ScheduleRecord]:
        record = self._records.get(record_id)
        if record is None or record.archived:
            return None
        updated = record.model_copy(update={**changes, "updated_at": _utcnow()})
        self._records[record_id] = updated
        return updated

    async def archive(self, record_id: str) -> Optional[ScheduleRecord]:
        record = self._records.get(record_id)
        if record is None or record.archived:
            return None
        now = _utcnow()
        archived = record.model_copy(update={"archived_at": now, "updated_at": now})
        self._records[record_id] = archived
        return archived

    async def list_range(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> List[ScheduleRecord]:
        matches = [
            r
            for r in self._records.values()
            if not r.archived
            and r.calendar_id == calendar_id
            and r.start_at < end
            and r.end_at > start
        ]
        return sorted(matches, key=lambda r: r.start_at)

    async def list_by_status(self, statuses: Iterable[SyncStatus]) -> List[ScheduleRecord]:
        wanted = set(statuses)
        return [r for r in self._records.values() if r.sync_status in wanted]

    async def set_sync_status(
        self,
        record_id: str,
        status: SyncStatus,
        provider_event_id: Optional[str] = None,
        html_link: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        record = self._records.get(record_id)
        if record is None:
            return
        changes: Dict[str, Any] = {"sync_status": status, "last_sync_error": error}
        if provider_event_id is not None:
            changes["provider_event_id"] = provider_event_id
        if html_link is not None:
            changes["html_link"] = html_link
        self._records[record_id] = record.model_copy(update=changes)


SCHEMA_SQL = """
CREATE SCHEMA IF NOT EXISTS calendar;

CREATE TABLE IF NOT EXISTS calendar.schedules (
    id TEXT PRIMARY KEY,
    calendar_id TEXT NOT NULL,
    summary TEXT NOT NULL,
    description TEXT,
    location TEXT,
    attendees JSONB NOT NULL DEFAULT '[]'::jsonb,
    start_at TIMESTAMPTZ NOT NULL,
    end_at TIMESTAMPTZ NOT NULL,
    all_day BOOLEAN NOT NULL DEFAULT FALSE,
    timezone TEXT NOT NULL,
    provider_event_id TEXT,
    html_link TEXT,
    sync_status TEXT NOT NULL DEFAULT 'pending',
    last_sync_error TEXT,
    archived_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_schedules_calendar_start
    ON calendar.schedules (calendar_id, start_at);
CREATE INDEX IF NOT EXISTS idx_schedules_unsynced
    ON calendar.schedules (sync_status) WHERE sync_status <> 'synced';
"""

_UPDATABLE_COLUMNS = {
    "calendar_id",
    "summary",
    "description",
    "location",
    "attendees",
    "start_at",
    "end_at",
    "all_day",
    "timezone",
    "sync_status",
    "last_sync_error",
}


class PostgresScheduleStore(ScheduleStore):
    """asyncpg store over calendar.schedules."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def ensure_schema(self) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Schedule schema ensured")

    @staticmethod
    def _from_row(row: Any) -> ScheduleRecord:
        data = dict(row)
        attendees = data.get("attendees") or []
        if isinstance(attendees, str):
            attendees = json.loads(attendees)
        data["attendees"] = attendees
        return ScheduleRecord(**data)

    async def insert(self, record: ScheduleRecord) -> ScheduleRecord:
        row = await self.db_pool.fetchrow(
            """
            INSERT INTO calendar.schedules (
                id, calendar_id, summary, description, location, attendees,
                start_at, end_at, all_day, timezone, sync_status
            )
            VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9, $10, $11)
            RETURNING *
            """,
            record.id,
            record.calendar_id,
            record.summary,
            record.description,
            record.location,
            json.dumps(record.attendees),
            record.start_at,
            record.end_at,
            record.all_day,
            record.timezone,
            record.sync_status.value,
        )
        return self._from_row(row)

    async def get(self, record_id: str) -> Optional[ScheduleRecord]:
        row = await self.db_pool.fetchrow(
            "SELECT * FROM calendar.schedules WHERE id = $1", record_id
        )
        return self._from_row(row) if row else None

    async def update(self, record_id: str, changes: Dict[str, Any]) -> Optional[ScheduleRecord]:
        unknown = set(changes) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError("Cannot update columns: %s" % ", ".join(sorted(unknown)))

        assignments = []
        values: List[Any] = []
        for column, value in changes.items():
            if column == "attendees":
                value = json.dumps(value)
            elif column == "sync_status":
                value = SyncStatus(value).value
            values.append(value)
            cast = "::jsonb" if column == "attendees" else ""
            assignments.append(f"{column} = ${len(values)}{cast}")
        values.append(record_id)

        row = await self.db_pool.fetchrow(
            f"""
            UPDATE calendar.schedules
            SET {", ".join(assignments + ["updated_at = NOW()"])}
            WHERE id = ${len(values)} AND archived_at IS NULL
            RETURNING *
            """,
            *values,
        )
        return self._from_row(row) if row else None

    async def archive(self, record_id: str) -> Optional[ScheduleRecord]:
        row = await self.db_pool.fetchrow(
            """
            UPDATE calendar.schedules
            SET archived_at = NOW(), updated_at = NOW()
            WHERE id = $1 AND archived_at IS NULL
            RETURNING *
            """,
            record_id,
        )
        return self._from_row(row) if row else None

    async def list_range(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> List[ScheduleRecord]:
        rows = await self.db_pool.fetch(
            """
            SELECT * FROM calendar.schedules
            WHERE calendar_id = $1
              AND archived_at IS NULL
              AND start_at < $3
              AND end_at > $2
            ORDER BY start_at
            """,
            calendar_id,
            start,
            end,
        )
        return [self._from_row(row) for row in rows]

    async def list_by_status(self, statuses: Iterable[SyncStatus]) -> List[ScheduleRecord]:
        rows = await self.db_pool.fetch(
            "SELECT * FROM calendar.schedules WHERE sync_status = ANY($1::text[]) ORDER BY updated_at",
            [SyncStatus(s).value for s in statuses],
        )
        return [self._from_row(row) for row in rows]

    async def set_sync_status(
        self,
        record_id: str,
        status: SyncStatus,
        provider_event_id: Optional[str] = None,
        html_link: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        await self.db_pool.execute(
            """
            UPDATE calendar.schedules
            SET sync_status = $2,
                provider_event_id = COALESCE($3, provider_event_id),
                html_link = COALESCE($4, html_link),
                last_sync_error = $5
            WHERE id = $1
            """,
            record_id,
            status.value,
            provider_event_id,
            html_link,
            error,
        )
