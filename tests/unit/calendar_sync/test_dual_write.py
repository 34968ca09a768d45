"""Unit tests for dual-write (local store + provider mirror) and reconciliation."""

from datetime import datetime

import pytest

from config.exceptions import MirrorError, ValidationError
from enrollment.src.calendar_sync.dual_write import MirrorReconciler, ScheduleService
from enrollment.src.calendar_sync.mirror import ProviderMirror
from enrollment.src.calendar_sync.models import SyncStatus
from enrollment.src.calendar_sync.store import InMemoryScheduleStore

BODY = {
    "summary": "Scholarship interview",
    "start": {"dateTime": "2024-05-15T09:00:00+08:00"},
    "end": {"dateTime": "2024-05-15T10:00:00+08:00"},
}


class FakeMirror(ProviderMirror):
    """In-memory provider.

    ``failing`` makes every write raise MirrorError; ``socket_timeouts`` makes
    the next N writes raise a raw TimeoutError.
    """

    def __init__(self):
        self.failing = False
        self.socket_timeouts = 0
        self.calls = []
        self.events = {}

    def _check(self, operation):
        self.calls.append(operation)
        if self.socket_timeouts:
            self.socket_timeouts -= 1
            raise TimeoutError("socket timed out")
        if self.failing:
            raise MirrorError("Google %s failed (503): backend error" % operation)

    async def insert(self, calendar_id, body):
        self._check("insert")
        event_id = "g-%d" % (len(self.events) + 1)
        self.events[event_id] = body
        return {"id": event_id, "htmlLink": "https://calendar.google.com/event?eid=%s" % event_id}

    async def patch(self, calendar_id, event_id, body):
        self._check("patch")
        self.events[event_id] = body
        return {"id": event_id}

    async def delete(self, calendar_id, event_id):
        self._check("delete")
        self.events.pop(event_id, None)


@pytest.fixture
def store():
    return InMemoryScheduleStore()


@pytest.fixture
def mirror():
    return FakeMirror()


@pytest.fixture
def service(store, mirror):
    return ScheduleService(store, mirror)


class TestScheduleService:
    """Local write first, provider mirror in the background."""

    @pytest.mark.asyncio
    async def test_create_is_pending_then_synced(self, service, store, mirror):
        # Act
        record = await service.create(BODY)
        status_on_return = record.sync_status
        await service.drain()

        # Assert
        stored = await store.get(record.id)
        assert status_on_return is SyncStatus.PENDING
        assert stored.sync_status is SyncStatus.SYNCED
        assert stored.provider_event_id == "g-1"
        assert stored.html_link.endswith("eid=g-1")
        assert mirror.calls == ["insert"]

    @pytest.mark.asyncio
    async def test_mirror_failure_keeps_local_record(self, service, store, mirror, manila):
        # Arrange
        mirror.failing = True

        # Act
        record = await service.create(BODY)
        await service.drain()

        # Assert
        stored = await store.get(record.id)
        assert stored.sync_status is SyncStatus.FAILED
        assert "503" in stored.last_sync_error
        listed = await service.list_window(
            datetime(2024, 5, 1, tzinfo=manila), datetime(2024, 6, 1, tzinfo=manila)
        )
        assert [e["id"] for e in listed["events"]] == [record.id]
        assert listed["events"][0]["syncStatus"] == "failed"

    @pytest.mark.asyncio
    async def test_update_patches_mirrored_record(self, service, store, mirror):
        record = await service.create(BODY)
        await service.drain()

        updated = await service.update(record.id, {**BODY, "summary": "Rescheduled interview"})
        await service.drain()

        assert updated.summary == "Rescheduled interview"
        assert mirror.calls == ["insert", "patch"]
        assert (await store.get(record.id)).sync_status is SyncStatus.SYNCED
        assert mirror.events["g-1"]["summary"] == "Rescheduled interview"

    @pytest.mark.asyncio
    async def test_background_transport_error_marks_failed(self, service, store, mirror):
        mirror.socket_timeouts = 1

        record = await service.create(BODY)
        await service.drain()

        stored = await store.get(record.id)
        assert stored.sync_status is SyncStatus.FAILED
        assert "timed out" in stored.last_sync_error

    @pytest.mark.asyncio
    async def test_unparseable_dates_are_not_stored(self, service, store, mirror):
        body = {"summary": "Bad", "start": {"dateTime": "not-a-date"}, "end": {"dateTime": "garbage"}}

        with pytest.raises(ValidationError):
            await service.create(body)

        assert await store.list_by_status([SyncStatus.PENDING]) == []
        assert mirror.calls == []

    @pytest.mark.asyncio
    async def test_update_requires_id(self, service):
        with pytest.raises(ValidationError, match="Event ID is required for updating"):
            await service.update("", BODY)

    @pytest.mark.asyncio
    async def test_update_missing_record(self, service, mirror):
        assert await service.update("nope", BODY) is None
        assert mirror.calls == []

    @pytest.mark.asyncio
    async def test_archive_deletes_provider_copy(self, service, store, mirror, manila):
        record = await service.create(BODY)
        await service.drain()

        assert await service.archive(record.id) is True
        await service.drain()

        assert mirror.calls == ["insert", "delete"]
        assert mirror.events == {}
        assert (await store.get(record.id)).sync_status is SyncStatus.SYNCED
        listed = await service.list_window(
            datetime(2024, 5, 1, tzinfo=manila), datetime(2024, 6, 1, tzinfo=manila)
        )
        assert listed == {"events": []}
        assert await service.archive(record.id) is False

    @pytest.mark.asyncio
    async def test_archive_never_mirrored_record(self, store):
        service = ScheduleService(store, mirror=None)
        record = await service.create(BODY)

        assert await service.archive(record.id) is True
        assert (await store.get(record.id)).sync_status is SyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_without_mirror_records_stay_pending(self, store):
        service = ScheduleService(store, mirror=None)

        record = await service.create(BODY)
        await service.drain()

        assert (await store.get(record.id)).sync_status is SyncStatus.PENDING


class TestMirrorReconciler:
    """Background retries of PENDING and FAILED records."""

    @pytest.mark.asyncio
    async def test_failed_records_are_retried(self, service, store, mirror):
        # Arrange
        mirror.failing = True
        first = await service.create(BODY)
        second = await service.create({**BODY, "summary": "Second interview"})
        await service.drain()
        mirror.failing = False

        # Act
        result = await MirrorReconciler(service).run_once()

        # Assert
        assert result.events_created == 2
        assert result.success
        for record_id in (first.id, second.id):
            assert (await store.get(record_id)).sync_status is SyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_one_attempt_per_record_per_pass(self, service, mirror):
        mirror.failing = True
        await service.create(BODY)
        await service.drain()
        mirror.calls.clear()

        result = await MirrorReconciler(service).run_once()

        assert mirror.calls == ["insert"]
        assert len(result.errors) == 1
        assert not result.success

    @pytest.mark.asyncio
    async def test_pending_archive_is_retried_as_delete(self, service, store, mirror):
        record = await service.create(BODY)
        await service.drain()
        mirror.failing = True
        await service.archive(record.id)
        await service.drain()
        assert (await store.get(record.id)).sync_status is SyncStatus.FAILED
        mirror.failing = False

        result = await MirrorReconciler(service).run_once()

        assert result.events_deleted == 1
        assert mirror.events == {}

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, service, mirror):
        await service.create(BODY)
        await service.drain()
        mirror.calls.clear()

        result = await MirrorReconciler(service).run_once()

        assert result.total_events == 0
        assert mirror.calls == []

    @pytest.mark.asyncio
    async def test_push_pending_counts_outcomes(self, store, mirror):
        # Arrange: records written while mirroring was off
        offline = ScheduleService(store, mirror=None)
        await offline.create(BODY)
        await offline.create({**BODY, "summary": "Follow-up"})
        service = ScheduleService(store, mirror)

        # Act
        result = await service.push_pending()

        # Assert
        assert result.events_created == 2
        assert mirror.calls == ["insert", "insert"]
        assert await store.list_by_status([SyncStatus.PENDING]) == []

    @pytest.mark.asyncio
    async def test_transport_error_does_not_stop_the_pass(self, store, mirror):
        # Arrange
        offline = ScheduleService(store, mirror=None)
        first = await offline.create(BODY)
        second = await offline.create({**BODY, "summary": "Follow-up"})
        mirror.socket_timeouts = 1
        service = ScheduleService(store, mirror)

        # Act
        result = await service.push_pending()

        # Assert
        assert mirror.calls == ["insert", "insert"]
        assert result.events_created == 1
        assert result.errors == ["Error mirroring schedule %s" % first.id]
        assert (await store.get(first.id)).sync_status is SyncStatus.FAILED
        assert (await store.get(second.id)).sync_status is SyncStatus.SYNCED
