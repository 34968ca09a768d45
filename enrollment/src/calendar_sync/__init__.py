"""Enrollment office calendar sync engine."""

from .archive import ArchiveReconciler, ArchiveResult, PartialArchiveFailure
from .auth import AuthContext
from .backend import BackendClient
from .config import CalendarSyncConfig, CalendarSyncSettings, get_settings
from .dual_write import MirrorReconciler, ScheduleService
from .grid import GridController, SlotSelection
from .mirror import GoogleCalendarMirror, ProviderMirror
from .models import (
    CalendarEvent,
    EventDraft,
    EventPatch,
    EventsEnvelope,
    FetchWindow,
    SyncResult,
    SyncStatus,
    ViewMode,
)
from .normalizer import to_internal, to_wire
from .scheduler import RefreshScheduler, RefreshTrigger
from .store import InMemoryScheduleStore, PostgresScheduleStore, ScheduleRecord
from .sync_client import CalendarSyncClient
from .window import compute_window

__all__ = [
    "ArchiveReconciler",
    "ArchiveResult",
    "PartialArchiveFailure",
    "AuthContext",
    "BackendClient",
    "CalendarSyncConfig",
    "CalendarSyncSettings",
    "get_settings",
    "MirrorReconciler",
    "ScheduleService",
    "GridController",
    "SlotSelection",
    "GoogleCalendarMirror",
    "ProviderMirror",
    "CalendarEvent",
    "EventDraft",
    "EventPatch",
    "EventsEnvelope",
    "FetchWindow",
    "SyncResult",
    "SyncStatus",
    "ViewMode",
    "to_internal",
    "to_wire",
    "RefreshScheduler",
    "RefreshTrigger",
    "InMemoryScheduleStore",
    "PostgresScheduleStore",
    "ScheduleRecord",
    "CalendarSyncClient",
    "compute_window",
]
