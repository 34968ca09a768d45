"""Best-effort batched archive of calendar events."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, List, MutableSet, Optional

import structlog

from .sync_client import CalendarSyncClient

logger = structlog.get_logger(__name__)

RefreshCallable = Callable[[], Awaitable[object]]


@dataclass(frozen=True)
class PartialArchiveFailure:
    """One id whose delete call failed inside a batch (logged, not raised)."""

    event_id: str
    error: str
    error_type: str


@dataclass
class ArchiveResult:
    archived: List[str] = field(default_factory=list)
    failed: List[PartialArchiveFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


class ArchiveReconciler:
    """Single code path for "remove this set of ids".

    Each delete is isolated: one failure never aborts the others. The refresh
    callback always runs afterwards so the view converges to server state
    even when some deletes failed upstream. Failures are reported in the
    result but not retried here.
    """

    def __init__(
        self,
        sync_client: CalendarSyncClient,
        refresh: RefreshCallable,
        selection: Optional[MutableSet[str]] = None,
    ):
        self.sync_client = sync_client
        self.refresh = refresh
        self.selection: MutableSet[str] = selection if selection is not None else set()

    async def _delete_one(self, event_id: str) -> Optional[PartialArchiveFailure]:
        try:
            await self.sync_client.delete_event(event_id)
        except Exception as e:
            logger.warning(
                "Archive failed for event",
                event_id=event_id,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            return PartialArchiveFailure(event_id, str(e), e.__class__.__name__)
        return None

    async def archive(self, ids: Iterable[str]) -> ArchiveResult:
        """Delete every id independently, then refresh and clear the selection.

        Args:
            ids: Event ids to archive; blanks and duplicates are ignored

        Returns:
            ArchiveResult listing archived ids and per-id failures
        """
        unique_ids = list(dict.fromkeys(i for i in ids if i))
        result = ArchiveResult()

        try:
            outcomes = await asyncio.gather(*(self._delete_one(i) for i in unique_ids))
            for event_id, failure in zip(unique_ids, outcomes):
                if failure is None:
                    result.archived.append(event_id)
                else:
                    result.failed.append(failure)
        finally:
            await self.refresh()
            self.selection.difference_update(unique_ids)

        logger.info(
            "Archive batch completed",
            requested=len(unique_ids),
            archived=len(result.archived),
            failed=len(result.failed),
        )
        return result
