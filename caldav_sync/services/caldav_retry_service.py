"""
@file: caldav_sync/services/caldav_retry_service.py
@description: Периодический и ручной повтор синхронизации pending/failed записей
@dependencies: CaldavSyncStatusService, CaldavSyncOrchestrator, PlannedItemProvider
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from caldav_sync.core.logging import get_logger
from caldav_sync.models.caldav_sync_status import CaldavSyncState, CaldavSyncStatus
from caldav_sync.services.caldav_sync_service import CaldavSyncOrchestrator
from caldav_sync.services.caldav_sync_status_service import CaldavSyncStatusService
from caldav_sync.services.collaborators import PlannedItemProvider

logger = get_logger(__name__)


class CaldavRetryService:
    """
    Повтор синхронизации без изменения элемента в планировщике.

    Плановый проход учитывает backoff и лимит попыток: записи с
    retry_count >= max_retries остаются failed навсегда. Ручной повтор
    пользователя (после исправления учетных данных) игнорирует и то, и другое.
    """
    
    def __init__(
        self,
        store: CaldavSyncStatusService,
        orchestrator: CaldavSyncOrchestrator,
        items: PlannedItemProvider,
        max_retries: int = 10,
        backoff_floor: timedelta = timedelta(minutes=1),
        batch_size: int = 500,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.items = items
        self.max_retries = max_retries
        self.backoff_floor = backoff_floor
        self.batch_size = batch_size

    async def _retry_rows(self, rows: List[CaldavSyncStatus]) -> Dict[str, int]:
        stats = {"total_retried": 0, "total_failed": 0, "skipped": 0}
        for row in rows:
            item = await self.items.get_planned_item(row.item_type, row.item_id)
            if item is None:
                logger.info("Planned item no longer exists, retry skipped", extra={"user_id": row.user_id, "item_id": str(row.item_id)})
                stats["skipped"] += 1
                continue

            result = await self.orchestrator.retry_row(row, item)
            if result is not None and result.sync_status == CaldavSyncState.SYNCED:
                stats["total_retried"] += 1
            else:
                stats["total_failed"] += 1
        return stats

    async def run(self, max_retries: Optional[int] = None, now: Optional[datetime] = None) -> Dict[str, int]:
        """Плановый проход по всем пользователям"""
        max_retries = self.max_retries if max_retries is None else max_retries
        rows = await self.store.list_retryable(max_retries, self.backoff_floor, now, limit=self.batch_size)
        logger.info(f"🔄 CalDAV retry sweep: {len(rows)} eligible row(s)")

        stats = await self._retry_rows(rows)
        logger.info(
            f"CalDAV retry sweep finished: {stats['total_retried']} synced, "
            f"{stats['total_failed']} failed, {stats['skipped']} skipped"
        )
        return stats

    async def retry_user(self, user_id: str) -> Dict[str, int]:
        """Ручной повтор всех pending/failed записей пользователя"""
        rows = await self.store.list_retryable_for_user(user_id)
        logger.info(f"Manual CalDAV retry of {len(rows)} row(s)", extra={"user_id": user_id})
        return await self._retry_rows(rows)
