"""
@file: caldav_sync/services/caldav_sync_status_service.py
@description: Хранилище состояний синхронизации CalDAV по паре (user_id, item_id)
@dependencies: sqlmodel, sqlalchemy
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from caldav_sync.core.logging import get_logger
from caldav_sync.exceptions import truncate_error_message
from caldav_sync.models.base import as_utc, utc_now
from caldav_sync.models.caldav_sync_status import (
    CaldavItemType,
    CaldavSyncState,
    CaldavSyncStatus,
    CaldavSyncStatusSummary,
    RETRYABLE_STATES,
)

logger = get_logger(__name__)

NO_TARGET_MESSAGE = "No enabled calendar targets"


def backoff_threshold(retry_count: int, backoff_floor: timedelta) -> timedelta:
    """Минимальная пауза после попытки: floor * 2^retry_count"""
    return backoff_floor * (2 ** retry_count)


class CaldavSyncStatusService:
    """
    Сервис для работы с состояниями синхронизации.

    Сервис не проверяет допустимость переходов между состояниями - это
    делает оркестратор. Методы mark_* принимают expected_statuses и
    выполняют один UPDATE ... WHERE sync_status IN (...); если состояние
    строки успело измениться, обновление не применяется и возвращается None.
    """
    
    def __init__(self, session_factory: Callable[[], AsyncSession], error_message_max_length: int = 500):
        self.session_factory = session_factory
        self.error_message_max_length = error_message_max_length

    async def _select_one(self, session: AsyncSession, user_id: str, item_id: UUID) -> Optional[CaldavSyncStatus]:
        query = (
            select(CaldavSyncStatus)
            .where(
                CaldavSyncStatus.user_id == user_id,
                CaldavSyncStatus.item_id == item_id
            )
            .execution_options(populate_existing=True)
        )
        result = await session.exec(query)
        return result.first()

    async def _conditional_update(
        self,
        user_id: str,
        item_id: UUID,
        values: Dict[str, Any],
        expected_statuses: Optional[Iterable[CaldavSyncState]] = None,
    ) -> Optional[CaldavSyncStatus]:
        statement = update(CaldavSyncStatus).where(
            CaldavSyncStatus.user_id == user_id,
            CaldavSyncStatus.item_id == item_id
        )
        if expected_statuses is not None:
            statement = statement.where(CaldavSyncStatus.sync_status.in_(list(expected_statuses)))
        statement = statement.values(**values, updated_at=utc_now())

        async with self.session_factory() as session:
            try:
                result = await session.execute(statement)
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error(f"Failed to update sync status: {e}", extra={"user_id": user_id, "item_id": str(item_id)})
                raise

            if result.rowcount == 0:
                logger.debug(
                    f"Sync status update skipped, expected one of {expected_statuses}",
                    extra={"user_id": user_id, "item_id": str(item_id)},
                )
                return None
            return await self._select_one(session, user_id, item_id)

    async def get_by_item_id(self, user_id: str, item_id: UUID) -> Optional[CaldavSyncStatus]:
        async with self.session_factory() as session:
            return await self._select_one(session, user_id, item_id)

    async def upsert_pending(
        self,
        user_id: str,
        item_id: UUID,
        item_type: CaldavItemType,
        planned_item_id: Optional[UUID],
        event_title: str,
    ) -> CaldavSyncStatus:
        """
        Создает запись в состоянии pending или переводит существующую
        в pending с новым заголовком и planned_item_id.

        UID прежнего события сбрасывается: новый цикл создает новое событие.
        retry_count существующей записи сохраняется.
        """
        async with self.session_factory() as session:
            existing = await self._select_one(session, user_id, item_id)
            if existing is None:
                row = CaldavSyncStatus(
                    user_id=user_id,
                    item_id=item_id,
                    item_type=item_type,
                    planned_item_id=planned_item_id,
                    event_title=event_title,
                    sync_status=CaldavSyncState.PENDING,
                    retry_count=0,
                )
                session.add(row)
                try:
                    await session.commit()
                    await session.refresh(row)
                    logger.info("Created pending sync status", extra={"user_id": user_id, "item_id": str(item_id)})
                    return row
                except IntegrityError:
                    # Запись создана параллельно, обновляем ее ниже
                    await session.rollback()

        row = await self._conditional_update(
            user_id,
            item_id,
            {
                "item_type": item_type,
                "planned_item_id": planned_item_id,
                "event_title": event_title,
                "sync_status": CaldavSyncState.PENDING,
                "caldav_event_uid": None,
                "error_message": None,
            },
        )
        if row is None:
            raise LookupError(f"Sync status for item {item_id} disappeared during upsert")
        logger.info("Reset sync status to pending", extra={"user_id": user_id, "item_id": str(item_id)})
        return row

    async def mark_synced(
        self,
        user_id: str,
        item_id: UUID,
        caldav_event_uid: str,
        expected_statuses: Optional[Iterable[CaldavSyncState]] = None,
    ) -> Optional[CaldavSyncStatus]:
        if not caldav_event_uid:
            raise ValueError("caldav_event_uid is required for synced status")
        return await self._conditional_update(
            user_id,
            item_id,
            {
                "sync_status": CaldavSyncState.SYNCED,
                "caldav_event_uid": caldav_event_uid,
                "error_message": None,
                "last_sync_at": utc_now(),
            },
            expected_statuses,
        )

    async def mark_failed(
        self,
        user_id: str,
        item_id: UUID,
        error_message: str,
        expected_statuses: Optional[Iterable[CaldavSyncState]] = None,
    ) -> Optional[CaldavSyncStatus]:
        return await self._conditional_update(
            user_id,
            item_id,
            {
                "sync_status": CaldavSyncState.FAILED,
                "retry_count": CaldavSyncStatus.retry_count + 1,
                "error_message": truncate_error_message(error_message, self.error_message_max_length),
                "last_sync_at": utc_now(),
            },
            expected_statuses,
        )

    async def mark_no_target(
        self,
        user_id: str,
        item_id: UUID,
        expected_statuses: Optional[Iterable[CaldavSyncState]] = None,
    ) -> Optional[CaldavSyncStatus]:
        """Остается pending с пометкой об отсутствии календарей; retry_count не растет"""
        return await self._conditional_update(
            user_id,
            item_id,
            {
                "sync_status": CaldavSyncState.PENDING,
                "error_message": NO_TARGET_MESSAGE,
                "last_sync_at": utc_now(),
            },
            expected_statuses,
        )

    async def mark_removed(
        self,
        user_id: str,
        item_id: UUID,
        error_message: Optional[str] = None,
    ) -> Optional[CaldavSyncStatus]:
        values: Dict[str, Any] = {
            "sync_status": CaldavSyncState.REMOVED,
            "error_message": None,
            "last_sync_at": utc_now(),
        }
        if error_message:
            values["error_message"] = truncate_error_message(error_message, self.error_message_max_length)
        return await self._conditional_update(user_id, item_id, values)

    async def detach_planned_item(self, planned_item_id: UUID) -> int:
        """Обнуляет ссылку на удаленную запись планировщика, сами записи остаются"""
        statement = (
            update(CaldavSyncStatus)
            .where(CaldavSyncStatus.planned_item_id == planned_item_id)
            .values(planned_item_id=None, updated_at=utc_now())
        )
        async with self.session_factory() as session:
            result = await session.execute(statement)
            await session.commit()
            return result.rowcount

    async def purge(self, user_id: str, item_id: UUID) -> bool:
        statement = delete(CaldavSyncStatus).where(
            CaldavSyncStatus.user_id == user_id,
            CaldavSyncStatus.item_id == item_id
        )
        async with self.session_factory() as session:
            result = await session.execute(statement)
            await session.commit()
            return result.rowcount > 0

    async def list_retryable(
        self,
        max_retries: int,
        backoff_floor: timedelta,
        now: Optional[datetime] = None,
        limit: int = 500,
    ) -> List[CaldavSyncStatus]:
        """
        Записи pending/failed с retry_count < max_retries, у которых
        с last_sync_at прошло не меньше floor * 2^retry_count.

        Порог backoff считается в SQL: на каждое значение retry_count
        своя граница времени. Сначала возвращаются записи, которые ждут дольше.
        """
        now = as_utc(now) if now else utc_now()
        due = [
            and_(
                CaldavSyncStatus.retry_count == attempt,
                CaldavSyncStatus.last_sync_at <= now - backoff_threshold(attempt, backoff_floor),
            )
            for attempt in range(max_retries)
        ]
        if not due:
            return []

        query = (
            select(CaldavSyncStatus)
            .where(
                CaldavSyncStatus.sync_status.in_(list(RETRYABLE_STATES)),
                CaldavSyncStatus.retry_count < max_retries,
                or_(CaldavSyncStatus.last_sync_at.is_(None), *due)
            )
            .order_by(CaldavSyncStatus.last_sync_at.asc().nulls_first(), CaldavSyncStatus.created_at)
            .limit(limit)
        )
        async with self.session_factory() as session:
            return list((await session.exec(query)).all())

    async def list_retryable_for_user(self, user_id: str) -> List[CaldavSyncStatus]:
        """Все pending/failed записи пользователя без учета backoff и лимита попыток"""
        query = (
            select(CaldavSyncStatus)
            .where(
                CaldavSyncStatus.user_id == user_id,
                CaldavSyncStatus.sync_status.in_(list(RETRYABLE_STATES))
            )
            .order_by(CaldavSyncStatus.created_at)
        )
        async with self.session_factory() as session:
            return list((await session.exec(query)).all())

    async def list_by_user(
        self,
        user_id: str,
        statuses: Optional[List[CaldavSyncState]] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[CaldavSyncStatus], int]:
        filters = [CaldavSyncStatus.user_id == user_id]
        if statuses:
            filters.append(CaldavSyncStatus.sync_status.in_(statuses))

        query = (
            select(CaldavSyncStatus)
            .where(*filters)
            .order_by(CaldavSyncStatus.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        count_query = select(func.count()).select_from(CaldavSyncStatus).where(*filters)

        async with self.session_factory() as session:
            items = list((await session.exec(query)).all())
            total = (await session.exec(count_query)).one()
        return items, total

    async def summary_by_user(self, user_id: str) -> CaldavSyncStatusSummary:
        query = (
            select(CaldavSyncStatus.sync_status, func.count())
            .where(CaldavSyncStatus.user_id == user_id)
            .group_by(CaldavSyncStatus.sync_status)
        )
        async with self.session_factory() as session:
            rows = (await session.exec(query)).all()

        summary = CaldavSyncStatusSummary()
        for status, count in rows:
            setattr(summary, CaldavSyncState(status).value, count)
        return summary
