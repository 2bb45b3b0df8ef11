"""
@file: caldav_sync/services/caldav_sync_service.py
@description: Оркестратор синхронизации: резолвер -> построение ICS -> CalDAV -> состояние -> события
@dependencies: CaldavSyncStatusService, HouseholdTargetResolver, CalDavClient, StatusEventBus
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Callable, Dict, Hashable, List, Optional, Tuple
from uuid import UUID, uuid4

import httpx

from caldav_sync.core.logging import get_logger
from caldav_sync.exceptions import (
    ConfigurationError,
    ConflictTransportError,
    InvalidIntervalError,
    TransportError,
)
from caldav_sync.models.base import utc_now
from caldav_sync.models.caldav_config import RemoteCalendarConfig
from caldav_sync.models.caldav_sync_status import (
    CaldavItemType,
    CaldavSyncState,
    CaldavSyncStatus,
    CaldavSyncStatusView,
    RETRYABLE_STATES,
)
from caldav_sync.models.planned_item import PlannedItem, Slot
from caldav_sync.services.caldav_client import CalDavClient
from caldav_sync.services.caldav_events import (
    CaldavEvent,
    ItemStatusPayload,
    StatusEventBus,
    SyncBatchPayload,
    SyncCompletedPayload,
    SyncFailedPayload,
    SyncStartedPayload,
)
from caldav_sync.services.caldav_sync_status_service import CaldavSyncStatusService
from caldav_sync.services.collaborators import HouseholdDirectory, PlannedItemProvider
from caldav_sync.services.household_resolver import HouseholdTargetResolver
from caldav_sync.services.ics_builder import EventInput, build_document

logger = get_logger(__name__)

ClientFactory = Callable[[RemoteCalendarConfig], CalDavClient]


class KeyedLock:
    """asyncio.Lock на каждый ключ; лок удаляется, когда его никто не ждет"""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._holders: Dict[Hashable, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


def to_status_view(row: CaldavSyncStatus, item: Optional[PlannedItem] = None) -> CaldavSyncStatusView:
    """Запись состояния вместе с датой и слотом элемента планировщика"""
    view = CaldavSyncStatusView(**row.model_dump())
    if item is not None:
        view.date = item.date
        view.slot = Slot(item.slot).value
    return view


class CaldavSyncOrchestrator:
    """
    Управляет переходами состояний синхронизации для пары (user_id, item_id).

    Ошибки CalDAV и построения документа не выходят наружу: они превращаются
    в состояние failed с текстом ошибки. Операции над одной парой
    выполняются последовательно (KeyedLock), а записи в хранилище сделаны
    условными по текущему состоянию.
    """
    
    def __init__(
        self,
        store: CaldavSyncStatusService,
        resolver: HouseholdTargetResolver,
        households: HouseholdDirectory,
        bus: StatusEventBus,
        items: Optional[PlannedItemProvider] = None,
        prodid: str = "-//CalDAV Sync//Planner//EN",
        app_base_url: str = "http://localhost:3000",
        timeout: Optional[float] = None,
        client_factory: Optional[ClientFactory] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.households = households
        self.bus = bus
        self.items = items
        self.prodid = prodid
        self.app_base_url = app_base_url.rstrip("/")
        self.timeout = timeout
        self.http_transport = http_transport
        self.client_factory = client_factory or self._default_client
        self.locks = KeyedLock()

    def _default_client(self, config: RemoteCalendarConfig) -> CalDavClient:
        return CalDavClient.from_config(config, timeout=self.timeout, transport=self.http_transport)

    def recipe_link(self, recipe_id: UUID) -> str:
        return f"{self.app_base_url}/recipes/{recipe_id}"

    async def _clients_for(self, user_id: str) -> List[Tuple[str, RemoteCalendarConfig, CalDavClient]]:
        targets = await self.resolver.resolve(user_id)
        clients = []
        for identity, config in targets.items():
            try:
                clients.append((identity, config, self.client_factory(config)))
            except ConfigurationError as e:
                # до хранилища не доходит, пользователь увидит ошибку в настройках
                logger.warning(f"Skipping CalDAV target {identity}: {e}", extra={"user_id": config.user_id})
        return clients

    async def _delete_remote(self, user_id: str, uid: str) -> bool:
        """Удаляет событие со всех серверов домохозяйства; ошибки только логируются"""
        deleted = False
        for identity, _config, client in await self._clients_for(user_id):
            try:
                await client.delete_event(uid)
                deleted = True
            except TransportError as e:
                logger.warning(f"Failed to delete CalDAV event {uid} on {identity}: {e}", extra={"user_id": user_id})
        return deleted

    async def _sync_to_targets(
        self,
        user_id: str,
        item_id: UUID,
        title: str,
        day: date,
        slot: Slot,
        recipe_id: Optional[UUID] = None,
    ) -> Optional[CaldavSyncStatus]:
        clients = await self._clients_for(user_id)
        if not clients:
            logger.info("No enabled CalDAV targets, item stays pending", extra={"user_id": user_id, "item_id": str(item_id)})
            return await self.store.mark_no_target(user_id, item_id, expected_statuses=RETRYABLE_STATES)

        uid = str(uuid4())
        link = self.recipe_link(recipe_id) if recipe_id else None
        synced = False
        last_error: Optional[Exception] = None

        for identity, config, client in clients:
            try:
                start, end = config.event_interval(day, slot)
                document = build_document(
                    EventInput(title=title, start=start, end=end, description=link, uid=uid, url=link),
                    prodid=self.prodid,
                )
                await client.create_event(document.ics, document.uid)
                synced = True
                logger.debug(f"Created CalDAV event {uid} on {identity}", extra={"user_id": user_id, "item_id": str(item_id)})
            except ConflictTransportError as e:
                logger.warning(f"CalDAV event {uid} already exists on {identity}: {e}", extra={"user_id": user_id, "item_id": str(item_id)})
                synced = True
            except (TransportError, InvalidIntervalError) as e:
                logger.warning(f"CalDAV sync to {identity} failed: {e}", extra={"user_id": user_id, "item_id": str(item_id)})
                last_error = e

        if not synced:
            row = await self.store.mark_failed(user_id, item_id, str(last_error), expected_statuses=RETRYABLE_STATES)
            logger.info("Item sync failed", extra={"user_id": user_id, "item_id": str(item_id)})
            return row if row is not None else await self.store.get_by_item_id(user_id, item_id)

        row = await self.store.mark_synced(user_id, item_id, uid, expected_statuses=RETRYABLE_STATES)
        if row is not None:
            logger.info(f"✅ Item synced as {uid}", extra={"user_id": user_id, "item_id": str(item_id)})
            return row

        # Пока шла попытка, запись перешла в другое состояние (удаление или чужой цикл);
        # событие этого цикла в записи не попало и удаляется
        current = await self.store.get_by_item_id(user_id, item_id)
        if current is None or current.caldav_event_uid != uid:
            logger.info(f"Sync status changed during sync, deleting event {uid}", extra={"user_id": user_id, "item_id": str(item_id)})
            await self._delete_remote(user_id, uid)
        return current

    async def _publish(self, row: Optional[CaldavSyncStatus], item: Optional[PlannedItem] = None) -> None:
        if row is None:
            return
        try:
            household_key = await self.households.get_household_key(row.user_id)
            await self.bus.emit_to_household(
                household_key,
                CaldavEvent.ITEM_STATUS_UPDATED,
                ItemStatusPayload(status=to_status_view(row, item)),
            )
            if row.sync_status == CaldavSyncState.SYNCED:
                await self.bus.emit_to_user(
                    row.user_id,
                    CaldavEvent.SYNC_COMPLETED,
                    SyncCompletedPayload(user_id=row.user_id, item_id=row.item_id, caldav_event_uid=row.caldav_event_uid),
                )
            elif row.sync_status == CaldavSyncState.FAILED:
                await self.bus.emit_to_user(
                    row.user_id,
                    CaldavEvent.SYNC_FAILED,
                    SyncFailedPayload(
                        user_id=row.user_id,
                        item_id=row.item_id,
                        error_message=row.error_message or "",
                        retry_count=row.retry_count,
                    ),
                )
        except Exception as e:
            logger.error(f"Failed to publish sync status: {e}", extra={"user_id": row.user_id, "item_id": str(row.item_id)}, exc_info=True)

    async def on_item_upserted(
        self,
        user_id: str,
        item_id: UUID,
        item_type: CaldavItemType,
        planned_item_id: Optional[UUID],
        title: str,
        slot: Slot,
        day: date,
        recipe_id: Optional[UUID] = None,
    ) -> Optional[CaldavSyncStatus]:
        """
        Новый цикл синхронизации элемента.

        Если элемент уже был синхронизирован, старое событие удаляется,
        затем создается новое с новым UID.
        """
        async with self.locks.hold((user_id, item_id)):
            existing = await self.store.get_by_item_id(user_id, item_id)
            if existing is not None and existing.caldav_event_uid and existing.sync_status == CaldavSyncState.SYNCED:
                logger.info(f"Replacing CalDAV event {existing.caldav_event_uid}", extra={"user_id": user_id, "item_id": str(item_id)})
                await self._delete_remote(user_id, existing.caldav_event_uid)

            await self.store.upsert_pending(user_id, item_id, item_type, planned_item_id, title)
            row = await self._sync_to_targets(user_id, item_id, title, day, slot, recipe_id)

        await self._publish(row, PlannedItem(
            item_id=item_id,
            item_type=item_type,
            user_id=user_id,
            planned_item_id=planned_item_id,
            title=title,
            date=day,
            slot=slot,
            recipe_id=recipe_id,
        ))
        return row

    async def sync_item(self, item: PlannedItem, title: Optional[str] = None) -> Optional[CaldavSyncStatus]:
        return await self.on_item_upserted(
            item.user_id,
            item.item_id,
            item.item_type,
            item.planned_item_id,
            title or item.title,
            item.slot,
            item.date,
            recipe_id=item.recipe_id,
        )

    async def on_item_deleted(self, user_id: str, item_id: UUID) -> Optional[CaldavSyncStatus]:
        """
        Удаляет событие с серверов (если оно было создано) и переводит
        запись в removed. Ошибка удаления на сервере переход не блокирует.
        """
        async with self.locks.hold((user_id, item_id)):
            row = await self.store.get_by_item_id(user_id, item_id)
            if row is None:
                return None
            if row.sync_status == CaldavSyncState.REMOVED:
                return row

            if row.caldav_event_uid:
                await self._delete_remote(user_id, row.caldav_event_uid)
            else:
                logger.debug("No CalDAV event to delete", extra={"user_id": user_id, "item_id": str(item_id)})

            row = await self.store.mark_removed(user_id, item_id)
            logger.info("Item marked as removed", extra={"user_id": user_id, "item_id": str(item_id)})

        await self._publish(row)
        return row

    async def retry_row(self, row: CaldavSyncStatus, item: PlannedItem) -> Optional[CaldavSyncStatus]:
        """
        Повторная попытка для pending/failed записи с сохраненным заголовком.
        Дата и слот берутся из текущего состояния элемента планировщика.
        """
        async with self.locks.hold((row.user_id, row.item_id)):
            current = await self.store.get_by_item_id(row.user_id, row.item_id)
            if current is None or current.sync_status not in RETRYABLE_STATES:
                return current
            result = await self._sync_to_targets(
                current.user_id,
                current.item_id,
                current.event_title,
                item.date,
                item.slot,
                item.recipe_id,
            )

        await self._publish(result, item)
        return result

    async def sync_all_future_items(self, user_id: str, today: Optional[date] = None) -> Dict[str, int]:
        """Первичная синхронизация всех будущих элементов пользователя"""
        result = {"total_synced": 0, "total_failed": 0}
        if self.items is None:
            raise ConfigurationError("Planned item provider is not configured")

        config = await self.resolver.configs.get_config(user_id)
        if config is None or not config.enabled:
            logger.info("CalDAV sync disabled, initial sync skipped", extra={"user_id": user_id})
            return result

        today = today or utc_now().date()
        future_items = await self.items.list_future_items(user_id, today)
        logger.info(f"🚀 Initial CalDAV sync of {len(future_items)} item(s)", extra={"user_id": user_id})
        await self.bus.emit_to_user(
            user_id,
            CaldavEvent.SYNC_STARTED,
            SyncStartedPayload(user_id=user_id, total_items=len(future_items)),
        )

        for item in future_items:
            row = await self.sync_item(item)
            if row is not None and row.sync_status == CaldavSyncState.SYNCED:
                result["total_synced"] += 1
            else:
                result["total_failed"] += 1

        logger.info(
            f"Initial CalDAV sync completed: {result['total_synced']} synced, {result['total_failed']} failed",
            extra={"user_id": user_id},
        )
        await self.bus.emit_to_user(
            user_id,
            CaldavEvent.INITIAL_SYNC_COMPLETE,
            SyncBatchPayload(user_id=user_id, **result),
        )
        return result

    async def on_recipe_renamed(self, recipe_id: UUID, new_name: str) -> int:
        """Пересоздает события всех запланированных экземпляров рецепта"""
        if self.items is None:
            raise ConfigurationError("Planned item provider is not configured")

        planned = await self.items.list_planned_by_recipe(recipe_id)
        for item in planned:
            await self.sync_item(item, title=new_name)
        logger.info(f"Re-synced {len(planned)} planned instance(s) of renamed recipe {recipe_id}")
        return len(planned)

    async def on_planned_item_deleted(self, planned_item_id: UUID) -> int:
        """Запись планировщика удалена целиком: ссылки обнуляются, история остается"""
        return await self.store.detach_planned_item(planned_item_id)
