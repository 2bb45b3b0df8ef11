"""
@file: caldav_sync/services/caldav_events.py
@description: Шина событий об изменении состояний синхронизации (пользователь / домохозяйство)
@dependencies: pydantic, asyncio
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from caldav_sync.core.logging import get_logger
from caldav_sync.models.base import utc_now
from caldav_sync.models.caldav_sync_status import CaldavSyncStatusView

logger = get_logger(__name__)


class CaldavEvent(str, Enum):
    """Закрытый набор событий шины"""
    ITEM_STATUS_UPDATED = "item_status_updated"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    SYNC_STARTED = "sync_started"
    INITIAL_SYNC_COMPLETE = "initial_sync_complete"


class ItemStatusPayload(BaseModel):
    """Полное состояние записи вместе с датой и слотом"""
    status: CaldavSyncStatusView


class SyncCompletedPayload(BaseModel):
    user_id: str
    item_id: UUID
    caldav_event_uid: str


class SyncFailedPayload(BaseModel):
    user_id: str
    item_id: UUID
    error_message: str
    retry_count: int


class SyncStartedPayload(BaseModel):
    user_id: str
    total_items: int


class SyncBatchPayload(BaseModel):
    user_id: str
    total_synced: int = 0
    total_failed: int = 0
    finished_at: datetime = Field(default_factory=utc_now)


EventPayload = Union[
    ItemStatusPayload,
    SyncCompletedPayload,
    SyncFailedPayload,
    SyncStartedPayload,
    SyncBatchPayload,
]
EventHandler = Callable[[str, EventPayload], Union[None, Awaitable[None]]]


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def household_channel(household_key: str) -> str:
    return f"household:{household_key}"


class StatusEventBus(ABC):
    """
    Pub/sub для обновления интерфейса в реальном времени.

    Доставка не чаще одного раза и без гарантий: источник истины - таблица
    caldav_sync_status, клиент всегда может перечитать состояние.
    """

    @abstractmethod
    async def emit_to_user(self, user_id: str, event: CaldavEvent, payload: EventPayload) -> None:
        ...

    @abstractmethod
    async def emit_to_household(self, household_key: str, event: CaldavEvent, payload: EventPayload) -> None:
        ...

    @abstractmethod
    def on(self, event: CaldavEvent, handler: EventHandler) -> None:
        ...

    @abstractmethod
    def off(self, event: CaldavEvent, handler: EventHandler) -> None:
        ...


class InMemoryStatusEventBus(StatusEventBus):
    """Шина внутри процесса. Обработчик получает (channel, payload)"""

    def __init__(self):
        self._handlers: Dict[CaldavEvent, List[EventHandler]] = {}

    def on(self, event: CaldavEvent, handler: EventHandler) -> None:
        self._handlers.setdefault(CaldavEvent(event), []).append(handler)

    def off(self, event: CaldavEvent, handler: EventHandler) -> None:
        handlers = self._handlers.get(CaldavEvent(event), [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit_to_user(self, user_id: str, event: CaldavEvent, payload: EventPayload) -> None:
        await self._emit(user_channel(user_id), event, payload)

    async def emit_to_household(self, household_key: str, event: CaldavEvent, payload: EventPayload) -> None:
        await self._emit(household_channel(household_key), event, payload)

    async def _emit(self, channel: str, event: CaldavEvent, payload: EventPayload) -> None:
        event = CaldavEvent(event)
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(channel, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Event handler failed for {event.value} on {channel}: {e}", exc_info=True)


@asynccontextmanager
async def subscribe_queue(
    bus: StatusEventBus,
    channels: Iterable[str],
    maxsize: int = 256,
) -> AsyncIterator["asyncio.Queue[Dict[str, Any]]"]:
    """
    Подписывает asyncio.Queue на все события указанных каналов.
    Используется SSE эндпоинтом; при переполнении очереди событие теряется.
    """
    wanted = set(channels)
    queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=maxsize)
    handlers: Dict[CaldavEvent, EventHandler] = {}

    def make_handler(event: CaldavEvent) -> EventHandler:
        def handler(channel: str, payload: EventPayload) -> None:
            if channel not in wanted:
                return
            try:
                queue.put_nowait({
                    "type": event.value,
                    "channel": channel,
                    "data": payload.model_dump(mode="json"),
                })
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full, dropped {event.value} for {channel}")
        return handler

    for event in CaldavEvent:
        handlers[event] = make_handler(event)
        bus.on(event, handlers[event])
    try:
        yield queue
    finally:
        for event, handler in handlers.items():
            bus.off(event, handler)


_default_bus: Optional[StatusEventBus] = None


def get_event_bus() -> StatusEventBus:
    """Шина по умолчанию для процесса"""
    global _default_bus
    if _default_bus is None:
        _default_bus = InMemoryStatusEventBus()
    return _default_bus
