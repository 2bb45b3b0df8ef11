"""
@file: caldav_sync/tasks/caldav_tasks.py
@description: Celery задачи синхронизации с CalDAV (повторы, первичная синхронизация, события планировщика)
@dependencies: celery, caldav_engine
"""

import asyncio
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import UUID

from celery import shared_task

from caldav_sync.core.database import task_session_factory
from caldav_sync.core.logging import get_logger
from caldav_sync.models.caldav_sync_status import CaldavItemType
from caldav_sync.models.planned_item import Slot
from caldav_sync.services.caldav_engine import CaldavEngine, build_engine, load_collaborators

logger = get_logger(__name__)


def run_with_engine(action: Callable[[CaldavEngine], Awaitable[Any]]) -> Any:
    """Выполняет action в отдельном event loop с собственным пулом соединений"""
    async def runner():
        async with task_session_factory() as session_factory:
            engine = build_engine(load_collaborators(), session_factory)
            return await action(engine)

    return asyncio.run(runner())


@shared_task(bind=True, name="caldav_sync.tasks.caldav_tasks.retry_caldav_syncs")
def retry_caldav_syncs(self) -> Dict[str, Any]:
    """Плановый повтор pending/failed синхронизаций с учетом backoff"""
    try:
        logger.info("[Celery] CalDAV retry sweep started", extra={"task_id": self.request.id})
        stats = run_with_engine(lambda engine: engine.retry_service.run())
        return {"success": True, "statistics": stats, "error": None}
    except Exception as e:
        logger.error(f"[Celery] CalDAV retry sweep failed: {e}", extra={"task_id": self.request.id}, exc_info=True)
        return {"success": False, "statistics": None, "error": str(e)}


@shared_task(bind=True, name="caldav_sync.tasks.caldav_tasks.retry_user_caldav_syncs")
def retry_user_caldav_syncs(self, user_id: str) -> Dict[str, Any]:
    """Ручной повтор всех pending/failed синхронизаций пользователя"""
    try:
        stats = run_with_engine(lambda engine: engine.retry_service.retry_user(user_id))
        return {"success": True, "statistics": stats, "error": None}
    except Exception as e:
        logger.error(f"[Celery] Manual CalDAV retry failed: {e}", extra={"user_id": user_id, "task_id": self.request.id}, exc_info=True)
        return {"success": False, "statistics": None, "error": str(e)}


@shared_task(bind=True, name="caldav_sync.tasks.caldav_tasks.sync_all_future_items")
def sync_all_future_items(self, user_id: str) -> Dict[str, Any]:
    """Первичная синхронизация после включения CalDAV"""
    try:
        stats = run_with_engine(lambda engine: engine.orchestrator.sync_all_future_items(user_id))
        return {"success": True, "statistics": stats, "error": None}
    except Exception as e:
        logger.error(f"[Celery] Initial CalDAV sync failed: {e}", extra={"user_id": user_id, "task_id": self.request.id}, exc_info=True)
        return {"success": False, "statistics": None, "error": str(e)}


@shared_task(bind=True, name="caldav_sync.tasks.caldav_tasks.sync_planned_item")
def sync_planned_item(
    self,
    user_id: str,
    item_id: str,
    item_type: str,
    planned_item_id: Optional[str],
    title: str,
    slot: str,
    day: str,
    recipe_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Синхронизация созданного или измененного элемента планировщика.
    Аргументы приходят строками (JSON сериализация Celery).
    """
    try:
        row = run_with_engine(lambda engine: engine.orchestrator.on_item_upserted(
            user_id,
            UUID(item_id),
            CaldavItemType(item_type),
            UUID(planned_item_id) if planned_item_id else None,
            title,
            Slot(slot),
            date.fromisoformat(day),
            recipe_id=UUID(recipe_id) if recipe_id else None,
        ))
        return {"success": True, "sync_status": row.sync_status.value if row else None, "error": None}
    except Exception as e:
        logger.error(f"[Celery] CalDAV item sync failed: {e}", extra={"user_id": user_id, "item_id": item_id}, exc_info=True)
        return {"success": False, "sync_status": None, "error": str(e)}


@shared_task(bind=True, name="caldav_sync.tasks.caldav_tasks.remove_planned_item")
def remove_planned_item(self, user_id: str, item_id: str) -> Dict[str, Any]:
    """Удаление события для удаленного элемента планировщика"""
    try:
        row = run_with_engine(lambda engine: engine.orchestrator.on_item_deleted(user_id, UUID(item_id)))
        return {"success": True, "sync_status": row.sync_status.value if row else None, "error": None}
    except Exception as e:
        logger.error(f"[Celery] CalDAV item removal failed: {e}", extra={"user_id": user_id, "item_id": item_id}, exc_info=True)
        return {"success": False, "sync_status": None, "error": str(e)}


@shared_task(bind=True, name="caldav_sync.tasks.caldav_tasks.resync_renamed_recipe")
def resync_renamed_recipe(self, recipe_id: str, new_name: str) -> Dict[str, Any]:
    """Пересоздание событий переименованного рецепта"""
    try:
        count = run_with_engine(lambda engine: engine.orchestrator.on_recipe_renamed(UUID(recipe_id), new_name))
        return {"success": True, "statistics": {"items": count}, "error": None}
    except Exception as e:
        logger.error(f"[Celery] Recipe rename re-sync failed: {e}", extra={"task_id": self.request.id}, exc_info=True)
        return {"success": False, "statistics": None, "error": str(e)}
