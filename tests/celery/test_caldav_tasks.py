"""
@file: tests/celery/test_caldav_tasks.py
@description: Unit-тесты celery-задач синхронизации CalDAV (caldav_sync/tasks/caldav_tasks.py)
@dependencies: pytest, unittest.mock, celery
"""

from contextlib import asynccontextmanager
from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from caldav_sync.models.caldav_sync_status import CaldavItemType, CaldavSyncState
from caldav_sync.models.planned_item import Slot
from caldav_sync.tasks import caldav_tasks


@pytest.fixture
def mock_engine():
    engine = MagicMock()
    engine.retry_service.run = AsyncMock(return_value={"total_retried": 2, "total_failed": 1, "skipped": 0})
    engine.retry_service.retry_user = AsyncMock(return_value={"total_retried": 1, "total_failed": 0, "skipped": 0})
    engine.orchestrator.sync_all_future_items = AsyncMock(return_value={"total_synced": 3, "total_failed": 0})
    engine.orchestrator.on_item_upserted = AsyncMock(return_value=SimpleNamespace(sync_status=CaldavSyncState.SYNCED))
    engine.orchestrator.on_item_deleted = AsyncMock(return_value=SimpleNamespace(sync_status=CaldavSyncState.REMOVED))
    engine.orchestrator.on_recipe_renamed = AsyncMock(return_value=2)

    session_factory = MagicMock()

    @asynccontextmanager
    async def fake_task_session_factory():
        yield session_factory

    with patch("caldav_sync.tasks.caldav_tasks.task_session_factory", fake_task_session_factory), \
         patch("caldav_sync.tasks.caldav_tasks.load_collaborators", MagicMock(return_value="collaborators")), \
         patch("caldav_sync.tasks.caldav_tasks.build_engine", MagicMock(return_value=engine)) as mock_build:
        yield engine
        mock_build.assert_called_with("collaborators", session_factory)


def test_retry_caldav_syncs(mock_engine):
    result = caldav_tasks.retry_caldav_syncs.run()

    assert result == {
        "success": True,
        "statistics": {"total_retried": 2, "total_failed": 1, "skipped": 0},
        "error": None,
    }
    mock_engine.retry_service.run.assert_awaited_once_with()


def test_retry_user_caldav_syncs(mock_engine):
    result = caldav_tasks.retry_user_caldav_syncs.run("user-a")

    assert result["success"] is True
    mock_engine.retry_service.retry_user.assert_awaited_once_with("user-a")


def test_sync_all_future_items(mock_engine):
    result = caldav_tasks.sync_all_future_items.run("user-a")

    assert result["statistics"] == {"total_synced": 3, "total_failed": 0}
    mock_engine.orchestrator.sync_all_future_items.assert_awaited_once_with("user-a")


def test_sync_planned_item_parses_arguments(mock_engine):
    item_id, planned_item_id, recipe_id = uuid4(), uuid4(), uuid4()

    result = caldav_tasks.sync_planned_item.run(
        "user-a", str(item_id), "recipe", str(planned_item_id), "Pasta", "Dinner", "2030-05-17", str(recipe_id)
    )

    assert result == {"success": True, "sync_status": "synced", "error": None}
    mock_engine.orchestrator.on_item_upserted.assert_awaited_once_with(
        "user-a",
        item_id,
        CaldavItemType.RECIPE,
        planned_item_id,
        "Pasta",
        Slot.DINNER,
        date(2030, 5, 17),
        recipe_id=recipe_id,
    )


def test_sync_planned_item_invalid_slot(mock_engine):
    result = caldav_tasks.sync_planned_item.run("user-a", str(uuid4()), "note", None, "Note", "Brunch", "2030-05-17")

    assert result["success"] is False
    assert "Brunch" in result["error"]
    mock_engine.orchestrator.on_item_upserted.assert_not_called()


def test_remove_planned_item(mock_engine):
    item_id = uuid4()

    result = caldav_tasks.remove_planned_item.run("user-a", str(item_id))

    assert result == {"success": True, "sync_status": "removed", "error": None}
    mock_engine.orchestrator.on_item_deleted.assert_awaited_once_with("user-a", item_id)


def test_resync_renamed_recipe(mock_engine):
    recipe_id = uuid4()

    result = caldav_tasks.resync_renamed_recipe.run(str(recipe_id), "Lasagne")

    assert result["statistics"] == {"items": 2}
    mock_engine.orchestrator.on_recipe_renamed.assert_awaited_once_with(recipe_id, "Lasagne")


def test_task_reports_engine_errors(mock_engine):
    mock_engine.retry_service.run.side_effect = RuntimeError("database is down")

    result = caldav_tasks.retry_caldav_syncs.run()

    assert result == {"success": False, "statistics": None, "error": "database is down"}


def test_beat_schedule_registers_retry_sweep():
    from caldav_sync.celery_app import celery_app

    schedule = celery_app.conf.beat_schedule["caldav-retry-sweep"]
    assert schedule["task"] == caldav_tasks.retry_caldav_syncs.name
