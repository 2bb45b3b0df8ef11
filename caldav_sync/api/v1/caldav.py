"""
@file: caldav_sync/api/v1/caldav.py
@description: API эндпоинты состояния синхронизации CalDAV, ручных действий и потока событий (SSE)
@dependencies: fastapi, pydantic, celery
"""

import asyncio
import json
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, List, Optional

from celery.result import AsyncResult
from fastapi import APIRouter, Body, Query
from pydantic import BaseModel, Field
from starlette.requests import Request
from starlette.responses import StreamingResponse

from caldav_sync.api.dependencies import CaldavEngineDep, CurrentUserDep
from caldav_sync.celery_app import celery_app
from caldav_sync.core.auth import CurrentUser
from caldav_sync.core.logging import get_logger
from caldav_sync.exceptions import ConfigurationError, NotFoundHTTPException
from caldav_sync.models.base import utc_now
from caldav_sync.models.caldav_sync_status import (
    CaldavSyncState,
    CaldavSyncStatusSummary,
    CaldavSyncStatusView,
)
from caldav_sync.services.caldav_client import CalDavClient
from caldav_sync.services.caldav_engine import CaldavEngine
from caldav_sync.services.caldav_events import household_channel, subscribe_queue, user_channel
from caldav_sync.services.caldav_sync_service import to_status_view

logger = get_logger(__name__)
router = APIRouter()

KEEPALIVE_SECONDS = 30.0


class StatusList(BaseModel):
    items: List[CaldavSyncStatusView]
    total: int
    page: int
    per_page: int


class TaskStartedResponse(BaseModel):
    success: bool = True
    task_id: str
    message: str
    started_at: datetime


class TaskStatusResponse(BaseModel):
    task_id: str
    status: str
    result: Optional[Dict[str, Any]] = None


class ConnectionTestRequest(BaseModel):
    """Параметры для проверки; если не переданы, используется сохраненная конфигурация"""
    server_url: str
    username: str
    password: str = Field(repr=False)


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str


@router.get("/status", response_model=StatusList, summary="Состояния синхронизации пользователя")
async def list_sync_statuses(
    status: Optional[List[CaldavSyncState]] = Query(None, description="Фильтр по состоянию"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    current_user: CurrentUser = CurrentUserDep,
    engine: CaldavEngine = CaldavEngineDep,
):
    """
    Записи синхронизации текущего пользователя с датой и слотом
    из планировщика (для удаленных элементов дата и слот пустые).
    """
    rows, total = await engine.store.list_by_user(current_user.user_id, status, page, per_page)

    views = []
    for row in rows:
        item = None
        if row.sync_status != CaldavSyncState.REMOVED:
            item = await engine.collaborators.items.get_planned_item(row.item_type, row.item_id)
        views.append(to_status_view(row, item))

    return StatusList(items=views, total=total, page=page, per_page=per_page)


@router.get("/summary", response_model=CaldavSyncStatusSummary, summary="Сводка по состояниям")
async def get_sync_summary(
    current_user: CurrentUser = CurrentUserDep,
    engine: CaldavEngine = CaldavEngineDep,
):
    return await engine.store.summary_by_user(current_user.user_id)


@router.post("/retry", response_model=TaskStartedResponse, summary="Повторить pending/failed синхронизации")
async def retry_failed_syncs(current_user: CurrentUser = CurrentUserDep):
    """Ручной повтор без учета backoff и лимита попыток, выполняется в Celery"""
    from caldav_sync.tasks.caldav_tasks import retry_user_caldav_syncs

    task = retry_user_caldav_syncs.delay(current_user.user_id)
    logger.info(f"Manual CalDAV retry queued: task_id={task.id}", extra={"user_id": current_user.user_id})
    return TaskStartedResponse(task_id=task.id, message="Retry queued", started_at=utc_now())


@router.post("/sync-all", response_model=TaskStartedResponse, summary="Синхронизировать все будущие элементы")
async def sync_all_items(current_user: CurrentUser = CurrentUserDep):
    from caldav_sync.tasks.caldav_tasks import sync_all_future_items

    task = sync_all_future_items.delay(current_user.user_id)
    logger.info(f"Initial CalDAV sync queued: task_id={task.id}", extra={"user_id": current_user.user_id})
    return TaskStartedResponse(task_id=task.id, message="Initial sync queued", started_at=utc_now())


@router.get("/tasks/{task_id}", response_model=TaskStatusResponse, summary="Статус фоновой задачи")
async def get_task_status(task_id: str, current_user: CurrentUser = CurrentUserDep):
    """Статус задачи retry / sync-all из бекенда Celery"""
    task_result = AsyncResult(task_id, app=celery_app)
    return TaskStatusResponse(
        task_id=task_id,
        status=task_result.status,
        result=task_result.result if task_result.successful() else None,
    )


@router.post("/test-connection", response_model=ConnectionTestResponse, summary="Проверить подключение к CalDAV")
async def test_connection(
    payload: Optional[ConnectionTestRequest] = Body(None),
    current_user: CurrentUser = CurrentUserDep,
    engine: CaldavEngine = CaldavEngineDep,
):
    if payload is not None:
        server_url, username, password = payload.server_url, payload.username, payload.password
    else:
        config = await engine.collaborators.configs.get_config(current_user.user_id)
        if config is None:
            raise NotFoundHTTPException(detail="CalDAV configuration not found")
        server_url, username, password = config.server_url, config.username, config.password

    try:
        client = CalDavClient(
            server_url,
            username,
            password,
            timeout=engine.orchestrator.timeout,
            transport=engine.orchestrator.http_transport,
        )
    except ConfigurationError as e:
        return ConnectionTestResponse(success=False, message=str(e))

    result = await client.check_connection()
    logger.info(f"CalDAV connection test: {result['message']}", extra={"user_id": current_user.user_id})
    return ConnectionTestResponse(**result)


async def _event_generator(request: Request, engine: CaldavEngine, user_id: str) -> AsyncGenerator[str, None]:
    household_key = await engine.collaborators.households.get_household_key(user_id)
    channels = [user_channel(user_id), household_channel(household_key)]

    async with subscribe_queue(engine.bus, channels) as queue:
        yield f"event: connected\ndata: {json.dumps({'status': 'ok'})}\n\n"
        while True:
            if await request.is_disconnected():
                break
            try:
                event: Dict[str, Any] = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield f"event: {event['type']}\ndata: {json.dumps(event['data'])}\n\n"


@router.get("/events", summary="Поток событий синхронизации (SSE)")
async def stream_sync_events(
    request: Request,
    current_user: CurrentUser = CurrentUserDep,
    engine: CaldavEngine = CaldavEngineDep,
):
    """
    Server-Sent Events по каналам пользователя и его домохозяйства:
    item_status_updated, sync_completed, sync_failed, sync_started,
    initial_sync_complete.
    """
    return StreamingResponse(
        _event_generator(request, engine, current_user.user_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
