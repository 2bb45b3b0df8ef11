"""
@file: tests/api/conftest.py
@description: Фикстуры для тестов API: клиент FastAPI, JWT токен и движок синхронизации на моках
@dependencies: pytest, fastapi, unittest.mock
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from caldav_sync.api.dependencies import get_caldav_engine
from caldav_sync.core.auth import create_access_token
from caldav_sync.main import app
from caldav_sync.models.caldav_sync_status import CaldavSyncStatusSummary
from caldav_sync.services.caldav_events import InMemoryStatusEventBus

TEST_USER_ID = "user-a"


@pytest.fixture
def api_engine(caldav_server, households, config_provider):
    engine = MagicMock()
    engine.store.list_by_user = AsyncMock(return_value=([], 0))
    engine.store.summary_by_user = AsyncMock(return_value=CaldavSyncStatusSummary())
    engine.collaborators.items.get_planned_item = AsyncMock(return_value=None)
    engine.collaborators.configs = config_provider
    engine.collaborators.households = households
    engine.orchestrator.timeout = 10
    engine.orchestrator.http_transport = caldav_server.transport
    engine.bus = InMemoryStatusEventBus()
    return engine


@pytest.fixture
def client(api_engine):
    app.dependency_overrides[get_caldav_engine] = lambda: api_engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    token = create_access_token({"user_id": TEST_USER_ID, "username": "alice"})
    return {"Authorization": f"Bearer {token}"}
