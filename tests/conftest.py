"""
@file: tests/conftest.py
@description: Общие фикстуры: SQLite в памяти, фейковые коллабораторы, CalDAV сервер на httpx.MockTransport
@dependencies: pytest, pytest-asyncio, aiosqlite, httpx
"""

from datetime import date
from typing import Dict, List, Optional
from uuid import UUID, uuid4

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

import caldav_sync.models  # noqa: F401
from caldav_sync.core.settings import CaldavSettings
from caldav_sync.models.caldav_config import RemoteCalendarConfig
from caldav_sync.models.caldav_sync_status import CaldavItemType
from caldav_sync.models.planned_item import PlannedItem, Slot
from caldav_sync.services.caldav_engine import build_engine
from caldav_sync.services.caldav_events import InMemoryStatusEventBus
from caldav_sync.services.caldav_sync_status_service import CaldavSyncStatusService
from caldav_sync.services.collaborators import (
    CaldavConfigProvider,
    Collaborators,
    HouseholdDirectory,
    PlannedItemProvider,
)


class FakeHouseholdDirectory(HouseholdDirectory):
    """Домохозяйства: ключ -> участники; пользователь вне домохозяйств живет один"""

    def __init__(self, households: Optional[Dict[str, List[str]]] = None, admins: Optional[Dict[str, str]] = None):
        self.households = households or {}
        self.admins = admins or {}

    def _key(self, user_id: str) -> Optional[str]:
        for key, members in self.households.items():
            if user_id in members:
                return key
        return None

    async def get_household_member_ids(self, user_id: str) -> List[str]:
        key = self._key(user_id)
        return list(self.households[key]) if key else [user_id]

    async def get_household_key(self, user_id: str) -> str:
        return self._key(user_id) or user_id

    async def get_household_admin_id(self, user_id: str) -> Optional[str]:
        key = self._key(user_id)
        return self.admins.get(key) if key else None


class FakeConfigProvider(CaldavConfigProvider):
    def __init__(self, configs: Optional[List[RemoteCalendarConfig]] = None):
        self.configs = {config.user_id: config for config in configs or []}

    def add(self, config: RemoteCalendarConfig) -> None:
        self.configs[config.user_id] = config

    async def get_enabled_configs(self, user_ids: List[str]) -> Dict[str, RemoteCalendarConfig]:
        return {
            user_id: config for user_id, config in self.configs.items()
            if user_id in user_ids and config.enabled
        }

    async def get_config(self, user_id: str) -> Optional[RemoteCalendarConfig]:
        return self.configs.get(user_id)


class FakePlannedItemProvider(PlannedItemProvider):
    def __init__(self, items: Optional[List[PlannedItem]] = None):
        self.items = {item.item_id: item for item in items or []}

    def add(self, item: PlannedItem) -> PlannedItem:
        self.items[item.item_id] = item
        return item

    def remove(self, item_id: UUID) -> None:
        self.items.pop(item_id, None)

    async def get_planned_item(self, item_type: CaldavItemType, item_id: UUID) -> Optional[PlannedItem]:
        item = self.items.get(item_id)
        if item is None or item.item_type != item_type:
            return None
        return item

    async def list_future_items(self, user_id: str, from_date: date) -> List[PlannedItem]:
        return [item for item in self.items.values() if item.user_id == user_id and item.date >= from_date]

    async def list_planned_by_recipe(self, recipe_id: UUID) -> List[PlannedItem]:
        return [item for item in self.items.values() if item.recipe_id == recipe_id]


class RecordingCalDavServer:
    """
    CalDAV сервер для httpx.MockTransport: запоминает запросы и отвечает
    кодами из очереди (или исключением), по умолчанию успешно.
    """

    DEFAULT_STATUS = {"PUT": 201, "DELETE": 204, "PROPFIND": 207}

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.queued: Dict[str, list] = {}
        self.transport = httpx.MockTransport(self.handler)

    def respond(self, method: str, *outcomes) -> None:
        """Ставит в очередь коды ответа или исключения для метода"""
        self.queued.setdefault(method, []).extend(outcomes)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.queued.get(request.method) or []
        outcome = queue.pop(0) if queue else self.DEFAULT_STATUS.get(request.method, 200)
        if isinstance(outcome, Exception):
            raise outcome
        headers = {"ETag": '"etag-1"'} if request.method == "PUT" and outcome < 300 else {}
        return httpx.Response(outcome, headers=headers, text="" if outcome < 300 else "server says no")

    def calls(self, method: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.method == method]


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return CaldavSyncStatusService(session_factory, error_message_max_length=500)


@pytest.fixture
def bus():
    return InMemoryStatusEventBus()


@pytest.fixture
def caldav_server():
    return RecordingCalDavServer()


@pytest.fixture
def make_config():
    def factory(user_id: str, server_url: str = "https://dav.example.com/calendars/family/", **kwargs):
        return RemoteCalendarConfig(
            user_id=user_id,
            server_url=server_url,
            username=kwargs.pop("username", f"{user_id}-login"),
            password=kwargs.pop("password", "s3cret"),
            enabled=kwargs.pop("enabled", True),
            **kwargs,
        )
    return factory


@pytest.fixture
def make_item():
    def factory(user_id: str = "user-a", **kwargs):
        return PlannedItem(
            item_id=kwargs.pop("item_id", uuid4()),
            item_type=kwargs.pop("item_type", CaldavItemType.RECIPE),
            user_id=user_id,
            planned_item_id=kwargs.pop("planned_item_id", uuid4()),
            title=kwargs.pop("title", "Pasta, tomato; basil"),
            date=kwargs.pop("date", date(2030, 5, 17)),
            slot=kwargs.pop("slot", Slot.DINNER),
            **kwargs,
        )
    return factory


@pytest.fixture
def households():
    return FakeHouseholdDirectory()


@pytest.fixture
def config_provider():
    return FakeConfigProvider()


@pytest.fixture
def item_provider():
    return FakePlannedItemProvider()


@pytest.fixture
def collaborators(households, config_provider, item_provider):
    return Collaborators(households=households, configs=config_provider, items=item_provider)


@pytest.fixture
def caldav_settings():
    return CaldavSettings(
        CALDAV_MAX_RETRIES=3,
        CALDAV_BACKOFF_FLOOR_MINUTES=1,
        APP_BASE_URL="https://planner.example.com",
    )


@pytest.fixture
def engine(collaborators, session_factory, bus, caldav_server, caldav_settings):
    return build_engine(
        collaborators,
        session_factory,
        bus=bus,
        http_transport=caldav_server.transport,
        caldav_settings=caldav_settings,
    )
