"""
@file: caldav_sync/services/caldav_engine.py
@description: Сборка сервисов синхронизации CalDAV вокруг коллабораторов и фабрики сессий
@dependencies: importlib, caldav_sync.services
"""

import importlib
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from sqlmodel.ext.asyncio.session import AsyncSession

from caldav_sync.core.logging import get_logger
from caldav_sync.core.settings import CaldavSettings, settings
from caldav_sync.exceptions import ConfigurationError
from caldav_sync.services.caldav_events import StatusEventBus, get_event_bus
from caldav_sync.services.caldav_retry_service import CaldavRetryService
from caldav_sync.services.caldav_sync_service import CaldavSyncOrchestrator
from caldav_sync.services.caldav_sync_status_service import CaldavSyncStatusService
from caldav_sync.services.collaborators import Collaborators
from caldav_sync.services.household_resolver import HouseholdTargetResolver

logger = get_logger(__name__)


@dataclass
class CaldavEngine:
    collaborators: Collaborators
    store: CaldavSyncStatusService
    resolver: HouseholdTargetResolver
    orchestrator: CaldavSyncOrchestrator
    retry_service: CaldavRetryService
    bus: StatusEventBus


def build_engine(
    collaborators: Collaborators,
    session_factory: Callable[[], AsyncSession],
    bus: Optional[StatusEventBus] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    caldav_settings: Optional[CaldavSettings] = None,
) -> CaldavEngine:
    config = caldav_settings or settings.caldav
    bus = bus or get_event_bus()

    store = CaldavSyncStatusService(session_factory, config.error_message_max_length)
    resolver = HouseholdTargetResolver(collaborators.households, collaborators.configs)
    orchestrator = CaldavSyncOrchestrator(
        store=store,
        resolver=resolver,
        households=collaborators.households,
        bus=bus,
        items=collaborators.items,
        prodid=config.prodid,
        app_base_url=config.app_base_url,
        timeout=config.request_timeout_seconds,
        http_transport=http_transport,
    )
    retry_service = CaldavRetryService(
        store=store,
        orchestrator=orchestrator,
        items=collaborators.items,
        max_retries=config.max_retries,
        backoff_floor=config.backoff_floor,
        batch_size=config.retry_batch_size,
    )
    return CaldavEngine(
        collaborators=collaborators,
        store=store,
        resolver=resolver,
        orchestrator=orchestrator,
        retry_service=retry_service,
        bus=bus,
    )


_collaborators: Optional[Collaborators] = None
_engine: Optional[CaldavEngine] = None


def configure_engine(collaborators: Collaborators) -> None:
    """Регистрирует реализации коллабораторов хост-приложения"""
    global _collaborators, _engine
    _collaborators = collaborators
    _engine = None
    logger.info("CalDAV collaborators configured")


def load_collaborators() -> Collaborators:
    """
    Коллабораторы, переданные в configure_engine, либо загруженные
    по пути CALDAV_COLLABORATORS ("package.module:factory").
    """
    if _collaborators is not None:
        return _collaborators

    path = settings.caldav.collaborators
    if not path:
        raise ConfigurationError("CalDAV collaborators are not configured (CALDAV_COLLABORATORS)")

    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Invalid CALDAV_COLLABORATORS value: {path!r}")

    factory = getattr(importlib.import_module(module_name), attribute)
    collaborators = factory() if callable(factory) else factory
    if not isinstance(collaborators, Collaborators):
        raise ConfigurationError(f"{path} did not return a Collaborators bundle")

    configure_engine(collaborators)
    return collaborators


def get_engine() -> CaldavEngine:
    """Движок процесса API на общем пуле соединений"""
    global _engine
    if _engine is None:
        from caldav_sync.core.database import async_session_factory

        _engine = build_engine(load_collaborators(), async_session_factory)
    return _engine
