"""
@file: caldav_sync/api/dependencies.py
@description: Зависимости для FastAPI
@dependencies: fastapi
"""

from fastapi import Depends

from caldav_sync.core.auth import get_current_active_user
from caldav_sync.core.logging import get_logger
from caldav_sync.exceptions import ConfigurationError, ServiceUnavailableHTTPException
from caldav_sync.services.caldav_engine import CaldavEngine, get_engine

logger = get_logger(__name__)


def get_caldav_engine() -> CaldavEngine:
    """Движок синхронизации; 503, если хост-приложение его не настроило"""
    try:
        return get_engine()
    except ConfigurationError as e:
        logger.error(f"CalDAV engine unavailable: {e}")
        raise ServiceUnavailableHTTPException(detail=str(e))


# Типы зависимостей для использования в эндпоинтах
CaldavEngineDep = Depends(get_caldav_engine)
CurrentUserDep = Depends(get_current_active_user)
