"""
@file: caldav_sync/models/__init__.py
@description: Модели данных для SQLModel ORM и схемы коллабораторов
@dependencies: sqlmodel, pydantic
"""

from .base import BaseModel
from .caldav_sync_status import (
    CaldavSyncStatus,
    CaldavSyncStatusRead,
    CaldavSyncStatusView,
    CaldavSyncStatusSummary,
    CaldavItemType,
    CaldavSyncState,
    RETRYABLE_STATES,
)
from .planned_item import (
    PlannedItem,
    Slot
)
from .caldav_config import (
    RemoteCalendarConfig,
    normalize_server_url,
    parse_time_range
)

__all__ = [
    "BaseModel",
    "CaldavSyncStatus",
    "CaldavSyncStatusRead",
    "CaldavSyncStatusView",
    "CaldavSyncStatusSummary",
    "CaldavItemType",
    "CaldavSyncState",
    "RETRYABLE_STATES",
    "PlannedItem",
    "Slot",
    "RemoteCalendarConfig",
    "normalize_server_url",
    "parse_time_range",
]
