"""
@file: caldav_sync/models/caldav_sync_status.py
@description: Модель состояния синхронизации элемента планировщика с CalDAV
@dependencies: sqlmodel, sqlalchemy, enum
"""

import datetime as dt
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, Index, UniqueConstraint
from sqlmodel import SQLModel, Field

from .base import BaseModel


class CaldavItemType(str, Enum):
    """Тип синхронизируемого элемента"""
    RECIPE = "recipe"
    NOTE = "note"


class CaldavSyncState(str, Enum):
    """
    Состояния синхронизации.

    pending -> synced | failed, failed -> synced | failed,
    (pending | failed | synced) -> removed.
    """
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    REMOVED = "removed"


RETRYABLE_STATES = frozenset({CaldavSyncState.PENDING, CaldavSyncState.FAILED})


class CaldavSyncStatusBase(SQLModel):
    """Базовые поля состояния синхронизации"""
    
    user_id: str = Field(description="ID пользователя")
    item_id: UUID = Field(description="ID синхронизируемого элемента")
    item_type: CaldavItemType = Field(description="Тип элемента: recipe или note")
    planned_item_id: Optional[UUID] = Field(
        default=None,
        description="ID записи планировщика (обнуляется, если запись удалена)"
    )
    event_title: str = Field(description="Заголовок события на момент синхронизации")
    sync_status: CaldavSyncState = Field(
        default=CaldavSyncState.PENDING,
        description="Текущее состояние синхронизации"
    )
    caldav_event_uid: Optional[str] = Field(
        default=None,
        description="UID события на CalDAV сервере"
    )
    retry_count: int = Field(default=0, description="Количество неудачных попыток")
    error_message: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Последняя ошибка синхронизации"
    )
    last_sync_at: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime(timezone=True),
        description="Время последней попытки синхронизации"
    )


class CaldavSyncStatus(CaldavSyncStatusBase, BaseModel, table=True):
    """Модель состояния синхронизации в базе данных"""
    
    __tablename__ = "caldav_sync_status"
    __table_args__ = (
        UniqueConstraint("user_id", "item_id", name="uq_caldav_sync_user_item"),
        Index("idx_caldav_sync_user_status", "user_id", "sync_status"),
        Index("idx_caldav_sync_status_retry", "sync_status", "retry_count", "last_sync_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CaldavSyncStatus(user_id='{self.user_id}', item_id='{self.item_id}', "
            f"status='{self.sync_status}', retry_count={self.retry_count})>"
        )


class CaldavSyncStatusRead(CaldavSyncStatusBase):
    """Схема для чтения состояния синхронизации"""
    
    id: UUID
    created_at: datetime
    updated_at: datetime


class CaldavSyncStatusView(CaldavSyncStatusRead):
    """Состояние синхронизации вместе с датой и слотом из планировщика"""
    
    date: Optional[dt.date] = None
    slot: Optional[str] = None


class CaldavSyncStatusSummary(SQLModel):
    """Сводка по состояниям синхронизации пользователя"""
    
    pending: int = 0
    synced: int = 0
    failed: int = 0
    removed: int = 0
