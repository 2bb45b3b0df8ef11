"""
@file: caldav_sync/models/base.py
@description: Базовая модель с общими полями для всех таблиц
@dependencies: sqlmodel, sqlalchemy, uuid, datetime
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field


def utc_now() -> datetime:
    """Текущее время в UTC с tzinfo"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Наивное время считается UTC, aware-время переводится в UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BaseModel(SQLModel):
    """Базовая модель с общими полями"""

    id: Optional[UUID] = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Уникальный идентификатор записи"
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        description="Время создания записи"
    )

    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        description="Время последнего обновления записи"
    )
