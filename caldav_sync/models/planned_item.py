"""
@file: caldav_sync/models/planned_item.py
@description: Элемент планировщика (рецепт или заметка), который синхронизируется с календарем
@dependencies: pydantic
"""

import datetime as dt
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .caldav_sync_status import CaldavItemType


class Slot(str, Enum):
    """Слот приема пищи"""
    BREAKFAST = "Breakfast"
    LUNCH = "Lunch"
    DINNER = "Dinner"
    SNACK = "Snack"


class PlannedItem(BaseModel):
    """Запланированный элемент, как его отдает модуль планирования"""
    
    item_id: UUID
    item_type: CaldavItemType
    user_id: str
    planned_item_id: Optional[UUID] = None
    title: str
    date: dt.date
    slot: Slot
    recipe_id: Optional[UUID] = Field(default=None, description="Только для рецептов")
