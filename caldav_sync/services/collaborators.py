"""
@file: caldav_sync/services/collaborators.py
@description: Интерфейсы внешних модулей, от которых зависит синхронизация CalDAV
@dependencies: abc
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional
from uuid import UUID

from caldav_sync.models.caldav_config import RemoteCalendarConfig
from caldav_sync.models.caldav_sync_status import CaldavItemType
from caldav_sync.models.planned_item import PlannedItem


class HouseholdDirectory(ABC):
    """Состав домохозяйств"""

    @abstractmethod
    async def get_household_member_ids(self, user_id: str) -> List[str]:
        """ID всех участников домохозяйства пользователя, включая его самого"""

    @abstractmethod
    async def get_household_key(self, user_id: str) -> str:
        """Ключ канала домохозяйства для событий (для одиночки - его user_id)"""

    async def get_household_admin_id(self, user_id: str) -> Optional[str]:
        """Администратор домохозяйства, если модель домохозяйств его определяет"""
        return None


class CaldavConfigProvider(ABC):
    """Хранилище зашифрованных конфигураций CalDAV; отдает уже расшифрованные"""

    @abstractmethod
    async def get_enabled_configs(self, user_ids: List[str]) -> Dict[str, RemoteCalendarConfig]:
        """Включенные конфигурации по user_id; пользователи без конфигурации отсутствуют"""

    @abstractmethod
    async def get_config(self, user_id: str) -> Optional[RemoteCalendarConfig]:
        """Конфигурация пользователя независимо от флага enabled"""


class PlannedItemProvider(ABC):
    """Модуль планирования рецептов и заметок"""

    @abstractmethod
    async def get_planned_item(self, item_type: CaldavItemType, item_id: UUID) -> Optional[PlannedItem]:
        """Текущее состояние элемента или None, если он удален"""

    @abstractmethod
    async def list_future_items(self, user_id: str, from_date: date) -> List[PlannedItem]:
        """Все элементы пользователя начиная с from_date"""

    @abstractmethod
    async def list_planned_by_recipe(self, recipe_id: UUID) -> List[PlannedItem]:
        """Все запланированные экземпляры рецепта"""


@dataclass
class Collaborators:
    households: HouseholdDirectory
    configs: CaldavConfigProvider
    items: PlannedItemProvider
