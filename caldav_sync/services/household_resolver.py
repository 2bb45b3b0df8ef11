"""
@file: caldav_sync/services/household_resolver.py
@description: Определение уникальных CalDAV серверов домохозяйства пользователя
@dependencies: collaborators
"""

from typing import Dict, List, Optional

from caldav_sync.core.logging import get_logger
from caldav_sync.exceptions import ConfigurationError
from caldav_sync.models.caldav_config import RemoteCalendarConfig
from caldav_sync.services.collaborators import CaldavConfigProvider, HouseholdDirectory

logger = get_logger(__name__)


class HouseholdTargetResolver:
    """
    Собирает включенные конфигурации CalDAV всех участников домохозяйства
    и оставляет по одной на каждый сервер (нормализованный URL коллекции).

    Если на один сервер указывают несколько участников, используется
    конфигурация администратора домохозяйства, а без него - участника
    с наименьшим user_id. От выбора зависят учетные данные и окна
    времени слотов.
    """
    
    def __init__(self, households: HouseholdDirectory, configs: CaldavConfigProvider):
        self.households = households
        self.configs = configs

    async def get_member_ids(self, user_id: str) -> List[str]:
        member_ids = list(await self.households.get_household_member_ids(user_id))
        if user_id not in member_ids:
            member_ids.append(user_id)
        return member_ids

    async def resolve(self, user_id: str) -> Dict[str, RemoteCalendarConfig]:
        """
        Returns:
            Dict[server_identity, RemoteCalendarConfig]; пустой словарь,
            если в домохозяйстве нет включенных календарей.
        """
        member_ids = await self.get_member_ids(user_id)
        configs = await self.configs.get_enabled_configs(member_ids)
        admin_id: Optional[str] = await self.households.get_household_admin_id(user_id)

        candidates = sorted(
            (config for config in configs.values() if config.user_id in member_ids),
            key=lambda config: (config.user_id != admin_id, config.user_id),
        )

        targets: Dict[str, RemoteCalendarConfig] = {}
        for config in candidates:
            if not config.enabled:
                continue
            try:
                identity = config.server_identity
            except ConfigurationError as e:
                logger.warning(f"CalDAV config with invalid server URL skipped: {e}", extra={"user_id": config.user_id})
                continue
            if not identity:
                logger.warning("CalDAV config without server URL skipped", extra={"user_id": config.user_id})
                continue
            if identity in targets:
                logger.debug(
                    f"Server already covered by user {targets[identity].user_id}",
                    extra={"user_id": config.user_id},
                )
                continue
            targets[identity] = config

        logger.debug(
            f"Resolved {len(targets)} CalDAV target(s) for household of {len(member_ids)} member(s)",
            extra={"user_id": user_id},
        )
        return targets
