"""
@file: caldav_sync/models/caldav_config.py
@description: Расшифрованная конфигурация CalDAV пользователя (хранится во внешнем модуле)
@dependencies: pydantic, urllib
"""

import re
from datetime import date, datetime, time
from typing import Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, Field, field_validator

from caldav_sync.exceptions import ConfigurationError

from .planned_item import Slot


TIME_RANGE_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})\s*$")


def normalize_server_url(url: str) -> str:
    """
    Приводит URL коллекции к каноничному виду: без пробелов,
    схема и хост в нижнем регистре, путь заканчивается на "/".

    Raises:
        ConfigurationError: URL не разбирается, схема не http(s) или нет хоста
    """
    url = (url or "").strip()
    if not url:
        return ""
    try:
        parts = urlsplit(url)
        hostname, _port = parts.hostname, parts.port
    except ValueError as e:
        raise ConfigurationError(f"Invalid CalDAV server URL: {e}") from e
    if parts.scheme.lower() not in ("http", "https"):
        raise ConfigurationError("CalDAV server URL must start with http:// or https://")
    if not hostname:
        raise ConfigurationError("CalDAV server URL has no host")
    path = parts.path or "/"
    if not path.endswith("/"):
        path += "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))


def parse_time_range(value: str) -> Tuple[time, time]:
    """Разбирает строку вида "08:00-09:00" в пару времен"""
    match = TIME_RANGE_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Invalid time range: {value!r}")
    start_h, start_m, end_h, end_m = (int(part) for part in match.groups())
    return time(start_h, start_m), time(end_h, end_m)


class RemoteCalendarConfig(BaseModel):
    """
    Конфигурация удаленного календаря одного пользователя.

    Пароль живет только в памяти на время попытки синхронизации
    и не попадает в repr и логи.
    """
    
    user_id: str
    server_url: str
    username: str
    password: str = Field(repr=False)
    enabled: bool = False
    breakfast_time: str = "08:00-09:00"
    lunch_time: str = "12:00-13:00"
    dinner_time: str = "18:00-19:00"
    snack_time: str = "15:00-15:30"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("breakfast_time", "lunch_time", "dinner_time", "snack_time")
    @classmethod
    def validate_time_range(cls, value: str) -> str:
        parse_time_range(value)
        return value

    @property
    def server_identity(self) -> str:
        return normalize_server_url(self.server_url)

    def time_window(self, slot: Slot) -> Tuple[time, time]:
        windows = {
            Slot.BREAKFAST: self.breakfast_time,
            Slot.LUNCH: self.lunch_time,
            Slot.DINNER: self.dinner_time,
            Slot.SNACK: self.snack_time,
        }
        return parse_time_range(windows[Slot(slot)])

    def event_interval(self, day: date, slot: Slot) -> Tuple[datetime, datetime]:
        """Начало и конец события для даты и слота (UTC, без tzinfo)"""
        start, end = self.time_window(slot)
        return datetime.combine(day, start), datetime.combine(day, end)
