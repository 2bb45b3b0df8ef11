"""
@file: caldav_sync/services/ics_builder.py
@description: Построение VCALENDAR/VEVENT документа (RFC 5545) для элемента планировщика
@dependencies: icalendar, uuid, datetime
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import uuid4

from icalendar import Calendar, Event

from caldav_sync.exceptions import InvalidIntervalError
from caldav_sync.models.base import as_utc, utc_now


# TEXT не допускает управляющих символов, кроме табуляции (перевод строки экранируется)
CONTROL_CHARACTERS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


@dataclass(frozen=True)
class EventInput:
    """Данные для построения события"""
    title: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    uid: Optional[str] = None
    url: Optional[str] = None
    location: Optional[str] = None


@dataclass(frozen=True)
class CalendarDocument:
    """Готовый iCalendar документ и UID события в нем"""
    uid: str
    ics: str


def clean_text(value: str) -> str:
    """CRLF и CR приводятся к LF, прочие управляющие символы удаляются"""
    value = value.replace("\r\n", "\n").replace("\r", "\n")
    return CONTROL_CHARACTERS.sub("", value)


def build_document(event: EventInput, prodid: str, now: Optional[datetime] = None) -> CalendarDocument:
    """
    Строит iCalendar документ с одним событием.

    Время переводится в UTC (наивное считается UTC). Экранирование TEXT
    и свертку строк по 75 октетов выполняет icalendar.

    Raises:
        InvalidIntervalError: если end <= start
    """
    start = as_utc(event.start)
    end = as_utc(event.end)
    if end <= start:
        raise InvalidIntervalError(
            f"Event end {end.isoformat()} must be after start {start.isoformat()}"
        )

    uid = event.uid or str(uuid4())

    calendar = Calendar()
    calendar.add("prodid", prodid)
    calendar.add("version", "2.0")
    calendar.add("calscale", "GREGORIAN")
    calendar.add("method", "PUBLISH")

    vevent = Event()
    vevent.add("uid", uid)
    vevent.add("dtstamp", as_utc(now) if now else utc_now())
    vevent.add("dtstart", start)
    vevent.add("dtend", end)
    vevent.add("summary", clean_text(event.title))
    if event.description:
        vevent.add("description", clean_text(event.description))
    if event.location:
        vevent.add("location", clean_text(event.location))
    if event.url:
        vevent.add("url", event.url)
    calendar.add_component(vevent)

    return CalendarDocument(uid=uid, ics=calendar.to_ical().decode("utf-8"))
