"""
@file: caldav_sync/services/caldav_client.py
@description: HTTP клиент CalDAV коллекции: создание и удаление событий через PUT/DELETE
@dependencies: httpx, base64
"""

import base64
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from caldav_sync.core.settings import settings
from caldav_sync.core.logging import get_logger
from caldav_sync.exceptions import (
    ConfigurationError,
    TransientTransportError,
    classify_response,
)
from caldav_sync.models.caldav_config import RemoteCalendarConfig, normalize_server_url

logger = get_logger(__name__)


@dataclass(frozen=True)
class CreatedEvent:
    """Результат создания события на сервере"""
    uid: str
    href: str
    etag: Optional[str] = None


class CalDavClient:
    """
    Клиент одной CalDAV коллекции.

    URL и учетные данные проверяются при создании клиента,
    до любого сетевого запроса.
    """
    
    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        base_url = (base_url or "").strip()
        if not base_url:
            raise ConfigurationError("CalDAV server URL is missing")
        if not base_url.lower().startswith(("http://", "https://")):
            raise ConfigurationError("CalDAV server URL must start with http:// or https://")
        if not username or not password:
            raise ConfigurationError("CalDAV credentials are missing")

        if not base_url.endswith("/"):
            base_url += "/"
        self.base_url = base_url
        self.server_identity = normalize_server_url(base_url)
        self.timeout = timeout or settings.caldav.request_timeout_seconds
        self._transport = transport

        auth_str = f"{username}:{password}"
        self._auth_header = f"Basic {base64.b64encode(auth_str.encode('utf-8')).decode()}"

    @classmethod
    def from_config(
        cls,
        config: RemoteCalendarConfig,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "CalDavClient":
        return cls(config.server_url, config.username, config.password, timeout, transport)

    def event_href(self, uid: str) -> str:
        return f"{self.base_url}{uid}.ics"

    async def _request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        content: Optional[bytes] = None,
    ) -> httpx.Response:
        request_headers = {"Authorization": self._auth_header}
        if headers:
            request_headers.update(headers)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.request(method, url, headers=request_headers, content=content)
        except httpx.TimeoutException as e:
            raise TransientTransportError(f"CalDAV {method} {url} timed out after {self.timeout}s") from e
        except httpx.RequestError as e:
            raise TransientTransportError(f"CalDAV {method} {url} network error: {e}") from e

    async def create_event(self, ics: str, uid: str) -> CreatedEvent:
        """
        Создает событие PUT-запросом на {base_url}{uid}.ics.

        If-None-Match: * не дает перезаписать существующее событие с тем же UID.

        Raises:
            TransportError: при сетевой ошибке или не-2xx ответе
        """
        href = self.event_href(uid)
        logger.debug(f"PUT {href}")
        response = await self._request(
            "PUT",
            href,
            headers={
                "Content-Type": "text/calendar; charset=utf-8",
                "If-None-Match": "*",
            },
            content=ics.encode("utf-8"),
        )

        error = classify_response("PUT", href, response.status_code, response.text)
        if error is not None:
            raise error

        return CreatedEvent(uid=uid, href=href, etag=response.headers.get("ETag"))

    async def delete_event(self, uid: str) -> None:
        """
        Удаляет событие. 404 считается успехом - события уже нет.

        Raises:
            TransportError: при сетевой ошибке или не-2xx ответе
        """
        href = self.event_href(uid)
        logger.debug(f"DELETE {href}")
        response = await self._request("DELETE", href)

        error = classify_response("DELETE", href, response.status_code, response.text)
        if error is not None:
            raise error

    async def check_connection(self) -> Dict[str, Any]:
        """Проверка доступа к коллекции (PROPFIND, Depth: 0)"""
        try:
            response = await self._request("PROPFIND", self.base_url, headers={"Depth": "0"})
        except TransientTransportError as e:
            return {"success": False, "message": str(e)}

        if response.status_code >= 400:
            return {
                "success": False,
                "message": f"Connection failed: {response.status_code} {response.reason_phrase}",
            }
        return {"success": True, "message": "Connection successful"}
