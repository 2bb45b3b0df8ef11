"""
@file: caldav_sync/exceptions.py
@description: Кастомные исключения для приложения и классификация ошибок CalDAV
@dependencies: fastapi
"""

from typing import Optional

from fastapi import HTTPException, status


BODY_EXCERPT_LENGTH = 200


class BaseAppException(Exception):
    """Базовое исключение приложения"""
    pass


class ConfigurationError(BaseAppException):
    """
    Некорректная конфигурация CalDAV (URL, учетные данные).
    Не повторяется и не записывается как ошибка синхронизации.
    """
    pass


class InvalidIntervalError(BaseAppException):
    """Время окончания события не позже времени начала"""
    pass


class TransportError(BaseAppException):
    """Ошибка сетевого взаимодействия с CalDAV сервером"""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None, body_excerpt: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body_excerpt = body_excerpt


class AuthTransportError(TransportError):
    """401/403 - повтор имеет смысл только после смены учетных данных"""

    retryable = False


class ConflictTransportError(TransportError):
    """412/405 на создании - событие с таким UID, вероятно, уже существует"""

    retryable = False


class TransientTransportError(TransportError):
    """Таймаут, обрыв соединения, 5xx и прочие временные сбои"""
    pass


def classify_response(method: str, href: str, status_code: int, body: str = "") -> Optional[TransportError]:
    """
    Сопоставляет HTTP ответ CalDAV сервера с типом ошибки.

    Returns:
        None для успешного ответа (2xx, а также 404 на DELETE),
        иначе экземпляр TransportError нужного подкласса.
    """
    if 200 <= status_code < 300:
        return None
    if method == "DELETE" and status_code == 404:
        return None

    excerpt = (body or "")[:BODY_EXCERPT_LENGTH]
    message = f"CalDAV {method} {href} failed with {status_code}"
    if excerpt:
        message = f"{message}: {excerpt}"

    if status_code in (401, 403):
        return AuthTransportError(message, status_code, excerpt)
    if method == "PUT" and status_code in (405, 412):
        return ConflictTransportError(message, status_code, excerpt)
    return TransientTransportError(message, status_code, excerpt)


def truncate_error_message(message: str, max_length: int = 500) -> str:
    """Обрезает сообщение об ошибке до max_length символов"""
    if len(message) <= max_length:
        return message
    return message[:max_length - 3] + "..."


# HTTP исключения для FastAPI

class NotFoundHTTPException(HTTPException):
    """HTTP исключение - ресурс не найден"""
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ServiceUnavailableHTTPException(HTTPException):
    """HTTP исключение - синхронизация не сконфигурирована"""
    def __init__(self, detail: str = "CalDAV sync engine is not configured"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
