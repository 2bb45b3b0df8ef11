"""
@file: caldav_sync/core/auth.py
@description: Проверка JWT токенов хост-приложения и текущий пользователь
@dependencies: jose, fastapi, pydantic
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from caldav_sync.core.settings import settings
from caldav_sync.core.logging import get_logger

# auto_error=False: EventSource в браузере не умеет передавать заголовки,
# для SSE токен принимается из query параметра
security = HTTPBearer(auto_error=False)

logger = get_logger(__name__)


class CurrentUser(BaseModel):
    """Пользователь из JWT токена"""
    user_id: str
    username: Optional[str] = None
    is_active: bool = True


class TokenPayload(BaseModel):
    user_id: str
    username: Optional[str] = None
    exp: Optional[datetime] = None


def _unauthorized(detail: str = "Invalid authentication credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Создает JWT access token (используется хост-приложением и тестами)
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=settings.api.jwt_access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.api.jwt_secret_key, algorithm=settings.api.jwt_algorithm)


def verify_token(token: str) -> TokenPayload:
    """
    Raises:
        HTTPException: 401 при невалидном или просроченном токене
    """
    try:
        payload = jwt.decode(token, settings.api.jwt_secret_key, algorithms=[settings.api.jwt_algorithm])
    except JWTError:
        raise _unauthorized()

    if payload.get("user_id") is None:
        raise _unauthorized()
    return TokenPayload(**payload)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    access_token: Optional[str] = Query(default=None, include_in_schema=False),
) -> CurrentUser:
    token = credentials.credentials if credentials else access_token
    if not token:
        raise _unauthorized("Not authenticated")

    token_payload = verify_token(token)
    logger.debug("JWT token decoded", extra={"user_id": token_payload.user_id})
    return CurrentUser(user_id=token_payload.user_id, username=token_payload.username)


async def get_current_active_user(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current_user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user")
    return current_user
