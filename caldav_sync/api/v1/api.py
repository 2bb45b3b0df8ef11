"""
@file: caldav_sync/api/v1/api.py
@description: Основной API роутер v1
@dependencies: fastapi
"""

from fastapi import APIRouter

from caldav_sync.api.v1 import caldav

api_router = APIRouter()

api_router.include_router(
    caldav.router,
    prefix="/caldav",
    tags=["caldav"],
)
