"""
@file: caldav_sync/main.py
@description: FastAPI приложение сервиса синхронизации планировщика с CalDAV
@dependencies: fastapi, uvicorn
"""

from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from caldav_sync.api.v1.api import api_router
from caldav_sync.core.database import check_database_connection, db_manager
from caldav_sync.core.logging import get_logger, setup_logging
from caldav_sync.core.settings import settings

SERVICE_NAME = "CalDAV Sync"
SERVICE_VERSION = "1.0.0"

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""
    setup_logging()
    logger.info(f"Starting {SERVICE_NAME} service...")

    config_info = settings.log_configuration()
    logger.info("Application configuration loaded", extra={"extra_data": config_info})

    await db_manager.startup()
    logger.info("Service started successfully")

    yield

    logger.info("Shutting down service...")
    await db_manager.shutdown()
    logger.info("Service stopped")


app = FastAPI(
    title=SERVICE_NAME,
    description="""
    ## Синхронизация планировщика питания с внешними CalDAV календарями

    * **Состояния** - статус синхронизации каждого рецепта и заметки
    * **Повторы** - ручной повтор и фоновые повторы с экспоненциальной задержкой
    * **События** - поток изменений состояний через Server-Sent Events
    """,
    version=SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url=f"{settings.api.prefix}/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "general", "description": "Health check, конфигурация"},
        {"name": "caldav", "description": "Состояния синхронизации CalDAV и ручные действия"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["general"], summary="Проверка состояния сервиса")
async def health_check():
    db_status = await check_database_connection()
    return {
        "status": "healthy" if db_status else "unhealthy",
        "database": "connected" if db_status else "disconnected",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": datetime.now().isoformat(),
    }


@app.get("/config", tags=["general"], summary="Конфигурация приложения")
async def get_configuration():
    """
    Текущая конфигурация. Чувствительные данные маскируются.
    """
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "configuration": settings.log_configuration(),
        "timestamp": datetime.now().isoformat(),
    }


app.include_router(api_router, prefix=settings.api.prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "caldav_sync.main:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=settings.api.debug,
        log_level=settings.logging.level.lower(),
    )
