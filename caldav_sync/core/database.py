"""
@file: caldav_sync/core/database.py
@description: Настройка подключения к базе данных PostgreSQL через SQLModel
@dependencies: sqlmodel, sqlalchemy, asyncpg, psycopg2
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlmodel import SQLModel, create_engine
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy import text

from .settings import settings
from .logging import LoggerMixin, get_logger

logger = get_logger(__name__)

# Синхронный движок для создания таблиц и миграций
sync_engine = create_engine(
    settings.database.url,
    echo=False,
    pool_pre_ping=True,
    pool_recycle=300,
)

# Асинхронный движок для FastAPI
async_engine = create_async_engine(
    settings.database.async_url,
    echo=False,
    pool_pre_ping=True,
    pool_recycle=300,
)

# Фабрика сессий
async_session_factory = sessionmaker(
    async_engine, class_=AsyncSession, expire_on_commit=False
)


def create_tables() -> None:
    """
    Создание всех таблиц в базе данных.
    Используется только для начальной инициализации.
    """
    # Регистрируем таблицы в метаданных
    import caldav_sync.models  # noqa: F401

    logger.info("Creating database tables...")
    SQLModel.metadata.create_all(sync_engine)
    logger.info("Database tables created successfully")


@asynccontextmanager
async def task_session_factory() -> AsyncIterator[sessionmaker]:
    """
    Фабрика сессий для Celery задач.

    Каждая задача выполняется в собственном event loop (asyncio.run),
    поэтому соединения не переиспользуются между запусками (NullPool).
    """
    engine = create_async_engine(settings.database.async_url, poolclass=NullPool)
    try:
        yield sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


async def check_database_connection() -> bool:
    """Проверка подключения к базе данных"""
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
            logger.info("Database connection successful")
            return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False


class DatabaseManager(LoggerMixin):
    """Менеджер базы данных для управления подключениями"""
    
    def __init__(self):
        self.async_engine = async_engine
    
    async def startup(self) -> None:
        """Инициализация при запуске приложения"""
        self.logger.info("Initializing database connection...")
        
        max_retries = 10
        retry_delay = 2
        
        for attempt in range(max_retries):
            self.logger.info(f"Database connection attempt {attempt + 1}/{max_retries}")
            is_connected = await check_database_connection()
            
            if is_connected:
                self.logger.info("Database manager initialized successfully")
                return
                
            if attempt < max_retries - 1:
                self.logger.warning(f"Database connection failed, retrying in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
                retry_delay = min(retry_delay * 1.5, 10)
        
        self.logger.error("Failed to connect to database after all retries")
        raise ConnectionError("Failed to connect to database after all retries")
    
    async def shutdown(self) -> None:
        """Закрытие соединений при остановке приложения"""
        self.logger.info("Closing database connections...")
        await self.async_engine.dispose()
        self.logger.info("Database connections closed")


# Глобальный экземпляр менеджера базы данных
db_manager = DatabaseManager()
