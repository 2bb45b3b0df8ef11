"""
@file: caldav_sync/core/logging.py
@description: Настройка системы логирования с удобочитаемым форматом и ротацией
@dependencies: logging, json
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from .settings import settings


class HumanReadableFormatter(logging.Formatter):
    """Форматировщик для удобочитаемых логов"""
    
    def format(self, record: logging.LogRecord) -> str:
        """Форматирует запись в удобочитаемом формате"""
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        level_emoji = self._get_level_emoji(record.levelno)
        level_name = record.levelname.ljust(8)
        
        message = record.getMessage()
        
        extra_info = []
        
        if hasattr(record, "user_id"):
            extra_info.append(f"user={record.user_id}")
            
        if hasattr(record, "item_id"):
            extra_info.append(f"item={record.item_id}")
            
        if hasattr(record, "task_id"):
            extra_info.append(f"task={record.task_id}")
            
        if record.name != "root" and record.name != "__main__":
            extra_info.append(f"module={record.name}")
            
        result = f"{timestamp} {level_emoji} {level_name} {message}"
        
        if extra_info:
            result += f" | {' | '.join(extra_info)}"
            
        if record.exc_info:
            result += f"\n{self.formatException(record.exc_info)}"
            
        return result
    
    def _get_level_emoji(self, levelno: int) -> str:
        """Возвращает эмодзи для уровня логирования"""
        if levelno >= logging.CRITICAL:
            return "🚨"
        elif levelno >= logging.ERROR:
            return "❌"
        elif levelno >= logging.WARNING:
            return "⚠️"
        elif levelno >= logging.INFO:
            return "ℹ️"
        else:
            return "🔍"


class JSONFormatter(logging.Formatter):
    """Форматировщик для JSON логов"""
    
    def format(self, record: logging.LogRecord) -> str:
        """Форматирует запись в JSON"""
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        
        if hasattr(record, "extra_data"):
            log_entry["extra"] = record.extra_data
            
        for field in ("user_id", "item_id", "task_id"):
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)
            
        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging() -> None:
    """Настройка системы логирования"""
    
    log_path = Path(settings.logging.file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, settings.logging.level.upper()))
    logger.handlers.clear()
    
    if settings.logging.format.lower() == "json":
        formatter = JSONFormatter()
    else:
        formatter = HumanReadableFormatter()
    
    # Handler для файла с ротацией
    file_handler = logging.handlers.RotatingFileHandler(
        filename=settings.logging.file_path,
        maxBytes=settings.logging.max_bytes,
        backupCount=settings.logging.backup_count,
        encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    
    # Handler для консоли (только в режиме разработки)
    if settings.api.debug:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
    
    for name in ("sqlalchemy", "sqlalchemy.engine", "alembic"):
        logging.getLogger(name).setLevel(logging.WARNING)
    
    logging.getLogger("celery").setLevel(logging.WARNING)
    logging.getLogger("celery.worker").setLevel(logging.INFO)
    logging.getLogger("celery.task").setLevel(logging.INFO)
    
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("fastapi").setLevel(logging.WARNING)
    
    # HTTP клиенты
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    
    logger.info("Logging system initialized", extra={
        "extra_data": {
            "log_level": settings.logging.level,
            "log_file": settings.logging.file_path,
            "format": settings.logging.format
        }
    })


def get_logger(name: str) -> logging.Logger:
    """Получить логгер с настроенным именем"""
    return logging.getLogger(name)


class LoggerMixin:
    """Миксин для добавления логгера к классам"""
    
    @property
    def logger(self) -> logging.Logger:
        """Логгер с именем класса"""
        return get_logger(self.__class__.__name__)
