"""
@file: caldav_sync/celery_app.py
@description: Конфигурация Celery приложения и расписания повторов синхронизации CalDAV
@dependencies: celery, redis, sqlalchemy_celery_beat
"""

from celery import Celery
from celery.schedules import crontab

from caldav_sync.core.settings import settings
from caldav_sync.core.logging import setup_logging, get_logger

# Инициализация логирования
setup_logging()
logger = get_logger(__name__)

logger.info("Initializing Celery application...")
config_info = settings.log_configuration()

logger.info("Celery configuration:", extra={
    "extra_data": {
        "broker_url": config_info["celery"]["broker_url"],
        "result_backend": config_info["celery"]["result_backend"],
        "timezone": config_info["celery"]["timezone"],
    }
})

celery_app = Celery(
    "caldav_sync",
    broker=settings.celery.broker_url,
    backend=settings.celery.result_backend,
    include=[
        "caldav_sync.tasks.caldav_tasks",
    ]
)

celery_app.conf.update(
    task_serializer=settings.celery.task_serializer,
    result_serializer=settings.celery.result_serializer,
    accept_content=settings.celery.accept_content,
    timezone=settings.celery.timezone,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 минут
    task_soft_time_limit=25 * 60,  # 25 минут
    worker_prefetch_multiplier=1,
    task_acks_late=True,

    # расписание beat хранится в базе
    beat_scheduler="sqlalchemy_celery_beat.schedulers:DatabaseScheduler",
    beat_dburi=settings.database.url,
    beat_engine_options={
        "echo": False,
    },
)

celery_app.conf.beat_schedule = {
    "caldav-retry-sweep": {
        "task": "caldav_sync.tasks.caldav_tasks.retry_caldav_syncs",
        "schedule": crontab(minute=f"*/{settings.caldav.retry_interval_minutes}"),
    },
}

logger.info("Celery application configured successfully")
