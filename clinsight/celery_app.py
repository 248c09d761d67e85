"""
Clinsight - Celery Application Configuration
Calling layer for extraction and embedding refresh; owns retry and scheduling
"""

import logging
from celery import Celery
from celery.schedules import crontab
from clinsight.config import settings

# Process-wide log format for workers and beat
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


celery_app = Celery(
    "clinsight",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "clinsight.tasks.extraction",
        "clinsight.tasks.embeddings",
    ]
)

# Serialization, limits and acknowledgement
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.task_time_limit,
    task_soft_time_limit=settings.task_soft_time_limit,
    worker_prefetch_multiplier=settings.worker_prefetch_multiplier,
    worker_max_tasks_per_child=1000,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,
    task_always_eager=settings.celery_task_always_eager,
)

celery_app.conf.task_routes = {
    "clinsight.tasks.extraction.*": {"queue": "extraction"},
    "clinsight.tasks.embeddings.*": {"queue": "embeddings"},
}

# Nightly refresh of every active patient's embedding
celery_app.conf.beat_schedule = {
    "refresh-all-embeddings-nightly": {
        "task": "clinsight.tasks.embeddings.refresh_all_embeddings",
        "schedule": crontab(
            hour=settings.embedding_refresh_hour,
            minute=settings.embedding_refresh_minute
        ),
    },
}

logger.info(f"Celery configured: {len(celery_app.conf.beat_schedule)} scheduled task(s)")
logger.info(f"Broker: {settings.celery_broker_url} | Backend: {settings.celery_result_backend}")

if __name__ == "__main__":
    celery_app.start()
