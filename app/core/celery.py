"""
Celery configuration for background tasks
"""
from celery import Celery

from app.core.config import settings

redis_url = settings.redis_url

celery_app = Celery(
    "lanka_pos",
    broker=redis_url,
    backend=redis_url,
    include=[
        "app.modules.sync.tasks",
        "app.modules.payments.tasks",
        "app.modules.receipts.tasks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Colombo",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    result_expires=3600,

    task_routes={
        "app.modules.sync.tasks.*": {"queue": "sync"},
        "app.modules.payments.tasks.*": {"queue": "payments"},
        "app.modules.receipts.tasks.*": {"queue": "notifications"},
    },

    beat_schedule={
        "expire-payment-sessions": {
            "task": "app.modules.payments.tasks.expire_payment_sessions",
            "schedule": 300.0,
        },
        "process-offline-queue": {
            "task": "app.modules.sync.tasks.process_offline_queue",
            "schedule": 60.0,
        },
        "cleanup-synced-queue": {
            "task": "app.modules.sync.tasks.cleanup_synced_queue",
            "schedule": 86400.0,
        },
        "retry-failed-receipt-deliveries": {
            "task": "app.modules.receipts.tasks.retry_failed_receipt_deliveries",
            "schedule": 600.0,
        },
    }
)

if __name__ == "__main__":
    celery_app.start()
