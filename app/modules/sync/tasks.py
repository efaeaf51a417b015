"""
Periodic Celery tasks for the offline queue.
"""
import logging
from typing import Optional

from app.core.celery import celery_app
from app.database.database import SessionLocal
from app.modules.sync.service import OfflineQueueService, SyncService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def process_offline_queue(self, limit: int = 50):
    """Run a sync session for every device with items waiting"""
    db = SessionLocal()
    try:
        devices = OfflineQueueService(db).pending_devices()
        sessions = []
        for device_id in devices:
            session = SyncService(db).sync_pending_items(device_id, None, limit)
            sessions.append({
                "device_id": device_id,
                "session_id": session.session_id,
                "status": session.status.value,
                "synced": session.items_synced,
            })
        if sessions:
            logger.info(f"Processed offline queue for {len(sessions)} device(s)")
        return {"status": "success", "sessions": sessions}

    except Exception as exc:
        db.rollback()
        logger.error(f"Offline queue processing failed: {str(exc)}")
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))
        return {"status": "failed", "error": str(exc)}
    finally:
        db.close()


@celery_app.task
def cleanup_synced_queue(older_than_days: Optional[int] = None):
    """Drop synced queue items past the retention window"""
    db = SessionLocal()
    try:
        deleted = OfflineQueueService(db).clear_synced(older_than_days)
        return {"status": "success", "deleted": deleted}
    except Exception as exc:
        db.rollback()
        logger.error(f"Synced queue cleanup failed: {str(exc)}")
        return {"status": "failed", "error": str(exc)}
    finally:
        db.close()
