import logging

from app.core.celery import celery_app
from app.database.database import SessionLocal
from app.modules.receipts.service import ReceiptService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def retry_failed_receipt_deliveries(self):
    """Resend email and SMS receipts whose last delivery failed"""
    db = SessionLocal()
    try:
        retried = ReceiptService(db).retry_failed_deliveries()
        return {"status": "success", "retried": retried}
    except Exception as exc:
        db.rollback()
        logger.error(f"Receipt delivery retry failed: {str(exc)}")
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))
        return {"status": "failed", "error": str(exc)}
    finally:
        db.close()
