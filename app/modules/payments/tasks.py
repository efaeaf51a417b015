import logging

from app.core.celery import celery_app
from app.database.database import SessionLocal
from app.modules.payments.service import expire_stale_sessions

logger = logging.getLogger(__name__)


@celery_app.task
def expire_payment_sessions():
    """Mark card and wallet sessions past their expiry as expired"""
    db = SessionLocal()
    try:
        expired = expire_stale_sessions(db)
        return {"status": "success", **expired}
    except Exception as exc:
        db.rollback()
        logger.error(f"Payment session expiry failed: {str(exc)}")
        return {"status": "failed", "error": str(exc)}
    finally:
        db.close()
