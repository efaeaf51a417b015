"""
Offline queue and sync orchestration.

Tills that lose connectivity keep ringing up sales and queue them here
once they reconnect. Each queued item carries a checksum of its payload;
a sync run replays pending items in priority order, checks them for
conflicts, and writes the sale, payment or receipt they describe.
"""
from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import UUID
import hashlib
import json
import logging

from app.core.config import settings
from app.common.utils import utc_now, to_decimal, money, timestamp_reference
from app.modules.sales.models import Sale, SaleStatus, OrderType, PaymentMethod
from app.modules.sales.service import next_sale_number
from app.modules.payments.models import (
    PaymentTransaction, TransactionMethod, TransactionType, TransactionStatus
)
from app.modules.receipts.models import ReceiptType, ReceiptFormat
from app.modules.receipts.service import ReceiptService
from app.modules.sync.models import (
    OfflineQueue, SyncLog, QueueEntityType, QueueOperation, QueueSyncStatus,
    ConflictType, ResolutionStrategy, SyncSessionStatus
)
from app.modules.sync.conflicts import (
    ConflictResolutionService, parse_timestamp, as_uuid, line_product_id, line_price
)

logger = logging.getLogger(__name__)

DEFAULT_PRIORITIES = {
    QueueEntityType.SALE: 5,
    QueueEntityType.PAYMENT: 7,
    QueueEntityType.RECEIPT: 3,
}

BYPASS_STRATEGIES = (ResolutionStrategy.KEEP_OFFLINE, ResolutionStrategy.MERGE)

SYNCED = "synced"
CONFLICT = "conflict"
FAILED = "failed"
SKIPPED = "skipped"


def compute_checksum(payload: Dict[str, Any]) -> str:
    """sha256 over the payload as canonical JSON"""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def retry_delay(attempts: int) -> int:
    return min(2 ** attempts, settings.SYNC_MAX_BACKOFF_SECONDS)


def _optional_money(value) -> Optional[Decimal]:
    return None if value is None else money(value)


def existing_entity_id(details: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    """Id of the server-side record a conflict points at"""
    for detail in details or []:
        if detail.get("existing_id"):
            return str(detail["existing_id"])
        for similar in detail.get("similar_sales") or []:
            return str(similar["sale_id"])
    return None


class OfflineQueueService:
    """Queueing, status bookkeeping and housekeeping for offline operations"""

    def __init__(self, db: Session):
        self.db = db

    def get_item(self, queue_id: str) -> OfflineQueue:
        item = self.db.query(OfflineQueue).filter(OfflineQueue.queue_id == queue_id).first()
        if not item:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Queue item not found")
        return item

    def _queue(
        self,
        entity_type: QueueEntityType,
        device_id: str,
        payload: Dict[str, Any],
        user_id: Optional[UUID] = None,
        operation: QueueOperation = QueueOperation.CREATE,
        priority: Optional[int] = None,
        offline_timestamp: Optional[datetime] = None
    ) -> OfflineQueue:
        if not payload:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payload is required")

        try:
            payload = jsonable_encoder(payload)
            checksum = compute_checksum(payload)

            duplicate = (
                self.db.query(OfflineQueue)
                .filter(
                    OfflineQueue.device_id == device_id,
                    OfflineQueue.checksum == checksum,
                    OfflineQueue.sync_status != QueueSyncStatus.SYNCED
                )
                .first()
            )
            if duplicate:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Item already queued as {duplicate.queue_id}"
                )

            try:
                when = parse_timestamp(offline_timestamp or payload.get("offline_timestamp"))
            except ValueError as e:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

            item = OfflineQueue(
                queue_id=timestamp_reference("Q", 6),
                device_id=device_id,
                entity_type=entity_type,
                operation=operation,
                payload=payload,
                checksum=checksum,
                priority=priority or DEFAULT_PRIORITIES[entity_type],
                max_attempts=settings.SYNC_MAX_ATTEMPTS,
                queued_by=user_id,
                offline_timestamp=when or utc_now()
            )
            self.db.add(item)
            self.db.commit()
            self.db.refresh(item)
            logger.info(f"Queued {entity_type.value} {item.queue_id} from device {device_id}")
            return item

        except HTTPException:
            raise
        except IntegrityError as e:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Queue item already exists")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error queueing {entity_type.value}: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def queue_sale(self, device_id: str, payload: Dict[str, Any], user_id: Optional[UUID] = None, **kwargs) -> OfflineQueue:
        return self._queue(QueueEntityType.SALE, device_id, payload, user_id, **kwargs)

    def queue_payment(self, device_id: str, payload: Dict[str, Any], user_id: Optional[UUID] = None, **kwargs) -> OfflineQueue:
        return self._queue(QueueEntityType.PAYMENT, device_id, payload, user_id, **kwargs)

    def queue_receipt(self, device_id: str, payload: Dict[str, Any], user_id: Optional[UUID] = None, **kwargs) -> OfflineQueue:
        return self._queue(QueueEntityType.RECEIPT, device_id, payload, user_id, **kwargs)

    def get_pending(self, device_id: Optional[str] = None, limit: int = 50) -> List[OfflineQueue]:
        """
        Items ready to sync: pending ones, plus failed ones that still have
        attempts left and whose backoff has elapsed.
        """
        now = utc_now()
        query = self.db.query(OfflineQueue).filter(
            (OfflineQueue.sync_status == QueueSyncStatus.PENDING)
            | (
                (OfflineQueue.sync_status == QueueSyncStatus.FAILED)
                & (OfflineQueue.attempts < OfflineQueue.max_attempts)
                & (OfflineQueue.next_retry_at.is_(None) | (OfflineQueue.next_retry_at <= now))
            )
        )
        if device_id:
            query = query.filter(OfflineQueue.device_id == device_id)
        return (
            query.order_by(OfflineQueue.priority.desc(), OfflineQueue.created_at.asc())
            .limit(limit)
            .all()
        )

    def pending_devices(self) -> List[str]:
        return [device for device, in
                self.db.query(OfflineQueue.device_id)
                .filter(OfflineQueue.sync_status.in_((QueueSyncStatus.PENDING, QueueSyncStatus.FAILED)))
                .distinct()
                .all()]

    def update_status(
        self,
        queue_id: str,
        sync_status: QueueSyncStatus,
        error: Optional[str] = None,
        synced_entity_id: Optional[str] = None
    ) -> OfflineQueue:
        item = self.get_item(queue_id)
        now = utc_now()
        item.sync_status = sync_status

        if sync_status == QueueSyncStatus.SYNCING:
            item.last_attempt_at = now
        elif sync_status == QueueSyncStatus.SYNCED:
            item.synced_at = now
            item.synced_entity_id = synced_entity_id
            item.error_message = None
            item.next_retry_at = None
        elif sync_status == QueueSyncStatus.FAILED:
            item.attempts = (item.attempts or 0) + 1
            item.error_message = error
            item.next_retry_at = now + timedelta(seconds=retry_delay(item.attempts))
            logger.warning(f"Queue item {queue_id} failed (attempt {item.attempts}): {error}")

        self.db.commit()
        self.db.refresh(item)
        return item

    def mark_conflict(self, queue_id: str, conflict_type: ConflictType, details: List[Dict[str, Any]]) -> OfflineQueue:
        item = self.get_item(queue_id)
        item.sync_status = QueueSyncStatus.CONFLICT
        item.conflict_type = conflict_type
        item.conflict_details = jsonable_encoder(details)
        self.db.commit()
        self.db.refresh(item)
        logger.info(f"Queue item {queue_id} marked as {conflict_type.value} conflict")
        return item

    def get_conflicted(self, device_id: Optional[str] = None) -> List[OfflineQueue]:
        query = self.db.query(OfflineQueue).filter(OfflineQueue.sync_status == QueueSyncStatus.CONFLICT)
        if device_id:
            query = query.filter(OfflineQueue.device_id == device_id)
        return query.order_by(OfflineQueue.created_at.asc()).all()

    def stats(self, device_id: Optional[str] = None) -> Dict[str, Any]:
        query = self.db.query(OfflineQueue)
        if device_id:
            query = query.filter(OfflineQueue.device_id == device_id)

        by_status = {s.value: 0 for s in QueueSyncStatus}
        for sync_status, count in (
            query.with_entities(OfflineQueue.sync_status, func.count(OfflineQueue.id))
            .group_by(OfflineQueue.sync_status)
        ):
            by_status[sync_status.value] = count

        by_entity_type = {t.value: 0 for t in QueueEntityType}
        for entity_type, count in (
            query.with_entities(OfflineQueue.entity_type, func.count(OfflineQueue.id))
            .group_by(OfflineQueue.entity_type)
        ):
            by_entity_type[entity_type.value] = count

        oldest = (
            query.with_entities(func.min(OfflineQueue.offline_timestamp))
            .filter(OfflineQueue.sync_status == QueueSyncStatus.PENDING)
            .scalar()
        )
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_entity_type": by_entity_type,
            "oldest_pending": oldest,
        }

    def clear_synced(self, older_than_days: Optional[int] = None) -> int:
        days = settings.SYNC_RETENTION_DAYS if older_than_days is None else older_than_days
        cutoff = utc_now() - timedelta(days=days)
        deleted = (
            self.db.query(OfflineQueue)
            .filter(OfflineQueue.sync_status == QueueSyncStatus.SYNCED, OfflineQueue.synced_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info(f"Cleared {deleted} synced queue items older than {days} days")
        return deleted

    def reset_failed(self, device_id: Optional[str] = None) -> int:
        query = self.db.query(OfflineQueue).filter(OfflineQueue.sync_status == QueueSyncStatus.FAILED)
        if device_id:
            query = query.filter(OfflineQueue.device_id == device_id)
        items = query.all()
        for item in items:
            item.sync_status = QueueSyncStatus.PENDING
            item.attempts = 0
            item.next_retry_at = None
            item.error_message = None
        self.db.commit()
        return len(items)

    def verify_checksum(self, item: OfflineQueue) -> bool:
        return compute_checksum(item.payload) == item.checksum


class SyncService:
    """Replays queued offline operations against the live tables"""

    def __init__(self, db: Session):
        self.db = db
        self.queue = OfflineQueueService(db)
        self.conflicts = ConflictResolutionService(db)

    def start_session(self, device_id: Optional[str], user_id: Optional[UUID]) -> SyncLog:
        session = SyncLog(
            session_id=timestamp_reference("SYNC", 6),
            device_id=device_id,
            user_id=user_id,
            status=SyncSessionStatus.IN_PROGRESS,
            started_at=utc_now()
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return session

    def sync_pending_items(self, device_id: Optional[str] = None, user_id: Optional[UUID] = None,
                           limit: int = 50) -> SyncLog:
        session = self.start_session(device_id, user_id)
        items = self.queue.get_pending(device_id, limit)
        tally = {SYNCED: 0, CONFLICT: 0, FAILED: 0, SKIPPED: 0}
        errors = []

        for item in items:
            queue_id = item.queue_id
            self.queue.update_status(queue_id, QueueSyncStatus.SYNCING)
            if not self.queue.verify_checksum(item):
                self.queue.update_status(queue_id, QueueSyncStatus.FAILED, "Checksum mismatch")
                tally[FAILED] += 1
                errors.append({"queue_id": queue_id, "error": "Checksum mismatch"})
                continue

            try:
                outcome = self.sync_item(item)
            except Exception as e:
                self.db.rollback()
                message = e.detail if isinstance(e, HTTPException) else str(e)
                self.queue.update_status(queue_id, QueueSyncStatus.FAILED, message)
                outcome = FAILED
                errors.append({"queue_id": queue_id, "error": message})
            tally[outcome] += 1

        finished = utc_now()
        session.items_total = len(items)
        session.items_synced = tally[SYNCED]
        session.items_conflicted = tally[CONFLICT]
        session.items_failed = tally[FAILED]
        session.items_skipped = tally[SKIPPED]
        session.completed_at = finished
        session.duration_ms = int((finished - session.started_at).total_seconds() * 1000)
        session.error_summary = errors or None
        if not tally[FAILED] and not tally[CONFLICT]:
            session.status = SyncSessionStatus.COMPLETED
        elif tally[SYNCED]:
            session.status = SyncSessionStatus.PARTIAL
        else:
            session.status = SyncSessionStatus.FAILED
        self.db.commit()
        self.db.refresh(session)

        logger.info(
            f"Sync session {session.session_id}: {tally[SYNCED]} synced, {tally[CONFLICT]} conflicted, "
            f"{tally[FAILED]} failed, {tally[SKIPPED]} skipped"
        )
        return session

    def sync_item(self, item: OfflineQueue) -> str:
        if item.entity_type == QueueEntityType.SALE:
            return self.sync_sale(item)
        if item.entity_type == QueueEntityType.PAYMENT:
            return self.sync_payment(item)
        return self.sync_receipt(item)

    def _check(self, item: OfflineQueue, detect) -> Optional[str]:
        """
        Conflict handling shared by every entity type. Returns an outcome
        when the item should not be written.
        """
        strategy = item.resolution_strategy
        if strategy in BYPASS_STRATEGIES:
            return None
        if strategy == ResolutionStrategy.KEEP_ONLINE:
            self.queue.update_status(
                item.queue_id, QueueSyncStatus.SYNCED,
                synced_entity_id=existing_entity_id(item.conflict_details)
            )
            return SKIPPED

        result = detect()
        if result["has_conflict"]:
            self.queue.mark_conflict(item.queue_id, ConflictType(result["conflict_type"]), result["details"])
            return CONFLICT
        return None

    def _finish(self, item: OfflineQueue, entity) -> str:
        self.db.add(entity)
        self.db.flush()
        self.queue.update_status(item.queue_id, QueueSyncStatus.SYNCED, synced_entity_id=str(entity.id))
        logger.info(f"Synced {item.entity_type.value} {item.queue_id} as {entity.id}")
        return SYNCED

    def sync_sale(self, item: OfflineQueue) -> str:
        """
        Create the sale a till recorded offline. Stock is not deducted
        again; the till already sold it.
        """
        payload = dict(item.payload)
        payload.setdefault("offline_timestamp", item.offline_timestamp.isoformat())
        outcome = self._check(item, lambda: self.conflicts.detect_sale_conflict(payload, item.device_id))
        if outcome:
            return outcome

        offline_id = payload.get("offline_id") or item.queue_id
        if self.db.query(Sale).filter(Sale.offline_id == offline_id).first():
            offline_id = item.queue_id

        lines = []
        for line in payload.get("items") or []:
            quantity = to_decimal(line.get("quantity"))
            price = line_price(line)
            subtotal = money(price * quantity)
            lines.append({
                "product": str(line_product_id(line)),
                "product_name": line.get("product_name"),
                "item_type": line.get("item_type", "product"),
                "portion_id": line.get("portion_id"),
                "quantity": quantity,
                "unit_price": price,
                "subtotal": subtotal,
                "vat_rate": Decimal("0"),
                "vat_amount": Decimal("0.00"),
                "total_with_vat": subtotal,
                "taxable": True,
                "cost_price": line.get("cost_price") or 0,
            })

        total = money(to_decimal(payload.get("total_amount")))
        vat_amount = money(to_decimal(payload.get("vat_amount")))
        amount_paid = money(to_decimal(payload.get("amount_paid") or total))
        sale = Sale(
            sale_number=next_sale_number(self.db, item.offline_timestamp),
            items=jsonable_encoder(lines),
            subtotal=money(to_decimal(payload.get("subtotal") or (total - vat_amount))),
            vat_amount=vat_amount,
            vat_rate=to_decimal(payload.get("vat_rate")),
            service_charge=money(to_decimal(payload.get("service_charge"))),
            total_amount=total,
            payment_method=PaymentMethod(payload.get("payment_method", PaymentMethod.CASH.value)),
            amount_paid=amount_paid,
            change_given=max(amount_paid - total, Decimal("0.00")),
            cashier_id=as_uuid(payload.get("cashier_id")),
            cashier_name=payload.get("cashier_name"),
            order_type=OrderType(payload.get("order_type", OrderType.TAKEAWAY.value)),
            table_number=payload.get("table_number"),
            customer_name=payload.get("customer_name"),
            notes=payload.get("notes"),
            status=SaleStatus.COMPLETED,
            offline_id=offline_id,
            is_synced=True,
            sale_date=item.offline_timestamp
        )
        return self._finish(item, sale)

    def sync_payment(self, item: OfflineQueue) -> str:
        payload = item.payload
        outcome = self._check(item, lambda: self.conflicts.detect_payment_conflict(payload, item.device_id))
        if outcome:
            return outcome

        transaction_id = payload.get("transaction_id")
        if not transaction_id or self.db.query(PaymentTransaction).filter(
            PaymentTransaction.transaction_id == transaction_id
        ).first():
            transaction_id = timestamp_reference("OFFPAY")

        sale = self._find_sale(payload)
        transaction = PaymentTransaction(
            transaction_id=transaction_id,
            sale_id=sale.id if sale else None,
            payment_method=TransactionMethod(payload.get("payment_method", TransactionMethod.CASH.value)),
            transaction_type=TransactionType.PAYMENT,
            amount=money(to_decimal(payload.get("amount"))),
            currency=payload.get("currency", "LKR"),
            status=TransactionStatus.COMPLETED,
            amount_tendered=_optional_money(payload.get("amount_tendered")),
            change_given=_optional_money(payload.get("change_given")),
            card_last4=payload.get("card_last4"),
            card_brand=payload.get("card_brand"),
            wallet_provider=payload.get("wallet_provider"),
            gateway_reference=payload.get("gateway_reference"),
            cashier_id=as_uuid(payload.get("cashier_id")),
            notes=f"Synced from offline queue {item.queue_id}",
            processed_at=item.offline_timestamp
        )
        return self._finish(item, transaction)

    def sync_receipt(self, item: OfflineQueue) -> str:
        payload = item.payload
        outcome = self._check(item, lambda: self.conflicts.detect_receipt_conflict(payload, item.device_id))
        if outcome:
            return outcome

        sale = self._find_sale(payload)
        if not sale:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sale not found for receipt")

        receipt = ReceiptService(self.db).build_receipt(
            sale,
            receipt_type=ReceiptType(payload.get("receipt_type", ReceiptType.ORIGINAL.value)),
            receipt_format=ReceiptFormat(payload.get("format", ReceiptFormat.PRINT.value)),
            language=payload.get("language", "english"),
            generated_by=item.queued_by,
            generated_by_name=payload.get("generated_by_name"),
            receipt_number=payload.get("receipt_number")
        )
        return self._finish(item, receipt)

    def _find_sale(self, payload: Dict[str, Any]) -> Optional[Sale]:
        """Sale by id, or by the offline id the till gave it"""
        sale_id = as_uuid(payload.get("sale_id"))
        if sale_id:
            sale = self.db.query(Sale).filter(Sale.id == sale_id).first()
            if sale:
                return sale
        offline_id = payload.get("sale_offline_id")
        if offline_id:
            return self.db.query(Sale).filter(Sale.offline_id == offline_id).first()
        return None

    def list_sessions(self, device_id: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[SyncLog]:
        query = self.db.query(SyncLog)
        if device_id:
            query = query.filter(SyncLog.device_id == device_id)
        return query.order_by(SyncLog.started_at.desc()).offset(offset).limit(limit).all()

    def get_session(self, session_id: str) -> SyncLog:
        session = self.db.query(SyncLog).filter(SyncLog.session_id == session_id).first()
        if not session:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sync session not found")
        return session

    def stats(self, device_id: Optional[str] = None, days: int = 7) -> Dict[str, Any]:
        """Totals over the sync sessions of the last few days"""
        query = self.db.query(SyncLog).filter(SyncLog.started_at >= utc_now() - timedelta(days=days))
        if device_id:
            query = query.filter(SyncLog.device_id == device_id)
        sessions = query.all()

        synced = sum(s.items_synced for s in sessions)
        failed = sum(s.items_failed for s in sessions)
        conflicted = sum(s.items_conflicted for s in sessions)
        skipped = sum(s.items_skipped for s in sessions)
        processed = synced + failed + conflicted + skipped
        durations = [s.duration_ms for s in sessions if s.duration_ms is not None]
        return {
            "days": days,
            "sessions": len(sessions),
            "items_synced": synced,
            "items_failed": failed,
            "items_conflicted": conflicted,
            "items_skipped": skipped,
            "success_rate": round(synced / processed * 100, 2) if processed else 0.0,
            "average_duration_ms": int(sum(durations) / len(durations)) if durations else None,
            "last_sync_at": max((s.started_at for s in sessions), default=None),
        }
