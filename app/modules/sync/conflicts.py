"""
Conflict detection for operations replayed from the offline queue.

A till that was offline may replay a sale the server already has (the
same sale sent twice, or rung up again on another till), sell stock
that has since run out, or send a payload that does not add up. Each
check produces detail entries with a severity; the worst severity
decides the suggested resolution.
"""
from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any
from uuid import UUID
import logging

from app.common.utils import utc_now, to_decimal
from app.modules.sales.models import Sale
from app.modules.products.models import Product
from app.modules.menu.models import MenuItem
from app.modules.payments.models import PaymentTransaction
from app.modules.receipts.models import Receipt
from app.modules.sync.models import OfflineQueue, QueueSyncStatus, ConflictType, ResolutionStrategy

logger = logging.getLogger(__name__)

DUPLICATE_WINDOW = timedelta(seconds=5)
SIMILARITY_WINDOW = timedelta(minutes=5)
SIMILARITY_THRESHOLD = 0.8
TOTAL_TOLERANCE = Decimal("0.01")

AMOUNT_WEIGHT = 0.4
ITEM_COUNT_WEIGHT = 0.3
CASHIER_WEIGHT = 0.3


def parse_timestamp(value) -> Optional[datetime]:
    """Naive UTC datetime from a datetime or ISO 8601 string."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def as_uuid(value) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _amount(value) -> Decimal:
    try:
        return to_decimal(value)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}")


def line_product_id(line: Dict[str, Any]):
    return line.get("product_id") or line.get("product")


def line_price(line: Dict[str, Any]) -> Decimal:
    return _amount(line.get("price", line.get("unit_price")))


def calculate_similarity(a: Dict[str, Any], b: Dict[str, Any]) -> float:
    """
    Weighted similarity between two sales, 0 to 1.

    Amount counts 0.4 when both totals are positive, item count 0.3 when
    both have items, and a matching cashier 0.3. The score is divided by
    the weights that applied.
    """
    score = 0.0
    weights = 0.0

    total_a = _amount(a.get("total_amount"))
    total_b = _amount(b.get("total_amount"))
    if total_a < 0 or total_b < 0:
        raise ValueError("Sale totals cannot be negative")
    if total_a > 0 and total_b > 0:
        score += (1 - float(abs(total_a - total_b) / max(total_a, total_b))) * AMOUNT_WEIGHT
        weights += AMOUNT_WEIGHT

    items_a = len(a.get("items") or [])
    items_b = len(b.get("items") or [])
    if items_a and items_b:
        score += (1 - abs(items_a - items_b) / max(items_a, items_b)) * ITEM_COUNT_WEIGHT
        weights += ITEM_COUNT_WEIGHT

    if str(a.get("cashier_id")) == str(b.get("cashier_id")):
        score += CASHIER_WEIGHT
        weights += CASHIER_WEIGHT

    return score / weights if weights else 0.0


def validate_sale_data(sale_data: Dict[str, Any]) -> List[Dict[str, Any]]:
    errors = []
    items = sale_data.get("items") or []
    total = _amount(sale_data.get("total_amount"))

    if not items:
        errors.append({
            "type": "validation_error",
            "severity": "critical",
            "message": "Sale must have at least one item",
            "field": "items",
        })
    if total <= 0:
        errors.append({
            "type": "validation_error",
            "severity": "critical",
            "message": "Invalid total amount",
            "field": "total_amount",
        })
    if items:
        calculated = sum((line_price(line) * _amount(line.get("quantity")) for line in items), Decimal("0"))
        if abs(calculated - total) > TOTAL_TOLERANCE:
            errors.append({
                "type": "data_mismatch",
                "severity": "high",
                "message": "Total amount does not match sum of items",
                "field": "total_amount",
                "calculated": calculated,
                "provided": total,
            })
    return errors


def suggest_resolution(details: List[Dict[str, Any]]) -> Dict[str, Any]:
    severities = {d.get("severity") for d in details}
    if "critical" in severities:
        return {
            "strategy": ResolutionStrategy.MANUAL.value,
            "reason": "Critical conflicts detected",
            "recommended_actions": [
                "Review conflict details",
                "Verify data integrity",
                "Choose keep_online, keep_offline or skip",
            ],
        }
    if "high" in severities:
        return {
            "strategy": ResolutionStrategy.SKIP.value,
            "reason": "High severity conflicts detected",
            "recommended_actions": [
                "Skip this transaction",
                "Review offline data",
                "Reconcile manually if needed",
            ],
        }
    return {
        "strategy": ResolutionStrategy.KEEP_OFFLINE.value,
        "reason": "Minor conflicts can be resolved automatically",
        "recommended_actions": ["Proceed with offline data", "Keep the conflict for the audit trail"],
    }


def _result(details: List[Dict[str, Any]], conflict_type: ConflictType) -> Dict[str, Any]:
    has_conflict = bool(details)
    return {
        "has_conflict": has_conflict,
        "conflict_type": conflict_type.value if has_conflict else ConflictType.NONE.value,
        "details": jsonable_encoder(details),
        "resolution": suggest_resolution(details) if has_conflict else None,
    }


class ConflictResolutionService:
    """Duplicate, inventory and validation checks plus resolution bookkeeping"""

    def __init__(self, db: Session):
        self.db = db

    def _exact_duplicate(self, sale_data: Dict[str, Any], when: datetime) -> Optional[Dict[str, Any]]:
        duplicate = (
            self.db.query(Sale)
            .filter(
                Sale.sale_date.between(when - DUPLICATE_WINDOW, when + DUPLICATE_WINDOW),
                Sale.total_amount == _amount(sale_data.get("total_amount")),
                Sale.cashier_id == as_uuid(sale_data.get("cashier_id"))
            )
            .first()
        )
        if not duplicate:
            return None
        return {
            "type": "duplicate_sale",
            "severity": "high",
            "message": "Sale with same timestamp, amount and cashier already exists",
            "existing_id": duplicate.id,
            "existing_number": duplicate.sale_number,
            "similarity": 100,
        }

    def _offline_id_duplicate(self, offline_id: str) -> Optional[Dict[str, Any]]:
        duplicate = self.db.query(Sale).filter(Sale.offline_id == offline_id).first()
        if not duplicate:
            return None
        return {
            "type": "duplicate_offline_id",
            "severity": "critical",
            "message": "Sale with same offline id already synced",
            "existing_id": duplicate.id,
            "existing_number": duplicate.sale_number,
            "offline_id": offline_id,
        }

    def find_similar_sales(self, sale_data: Dict[str, Any], when: datetime) -> List[Dict[str, Any]]:
        candidates = (
            self.db.query(Sale)
            .filter(
                Sale.sale_date.between(when - SIMILARITY_WINDOW, when + SIMILARITY_WINDOW),
                Sale.cashier_id == as_uuid(sale_data.get("cashier_id"))
            )
            .all()
        )
        similar = []
        for sale in candidates:
            similarity = calculate_similarity(
                sale_data,
                {"total_amount": sale.total_amount, "items": sale.items, "cashier_id": sale.cashier_id}
            )
            if similarity > SIMILARITY_THRESHOLD:
                similar.append({
                    "sale_id": sale.id,
                    "sale_number": sale.sale_number,
                    "similarity": round(similarity * 100),
                    "total_amount": sale.total_amount,
                    "sale_date": sale.sale_date,
                })
        return similar

    def check_inventory(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        conflicts = []
        for line in items:
            item_id = line_product_id(line)
            quantity = _amount(line.get("quantity"))
            if line.get("item_type") == "menu-item":
                menu_item = self.db.query(MenuItem).filter(MenuItem.id == as_uuid(item_id)).first() \
                    if as_uuid(item_id) else None
                if not menu_item:
                    conflicts.append({
                        "type": "inventory_missing",
                        "severity": "critical",
                        "message": f"Menu item not found: {item_id}",
                        "product_id": item_id,
                    })
                continue

            product = self.db.query(Product).filter(Product.id == as_uuid(item_id)).first() \
                if as_uuid(item_id) else None
            if not product:
                conflicts.append({
                    "type": "inventory_missing",
                    "severity": "critical",
                    "message": f"Product not found: {item_id}",
                    "product_id": item_id,
                })
            elif product.track_inventory and product.stock_quantity < quantity:
                conflicts.append({
                    "type": "inventory_insufficient",
                    "severity": "high",
                    "message": f"Insufficient stock for {product.name}",
                    "product_id": item_id,
                    "product_name": product.name,
                    "requested": quantity,
                    "available": product.stock_quantity,
                })
        return conflicts

    def detect_sale_conflict(self, sale_data: Dict[str, Any], device_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Run the sale checks in order: exact duplicate, offline id,
        similar sales (only when nothing above hit), inventory, validation.
        """
        details: List[Dict[str, Any]] = []
        conflict_type = ConflictType.NONE
        when = parse_timestamp(sale_data.get("offline_timestamp"))
        items = sale_data.get("items") or []

        if when and device_id:
            duplicate = self._exact_duplicate(sale_data, when)
            if duplicate:
                details.append(duplicate)
                conflict_type = ConflictType.DUPLICATE

        if sale_data.get("offline_id"):
            duplicate = self._offline_id_duplicate(sale_data["offline_id"])
            if duplicate:
                details.append(duplicate)
                conflict_type = ConflictType.DUPLICATE

        if not details and items:
            similar = self.find_similar_sales(sale_data, when or utc_now())
            if similar:
                details.append({
                    "type": "similar_sale",
                    "severity": "medium",
                    "message": "Similar sale(s) found",
                    "similar_sales": similar,
                })
                conflict_type = ConflictType.DUPLICATE

        if items:
            inventory = self.check_inventory(items)
            if inventory:
                details.extend(inventory)
                if conflict_type == ConflictType.NONE:
                    conflict_type = ConflictType.INTEGRITY

        validation = validate_sale_data(sale_data)
        if validation:
            details.extend(validation)
            if conflict_type == ConflictType.NONE:
                conflict_type = ConflictType.VALIDATION

        if details:
            logger.info(f"Sale conflict ({conflict_type.value}) from device {device_id}: "
                        f"{', '.join(d['type'] for d in details)}")
        return _result(details, conflict_type)

    def detect_payment_conflict(self, payment_data: Dict[str, Any], device_id: Optional[str] = None) -> Dict[str, Any]:
        details = []
        transaction_id = payment_data.get("transaction_id")
        if transaction_id:
            duplicate = self.db.query(PaymentTransaction).filter(
                PaymentTransaction.transaction_id == transaction_id
            ).first()
            if duplicate:
                details.append({
                    "type": "duplicate_payment",
                    "severity": "critical",
                    "message": "Payment with same transaction id already exists",
                    "existing_id": duplicate.id,
                })
        return _result(details, ConflictType.DUPLICATE)

    def detect_receipt_conflict(self, receipt_data: Dict[str, Any], device_id: Optional[str] = None) -> Dict[str, Any]:
        details = []
        receipt_number = receipt_data.get("receipt_number")
        if receipt_number:
            duplicate = self.db.query(Receipt).filter(Receipt.receipt_number == receipt_number).first()
            if duplicate:
                details.append({
                    "type": "duplicate_receipt",
                    "severity": "critical",
                    "message": "Receipt with same number already exists",
                    "existing_id": duplicate.id,
                })
        return _result(details, ConflictType.DUPLICATE)

    def apply_resolution(self, queue_id: str, strategy: ResolutionStrategy, user_id: Optional[UUID],
                         reason: Optional[str] = None) -> OfflineQueue:
        item = self.db.query(OfflineQueue).filter(OfflineQueue.queue_id == queue_id).first()
        if not item:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Queue item not found")

        item.resolution_strategy = strategy
        item.conflict_resolved_by = user_id
        item.conflict_resolved_at = utc_now()
        if strategy == ResolutionStrategy.SKIP:
            item.sync_status = QueueSyncStatus.SKIPPED
        else:
            item.sync_status = QueueSyncStatus.PENDING
            item.attempts = 0
            item.next_retry_at = None
        item.meta = {**(item.meta or {}), "resolution_reason": reason}
        self.db.commit()
        self.db.refresh(item)
        logger.info(f"Queue item {queue_id} resolved with {strategy.value}")
        return item
