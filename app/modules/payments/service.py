"""
Transaction queries shared by the cash, card and mobile services, plus
session expiry run by Celery beat.
"""
from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from datetime import date
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import UUID
import logging

from app.common.utils import utc_now, money, date_range_bounds, timestamp_reference
from app.modules.sales.models import Sale
from app.modules.payments.models import (
    PaymentTransaction, TransactionMethod, TransactionType, TransactionStatus,
    CardSession, CardSessionStatus, MobilePaymentSession, MobileSessionStatus
)

logger = logging.getLogger(__name__)


class PaymentTransactionService:
    """Lookup, filtering, refund bookkeeping and summaries over PaymentTransaction"""

    def __init__(self, db: Session):
        self.db = db

    def get_sale(self, sale_id: Optional[UUID]) -> Optional[Sale]:
        if sale_id is None:
            return None
        sale = self.db.query(Sale).filter(Sale.id == sale_id).first()
        if not sale:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sale not found")
        return sale

    def get_transaction(self, transaction_id: str) -> PaymentTransaction:
        transaction = self.db.query(PaymentTransaction).filter(
            PaymentTransaction.transaction_id == transaction_id
        ).first()
        if not transaction:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
        return transaction

    def refundable_payment(self, transaction_id: str, method: TransactionMethod,
                           amount: Optional[Decimal]) -> tuple:
        """
        The payment to refund and the amount to refund from it.

        Only completed payments of the given method qualify; amount defaults
        to whatever has not been refunded yet.
        """
        original = self.get_transaction(transaction_id)
        if original.payment_method != method or original.transaction_type != TransactionType.PAYMENT:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Transaction is not a {method.value} payment"
            )
        if original.status == TransactionStatus.REFUNDED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Transaction already refunded")
        if original.status != TransactionStatus.COMPLETED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Only completed payments can be refunded (status: {original.status.value})"
            )

        remaining = money(original.amount) - money(original.refunded_amount)
        amount = money(amount) if amount is not None else remaining
        if amount <= 0 or amount > remaining:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Refund amount must be between 0.01 and the refundable remainder {remaining}"
            )
        return original, amount

    def record_refund(self, original: PaymentTransaction, amount: Decimal, reason: str, prefix: str,
                      cashier_id: Optional[UUID], **extra) -> PaymentTransaction:
        """Write the negative refund row and update the original. The caller commits."""
        refund = PaymentTransaction(
            transaction_id=timestamp_reference(prefix),
            sale_id=original.sale_id,
            payment_method=original.payment_method,
            transaction_type=TransactionType.REFUND,
            amount=-amount,
            currency=original.currency,
            status=TransactionStatus.COMPLETED,
            card_last4=original.card_last4,
            card_brand=original.card_brand,
            wallet_provider=original.wallet_provider,
            customer_phone=original.customer_phone,
            refund_reference=original.transaction_id,
            refunded_amount=amount,
            refund_reason=reason,
            cashier_id=cashier_id,
            processed_at=utc_now(),
            **extra
        )
        self.db.add(refund)

        original.refunded_amount = money(original.refunded_amount) + amount
        original.refund_reason = reason
        original.refund_reference = refund.transaction_id
        if original.refunded_amount >= money(original.amount):
            original.status = TransactionStatus.REFUNDED
        return refund

    def commit_refund(self, refund: PaymentTransaction, original: PaymentTransaction) -> Dict[str, Any]:
        reference = original.transaction_id
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Duplicate refund transaction")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error recording refund against {reference}: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )
        self.db.refresh(refund)
        self.db.refresh(original)
        return {"refund": refund, "original": original}

    def list_transactions(
        self,
        method: Optional[TransactionMethod] = None,
        transaction_status: Optional[TransactionStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[PaymentTransaction]:
        query = self.db.query(PaymentTransaction)
        start, end = date_range_bounds(start_date, end_date)
        if method:
            query = query.filter(PaymentTransaction.payment_method == method)
        if transaction_status:
            query = query.filter(PaymentTransaction.status == transaction_status)
        if start:
            query = query.filter(PaymentTransaction.created_at >= start)
        if end:
            query = query.filter(PaymentTransaction.created_at < end)
        return query.order_by(PaymentTransaction.created_at.desc()).offset(offset).limit(limit).all()

    def summary(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> Dict[str, Any]:
        """Count and signed amount per method and per status."""
        transactions = self.list_transactions(start_date=start_date, end_date=end_date, limit=None)
        start, end = date_range_bounds(start_date, end_date)
        by_method: Dict[str, Dict[str, Any]] = {}
        by_status: Dict[str, Dict[str, Any]] = {}
        total = Decimal("0")
        for transaction in transactions:
            amount = money(transaction.amount)
            total += amount
            for bucket, key in ((by_method, transaction.payment_method.value), (by_status, transaction.status.value)):
                entry = bucket.setdefault(key, {"count": 0, "amount": Decimal("0")})
                entry["count"] += 1
                entry["amount"] += amount
        return {
            "start_date": start,
            "end_date": end,
            "by_method": by_method,
            "by_status": by_status,
            "total_count": len(transactions),
            "total_amount": total,
        }


def expire_stale_sessions(db: Session) -> Dict[str, int]:
    """Mark card and mobile sessions past their expiry as expired."""
    now = utc_now()
    card = (
        db.query(CardSession)
        .filter(
            CardSession.status.in_([CardSessionStatus.INITIALIZED, CardSessionStatus.PROCESSING]),
            CardSession.expires_at < now
        )
        .all()
    )
    for session in card:
        session.status = CardSessionStatus.EXPIRED

    mobile = (
        db.query(MobilePaymentSession)
        .filter(
            MobilePaymentSession.status.in_([MobileSessionStatus.PENDING, MobileSessionStatus.PROCESSING]),
            MobilePaymentSession.expires_at < now
        )
        .all()
    )
    for session in mobile:
        session.status = MobileSessionStatus.EXPIRED

    db.commit()
    if card or mobile:
        logger.info(f"Expired {len(card)} card and {len(mobile)} mobile payment sessions")
    return {"card": len(card), "mobile": len(mobile)}
