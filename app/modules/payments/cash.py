"""
Cash payments and cash drawer management.

A drawer follows open -> closed -> reconciled. While open, every cash
payment raises its expected balance and every cash refund lowers it;
closing compares the counted cash with that expectation.
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
from app.common.sequences import next_sequence_number
from app.modules.auth.schemas import AuthContext
from app.modules.payments.models import (
    PaymentTransaction, TransactionMethod, TransactionType, TransactionStatus, CashDrawer, DrawerStatus
)
from app.modules.payments.schemas import (
    LKR_DENOMINATIONS, CashPaymentRequest, DrawerOpen, DrawerClose, RefundRequest, DenominationCount
)
from app.modules.payments.service import PaymentTransactionService

logger = logging.getLogger(__name__)

DEFAULT_DISCREPANCY_THRESHOLD = Decimal("10.00")


def denominations_total(denominations: List[DenominationCount]) -> Decimal:
    return sum((money(d.value) * d.count for d in denominations), Decimal("0"))


def denominations_json(denominations: Optional[List[DenominationCount]]) -> Optional[List[Dict[str, int]]]:
    if not denominations:
        return None
    return [{"value": int(d.value), "count": d.count} for d in denominations if d.count]


def change_breakdown(change: Decimal) -> Dict[str, Any]:
    """Greedy split of change over LKR notes and coins, largest first."""
    remaining = money(change)
    breakdown = []
    for value in LKR_DENOMINATIONS:
        count = int(remaining // value)
        if count:
            breakdown.append({"value": value, "count": count})
            remaining -= value * count
    return {"total": money(change), "breakdown": breakdown, "remainder": money(remaining)}


class CashPaymentService:
    """Cash tendering, change, refunds and drawer lifecycle"""

    def __init__(self, db: Session):
        self.db = db
        self.transactions = PaymentTransactionService(db)

    @staticmethod
    def _check_denominations(denominations: Optional[List[DenominationCount]], expected: Decimal, label: str):
        if denominations is None:
            return
        counted = denominations_total(denominations)
        if counted != money(expected):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Denominations total {counted} does not match {label} {money(expected)}"
            )

    def open_drawer_for(self, cashier_id: UUID) -> Optional[CashDrawer]:
        return self.db.query(CashDrawer).filter(
            CashDrawer.cashier_id == cashier_id,
            CashDrawer.status == DrawerStatus.OPEN
        ).first()

    def _require_open_drawer(self, cashier_id: UUID) -> CashDrawer:
        drawer = self.open_drawer_for(cashier_id)
        if not drawer:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No open cash drawer")
        return drawer

    def get_drawer(self, drawer_id: UUID) -> CashDrawer:
        drawer = self.db.query(CashDrawer).filter(CashDrawer.id == drawer_id).first()
        if not drawer:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cash drawer not found")
        return drawer

    # ===== PAYMENTS =====

    def process_payment(self, data: CashPaymentRequest, auth_context: AuthContext) -> Dict[str, Any]:
        """
        Record a cash payment and work out the change.

        The amount is added to the cashier's open drawer when there is one.
        """
        amount, tendered = money(data.amount), money(data.amount_tendered)
        if tendered < amount:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Amount tendered {tendered} is less than the amount due {amount}"
            )
        self._check_denominations(data.denominations, tendered, "amount tendered")
        self.transactions.get_sale(data.sale_id)

        try:
            drawer = self.open_drawer_for(auth_context.user_id)
            change = tendered - amount
            transaction = PaymentTransaction(
                transaction_id=timestamp_reference("CASH"),
                sale_id=data.sale_id,
                payment_method=TransactionMethod.CASH,
                transaction_type=TransactionType.PAYMENT,
                amount=amount,
                status=TransactionStatus.COMPLETED,
                amount_tendered=tendered,
                change_given=change,
                denominations=denominations_json(data.denominations),
                drawer_id=drawer.id if drawer else None,
                cashier_id=auth_context.user_id,
                notes=data.notes,
                processed_at=utc_now()
            )
            self.db.add(transaction)
            if drawer:
                drawer.expected_balance = money(drawer.expected_balance) + amount
            else:
                logger.warning(f"Cash payment by {auth_context.username} recorded without an open drawer")

            self.db.commit()
            self.db.refresh(transaction)
            logger.info(f"Cash payment {transaction.transaction_id}: {amount} tendered {tendered}")
            return {"transaction": transaction, "change": change_breakdown(change)}
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Duplicate transaction")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error processing cash payment: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def refund(self, data: RefundRequest, auth_context: AuthContext) -> Dict[str, Any]:
        original, amount = self.transactions.refundable_payment(data.transaction_id, TransactionMethod.CASH, data.amount)
        drawer = self.open_drawer_for(auth_context.user_id)
        if drawer is None and original.drawer and original.drawer.status == DrawerStatus.OPEN:
            drawer = original.drawer

        refund = self.transactions.record_refund(
            original, amount, data.reason, "REFUND", auth_context.user_id,
            drawer_id=drawer.id if drawer else None
        )
        if drawer:
            drawer.expected_balance = money(drawer.expected_balance) - amount
        result = self.transactions.commit_refund(refund, original)
        logger.info(f"Cash refund {refund.transaction_id} of {amount} against {original.transaction_id}")
        return result

    # ===== DRAWERS =====

    def open_drawer(self, data: DrawerOpen, auth_context: AuthContext) -> CashDrawer:
        if self.open_drawer_for(auth_context.user_id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cashier already has an open cash drawer"
            )
        self._check_denominations(data.denominations, data.opening_balance, "opening balance")

        today = utc_now()
        drawer = CashDrawer(
            drawer_number=next_sequence_number(
                self.db, CashDrawer.drawer_number, f"DRW-{today.strftime('%Y%m%d')}-"
            ),
            cashier_id=auth_context.user_id,
            cashier_name=auth_context.display_name,
            opening_balance=money(data.opening_balance),
            expected_balance=money(data.opening_balance),
            opening_denominations=denominations_json(data.denominations),
            status=DrawerStatus.OPEN,
            opened_at=today,
            notes=data.notes
        )
        self.db.add(drawer)
        self.db.commit()
        self.db.refresh(drawer)
        logger.info(f"Drawer {drawer.drawer_number} opened by {auth_context.username} with {drawer.opening_balance}")
        return drawer

    def close_drawer(self, data: DrawerClose, auth_context: AuthContext) -> CashDrawer:
        drawer = self._require_open_drawer(auth_context.user_id)
        self._check_denominations(data.denominations, data.actual_balance, "actual balance")

        drawer.actual_balance = money(data.actual_balance)
        drawer.difference = drawer.actual_balance - money(drawer.expected_balance)
        drawer.closing_denominations = denominations_json(data.denominations)
        drawer.status = DrawerStatus.CLOSED
        drawer.closed_at = utc_now()
        if data.notes:
            drawer.notes = f"{drawer.notes or ''}\n{data.notes}".strip()
        self.db.commit()
        self.db.refresh(drawer)

        log = logger.warning if drawer.difference != 0 else logger.info
        log(f"Drawer {drawer.drawer_number} closed: expected {drawer.expected_balance}, counted {drawer.actual_balance}")
        return drawer

    def drawer_status(self, auth_context: AuthContext) -> Dict[str, Any]:
        drawer = self._require_open_drawer(auth_context.user_id)
        sales = [t for t in drawer.transactions if t.transaction_type == TransactionType.PAYMENT]
        refunds = [t for t in drawer.transactions if t.transaction_type == TransactionType.REFUND]
        return {
            "drawer": drawer,
            "transactions": {
                "count": len(drawer.transactions),
                "sales_count": len(sales),
                "sales_total": sum((money(t.amount) for t in sales), Decimal("0")),
                "refunds_count": len(refunds),
                "refunds_total": sum((abs(money(t.amount)) for t in refunds), Decimal("0")),
            },
        }

    def reconcile_drawer(self, drawer_id: UUID, notes: Optional[str], auth_context: AuthContext) -> CashDrawer:
        drawer = self.get_drawer(drawer_id)
        if drawer.status != DrawerStatus.CLOSED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Can only reconcile closed drawers"
            )
        drawer.status = DrawerStatus.RECONCILED
        drawer.reconciled_by = auth_context.user_id
        drawer.reconciled_at = utc_now()
        if notes:
            drawer.notes = f"{drawer.notes or ''}\n[Reconciliation] {notes}".strip()
        self.db.commit()
        self.db.refresh(drawer)
        logger.info(f"Drawer {drawer.drawer_number} reconciled by {auth_context.username}")
        return drawer

    # ===== REPORTS =====

    def report(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> Dict[str, Any]:
        start, end = date_range_bounds(start_date, end_date)
        transactions = self.transactions.list_transactions(
            method=TransactionMethod.CASH, start_date=start_date, end_date=end_date, limit=None
        )
        payments = [
            t for t in transactions
            if t.transaction_type == TransactionType.PAYMENT
            and t.status in (TransactionStatus.COMPLETED, TransactionStatus.REFUNDED)
        ]
        refunds = [t for t in transactions if t.transaction_type == TransactionType.REFUND]
        total_sales = sum((money(t.amount) for t in payments), Decimal("0"))
        total_refunds = sum((abs(money(t.amount)) for t in refunds), Decimal("0"))

        drawers = self._drawers(start, end)
        return {
            "start_date": start,
            "end_date": end,
            "total_sales": total_sales,
            "total_refunds": total_refunds,
            "net_cash": total_sales - total_refunds,
            "transaction_count": len(payments),
            "drawers_opened": len(drawers),
            "total_discrepancy": sum((money(d.difference) for d in drawers if d.difference is not None), Decimal("0")),
        }

    def _drawers(self, start, end) -> List[CashDrawer]:
        query = self.db.query(CashDrawer)
        if start:
            query = query.filter(CashDrawer.opened_at >= start)
        if end:
            query = query.filter(CashDrawer.opened_at < end)
        return query.all()

    def discrepancies(self, threshold: Decimal = DEFAULT_DISCREPANCY_THRESHOLD,
                      start_date: Optional[date] = None, end_date: Optional[date] = None) -> List[CashDrawer]:
        """Closed or reconciled drawers whose difference exceeds threshold either way, largest first."""
        start, end = date_range_bounds(start_date, end_date)
        drawers = [
            d for d in self._drawers(start, end)
            if d.status in (DrawerStatus.CLOSED, DrawerStatus.RECONCILED)
            and d.difference is not None
            and abs(money(d.difference)) > money(threshold)
        ]
        return sorted(drawers, key=lambda d: abs(money(d.difference)), reverse=True)
