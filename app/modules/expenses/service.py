from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from datetime import date
from decimal import Decimal
from typing import Optional, List, Tuple
from uuid import UUID
import logging

from app.common.utils import utc_now, money
from app.modules.auth.schemas import AuthContext
from app.modules.expenses.models import Expense, ExpenseCategory, ExpensePaymentMethod
from app.modules.expenses.schemas import ExpenseCreate

logger = logging.getLogger(__name__)


class ExpenseService:
    """Operating expenses recorded against the restaurant"""

    def __init__(self, db: Session):
        self.db = db

    def _query(self, start_date: Optional[date], end_date: Optional[date], category: Optional[str] = None):
        query = self.db.query(Expense)
        if start_date:
            query = query.filter(Expense.expense_date >= start_date)
        if end_date:
            query = query.filter(Expense.expense_date <= end_date)
        if category:
            query = query.filter(Expense.category == ExpenseCategory(category))
        return query

    def get_expense(self, expense_id: UUID) -> Expense:
        expense = self.db.query(Expense).filter(Expense.id == expense_id).first()
        if not expense:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Expense not found")
        return expense

    def list_expenses(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[Expense], int, Decimal]:
        query = self._query(start_date, end_date, category)
        rows = query.all()
        total_amount = sum((money(e.amount) for e in rows), Decimal("0"))
        items = (
            query.order_by(Expense.expense_date.desc(), Expense.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, len(rows), total_amount

    def create_expense(self, data: ExpenseCreate, auth_context: AuthContext) -> Expense:
        try:
            expense = Expense(
                title=data.title.strip(),
                category=ExpenseCategory(data.category.value),
                amount=money(data.amount),
                expense_date=data.expense_date or utc_now().date(),
                payment_method=ExpensePaymentMethod(data.payment_method.value),
                vendor=data.vendor,
                reference_number=data.reference_number,
                notes=data.notes,
                recorded_by=auth_context.user_id
            )
            self.db.add(expense)
            self.db.commit()
            self.db.refresh(expense)
            logger.info(f"Expense '{expense.title}' of {expense.amount} recorded by {auth_context.username}")
            return expense
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error recording expense")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating expense: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def delete_expense(self, expense_id: UUID) -> None:
        expense = self.get_expense(expense_id)
        self.db.delete(expense)
        self.db.commit()
        logger.info(f"Expense {expense_id} deleted")

    def total(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> Decimal:
        return sum((money(e.amount) for e in self._query(start_date, end_date).all()), Decimal("0"))

    def stats(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> dict:
        """Total, count, and totals per category and per YYYY-MM month."""
        expenses = self._query(start_date, end_date).order_by(Expense.expense_date).all()
        by_category = {}
        by_month = {}
        total = Decimal("0")
        for expense in expenses:
            amount = money(expense.amount)
            total += amount
            category = expense.category.value
            by_category[category] = by_category.get(category, Decimal("0")) + amount
            month = expense.expense_date.strftime("%Y-%m")
            by_month[month] = by_month.get(month, Decimal("0")) + amount
        return {
            "start_date": start_date,
            "end_date": end_date,
            "total": total,
            "count": len(expenses),
            "by_category": by_category,
            "by_month": by_month,
        }
