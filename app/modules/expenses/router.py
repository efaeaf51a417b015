from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
from datetime import date

from app.dependencies.dbDependecies import get_db
from app.modules.auth.dependencies import AuthDependencies, MANAGEMENT_ROLES
from app.modules.auth.schemas import AuthContext
from app.modules.expenses.service import ExpenseService
from app.modules.expenses.schemas import (
    ExpenseCreate, ExpenseOut, ExpenseList, ExpenseStats, ExpenseCategoryEnum
)

expenses_router = APIRouter(prefix="/expenses", tags=["Expenses"])


@expenses_router.get("", response_model=ExpenseList)
async def list_expenses(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    category: Optional[ExpenseCategoryEnum] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    items, total, total_amount = ExpenseService(db).list_expenses(
        start_date, end_date, category.value if category else None, limit, offset
    )
    return ExpenseList(
        items=[ExpenseOut.model_validate(e) for e in items],
        total=total,
        total_amount=total_amount
    )


@expenses_router.post("", response_model=ExpenseOut, status_code=status.HTTP_201_CREATED)
async def create_expense(
    expense_data: ExpenseCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Record an expense. **expense_date** defaults to today."""
    return ExpenseService(db).create_expense(expense_data, auth_context)


@expenses_router.get("/stats", response_model=ExpenseStats)
async def expense_stats(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return ExpenseService(db).stats(start_date, end_date)


@expenses_router.get("/{expense_id}", response_model=ExpenseOut)
async def get_expense(
    expense_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return ExpenseService(db).get_expense(expense_id)


@expenses_router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_expense(
    expense_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    ExpenseService(db).delete_expense(expense_id)
