from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from uuid import UUID
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class ExpenseCategoryEnum(str, Enum):
    ingredients = "ingredients"
    utilities = "utilities"
    salaries = "salaries"
    rent = "rent"
    maintenance = "maintenance"
    marketing = "marketing"
    equipment = "equipment"
    other = "other"


class ExpensePaymentMethodEnum(str, Enum):
    cash = "cash"
    card = "card"
    bank_transfer = "bank_transfer"
    other = "other"


class ExpenseCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    category: ExpenseCategoryEnum
    amount: Decimal = Field(..., gt=0)
    expense_date: Optional[date] = Field(None, description="Defaults to today")
    payment_method: ExpensePaymentMethodEnum = ExpensePaymentMethodEnum.cash
    vendor: Optional[str] = Field(None, max_length=255)
    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class ExpenseOut(BaseModel):
    id: UUID
    title: str
    category: ExpenseCategoryEnum
    amount: Decimal
    expense_date: date
    payment_method: ExpensePaymentMethodEnum
    vendor: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ExpenseList(BaseModel):
    items: List[ExpenseOut]
    total: int
    total_amount: Decimal


class ExpenseStats(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total: Decimal
    count: int
    by_category: Dict[str, Decimal]
    by_month: Dict[str, Decimal]
