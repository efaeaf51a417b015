from sqlalchemy import Column, String, Date, Numeric, Text, Enum, Uuid, ForeignKey
from uuid import uuid4
import enum

from app.database.database import Base
from app.common.mixins import TimestampMixin


class ExpenseCategory(str, enum.Enum):
    INGREDIENTS = "ingredients"
    UTILITIES = "utilities"
    SALARIES = "salaries"
    RENT = "rent"
    MAINTENANCE = "maintenance"
    MARKETING = "marketing"
    EQUIPMENT = "equipment"
    OTHER = "other"


class ExpensePaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id = Column(Uuid, primary_key=True, default=uuid4)
    title = Column(String(255), nullable=False)
    category = Column(Enum(ExpenseCategory), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    expense_date = Column(Date, nullable=False, index=True)
    payment_method = Column(Enum(ExpensePaymentMethod), nullable=False, default=ExpensePaymentMethod.CASH)
    vendor = Column(String(255), nullable=True)
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    recorded_by = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)

    def __repr__(self):
        return f"<Expense(title='{self.title}', amount={self.amount})>"
