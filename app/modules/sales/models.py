from sqlalchemy import (
    Column, String, Boolean, DateTime, Integer, Numeric, Text, Enum, JSON, Uuid, ForeignKey,
    UniqueConstraint
)
from uuid import uuid4
import enum

from app.database.database import Base
from app.common.mixins import TimestampMixin
from app.common.utils import utc_now


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE = "mobile"
    OTHER = "other"


class OrderType(str, enum.Enum):
    DINE_IN = "dine-in"
    TAKEAWAY = "takeaway"
    DELIVERY = "delivery"


class SaleStatus(str, enum.Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    VOIDED = "voided"


class Sale(Base, TimestampMixin):
    """
    A completed till transaction.

    items holds the per-line VAT snapshot taken when the sale was rung up,
    so later price or VAT changes never alter a historic bill.
    """
    __tablename__ = "sales"

    id = Column(Uuid, primary_key=True, default=uuid4)
    sale_number = Column(String(30), nullable=False, unique=True, index=True)
    items = Column(JSON, nullable=False, default=list)

    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    vat_amount = Column(Numeric(15, 2), nullable=False, default=0)
    vat_rate = Column(Numeric(5, 4), nullable=False, default=0)
    service_charge = Column(Numeric(15, 2), nullable=False, default=0)
    total_amount = Column(Numeric(15, 2), nullable=False, default=0)

    payment_method = Column(Enum(PaymentMethod), nullable=False, default=PaymentMethod.CASH)
    amount_paid = Column(Numeric(15, 2), nullable=False, default=0)
    change_given = Column(Numeric(15, 2), nullable=False, default=0)

    cashier_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    cashier_name = Column(String(150), nullable=True)

    order_type = Column(Enum(OrderType), nullable=False, default=OrderType.TAKEAWAY, index=True)
    table_number = Column(String(20), nullable=True)
    customer_name = Column(String(150), nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(Enum(SaleStatus), nullable=False, default=SaleStatus.COMPLETED, index=True)
    cancellation_reason = Column(Text, nullable=True)

    offline_id = Column(String(100), nullable=True, unique=True)
    is_synced = Column(Boolean, nullable=False, default=True)

    sale_date = Column(DateTime, nullable=False, default=utc_now, index=True)

    def __repr__(self):
        return f"<Sale(number='{self.sale_number}', total={self.total_amount})>"


class SplitStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class BillSplit(Base, TimestampMixin):
    """
    One guest's share of a sale.

    Shares of a sale add up to its total. VAT is extracted from each
    share's total at the active rate.
    """
    __tablename__ = "bill_splits"
    __table_args__ = (UniqueConstraint("sale_id", "split_number", name="uq_bill_split_number"),)

    id = Column(Uuid, primary_key=True, default=uuid4)
    sale_id = Column(Uuid, ForeignKey("sales.id"), nullable=False, index=True)
    split_number = Column(Integer, nullable=False)
    customer_name = Column(String(150), nullable=True)
    items = Column(JSON, nullable=False, default=list)

    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    vat_amount = Column(Numeric(15, 2), nullable=False, default=0)
    total_amount = Column(Numeric(15, 2), nullable=False)

    status = Column(Enum(SplitStatus), nullable=False, default=SplitStatus.PENDING, index=True)
    payment_method = Column(Enum(PaymentMethod), nullable=True)
    amount_paid = Column(Numeric(15, 2), nullable=False, default=0)
    change_given = Column(Numeric(15, 2), nullable=False, default=0)
    paid_at = Column(DateTime, nullable=True)
    paid_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)

    def __repr__(self):
        return f"<BillSplit(sale={self.sale_id}, number={self.split_number}, total={self.total_amount})>"
