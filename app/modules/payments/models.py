"""
Payment models

- PaymentTransaction: every cash, card or wallet payment and refund
- CashDrawer: a cashier's till from opening float to reconciliation
- CardSession: a card payment from gateway intent to capture
- MobilePaymentSession: a QR wallet payment awaiting the customer
"""
from sqlalchemy import (
    Column, String, Integer, DateTime, Numeric, Text, Enum, JSON, Uuid, ForeignKey
)
from sqlalchemy.orm import relationship
from uuid import uuid4
import enum

from app.database.database import Base
from app.common.mixins import TimestampMixin
from app.common.utils import utc_now


class TransactionMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE = "mobile"


class TransactionType(str, enum.Enum):
    PAYMENT = "payment"
    REFUND = "refund"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class DrawerStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    RECONCILED = "reconciled"


class CardSessionStatus(str, enum.Enum):
    INITIALIZED = "initialized"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class MobileSessionStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentTransaction(Base, TimestampMixin):
    """
    One money movement.

    Refunds are their own rows with a negative amount; the payment they
    refund keeps a running refunded_amount and turns REFUNDED once fully
    refunded.
    """
    __tablename__ = "payment_transactions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    transaction_id = Column(String(50), nullable=False, unique=True, index=True)
    sale_id = Column(Uuid, ForeignKey("sales.id"), nullable=True, index=True)
    payment_method = Column(Enum(TransactionMethod), nullable=False, index=True)
    transaction_type = Column(Enum(TransactionType), nullable=False, default=TransactionType.PAYMENT)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="LKR")
    status = Column(Enum(TransactionStatus), nullable=False, default=TransactionStatus.PENDING, index=True)

    # Cash
    amount_tendered = Column(Numeric(15, 2), nullable=True)
    change_given = Column(Numeric(15, 2), nullable=True)
    denominations = Column(JSON, nullable=True)
    drawer_id = Column(Uuid, ForeignKey("cash_drawers.id"), nullable=True, index=True)

    # Card
    card_last4 = Column(String(4), nullable=True)
    card_brand = Column(String(20), nullable=True)
    gateway_reference = Column(String(100), nullable=True)

    # Mobile wallet
    wallet_provider = Column(String(20), nullable=True)
    customer_phone = Column(String(20), nullable=True)

    # Refunds
    refund_reference = Column(String(50), nullable=True)
    refunded_amount = Column(Numeric(15, 2), nullable=False, default=0)
    refund_reason = Column(Text, nullable=True)

    cashier_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=True, default=utc_now)

    drawer = relationship("CashDrawer", back_populates="transactions")

    def __repr__(self):
        return f"<PaymentTransaction(id='{self.transaction_id}', amount={self.amount}, status='{self.status}')>"


class CashDrawer(Base, TimestampMixin):
    """
    A cashier's till. Only one drawer per cashier may be open.

    expected_balance starts at the opening float and follows every cash
    sale and refund; closing records what was counted and the difference.
    """
    __tablename__ = "cash_drawers"

    id = Column(Uuid, primary_key=True, default=uuid4)
    drawer_number = Column(String(30), nullable=False, unique=True, index=True)
    cashier_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    cashier_name = Column(String(150), nullable=True)

    opening_balance = Column(Numeric(15, 2), nullable=False, default=0)
    expected_balance = Column(Numeric(15, 2), nullable=False, default=0)
    actual_balance = Column(Numeric(15, 2), nullable=True)
    difference = Column(Numeric(15, 2), nullable=True)

    status = Column(Enum(DrawerStatus), nullable=False, default=DrawerStatus.OPEN, index=True)
    opened_at = Column(DateTime, nullable=False, default=utc_now)
    closed_at = Column(DateTime, nullable=True)

    opening_denominations = Column(JSON, nullable=True)
    closing_denominations = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    reconciled_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    reconciled_at = Column(DateTime, nullable=True)

    transactions = relationship("PaymentTransaction", back_populates="drawer")

    def __repr__(self):
        return f"<CashDrawer(number='{self.drawer_number}', status='{self.status}')>"


class CardSession(Base, TimestampMixin):
    __tablename__ = "card_sessions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    session_id = Column(String(50), nullable=False, unique=True, index=True)
    sale_id = Column(Uuid, ForeignKey("sales.id"), nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="LKR")
    description = Column(String(255), nullable=True)
    status = Column(Enum(CardSessionStatus), nullable=False, default=CardSessionStatus.INITIALIZED, index=True)

    gateway = Column(String(20), nullable=False)
    gateway_intent_id = Column(String(100), nullable=True, index=True)
    client_secret = Column(String(255), nullable=True)

    card_last4 = Column(String(4), nullable=True)
    card_brand = Column(String(20), nullable=True)
    error_message = Column(Text, nullable=True)

    cashier_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    transaction_id = Column(String(50), nullable=True)


class MobilePaymentSession(Base, TimestampMixin):
    __tablename__ = "mobile_payment_sessions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    session_id = Column(String(50), nullable=False, unique=True, index=True)
    sale_id = Column(Uuid, ForeignKey("sales.id"), nullable=True)
    wallet_provider = Column(String(20), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    processing_fee = Column(Numeric(15, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="LKR")
    customer_phone = Column(String(20), nullable=True)

    qr_code = Column(Text, nullable=True)
    payment_url = Column(String(500), nullable=True)
    status = Column(Enum(MobileSessionStatus), nullable=False, default=MobileSessionStatus.PENDING, index=True)

    provider_reference = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    cashier_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    transaction_id = Column(String(50), nullable=True)
