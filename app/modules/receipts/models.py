from sqlalchemy import (
    Column, String, Boolean, Integer, DateTime, ForeignKey, Text, Enum, JSON, Uuid
)
from sqlalchemy.orm import relationship
from uuid import uuid4
import enum

from app.database.database import Base
from app.common.mixins import TimestampMixin


class ReceiptType(str, enum.Enum):
    ORIGINAL = "original"
    DUPLICATE = "duplicate"
    REFUND = "refund"
    DIGITAL = "digital"


class ReceiptFormat(str, enum.Enum):
    PRINT = "print"
    EMAIL = "email"
    SMS = "sms"
    DIGITAL = "digital"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    NOT_APPLICABLE = "not_applicable"


class Receipt(Base, TimestampMixin):
    """
    A generated receipt.

    receipt_data keeps the rendered template and the sale snapshot so the
    receipt can be reproduced exactly as issued.
    """
    __tablename__ = "receipts"

    id = Column(Uuid, primary_key=True, default=uuid4)
    receipt_number = Column(String(50), nullable=False, unique=True, index=True)
    sale_id = Column(Uuid, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    receipt_type = Column(Enum(ReceiptType), nullable=False, default=ReceiptType.ORIGINAL, index=True)
    format = Column(Enum(ReceiptFormat), nullable=False, default=ReceiptFormat.PRINT)
    language = Column(String(20), nullable=False, default="english")
    order_type = Column(String(20), nullable=False)
    template_version = Column(String(20), nullable=False, default="1.0")
    receipt_data = Column(JSON, nullable=False)

    delivery_method = Column(String(20), nullable=True)
    delivery_status = Column(Enum(DeliveryStatus), nullable=False, default=DeliveryStatus.PENDING, index=True)
    delivery_attempts = Column(Integer, nullable=False, default=0)
    last_delivery_attempt = Column(DateTime, nullable=True)
    delivery_error = Column(Text, nullable=True)
    recipient_email = Column(String(255), nullable=True)
    recipient_phone = Column(String(20), nullable=True)
    print_count = Column(Integer, nullable=False, default=0)

    is_voided = Column(Boolean, nullable=False, default=False, index=True)
    voided_at = Column(DateTime, nullable=True)
    voided_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    void_reason = Column(Text, nullable=True)

    generated_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    generated_by_name = Column(String(150), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)

    sale = relationship("Sale")

    def __repr__(self):
        return f"<Receipt(number='{self.receipt_number}', type='{self.receipt_type}')>"
