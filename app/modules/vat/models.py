from sqlalchemy import (
    Column, String, Boolean, Integer, DateTime, ForeignKey, Numeric, Text, Enum, JSON, Uuid
)
from uuid import uuid4
import enum

from app.database.database import Base
from app.common.mixins import TimestampMixin
from app.common.utils import utc_now


class CalculationMethod(str, enum.Enum):
    EXCLUSIVE = "EXCLUSIVE"
    INCLUSIVE = "INCLUSIVE"
    SPLIT_RATE = "SPLIT_RATE"
    TIERED = "TIERED"


class RoundingMethod(str, enum.Enum):
    NEAREST = "NEAREST"
    UP = "UP"
    DOWN = "DOWN"
    NONE = "NONE"


class VATSettings(Base, TimestampMixin):
    __tablename__ = "vat_settings"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    is_enabled = Column(Boolean, default=True, nullable=False)
    default_rate = Column(Numeric(5, 4), nullable=False, default=0.15)
    calculation_method = Column(Enum(CalculationMethod), nullable=False, default=CalculationMethod.EXCLUSIVE)
    rounding_method = Column(Enum(RoundingMethod), nullable=False, default=RoundingMethod.NEAREST)
    rounding_precision = Column(Integer, nullable=False, default=2)
    category_rates = Column(JSON, nullable=False, default=dict)
    tiered_rates = Column(JSON, nullable=False, default=list)
    exempt_categories = Column(JSON, nullable=False, default=list)
    exempt_products = Column(JSON, nullable=False, default=list)
    enable_service_charge = Column(Boolean, default=False, nullable=False)
    service_charge_rate = Column(Numeric(5, 4), nullable=False, default=0.10)
    apply_vat_on_service_charge = Column(Boolean, default=False, nullable=False)
    minimum_taxable_amount = Column(Numeric(15, 2), nullable=False, default=0)
    display_on_receipt = Column(Boolean, default=True, nullable=False)
    display_label = Column(String(50), nullable=False, default="VAT")
    registration_number = Column(String(100), nullable=True)
    effective_date = Column(DateTime, nullable=False, default=utc_now)
    is_active = Column(Boolean, default=False, nullable=False, index=True)
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    updated_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
