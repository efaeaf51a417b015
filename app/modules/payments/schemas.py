from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from app.modules.payments.models import (
    TransactionMethod, TransactionType, TransactionStatus, DrawerStatus,
    CardSessionStatus, MobileSessionStatus
)

LKR_DENOMINATIONS = [5000, 2000, 1000, 500, 100, 50, 20, 10, 5, 2, 1]


class DenominationCount(BaseModel):
    value: Decimal
    count: int = Field(..., ge=0)

    @field_validator("value")
    @classmethod
    def validate_value(cls, v):
        if v not in LKR_DENOMINATIONS:
            raise ValueError(f"Invalid LKR denomination: {v}")
        return v


# ===== TRANSACTIONS =====

class TransactionOut(BaseModel):
    id: UUID
    transaction_id: str
    sale_id: Optional[UUID] = None
    payment_method: TransactionMethod
    transaction_type: TransactionType
    amount: Decimal
    currency: str
    status: TransactionStatus
    amount_tendered: Optional[Decimal] = None
    change_given: Optional[Decimal] = None
    denominations: Optional[List[Dict[str, Any]]] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    gateway_reference: Optional[str] = None
    wallet_provider: Optional[str] = None
    customer_phone: Optional[str] = None
    refund_reference: Optional[str] = None
    refunded_amount: Decimal
    refund_reason: Optional[str] = None
    cashier_id: Optional[UUID] = None
    drawer_id: Optional[UUID] = None
    notes: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RefundRequest(BaseModel):
    transaction_id: str
    amount: Optional[Decimal] = Field(None, gt=0, description="Defaults to the refundable remainder")
    reason: str = Field(..., min_length=3, max_length=500)


class RefundResult(BaseModel):
    refund: TransactionOut
    original: TransactionOut


class MethodTotals(BaseModel):
    count: int = 0
    amount: Decimal = Decimal("0")


class PaymentSummary(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    by_method: Dict[str, MethodTotals]
    by_status: Dict[str, MethodTotals]
    total_count: int
    total_amount: Decimal


# ===== CASH =====

class CashPaymentRequest(BaseModel):
    sale_id: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0)
    amount_tendered: Decimal = Field(..., gt=0)
    denominations: Optional[List[DenominationCount]] = None
    notes: Optional[str] = None


class ChangeBreakdown(BaseModel):
    total: Decimal
    breakdown: List[Dict[str, Any]]
    remainder: Decimal


class CashPaymentResult(BaseModel):
    transaction: TransactionOut
    change: ChangeBreakdown


class DrawerOpen(BaseModel):
    opening_balance: Decimal = Field(..., ge=0)
    denominations: Optional[List[DenominationCount]] = None
    notes: Optional[str] = None


class DrawerClose(BaseModel):
    actual_balance: Decimal = Field(..., ge=0)
    denominations: Optional[List[DenominationCount]] = None
    notes: Optional[str] = None


class DrawerReconcile(BaseModel):
    notes: Optional[str] = None


class DrawerOut(BaseModel):
    id: UUID
    drawer_number: str
    cashier_id: UUID
    cashier_name: Optional[str] = None
    opening_balance: Decimal
    expected_balance: Decimal
    actual_balance: Optional[Decimal] = None
    difference: Optional[Decimal] = None
    status: DrawerStatus
    opened_at: datetime
    closed_at: Optional[datetime] = None
    opening_denominations: Optional[List[Dict[str, Any]]] = None
    closing_denominations: Optional[List[Dict[str, Any]]] = None
    notes: Optional[str] = None
    reconciled_by: Optional[UUID] = None
    reconciled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DrawerTransactionsSummary(BaseModel):
    count: int
    sales_count: int
    sales_total: Decimal
    refunds_count: int
    refunds_total: Decimal


class DrawerStatusOut(BaseModel):
    drawer: DrawerOut
    transactions: DrawerTransactionsSummary


class CashReport(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    total_sales: Decimal
    total_refunds: Decimal
    net_cash: Decimal
    transaction_count: int
    drawers_opened: int
    total_discrepancy: Decimal


# ===== CARD =====

class CardInitialize(BaseModel):
    amount: Decimal = Field(..., gt=0)
    sale_id: Optional[UUID] = None
    description: Optional[str] = Field(None, max_length=255)


class CardDetails(BaseModel):
    number: str = Field(..., min_length=12, max_length=23)
    exp_month: int = Field(..., ge=1, le=12)
    exp_year: int = Field(..., ge=2000)
    cvc: str = Field(..., min_length=3, max_length=4)

    @field_validator("number")
    @classmethod
    def strip_number(cls, v):
        digits = v.replace(" ", "").replace("-", "")
        if not digits.isdigit():
            raise ValueError("Card number must contain only digits")
        return digits


class CardProcess(BaseModel):
    session_id: str
    card_token: Optional[str] = None
    card: Optional[CardDetails] = None


class CardSessionOut(BaseModel):
    session_id: str
    sale_id: Optional[UUID] = None
    amount: Decimal
    currency: str
    description: Optional[str] = None
    status: CardSessionStatus
    gateway: str
    gateway_intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    error_message: Optional[str] = None
    expires_at: datetime
    transaction_id: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CardPaymentResult(BaseModel):
    success: bool
    session: CardSessionOut
    transaction: Optional[TransactionOut] = None
    error: Optional[str] = None


# ===== MOBILE =====

class WalletOut(BaseModel):
    provider: str
    name: str
    currencies: List[str]
    min_amount: Decimal
    max_amount: Decimal
    processing_fee: Decimal
    processing_fee_type: str


class MobileInitialize(BaseModel):
    wallet_provider: str
    amount: Decimal = Field(..., gt=0)
    customer_phone: Optional[str] = None
    sale_id: Optional[UUID] = None


class MobileProcess(BaseModel):
    session_id: str
    pin: Optional[str] = Field(None, max_length=10)


class MobileSessionOut(BaseModel):
    session_id: str
    sale_id: Optional[UUID] = None
    wallet_provider: str
    amount: Decimal
    processing_fee: Decimal
    currency: str
    customer_phone: Optional[str] = None
    qr_code: Optional[str] = None
    payment_url: Optional[str] = None
    status: MobileSessionStatus
    provider_reference: Optional[str] = None
    error_message: Optional[str] = None
    expires_at: datetime
    transaction_id: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MobilePaymentResult(BaseModel):
    success: bool
    session: MobileSessionOut
    transaction: Optional[TransactionOut] = None
    error: Optional[str] = None


class MobileWebhook(BaseModel):
    session_id: str
    status: str = Field(..., pattern="^(success|failed)$")
    reference: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool = True
    handled: bool
    detail: Optional[str] = None
