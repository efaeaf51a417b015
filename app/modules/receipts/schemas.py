from pydantic import BaseModel, Field, EmailStr
from typing import Optional, Dict, Any
from uuid import UUID
from datetime import datetime
from enum import Enum

from app.modules.receipts.models import ReceiptType, ReceiptFormat, DeliveryStatus


class LanguageEnum(str, Enum):
    english = "english"
    sinhala = "sinhala"
    tamil = "tamil"


class RenderFormatEnum(str, Enum):
    json = "json"
    text = "text"
    html = "html"


class ReceiptCreate(BaseModel):
    sale_id: UUID
    receipt_type: ReceiptType = ReceiptType.ORIGINAL
    format: ReceiptFormat = ReceiptFormat.PRINT
    language: LanguageEnum = LanguageEnum.english
    delivery_method: Optional[str] = Field(None, max_length=20)
    recipient_email: Optional[EmailStr] = None
    recipient_phone: Optional[str] = Field(None, max_length=20)


class ReceiptOut(BaseModel):
    id: UUID
    receipt_number: str
    sale_id: UUID
    receipt_type: ReceiptType
    format: ReceiptFormat
    language: str
    order_type: str
    template_version: str
    delivery_method: Optional[str] = None
    delivery_status: DeliveryStatus
    delivery_attempts: int
    last_delivery_attempt: Optional[datetime] = None
    delivery_error: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_phone: Optional[str] = None
    print_count: int
    is_voided: bool
    voided_at: Optional[datetime] = None
    voided_by: Optional[UUID] = None
    void_reason: Optional[str] = None
    generated_by: Optional[UUID] = None
    generated_by_name: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ReceiptDetail(BaseModel):
    receipt: ReceiptOut
    template: Dict[str, Any]
    text: Optional[str] = None
    html: Optional[str] = None


class ReceiptVoid(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)


class ReceiptEmail(BaseModel):
    email: EmailStr


class ReceiptSMS(BaseModel):
    phone: str = Field(..., min_length=9, max_length=20)


class DeliveryResult(BaseModel):
    receipt: ReceiptOut
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class ReceiptStats(BaseModel):
    total: int
    by_type: Dict[str, int]
    by_format: Dict[str, int]
    by_language: Dict[str, int]
    by_delivery_status: Dict[str, int]
    voided: int


class LanguageOut(BaseModel):
    code: str
    name: str
    currency: str


class ReceiptAuditEntry(BaseModel):
    receipt_number: str
    sale_id: UUID
    sale_number: Optional[str] = None
    receipt_type: ReceiptType
    format: ReceiptFormat
    language: str
    generated_by_name: Optional[str] = None
    generated_at: datetime
    print_count: int
    delivery_status: DeliveryStatus
    delivery_attempts: int
    is_voided: bool
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
