from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from enum import Enum

from app.modules.vat.schemas import SaleLineIn


class PaymentMethodEnum(str, Enum):
    cash = "cash"
    card = "card"
    mobile = "mobile"
    other = "other"


class OrderTypeEnum(str, Enum):
    dine_in = "dine-in"
    takeaway = "takeaway"
    delivery = "delivery"


class SaleStatusEnum(str, Enum):
    pending = "pending"
    preparing = "preparing"
    completed = "completed"
    cancelled = "cancelled"
    voided = "voided"


class SaleCreate(BaseModel):
    items: List[SaleLineIn]
    payment_method: PaymentMethodEnum = PaymentMethodEnum.cash
    amount_paid: Decimal = Field(Decimal("0"), ge=0)
    order_type: OrderTypeEnum = OrderTypeEnum.takeaway
    table_number: Optional[str] = Field(None, max_length=20)
    customer_name: Optional[str] = Field(None, max_length=150)
    notes: Optional[str] = None
    location_id: Optional[UUID] = Field(None, description="Kitchen location recipe stock is drawn from")
    offline_id: Optional[str] = Field(None, max_length=100)


class SaleStatusUpdate(BaseModel):
    status: SaleStatusEnum
    cancellation_reason: Optional[str] = None


class SaleItemOut(BaseModel):
    product: str
    product_name: Optional[str] = None
    category: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    subtotal: Decimal
    vat_amount: Decimal
    vat_rate: Decimal
    total_with_vat: Decimal
    taxable: bool = True
    batch_number: Optional[str] = None
    portion_id: Optional[str] = None
    item_type: str = "product"
    cost_price: Decimal = Decimal("0")


class SaleOut(BaseModel):
    id: UUID
    sale_number: str
    items: List[SaleItemOut]
    subtotal: Decimal
    vat_amount: Decimal
    vat_rate: Decimal
    service_charge: Decimal
    total_amount: Decimal
    payment_method: PaymentMethodEnum
    amount_paid: Decimal
    change_given: Decimal
    cashier_id: Optional[UUID] = None
    cashier_name: Optional[str] = None
    order_type: OrderTypeEnum
    table_number: Optional[str] = None
    customer_name: Optional[str] = None
    notes: Optional[str] = None
    status: SaleStatusEnum
    cancellation_reason: Optional[str] = None
    offline_id: Optional[str] = None
    is_synced: bool
    sale_date: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class SaleCreated(SaleOut):
    inventory_warnings: List[str] = []


class OrderTypeTotals(BaseModel):
    count: int = 0
    revenue: Decimal = Decimal("0")


class SalesReport(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    total_sales: int
    total_revenue: Decimal
    total_vat: Decimal
    total_subtotal: Decimal
    order_type_breakdown: Dict[str, OrderTypeTotals]


class CalculateVATRequest(BaseModel):
    items: List[SaleLineIn]


class BillVATOut(BaseModel):
    items: List[SaleItemOut]
    subtotal: Decimal
    taxable_subtotal: Decimal
    non_taxable_subtotal: Decimal
    vat_amount: Decimal
    vat_rate: Decimal
    service_charge: Decimal
    service_charge_vat: Decimal
    total_amount: Decimal
    total_items: int
    calculation_method: str
    category_breakdown: Dict[str, Dict[str, Decimal]]
    display_label: str


class VATBreakdownOut(BaseModel):
    sale_id: UUID
    sale_number: str
    breakdown: Dict[str, Any]
    validation: Dict[str, Any]


# ===== BILL SPLITS =====

class SplitModeEnum(str, Enum):
    equal = "equal"
    amount = "amount"
    items = "items"


class SplitStatusEnum(str, Enum):
    pending = "pending"
    paid = "paid"
    cancelled = "cancelled"


class SplitPartIn(BaseModel):
    customer_name: Optional[str] = Field(None, max_length=150)
    amount: Optional[Decimal] = Field(None, gt=0, description="Share of the total, for amount splits")
    item_indexes: List[int] = Field(default_factory=list, description="Positions in the sale's items, for item splits")
    notes: Optional[str] = None


class BillSplitCreate(BaseModel):
    """
    How to divide a sale between guests.

    - equal: ``parts`` shares of the same size; ``splits`` may name them
    - amount: each split gives its ``amount``
    - items: each split lists the sale lines it pays for
    """
    mode: SplitModeEnum = SplitModeEnum.equal
    parts: Optional[int] = Field(None, ge=2, le=20)
    splits: List[SplitPartIn] = Field(default_factory=list, max_length=20)

    @model_validator(mode="after")
    def validate_parts(self):
        if self.mode == SplitModeEnum.equal:
            if self.parts is None and len(self.splits) < 2:
                raise ValueError("At least 2 splits are required")
            if self.parts is not None and self.splits and len(self.splits) != self.parts:
                raise ValueError("parts must match the number of splits given")
            return self

        if len(self.splits) < 2:
            raise ValueError("At least 2 splits are required")
        if self.mode == SplitModeEnum.amount and any(s.amount is None for s in self.splits):
            raise ValueError("Every split needs an amount")
        if self.mode == SplitModeEnum.items:
            if any(not s.item_indexes for s in self.splits):
                raise ValueError("Every split needs at least one item")
            indexes = [i for s in self.splits for i in s.item_indexes]
            if len(set(indexes)) != len(indexes):
                raise ValueError("Each item may be assigned to only one split")
        return self

    @property
    def part_count(self) -> int:
        return self.parts or len(self.splits)


class BillSplitOut(BaseModel):
    id: UUID
    sale_id: UUID
    split_number: int
    customer_name: Optional[str] = None
    items: List[Dict[str, Any]] = []
    subtotal: Decimal
    vat_amount: Decimal
    total_amount: Decimal
    status: SplitStatusEnum
    payment_method: Optional[PaymentMethodEnum] = None
    amount_paid: Decimal
    change_given: Decimal
    paid_at: Optional[datetime] = None
    paid_by: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SaleSplitsOut(BaseModel):
    sale_id: UUID
    sale_number: str
    total_amount: Decimal
    total_paid: Decimal
    total_pending: Decimal
    all_paid: bool
    splits: List[BillSplitOut]


class SplitPayment(BaseModel):
    payment_method: PaymentMethodEnum = PaymentMethodEnum.cash
    amount_paid: Decimal = Field(Decimal("0"), ge=0)


class SplitPaid(BaseModel):
    split: BillSplitOut
    change_given: Decimal
    all_splits_paid: bool


class SplitUpdate(BaseModel):
    customer_name: Optional[str] = Field(None, max_length=150)
    notes: Optional[str] = None


class SplitsDeleted(BaseModel):
    deleted: int


class SplitsSummary(BaseModel):
    total_splits: int
    paid: int
    pending: int
    cancelled: int
    total_amount: Decimal
    paid_amount: Decimal
    pending_amount: Decimal
