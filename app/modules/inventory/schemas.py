from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from enum import Enum

from app.modules.inventory.models import (
    StockTransactionType, StockTransactionStatus, TransferStatus, StockIssueStatus, ReconciliationStatus
)


class LocationTypeEnum(str, Enum):
    store = "store"
    kitchen = "kitchen"
    bar = "bar"
    other = "other"


class AdjustmentType(str, Enum):
    increase = "increase"
    decrease = "decrease"


# ===== INGREDIENTS =====

class IngredientBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    unit: str = Field(..., min_length=1, max_length=20, description="kg, g, l, ml, pcs")
    category: Optional[str] = Field(None, max_length=50)
    reorder_level: Decimal = Field(Decimal("0"), ge=0)
    unit_cost: Decimal = Field(Decimal("0"), ge=0)
    supplier: Optional[str] = Field(None, max_length=150)


class IngredientCreate(IngredientBase):
    current_stock: Decimal = Field(Decimal("0"), ge=0, description="Opening stock")


class IngredientUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    unit: Optional[str] = Field(None, min_length=1, max_length=20)
    category: Optional[str] = Field(None, max_length=50)
    reorder_level: Optional[Decimal] = Field(None, ge=0)
    unit_cost: Optional[Decimal] = Field(None, ge=0)
    supplier: Optional[str] = Field(None, max_length=150)
    is_active: Optional[bool] = None


class IngredientOut(IngredientBase):
    id: UUID
    current_stock: Decimal
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


# ===== LOCATIONS =====

class LocationCreate(BaseModel):
    location_name: str = Field(..., min_length=1, max_length=100)
    location_type: LocationTypeEnum = LocationTypeEnum.store
    description: Optional[str] = None


class LocationOut(BaseModel):
    id: UUID
    location_name: str
    location_type: LocationTypeEnum
    description: Optional[str] = None
    is_active: bool

    model_config = {"from_attributes": True}


class LocationStockLine(BaseModel):
    ingredient_id: UUID
    ingredient_name: str
    unit: str
    quantity: Decimal


class LocationStock(BaseModel):
    location: LocationOut
    items: List[LocationStockLine]


# ===== STOCK MOVEMENTS =====

class StockAdd(BaseModel):
    ingredient_id: UUID
    quantity: Decimal = Field(..., gt=0)
    unit_cost: Optional[Decimal] = Field(None, ge=0)
    location_id: Optional[UUID] = None
    reference_number: Optional[str] = Field(None, max_length=100)
    batch_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class StockAdjust(BaseModel):
    ingredient_id: UUID
    adjustment_type: AdjustmentType
    quantity: Decimal = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=255)
    location_id: Optional[UUID] = None
    notes: Optional[str] = None


class StockDamaged(BaseModel):
    ingredient_id: UUID
    quantity: Decimal = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=255)
    location_id: Optional[UUID] = None
    notes: Optional[str] = None


class StockTransactionOut(BaseModel):
    id: UUID
    transaction_number: str
    transaction_type: StockTransactionType
    ingredient_id: UUID
    location_id: Optional[UUID] = None
    from_location_id: Optional[UUID] = None
    to_location_id: Optional[UUID] = None
    quantity: Decimal
    unit: str
    previous_stock: Decimal
    new_stock: Decimal
    unit_cost: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None
    reference_type: Optional[str] = None
    reference_id: Optional[UUID] = None
    reference_number: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    batch_number: Optional[str] = None
    status: StockTransactionStatus
    performed_by: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


# ===== TRANSFERS =====

class TransferItemIn(BaseModel):
    ingredient_id: UUID
    quantity: Decimal = Field(..., gt=0)


class TransferCreate(BaseModel):
    from_location_id: UUID
    to_location_id: UUID
    items: List[TransferItemIn] = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_transfer(self):
        if self.from_location_id == self.to_location_id:
            raise ValueError("Source and destination locations must be different")
        ingredient_ids = [item.ingredient_id for item in self.items]
        if len(set(ingredient_ids)) != len(ingredient_ids):
            raise ValueError("Each ingredient may appear only once in a transfer")
        return self


class TransferReceiveItem(BaseModel):
    item_id: UUID
    quantity_received: Decimal = Field(..., ge=0)
    damaged_quantity: Decimal = Field(Decimal("0"), ge=0)
    damage_reason: Optional[str] = Field(None, max_length=255)


class TransferReceive(BaseModel):
    items: List[TransferReceiveItem] = Field(..., min_length=1)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def items_unique(self):
        item_ids = [item.item_id for item in self.items]
        if len(set(item_ids)) != len(item_ids):
            raise ValueError("Each transfer item may be received only once")
        return self


class TransferItemOut(BaseModel):
    id: UUID
    ingredient_id: UUID
    quantity_sent: Decimal
    quantity_received: Optional[Decimal] = None
    damaged_quantity: Decimal
    damage_reason: Optional[str] = None
    unit: str

    model_config = {"from_attributes": True}


class TransferOut(BaseModel):
    id: UUID
    transfer_number: str
    from_location_id: UUID
    to_location_id: UUID
    status: TransferStatus
    initiated_by: Optional[UUID] = None
    received_by: Optional[UUID] = None
    received_at: Optional[datetime] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    items: List[TransferItemOut] = []

    model_config = {"from_attributes": True}


# ===== STOCK ISSUES =====

class StockIssueCreate(BaseModel):
    menu_item_id: UUID
    portion_id: Optional[UUID] = None
    planned_quantity: Decimal = Field(..., gt=0)
    from_location_id: UUID
    to_location_id: UUID
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_transfer(self):
        if self.from_location_id == self.to_location_id:
            raise ValueError("Source and destination locations must be different")
        return self


class IssueRequirement(BaseModel):
    ingredient_id: UUID
    ingredient_name: str
    unit: str
    quantity_per_unit: Decimal
    total_required: Decimal
    location_stock: Decimal
    available: bool


class StockIssueOut(BaseModel):
    id: UUID
    issue_number: str
    menu_item_id: UUID
    portion_id: Optional[UUID] = None
    planned_quantity: Decimal
    from_location_id: UUID
    to_location_id: UUID
    status: StockIssueStatus
    requested_by: Optional[UUID] = None
    confirmed_by: Optional[UUID] = None
    confirmed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class StockIssuePreview(BaseModel):
    issue: StockIssueOut
    requirements: List[IssueRequirement]
    can_confirm: bool


# ===== RECONCILIATION =====

class ReconciliationStart(BaseModel):
    location_id: UUID
    notes: Optional[str] = None


class ReconciliationCount(BaseModel):
    item_id: UUID
    physical_stock: Decimal = Field(..., ge=0)
    notes: Optional[str] = None


class ReconciliationCounts(BaseModel):
    items: List[ReconciliationCount] = Field(..., min_length=1)

    @model_validator(mode="after")
    def items_unique(self):
        item_ids = [item.item_id for item in self.items]
        if len(set(item_ids)) != len(item_ids):
            raise ValueError("Each reconciliation item may be counted only once")
        return self


class ReconciliationItemOut(BaseModel):
    id: UUID
    ingredient_id: UUID
    ingredient_name: str
    system_stock: Decimal
    physical_stock: Decimal
    difference: Decimal
    unit: str
    unit_cost: Decimal
    value_difference: Decimal
    notes: Optional[str] = None
    adjustment_made: bool
    stock_transaction_id: Optional[UUID] = None

    model_config = {"from_attributes": True}


class ReconciliationOut(BaseModel):
    id: UUID
    reconciliation_number: str
    location_id: UUID
    status: ReconciliationStatus
    performed_by: Optional[UUID] = None
    approved_by: Optional[UUID] = None
    completed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    total_items_counted: int
    total_discrepancies: int
    total_value_difference: Decimal
    notes: Optional[str] = None
    created_at: datetime
    items: List[ReconciliationItemOut] = []

    model_config = {"from_attributes": True}
