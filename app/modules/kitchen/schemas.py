from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from enum import Enum

from app.modules.sales.schemas import OrderTypeEnum


class KitchenOrderStatusEnum(str, Enum):
    pending = "pending"
    preparing = "preparing"
    ready = "ready"
    completed = "completed"
    cancelled = "cancelled"


class KitchenItemStatusEnum(str, Enum):
    pending = "pending"
    preparing = "preparing"
    ready = "ready"


class KitchenPriorityEnum(str, Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


# ===== STATIONS =====

class StationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=20)
    description: Optional[str] = None
    categories: List[str] = Field(default_factory=list, description="Menu categories the station prepares")
    priority: int = Field(0, description="Higher wins when two stations claim a category")
    average_prep_time: int = Field(10, ge=1, le=240)
    location_id: Optional[UUID] = None

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("categories")
    @classmethod
    def lower_categories(cls, v: List[str]) -> List[str]:
        return [c.strip().lower() for c in v if c.strip()]


class StationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    categories: Optional[List[str]] = None
    priority: Optional[int] = None
    average_prep_time: Optional[int] = Field(None, ge=1, le=240)
    location_id: Optional[UUID] = None
    is_active: Optional[bool] = None

    @field_validator("categories")
    @classmethod
    def lower_categories(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        return [c.strip().lower() for c in v if c.strip()]


class StationOut(BaseModel):
    id: UUID
    name: str
    code: str
    description: Optional[str] = None
    categories: List[str]
    priority: int
    average_prep_time: int
    location_id: Optional[UUID] = None
    is_active: bool

    model_config = {"from_attributes": True}


# ===== ORDERS =====

class KitchenOrderCreate(BaseModel):
    sale_id: UUID
    priority: KitchenPriorityEnum = KitchenPriorityEnum.normal
    special_instructions: Optional[str] = None


class KitchenStatusUpdate(BaseModel):
    status: KitchenOrderStatusEnum
    preparation_notes: Optional[str] = None
    cancellation_reason: Optional[str] = Field(None, max_length=500)


class KitchenItemStatusUpdate(BaseModel):
    status: KitchenItemStatusEnum


class KitchenOrderOut(BaseModel):
    id: UUID
    order_number: str
    sale_id: Optional[UUID] = None
    station_id: Optional[UUID] = None
    items: List[Dict[str, Any]]
    order_type: OrderTypeEnum
    table_number: Optional[str] = None
    customer_name: Optional[str] = None
    priority: KitchenPriorityEnum
    status: KitchenOrderStatusEnum
    estimated_time: Optional[int] = None
    special_instructions: Optional[str] = None
    preparation_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    started_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    status_updated_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class KitchenMetrics(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    total_orders: int
    completed_orders: int
    cancelled_orders: int
    average_prep_minutes: Decimal
    by_order_type: Dict[str, int]
    by_priority: Dict[str, int]
    by_station: Dict[str, int]
