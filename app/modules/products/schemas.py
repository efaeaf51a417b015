from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime
from decimal import Decimal


class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    sku: str = Field(..., min_length=1, max_length=50, description="Unique stock keeping unit")
    barcode: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None
    category: str = Field("general", max_length=50)
    unit_price: Decimal = Field(..., ge=0, description="Selling price in LKR")
    cost_price: Decimal = Field(Decimal("0"), ge=0)
    taxable: bool = True
    unit: str = Field("pcs", max_length=20)
    reorder_level: Decimal = Field(Decimal("0"), ge=0)
    track_inventory: bool = True

    @field_validator('sku')
    @classmethod
    def normalize_sku(cls, v):
        return v.strip().upper()


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    barcode: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=50)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    taxable: Optional[bool] = None
    unit: Optional[str] = Field(None, max_length=20)
    reorder_level: Optional[Decimal] = Field(None, ge=0)
    track_inventory: Optional[bool] = None
    is_active: Optional[bool] = None


class ProductOut(ProductBase):
    id: UUID
    is_active: bool
    stock_quantity: Decimal
    is_low_stock: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class ProductList(BaseModel):
    items: List[ProductOut]
    total: int
    limit: int
    offset: int


class BatchCreate(BaseModel):
    batch_number: str = Field(..., min_length=1, max_length=50)
    quantity: Decimal = Field(..., gt=0)
    purchased_quantity: Optional[Decimal] = Field(None, gt=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    selling_price: Optional[Decimal] = Field(None, ge=0)
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None
    supplier: Optional[str] = Field(None, max_length=150)

    @field_validator('expiry_date')
    @classmethod
    def expiry_after_manufacture(cls, v, info):
        made = info.data.get('manufacturing_date')
        if v and made and v < made:
            raise ValueError('Expiry date cannot be before manufacturing date')
        return v


class BatchOut(BaseModel):
    id: UUID
    product_id: UUID
    batch_number: str
    quantity: Decimal
    purchased_quantity: Decimal
    cost_price: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None
    supplier: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
