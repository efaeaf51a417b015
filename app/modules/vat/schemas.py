from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from enum import Enum


class CalculationMethodEnum(str, Enum):
    EXCLUSIVE = "EXCLUSIVE"
    INCLUSIVE = "INCLUSIVE"
    SPLIT_RATE = "SPLIT_RATE"
    TIERED = "TIERED"


class RoundingMethodEnum(str, Enum):
    NEAREST = "NEAREST"
    UP = "UP"
    DOWN = "DOWN"
    NONE = "NONE"


class ItemTypeEnum(str, Enum):
    product = "product"
    menu_item = "menu-item"


class TierRate(BaseModel):
    min: Decimal = Decimal("0")
    max: Optional[Decimal] = Field(None, description="Open ended when omitted")
    rate: Decimal = Field(..., ge=0, le=1)


class VATConfig(BaseModel):
    """Effective VAT configuration used by the calculator."""
    is_enabled: bool = True
    default_rate: Decimal = Decimal("0.15")
    calculation_method: CalculationMethodEnum = CalculationMethodEnum.EXCLUSIVE
    rounding_method: RoundingMethodEnum = RoundingMethodEnum.NEAREST
    rounding_precision: int = 2
    category_rates: Dict[str, Decimal] = {}
    tiered_rates: List[TierRate] = []
    exempt_categories: List[str] = []
    exempt_products: List[str] = []
    enable_service_charge: bool = False
    service_charge_rate: Decimal = Decimal("0.10")
    apply_vat_on_service_charge: bool = False
    minimum_taxable_amount: Decimal = Decimal("0")
    display_on_receipt: bool = True
    display_label: str = "VAT"
    registration_number: Optional[str] = None

    model_config = {"from_attributes": True}

    @field_validator('exempt_products', mode='before')
    @classmethod
    def ids_as_strings(cls, v):
        return [str(x) for x in (v or [])]

    @field_validator('category_rates', 'tiered_rates', 'exempt_categories', mode='before')
    @classmethod
    def empty_when_null(cls, v, info):
        if v is None:
            return {} if info.field_name == 'category_rates' else []
        return v


class VATSettingsBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    is_enabled: bool = True
    default_rate: Decimal = Field(Decimal("0.15"), ge=0, le=1)
    calculation_method: CalculationMethodEnum = CalculationMethodEnum.EXCLUSIVE
    rounding_method: RoundingMethodEnum = RoundingMethodEnum.NEAREST
    rounding_precision: int = Field(2, ge=0, le=4)
    category_rates: Dict[str, Decimal] = {}
    tiered_rates: List[TierRate] = []
    exempt_categories: List[str] = []
    exempt_products: List[str] = []
    enable_service_charge: bool = False
    service_charge_rate: Decimal = Field(Decimal("0.10"), ge=0, le=1)
    apply_vat_on_service_charge: bool = False
    minimum_taxable_amount: Decimal = Field(Decimal("0"), ge=0)
    display_on_receipt: bool = True
    display_label: str = Field("VAT", max_length=50)
    registration_number: Optional[str] = Field(None, max_length=100)
    effective_date: Optional[datetime] = None

    @field_validator('category_rates')
    @classmethod
    def rates_are_fractions(cls, v):
        for category, rate in v.items():
            if rate < 0 or rate > 1:
                raise ValueError(f'Rate for {category} must be between 0 and 1')
        return v


class VATSettingsCreate(VATSettingsBase):
    is_active: bool = False


class VATSettingsUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_enabled: Optional[bool] = None
    default_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    calculation_method: Optional[CalculationMethodEnum] = None
    rounding_method: Optional[RoundingMethodEnum] = None
    rounding_precision: Optional[int] = Field(None, ge=0, le=4)
    category_rates: Optional[Dict[str, Decimal]] = None
    tiered_rates: Optional[List[TierRate]] = None
    exempt_categories: Optional[List[str]] = None
    exempt_products: Optional[List[str]] = None
    enable_service_charge: Optional[bool] = None
    service_charge_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    apply_vat_on_service_charge: Optional[bool] = None
    minimum_taxable_amount: Optional[Decimal] = Field(None, ge=0)
    display_on_receipt: Optional[bool] = None
    display_label: Optional[str] = Field(None, max_length=50)
    registration_number: Optional[str] = Field(None, max_length=100)
    effective_date: Optional[datetime] = None


class VATSettingsOut(VATSettingsBase):
    id: Optional[UUID] = None
    is_active: bool = False
    is_default: bool = False
    effective_date: Optional[datetime] = None
    created_by: Optional[UUID] = None
    updated_by: Optional[UUID] = None

    model_config = {"from_attributes": True}


class SaleLineIn(BaseModel):
    """A line as rung up at the till."""
    product: UUID = Field(..., description="Product or menu item id")
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    item_type: ItemTypeEnum = ItemTypeEnum.product
    product_name: Optional[str] = None
    batch_number: Optional[str] = None
    portion_id: Optional[UUID] = None


class TestCalculationRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    category: Optional[str] = None
    taxable: bool = True
