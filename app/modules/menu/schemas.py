from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from enum import Enum


class MenuCategoryEnum(str, Enum):
    starters = "starters"
    mains = "mains"
    desserts = "desserts"
    beverages = "beverages"
    sides = "sides"
    specials = "specials"


class MenuCategoryOut(BaseModel):
    value: str
    label: str


class MenuItemBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None
    category: MenuCategoryEnum
    price: Decimal = Field(..., ge=0)
    cost_price: Decimal = Field(Decimal("0"), ge=0)
    taxable: bool = True
    is_available: bool = True
    is_vegetarian: bool = False
    is_vegan: bool = False
    is_gluten_free: bool = False
    spicy_level: int = Field(0, ge=0, le=5)
    preparation_time: Optional[int] = Field(None, ge=0, description="Minutes")
    image_url: Optional[str] = Field(None, max_length=500)


class MenuItemCreate(MenuItemBase):
    pass


class MenuItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = None
    category: Optional[MenuCategoryEnum] = None
    price: Optional[Decimal] = Field(None, ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    taxable: Optional[bool] = None
    is_available: Optional[bool] = None
    is_vegetarian: Optional[bool] = None
    is_vegan: Optional[bool] = None
    is_gluten_free: Optional[bool] = None
    spicy_level: Optional[int] = Field(None, ge=0, le=5)
    preparation_time: Optional[int] = Field(None, ge=0)
    image_url: Optional[str] = Field(None, max_length=500)


class PortionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    price: Decimal = Field(..., ge=0)
    cost_price: Decimal = Field(Decimal("0"), ge=0)
    is_default: bool = False


class PortionOut(BaseModel):
    id: UUID
    menu_item_id: UUID
    name: str
    price: Decimal
    cost_price: Decimal
    is_default: bool
    is_active: bool

    model_config = {"from_attributes": True}


class MenuItemOut(MenuItemBase):
    id: UUID
    created_at: datetime
    portions: List[PortionOut] = []

    model_config = {"from_attributes": True}


class MenuItemList(BaseModel):
    items: List[MenuItemOut]
    total: int


class AvailabilityUpdate(BaseModel):
    is_available: Optional[bool] = Field(None, description="Omit to toggle")


class RecipeLineIn(BaseModel):
    ingredient_id: UUID
    quantity: Decimal = Field(..., gt=0)
    unit: Optional[str] = Field(None, max_length=20, description="Defaults to the ingredient's unit")


class RecipeUpdate(BaseModel):
    portion_id: Optional[UUID] = None
    ingredients: List[RecipeLineIn]

    @field_validator("ingredients")
    @classmethod
    def ingredients_unique(cls, v):
        ingredient_ids = [line.ingredient_id for line in v]
        if len(set(ingredient_ids)) != len(ingredient_ids):
            raise ValueError("Each ingredient may appear only once in a recipe")
        return v


class RecipeLineOut(BaseModel):
    id: UUID
    menu_item_id: UUID
    portion_id: Optional[UUID] = None
    ingredient_id: UUID
    ingredient_name: Optional[str] = None
    quantity: Decimal
    unit: str
