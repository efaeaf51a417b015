from sqlalchemy import (
    Column, String, Boolean, Integer, ForeignKey, Numeric, Text, Enum, UniqueConstraint, Uuid
)
from sqlalchemy.orm import relationship
from uuid import uuid4
import enum

from app.database.database import Base
from app.common.mixins import TimestampMixin


class MenuCategory(str, enum.Enum):
    STARTERS = "starters"
    MAINS = "mains"
    DESSERTS = "desserts"
    BEVERAGES = "beverages"
    SIDES = "sides"
    SPECIALS = "specials"


CATEGORY_LABELS = {
    MenuCategory.STARTERS: "Appetizers and starter dishes",
    MenuCategory.MAINS: "Main course dishes",
    MenuCategory.DESSERTS: "Desserts and sweet items",
    MenuCategory.BEVERAGES: "Drinks and beverages",
    MenuCategory.SIDES: "Side dishes and extras",
    MenuCategory.SPECIALS: "Chef's specials",
}


class MenuItem(Base, TimestampMixin):
    __tablename__ = "menu_items"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    category = Column(Enum(MenuCategory), nullable=False, index=True)
    price = Column(Numeric(15, 2), nullable=False)
    cost_price = Column(Numeric(15, 2), nullable=False, default=0)
    taxable = Column(Boolean, default=True, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    is_vegetarian = Column(Boolean, default=False, nullable=False)
    is_vegan = Column(Boolean, default=False, nullable=False)
    is_gluten_free = Column(Boolean, default=False, nullable=False)
    spicy_level = Column(Integer, default=0, nullable=False)
    preparation_time = Column(Integer, nullable=True)
    image_url = Column(String(500), nullable=True)

    portions = relationship(
        "MenuItemPortion",
        back_populates="menu_item",
        cascade="all, delete-orphan",
        order_by="MenuItemPortion.price"
    )
    recipe = relationship(
        "MenuItemIngredient",
        back_populates="menu_item",
        cascade="all, delete-orphan"
    )

    @property
    def default_portion(self):
        for portion in self.portions:
            if portion.is_default and portion.is_active:
                return portion
        return None


class MenuItemPortion(Base, TimestampMixin):
    __tablename__ = "menu_item_portions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    menu_item_id = Column(Uuid, ForeignKey("menu_items.id"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    price = Column(Numeric(15, 2), nullable=False)
    cost_price = Column(Numeric(15, 2), nullable=False, default=0)
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    menu_item = relationship("MenuItem", back_populates="portions")

    __table_args__ = (
        UniqueConstraint("menu_item_id", "name", name="uq_portion_item_name"),
    )


class MenuItemIngredient(Base, TimestampMixin):
    """One recipe line: how much of an ingredient one unit of the item uses."""
    __tablename__ = "menu_item_ingredients"

    id = Column(Uuid, primary_key=True, default=uuid4)
    menu_item_id = Column(Uuid, ForeignKey("menu_items.id"), nullable=False, index=True)
    portion_id = Column(Uuid, ForeignKey("menu_item_portions.id"), nullable=True)
    ingredient_id = Column(Uuid, ForeignKey("ingredients.id"), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit = Column(String(20), nullable=False)

    menu_item = relationship("MenuItem", back_populates="recipe")
    portion = relationship("MenuItemPortion")
    ingredient = relationship("Ingredient")
