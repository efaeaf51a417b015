"""
Retail products sold over the counter (bottled drinks, packaged snacks)
and their stock batches.

- Product: catalogue entry with price, cost and VAT flag
- InventoryBatch: received lot with quantity, prices and expiry

Stock of a product is the sum of its batch quantities; sales consume
batches oldest-expiry first.
"""
from sqlalchemy import Column, String, Boolean, ForeignKey, Numeric, Text, Date, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from decimal import Decimal

from app.database.database import Base
from app.common.mixins import TimestampMixin


class Product(Base, TimestampMixin):
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False, index=True)
    sku = Column(String(50), nullable=False, unique=True)
    barcode = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="general")
    unit_price = Column(Numeric(15, 2), nullable=False, default=0)
    cost_price = Column(Numeric(15, 2), nullable=False, default=0)
    taxable = Column(Boolean, default=True, nullable=False)
    unit = Column(String(20), nullable=False, default="pcs")
    reorder_level = Column(Numeric(12, 3), nullable=False, default=0)
    track_inventory = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    batches = relationship(
        "InventoryBatch",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="InventoryBatch.created_at"
    )

    @property
    def stock_quantity(self) -> Decimal:
        return sum((Decimal(str(b.quantity)) for b in self.batches), Decimal("0"))

    @property
    def is_low_stock(self) -> bool:
        return self.track_inventory and self.stock_quantity <= Decimal(str(self.reorder_level or 0))


class InventoryBatch(Base, TimestampMixin):
    __tablename__ = "inventory_batches"

    id = Column(Uuid, primary_key=True, default=uuid4)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False, index=True)
    batch_number = Column(String(50), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False, default=0)
    purchased_quantity = Column(Numeric(12, 3), nullable=False, default=0)
    cost_price = Column(Numeric(15, 2), nullable=True)
    selling_price = Column(Numeric(15, 2), nullable=True)
    manufacturing_date = Column(Date, nullable=True)
    expiry_date = Column(Date, nullable=True)
    supplier = Column(String(150), nullable=True)

    product = relationship("Product", back_populates="batches")

    __table_args__ = (
        UniqueConstraint("product_id", "batch_number", name="uq_batch_product_number"),
    )
