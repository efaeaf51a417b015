"""
Ingredient stock held at physical locations.

- Ingredient: raw material with a business-wide cached stock total
- StockLocation: store, kitchen, bar
- StockTransaction: signed ledger row affecting one location
- StockTransfer / StockTransferItem: goods moving between locations
- StockIssue: a recipe's ingredients issued for production
- StockReconciliation / StockReconciliationItem: a physical count at one
  location, applied as adjustment rows once approved

The balance of an ingredient at a location is the sum of its completed
ledger rows for that location. Movements between locations write a
negative row at the source and a positive row at the destination.
"""
from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, Integer, Numeric, Text, Enum, Uuid
)
from sqlalchemy.orm import relationship
from uuid import uuid4
import enum

from app.database.database import Base
from app.common.mixins import TimestampMixin


class LocationType(str, enum.Enum):
    STORE = "store"
    KITCHEN = "kitchen"
    BAR = "bar"
    OTHER = "other"


class StockTransactionType(str, enum.Enum):
    ADD_STOCK = "add_stock"
    ADJUSTMENT = "adjustment"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    DAMAGED = "damaged"
    RETURN_TO_SUPPLIER = "return_to_supplier"
    SALE_DEDUCTION = "sale_deduction"
    USAGE = "usage"
    OPENING_BALANCE = "opening_balance"
    TRANSFER_SHORTAGE = "transfer_shortage"


class StockTransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransferStatus(str, enum.Enum):
    PENDING = "pending"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class StockIssueStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ReconciliationStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"
    CANCELLED = "cancelled"


class Ingredient(Base, TimestampMixin):
    __tablename__ = "ingredients"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False, unique=True)
    unit = Column(String(20), nullable=False)
    category = Column(String(50), nullable=True)
    current_stock = Column(Numeric(12, 3), nullable=False, default=0)
    reorder_level = Column(Numeric(12, 3), nullable=False, default=0)
    unit_cost = Column(Numeric(15, 2), nullable=False, default=0)
    supplier = Column(String(150), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)


class StockLocation(Base, TimestampMixin):
    __tablename__ = "stock_locations"

    id = Column(Uuid, primary_key=True, default=uuid4)
    location_name = Column(String(100), nullable=False, unique=True)
    location_type = Column(Enum(LocationType), nullable=False, default=LocationType.STORE)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)


class StockTransaction(Base, TimestampMixin):
    __tablename__ = "stock_transactions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    transaction_number = Column(String(50), nullable=False, unique=True)
    transaction_type = Column(Enum(StockTransactionType), nullable=False, index=True)
    ingredient_id = Column(Uuid, ForeignKey("ingredients.id"), nullable=False, index=True)
    location_id = Column(Uuid, ForeignKey("stock_locations.id"), nullable=True, index=True)
    from_location_id = Column(Uuid, ForeignKey("stock_locations.id"), nullable=True)
    to_location_id = Column(Uuid, ForeignKey("stock_locations.id"), nullable=True)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit = Column(String(20), nullable=False)
    previous_stock = Column(Numeric(12, 3), nullable=False)
    new_stock = Column(Numeric(12, 3), nullable=False)
    unit_cost = Column(Numeric(15, 2), nullable=True)
    total_cost = Column(Numeric(15, 2), nullable=True)
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(Uuid, nullable=True)
    reference_number = Column(String(100), nullable=True)
    reason = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    batch_number = Column(String(100), nullable=True)
    status = Column(Enum(StockTransactionStatus), nullable=False, default=StockTransactionStatus.COMPLETED)
    performed_by = Column(Uuid, ForeignKey("users.id"), nullable=True)

    ingredient = relationship("Ingredient")
    location = relationship("StockLocation", foreign_keys=[location_id])


class StockTransfer(Base, TimestampMixin):
    __tablename__ = "stock_transfers"

    id = Column(Uuid, primary_key=True, default=uuid4)
    transfer_number = Column(String(50), nullable=False, unique=True)
    from_location_id = Column(Uuid, ForeignKey("stock_locations.id"), nullable=False)
    to_location_id = Column(Uuid, ForeignKey("stock_locations.id"), nullable=False)
    status = Column(Enum(TransferStatus), nullable=False, default=TransferStatus.PENDING)
    initiated_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    received_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    received_at = Column(DateTime, nullable=True)
    reason = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    from_location = relationship("StockLocation", foreign_keys=[from_location_id])
    to_location = relationship("StockLocation", foreign_keys=[to_location_id])
    items = relationship("StockTransferItem", back_populates="transfer", cascade="all, delete-orphan")


class StockTransferItem(Base):
    __tablename__ = "stock_transfer_items"

    id = Column(Uuid, primary_key=True, default=uuid4)
    transfer_id = Column(Uuid, ForeignKey("stock_transfers.id"), nullable=False, index=True)
    ingredient_id = Column(Uuid, ForeignKey("ingredients.id"), nullable=False)
    quantity_sent = Column(Numeric(12, 3), nullable=False)
    quantity_received = Column(Numeric(12, 3), nullable=True)
    damaged_quantity = Column(Numeric(12, 3), nullable=False, default=0)
    damage_reason = Column(String(255), nullable=True)
    unit = Column(String(20), nullable=False)

    transfer = relationship("StockTransfer", back_populates="items")
    ingredient = relationship("Ingredient")


class StockIssue(Base, TimestampMixin):
    __tablename__ = "stock_issues"

    id = Column(Uuid, primary_key=True, default=uuid4)
    issue_number = Column(String(50), nullable=False, unique=True)
    menu_item_id = Column(Uuid, ForeignKey("menu_items.id"), nullable=False)
    portion_id = Column(Uuid, ForeignKey("menu_item_portions.id"), nullable=True)
    planned_quantity = Column(Numeric(12, 3), nullable=False)
    from_location_id = Column(Uuid, ForeignKey("stock_locations.id"), nullable=False)
    to_location_id = Column(Uuid, ForeignKey("stock_locations.id"), nullable=False)
    status = Column(Enum(StockIssueStatus), nullable=False, default=StockIssueStatus.PENDING)
    requested_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    confirmed_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    menu_item = relationship("MenuItem")
    portion = relationship("MenuItemPortion")
    from_location = relationship("StockLocation", foreign_keys=[from_location_id])
    to_location = relationship("StockLocation", foreign_keys=[to_location_id])


class StockReconciliation(Base, TimestampMixin):
    __tablename__ = "stock_reconciliations"

    id = Column(Uuid, primary_key=True, default=uuid4)
    reconciliation_number = Column(String(50), nullable=False, unique=True)
    location_id = Column(Uuid, ForeignKey("stock_locations.id"), nullable=False, index=True)
    status = Column(Enum(ReconciliationStatus), nullable=False, default=ReconciliationStatus.IN_PROGRESS)
    performed_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    approved_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    completed_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    total_items_counted = Column(Integer, nullable=False, default=0)
    total_discrepancies = Column(Integer, nullable=False, default=0)
    total_value_difference = Column(Numeric(15, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    location = relationship("StockLocation")
    items = relationship(
        "StockReconciliationItem",
        back_populates="reconciliation",
        cascade="all, delete-orphan",
        order_by="StockReconciliationItem.ingredient_name"
    )


class StockReconciliationItem(Base):
    """system_stock is the location balance when the count started."""
    __tablename__ = "stock_reconciliation_items"

    id = Column(Uuid, primary_key=True, default=uuid4)
    reconciliation_id = Column(Uuid, ForeignKey("stock_reconciliations.id"), nullable=False, index=True)
    ingredient_id = Column(Uuid, ForeignKey("ingredients.id"), nullable=False)
    ingredient_name = Column(String(150), nullable=False)
    system_stock = Column(Numeric(12, 3), nullable=False)
    physical_stock = Column(Numeric(12, 3), nullable=False)
    difference = Column(Numeric(12, 3), nullable=False, default=0)
    unit = Column(String(20), nullable=False)
    unit_cost = Column(Numeric(15, 2), nullable=False, default=0)
    value_difference = Column(Numeric(15, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    adjustment_made = Column(Boolean, nullable=False, default=False)
    stock_transaction_id = Column(Uuid, ForeignKey("stock_transactions.id"), nullable=True)

    reconciliation = relationship("StockReconciliation", back_populates="items")
    ingredient = relationship("Ingredient")
