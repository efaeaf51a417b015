"""
Kitchen stations and the orders routed to them.

A station prepares menu categories (grill, hoppers, bar). When a sale
goes to the kitchen its menu lines are grouped by station and one
kitchen order is written per group.
"""
from sqlalchemy import (
    Column, String, Boolean, DateTime, Integer, Text, Enum, JSON, Uuid, ForeignKey
)
from sqlalchemy.orm import relationship
from uuid import uuid4
import enum

from app.database.database import Base
from app.common.mixins import TimestampMixin
from app.modules.sales.models import OrderType


class KitchenOrderStatus(str, enum.Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class KitchenPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class KitchenStation(Base, TimestampMixin):
    __tablename__ = "kitchen_stations"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False, unique=True)
    code = Column(String(20), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    categories = Column(JSON, nullable=False, default=list)
    priority = Column(Integer, nullable=False, default=0)
    average_prep_time = Column(Integer, nullable=False, default=10)
    location_id = Column(Uuid, ForeignKey("stock_locations.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    location = relationship("StockLocation")

    def __repr__(self):
        return f"<KitchenStation(code='{self.code}', name='{self.name}')>"


class KitchenOrder(Base, TimestampMixin):
    """
    A ticket for one station.

    items are the sale lines the station prepares, each with its own
    status. station_id is empty for lines no station claims.
    """
    __tablename__ = "kitchen_orders"

    id = Column(Uuid, primary_key=True, default=uuid4)
    order_number = Column(String(30), nullable=False, unique=True, index=True)
    sale_id = Column(Uuid, ForeignKey("sales.id"), nullable=True, index=True)
    station_id = Column(Uuid, ForeignKey("kitchen_stations.id"), nullable=True, index=True)
    items = Column(JSON, nullable=False, default=list)

    order_type = Column(Enum(OrderType), nullable=False, default=OrderType.TAKEAWAY)
    table_number = Column(String(20), nullable=True)
    customer_name = Column(String(150), nullable=True)
    priority = Column(Enum(KitchenPriority), nullable=False, default=KitchenPriority.NORMAL)
    status = Column(Enum(KitchenOrderStatus), nullable=False, default=KitchenOrderStatus.PENDING, index=True)
    estimated_time = Column(Integer, nullable=True)

    special_instructions = Column(Text, nullable=True)
    preparation_notes = Column(Text, nullable=True)
    cancellation_reason = Column(String(500), nullable=True)

    started_at = Column(DateTime, nullable=True)
    ready_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    status_updated_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    status_updated_at = Column(DateTime, nullable=True)

    station = relationship("KitchenStation")

    def __repr__(self):
        return f"<KitchenOrder(number='{self.order_number}', status='{self.status}')>"
