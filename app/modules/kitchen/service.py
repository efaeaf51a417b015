from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from decimal import Decimal
from datetime import date, datetime
from typing import Optional, List, Dict, Tuple
from uuid import UUID
import logging

from app.common.utils import utc_now, date_range_bounds
from app.common.sequences import next_sequence_number
from app.modules.kitchen.models import KitchenStation, KitchenOrder, KitchenOrderStatus, KitchenPriority
from app.modules.kitchen.schemas import (
    StationCreate, StationUpdate, KitchenOrderCreate, KitchenStatusUpdate, KitchenItemStatusUpdate
)
from app.modules.sales.models import OrderType
from app.modules.sales.service import SaleService, CLOSED_STATUSES
from app.modules.inventory.service import LocationService

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (KitchenOrderStatus.PENDING, KitchenOrderStatus.PREPARING, KitchenOrderStatus.READY)

PRIORITY_RANK = {
    KitchenPriority.LOW: 0,
    KitchenPriority.NORMAL: 1,
    KitchenPriority.HIGH: 2,
    KitchenPriority.URGENT: 3,
}

# Orders move forward only; any open order may be cancelled
TRANSITIONS = {
    KitchenOrderStatus.PENDING: {KitchenOrderStatus.PREPARING, KitchenOrderStatus.CANCELLED},
    KitchenOrderStatus.PREPARING: {KitchenOrderStatus.READY, KitchenOrderStatus.CANCELLED},
    KitchenOrderStatus.READY: {KitchenOrderStatus.COMPLETED, KitchenOrderStatus.CANCELLED},
    KitchenOrderStatus.COMPLETED: set(),
    KitchenOrderStatus.CANCELLED: set(),
}

DEFAULT_PREP_MINUTES = 15
MINUTES_PER_ITEM = 2
MAX_ITEM_MINUTES = 10


def next_kitchen_order_number(db: Session, when: Optional[datetime] = None) -> str:
    """KO-YYYYMMDD-NNNN, numbered per day"""
    when = when or utc_now()
    return next_sequence_number(db, KitchenOrder.order_number, f"KO-{when.strftime('%Y%m%d')}-")


def estimated_minutes(station: Optional[KitchenStation], items: List[dict]) -> int:
    """Station prep time plus two minutes an item, capped at ten."""
    base = station.average_prep_time if station else DEFAULT_PREP_MINUTES
    return base + min(len(items) * MINUTES_PER_ITEM, MAX_ITEM_MINUTES)


class KitchenStationService:

    def __init__(self, db: Session):
        self.db = db

    def get_station(self, station_id: UUID) -> KitchenStation:
        station = self.db.query(KitchenStation).filter(KitchenStation.id == station_id).first()
        if not station:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Kitchen station not found")
        return station

    def list_stations(self, include_inactive: bool = False) -> List[KitchenStation]:
        query = self.db.query(KitchenStation)
        if not include_inactive:
            query = query.filter(KitchenStation.is_active == True)
        return query.order_by(KitchenStation.priority.desc(), KitchenStation.name).all()

    def _check_unique(self, name: Optional[str], code: Optional[str], exclude_id: Optional[UUID] = None) -> None:
        for column, value, label in ((KitchenStation.name, name, "name"), (KitchenStation.code, code, "code")):
            if value is None:
                continue
            query = self.db.query(KitchenStation).filter(column == value)
            if exclude_id:
                query = query.filter(KitchenStation.id != exclude_id)
            if query.first():
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Kitchen station with {label} '{value}' already exists"
                )

    def create_station(self, data: StationCreate) -> KitchenStation:
        self._check_unique(data.name, data.code)
        if data.location_id:
            LocationService(self.db).get_location(data.location_id)
        try:
            station = KitchenStation(**data.model_dump())
            self.db.add(station)
            self.db.commit()
            self.db.refresh(station)
            logger.info(f"Kitchen station {station.code} created for {', '.join(station.categories) or 'no categories'}")
            return station
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error creating kitchen station")

    def update_station(self, station_id: UUID, data: StationUpdate) -> KitchenStation:
        station = self.get_station(station_id)
        changes = data.model_dump(exclude_unset=True)
        self._check_unique(changes.get("name"), None, exclude_id=station.id)
        if changes.get("location_id"):
            LocationService(self.db).get_location(changes["location_id"])
        for field, value in changes.items():
            setattr(station, field, value)
        self.db.commit()
        self.db.refresh(station)
        return station


class KitchenOrderService:
    """Routing sales to stations and tracking preparation"""

    def __init__(self, db: Session):
        self.db = db

    def get_order(self, order_id: UUID) -> KitchenOrder:
        order = self.db.query(KitchenOrder).filter(KitchenOrder.id == order_id).first()
        if not order:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Kitchen order not found")
        return order

    def route_lines(self, lines: List[dict]) -> List[Tuple[Optional[KitchenStation], List[dict]]]:
        """
        Group a sale's menu lines by the station that prepares them.

        A line goes to the highest priority active station listing its
        category. Retail products never reach the kitchen.
        """
        stations = KitchenStationService(self.db).list_stations()
        groups: Dict[Optional[UUID], Tuple[Optional[KitchenStation], List[dict]]] = {}
        for index, line in enumerate(lines):
            if line.get("item_type") != "menu-item":
                continue
            category = (line.get("category") or "").lower()
            station = next((s for s in stations if category in (s.categories or [])), None)
            key = station.id if station else None
            groups.setdefault(key, (station, []))[1].append({
                "line": index,
                "product": line.get("product"),
                "product_name": line.get("product_name"),
                "quantity": line.get("quantity"),
                "portion_id": line.get("portion_id"),
                "category": category,
                "status": "pending",
            })
        return list(groups.values())

    def send_sale(self, data: KitchenOrderCreate) -> List[KitchenOrder]:
        sale = SaleService(self.db).get_sale(data.sale_id)
        if sale.status in CLOSED_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot send a {sale.status.value} sale to the kitchen"
            )
        if self.db.query(KitchenOrder).filter(KitchenOrder.sale_id == sale.id).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Sale {sale.sale_number} is already in the kitchen"
            )

        groups = self.route_lines(sale.items or [])
        if not groups:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Sale has no menu items for the kitchen"
            )

        try:
            orders = []
            for station, items in groups:
                order = KitchenOrder(
                    order_number=next_kitchen_order_number(self.db),
                    sale_id=sale.id,
                    station_id=station.id if station else None,
                    items=items,
                    order_type=sale.order_type or OrderType.TAKEAWAY,
                    table_number=sale.table_number,
                    customer_name=sale.customer_name or "Walk-in Customer",
                    priority=KitchenPriority(data.priority.value),
                    status=KitchenOrderStatus.PENDING,
                    estimated_time=estimated_minutes(station, items),
                    special_instructions=data.special_instructions
                )
                self.db.add(order)
                orders.append(order)
            self.db.commit()
            for order in orders:
                self.db.refresh(order)
            logger.info(f"Sale {sale.sale_number} sent to the kitchen as {len(orders)} orders")
            return orders

        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error creating kitchen order")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error sending sale {sale.sale_number} to the kitchen: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def list_orders(
        self,
        station_id: Optional[UUID] = None,
        status_filter: Optional[str] = None,
        priority: Optional[str] = None,
        order_type: Optional[str] = None
    ) -> List[KitchenOrder]:
        """Open orders unless a status is given; most urgent first, then oldest."""
        query = self.db.query(KitchenOrder)
        if status_filter:
            query = query.filter(KitchenOrder.status == KitchenOrderStatus(status_filter))
        else:
            query = query.filter(KitchenOrder.status.in_(ACTIVE_STATUSES))
        if station_id:
            query = query.filter(KitchenOrder.station_id == station_id)
        if priority:
            query = query.filter(KitchenOrder.priority == KitchenPriority(priority))
        if order_type:
            query = query.filter(KitchenOrder.order_type == OrderType(order_type))
        orders = query.order_by(KitchenOrder.created_at, KitchenOrder.order_number).all()
        return sorted(orders, key=lambda o: -PRIORITY_RANK[o.priority])

    def station_queue(self, station_id: UUID) -> List[KitchenOrder]:
        station = KitchenStationService(self.db).get_station(station_id)
        return self.list_orders(station_id=station.id)

    def _apply_status(self, order: KitchenOrder, new_status: KitchenOrderStatus, user_id: Optional[UUID]) -> None:
        now = utc_now()
        order.status = new_status
        order.status_updated_by = user_id
        order.status_updated_at = now
        if new_status == KitchenOrderStatus.PREPARING and not order.started_at:
            order.started_at = now
        elif new_status == KitchenOrderStatus.READY:
            order.started_at = order.started_at or now
            order.ready_at = order.ready_at or now
            order.items = [dict(item, status="ready") for item in order.items]
        elif new_status == KitchenOrderStatus.COMPLETED:
            order.completed_at = now

    def update_status(self, order_id: UUID, data: KitchenStatusUpdate, user_id: Optional[UUID] = None) -> KitchenOrder:
        order = self.get_order(order_id)
        new_status = KitchenOrderStatus(data.status.value)
        if new_status not in TRANSITIONS[order.status]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot move a {order.status.value} order to {new_status.value}"
            )
        if new_status == KitchenOrderStatus.CANCELLED:
            if not (data.cancellation_reason or "").strip():
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="A cancellation reason is required to cancel a kitchen order"
                )
            order.cancellation_reason = data.cancellation_reason.strip()

        self._apply_status(order, new_status, user_id)
        if data.preparation_notes is not None:
            order.preparation_notes = data.preparation_notes
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Kitchen order {order.order_number} marked {new_status.value}")
        return order

    def update_item_status(
        self, order_id: UUID, item_index: int, data: KitchenItemStatusUpdate, user_id: Optional[UUID] = None
    ) -> KitchenOrder:
        """
        Mark one line. The order starts when any line starts and is
        ready once every line is ready.
        """
        order = self.get_order(order_id)
        if order.status not in (KitchenOrderStatus.PENDING, KitchenOrderStatus.PREPARING):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Items of a {order.status.value} order cannot change"
            )
        if item_index < 0 or item_index >= len(order.items):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid item index {item_index}")

        items = [dict(item) for item in order.items]
        items[item_index]["status"] = data.status.value
        order.items = items

        if all(item["status"] == "ready" for item in items):
            self._apply_status(order, KitchenOrderStatus.READY, user_id)
        elif order.status == KitchenOrderStatus.PENDING and data.status.value != "pending":
            self._apply_status(order, KitchenOrderStatus.PREPARING, user_id)

        self.db.commit()
        self.db.refresh(order)
        return order

    def metrics(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> dict:
        query = self.db.query(KitchenOrder)
        start, end = date_range_bounds(start_date, end_date)
        if start:
            query = query.filter(KitchenOrder.created_at >= start)
        if end:
            query = query.filter(KitchenOrder.created_at < end)
        orders = query.all()

        timed = [o for o in orders if o.started_at and o.ready_at]
        average = Decimal("0")
        if timed:
            seconds = sum((o.ready_at - o.started_at).total_seconds() for o in timed)
            average = (Decimal(str(seconds)) / 60 / len(timed)).quantize(Decimal("0.1"))

        by_station: Dict[str, int] = {}
        for order in orders:
            key = order.station.code if order.station else "unassigned"
            by_station[key] = by_station.get(key, 0) + 1

        return {
            "start_date": start,
            "end_date": end,
            "total_orders": len(orders),
            "completed_orders": sum(1 for o in orders if o.status == KitchenOrderStatus.COMPLETED),
            "cancelled_orders": sum(1 for o in orders if o.status == KitchenOrderStatus.CANCELLED),
            "average_prep_minutes": average,
            "by_order_type": {t.value: sum(1 for o in orders if o.order_type == t) for t in OrderType},
            "by_priority": {p.value: sum(1 for o in orders if o.priority == p) for p in KitchenPriority},
            "by_station": by_station,
        }
