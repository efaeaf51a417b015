from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID
from datetime import date

from app.dependencies.dbDependecies import get_db
from app.modules.auth.dependencies import (
    AuthDependencies, ALL_ROLES, MANAGEMENT_ROLES, FRONT_OF_HOUSE_ROLES, KITCHEN_ROLES
)
from app.modules.auth.schemas import AuthContext
from app.modules.kitchen.service import KitchenStationService, KitchenOrderService
from app.modules.kitchen.schemas import (
    StationCreate, StationUpdate, StationOut, KitchenOrderCreate, KitchenOrderOut, KitchenStatusUpdate,
    KitchenItemStatusUpdate, KitchenMetrics, KitchenOrderStatusEnum, KitchenPriorityEnum
)
from app.modules.sales.schemas import OrderTypeEnum

kitchen_router = APIRouter(prefix="/kitchen", tags=["Kitchen"])


# ===== STATIONS =====

@kitchen_router.get("/stations", response_model=List[StationOut])
def list_stations(
    include_inactive: bool = Query(False),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return KitchenStationService(db).list_stations(include_inactive)


@kitchen_router.post("/stations", response_model=StationOut, status_code=status.HTTP_201_CREATED)
def create_station(
    station_data: StationCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Add a station and the menu categories it prepares."""
    return KitchenStationService(db).create_station(station_data)


@kitchen_router.get("/stations/{station_id}", response_model=StationOut)
def get_station(
    station_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return KitchenStationService(db).get_station(station_id)


@kitchen_router.patch("/stations/{station_id}", response_model=StationOut)
def update_station(
    station_id: UUID,
    station_data: StationUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return KitchenStationService(db).update_station(station_id, station_data)


@kitchen_router.get("/stations/{station_id}/orders", response_model=List[KitchenOrderOut])
def station_queue(
    station_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(KITCHEN_ROLES)),
    db: Session = Depends(get_db)
):
    """Open orders for one station, most urgent first."""
    return KitchenOrderService(db).station_queue(station_id)


# ===== ORDERS =====

@kitchen_router.post("/orders", response_model=List[KitchenOrderOut], status_code=status.HTTP_201_CREATED)
def send_to_kitchen(
    order_data: KitchenOrderCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Send a sale's menu items to the kitchen.

    One order is created per station; lines no station prepares share an
    unassigned order.
    """
    return KitchenOrderService(db).send_sale(order_data)


@kitchen_router.get("/orders", response_model=List[KitchenOrderOut])
def list_kitchen_orders(
    station_id: Optional[UUID] = Query(None),
    order_status: Optional[KitchenOrderStatusEnum] = Query(None, alias="status"),
    priority: Optional[KitchenPriorityEnum] = Query(None),
    order_type: Optional[OrderTypeEnum] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return KitchenOrderService(db).list_orders(
        station_id,
        order_status.value if order_status else None,
        priority.value if priority else None,
        order_type.value if order_type else None
    )


@kitchen_router.get("/orders/{order_id}", response_model=KitchenOrderOut)
def get_kitchen_order(
    order_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return KitchenOrderService(db).get_order(order_id)


@kitchen_router.patch("/orders/{order_id}/status", response_model=KitchenOrderOut)
def update_kitchen_order_status(
    order_id: UUID,
    status_data: KitchenStatusUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(KITCHEN_ROLES)),
    db: Session = Depends(get_db)
):
    """pending -> preparing -> ready -> completed. Cancelling needs a reason."""
    return KitchenOrderService(db).update_status(order_id, status_data, auth_context.user_id)


@kitchen_router.patch("/orders/{order_id}/items/{item_index}", response_model=KitchenOrderOut)
def update_kitchen_item_status(
    order_id: UUID,
    item_index: int,
    item_data: KitchenItemStatusUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(KITCHEN_ROLES)),
    db: Session = Depends(get_db)
):
    return KitchenOrderService(db).update_item_status(order_id, item_index, item_data, auth_context.user_id)


@kitchen_router.get("/metrics", response_model=KitchenMetrics)
def kitchen_metrics(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return KitchenOrderService(db).metrics(start_date, end_date)
