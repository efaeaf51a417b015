from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID
from datetime import date

from app.dependencies.dbDependecies import get_db
from app.modules.auth.dependencies import AuthDependencies, ALL_ROLES, MANAGEMENT_ROLES
from app.modules.auth.schemas import AuthContext
from app.modules.inventory.service import (
    IngredientService, LocationService, StockService, TransferService, StockIssueService
)
from app.modules.inventory.reconciliation import ReconciliationService
from app.modules.inventory.models import ReconciliationStatus
from app.modules.inventory.schemas import (
    IngredientCreate, IngredientUpdate, IngredientOut, LocationCreate, LocationOut, LocationStock,
    StockAdd, StockAdjust, StockDamaged, StockTransactionOut,
    TransferCreate, TransferReceive, TransferOut,
    StockIssueCreate, StockIssueOut, StockIssuePreview,
    ReconciliationStart, ReconciliationCounts, ReconciliationOut
)

STOCK_ROLES = ["admin", "manager", "owner", "kitchen_staff"]

inventory_router = APIRouter(prefix="/inventory", tags=["Inventory"])
stock_router = APIRouter(prefix="/stock", tags=["Stock"])
stock_issue_router = APIRouter(prefix="/stock-issues", tags=["Stock Issues"])


# ===== INGREDIENTS =====

@inventory_router.get("/ingredients", response_model=List[IngredientOut])
async def list_ingredients(
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    include_inactive: bool = Query(False),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    items = IngredientService(db).list_ingredients(search, category, include_inactive)
    return [IngredientOut.model_validate(i) for i in items]


@inventory_router.get("/ingredients/low-stock", response_model=List[IngredientOut])
async def low_stock_ingredients(
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    """Ingredients at or below their reorder level."""
    return [IngredientOut.model_validate(i) for i in IngredientService(db).low_stock()]


@inventory_router.post("/ingredients", response_model=IngredientOut, status_code=status.HTTP_201_CREATED)
async def create_ingredient(
    ingredient_data: IngredientCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Create an ingredient.

    A positive **current_stock** is booked as an opening balance.
    """
    return IngredientService(db).create_ingredient(ingredient_data, auth_context.user_id)


@inventory_router.get("/ingredients/{ingredient_id}", response_model=IngredientOut)
async def get_ingredient(
    ingredient_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return IngredientService(db).get_ingredient(ingredient_id)


@inventory_router.put("/ingredients/{ingredient_id}", response_model=IngredientOut)
async def update_ingredient(
    ingredient_id: UUID,
    ingredient_data: IngredientUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Update ingredient details. Stock changes go through /stock."""
    return IngredientService(db).update_ingredient(ingredient_id, ingredient_data)


@inventory_router.delete("/ingredients/{ingredient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ingredient(
    ingredient_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    IngredientService(db).deactivate_ingredient(ingredient_id)


# ===== LOCATIONS =====

@inventory_router.get("/locations", response_model=List[LocationOut])
async def list_locations(
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return [LocationOut.model_validate(loc) for loc in LocationService(db).list_locations()]


@inventory_router.post("/locations", response_model=LocationOut, status_code=status.HTTP_201_CREATED)
async def create_location(
    location_data: LocationCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return LocationService(db).create_location(location_data)


@inventory_router.get("/locations/{location_id}/stock", response_model=LocationStock)
async def location_stock(
    location_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    """Balance of every ingredient at the location, netted from the stock ledger."""
    result = LocationService(db).location_stock(location_id)
    return LocationStock(location=LocationOut.model_validate(result["location"]), items=result["items"])


# ===== STOCK MOVEMENTS =====

@stock_router.post("/add", response_model=StockTransactionOut, status_code=status.HTTP_201_CREATED)
async def add_stock(
    stock_data: StockAdd,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Receive stock from a supplier.

    - **unit_cost**: updates the ingredient's unit cost when given
    - **location_id**: the location receiving the goods
    """
    return StockService(db).add_stock(stock_data, auth_context.user_id)


@stock_router.post("/adjust", response_model=StockTransactionOut, status_code=status.HTTP_201_CREATED)
async def adjust_stock(
    adjustment: StockAdjust,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Increase or decrease stock after a count. A reason is required."""
    return StockService(db).adjust_stock(adjustment, auth_context.user_id)


@stock_router.post("/damaged", response_model=StockTransactionOut, status_code=status.HTTP_201_CREATED)
async def record_damaged(
    damaged: StockDamaged,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    return StockService(db).record_damaged(damaged, auth_context.user_id)


@stock_router.get("/history", response_model=List[StockTransactionOut])
async def stock_history(
    ingredient_id: Optional[UUID] = Query(None),
    transaction_type: Optional[str] = Query(None),
    location_id: Optional[UUID] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    """Stock ledger, newest first."""
    rows = StockService(db).history(
        ingredient_id, transaction_type, location_id, start_date, end_date, limit, offset
    )
    return [StockTransactionOut.model_validate(r) for r in rows]


@stock_router.post("/transfers", response_model=TransferOut, status_code=status.HTTP_201_CREATED)
async def initiate_transfer(
    transfer_data: TransferCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Send stock to another location.

    Stock leaves the source immediately; the transfer stays pending
    until received at the destination.
    """
    return TransferService(db).initiate(transfer_data, auth_context.user_id)


@stock_router.get("/transfers", response_model=List[TransferOut])
async def list_transfers(
    status_filter: Optional[str] = Query(None, alias="status"),
    location_id: Optional[UUID] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    transfers = TransferService(db).list_transfers(status_filter, location_id)
    return [TransferOut.model_validate(t) for t in transfers]


@stock_router.get("/transfers/{transfer_id}", response_model=TransferOut)
async def get_transfer(
    transfer_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return TransferService(db).get_transfer(transfer_id)


@stock_router.post("/transfers/{transfer_id}/receive", response_model=TransferOut)
async def receive_transfer(
    transfer_id: UUID,
    receipt: TransferReceive,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    """Book a pending transfer in. Received plus damaged may not exceed sent."""
    return TransferService(db).receive(transfer_id, receipt, auth_context.user_id)


@stock_router.post("/transfers/{transfer_id}/cancel", response_model=TransferOut)
async def cancel_transfer(
    transfer_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    """Cancel a pending transfer and return the stock to the source."""
    return TransferService(db).cancel(transfer_id, auth_context.user_id)


# ===== RECONCILIATION =====

@stock_router.post("/reconciliations", response_model=ReconciliationOut, status_code=status.HTTP_201_CREATED)
async def start_reconciliation(
    start_data: ReconciliationStart,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    """Start a count at a location. Physical stock starts equal to the location balance."""
    return ReconciliationService(db).start(start_data, auth_context.user_id)


@stock_router.get("/reconciliations", response_model=List[ReconciliationOut])
async def list_reconciliations(
    reconciliation_status: Optional[ReconciliationStatus] = Query(None, alias="status"),
    location_id: Optional[UUID] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    return ReconciliationService(db).list_reconciliations(
        reconciliation_status.value if reconciliation_status else None, location_id
    )


@stock_router.get("/reconciliations/{reconciliation_id}", response_model=ReconciliationOut)
async def get_reconciliation(
    reconciliation_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    return ReconciliationService(db).get_reconciliation(reconciliation_id)


@stock_router.put("/reconciliations/{reconciliation_id}/counts", response_model=ReconciliationOut)
async def record_reconciliation_counts(
    reconciliation_id: UUID,
    counts: ReconciliationCounts,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    return ReconciliationService(db).record_counts(reconciliation_id, counts)


@stock_router.post("/reconciliations/{reconciliation_id}/submit", response_model=ReconciliationOut)
async def submit_reconciliation(
    reconciliation_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    return ReconciliationService(db).submit(reconciliation_id)


@stock_router.post("/reconciliations/{reconciliation_id}/approve", response_model=ReconciliationOut)
async def approve_reconciliation(
    reconciliation_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Write an adjustment at the location for every discrepancy."""
    return ReconciliationService(db).approve(reconciliation_id, auth_context.user_id)


@stock_router.post("/reconciliations/{reconciliation_id}/cancel", response_model=ReconciliationOut)
async def cancel_reconciliation(
    reconciliation_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return ReconciliationService(db).cancel(reconciliation_id)


# ===== STOCK ISSUES =====

def _preview_out(result: dict) -> StockIssuePreview:
    return StockIssuePreview(
        issue=StockIssueOut.model_validate(result["issue"]),
        requirements=result["requirements"],
        can_confirm=result["can_confirm"]
    )


@stock_issue_router.post("", response_model=StockIssuePreview, status_code=status.HTTP_201_CREATED)
async def create_stock_issue(
    issue_data: StockIssueCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    """Request a production issue; returns the issue and its projected requirements."""
    service = StockIssueService(db)
    issue = service.create_issue(issue_data, auth_context.user_id)
    return _preview_out(service.preview(issue.id))


@stock_issue_router.get("", response_model=List[StockIssueOut])
async def list_stock_issues(
    status_filter: Optional[str] = Query(None, alias="status"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return [StockIssueOut.model_validate(i) for i in StockIssueService(db).list_issues(status_filter)]


@stock_issue_router.get("/{issue_id}/preview", response_model=StockIssuePreview)
async def preview_stock_issue(
    issue_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    """Requirements per ingredient against the source location's balance."""
    return _preview_out(StockIssueService(db).preview(issue_id))


@stock_issue_router.post("/{issue_id}/confirm", response_model=StockIssueOut)
async def confirm_stock_issue(
    issue_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    return StockIssueService(db).confirm(issue_id, auth_context.user_id)


@stock_issue_router.post("/{issue_id}/cancel", response_model=StockIssueOut)
async def cancel_stock_issue(
    issue_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(STOCK_ROLES)),
    db: Session = Depends(get_db)
):
    return StockIssueService(db).cancel(issue_id)
