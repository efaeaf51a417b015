from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID
from datetime import date

from app.dependencies.dbDependecies import get_db
from app.modules.auth.dependencies import AuthDependencies, ALL_ROLES, MANAGEMENT_ROLES, FRONT_OF_HOUSE_ROLES
from app.modules.auth.schemas import AuthContext
from app.modules.sales.service import SaleService
from app.modules.sales.splits import BillSplitService
from app.modules.sales.schemas import (
    SaleCreate, SaleCreated, SaleOut, SaleStatusUpdate, SalesReport,
    CalculateVATRequest, BillVATOut, VATBreakdownOut, OrderTypeEnum,
    BillSplitCreate, BillSplitOut, SaleSplitsOut, SplitPayment, SplitPaid, SplitUpdate, SplitsDeleted,
    SplitsSummary, SplitStatusEnum
)

sales_router = APIRouter(prefix="/sales", tags=["Sales"])


@sales_router.post("", response_model=SaleCreated, status_code=status.HTTP_201_CREATED)
async def create_sale(
    sale_data: SaleCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Ring up a sale.

    - Computes VAT and service charge under the active VAT settings
    - Draws retail products from their batches, oldest expiry first
    - Consumes recipe ingredients for menu items
    - Cash sales must be paid in full; change is returned

    Nothing is saved if any step fails.
    """
    sale = SaleService(db).create_sale(sale_data, auth_context)
    return SaleCreated.model_validate(sale)


@sales_router.get("", response_model=List[SaleOut])
async def list_sales(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    order_type: Optional[OrderTypeEnum] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    sales = SaleService(db).list_sales(
        start_date, end_date, order_type.value if order_type else None, limit, offset
    )
    return [SaleOut.model_validate(s) for s in sales]


@sales_router.get("/report", response_model=SalesReport)
async def sales_report(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Revenue, VAT and order type totals. Cancelled and voided sales are excluded."""
    return SaleService(db).report(start_date, end_date)


@sales_router.post("/calculate-vat", response_model=BillVATOut)
async def calculate_vat(
    request: CalculateVATRequest,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    """Preview a bill's VAT without saving anything."""
    return SaleService(db).calculate_vat(request.items)


# ===== BILL SPLITS =====

@sales_router.get("/splits/summary", response_model=SplitsSummary)
async def splits_summary(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    split_status: Optional[SplitStatusEnum] = Query(None, alias="status"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return BillSplitService(db).summary(start_date, end_date, split_status.value if split_status else None)


@sales_router.get("/splits/{split_id}", response_model=BillSplitOut)
async def get_split(
    split_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return BillSplitService(db).get_split(split_id)


@sales_router.put("/splits/{split_id}", response_model=BillSplitOut)
async def update_split(
    split_id: UUID,
    split_data: SplitUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return BillSplitService(db).update_split(split_id, split_data)


@sales_router.post("/splits/{split_id}/pay", response_model=SplitPaid)
async def pay_split(
    split_id: UUID,
    payment: SplitPayment,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """Settle one share. Cash must cover the share; change is returned."""
    return BillSplitService(db).pay_split(split_id, payment, auth_context)


@sales_router.post("/{sale_id}/split", response_model=List[BillSplitOut], status_code=status.HTTP_201_CREATED)
async def split_bill(
    sale_id: UUID,
    split_data: BillSplitCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Divide a sale between guests.

    - equal: the total in equal shares, rounding cents on the last share
    - amount: shares as given, within one rupee of the total
    - items: every sale line goes to exactly one share
    """
    return BillSplitService(db).create_splits(sale_id, split_data)


@sales_router.get("/{sale_id}/splits", response_model=SaleSplitsOut)
async def sale_splits(
    sale_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return BillSplitService(db).sale_splits(sale_id)


@sales_router.delete("/{sale_id}/splits", response_model=SplitsDeleted)
async def delete_sale_splits(
    sale_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return {"deleted": BillSplitService(db).delete_splits(sale_id)}


@sales_router.get("/{sale_id}", response_model=SaleOut)
async def get_sale(
    sale_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return SaleService(db).get_sale(sale_id)


@sales_router.patch("/{sale_id}/status", response_model=SaleOut)
async def update_sale_status(
    sale_id: UUID,
    status_data: SaleStatusUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Move a sale through its lifecycle.

    Cancelling or voiding needs a reason and is final.
    """
    return SaleService(db).update_status(sale_id, status_data)


@sales_router.get("/{sale_id}/vat-breakdown", response_model=VATBreakdownOut)
async def sale_vat_breakdown(
    sale_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return SaleService(db).vat_breakdown(sale_id)
