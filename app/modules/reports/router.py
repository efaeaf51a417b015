from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date

from app.dependencies.dbDependecies import get_db
from app.common.csv_export import create_csv_response
from app.common.utils import utc_now
from app.modules.auth.dependencies import AuthDependencies, MANAGEMENT_ROLES
from app.modules.auth.schemas import AuthContext
from app.modules.reports.service import ReportService, BEST_SELLING_CSV_HEADERS
from app.modules.reports.schemas import DailyReport, MonthlyReport, ProfitReport, ItemSales, Dashboard

reports_router = APIRouter(prefix="/reports", tags=["Reports"])


@reports_router.get("/daily", response_model=DailyReport)
async def daily_report(
    report_date: Optional[date] = Query(None, alias="date", description="Defaults to today"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """
    One day of trading.

    **net** is revenue less VAT and the day's expenses.
    """
    return ReportService(db).daily(report_date)


@reports_router.get("/monthly", response_model=MonthlyReport)
async def monthly_report(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    today = utc_now().date()
    return ReportService(db).monthly(year or today.year, month or today.month)


@reports_router.get("/profit", response_model=ProfitReport)
async def profit_report(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return ReportService(db).profit(start_date, end_date)


@reports_router.get("/best-selling", response_model=None)
async def best_selling(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    export: Optional[str] = Query(None, pattern="^(csv)$", description="Export format: csv"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Items ranked by quantity sold, then revenue. Can export as CSV."""
    items = ReportService(db).best_selling(start_date, end_date, limit)
    if export == "csv":
        return create_csv_response(items, "best_selling.csv", BEST_SELLING_CSV_HEADERS)
    return [ItemSales(**item) for item in items]


@reports_router.get("/dashboard", response_model=Dashboard)
async def dashboard(
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return ReportService(db).dashboard()
