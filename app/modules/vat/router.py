from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID
from datetime import date

from app.dependencies.dbDependecies import get_db
from app.modules.auth.dependencies import AuthDependencies, ALL_ROLES, MANAGEMENT_ROLES
from app.modules.auth.schemas import AuthContext
from app.modules.vat.service import VATService, VAT_PRESETS
from app.modules.vat.reports import VATReportService
from app.modules.vat.schemas import (
    VATSettingsCreate, VATSettingsUpdate, VATSettingsOut, TestCalculationRequest
)

ADMIN_ROLES = ["admin", "owner"]

vat_settings_router = APIRouter(prefix="/vat-settings", tags=["VAT Settings"])
vat_reports_router = APIRouter(prefix="/vat/reports", tags=["VAT Reports"])


@vat_settings_router.get("", response_model=List[VATSettingsOut])
async def list_vat_settings(
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return [VATSettingsOut.model_validate(s) for s in VATService(db).list_settings()]


@vat_settings_router.get("/presets")
async def vat_presets(
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES))
):
    """Ready-made configurations for common Sri Lankan setups."""
    return VAT_PRESETS


@vat_settings_router.get("/active", response_model=VATSettingsOut)
async def active_vat_settings(
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    """
    The configuration sales are taxed with.

    When nothing is active the built-in defaults are returned with
    **is_default** set.
    """
    return VATSettingsOut.model_validate(VATService(db).active_settings())


@vat_settings_router.post("/test-calculation")
async def test_vat_calculation(
    request: TestCalculationRequest,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return VATService(db).test_calculation(request)


@vat_settings_router.post("", response_model=VATSettingsOut, status_code=status.HTTP_201_CREATED)
async def create_vat_settings(
    settings_data: VATSettingsCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES)),
    db: Session = Depends(get_db)
):
    """Create a configuration. With **is_active** it replaces the active one."""
    return VATService(db).create_settings(settings_data, auth_context.user_id)


@vat_settings_router.get("/{settings_id}", response_model=VATSettingsOut)
async def get_vat_settings(
    settings_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return VATService(db).get_settings(settings_id)


@vat_settings_router.put("/{settings_id}", response_model=VATSettingsOut)
async def update_vat_settings(
    settings_id: UUID,
    settings_data: VATSettingsUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES)),
    db: Session = Depends(get_db)
):
    return VATService(db).update_settings(settings_id, settings_data, auth_context.user_id)


@vat_settings_router.post("/{settings_id}/activate", response_model=VATSettingsOut)
async def activate_vat_settings(
    settings_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES)),
    db: Session = Depends(get_db)
):
    return VATService(db).activate(settings_id, auth_context.user_id)


@vat_settings_router.delete("/{settings_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_vat_settings(
    settings_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ADMIN_ROLES)),
    db: Session = Depends(get_db)
):
    """Delete an inactive configuration."""
    VATService(db).delete_settings(settings_id)


# ===== REPORTS =====

@vat_reports_router.get("/summary")
async def vat_summary(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """
    VAT collected over a period.

    Totals, breakdowns by order type, payment method and category, and a
    daily trend.
    """
    return VATReportService(db).summary(start_date, end_date)


@vat_reports_router.get("/export")
async def vat_export(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """One CSV row per sale."""
    return VATReportService(db).export_csv(start_date, end_date)
