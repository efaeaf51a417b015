from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID
from datetime import date

from app.dependencies.dbDependecies import get_db
from app.modules.auth.dependencies import AuthDependencies, ALL_ROLES, MANAGEMENT_ROLES, FRONT_OF_HOUSE_ROLES
from app.modules.auth.schemas import AuthContext
from app.modules.receipts.service import ReceiptService
from app.modules.receipts.schemas import (
    ReceiptCreate, ReceiptOut, ReceiptDetail, ReceiptVoid, ReceiptEmail, ReceiptSMS,
    DeliveryResult, ReceiptStats, LanguageOut, ReceiptAuditEntry, RenderFormatEnum
)

receipts_router = APIRouter(prefix="/receipts", tags=["Receipts"])


def _detail(result: dict) -> ReceiptDetail:
    return ReceiptDetail(
        receipt=ReceiptOut.model_validate(result["receipt"]),
        template=result["template"],
        text=result["text"],
        html=result["html"]
    )


def _delivery(result: dict) -> DeliveryResult:
    return DeliveryResult(
        receipt=ReceiptOut.model_validate(result["receipt"]),
        success=result["success"],
        message_id=result.get("message_id"),
        error=result.get("error")
    )


@receipts_router.post("", response_model=ReceiptDetail, status_code=status.HTTP_201_CREATED)
def create_receipt(
    receipt_data: ReceiptCreate,
    request: Request,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Generate a receipt for a sale.

    The response carries the template plus a text rendering for print
    and SMS receipts or HTML for email and digital ones. Email and SMS
    receipts with a recipient are sent straight away.
    """
    service = ReceiptService(db)
    receipt = service.create_receipt(
        receipt_data,
        auth_context,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )
    return _detail(service.render(receipt))


@receipts_router.get("/stats", response_model=ReceiptStats)
def receipt_stats(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return ReceiptService(db).stats(start_date, end_date)


@receipts_router.get("/languages", response_model=List[LanguageOut])
def receipt_languages(
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES))
):
    return ReceiptService.languages()


@receipts_router.get("/audit", response_model=List[ReceiptAuditEntry])
def receipt_audit(
    sale_id: Optional[UUID] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    voided: Optional[bool] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Who generated, printed, sent or voided which receipt."""
    return ReceiptService(db).audit(sale_id, start_date, end_date, voided)


@receipts_router.get("/sale/{sale_id}", response_model=List[ReceiptOut])
def receipts_for_sale(
    sale_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return [ReceiptOut.model_validate(r) for r in ReceiptService(db).list_for_sale(sale_id)]


@receipts_router.get("/{receipt_id}", response_model=ReceiptDetail)
def get_receipt(
    receipt_id: UUID,
    format: RenderFormatEnum = Query(RenderFormatEnum.json),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    """Receipt with its template; **format** adds a text or HTML rendering."""
    service = ReceiptService(db)
    return _detail(service.render(service.get_receipt(receipt_id), format.value))


@receipts_router.post("/{receipt_id}/duplicate", response_model=ReceiptDetail, status_code=status.HTTP_201_CREATED)
def duplicate_receipt(
    receipt_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    service = ReceiptService(db)
    return _detail(service.render(service.duplicate(receipt_id, auth_context)))


@receipts_router.post("/{receipt_id}/void", response_model=ReceiptOut)
def void_receipt(
    receipt_id: UUID,
    void_data: ReceiptVoid,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return ReceiptService(db).void(receipt_id, void_data.reason, auth_context)


@receipts_router.post("/{receipt_id}/print", response_model=ReceiptOut)
def print_receipt(
    receipt_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return ReceiptService(db).mark_printed(receipt_id)


@receipts_router.post("/{receipt_id}/email", response_model=DeliveryResult)
def email_receipt(
    receipt_id: UUID,
    email_data: ReceiptEmail,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return _delivery(ReceiptService(db).send_email(receipt_id, email_data.email))


@receipts_router.post("/{receipt_id}/sms", response_model=DeliveryResult)
def sms_receipt(
    receipt_id: UUID,
    sms_data: ReceiptSMS,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return _delivery(ReceiptService(db).send_sms(receipt_id, sms_data.phone))


@receipts_router.post("/{receipt_id}/retry", response_model=DeliveryResult)
def retry_receipt_delivery(
    receipt_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """Resend through the last used channel, up to RECEIPT_MAX_RETRIES attempts."""
    return _delivery(ReceiptService(db).retry(receipt_id))
