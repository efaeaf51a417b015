from fastapi import APIRouter, Depends, Query, Request, Header, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID
from datetime import date
from decimal import Decimal

from app.dependencies.dbDependecies import get_db
from app.modules.auth.dependencies import AuthDependencies, MANAGEMENT_ROLES, FRONT_OF_HOUSE_ROLES
from app.modules.auth.schemas import AuthContext
from app.modules.payments.models import TransactionMethod, TransactionStatus
from app.modules.payments.service import PaymentTransactionService
from app.modules.payments.cash import CashPaymentService, DEFAULT_DISCREPANCY_THRESHOLD
from app.modules.payments.card import CardPaymentService
from app.modules.payments.mobile import MobilePaymentService, list_wallets
from app.modules.payments.schemas import (
    LKR_DENOMINATIONS, TransactionOut, RefundRequest, RefundResult, PaymentSummary,
    CashPaymentRequest, CashPaymentResult, DrawerOpen, DrawerClose, DrawerReconcile, DrawerOut,
    DrawerStatusOut, CashReport,
    CardInitialize, CardProcess, CardSessionOut, CardPaymentResult,
    WalletOut, MobileInitialize, MobileProcess, MobileSessionOut, MobilePaymentResult, WebhookAck
)

payments_router = APIRouter(prefix="/payments", tags=["Payments"])


def _transactions(items) -> List[TransactionOut]:
    return [TransactionOut.model_validate(t) for t in items]


# ===== TRANSACTIONS =====

@payments_router.get("/transactions", response_model=List[TransactionOut])
def list_transactions(
    method: Optional[TransactionMethod] = Query(None),
    transaction_status: Optional[TransactionStatus] = Query(None, alias="status"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return _transactions(PaymentTransactionService(db).list_transactions(
        method, transaction_status, start_date, end_date, limit, offset
    ))


@payments_router.get("/summary", response_model=PaymentSummary)
def payment_summary(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Count and amount per payment method and status. Refunds count negative."""
    return PaymentTransactionService(db).summary(start_date, end_date)


# ===== CASH =====

@payments_router.get("/cash/denominations", response_model=List[int])
def cash_denominations(
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES))
):
    return LKR_DENOMINATIONS


@payments_router.post("/cash/process", response_model=CashPaymentResult, status_code=status.HTTP_201_CREATED)
def process_cash_payment(
    payment: CashPaymentRequest,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Take cash for an amount.

    Returns the transaction plus the change split into LKR notes and
    coins. When **denominations** are given they must add up to the
    amount tendered.
    """
    result = CashPaymentService(db).process_payment(payment, auth_context)
    return CashPaymentResult(transaction=TransactionOut.model_validate(result["transaction"]), change=result["change"])


@payments_router.post("/cash/drawer/open", response_model=DrawerOut, status_code=status.HTTP_201_CREATED)
def open_cash_drawer(
    drawer_data: DrawerOpen,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return CashPaymentService(db).open_drawer(drawer_data, auth_context)


@payments_router.post("/cash/drawer/close", response_model=DrawerOut)
def close_cash_drawer(
    drawer_data: DrawerClose,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return CashPaymentService(db).close_drawer(drawer_data, auth_context)


@payments_router.get("/cash/drawer/status", response_model=DrawerStatusOut)
def cash_drawer_status(
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    result = CashPaymentService(db).drawer_status(auth_context)
    return DrawerStatusOut(drawer=DrawerOut.model_validate(result["drawer"]), transactions=result["transactions"])


@payments_router.post("/cash/drawer/{drawer_id}/reconcile", response_model=DrawerOut)
def reconcile_cash_drawer(
    drawer_id: UUID,
    reconcile_data: DrawerReconcile,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return CashPaymentService(db).reconcile_drawer(drawer_id, reconcile_data.notes, auth_context)


@payments_router.post("/cash/refund", response_model=RefundResult)
def refund_cash_payment(
    refund_data: RefundRequest,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return _refund_result(CashPaymentService(db).refund(refund_data, auth_context))


@payments_router.get("/cash/report", response_model=CashReport)
def cash_report(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return CashPaymentService(db).report(start_date, end_date)


@payments_router.get("/cash/discrepancies", response_model=List[DrawerOut])
def cash_discrepancies(
    threshold: Decimal = Query(DEFAULT_DISCREPANCY_THRESHOLD, ge=0),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Closed drawers whose counted cash is off by more than **threshold**."""
    return [DrawerOut.model_validate(d) for d in CashPaymentService(db).discrepancies(threshold, start_date, end_date)]


def _refund_result(result: dict) -> RefundResult:
    return RefundResult(
        refund=TransactionOut.model_validate(result["refund"]),
        original=TransactionOut.model_validate(result["original"])
    )


# ===== CARD =====

@payments_router.post("/card/initialize", response_model=CardSessionOut, status_code=status.HTTP_201_CREATED)
def initialize_card_payment(
    card_data: CardInitialize,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """Open a card session with the gateway. It expires after CARD_SESSION_TIMEOUT_MINUTES."""
    return CardPaymentService(db).initialize(card_data, auth_context)


@payments_router.post("/card/process", response_model=CardPaymentResult)
def process_card_payment(
    card_data: CardProcess,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Charge a card on an initialized session.

    Declines come back with **success** false and the gateway message;
    expired or already used sessions are rejected with 400.
    """
    result = CardPaymentService(db).process(card_data)
    return CardPaymentResult(
        success=result["success"],
        session=CardSessionOut.model_validate(result["session"]),
        transaction=TransactionOut.model_validate(result["transaction"]) if result["transaction"] else None,
        error=result["error"]
    )


@payments_router.get("/card/status/{session_id}", response_model=CardSessionOut)
def card_payment_status(
    session_id: str,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return CardPaymentService(db).get_status(session_id)


@payments_router.post("/card/webhook", response_model=WebhookAck)
async def card_webhook(
    request: Request,
    x_signature: Optional[str] = Header(None),
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """Gateway callback. The simulated gateway signs with X-Signature, Stripe with Stripe-Signature."""
    payload = await request.body()
    return await run_in_threadpool(CardPaymentService(db).handle_webhook, payload, stripe_signature or x_signature)


@payments_router.post("/card/refund", response_model=RefundResult)
def refund_card_payment(
    refund_data: RefundRequest,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return _refund_result(CardPaymentService(db).refund(refund_data, auth_context))


@payments_router.get("/card/transactions", response_model=List[TransactionOut])
def card_transactions(
    transaction_status: Optional[TransactionStatus] = Query(None, alias="status"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return _transactions(PaymentTransactionService(db).list_transactions(
        TransactionMethod.CARD, transaction_status, start_date, end_date
    ))


@payments_router.post("/card/cancel/{session_id}", response_model=CardSessionOut)
def cancel_card_payment(
    session_id: str,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return CardPaymentService(db).cancel(session_id)


# ===== MOBILE WALLETS =====

@payments_router.get("/mobile/wallets", response_model=List[WalletOut])
def mobile_wallets(
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES))
):
    return list_wallets()


@payments_router.post("/mobile/initialize", response_model=MobileSessionOut, status_code=status.HTTP_201_CREATED)
def initialize_mobile_payment(
    mobile_data: MobileInitialize,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """Create a wallet session with a QR code (PNG data URL) for the customer to scan."""
    return MobilePaymentService(db).initialize(mobile_data, auth_context)


@payments_router.post("/mobile/process", response_model=MobilePaymentResult)
def process_mobile_payment(
    mobile_data: MobileProcess,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    result = MobilePaymentService(db).process(mobile_data)
    return MobilePaymentResult(
        success=result["success"],
        session=MobileSessionOut.model_validate(result["session"]),
        transaction=TransactionOut.model_validate(result["transaction"]) if result["transaction"] else None,
        error=result["error"]
    )


@payments_router.get("/mobile/status/{session_id}", response_model=MobileSessionOut)
def mobile_payment_status(
    session_id: str,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return MobilePaymentService(db).get_status(session_id)


@payments_router.post("/mobile/webhook", response_model=WebhookAck)
async def mobile_webhook(
    request: Request,
    x_wallet_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    payload = await request.body()
    return await run_in_threadpool(MobilePaymentService(db).handle_webhook, payload, x_wallet_signature)


@payments_router.post("/mobile/refund", response_model=RefundResult)
def refund_mobile_payment(
    refund_data: RefundRequest,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return _refund_result(MobilePaymentService(db).refund(refund_data, auth_context))


@payments_router.get("/mobile/transactions", response_model=List[TransactionOut])
def mobile_transactions(
    transaction_status: Optional[TransactionStatus] = Query(None, alias="status"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return _transactions(PaymentTransactionService(db).list_transactions(
        TransactionMethod.MOBILE, transaction_status, start_date, end_date
    ))


@payments_router.post("/mobile/cancel/{session_id}", response_model=MobileSessionOut)
def cancel_mobile_payment(
    session_id: str,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return MobilePaymentService(db).cancel(session_id)
