"""
Mobile wallet payments for Sri Lankan wallets.

The till shows a QR code, the customer pays from their wallet app and
the provider confirms through process() or the webhook. Provider calls
are simulated: a payment succeeds with MOBILE_PAYMENT_SUCCESS_RATE
probability drawn from an injectable random source.
"""
from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Dict, Any, List
from urllib.parse import urlencode
import base64
import hashlib
import hmac
import io
import logging
import random
import re

import qrcode

from app.core.config import settings
from app.common.utils import utc_now, money, timestamp_reference, epoch_millis
from app.modules.auth.schemas import AuthContext
from app.modules.notifications.service import normalize_phone
from app.modules.payments.models import (
    PaymentTransaction, TransactionMethod, TransactionType, TransactionStatus,
    MobilePaymentSession, MobileSessionStatus
)
from app.modules.payments.schemas import MobileInitialize, MobileProcess, MobileWebhook, RefundRequest
from app.modules.payments.service import PaymentTransactionService

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "whsec_"

SUPPORTED_WALLETS: Dict[str, Dict[str, Any]] = {
    "genie": {
        "name": "Genie by Dialog",
        "currencies": ["LKR"],
        "min_amount": Decimal("10.00"),
        "max_amount": Decimal("100000.00"),
        "processing_fee": Decimal("0"),
        "processing_fee_type": "fixed",
    },
    "frimi": {
        "name": "FriMi by Nations Trust Bank",
        "currencies": ["LKR"],
        "min_amount": Decimal("10.00"),
        "max_amount": Decimal("100000.00"),
        "processing_fee": Decimal("0"),
        "processing_fee_type": "fixed",
    },
    "payhere": {
        "name": "PayHere",
        "currencies": ["LKR", "USD"],
        "min_amount": Decimal("50.00"),
        "max_amount": Decimal("500000.00"),
        "processing_fee": Decimal("3.5"),
        "processing_fee_type": "percentage",
    },
    "ezcash": {
        "name": "eZ Cash",
        "currencies": ["LKR"],
        "min_amount": Decimal("10.00"),
        "max_amount": Decimal("50000.00"),
        "processing_fee": Decimal("0"),
        "processing_fee_type": "fixed",
    },
    "mcash": {
        "name": "mCash by Mobitel",
        "currencies": ["LKR"],
        "min_amount": Decimal("10.00"),
        "max_amount": Decimal("50000.00"),
        "processing_fee": Decimal("0"),
        "processing_fee_type": "fixed",
    },
}


def mask_phone(phone: Optional[str]) -> Optional[str]:
    """947***67: first three digits, stars, last two."""
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if len(digits) < 6:
        return phone
    return f"{digits[:3]}***{digits[-2:]}"


def processing_fee(provider: str, amount: Decimal) -> Decimal:
    wallet = SUPPORTED_WALLETS[provider]
    if wallet["processing_fee_type"] == "percentage":
        return money(amount * wallet["processing_fee"] / 100)
    return money(wallet["processing_fee"])


def qr_data_url(payload: str) -> str:
    image = qrcode.make(payload)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def sign_webhook(payload: bytes, secret: Optional[str] = None) -> str:
    secret = secret or settings.MOBILE_WEBHOOK_SECRET
    return SIGNATURE_PREFIX + hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def list_wallets() -> List[Dict[str, Any]]:
    return [{"provider": key, **wallet} for key, wallet in SUPPORTED_WALLETS.items()]


class MobilePaymentService:
    """QR wallet sessions, confirmation, refunds and cancellation"""

    def __init__(self, db: Session, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng or random.Random()
        self.transactions = PaymentTransactionService(db)

    def get_session(self, session_id: str) -> MobilePaymentSession:
        session = self.db.query(MobilePaymentSession).filter(
            MobilePaymentSession.session_id == session_id
        ).first()
        if not session:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Mobile payment session not found")
        return session

    def _expire_if_due(self, session: MobilePaymentSession) -> bool:
        if session.status in (MobileSessionStatus.PENDING, MobileSessionStatus.PROCESSING) \
                and utc_now() > session.expires_at:
            session.status = MobileSessionStatus.EXPIRED
            self.db.commit()
            return True
        return False

    def initialize(self, data: MobileInitialize, auth_context: AuthContext) -> MobilePaymentSession:
        provider = data.wallet_provider.lower()
        wallet = SUPPORTED_WALLETS.get(provider)
        if not wallet:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unsupported wallet provider: {data.wallet_provider}"
            )
        amount = money(data.amount)
        if amount < wallet["min_amount"] or amount > wallet["max_amount"]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Amount must be between {wallet['min_amount']} and {wallet['max_amount']} for {wallet['name']}"
            )
        phone = None
        if data.customer_phone:
            try:
                phone = normalize_phone(data.customer_phone)
            except ValueError as e:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        self.transactions.get_sale(data.sale_id)

        session_id = timestamp_reference("MPS", 5, self.rng)
        payload = f"{provider}://pay?" + urlencode({
            "session": session_id,
            "amount": f"{amount:.2f}",
            "merchant": settings.RESTAURANT_NAME,
        })
        session = MobilePaymentSession(
            session_id=session_id,
            sale_id=data.sale_id,
            wallet_provider=provider,
            amount=amount,
            processing_fee=processing_fee(provider, amount),
            currency=settings.CURRENCY,
            customer_phone=mask_phone(phone),
            qr_code=qr_data_url(payload),
            payment_url=payload,
            status=MobileSessionStatus.PENDING,
            cashier_id=auth_context.user_id,
            expires_at=utc_now() + timedelta(minutes=settings.MOBILE_SESSION_TIMEOUT_MINUTES)
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        logger.info(f"Mobile session {session.session_id} created: {amount} via {provider}")
        return session

    def _complete(self, session: MobilePaymentSession, reference: str) -> PaymentTransaction:
        transaction = PaymentTransaction(
            transaction_id=timestamp_reference("MOB", 3, self.rng),
            sale_id=session.sale_id,
            payment_method=TransactionMethod.MOBILE,
            transaction_type=TransactionType.PAYMENT,
            amount=session.amount,
            currency=session.currency,
            status=TransactionStatus.COMPLETED,
            wallet_provider=session.wallet_provider,
            customer_phone=session.customer_phone,
            gateway_reference=reference,
            cashier_id=session.cashier_id,
            processed_at=utc_now()
        )
        self.db.add(transaction)
        session.status = MobileSessionStatus.COMPLETED
        session.provider_reference = reference
        session.error_message = None
        session.transaction_id = transaction.transaction_id
        return transaction

    def process(self, data: MobileProcess) -> Dict[str, Any]:
        session = self.get_session(data.session_id)
        if self._expire_if_due(session):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="QR code has expired")
        if session.status == MobileSessionStatus.COMPLETED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment already processed")
        if session.status != MobileSessionStatus.PENDING:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Session is {session.status.value}, cannot process payment"
            )

        session.status = MobileSessionStatus.PROCESSING
        session.attempts = (session.attempts or 0) + 1
        self.db.flush()

        transaction = None
        error = None
        if self.rng.random() < settings.MOBILE_PAYMENT_SUCCESS_RATE:
            transaction = self._complete(session, f"{session.wallet_provider.upper()}-{epoch_millis()}")
            logger.info(f"Mobile session {session.session_id} paid ({session.provider_reference})")
        else:
            error = "Insufficient wallet balance"
            session.status = MobileSessionStatus.FAILED
            session.error_message = error
            logger.info(f"Mobile session {session.session_id} failed: {error}")

        self.db.commit()
        self.db.refresh(session)
        if transaction:
            self.db.refresh(transaction)
        return {"success": transaction is not None, "session": session, "transaction": transaction, "error": error}

    def get_status(self, session_id: str) -> MobilePaymentSession:
        session = self.get_session(session_id)
        self._expire_if_due(session)
        return session

    def handle_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Provider callback signed with whsec_ + HMAC-SHA256 of the raw body."""
        if not signature or not hmac.compare_digest(sign_webhook(payload), signature):
            logger.warning("Rejected mobile wallet webhook with bad signature")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature")
        try:
            event = MobileWebhook.model_validate_json(payload)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid webhook payload: {e}")

        session = self.db.query(MobilePaymentSession).filter(
            MobilePaymentSession.session_id == event.session_id
        ).first()
        if not session:
            return {"handled": False, "detail": "Unknown session"}
        if session.status == MobileSessionStatus.COMPLETED:
            return {"handled": False, "detail": "Session already completed"}

        if event.status == "success":
            self._complete(session, event.reference or f"{session.wallet_provider.upper()}-{epoch_millis()}")
        else:
            session.status = MobileSessionStatus.FAILED
            session.error_message = "Payment failed via webhook"
        self.db.commit()
        logger.info(f"Mobile webhook {event.status} applied to session {session.session_id}")
        return {"handled": True, "detail": event.status}

    def refund(self, data: RefundRequest, auth_context: AuthContext) -> Dict[str, Any]:
        original, amount = self.transactions.refundable_payment(
            data.transaction_id, TransactionMethod.MOBILE, data.amount
        )
        refund = self.transactions.record_refund(original, amount, data.reason, "MOBREF", auth_context.user_id)
        result = self.transactions.commit_refund(refund, original)
        logger.info(f"Mobile refund {refund.transaction_id} of {amount} against {original.transaction_id}")
        return result

    def cancel(self, session_id: str) -> MobilePaymentSession:
        session = self.get_session(session_id)
        if session.status == MobileSessionStatus.COMPLETED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot cancel completed payment. Please process a refund instead."
            )
        if session.status == MobileSessionStatus.CANCELLED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment session already cancelled")
        session.status = MobileSessionStatus.CANCELLED
        self.db.commit()
        self.db.refresh(session)
        logger.info(f"Mobile session {session.session_id} cancelled")
        return session
