from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from datetime import timedelta
from typing import Optional, Dict, Any
import logging
import secrets

from app.core.config import settings
from app.common.utils import utc_now, money, timestamp_reference, epoch_millis
from app.modules.auth.schemas import AuthContext
from app.modules.payments.gateways import CardGateway, get_card_gateway
from app.modules.payments.models import (
    PaymentTransaction, TransactionMethod, TransactionType, TransactionStatus, CardSession, CardSessionStatus
)
from app.modules.payments.schemas import CardInitialize, CardProcess, RefundRequest
from app.modules.payments.service import PaymentTransactionService

logger = logging.getLogger(__name__)

OPEN_STATUSES = (CardSessionStatus.INITIALIZED, CardSessionStatus.PROCESSING)


class CardPaymentService:
    """Card sessions through the configured CardGateway"""

    def __init__(self, db: Session, gateway: Optional[CardGateway] = None):
        self.db = db
        self.gateway = gateway or get_card_gateway()
        self.transactions = PaymentTransactionService(db)

    def get_session(self, session_id: str) -> CardSession:
        session = self.db.query(CardSession).filter(CardSession.session_id == session_id).first()
        if not session:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Card session not found")
        return session

    def _expire_if_due(self, session: CardSession) -> bool:
        if session.status in OPEN_STATUSES and utc_now() > session.expires_at:
            session.status = CardSessionStatus.EXPIRED
            self.db.commit()
            return True
        return False

    def initialize(self, data: CardInitialize, auth_context: AuthContext) -> CardSession:
        self.transactions.get_sale(data.sale_id)
        session_id = f"cs_{epoch_millis()}_{secrets.randbelow(100000):05d}"
        metadata = {"session_id": session_id}
        if data.sale_id:
            metadata["sale_id"] = str(data.sale_id)

        try:
            intent = self.gateway.create_intent(money(data.amount), settings.CURRENCY, metadata)
        except Exception as e:
            logger.error(f"Card gateway could not create an intent: {str(e)}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Card gateway error: {str(e)}")

        session = CardSession(
            session_id=session_id,
            sale_id=data.sale_id,
            amount=money(data.amount),
            currency=settings.CURRENCY,
            description=data.description,
            status=CardSessionStatus.INITIALIZED,
            gateway=self.gateway.name,
            gateway_intent_id=intent["intent_id"],
            client_secret=intent["client_secret"],
            cashier_id=auth_context.user_id,
            expires_at=utc_now() + timedelta(minutes=settings.CARD_SESSION_TIMEOUT_MINUTES)
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        logger.info(f"Card session {session.session_id} initialized for {session.amount} via {session.gateway}")
        return session

    def _complete(self, session: CardSession, reference: Optional[str], last4: Optional[str],
                  brand: Optional[str]) -> PaymentTransaction:
        transaction = PaymentTransaction(
            transaction_id=timestamp_reference("CARD"),
            sale_id=session.sale_id,
            payment_method=TransactionMethod.CARD,
            transaction_type=TransactionType.PAYMENT,
            amount=session.amount,
            currency=session.currency,
            status=TransactionStatus.COMPLETED,
            card_last4=last4,
            card_brand=brand,
            gateway_reference=reference,
            cashier_id=session.cashier_id,
            processed_at=utc_now()
        )
        self.db.add(transaction)
        session.status = CardSessionStatus.COMPLETED
        session.card_last4 = last4
        session.card_brand = brand
        session.error_message = None
        session.transaction_id = transaction.transaction_id
        return transaction

    def process(self, data: CardProcess) -> Dict[str, Any]:
        """
        Charge the card against an initialized session.

        A declined card is not an error: the session is marked failed and
        the result carries the gateway's message.
        """
        if not data.card_token and not data.card:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Card details or token required")

        session = self.get_session(data.session_id)
        if self._expire_if_due(session):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment session has expired")
        if session.status != CardSessionStatus.INITIALIZED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Session is {session.status.value}, cannot process payment"
            )

        session.status = CardSessionStatus.PROCESSING
        self.db.flush()
        result = self.gateway.charge(
            session.gateway_intent_id,
            session.amount,
            card=data.card.model_dump() if data.card else None,
            card_token=data.card_token
        )

        transaction = None
        if result["success"]:
            transaction = self._complete(session, result["reference"], result["last4"], result["brand"])
            logger.info(f"Card session {session.session_id} approved ({result['brand']} {result['last4']})")
        else:
            session.status = CardSessionStatus.FAILED
            session.card_last4 = result["last4"]
            session.card_brand = result["brand"]
            session.error_message = result["error"]
            logger.info(f"Card session {session.session_id} failed: {result['error']}")

        self.db.commit()
        self.db.refresh(session)
        if transaction:
            self.db.refresh(transaction)
        return {"success": result["success"], "session": session, "transaction": transaction, "error": result["error"]}

    def get_status(self, session_id: str) -> CardSession:
        session = self.get_session(session_id)
        self._expire_if_due(session)
        return session

    def handle_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        try:
            event = self.gateway.verify_webhook(payload, signature)
        except ValueError as e:
            logger.warning(f"Rejected card webhook: {str(e)}")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        event_type = event["type"]
        intent = event["data"]["object"]
        session = self.db.query(CardSession).filter(CardSession.gateway_intent_id == intent["id"]).first()
        if not session:
            return {"handled": False, "detail": "Unknown payment intent"}

        if event_type == "payment_intent.succeeded":
            if session.status != CardSessionStatus.COMPLETED:
                self._complete(session, intent["id"], session.card_last4, session.card_brand)
        elif event_type == "payment_intent.payment_failed":
            error = (intent.get("last_payment_error") or {}).get("message") or "Payment failed"
            session.status = CardSessionStatus.FAILED
            session.error_message = error
        else:
            return {"handled": False, "detail": f"Ignored event {event_type}"}

        self.db.commit()
        logger.info(f"Card webhook {event_type} applied to session {session.session_id}")
        return {"handled": True, "detail": event_type}

    def refund(self, data: RefundRequest, auth_context: AuthContext) -> Dict[str, Any]:
        original, amount = self.transactions.refundable_payment(data.transaction_id, TransactionMethod.CARD, data.amount)
        result = self.gateway.refund(original.gateway_reference, amount, data.reason)
        if not result["success"]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Gateway refund failed: {result['error']}"
            )
        refund = self.transactions.record_refund(
            original, amount, data.reason, "CARDREF", auth_context.user_id,
            gateway_reference=result["refund_id"]
        )
        result = self.transactions.commit_refund(refund, original)
        logger.info(f"Card refund {refund.transaction_id} of {amount} against {original.transaction_id}")
        return result

    def cancel(self, session_id: str) -> CardSession:
        session = self.get_session(session_id)
        if session.status == CardSessionStatus.COMPLETED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot cancel a completed payment, refund it instead"
            )
        if session.status == CardSessionStatus.CANCELLED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Card session already cancelled")

        if session.status in OPEN_STATUSES and session.gateway_intent_id:
            try:
                self.gateway.cancel(session.gateway_intent_id)
            except Exception as e:
                logger.error(f"Gateway cancel failed for {session.gateway_intent_id}: {str(e)}")
        session.status = CardSessionStatus.CANCELLED
        self.db.commit()
        self.db.refresh(session)
        logger.info(f"Card session {session.session_id} cancelled")
        return session
