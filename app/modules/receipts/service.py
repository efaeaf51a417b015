from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from datetime import date
from typing import Optional, List, Dict, Any
from uuid import UUID
import logging

from app.core.config import settings
from app.common.utils import utc_now, timestamp_reference, date_range_bounds
from app.modules.auth.schemas import AuthContext
from app.modules.sales.models import Sale
from app.modules.sales.schemas import SaleOut
from app.modules.receipts.models import Receipt, ReceiptType, ReceiptFormat, DeliveryStatus
from app.modules.receipts.schemas import ReceiptCreate
from app.modules.receipts.builder import ReceiptTemplateBuilder, render_plain_text, render_html
from app.modules.receipts.languages import available_languages, CURRENCY_PREFIX
from app.modules.notifications.service import NotificationService

logger = logging.getLogger(__name__)

TEMPLATE_VERSION = "1.0"
LANGUAGE_NAMES = {"english": "English", "sinhala": "සිංහල", "tamil": "தமிழ்"}


def sale_snapshot(sale: Sale) -> Dict[str, Any]:
    return jsonable_encoder(SaleOut.model_validate(sale))


class ReceiptService:
    """Receipt generation, rendering, delivery and audit"""

    def __init__(self, db: Session, notifications: Optional[NotificationService] = None):
        self.db = db
        self._notifications = notifications

    @property
    def notifications(self) -> NotificationService:
        if self._notifications is None:
            self._notifications = NotificationService()
        return self._notifications

    def _sale(self, sale_id: UUID) -> Sale:
        sale = self.db.query(Sale).filter(Sale.id == sale_id).first()
        if not sale:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sale not found")
        return sale

    def get_receipt(self, receipt_id: UUID) -> Receipt:
        receipt = self.db.query(Receipt).filter(Receipt.id == receipt_id).first()
        if not receipt:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt not found")
        return receipt

    def build_receipt(
        self,
        sale: Sale,
        receipt_type: ReceiptType = ReceiptType.ORIGINAL,
        receipt_format: ReceiptFormat = ReceiptFormat.PRINT,
        language: str = "english",
        generated_by: Optional[UUID] = None,
        generated_by_name: Optional[str] = None,
        receipt_number: Optional[str] = None,
        **extra
    ) -> Receipt:
        """Unsaved Receipt for a sale with its template snapshot"""
        receipt_number = receipt_number or timestamp_reference("RCP")
        builder = ReceiptTemplateBuilder(language)
        template = builder.build(sale, receipt_type.value, receipt_number)
        delivery_status = (
            DeliveryStatus.PENDING
            if receipt_format in (ReceiptFormat.EMAIL, ReceiptFormat.SMS)
            else DeliveryStatus.NOT_APPLICABLE
        )
        return Receipt(
            receipt_number=receipt_number,
            sale_id=sale.id,
            receipt_type=receipt_type,
            format=receipt_format,
            language=builder.language,
            order_type=sale.order_type.value,
            template_version=TEMPLATE_VERSION,
            receipt_data={"template": template, "sale": sale_snapshot(sale)},
            delivery_status=delivery_status,
            generated_by=generated_by,
            generated_by_name=generated_by_name,
            **extra
        )

    def create_receipt(
        self,
        data: ReceiptCreate,
        auth_context: AuthContext,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Receipt:
        sale = self._sale(data.sale_id)
        try:
            receipt = self.build_receipt(
                sale,
                receipt_type=data.receipt_type,
                receipt_format=data.format,
                language=data.language.value,
                generated_by=auth_context.user_id,
                generated_by_name=auth_context.display_name,
                delivery_method=data.delivery_method,
                ip_address=ip_address,
                user_agent=user_agent[:500] if user_agent else None
            )
            self.db.add(receipt)
            self.db.flush()

            if data.format == ReceiptFormat.EMAIL and data.recipient_email:
                self.notifications.deliver_receipt(receipt, "email", data.recipient_email)
            elif data.format == ReceiptFormat.SMS and data.recipient_phone:
                self.notifications.deliver_receipt(receipt, "sms", data.recipient_phone)

            self.db.commit()
            self.db.refresh(receipt)
            logger.info(f"Receipt {receipt.receipt_number} generated for sale {sale.sale_number}")
            return receipt
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error creating receipt")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating receipt: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    @staticmethod
    def render(receipt: Receipt, output: Optional[str] = None) -> Dict[str, Any]:
        """
        Template plus its rendering.

        output defaults to the receipt's own format: print and sms get
        text, email and digital get html.
        """
        template = receipt.receipt_data["template"]
        if output is None:
            output = "text" if receipt.format in (ReceiptFormat.PRINT, ReceiptFormat.SMS) else "html"
        result = {"receipt": receipt, "template": template, "text": None, "html": None}
        if output == "text":
            result["text"] = render_plain_text(template)
        elif output == "html":
            result["html"] = render_html(template)
        return result

    def list_for_sale(self, sale_id: UUID) -> List[Receipt]:
        return (
            self.db.query(Receipt)
            .filter(Receipt.sale_id == sale_id)
            .order_by(Receipt.created_at.desc())
            .all()
        )

    def duplicate(self, receipt_id: UUID, auth_context: AuthContext) -> Receipt:
        original = self.get_receipt(receipt_id)
        receipt = self.build_receipt(
            original.sale,
            receipt_type=ReceiptType.DUPLICATE,
            receipt_format=original.format,
            language=original.language,
            generated_by=auth_context.user_id,
            generated_by_name=auth_context.display_name
        )
        self.db.add(receipt)
        self.db.commit()
        self.db.refresh(receipt)
        logger.info(f"Duplicate {receipt.receipt_number} of {original.receipt_number} generated")
        return receipt

    def void(self, receipt_id: UUID, reason: str, auth_context: AuthContext) -> Receipt:
        receipt = self.get_receipt(receipt_id)
        if receipt.is_voided:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Receipt is already voided")
        receipt.is_voided = True
        receipt.voided_at = utc_now()
        receipt.voided_by = auth_context.user_id
        receipt.void_reason = reason
        self.db.commit()
        self.db.refresh(receipt)
        logger.info(f"Receipt {receipt.receipt_number} voided by {auth_context.username}: {reason}")
        return receipt

    def mark_printed(self, receipt_id: UUID) -> Receipt:
        receipt = self.get_receipt(receipt_id)
        if receipt.is_voided:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot print a voided receipt")
        receipt.print_count = (receipt.print_count or 0) + 1
        self.db.commit()
        self.db.refresh(receipt)
        return receipt

    def _deliver(self, receipt: Receipt, method: str, recipient: str) -> Dict[str, Any]:
        if receipt.is_voided:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot deliver a voided receipt")
        result = self.notifications.deliver_receipt(receipt, method, recipient)
        self.db.commit()
        self.db.refresh(receipt)
        return {"receipt": receipt, **result}

    def send_email(self, receipt_id: UUID, email: str) -> Dict[str, Any]:
        return self._deliver(self.get_receipt(receipt_id), "email", email)

    def send_sms(self, receipt_id: UUID, phone: str) -> Dict[str, Any]:
        return self._deliver(self.get_receipt(receipt_id), "sms", phone)

    def retry(self, receipt_id: UUID) -> Dict[str, Any]:
        receipt = self.get_receipt(receipt_id)
        if receipt.is_voided:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot deliver a voided receipt")
        if receipt.delivery_attempts >= settings.RECEIPT_MAX_RETRIES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Maximum delivery attempts ({settings.RECEIPT_MAX_RETRIES}) reached"
            )
        recipient = receipt.recipient_email if receipt.delivery_method == "email" else receipt.recipient_phone
        if receipt.delivery_method not in ("email", "sms") or not recipient:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Receipt has no previous email or SMS delivery to retry"
            )
        return self._deliver(receipt, receipt.delivery_method, recipient)

    def retry_failed_deliveries(self) -> int:
        """Retry every failed delivery that still has attempts left"""
        receipts = (
            self.db.query(Receipt)
            .filter(
                Receipt.delivery_status == DeliveryStatus.FAILED,
                Receipt.is_voided == False,
                Receipt.delivery_attempts < settings.RECEIPT_MAX_RETRIES
            )
            .all()
        )
        sent = 0
        for receipt in receipts:
            recipient = receipt.recipient_email if receipt.delivery_method == "email" else receipt.recipient_phone
            if not recipient:
                continue
            result = self.notifications.deliver_receipt(receipt, receipt.delivery_method, recipient)
            sent += 1 if result["success"] else 0
        self.db.commit()
        logger.info(f"Retried {len(receipts)} failed receipt deliveries, {sent} sent")
        return sent

    def _filtered(self, sale_id: Optional[UUID] = None, start_date: Optional[date] = None,
                  end_date: Optional[date] = None, voided: Optional[bool] = None):
        query = self.db.query(Receipt)
        start, end = date_range_bounds(start_date, end_date)
        if sale_id:
            query = query.filter(Receipt.sale_id == sale_id)
        if start:
            query = query.filter(Receipt.created_at >= start)
        if end:
            query = query.filter(Receipt.created_at < end)
        if voided is not None:
            query = query.filter(Receipt.is_voided == voided)
        return query

    def stats(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> Dict[str, Any]:
        receipts = self._filtered(start_date=start_date, end_date=end_date).all()
        result = {
            "total": len(receipts),
            "by_type": {},
            "by_format": {},
            "by_language": {},
            "by_delivery_status": {},
            "voided": 0,
        }
        for receipt in receipts:
            for key, value in (
                ("by_type", receipt.receipt_type.value),
                ("by_format", receipt.format.value),
                ("by_language", receipt.language),
                ("by_delivery_status", receipt.delivery_status.value),
            ):
                result[key][value] = result[key].get(value, 0) + 1
            if receipt.is_voided:
                result["voided"] += 1
        return result

    def audit(self, sale_id: Optional[UUID] = None, start_date: Optional[date] = None,
              end_date: Optional[date] = None, voided: Optional[bool] = None) -> List[Dict[str, Any]]:
        receipts = self._filtered(sale_id, start_date, end_date, voided).order_by(Receipt.created_at.desc()).all()
        return [
            {
                "receipt_number": r.receipt_number,
                "sale_id": r.sale_id,
                "sale_number": r.sale.sale_number if r.sale else None,
                "receipt_type": r.receipt_type,
                "format": r.format,
                "language": r.language,
                "generated_by_name": r.generated_by_name,
                "generated_at": r.created_at,
                "print_count": r.print_count,
                "delivery_status": r.delivery_status,
                "delivery_attempts": r.delivery_attempts,
                "is_voided": r.is_voided,
                "voided_at": r.voided_at,
                "void_reason": r.void_reason,
                "ip_address": r.ip_address,
                "user_agent": r.user_agent,
            }
            for r in receipts
        ]

    @staticmethod
    def languages() -> List[Dict[str, str]]:
        return [
            {"code": code, "name": LANGUAGE_NAMES.get(code, code.title()), "currency": CURRENCY_PREFIX[code]}
            for code in available_languages()
        ]
