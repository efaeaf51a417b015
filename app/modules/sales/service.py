from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from decimal import Decimal
from datetime import date, datetime
from typing import Optional, List
from uuid import UUID
import logging

from app.common.utils import utc_now, to_decimal, money, date_range_bounds
from app.common.sequences import next_sequence_number
from app.modules.auth.schemas import AuthContext
from app.modules.sales.models import Sale, SaleStatus, OrderType, PaymentMethod
from app.modules.sales.schemas import SaleCreate, SaleStatusUpdate
from app.modules.vat.schemas import SaleLineIn
from app.modules.vat.service import VATService
from app.modules.products.service import ProductService
from app.modules.inventory.service import IngredientService

logger = logging.getLogger(__name__)

CLOSED_STATUSES = (SaleStatus.CANCELLED, SaleStatus.VOIDED)


def next_sale_number(db: Session, when: Optional[datetime] = None) -> str:
    """SALE-YYYYMMDD-NNNN, numbered per day"""
    when = when or utc_now()
    return next_sequence_number(db, Sale.sale_number, f"SALE-{when.strftime('%Y%m%d')}-")


class SaleService:
    """Ringing up, listing and reporting on sales"""

    def __init__(self, db: Session):
        self.db = db

    def get_sale(self, sale_id: UUID) -> Sale:
        sale = self.db.query(Sale).filter(Sale.id == sale_id).first()
        if not sale:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sale not found")
        return sale

    def calculate_vat(self, lines: List[SaleLineIn]) -> dict:
        return VATService(self.db).bill_vat(lines)

    def _deduct_stock(self, sale: Sale, bill_items: List[dict], location_id: Optional[UUID], user_id: UUID) -> List[str]:
        """
        Take sold products and recipe ingredients out of stock.

        Products are drawn from batches by expiry; menu items consume their
        recipe. Returns warnings for menu items with no recipe.
        """
        warnings = []
        products = ProductService(self.db)
        ingredients = IngredientService(self.db)
        for line in bill_items:
            item_id = UUID(line["product"])
            if line["item_type"] == "product":
                product = products.get_product(item_id)
                if product.track_inventory:
                    products.deduct_stock(item_id, line["quantity"], line.get("batch_number"))
                continue

            result = ingredients.deduct_for_menu_item(
                item_id,
                line["quantity"],
                portion_id=UUID(line["portion_id"]) if line.get("portion_id") else None,
                user_id=user_id,
                location_id=location_id,
                reference_id=sale.id,
                reference_number=sale.sale_number
            )
            if not result["success"]:
                message = f"{line['product_name']}: {result['message']}"
                logger.warning(f"Sale {sale.sale_number}: no stock deducted for {message}")
                warnings.append(message)
        return warnings

    def create_sale(self, data: SaleCreate, auth_context: AuthContext) -> Sale:
        """
        Ring up a sale.

        VAT, stock deduction and the sale row are one transaction: any
        failure rolls the whole sale back.
        """
        try:
            bill = VATService(self.db).bill_vat(data.items)
            total = bill["total_amount"]
            amount_paid = to_decimal(data.amount_paid)

            if data.payment_method.value == PaymentMethod.CASH.value:
                if amount_paid < total:
                    raise HTTPException(
                        status_code=status.HTTP_400_BAD_REQUEST,
                        detail=f"Insufficient payment. Total: {total}, paid: {amount_paid}"
                    )
            elif amount_paid == 0:
                amount_paid = total

            if data.offline_id and self.db.query(Sale).filter(Sale.offline_id == data.offline_id).first():
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Sale with offline id '{data.offline_id}' already exists"
                )

            sale = Sale(
                sale_number=next_sale_number(self.db),
                items=jsonable_encoder(bill["items"]),
                subtotal=bill["subtotal"],
                vat_amount=bill["vat_amount"] + bill["service_charge_vat"],
                vat_rate=bill["vat_rate"],
                service_charge=bill["service_charge"],
                total_amount=total,
                payment_method=PaymentMethod(data.payment_method.value),
                amount_paid=money(amount_paid),
                change_given=money(max(amount_paid - total, Decimal("0"))),
                cashier_id=auth_context.user_id,
                cashier_name=auth_context.display_name,
                order_type=OrderType(data.order_type.value),
                table_number=data.table_number,
                customer_name=data.customer_name,
                notes=data.notes,
                status=SaleStatus.COMPLETED,
                offline_id=data.offline_id,
                is_synced=True,
                sale_date=utc_now()
            )
            self.db.add(sale)
            self.db.flush()

            warnings = self._deduct_stock(sale, bill["items"], data.location_id, auth_context.user_id)

            self.db.commit()
            self.db.refresh(sale)
            sale.inventory_warnings = warnings
            logger.info(f"Sale {sale.sale_number} recorded: {sale.total_amount} by {sale.cashier_name}")
            return sale

        except HTTPException:
            self.db.rollback()
            raise
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error recording sale")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating sale: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def _in_range(self, query, start_date: Optional[date], end_date: Optional[date]):
        start, end = date_range_bounds(start_date, end_date)
        if start:
            query = query.filter(Sale.sale_date >= start)
        if end:
            query = query.filter(Sale.sale_date < end)
        return query

    def list_sales(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        order_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Sale]:
        query = self._in_range(self.db.query(Sale), start_date, end_date)
        if order_type:
            query = query.filter(Sale.order_type == OrderType(order_type))
        return query.order_by(Sale.sale_date.desc()).offset(offset).limit(limit).all()

    def report(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> dict:
        """Totals over sales that were not cancelled or voided"""
        sales = (
            self._in_range(self.db.query(Sale), start_date, end_date)
            .filter(Sale.status.notin_(CLOSED_STATUSES))
            .all()
        )
        breakdown = {t.value: {"count": 0, "revenue": Decimal("0")} for t in OrderType}
        total_revenue = Decimal("0")
        total_vat = Decimal("0")
        total_subtotal = Decimal("0")
        for sale in sales:
            total_revenue += to_decimal(sale.total_amount)
            total_vat += to_decimal(sale.vat_amount)
            total_subtotal += to_decimal(sale.subtotal)
            bucket = breakdown[sale.order_type.value]
            bucket["count"] += 1
            bucket["revenue"] += to_decimal(sale.total_amount)

        start, end = date_range_bounds(start_date, end_date)
        return {
            "start_date": start,
            "end_date": end,
            "total_sales": len(sales),
            "total_revenue": money(total_revenue),
            "total_vat": money(total_vat),
            "total_subtotal": money(total_subtotal),
            "order_type_breakdown": breakdown,
        }

    def update_status(self, sale_id: UUID, data: SaleStatusUpdate) -> Sale:
        sale = self.get_sale(sale_id)
        if sale.status in CLOSED_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot change status of a {sale.status.value} sale"
            )
        new_status = SaleStatus(data.status.value)
        if new_status in CLOSED_STATUSES and not (data.cancellation_reason or "").strip():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A cancellation reason is required to cancel or void a sale"
            )
        sale.status = new_status
        if new_status in CLOSED_STATUSES:
            sale.cancellation_reason = data.cancellation_reason.strip()
        self.db.commit()
        self.db.refresh(sale)
        logger.info(f"Sale {sale.sale_number} marked {new_status.value}")
        return sale

    def vat_breakdown(self, sale_id: UUID) -> dict:
        sale = self.get_sale(sale_id)
        calculator = VATService(self.db).calculator()
        return {
            "sale_id": sale.id,
            "sale_number": sale.sale_number,
            "breakdown": calculator.breakdown(sale.subtotal, to_decimal(sale.total_amount) - to_decimal(sale.service_charge)),
            "validation": calculator.validate(
                sale.subtotal,
                sale.vat_amount,
                to_decimal(sale.total_amount) - to_decimal(sale.service_charge),
                rate=sale.vat_rate
            ),
        }
