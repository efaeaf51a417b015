"""
Splitting a sale's bill between guests.

A sale is split once. Shares are created together, each carries the VAT
extracted from its total, and the split can only be removed while no
share has been paid.
"""
from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from decimal import Decimal
from datetime import date
from typing import Optional, List
from uuid import UUID
import logging

from app.common.utils import utc_now, to_decimal, money, date_range_bounds
from app.modules.auth.schemas import AuthContext
from app.modules.sales.models import Sale, BillSplit, SplitStatus, PaymentMethod
from app.modules.sales.schemas import BillSplitCreate, SplitModeEnum, SplitPayment, SplitUpdate
from app.modules.sales.service import SaleService, CLOSED_STATUSES
from app.modules.vat.service import VATService

logger = logging.getLogger(__name__)

# Amount splits may differ from the sale total by up to one rupee
SPLIT_TOLERANCE = Decimal("1.00")


def allocate(total, weights: List[Decimal]) -> List[Decimal]:
    """Share ``total`` in proportion to ``weights``; rounding cents go to the last share."""
    total = money(total)
    weight_sum = sum(weights, Decimal("0"))
    shares = [money(total * weight / weight_sum) for weight in weights[:-1]]
    shares.append(total - sum(shares, Decimal("0")))
    return shares


class BillSplitService:

    def __init__(self, db: Session):
        self.db = db

    def get_split(self, split_id: UUID) -> BillSplit:
        split = self.db.query(BillSplit).filter(BillSplit.id == split_id).first()
        if not split:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Split not found")
        return split

    def _splits(self, sale_id: UUID) -> List[BillSplit]:
        return (
            self.db.query(BillSplit)
            .filter(BillSplit.sale_id == sale_id)
            .order_by(BillSplit.split_number)
            .all()
        )

    def _item_shares(self, sale: Sale, data: BillSplitCreate) -> List[tuple]:
        """(items, weight) per split for an item split"""
        lines = sale.items or []
        out_of_range = [i for s in data.splits for i in s.item_indexes if i < 0 or i >= len(lines)]
        if out_of_range:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Item index {out_of_range[0]} is out of range for a sale with {len(lines)} items"
            )
        assigned = {i for s in data.splits for i in s.item_indexes}
        unassigned = [lines[i].get("product_name") or str(i) for i in range(len(lines)) if i not in assigned]
        if unassigned:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Every item must be assigned to a split. Unassigned: {', '.join(unassigned)}"
            )

        shares = []
        for part in data.splits:
            items = [lines[i] for i in part.item_indexes]
            shares.append((items, sum((to_decimal(item.get("total_with_vat")) for item in items), Decimal("0"))))
        if sum(weight for _, weight in shares) <= 0:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot split a bill with no value")
        return shares

    def _amounts(self, sale: Sale, data: BillSplitCreate) -> List[tuple]:
        """(items, amount) per split"""
        total = to_decimal(sale.total_amount)
        if data.mode == SplitModeEnum.equal:
            count = data.part_count
            return [([], amount) for amount in allocate(total, [Decimal("1")] * count)]

        if data.mode == SplitModeEnum.amount:
            amounts = [money(part.amount) for part in data.splits]
            given = sum(amounts, Decimal("0"))
            if abs(given - total) > SPLIT_TOLERANCE:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Split amounts ({given}) must equal sale total ({money(total)})"
                )
            return [([], amount) for amount in amounts]

        shares = self._item_shares(sale, data)
        amounts = allocate(total, [weight for _, weight in shares])
        return [(items, amount) for (items, _), amount in zip(shares, amounts)]

    def create_splits(self, sale_id: UUID, data: BillSplitCreate) -> List[BillSplit]:
        sale = SaleService(self.db).get_sale(sale_id)
        if sale.status in CLOSED_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot split a {sale.status.value} sale"
            )
        if self.db.query(BillSplit).filter(BillSplit.sale_id == sale.id).count():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Bill has already been split. Delete existing splits first."
            )

        shares = self._amounts(sale, data)
        calculator = VATService(self.db).calculator()
        try:
            splits = []
            for index, (items, amount) in enumerate(shares):
                part = data.splits[index] if index < len(data.splits) else None
                vat = calculator.split_vat(amount, index + 1)
                split = BillSplit(
                    sale_id=sale.id,
                    split_number=index + 1,
                    customer_name=(part.customer_name if part else None) or f"Customer {index + 1}",
                    items=items,
                    subtotal=vat["split_subtotal"],
                    vat_amount=vat["split_vat"],
                    total_amount=vat["split_total"],
                    notes=part.notes if part else None
                )
                self.db.add(split)
                splits.append(split)
            self.db.commit()
            for split in splits:
                self.db.refresh(split)
            logger.info(f"Sale {sale.sale_number} split {data.mode.value} into {len(splits)} parts")
            return splits

        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error splitting bill")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error splitting sale {sale.sale_number}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def sale_splits(self, sale_id: UUID) -> dict:
        sale = SaleService(self.db).get_sale(sale_id)
        splits = self._splits(sale.id)
        paid = [s for s in splits if s.status == SplitStatus.PAID]
        pending = [s for s in splits if s.status == SplitStatus.PENDING]
        return {
            "sale_id": sale.id,
            "sale_number": sale.sale_number,
            "total_amount": sale.total_amount,
            "total_paid": money(sum((to_decimal(s.total_amount) for s in paid), Decimal("0"))),
            "total_pending": money(sum((to_decimal(s.total_amount) for s in pending), Decimal("0"))),
            "all_paid": bool(splits) and not pending,
            "splits": splits,
        }

    def pay_split(self, split_id: UUID, data: SplitPayment, auth_context: AuthContext) -> dict:
        split = self.get_split(split_id)
        if split.status == SplitStatus.PAID:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This split has already been paid")
        if split.status == SplitStatus.CANCELLED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot pay a cancelled split")

        total = to_decimal(split.total_amount)
        paid = to_decimal(data.amount_paid)
        if paid == 0 and data.payment_method.value != PaymentMethod.CASH.value:
            paid = total
        if paid < total:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Insufficient payment. Required: {money(total)}, received: {money(paid)}"
            )

        split.status = SplitStatus.PAID
        split.payment_method = PaymentMethod(data.payment_method.value)
        split.amount_paid = money(paid)
        split.change_given = money(paid - total)
        split.paid_at = utc_now()
        split.paid_by = auth_context.user_id
        self.db.commit()
        self.db.refresh(split)

        all_paid = all(s.status == SplitStatus.PAID for s in self._splits(split.sale_id))
        logger.info(f"Split {split.split_number} of sale {split.sale_id} paid by {split.payment_method.value}")
        return {"split": split, "change_given": split.change_given, "all_splits_paid": all_paid}

    def update_split(self, split_id: UUID, data: SplitUpdate) -> BillSplit:
        split = self.get_split(split_id)
        if split.status == SplitStatus.PAID:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot update a paid split")
        if data.customer_name:
            split.customer_name = data.customer_name
        if data.notes is not None:
            split.notes = data.notes
        self.db.commit()
        self.db.refresh(split)
        return split

    def delete_splits(self, sale_id: UUID) -> int:
        sale = SaleService(self.db).get_sale(sale_id)
        splits = self._splits(sale.id)
        paid = sum(1 for s in splits if s.status == SplitStatus.PAID)
        if paid:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot delete splits. {paid} split(s) already paid."
            )
        for split in splits:
            self.db.delete(split)
        self.db.commit()
        logger.info(f"Removed {len(splits)} splits from sale {sale.sale_number}")
        return len(splits)

    def summary(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        status_filter: Optional[str] = None
    ) -> dict:
        query = self.db.query(BillSplit)
        if status_filter:
            query = query.filter(BillSplit.status == SplitStatus(status_filter))
        start, end = date_range_bounds(start_date, end_date)
        if start:
            query = query.filter(BillSplit.created_at >= start)
        if end:
            query = query.filter(BillSplit.created_at < end)
        splits = query.all()

        def _total(rows):
            return money(sum((to_decimal(s.total_amount) for s in rows), Decimal("0")))

        by_status = {s: [row for row in splits if row.status == s] for s in SplitStatus}
        return {
            "total_splits": len(splits),
            "paid": len(by_status[SplitStatus.PAID]),
            "pending": len(by_status[SplitStatus.PENDING]),
            "cancelled": len(by_status[SplitStatus.CANCELLED]),
            "total_amount": _total(splits),
            "paid_amount": _total(by_status[SplitStatus.PAID]),
            "pending_amount": _total(by_status[SplitStatus.PENDING]),
        }
