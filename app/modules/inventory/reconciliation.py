"""
Physical stock counts at one location.

Starting a count snapshots the location balance of every active
ingredient. Counts are entered against the snapshot, the count is
submitted, and approval writes one adjustment row per discrepancy at the
location, moving the business-wide total by the same amount.
"""
from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
import logging

from app.common.utils import utc_now, to_decimal, money
from app.common.sequences import next_sequence_number
from app.modules.inventory.models import (
    Ingredient, StockReconciliation, StockReconciliationItem, ReconciliationStatus, StockTransactionType
)
from app.modules.inventory.schemas import ReconciliationStart, ReconciliationCounts
from app.modules.inventory.service import StockLedger, LocationService, _fmt

logger = logging.getLogger(__name__)

OPEN_STATUSES = (ReconciliationStatus.IN_PROGRESS, ReconciliationStatus.COMPLETED)


class ReconciliationService:

    def __init__(self, db: Session):
        self.db = db
        self.ledger = StockLedger(db)

    def get_reconciliation(self, reconciliation_id: UUID) -> StockReconciliation:
        reconciliation = (
            self.db.query(StockReconciliation)
            .filter(StockReconciliation.id == reconciliation_id)
            .first()
        )
        if not reconciliation:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reconciliation not found")
        return reconciliation

    def list_reconciliations(
        self, status_filter: Optional[str] = None, location_id: Optional[UUID] = None
    ) -> List[StockReconciliation]:
        query = self.db.query(StockReconciliation)
        if status_filter:
            query = query.filter(StockReconciliation.status == ReconciliationStatus(status_filter))
        if location_id:
            query = query.filter(StockReconciliation.location_id == location_id)
        return query.order_by(StockReconciliation.created_at.desc()).all()

    def _require(self, reconciliation: StockReconciliation, *allowed: ReconciliationStatus) -> None:
        if reconciliation.status not in allowed:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Reconciliation {reconciliation.reconciliation_number} is {reconciliation.status.value}"
            )

    def start(self, data: ReconciliationStart, user_id: Optional[UUID] = None) -> StockReconciliation:
        location = LocationService(self.db).get_location(data.location_id)
        open_count = (
            self.db.query(StockReconciliation)
            .filter(
                StockReconciliation.location_id == location.id,
                StockReconciliation.status.in_(OPEN_STATUSES)
            )
            .first()
        )
        if open_count:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"A reconciliation is already in progress for {location.location_name}"
            )

        try:
            reconciliation = StockReconciliation(
                reconciliation_number=next_sequence_number(
                    self.db, StockReconciliation.reconciliation_number, f"REC-{utc_now().year}-"
                ),
                location_id=location.id,
                status=ReconciliationStatus.IN_PROGRESS,
                performed_by=user_id,
                notes=data.notes
            )
            balances = self.ledger.location_balances(location.id)
            ingredients = (
                self.db.query(Ingredient)
                .filter(Ingredient.is_active == True)
                .order_by(Ingredient.name)
                .all()
            )
            for ingredient in ingredients:
                balance = balances.get(ingredient.id, Decimal("0"))
                reconciliation.items.append(StockReconciliationItem(
                    ingredient_id=ingredient.id,
                    ingredient_name=ingredient.name,
                    system_stock=balance,
                    physical_stock=balance,
                    difference=Decimal("0"),
                    unit=ingredient.unit,
                    unit_cost=to_decimal(ingredient.unit_cost),
                    value_difference=Decimal("0")
                ))
            self.db.add(reconciliation)
            self.db.commit()
            self.db.refresh(reconciliation)
            logger.info(
                f"Reconciliation {reconciliation.reconciliation_number} started at {location.location_name} "
                f"for {len(ingredients)} ingredients"
            )
            return reconciliation

        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error starting reconciliation")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error starting reconciliation at {location.location_name}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def record_counts(self, reconciliation_id: UUID, data: ReconciliationCounts) -> StockReconciliation:
        reconciliation = self.get_reconciliation(reconciliation_id)
        self._require(reconciliation, ReconciliationStatus.IN_PROGRESS)

        items_by_id = {item.id: item for item in reconciliation.items}
        unknown = [str(count.item_id) for count in data.items if count.item_id not in items_by_id]
        if unknown:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Reconciliation items not found: {', '.join(unknown)}"
            )

        for count in data.items:
            item = items_by_id[count.item_id]
            item.physical_stock = count.physical_stock
            item.difference = count.physical_stock - to_decimal(item.system_stock)
            item.value_difference = money(item.difference * to_decimal(item.unit_cost))
            if count.notes is not None:
                item.notes = count.notes
        self.db.commit()
        self.db.refresh(reconciliation)
        return reconciliation

    def submit(self, reconciliation_id: UUID) -> StockReconciliation:
        """Close counting and total the discrepancies."""
        reconciliation = self.get_reconciliation(reconciliation_id)
        self._require(reconciliation, ReconciliationStatus.IN_PROGRESS)

        items = reconciliation.items
        reconciliation.total_items_counted = len(items)
        reconciliation.total_discrepancies = sum(1 for item in items if to_decimal(item.difference) != 0)
        reconciliation.total_value_difference = money(
            sum((to_decimal(item.value_difference) for item in items), Decimal("0"))
        )
        reconciliation.status = ReconciliationStatus.COMPLETED
        reconciliation.completed_at = utc_now()
        self.db.commit()
        self.db.refresh(reconciliation)
        logger.info(
            f"Reconciliation {reconciliation.reconciliation_number} submitted: "
            f"{reconciliation.total_discrepancies} discrepancies worth {reconciliation.total_value_difference}"
        )
        return reconciliation

    def approve(self, reconciliation_id: UUID, user_id: Optional[UUID] = None) -> StockReconciliation:
        """
        Apply the count.

        Each discrepancy becomes an adjustment row at the location. Nothing
        is written if any adjustment would take an ingredient's total
        below zero.
        """
        reconciliation = self.get_reconciliation(reconciliation_id)
        self._require(reconciliation, ReconciliationStatus.COMPLETED)

        discrepancies = [item for item in reconciliation.items if to_decimal(item.difference) != 0]
        negative = [
            item.ingredient_name for item in discrepancies
            if to_decimal(item.ingredient.current_stock) + to_decimal(item.difference) < 0
        ]
        if negative:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Adjustment would make stock negative for: {', '.join(negative)}"
            )

        try:
            next_number = self.ledger.number_batch() if discrepancies else None
            rows = []
            for item in discrepancies:
                ingredient = item.ingredient
                difference = to_decimal(item.difference)
                balance = self.ledger.location_balance(ingredient.id, reconciliation.location_id)
                ingredient.current_stock = to_decimal(ingredient.current_stock) + difference
                rows.append(self.ledger.write(
                    next_number(),
                    StockTransactionType.ADJUSTMENT,
                    ingredient,
                    quantity=difference,
                    previous_stock=balance,
                    new_stock=balance + difference,
                    location_id=reconciliation.location_id,
                    unit=item.unit,
                    unit_cost=item.unit_cost,
                    total_cost=money(abs(difference) * to_decimal(item.unit_cost)),
                    reference_type="reconciliation",
                    reference_id=reconciliation.id,
                    reference_number=reconciliation.reconciliation_number,
                    reason=f"Stock count {reconciliation.reconciliation_number}",
                    notes=item.notes,
                    performed_by=user_id
                ))
            self.db.flush()
            for item, row in zip(discrepancies, rows):
                item.stock_transaction_id = row.id
                item.adjustment_made = True

            reconciliation.status = ReconciliationStatus.APPROVED
            reconciliation.approved_by = user_id
            reconciliation.approved_at = utc_now()
            self.db.commit()
            self.db.refresh(reconciliation)
            for item in discrepancies:
                logger.info(
                    f"Reconciliation {reconciliation.reconciliation_number}: "
                    f"{item.ingredient_name} {_fmt(item.difference)} {item.unit}"
                )
            return reconciliation

        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error approving reconciliation")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error approving reconciliation {reconciliation.reconciliation_number}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def cancel(self, reconciliation_id: UUID) -> StockReconciliation:
        reconciliation = self.get_reconciliation(reconciliation_id)
        self._require(reconciliation, *OPEN_STATUSES)
        reconciliation.status = ReconciliationStatus.CANCELLED
        self.db.commit()
        self.db.refresh(reconciliation)
        logger.info(f"Reconciliation {reconciliation.reconciliation_number} cancelled")
        return reconciliation
