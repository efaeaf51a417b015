from fastapi import HTTPException, status
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func
from decimal import Decimal
from datetime import date
from typing import Optional, List, Dict, Callable
from uuid import UUID
import logging

from app.common.utils import utc_now, to_decimal, money, date_range_bounds
from app.common.sequences import next_sequence_number
from app.modules.inventory.models import (
    Ingredient, StockLocation, StockTransaction, StockTransfer, StockTransferItem, StockIssue,
    LocationType, StockTransactionType, StockTransactionStatus, TransferStatus, StockIssueStatus
)
from app.modules.inventory.schemas import (
    IngredientCreate, IngredientUpdate, LocationCreate, StockAdd, StockAdjust, StockDamaged,
    TransferCreate, TransferReceive, StockIssueCreate, AdjustmentType
)
from app.modules.menu.models import MenuItem, MenuItemPortion, MenuItemIngredient

logger = logging.getLogger(__name__)


def _fmt(value: Decimal) -> str:
    return format(to_decimal(value).normalize(), "f")


def merge_recipe_lines(lines: List[MenuItemIngredient]) -> List[dict]:
    """One entry per ingredient, summing lines that repeat an ingredient."""
    merged: Dict[UUID, dict] = {}
    for line in lines:
        entry = merged.setdefault(line.ingredient_id, {
            "ingredient": line.ingredient,
            "unit": line.unit,
            "per_unit": Decimal("0")
        })
        entry["per_unit"] += to_decimal(line.quantity)
    return list(merged.values())


class StockLedger:
    """
    Ledger rows and location balances.

    Every row names the location its quantity affects. Rows without a
    location only move the business-wide total.
    """

    def __init__(self, db: Session):
        self.db = db

    def next_number(self) -> str:
        return next_sequence_number(
            self.db, StockTransaction.transaction_number, f"ST-{utc_now().year}-"
        )

    def number_batch(self) -> Callable[[], str]:
        """Numbers for rows written together: <base>-1, <base>-2, ..."""
        base = self.next_number()
        counter = {"n": 0}

        def _next():
            counter["n"] += 1
            return f"{base}-{counter['n']}"
        return _next

    def location_balance(self, ingredient_id: UUID, location_id: UUID) -> Decimal:
        total = (
            self.db.query(func.sum(StockTransaction.quantity))
            .filter(
                StockTransaction.ingredient_id == ingredient_id,
                StockTransaction.location_id == location_id,
                StockTransaction.status == StockTransactionStatus.COMPLETED
            )
            .scalar()
        )
        return to_decimal(total)

    def location_balances(self, location_id: UUID) -> Dict[UUID, Decimal]:
        rows = (
            self.db.query(StockTransaction.ingredient_id, func.sum(StockTransaction.quantity))
            .filter(
                StockTransaction.location_id == location_id,
                StockTransaction.status == StockTransactionStatus.COMPLETED
            )
            .group_by(StockTransaction.ingredient_id)
            .all()
        )
        return {ingredient_id: to_decimal(total) for ingredient_id, total in rows}

    def write(
        self,
        number: str,
        transaction_type: StockTransactionType,
        ingredient: Ingredient,
        quantity: Decimal,
        previous_stock: Decimal,
        new_stock: Decimal,
        location_id: Optional[UUID] = None,
        **extra
    ) -> StockTransaction:
        row = StockTransaction(
            transaction_number=number,
            transaction_type=transaction_type,
            ingredient_id=ingredient.id,
            location_id=location_id,
            quantity=quantity,
            unit=extra.pop("unit", None) or ingredient.unit,
            previous_stock=previous_stock,
            new_stock=new_stock,
            status=StockTransactionStatus.COMPLETED,
            **extra
        )
        self.db.add(row)
        return row


class LocationService:
    def __init__(self, db: Session):
        self.db = db

    def get_location(self, location_id: UUID) -> StockLocation:
        location = self.db.query(StockLocation).filter(StockLocation.id == location_id).first()
        if not location:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found")
        return location

    def list_locations(self, include_inactive: bool = False) -> List[StockLocation]:
        query = self.db.query(StockLocation)
        if not include_inactive:
            query = query.filter(StockLocation.is_active == True)
        return query.order_by(StockLocation.location_name).all()

    def create_location(self, data: LocationCreate) -> StockLocation:
        if self.db.query(StockLocation).filter(StockLocation.location_name == data.location_name).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Location '{data.location_name}' already exists"
            )
        location = StockLocation(
            location_name=data.location_name,
            location_type=LocationType(data.location_type.value),
            description=data.description
        )
        self.db.add(location)
        self.db.commit()
        self.db.refresh(location)
        return location

    def location_stock(self, location_id: UUID) -> dict:
        """Netted balance of every active ingredient at a location."""
        location = self.get_location(location_id)
        balances = StockLedger(self.db).location_balances(location.id)
        ingredients = (
            self.db.query(Ingredient)
            .filter(Ingredient.is_active == True)
            .order_by(Ingredient.name)
            .all()
        )
        items = [
            {
                "ingredient_id": i.id,
                "ingredient_name": i.name,
                "unit": i.unit,
                "quantity": balances.get(i.id, Decimal("0"))
            }
            for i in ingredients
        ]
        return {"location": location, "items": items}


class IngredientService:
    """Ingredient catalogue and recipe-driven deductions"""

    def __init__(self, db: Session):
        self.db = db

    def get_ingredient(self, ingredient_id: UUID) -> Ingredient:
        ingredient = self.db.query(Ingredient).filter(Ingredient.id == ingredient_id).first()
        if not ingredient:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ingredient not found")
        return ingredient

    def list_ingredients(self, search: Optional[str] = None, category: Optional[str] = None,
                         include_inactive: bool = False) -> List[Ingredient]:
        query = self.db.query(Ingredient)
        if not include_inactive:
            query = query.filter(Ingredient.is_active == True)
        if category:
            query = query.filter(Ingredient.category == category)
        if search:
            query = query.filter(Ingredient.name.ilike(f"%{search}%"))
        return query.order_by(Ingredient.name).all()

    def low_stock(self) -> List[Ingredient]:
        return (
            self.db.query(Ingredient)
            .filter(Ingredient.is_active == True, Ingredient.current_stock <= Ingredient.reorder_level)
            .order_by(Ingredient.name)
            .all()
        )

    def create_ingredient(self, data: IngredientCreate, user_id: Optional[UUID] = None) -> Ingredient:
        try:
            if self.db.query(Ingredient).filter(Ingredient.name == data.name).first():
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Ingredient '{data.name}' already exists"
                )
            ingredient = Ingredient(**data.model_dump())
            self.db.add(ingredient)
            self.db.flush()

            if to_decimal(data.current_stock) > 0:
                StockLedger(self.db).write(
                    StockLedger(self.db).next_number(),
                    StockTransactionType.OPENING_BALANCE,
                    ingredient,
                    quantity=data.current_stock,
                    previous_stock=Decimal("0"),
                    new_stock=data.current_stock,
                    unit_cost=data.unit_cost,
                    total_cost=money(to_decimal(data.current_stock) * to_decimal(data.unit_cost)),
                    reason="Opening balance",
                    performed_by=user_id
                )

            self.db.commit()
            self.db.refresh(ingredient)
            return ingredient
        except HTTPException:
            raise
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error creating ingredient")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating ingredient: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def update_ingredient(self, ingredient_id: UUID, data: IngredientUpdate) -> Ingredient:
        ingredient = self.get_ingredient(ingredient_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes and changes["name"] != ingredient.name:
            if self.db.query(Ingredient).filter(Ingredient.name == changes["name"]).first():
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Ingredient '{changes['name']}' already exists"
                )
        for field, value in changes.items():
            setattr(ingredient, field, value)
        self.db.commit()
        self.db.refresh(ingredient)
        return ingredient

    def deactivate_ingredient(self, ingredient_id: UUID) -> None:
        ingredient = self.get_ingredient(ingredient_id)
        ingredient.is_active = False
        self.db.commit()

    def recipe_lines(self, menu_item_id: UUID, portion_id: Optional[UUID] = None) -> List[MenuItemIngredient]:
        """
        Recipe for one unit of a menu item.

        A portion uses its own lines. Without one, lines bound to no portion
        are used, then the lines of the item's default portion.
        """
        base = (
            self.db.query(MenuItemIngredient)
            .options(selectinload(MenuItemIngredient.ingredient))
            .filter(MenuItemIngredient.menu_item_id == menu_item_id)
        )
        if portion_id:
            return base.filter(MenuItemIngredient.portion_id == portion_id).all()

        lines = base.filter(MenuItemIngredient.portion_id.is_(None)).all()
        if lines:
            return lines

        default_portion = self.db.query(MenuItemPortion).filter(
            MenuItemPortion.menu_item_id == menu_item_id,
            MenuItemPortion.is_default == True,
            MenuItemPortion.is_active == True
        ).first()
        if default_portion:
            return base.filter(MenuItemIngredient.portion_id == default_portion.id).all()
        return []

    def deduct_for_menu_item(
        self,
        menu_item_id: UUID,
        quantity,
        portion_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        location_id: Optional[UUID] = None,
        reference_id: Optional[UUID] = None,
        reference_number: Optional[str] = None
    ) -> dict:
        """
        Take the ingredients of quantity units of a menu item out of stock.

        Every ingredient is checked before any row is written. Flushes
        without committing; the caller owns the transaction.
        """
        quantity = to_decimal(quantity)
        lines = merge_recipe_lines(self.recipe_lines(menu_item_id, portion_id))
        if not lines:
            return {"success": False, "message": "No recipe found for this menu item", "deductions": []}

        for line in lines:
            required = line["per_unit"] * quantity
            available = to_decimal(line["ingredient"].current_stock)
            if available < required:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Insufficient stock for {line['ingredient'].name}. "
                           f"Required: {_fmt(required)}, available: {_fmt(available)}"
                )

        ledger = StockLedger(self.db)
        next_number = ledger.number_batch()
        deductions = []
        for line in lines:
            ingredient = line["ingredient"]
            required = line["per_unit"] * quantity
            previous = to_decimal(ingredient.current_stock)
            ingredient.current_stock = previous - required
            ledger.write(
                next_number(),
                StockTransactionType.SALE_DEDUCTION,
                ingredient,
                quantity=-required,
                previous_stock=previous,
                new_stock=ingredient.current_stock,
                location_id=location_id,
                unit=line["unit"],
                unit_cost=ingredient.unit_cost,
                total_cost=money(required * to_decimal(ingredient.unit_cost)),
                reference_type="sale",
                reference_id=reference_id,
                reference_number=reference_number,
                performed_by=user_id
            )
            deductions.append({
                "ingredient_id": str(ingredient.id),
                "ingredient_name": ingredient.name,
                "quantity": float(required),
                "unit": line["unit"]
            })

        self.db.flush()
        logger.info(f"Deducted recipe stock for menu item {menu_item_id} x{quantity}: {len(deductions)} ingredient(s)")
        return {"success": True, "message": "Ingredients deducted", "deductions": deductions}


class StockService:
    """Stock entering or leaving the business"""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = StockLedger(db)

    def _ingredient(self, ingredient_id: UUID) -> Ingredient:
        return IngredientService(self.db).get_ingredient(ingredient_id)

    def _location(self, location_id: Optional[UUID]) -> Optional[StockLocation]:
        return LocationService(self.db).get_location(location_id) if location_id else None

    def _commit(self, row: StockTransaction, action: str) -> StockTransaction:
        try:
            self.db.commit()
            self.db.refresh(row)
            return row
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Integrity error recording {action}")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error recording {action}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def add_stock(self, data: StockAdd, user_id: Optional[UUID] = None) -> StockTransaction:
        ingredient = self._ingredient(data.ingredient_id)
        location = self._location(data.location_id)

        unit_cost = to_decimal(data.unit_cost) if data.unit_cost is not None else to_decimal(ingredient.unit_cost)
        previous = to_decimal(ingredient.current_stock)
        ingredient.current_stock = previous + data.quantity
        if data.unit_cost is not None:
            ingredient.unit_cost = data.unit_cost

        row = self.ledger.write(
            self.ledger.next_number(),
            StockTransactionType.ADD_STOCK,
            ingredient,
            quantity=data.quantity,
            previous_stock=previous,
            new_stock=ingredient.current_stock,
            location_id=location.id if location else None,
            to_location_id=location.id if location else None,
            unit_cost=unit_cost,
            total_cost=money(data.quantity * unit_cost),
            reference_type="purchase",
            reference_number=data.reference_number,
            batch_number=data.batch_number,
            notes=data.notes,
            performed_by=user_id
        )
        row = self._commit(row, "stock addition")
        logger.info(f"Stock added: {ingredient.name} +{_fmt(data.quantity)} {ingredient.unit}")
        return row

    def adjust_stock(self, data: StockAdjust, user_id: Optional[UUID] = None) -> StockTransaction:
        ingredient = self._ingredient(data.ingredient_id)
        location = self._location(data.location_id)

        previous = to_decimal(ingredient.current_stock)
        delta = data.quantity if data.adjustment_type == AdjustmentType.increase else -data.quantity
        resulting = previous + delta
        if resulting < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Adjustment would make stock negative. "
                       f"Current stock: {_fmt(previous)}, resulting stock: {_fmt(resulting)}"
            )

        ingredient.current_stock = resulting
        row = self.ledger.write(
            self.ledger.next_number(),
            StockTransactionType.ADJUSTMENT,
            ingredient,
            quantity=delta,
            previous_stock=previous,
            new_stock=resulting,
            location_id=location.id if location else None,
            unit_cost=ingredient.unit_cost,
            total_cost=money(abs(delta) * to_decimal(ingredient.unit_cost)),
            reason=data.reason,
            notes=data.notes,
            performed_by=user_id
        )
        row = self._commit(row, "stock adjustment")
        logger.info(f"Stock adjusted: {ingredient.name} {_fmt(delta)} ({data.reason})")
        return row

    def record_damaged(self, data: StockDamaged, user_id: Optional[UUID] = None) -> StockTransaction:
        ingredient = self._ingredient(data.ingredient_id)
        location = self._location(data.location_id)

        previous = to_decimal(ingredient.current_stock)
        if previous < data.quantity:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Insufficient stock for {ingredient.name}. "
                       f"Current stock: {_fmt(previous)}, damaged: {_fmt(data.quantity)}"
            )

        ingredient.current_stock = previous - data.quantity
        row = self.ledger.write(
            self.ledger.next_number(),
            StockTransactionType.DAMAGED,
            ingredient,
            quantity=-data.quantity,
            previous_stock=previous,
            new_stock=ingredient.current_stock,
            location_id=location.id if location else None,
            from_location_id=location.id if location else None,
            unit_cost=ingredient.unit_cost,
            total_cost=money(data.quantity * to_decimal(ingredient.unit_cost)),
            reason=data.reason,
            notes=data.notes,
            performed_by=user_id
        )
        row = self._commit(row, "damaged stock")
        logger.info(f"Damaged stock: {ingredient.name} -{_fmt(data.quantity)} ({data.reason})")
        return row

    def history(
        self,
        ingredient_id: Optional[UUID] = None,
        transaction_type: Optional[str] = None,
        location_id: Optional[UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[StockTransaction]:
        query = self.db.query(StockTransaction)
        if ingredient_id:
            query = query.filter(StockTransaction.ingredient_id == ingredient_id)
        if transaction_type:
            query = query.filter(StockTransaction.transaction_type == StockTransactionType(transaction_type))
        if location_id:
            query = query.filter(StockTransaction.location_id == location_id)
        start, end = date_range_bounds(start_date, end_date)
        if start:
            query = query.filter(StockTransaction.created_at >= start)
        if end:
            query = query.filter(StockTransaction.created_at < end)
        return (
            query.order_by(StockTransaction.created_at.desc(), StockTransaction.transaction_number.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )


class TransferService:
    """Goods moving between locations"""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = StockLedger(db)

    def get_transfer(self, transfer_id: UUID) -> StockTransfer:
        transfer = (
            self.db.query(StockTransfer)
            .options(selectinload(StockTransfer.items))
            .filter(StockTransfer.id == transfer_id)
            .first()
        )
        if not transfer:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transfer not found")
        return transfer

    def list_transfers(self, status_filter: Optional[str] = None, location_id: Optional[UUID] = None) -> List[StockTransfer]:
        query = self.db.query(StockTransfer).options(selectinload(StockTransfer.items))
        if status_filter:
            query = query.filter(StockTransfer.status == TransferStatus(status_filter))
        if location_id:
            query = query.filter(
                (StockTransfer.from_location_id == location_id) | (StockTransfer.to_location_id == location_id)
            )
        return query.order_by(StockTransfer.created_at.desc()).all()

    def initiate(self, data: TransferCreate, user_id: Optional[UUID] = None) -> StockTransfer:
        """
        Send goods from one location to another.

        Each item is checked against its balance at the source; the
        outgoing rows are written at once and the transfer waits to be
        received.
        """
        locations = LocationService(self.db)
        source = locations.get_location(data.from_location_id)
        destination = locations.get_location(data.to_location_id)

        ingredients = IngredientService(self.db)
        checked = []
        for item in data.items:
            ingredient = ingredients.get_ingredient(item.ingredient_id)
            balance = self.ledger.location_balance(ingredient.id, source.id)
            if balance < item.quantity:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Insufficient stock for {ingredient.name} in {source.location_name}. "
                           f"Required: {_fmt(item.quantity)}, available: {_fmt(balance)}"
                )
            checked.append((ingredient, item.quantity, balance))

        try:
            transfer = StockTransfer(
                transfer_number=next_sequence_number(
                    self.db, StockTransfer.transfer_number, f"TRF-{utc_now().year}-"
                ),
                from_location_id=source.id,
                to_location_id=destination.id,
                status=TransferStatus.PENDING,
                initiated_by=user_id,
                reason=data.reason,
                notes=data.notes
            )
            self.db.add(transfer)
            self.db.flush()

            next_number = self.ledger.number_batch()
            for ingredient, quantity, balance in checked:
                transfer.items.append(StockTransferItem(
                    ingredient_id=ingredient.id,
                    quantity_sent=quantity,
                    unit=ingredient.unit
                ))
                self.ledger.write(
                    next_number(),
                    StockTransactionType.TRANSFER_OUT,
                    ingredient,
                    quantity=-quantity,
                    previous_stock=balance,
                    new_stock=balance - quantity,
                    location_id=source.id,
                    from_location_id=source.id,
                    to_location_id=destination.id,
                    reference_type="stock_transfer",
                    reference_id=transfer.id,
                    reference_number=transfer.transfer_number,
                    reason=data.reason,
                    performed_by=user_id
                )

            self.db.commit()
            logger.info(
                f"Transfer {transfer.transfer_number} sent from {source.location_name} "
                f"to {destination.location_name} with {len(checked)} item(s)"
            )
            return self.get_transfer(transfer.id)
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error initiating transfer")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error initiating transfer: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def receive(self, transfer_id: UUID, data: TransferReceive, user_id: Optional[UUID] = None) -> StockTransfer:
        """
        Book the goods in at the destination.

        Every item sent must be accounted for. Damaged quantity and any
        shortfall never arrive; both leave the business-wide total.
        """
        transfer = self.get_transfer(transfer_id)
        if transfer.status != TransferStatus.PENDING:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot receive transfer with status: {transfer.status.value}"
            )

        items_by_id = {item.id: item for item in transfer.items}
        for received in data.items:
            item = items_by_id.get(received.item_id)
            if not item:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"Transfer item {received.item_id} not found"
                )
            if received.quantity_received + received.damaged_quantity > to_decimal(item.quantity_sent):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Received plus damaged quantity exceeds quantity sent ({_fmt(item.quantity_sent)}) "
                           f"for {item.ingredient.name}"
                )

        received_ids = {received.item_id for received in data.items}
        missing = [item.ingredient.name for item in transfer.items if item.id not in received_ids]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Every transfer item must be received. Missing: {', '.join(missing)}"
            )

        try:
            next_number = self.ledger.number_batch()
            for received in data.items:
                item = items_by_id[received.item_id]
                ingredient = item.ingredient
                item.quantity_received = received.quantity_received
                item.damaged_quantity = received.damaged_quantity
                item.damage_reason = received.damage_reason

                if received.quantity_received > 0:
                    balance = self.ledger.location_balance(ingredient.id, transfer.to_location_id)
                    self.ledger.write(
                        next_number(),
                        StockTransactionType.TRANSFER_IN,
                        ingredient,
                        quantity=received.quantity_received,
                        previous_stock=balance,
                        new_stock=balance + received.quantity_received,
                        location_id=transfer.to_location_id,
                        from_location_id=transfer.from_location_id,
                        to_location_id=transfer.to_location_id,
                        reference_type="stock_transfer",
                        reference_id=transfer.id,
                        reference_number=transfer.transfer_number,
                        performed_by=user_id
                    )

                if received.damaged_quantity > 0:
                    previous = to_decimal(ingredient.current_stock)
                    ingredient.current_stock = previous - received.damaged_quantity
                    self.ledger.write(
                        next_number(),
                        StockTransactionType.DAMAGED,
                        ingredient,
                        quantity=-received.damaged_quantity,
                        previous_stock=previous,
                        new_stock=ingredient.current_stock,
                        from_location_id=transfer.from_location_id,
                        to_location_id=transfer.to_location_id,
                        unit_cost=ingredient.unit_cost,
                        total_cost=money(received.damaged_quantity * to_decimal(ingredient.unit_cost)),
                        reference_type="stock_transfer",
                        reference_id=transfer.id,
                        reference_number=transfer.transfer_number,
                        reason=received.damage_reason or "Damaged in transfer",
                        performed_by=user_id
                    )

                shortage = to_decimal(item.quantity_sent) - received.quantity_received - received.damaged_quantity
                if shortage > 0:
                    previous = to_decimal(ingredient.current_stock)
                    ingredient.current_stock = previous - shortage
                    self.ledger.write(
                        next_number(),
                        StockTransactionType.TRANSFER_SHORTAGE,
                        ingredient,
                        quantity=-shortage,
                        previous_stock=previous,
                        new_stock=ingredient.current_stock,
                        from_location_id=transfer.from_location_id,
                        to_location_id=transfer.to_location_id,
                        unit_cost=ingredient.unit_cost,
                        total_cost=money(shortage * to_decimal(ingredient.unit_cost)),
                        reference_type="stock_transfer",
                        reference_id=transfer.id,
                        reference_number=transfer.transfer_number,
                        reason="Short on receipt",
                        performed_by=user_id
                    )
                    logger.warning(
                        f"Transfer {transfer.transfer_number}: {ingredient.name} short by {_fmt(shortage)}"
                    )

            transfer.status = TransferStatus.RECEIVED
            transfer.received_by = user_id
            transfer.received_at = utc_now()
            if data.notes:
                transfer.notes = data.notes
            self.db.commit()
            logger.info(f"Transfer {transfer.transfer_number} received")
            return self.get_transfer(transfer.id)
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error receiving transfer")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error receiving transfer {transfer.transfer_number}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def cancel(self, transfer_id: UUID, user_id: Optional[UUID] = None) -> StockTransfer:
        transfer = self.get_transfer(transfer_id)
        if transfer.status != TransferStatus.PENDING:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only pending transfers can be cancelled"
            )

        try:
            next_number = self.ledger.number_batch()
            for item in transfer.items:
                balance = self.ledger.location_balance(item.ingredient_id, transfer.from_location_id)
                self.ledger.write(
                    next_number(),
                    StockTransactionType.TRANSFER_IN,
                    item.ingredient,
                    quantity=item.quantity_sent,
                    previous_stock=balance,
                    new_stock=balance + to_decimal(item.quantity_sent),
                    location_id=transfer.from_location_id,
                    from_location_id=transfer.to_location_id,
                    to_location_id=transfer.from_location_id,
                    reference_type="stock_transfer",
                    reference_id=transfer.id,
                    reference_number=transfer.transfer_number,
                    reason="Transfer cancelled",
                    performed_by=user_id
                )
            transfer.status = TransferStatus.CANCELLED
            self.db.commit()
            logger.info(f"Transfer {transfer.transfer_number} cancelled and stock restored")
            return self.get_transfer(transfer.id)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error cancelling transfer {transfer.transfer_number}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )


class StockIssueService:
    """Issuing a recipe's ingredients from one location to another for production"""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = StockLedger(db)

    def get_issue(self, issue_id: UUID) -> StockIssue:
        issue = self.db.query(StockIssue).filter(StockIssue.id == issue_id).first()
        if not issue:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stock issue not found")
        return issue

    def list_issues(self, status_filter: Optional[str] = None) -> List[StockIssue]:
        query = self.db.query(StockIssue)
        if status_filter:
            query = query.filter(StockIssue.status == StockIssueStatus(status_filter))
        return query.order_by(StockIssue.created_at.desc()).all()

    def create_issue(self, data: StockIssueCreate, user_id: Optional[UUID] = None) -> StockIssue:
        menu_item = self.db.query(MenuItem).filter(MenuItem.id == data.menu_item_id).first()
        if not menu_item:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Menu item not found")
        if data.portion_id:
            portion = self.db.query(MenuItemPortion).filter(
                MenuItemPortion.id == data.portion_id,
                MenuItemPortion.menu_item_id == menu_item.id
            ).first()
            if not portion:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Portion not found for this menu item")
        locations = LocationService(self.db)
        locations.get_location(data.from_location_id)
        locations.get_location(data.to_location_id)

        try:
            issue = StockIssue(
                issue_number=next_sequence_number(self.db, StockIssue.issue_number, f"SI-{utc_now().year}-"),
                menu_item_id=menu_item.id,
                portion_id=data.portion_id,
                planned_quantity=data.planned_quantity,
                from_location_id=data.from_location_id,
                to_location_id=data.to_location_id,
                status=StockIssueStatus.PENDING,
                requested_by=user_id,
                notes=data.notes
            )
            self.db.add(issue)
            self.db.commit()
            self.db.refresh(issue)
            logger.info(f"Stock issue {issue.issue_number} requested for {menu_item.name} x{_fmt(data.planned_quantity)}")
            return issue
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error creating stock issue")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating stock issue: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def requirements(self, issue: StockIssue) -> List[dict]:
        lines = merge_recipe_lines(IngredientService(self.db).recipe_lines(issue.menu_item_id, issue.portion_id))
        planned = to_decimal(issue.planned_quantity)
        result = []
        for line in lines:
            ingredient = line["ingredient"]
            per_unit = line["per_unit"]
            total_required = per_unit * planned
            location_stock = self.ledger.location_balance(ingredient.id, issue.from_location_id)
            result.append({
                "ingredient_id": ingredient.id,
                "ingredient_name": ingredient.name,
                "unit": line["unit"],
                "quantity_per_unit": per_unit,
                "total_required": total_required,
                "location_stock": location_stock,
                "available": location_stock >= total_required
            })
        return result

    def preview(self, issue_id: UUID) -> dict:
        issue = self.get_issue(issue_id)
        requirements = self.requirements(issue)
        return {
            "issue": issue,
            "requirements": requirements,
            "can_confirm": bool(requirements) and all(r["available"] for r in requirements)
        }

    def confirm(self, issue_id: UUID, user_id: Optional[UUID] = None) -> StockIssue:
        """
        Move the recipe's ingredients from the source to the destination.

        All requirements are checked first; a shortage writes nothing.
        The business-wide total is unchanged.
        """
        issue = self.get_issue(issue_id)
        if issue.status != StockIssueStatus.PENDING:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot confirm issue with status: {issue.status.value}"
            )

        requirements = self.requirements(issue)
        if not requirements:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No recipe found for this menu item"
            )
        source = issue.from_location
        for req in requirements:
            if not req["available"]:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Insufficient stock for {req['ingredient_name']} in {source.location_name}. "
                           f"Required: {_fmt(req['total_required'])}, available: {_fmt(req['location_stock'])}"
                )

        try:
            next_number = self.ledger.number_batch()
            for req in requirements:
                ingredient = self.db.get(Ingredient, req["ingredient_id"])
                quantity = req["total_required"]
                destination_balance = self.ledger.location_balance(ingredient.id, issue.to_location_id)
                common = dict(
                    from_location_id=issue.from_location_id,
                    to_location_id=issue.to_location_id,
                    unit=req["unit"],
                    reference_type="stock_issue",
                    reference_id=issue.id,
                    reference_number=issue.issue_number,
                    performed_by=user_id
                )
                self.ledger.write(
                    next_number(),
                    StockTransactionType.TRANSFER_OUT,
                    ingredient,
                    quantity=-quantity,
                    previous_stock=req["location_stock"],
                    new_stock=req["location_stock"] - quantity,
                    location_id=issue.from_location_id,
                    notes=f"Production issue: {issue.issue_number}",
                    **common
                )
                self.ledger.write(
                    next_number(),
                    StockTransactionType.TRANSFER_IN,
                    ingredient,
                    quantity=quantity,
                    previous_stock=destination_balance,
                    new_stock=destination_balance + quantity,
                    location_id=issue.to_location_id,
                    notes=f"Production issue receipt: {issue.issue_number}",
                    **common
                )

            issue.status = StockIssueStatus.CONFIRMED
            issue.confirmed_by = user_id
            issue.confirmed_at = utc_now()
            self.db.commit()
            self.db.refresh(issue)
            logger.info(f"Stock issue {issue.issue_number} confirmed with {len(requirements)} ingredient(s)")
            return issue
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error confirming stock issue {issue.issue_number}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def cancel(self, issue_id: UUID) -> StockIssue:
        issue = self.get_issue(issue_id)
        if issue.status != StockIssueStatus.PENDING:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only pending issues can be cancelled"
            )
        issue.status = StockIssueStatus.CANCELLED
        self.db.commit()
        self.db.refresh(issue)
        return issue
