from fastapi import HTTPException, status
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import or_
from decimal import Decimal
from typing import Optional, List, Tuple
from uuid import UUID
import logging

from app.common.utils import to_decimal
from app.modules.products.models import Product, InventoryBatch
from app.modules.products.schemas import ProductCreate, ProductUpdate, BatchCreate

logger = logging.getLogger(__name__)


class ProductService:
    """Catalogue and batch stock for retail products"""

    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: UUID, include_inactive: bool = True) -> Product:
        query = self.db.query(Product).options(selectinload(Product.batches)).filter(Product.id == product_id)
        if not include_inactive:
            query = query.filter(Product.is_active == True)
        product = query.first()
        if not product:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
        return product

    def list_products(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        low_stock: bool = False,
        include_inactive: bool = False,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[Product], int]:
        query = self.db.query(Product).options(selectinload(Product.batches))
        if not include_inactive:
            query = query.filter(Product.is_active == True)
        if category:
            query = query.filter(Product.category == category)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Product.name.ilike(pattern),
                Product.sku.ilike(pattern),
                Product.barcode.ilike(pattern)
            ))

        products = query.order_by(Product.name).all()
        if low_stock:
            # stock is derived from batches, so the filter runs in Python
            products = [p for p in products if p.is_low_stock]

        total = len(products)
        return products[offset:offset + limit], total

    def create_product(self, data: ProductCreate) -> Product:
        try:
            if self.db.query(Product).filter(Product.sku == data.sku).first():
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"A product with SKU '{data.sku}' already exists"
                )
            product = Product(**data.model_dump())
            self.db.add(product)
            self.db.commit()
            self.db.refresh(product)
            return product
        except HTTPException:
            raise
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error creating product")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating product: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def update_product(self, product_id: UUID, data: ProductUpdate) -> Product:
        product = self.get_product(product_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(product, field, value)
        self.db.commit()
        self.db.refresh(product)
        return product

    def deactivate_product(self, product_id: UUID) -> None:
        product = self.get_product(product_id)
        product.is_active = False
        self.db.commit()

    # ===== BATCHES =====

    def add_batch(self, product_id: UUID, data: BatchCreate) -> InventoryBatch:
        product = self.get_product(product_id)
        exists = self.db.query(InventoryBatch).filter(
            InventoryBatch.product_id == product.id,
            InventoryBatch.batch_number == data.batch_number
        ).first()
        if exists:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Batch '{data.batch_number}' already exists for {product.name}"
            )

        payload = data.model_dump()
        payload["purchased_quantity"] = payload.get("purchased_quantity") or data.quantity
        payload["cost_price"] = payload.get("cost_price") if payload.get("cost_price") is not None else product.cost_price
        payload["selling_price"] = payload.get("selling_price") if payload.get("selling_price") is not None else product.unit_price

        batch = InventoryBatch(product_id=product.id, **payload)
        self.db.add(batch)
        self.db.commit()
        self.db.refresh(batch)
        logger.info(f"Batch {batch.batch_number} received for {product.sku}: {batch.quantity}")
        return batch

    def _fifo_batches(self, product_id: UUID) -> List[InventoryBatch]:
        return (
            self.db.query(InventoryBatch)
            .filter(InventoryBatch.product_id == product_id, InventoryBatch.quantity > 0)
            .order_by(
                InventoryBatch.expiry_date.is_(None),
                InventoryBatch.expiry_date.asc(),
                InventoryBatch.created_at.asc()
            )
            .all()
        )

    def list_batches(self, product_id: UUID) -> List[InventoryBatch]:
        self.get_product(product_id)
        return (
            self.db.query(InventoryBatch)
            .filter(InventoryBatch.product_id == product_id)
            .order_by(
                InventoryBatch.expiry_date.is_(None),
                InventoryBatch.expiry_date.asc(),
                InventoryBatch.created_at.asc()
            )
            .all()
        )

    def deduct_stock(self, product_id: UUID, quantity, batch_number: Optional[str] = None) -> List[dict]:
        """
        Remove quantity from a product's batches.

        A named batch is drained first; any remainder comes from the oldest
        batches by expiry then receipt. Flushes but does not commit so the
        caller's transaction stays atomic.

        Returns the per-batch deductions.
        """
        quantity = to_decimal(quantity)
        product = self.get_product(product_id)

        batches = self._fifo_batches(product.id)
        if batch_number:
            named = [b for b in batches if b.batch_number == batch_number]
            if not named:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"No available batch '{batch_number}' for product {product.name}"
                )
            batches = named + [b for b in batches if b.batch_number != batch_number]

        available = sum((to_decimal(b.quantity) for b in batches), Decimal("0"))
        if available < quantity:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Insufficient stock for {product.name}. Requested: {quantity}, available: {available}"
            )

        remaining = quantity
        deductions = []
        for batch in batches:
            if remaining <= 0:
                break
            take = min(to_decimal(batch.quantity), remaining)
            batch.quantity = to_decimal(batch.quantity) - take
            remaining -= take
            deductions.append({"batch_number": batch.batch_number, "quantity": float(take)})

        self.db.flush()
        logger.info(f"Deducted {quantity} of {product.sku} across {len(deductions)} batch(es)")
        return deductions
