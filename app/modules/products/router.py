from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID

from app.dependencies.dbDependecies import get_db
from app.modules.auth.dependencies import AuthDependencies, ALL_ROLES, MANAGEMENT_ROLES
from app.modules.auth.schemas import AuthContext
from app.modules.products.service import ProductService
from app.modules.products.schemas import (
    ProductCreate, ProductUpdate, ProductOut, ProductList, BatchCreate, BatchOut
)

product_router = APIRouter(prefix="/products", tags=["Products"])


@product_router.get("", response_model=ProductList)
async def list_products(
    search: Optional[str] = Query(None, description="Name, SKU or barcode"),
    category: Optional[str] = Query(None),
    low_stock: bool = Query(False, description="Only products at or below reorder level"),
    include_inactive: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    """
    List retail products.

    - **search**: matches name, SKU or barcode
    - **low_stock**: stock quantity at or below reorder level
    """
    products, total = ProductService(db).list_products(
        search=search,
        category=category,
        low_stock=low_stock,
        include_inactive=include_inactive,
        limit=limit,
        offset=offset
    )
    return ProductList(
        items=[ProductOut.model_validate(p) for p in products],
        total=total,
        limit=limit,
        offset=offset
    )


@product_router.post("", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
async def create_product(
    product_data: ProductCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Create a product. SKU must be unique."""
    return ProductService(db).create_product(product_data)


@product_router.get("/{product_id}", response_model=ProductOut)
async def get_product(
    product_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return ProductService(db).get_product(product_id)


@product_router.put("/{product_id}", response_model=ProductOut)
async def update_product(
    product_id: UUID,
    product_data: ProductUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return ProductService(db).update_product(product_id, product_data)


@product_router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Deactivate a product. Sales history keeps referring to it."""
    ProductService(db).deactivate_product(product_id)


@product_router.post("/{product_id}/batches", response_model=BatchOut, status_code=status.HTTP_201_CREATED)
async def add_batch(
    product_id: UUID,
    batch_data: BatchCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Receive a batch of stock for a product.

    The batch number must be unique for the product; purchased quantity
    defaults to the received quantity.
    """
    return ProductService(db).add_batch(product_id, batch_data)


@product_router.get("/{product_id}/batches", response_model=List[BatchOut])
async def list_batches(
    product_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    """Batches in the order sales consume them."""
    return [BatchOut.model_validate(b) for b in ProductService(db).list_batches(product_id)]
