"""
Tests for the products module

Covers:
- Product CRUD, SKU uniqueness and soft delete
- Search and low-stock filtering
- Batch receipt and FIFO stock deduction
"""

import pytest
from datetime import date
from decimal import Decimal
from fastapi import HTTPException

from app.modules.products.models import Product, InventoryBatch
from app.modules.products.service import ProductService


# ===== FIXTURES =====

@pytest.fixture
def cola(db_session):
    product = Product(
        name="Elephant House Cola 400ml",
        sku="EH-COLA-400",
        unit_price=Decimal("250.00"),
        cost_price=Decimal("160.00"),
        reorder_level=Decimal("10")
    )
    db_session.add(product)
    db_session.commit()
    db_session.refresh(product)
    return product


@pytest.fixture
def cola_batches(db_session, cola):
    batches = [
        InventoryBatch(product_id=cola.id, batch_number="B-LATE", quantity=Decimal("20"),
                       purchased_quantity=Decimal("20"), expiry_date=date(2027, 6, 1)),
        InventoryBatch(product_id=cola.id, batch_number="B-EARLY", quantity=Decimal("5"),
                       purchased_quantity=Decimal("5"), expiry_date=date(2027, 1, 1)),
        InventoryBatch(product_id=cola.id, batch_number="B-NOEXP", quantity=Decimal("8"),
                       purchased_quantity=Decimal("8")),
    ]
    db_session.add_all(batches)
    db_session.commit()
    return batches


class TestProductCrud:
    """Create, read, update and deactivate"""

    def test_create_product(self, client, manager_headers):
        payload = {
            "name": "Munchee Cream Cracker",
            "sku": "mun-cc-190",
            "unit_price": "320.00",
            "cost_price": "250.00",
            "category": "snacks"
        }

        response = client.post("/api/v1/products", json=payload, headers=manager_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["sku"] == "MUN-CC-190"
        assert body["taxable"] is True
        assert Decimal(body["stock_quantity"]) == 0

    def test_duplicate_sku_conflict(self, client, manager_headers, cola):
        payload = {"name": "Another cola", "sku": "EH-COLA-400", "unit_price": "200"}

        response = client.post("/api/v1/products", json=payload, headers=manager_headers)

        assert response.status_code == 409

    def test_cashier_cannot_create(self, client, cashier_headers):
        payload = {"name": "Water", "sku": "WTR-1L", "unit_price": "100"}
        response = client.post("/api/v1/products", json=payload, headers=cashier_headers)
        assert response.status_code == 403

    def test_update_product(self, client, manager_headers, cola):
        response = client.put(
            f"/api/v1/products/{cola.id}",
            json={"unit_price": "275.00"},
            headers=manager_headers
        )
        assert response.status_code == 200
        assert Decimal(response.json()["unit_price"]) == Decimal("275.00")

    def test_delete_is_soft(self, client, manager_headers, cola, db_session):
        response = client.delete(f"/api/v1/products/{cola.id}", headers=manager_headers)

        assert response.status_code == 204
        db_session.refresh(cola)
        assert cola.is_active is False
        listing = client.get("/api/v1/products", headers=manager_headers).json()
        assert listing["total"] == 0

    def test_unknown_product_404(self, client, cashier_headers):
        response = client.get("/api/v1/products/00000000-0000-0000-0000-000000000000", headers=cashier_headers)
        assert response.status_code == 404


class TestProductFilters:
    """Search and low-stock listing"""

    def test_search_by_sku(self, client, cashier_headers, cola):
        response = client.get("/api/v1/products?search=cola-400", headers=cashier_headers)
        assert response.json()["total"] == 1

    def test_low_stock_filter(self, client, cashier_headers, cola, db_session):
        stocked = Product(name="Water 1L", sku="WTR-1L", unit_price=Decimal("100"), reorder_level=Decimal("2"))
        db_session.add(stocked)
        db_session.commit()
        db_session.add(InventoryBatch(product_id=stocked.id, batch_number="W1", quantity=Decimal("30"),
                                      purchased_quantity=Decimal("30")))
        db_session.commit()

        response = client.get("/api/v1/products?low_stock=true", headers=cashier_headers)

        names = [p["name"] for p in response.json()["items"]]
        assert names == ["Elephant House Cola 400ml"]


class TestBatches:
    """Batch receipt and ordering"""

    def test_add_batch_defaults_purchased_quantity(self, client, manager_headers, cola):
        response = client.post(
            f"/api/v1/products/{cola.id}/batches",
            json={"batch_number": "B-100", "quantity": "24", "expiry_date": "2027-03-01"},
            headers=manager_headers
        )

        assert response.status_code == 201
        body = response.json()
        assert Decimal(body["purchased_quantity"]) == Decimal("24")
        assert Decimal(body["selling_price"]) == Decimal("250.00")

    def test_duplicate_batch_number(self, client, manager_headers, cola_batches, cola):
        response = client.post(
            f"/api/v1/products/{cola.id}/batches",
            json={"batch_number": "B-LATE", "quantity": "1"},
            headers=manager_headers
        )
        assert response.status_code == 409

    def test_batches_listed_in_fifo_order(self, client, cashier_headers, cola_batches, cola):
        response = client.get(f"/api/v1/products/{cola.id}/batches", headers=cashier_headers)
        assert [b["batch_number"] for b in response.json()] == ["B-EARLY", "B-LATE", "B-NOEXP"]


class TestDeductStock:
    """FIFO and batch-targeted deduction"""

    def test_fifo_spans_batches(self, db_session, cola, cola_batches):
        deductions = ProductService(db_session).deduct_stock(cola.id, 7)

        assert deductions == [
            {"batch_number": "B-EARLY", "quantity": 5.0},
            {"batch_number": "B-LATE", "quantity": 2.0},
        ]

    def test_named_batch_first(self, db_session, cola, cola_batches):
        deductions = ProductService(db_session).deduct_stock(cola.id, 10, batch_number="B-NOEXP")

        assert deductions[0] == {"batch_number": "B-NOEXP", "quantity": 8.0}
        assert deductions[1] == {"batch_number": "B-EARLY", "quantity": 2.0}

    def test_insufficient_stock_deducts_nothing(self, db_session, cola, cola_batches):
        with pytest.raises(HTTPException) as exc:
            ProductService(db_session).deduct_stock(cola.id, 100)

        assert exc.value.status_code == 400
        db_session.expire_all()
        assert db_session.get(Product, cola.id).stock_quantity == Decimal("33")
