"""
Tests for the sales module

Covers:
- Ringing up product and menu item sales with VAT
- Stock deduction from batches and recipes inside the sale transaction
- Cash payment checks and change
- Listing, reporting and status changes
- VAT preview and per-sale breakdown
- Bill splitting by equal shares, amounts and items, and paying the shares
"""

import pytest
from decimal import Decimal

from app.modules.products.models import Product, InventoryBatch
from app.modules.menu.models import MenuItem, MenuCategory, MenuItemIngredient
from app.modules.inventory.models import Ingredient, StockTransaction, StockTransactionType
from app.modules.sales.models import Sale, SaleStatus, OrderType, BillSplit, SplitStatus


# ===== FIXTURES =====

@pytest.fixture
def ginger_beer(db_session):
    product = Product(
        name="Elephant House Ginger Beer",
        sku="EH-GB-400",
        unit_price=Decimal("250.00"),
        cost_price=Decimal("150.00")
    )
    db_session.add(product)
    db_session.flush()
    db_session.add(InventoryBatch(product_id=product.id, batch_number="GB-1",
                                  quantity=Decimal("10"), purchased_quantity=Decimal("10")))
    db_session.commit()
    db_session.refresh(product)
    return product


@pytest.fixture
def lamprais(db_session):
    rice = Ingredient(name="Samba Rice", unit="kg", current_stock=Decimal("5"), unit_cost=Decimal("300"))
    item = MenuItem(name="Lamprais", category=MenuCategory.MAINS, price=Decimal("1000.00"),
                    cost_price=Decimal("400.00"))
    db_session.add_all([rice, item])
    db_session.flush()
    db_session.add(MenuItemIngredient(menu_item_id=item.id, ingredient_id=rice.id,
                                      quantity=Decimal("0.25"), unit="kg"))
    db_session.commit()
    db_session.refresh(item)
    return {"item": item, "rice": rice}


def _line(item, quantity="1", item_type="product", price=None):
    return {
        "product": str(item.id),
        "quantity": quantity,
        "unit_price": str(price if price is not None else getattr(item, "unit_price", None) or item.price),
        "item_type": item_type
    }


class TestCreateSale:
    """POST /sales"""

    def test_product_sale_deducts_batches(self, client, cashier_headers, ginger_beer, db_session):
        body = {"items": [_line(ginger_beer, "2")], "amount_paid": "1000"}

        response = client.post("/api/v1/sales", json=body, headers=cashier_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["sale_number"].startswith("SALE-")
        assert Decimal(data["subtotal"]) == Decimal("500.00")
        assert Decimal(data["vat_amount"]) == Decimal("75.00")
        assert Decimal(data["total_amount"]) == Decimal("575.00")
        assert Decimal(data["change_given"]) == Decimal("425.00")
        assert data["cashier_name"] == "Cashier User"
        assert data["items"][0]["product_name"] == "Elephant House Ginger Beer"

        db_session.expire_all()
        batch = db_session.query(InventoryBatch).filter(InventoryBatch.batch_number == "GB-1").one()
        assert batch.quantity == Decimal("8")

    def test_menu_item_sale_deducts_recipe(self, client, cashier_headers, lamprais, db_session):
        body = {
            "items": [_line(lamprais["item"], "2", item_type="menu-item")],
            "amount_paid": "2300",
            "order_type": "dine-in",
            "table_number": "T4"
        }

        response = client.post("/api/v1/sales", json=body, headers=cashier_headers)

        assert response.status_code == 201
        assert response.json()["inventory_warnings"] == []
        db_session.expire_all()
        rice = db_session.get(Ingredient, lamprais["rice"].id)
        assert rice.current_stock == Decimal("4.5")
        row = db_session.query(StockTransaction).one()
        assert row.transaction_type == StockTransactionType.SALE_DEDUCTION
        assert row.reference_number == response.json()["sale_number"]

    def test_menu_item_without_recipe_only_warns(self, client, cashier_headers, db_session):
        tea = MenuItem(name="Plain Tea", category=MenuCategory.BEVERAGES, price=Decimal("100"))
        db_session.add(tea)
        db_session.commit()

        body = {"items": [_line(tea, item_type="menu-item")], "amount_paid": "115"}
        response = client.post("/api/v1/sales", json=body, headers=cashier_headers)

        assert response.status_code == 201
        assert "No recipe found" in response.json()["inventory_warnings"][0]

    def test_empty_items_rejected(self, client, cashier_headers):
        response = client.post("/api/v1/sales", json={"items": []}, headers=cashier_headers)
        assert response.status_code == 400

    def test_unknown_items_listed(self, client, cashier_headers):
        missing = "00000000-0000-0000-0000-0000000000aa"
        body = {"items": [{"product": missing, "quantity": "1", "unit_price": "100"}], "amount_paid": "500"}

        response = client.post("/api/v1/sales", json=body, headers=cashier_headers)

        assert response.status_code == 400
        assert missing in response.json()["detail"]

    def test_cash_underpayment_rejected(self, client, cashier_headers, ginger_beer, db_session):
        body = {"items": [_line(ginger_beer, "2")], "amount_paid": "500"}

        response = client.post("/api/v1/sales", json=body, headers=cashier_headers)

        assert response.status_code == 400
        assert db_session.query(Sale).count() == 0

    def test_card_sale_paid_in_full(self, client, cashier_headers, ginger_beer):
        body = {"items": [_line(ginger_beer)], "payment_method": "card"}

        response = client.post("/api/v1/sales", json=body, headers=cashier_headers)

        assert Decimal(response.json()["amount_paid"]) == Decimal("287.50")
        assert Decimal(response.json()["change_given"]) == Decimal("0")

    def test_stock_shortage_rolls_back_everything(self, client, cashier_headers, ginger_beer, lamprais, db_session):
        body = {
            "items": [_line(ginger_beer, "1"), _line(lamprais["item"], "30", item_type="menu-item")],
            "amount_paid": "50000"
        }

        response = client.post("/api/v1/sales", json=body, headers=cashier_headers)

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Insufficient stock for Samba Rice")
        db_session.expire_all()
        assert db_session.query(Sale).count() == 0
        assert db_session.query(InventoryBatch).one().quantity == Decimal("10")

    def test_sale_numbers_increase_per_day(self, client, cashier_headers, ginger_beer):
        first = client.post("/api/v1/sales", json={"items": [_line(ginger_beer)], "amount_paid": "300"},
                            headers=cashier_headers).json()
        second = client.post("/api/v1/sales", json={"items": [_line(ginger_beer)], "amount_paid": "300"},
                             headers=cashier_headers).json()

        assert first["sale_number"].endswith("-0001")
        assert second["sale_number"].endswith("-0002")

    def test_kitchen_staff_cannot_sell(self, client, kitchen_headers, ginger_beer):
        response = client.post("/api/v1/sales", json={"items": [_line(ginger_beer)], "amount_paid": "300"},
                               headers=kitchen_headers)
        assert response.status_code == 403


class TestSaleQueries:
    """Listing and reporting"""

    @pytest.fixture
    def sales(self, db_session, cashier_user):
        rows = [
            Sale(sale_number="SALE-20260101-0001", subtotal=Decimal("1000"), vat_amount=Decimal("150"),
                 total_amount=Decimal("1150"), order_type=OrderType.DINE_IN, cashier_id=cashier_user.id),
            Sale(sale_number="SALE-20260101-0002", subtotal=Decimal("200"), vat_amount=Decimal("30"),
                 total_amount=Decimal("230"), order_type=OrderType.TAKEAWAY, cashier_id=cashier_user.id),
            Sale(sale_number="SALE-20260101-0003", subtotal=Decimal("500"), vat_amount=Decimal("75"),
                 total_amount=Decimal("575"), order_type=OrderType.TAKEAWAY, status=SaleStatus.VOIDED,
                 cancellation_reason="Wrong order", cashier_id=cashier_user.id),
        ]
        db_session.add_all(rows)
        db_session.commit()
        return rows

    def test_filter_by_order_type(self, client, cashier_headers, sales):
        response = client.get("/api/v1/sales?order_type=takeaway", headers=cashier_headers)

        assert response.status_code == 200
        assert len(response.json()) == 2

    def test_report_excludes_voided(self, client, manager_headers, sales):
        response = client.get("/api/v1/sales/report", headers=manager_headers)

        data = response.json()
        assert data["total_sales"] == 2
        assert Decimal(data["total_revenue"]) == Decimal("1380.00")
        assert Decimal(data["total_vat"]) == Decimal("180.00")
        assert data["order_type_breakdown"]["dine-in"]["count"] == 1
        assert data["order_type_breakdown"]["delivery"]["count"] == 0

    def test_report_requires_management(self, client, cashier_headers):
        assert client.get("/api/v1/sales/report", headers=cashier_headers).status_code == 403

    def test_unknown_sale(self, client, cashier_headers):
        response = client.get("/api/v1/sales/00000000-0000-0000-0000-000000000001", headers=cashier_headers)
        assert response.status_code == 404


class TestSaleStatus:
    """PATCH /sales/{id}/status"""

    @pytest.fixture
    def sale(self, db_session):
        row = Sale(sale_number="SALE-20260101-0001", subtotal=Decimal("100"), total_amount=Decimal("115"),
                   status=SaleStatus.PENDING)
        db_session.add(row)
        db_session.commit()
        return row

    def test_progress_status(self, client, cashier_headers, sale):
        response = client.patch(f"/api/v1/sales/{sale.id}/status", json={"status": "preparing"},
                                headers=cashier_headers)
        assert response.json()["status"] == "preparing"

    def test_void_requires_reason(self, client, cashier_headers, sale):
        response = client.patch(f"/api/v1/sales/{sale.id}/status", json={"status": "voided"},
                                headers=cashier_headers)
        assert response.status_code == 400

    def test_voided_sale_is_final(self, client, cashier_headers, sale):
        client.patch(f"/api/v1/sales/{sale.id}/status",
                     json={"status": "voided", "cancellation_reason": "Customer left"}, headers=cashier_headers)

        response = client.patch(f"/api/v1/sales/{sale.id}/status", json={"status": "completed"},
                                headers=cashier_headers)

        assert response.status_code == 400


class TestSaleVAT:
    """VAT preview and breakdown"""

    def test_calculate_vat_does_not_persist(self, client, cashier_headers, ginger_beer, db_session):
        response = client.post("/api/v1/sales/calculate-vat", json={"items": [_line(ginger_beer, "4")]},
                               headers=cashier_headers)

        assert response.status_code == 200
        assert Decimal(response.json()["total_amount"]) == Decimal("1150.00")
        assert db_session.query(Sale).count() == 0

    def test_breakdown_validates_recorded_sale(self, client, cashier_headers, ginger_beer):
        sale = client.post("/api/v1/sales", json={"items": [_line(ginger_beer, "2")], "amount_paid": "575"},
                           headers=cashier_headers).json()

        response = client.get(f"/api/v1/sales/{sale['id']}/vat-breakdown", headers=cashier_headers)

        data = response.json()
        assert data["validation"]["is_valid"] is True
        assert data["breakdown"]["vat_percentage"] == "15.00%"


@pytest.fixture
def beer_sale(client, cashier_headers, ginger_beer):
    """Two ginger beers: 500.00 + 75.00 VAT"""
    return client.post("/api/v1/sales", json={"items": [_line(ginger_beer, "2")], "amount_paid": "575"},
                       headers=cashier_headers).json()


@pytest.fixture
def mixed_sale(client, cashier_headers, ginger_beer, lamprais):
    """One ginger beer (287.50) and one lamprais (1150.00)"""
    body = {
        "items": [_line(ginger_beer), _line(lamprais["item"], item_type="menu-item")],
        "amount_paid": "1437.50",
        "order_type": "dine-in",
        "table_number": "T2"
    }
    return client.post("/api/v1/sales", json=body, headers=cashier_headers).json()


def _split(client, headers, sale, **body):
    return client.post(f"/api/v1/sales/{sale['id']}/split", json=body, headers=headers)


class TestBillSplits:
    """POST /sales/{id}/split and the split endpoints"""

    def test_equal_split_extracts_vat(self, client, cashier_headers, beer_sale):
        response = _split(client, cashier_headers, beer_sale, mode="equal", parts=2)

        assert response.status_code == 201
        splits = response.json()
        assert [s["split_number"] for s in splits] == [1, 2]
        assert [s["customer_name"] for s in splits] == ["Customer 1", "Customer 2"]
        for split in splits:
            assert Decimal(split["total_amount"]) == Decimal("287.50")
            assert Decimal(split["subtotal"]) == Decimal("250.00")
            assert Decimal(split["vat_amount"]) == Decimal("37.50")
            assert split["status"] == "pending"

    def test_equal_split_rounding_goes_to_last_share(self, client, cashier_headers, beer_sale):
        splits = _split(client, cashier_headers, beer_sale, mode="equal", parts=3).json()

        totals = [Decimal(s["total_amount"]) for s in splits]
        assert totals == [Decimal("191.67"), Decimal("191.67"), Decimal("191.66")]
        assert sum(totals) == Decimal("575.00")

    def test_amount_split_must_match_total(self, client, cashier_headers, beer_sale):
        response = _split(client, cashier_headers, beer_sale, mode="amount",
                          splits=[{"amount": "300"}, {"amount": "200"}])
        assert response.status_code == 400
        assert "must equal sale total (575.00)" in response.json()["detail"]

        response = _split(client, cashier_headers, beer_sale, mode="amount",
                          splits=[{"amount": "300", "customer_name": "Kamal"}, {"amount": "274.50"}])
        assert response.status_code == 201
        assert response.json()[0]["customer_name"] == "Kamal"
        assert Decimal(response.json()[1]["total_amount"]) == Decimal("274.50")

    def test_item_split(self, client, cashier_headers, mixed_sale):
        response = _split(client, cashier_headers, mixed_sale, mode="items", splits=[
            {"item_indexes": [0], "customer_name": "Nimal"},
            {"item_indexes": [1]}
        ])

        assert response.status_code == 201
        first, second = response.json()
        assert Decimal(first["total_amount"]) == Decimal("287.50")
        assert Decimal(second["total_amount"]) == Decimal("1150.00")
        assert first["items"][0]["product_name"] == "Elephant House Ginger Beer"
        assert second["items"][0]["product_name"] == "Lamprais"

    def test_item_split_checks_indexes(self, client, cashier_headers, mixed_sale):
        shared = _split(client, cashier_headers, mixed_sale, mode="items",
                        splits=[{"item_indexes": [0]}, {"item_indexes": [0, 1]}])
        assert shared.status_code == 422

        out_of_range = _split(client, cashier_headers, mixed_sale, mode="items",
                              splits=[{"item_indexes": [0]}, {"item_indexes": [5]}])
        assert out_of_range.status_code == 400
        assert "out of range" in out_of_range.json()["detail"]

    def test_single_part_rejected(self, client, cashier_headers, beer_sale):
        response = _split(client, cashier_headers, beer_sale, mode="equal", parts=1)
        assert response.status_code == 422

    def test_sale_split_only_once(self, client, cashier_headers, beer_sale):
        _split(client, cashier_headers, beer_sale, mode="equal", parts=2)

        response = _split(client, cashier_headers, beer_sale, mode="equal", parts=2)

        assert response.status_code == 400
        assert "already been split" in response.json()["detail"]

    def test_cancelled_sale_cannot_be_split(self, client, cashier_headers, beer_sale):
        client.patch(f"/api/v1/sales/{beer_sale['id']}/status",
                     json={"status": "cancelled", "cancellation_reason": "Wrong table"}, headers=cashier_headers)

        response = _split(client, cashier_headers, beer_sale, mode="equal", parts=2)

        assert response.status_code == 400

    def test_paying_every_share(self, client, cashier_headers, beer_sale):
        first, second = _split(client, cashier_headers, beer_sale, mode="equal", parts=2).json()

        paid = client.post(f"/api/v1/sales/splits/{first['id']}/pay",
                           json={"payment_method": "cash", "amount_paid": "300"}, headers=cashier_headers)
        assert paid.status_code == 200
        assert Decimal(paid.json()["change_given"]) == Decimal("12.50")
        assert paid.json()["all_splits_paid"] is False

        again = client.post(f"/api/v1/sales/splits/{first['id']}/pay",
                            json={"payment_method": "cash", "amount_paid": "300"}, headers=cashier_headers)
        assert again.status_code == 400

        card = client.post(f"/api/v1/sales/splits/{second['id']}/pay",
                           json={"payment_method": "card"}, headers=cashier_headers)
        assert Decimal(card.json()["split"]["amount_paid"]) == Decimal("287.50")
        assert card.json()["all_splits_paid"] is True

        overview = client.get(f"/api/v1/sales/{beer_sale['id']}/splits", headers=cashier_headers).json()
        assert Decimal(overview["total_paid"]) == Decimal("575.00")
        assert Decimal(overview["total_pending"]) == Decimal("0.00")
        assert overview["all_paid"] is True

    def test_short_cash_rejected(self, client, cashier_headers, beer_sale, db_session):
        first, _ = _split(client, cashier_headers, beer_sale, mode="equal", parts=2).json()

        response = client.post(f"/api/v1/sales/splits/{first['id']}/pay",
                               json={"payment_method": "cash", "amount_paid": "200"}, headers=cashier_headers)

        assert response.status_code == 400
        assert "Insufficient payment" in response.json()["detail"]
        db_session.expire_all()
        assert db_session.query(BillSplit).filter(BillSplit.status == SplitStatus.PAID).count() == 0

    def test_delete_blocked_once_a_share_is_paid(self, client, cashier_headers, manager_headers, beer_sale):
        assert client.delete(f"/api/v1/sales/{beer_sale['id']}/splits",
                             headers=cashier_headers).status_code == 403

        _split(client, cashier_headers, beer_sale, mode="equal", parts=2)
        removed = client.delete(f"/api/v1/sales/{beer_sale['id']}/splits", headers=manager_headers)
        assert removed.json() == {"deleted": 2}

        first, _ = _split(client, cashier_headers, beer_sale, mode="equal", parts=2).json()
        client.post(f"/api/v1/sales/splits/{first['id']}/pay",
                    json={"payment_method": "card"}, headers=cashier_headers)
        blocked = client.delete(f"/api/v1/sales/{beer_sale['id']}/splits", headers=manager_headers)
        assert blocked.status_code == 400
        assert "1 split(s) already paid" in blocked.json()["detail"]

    def test_update_and_summary(self, client, cashier_headers, manager_headers, beer_sale):
        first, second = _split(client, cashier_headers, beer_sale, mode="equal", parts=2).json()
        renamed = client.put(f"/api/v1/sales/splits/{first['id']}", json={"customer_name": "Ruwan"},
                             headers=manager_headers)
        assert renamed.json()["customer_name"] == "Ruwan"

        client.post(f"/api/v1/sales/splits/{second['id']}/pay",
                    json={"payment_method": "mobile"}, headers=cashier_headers)
        locked = client.put(f"/api/v1/sales/splits/{second['id']}", json={"notes": "late"}, headers=manager_headers)
        assert locked.status_code == 400

        summary = client.get("/api/v1/sales/splits/summary", headers=manager_headers).json()
        assert summary["total_splits"] == 2
        assert summary["paid"] == 1
        assert summary["pending"] == 1
        assert Decimal(summary["paid_amount"]) == Decimal("287.50")
        assert Decimal(summary["total_amount"]) == Decimal("575.00")
