"""
Tests for the inventory module

Covers:
- Ingredient CRUD and low-stock listing
- Add, adjust and damaged stock movements
- Location balances netted from the stock ledger
- Transfers: initiate, receive with damage, cancel
- Stock issues: preview, confirm, shortage, cancel
- Recipe deduction for sold menu items
- Ledger numbering past four digits
- Repeated ingredients and transfer shortfalls
- Stock counts: snapshot, counting, approval into adjustment rows
"""

import pytest
from decimal import Decimal
from fastapi import HTTPException

from app.modules.inventory.models import (
    Ingredient, StockLocation, StockTransaction, LocationType, StockTransactionType,
    StockReconciliationItem
)
from app.modules.inventory.service import StockLedger, IngredientService, StockService
from app.modules.inventory.schemas import StockAdd, StockDamaged
from app.modules.menu.models import MenuItem, MenuItemPortion, MenuItemIngredient, MenuCategory
from app.common.sequences import sequence_tail
from app.common.utils import utc_now


# ===== FIXTURES =====

@pytest.fixture
def locations(db_session):
    store = StockLocation(location_name="Main Store", location_type=LocationType.STORE)
    kitchen = StockLocation(location_name="Main Kitchen", location_type=LocationType.KITCHEN)
    db_session.add_all([store, kitchen])
    db_session.commit()
    return {"store": store, "kitchen": kitchen}


@pytest.fixture
def rice(db_session):
    ingredient = Ingredient(name="Samba Rice", unit="kg", reorder_level=Decimal("5"), unit_cost=Decimal("280"))
    db_session.add(ingredient)
    db_session.commit()
    db_session.refresh(ingredient)
    return ingredient


@pytest.fixture
def coconut(db_session):
    ingredient = Ingredient(name="Coconut Milk", unit="l", reorder_level=Decimal("2"), unit_cost=Decimal("450"))
    db_session.add(ingredient)
    db_session.commit()
    db_session.refresh(ingredient)
    return ingredient


@pytest.fixture
def stocked(db_session, locations, rice, coconut):
    """20kg rice and 6l coconut milk received into the store."""
    service = StockService(db_session)
    service.add_stock(StockAdd(ingredient_id=rice.id, quantity=Decimal("20"), location_id=locations["store"].id))
    service.add_stock(StockAdd(ingredient_id=coconut.id, quantity=Decimal("6"), location_id=locations["store"].id))
    return locations


@pytest.fixture
def milk_rice(db_session, rice, coconut):
    """Kiribath: 0.2kg rice and 0.1l coconut milk per plate."""
    item = MenuItem(name="Kiribath", category=MenuCategory.MAINS, price=Decimal("400"))
    db_session.add(item)
    db_session.flush()
    db_session.add_all([
        MenuItemIngredient(menu_item_id=item.id, ingredient_id=rice.id, quantity=Decimal("0.2"), unit="kg"),
        MenuItemIngredient(menu_item_id=item.id, ingredient_id=coconut.id, quantity=Decimal("0.1"), unit="l"),
    ])
    db_session.commit()
    db_session.refresh(item)
    return item


def balance(db_session, ingredient, location):
    return StockLedger(db_session).location_balance(ingredient.id, location.id)


def send_rice(client, headers, stocked, rice, quantity="8"):
    return client.post("/api/v1/stock/transfers", json={
        "from_location_id": str(stocked["store"].id),
        "to_location_id": str(stocked["kitchen"].id),
        "items": [{"ingredient_id": str(rice.id), "quantity": quantity}],
        "reason": "Lunch prep"
    }, headers=headers)


class TestIngredients:
    """Ingredient catalogue"""

    def test_create_with_opening_balance(self, client, manager_headers, db_session):
        payload = {"name": "Dhal", "unit": "kg", "current_stock": "12", "unit_cost": "320"}

        response = client.post("/api/v1/inventory/ingredients", json=payload, headers=manager_headers)

        assert response.status_code == 201
        row = db_session.query(StockTransaction).one()
        assert row.transaction_type == StockTransactionType.OPENING_BALANCE
        assert row.quantity == Decimal("12")

    def test_duplicate_name(self, client, manager_headers, rice):
        payload = {"name": "Samba Rice", "unit": "kg"}
        response = client.post("/api/v1/inventory/ingredients", json=payload, headers=manager_headers)
        assert response.status_code == 409

    def test_low_stock(self, client, cashier_headers, stocked, db_session):
        db_session.add(Ingredient(name="Curry Leaves", unit="g", current_stock=Decimal("0"), reorder_level=Decimal("50")))
        db_session.commit()

        response = client.get("/api/v1/inventory/ingredients/low-stock", headers=cashier_headers)

        assert [i["name"] for i in response.json()] == ["Curry Leaves"]

    def test_delete_deactivates(self, client, manager_headers, rice, db_session):
        response = client.delete(f"/api/v1/inventory/ingredients/{rice.id}", headers=manager_headers)
        assert response.status_code == 204
        db_session.refresh(rice)
        assert rice.is_active is False


class TestStockMovements:
    """Add, adjust and damaged"""

    def test_add_stock_updates_total_and_cost(self, client, manager_headers, rice, locations, db_session):
        payload = {
            "ingredient_id": str(rice.id),
            "quantity": "10",
            "unit_cost": "300",
            "location_id": str(locations["store"].id),
            "reference_number": "GRN-55"
        }

        response = client.post("/api/v1/stock/add", json=payload, headers=manager_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["transaction_type"] == "add_stock"
        assert Decimal(body["total_cost"]) == Decimal("3000.00")
        assert body["transaction_number"].startswith("ST-")
        db_session.refresh(rice)
        assert rice.current_stock == Decimal("10")
        assert rice.unit_cost == Decimal("300")
        assert balance(db_session, rice, locations["store"]) == Decimal("10")

    def test_adjust_decrease(self, client, manager_headers, rice, stocked, db_session):
        payload = {"ingredient_id": str(rice.id), "adjustment_type": "decrease", "quantity": "2.5", "reason": "Count"}

        response = client.post("/api/v1/stock/adjust", json=payload, headers=manager_headers)

        assert response.status_code == 201
        db_session.refresh(rice)
        assert rice.current_stock == Decimal("17.5")

    def test_adjust_cannot_go_negative(self, client, manager_headers, rice, stocked):
        payload = {"ingredient_id": str(rice.id), "adjustment_type": "decrease", "quantity": "25", "reason": "Count"}

        response = client.post("/api/v1/stock/adjust", json=payload, headers=manager_headers)

        assert response.status_code == 400
        assert "Current stock: 20" in response.json()["detail"]
        assert "resulting stock: -5" in response.json()["detail"]

    def test_adjust_requires_reason(self, client, manager_headers, rice):
        payload = {"ingredient_id": str(rice.id), "adjustment_type": "increase", "quantity": "1"}
        response = client.post("/api/v1/stock/adjust", json=payload, headers=manager_headers)
        assert response.status_code == 422

    def test_damaged(self, client, kitchen_headers, rice, stocked, db_session):
        payload = {"ingredient_id": str(rice.id), "quantity": "1", "reason": "Weevils",
                   "location_id": str(stocked["store"].id)}

        response = client.post("/api/v1/stock/damaged", json=payload, headers=kitchen_headers)

        assert response.status_code == 201
        assert Decimal(response.json()["quantity"]) == Decimal("-1")
        assert balance(db_session, rice, stocked["store"]) == Decimal("19")

    def test_history_newest_first(self, client, manager_headers, rice, stocked):
        client.post("/api/v1/stock/adjust",
                    json={"ingredient_id": str(rice.id), "adjustment_type": "increase", "quantity": "1", "reason": "Found"},
                    headers=manager_headers)

        response = client.get(f"/api/v1/stock/history?ingredient_id={rice.id}", headers=manager_headers)

        types = [r["transaction_type"] for r in response.json()]
        assert types == ["adjustment", "add_stock"]


class TestLocationStock:
    """Balances netted per location"""

    def test_location_stock_listing(self, client, cashier_headers, stocked, rice, coconut):
        response = client.get(f"/api/v1/inventory/locations/{stocked['store'].id}/stock", headers=cashier_headers)

        assert response.status_code == 200
        quantities = {i["ingredient_name"]: Decimal(i["quantity"]) for i in response.json()["items"]}
        assert quantities == {"Coconut Milk": Decimal("6"), "Samba Rice": Decimal("20")}

    def test_create_location(self, client, manager_headers):
        response = client.post("/api/v1/inventory/locations",
                               json={"location_name": "Bar", "location_type": "bar"}, headers=manager_headers)
        assert response.status_code == 201
        assert response.json()["location_type"] == "bar"


class TestTransfers:
    """Stock moving between locations"""

    def test_initiate_moves_stock_out_of_source(self, client, manager_headers, stocked, rice, db_session):
        response = send_rice(client, manager_headers, stocked, rice)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["transfer_number"].startswith("TRF-")
        assert balance(db_session, rice, stocked["store"]) == Decimal("12")
        assert balance(db_session, rice, stocked["kitchen"]) == Decimal("0")
        db_session.refresh(rice)
        assert rice.current_stock == Decimal("20")

    def test_insufficient_at_source(self, client, manager_headers, stocked, rice, db_session):
        response = send_rice(client, manager_headers, stocked, rice, quantity="25")

        assert response.status_code == 400
        assert "Samba Rice" in response.json()["detail"]
        assert db_session.query(StockTransaction).filter(
            StockTransaction.transaction_type == StockTransactionType.TRANSFER_OUT
        ).count() == 0

    def test_same_location_rejected(self, client, manager_headers, stocked, rice):
        response = client.post("/api/v1/stock/transfers", json={
            "from_location_id": str(stocked["store"].id),
            "to_location_id": str(stocked["store"].id),
            "items": [{"ingredient_id": str(rice.id), "quantity": "1"}]
        }, headers=manager_headers)
        assert response.status_code == 422

    def test_receive_with_damage(self, client, manager_headers, stocked, rice, db_session):
        transfer = send_rice(client, manager_headers, stocked, rice).json()
        item_id = transfer["items"][0]["id"]

        response = client.post(f"/api/v1/stock/transfers/{transfer['id']}/receive", json={
            "items": [{"item_id": item_id, "quantity_received": "7", "damaged_quantity": "1",
                       "damage_reason": "Torn bag"}]
        }, headers=manager_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "received"
        assert balance(db_session, rice, stocked["kitchen"]) == Decimal("7")
        assert balance(db_session, rice, stocked["store"]) == Decimal("12")
        db_session.refresh(rice)
        assert rice.current_stock == Decimal("19")

    def test_receive_more_than_sent(self, client, manager_headers, stocked, rice):
        transfer = send_rice(client, manager_headers, stocked, rice).json()
        response = client.post(f"/api/v1/stock/transfers/{transfer['id']}/receive", json={
            "items": [{"item_id": transfer["items"][0]["id"], "quantity_received": "8", "damaged_quantity": "1"}]
        }, headers=manager_headers)
        assert response.status_code == 400

    def test_cancel_restores_source(self, client, manager_headers, stocked, rice, db_session):
        transfer = send_rice(client, manager_headers, stocked, rice).json()

        response = client.post(f"/api/v1/stock/transfers/{transfer['id']}/cancel", headers=manager_headers)

        assert response.json()["status"] == "cancelled"
        assert balance(db_session, rice, stocked["store"]) == Decimal("20")
        second = client.post(f"/api/v1/stock/transfers/{transfer['id']}/cancel", headers=manager_headers)
        assert second.status_code == 400

    def test_rows_of_one_transfer_share_a_base_number(self, client, manager_headers, stocked, rice, coconut, db_session):
        client.post("/api/v1/stock/transfers", json={
            "from_location_id": str(stocked["store"].id),
            "to_location_id": str(stocked["kitchen"].id),
            "items": [
                {"ingredient_id": str(rice.id), "quantity": "1"},
                {"ingredient_id": str(coconut.id), "quantity": "1"}
            ]
        }, headers=manager_headers)

        numbers = sorted(
            r.transaction_number for r in db_session.query(StockTransaction).filter(
                StockTransaction.transaction_type == StockTransactionType.TRANSFER_OUT
            )
        )
        assert numbers[0].endswith("-1") and numbers[1].endswith("-2")
        assert numbers[0][:-2] == numbers[1][:-2]


class TestStockIssues:
    """Production issues from the store to the kitchen"""

    def _create(self, client, headers, stocked, item, planned="10"):
        return client.post("/api/v1/stock-issues", json={
            "menu_item_id": str(item.id),
            "planned_quantity": planned,
            "from_location_id": str(stocked["store"].id),
            "to_location_id": str(stocked["kitchen"].id)
        }, headers=headers)

    def test_create_returns_requirements(self, client, kitchen_headers, stocked, milk_rice):
        response = self._create(client, kitchen_headers, stocked, milk_rice)

        assert response.status_code == 201
        body = response.json()
        assert body["issue"]["status"] == "pending"
        assert body["issue"]["issue_number"].startswith("SI-")
        required = {r["ingredient_name"]: Decimal(r["total_required"]) for r in body["requirements"]}
        assert required == {"Samba Rice": Decimal("2"), "Coconut Milk": Decimal("1")}
        assert body["can_confirm"] is True

    def test_unknown_menu_item(self, client, kitchen_headers, stocked):
        response = client.post("/api/v1/stock-issues", json={
            "menu_item_id": "00000000-0000-0000-0000-000000000009",
            "planned_quantity": "1",
            "from_location_id": str(stocked["store"].id),
            "to_location_id": str(stocked["kitchen"].id)
        }, headers=kitchen_headers)
        assert response.status_code == 404

    def test_confirm_is_zero_sum(self, client, kitchen_headers, stocked, milk_rice, rice, coconut, db_session):
        issue = self._create(client, kitchen_headers, stocked, milk_rice).json()["issue"]

        response = client.post(f"/api/v1/stock-issues/{issue['id']}/confirm", headers=kitchen_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"
        assert balance(db_session, rice, stocked["store"]) == Decimal("18")
        assert balance(db_session, rice, stocked["kitchen"]) == Decimal("2")
        assert balance(db_session, coconut, stocked["kitchen"]) == Decimal("1")
        db_session.refresh(rice)
        assert rice.current_stock == Decimal("20")

    def test_shortage_writes_nothing(self, client, kitchen_headers, stocked, milk_rice, db_session):
        issue = self._create(client, kitchen_headers, stocked, milk_rice, planned="70").json()["issue"]
        before = db_session.query(StockTransaction).count()

        response = client.post(f"/api/v1/stock-issues/{issue['id']}/confirm", headers=kitchen_headers)

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert "Coconut Milk" in detail and "Required: 7" in detail and "available: 6" in detail
        assert db_session.query(StockTransaction).count() == before

    def test_preview_flags_shortage(self, client, kitchen_headers, stocked, milk_rice):
        issue = self._create(client, kitchen_headers, stocked, milk_rice, planned="70").json()["issue"]

        preview = client.get(f"/api/v1/stock-issues/{issue['id']}/preview", headers=kitchen_headers).json()

        flags = {r["ingredient_name"]: r["available"] for r in preview["requirements"]}
        assert flags == {"Samba Rice": True, "Coconut Milk": False}
        assert preview["can_confirm"] is False

    def test_cancel_only_pending(self, client, kitchen_headers, stocked, milk_rice):
        issue = self._create(client, kitchen_headers, stocked, milk_rice).json()["issue"]
        client.post(f"/api/v1/stock-issues/{issue['id']}/confirm", headers=kitchen_headers)

        response = client.post(f"/api/v1/stock-issues/{issue['id']}/cancel", headers=kitchen_headers)

        assert response.status_code == 400


class TestDeductForMenuItem:
    """Recipe-driven deduction on sale"""

    def test_deducts_each_ingredient(self, db_session, stocked, milk_rice, rice, coconut):
        result = IngredientService(db_session).deduct_for_menu_item(milk_rice.id, 3)
        db_session.commit()

        assert result["success"] is True
        db_session.refresh(rice)
        db_session.refresh(coconut)
        assert rice.current_stock == Decimal("19.4")
        assert coconut.current_stock == Decimal("5.7")

    def test_location_scoped_rows(self, db_session, stocked, milk_rice, rice):
        IngredientService(db_session).deduct_for_menu_item(milk_rice.id, 5, location_id=stocked["store"].id)
        db_session.commit()

        assert balance(db_session, rice, stocked["store"]) == Decimal("19")

    def test_no_recipe(self, db_session):
        item = MenuItem(name="Plain Tea", category=MenuCategory.BEVERAGES, price=Decimal("100"))
        db_session.add(item)
        db_session.commit()

        result = IngredientService(db_session).deduct_for_menu_item(item.id, 1)

        assert result["success"] is False
        assert result["message"] == "No recipe found for this menu item"

    def test_falls_back_to_default_portion(self, db_session, stocked, rice):
        item = MenuItem(name="Fried Rice", category=MenuCategory.MAINS, price=Decimal("900"))
        db_session.add(item)
        db_session.flush()
        regular = MenuItemPortion(menu_item_id=item.id, name="Regular", price=Decimal("900"), is_default=True)
        db_session.add(regular)
        db_session.flush()
        db_session.add(MenuItemIngredient(menu_item_id=item.id, portion_id=regular.id,
                                          ingredient_id=rice.id, quantity=Decimal("0.5"), unit="kg"))
        db_session.commit()

        IngredientService(db_session).deduct_for_menu_item(item.id, 2)
        db_session.commit()

        db_session.refresh(rice)
        assert rice.current_stock == Decimal("19")

    def test_insufficient_names_ingredient(self, db_session, stocked, milk_rice):
        with pytest.raises(HTTPException) as exc:
            IngredientService(db_session).deduct_for_menu_item(milk_rice.id, 200)

        assert exc.value.status_code == 400
        assert exc.value.detail.startswith("Insufficient stock for")


class TestNumbering:
    """Ledger numbers keep counting past four digits"""

    def test_counter_passes_9999(self, db_session, rice):
        prefix = f"ST-{utc_now().year}-"
        StockLedger(db_session).write(
            f"{prefix}9999", StockTransactionType.ADD_STOCK, rice,
            quantity=Decimal("1"), previous_stock=Decimal("0"), new_stock=Decimal("1")
        )
        db_session.commit()
        service = StockService(db_session)

        first = service.add_stock(StockAdd(ingredient_id=rice.id, quantity=Decimal("1")))
        second = service.add_stock(StockAdd(ingredient_id=rice.id, quantity=Decimal("1")))

        assert first.transaction_number == f"{prefix}10000"
        assert second.transaction_number == f"{prefix}10001"

    def test_batch_rows_count_by_their_base(self, db_session, rice):
        prefix = f"ST-{utc_now().year}-"
        StockLedger(db_session).write(
            f"{prefix}0007-12", StockTransactionType.ADD_STOCK, rice,
            quantity=Decimal("1"), previous_stock=Decimal("0"), new_stock=Decimal("1")
        )
        db_session.commit()

        assert StockLedger(db_session).next_number() == f"{prefix}0008"
        assert sequence_tail(f"{prefix}0007-12", prefix) == 7


class TestRepeatedIngredients:
    """An ingredient listed twice is checked against its combined quantity"""

    def test_transfer_rejects_repeated_ingredient(self, client, manager_headers, stocked, rice, db_session):
        response = client.post("/api/v1/stock/transfers", json={
            "from_location_id": str(stocked["store"].id),
            "to_location_id": str(stocked["kitchen"].id),
            "items": [
                {"ingredient_id": str(rice.id), "quantity": "12"},
                {"ingredient_id": str(rice.id), "quantity": "12"}
            ]
        }, headers=manager_headers)

        assert response.status_code == 422
        assert balance(db_session, rice, stocked["store"]) == Decimal("20")

    def test_receive_rejects_repeated_item(self, client, manager_headers, stocked, rice, db_session):
        transfer = send_rice(client, manager_headers, stocked, rice).json()
        item_id = transfer["items"][0]["id"]

        response = client.post(f"/api/v1/stock/transfers/{transfer['id']}/receive", json={
            "items": [
                {"item_id": item_id, "quantity_received": "8"},
                {"item_id": item_id, "quantity_received": "8"}
            ]
        }, headers=manager_headers)

        assert response.status_code == 422
        assert balance(db_session, rice, stocked["kitchen"]) == Decimal("0")

    @pytest.fixture
    def double_rice(self, db_session, rice):
        """Legacy recipe with rice on two lines: 6kg + 6kg per unit."""
        item = MenuItem(name="Biryani Tray", category=MenuCategory.MAINS, price=Decimal("9000"))
        db_session.add(item)
        db_session.flush()
        db_session.add_all([
            MenuItemIngredient(menu_item_id=item.id, ingredient_id=rice.id, quantity=Decimal("6"), unit="kg"),
            MenuItemIngredient(menu_item_id=item.id, ingredient_id=rice.id, quantity=Decimal("6"), unit="kg"),
        ])
        db_session.commit()
        return item

    def test_deduction_sums_repeated_lines(self, db_session, stocked, rice, double_rice):
        with pytest.raises(HTTPException) as exc:
            IngredientService(db_session).deduct_for_menu_item(double_rice.id, 2)

        assert exc.value.status_code == 400
        assert "Required: 24" in exc.value.detail

        result = IngredientService(db_session).deduct_for_menu_item(double_rice.id, 1)
        db_session.commit()
        assert len(result["deductions"]) == 1
        db_session.refresh(rice)
        assert rice.current_stock == Decimal("8")

    def test_issue_sums_repeated_lines(self, client, kitchen_headers, stocked, rice, double_rice, db_session):
        issue = client.post("/api/v1/stock-issues", json={
            "menu_item_id": str(double_rice.id),
            "planned_quantity": "2",
            "from_location_id": str(stocked["store"].id),
            "to_location_id": str(stocked["kitchen"].id)
        }, headers=kitchen_headers).json()
        assert [Decimal(r["total_required"]) for r in issue["requirements"]] == [Decimal("24")]
        assert issue["can_confirm"] is False

        response = client.post(f"/api/v1/stock-issues/{issue['issue']['id']}/confirm", headers=kitchen_headers)

        assert response.status_code == 400
        assert balance(db_session, rice, stocked["store"]) == Decimal("20")


class TestTransferShortfall:
    """Quantity sent but neither received nor damaged"""

    def test_shortfall_leaves_the_total(self, client, manager_headers, stocked, rice, db_session):
        transfer = send_rice(client, manager_headers, stocked, rice).json()

        response = client.post(f"/api/v1/stock/transfers/{transfer['id']}/receive", json={
            "items": [{"item_id": transfer["items"][0]["id"], "quantity_received": "5"}]
        }, headers=manager_headers)

        assert response.status_code == 200
        db_session.refresh(rice)
        located = balance(db_session, rice, stocked["store"]) + balance(db_session, rice, stocked["kitchen"])
        assert located == Decimal("17")
        assert rice.current_stock == Decimal("17")
        shortage = db_session.query(StockTransaction).filter(
            StockTransaction.transaction_type == StockTransactionType.TRANSFER_SHORTAGE
        ).one()
        assert shortage.quantity == Decimal("-3")
        assert shortage.location_id is None

    def test_every_item_must_be_received(self, client, manager_headers, stocked, rice, coconut, db_session):
        transfer = client.post("/api/v1/stock/transfers", json={
            "from_location_id": str(stocked["store"].id),
            "to_location_id": str(stocked["kitchen"].id),
            "items": [
                {"ingredient_id": str(rice.id), "quantity": "2"},
                {"ingredient_id": str(coconut.id), "quantity": "1"}
            ]
        }, headers=manager_headers).json()
        rice_item = next(i for i in transfer["items"] if i["ingredient_id"] == str(rice.id))

        response = client.post(f"/api/v1/stock/transfers/{transfer['id']}/receive", json={
            "items": [{"item_id": rice_item["id"], "quantity_received": "2"}]
        }, headers=manager_headers)

        assert response.status_code == 400
        assert "Coconut Milk" in response.json()["detail"]
        status = client.get(f"/api/v1/stock/transfers/{transfer['id']}", headers=manager_headers).json()["status"]
        assert status == "pending"


class TestReconciliation:
    """/stock/reconciliations"""

    def _start(self, client, headers, location):
        return client.post("/api/v1/stock/reconciliations", json={"location_id": str(location.id)}, headers=headers)

    def _counts(self, client, headers, reconciliation, **physical):
        by_name = {item["ingredient_name"]: item["id"] for item in reconciliation["items"]}
        items = [{"item_id": by_name[name], "physical_stock": qty} for name, qty in physical.items()]
        return client.put(f"/api/v1/stock/reconciliations/{reconciliation['id']}/counts",
                          json={"items": items}, headers=headers)

    def test_start_snapshots_location_balances(self, client, kitchen_headers, stocked):
        response = self._start(client, kitchen_headers, stocked["store"])

        assert response.status_code == 201
        data = response.json()
        assert data["reconciliation_number"] == f"REC-{utc_now().year}-0001"
        assert data["status"] == "in_progress"
        snapshot = {i["ingredient_name"]: Decimal(i["system_stock"]) for i in data["items"]}
        assert snapshot == {"Coconut Milk": Decimal("6"), "Samba Rice": Decimal("20")}
        assert all(Decimal(i["physical_stock"]) == Decimal(i["system_stock"]) for i in data["items"])

    def test_one_open_count_per_location(self, client, kitchen_headers, stocked):
        self._start(client, kitchen_headers, stocked["store"])

        again = self._start(client, kitchen_headers, stocked["store"])
        kitchen = self._start(client, kitchen_headers, stocked["kitchen"])

        assert again.status_code == 400
        assert kitchen.status_code == 201
        assert {Decimal(i["system_stock"]) for i in kitchen.json()["items"]} == {Decimal("0")}

    def test_approved_count_writes_adjustments(self, client, kitchen_headers, manager_headers, stocked, rice,
                                               coconut, db_session):
        reconciliation = self._start(client, kitchen_headers, stocked["store"]).json()
        counted = self._counts(client, kitchen_headers, reconciliation, **{"Samba Rice": "18.5", "Coconut Milk": "6"})
        rice_line = next(i for i in counted.json()["items"] if i["ingredient_name"] == "Samba Rice")
        assert Decimal(rice_line["difference"]) == Decimal("-1.5")
        assert Decimal(rice_line["value_difference"]) == Decimal("-420.00")

        submitted = client.post(f"/api/v1/stock/reconciliations/{reconciliation['id']}/submit",
                                headers=kitchen_headers).json()
        assert submitted["status"] == "completed"
        assert submitted["total_items_counted"] == 2
        assert submitted["total_discrepancies"] == 1
        assert Decimal(submitted["total_value_difference"]) == Decimal("-420.00")

        approved = client.post(f"/api/v1/stock/reconciliations/{reconciliation['id']}/approve",
                               headers=manager_headers)

        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"
        db_session.expire_all()
        assert db_session.get(Ingredient, rice.id).current_stock == Decimal("18.5")
        assert db_session.get(Ingredient, coconut.id).current_stock == Decimal("6")
        assert balance(db_session, rice, stocked["store"]) == Decimal("18.5")

        row = db_session.query(StockTransaction).filter(StockTransaction.reference_type == "reconciliation").one()
        assert row.transaction_type == StockTransactionType.ADJUSTMENT
        assert row.quantity == Decimal("-1.5")
        assert row.location_id == stocked["store"].id
        assert row.reference_number == reconciliation["reconciliation_number"]
        item = db_session.query(StockReconciliationItem).filter(StockReconciliationItem.ingredient_id == rice.id).one()
        assert item.adjustment_made is True
        assert item.stock_transaction_id == row.id

    def test_counts_close_on_submit(self, client, kitchen_headers, stocked):
        reconciliation = self._start(client, kitchen_headers, stocked["store"]).json()
        client.post(f"/api/v1/stock/reconciliations/{reconciliation['id']}/submit", headers=kitchen_headers)

        response = self._counts(client, kitchen_headers, reconciliation, **{"Samba Rice": "19"})

        assert response.status_code == 400

    def test_approval_needs_submission_and_a_manager(self, client, kitchen_headers, manager_headers, stocked):
        reconciliation = self._start(client, kitchen_headers, stocked["store"]).json()
        url = f"/api/v1/stock/reconciliations/{reconciliation['id']}"

        assert client.post(f"{url}/approve", headers=manager_headers).status_code == 400
        client.post(f"{url}/submit", headers=kitchen_headers)
        assert client.post(f"{url}/approve", headers=kitchen_headers).status_code == 403

    def test_count_items_checked(self, client, kitchen_headers, stocked):
        reconciliation = self._start(client, kitchen_headers, stocked["store"]).json()
        url = f"/api/v1/stock/reconciliations/{reconciliation['id']}/counts"
        item_id = reconciliation["items"][0]["id"]

        unknown = client.put(url, json={"items": [{"item_id": str(reconciliation["id"]), "physical_stock": "1"}]},
                             headers=kitchen_headers)
        repeated = client.put(url, json={"items": [{"item_id": item_id, "physical_stock": "1"},
                                                   {"item_id": item_id, "physical_stock": "2"}]},
                              headers=kitchen_headers)

        assert unknown.status_code == 404
        assert repeated.status_code == 422

    def test_approval_refuses_negative_totals(self, client, kitchen_headers, manager_headers, stocked, rice,
                                              db_session):
        reconciliation = self._start(client, kitchen_headers, stocked["store"]).json()
        StockService(db_session).record_damaged(StockDamaged(ingredient_id=rice.id, quantity=Decimal("15"),
                                                             reason="Weevils"))
        self._counts(client, kitchen_headers, reconciliation, **{"Samba Rice": "10"})
        client.post(f"/api/v1/stock/reconciliations/{reconciliation['id']}/submit", headers=kitchen_headers)

        response = client.post(f"/api/v1/stock/reconciliations/{reconciliation['id']}/approve",
                               headers=manager_headers)

        assert response.status_code == 400
        assert "Samba Rice" in response.json()["detail"]
        db_session.expire_all()
        assert db_session.get(Ingredient, rice.id).current_stock == Decimal("5")
        assert db_session.query(StockTransaction).filter(
            StockTransaction.reference_type == "reconciliation").count() == 0

    def test_cancel(self, client, kitchen_headers, manager_headers, stocked):
        reconciliation = self._start(client, kitchen_headers, stocked["store"]).json()
        url = f"/api/v1/stock/reconciliations/{reconciliation['id']}"

        cancelled = client.post(f"{url}/cancel", headers=manager_headers)

        assert cancelled.json()["status"] == "cancelled"
        assert client.post(f"{url}/cancel", headers=manager_headers).status_code == 400
        assert self._start(client, kitchen_headers, stocked["store"]).status_code == 201
