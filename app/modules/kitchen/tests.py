"""
Tests for the kitchen module

Covers:
- Station setup and category normalisation
- Routing a sale's menu lines to stations, one order per station
- Order and item status flow with preparation timestamps
- Station queues ordered by priority and kitchen metrics
"""

import pytest
from decimal import Decimal

from app.modules.products.models import Product
from app.modules.menu.models import MenuItem, MenuCategory
from app.modules.kitchen.models import KitchenStation, KitchenOrder, KitchenOrderStatus
from app.modules.kitchen.service import estimated_minutes


# ===== FIXTURES =====

@pytest.fixture
def stations(db_session):
    grill = KitchenStation(name="Grill", code="GRL", categories=["mains"], priority=1, average_prep_time=20)
    bar = KitchenStation(name="Tea Bar", code="BAR", categories=["beverages"], average_prep_time=5)
    db_session.add_all([grill, bar])
    db_session.commit()
    return {"grill": grill, "bar": bar}


@pytest.fixture
def menu(db_session):
    items = {
        "kottu": MenuItem(name="Chicken Kottu", category=MenuCategory.MAINS, price=Decimal("900")),
        "lamprais": MenuItem(name="Lamprais", category=MenuCategory.MAINS, price=Decimal("1000")),
        "tea": MenuItem(name="Plain Tea", category=MenuCategory.BEVERAGES, price=Decimal("100")),
        "watalappan": MenuItem(name="Watalappan", category=MenuCategory.DESSERTS, price=Decimal("350")),
        "water": Product(name="Bottled Water", sku="WTR-500", unit_price=Decimal("120"), track_inventory=False),
    }
    db_session.add_all(items.values())
    db_session.commit()
    return items


def _ring_up(client, headers, *lines, **extra):
    items = [
        {"product": str(item.id), "quantity": "1",
         "unit_price": str(getattr(item, "price", None) or item.unit_price),
         "item_type": "product" if isinstance(item, Product) else "menu-item"}
        for item in lines
    ]
    body = {"items": items, "payment_method": "card", "order_type": "dine-in", "table_number": "T7", **extra}
    response = client.post("/api/v1/sales", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def _send(client, headers, sale, **extra):
    return client.post("/api/v1/kitchen/orders", json={"sale_id": sale["id"], **extra}, headers=headers)


class TestStations:
    """/kitchen/stations"""

    def test_create_station(self, client, manager_headers):
        response = client.post("/api/v1/kitchen/stations", json={
            "name": "Hoppers", "code": "hop", "categories": ["Starters", " Specials "], "average_prep_time": 12
        }, headers=manager_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["code"] == "HOP"
        assert data["categories"] == ["starters", "specials"]
        assert data["is_active"] is True

    def test_duplicate_code_conflicts(self, client, manager_headers, stations):
        response = client.post("/api/v1/kitchen/stations", json={"name": "Second Grill", "code": "grl"},
                               headers=manager_headers)
        assert response.status_code == 409

    def test_cashier_cannot_create(self, client, cashier_headers):
        response = client.post("/api/v1/kitchen/stations", json={"name": "Fryer", "code": "FRY"},
                               headers=cashier_headers)
        assert response.status_code == 403

    def test_unknown_location_rejected(self, client, manager_headers):
        response = client.post("/api/v1/kitchen/stations", json={
            "name": "Pastry", "code": "PST", "location_id": "00000000-0000-0000-0000-0000000000aa"
        }, headers=manager_headers)
        assert response.status_code == 404

    def test_deactivated_station_is_hidden(self, client, manager_headers, cashier_headers, stations):
        client.patch(f"/api/v1/kitchen/stations/{stations['bar'].id}", json={"is_active": False},
                     headers=manager_headers)

        names = [s["name"] for s in client.get("/api/v1/kitchen/stations", headers=cashier_headers).json()]

        assert names == ["Grill"]


class TestRouting:
    """POST /kitchen/orders"""

    def test_one_order_per_station(self, client, cashier_headers, stations, menu):
        sale = _ring_up(client, cashier_headers, menu["lamprais"], menu["tea"], menu["watalappan"], menu["water"])

        response = _send(client, cashier_headers, sale, priority="high")

        assert response.status_code == 201
        orders = {o["station_id"]: o for o in response.json()}
        assert set(orders) == {str(stations["grill"].id), str(stations["bar"].id), None}

        grill = orders[str(stations["grill"].id)]
        assert grill["order_number"].startswith("KO-")
        assert [i["product_name"] for i in grill["items"]] == ["Lamprais"]
        assert grill["estimated_time"] == 22
        assert grill["table_number"] == "T7"
        assert grill["priority"] == "high"

        unassigned = orders[None]
        assert [i["product_name"] for i in unassigned["items"]] == ["Watalappan"]
        assert unassigned["estimated_time"] == 17

    def test_higher_priority_station_wins(self, client, cashier_headers, db_session, stations, menu):
        db_session.add(KitchenStation(name="Rice and Curry", code="RNC", categories=["mains"], priority=5))
        db_session.commit()
        sale = _ring_up(client, cashier_headers, menu["kottu"])

        order = _send(client, cashier_headers, sale).json()[0]

        station = db_session.get(KitchenStation, order["station_id"])
        assert station.code == "RNC"

    def test_sale_goes_to_kitchen_once(self, client, cashier_headers, stations, menu):
        sale = _ring_up(client, cashier_headers, menu["kottu"])
        _send(client, cashier_headers, sale)

        response = _send(client, cashier_headers, sale)

        assert response.status_code == 409

    def test_retail_only_sale_rejected(self, client, cashier_headers, menu, db_session):
        sale = _ring_up(client, cashier_headers, menu["water"])

        response = _send(client, cashier_headers, sale)

        assert response.status_code == 400
        assert db_session.query(KitchenOrder).count() == 0

    def test_voided_sale_rejected(self, client, cashier_headers, menu):
        sale = _ring_up(client, cashier_headers, menu["kottu"])
        client.patch(f"/api/v1/sales/{sale['id']}/status",
                     json={"status": "voided", "cancellation_reason": "Walked out"}, headers=cashier_headers)

        assert _send(client, cashier_headers, sale).status_code == 400

    def test_estimate_caps_item_time(self, stations):
        assert estimated_minutes(stations["bar"], [{}] * 8) == 15
        assert estimated_minutes(None, [{}]) == 17


class TestOrderFlow:
    """PATCH /kitchen/orders/{id}/status and /items/{index}"""

    @pytest.fixture
    def grill_order(self, client, cashier_headers, stations, menu):
        sale = _ring_up(client, cashier_headers, menu["kottu"], menu["lamprais"])
        return _send(client, cashier_headers, sale).json()[0]

    def _status(self, client, headers, order, **body):
        return client.patch(f"/api/v1/kitchen/orders/{order['id']}/status", json=body, headers=headers)

    def test_status_flow(self, client, kitchen_headers, grill_order):
        preparing = self._status(client, kitchen_headers, grill_order, status="preparing")
        assert preparing.status_code == 200
        assert preparing.json()["started_at"] is not None

        skipped = self._status(client, kitchen_headers, grill_order, status="completed")
        assert skipped.status_code == 400

        ready = self._status(client, kitchen_headers, grill_order, status="ready", preparation_notes="Extra gravy")
        assert ready.json()["ready_at"] is not None
        assert {i["status"] for i in ready.json()["items"]} == {"ready"}
        assert ready.json()["preparation_notes"] == "Extra gravy"

        completed = self._status(client, kitchen_headers, grill_order, status="completed")
        assert completed.json()["status"] == "completed"
        assert completed.json()["completed_at"] is not None

    def test_cancel_needs_reason(self, client, kitchen_headers, grill_order):
        assert self._status(client, kitchen_headers, grill_order, status="cancelled").status_code == 400

        response = self._status(client, kitchen_headers, grill_order, status="cancelled",
                                cancellation_reason="Out of chicken")

        assert response.json()["status"] == "cancelled"
        assert self._status(client, kitchen_headers, grill_order, status="preparing").status_code == 400

    def test_cashier_cannot_move_orders(self, client, cashier_headers, grill_order):
        assert self._status(client, cashier_headers, grill_order, status="preparing").status_code == 403

    def test_items_drive_the_order(self, client, kitchen_headers, grill_order):
        url = f"/api/v1/kitchen/orders/{grill_order['id']}/items"

        started = client.patch(f"{url}/0", json={"status": "preparing"}, headers=kitchen_headers).json()
        assert started["status"] == "preparing"
        assert started["started_at"] is not None

        client.patch(f"{url}/0", json={"status": "ready"}, headers=kitchen_headers)
        done = client.patch(f"{url}/1", json={"status": "ready"}, headers=kitchen_headers).json()
        assert done["status"] == "ready"
        assert done["ready_at"] is not None

        locked = client.patch(f"{url}/1", json={"status": "preparing"}, headers=kitchen_headers)
        assert locked.status_code == 400

    def test_invalid_item_index(self, client, kitchen_headers, grill_order):
        response = client.patch(f"/api/v1/kitchen/orders/{grill_order['id']}/items/9",
                                json={"status": "ready"}, headers=kitchen_headers)
        assert response.status_code == 400


class TestQueues:
    """Station queues and metrics"""

    def test_urgent_orders_first(self, client, cashier_headers, kitchen_headers, stations, menu):
        first = _ring_up(client, cashier_headers, menu["kottu"])
        second = _ring_up(client, cashier_headers, menu["lamprais"])
        normal = _send(client, cashier_headers, first).json()[0]
        urgent = _send(client, cashier_headers, second, priority="urgent").json()[0]

        queue = client.get(f"/api/v1/kitchen/stations/{stations['grill'].id}/orders", headers=kitchen_headers).json()

        assert [o["id"] for o in queue] == [urgent["id"], normal["id"]]

    def test_finished_orders_leave_the_queue(self, client, cashier_headers, kitchen_headers, stations, menu):
        sale = _ring_up(client, cashier_headers, menu["tea"])
        order = _send(client, cashier_headers, sale).json()[0]
        for step in ("preparing", "ready", "completed"):
            client.patch(f"/api/v1/kitchen/orders/{order['id']}/status", json={"status": step},
                         headers=kitchen_headers)

        active = client.get("/api/v1/kitchen/orders", headers=cashier_headers).json()
        completed = client.get("/api/v1/kitchen/orders?status=completed", headers=cashier_headers).json()

        assert active == []
        assert [o["id"] for o in completed] == [order["id"]]

    def test_metrics(self, client, cashier_headers, kitchen_headers, manager_headers, stations, menu, db_session):
        sale = _ring_up(client, cashier_headers, menu["kottu"], menu["tea"])
        orders = _send(client, cashier_headers, sale).json()
        grill = next(o for o in orders if o["station_id"] == str(stations["grill"].id))
        client.patch(f"/api/v1/kitchen/orders/{grill['id']}/status", json={"status": "cancelled",
                     "cancellation_reason": "Duplicate ticket"}, headers=kitchen_headers)

        metrics = client.get("/api/v1/kitchen/metrics", headers=manager_headers).json()

        assert metrics["total_orders"] == 2
        assert metrics["cancelled_orders"] == 1
        assert metrics["by_station"] == {"GRL": 1, "BAR": 1}
        assert metrics["by_order_type"]["dine-in"] == 2
        assert metrics["by_priority"]["normal"] == 2
        assert db_session.query(KitchenOrder).filter(
            KitchenOrder.status == KitchenOrderStatus.CANCELLED).count() == 1
