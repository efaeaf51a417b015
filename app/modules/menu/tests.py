"""
Tests for the menu module

Covers:
- Category catalogue
- Menu item CRUD and unique names
- Availability toggle
- Portions with a single default
- Recipe replacement and validation
"""

import pytest
from decimal import Decimal

from app.modules.menu.models import MenuItem, MenuCategory, MenuItemPortion
from app.modules.inventory.models import Ingredient


# ===== FIXTURES =====

@pytest.fixture
def kottu(db_session):
    item = MenuItem(
        name="Chicken Kottu",
        category=MenuCategory.MAINS,
        price=Decimal("1200.00"),
        cost_price=Decimal("450.00"),
        spicy_level=3
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def pantry(db_session):
    roti = Ingredient(name="Godamba Roti", unit="pcs", current_stock=Decimal("50"))
    chicken = Ingredient(name="Chicken", unit="kg", current_stock=Decimal("10"))
    db_session.add_all([roti, chicken])
    db_session.commit()
    return {"roti": roti, "chicken": chicken}


class TestCategories:
    """Category catalogue"""

    def test_lists_all_categories_with_labels(self, client, cashier_headers):
        response = client.get("/api/v1/menu/categories", headers=cashier_headers)

        assert response.status_code == 200
        values = [c["value"] for c in response.json()]
        assert values == ["starters", "mains", "desserts", "beverages", "sides", "specials"]
        assert all(c["label"] for c in response.json())


class TestMenuItems:
    """Menu item CRUD"""

    def test_create_item(self, client, manager_headers):
        payload = {
            "name": "Egg Hoppers",
            "category": "mains",
            "price": "350.00",
            "is_vegetarian": True,
            "spicy_level": 1
        }

        response = client.post("/api/v1/menu", json=payload, headers=manager_headers)

        assert response.status_code == 201
        assert response.json()["category"] == "mains"
        assert response.json()["is_available"] is True

    def test_duplicate_name_conflict(self, client, manager_headers, kottu):
        payload = {"name": "Chicken Kottu", "category": "mains", "price": "1000"}
        response = client.post("/api/v1/menu", json=payload, headers=manager_headers)
        assert response.status_code == 409

    def test_spicy_level_bounds(self, client, manager_headers):
        payload = {"name": "Devilled Prawns", "category": "mains", "price": "1800", "spicy_level": 7}
        response = client.post("/api/v1/menu", json=payload, headers=manager_headers)
        assert response.status_code == 422

    def test_filter_by_category(self, client, cashier_headers, kottu, db_session):
        db_session.add(MenuItem(name="Watalappan", category=MenuCategory.DESSERTS, price=Decimal("450")))
        db_session.commit()

        response = client.get("/api/v1/menu?category=desserts", headers=cashier_headers)

        assert [i["name"] for i in response.json()["items"]] == ["Watalappan"]

    def test_update_item(self, client, manager_headers, kottu):
        response = client.put(f"/api/v1/menu/{kottu.id}", json={"price": "1250.00"}, headers=manager_headers)
        assert response.status_code == 200
        assert Decimal(response.json()["price"]) == Decimal("1250.00")

    def test_delete_item(self, client, manager_headers, kottu):
        response = client.delete(f"/api/v1/menu/{kottu.id}", headers=manager_headers)
        assert response.status_code == 204
        assert client.get(f"/api/v1/menu/{kottu.id}", headers=manager_headers).status_code == 404


class TestAvailability:
    """Availability toggle"""

    def test_toggle_without_body(self, client, cashier_headers, kottu):
        response = client.patch(f"/api/v1/menu/{kottu.id}/availability", headers=cashier_headers)
        assert response.json()["is_available"] is False

        response = client.patch(f"/api/v1/menu/{kottu.id}/availability", headers=cashier_headers)
        assert response.json()["is_available"] is True

    def test_explicit_value(self, client, cashier_headers, kottu):
        response = client.patch(
            f"/api/v1/menu/{kottu.id}/availability",
            json={"is_available": False},
            headers=cashier_headers
        )
        assert response.json()["is_available"] is False


class TestPortions:
    """Portion sizes"""

    def test_new_default_clears_siblings(self, client, manager_headers, kottu, db_session):
        client.post(f"/api/v1/menu/{kottu.id}/portions",
                    json={"name": "Regular", "price": "1200", "is_default": True}, headers=manager_headers)
        client.post(f"/api/v1/menu/{kottu.id}/portions",
                    json={"name": "Large", "price": "1600", "is_default": True}, headers=manager_headers)

        portions = client.get(f"/api/v1/menu/{kottu.id}/portions", headers=manager_headers).json()

        defaults = [p["name"] for p in portions if p["is_default"]]
        assert defaults == ["Large"]

    def test_duplicate_portion_name(self, client, manager_headers, kottu):
        client.post(f"/api/v1/menu/{kottu.id}/portions", json={"name": "Small", "price": "900"}, headers=manager_headers)
        response = client.post(f"/api/v1/menu/{kottu.id}/portions", json={"name": "small", "price": "950"},
                               headers=manager_headers)
        assert response.status_code == 409


class TestRecipe:
    """Recipe lines"""

    def test_replace_recipe(self, client, manager_headers, kottu, pantry):
        body = {"ingredients": [
            {"ingredient_id": str(pantry["roti"].id), "quantity": "2"},
            {"ingredient_id": str(pantry["chicken"].id), "quantity": "0.15", "unit": "kg"},
        ]}

        response = client.put(f"/api/v1/menu/{kottu.id}/recipe", json=body, headers=manager_headers)

        assert response.status_code == 200
        lines = {line["ingredient_name"]: line for line in response.json()}
        assert lines["Godamba Roti"]["unit"] == "pcs"
        assert Decimal(lines["Chicken"]["quantity"]) == Decimal("0.15")

        body = {"ingredients": [{"ingredient_id": str(pantry["roti"].id), "quantity": "3"}]}
        client.put(f"/api/v1/menu/{kottu.id}/recipe", json=body, headers=manager_headers)
        recipe = client.get(f"/api/v1/menu/{kottu.id}/recipe", headers=manager_headers).json()
        assert len(recipe) == 1

    def test_portion_recipe_is_separate(self, client, manager_headers, kottu, pantry, db_session):
        large = MenuItemPortion(menu_item_id=kottu.id, name="Large", price=Decimal("1600"))
        db_session.add(large)
        db_session.commit()
        body = {
            "portion_id": str(large.id),
            "ingredients": [{"ingredient_id": str(pantry["roti"].id), "quantity": "3"}]
        }

        client.put(f"/api/v1/menu/{kottu.id}/recipe", json=body, headers=manager_headers)

        assert client.get(f"/api/v1/menu/{kottu.id}/recipe", headers=manager_headers).json() == []
        portion_recipe = client.get(f"/api/v1/menu/{kottu.id}/recipe?portion_id={large.id}",
                                    headers=manager_headers).json()
        assert len(portion_recipe) == 1

    def test_unknown_ingredient_rejected(self, client, manager_headers, kottu):
        body = {"ingredients": [{"ingredient_id": "00000000-0000-0000-0000-000000000001", "quantity": "1"}]}
        response = client.put(f"/api/v1/menu/{kottu.id}/recipe", json=body, headers=manager_headers)
        assert response.status_code == 400

    def test_zero_quantity_rejected(self, client, manager_headers, kottu, pantry):
        body = {"ingredients": [{"ingredient_id": str(pantry["roti"].id), "quantity": "0"}]}
        response = client.put(f"/api/v1/menu/{kottu.id}/recipe", json=body, headers=manager_headers)
        assert response.status_code == 422

    def test_repeated_ingredient_rejected(self, client, manager_headers, kottu, pantry):
        roti = str(pantry["roti"].id)
        body = {"ingredients": [{"ingredient_id": roti, "quantity": "2"}, {"ingredient_id": roti, "quantity": "1"}]}

        response = client.put(f"/api/v1/menu/{kottu.id}/recipe", json=body, headers=manager_headers)

        assert response.status_code == 422
        assert client.get(f"/api/v1/menu/{kottu.id}/recipe", headers=manager_headers).json() == []
