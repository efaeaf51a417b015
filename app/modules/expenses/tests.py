"""
Tests for the expenses module

Covers:
- Recording, listing and filtering expenses
- Deleting expenses and role checks
- Expense statistics by category and month
"""

from decimal import Decimal
from uuid import uuid4


# ===== FIXTURES =====

def _expense(client, headers, **overrides):
    data = {"title": "Gas cylinders", "category": "utilities", "amount": 4800, "expense_date": "2026-03-02"}
    data.update(overrides)
    response = client.post("/api/v1/expenses", json=data, headers=headers)
    assert response.status_code == 201
    return response.json()


class TestExpenseCrud:
    """Create, read, list and delete"""

    def test_create(self, client, manager_headers, manager_user):
        expense = _expense(client, manager_headers, vendor="Litro Gas", reference_number="INV-778")
        assert expense["category"] == "utilities"
        assert Decimal(expense["amount"]) == Decimal("4800")
        assert expense["payment_method"] == "cash"
        assert expense["recorded_by"] == str(manager_user.id)

    def test_date_defaults_to_today(self, client, manager_headers):
        response = client.post(
            "/api/v1/expenses",
            json={"title": "Rice", "category": "ingredients", "amount": 1500},
            headers=manager_headers
        )
        assert response.status_code == 201
        assert response.json()["expense_date"]

    def test_amount_must_be_positive(self, client, manager_headers):
        response = client.post(
            "/api/v1/expenses",
            json={"title": "Nothing", "category": "other", "amount": 0},
            headers=manager_headers
        )
        assert response.status_code == 422

    def test_unknown_category(self, client, manager_headers):
        response = client.post(
            "/api/v1/expenses",
            json={"title": "Tips", "category": "gratuity", "amount": 100},
            headers=manager_headers
        )
        assert response.status_code == 422

    def test_cashier_forbidden(self, client, cashier_headers):
        response = client.post(
            "/api/v1/expenses",
            json={"title": "Rice", "category": "ingredients", "amount": 1500},
            headers=cashier_headers
        )
        assert response.status_code == 403

    def test_list_filters(self, client, manager_headers):
        _expense(client, manager_headers)
        _expense(client, manager_headers, title="Chicken", category="ingredients", amount=12000,
                 expense_date="2026-03-05")
        _expense(client, manager_headers, title="Rent", category="rent", amount=150000, expense_date="2026-04-01")

        response = client.get("/api/v1/expenses?category=ingredients", headers=manager_headers)
        assert [e["title"] for e in response.json()["items"]] == ["Chicken"]

        response = client.get(
            "/api/v1/expenses?start_date=2026-03-01&end_date=2026-03-31", headers=manager_headers
        )
        body = response.json()
        assert body["total"] == 2
        assert Decimal(body["total_amount"]) == Decimal("16800")
        assert [e["title"] for e in body["items"]] == ["Chicken", "Gas cylinders"]

    def test_get_and_delete(self, client, manager_headers):
        expense = _expense(client, manager_headers)
        url = f"/api/v1/expenses/{expense['id']}"
        assert client.get(url, headers=manager_headers).json()["title"] == "Gas cylinders"
        assert client.delete(url, headers=manager_headers).status_code == 204
        assert client.get(url, headers=manager_headers).status_code == 404

    def test_delete_unknown(self, client, manager_headers):
        response = client.delete(f"/api/v1/expenses/{uuid4()}", headers=manager_headers)
        assert response.status_code == 404


class TestExpenseStats:
    """Aggregates"""

    def test_stats(self, client, manager_headers):
        _expense(client, manager_headers, amount=1000, expense_date="2026-02-27")
        _expense(client, manager_headers, amount=2000, expense_date="2026-03-02")
        _expense(client, manager_headers, title="Staff", category="salaries", amount=50000,
                 expense_date="2026-03-25")

        stats = client.get("/api/v1/expenses/stats", headers=manager_headers).json()
        assert stats["count"] == 3
        assert Decimal(stats["total"]) == Decimal("53000")
        assert {k: Decimal(v) for k, v in stats["by_category"].items()} == {
            "utilities": Decimal("3000"), "salaries": Decimal("50000")
        }
        assert {k: Decimal(v) for k, v in stats["by_month"].items()} == {
            "2026-02": Decimal("1000"), "2026-03": Decimal("52000")
        }

    def test_stats_range(self, client, manager_headers):
        _expense(client, manager_headers, amount=1000, expense_date="2026-02-27")
        _expense(client, manager_headers, amount=2000, expense_date="2026-03-02")
        stats = client.get("/api/v1/expenses/stats?start_date=2026-03-01", headers=manager_headers).json()
        assert stats["count"] == 1
        assert stats["by_month"].keys() == {"2026-03"}
