"""
Tests for the reports module

Covers:
- Daily report with payment method, order type and top item breakdowns
- Monthly series and net figures
- Profit from line costs and expenses
- Best-selling ranking and CSV export
- Dashboard figures
"""

import pytest
from datetime import datetime, date
from decimal import Decimal

from app.common.utils import utc_now
from app.modules.sales.models import Sale, SaleStatus, OrderType, PaymentMethod
from app.modules.expenses.models import Expense, ExpenseCategory
from app.modules.inventory.models import Ingredient
from app.modules.products.models import Product


# ===== FIXTURES =====

def _line(product, name, quantity, unit_price, cost_price=0):
    subtotal = quantity * unit_price
    return {
        "product": product, "product_name": name, "quantity": quantity, "unit_price": unit_price,
        "subtotal": subtotal, "vat_amount": subtotal * 0.15, "vat_rate": 0.15,
        "total_with_vat": subtotal * 1.15, "taxable": True, "cost_price": cost_price,
    }


def _add_sale(db, number, when, items, total, vat, payment=PaymentMethod.CASH,
              order_type=OrderType.DINE_IN, sale_status=SaleStatus.COMPLETED):
    sale = Sale(
        sale_number=number,
        items=items,
        subtotal=Decimal(total) - Decimal(vat),
        vat_amount=Decimal(vat),
        vat_rate=Decimal("0.15"),
        total_amount=Decimal(total),
        payment_method=payment,
        amount_paid=Decimal(total),
        order_type=order_type,
        status=sale_status,
        cashier_name="Nimali",
        sale_date=when,
    )
    db.add(sale)
    db.commit()
    return sale


@pytest.fixture
def trading_day(db_session):
    day = datetime(2026, 3, 14, 12, 0)
    _add_sale(db_session, "SALE-20260314-0001", day,
              [_line("kottu", "Chicken Kottu", 2, 1000, 400), _line("tea", "Plain Tea", 3, 100, 20)],
              "2645.00", "345.00")
    _add_sale(db_session, "SALE-20260314-0002", day.replace(hour=19),
              [_line("kottu", "Chicken Kottu", 1, 1000, 400)],
              "1150.00", "150.00", payment=PaymentMethod.CARD, order_type=OrderType.TAKEAWAY)
    _add_sale(db_session, "SALE-20260314-0003", day.replace(hour=20),
              [_line("lamprais", "Lamprais", 10, 1500, 600)],
              "17250.00", "2250.00", sale_status=SaleStatus.VOIDED)
    _add_sale(db_session, "SALE-20260315-0001", datetime(2026, 3, 15, 9, 0),
              [_line("hoppers", "Egg Hoppers", 4, 150, 40)],
              "690.00", "90.00")
    db_session.add(Expense(title="Gas", category=ExpenseCategory.UTILITIES, amount=Decimal("500"),
                           expense_date=date(2026, 3, 14)))
    db_session.add(Expense(title="Rent", category=ExpenseCategory.RENT, amount=Decimal("1000"),
                           expense_date=date(2026, 3, 1)))
    db_session.commit()


class TestDailyReport:
    """Single day figures"""

    def test_daily(self, client, manager_headers, trading_day):
        report = client.get("/api/v1/reports/daily?date=2026-03-14", headers=manager_headers).json()
        assert report["sales_count"] == 2
        assert Decimal(report["revenue"]) == Decimal("3795.00")
        assert Decimal(report["vat"]) == Decimal("495.00")
        assert Decimal(report["average_sale"]) == Decimal("1897.50")
        assert report["by_payment_method"]["card"]["count"] == 1
        assert report["by_order_type"]["takeaway"]["count"] == 1
        assert report["by_order_type"]["delivery"]["count"] == 0
        assert [i["product_name"] for i in report["top_items"]] == ["Chicken Kottu", "Plain Tea"]
        assert Decimal(report["top_items"][0]["quantity"]) == Decimal("3")
        assert Decimal(report["expenses"]) == Decimal("500")
        assert Decimal(report["net"]) == Decimal("2800.00")

    def test_empty_day(self, client, manager_headers):
        report = client.get("/api/v1/reports/daily?date=2020-01-01", headers=manager_headers).json()
        assert report["sales_count"] == 0
        assert Decimal(report["average_sale"]) == Decimal("0")

    def test_cashier_forbidden(self, client, cashier_headers):
        assert client.get("/api/v1/reports/daily", headers=cashier_headers).status_code == 403


class TestMonthlyReport:
    """Month totals and daily series"""

    def test_monthly(self, client, manager_headers, trading_day):
        report = client.get("/api/v1/reports/monthly?year=2026&month=3", headers=manager_headers).json()
        assert report["sales_count"] == 3
        assert Decimal(report["revenue"]) == Decimal("4485.00")
        assert len(report["daily"]) == 31
        by_day = {d["date"]: d for d in report["daily"]}
        assert by_day["2026-03-14"]["sales_count"] == 2
        assert by_day["2026-03-15"]["sales_count"] == 1
        assert Decimal(report["expenses"]) == Decimal("1500")
        assert Decimal(report["net"]) == Decimal("2400.00")

    def test_february_length(self, client, manager_headers):
        report = client.get("/api/v1/reports/monthly?year=2028&month=2", headers=manager_headers).json()
        assert len(report["daily"]) == 29

    def test_invalid_month(self, client, manager_headers):
        assert client.get("/api/v1/reports/monthly?month=13", headers=manager_headers).status_code == 422


class TestProfitAndBestSelling:
    """Profit and item ranking"""

    def test_profit(self, client, manager_headers, trading_day):
        report = client.get(
            "/api/v1/reports/profit?start_date=2026-03-14&end_date=2026-03-14", headers=manager_headers
        ).json()
        assert Decimal(report["revenue_excluding_vat"]) == Decimal("3300.00")
        assert Decimal(report["cost_of_goods"]) == Decimal("1260.00")
        assert Decimal(report["gross_profit"]) == Decimal("2040.00")
        assert Decimal(report["gross_margin"]) == Decimal("61.82")
        assert Decimal(report["net_profit"]) == Decimal("1540.00")

    def test_best_selling(self, client, manager_headers, trading_day):
        items = client.get("/api/v1/reports/best-selling", headers=manager_headers).json()
        assert [i["product"] for i in items] == ["hoppers", "kottu", "tea"]
        assert Decimal(items[1]["revenue"]) == Decimal("3000.00")

    def test_best_selling_limit(self, client, manager_headers, trading_day):
        items = client.get("/api/v1/reports/best-selling?limit=1", headers=manager_headers).json()
        assert len(items) == 1

    def test_best_selling_csv(self, client, manager_headers, trading_day):
        response = client.get("/api/v1/reports/best-selling?export=csv", headers=manager_headers)
        assert response.headers["content-type"].startswith("text/csv")
        lines = response.text.strip().splitlines()
        assert lines[0] == "Item ID,Item,Quantity Sold,Revenue"
        assert lines[2].startswith("kottu,Chicken Kottu,3")


class TestDashboard:
    """Management dashboard"""

    def test_dashboard(self, client, manager_headers, cashier_headers, db_session):
        now = utc_now()
        _add_sale(db_session, "SALE-TODAY-0001", now, [_line("tea", "Plain Tea", 1, 100)], "115.00", "15.00")
        db_session.add(Ingredient(name="Coconut Oil", unit="l", current_stock=Decimal("2"),
                                  reorder_level=Decimal("5")))
        db_session.add(Ingredient(name="Rice", unit="kg", current_stock=Decimal("50"),
                                  reorder_level=Decimal("10")))
        db_session.add(Product(name="Ginger Beer", sku="GB-001", unit_price=Decimal("250"),
                               reorder_level=Decimal("6")))
        db_session.commit()
        client.post("/api/v1/payments/cash/drawer/open", json={"opening_balance": 1000}, headers=cashier_headers)

        dashboard = client.get("/api/v1/reports/dashboard", headers=manager_headers).json()
        assert dashboard["today"]["count"] == 1
        assert Decimal(dashboard["today"]["revenue"]) == Decimal("115.00")
        assert dashboard["month"]["count"] >= 1
        assert [i["name"] for i in dashboard["low_stock_ingredients"]] == ["Coconut Oil"]
        assert [p["name"] for p in dashboard["low_stock_products"]] == ["Ginger Beer"]
        assert dashboard["recent_sales"][0]["sale_number"] == "SALE-TODAY-0001"
        assert len(dashboard["open_drawers"]) == 1
