"""
Tests for the VAT module

Covers:
- Rounding, rates, exemptions and tiers in VATCalculator
- Inclusive and exclusive bill VAT, service charge and minimum taxable amount
- Settings activation, caching and deletion rules
- Test calculation, presets and reports
"""

import pytest
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

from app.modules.vat.calculator import VATCalculator
from app.modules.vat.schemas import VATConfig, RoundingMethodEnum, SaleLineIn, TierRate
from app.modules.vat.models import VATSettings
from app.modules.vat.service import VATService
from app.modules.sales.models import Sale, SaleStatus, OrderType, PaymentMethod


def _item(category="mains", taxable=True, item_id=None, name="Rice and Curry"):
    return SimpleNamespace(id=item_id or uuid4(), category=category, taxable=taxable, name=name,
                           cost_price=Decimal("100"))


def _line(item, quantity="1", unit_price="1000"):
    return SaleLineIn(product=item.id, quantity=Decimal(quantity), unit_price=Decimal(unit_price))


class TestRounding:
    """round_amount"""

    @pytest.mark.parametrize("method,expected", [
        (RoundingMethodEnum.NEAREST, Decimal("10.13")),
        (RoundingMethodEnum.UP, Decimal("10.13")),
        (RoundingMethodEnum.DOWN, Decimal("10.12")),
        (RoundingMethodEnum.NONE, Decimal("10.125")),
    ])
    def test_methods(self, method, expected):
        assert VATCalculator.round_amount(Decimal("10.125"), method, 2) == expected

    def test_precision_zero(self):
        assert VATCalculator.round_amount(Decimal("99.5"), RoundingMethodEnum.NEAREST, 0) == Decimal("100")


class TestRates:
    """product_rate and tiered_rate"""

    def test_default_rate(self):
        assert VATCalculator(VATConfig()).product_rate(_item()) == Decimal("0.15")

    def test_disabled_or_untaxed_is_zero(self):
        assert VATCalculator(VATConfig(is_enabled=False)).product_rate(_item()) == 0
        assert VATCalculator(VATConfig()).product_rate(_item(taxable=False)) == 0

    def test_exempt_category_and_product(self):
        item = _item(category="beverages")
        config = VATConfig(exempt_categories=["beverages"])
        assert VATCalculator(config).product_rate(item) == 0

        other = _item()
        config = VATConfig(exempt_products=[other.id])
        assert VATCalculator(config).product_rate(other) == 0

    def test_split_rate_uses_category_rate(self):
        config = VATConfig(calculation_method="SPLIT_RATE", category_rates={"desserts": Decimal("0.08")})
        calculator = VATCalculator(config)
        assert calculator.product_rate(_item(category="desserts")) == Decimal("0.08")
        assert calculator.product_rate(_item(category="mains")) == Decimal("0.15")

    def test_tiers(self):
        config = VATConfig(calculation_method="TIERED", tiered_rates=[
            TierRate(min=Decimal("0"), max=Decimal("1000"), rate=Decimal("0.05")),
            TierRate(min=Decimal("1000"), rate=Decimal("0.15")),
        ])
        calculator = VATCalculator(config)
        assert calculator.tiered_rate(Decimal("999.99")) == Decimal("0.05")
        assert calculator.tiered_rate(Decimal("1000")) == Decimal("0.15")
        assert calculator.calculate_vat(Decimal("500")) == Decimal("25.00")

    def test_inclusive_extraction(self):
        calculator = VATCalculator(VATConfig())
        assert calculator.extract_vat_from_total(Decimal("1150")) == Decimal("150.00")
        assert calculator.base_from_total(Decimal("1150")) == Decimal("1000.00")


class TestBillVAT:
    """bill_vat over resolved lines"""

    def test_exclusive_bill(self):
        food = _item()
        water = _item(category="beverages", taxable=False, name="Water")
        calculator = VATCalculator(VATConfig())

        bill = calculator.bill_vat([
            (_line(food, "2"), food, "menu-item"),
            (_line(water, "1", "100"), water, "product"),
        ])

        assert bill["subtotal"] == Decimal("2100.00")
        assert bill["taxable_subtotal"] == Decimal("2000.00")
        assert bill["non_taxable_subtotal"] == Decimal("100.00")
        assert bill["vat_amount"] == Decimal("300.00")
        assert bill["total_amount"] == Decimal("2400.00")
        assert bill["category_breakdown"]["mains"]["vat_amount"] == Decimal("300.00")
        assert bill["items"][1]["taxable"] is False

    def test_inclusive_bill_backs_out_vat(self):
        food = _item()
        calculator = VATCalculator(VATConfig(calculation_method="INCLUSIVE"))

        item = calculator.bill_vat([(_line(food, "1", "1150"), food, "menu-item")])["items"][0]

        assert item["subtotal"] == Decimal("1000.00")
        assert item["vat_amount"] == Decimal("150.00")
        assert item["total_with_vat"] == Decimal("1150.00")

    def test_service_charge_with_vat(self):
        food = _item()
        config = VATConfig(enable_service_charge=True, apply_vat_on_service_charge=True)

        bill = VATCalculator(config).bill_vat([(_line(food), food, "menu-item")])

        assert bill["service_charge"] == Decimal("100.00")
        assert bill["service_charge_vat"] == Decimal("15.00")
        assert bill["total_amount"] == Decimal("1265.00")

    def test_below_minimum_taxable_amount(self):
        food = _item()
        config = VATConfig(minimum_taxable_amount=Decimal("5000"))

        bill = VATCalculator(config).bill_vat([(_line(food), food, "menu-item")])

        assert bill["vat_amount"] == 0
        assert bill["total_amount"] == Decimal("1000.00")

    def test_empty_bill_rejected(self):
        with pytest.raises(ValueError):
            VATCalculator(VATConfig()).bill_vat([])


class TestValidationAndSplit:

    def test_validate_tolerance(self):
        calculator = VATCalculator(VATConfig())
        assert calculator.validate(Decimal("1000"), Decimal("150.01"), Decimal("1150.01"))["is_valid"] is True
        result = calculator.validate(Decimal("1000"), Decimal("140"), Decimal("1140"))
        assert result["is_valid"] is False
        assert result["message"] == "VAT calculation has discrepancies"

    def test_split(self):
        split = VATCalculator(VATConfig()).split_vat(Decimal("575"), 2)
        assert split == {
            "split_number": 2,
            "split_subtotal": Decimal("500.00"),
            "split_vat": Decimal("75.00"),
            "split_total": Decimal("575.00"),
            "vat_rate": Decimal("0.15"),
        }


class TestVATSettingsApi:
    """/vat-settings"""

    def test_active_defaults_when_none_configured(self, client, cashier_headers):
        response = client.get("/api/v1/vat-settings/active", headers=cashier_headers)

        assert response.status_code == 200
        assert response.json()["is_default"] is True
        assert Decimal(response.json()["default_rate"]) == Decimal("0.15")

    def test_activation_is_exclusive(self, client, admin_headers, db_session):
        first = client.post("/api/v1/vat-settings", json={"name": "Standard", "is_active": True},
                            headers=admin_headers).json()
        second = client.post("/api/v1/vat-settings", json={"name": "Reduced", "default_rate": "0.08",
                                                            "is_active": True}, headers=admin_headers).json()

        assert db_session.query(VATSettings).filter(VATSettings.is_active == True).count() == 1
        active = client.get("/api/v1/vat-settings/active", headers=admin_headers).json()
        assert active["id"] == second["id"]

        client.post(f"/api/v1/vat-settings/{first['id']}/activate", headers=admin_headers)
        active = client.get("/api/v1/vat-settings/active", headers=admin_headers).json()
        assert active["id"] == first["id"]

    def test_settings_write_clears_cache(self, client, admin_headers, db_session):
        created = client.post("/api/v1/vat-settings", json={"name": "Standard", "is_active": True},
                              headers=admin_headers).json()
        assert VATService(db_session).get_config().default_rate == Decimal("0.15")

        client.put(f"/api/v1/vat-settings/{created['id']}", json={"default_rate": "0.18"}, headers=admin_headers)

        assert VATService(db_session).get_config().default_rate == Decimal("0.18")

    def test_cannot_delete_active(self, client, admin_headers):
        created = client.post("/api/v1/vat-settings", json={"name": "Standard", "is_active": True},
                              headers=admin_headers).json()

        response = client.delete(f"/api/v1/vat-settings/{created['id']}", headers=admin_headers)

        assert response.status_code == 400

    def test_delete_inactive(self, client, admin_headers):
        created = client.post("/api/v1/vat-settings", json={"name": "Old"}, headers=admin_headers).json()
        response = client.delete(f"/api/v1/vat-settings/{created['id']}", headers=admin_headers)
        assert response.status_code == 204

    def test_manager_cannot_create(self, client, manager_headers):
        response = client.post("/api/v1/vat-settings", json={"name": "Standard"}, headers=manager_headers)
        assert response.status_code == 403

    def test_rate_out_of_range(self, client, admin_headers):
        response = client.post("/api/v1/vat-settings", json={"name": "Bad", "default_rate": "1.5"},
                               headers=admin_headers)
        assert response.status_code == 422

    def test_test_calculation(self, client, cashier_headers):
        response = client.post("/api/v1/vat-settings/test-calculation", json={"amount": "2000"},
                               headers=cashier_headers)

        data = response.json()
        assert Decimal(data["vat_amount"]) == Decimal("300.00")
        assert Decimal(data["total"]) == Decimal("2300.00")

    def test_presets(self, client, manager_headers):
        presets = client.get("/api/v1/vat-settings/presets", headers=manager_headers).json()
        assert presets["sri_lanka_inclusive"]["calculation_method"] == "INCLUSIVE"
        assert presets["restaurant_service_charge"]["service_charge_rate"] == 0.10


class TestVATReports:
    """/vat/reports"""

    @pytest.fixture
    def sales(self, db_session):
        day = datetime(2026, 3, 14, 12, 0)
        db_session.add_all([
            Sale(sale_number="SALE-20260314-0001", subtotal=Decimal("1000"), vat_amount=Decimal("150"),
                 vat_rate=Decimal("0.15"), total_amount=Decimal("1150"), sale_date=day,
                 order_type=OrderType.DINE_IN, payment_method=PaymentMethod.CARD,
                 items=[{"category": "mains", "subtotal": 1000, "vat_amount": 150, "taxable": True}]),
            Sale(sale_number="SALE-20260314-0002", subtotal=Decimal("200"), vat_amount=Decimal("0"),
                 vat_rate=Decimal("0.15"), total_amount=Decimal("200"), sale_date=day.replace(hour=18),
                 items=[{"category": "beverages", "subtotal": 200, "vat_amount": 0, "taxable": False}]),
            Sale(sale_number="SALE-20260314-0003", subtotal=Decimal("500"), vat_amount=Decimal("75"),
                 total_amount=Decimal("575"), sale_date=day, status=SaleStatus.CANCELLED,
                 cancellation_reason="Test"),
        ])
        db_session.commit()

    def test_summary(self, client, manager_headers, sales):
        response = client.get("/api/v1/vat/reports/summary?start_date=2026-03-14&end_date=2026-03-14",
                              headers=manager_headers)

        data = response.json()
        assert data["transaction_count"] == 2
        assert Decimal(data["total_sales"]) == Decimal("1350.00")
        assert Decimal(data["taxable_sales"]) == Decimal("1000.00")
        assert Decimal(data["vat_collected"]) == Decimal("150.00")
        assert data["by_payment_method"]["card"]["count"] == 1
        assert data["by_category"]["beverages"]["count"] == 1
        assert data["daily_trend"][0]["date"] == "2026-03-14"

    def test_export_csv(self, client, manager_headers, sales):
        response = client.get("/api/v1/vat/reports/export", headers=manager_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        lines = response.text.strip().splitlines()
        assert lines[0] == "Sale Number,Date,Order Type,Payment Method,Subtotal,VAT Rate,VAT Amount,Total"
        assert len(lines) == 3
        assert lines[1].startswith("SALE-20260314-0001,2026-03-14 12:00:00,dine-in,card,1000.00,15.00%")
