"""
Tests for the receipts module

Covers:
- Translations, currency and date formatting
- Template sections by order type, receipt type and payment method
- Plain text and HTML rendering
- Receipt API: generate, render, duplicate, void, print, deliver, retry
- Stats, languages and audit trail
- Delivery endpoints run off the event loop
"""

import inspect
import pytest
from datetime import datetime
from decimal import Decimal

from app.core.config import settings
from app.modules.sales.models import Sale, OrderType, PaymentMethod
from app.modules.receipts.models import Receipt, DeliveryStatus
from app.modules.receipts.languages import translate, format_currency, format_date, format_time
from app.modules.receipts.builder import ReceiptTemplateBuilder, render_plain_text, render_html, LINE_WIDTH
from app.modules.notifications.service import EmailService
from app.modules.receipts.router import receipts_router


# ===== FIXTURES =====

def _sale(**overrides):
    data = dict(
        sale_number="SALE-20260314-0007",
        items=[
            {"product": "a", "product_name": "Chicken Kottu Roti Extra Large Portion", "quantity": 2,
             "unit_price": 1200, "subtotal": 2400, "vat_amount": 360, "vat_rate": 0.15,
             "total_with_vat": 2760, "taxable": True},
            {"product": "b", "product_name": "Ginger Beer", "quantity": 1, "unit_price": 250,
             "subtotal": 250, "vat_amount": 37.5, "vat_rate": 0.15, "total_with_vat": 287.5, "taxable": True},
        ],
        subtotal=Decimal("2650.00"),
        vat_amount=Decimal("397.50"),
        vat_rate=Decimal("0.15"),
        service_charge=Decimal("0"),
        total_amount=Decimal("3047.50"),
        payment_method=PaymentMethod.CASH,
        amount_paid=Decimal("5000.00"),
        change_given=Decimal("1952.50"),
        cashier_name="Nimali Perera",
        order_type=OrderType.DINE_IN,
        table_number="T7",
        sale_date=datetime(2026, 3, 14, 19, 5),
    )
    data.update(overrides)
    return Sale(**data)


@pytest.fixture
def sale(db_session):
    row = _sale()
    db_session.add(row)
    db_session.commit()
    db_session.refresh(row)
    return row


@pytest.fixture
def email_outbox(monkeypatch):
    sent = []

    def fake_send(self, to_email, subject, html_content, text_content=None):
        sent.append({"to": to_email, "subject": subject, "html": html_content})
        return True

    monkeypatch.setattr(EmailService, "send_email", fake_send)
    return sent


@pytest.fixture
def failing_email(monkeypatch):
    monkeypatch.setattr(EmailService, "send_email", lambda self, *args, **kwargs: False)


class TestLanguages:
    """Translations and formatting"""

    def test_unknown_language_falls_back_to_english(self):
        assert translate("klingon", "subtotal") == "Subtotal"

    def test_unknown_key_falls_back_to_key(self):
        assert translate("sinhala", "no_such_label") == "no_such_label"

    def test_missing_sinhala_key_uses_english(self):
        assert translate("sinhala", "service_charge") == "Service Charge"

    def test_currency_prefixes(self):
        assert format_currency(Decimal("1500"), "english") == "Rs. 1500.00"
        assert format_currency(Decimal("1500"), "sinhala") == "රු. 1500.00"
        assert format_currency(Decimal("99.999"), "tamil") == "ரூ. 100.00"

    def test_date_order_by_language(self):
        when = datetime(2026, 3, 14, 19, 5)
        assert format_date(when, "english") == "03/14/2026"
        assert format_date(when, "tamil") == "14/03/2026"
        assert format_time(when) == "07:05 PM"


class TestTemplateBuilder:
    """ReceiptTemplateBuilder.build"""

    def test_dine_in_original(self):
        template = ReceiptTemplateBuilder("english").build(_sale(), "original", "RCP-1-001")

        assert template["header"]["title"] == "TAX INVOICE"
        assert template["receipt_info"]["table_no"] == "T7"
        assert template["receipt_info"]["order_type"] == "Dine-In"
        assert template["calculations"]["vat"]["label"] == "VAT (15.00%)"
        assert template["payment_info"]["change"]["amount"] == "Rs. 1952.50"
        assert template["footer"]["copy"] == "Customer Copy"
        assert template["company_info"]["name"] == settings.RESTAURANT_NAME
        assert "delivery_info" not in template

    def test_takeaway_has_no_table(self):
        template = ReceiptTemplateBuilder().build(_sale(order_type=OrderType.TAKEAWAY))
        assert "table_no" not in template["receipt_info"]

    def test_delivery_info_only_for_delivery(self):
        template = ReceiptTemplateBuilder().build(_sale(order_type=OrderType.DELIVERY, customer_name="Kasun"))
        assert template["delivery_info"]["customer"] == "Kasun"

    def test_duplicate_is_merchant_copy(self):
        template = ReceiptTemplateBuilder("sinhala").build(_sale(), "duplicate")
        assert template["header"]["title"] == "අනුපිටපත් රිසිට්පත"
        assert template["footer"]["copy"] == "වෙළඳසැලේ පිටපත"

    def test_no_change_for_card(self):
        template = ReceiptTemplateBuilder().build(_sale(payment_method=PaymentMethod.CARD))
        assert "change" not in template["payment_info"]
        assert template["payment_info"]["method"]["value"] == "Card"

    def test_company_falls_back_to_translation(self, monkeypatch):
        monkeypatch.setattr(settings, "RESTAURANT_NAME", "")
        template = ReceiptTemplateBuilder("tamil").build(_sale())
        assert template["company_info"]["name"] == "லங்கா பிஓஎஸ் உணவகம்"


class TestRendering:
    """Plain text and HTML"""

    def test_plain_text_fits_printer_width(self):
        text = render_plain_text(ReceiptTemplateBuilder().build(_sale(), "original", "RCP-1-001"))

        assert all(len(line) <= LINE_WIDTH for line in text.splitlines())
        assert "Table No: T7" in text
        assert "Chicken Kottu Roti Extra " in text
        total_line = next(line for line in text.splitlines() if line.startswith("TOTAL AMOUNT"))
        assert total_line.endswith("Rs. 3047.50")
        assert len(total_line) == LINE_WIDTH

    def test_html_escapes_notes(self):
        template = ReceiptTemplateBuilder().build(_sale(notes="<b>no chilli</b>"))

        html = render_html(template)

        assert "Ginger Beer" in html
        assert "&lt;b&gt;no chilli&lt;/b&gt;" in html


class TestReceiptApi:
    """/receipts"""

    def test_generate_print_receipt(self, client, cashier_headers, sale):
        response = client.post("/api/v1/receipts", json={"sale_id": str(sale.id)}, headers=cashier_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["receipt"]["receipt_number"].startswith("RCP-")
        assert data["receipt"]["delivery_status"] == "not_applicable"
        assert data["receipt"]["generated_by_name"] == "Cashier User"
        assert "TAX INVOICE" in data["text"]
        assert data["html"] is None

    def test_unknown_sale(self, client, cashier_headers):
        response = client.post("/api/v1/receipts", json={"sale_id": "00000000-0000-0000-0000-000000000001"},
                               headers=cashier_headers)
        assert response.status_code == 404

    def test_email_receipt_sent_on_creation(self, client, cashier_headers, sale, email_outbox):
        body = {"sale_id": str(sale.id), "format": "email", "recipient_email": "guest@example.com"}

        response = client.post("/api/v1/receipts", json=body, headers=cashier_headers)

        assert response.json()["receipt"]["delivery_status"] == "sent"
        assert response.json()["html"].startswith("<!DOCTYPE html>")
        assert email_outbox[0]["to"] == "guest@example.com"

    def test_get_in_each_format(self, client, cashier_headers, sale):
        receipt = client.post("/api/v1/receipts", json={"sale_id": str(sale.id), "language": "tamil"},
                              headers=cashier_headers).json()["receipt"]

        as_json = client.get(f"/api/v1/receipts/{receipt['id']}", headers=cashier_headers).json()
        as_html = client.get(f"/api/v1/receipts/{receipt['id']}?format=html", headers=cashier_headers).json()

        assert as_json["text"] is None and as_json["html"] is None
        assert as_json["template"]["header"]["title"] == "வரி விலைப்பட்டியல்"
        assert "வரி விலைப்பட்டியல்" in as_html["html"]

    def test_duplicate_keeps_format_and_language(self, client, cashier_headers, sale):
        original = client.post("/api/v1/receipts", json={"sale_id": str(sale.id), "language": "sinhala"},
                               headers=cashier_headers).json()["receipt"]

        response = client.post(f"/api/v1/receipts/{original['id']}/duplicate", headers=cashier_headers)

        duplicate = response.json()["receipt"]
        assert duplicate["receipt_type"] == "duplicate"
        assert duplicate["language"] == "sinhala"
        assert duplicate["receipt_number"] != original["receipt_number"]
        listed = client.get(f"/api/v1/receipts/sale/{sale.id}", headers=cashier_headers).json()
        assert len(listed) == 2

    def test_void_twice(self, client, cashier_headers, manager_headers, sale):
        receipt = client.post("/api/v1/receipts", json={"sale_id": str(sale.id)},
                              headers=cashier_headers).json()["receipt"]

        first = client.post(f"/api/v1/receipts/{receipt['id']}/void", json={"reason": "Wrong table"},
                            headers=manager_headers)
        second = client.post(f"/api/v1/receipts/{receipt['id']}/void", json={"reason": "Again"},
                             headers=manager_headers)

        assert first.json()["is_voided"] is True
        assert second.status_code == 400

    def test_print_increments_count(self, client, cashier_headers, sale):
        receipt = client.post("/api/v1/receipts", json={"sale_id": str(sale.id)},
                              headers=cashier_headers).json()["receipt"]

        client.post(f"/api/v1/receipts/{receipt['id']}/print", headers=cashier_headers)
        response = client.post(f"/api/v1/receipts/{receipt['id']}/print", headers=cashier_headers)

        assert response.json()["print_count"] == 2

    def test_sms_delivery(self, client, cashier_headers, sale):
        receipt = client.post("/api/v1/receipts", json={"sale_id": str(sale.id), "format": "sms"},
                              headers=cashier_headers).json()["receipt"]

        response = client.post(f"/api/v1/receipts/{receipt['id']}/sms", json={"phone": "0771234567"},
                               headers=cashier_headers)

        data = response.json()
        assert data["success"] is True
        assert data["receipt"]["delivery_status"] == "sent"
        assert data["receipt"]["delivery_attempts"] == 1

    def test_sms_invalid_number_fails_delivery(self, client, cashier_headers, sale):
        receipt = client.post("/api/v1/receipts", json={"sale_id": str(sale.id)},
                              headers=cashier_headers).json()["receipt"]

        response = client.post(f"/api/v1/receipts/{receipt['id']}/sms", json={"phone": "0112345678"},
                               headers=cashier_headers)

        assert response.json()["success"] is False
        assert response.json()["receipt"]["delivery_status"] == "failed"

    def test_retry_until_limit(self, client, cashier_headers, sale, failing_email):
        receipt = client.post("/api/v1/receipts", json={"sale_id": str(sale.id), "format": "email"},
                              headers=cashier_headers).json()["receipt"]
        client.post(f"/api/v1/receipts/{receipt['id']}/email", json={"email": "guest@example.com"},
                    headers=cashier_headers)

        for _ in range(settings.RECEIPT_MAX_RETRIES - 1):
            response = client.post(f"/api/v1/receipts/{receipt['id']}/retry", headers=cashier_headers)
            assert response.status_code == 200

        response = client.post(f"/api/v1/receipts/{receipt['id']}/retry", headers=cashier_headers)
        assert response.status_code == 400

    def test_retry_refused_for_voided(self, client, cashier_headers, manager_headers, sale, failing_email):
        receipt = client.post("/api/v1/receipts", json={"sale_id": str(sale.id), "format": "email"},
                              headers=cashier_headers).json()["receipt"]
        client.post(f"/api/v1/receipts/{receipt['id']}/email", json={"email": "guest@example.com"},
                    headers=cashier_headers)
        client.post(f"/api/v1/receipts/{receipt['id']}/void", json={"reason": "Refunded"}, headers=manager_headers)

        response = client.post(f"/api/v1/receipts/{receipt['id']}/retry", headers=cashier_headers)

        assert response.status_code == 400


class TestReceiptReporting:
    """Stats, languages and audit"""

    def test_stats(self, client, cashier_headers, manager_headers, sale):
        client.post("/api/v1/receipts", json={"sale_id": str(sale.id)}, headers=cashier_headers)
        second = client.post("/api/v1/receipts", json={"sale_id": str(sale.id), "language": "tamil"},
                             headers=cashier_headers).json()["receipt"]
        client.post(f"/api/v1/receipts/{second['id']}/void", json={"reason": "Test"}, headers=manager_headers)

        stats = client.get("/api/v1/receipts/stats", headers=manager_headers).json()

        assert stats["total"] == 2
        assert stats["by_language"] == {"english": 1, "tamil": 1}
        assert stats["by_format"] == {"print": 2}
        assert stats["voided"] == 1

    def test_languages(self, client, cashier_headers):
        languages = client.get("/api/v1/receipts/languages", headers=cashier_headers).json()
        assert [lang["code"] for lang in languages] == ["english", "sinhala", "tamil"]

    def test_audit_filters_voided(self, client, cashier_headers, manager_headers, sale, db_session):
        client.post("/api/v1/receipts", json={"sale_id": str(sale.id)}, headers=cashier_headers)

        audit = client.get(f"/api/v1/receipts/audit?sale_id={sale.id}&voided=false", headers=manager_headers).json()

        assert len(audit) == 1
        assert audit[0]["sale_number"] == "SALE-20260314-0007"
        assert audit[0]["generated_by_name"] == "Cashier User"
        assert db_session.query(Receipt).first().delivery_status == DeliveryStatus.NOT_APPLICABLE


class TestEndpointThreading:

    def test_no_endpoint_blocks_the_loop(self):
        # email and SMS delivery use blocking clients
        coroutines = [route.path for route in receipts_router.routes if inspect.iscoroutinefunction(route.endpoint)]
        assert coroutines == []
