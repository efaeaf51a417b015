"""
Tests for receipt notifications

Covers:
- Sri Lankan mobile number normalization
- SMS message building and providers
- SMTP email sending
- Delivery bookkeeping on receipts
"""

import pytest
from datetime import datetime
from types import SimpleNamespace

from app.modules.notifications import service as notifications
from app.modules.notifications.service import (
    normalize_phone, is_valid_phone, EmailService, SMSService, NotificationService, SMS_MAX_LENGTH
)
from app.modules.receipts.builder import ReceiptTemplateBuilder
from app.modules.receipts.models import DeliveryStatus


# ===== FIXTURES =====

@pytest.fixture
def template():
    sale = {
        "sale_number": "SALE-20260314-0001",
        "items": [{"product_name": "Egg Hoppers", "quantity": 3, "unit_price": 80}],
        "subtotal": 240, "vat_amount": 36, "vat_rate": 0.15, "total_amount": 276,
        "payment_method": "cash", "amount_paid": 300, "change_given": 24,
        "order_type": "takeaway", "sale_date": datetime(2026, 3, 14, 8, 30),
    }
    return ReceiptTemplateBuilder("english").build(sale, "original", "RCP-1710400000-123")


@pytest.fixture
def receipt(template):
    return SimpleNamespace(
        receipt_number="RCP-1710400000-123",
        receipt_data={"template": template},
        delivery_attempts=0,
        last_delivery_attempt=None,
        delivery_method=None,
        delivery_status=DeliveryStatus.PENDING,
        delivery_error=None,
        recipient_email=None,
        recipient_phone=None,
    )


class StubEmail:
    def __init__(self, result=True):
        self.result = result
        self.sent = []

    def send_receipt_email(self, to_email, template, receipt_html, receipt_text=None):
        self.sent.append((to_email, template["receipt_info"]["receipt_no"]))
        return self.result


class FakeSMTP:
    instances = []

    def __init__(self, host, port):
        self.host, self.port = host, port
        self.started_tls = False
        self.messages = []
        FakeSMTP.instances.append(self)

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, username, password):
        self.credentials = (username, password)

    def sendmail(self, from_addr, to_addrs, message):
        self.messages.append((from_addr, to_addrs, message))

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class TestPhoneNumbers:

    @pytest.mark.parametrize("raw", ["0771234567", "+94771234567", "94771234567", "0094 77 123 4567", "771234567"])
    def test_normalizes_mobile_formats(self, raw):
        assert normalize_phone(raw) == "+94771234567"

    @pytest.mark.parametrize("raw", ["0112345678", "07712345", "abc", ""])
    def test_rejects_non_mobile(self, raw):
        assert is_valid_phone(raw) is False
        with pytest.raises(ValueError):
            normalize_phone(raw)


class TestSMSService:

    def test_message_fits_single_sms(self, template):
        message = SMSService.build_receipt_message(template)

        assert len(message) <= SMS_MAX_LENGTH
        assert "RCP-1710400000-123" in message
        assert "Rs. 276.00" in message

    def test_simulated_provider(self):
        result = SMSService("simulated").send_sms("0771234567", "hello")

        assert result["success"] is True
        assert result["message_id"].startswith("SMS-")

    def test_invalid_number_is_not_sent(self):
        result = SMSService("simulated").send_sms("12345", "hello")
        assert result["success"] is False
        assert "Invalid" in result["error"]

    def test_twilio_without_credentials_fails(self, monkeypatch):
        monkeypatch.setattr(notifications.settings, "TWILIO_ACCOUNT_SID", "")

        result = SMSService("twilio").send_sms("0771234567", "hello")

        assert result["success"] is False
        assert result["error"] == "Twilio credentials not configured"

    def test_twilio_client_used(self, monkeypatch):
        created = []

        class FakeMessages:
            def create(self, body, from_, to):
                created.append(to)
                return SimpleNamespace(sid="SM123")

        monkeypatch.setattr(notifications.settings, "TWILIO_ACCOUNT_SID", "AC1")
        monkeypatch.setattr(notifications.settings, "TWILIO_AUTH_TOKEN", "secret")
        monkeypatch.setattr(notifications, "TwilioClient", lambda sid, token: SimpleNamespace(messages=FakeMessages()))

        result = SMSService("twilio").send_sms("077 123 4567", "hello")

        assert result == {"success": True, "message_id": "SM123", "error": None}
        assert created == ["+94771234567"]


class TestEmailService:

    def test_send_over_starttls(self, monkeypatch):
        FakeSMTP.instances = []
        monkeypatch.setattr(notifications.smtplib, "SMTP", FakeSMTP)
        service = EmailService()
        service.use_tls = True
        service.username = ""

        assert service.send_email("guest@example.com", "Receipt", "<p>hi</p>", "hi") is True
        smtp = FakeSMTP.instances[0]
        assert smtp.started_tls is True
        assert smtp.messages[0][1] == ["guest@example.com"]

    def test_connection_error_returns_false(self, monkeypatch):
        def refuse(host, port):
            raise ConnectionRefusedError("refused")

        monkeypatch.setattr(notifications.smtplib, "SMTP", refuse)
        service = EmailService()
        service.use_tls = True

        assert service.send_email("guest@example.com", "Receipt", "<p>hi</p>") is False

    def test_receipt_email_wraps_receipt(self, monkeypatch, template):
        captured = {}

        def fake_send(self, to_email, subject, html_content, text_content=None):
            captured.update(subject=subject, html=html_content)
            return True

        monkeypatch.setattr(EmailService, "send_email", fake_send)

        EmailService().send_receipt_email("guest@example.com", template, "<div>RECEIPT BODY</div>")

        assert captured["subject"].startswith("TAX INVOICE RCP-1710400000-123")
        assert "<div>RECEIPT BODY</div>" in captured["html"]


class TestDeliverReceipt:

    def test_email_success(self, receipt):
        email = StubEmail()
        service = NotificationService(email_service=email, sms_service=SMSService("simulated"))

        result = service.deliver_receipt(receipt, "email", "guest@example.com")

        assert result["success"] is True
        assert receipt.delivery_status == DeliveryStatus.SENT
        assert receipt.delivery_attempts == 1
        assert receipt.recipient_email == "guest@example.com"
        assert receipt.last_delivery_attempt is not None
        assert email.sent == [("guest@example.com", "RCP-1710400000-123")]

    def test_failure_records_error(self, receipt):
        service = NotificationService(email_service=StubEmail(result=False), sms_service=SMSService("simulated"))

        service.deliver_receipt(receipt, "email", "guest@example.com")
        service.deliver_receipt(receipt, "email", "guest@example.com")

        assert receipt.delivery_status == DeliveryStatus.FAILED
        assert receipt.delivery_error == "Email delivery failed"
        assert receipt.delivery_attempts == 2

    def test_sms(self, receipt):
        service = NotificationService(email_service=StubEmail(), sms_service=SMSService("simulated"))

        result = service.deliver_receipt(receipt, "sms", "0771234567")

        assert result["success"] is True
        assert receipt.delivery_method == "sms"
        assert receipt.recipient_phone == "0771234567"

    def test_unsupported_method(self, receipt):
        service = NotificationService(email_service=StubEmail(), sms_service=SMSService("simulated"))

        result = service.deliver_receipt(receipt, "fax", "123")

        assert result["success"] is False
        assert receipt.delivery_status == DeliveryStatus.FAILED
