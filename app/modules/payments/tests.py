"""
Tests for the payments module

Covers:
- Change breakdown, Luhn check and card brand detection
- Cash payments, refunds and the drawer open/close/reconcile cycle
- Card sessions against the simulated gateway, webhooks, refunds, cancel
- Mobile wallet sessions, QR codes, webhooks and refunds
- Session expiry and the transaction summary
- Gateway endpoints run off the event loop
"""

import inspect
import json
import random
import pytest
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4
from unittest.mock import patch

from app.common.utils import utc_now
from app.modules.auth.utils import create_access_token
from app.modules.auth.schemas import AuthContext
from app.modules.payments.cash import change_breakdown
from app.modules.payments.gateways import luhn_valid, card_brand, SimulatedCardGateway, get_card_gateway
from app.modules.payments.mobile import MobilePaymentService, mask_phone, processing_fee, sign_webhook
from app.modules.payments.models import CardSession, MobilePaymentSession, CardSessionStatus, MobileSessionStatus
from app.modules.payments.schemas import MobileInitialize, MobileProcess, RefundRequest
from app.modules.payments.service import expire_stale_sessions
from app.modules.payments.router import payments_router


# ===== FIXTURES =====

class FixedRandom(random.Random):
    """random() always returns the same value; randint still works."""

    def __init__(self, value: float):
        super().__init__(42)
        self.value = value

    def random(self):
        return self.value


def _headers(user) -> dict:
    token = create_access_token({"sub": str(user.id), "username": user.username, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


def _context(user) -> AuthContext:
    return AuthContext(user_id=user.id, username=user.username, full_name=user.full_name, role=user.role.value)


def _open_drawer(client, headers, balance=5000):
    response = client.post("/api/v1/payments/cash/drawer/open", json={"opening_balance": balance}, headers=headers)
    assert response.status_code == 201
    return response.json()


def _cash(client, headers, amount, tendered):
    response = client.post(
        "/api/v1/payments/cash/process",
        json={"amount": amount, "amount_tendered": tendered},
        headers=headers
    )
    assert response.status_code == 201
    return response.json()


def _card_session(client, headers, amount=2500):
    response = client.post("/api/v1/payments/card/initialize", json={"amount": amount}, headers=headers)
    assert response.status_code == 201
    return response.json()


def _card_paid(client, headers, amount=2500):
    session = _card_session(client, headers, amount)
    response = client.post(
        "/api/v1/payments/card/process",
        json={"session_id": session["session_id"], "card_token": "tok_visa"},
        headers=headers
    )
    return response.json()


@pytest.fixture
def mobile_session(db_session, cashier_user):
    service = MobilePaymentService(db_session, rng=FixedRandom(0.0))
    return service.initialize(
        MobileInitialize(wallet_provider="genie", amount=Decimal("1500"), customer_phone="0771234567"),
        _context(cashier_user)
    )


class TestHelpers:
    """Pure helpers"""

    def test_change_breakdown(self):
        result = change_breakdown(Decimal("3785"))
        assert result["breakdown"] == [
            {"value": 2000, "count": 1},
            {"value": 1000, "count": 1},
            {"value": 500, "count": 1},
            {"value": 100, "count": 2},
            {"value": 50, "count": 1},
            {"value": 20, "count": 1},
            {"value": 10, "count": 1},
            {"value": 5, "count": 1},
        ]
        assert result["remainder"] == Decimal("0.00")

    def test_change_breakdown_keeps_cents_as_remainder(self):
        result = change_breakdown(Decimal("12.50"))
        assert result["breakdown"] == [{"value": 10, "count": 1}, {"value": 2, "count": 1}]
        assert result["remainder"] == Decimal("0.50")

    @pytest.mark.parametrize("number,valid", [
        ("4242424242424242", True),
        ("5555555555554444", True),
        ("378282246310005", True),
        ("4242424242424241", False),
        ("abcd", False),
    ])
    def test_luhn(self, number, valid):
        assert luhn_valid(number) is valid

    @pytest.mark.parametrize("number,brand", [
        ("4242424242424242", "visa"),
        ("5105105105105100", "mastercard"),
        ("371449635398431", "amex"),
        ("6011111111111117", "unknown"),
    ])
    def test_card_brand(self, number, brand):
        assert card_brand(number) == brand

    def test_mask_phone(self):
        assert mask_phone("+94771234567") == "947***67"
        assert mask_phone(None) is None

    def test_processing_fee(self):
        assert processing_fee("payhere", Decimal("1000")) == Decimal("35.00")
        assert processing_fee("genie", Decimal("1000")) == Decimal("0.00")

    def test_unknown_gateway(self):
        with pytest.raises(ValueError):
            get_card_gateway("paypal")


class TestCashDrawer:
    """Drawer lifecycle"""

    def test_open_and_status(self, client, cashier_headers):
        drawer = _open_drawer(client, cashier_headers)
        assert drawer["drawer_number"].startswith("DRW-")
        assert drawer["drawer_number"].endswith("-0001")
        assert drawer["cashier_name"] == "Cashier User"
        assert Decimal(drawer["expected_balance"]) == Decimal("5000")

        response = client.get("/api/v1/payments/cash/drawer/status", headers=cashier_headers)
        assert response.status_code == 200
        assert response.json()["transactions"]["count"] == 0

    def test_second_open_drawer_rejected(self, client, cashier_headers):
        _open_drawer(client, cashier_headers)
        response = client.post(
            "/api/v1/payments/cash/drawer/open", json={"opening_balance": 100}, headers=cashier_headers
        )
        assert response.status_code == 400

    def test_opening_denominations_must_match(self, client, cashier_headers):
        response = client.post(
            "/api/v1/payments/cash/drawer/open",
            json={"opening_balance": 3000, "denominations": [{"value": 1000, "count": 2}]},
            headers=cashier_headers
        )
        assert response.status_code == 400

    def test_invalid_denomination(self, client, cashier_headers):
        response = client.post(
            "/api/v1/payments/cash/drawer/open",
            json={"opening_balance": 300, "denominations": [{"value": 300, "count": 1}]},
            headers=cashier_headers
        )
        assert response.status_code == 422

    def test_status_without_drawer(self, client, cashier_headers):
        response = client.get("/api/v1/payments/cash/drawer/status", headers=cashier_headers)
        assert response.status_code == 404

    def test_close_records_difference(self, client, cashier_headers):
        _open_drawer(client, cashier_headers, 5000)
        _cash(client, cashier_headers, 1200, 1500)

        response = client.post(
            "/api/v1/payments/cash/drawer/close", json={"actual_balance": 6150}, headers=cashier_headers
        )
        assert response.status_code == 200
        drawer = response.json()
        assert drawer["status"] == "closed"
        assert Decimal(drawer["expected_balance"]) == Decimal("6200")
        assert Decimal(drawer["difference"]) == Decimal("-50")

    def test_reconcile_only_closed(self, client, cashier_headers, manager_headers):
        drawer = _open_drawer(client, cashier_headers)
        url = f"/api/v1/payments/cash/drawer/{drawer['id']}/reconcile"
        assert client.post(url, json={}, headers=manager_headers).status_code == 400

        client.post("/api/v1/payments/cash/drawer/close", json={"actual_balance": 5000}, headers=cashier_headers)
        response = client.post(url, json={"notes": "Counted twice"}, headers=manager_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "reconciled"
        assert "[Reconciliation] Counted twice" in response.json()["notes"]

    def test_cashier_cannot_reconcile(self, client, cashier_headers):
        drawer = _open_drawer(client, cashier_headers)
        response = client.post(
            f"/api/v1/payments/cash/drawer/{drawer['id']}/reconcile", json={}, headers=cashier_headers
        )
        assert response.status_code == 403

    def test_discrepancies(self, client, make_user, manager_headers):
        short = _headers(make_user("short_cashier"))
        exact = _headers(make_user("exact_cashier"))
        for headers, counted in ((short, 4900), (exact, 5005)):
            _open_drawer(client, headers, 5000)
            client.post("/api/v1/payments/cash/drawer/close", json={"actual_balance": counted}, headers=headers)

        response = client.get("/api/v1/payments/cash/discrepancies", headers=manager_headers)
        assert response.status_code == 200
        assert [Decimal(d["difference"]) for d in response.json()] == [Decimal("-100")]

        response = client.get("/api/v1/payments/cash/discrepancies?threshold=1", headers=manager_headers)
        assert len(response.json()) == 2


class TestCashPayments:
    """Cash tendering and refunds"""

    def test_change_returned(self, client, cashier_headers):
        _open_drawer(client, cashier_headers)
        result = _cash(client, cashier_headers, 1750, 2000)
        assert result["transaction"]["transaction_id"].startswith("CASH-")
        assert Decimal(result["change"]["total"]) == Decimal("250")
        assert result["change"]["breakdown"] == [{"value": 100, "count": 2}, {"value": 50, "count": 1}]
        assert result["transaction"]["drawer_id"] is not None

    def test_insufficient_tender(self, client, cashier_headers):
        response = client.post(
            "/api/v1/payments/cash/process", json={"amount": 1000, "amount_tendered": 500}, headers=cashier_headers
        )
        assert response.status_code == 400

    def test_tender_denominations_must_match(self, client, cashier_headers):
        response = client.post(
            "/api/v1/payments/cash/process",
            json={"amount": 900, "amount_tendered": 1000, "denominations": [{"value": 500, "count": 1}]},
            headers=cashier_headers
        )
        assert response.status_code == 400

    def test_without_drawer_is_allowed(self, client, cashier_headers):
        result = _cash(client, cashier_headers, 500, 500)
        assert result["transaction"]["drawer_id"] is None

    def test_unknown_sale(self, client, cashier_headers):
        response = client.post(
            "/api/v1/payments/cash/process",
            json={"amount": 500, "amount_tendered": 500, "sale_id": str(uuid4())},
            headers=cashier_headers
        )
        assert response.status_code == 404

    def test_partial_then_full_refund(self, client, cashier_headers, manager_headers):
        _open_drawer(client, cashier_headers, 1000)
        payment = _cash(client, cashier_headers, 2000, 2000)["transaction"]

        response = client.post(
            "/api/v1/payments/cash/refund",
            json={"transaction_id": payment["transaction_id"], "amount": 500, "reason": "Cold food"},
            headers=manager_headers
        )
        assert response.status_code == 200
        result = response.json()
        assert result["refund"]["transaction_id"].startswith("REFUND-")
        assert Decimal(result["refund"]["amount"]) == Decimal("-500")
        assert result["original"]["status"] == "completed"

        response = client.post(
            "/api/v1/payments/cash/refund",
            json={"transaction_id": payment["transaction_id"], "reason": "Order cancelled"},
            headers=manager_headers
        )
        assert response.json()["original"]["status"] == "refunded"
        assert Decimal(response.json()["refund"]["amount"]) == Decimal("-1500")

        drawer = client.get("/api/v1/payments/cash/drawer/status", headers=cashier_headers).json()
        assert Decimal(drawer["drawer"]["expected_balance"]) == Decimal("1000")
        assert drawer["transactions"]["refunds_count"] == 2

        response = client.post(
            "/api/v1/payments/cash/refund",
            json={"transaction_id": payment["transaction_id"], "reason": "Again"},
            headers=manager_headers
        )
        assert response.status_code == 400

    def test_refund_above_remainder(self, client, cashier_headers, manager_headers):
        payment = _cash(client, cashier_headers, 300, 300)["transaction"]
        response = client.post(
            "/api/v1/payments/cash/refund",
            json={"transaction_id": payment["transaction_id"], "amount": 301, "reason": "Too much"},
            headers=manager_headers
        )
        assert response.status_code == 400

    def test_duplicate_refund_id_rolls_back(self, client, cashier_headers, manager_headers):
        _open_drawer(client, cashier_headers, 1000)
        payment = _cash(client, cashier_headers, 800, 800)["transaction"]

        with patch("app.modules.payments.service.timestamp_reference", return_value=payment["transaction_id"]):
            response = client.post(
                "/api/v1/payments/cash/refund",
                json={"transaction_id": payment["transaction_id"], "reason": "Wrong table"},
                headers=manager_headers
            )

        assert response.status_code == 409
        drawer = client.get("/api/v1/payments/cash/drawer/status", headers=cashier_headers).json()
        assert Decimal(drawer["drawer"]["expected_balance"]) == Decimal("1800")
        assert drawer["transactions"]["refunds_count"] == 0

    def test_cashier_cannot_refund(self, client, cashier_headers):
        payment = _cash(client, cashier_headers, 300, 300)["transaction"]
        response = client.post(
            "/api/v1/payments/cash/refund",
            json={"transaction_id": payment["transaction_id"], "reason": "Mine"},
            headers=cashier_headers
        )
        assert response.status_code == 403

    def test_report(self, client, cashier_headers, manager_headers):
        _open_drawer(client, cashier_headers)
        payment = _cash(client, cashier_headers, 1000, 1000)["transaction"]
        _cash(client, cashier_headers, 500, 1000)
        client.post(
            "/api/v1/payments/cash/refund",
            json={"transaction_id": payment["transaction_id"], "amount": 200, "reason": "Discount"},
            headers=manager_headers
        )
        report = client.get("/api/v1/payments/cash/report", headers=manager_headers).json()
        assert Decimal(report["total_sales"]) == Decimal("1500")
        assert Decimal(report["total_refunds"]) == Decimal("200")
        assert Decimal(report["net_cash"]) == Decimal("1300")
        assert report["transaction_count"] == 2
        assert report["drawers_opened"] == 1


class TestCardPayments:
    """Card sessions on the simulated gateway"""

    def test_initialize(self, client, cashier_headers):
        session = _card_session(client, cashier_headers)
        assert session["session_id"].startswith("cs_")
        assert session["gateway_intent_id"].startswith("pi_sim_")
        assert session["status"] == "initialized"
        assert session["currency"] == "LKR"

    def test_token_approved(self, client, cashier_headers):
        result = _card_paid(client, cashier_headers)
        assert result["success"] is True
        assert result["session"]["status"] == "completed"
        assert result["transaction"]["transaction_id"].startswith("CARD-")
        assert result["transaction"]["card_last4"] == "4242"
        assert result["transaction"]["card_brand"] == "visa"

    @pytest.mark.parametrize("number,error", [
        ("4000000000000002", "Your card was declined"),
        ("4000000000000069", "Your card has expired"),
        ("4242424242424241", "Invalid card number"),
    ])
    def test_card_failures(self, client, cashier_headers, number, error):
        session = _card_session(client, cashier_headers)
        response = client.post(
            "/api/v1/payments/card/process",
            json={
                "session_id": session["session_id"],
                "card": {"number": number, "exp_month": 12, "exp_year": 2030, "cvc": "123"}
            },
            headers=cashier_headers
        )
        assert response.status_code == 200
        result = response.json()
        assert result["success"] is False
        assert result["error"] == error
        assert result["session"]["status"] == "failed"
        assert result["transaction"] is None

    def test_card_required(self, client, cashier_headers):
        session = _card_session(client, cashier_headers)
        response = client.post(
            "/api/v1/payments/card/process", json={"session_id": session["session_id"]}, headers=cashier_headers
        )
        assert response.status_code == 400

    def test_session_used_once(self, client, cashier_headers):
        result = _card_paid(client, cashier_headers)
        response = client.post(
            "/api/v1/payments/card/process",
            json={"session_id": result["session"]["session_id"], "card_token": "tok_visa"},
            headers=cashier_headers
        )
        assert response.status_code == 400

    def test_expired_session(self, client, cashier_headers, db_session):
        session = _card_session(client, cashier_headers)
        row = db_session.query(CardSession).filter(CardSession.session_id == session["session_id"]).first()
        row.expires_at = utc_now() - timedelta(minutes=1)
        db_session.commit()

        response = client.post(
            "/api/v1/payments/card/process",
            json={"session_id": session["session_id"], "card_token": "tok_visa"},
            headers=cashier_headers
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Payment session has expired"

    def test_status_not_found(self, client, cashier_headers):
        response = client.get("/api/v1/payments/card/status/cs_missing", headers=cashier_headers)
        assert response.status_code == 404

    def test_webhook_completes_session(self, client, cashier_headers):
        session = _card_session(client, cashier_headers)
        payload = json.dumps({
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": session["gateway_intent_id"]}}
        }).encode()

        response = client.post(
            "/api/v1/payments/card/webhook",
            content=payload,
            headers={"X-Signature": SimulatedCardGateway().sign(payload), "Content-Type": "application/json"}
        )
        assert response.status_code == 200
        assert response.json()["handled"] is True

        status_response = client.get(f"/api/v1/payments/card/status/{session['session_id']}", headers=cashier_headers)
        assert status_response.json()["status"] == "completed"
        assert status_response.json()["transaction_id"].startswith("CARD-")

    def test_webhook_bad_signature(self, client):
        response = client.post(
            "/api/v1/payments/card/webhook", content=b"{}", headers={"X-Signature": "nope"}
        )
        assert response.status_code == 400

    def test_webhook_unknown_intent(self, client):
        payload = json.dumps({"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_x"}}}).encode()
        response = client.post(
            "/api/v1/payments/card/webhook", content=payload,
            headers={"X-Signature": SimulatedCardGateway().sign(payload)}
        )
        assert response.status_code == 200
        assert response.json()["handled"] is False

    def test_refund(self, client, cashier_headers, manager_headers):
        paid = _card_paid(client, cashier_headers, 4000)
        response = client.post(
            "/api/v1/payments/card/refund",
            json={"transaction_id": paid["transaction"]["transaction_id"], "amount": 1000, "reason": "Wrong dish"},
            headers=manager_headers
        )
        assert response.status_code == 200
        refund = response.json()["refund"]
        assert refund["transaction_id"].startswith("CARDREF-")
        assert refund["gateway_reference"].startswith("re_sim_")
        assert refund["card_last4"] == "4242"
        assert Decimal(refund["amount"]) == Decimal("-1000")

    def test_refund_wrong_method(self, client, cashier_headers, manager_headers):
        payment = _cash(client, cashier_headers, 300, 300)["transaction"]
        response = client.post(
            "/api/v1/payments/card/refund",
            json={"transaction_id": payment["transaction_id"], "reason": "Wrong"},
            headers=manager_headers
        )
        assert response.status_code == 400

    def test_cancel(self, client, cashier_headers):
        session = _card_session(client, cashier_headers)
        url = f"/api/v1/payments/card/cancel/{session['session_id']}"
        response = client.post(url, headers=cashier_headers)
        assert response.json()["status"] == "cancelled"
        assert client.post(url, headers=cashier_headers).status_code == 400

    def test_cancel_completed(self, client, cashier_headers):
        paid = _card_paid(client, cashier_headers)
        response = client.post(
            f"/api/v1/payments/card/cancel/{paid['session']['session_id']}", headers=cashier_headers
        )
        assert response.status_code == 400

    def test_transactions_filtered_by_method(self, client, cashier_headers):
        _card_paid(client, cashier_headers)
        _cash(client, cashier_headers, 100, 100)
        response = client.get("/api/v1/payments/card/transactions", headers=cashier_headers)
        assert [t["payment_method"] for t in response.json()] == ["card"]


class TestMobilePayments:
    """Wallet sessions"""

    def test_wallets(self, client, cashier_headers):
        response = client.get("/api/v1/payments/mobile/wallets", headers=cashier_headers)
        assert {w["provider"] for w in response.json()} == {"genie", "frimi", "payhere", "ezcash", "mcash"}

    def test_initialize(self, mobile_session):
        assert mobile_session.session_id.startswith("MPS-")
        assert mobile_session.qr_code.startswith("data:image/png;base64,")
        assert mobile_session.payment_url.startswith("genie://pay?session=MPS-")
        assert mobile_session.customer_phone == "947***67"
        assert mobile_session.status == MobileSessionStatus.PENDING

    @pytest.mark.parametrize("payload", [
        {"wallet_provider": "paypal", "amount": 100},
        {"wallet_provider": "ezcash", "amount": 60000},
        {"wallet_provider": "payhere", "amount": 20},
        {"wallet_provider": "genie", "amount": 100, "customer_phone": "12345"},
    ])
    def test_initialize_rejected(self, client, cashier_headers, payload):
        response = client.post("/api/v1/payments/mobile/initialize", json=payload, headers=cashier_headers)
        assert response.status_code == 400

    def test_process_success(self, db_session, mobile_session):
        service = MobilePaymentService(db_session, rng=FixedRandom(0.0))
        result = service.process(MobileProcess(session_id=mobile_session.session_id))
        assert result["success"] is True
        assert result["session"].status == MobileSessionStatus.COMPLETED
        assert result["session"].provider_reference.startswith("GENIE-")
        assert result["transaction"].transaction_id.startswith("MOB-")
        assert result["transaction"].customer_phone == "947***67"

    def test_process_failure(self, db_session, mobile_session):
        service = MobilePaymentService(db_session, rng=FixedRandom(0.99))
        result = service.process(MobileProcess(session_id=mobile_session.session_id))
        assert result["success"] is False
        assert result["error"] == "Insufficient wallet balance"
        assert result["session"].status == MobileSessionStatus.FAILED
        assert result["session"].attempts == 1

    def test_process_twice(self, db_session, mobile_session):
        from fastapi import HTTPException
        service = MobilePaymentService(db_session, rng=FixedRandom(0.0))
        service.process(MobileProcess(session_id=mobile_session.session_id))
        with pytest.raises(HTTPException) as exc:
            service.process(MobileProcess(session_id=mobile_session.session_id))
        assert exc.value.detail == "Payment already processed"

    def test_process_expired(self, client, cashier_headers, db_session, mobile_session):
        mobile_session.expires_at = utc_now() - timedelta(seconds=1)
        db_session.commit()
        response = client.post(
            "/api/v1/payments/mobile/process", json={"session_id": mobile_session.session_id}, headers=cashier_headers
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "QR code has expired"

    def test_webhook(self, client, cashier_headers, mobile_session):
        payload = json.dumps({
            "session_id": mobile_session.session_id, "status": "success", "reference": "GENIE-REF-1"
        }).encode()
        response = client.post(
            "/api/v1/payments/mobile/webhook", content=payload,
            headers={"X-Wallet-Signature": sign_webhook(payload)}
        )
        assert response.status_code == 200
        assert response.json()["handled"] is True

        session = client.get(
            f"/api/v1/payments/mobile/status/{mobile_session.session_id}", headers=cashier_headers
        ).json()
        assert session["status"] == "completed"
        assert session["provider_reference"] == "GENIE-REF-1"

    def test_webhook_bad_signature(self, client, mobile_session):
        payload = json.dumps({"session_id": mobile_session.session_id, "status": "success"}).encode()
        response = client.post(
            "/api/v1/payments/mobile/webhook", content=payload,
            headers={"X-Wallet-Signature": sign_webhook(payload, "other-secret")}
        )
        assert response.status_code == 400

    def test_refund(self, client, manager_headers, db_session, mobile_session):
        service = MobilePaymentService(db_session, rng=FixedRandom(0.0))
        transaction = service.process(MobileProcess(session_id=mobile_session.session_id))["transaction"]

        response = client.post(
            "/api/v1/payments/mobile/refund",
            json={"transaction_id": transaction.transaction_id, "reason": "Customer left"},
            headers=manager_headers
        )
        assert response.status_code == 200
        refund = response.json()["refund"]
        assert refund["transaction_id"].startswith("MOBREF-")
        assert Decimal(refund["amount"]) == Decimal("-1500")
        assert response.json()["original"]["status"] == "refunded"

    def test_cancel(self, client, cashier_headers, mobile_session):
        response = client.post(
            f"/api/v1/payments/mobile/cancel/{mobile_session.session_id}", headers=cashier_headers
        )
        assert response.json()["status"] == "cancelled"

    def test_service_refund_direct(self, db_session, cashier_user, mobile_session):
        service = MobilePaymentService(db_session, rng=FixedRandom(0.0))
        transaction = service.process(MobileProcess(session_id=mobile_session.session_id))["transaction"]
        result = service.refund(
            RefundRequest(transaction_id=transaction.transaction_id, amount=Decimal("500"), reason="Partial"),
            _context(cashier_user)
        )
        assert result["original"].refunded_amount == Decimal("500")


class TestExpiryAndSummary:
    """Background expiry and aggregate views"""

    def test_expire_stale_sessions(self, client, cashier_headers, db_session, mobile_session):
        card = _card_session(client, cashier_headers)
        _card_session(client, cashier_headers)
        row = db_session.query(CardSession).filter(CardSession.session_id == card["session_id"]).first()
        row.expires_at = utc_now() - timedelta(minutes=1)
        mobile_session.expires_at = utc_now() - timedelta(minutes=1)
        db_session.commit()

        assert expire_stale_sessions(db_session) == {"card": 1, "mobile": 1}
        db_session.refresh(row)
        assert row.status == CardSessionStatus.EXPIRED
        assert db_session.query(MobilePaymentSession).first().status == MobileSessionStatus.EXPIRED
        assert expire_stale_sessions(db_session) == {"card": 0, "mobile": 0}

    def test_summary(self, client, cashier_headers, manager_headers):
        payment = _cash(client, cashier_headers, 1000, 1000)["transaction"]
        _card_paid(client, cashier_headers, 2000)
        client.post(
            "/api/v1/payments/cash/refund",
            json={"transaction_id": payment["transaction_id"], "amount": 400, "reason": "Overcharged"},
            headers=manager_headers
        )

        summary = client.get("/api/v1/payments/summary", headers=manager_headers).json()
        assert summary["total_count"] == 3
        assert Decimal(summary["total_amount"]) == Decimal("2600")
        assert summary["by_method"]["cash"]["count"] == 2
        assert Decimal(summary["by_method"]["cash"]["amount"]) == Decimal("600")
        assert Decimal(summary["by_method"]["card"]["amount"]) == Decimal("2000")

    def test_summary_requires_management(self, client, cashier_headers):
        assert client.get("/api/v1/payments/summary", headers=cashier_headers).status_code == 403

    def test_transactions_filtered_by_status(self, client, cashier_headers, manager_headers):
        payment = _cash(client, cashier_headers, 100, 100)["transaction"]
        client.post(
            "/api/v1/payments/cash/refund",
            json={"transaction_id": payment["transaction_id"], "reason": "Spilled"},
            headers=manager_headers
        )
        response = client.get("/api/v1/payments/transactions?status=refunded", headers=cashier_headers)
        assert [t["transaction_id"] for t in response.json()] == [payment["transaction_id"]]


class TestEndpointThreading:
    """Gateway calls block, so only the webhooks may be coroutines."""

    def test_gateway_endpoints_are_sync(self):
        for route in payments_router.routes:
            if route.path.endswith("/webhook"):
                assert inspect.iscoroutinefunction(route.endpoint), route.path
            else:
                assert not inspect.iscoroutinefunction(route.endpoint), route.path

    def test_webhook_still_processes(self, client, db_session):
        # handle_webhook runs in the threadpool; bad signatures are still refused
        response = client.post("/api/v1/payments/card/webhook", content=b"{}",
                               headers={"X-Signature": "bad"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid webhook signature"
