"""
Tests for the offline sync module

Covers:
- Similarity scoring and resolution suggestions
- Sale conflict checks: exact duplicate, offline id, similar sales,
  inventory and validation
- Queueing with checksums, priorities, backoff and housekeeping
- Sync runs for sales, payments and receipts, including resolutions
- Sync sessions, stats and the periodic tasks
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from app.common.utils import utc_now
from app.modules.menu.models import MenuItem, MenuCategory
from app.modules.products.models import Product, InventoryBatch
from app.modules.sales.models import Sale, PaymentMethod
from app.modules.payments.models import PaymentTransaction, TransactionStatus
from app.modules.receipts.models import Receipt
from app.modules.sync.models import OfflineQueue, QueueSyncStatus, ConflictType
from app.modules.sync.conflicts import ConflictResolutionService, calculate_similarity, suggest_resolution
from app.modules.sync.service import OfflineQueueService, compute_checksum, retry_delay
from app.modules.sync.tasks import process_offline_queue, cleanup_synced_queue


OFFLINE_AT = "2026-03-14T12:00:00"


# ===== FIXTURES =====

@pytest.fixture
def kottu(db_session):
    item = MenuItem(name="Chicken Kottu", category=MenuCategory.MAINS, price=Decimal("1000"))
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture
def soda(db_session):
    product = Product(name="Ginger Beer", sku="GB-330", unit_price=Decimal("250"), track_inventory=True)
    product.batches.append(InventoryBatch(batch_number="B1", quantity=Decimal("10"), purchased_quantity=Decimal("10")))
    db_session.add(product)
    db_session.commit()
    return product


def _sale_payload(cashier, kottu, **overrides):
    payload = {
        "items": [{
            "product_id": str(kottu.id),
            "item_type": "menu-item",
            "product_name": "Chicken Kottu",
            "quantity": 2,
            "price": 1000,
            "cost_price": 400,
        }],
        "total_amount": 2000,
        "cashier_id": str(cashier.id),
        "cashier_name": cashier.full_name,
        "offline_timestamp": OFFLINE_AT,
        "offline_id": "TILL1-0001",
        "payment_method": "cash",
        "order_type": "dine-in",
        "table_number": "T4",
    }
    payload.update(overrides)
    return payload


def _existing_sale(db, cashier, number="SALE-20260314-0001", when=datetime(2026, 3, 14, 12, 0, 3),
                   total="2000", offline_id=None, lines=1):
    sale = Sale(
        sale_number=number,
        items=[{"product": "x", "product_name": "Chicken Kottu", "quantity": 1, "unit_price": 1000,
                "subtotal": 1000, "vat_amount": 0, "vat_rate": 0, "total_with_vat": 1000}] * lines,
        subtotal=Decimal(total),
        total_amount=Decimal(total),
        payment_method=PaymentMethod.CASH,
        amount_paid=Decimal(total),
        cashier_id=cashier.id,
        offline_id=offline_id,
        sale_date=when,
    )
    db.add(sale)
    db.commit()
    return sale


def _queue(client, headers, entity, payload, device_id="TILL-1", **extra):
    response = client.post(
        f"/api/v1/offline/queue/{entity}",
        json={"device_id": device_id, "payload": payload, **extra},
        headers=headers
    )
    assert response.status_code == 201, response.text
    return response.json()


def _run(client, headers, device_id="TILL-1"):
    response = client.post("/api/v1/sync/run", json={"device_id": device_id}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def _item(db, queue_id) -> OfflineQueue:
    db.expire_all()
    return db.query(OfflineQueue).filter(OfflineQueue.queue_id == queue_id).one()


class TestSimilarity:
    """Weighted similarity and suggested resolutions"""

    def test_identical(self):
        sale = {"total_amount": 1000, "items": [1, 2], "cashier_id": "c1"}
        assert calculate_similarity(sale, dict(sale)) == pytest.approx(1.0)

    def test_close_amount(self):
        a = {"total_amount": 1000, "items": [1, 2], "cashier_id": "c1"}
        b = {"total_amount": 800, "items": [1, 2], "cashier_id": "c1"}
        assert calculate_similarity(a, b) == pytest.approx(0.92)

    def test_cashier_mismatch_drops_its_weight(self):
        a = {"total_amount": 1000, "items": [1], "cashier_id": "c1"}
        b = {"total_amount": 500, "items": [1, 2], "cashier_id": "c2"}
        assert calculate_similarity(a, b) == pytest.approx(0.5)

    def test_no_weights(self):
        a = {"total_amount": 0, "items": [], "cashier_id": "c1"}
        b = {"total_amount": 0, "items": [], "cashier_id": "c2"}
        assert calculate_similarity(a, b) == 0.0

    def test_negative_total(self):
        with pytest.raises(ValueError):
            calculate_similarity({"total_amount": -1}, {"total_amount": 10})

    @pytest.mark.parametrize("severity,strategy", [
        ("critical", "manual"),
        ("high", "skip"),
        ("medium", "keep_offline"),
    ])
    def test_suggest_resolution(self, severity, strategy):
        suggestion = suggest_resolution([{"severity": "medium"}, {"severity": severity}])
        assert suggestion["strategy"] == strategy
        assert suggestion["recommended_actions"]


class TestSaleConflicts:
    """Conflict checks on a replayed sale"""

    def test_clean_sale(self, db_session, cashier_user, kottu):
        result = ConflictResolutionService(db_session).detect_sale_conflict(
            _sale_payload(cashier_user, kottu), "TILL-1"
        )
        assert result["has_conflict"] is False
        assert result["conflict_type"] == "none"
        assert result["resolution"] is None

    def test_exact_duplicate(self, db_session, cashier_user, kottu):
        existing = _existing_sale(db_session, cashier_user)
        result = ConflictResolutionService(db_session).detect_sale_conflict(
            _sale_payload(cashier_user, kottu), "TILL-1"
        )
        assert result["conflict_type"] == "duplicate"
        detail = result["details"][0]
        assert detail["type"] == "duplicate_sale"
        assert detail["similarity"] == 100
        assert detail["existing_id"] == str(existing.id)
        assert result["resolution"]["strategy"] == "skip"

    def test_exact_duplicate_needs_device(self, db_session, cashier_user, kottu):
        _existing_sale(db_session, cashier_user)
        result = ConflictResolutionService(db_session).detect_sale_conflict(_sale_payload(cashier_user, kottu))
        assert "duplicate_sale" not in [d["type"] for d in result["details"]]

    def test_offline_id(self, db_session, cashier_user, kottu):
        _existing_sale(db_session, cashier_user, when=datetime(2026, 3, 1), offline_id="TILL1-0001")
        result = ConflictResolutionService(db_session).detect_sale_conflict(
            _sale_payload(cashier_user, kottu), "TILL-1"
        )
        assert [d["type"] for d in result["details"]] == ["duplicate_offline_id"]
        assert result["resolution"]["strategy"] == "manual"

    def test_similar_sale(self, db_session, cashier_user, kottu):
        _existing_sale(db_session, cashier_user, when=datetime(2026, 3, 14, 12, 3), total="1900")
        result = ConflictResolutionService(db_session).detect_sale_conflict(
            _sale_payload(cashier_user, kottu), "TILL-1"
        )
        assert result["conflict_type"] == "duplicate"
        detail = result["details"][0]
        assert detail["type"] == "similar_sale"
        assert detail["severity"] == "medium"
        assert detail["similar_sales"][0]["similarity"] == 98
        assert result["resolution"]["strategy"] == "keep_offline"

    def test_other_cashier_not_similar(self, db_session, cashier_user, manager_user, kottu):
        _existing_sale(db_session, manager_user, when=datetime(2026, 3, 14, 12, 3), total="1900")
        result = ConflictResolutionService(db_session).detect_sale_conflict(
            _sale_payload(cashier_user, kottu), "TILL-1"
        )
        assert result["has_conflict"] is False

    def test_inventory(self, db_session, cashier_user, soda):
        payload = _sale_payload(cashier_user, soda, total_amount=1750, items=[
            {"product_id": str(soda.id), "product_name": "Ginger Beer", "quantity": 11, "price": 150},
            {"product_id": str(uuid4()), "product_name": "Ghost", "quantity": 1, "price": 100},
        ])
        result = ConflictResolutionService(db_session).detect_sale_conflict(payload, "TILL-1")
        assert result["conflict_type"] == "integrity"
        types = {d["type"]: d for d in result["details"]}
        assert types["inventory_insufficient"]["severity"] == "high"
        assert Decimal(str(types["inventory_insufficient"]["available"])) == Decimal("10")
        assert types["inventory_missing"]["severity"] == "critical"

    def test_validation(self, db_session, cashier_user, kottu):
        result = ConflictResolutionService(db_session).detect_sale_conflict(
            _sale_payload(cashier_user, kottu, items=[], total_amount=0), "TILL-1"
        )
        assert result["conflict_type"] == "validation"
        assert [d["type"] for d in result["details"]] == ["validation_error", "validation_error"]

    def test_data_mismatch(self, db_session, cashier_user, kottu):
        result = ConflictResolutionService(db_session).detect_sale_conflict(
            _sale_payload(cashier_user, kottu, total_amount=2500), "TILL-1"
        )
        mismatch = result["details"][0]
        assert mismatch["type"] == "data_mismatch"
        assert Decimal(str(mismatch["calculated"])) == Decimal("2000")
        assert Decimal(str(mismatch["provided"])) == Decimal("2500")

    def test_duplicate_outranks_validation(self, db_session, cashier_user, kottu):
        _existing_sale(db_session, cashier_user, when=datetime(2026, 3, 1), offline_id="TILL1-0001")
        result = ConflictResolutionService(db_session).detect_sale_conflict(
            _sale_payload(cashier_user, kottu, total_amount=2500), "TILL-1"
        )
        assert result["conflict_type"] == "duplicate"

    def test_endpoint(self, client, cashier_headers, cashier_user, kottu):
        response = client.post(
            "/api/v1/sync/detect-conflict/sale",
            json={"device_id": "TILL-1", "sale_data": _sale_payload(cashier_user, kottu, items=[])},
            headers=cashier_headers
        )
        assert response.status_code == 200
        assert response.json()["has_conflict"] is True

    def test_endpoint_bad_amount(self, client, cashier_headers, cashier_user, kottu):
        response = client.post(
            "/api/v1/sync/detect-conflict/sale",
            json={"sale_data": _sale_payload(cashier_user, kottu, total_amount="lots")},
            headers=cashier_headers
        )
        assert response.status_code == 400


class TestOfflineQueue:
    """Queueing, pending selection and housekeeping"""

    def test_queue_sale(self, client, cashier_headers, cashier_user, kottu):
        payload = _sale_payload(cashier_user, kottu)
        item = _queue(client, cashier_headers, "sale", payload)
        assert item["queue_id"].startswith("Q-")
        assert item["priority"] == 5
        assert item["sync_status"] == "pending"
        assert item["checksum"] == compute_checksum(payload)
        assert item["offline_timestamp"].startswith("2026-03-14T12:00:00")

    def test_default_priorities(self, client, cashier_headers):
        assert _queue(client, cashier_headers, "payment", {"amount": 100})["priority"] == 7
        assert _queue(client, cashier_headers, "receipt", {"sale_id": "x"})["priority"] == 3
        assert _queue(client, cashier_headers, "sale", {"total_amount": 1}, priority=9)["priority"] == 9

    def test_duplicate_checksum(self, client, cashier_headers, cashier_user, kottu):
        payload = _sale_payload(cashier_user, kottu)
        _queue(client, cashier_headers, "sale", payload)
        response = client.post(
            "/api/v1/offline/queue/sale",
            json={"device_id": "TILL-1", "payload": payload},
            headers=cashier_headers
        )
        assert response.status_code == 409
        _queue(client, cashier_headers, "sale", payload, device_id="TILL-2")

    def test_empty_payload(self, client, cashier_headers):
        response = client.post(
            "/api/v1/offline/queue/sale",
            json={"device_id": "TILL-1", "payload": {}},
            headers=cashier_headers
        )
        assert response.status_code == 400

    def test_kitchen_forbidden(self, client, kitchen_headers):
        response = client.post(
            "/api/v1/offline/queue/sale",
            json={"device_id": "TILL-1", "payload": {"a": 1}},
            headers=kitchen_headers
        )
        assert response.status_code == 403

    def test_pending_order(self, client, cashier_headers):
        _queue(client, cashier_headers, "receipt", {"n": 1})
        _queue(client, cashier_headers, "sale", {"n": 2})
        _queue(client, cashier_headers, "payment", {"n": 3})
        _queue(client, cashier_headers, "sale", {"n": 4}, device_id="TILL-2")

        pending = client.get("/api/v1/offline/queue/pending?device_id=TILL-1", headers=cashier_headers).json()
        assert [p["entity_type"] for p in pending] == ["payment", "sale", "receipt"]
        everything = client.get("/api/v1/offline/queue/pending", headers=cashier_headers).json()
        assert len(everything) == 4

    def test_failure_backoff(self, db_session):
        service = OfflineQueueService(db_session)
        item = service.queue_sale("TILL-1", {"n": 1})
        before = utc_now()

        failed = service.update_status(item.queue_id, QueueSyncStatus.FAILED, "boom")
        assert failed.attempts == 1
        assert failed.error_message == "boom"
        assert before + timedelta(seconds=1) <= failed.next_retry_at <= utc_now() + timedelta(seconds=2)
        assert service.get_pending() == []

        failed.next_retry_at = utc_now() - timedelta(seconds=1)
        db_session.commit()
        assert [p.queue_id for p in service.get_pending()] == [item.queue_id]

        failed.attempts = failed.max_attempts
        db_session.commit()
        assert service.get_pending() == []

    def test_retry_delay_capped(self):
        assert retry_delay(3) == 8
        assert retry_delay(20) == 300

    def test_update_status_endpoint(self, client, cashier_headers):
        item = _queue(client, cashier_headers, "sale", {"n": 1})
        response = client.patch(
            f"/api/v1/offline/queue/{item['queue_id']}/status",
            json={"status": "synced", "synced_entity_id": "abc"},
            headers=cashier_headers
        )
        assert response.status_code == 200
        assert response.json()["synced_entity_id"] == "abc"
        assert response.json()["synced_at"] is not None

        missing = client.patch(
            "/api/v1/offline/queue/Q-0-000000/status", json={"status": "synced"}, headers=cashier_headers
        )
        assert missing.status_code == 404

    def test_reset_failed(self, client, db_session, manager_headers):
        service = OfflineQueueService(db_session)
        item = service.queue_sale("TILL-1", {"n": 1})
        service.update_status(item.queue_id, QueueSyncStatus.FAILED, "boom")

        response = client.post("/api/v1/offline/queue/reset-failed", headers=manager_headers)
        assert response.json() == {"count": 1}
        reset = _item(db_session, item.queue_id)
        assert reset.sync_status == QueueSyncStatus.PENDING
        assert reset.attempts == 0
        assert reset.next_retry_at is None

    def test_clear_synced(self, client, db_session, manager_headers):
        service = OfflineQueueService(db_session)
        old = service.queue_sale("TILL-1", {"n": 1})
        recent = service.queue_sale("TILL-1", {"n": 2})
        service.update_status(old.queue_id, QueueSyncStatus.SYNCED)
        service.update_status(recent.queue_id, QueueSyncStatus.SYNCED)
        old.synced_at = utc_now() - timedelta(days=10)
        db_session.commit()

        response = client.delete("/api/v1/offline/queue/synced", headers=manager_headers)
        assert response.json() == {"count": 1}
        db_session.expire_all()
        assert db_session.query(OfflineQueue).count() == 1

    def test_stats(self, client, db_session, cashier_headers):
        service = OfflineQueueService(db_session)
        service.queue_sale("TILL-1", {"n": 1}, offline_timestamp=datetime(2026, 3, 14, 8, 0))
        service.queue_payment("TILL-1", {"n": 2}, offline_timestamp=datetime(2026, 3, 14, 9, 0))
        failed = service.queue_receipt("TILL-1", {"n": 3})
        service.update_status(failed.queue_id, QueueSyncStatus.FAILED, "boom")

        stats = client.get("/api/v1/offline/queue/stats", headers=cashier_headers).json()
        assert stats["total"] == 3
        assert stats["by_status"]["pending"] == 2
        assert stats["by_status"]["failed"] == 1
        assert stats["by_entity_type"] == {"sale": 1, "payment": 1, "receipt": 1}
        assert stats["oldest_pending"].startswith("2026-03-14T08:00:00")

    def test_verify_checksum(self, db_session):
        service = OfflineQueueService(db_session)
        item = service.queue_sale("TILL-1", {"n": 1})
        assert service.verify_checksum(item)
        item.payload = {"n": 2}
        assert not service.verify_checksum(item)


class TestSyncSales:
    """Replaying queued sales"""

    def test_sync_sale(self, client, db_session, cashier_headers, cashier_user, soda):
        payload = _sale_payload(cashier_user, soda, total_amount=500, items=[
            {"product_id": str(soda.id), "product_name": "Ginger Beer", "quantity": 2, "price": 250}
        ])
        item = _queue(client, cashier_headers, "sale", payload)

        session = _run(client, cashier_headers)
        assert session["status"] == "completed"
        assert session["items_total"] == 1
        assert session["items_synced"] == 1
        assert session["duration_ms"] is not None

        synced = _item(db_session, item["queue_id"])
        assert synced.sync_status == QueueSyncStatus.SYNCED
        sale = db_session.query(Sale).filter(Sale.offline_id == "TILL1-0001").one()
        assert synced.synced_entity_id == str(sale.id)
        assert sale.is_synced is True
        assert sale.sale_number == "SALE-20260314-0001"
        assert sale.sale_date == datetime(2026, 3, 14, 12, 0)
        assert sale.total_amount == Decimal("500.00")
        assert sale.items[0]["subtotal"] == 500
        # the till already sold the stock
        db_session.refresh(soda)
        assert soda.stock_quantity == Decimal("10")

    def test_offline_id_falls_back_to_queue_id(self, client, db_session, cashier_headers, cashier_user, kottu):
        payload = _sale_payload(cashier_user, kottu)
        del payload["offline_id"]
        item = _queue(client, cashier_headers, "sale", payload)
        _run(client, cashier_headers)
        assert db_session.query(Sale).filter(Sale.offline_id == item["queue_id"]).count() == 1

    def test_conflict(self, client, db_session, cashier_headers, cashier_user, kottu):
        _existing_sale(db_session, cashier_user, when=datetime(2026, 3, 1), offline_id="TILL1-0001")
        item = _queue(client, cashier_headers, "sale", _sale_payload(cashier_user, kottu))

        session = _run(client, cashier_headers)
        assert session["status"] == "failed"
        assert session["items_conflicted"] == 1

        conflicted = _item(db_session, item["queue_id"])
        assert conflicted.sync_status == QueueSyncStatus.CONFLICT
        assert conflicted.conflict_type == ConflictType.DUPLICATE
        assert conflicted.conflict_details[0]["type"] == "duplicate_offline_id"

        listed = client.get("/api/v1/offline/queue/conflicts", headers=cashier_headers).json()
        assert [c["queue_id"] for c in listed] == [item["queue_id"]]

    def test_partial(self, client, db_session, cashier_headers, cashier_user, kottu):
        _existing_sale(db_session, cashier_user, when=datetime(2026, 3, 1), offline_id="TILL1-0001")
        _queue(client, cashier_headers, "sale", _sale_payload(cashier_user, kottu))
        _queue(client, cashier_headers, "sale", _sale_payload(cashier_user, kottu, offline_id="TILL1-0002",
                                                              offline_timestamp="2026-03-14T15:00:00"))
        session = _run(client, cashier_headers)
        assert session["status"] == "partial"
        assert session["items_synced"] == 1
        assert session["items_conflicted"] == 1

    def test_checksum_mismatch(self, client, db_session, cashier_headers, cashier_user, kottu):
        item = _queue(client, cashier_headers, "sale", _sale_payload(cashier_user, kottu))
        stored = _item(db_session, item["queue_id"])
        stored.payload = {**stored.payload, "total_amount": 1}
        db_session.commit()

        session = _run(client, cashier_headers)
        assert session["items_failed"] == 1
        assert session["error_summary"][0]["error"] == "Checksum mismatch"
        failed = _item(db_session, item["queue_id"])
        assert failed.sync_status == QueueSyncStatus.FAILED
        assert failed.attempts == 1

    def test_bad_payload_fails(self, client, db_session, cashier_headers, cashier_user, kottu):
        item = _queue(client, cashier_headers, "sale", _sale_payload(cashier_user, kottu, payment_method="cheque"))
        session = _run(client, cashier_headers)
        assert session["status"] == "failed"
        failed = _item(db_session, item["queue_id"])
        assert "cheque" in failed.error_message
        assert db_session.query(Sale).count() == 0


class TestResolutions:
    """Resolving conflicted items and syncing them again"""

    @pytest.fixture
    def conflicted(self, client, db_session, cashier_headers, cashier_user, kottu):
        existing = _existing_sale(db_session, cashier_user, when=datetime(2026, 3, 1), offline_id="TILL1-0001")
        item = _queue(client, cashier_headers, "sale", _sale_payload(cashier_user, kottu))
        _run(client, cashier_headers)
        return item["queue_id"], existing

    def _resolve(self, client, headers, queue_id, strategy):
        return client.post(
            f"/api/v1/offline/queue/{queue_id}/resolve",
            json={"strategy": strategy, "reason": "checked with the till"},
            headers=headers
        )

    def test_keep_offline(self, client, db_session, cashier_headers, manager_headers, conflicted):
        queue_id, existing = conflicted
        response = self._resolve(client, manager_headers, queue_id, "keep_offline")
        assert response.status_code == 200
        resolved = response.json()
        assert resolved["sync_status"] == "pending"
        assert resolved["attempts"] == 0
        assert resolved["conflict_resolved_at"] is not None
        assert resolved["meta"]["resolution_reason"] == "checked with the till"

        session = _run(client, cashier_headers)
        assert session["items_synced"] == 1
        assert db_session.query(Sale).count() == 2
        assert db_session.query(Sale).filter(Sale.offline_id == queue_id).count() == 1

    def test_keep_online(self, client, db_session, cashier_headers, manager_headers, conflicted):
        queue_id, existing = conflicted
        self._resolve(client, manager_headers, queue_id, "keep_online")

        session = _run(client, cashier_headers)
        assert session["status"] == "completed"
        assert session["items_skipped"] == 1
        item = _item(db_session, queue_id)
        assert item.sync_status == QueueSyncStatus.SYNCED
        assert item.synced_entity_id == str(existing.id)
        assert db_session.query(Sale).count() == 1

    def test_skip(self, client, db_session, cashier_headers, manager_headers, conflicted):
        queue_id, _ = conflicted
        assert self._resolve(client, manager_headers, queue_id, "skip").json()["sync_status"] == "skipped"
        assert _run(client, cashier_headers)["items_total"] == 0

    def test_unknown_item(self, client, manager_headers):
        assert self._resolve(client, manager_headers, "Q-0-000000", "skip").status_code == 404

    def test_cashier_forbidden(self, client, cashier_headers, conflicted):
        queue_id, _ = conflicted
        assert self._resolve(client, cashier_headers, queue_id, "skip").status_code == 403


class TestSyncPaymentsAndReceipts:
    """Replaying queued payments and receipts"""

    @pytest.fixture
    def sale(self, db_session, cashier_user):
        return _existing_sale(db_session, cashier_user, offline_id="TILL1-0009")

    def test_payment(self, client, db_session, cashier_headers, sale):
        item = _queue(client, cashier_headers, "payment", {
            "transaction_id": "OFF-CASH-1", "sale_offline_id": "TILL1-0009", "amount": 2000,
            "payment_method": "cash", "amount_tendered": 2500, "change_given": 500,
        })
        assert _run(client, cashier_headers)["items_synced"] == 1

        transaction = db_session.query(PaymentTransaction).filter(
            PaymentTransaction.transaction_id == "OFF-CASH-1"
        ).one()
        assert transaction.status == TransactionStatus.COMPLETED
        assert transaction.sale_id == sale.id
        assert transaction.change_given == Decimal("500.00")
        assert _item(db_session, item["queue_id"]).synced_entity_id == str(transaction.id)

    def test_duplicate_payment(self, client, db_session, cashier_headers, sale):
        payload = {"transaction_id": "OFF-CASH-1", "amount": 2000, "payment_method": "cash"}
        _queue(client, cashier_headers, "payment", payload)
        _run(client, cashier_headers)
        second = _queue(client, cashier_headers, "payment", payload, device_id="TILL-2")

        session = _run(client, cashier_headers, device_id="TILL-2")
        assert session["items_conflicted"] == 1
        details = _item(db_session, second["queue_id"]).conflict_details
        assert details[0]["type"] == "duplicate_payment"

    def test_receipt(self, client, db_session, cashier_headers, sale):
        item = _queue(client, cashier_headers, "receipt", {"sale_id": str(sale.id), "receipt_number": "RCP-OFF-1"})
        assert _run(client, cashier_headers)["items_synced"] == 1
        receipt = db_session.query(Receipt).filter(Receipt.receipt_number == "RCP-OFF-1").one()
        assert receipt.sale_id == sale.id
        assert _item(db_session, item["queue_id"]).synced_entity_id == str(receipt.id)

    def test_receipt_unknown_sale(self, client, db_session, cashier_headers):
        item = _queue(client, cashier_headers, "receipt", {"sale_id": str(uuid4())})
        session = _run(client, cashier_headers)
        assert session["items_failed"] == 1
        failed = _item(db_session, item["queue_id"])
        assert failed.error_message == "Sale not found for receipt"


class TestSessionsAndTasks:
    """Sync history, stats and the periodic tasks"""

    def test_sessions(self, client, cashier_headers):
        first = _run(client, cashier_headers)
        _run(client, cashier_headers, device_id="TILL-2")

        all_sessions = client.get("/api/v1/sync/sessions", headers=cashier_headers).json()
        assert len(all_sessions) == 2
        mine = client.get("/api/v1/sync/sessions?device_id=TILL-1", headers=cashier_headers).json()
        assert [s["session_id"] for s in mine] == [first["session_id"]]

        fetched = client.get(f"/api/v1/sync/sessions/{first['session_id']}", headers=cashier_headers)
        assert fetched.json()["status"] == "completed"
        assert client.get("/api/v1/sync/sessions/SYNC-0", headers=cashier_headers).status_code == 404

    def test_stats(self, client, cashier_headers, manager_headers, cashier_user, kottu):
        _queue(client, cashier_headers, "sale", _sale_payload(cashier_user, kottu))
        _queue(client, cashier_headers, "receipt", {"sale_id": str(uuid4())})
        _run(client, cashier_headers)

        stats = client.get("/api/v1/sync/stats", headers=manager_headers).json()
        assert stats["sessions"] == 1
        assert stats["items_synced"] == 1
        assert stats["items_failed"] == 1
        assert stats["success_rate"] == 50.0
        assert client.get("/api/v1/sync/stats", headers=cashier_headers).status_code == 403

    def test_process_offline_queue(self, db_session, cashier_user, kottu):
        service = OfflineQueueService(db_session)
        service.queue_sale("TILL-1", _sale_payload(cashier_user, kottu), cashier_user.id)
        service.queue_sale("TILL-2", _sale_payload(cashier_user, kottu, offline_id="TILL2-0001",
                                                   offline_timestamp="2026-03-14T18:00:00"), cashier_user.id)

        result = process_offline_queue.apply().get()
        assert result["status"] == "success"
        assert sorted(s["device_id"] for s in result["sessions"]) == ["TILL-1", "TILL-2"]
        db_session.expire_all()
        assert db_session.query(Sale).count() == 2

    def test_cleanup_synced_queue(self, db_session):
        service = OfflineQueueService(db_session)
        item = service.queue_sale("TILL-1", {"n": 1})
        service.update_status(item.queue_id, QueueSyncStatus.SYNCED)
        item.synced_at = utc_now() - timedelta(days=30)
        db_session.commit()

        assert cleanup_synced_queue.apply().get() == {"status": "success", "deleted": 1}
