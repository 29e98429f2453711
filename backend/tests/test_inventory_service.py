# Overview: Pytest coverage for the stock adjustment engine, restocks and low-stock alerts.

"""
Stock Ledger Tests

Covers:
- adjust(): idempotent replay, key conflicts, non-negativity, validation
- Alert emitter: trigger boundary, deduplication, resolution, dispatch
- restock_variants(), set_low_stock_threshold(), acknowledge_alert()
"""

import pytest
from shopledger.enums import AdjustmentType, AlertStatus
from shopledger.models import InventoryLog, StockAlert, StoreInventory
from shopledger.services import alert_service, inventory_service
from shopledger.services.concurrency import transaction_scope
from shopledger.services.inventory_service import (
    IdempotencyConflictError,
    InsufficientStockError,
)
from shopledger.validation import ConflictError, NotFoundError, ValidationError


def _log_count(db_session, inventory_id):
    return db_session.query(InventoryLog).filter_by(inventory_id=inventory_id).count()


def _alerts(db_session, inventory_id, status=None):
    q = db_session.query(StockAlert).filter_by(inventory_id=inventory_id)
    if status is not None:
        q = q.filter(StockAlert.status == status)
    return q.all()


class TestAdjust:
    """adjust() inside a caller-owned transaction and apply_adjustment()."""

    def test_deduct_with_replay(self, db_session, variant_a, make_inventory, notifier):
        """10 on hand, threshold 5, -6 under key K1 -> 4 with alert; replay changes nothing."""
        inventory = make_inventory(variant_a, quantity=10, threshold=5)

        result, _ = inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-6, type="deduct", idempotency_key="K1",
        )
        assert result.new_quantity == 4
        assert result.alert_created is True
        assert result.replayed is False

        replay, _ = inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-6, type="deduct", idempotency_key="K1",
        )
        assert replay.new_quantity == 4
        assert replay.alert_created is True
        assert replay.replayed is True

        db_session.expire_all()
        assert db_session.get(StoreInventory, inventory.id).quantity == 4
        assert _log_count(db_session, inventory.id) == 1
        assert len(_alerts(db_session, inventory.id)) == 1

    def test_adjust_in_caller_transaction(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=2)

        result = inventory_service.adjust(
            db_session,
            inventory_id=inventory.id,
            change=3,
            type=AdjustmentType.RESTOCK,
            idempotency_key="manual-1",
            reason="found in back room",
        )
        db_session.commit()

        assert result.new_quantity == 5
        assert result.log_entry.quantity_after == 5
        assert result.log_entry.reason == "found in back room"

    def test_transaction_scope_commits_and_keeps_instances(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=1)

        with transaction_scope() as session:
            result = inventory_service.adjust(
                session, inventory_id=inventory.id, change=1,
                type=AdjustmentType.RESTOCK, idempotency_key="scope-1",
            )

        assert result.log_entry in db_session
        assert result.log_entry.quantity_after == 2

        with pytest.raises(InsufficientStockError):
            with transaction_scope() as session:
                inventory_service.adjust(
                    session, inventory_id=inventory.id, change=1,
                    type=AdjustmentType.RESTOCK, idempotency_key="scope-2",
                )
                inventory_service.adjust(
                    session, inventory_id=inventory.id, change=-9,
                    type=AdjustmentType.DEDUCT, idempotency_key="scope-3",
                )

        db_session.expire_all()
        assert db_session.get(StoreInventory, inventory.id).quantity == 2
        assert _log_count(db_session, inventory.id) == 1

    def test_key_reused_for_different_change(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=10)
        inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-1, type="deduct", idempotency_key="K2",
        )

        with pytest.raises(IdempotencyConflictError):
            inventory_service.apply_adjustment(
                inventory_id=inventory.id, change=-2, type="deduct", idempotency_key="K2",
            )

        with pytest.raises(ConflictError):
            inventory_service.apply_adjustment(
                inventory_id=inventory.id, change=-1, type="restock", idempotency_key="K2",
            )

        db_session.expire_all()
        assert db_session.get(StoreInventory, inventory.id).quantity == 9

    def test_insufficient_stock_changes_nothing(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=3)

        with pytest.raises(InsufficientStockError) as exc:
            inventory_service.apply_adjustment(
                inventory_id=inventory.id, change=-4, type="deduct", idempotency_key="K3",
            )

        assert exc.value.details["on_hand"] == 3
        assert exc.value.details["requested_change"] == -4
        db_session.expire_all()
        assert db_session.get(StoreInventory, inventory.id).quantity == 3
        assert _log_count(db_session, inventory.id) == 0

    def test_deduct_to_exactly_zero(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=3)

        result, _ = inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-3, type="deduct", idempotency_key="K4",
        )
        assert result.new_quantity == 0

    @pytest.mark.parametrize("change", [0, True, 1.5, "2.0", "1e3", None])
    def test_invalid_change_rejected(self, db_session, variant_a, make_inventory, change):
        inventory = make_inventory(variant_a, quantity=3)

        with pytest.raises(ValidationError):
            inventory_service.apply_adjustment(
                inventory_id=inventory.id, change=change, type="deduct", idempotency_key="bad",
            )

    def test_unknown_type_and_missing_key_rejected(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=3)

        with pytest.raises(ValidationError):
            inventory_service.apply_adjustment(
                inventory_id=inventory.id, change=1, type="teleport", idempotency_key="x",
            )
        with pytest.raises(ValidationError):
            inventory_service.apply_adjustment(
                inventory_id=inventory.id, change=1, type="restock", idempotency_key="   ",
            )

    def test_missing_inventory(self, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.apply_adjustment(
                inventory_id=9999, change=1, type="restock", idempotency_key="nf",
            )

    @pytest.mark.parametrize("type", ["return_restock", "exchange_adjust"])
    def test_pipeline_types_cannot_be_posted(self, db_session, variant_a, make_inventory, type):
        inventory = make_inventory(variant_a, quantity=3)

        with pytest.raises(ValidationError):
            inventory_service.apply_adjustment(
                inventory_id=inventory.id, change=1, type=type, idempotency_key="direct-1",
            )

        db_session.expire_all()
        assert db_session.get(StoreInventory, inventory.id).quantity == 3
        assert _log_count(db_session, inventory.id) == 0

    @pytest.mark.parametrize("key", ["sale:1:1", "Restock:po-1:4", "return:7:restock", "exchange:9"])
    def test_reserved_key_namespace_rejected(self, db_session, variant_a, make_inventory, key):
        inventory = make_inventory(variant_a, quantity=3)

        with pytest.raises(ValidationError):
            inventory_service.apply_adjustment(
                inventory_id=inventory.id, change=-1, type="deduct", idempotency_key=key,
            )

        assert _log_count(db_session, inventory.id) == 0

    def test_long_reason_cut_to_log_width(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=3)

        result, _ = inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=1, type="restock", idempotency_key="K5", reason="r" * 300,
        )

        assert len(result.log_entry.reason) == inventory_service.MAX_LOG_REASON_LENGTH


class TestStockAlerts:
    """Alert emitter behavior."""

    def test_trigger_boundary(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=10, threshold=5)

        above, _ = inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-4, type="deduct", idempotency_key="b1",
        )
        assert above.new_quantity == 6
        assert above.alert_created is False

        at, _ = inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-1, type="deduct", idempotency_key="b2",
        )
        assert at.new_quantity == 5
        assert at.alert_created is True

        alert = _alerts(db_session, inventory.id)[0]
        assert alert.threshold == 5
        assert alert.quantity_at_trigger == 5
        assert alert.status == AlertStatus.OPEN

    def test_unresolved_alert_suppresses_duplicates(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=6, threshold=5)

        first, _ = inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-2, type="deduct", idempotency_key="d1",
        )
        second, _ = inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-2, type="deduct", idempotency_key="d2",
        )

        assert first.alert_created is True
        assert second.alert_created is False
        assert len(_alerts(db_session, inventory.id)) == 1

    def test_restock_resolves_then_next_crossing_alerts(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=6, threshold=5)

        inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-2, type="deduct", idempotency_key="r1",
        )
        inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=10, type="restock", idempotency_key="r2",
        )

        db_session.expire_all()
        assert len(_alerts(db_session, inventory.id, AlertStatus.RESOLVED)) == 1

        again, _ = inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-10, type="deduct", idempotency_key="r3",
        )
        assert again.alert_created is True
        assert len(_alerts(db_session, inventory.id, AlertStatus.OPEN)) == 1

    def test_deduplication_can_be_disabled(self, app, db_session, variant_a, make_inventory, monkeypatch):
        monkeypatch.setitem(app.config, "STOCK_ALERT_DEDUPLICATE", False)
        inventory = make_inventory(variant_a, quantity=6, threshold=5)

        for key in ("n1", "n2", "n3"):
            result, _ = inventory_service.apply_adjustment(
                inventory_id=inventory.id, change=-1, type="deduct", idempotency_key=key,
            )
            assert result.alert_created is True

        assert len(_alerts(db_session, inventory.id)) == 3

    def test_alert_dispatched_to_store_contact(self, db_session, store, variant_a, make_inventory, notifier):
        inventory = make_inventory(variant_a, quantity=6, threshold=5)

        _, warnings = inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-3, type="deduct", idempotency_key="m1",
        )

        assert warnings == []
        assert len(notifier.sent) == 1
        assert notifier.sent[0]["to"] == "hs01@acme.test"
        assert notifier.sent[0]["subject"] == "Stock Alert"
        assert "TEE-S" in notifier.sent[0]["body"]

    def test_alert_falls_back_to_business_contact(self, db_session, store, variant_a, make_inventory, notifier):
        store.contact_email = None
        db_session.commit()
        inventory = make_inventory(variant_a, quantity=1, threshold=1)

        inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-1, type="deduct", idempotency_key="m2",
        )

        assert notifier.sent[0]["to"] == "owner@acme.test"

    def test_delivery_failure_is_a_warning(self, db_session, variant_a, make_inventory, notifier):
        notifier.fail = True
        inventory = make_inventory(variant_a, quantity=6, threshold=5)

        result, warnings = inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-3, type="deduct", idempotency_key="m3",
        )

        assert result.new_quantity == 3
        assert len(warnings) == 1
        db_session.expire_all()
        assert db_session.get(StoreInventory, inventory.id).quantity == 3

    def test_acknowledge(self, db_session, store, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=1, threshold=1)
        inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-1, type="deduct", idempotency_key="a1",
        )
        alert = _alerts(db_session, inventory.id)[0]

        acked = alert_service.acknowledge_alert(alert.id, actor_id=42)
        assert acked.status == AlertStatus.ACKNOWLEDGED
        assert acked.acknowledged_by == 42
        assert acked.acknowledged_at is not None

        with pytest.raises(ConflictError):
            alert_service.acknowledge_alert(alert.id)

        assert alert_service.list_alerts(store.id, AlertStatus.OPEN) == []
        assert len(alert_service.list_alerts(store.id)) == 1

    def test_acknowledged_alert_still_suppresses(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=3, threshold=2)
        inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-1, type="deduct", idempotency_key="s1",
        )
        alert_service.acknowledge_alert(_alerts(db_session, inventory.id)[0].id)

        result, _ = inventory_service.apply_adjustment(
            inventory_id=inventory.id, change=-1, type="deduct", idempotency_key="s2",
        )
        assert result.alert_created is False


class TestRestockAndThreshold:

    def test_restock_creates_inventory_and_sets_threshold(self, db_session, store, variant_a, variant_b, make_inventory):
        existing = make_inventory(variant_a, quantity=2)

        results, warnings = inventory_service.restock_variants(
            store_id=store.id,
            idempotency_key="po-1",
            reference="PO-1",
            items=[
                {"variant_id": variant_a.id, "quantity": 5},
                {"variant_id": variant_b.id, "quantity": 12, "low_stock_threshold": 4},
            ],
        )

        assert warnings == []
        assert [r.new_quantity for r in results] == [7, 12]
        assert results[0].log_entry.inventory_id == existing.id
        assert results[1].log_entry.idempotency_key == f"restock:po-1:{variant_b.id}"

        created = inventory_service.find_inventory(db_session, store.id, variant_b.id)
        assert created.low_stock_threshold == 4
        assert created.business_id == store.business_id

    def test_restock_replays_per_line(self, db_session, store, variant_a):
        items = [{"variant_id": variant_a.id, "quantity": 5}]
        inventory_service.restock_variants(store_id=store.id, items=items, idempotency_key="po-2")
        results, _ = inventory_service.restock_variants(store_id=store.id, items=items, idempotency_key="po-2")

        assert results[0].replayed is True
        assert results[0].new_quantity == 5
        assert inventory_service.find_inventory(db_session, store.id, variant_a.id).quantity == 5

    def test_restock_rolls_back_whole_batch(self, db_session, store, variant_a):
        with pytest.raises(NotFoundError):
            inventory_service.restock_variants(
                store_id=store.id,
                idempotency_key="po-3",
                items=[
                    {"variant_id": variant_a.id, "quantity": 5},
                    {"variant_id": 9999, "quantity": 1},
                ],
            )

        assert inventory_service.find_inventory(db_session, store.id, variant_a.id) is None

    def test_restock_rejects_duplicate_variants(self, db_session, store, variant_a):
        with pytest.raises(ValidationError):
            inventory_service.restock_variants(
                store_id=store.id,
                idempotency_key="po-4",
                items=[
                    {"variant_id": variant_a.id, "quantity": 1},
                    {"variant_id": variant_a.id, "quantity": 2},
                ],
            )

    def test_restock_key_cannot_use_reserved_namespace(self, db_session, store, variant_a):
        with pytest.raises(ValidationError):
            inventory_service.restock_variants(
                store_id=store.id,
                idempotency_key="sale:1",
                items=[{"variant_id": variant_a.id, "quantity": 1}],
            )

        assert inventory_service.find_inventory(db_session, store.id, variant_a.id) is None

    def test_raising_threshold_triggers_alert(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=4, threshold=0)

        updated, _ = inventory_service.set_low_stock_threshold(inventory.id, 5)

        assert updated.low_stock_threshold == 5
        assert len(_alerts(db_session, inventory.id, AlertStatus.OPEN)) == 1

        with pytest.raises(ValidationError):
            inventory_service.set_low_stock_threshold(inventory.id, -1)

    def test_low_stock_listing(self, db_session, store, variant_a, variant_b, variant_c, make_inventory):
        make_inventory(variant_a, quantity=10, threshold=2)
        low = make_inventory(variant_b, quantity=2, threshold=3)
        out = make_inventory(variant_c, quantity=0, threshold=1)

        listed = inventory_service.list_low_stock(store.id)
        assert [i.id for i in listed] == [out.id, low.id]

    def test_logs_newest_first(self, db_session, variant_a, make_inventory):
        inventory = make_inventory(variant_a, quantity=0)
        for i in range(3):
            inventory_service.apply_adjustment(
                inventory_id=inventory.id, change=1, type="restock", idempotency_key=f"l{i}",
            )

        logs = inventory_service.list_inventory_logs(inventory_id=inventory.id)
        assert [entry.quantity_after for entry in logs] == [3, 2, 1]
