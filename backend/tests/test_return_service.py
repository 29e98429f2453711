# Overview: Pytest coverage for return creation, batch review and settlement.

"""
Return Resolution Tests

Covers:
- Refund / store credit / exchange settlement and their stock + money effects
- Defective items are never restocked
- Rejection closes pending dependents without side effects
- Batch review is all-or-nothing
- Return policy rules, remaining-quantity checks, store credit redemption
"""

from datetime import timedelta

import pytest
from shopledger.enums import (
    AdjustmentType,
    ExchangeStatus,
    RefundStatus,
    ReturnStatus,
    SaleItemStatus,
    StoreCreditStatus,
)
from shopledger.models import InventoryLog, Refund, Return, Sale, SaleItem, StoreInventory
from shopledger.services import return_service, sales_service
from shopledger.services.inventory_service import InsufficientStockError
from shopledger.services.return_service import ReturnError
from shopledger.time_utils import utcnow
from shopledger.validation import NotFoundError, ValidationError


@pytest.fixture
def inv_a(make_inventory, variant_a):
    return make_inventory(variant_a, quantity=10)


@pytest.fixture
def sold(db_session, inv_a, variant_a, sale_payload):
    """Sale of 2 x variant_a at 2000 with a customer email; leaves 8 on hand."""
    result = sales_service.create_sale(**sale_payload(
        [(variant_a, 2)],
        key="ret-sale",
        customer={"name": "Ada", "email": "ada@example.com"},
    ))
    sale = result.sale
    item = db_session.query(SaleItem).filter_by(sale_id=sale.id).one()
    return sale, item


def _reload(db_session, model, pk):
    db_session.expire_all()
    return db_session.get(model, pk)


def _open(store, sale, item, **line):
    line.setdefault("reason", "wrong size")
    line.setdefault("resolution", "refund")
    line["sale_item_id"] = item.id
    return return_service.create_returns(store_id=store.id, sale_code=sale.sale_code, items=[line])[0]


class TestRefund:

    def test_refund_conserves_stock_and_money(self, db_session, store, sold, inv_a):
        sale, item = sold
        ret = _open(store, sale, item)

        assert ret.status == ReturnStatus.PENDING
        assert ret.quantity == 2
        assert ret.return_code.startswith("RET-")
        pending = db_session.query(Refund).filter_by(return_id=ret.id).one()
        assert pending.status == RefundStatus.PENDING
        assert pending.amount_cents == 4000
        assert _reload(db_session, StoreInventory, inv_a.id).quantity == 8

        results, warnings = return_service.review_returns(return_ids=[ret.id], approve=True, manager_id=3)

        assert results[0]["status"] == "refunded"
        assert results[0]["refund"]["amount_cents"] == 4000
        assert results[0]["refund"]["status"] == "completed"
        assert results[0]["refund"]["method"] == "cash"

        assert _reload(db_session, StoreInventory, inv_a.id).quantity == 10
        assert db_session.get(Sale, sale.id).net_amount_cents == 0
        settled_item = db_session.get(SaleItem, item.id)
        assert settled_item.returned_quantity == 2
        assert settled_item.status == SaleItemStatus.RETURNED

        restock = db_session.query(InventoryLog).filter_by(idempotency_key=f"return:{ret.id}:restock").one()
        assert restock.type == AdjustmentType.RETURN_RESTOCK
        assert restock.change == 2

        settled = db_session.get(Return, ret.id)
        assert settled.manager_id == 3
        assert settled.reviewed_at is not None
        assert settled.settled_at is not None

    def test_refund_method_override(self, db_session, store, sold):
        sale, item = sold
        ret = _open(store, sale, item)

        results, _ = return_service.review_returns(return_ids=[ret.id], approve=True, refund_method="transfer")

        assert results[0]["refund"]["method"] == "transfer"

    def test_defective_reason_skips_restock(self, db_session, store, sold, inv_a):
        sale, item = sold
        ret = _open(store, sale, item, reason="Arrived DAMAGED")
        assert ret.is_defective is True

        return_service.review_returns(return_ids=[ret.id], approve=True)

        assert _reload(db_session, StoreInventory, inv_a.id).quantity == 8
        assert db_session.get(Sale, sale.id).net_amount_cents == 0
        assert db_session.query(InventoryLog).filter_by(idempotency_key=f"return:{ret.id}:restock").count() == 0

    def test_explicit_flag_wins_over_reason(self, db_session, store, sold, inv_a):
        sale, item = sold
        ret = _open(store, sale, item, reason="customer says faulty, works fine", is_defective=False)
        assert ret.is_defective is False

        return_service.review_returns(return_ids=[ret.id], approve=True)

        assert _reload(db_session, StoreInventory, inv_a.id).quantity == 10

    def test_long_reason_kept_on_return_and_cut_in_ledger(self, db_session, store, sold, inv_a):
        sale, item = sold
        ret = _open(store, sale, item, reason="runs small " + "a" * 300)

        results, _ = return_service.review_returns(return_ids=[ret.id], approve=True)

        assert results[0]["status"] == "refunded"
        assert len(db_session.get(Return, ret.id).reason) == 311
        restock = db_session.query(InventoryLog).filter_by(idempotency_key=f"return:{ret.id}:restock").one()
        assert len(restock.reason) == 255
        assert restock.reason.startswith("runs small ")

    def test_partial_return(self, db_session, store, sold, inv_a):
        sale, item = sold
        ret = _open(store, sale, item, quantity=1)

        return_service.review_returns(return_ids=[ret.id], approve=True)

        settled_item = _reload(db_session, SaleItem, item.id)
        assert settled_item.returned_quantity == 1
        assert settled_item.status == SaleItemStatus.PARTIALLY_RETURNED
        assert db_session.get(Sale, sale.id).net_amount_cents == 2000
        assert db_session.get(StoreInventory, inv_a.id).quantity == 9

    def test_cannot_return_more_than_left(self, db_session, store, sold):
        sale, item = sold
        _open(store, sale, item, quantity=1)

        with pytest.raises(ReturnError):
            _open(store, sale, item, quantity=2)

        _open(store, sale, item, quantity=1)
        with pytest.raises(ReturnError):
            _open(store, sale, item, quantity=1)

    def test_rejected_return_frees_quantity(self, db_session, store, sold):
        sale, item = sold
        ret = _open(store, sale, item)
        return_service.review_returns(return_ids=[ret.id], approve=False)

        again = _open(store, sale, item)
        assert again.quantity == 2


class TestStoreCredit:

    def test_credit_issued_on_approval(self, db_session, store, sold, inv_a):
        sale, item = sold
        ret = _open(store, sale, item, resolution="store_credit", quantity=1)
        assert ret.store_credit.status == StoreCreditStatus.PENDING
        assert ret.store_credit.customer_email == "ada@example.com"

        results, _ = return_service.review_returns(return_ids=[ret.id], approve=True)

        credit = results[0]["store_credit"]
        assert results[0]["status"] == "credited"
        assert credit["amount_cents"] == 2000
        assert credit["status"] == "active"
        assert credit["expires_at"] is not None
        assert _reload(db_session, Sale, sale.id).net_amount_cents == 2000
        assert db_session.get(StoreInventory, inv_a.id).quantity == 9

    def test_credit_without_expiry(self, app, db_session, store, sold, monkeypatch):
        monkeypatch.setitem(app.config, "STORE_CREDIT_VALIDITY_DAYS", 0)
        sale, item = sold
        ret = _open(store, sale, item, resolution="store_credit")

        results, _ = return_service.review_returns(return_ids=[ret.id], approve=True)

        assert results[0]["store_credit"]["expires_at"] is None

    def test_redeem(self, db_session, store, sold):
        sale, item = sold
        ret = _open(store, sale, item, resolution="store_credit")
        credit_id = ret.store_credit.id

        with pytest.raises(ReturnError):
            return_service.redeem_store_credit(credit_id, 100)

        return_service.review_returns(return_ids=[ret.id], approve=True)

        credit = return_service.redeem_store_credit(credit_id, 1500)
        assert credit.status == StoreCreditStatus.PARTIALLY_USED
        assert credit.balance_cents == 2500

        with pytest.raises(ReturnError):
            return_service.redeem_store_credit(credit_id, 2501)

        credit = return_service.redeem_store_credit(credit_id, 2500)
        assert credit.status == StoreCreditStatus.REDEEMED
        assert credit.balance_cents == 0

        with pytest.raises(ValidationError):
            return_service.redeem_store_credit(credit_id, 0)

    def test_expired_credit_cannot_be_redeemed(self, db_session, store, sold):
        sale, item = sold
        ret = _open(store, sale, item, resolution="store_credit")
        return_service.review_returns(return_ids=[ret.id], approve=True)

        credit = _reload(db_session, Return, ret.id).store_credit
        credit.expires_at = utcnow() - timedelta(days=1)
        db_session.commit()

        with pytest.raises(ReturnError):
            return_service.redeem_store_credit(credit.id, 100)


class TestExchange:

    def test_upgrade_collects_difference(self, db_session, store, sold, variant_b, make_inventory, inv_a):
        """20 -> 25: difference 5, net +5, no refund, replacement stock -1."""
        sale, item = sold
        inv_b = make_inventory(variant_b, quantity=3)
        ret = _open(store, sale, item, resolution="exchange", quantity=1,
                    exchanges=[{"new_variant_id": variant_b.id}])

        assert ret.exchanges[0].price_difference_cents == 500

        results, _ = return_service.review_returns(return_ids=[ret.id], approve=True)

        assert results[0]["status"] == "exchanged"
        assert results[0]["refunds"] == []
        assert results[0]["exchanges"][0]["status"] == "completed"
        assert _reload(db_session, Sale, sale.id).net_amount_cents == 4000 + 500
        assert db_session.query(Refund).filter_by(return_id=ret.id).count() == 0
        assert db_session.get(StoreInventory, inv_b.id).quantity == 2
        assert db_session.get(StoreInventory, inv_a.id).quantity == 9

        leg_log = db_session.query(InventoryLog).filter_by(
            idempotency_key=f"exchange:{ret.exchanges[0].id}"
        ).one()
        assert leg_log.type == AdjustmentType.EXCHANGE_ADJUST
        assert leg_log.change == -1

    def test_downgrade_refunds_difference(self, db_session, store, sold, variant_c, make_inventory):
        sale, item = sold
        make_inventory(variant_c, quantity=3)
        ret = _open(store, sale, item, resolution="exchange", quantity=1,
                    exchanges=[{"new_variant_id": variant_c.id}])

        results, _ = return_service.review_returns(return_ids=[ret.id], approve=True)

        assert results[0]["refunds"][0]["amount_cents"] == 500
        assert _reload(db_session, Sale, sale.id).net_amount_cents == 4000 - 500
        refund = db_session.query(Refund).filter_by(return_id=ret.id).one()
        assert refund.status == RefundStatus.COMPLETED

    def test_exchange_requires_targets(self, db_session, store, sold):
        sale, item = sold
        with pytest.raises(ValidationError):
            _open(store, sale, item, resolution="exchange")

    def test_exchange_target_must_exist_in_store(self, db_session, store, sold):
        sale, item = sold
        with pytest.raises(NotFoundError):
            _open(store, sale, item, resolution="exchange", exchanges=[{"new_variant_id": 9999}])

    def test_replacement_without_inventory(self, db_session, store, sold, variant_b):
        sale, item = sold
        ret = _open(store, sale, item, resolution="exchange", quantity=1,
                    exchanges=[{"new_variant_id": variant_b.id}])

        with pytest.raises(NotFoundError):
            return_service.review_returns(return_ids=[ret.id], approve=True)

        assert _reload(db_session, Return, ret.id).status == ReturnStatus.PENDING


class TestReview:

    def test_reject_closes_dependents(self, db_session, store, sold, inv_a, variant_b, make_inventory):
        sale, item = sold
        make_inventory(variant_b, quantity=3)
        refund_ret = _open(store, sale, item, quantity=1)
        exchange_ret = _open(store, sale, item, resolution="exchange", quantity=1,
                             exchanges=[{"new_variant_id": variant_b.id}])

        results, _ = return_service.review_returns(
            return_ids=[refund_ret.id, exchange_ret.id], approve=False, notes="tags removed",
        )

        assert [r["status"] for r in results] == ["rejected", "rejected"]
        refund_ret = _reload(db_session, Return, refund_ret.id)
        assert refund_ret.inspection_notes == "tags removed"
        assert refund_ret.refunds[0].status == RefundStatus.FAILED
        assert db_session.get(Return, exchange_ret.id).exchanges[0].status == ExchangeStatus.CANCELLED
        assert db_session.get(StoreInventory, inv_a.id).quantity == 8
        assert db_session.get(Sale, sale.id).net_amount_cents == 4000

    def test_reject_expires_pending_credit(self, db_session, store, sold):
        sale, item = sold
        ret = _open(store, sale, item, resolution="store_credit")

        return_service.review_returns(return_ids=[ret.id], approve=False)

        assert _reload(db_session, Return, ret.id).store_credit.status == StoreCreditStatus.EXPIRED

    def test_batch_is_all_or_nothing(self, db_session, store, sold, inv_a, variant_b, make_inventory):
        sale, item = sold
        make_inventory(variant_b, quantity=0)
        refund_ret = _open(store, sale, item, quantity=1)
        exchange_ret = _open(store, sale, item, resolution="exchange", quantity=1,
                             exchanges=[{"new_variant_id": variant_b.id}])

        with pytest.raises(InsufficientStockError):
            return_service.review_returns(return_ids=[refund_ret.id, exchange_ret.id], approve=True)

        assert _reload(db_session, Return, refund_ret.id).status == ReturnStatus.PENDING
        assert db_session.get(Return, exchange_ret.id).status == ReturnStatus.PENDING
        assert db_session.get(StoreInventory, inv_a.id).quantity == 8
        assert db_session.get(Sale, sale.id).net_amount_cents == 4000
        assert db_session.get(SaleItem, item.id).returned_quantity == 0

    def test_second_review_is_rejected(self, db_session, store, sold):
        sale, item = sold
        ret = _open(store, sale, item)
        return_service.review_returns(return_ids=[ret.id], approve=True)

        with pytest.raises(ReturnError):
            return_service.review_returns(return_ids=[ret.id], approve=True)
        with pytest.raises(ReturnError):
            return_service.review_returns(return_ids=[ret.id], approve=False)

    def test_missing_return_aborts(self, db_session, store, sold):
        sale, item = sold
        ret = _open(store, sale, item)

        with pytest.raises(NotFoundError):
            return_service.review_returns(return_ids=[ret.id, 9999], approve=True)

        assert _reload(db_session, Return, ret.id).status == ReturnStatus.PENDING

    def test_store_filter(self, db_session, store, other_store, sold):
        sale, item = sold
        ret = _open(store, sale, item)

        with pytest.raises(NotFoundError):
            return_service.review_returns(return_ids=[ret.id], approve=True, store_id=other_store.id)

    def test_customer_notified(self, db_session, store, sold, notifier):
        sale, item = sold
        ret = _open(store, sale, item)

        _, warnings = return_service.review_returns(return_ids=[ret.id], approve=True)

        assert warnings == []
        message = notifier.sent[-1]
        assert message["to"] == "ada@example.com"
        assert message["subject"] == "Return Update"
        assert ret.return_code in message["body"]

    def test_notification_failure_is_a_warning(self, db_session, store, sold, notifier, inv_a):
        sale, item = sold
        ret = _open(store, sale, item)
        notifier.fail = True

        results, warnings = return_service.review_returns(return_ids=[ret.id], approve=True)

        assert results[0]["status"] == "refunded"
        assert len(warnings) == 1
        assert _reload(db_session, StoreInventory, inv_a.id).quantity == 10

    def test_unknown_sale_item(self, db_session, store, sold):
        sale, _ = sold
        with pytest.raises(NotFoundError):
            return_service.create_returns(
                store_id=store.id,
                sale_code=sale.sale_code,
                items=[{"sale_item_id": 9999, "reason": "x", "resolution": "refund"}],
            )

    def test_unknown_resolution(self, db_session, store, sold):
        sale, item = sold
        with pytest.raises(ValidationError):
            _open(store, sale, item, resolution="swap")


class TestReturnPolicy:

    def test_policy_crud(self, db_session, store):
        policy, created = return_service.upsert_return_policy(store.id, {"days_allowed": 14})
        assert created is True
        assert policy.days_allowed == 14
        assert policy.allow_refund is True

        policy, created = return_service.upsert_return_policy(store.id, {"restocking_fee_bps": 250})
        assert created is False
        assert policy.days_allowed == 14
        assert policy.restocking_fee_bps == 250

        with pytest.raises(ValidationError):
            return_service.upsert_return_policy(store.id, {"restocking_fee_bps": 10001})
        with pytest.raises(ValidationError):
            return_service.upsert_return_policy(store.id, {"store_id": 5})

        return_service.delete_return_policy(store.id)
        with pytest.raises(NotFoundError):
            return_service.get_return_policy(store.id)

    def test_disallowed_resolution(self, db_session, store, sold):
        sale, item = sold
        return_service.upsert_return_policy(store.id, {"allow_refund": False})

        with pytest.raises(ReturnError):
            _open(store, sale, item)

        assert db_session.query(Return).count() == 0
        assert _open(store, sale, item, resolution="store_credit").status == ReturnStatus.PENDING

    def test_outside_return_window(self, db_session, store, sold):
        sale, item = sold
        return_service.upsert_return_policy(store.id, {"days_allowed": 7})
        sale.created_at = utcnow() - timedelta(days=8)
        db_session.commit()

        with pytest.raises(ReturnError):
            _open(store, sale, item)

    def test_restocking_fee_withheld_from_refund(self, db_session, store, sold):
        sale, item = sold
        return_service.upsert_return_policy(store.id, {"restocking_fee_bps": 1000})
        ret = _open(store, sale, item)

        results, _ = return_service.review_returns(return_ids=[ret.id], approve=True)

        assert results[0]["refund"]["amount_cents"] == 3600
        assert results[0]["refund"]["restocking_fee_cents"] == 400
        assert _reload(db_session, Sale, sale.id).net_amount_cents == 0
