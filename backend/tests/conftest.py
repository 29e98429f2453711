"""
Pytest fixtures for ShopLedger backend tests.

Provides test database setup, tenant/catalog fixtures, recording
collaborators (receipt store, notifier) and a test client.
"""

import pytest
from shopledger import create_app
from shopledger.extensions import db
from shopledger.models import Business, Store, Product, ProductVariant, StoreInventory
from shopledger.services.collaborators import (
    NOTIFIER_KEY,
    RECEIPT_STORE_KEY,
    Notifier,
    ReceiptStore,
)


class RecordingNotifier(Notifier):
    """Keeps every message instead of delivering it; can be told to fail."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, body):
        if self.fail:
            raise RuntimeError("gateway unavailable")
        self.sent.append({"to": to, "subject": subject, "body": body})


class RecordingReceiptStore(ReceiptStore):
    def __init__(self):
        self.saved = []
        self.fail = False

    def save(self, receipt):
        if self.fail:
            raise RuntimeError("storage unavailable")
        self.saved.append(receipt)
        return f"https://receipts.test/{receipt['reference']}.json"


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_SECONDS': 0,
        'RECEIPT_DIR': str(tmp_path_factory.mktemp('receipts')),
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifier(app):
    """Swap in a recording notifier for the duration of a test."""
    original = app.extensions[NOTIFIER_KEY]
    fake = RecordingNotifier()
    app.extensions[NOTIFIER_KEY] = fake
    yield fake
    app.extensions[NOTIFIER_KEY] = original


@pytest.fixture(scope='function')
def receipt_store(app):
    original = app.extensions[RECEIPT_STORE_KEY]
    fake = RecordingReceiptStore()
    app.extensions[RECEIPT_STORE_KEY] = fake
    yield fake
    app.extensions[RECEIPT_STORE_KEY] = original


@pytest.fixture(scope='function')
def business(db_session):
    business = Business(name="Acme Retail", contact_email="owner@acme.test")
    db_session.add(business)
    db_session.commit()
    return business


@pytest.fixture(scope='function')
def store(db_session, business):
    store = Store(business_id=business.id, name="High Street", code="HS01", contact_email="hs01@acme.test")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session, business):
    store = Store(business_id=business.id, name="Mall", code="ML01")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def product(db_session, store):
    product = Product(store_id=store.id, name="Tee")
    db_session.add(product)
    db_session.commit()
    return product


def _variant(db_session, product, sku, price_cents):
    variant = ProductVariant(
        product_id=product.id,
        store_id=product.store_id,
        sku=sku,
        name=f"Tee {sku}",
        price_cents=price_cents,
    )
    db_session.add(variant)
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def variant_a(db_session, product):
    return _variant(db_session, product, "TEE-S", 2000)


@pytest.fixture(scope='function')
def variant_b(db_session, product):
    return _variant(db_session, product, "TEE-M", 2500)


@pytest.fixture(scope='function')
def variant_c(db_session, product):
    return _variant(db_session, product, "TEE-L", 1500)


@pytest.fixture(scope='function')
def make_inventory(db_session, store):
    """Factory: inventory record with a starting quantity (test setup only)."""
    def _make(variant, quantity=0, threshold=0):
        inventory = StoreInventory(
            business_id=store.business_id,
            store_id=store.id,
            variant_id=variant.id,
            quantity=quantity,
            reserved=0,
            low_stock_threshold=threshold,
        )
        db_session.add(inventory)
        db_session.commit()
        return inventory
    return _make


@pytest.fixture(scope='function')
def sale_payload(store):
    """Factory: create_sale kwargs from (variant, quantity) pairs at list price."""
    def _build(variant_lines, key="sale-1", **extra):
        payload = {
            "store_id": store.id,
            "business_id": store.business_id,
            "idempotency_key": key,
            "items": [
                {"variant_id": v.id, "quantity": q, "unit_price_cents": v.price_cents}
                for v, q in variant_lines
            ],
        }
        payload.update(extra)
        return payload
    return _build
