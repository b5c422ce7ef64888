"""
Pytest fixtures for the fulfillment core tests.

Provides an in-memory database, per-test table cleanup, a test client and
catalog/order factories.
"""

import pytest

from erpcore import create_app
from erpcore.extensions import db
from erpcore.services import catalog_service, notification_service, order_service


ACTOR = "staff-1"
CHECKER = "checker-1"

CUSTOMER = {
    "name": "Sita Sharma",
    "phone": "9841000000",
    "address": "Baneshwor-10",
    "city": "Kathmandu",
}

# Minimal path from intake to delivered, with the data each hop's guards need
DELIVERY_PATHS = {
    "inside_valley": [
        ("converted", {}),
        ("packed", {}),
        ("assigned", {"assigned_rider_id": 7}),
        ("out_for_delivery", {}),
        ("delivered", {}),
    ],
    "outside_valley": [
        ("converted", {}),
        ("packed", {}),
        ("handover_to_courier", {"courier_partner": "NCM", "awb_number": "NCM-1001"}),
        ("in_transit", {}),
        ("delivered", {}),
    ],
    "store": [
        ("store_sale", {}),
        ("delivered", {}),
    ],
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'LOCK_RETRY_BACKOFF': 0,
        'LOG_LEVEL': 'WARNING',
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
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(autouse=True)
def clear_notification_handlers():
    yield
    notification_service._handlers.clear()


@pytest.fixture(scope='function')
def product(db_session):
    return catalog_service.create_product(name="Cotton Kurta", brand="Seetara", category="Apparel")


@pytest.fixture(scope='function')
def make_variant(db_session, product):
    """Factory: make_variant(sku, opening_stock=10, price=250000)."""
    def _make(sku, opening_stock=10, price=250000, cost=120000):
        return catalog_service.create_variant(
            product_id=product.id,
            sku=sku,
            selling_price_paisa=price,
            cost_price_paisa=cost,
            opening_stock=opening_stock,
            actor=ACTOR,
        )
    return _make


@pytest.fixture(scope='function')
def variant(make_variant):
    """Variant X: sellable 10, reserved 0."""
    return make_variant("KURTA-RED-M", opening_stock=10)


@pytest.fixture(scope='function')
def vendor(db_session):
    return catalog_service.create_vendor(name="Birgunj Textiles", phone="051-520000")


@pytest.fixture(scope='function')
def make_order(db_session):
    """Factory: make_order(variant, quantity=3, fulfillment_type="inside_valley")."""
    def _make(variant, quantity=3, fulfillment_type="inside_valley", extra_items=None, **kwargs):
        items = [{"variant_id": variant.id, "quantity": quantity}]
        items.extend(extra_items or [])
        return order_service.create_order(
            fulfillment_type=fulfillment_type,
            customer=dict(CUSTOMER),
            items=items,
            actor=ACTOR,
            **kwargs,
        )
    return _make


@pytest.fixture(scope='function')
def drive():
    """Walk an order through statuses: drive(order_id, "converted", ("assigned", {...}), ...)."""
    def _drive(order_id, *steps, reason="test"):
        order = None
        for step in steps:
            status, extra = (step, {}) if isinstance(step, str) else step
            order = order_service.transition_order(order_id, status, actor=ACTOR, reason=reason, **extra)
        return order
    return _drive


@pytest.fixture(scope='function')
def deliver(drive):
    """Take an order along its fulfillment type's happy path to delivered."""
    def _deliver(order):
        return drive(order.id, *DELIVERY_PATHS[order.fulfillment_type])
    return _deliver


def actor_headers(actor: str = ACTOR) -> dict:
    """Helper to create X-Actor-Id headers."""
    return {'X-Actor-Id': actor}
