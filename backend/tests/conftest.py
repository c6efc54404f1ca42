"""
Pytest fixtures for SettlePOS backend tests.

Provides the in-memory database, test client, catalog/customer fixtures,
an OPEN cashier shift and helpers for delivery runs and actor headers.
"""

from decimal import Decimal

import pytest

from settlepos import create_app
from settlepos.extensions import db
from settlepos.models import Customer, DeliveryRun, Product, RunReceipt
from settlepos.models.states import OrderChannel, ReceiptKind
from settlepos.services import order_service, shift_service


MANAGER_ID = 1
CASHIER_ID = 2
OTHER_CASHIER_ID = 3
RIDER_ID = 4


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(test_config={
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def products(db_session):
    """
    A small catalog:
    - rice: sack only, 500.00
    - feed: sack only, 300.00
    - soap: pack 100.00 or loose bar 25.00
    """
    rice = Product(sku="RICE-25", name="Rice 25kg", pack_price=Decimal("500.00"), stock=Decimal("5"))
    feed = Product(sku="FEED-50", name="Hog Feed 50kg", pack_price=Decimal("300.00"), stock=Decimal("5"))
    soap = Product(
        sku="SOAP-4",
        name="Bath Soap",
        retail_price=Decimal("25.00"),
        pack_price=Decimal("100.00"),
        allow_pack_sale=True,
        stock=Decimal("10"),
        retail_stock=Decimal("20"),
        tags=["toiletries"],
    )
    db_session.add_all([rice, feed, soap])
    db_session.commit()
    return {"rice": rice, "feed": feed, "soap": soap}


@pytest.fixture(scope='function')
def customer(db_session):
    """Create a regular (suki) customer."""
    c = Customer(first_name="Ana", last_name="Reyes", alias="Aling Ana", tags=["suki"])
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def open_shift(db_session):
    """Cashier shift with a 1000.00 float, handed over and accepted."""
    shift, _ = shift_service.open_shift(CASHIER_ID, "1000.00", MANAGER_ID)
    return shift_service.accept_opening(shift.id, CASHIER_ID, "1000.00")


@pytest.fixture(scope='function')
def make_order(db_session):
    """Factory for UNPAID orders with frozen lines."""
    def _make(*lines, **kwargs):
        payload = [
            {"product_id": product.id, "qty": str(qty), "unit_kind": kind}
            for product, qty, kind in lines
        ]
        return order_service.create_order(payload, **kwargs)

    return _make


@pytest.fixture(scope='function')
def delivery_order(db_session, products, customer):
    """
    Factory for a delivery order carried on a rider run, with its PARENT
    run receipt holding the cash the rider collected.
    """
    def _make(cash_collected, product_key="feed", qty=1, rider_id=RIDER_ID):
        run = DeliveryRun(rider_id=rider_id, run_code=f"RUN-{db_session.query(DeliveryRun).count() + 1:04d}")
        db_session.add(run)
        db_session.commit()

        order = order_service.create_order(
            [{"product_id": products[product_key].id, "qty": str(qty), "unit_kind": "PACK"}],
            customer_id=customer.id,
            channel=OrderChannel.DELIVERY,
            rider_id=rider_id,
            delivery_run_id=run.id,
        )
        receipt = RunReceipt(
            run_id=run.id,
            kind=ReceiptKind.PARENT,
            receipt_key=f"PARENT:{order.id}",
            parent_order_id=order.id,
            customer_id=customer.id,
            cash_collected=Decimal(str(cash_collected)),
        )
        db_session.add(receipt)
        db_session.commit()
        return order, receipt

    return _make


def actor_headers(actor_id: int, role: str, shift_id: int | None = None) -> dict:
    """Identity headers forwarded by the gateway."""
    headers = {"X-Actor-Id": str(actor_id), "X-Actor-Role": role}
    if shift_id is not None:
        headers["X-Shift-Id"] = str(shift_id)
    return headers
