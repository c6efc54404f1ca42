"""
Order lock concurrency tests.

Uses a file-backed SQLite database so every thread gets its own
connection and BEGIN IMMEDIATE actually serializes the claims.
"""

import os
import tempfile
import threading
import unittest
from datetime import timedelta
from decimal import Decimal

from settlepos import create_app
from settlepos.extensions import db
from settlepos.models import Order, OrderItem, Product
from settlepos.models.states import OrderStatus, UnitKind
from settlepos.services import lock_service
from settlepos.services.concurrency import run_in_transaction
from settlepos.time_utils import utcnow


class OrderLockConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "locks.db")
        self.app = create_app(test_config={
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        })

        with self.app.app_context():
            db.create_all()
            product = Product(sku="LOCK-1", name="Lock Product", pack_price=Decimal("100.00"), stock=Decimal("10"))
            db.session.add(product)
            db.session.flush()
            order = Order(status=OrderStatus.UNPAID, subtotal=Decimal("100.00"))
            order.items.append(OrderItem(
                product_id=product.id,
                name=product.name,
                unit_kind=UnitKind.PACK,
                qty=Decimal("1"),
                unit_price=Decimal("100.00"),
                base_unit_price=Decimal("100.00"),
                line_total=Decimal("100.00"),
            ))
            db.session.add(order)
            db.session.commit()
            self.order_id = order.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _claim_in_threads(self, actors):
        winners = []
        errors = []
        lock = threading.Lock()

        def worker(actor):
            with self.app.app_context():
                try:
                    won = run_in_transaction(
                        lambda: lock_service.try_claim_order_lock(self.order_id, actor, note="SETTLE"),
                        serializable=True,
                    )
                    if won:
                        with lock:
                            winners.append(actor)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(actor,)) for actor in actors]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return winners, errors

    def test_exactly_one_cashier_wins(self):
        winners, errors = self._claim_in_threads([f"cashier-{i}" for i in range(8)])

        self.assertFalse(errors)
        self.assertEqual(len(winners), 1)
        with self.app.app_context():
            order = db.session.get(Order, self.order_id)
            self.assertEqual(order.locked_by, winners[0])
            self.assertEqual(order.lock_note, "SETTLE")

    def test_holder_can_reclaim(self):
        with self.app.app_context():
            claim = lambda: lock_service.try_claim_order_lock(self.order_id, "cashier-1")
            self.assertTrue(run_in_transaction(claim, serializable=True))
            self.assertTrue(run_in_transaction(claim, serializable=True))
            other = lambda: lock_service.try_claim_order_lock(self.order_id, "cashier-2")
            self.assertFalse(run_in_transaction(other, serializable=True))

    def test_expired_lock_is_released_by_maintenance(self):
        with self.app.app_context():
            stale = utcnow() - timedelta(seconds=lock_service.order_lock_ttl() + 1)
            run_in_transaction(
                lambda: lock_service.try_claim_order_lock(self.order_id, "cashier-1", now=stale),
                serializable=True,
            )
            self.assertEqual(lock_service.release_expired_locks(), 1)
            self.assertIsNone(db.session.get(Order, self.order_id, populate_existing=True).locked_by)
            self.assertEqual(lock_service.release_expired_locks(), 0)

    def test_release_only_own_lock(self):
        with self.app.app_context():
            run_in_transaction(lambda: lock_service.try_claim_order_lock(self.order_id, "cashier-1"), serializable=True)
            self.assertFalse(lock_service.release_order_lock(self.order_id, "cashier-2"))
            self.assertTrue(lock_service.release_order_lock(self.order_id, "cashier-1"))


if __name__ == "__main__":
    unittest.main()
