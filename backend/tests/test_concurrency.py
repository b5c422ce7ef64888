# Overview: Threaded concurrency checks against a file-backed SQLite database.

"""
Concurrency tests.

Each test runs real threads against a temporary SQLite file so that row
contention, version conflicts and retries actually happen. Workers may lose
a race (ConcurrentModificationError, InsufficientStockError); what must never
happen is oversell or a duplicated document number.
"""
import os
import tempfile
import threading
import unittest

from erpcore import create_app
from erpcore.errors import ConcurrentModificationError, InsufficientStockError
from erpcore.extensions import db
from erpcore.models import Variant
from erpcore.services import catalog_service, order_service, stock_ledger_service

from conftest import CUSTOMER

EXPECTED_RACE_ERRORS = (ConcurrentModificationError, InsufficientStockError)


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 15}},
            "LOCK_RETRY_ATTEMPTS": 8,
            "LOCK_RETRY_BACKOFF": 0.01,
            "LOG_LEVEL": "WARNING",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            product = catalog_service.create_product(name="Pashmina Shawl")
            variant = catalog_service.create_variant(
                product_id=product.id,
                sku="SHAWL-GREY",
                selling_price_paisa=450000,
                opening_stock=10,
                actor="seed",
            )
            self.variant_id = variant.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _create_order(self, quantity):
        return order_service.create_order(
            fulfillment_type="inside_valley",
            customer=dict(CUSTOMER),
            items=[{"variant_id": self.variant_id, "quantity": quantity}],
            actor="seed",
        ).id

    def _run(self, target, args_list):
        results = []
        errors = []
        lock = threading.Lock()

        def worker(*args):
            with self.app.app_context():
                try:
                    value = target(*args)
                    with lock:
                        results.append(value)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=args) for args in args_list]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results, errors

    def test_concurrent_conversions_never_oversell(self):
        with self.app.app_context():
            order_ids = [self._create_order(3) for _ in range(6)]

        def convert(order_id):
            order_service.transition_order(order_id, "converted", actor="race")
            return order_id

        converted, errors = self._run(convert, [(order_id,) for order_id in order_ids])

        for exc in errors:
            self.assertIsInstance(exc, EXPECTED_RACE_ERRORS)
        self.assertLessEqual(len(converted), 3)

        with self.app.app_context():
            variant = db.session.get(Variant, self.variant_id)
            self.assertEqual(variant.sellable_stock, 10)
            self.assertEqual(variant.reserved_stock, 3 * len(converted))
            self.assertLessEqual(variant.reserved_stock, variant.sellable_stock)
            self.assertTrue(stock_ledger_service.verify_variant(self.variant_id)["ok"])

            for order_id in order_ids:
                order = order_service.get_order(order_id)
                expected = ("converted", "reserved") if order_id in converted else ("intake", "none")
                self.assertEqual((order.status, order.stock_state), expected)

    def test_concurrent_walk_in_sales_never_go_negative(self):
        with self.app.app_context():
            order_ids = [
                order_service.create_order(
                    fulfillment_type="store",
                    customer={"name": "Walk-in", "phone": "0"},
                    items=[{"variant_id": self.variant_id, "quantity": 4}],
                    actor="seed",
                ).id
                for _ in range(4)
            ]

        def sell(order_id):
            order_service.transition_order(order_id, "store_sale", actor="till")
            return order_id

        sold, errors = self._run(sell, [(order_id,) for order_id in order_ids])

        for exc in errors:
            self.assertIsInstance(exc, EXPECTED_RACE_ERRORS)
        self.assertLessEqual(len(sold), 2)
        with self.app.app_context():
            variant = db.session.get(Variant, self.variant_id)
            self.assertEqual(variant.sellable_stock, 10 - 4 * len(sold))
            self.assertGreaterEqual(variant.sellable_stock, 0)

    def test_concurrent_order_numbers_are_unique(self):
        created, errors = self._run(self._create_order, [(1,) for _ in range(10)])

        for exc in errors:
            self.assertIsInstance(exc, ConcurrentModificationError)
        self.assertTrue(created)

        with self.app.app_context():
            numbers = [order_service.get_order(order_id).order_number for order_id in created]
        self.assertEqual(len(numbers), len(set(numbers)))


if __name__ == "__main__":
    unittest.main()
