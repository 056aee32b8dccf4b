# Overview: Threaded concurrency tests for oversell and over-return protection.

"""
Concurrency tests on a temporary SQLite file.

Each worker runs in its own app context (its own session and connection),
released through a barrier so both transactions contend for the same rows.
"""
import os
import tempfile
import threading
import unittest

from retail_ledger import create_app
from retail_ledger.extensions import db
from retail_ledger.models import Customer, OrderLine, Product, Variant
from retail_ledger.services import order_service, return_service
from retail_ledger.services.errors import InsufficientStockError, StateError
from retail_ledger.services.stock_ledger import get_stock_position, get_variant_stock


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "LOG_LEVEL": "WARNING",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            customer = Customer(name="Concurrent Customer", document_number="CONCUR-C")
            product = Product(sku="CONCUR-1", name="Concurrent Tee", sale_price_cents=1000)
            variant = Variant(product=product, label="M", stock_quantity=5)
            db.session.add_all([customer, product, variant])
            db.session.commit()

            self.customer_id = customer.id
            self.product_id = product.id
            self.variant_id = variant.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_concurrently(self, *calls):
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(len(calls))

        def worker(call):
            with self.app.app_context():
                try:
                    barrier.wait()
                    value = call()
                    with lock:
                        results.append(value)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def _sell(self, quantity):
        line = {"product_id": self.product_id, "variant_id": self.variant_id, "quantity": quantity}
        return lambda: order_service.create_sale_order(self.customer_id, [line]).id

    def test_concurrent_sales_cannot_oversell(self):
        results = self._run_concurrently(self._sell(4), self._sell(4))

        succeeded = [r for r in results if isinstance(r, int)]
        failed = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(succeeded), 1, results)
        self.assertEqual(len(failed), 1, results)
        self.assertIsInstance(failed[0], InsufficientStockError)

        with self.app.app_context():
            self.assertEqual(get_variant_stock(self.variant_id), 1)
            self.assertEqual(len(order_service.list_orders()), 1)

    def test_many_concurrent_single_unit_sales(self):
        results = self._run_concurrently(*[self._sell(1) for _ in range(8)])

        succeeded = [r for r in results if isinstance(r, int)]
        self.assertEqual(len(succeeded), 5, results)

        with self.app.app_context():
            self.assertEqual(get_variant_stock(self.variant_id), 0)

    def test_concurrent_returns_cannot_exceed_line(self):
        with self.app.app_context():
            sale_id = self._sell(4)()

        def give_back():
            return return_service.create_return(sale_id, self.product_id, 3, "Concurrent return").id

        results = self._run_concurrently(give_back, give_back)

        succeeded = [r for r in results if isinstance(r, int)]
        failed = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(succeeded), 1, results)
        self.assertIsInstance(failed[0], StateError)

        with self.app.app_context():
            line = db.session.query(OrderLine).filter_by(order_id=sale_id).one()
            self.assertEqual(line.returned_quantity, 3)
            self.assertEqual(get_stock_position(self.product_id)["aggregate_stock_quantity"], 3)


if __name__ == "__main__":
    unittest.main()
