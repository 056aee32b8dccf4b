from sqlalchemy import update

from conftest import line
from retail_ledger.models import OrderLine, Return, Variant
from retail_ledger.services import audit_service, order_service, return_service


class TestAuditService:

    def test_clean_ledger_has_no_violations(self, db_session, supplier, customer, product, small, medium):
        order_service.create_purchase_order(supplier.id, [line(product, medium, 3, 600)])
        sale = order_service.create_sale_order(customer.id, [line(product, small, 4), line(product, medium, 2)])
        ret = return_service.create_return(sale.id, product.id, 2, "Too small", variant_id=small.id)
        return_service.toggle_return(ret.id)
        return_service.toggle_return(ret.id)
        order_service.cancel_sale_order(sale.id)

        assert audit_service.check_invariants() == []

    def test_detects_returned_quantity_drift(self, db_session, customer, product, small):
        sale = order_service.create_sale_order(customer.id, [line(product, small, 4)])
        return_service.create_return(sale.id, product.id, 2, "Too small")

        db_session.execute(
            update(OrderLine).where(OrderLine.order_id == sale.id).values(returned_quantity=1)
        )
        db_session.commit()

        checks = {v["check"] for v in audit_service.check_invariants()}
        assert "active_returns_sum" in checks

    def test_detects_fully_returned_mismatch(self, db_session, customer, product, small):
        sale = order_service.create_sale_order(customer.id, [line(product, small, 1)])
        db_session.execute(
            update(OrderLine).where(OrderLine.order_id == sale.id).values(fully_returned=True)
        )
        db_session.commit()

        checks = {v["check"] for v in audit_service.check_invariants()}
        assert "fully_returned" in checks

    def test_detects_wrong_return_amount(self, db_session, customer, product, small):
        sale = order_service.create_sale_order(customer.id, [line(product, small, 2)])
        ret = return_service.create_return(sale.id, product.id, 1, "Too small")

        db_session.execute(update(Return).where(Return.id == ret.id).values(amount_cents=1))
        db_session.commit()

        violations = audit_service.check_return_amounts()
        assert [v["id"] for v in violations] == [ret.id]

    def test_detects_stock_written_outside_the_ledger(self, db_session, customer, product, small):
        order_service.create_sale_order(customer.id, [line(product, small, 2)])

        db_session.execute(update(Variant).where(Variant.id == small.id).values(stock_quantity=50))
        db_session.commit()

        violations = audit_service.check_movement_balances()
        assert [(v["entity"], v["id"]) for v in violations] == [("variants", small.id)]
