# Overview: Pytest coverage for the stock ledger primitives and stock queries.

import pytest

from retail_ledger.models import StockMovement
from retail_ledger.services import stock_ledger
from retail_ledger.services.errors import InsufficientStockError, NotFoundError, ValidationError
from retail_ledger.services.stock_ledger import (
    COUNTER_PRODUCT,
    COUNTER_VARIANT,
    MOVEMENT_PURCHASE,
    MOVEMENT_RETURN,
    MOVEMENT_SALE,
)


class TestAdjustVariantStock:

    def test_increment_applies_and_journals(self, db_session, small):
        variant = stock_ledger.adjust_variant_stock(small.id, 3, reason=MOVEMENT_PURCHASE)
        db_session.commit()

        assert variant.stock_quantity == 13
        assert stock_ledger.get_variant_stock(small.id) == 13

        movement = db_session.query(StockMovement).one()
        assert movement.counter == COUNTER_VARIANT
        assert movement.variant_id == small.id
        assert movement.delta == 3
        assert movement.balance_after == 13
        assert movement.reason == MOVEMENT_PURCHASE

    def test_decrement_to_exactly_zero_is_allowed(self, db_session, medium):
        stock_ledger.adjust_variant_stock(medium.id, -5, reason=MOVEMENT_SALE)
        db_session.commit()

        assert stock_ledger.get_variant_stock(medium.id) == 0

    def test_decrement_below_zero_is_rejected_without_mutation(self, db_session, medium):
        with pytest.raises(InsufficientStockError) as exc:
            stock_ledger.adjust_variant_stock(medium.id, -6, reason=MOVEMENT_SALE)
        db_session.rollback()

        assert exc.value.details["requested_quantity"] == 6
        assert exc.value.details["available_quantity"] == 5
        assert exc.value.details["deficit"] == 1
        assert stock_ledger.get_variant_stock(medium.id) == 5
        assert db_session.query(StockMovement).count() == 0

    def test_version_is_bumped(self, db_session, small):
        before = small.version_id
        variant = stock_ledger.adjust_variant_stock(small.id, 1, reason=MOVEMENT_PURCHASE)
        assert variant.version_id == before + 1

    @pytest.mark.parametrize("delta", [0, 1.5, True, "2"])
    def test_invalid_delta(self, db_session, small, delta):
        with pytest.raises(ValidationError):
            stock_ledger.adjust_variant_stock(small.id, delta, reason=MOVEMENT_PURCHASE)

    def test_unknown_reason(self, db_session, small):
        with pytest.raises(ValidationError):
            stock_ledger.adjust_variant_stock(small.id, 1, reason="SHRINKAGE")

    def test_unknown_variant(self, db_session):
        with pytest.raises(NotFoundError):
            stock_ledger.adjust_variant_stock(99999, 1, reason=MOVEMENT_PURCHASE)


class TestAdjustProductStock:

    def test_aggregate_counter_moves_independently(self, db_session, product, small):
        stock_ledger.adjust_product_stock(product.id, 2, reason=MOVEMENT_RETURN)
        db_session.commit()

        position = stock_ledger.get_stock_position(product.id)
        assert position["aggregate_stock_quantity"] == 2
        assert position["variant_stock_total"] == 15

        movement = db_session.query(StockMovement).one()
        assert movement.counter == COUNTER_PRODUCT
        assert movement.variant_id is None
        assert movement.balance_after == 2

    def test_aggregate_cannot_go_negative(self, db_session, product):
        with pytest.raises(InsufficientStockError) as exc:
            stock_ledger.adjust_product_stock(product.id, -1, reason=MOVEMENT_RETURN)
        assert exc.value.details["available_quantity"] == 0

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            stock_ledger.adjust_product_stock(99999, 1, reason=MOVEMENT_RETURN)


class TestStockQueries:

    def test_stock_position_lists_variants_in_id_order(self, db_session, product, small, medium):
        position = stock_ledger.get_stock_position(product.id)

        assert position["name"] == "Basic Tee"
        assert [v["label"] for v in position["variants"]] == ["S", "M"]
        assert [v["stock_quantity"] for v in position["variants"]] == [10, 5]

    def test_stock_position_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            stock_ledger.get_stock_position(99999)

    def test_get_variant_stock_unknown(self, db_session):
        with pytest.raises(NotFoundError):
            stock_ledger.get_variant_stock(99999)

    def test_list_movements_filters_newest_first(self, db_session, small, medium):
        stock_ledger.adjust_variant_stock(small.id, 1, reason=MOVEMENT_PURCHASE)
        stock_ledger.adjust_variant_stock(medium.id, 2, reason=MOVEMENT_PURCHASE)
        stock_ledger.adjust_variant_stock(small.id, -4, reason=MOVEMENT_SALE)
        db_session.commit()

        rows = stock_ledger.list_movements(variant_id=small.id)
        assert [m.delta for m in rows] == [-4, 1]

        assert len(stock_ledger.list_movements(limit=1)) == 1
