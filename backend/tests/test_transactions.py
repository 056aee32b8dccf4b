# Overview: Pytest coverage for the transaction coordinator: commit, rollback and contention mapping.

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from retail_ledger.models import Supplier
from retail_ledger.services.concurrency import is_contention_error, run_in_transaction
from retail_ledger.services.errors import ConcurrencyError, ValidationError


def test_contention_classification():
    assert is_contention_error(StaleDataError("version mismatch"))
    assert is_contention_error(OperationalError("UPDATE variants", {}, Exception("database is locked")))
    assert not is_contention_error(OperationalError("SELECT 1", {}, Exception("no such table: x")))
    assert not is_contention_error(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))
    assert not is_contention_error(ValueError("boom"))


class TestRunInTransaction:

    def test_commits_on_success(self, db_session):
        def op():
            supplier = Supplier(name="Committed")
            db_session.add(supplier)
            return supplier

        supplier = run_in_transaction(op)
        db_session.rollback()

        assert db_session.get(Supplier, supplier.id) is not None

    def test_rolls_back_on_ledger_error(self, db_session):
        def op():
            db_session.add(Supplier(name="Never stored"))
            db_session.flush()
            raise ValidationError("nope")

        with pytest.raises(ValidationError):
            run_in_transaction(op)

        assert db_session.query(Supplier).filter_by(name="Never stored").count() == 0

    def test_contention_without_retry_raises_concurrency_error(self, db_session):
        def op():
            raise StaleDataError("version mismatch")

        with pytest.raises(ConcurrencyError) as exc:
            run_in_transaction(op)

        assert exc.value.details["attempts"] == 1
        assert exc.value.details["cause"] == "StaleDataError"

    def test_opt_in_retry_recovers(self, db_session):
        calls = []

        def op():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("version mismatch")
            return "done"

        assert run_in_transaction(op, attempts=3, backoff_base=0) == "done"
        assert len(calls) == 2

    def test_non_contention_errors_are_not_retried(self, db_session):
        calls = []

        def op():
            calls.append(1)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            run_in_transaction(op, attempts=3, backoff_base=0)

        assert len(calls) == 1
