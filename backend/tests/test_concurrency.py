# Overview: Pytest coverage for the transaction retry policy and optimistic version checks.

import pytest
from sqlalchemy import text
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.orm.exc import StaleDataError

from bizdesk.errors import NotFoundError, StoreError
from bizdesk.extensions import db
from bizdesk.models import Account
from bizdesk.services import finance_service
from bizdesk.services.concurrency import run_in_transaction, run_with_retry


def _flaky(failures, exc_factory, result="done"):
    calls = []

    def func():
        calls.append(1)
        if len(calls) <= failures:
            raise exc_factory()
        return result
    return func, calls


class TestRetryPolicy:
    def test_stale_data_is_retried(self, db_session):
        func, calls = _flaky(1, lambda: StaleDataError("row changed"))
        assert run_with_retry(func, attempts=3, backoff_base=0) == "done"
        assert len(calls) == 2

    def test_exhausted_retries_raise_store_error(self, db_session):
        func, calls = _flaky(5, lambda: StaleDataError("row changed"))
        with pytest.raises(StoreError) as exc:
            run_with_retry(func, attempts=2, backoff_base=0)
        assert len(calls) == 2
        assert exc.value.details["attempts"] == 2
        assert isinstance(exc.value.__cause__, StaleDataError)

    def test_other_storage_errors_are_not_retried(self, db_session):
        func, calls = _flaky(5, lambda: InvalidRequestError("broken"))
        with pytest.raises(StoreError) as exc:
            run_with_retry(func, attempts=3, backoff_base=0)
        assert len(calls) == 1
        assert isinstance(exc.value.__cause__, InvalidRequestError)

    def test_business_errors_propagate_unchanged(self, db_session):
        func, calls = _flaky(5, lambda: NotFoundError("Account not found"))
        with pytest.raises(NotFoundError):
            run_with_retry(func, attempts=3, backoff_base=0)
        assert len(calls) == 1


class TestVersionConflict:
    @pytest.fixture
    def funded_cash(self, ctx, cash_account):
        finance_service.record_transaction(
            ctx, type="income", amount_cents=1000, account_id=cash_account.id, category="Sales",
        )
        return cash_account.id

    def _concurrent_deposit(self, account_id, amount_cents):
        """Commit a balance change behind the ORM's back, leaving its loaded copy stale."""
        session = db.session()
        session.expire_on_commit = False
        try:
            session.execute(
                text(
                    "UPDATE accounts SET version_id = version_id + 1, "
                    "balance_cents = balance_cents + :amount WHERE id = :id"
                ),
                {"amount": amount_cents, "id": account_id},
            )
            session.commit()
        finally:
            session.expire_on_commit = True

    def test_stale_flush_is_rejected(self, db_session, funded_cash):
        account = db_session.get(Account, funded_cash)
        assert account.balance_cents == 1000
        self._concurrent_deposit(funded_cash, 500)

        account.balance_cents = account.balance_cents - 300
        with pytest.raises(StaleDataError):
            db_session.flush()
        db_session.rollback()

    def test_retry_rereads_row_and_keeps_both_updates(self, db_session, funded_cash):
        account = db_session.get(Account, funded_cash)
        assert account.balance_cents == 1000
        self._concurrent_deposit(funded_cash, 500)

        attempts = []

        def withdraw():
            attempts.append(1)
            row = db.session.get(Account, funded_cash)
            row.balance_cents = row.balance_cents - 300
            db.session.flush()
            return row.balance_cents

        assert run_in_transaction(withdraw, attempts=3, backoff_base=0) == 1200
        assert len(attempts) == 2
        assert db_session.get(Account, funded_cash).balance_cents == 1000 + 500 - 300

    def test_service_write_after_concurrent_change_loses_nothing(self, ctx, db_session, funded_cash):
        db_session.get(Account, funded_cash).balance_cents
        self._concurrent_deposit(funded_cash, 500)

        finance_service.record_transaction(
            ctx, type="expense", amount_cents=300, account_id=funded_cash, category="Rent",
        )
        assert finance_service.get_account(ctx, funded_cash).balance_cents == 1200
