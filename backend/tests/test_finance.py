# Overview: Pytest coverage for accounts, transactions, transfers and tax arithmetic.

import pytest

from bizdesk.errors import ConflictError, InsufficientFundsError, NotFoundError, ValidationError
from bizdesk.models import AuditLog, Transaction
from bizdesk.services import finance_service
from bizdesk.services.finance_service import calculate_tax


class TestTaxCalculation:
    def test_exclusive_tax_is_added(self):
        breakdown = calculate_tax(2000, 1600)
        assert breakdown.tax_cents == 320
        assert breakdown.net_cents == 2000
        assert breakdown.gross_cents == 2320

    def test_inclusive_tax_is_extracted(self):
        breakdown = calculate_tax(1160, 1600, inclusive=True)
        assert breakdown.tax_cents == 160
        assert breakdown.net_cents == 1000
        assert breakdown.gross_cents == 1160

    def test_exclusive_rounds_half_up(self):
        # 5 * 1000 bps = 0.5 cent -> 1
        assert calculate_tax(5, 1000).tax_cents == 1
        assert calculate_tax(4, 1000).tax_cents == 0

    def test_zero_rate(self):
        assert calculate_tax(999, 0).tax_cents == 0


class TestAccounts:
    def test_registration_creates_default_accounts(self, ctx):
        accounts = finance_service.list_accounts(ctx)
        names = {a.name: a for a in accounts}
        assert set(names) == {"Cash", "Bank Account"}
        assert names["Cash"].is_default is True
        assert names["Bank Account"].is_default is False
        assert all(a.balance_cents == 0 for a in accounts)

    def test_create_account_with_opening_balance(self, ctx):
        account = finance_service.create_account(ctx, {
            "name": "Mobile Money", "type": "asset", "currency": "USD", "balance_cents": 5000,
        })
        assert account.balance_cents == 5000
        assert account.opening_balance_cents == 5000

    def test_duplicate_account_name_rejected(self, ctx):
        with pytest.raises(ConflictError):
            finance_service.create_account(ctx, {"name": "Cash", "type": "asset", "currency": "USD"})

    def test_new_default_clears_previous_default(self, ctx, cash_account, bank_account):
        finance_service.set_default_account(ctx, bank_account.id)
        assert finance_service.get_account(ctx, bank_account.id).is_default is True
        assert finance_service.get_account(ctx, cash_account.id).is_default is False

    def test_balance_is_not_patchable(self, ctx, cash_account):
        with pytest.raises(ValidationError):
            finance_service.update_account(ctx, cash_account.id, {"balance_cents": 100})

    def test_unknown_account(self, ctx):
        with pytest.raises(NotFoundError):
            finance_service.get_account(ctx, 99999)


class TestTransactions:
    def test_income_then_expense(self, ctx, cash_account):
        finance_service.record_transaction(
            ctx, type="income", amount_cents=10000, account_id=cash_account.id, category="Sales",
        )
        finance_service.record_transaction(
            ctx, type="expense", amount_cents=3000, account_id=cash_account.id, category="Rent",
        )
        assert finance_service.get_account(ctx, cash_account.id).balance_cents == 7000

    def test_transfer_moves_both_balances(self, ctx, cash_account, bank_account):
        finance_service.record_transaction(
            ctx, type="income", amount_cents=10000, account_id=cash_account.id, category="Sales",
        )
        txn = finance_service.transfer_funds(
            ctx, from_account_id=cash_account.id, to_account_id=bank_account.id, amount_cents=5000,
        )
        assert txn.type == "transfer"
        assert txn.category == "Account Transfer"
        assert txn.reference.startswith("TRF-")
        assert finance_service.get_account(ctx, cash_account.id).balance_cents == 5000
        assert finance_service.get_account(ctx, bank_account.id).balance_cents == 5000

    def test_transfer_locks_accounts_in_id_order(self, ctx, monkeypatch, cash_account, bank_account):
        finance_service.record_transaction(
            ctx, type="income", amount_cents=1000, account_id=bank_account.id, category="Sales",
        )
        locked = []
        real_get_account = finance_service.get_account

        def recording_get_account(ctx, account_id, *, lock=False):
            if lock:
                locked.append(account_id)
            return real_get_account(ctx, account_id, lock=lock)

        monkeypatch.setattr(finance_service, "get_account", recording_get_account)
        # Bank (higher id) pays Cash (lower id)
        finance_service.transfer_funds(
            ctx, from_account_id=bank_account.id, to_account_id=cash_account.id, amount_cents=400,
        )

        assert bank_account.id > cash_account.id
        assert locked[:2] == [cash_account.id, bank_account.id]
        assert locked == sorted(locked)

    def test_transfer_insufficient_funds_writes_nothing(self, ctx, db_session, cash_account, bank_account):
        with pytest.raises(InsufficientFundsError):
            finance_service.transfer_funds(
                ctx, from_account_id=cash_account.id, to_account_id=bank_account.id, amount_cents=1,
            )
        assert db_session.query(Transaction).count() == 0
        assert finance_service.get_account(ctx, bank_account.id).balance_cents == 0

    def test_transfer_to_same_account_rejected(self, ctx, cash_account):
        with pytest.raises(ValidationError):
            finance_service.record_transaction(
                ctx, type="transfer", amount_cents=100, account_id=cash_account.id,
                to_account_id=cash_account.id, category="Account Transfer",
            )

    def test_transfer_requires_destination(self, ctx, cash_account):
        with pytest.raises(ValidationError):
            finance_service.record_transaction(
                ctx, type="transfer", amount_cents=100, account_id=cash_account.id, category="Account Transfer",
            )

    @pytest.mark.parametrize("amount", [0, -5, 1.5, "ten", True])
    def test_invalid_amounts_rejected(self, ctx, cash_account, amount):
        with pytest.raises(ValidationError):
            finance_service.record_transaction(
                ctx, type="income", amount_cents=amount, account_id=cash_account.id, category="Sales",
            )

    def test_unknown_type_rejected(self, ctx, cash_account):
        with pytest.raises(ValidationError):
            finance_service.record_transaction(
                ctx, type="refund", amount_cents=100, account_id=cash_account.id, category="Sales",
            )

    def test_account_of_other_business_is_not_found(self, ctx, other_ctx):
        foreign = finance_service.list_accounts(other_ctx)[0]
        with pytest.raises(NotFoundError):
            finance_service.record_transaction(
                ctx, type="income", amount_cents=100, account_id=foreign.id, category="Sales",
            )

    def test_transaction_is_audited(self, ctx, db_session, cash_account):
        txn = finance_service.record_transaction(
            ctx, type="income", amount_cents=250, account_id=cash_account.id, category="Other Income",
        )
        row = db_session.query(AuditLog).filter_by(entity="transaction", entity_id=txn.id).one()
        assert row.action == "create"
        assert row.payload["amount_cents"] == 250
        assert row.user_id == ctx.user_id

    def test_balance_equals_opening_plus_movements(self, ctx):
        account = finance_service.create_account(ctx, {
            "name": "Till", "type": "asset", "currency": "USD", "balance_cents": 1000,
        })
        finance_service.record_transaction(ctx, type="income", amount_cents=700, account_id=account.id,
                                           category="Sales")
        finance_service.record_transaction(ctx, type="expense", amount_cents=200, account_id=account.id,
                                           category="Utilities")

        txns = finance_service.list_transactions(ctx, account_id=account.id)
        signed = sum(t.amount_cents if t.type == "income" else -t.amount_cents for t in txns)
        assert finance_service.get_account(ctx, account.id).balance_cents == 1000 + signed == 1500

    def test_list_transactions_newest_first(self, ctx, cash_account):
        first = finance_service.record_transaction(ctx, type="income", amount_cents=100,
                                                   account_id=cash_account.id, category="Sales")
        second = finance_service.record_transaction(ctx, type="income", amount_cents=200,
                                                    account_id=cash_account.id, category="Sales")
        ids = [t.id for t in finance_service.list_transactions(ctx)]
        assert ids.index(second.id) < ids.index(first.id)
