# Overview: Pytest coverage for customer records, credit, search, segmentation and CSV exchange.

from datetime import datetime

import pytest

from bizdesk.errors import ConflictError, CreditLimitExceededError, ValidationError
from bizdesk.models import Customer
from bizdesk.services import customer_service


class TestCustomerRecords:
    def test_create_requires_name_and_email(self, ctx):
        with pytest.raises(ValidationError):
            customer_service.create_customer(ctx, {"name": "No Email"})

    def test_email_unique_per_business(self, ctx, other_ctx, customer):
        with pytest.raises(ConflictError):
            customer_service.create_customer(ctx, {"name": "Dup", "email": "jane@example.test"})
        other = customer_service.create_customer(other_ctx, {"name": "Jane", "email": "jane@example.test"})
        assert other.business_id == other_ctx.business_id

    def test_counters_are_not_writable(self, ctx, customer):
        with pytest.raises(ValidationError):
            customer_service.update_customer(ctx, customer.id, {"outstanding_balance_cents": 0})

    def test_update_contact_fields(self, ctx, customer):
        updated = customer_service.update_customer(ctx, customer.id, {"phone": "0711111111", "tags": ["vip"]})
        assert updated.phone == "0711111111"
        assert updated.tags == ["vip"]


class TestCredit:
    def test_increase_within_limit(self, ctx, customer):
        balance = customer_service.update_customer_credit(ctx, customer.id, 9000, "increase", "INV-1")
        assert balance == 9000
        refreshed = customer_service.get_customer(ctx, customer.id)
        assert refreshed.credit_used_cents == 9000
        assert refreshed.available_credit_cents == 1000

    def test_increase_beyond_limit_rejected(self, ctx, customer):
        customer_service.update_customer_credit(ctx, customer.id, 9000)
        with pytest.raises(CreditLimitExceededError):
            customer_service.update_customer_credit(ctx, customer.id, 2000)
        assert customer_service.get_customer(ctx, customer.id).outstanding_balance_cents == 9000

    def test_payment_clamps_at_zero(self, ctx, customer):
        customer_service.update_customer_credit(ctx, customer.id, 3000)
        balance = customer_service.update_customer_credit(ctx, customer.id, 5000, "payment")
        assert balance == 0

    def test_limit_cannot_drop_below_balance(self, ctx, customer):
        customer_service.update_customer_credit(ctx, customer.id, 9000)
        with pytest.raises(ValidationError) as exc:
            customer_service.update_customer(ctx, customer.id, {"credit_limit_cents": 5000})
        assert exc.value.details["outstanding_balance_cents"] == 9000
        assert customer_service.get_customer(ctx, customer.id).credit_limit_cents == 10000

        # Partial payments keep working against the unchanged limit
        assert customer_service.update_customer_credit(ctx, customer.id, 1000, "payment") == 8000

    def test_limit_can_drop_to_balance_or_unlimited(self, ctx, customer):
        customer_service.update_customer_credit(ctx, customer.id, 6000)
        at_balance = customer_service.update_customer(ctx, customer.id, {"credit_limit_cents": 6000})
        assert at_balance.credit_limit_cents == 6000
        unlimited = customer_service.update_customer(ctx, customer.id, {"credit_limit_cents": 0})
        assert unlimited.credit_limit_cents == 0

    def test_zero_limit_means_unlimited(self, ctx):
        open_account = customer_service.create_customer(ctx, {"name": "Open", "email": "open@example.test"})
        assert customer_service.update_customer_credit(ctx, open_account.id, 500_000) == 500_000
        assert customer_service.get_customer(ctx, open_account.id).available_credit_cents is None

    def test_credit_transactions_recorded_in_order(self, ctx, customer):
        customer_service.update_customer_credit(ctx, customer.id, 4000, "increase")
        customer_service.update_customer_credit(ctx, customer.id, 1500, "payment", "RCPT-9")
        rows = customer_service.list_credit_transactions(ctx, customer.id)
        assert [(r.type, r.previous_balance_cents, r.new_balance_cents) for r in rows] == [
            ("increase", 0, 4000),
            ("payment", 4000, 2500),
        ]
        assert rows[1].reference == "RCPT-9"

    def test_unknown_credit_type(self, ctx, customer):
        with pytest.raises(ValidationError):
            customer_service.update_customer_credit(ctx, customer.id, 100, "writeoff")


class TestSegmentation:
    def _customer(self, purchases, spent, first):
        return Customer(name="x", total_purchases=purchases, total_spent_cents=spent, first_purchase_at=first)

    def test_lifetime_value_projects_monthly_spend(self):
        c = self._customer(3, 60_000, datetime(2024, 1, 1))
        # 6 months of history -> 10,000 a month -> 120,000 a year
        assert customer_service.lifetime_value_cents(c, datetime(2024, 7, 1)) == 120_000

    def test_no_purchases_is_new(self):
        c = self._customer(0, 0, None)
        assert customer_service.lifetime_value_cents(c) == 0
        assert customer_service.customer_segment(c, 0) == "New"

    @pytest.mark.parametrize("purchases,clv,expected", [
        (1, 10, "One-time"),
        (2, 10, "Repeat"),
        (6, 50_001, "Loyal"),
        (6, 50_000, "Repeat"),
        (11, 100_001, "VIP"),
        (11, 100_000, "Loyal"),
    ])
    def test_thresholds(self, purchases, clv, expected):
        c = self._customer(purchases, 1, datetime(2024, 1, 1))
        assert customer_service.customer_segment(c, clv) == expected


class TestSearch:
    @pytest.fixture
    def people(self, ctx):
        rows = [
            {"name": "Alice Otieno", "email": "alice@example.test", "address": "Nairobi", "tags": ["retail"]},
            {"name": "Bob Kamau", "email": "bob@example.test", "address": "Nairobi", "tags": ["wholesale"]},
            {"name": "Carol Wanjiru", "email": "carol@example.test", "address": "Mombasa", "status": "inactive"},
        ]
        return [customer_service.create_customer(ctx, r) for r in rows]

    def test_every_term_must_match(self, ctx, people):
        results = customer_service.search_customers(ctx, "nairobi alice")
        assert [c.name for c in results] == ["Alice Otieno"]

    def test_filter_by_tags_and_status(self, ctx, people):
        assert [c.name for c in customer_service.search_customers(ctx, None, {"tags": ["wholesale"]})] == [
            "Bob Kamau"
        ]
        assert [c.name for c in customer_service.search_customers(ctx, None, {"status": "inactive"})] == [
            "Carol Wanjiru"
        ]

    def test_sort_descending(self, ctx, people):
        results = customer_service.search_customers(ctx, "", {"sort_by": "name", "sort_order": "desc"})
        assert [c.name for c in results] == ["Carol Wanjiru", "Bob Kamau", "Alice Otieno"]

    def test_bad_sort_field(self, ctx, people):
        with pytest.raises(ValidationError):
            customer_service.search_customers(ctx, None, {"sort_by": "password"})

    def test_segment_filter(self, ctx, people):
        assert len(customer_service.search_customers(ctx, None, {"segment": "New"})) == 3


class TestCsv:
    def test_import_skips_rows_without_email(self, ctx):
        text = (
            "name,email,phone,tags,credit_limit_cents,total_purchases\n"
            "Dan,dan@example.test,0722,retail;walk-in,5000,99\n"
            "Nobody,,0733,,,\n"
        )
        created = customer_service.import_customers_csv(ctx, text)
        assert len(created) == 1
        dan = created[0]
        assert dan.tags == ["retail", "walk-in"]
        assert dan.credit_limit_cents == 5000
        # counters are ledger-owned and never imported
        assert dan.total_purchases == 0

    def test_import_is_all_or_nothing(self, ctx, db_session):
        text = (
            "name,email\n"
            "Eve,eve@example.test\n"
            "Bad,not-an-email\n"
        )
        with pytest.raises(ValidationError):
            customer_service.import_customers_csv(ctx, text)
        assert db_session.query(Customer).filter_by(business_id=ctx.business_id).count() == 0

    def test_export_quotes_every_field(self, ctx, customer):
        text = customer_service.export_customers_csv(ctx)
        header, row = text.strip().split("\n")
        assert header.startswith('"name","email"')
        assert row.startswith('"Jane Buyer","jane@example.test"')
        assert '"wholesale"' in row

    def test_export_empty(self, ctx):
        assert customer_service.export_customers_csv(ctx) == ""


def test_interactions_newest_first(ctx, customer):
    first = customer_service.record_interaction(ctx, customer.id, {"kind": "call", "summary": "Asked about prices"})
    second = customer_service.record_interaction(ctx, customer.id, {
        "kind": "visit", "summary": "Picked up order", "follow_up_required": True,
        "follow_up_date": "2030-01-15T09:00:00Z",
    })
    rows = customer_service.list_interactions(ctx, customer.id)
    assert [r.id for r in rows] == [second.id, first.id]
    assert rows[0].user_id == ctx.user_id
    assert rows[0].follow_up_date == datetime(2030, 1, 15, 9, 0)
