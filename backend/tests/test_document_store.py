# Overview: Pytest coverage for the collection-oriented store API and change notification.

import pytest

from bizdesk.errors import ValidationError
from bizdesk.extensions import db
from bizdesk.services import document_store, finance_service, inventory_service
from bizdesk.services.concurrency import run_in_transaction


def test_create_assigns_id_and_timestamps(ctx):
    record = document_store.create(ctx, "customers", {"name": "Kim", "email": "KIM@Example.test"})
    assert record.id is not None
    assert record.customer_since is not None
    assert record.email == "kim@example.test"
    assert record.business_id == ctx.business_id


def test_read_is_scoped_to_business(ctx, other_ctx, customer):
    assert document_store.read(ctx, "customers", customer.id).id == customer.id
    assert document_store.read(other_ctx, "customers", customer.id) is None


def test_ledger_collections_are_read_only(ctx, cash_account):
    with pytest.raises(ValidationError):
        document_store.create(ctx, "transactions", {"type": "income"})
    with pytest.raises(ValidationError):
        document_store.update(ctx, "accounts", cash_account.id, {"balance_cents": 1})


def test_unknown_collection(ctx):
    with pytest.raises(ValidationError):
        document_store.query(ctx, "suppliers")


def test_query_filters_and_ordering(ctx):
    for sku, price in (("A", 300), ("B", 100), ("C", 200)):
        inventory_service.create_product(ctx, {"sku": sku, "name": f"Item {sku}", "price_cents": price})

    cheap_first = document_store.query(ctx, "products", order_by=("price_cents", "asc"))
    assert [p.sku for p in cheap_first] == ["B", "C", "A"]

    over_150 = document_store.query(ctx, "products", filters=[("price_cents", ">", 150)],
                                    order_by=("price_cents", "desc"), limit=1)
    assert [p.sku for p in over_150] == ["A"]

    text_value = document_store.query(ctx, "products", filters=[("price_cents", "==", "100")])
    assert [p.sku for p in text_value] == ["B"]


def test_query_rejects_unknown_field_and_operator(ctx):
    with pytest.raises(ValidationError):
        document_store.query(ctx, "products", filters=[("secret", "==", 1)])
    with pytest.raises(ValidationError):
        document_store.query(ctx, "products", filters=[("price_cents", "~", 1)])


def test_batch_write_is_all_or_nothing(ctx):
    ops = [
        {"op": "create", "collection": "customers", "data": {"name": "One", "email": "one@example.test"}},
        {"op": "create", "collection": "customers", "data": {"name": "Two"}},
    ]
    with pytest.raises(ValidationError) as exc:
        document_store.batch_write(ctx, ops)
    assert exc.value.details["index"] == 1
    assert document_store.query(ctx, "customers") == []


def test_subscribers_see_committed_changes_only(app, ctx, cash_account):
    received = []
    unsubscribe = document_store.subscribe(
        "accounts", received.extend, filters=[("id", "==", cash_account.id)],
    )
    try:
        finance_service.record_transaction(ctx, type="income", amount_cents=400,
                                           account_id=cash_account.id, category="Sales")
        assert received and received[-1]["balance_cents"] == 400

        count = len(received)
        with pytest.raises(ValidationError):
            finance_service.record_transaction(ctx, type="income", amount_cents=-1,
                                               account_id=cash_account.id, category="Sales")
        assert len(received) == count
    finally:
        unsubscribe()


def test_failing_subscriber_does_not_break_writer(ctx, cash_account):
    def boom(records):
        raise RuntimeError("listener failed")

    unsubscribe = document_store.subscribe("transactions", boom)
    try:
        txn = finance_service.record_transaction(ctx, type="income", amount_cents=100,
                                                 account_id=cash_account.id, category="Sales")
        assert txn.id is not None
    finally:
        unsubscribe()


def test_rolled_back_savepoint_is_not_delivered(ctx):
    received = []
    unsubscribe = document_store.subscribe("customers", received.extend)

    def _op():
        document_store.create_record(ctx, "customers", {"name": "Kept", "email": "kept@example.test"})
        with pytest.raises(ValidationError):
            with db.session.begin_nested():
                document_store.create_record(ctx, "customers", {"name": "Dropped", "email": "dropped@example.test"})
                raise ValidationError("abandon this part")

    try:
        run_in_transaction(_op)
        assert [r["name"] for r in received] == ["Kept"]
        assert [c.name for c in document_store.query(ctx, "customers")] == ["Kept"]
    finally:
        unsubscribe()
