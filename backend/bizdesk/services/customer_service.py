# Overview: Service-layer operations for customers, credit and CRM data.

"""
Customer Credit Invariants (authoritative)

- outstanding_balance_cents >= 0 always; decrease/payment clamp at 0.
- When credit_limit_cents > 0 the balance never exceeds it
  (CreditLimitExceededError, nothing written). 0 means unlimited.
- credit_used_cents mirrors outstanding_balance_cents after every move.
- Every balance move appends one CreditTransaction with before/after.
"""

from __future__ import annotations

import csv
import io
from datetime import datetime

from ..errors import CreditLimitExceededError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CreditTransaction, Customer, CustomerInteraction
from bizdesk.time_utils import months_between, utcnow
from ..validation import CUSTOMER_STATUSES, require_positive_amount
from . import document_store
from .audit_service import audit_log
from .concurrency import lock_for_update, run_in_transaction
from .context import LedgerContext


CREDIT_TYPES = ("increase", "decrease", "payment")

SEGMENTS = ("New", "One-time", "Repeat", "Loyal", "VIP")

CSV_COLUMNS = [
    "name", "email", "phone", "address", "tags", "total_purchases",
    "total_spent_cents", "outstanding_balance_cents", "credit_limit_cents",
    "status", "customer_since",
]

# Columns a CSV import may set; counters only move through the ledger
_IMPORTABLE = ("name", "email", "phone", "address", "notes", "tags", "status", "credit_limit_cents")

SORTABLE_FIELDS = (
    "name", "email", "total_purchases", "total_spent_cents",
    "outstanding_balance_cents", "last_purchase_at", "customer_since",
)


def get_customer(ctx: LedgerContext, customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id, business_id=ctx.business_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def create_customer(ctx: LedgerContext, data: dict) -> Customer:
    def _op():
        customer = document_store.create_record(ctx, "customers", data)
        audit_log(ctx, entity="customer", entity_id=customer.id, action="create",
                  payload={"name": customer.name, "email": customer.email})
        return customer

    return run_in_transaction(_op)


def update_customer(ctx: LedgerContext, customer_id: int, data: dict) -> Customer:
    """Contact and CRM fields only; balances and purchase stats are ledger-owned."""
    return document_store.update(ctx, "customers", customer_id, data)


# =============================================================================
# CREDIT
# =============================================================================

def _update_credit_locked(
    ctx: LedgerContext,
    customer_id: int,
    amount_cents,
    type: str,
    reference: str | None,
) -> int:
    if type not in CREDIT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(CREDIT_TYPES)}")
    amount = require_positive_amount(amount_cents)

    customer = get_customer(ctx, customer_id, lock=True)
    previous = customer.outstanding_balance_cents
    if type == "increase":
        new_balance = previous + amount
    else:
        new_balance = max(0, previous - amount)

    if customer.credit_limit_cents > 0 and new_balance > customer.credit_limit_cents:
        raise CreditLimitExceededError(
            "Credit limit exceeded",
            details={
                "customer_id": customer.id,
                "credit_limit_cents": customer.credit_limit_cents,
                "requested_balance_cents": new_balance,
            },
        )

    customer.outstanding_balance_cents = new_balance
    customer.credit_used_cents = new_balance
    customer.last_credit_update_at = utcnow()

    db.session.add(CreditTransaction(
        business_id=ctx.business_id,
        customer_id=customer.id,
        type=type,
        amount_cents=amount,
        previous_balance_cents=previous,
        new_balance_cents=new_balance,
        reference=reference,
        user_id=ctx.user_id,
    ))
    db.session.flush()
    return new_balance


def update_customer_credit(
    ctx: LedgerContext,
    customer_id: int,
    amount_cents: int,
    type: str = "increase",
    reference: str | None = None,
    *,
    commit: bool = True,
) -> int:
    """
    Move a customer's outstanding balance and log the move. Returns the new balance.

    increase: balance += amount (checked against a positive credit limit)
    decrease / payment: balance -= amount, clamped at 0
    """
    def _op():
        return _update_credit_locked(ctx, customer_id, amount_cents, type, reference)

    if not commit:
        return _op()
    return run_in_transaction(_op)


def list_credit_transactions(ctx: LedgerContext, customer_id: int) -> list[CreditTransaction]:
    get_customer(ctx, customer_id)
    return (
        db.session.query(CreditTransaction)
        .filter_by(business_id=ctx.business_id, customer_id=customer_id)
        .order_by(CreditTransaction.id.asc())
        .all()
    )


def record_purchase_stats(ctx: LedgerContext, customer_id: int, amount_cents: int,
                          *, when: datetime | None = None) -> Customer:
    """Bump purchase aggregates after a completed sale (caller's transaction, no commit)."""
    customer = get_customer(ctx, customer_id, lock=True)
    when = when or utcnow()
    customer.total_purchases = customer.total_purchases + 1
    customer.total_spent_cents = customer.total_spent_cents + amount_cents
    customer.last_purchase_at = when
    if customer.first_purchase_at is None:
        customer.first_purchase_at = when
    customer.credit_used_cents = customer.outstanding_balance_cents
    db.session.flush()
    return customer


# =============================================================================
# SEGMENTATION
# =============================================================================

def lifetime_value_cents(customer: Customer, now: datetime | None = None) -> int:
    """Average monthly spend since first purchase, projected over 12 months."""
    if customer.first_purchase_at is None:
        return 0
    months = months_between(customer.first_purchase_at, now or utcnow())
    return (customer.total_spent_cents * 12) // months


def customer_segment(customer: Customer, clv_cents: int) -> str:
    purchases = customer.total_purchases
    if purchases == 0:
        return "New"
    if clv_cents > 100_000 and purchases > 10:
        return "VIP"
    if clv_cents > 50_000 and purchases > 5:
        return "Loyal"
    if purchases > 1:
        return "Repeat"
    return "One-time"


# =============================================================================
# SEARCH
# =============================================================================

def search_customers(ctx: LedgerContext, query: str | None = None, filters: dict | None = None) -> list[Customer]:
    """
    Free-text search (every term must appear in name/email/phone/address/notes)
    plus filters: tags (any), min_balance_cents, max_balance_cents, status,
    segment, sort_by, sort_order.
    """
    filters = filters or {}
    q = db.session.query(Customer).filter(Customer.business_id == ctx.business_id)

    status = filters.get("status")
    if status:
        if status not in CUSTOMER_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(CUSTOMER_STATUSES)}")
        q = q.filter(Customer.status == status)
    if filters.get("min_balance_cents") is not None:
        q = q.filter(Customer.outstanding_balance_cents >= int(filters["min_balance_cents"]))
    if filters.get("max_balance_cents") is not None:
        q = q.filter(Customer.outstanding_balance_cents <= int(filters["max_balance_cents"]))

    results = q.all()

    if query:
        terms = query.lower().split()

        def _searchable(c: Customer) -> str:
            return " ".join(v or "" for v in (c.name, c.email, c.phone, c.address, c.notes)).lower()

        results = [c for c in results if all(t in _searchable(c) for t in terms)]

    tags = filters.get("tags")
    if tags:
        results = [c for c in results if any(t in (c.tags or []) for t in tags)]

    segment = filters.get("segment")
    if segment:
        if segment not in SEGMENTS:
            raise ValidationError(f"segment must be one of: {', '.join(SEGMENTS)}")
        now = utcnow()
        results = [c for c in results if customer_segment(c, lifetime_value_cents(c, now)) == segment]

    sort_by = filters.get("sort_by") or "name"
    if sort_by not in SORTABLE_FIELDS:
        raise ValidationError(f"sort_by must be one of: {', '.join(SORTABLE_FIELDS)}")
    reverse = filters.get("sort_order") == "desc"

    def _key(c: Customer):
        value = getattr(c, sort_by)
        if value is None:
            value = datetime.min if sort_by in ("last_purchase_at", "customer_since") else ""
        return (value, c.id)

    return sorted(results, key=_key, reverse=reverse)


# =============================================================================
# IMPORT / EXPORT
# =============================================================================

def _parse_import_row(row: dict) -> dict:
    data: dict = {}
    for key in _IMPORTABLE:
        raw = (row.get(key) or "").strip()
        if not raw:
            continue
        if key == "tags":
            data[key] = [t.strip() for t in raw.split(";") if t.strip()]
        else:
            data[key] = raw
    return data


def import_customers_csv(ctx: LedgerContext, text: str) -> list[Customer]:
    """
    Import customers from CSV text with a header row.

    Rows without an email are skipped. Tags are ';'-separated. Counter
    columns (purchases, spend, balance) are ignored. The whole file is
    written in one batch: any invalid row rejects the import.
    """
    reader = csv.DictReader(io.StringIO(text or ""))
    if not reader.fieldnames:
        raise ValidationError("CSV is empty")

    ops = []
    for row in reader:
        data = _parse_import_row({(k or "").strip(): v for k, v in row.items()})
        if not data.get("email"):
            continue
        ops.append({"op": "create", "collection": "customers", "data": data})

    if not ops:
        return []
    return document_store.batch_write(ctx, ops)


def export_customers_csv(ctx: LedgerContext) -> str:
    customers = (
        db.session.query(Customer)
        .filter_by(business_id=ctx.business_id)
        .order_by(Customer.id.asc())
        .all()
    )
    if not customers:
        return ""

    out = io.StringIO()
    writer = csv.writer(out, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for c in customers:
        row = c.to_dict()
        row["tags"] = ";".join(row["tags"])
        writer.writerow(["" if row.get(col) is None else row[col] for col in CSV_COLUMNS])
    return out.getvalue()


# =============================================================================
# INTERACTIONS
# =============================================================================

def record_interaction(ctx: LedgerContext, customer_id: int, data: dict) -> CustomerInteraction:
    payload = dict(data or {})
    payload["customer_id"] = customer_id

    def _op():
        interaction = document_store.create_record(ctx, "customer_interactions", payload)
        interaction.user_id = ctx.user_id
        db.session.flush()
        return interaction

    return run_in_transaction(_op)


def list_interactions(ctx: LedgerContext, customer_id: int, limit: int = 50) -> list[CustomerInteraction]:
    get_customer(ctx, customer_id)
    return (
        db.session.query(CustomerInteraction)
        .filter_by(business_id=ctx.business_id, customer_id=customer_id)
        .order_by(CustomerInteraction.occurred_at.desc(), CustomerInteraction.id.desc())
        .limit(limit)
        .all()
    )
