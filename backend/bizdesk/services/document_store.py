# Overview: Collection-oriented store API (create/read/update/query/batch/subscribe) over the SQL models.

"""
Document Store Client

Presents every table as a named collection keyed by id, scoped to one
business, with server-assigned timestamps.

Ledger collections (accounts, transactions, inventory_logs,
credit_transactions, sales, returns, audit_logs, receipts) are read-only
here: their counters and logs move only through the ledger services.
Master-data collections expose a field allowlist that never includes a
counter column.

Change notification:
- subscribe(collection, on_change, filters) registers a listener on the app
- after_flush snapshots inserted/updated rows into session.info
- after_commit delivers them; a rolled-back savepoint discards only the
  rows flushed inside it, a full rollback discards everything
- listener errors are logged and never reach the writer
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Callable

from flask import current_app, has_app_context
from sqlalchemy import Boolean, DateTime, Integer, event, inspect
from sqlalchemy.orm import Session
from sqlalchemy.orm.base import NO_VALUE

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    Account,
    Transaction,
    AuditLog,
    Product,
    InventoryLog,
    Customer,
    CreditTransaction,
    CustomerInteraction,
    Sale,
    Receipt,
    Return,
)
from ..validation import (
    ModelValidationPolicy,
    coerce_int,
    validate_payload,
    enforce_rules_customer,
    enforce_rules_product,
)
from bizdesk.time_utils import parse_iso_datetime
from .concurrency import run_in_transaction
from .context import LedgerContext


@dataclass(frozen=True)
class CollectionSpec:
    model: Any
    policy: ModelValidationPolicy | None = None
    allow_create: bool = False
    rules: Callable[[dict], None] | None = None
    unique: tuple[str, ...] = ()


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "address", "notes", "tags", "status", "credit_limit_cents"},
    required_on_create={"name", "email"},
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "category", "unit", "barcode", "cost_cents", "price_cents", "reorder_level", "is_active"},
)

INTERACTION_POLICY = ModelValidationPolicy(
    writable_fields={"customer_id", "kind", "summary", "follow_up_required", "follow_up_date"},
    required_on_create={"customer_id", "kind", "summary"},
)

COLLECTIONS: dict[str, CollectionSpec] = {
    "accounts": CollectionSpec(Account),
    "transactions": CollectionSpec(Transaction),
    "products": CollectionSpec(Product, PRODUCT_POLICY, rules=enforce_rules_product),
    "inventory_logs": CollectionSpec(InventoryLog),
    "customers": CollectionSpec(Customer, CUSTOMER_POLICY, allow_create=True,
                                rules=enforce_rules_customer, unique=("email",)),
    "credit_transactions": CollectionSpec(CreditTransaction),
    "customer_interactions": CollectionSpec(CustomerInteraction, INTERACTION_POLICY, allow_create=True),
    "sales": CollectionSpec(Sale),
    "receipts": CollectionSpec(Receipt),
    "returns": CollectionSpec(Return),
    "audit_logs": CollectionSpec(AuditLog),
}

_TABLE_TO_COLLECTION = {spec.model.__tablename__: name for name, spec in COLLECTIONS.items()}

_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "==": lambda col, v: col == v,
    "!=": lambda col, v: col != v,
    "<": lambda col, v: col < v,
    "<=": lambda col, v: col <= v,
    ">": lambda col, v: col > v,
    ">=": lambda col, v: col >= v,
    "in": lambda col, v: col.in_(list(v)),
}

_PY_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a is not None and a < b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    ">=": lambda a, b: a is not None and a >= b,
    "in": lambda a, b: a in b,
}


def _spec(collection: str) -> CollectionSpec:
    spec = COLLECTIONS.get(collection)
    if spec is None:
        raise ValidationError(f"Unknown collection: {collection}")
    return spec


def _column(model, field: str):
    cols = {c.key: c for c in model.__mapper__.columns}
    if field not in cols:
        raise ValidationError(f"Unknown field: {field}")
    return getattr(model, field)


def _filter_value(column, value):
    """Query-string values arrive as text; convert them to the column type."""
    if not isinstance(value, str):
        return value
    coltype = column.property.columns[0].type
    if isinstance(coltype, Boolean):
        return value.strip().lower() in ("1", "true", "yes")
    if isinstance(coltype, Integer):
        return coerce_int(column.key, value)
    if isinstance(coltype, DateTime):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{column.key} must be an ISO-8601 datetime")
    return value


def _get_owned(ctx: LedgerContext, spec: CollectionSpec, doc_id: int):
    obj = db.session.query(spec.model).filter_by(id=doc_id, business_id=ctx.business_id).first()
    if obj is None:
        raise NotFoundError(f"{spec.model.__name__} {doc_id} not found")
    return obj


def _check_references(ctx: LedgerContext, data: dict) -> None:
    # Referential integrity is caller-enforced: any *_id pointing at a
    # customer must belong to the same business.
    customer_id = data.get("customer_id")
    if customer_id is not None:
        _get_owned(ctx, COLLECTIONS["customers"], customer_id)


def _check_unique(ctx: LedgerContext, spec: CollectionSpec, data: dict, exclude_id: int | None = None) -> None:
    for field in spec.unique:
        value = data.get(field)
        if value is None:
            continue
        q = db.session.query(spec.model.id).filter(
            spec.model.business_id == ctx.business_id,
            getattr(spec.model, field) == value,
        )
        if exclude_id is not None:
            q = q.filter(spec.model.id != exclude_id)
        if q.first() is not None:
            raise ConflictError(f"{spec.model.__name__} with {field} {value!r} already exists")


def create_record(ctx: LedgerContext, collection: str, data: dict):
    spec = _spec(collection)
    if spec.policy is None or not spec.allow_create:
        raise ValidationError(f"Collection {collection} cannot be created through the document store")
    patch = validate_payload(model=spec.model, payload=data, policy=spec.policy, partial=False)
    if spec.rules:
        spec.rules(patch)
    _check_references(ctx, patch)
    _check_unique(ctx, spec, patch)
    obj = spec.model(business_id=ctx.business_id, **patch)
    db.session.add(obj)
    db.session.flush()
    return obj


def update_record(ctx: LedgerContext, collection: str, doc_id: int, patch: dict):
    spec = _spec(collection)
    if spec.policy is None:
        raise ValidationError(f"Collection {collection} is read-only in the document store")
    clean = validate_payload(model=spec.model, payload=patch, policy=spec.policy, partial=True)
    if spec.rules:
        spec.rules(clean)
    _check_references(ctx, clean)
    obj = _get_owned(ctx, spec, doc_id)
    _check_unique(ctx, spec, clean, exclude_id=obj.id)
    if isinstance(obj, Customer) and clean.get("credit_limit_cents"):
        if clean["credit_limit_cents"] < obj.outstanding_balance_cents:
            raise ValidationError(
                "credit_limit_cents cannot be below the outstanding balance",
                details={
                    "customer_id": obj.id,
                    "outstanding_balance_cents": obj.outstanding_balance_cents,
                },
            )
    for key, value in clean.items():
        setattr(obj, key, value)
    if isinstance(obj, Product) and ("reorder_level" in clean):
        obj.low_stock = obj.stock <= obj.reorder_level
    db.session.flush()
    return obj


def create(ctx: LedgerContext, collection: str, data: dict):
    """Insert one record; returns the stored model (id and timestamps assigned)."""
    return run_in_transaction(lambda: create_record(ctx, collection, data))


def read(ctx: LedgerContext, collection: str, doc_id: int):
    """Return the record or None (also None for another business's record)."""
    spec = _spec(collection)
    return db.session.query(spec.model).filter_by(id=doc_id, business_id=ctx.business_id).first()


def update(ctx: LedgerContext, collection: str, doc_id: int, patch: dict):
    return run_in_transaction(lambda: update_record(ctx, collection, doc_id, patch))


def query(
    ctx: LedgerContext,
    collection: str,
    filters: list[tuple[str, str, Any]] | None = None,
    order_by: tuple[str, str] | None = None,
    limit: int | None = None,
) -> list:
    """
    Filtered listing. filters are (field, op, value) triples; order_by is
    (field, "asc"|"desc"); ties are broken by id for stable output.
    """
    spec = _spec(collection)
    model = spec.model
    q = db.session.query(model).filter(model.business_id == ctx.business_id)

    for field, op, value in filters or []:
        fn = _OPERATORS.get(op)
        if fn is None:
            raise ValidationError(f"Unsupported filter operator: {op}")
        column = _column(model, field)
        q = q.filter(fn(column, _filter_value(column, value)))

    if order_by:
        field, direction = order_by
        col = _column(model, field)
        q = q.order_by(col.desc() if direction == "desc" else col.asc(), model.id.asc())
    else:
        q = q.order_by(model.id.asc())

    if limit:
        q = q.limit(limit)
    return q.all()


def batch_write(ctx: LedgerContext, ops: list[dict]) -> list:
    """
    Apply many create/update ops all-or-nothing.

    Each op is {"op": "create", "collection": ..., "data": {...}} or
    {"op": "update", "collection": ..., "id": ..., "data": {...}}.
    """
    def _op():
        results = []
        for i, op in enumerate(ops):
            kind = op.get("op")
            try:
                if kind == "create":
                    results.append(create_record(ctx, op["collection"], op.get("data") or {}))
                elif kind == "update":
                    results.append(update_record(ctx, op["collection"], op["id"], op.get("data") or {}))
                else:
                    raise ValidationError(f"Unsupported batch op: {kind}")
            except KeyError as exc:
                raise ValidationError(f"Batch op {i} missing {exc.args[0]}", details={"index": i})
            except ValidationError as exc:
                exc.details.setdefault("index", i)
                raise
        return results

    return run_in_transaction(_op)


# =============================================================================
# CHANGE NOTIFICATION
# =============================================================================

def _registry() -> dict[str, dict]:
    return current_app.extensions.setdefault("bizdesk.subscriptions", {})


def subscribe(
    collection: str,
    on_change: Callable[[list[dict]], None],
    filters: list[tuple[str, str, Any]] | None = None,
) -> Callable[[], None]:
    """
    Register `on_change(records)` for committed inserts/updates to a
    collection. Returns a callable that removes the subscription.
    """
    _spec(collection)
    for _field, op, _value in filters or []:
        if op not in _PY_OPERATORS:
            raise ValidationError(f"Unsupported filter operator: {op}")

    registry = _registry()
    key = uuid.uuid4().hex
    registry[key] = {"collection": collection, "filters": list(filters or []), "callback": on_change}

    def unsubscribe() -> None:
        registry.pop(key, None)

    return unsubscribe


def _snapshot(obj) -> dict:
    state = inspect(obj)
    data = {}
    for attr in state.mapper.column_attrs:
        value = state.attrs[attr.key].loaded_value
        if value is not NO_VALUE:
            data[attr.key] = value
    return data


def _matches(record: dict, filters: list) -> bool:
    return all(_PY_OPERATORS[op](record.get(field), value) for field, op, value in filters)


@event.listens_for(Session, "after_flush")
def _collect_changes(session, flush_context):
    if not has_app_context() or not current_app.extensions.get("bizdesk.subscriptions"):
        return
    pending = session.info.setdefault("bizdesk.changes", [])
    for obj in list(session.new) + list(session.dirty):
        table = getattr(obj, "__tablename__", None)
        collection = _TABLE_TO_COLLECTION.get(table)
        if collection:
            pending.append((collection, _snapshot(obj)))


@event.listens_for(Session, "after_commit")
def _dispatch_changes(session):
    session.info.pop("bizdesk.savepoints", None)
    pending = session.info.pop("bizdesk.changes", None)
    if not pending or not has_app_context():
        return
    for sub in list(_registry().values()):
        records = [
            rec for collection, rec in pending
            if collection == sub["collection"] and _matches(rec, sub["filters"])
        ]
        if not records:
            continue
        try:
            sub["callback"](records)
        except Exception:
            current_app.logger.exception("Subscriber for %s failed", sub["collection"])


@event.listens_for(Session, "after_transaction_create")
def _mark_savepoint(session, transaction):
    if transaction.nested:
        marks = session.info.setdefault("bizdesk.savepoints", {})
        marks[transaction] = len(session.info.get("bizdesk.changes", ()))


@event.listens_for(Session, "after_soft_rollback")
def _discard_changes(session, previous_transaction):
    marks = session.info.get("bizdesk.savepoints", {})
    if previous_transaction.nested:
        mark = marks.pop(previous_transaction, 0)
        pending = session.info.get("bizdesk.changes")
        if pending is not None:
            # Only rows flushed inside the rolled-back savepoint
            del pending[mark:]
        return
    session.info.pop("bizdesk.changes", None)
    session.info.pop("bizdesk.savepoints", None)
