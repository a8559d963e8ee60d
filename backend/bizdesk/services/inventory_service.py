# Overview: Service-layer operations for products and stock; encapsulates business logic and database work.

"""
Inventory Invariants (authoritative)

- Product.stock is a running counter: stock == SUM(InventoryLog.quantity_change)
  for the product since creation. The initial stock is itself logged with
  reason 'initial'.
- Stock may never go negative. A change that would drive it below zero
  raises InsufficientStockError and writes nothing.
- Every successful update_stock appends exactly one InventoryLog with
  new_stock - previous_stock == quantity_change.
- low_stock is derived: stock <= reorder_level.

Concurrency:
- The product row is read FOR UPDATE and its version_id is checked on
  UPDATE. A lost race surfaces as StaleDataError and the whole operation
  is retried by run_with_retry.
"""

from __future__ import annotations

from ..errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryLog, Product
from bizdesk.time_utils import utcnow
from ..validation import (
    ModelValidationPolicy,
    coerce_int,
    enforce_rules_product,
    validate_payload,
)
from . import document_store
from .audit_service import audit_log
from .concurrency import lock_for_update, run_in_transaction
from .context import LedgerContext


PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "category", "unit", "barcode",
        "cost_cents", "price_cents", "stock", "reorder_level",
    },
    required_on_create={"sku", "name", "price_cents"},
)

STOCK_REASONS = ("initial", "sale", "return", "restock", "adjustment")


def get_product(ctx: LedgerContext, product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id, business_id=ctx.business_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def list_products(ctx: LedgerContext, *, include_inactive: bool = False) -> list[Product]:
    q = db.session.query(Product).filter_by(business_id=ctx.business_id)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def create_product(ctx: LedgerContext, data: dict) -> Product:
    """
    Create a product and log its opening stock.

    Defaults: reorder_level 10, category "General", unit "pcs".
    """
    def _op():
        patch = validate_payload(model=Product, payload=data, policy=PRODUCT_CREATE_POLICY, partial=False)
        enforce_rules_product(patch)

        exists = db.session.query(Product.id).filter_by(business_id=ctx.business_id, sku=patch["sku"]).first()
        if exists is not None:
            raise ConflictError(f"Product with sku {patch['sku']!r} already exists")

        initial_stock = patch.pop("stock", None) or 0
        product = Product(business_id=ctx.business_id, stock=initial_stock, **patch)
        product.low_stock = product.stock <= (product.reorder_level if product.reorder_level is not None else 10)
        db.session.add(product)
        db.session.flush()

        db.session.add(InventoryLog(
            business_id=ctx.business_id,
            product_id=product.id,
            quantity_change=initial_stock,
            previous_stock=0,
            new_stock=initial_stock,
            reason="initial",
            user_id=ctx.user_id,
        ))
        if initial_stock:
            product.last_restocked_at = utcnow()
        db.session.flush()

        audit_log(ctx, entity="product", entity_id=product.id, action="create",
                  payload={"sku": product.sku, "stock": initial_stock})
        return product

    return run_in_transaction(_op)


def update_product(ctx: LedgerContext, product_id: int, data: dict) -> Product:
    """Master-data update; stock and sales counters are not writable here."""
    return document_store.update(ctx, "products", product_id, data)


def _update_stock_locked(
    ctx: LedgerContext,
    product_id: int,
    quantity_change,
    reason: str,
    reference: str | None,
) -> Product:
    change = coerce_int("quantity_change", quantity_change)
    if change == 0:
        raise ValidationError("quantity_change must not be zero")
    if reason not in STOCK_REASONS:
        raise ValidationError(f"reason must be one of: {', '.join(STOCK_REASONS)}")

    product = get_product(ctx, product_id, lock=True)
    previous = product.stock
    new_stock = previous + change
    if new_stock < 0:
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}",
            details={"product_id": product.id, "available": previous, "requested": -change},
        )

    product.stock = new_stock
    product.low_stock = new_stock <= product.reorder_level
    if reason == "restock":
        product.last_restocked_at = utcnow()

    db.session.add(InventoryLog(
        business_id=ctx.business_id,
        product_id=product.id,
        quantity_change=change,
        previous_stock=previous,
        new_stock=new_stock,
        reason=reason,
        reference=reference,
        user_id=ctx.user_id,
    ))
    db.session.flush()
    return product


def update_stock(
    ctx: LedgerContext,
    product_id: int,
    quantity_change: int,
    reason: str,
    reference: str | None = None,
    *,
    commit: bool = True,
) -> int:
    """
    Apply a signed stock delta and log it. Returns the new stock.

    Raises:
        ValidationError: zero or non-integer change, unknown reason
        NotFoundError: product not in this business
        InsufficientStockError: stock would go negative (nothing written)
    """
    def _op():
        return _update_stock_locked(ctx, product_id, quantity_change, reason, reference).stock

    if not commit:
        return _op()
    return run_in_transaction(_op)


def restock_product(ctx: LedgerContext, product_id: int, quantity, reference: str | None = None) -> Product:
    qty = coerce_int("quantity", quantity)
    if qty <= 0:
        raise ValidationError("quantity must be > 0")

    def _op():
        product = _update_stock_locked(ctx, product_id, qty, "restock", reference)
        audit_log(ctx, entity="product", entity_id=product.id, action="restock",
                  payload={"quantity": qty, "reference": reference})
        return product

    return run_in_transaction(_op)


def list_inventory_logs(ctx: LedgerContext, product_id: int, limit: int | None = None) -> list[InventoryLog]:
    """Oldest first, so the rows replay into the current stock."""
    get_product(ctx, product_id)
    q = (
        db.session.query(InventoryLog)
        .filter_by(business_id=ctx.business_id, product_id=product_id)
        .order_by(InventoryLog.id.asc())
    )
    if limit:
        q = q.limit(limit)
    return q.all()


def low_stock_products(ctx: LedgerContext) -> list[Product]:
    return (
        db.session.query(Product)
        .filter(
            Product.business_id == ctx.business_id,
            Product.is_active.is_(True),
            Product.stock <= Product.reorder_level,
        )
        .order_by(Product.stock.asc(), Product.id.asc())
        .all()
    )
