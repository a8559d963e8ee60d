# Overview: Return workflow against completed sales.

"""
Return Policy (authoritative)

- Every returned product must appear on the original sale.
- Cumulative returned quantity per product never exceeds the quantity sold
  on that sale (across all earlier returns). This also makes replaying the
  same return a validation error once the sale is fully returned.
- refund = SUM(sale line unit price * returned quantity), tax excluded.
- The refund is one expense Transaction ("Returns & Refunds") against the
  account that received the original payment; stock goes back with one
  'return' InventoryLog per product. Everything commits together.
- Sale.status: completed -> partially_returned -> returned.
"""

from __future__ import annotations

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import Account, Return, ReturnLine, Sale, Transaction
from ..validation import coerce_int
from .audit_service import audit_log
from .concurrency import run_in_transaction
from .context import LedgerContext
from .document_service import make_reference, next_document_number
from .finance_service import record_transaction
from .inventory_service import get_product, update_stock
from .pos_service import get_sale, resolve_payment_account


def _sold_quantities(sale: Sale) -> dict[int, dict]:
    sold: dict[int, dict] = {}
    for line in sale.lines:
        entry = sold.setdefault(line.product_id, {"quantity": 0, "unit_price_cents": line.unit_price_cents})
        entry["quantity"] += line.quantity
    return sold


def returned_quantities(sale: Sale) -> dict[int, int]:
    returned: dict[int, int] = {}
    for ret in sale.returns:
        for line in ret.lines:
            returned[line.product_id] = returned.get(line.product_id, 0) + line.quantity
    return returned


def _normalize_items(items: list[dict]) -> dict[int, int]:
    if not items:
        raise ValidationError("At least one return item is required")
    requested: dict[int, int] = {}
    for i, item in enumerate(items):
        if not isinstance(item, dict) or "product_id" not in item:
            raise ValidationError(f"Return item {i} missing product_id", details={"index": i})
        product_id = coerce_int("product_id", item["product_id"])
        qty = coerce_int("quantity", item.get("quantity"))
        if qty <= 0:
            raise ValidationError("quantity must be > 0", details={"index": i})
        requested[product_id] = requested.get(product_id, 0) + qty
    return requested


def _refund_account(ctx: LedgerContext, sale: Sale) -> Account:
    if sale.payment_transaction_id is not None:
        txn = db.session.get(Transaction, sale.payment_transaction_id)
        if txn is not None:
            account = db.session.query(Account).filter_by(id=txn.account_id, business_id=ctx.business_id).first()
            if account is not None:
                return account
    return resolve_payment_account(ctx, sale.payment_method)


def _process_return_locked(ctx: LedgerContext, sale_id: int, items: list[dict], reason: str) -> Return:
    requested = _normalize_items(items)
    sale = get_sale(ctx, sale_id, lock=True)

    sold = _sold_quantities(sale)
    already = returned_quantities(sale)

    for product_id, qty in requested.items():
        if product_id not in sold:
            raise ValidationError(
                f"Product {product_id} is not on sale {sale.document_number}",
                details={"product_id": product_id},
            )
        remaining = sold[product_id]["quantity"] - already.get(product_id, 0)
        if qty > remaining:
            raise ValidationError(
                "Return quantity exceeds quantity sold",
                details={"product_id": product_id, "requested": qty, "returnable": remaining},
            )

    refund = sum(sold[pid]["unit_price_cents"] * qty for pid, qty in requested.items())
    document_number = next_document_number(business_id=ctx.business_id, document_type="RETURN", prefix="R")

    refund_txn = None
    if refund > 0:
        refund_txn = record_transaction(
            ctx,
            type="expense",
            amount_cents=refund,
            account_id=_refund_account(ctx, sale).id,
            category="Returns & Refunds",
            description=f"Refund for sale {sale.document_number}: {reason}",
            reference=make_reference("REF"),
            commit=False,
        )

    ret = Return(
        business_id=ctx.business_id,
        document_number=document_number,
        sale_id=sale.id,
        refund_amount_cents=refund,
        refund_transaction_id=refund_txn.id if refund_txn else None,
        reason=reason,
        processed_by_user_id=ctx.user_id,
    )
    db.session.add(ret)

    for product_id, qty in sorted(requested.items()):
        unit_price = sold[product_id]["unit_price_cents"]
        ret.lines.append(ReturnLine(
            product_id=product_id,
            quantity=qty,
            unit_price_cents=unit_price,
            line_refund_cents=unit_price * qty,
        ))
        update_stock(ctx, product_id, qty, "return", document_number, commit=False)
        product = get_product(ctx, product_id)
        product.total_sold = product.total_sold - qty
        product.total_revenue_cents = product.total_revenue_cents - unit_price * qty

    db.session.flush()

    fully_returned = all(
        already.get(pid, 0) + requested.get(pid, 0) >= entry["quantity"]
        for pid, entry in sold.items()
    )
    sale.status = "returned" if fully_returned else "partially_returned"
    db.session.flush()

    audit_log(ctx, entity="return", entity_id=ret.id, action="create", payload={
        "sale_id": sale.id,
        "document_number": document_number,
        "refund_amount_cents": refund,
        "items": [{"product_id": pid, "quantity": qty} for pid, qty in sorted(requested.items())],
    })
    return ret


def process_return(ctx: LedgerContext, sale_id: int, items: list[dict], reason: str = "customer return") -> Return:
    """
    Return items from a sale: refund, restock and record the return in one commit.

    Raises:
        NotFoundError: sale not in this business
        ValidationError: empty items, product not on the sale, or over-return
    """
    ret = run_in_transaction(lambda: _process_return_locked(ctx, sale_id, items, reason or "customer return"))
    current_app.logger.info(
        "Return %s processed: business=%s sale=%s refund_cents=%s",
        ret.document_number, ctx.business_id, sale_id, ret.refund_amount_cents,
    )
    return ret


def list_returns(ctx: LedgerContext, sale_id: int | None = None) -> list[Return]:
    q = db.session.query(Return).filter_by(business_id=ctx.business_id)
    if sale_id is not None:
        q = q.filter_by(sale_id=sale_id)
    return q.order_by(Return.id.asc()).all()
