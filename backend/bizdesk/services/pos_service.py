# Overview: Point-of-sale cart, checkout workflow, receipts and sales reporting.

"""
Checkout Workflow (authoritative)

A sale is one DB transaction. Inside it, in order:
  1. payment: credit sales raise the customer's balance; every sale
     records one income Transaction against the resolved payment account
  2. Sale + SaleLine snapshots (document number S-000001, ...)
  3. one stock decrement per line (InsufficientStockError aborts all)
  4. product sales counters and customer purchase stats
  5. receipt
Any failure rolls every step back. The in-memory cart is cleared only
after the commit succeeds.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import (
    CreditLimitExceededError,
    EmptyCartError,
    InsufficientStockError,
    NotFoundError,
    UnsupportedPaymentMethodError,
    ValidationError,
)
from ..extensions import db
from ..models import Account, Business, Customer, Receipt, Sale, SaleLine, User
from bizdesk.time_utils import to_utc_z, utcnow
from ..validation import coerce_int
from .audit_service import audit_log
from .concurrency import lock_for_update, run_in_transaction
from .context import LedgerContext
from .customer_service import get_customer, record_purchase_stats, update_customer_credit
from .document_service import make_reference, next_document_number
from .finance_service import calculate_tax, list_accounts, record_transaction
from .inventory_service import get_product, update_stock


PAYMENT_METHODS = ("Cash", "Card", "Mobile Money", "Bank Transfer", "Credit")

# Name keyword used to pick the account that receives each payment method
_ACCOUNT_KEYWORDS = {
    "Cash": "cash",
    "Card": "bank",
    "Bank Transfer": "bank",
    "Mobile Money": "mobile",
}

WALK_IN = "Walk-in Customer"


# =============================================================================
# CART
# =============================================================================

@dataclass
class CartLine:
    product_id: int
    sku: str
    name: str
    unit: str
    unit_price_cents: int
    unit_cost_cents: int
    quantity: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "unit": self.unit,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
        }


@dataclass
class Cart:
    """
    A caller-owned shopping cart. Nothing here touches the database; the
    cart only becomes durable through checkout().
    """
    tax_rate_bps: int = 0
    tax_inclusive: bool = False
    customer_id: int | None = None
    discount_cents: int = 0
    lines: list[CartLine] = field(default_factory=list)

    @classmethod
    def for_business(cls, business: Business) -> "Cart":
        return cls(tax_rate_bps=business.tax_rate_bps, tax_inclusive=business.tax_inclusive)

    def find(self, product_id: int) -> CartLine | None:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def to_dict(self) -> dict:
        return {
            "customer_id": self.customer_id,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_inclusive": self.tax_inclusive,
            "items": [line.to_dict() for line in self.lines],
            "summary": cart_summary(self).to_dict(),
        }


@dataclass(frozen=True)
class CartSummary:
    subtotal_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int
    item_count: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "item_count": self.item_count,
        }


def new_cart(ctx: LedgerContext) -> Cart:
    business = db.session.get(Business, ctx.business_id)
    if business is None:
        raise NotFoundError("Business not found")
    return Cart.for_business(business)


def line_discounts(cart: Cart) -> list[int]:
    """
    Split the cart discount across lines in proportion to their totals.
    Leftover cents go to the first lines; the discount never exceeds the subtotal.
    """
    totals = [line.line_total_cents for line in cart.lines]
    subtotal = sum(totals)
    discount = min(cart.discount_cents or 0, subtotal)
    if not discount:
        return [0] * len(totals)
    shares = [discount * t // subtotal for t in totals]
    leftover = discount - sum(shares)
    for i, t in enumerate(totals):
        if not leftover:
            break
        if shares[i] < t:
            shares[i] += 1
            leftover -= 1
    return shares


def line_tax_cents(cart: Cart, line: CartLine, discount_cents: int = 0) -> int:
    """Tax on the line after its share of the cart discount."""
    return calculate_tax(line.line_total_cents - discount_cents, cart.tax_rate_bps, cart.tax_inclusive).tax_cents


def cart_summary(cart: Cart) -> CartSummary:
    """
    Tax is computed per line on the discounted line amount and summed.
    With inclusive pricing the tax is already inside the subtotal.
    """
    subtotal = sum(line.line_total_cents for line in cart.lines)
    discounts = line_discounts(cart)
    tax = sum(line_tax_cents(cart, line, d) for line, d in zip(cart.lines, discounts))
    items = sum(line.quantity for line in cart.lines)
    discount = sum(discounts)
    total = subtotal - discount if cart.tax_inclusive else subtotal - discount + tax
    return CartSummary(
        subtotal_cents=subtotal,
        tax_cents=tax,
        discount_cents=discount,
        total_cents=total,
        item_count=items,
    )


def _require_stock(product, wanted: int) -> None:
    if product.stock < wanted:
        raise InsufficientStockError(
            f"Insufficient stock. Available: {product.stock}",
            details={"product_id": product.id, "available": product.stock, "requested": wanted},
        )


def add_to_cart(ctx: LedgerContext, cart: Cart, product_id: int, quantity=1) -> Cart:
    """Add a product (merging with an existing line); the stock must cover the merged quantity."""
    qty = coerce_int("quantity", quantity)
    if qty <= 0:
        raise ValidationError("quantity must be > 0")

    product = get_product(ctx, product_id)
    if not product.is_active:
        raise ValidationError(f"Product {product.name} is inactive")

    existing = cart.find(product.id)
    wanted = qty + (existing.quantity if existing else 0)
    _require_stock(product, wanted)

    if existing:
        existing.quantity = wanted
    else:
        cart.lines.append(CartLine(
            product_id=product.id,
            sku=product.sku,
            name=product.name,
            unit=product.unit,
            unit_price_cents=product.price_cents,
            unit_cost_cents=product.cost_cents,
            quantity=qty,
        ))
    return cart


def remove_from_cart(cart: Cart, product_id: int, quantity: int | None = None) -> Cart:
    """Drop `quantity` units, or the whole line when quantity is omitted or covers it."""
    qty = None
    if quantity is not None:
        qty = coerce_int("quantity", quantity)
        if qty <= 0:
            raise ValidationError("quantity must be > 0")
    line = cart.find(product_id)
    if line is None:
        return cart
    if qty is not None and line.quantity > qty:
        line.quantity -= qty
    else:
        cart.lines.remove(line)
    return cart


def set_quantity(ctx: LedgerContext, cart: Cart, product_id: int, quantity) -> Cart:
    """Replace a line's quantity (<= 0 removes it); the stock must cover the new quantity."""
    qty = coerce_int("quantity", quantity)
    line = cart.find(product_id)
    if line is None:
        return cart
    if qty <= 0:
        cart.lines.remove(line)
        return cart
    _require_stock(get_product(ctx, product_id), qty)
    line.quantity = qty
    return cart


def set_customer(ctx: LedgerContext, cart: Cart, customer_id: int | None) -> Cart:
    if customer_id is not None:
        get_customer(ctx, customer_id)
    cart.customer_id = customer_id
    return cart


def apply_discount(cart: Cart, discount_cents) -> Cart:
    """Flat discount off the cart total."""
    discount = coerce_int("discount_cents", discount_cents or 0)
    if discount < 0:
        raise ValidationError("discount_cents must be >= 0")
    cart.discount_cents = discount
    return cart


def clear_cart(cart: Cart) -> Cart:
    cart.lines.clear()
    cart.customer_id = None
    cart.discount_cents = 0
    return cart


# =============================================================================
# PAYMENT
# =============================================================================

def resolve_payment_account(ctx: LedgerContext, method: str) -> Account:
    """
    Account that receives a payment method's money:
    default account named after the method > any account named after it >
    business default account > first account.
    """
    accounts = list_accounts(ctx)
    if not accounts:
        raise NotFoundError("No account available to receive payment")

    keyword = _ACCOUNT_KEYWORDS.get(method)
    if keyword:
        named = [a for a in accounts if keyword in a.name.lower()]
        for account in named:
            if account.is_default:
                return account
        if named:
            return named[0]

    for account in accounts:
        if account.is_default:
            return account
    return accounts[0]


def _payment_details(method: str, payment: dict, total_cents: int) -> dict:
    if method == "Cash":
        tendered = payment.get("cash_tendered_cents")
        tendered = total_cents if tendered is None else coerce_int("cash_tendered_cents", tendered)
        if tendered < total_cents:
            raise ValidationError(
                "Cash tendered is less than the total",
                details={"total_cents": total_cents, "cash_tendered_cents": tendered},
            )
        return {"cash_tendered_cents": tendered, "change_cents": tendered - total_cents}
    if method == "Card":
        return {
            "card_last4": payment.get("card_last4") or "****",
            "card_type": payment.get("card_type") or "Unknown",
        }
    if method == "Mobile Money":
        return {
            "provider": payment.get("provider") or "Unknown",
            "mobile_number": payment.get("mobile_number") or "",
        }
    if method == "Bank Transfer":
        return {"bank_reference": payment.get("bank_reference") or ""}
    return {}


# =============================================================================
# CHECKOUT
# =============================================================================

@dataclass
class CheckoutResult:
    sale: Sale
    receipt: Receipt
    payment: dict

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "receipt": self.receipt.to_dict(),
            "payment": self.payment,
        }


def _checkout_locked(ctx: LedgerContext, cart: Cart, payment: dict) -> CheckoutResult:
    method = payment.get("method")
    summary = cart_summary(cart)
    total = summary.total_cents
    if total <= 0:
        raise ValidationError("Sale total must be > 0")

    customer: Customer | None = None
    if cart.customer_id is not None:
        customer = get_customer(ctx, cart.customer_id, lock=True)

    if method == "Credit":
        if customer is None:
            raise ValidationError("Customer required for credit payment")
        available = customer.available_credit_cents
        if available is not None and total > available:
            raise CreditLimitExceededError(
                "Credit limit exceeded",
                details={"customer_id": customer.id, "available_cents": available, "total_cents": total},
            )

    details = _payment_details(method, payment, total)
    reference = payment.get("reference") or make_reference("PAY")

    if method == "Credit":
        update_customer_credit(ctx, customer.id, total, "increase", reference, commit=False)

    account = resolve_payment_account(ctx, method)
    payment_txn = record_transaction(
        ctx,
        type="income",
        amount_cents=total,
        account_id=account.id,
        category="Sales",
        description=f"POS Sale - {method}",
        reference=reference,
        commit=False,
    )

    now = utcnow()
    sale = Sale(
        business_id=ctx.business_id,
        document_number=next_document_number(business_id=ctx.business_id, document_type="SALE", prefix="S"),
        customer_id=customer.id if customer else None,
        customer_name=customer.name if customer else WALK_IN,
        subtotal_cents=summary.subtotal_cents,
        tax_cents=summary.tax_cents,
        discount_cents=summary.discount_cents,
        total_cents=total,
        tax_rate_bps=cart.tax_rate_bps,
        tax_inclusive=cart.tax_inclusive,
        payment_method=method,
        payment_reference=reference,
        payment_details=details,
        payment_transaction_id=payment_txn.id,
        status="completed",
        notes=payment.get("notes"),
        created_by_user_id=ctx.user_id,
        created_at=now,
    )
    db.session.add(sale)
    db.session.flush()

    for line, line_discount in zip(cart.lines, line_discounts(cart)):
        sale.lines.append(SaleLine(
            product_id=line.product_id,
            sku=line.sku,
            name=line.name,
            unit=line.unit,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            unit_cost_cents=line.unit_cost_cents,
            line_total_cents=line.line_total_cents,
            tax_cents=line_tax_cents(cart, line, line_discount),
        ))
        update_stock(ctx, line.product_id, -line.quantity, "sale", sale.document_number, commit=False)
        product = get_product(ctx, line.product_id)
        product.total_sold = product.total_sold + line.quantity
        product.total_revenue_cents = product.total_revenue_cents + line.line_total_cents
    db.session.flush()

    if customer is not None:
        record_purchase_stats(ctx, customer.id, total, when=now)

    audit_log(ctx, entity="sale", entity_id=sale.id, action="create", payload={
        "document_number": sale.document_number,
        "total_cents": total,
        "payment_method": method,
        "customer_id": sale.customer_id,
    })

    receipt = _build_receipt(ctx, sale, summary)
    payment_info = {"method": method, "reference": reference, "amount_cents": total,
                    "status": "completed", **details}
    return CheckoutResult(sale=sale, receipt=receipt, payment=payment_info)


def checkout(ctx: LedgerContext, cart: Cart, payment: dict) -> CheckoutResult:
    """
    Turn the cart into a completed sale.

    Raises:
        EmptyCartError: no lines
        UnsupportedPaymentMethodError: method not in PAYMENT_METHODS
        CreditLimitExceededError: credit sale above available credit
        InsufficientStockError: a line exceeds current stock
        NotFoundError: no account to receive the payment
    """
    if cart.is_empty:
        raise EmptyCartError("Cart is empty")
    payment = payment or {}
    method = payment.get("method")
    if method not in PAYMENT_METHODS:
        raise UnsupportedPaymentMethodError(
            f"Unsupported payment method: {method}",
            details={"supported": list(PAYMENT_METHODS)},
        )

    result = run_in_transaction(lambda: _checkout_locked(ctx, cart, payment))
    current_app.logger.info(
        "Sale %s completed: business=%s total_cents=%s method=%s",
        result.sale.document_number, ctx.business_id, result.sale.total_cents, method,
    )
    clear_cart(cart)
    return result


# =============================================================================
# RECEIPTS
# =============================================================================

def format_money(cents: int, currency: str = "") -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    amount = f"{sign}{cents // 100:,}.{cents % 100:02d}"
    return f"{currency} {amount}".strip()


def _build_receipt(ctx: LedgerContext, sale: Sale, summary: CartSummary) -> Receipt:
    business = db.session.get(Business, ctx.business_id)
    cashier = db.session.get(User, ctx.user_id) if ctx.user_id else None

    content = {
        "sale_id": sale.id,
        "document_number": sale.document_number,
        "date": to_utc_z(sale.created_at),
        "business": {
            "name": business.name,
            "address": business.address,
            "phone": business.phone,
            "email": business.email,
            "tax_id": business.tax_id,
            "currency": business.currency,
        },
        "items": [line.to_dict() for line in sale.lines],
        "summary": summary.to_dict(),
        "tax_rate_bps": sale.tax_rate_bps,
        "payment": {
            "method": sale.payment_method,
            "reference": sale.payment_reference,
            **(sale.payment_details or {}),
        },
        "customer": {"id": sale.customer_id, "name": sale.customer_name},
        "cashier": cashier.display_name if cashier else "System",
        "footer": business.receipt_footer,
    }

    receipt = Receipt(
        business_id=ctx.business_id,
        sale_id=sale.id,
        receipt_number=make_reference("REC"),
        content=content,
        text="",
    )
    content["receipt_number"] = receipt.receipt_number
    receipt.text = render_receipt_text(content)
    db.session.add(receipt)
    db.session.flush()
    return receipt


def render_receipt_text(content: dict) -> str:
    """Plain-text rendering for printers and e-mail bodies."""
    currency = content["business"].get("currency") or ""
    width = 40
    rule = "-" * width
    lines = [content["business"]["name"].center(width)]
    for extra in (content["business"].get("address"), content["business"].get("phone")):
        if extra:
            lines.append(extra.center(width))
    lines += [
        rule,
        f"Receipt: {content['receipt_number']}",
        f"Sale: {content['document_number']}",
        f"Date: {content['date']}",
        f"Customer: {content['customer']['name']}",
        f"Cashier: {content['cashier']}",
        rule,
    ]
    for item in content["items"]:
        lines.append(item["name"])
        qty = f"  {item['quantity']} {item['unit']} x {format_money(item['unit_price_cents'])}"
        total = format_money(item["line_total_cents"])
        lines.append(qty + total.rjust(width - len(qty)))
    summary = content["summary"]
    rate = content["tax_rate_bps"]
    lines += [
        rule,
        _row("Subtotal", format_money(summary["subtotal_cents"], currency), width),
        _row(f"Tax ({rate // 100}.{rate % 100:02d}%)", format_money(summary["tax_cents"], currency), width),
    ]
    if summary["discount_cents"]:
        lines.append(_row("Discount", format_money(-summary["discount_cents"], currency), width))
    lines.append(_row("TOTAL", format_money(summary["total_cents"], currency), width))
    lines.append(rule)

    payment = content["payment"]
    lines.append(f"Payment: {payment['method']}")
    if payment.get("reference"):
        lines.append(f"Reference: {payment['reference']}")
    if "cash_tendered_cents" in payment:
        lines.append(_row("Cash tendered", format_money(payment["cash_tendered_cents"], currency), width))
        lines.append(_row("Change", format_money(payment["change_cents"], currency), width))
    lines += [rule, content["footer"].center(width)]
    return "\n".join(lines) + "\n"


def _row(label: str, value: str, width: int) -> str:
    return label + value.rjust(width - len(label))


# =============================================================================
# LOOKUPS & REPORT
# =============================================================================

def get_sale(ctx: LedgerContext, sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id, business_id=ctx.business_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def get_receipt(ctx: LedgerContext, sale_id: int) -> Receipt:
    receipt = db.session.query(Receipt).filter_by(sale_id=sale_id, business_id=ctx.business_id).first()
    if receipt is None:
        raise NotFoundError(f"Receipt for sale {sale_id} not found", details={"sale_id": sale_id})
    return receipt


def list_sales(ctx: LedgerContext, *, start=None, end=None, customer_id: int | None = None,
               limit: int | None = None) -> list[Sale]:
    q = db.session.query(Sale).filter(Sale.business_id == ctx.business_id)
    if start is not None:
        q = q.filter(Sale.created_at >= start)
    if end is not None:
        q = q.filter(Sale.created_at <= end)
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    q = q.order_by(Sale.created_at.desc(), Sale.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()


def sales_report(ctx: LedgerContext, start, end) -> dict:
    """
    Totals for sales created in [start, end]: count, revenue, items, average,
    revenue by payment method and by hour of day, top 10 products by revenue.
    """
    sales = list_sales(ctx, start=start, end=end)

    revenue = 0
    items = 0
    by_method: dict[str, int] = {}
    by_hour: dict[int, int] = {}
    products: dict[int, dict] = {}

    for sale in sales:
        revenue += sale.total_cents
        by_method[sale.payment_method] = by_method.get(sale.payment_method, 0) + sale.total_cents
        hour = sale.created_at.hour
        by_hour[hour] = by_hour.get(hour, 0) + sale.total_cents
        for line in sale.lines:
            items += line.quantity
            entry = products.setdefault(line.product_id, {
                "product_id": line.product_id, "name": line.name, "quantity": 0, "revenue_cents": 0,
            })
            entry["quantity"] += line.quantity
            entry["revenue_cents"] += line.line_total_cents

    count = len(sales)
    average = (2 * revenue + count) // (2 * count) if count else 0
    top = sorted(products.values(), key=lambda p: (-p["revenue_cents"], p["product_id"]))[:10]

    return {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "total_sales": count,
        "total_revenue_cents": revenue,
        "total_items": items,
        "average_sale_cents": average,
        "by_payment_method": dict(sorted(by_method.items())),
        "by_hour": {str(h): v for h, v in sorted(by_hour.items())},
        "top_products": top,
    }
