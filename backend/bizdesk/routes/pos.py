# Overview: Flask API routes for the point of sale, sales history, receipts and returns.

"""
POS routes.

The cart lives with the client: each request carries the full cart
(items, customer_id, discount_cents) and the server rebuilds it against
current prices and stock before pricing or checking out.
"""

from flask import Blueprint, Response, jsonify, request

from ..decorators import handle_ledger_errors, require_auth
from ..errors import ValidationError
from ..services import pos_service, return_service
from ..services.context import LedgerContext
from .params import datetime_arg, json_body, range_args

pos_bp = Blueprint("pos", __name__, url_prefix="/api")


def _cart_from_body(ctx: LedgerContext, data: dict) -> pos_service.Cart:
    items = data.get("items") or []
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    cart = pos_service.new_cart(ctx)
    for item in items:
        if not isinstance(item, dict) or item.get("product_id") is None:
            raise ValidationError("Each item requires product_id")
        pos_service.add_to_cart(ctx, cart, item["product_id"], item.get("quantity", 1))
    if data.get("customer_id") is not None:
        pos_service.set_customer(ctx, cart, data["customer_id"])
    pos_service.apply_discount(cart, data.get("discount_cents"))
    return cart


@pos_bp.post("/pos/cart/summary")
@require_auth
@handle_ledger_errors
def cart_summary_route():
    """Price a cart without writing anything."""
    ctx = LedgerContext.from_request()
    cart = _cart_from_body(ctx, json_body())
    return jsonify(cart.to_dict())


@pos_bp.post("/pos/checkout")
@require_auth
@handle_ledger_errors
def checkout_route():
    """
    Body: items [{product_id, quantity}], customer_id?, discount_cents?,
    payment {method, cash_tendered_cents?, reference?, ...}
    """
    data = json_body()
    ctx = LedgerContext.from_request()
    cart = _cart_from_body(ctx, data)
    payment = data.get("payment")
    if payment is not None and not isinstance(payment, dict):
        raise ValidationError("payment must be an object")
    result = pos_service.checkout(ctx, cart, payment or {})
    return jsonify(result.to_dict()), 201


@pos_bp.get("/pos/payment-methods")
@require_auth
def payment_methods_route():
    return jsonify({"items": list(pos_service.PAYMENT_METHODS)})


@pos_bp.get("/sales")
@require_auth
@handle_ledger_errors
def list_sales_route():
    sales = pos_service.list_sales(
        LedgerContext.from_request(),
        start=datetime_arg("start"),
        end=datetime_arg("end"),
        customer_id=request.args.get("customer_id", type=int),
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"items": [s.to_dict() for s in sales]})


@pos_bp.get("/sales/report")
@require_auth
@handle_ledger_errors
def sales_report_route():
    start, end = range_args()
    return jsonify(pos_service.sales_report(LedgerContext.from_request(), start, end))


@pos_bp.get("/sales/<int:sale_id>")
@require_auth
@handle_ledger_errors
def get_sale_route(sale_id: int):
    return jsonify(pos_service.get_sale(LedgerContext.from_request(), sale_id).to_dict())


@pos_bp.get("/sales/<int:sale_id>/receipt")
@require_auth
@handle_ledger_errors
def receipt_route(sale_id: int):
    """?format=text returns the printable rendering."""
    receipt = pos_service.get_receipt(LedgerContext.from_request(), sale_id)
    if request.args.get("format") == "text":
        return Response(receipt.text, mimetype="text/plain")
    return jsonify(receipt.to_dict())


@pos_bp.post("/sales/<int:sale_id>/returns")
@require_auth
@handle_ledger_errors
def process_return_route(sale_id: int):
    """Body: items [{product_id, quantity}], reason?"""
    data = json_body()
    ret = return_service.process_return(
        LedgerContext.from_request(),
        sale_id,
        data.get("items") or [],
        data.get("reason") or "customer return",
    )
    return jsonify(ret.to_dict()), 201


@pos_bp.get("/sales/<int:sale_id>/returns")
@require_auth
@handle_ledger_errors
def list_returns_route(sale_id: int):
    returns = return_service.list_returns(LedgerContext.from_request(), sale_id)
    return jsonify({"items": [r.to_dict() for r in returns]})
