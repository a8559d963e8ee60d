# Overview: Flask API routes for products and stock movements; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import handle_ledger_errors, require_auth
from ..services import inventory_service, reporting_service
from ..services.context import LedgerContext
from .params import json_body

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
@handle_ledger_errors
def list_products_route():
    include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
    products = inventory_service.list_products(LedgerContext.from_request(), include_inactive=include_inactive)
    return jsonify({"items": [p.to_dict() for p in products]})


@products_bp.post("")
@require_auth
@handle_ledger_errors
def create_product_route():
    """Body: sku, name, price_cents, cost_cents?, stock?, reorder_level?, category?, ..."""
    product = inventory_service.create_product(LedgerContext.from_request(), json_body())
    return jsonify(product.to_dict()), 201


@products_bp.get("/low-stock")
@require_auth
@handle_ledger_errors
def low_stock_route():
    products = inventory_service.low_stock_products(LedgerContext.from_request())
    return jsonify({"items": [p.to_dict() for p in products]})


@products_bp.get("/<int:product_id>")
@require_auth
@handle_ledger_errors
def get_product_route(product_id: int):
    return jsonify(inventory_service.get_product(LedgerContext.from_request(), product_id).to_dict())


@products_bp.patch("/<int:product_id>")
@require_auth
@handle_ledger_errors
def update_product_route(product_id: int):
    product = inventory_service.update_product(LedgerContext.from_request(), product_id, json_body())
    return jsonify(product.to_dict())


@products_bp.post("/<int:product_id>/stock")
@require_auth
@handle_ledger_errors
def adjust_stock_route(product_id: int):
    """
    Manual stock correction.

    Body: quantity_change (signed, non-zero), reference?
    """
    data = json_body()
    ctx = LedgerContext.from_request()
    new_stock = inventory_service.update_stock(
        ctx, product_id, data.get("quantity_change"), "adjustment", data.get("reference"),
    )
    return jsonify({"product_id": product_id, "stock": new_stock})


@products_bp.post("/<int:product_id>/restock")
@require_auth
@handle_ledger_errors
def restock_route(product_id: int):
    """Body: quantity (> 0), reference?"""
    data = json_body()
    product = inventory_service.restock_product(
        LedgerContext.from_request(), product_id, data.get("quantity"), data.get("reference"),
    )
    return jsonify(product.to_dict())


@products_bp.get("/<int:product_id>/logs")
@require_auth
@handle_ledger_errors
def inventory_logs_route(product_id: int):
    logs = inventory_service.list_inventory_logs(
        LedgerContext.from_request(), product_id, limit=request.args.get("limit", type=int),
    )
    return jsonify({"items": [log.to_dict() for log in logs]})


@products_bp.get("/<int:product_id>/verify")
@require_auth
@handle_ledger_errors
def verify_stock_route(product_id: int):
    return jsonify(reporting_service.verify_product_stock(LedgerContext.from_request(), product_id))
