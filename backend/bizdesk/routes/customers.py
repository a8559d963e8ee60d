# Overview: Flask API routes for customers, credit and interactions; parses input and returns JSON responses.

"""
Customer routes.

Search accepts free text in ?q= plus filters: tags (comma separated),
min_balance_cents, max_balance_cents, status, segment, sort_by, sort_order.
"""

from flask import Blueprint, Response, jsonify, request

from ..decorators import handle_ledger_errors, require_auth
from ..errors import ValidationError
from ..services import customer_service
from ..services.context import LedgerContext
from .params import json_body

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _search_filters() -> dict:
    filters = {
        "status": request.args.get("status"),
        "segment": request.args.get("segment"),
        "sort_by": request.args.get("sort_by"),
        "sort_order": request.args.get("sort_order"),
        "min_balance_cents": request.args.get("min_balance_cents", type=int),
        "max_balance_cents": request.args.get("max_balance_cents", type=int),
    }
    tags = request.args.get("tags")
    if tags:
        filters["tags"] = [t.strip() for t in tags.split(",") if t.strip()]
    return filters


@customers_bp.get("")
@require_auth
@handle_ledger_errors
def search_customers_route():
    customers = customer_service.search_customers(
        LedgerContext.from_request(), request.args.get("q"), _search_filters(),
    )
    return jsonify({"items": [c.to_dict() for c in customers]})


@customers_bp.post("")
@require_auth
@handle_ledger_errors
def create_customer_route():
    customer = customer_service.create_customer(LedgerContext.from_request(), json_body())
    return jsonify(customer.to_dict()), 201


@customers_bp.post("/import")
@require_auth
@handle_ledger_errors
def import_customers_route():
    """Body: raw CSV text, or JSON {"csv": "..."}."""
    if request.is_json:
        text = json_body().get("csv")
    else:
        text = request.get_data(as_text=True)
    if not text:
        raise ValidationError("CSV content required")
    created = customer_service.import_customers_csv(LedgerContext.from_request(), text)
    return jsonify({"imported": len(created), "items": [c.to_dict() for c in created]}), 201


@customers_bp.get("/export")
@require_auth
@handle_ledger_errors
def export_customers_route():
    text = customer_service.export_customers_csv(LedgerContext.from_request())
    return Response(
        text,
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=customers.csv"},
    )


@customers_bp.get("/<int:customer_id>")
@require_auth
@handle_ledger_errors
def get_customer_route(customer_id: int):
    return jsonify(customer_service.get_customer(LedgerContext.from_request(), customer_id).to_dict())


@customers_bp.patch("/<int:customer_id>")
@require_auth
@handle_ledger_errors
def update_customer_route(customer_id: int):
    customer = customer_service.update_customer(LedgerContext.from_request(), customer_id, json_body())
    return jsonify(customer.to_dict())


@customers_bp.post("/<int:customer_id>/credit")
@require_auth
@handle_ledger_errors
def update_credit_route(customer_id: int):
    """Body: amount_cents, type (increase | decrease | payment), reference?"""
    data = json_body()
    ctx = LedgerContext.from_request()
    balance = customer_service.update_customer_credit(
        ctx,
        customer_id,
        data.get("amount_cents"),
        data.get("type") or "increase",
        data.get("reference"),
    )
    return jsonify({"customer_id": customer_id, "outstanding_balance_cents": balance})


@customers_bp.get("/<int:customer_id>/credit-transactions")
@require_auth
@handle_ledger_errors
def credit_transactions_route(customer_id: int):
    rows = customer_service.list_credit_transactions(LedgerContext.from_request(), customer_id)
    return jsonify({"items": [r.to_dict() for r in rows]})


@customers_bp.post("/<int:customer_id>/interactions")
@require_auth
@handle_ledger_errors
def record_interaction_route(customer_id: int):
    """Body: kind, summary, follow_up_required?, follow_up_date?"""
    interaction = customer_service.record_interaction(LedgerContext.from_request(), customer_id, json_body())
    return jsonify(interaction.to_dict()), 201


@customers_bp.get("/<int:customer_id>/interactions")
@require_auth
@handle_ledger_errors
def list_interactions_route(customer_id: int):
    rows = customer_service.list_interactions(
        LedgerContext.from_request(), customer_id, limit=request.args.get("limit", 50, type=int),
    )
    return jsonify({"items": [r.to_dict() for r in rows]})
