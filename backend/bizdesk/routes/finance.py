# Overview: Flask API routes for accounts, transactions and transfers; parses input and returns JSON responses.

"""
Finance routes.

All operations are scoped to the caller's business (g.ledger_context set
by @require_auth). Balances are never written directly: they move only
through POST /api/transactions and POST /api/transfers.
"""

from flask import Blueprint, jsonify, request

from ..decorators import handle_ledger_errors, require_auth
from ..errors import ValidationError
from ..services import finance_service, reporting_service
from ..services.context import LedgerContext
from ..validation import coerce_int
from .params import datetime_arg, datetime_value, json_body

finance_bp = Blueprint("finance", __name__, url_prefix="/api")


@finance_bp.get("/accounts")
@require_auth
@handle_ledger_errors
def list_accounts_route():
    ctx = LedgerContext.from_request()
    return jsonify({"items": [a.to_dict() for a in finance_service.list_accounts(ctx)]})


@finance_bp.post("/accounts")
@require_auth
@handle_ledger_errors
def create_account_route():
    account = finance_service.create_account(LedgerContext.from_request(), json_body())
    return jsonify(account.to_dict()), 201


@finance_bp.get("/accounts/<int:account_id>")
@require_auth
@handle_ledger_errors
def get_account_route(account_id: int):
    return jsonify(finance_service.get_account(LedgerContext.from_request(), account_id).to_dict())


@finance_bp.patch("/accounts/<int:account_id>")
@require_auth
@handle_ledger_errors
def update_account_route(account_id: int):
    account = finance_service.update_account(LedgerContext.from_request(), account_id, json_body())
    return jsonify(account.to_dict())


@finance_bp.post("/accounts/<int:account_id>/default")
@require_auth
@handle_ledger_errors
def set_default_account_route(account_id: int):
    account = finance_service.set_default_account(LedgerContext.from_request(), account_id)
    return jsonify(account.to_dict())


@finance_bp.get("/accounts/<int:account_id>/verify")
@require_auth
@handle_ledger_errors
def verify_account_route(account_id: int):
    return jsonify(reporting_service.verify_account(LedgerContext.from_request(), account_id))


@finance_bp.get("/transactions")
@require_auth
@handle_ledger_errors
def list_transactions_route():
    """
    Query params: start, end (ISO-8601), type, account_id, limit.
    """
    txns = finance_service.list_transactions(
        LedgerContext.from_request(),
        start=datetime_arg("start"),
        end=datetime_arg("end"),
        type=request.args.get("type"),
        account_id=request.args.get("account_id", type=int),
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"items": [t.to_dict() for t in txns]})


@finance_bp.post("/transactions")
@require_auth
@handle_ledger_errors
def record_transaction_route():
    """
    Body: type, amount_cents, account_id, category, to_account_id?,
    description?, reference?, notes?, occurred_at?
    """
    data = json_body()
    occurred = datetime_value("occurred_at", data.get("occurred_at"))

    txn = finance_service.record_transaction(
        LedgerContext.from_request(),
        type=data.get("type"),
        amount_cents=data.get("amount_cents"),
        account_id=data.get("account_id"),
        category=data.get("category"),
        to_account_id=data.get("to_account_id"),
        description=data.get("description"),
        reference=data.get("reference"),
        notes=data.get("notes"),
        occurred_at=occurred,
    )
    return jsonify(txn.to_dict()), 201


@finance_bp.post("/transfers")
@require_auth
@handle_ledger_errors
def transfer_route():
    """Body: from_account_id, to_account_id, amount_cents, description?"""
    data = json_body()
    if not data.get("from_account_id") or not data.get("to_account_id"):
        raise ValidationError("from_account_id and to_account_id are required")
    txn = finance_service.transfer_funds(
        LedgerContext.from_request(),
        from_account_id=data["from_account_id"],
        to_account_id=data["to_account_id"],
        amount_cents=data.get("amount_cents"),
        description=data.get("description") or "",
    )
    return jsonify(txn.to_dict()), 201


@finance_bp.get("/finance/categories")
@require_auth
def categories_route():
    return jsonify(finance_service.CATEGORIES)


@finance_bp.post("/finance/tax")
@require_auth
@handle_ledger_errors
def tax_route():
    """Body: amount_cents, rate_bps, inclusive?"""
    data = json_body()
    breakdown = finance_service.calculate_tax(
        coerce_int("amount_cents", data.get("amount_cents")),
        coerce_int("rate_bps", data.get("rate_bps")),
        bool(data.get("inclusive", False)),
    )
    return jsonify(breakdown.to_dict())
