# Overview: Flask API routes for derived reports; read-only and recomputable from the ledger.

"""
Report routes.

Every report is derived on request from the stored ledger rows; calling
one twice over the same data returns the same figures. Date ranges use
?start=&end= (ISO-8601) and default to the current year up to now.
"""

from flask import Blueprint, Response, jsonify, request

from ..decorators import handle_ledger_errors, require_auth
from ..services import audit_service, reporting_service
from ..services.context import LedgerContext
from bizdesk.time_utils import to_utc_z, utcnow
from .params import date_arg, datetime_arg, range_args

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/daily-sales")
@require_auth
@handle_ledger_errors
def daily_sales_route():
    """?day=YYYY-MM-DD (defaults to today, UTC)."""
    day = date_arg("day", utcnow().date())
    total = reporting_service.daily_sales(LedgerContext.from_request(), day)
    return jsonify({"day": day.isoformat(), "total_cents": total})


@reports_bp.get("/stock-value")
@require_auth
@handle_ledger_errors
def stock_value_route():
    return jsonify({"stock_value_cents": reporting_service.stock_value(LedgerContext.from_request())})


@reports_bp.get("/financial-summary")
@require_auth
@handle_ledger_errors
def financial_summary_route():
    start, end = range_args()
    return jsonify(reporting_service.financial_summary(LedgerContext.from_request(), start, end))


@reports_bp.get("/profit-and-loss")
@require_auth
@handle_ledger_errors
def profit_and_loss_route():
    start, end = range_args()
    return jsonify(reporting_service.profit_and_loss(LedgerContext.from_request(), start, end))


@reports_bp.get("/balance-sheet")
@require_auth
@handle_ledger_errors
def balance_sheet_route():
    return jsonify(reporting_service.balance_sheet(LedgerContext.from_request(), datetime_arg("as_of")))


@reports_bp.get("/cash-flow")
@require_auth
@handle_ledger_errors
def cash_flow_route():
    start, end = range_args()
    return jsonify(reporting_service.cash_flow(LedgerContext.from_request(), start, end))


@reports_bp.get("/customer-segments")
@require_auth
@handle_ledger_errors
def customer_segments_route():
    """Criteria: min_purchases, min_spent_cents, status, tags (comma separated)."""
    criteria = {
        "min_purchases": request.args.get("min_purchases", type=int),
        "min_spent_cents": request.args.get("min_spent_cents", type=int),
        "status": request.args.get("status"),
    }
    tags = request.args.get("tags")
    if tags:
        criteria["tags"] = [t.strip() for t in tags.split(",") if t.strip()]
    return jsonify(reporting_service.customer_segments(
        LedgerContext.from_request(), datetime_arg("as_of"), criteria,
    ))


@reports_bp.get("/debtors")
@require_auth
@handle_ledger_errors
def debtors_route():
    as_of = datetime_arg("as_of", utcnow())
    rows = reporting_service.debtors_summary(LedgerContext.from_request(), as_of)
    return jsonify({
        "as_of": to_utc_z(as_of),
        "items": rows,
        "total_outstanding_cents": sum(r["outstanding_balance_cents"] for r in rows),
    })


@reports_bp.get("/transactions.csv")
@require_auth
@handle_ledger_errors
def export_transactions_route():
    start, end = range_args()
    text = reporting_service.export_transactions_csv(LedgerContext.from_request(), start, end)
    return Response(
        text,
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=transactions.csv"},
    )


@reports_bp.get("/audit-logs")
@require_auth
@handle_ledger_errors
def audit_logs_route():
    logs = audit_service.list_audit_logs(
        LedgerContext.from_request(),
        entity=request.args.get("entity"),
        entity_id=request.args.get("entity_id", type=int),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"items": [log.to_dict() for log in logs]})
