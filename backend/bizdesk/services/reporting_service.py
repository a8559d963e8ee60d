# Overview: Read-side folds over the ledger; encapsulates reporting queries.

"""
Reporting Semantics (authoritative)

- All reports are read-only; for a fixed ledger snapshot and a fixed
  as_of they return identical results.
- Date ranges are inclusive on both ends: start <= occurred_at <= end.
- Amounts are integer cents; averages round half-up to the cent.
- P&L: revenue = SUM(income); cogs = SUM(expense, category "Cost of Goods");
  gross = revenue - cogs; operating = every other expense;
  net = gross - operating. Transfers never count as income or expense.
"""

from __future__ import annotations

import csv
import io
from datetime import date, datetime

from sqlalchemy import case, func

from ..errors import ValidationError
from ..extensions import db
from ..models import Account, Customer, InventoryLog, Product, Transaction
from bizdesk.time_utils import day_bounds, days_since, to_utc_z, utcnow
from .context import LedgerContext
from .customer_service import SEGMENTS, customer_segment, lifetime_value_cents
from .finance_service import get_account, list_transactions
from .inventory_service import get_product


COGS_CATEGORY = "Cost of Goods"

_CURRENT_ASSET_WORDS = ("cash", "bank", "mobile money")
_CURRENT_LIABILITY_WORDS = ("payable", "loan")
_INVESTING_WORDS = ("Investment", "Asset Purchase")
_FINANCING_WORDS = ("Loan", "Capital")

TRANSACTION_CSV_COLUMNS = [
    "type", "amount_cents", "account_id", "to_account_id", "category",
    "description", "reference", "status", "occurred_at",
]


def _check_range(start: datetime | None, end: datetime | None) -> None:
    if start is not None and end is not None and start > end:
        raise ValidationError("start must be <= end")


def _half_up_div(numerator: int, denominator: int) -> int:
    if denominator == 0:
        return 0
    return (2 * numerator + denominator) // (2 * denominator)


# =============================================================================
# DAILY / STOCK / SUMMARY
# =============================================================================

def daily_sales(ctx: LedgerContext, day: date) -> int:
    """Sum of income transactions on a UTC calendar day."""
    start, end = day_bounds(day)
    total = db.session.query(func.coalesce(func.sum(Transaction.amount_cents), 0)).filter(
        Transaction.business_id == ctx.business_id,
        Transaction.type == "income",
        Transaction.occurred_at >= start,
        Transaction.occurred_at <= end,
    ).scalar()
    return int(total or 0)


def stock_value(ctx: LedgerContext) -> int:
    """SUM(stock * cost) over every product."""
    total = db.session.query(
        func.coalesce(func.sum(Product.stock * Product.cost_cents), 0)
    ).filter(Product.business_id == ctx.business_id).scalar()
    return int(total or 0)


def financial_summary(ctx: LedgerContext, start: datetime, end: datetime) -> dict:
    _check_range(start, end)
    summary = {"income_cents": 0, "expenses_cents": 0, "transfers_cents": 0, "by_category": {}}
    for txn in list_transactions(ctx, start=start, end=end):
        if txn.type == "income":
            summary["income_cents"] += txn.amount_cents
        elif txn.type == "expense":
            summary["expenses_cents"] += txn.amount_cents
        else:
            summary["transfers_cents"] += txn.amount_cents
        summary["by_category"][txn.category] = summary["by_category"].get(txn.category, 0) + txn.amount_cents
    summary["net_cents"] = summary["income_cents"] - summary["expenses_cents"]
    summary["by_category"] = dict(sorted(summary["by_category"].items()))
    summary["start"] = to_utc_z(start)
    summary["end"] = to_utc_z(end)
    return summary


# =============================================================================
# PROFIT & LOSS / BALANCE SHEET / CASH FLOW
# =============================================================================

def profit_and_loss(ctx: LedgerContext, start: datetime, end: datetime) -> dict:
    _check_range(start, end)
    revenue = 0
    cogs = 0
    operating = 0
    revenue_detail: dict[str, int] = {}
    expense_detail: dict[str, int] = {}

    for txn in list_transactions(ctx, start=start, end=end):
        if txn.type == "income":
            revenue += txn.amount_cents
            revenue_detail[txn.category] = revenue_detail.get(txn.category, 0) + txn.amount_cents
        elif txn.type == "expense":
            if txn.category == COGS_CATEGORY:
                cogs += txn.amount_cents
            else:
                operating += txn.amount_cents
            expense_detail[txn.category] = expense_detail.get(txn.category, 0) + txn.amount_cents

    gross = revenue - cogs
    return {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "revenue_cents": revenue,
        "cogs_cents": cogs,
        "gross_profit_cents": gross,
        "operating_expenses_cents": operating,
        "net_profit_cents": gross - operating,
        "details": {
            "revenue": dict(sorted(revenue_detail.items())),
            "expenses": dict(sorted(expense_detail.items())),
        },
    }


def _balance_as_of(account: Account, as_of: datetime) -> int:
    """opening + signed movements up to as_of (inclusive)."""
    income = case((Transaction.type == "income", Transaction.amount_cents), else_=0)
    outflow = case(
        (Transaction.type == "expense", Transaction.amount_cents),
        (Transaction.type == "transfer", Transaction.amount_cents),
        else_=0,
    )
    base = db.session.query(
        func.coalesce(func.sum(income), 0), func.coalesce(func.sum(outflow), 0)
    ).filter(
        Transaction.business_id == account.business_id,
        Transaction.account_id == account.id,
        Transaction.occurred_at <= as_of,
    ).one()
    inflow_transfers = db.session.query(func.coalesce(func.sum(Transaction.amount_cents), 0)).filter(
        Transaction.business_id == account.business_id,
        Transaction.type == "transfer",
        Transaction.to_account_id == account.id,
        Transaction.occurred_at <= as_of,
    ).scalar()
    return account.opening_balance_cents + int(base[0]) - int(base[1]) + int(inflow_transfers or 0)


def balance_sheet(ctx: LedgerContext, as_of: datetime | None = None) -> dict:
    """
    Assets and liabilities from account balances as of `as_of`; retained
    earnings are the year-to-date net profit.
    """
    as_of = as_of or utcnow()
    sheet = {
        "as_of": to_utc_z(as_of),
        "assets": {"current": [], "fixed": [], "total_cents": 0},
        "liabilities": {"current": [], "long_term": [], "total_cents": 0},
        "equity": {"capital_cents": 0, "retained_earnings_cents": 0, "total_cents": 0},
    }

    accounts = db.session.query(Account).filter_by(business_id=ctx.business_id).order_by(Account.id.asc()).all()
    for account in accounts:
        balance = _balance_as_of(account, as_of)
        item = {"id": account.id, "name": account.name, "type": account.type, "balance_cents": balance}
        name = account.name.lower()
        if account.type == "asset":
            bucket = "current" if any(w in name for w in _CURRENT_ASSET_WORDS) else "fixed"
            sheet["assets"][bucket].append(item)
            sheet["assets"]["total_cents"] += balance
        elif account.type == "liability":
            bucket = "current" if any(w in name for w in _CURRENT_LIABILITY_WORDS) else "long_term"
            sheet["liabilities"][bucket].append(item)
            sheet["liabilities"]["total_cents"] += balance
        elif account.type == "equity":
            sheet["equity"]["capital_cents"] += balance

    year_start = datetime(as_of.year, 1, 1)
    retained = profit_and_loss(ctx, year_start, as_of)["net_profit_cents"]
    equity = sheet["equity"]
    equity["retained_earnings_cents"] = retained
    equity["total_cents"] = equity["capital_cents"] + retained
    sheet["balanced"] = sheet["assets"]["total_cents"] == (
        sheet["liabilities"]["total_cents"] + equity["total_cents"]
    )
    return sheet


def _cash_flow_bucket(category: str) -> str:
    if any(w in category for w in _INVESTING_WORDS):
        return "investing"
    if any(w in category for w in _FINANCING_WORDS):
        return "financing"
    return "operating"


def cash_flow(ctx: LedgerContext, start: datetime, end: datetime) -> dict:
    _check_range(start, end)
    flow = {
        section: {"inflows_cents": 0, "outflows_cents": 0, "net_cents": 0}
        for section in ("operating", "investing", "financing")
    }
    for txn in list_transactions(ctx, start=start, end=end):
        if txn.type == "transfer":
            continue
        section = flow[_cash_flow_bucket(txn.category)]
        if txn.type == "income":
            section["inflows_cents"] += txn.amount_cents
        else:
            section["outflows_cents"] += txn.amount_cents
    for section in flow.values():
        section["net_cents"] = section["inflows_cents"] - section["outflows_cents"]

    net_increase = sum(section["net_cents"] for section in flow.values())
    opening = db.session.query(func.coalesce(func.sum(Account.opening_balance_cents), 0)).filter(
        Account.business_id == ctx.business_id,
        Account.type == "asset",
        func.lower(Account.name).contains("cash"),
    ).scalar()
    opening = int(opening or 0)
    return {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        **flow,
        "net_increase_cents": net_increase,
        "opening_balance_cents": opening,
        "closing_balance_cents": opening + net_increase,
    }


# =============================================================================
# CUSTOMERS
# =============================================================================

def customer_segments(ctx: LedgerContext, as_of: datetime | None = None, criteria: dict | None = None) -> dict:
    """Bucket customers into New / One-time / Repeat / Loyal / VIP by purchases and lifetime value."""
    as_of = as_of or utcnow()
    criteria = criteria or {}

    q = db.session.query(Customer).filter(Customer.business_id == ctx.business_id)
    if criteria.get("min_purchases"):
        q = q.filter(Customer.total_purchases >= int(criteria["min_purchases"]))
    if criteria.get("min_spent_cents"):
        q = q.filter(Customer.total_spent_cents >= int(criteria["min_spent_cents"]))
    if criteria.get("status"):
        q = q.filter(Customer.status == criteria["status"])
    customers = q.order_by(Customer.id.asc()).all()

    tags = criteria.get("tags")
    if tags:
        customers = [c for c in customers if any(t in (c.tags or []) for t in tags)]

    grouped: dict[str, list[dict]] = {}
    total_clv = 0
    for c in customers:
        clv = lifetime_value_cents(c, as_of)
        segment = customer_segment(c, clv)
        total_clv += clv
        grouped.setdefault(segment, []).append({
            "id": c.id,
            "name": c.name,
            "email": c.email,
            "total_purchases": c.total_purchases,
            "total_spent_cents": c.total_spent_cents,
            "clv_cents": clv,
            "segment": segment,
            "last_purchase_days": days_since(c.last_purchase_at, as_of),
            "average_order_value_cents": _half_up_div(c.total_spent_cents, c.total_purchases),
        })

    ordered = {s: grouped[s] for s in SEGMENTS if s in grouped}
    return {
        "as_of": to_utc_z(as_of),
        "segments": ordered,
        "summary": {
            "total_customers": len(customers),
            "by_segment": {s: len(v) for s, v in ordered.items()},
            "total_clv_cents": total_clv,
            "average_clv_cents": _half_up_div(total_clv, len(customers)),
        },
    }


def debtors_summary(ctx: LedgerContext, as_of: datetime | None = None) -> list[dict]:
    """Customers owing money, largest balance first."""
    as_of = as_of or utcnow()
    debtors = (
        db.session.query(Customer)
        .filter(Customer.business_id == ctx.business_id, Customer.outstanding_balance_cents > 0)
        .order_by(Customer.outstanding_balance_cents.desc(), Customer.id.asc())
        .all()
    )
    return [
        {
            "id": c.id,
            "name": c.name,
            "email": c.email,
            "phone": c.phone,
            "outstanding_balance_cents": c.outstanding_balance_cents,
            "credit_limit_cents": c.credit_limit_cents,
            "last_purchase_at": to_utc_z(c.last_purchase_at) if c.last_purchase_at else None,
            "days_overdue": days_since(c.last_purchase_at, as_of) or 0,
        }
        for c in debtors
    ]


# =============================================================================
# EXPORT
# =============================================================================

def export_transactions_csv(ctx: LedgerContext, start: datetime, end: datetime) -> str:
    _check_range(start, end)
    txns = sorted(list_transactions(ctx, start=start, end=end), key=lambda t: (t.occurred_at, t.id))
    if not txns:
        return ""
    out = io.StringIO()
    writer = csv.writer(out, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(TRANSACTION_CSV_COLUMNS)
    for txn in txns:
        row = txn.to_dict()
        writer.writerow(["" if row.get(col) is None else row[col] for col in TRANSACTION_CSV_COLUMNS])
    return out.getvalue()


# =============================================================================
# INTEGRITY CHECKS
# =============================================================================

def verify_account(ctx: LedgerContext, account_id: int) -> dict:
    """balance_cents must equal opening balance + signed movements."""
    account = get_account(ctx, account_id)
    expected = _balance_as_of(account, datetime.max)
    return {
        "account_id": account.id,
        "balance_cents": account.balance_cents,
        "expected_balance_cents": expected,
        "ok": account.balance_cents == expected,
    }


def verify_product_stock(ctx: LedgerContext, product_id: int) -> dict:
    """stock must equal the sum of log deltas; each log row must be self-consistent."""
    product = get_product(ctx, product_id)
    logs = (
        db.session.query(InventoryLog)
        .filter_by(business_id=ctx.business_id, product_id=product.id)
        .order_by(InventoryLog.id.asc())
        .all()
    )
    log_total = sum(log.quantity_change for log in logs)
    bad_rows = [log.id for log in logs if log.new_stock - log.previous_stock != log.quantity_change]
    return {
        "product_id": product.id,
        "stock": product.stock,
        "log_total": log_total,
        "log_count": len(logs),
        "inconsistent_log_ids": bad_rows,
        "ok": product.stock == log_total and not bad_rows,
    }
