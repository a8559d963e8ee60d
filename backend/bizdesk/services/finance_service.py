# Overview: Service-layer operations for accounts and the money ledger.

"""
Finance Ledger Invariants (authoritative)

- Account.balance_cents == opening_balance_cents + signed sum of every
  Transaction that references the account (income +, expense -, transfer
  - on the source and + on the destination).
- Transactions are append-only; amount_cents is always > 0.
- A balance move and the Transaction recording it are flushed in the same
  DB transaction, so no reader ever sees one without the other.
- Balances are changed only through record_transaction(); the account row
  is locked (FOR UPDATE where supported) and version-checked on UPDATE.
- Transfers lock both accounts in ascending id order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..errors import (
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Account, Transaction
from bizdesk.time_utils import utcnow
from ..validation import (
    ModelValidationPolicy,
    TRANSACTION_TYPES,
    coerce_int,
    enforce_rules_account,
    require_positive_amount,
    validate_payload,
)
from .audit_service import audit_log
from .concurrency import lock_for_update, run_in_transaction
from .context import LedgerContext
from .document_service import make_reference


CATEGORIES = {
    "income": ["Sales", "Service", "Interest", "Other Income"],
    "expense": [
        "Cost of Goods", "Rent", "Salaries", "Utilities", "Marketing",
        "Supplies", "Taxes", "Other Expenses", "Returns & Refunds",
    ],
    "transfer": ["Account Transfer"],
}

ACCOUNT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "type", "currency", "balance_cents", "is_default",
        "account_number", "bank_name", "description",
    },
    required_on_create={"name", "type", "currency"},
)

ACCOUNT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "is_default", "account_number", "bank_name", "description"},
)


# =============================================================================
# TAX
# =============================================================================

@dataclass(frozen=True)
class TaxBreakdown:
    net_cents: int
    tax_cents: int
    gross_cents: int

    def to_dict(self) -> dict:
        return {"net_cents": self.net_cents, "tax_cents": self.tax_cents, "gross_cents": self.gross_cents}


def calculate_tax(amount_cents: int, rate_bps: int, inclusive: bool = False) -> TaxBreakdown:
    """
    Split an amount into net/tax/gross, rounding the tax half-up to the cent.

    exclusive: tax = amount * rate            gross = amount + tax
    inclusive: tax = amount - amount/(1+rate) net = amount - tax
    """
    if rate_bps < 0:
        raise ValidationError("tax rate must be >= 0")
    if inclusive:
        den = 10_000 + rate_bps
        tax = (2 * amount_cents * rate_bps + den) // (2 * den)
        return TaxBreakdown(net_cents=amount_cents - tax, tax_cents=tax, gross_cents=amount_cents)
    tax = (amount_cents * rate_bps + 5_000) // 10_000
    return TaxBreakdown(net_cents=amount_cents, tax_cents=tax, gross_cents=amount_cents + tax)


# =============================================================================
# ACCOUNTS
# =============================================================================

def get_account(ctx: LedgerContext, account_id: int, *, lock: bool = False) -> Account:
    query = db.session.query(Account).filter_by(id=account_id, business_id=ctx.business_id)
    if lock:
        query = lock_for_update(query)
    account = query.first()
    if account is None:
        raise NotFoundError(f"Account {account_id} not found", details={"account_id": account_id})
    return account


def list_accounts(ctx: LedgerContext) -> list[Account]:
    return db.session.query(Account).filter_by(business_id=ctx.business_id).order_by(Account.id.asc()).all()


def _clear_other_defaults(ctx: LedgerContext, account_id: int) -> None:
    others = db.session.query(Account).filter(
        Account.business_id == ctx.business_id,
        Account.id != account_id,
        Account.is_default.is_(True),
    ).all()
    for other in others:
        other.is_default = False


def _ensure_unique_name(ctx: LedgerContext, name: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Account.id).filter_by(business_id=ctx.business_id, name=name)
    if exclude_id is not None:
        q = q.filter(Account.id != exclude_id)
    if q.first() is not None:
        raise ConflictError(f"Account named {name!r} already exists")


def create_account_record(ctx: LedgerContext, data: dict) -> Account:
    """Create an account inside the caller's transaction (no commit)."""
    patch = validate_payload(model=Account, payload=data, policy=ACCOUNT_POLICY, partial=False)
    enforce_rules_account(patch)
    _ensure_unique_name(ctx, patch["name"])

    opening = patch.pop("balance_cents", None) or 0
    account = Account(
        business_id=ctx.business_id,
        balance_cents=opening,
        opening_balance_cents=opening,
        is_default=bool(patch.pop("is_default", False)),
        **patch,
    )
    db.session.add(account)
    db.session.flush()

    if account.is_default:
        _clear_other_defaults(ctx, account.id)

    audit_log(ctx, entity="account", entity_id=account.id, action="create",
              payload={"name": account.name, "opening_balance_cents": opening})
    return account


def create_account(ctx: LedgerContext, data: dict) -> Account:
    """
    Create an account. The initial balance becomes the opening balance the
    ledger invariant is measured from.
    """
    return run_in_transaction(lambda: create_account_record(ctx, data))


def update_account(ctx: LedgerContext, account_id: int, data: dict) -> Account:
    """Update descriptive fields. Balances are never writable here."""
    def _op():
        patch = validate_payload(model=Account, payload=data, policy=ACCOUNT_UPDATE_POLICY, partial=True)
        account = get_account(ctx, account_id)
        if "name" in patch:
            _ensure_unique_name(ctx, patch["name"], exclude_id=account.id)
        for key, value in patch.items():
            setattr(account, key, value)
        if patch.get("is_default"):
            _clear_other_defaults(ctx, account.id)
        db.session.flush()
        return account

    return run_in_transaction(_op)


def set_default_account(ctx: LedgerContext, account_id: int) -> Account:
    return update_account(ctx, account_id, {"is_default": True})


# =============================================================================
# TRANSACTION RECORDER
# =============================================================================

def _apply_delta(account: Account, delta_cents: int, when: datetime) -> None:
    account.balance_cents = account.balance_cents + delta_cents
    account.last_movement_at = when


def _record_transaction_locked(
    ctx: LedgerContext,
    *,
    type: str,
    amount_cents: int,
    account_id: int,
    category: str,
    to_account_id: int | None,
    description: str | None,
    reference: str | None,
    notes: str | None,
    occurred_at: datetime | None,
) -> Transaction:
    if not type:
        raise ValidationError("Missing required field: type")
    if type not in TRANSACTION_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(TRANSACTION_TYPES)}")
    amount = require_positive_amount(amount_cents)
    if not account_id:
        raise ValidationError("Missing required field: account_id")
    account_id = coerce_int("account_id", account_id)
    if to_account_id is not None:
        to_account_id = coerce_int("to_account_id", to_account_id)
    if not category or not str(category).strip():
        raise ValidationError("Missing required field: category")

    if type == "transfer":
        if not to_account_id:
            raise ValidationError("Transfer requires to_account_id")
        if to_account_id == account_id:
            raise ValidationError("Cannot transfer to the same account")
    elif to_account_id:
        raise ValidationError("to_account_id is only valid for transfers")

    when = occurred_at or utcnow()

    if type == "transfer":
        # Lock in id order so two opposite transfers cannot deadlock
        first_id, second_id = sorted([account_id, to_account_id])
        locked = {
            first_id: get_account(ctx, first_id, lock=True),
            second_id: get_account(ctx, second_id, lock=True),
        }
        source, destination = locked[account_id], locked[to_account_id]
        if source.currency != destination.currency:
            raise ValidationError(
                "Cannot transfer between accounts with different currencies",
                details={"from": source.currency, "to": destination.currency},
            )
        _apply_delta(source, -amount, when)
        _apply_delta(destination, amount, when)
    else:
        account = get_account(ctx, account_id, lock=True)
        _apply_delta(account, amount if type == "income" else -amount, when)

    txn = Transaction(
        business_id=ctx.business_id,
        type=type,
        amount_cents=amount,
        account_id=account_id,
        to_account_id=to_account_id if type == "transfer" else None,
        category=str(category).strip(),
        description=description,
        reference=reference,
        notes=notes or "",
        status="completed",
        reconciled=False,
        created_by_user_id=ctx.user_id,
        occurred_at=when,
    )
    db.session.add(txn)
    db.session.flush()

    audit_log(ctx, entity="transaction", entity_id=txn.id, action="create", payload={
        "type": type,
        "amount_cents": amount,
        "account_id": account_id,
        "to_account_id": txn.to_account_id,
        "category": txn.category,
        "reference": reference,
    })
    return txn


def record_transaction(
    ctx: LedgerContext,
    *,
    type: str,
    amount_cents: int,
    account_id: int,
    category: str,
    to_account_id: int | None = None,
    description: str | None = None,
    reference: str | None = None,
    notes: str | None = None,
    occurred_at: datetime | None = None,
    commit: bool = True,
) -> Transaction:
    """
    Record one ledger entry and move the balance(s) it affects.

    income:   account += amount
    expense:  account -= amount
    transfer: account -= amount, to_account += amount

    Raises:
        ValidationError: amount <= 0, missing field, or transfer without to_account_id
        NotFoundError: account_id / to_account_id not in this business

    commit=False joins the caller's transaction (used by sale/return workflows).
    """
    def _op():
        return _record_transaction_locked(
            ctx,
            type=type,
            amount_cents=amount_cents,
            account_id=account_id,
            category=category,
            to_account_id=to_account_id,
            description=description,
            reference=reference,
            notes=notes,
            occurred_at=occurred_at,
        )

    if not commit:
        return _op()
    return run_in_transaction(_op)


def transfer_funds(
    ctx: LedgerContext,
    *,
    from_account_id: int,
    to_account_id: int,
    amount_cents: int,
    description: str = "",
) -> Transaction:
    """Move money between two accounts; the source may not go below zero."""
    def _op():
        amount = require_positive_amount(amount_cents)
        source_id = coerce_int("from_account_id", from_account_id)
        destination_id = coerce_int("to_account_id", to_account_id)
        if source_id == destination_id:
            raise ValidationError("Cannot transfer to the same account")

        # Ascending id order, as in _record_transaction_locked
        first_id, second_id = sorted([source_id, destination_id])
        locked = {
            first_id: get_account(ctx, first_id, lock=True),
            second_id: get_account(ctx, second_id, lock=True),
        }
        source, destination = locked[source_id], locked[destination_id]
        if source.balance_cents < amount:
            raise InsufficientFundsError(
                "Insufficient funds for transfer",
                details={"account_id": source.id, "balance_cents": source.balance_cents, "requested_cents": amount},
            )

        return _record_transaction_locked(
            ctx,
            type="transfer",
            amount_cents=amount,
            account_id=source.id,
            category="Account Transfer",
            to_account_id=destination.id,
            description=f"Transfer to {destination.name}: {description}".rstrip(": "),
            reference=make_reference("TRF"),
            notes=None,
            occurred_at=None,
        )

    return run_in_transaction(_op)


def list_transactions(
    ctx: LedgerContext,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    type: str | None = None,
    account_id: int | None = None,
    limit: int | None = None,
) -> list[Transaction]:
    """Newest first. Date range is inclusive on both ends."""
    q = db.session.query(Transaction).filter(Transaction.business_id == ctx.business_id)
    if start is not None:
        q = q.filter(Transaction.occurred_at >= start)
    if end is not None:
        q = q.filter(Transaction.occurred_at <= end)
    if type:
        q = q.filter(Transaction.type == type)
    if account_id is not None:
        q = q.filter((Transaction.account_id == account_id) | (Transaction.to_account_id == account_id))
    q = q.order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()
