from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z, utcnow


class Account(db.Model):
    """
    Money account (cash drawer, bank, mobile wallet, loan, capital).

    INVARIANT: balance_cents == opening_balance_cents + signed sum of all
    Transaction movements referencing this account. balance_cents is only
    mutated by finance_service; version_id guards the read-modify-write.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("business_id", "name", name="uq_accounts_business_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    type = db.Column(db.String(16), nullable=False)  # asset, liability, equity
    currency = db.Column(db.String(3), nullable=False)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    account_number = db.Column(db.String(64), nullable=True)
    bank_name = db.Column(db.String(128), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    last_movement_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Account id={self.id} name={self.name!r} balance_cents={self.balance_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "type": self.type,
            "currency": self.currency,
            "balance_cents": self.balance_cents,
            "opening_balance_cents": self.opening_balance_cents,
            "is_default": self.is_default,
            "account_number": self.account_number,
            "bank_name": self.bank_name,
            "description": self.description,
            "last_movement_at": to_utc_z(self.last_movement_at) if self.last_movement_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class Transaction(db.Model):
    """
    Append-only ledger entry.

    TYPES:
    - income: account_id += amount
    - expense: account_id -= amount
    - transfer: account_id -= amount, to_account_id += amount

    amount_cents is always positive; the sign comes from the type.
    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_business_occurred", "business_id", "occurred_at"),
        db.Index("ix_transactions_business_type", "business_id", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    to_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)

    category = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    reference = db.Column(db.String(64), nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="completed")
    reconciled = db.Column(db.Boolean, nullable=False, default=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    account = db.relationship("Account", foreign_keys=[account_id])
    to_account = db.relationship("Account", foreign_keys=[to_account_id])

    def signed_delta_for(self, account_id: int) -> int:
        """Signed effect of this entry on the given account's balance."""
        delta = 0
        if self.type == "income" and self.account_id == account_id:
            delta += self.amount_cents
        elif self.type == "expense" and self.account_id == account_id:
            delta -= self.amount_cents
        elif self.type == "transfer":
            if self.account_id == account_id:
                delta -= self.amount_cents
            if self.to_account_id == account_id:
                delta += self.amount_cents
        return delta

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "account_id": self.account_id,
            "to_account_id": self.to_account_id,
            "category": self.category,
            "description": self.description,
            "reference": self.reference,
            "notes": self.notes,
            "status": self.status,
            "reconciled": self.reconciled,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }


class AuditLog(db.Model):
    """
    Append-only audit trail of ledger operations.

    Written inside a SAVEPOINT so a failure here never aborts the
    operation being audited.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    entity = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(32), nullable=False)
    payload = db.Column(db.JSON, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "action": self.action,
            "payload": self.payload,
            "user_id": self.user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
