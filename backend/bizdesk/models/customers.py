from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Customer master data with credit and purchase aggregates.

    INVARIANT: 0 <= outstanding_balance_cents <= credit_limit_cents when
    credit_limit_cents > 0 (0 means unlimited). Only customer_service moves
    the balance; every move appends a CreditTransaction.

    Denormalized aggregates (total_purchases, total_spent_cents,
    first/last purchase) are updated when sales complete.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("business_id", "email", name="uq_customers_business_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    outstanding_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)  # 0 = unlimited
    credit_used_cents = db.Column(db.Integer, nullable=False, default=0)
    last_credit_update_at = db.Column(db.DateTime(timezone=True), nullable=True)

    total_purchases = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    first_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer_since = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_credit_cents(self) -> int | None:
        if self.credit_limit_cents <= 0:
            return None
        return self.credit_limit_cents - self.credit_used_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "notes": self.notes,
            "tags": list(self.tags or []),
            "status": self.status,
            "outstanding_balance_cents": self.outstanding_balance_cents,
            "credit_limit_cents": self.credit_limit_cents,
            "credit_used_cents": self.credit_used_cents,
            "available_credit_cents": self.available_credit_cents,
            "total_purchases": self.total_purchases,
            "total_spent_cents": self.total_spent_cents,
            "first_purchase_at": to_utc_z(self.first_purchase_at) if self.first_purchase_at else None,
            "last_purchase_at": to_utc_z(self.last_purchase_at) if self.last_purchase_at else None,
            "customer_since": to_utc_z(self.customer_since),
            "version_id": self.version_id,
        }


class CreditTransaction(db.Model):
    """
    Append-only ledger of customer balance moves.

    TRANSACTION TYPES:
    - increase: credit sale, balance goes up
    - decrease: manual write-down, clamped at 0
    - payment: customer pays off debt, clamped at 0

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        db.Index("ix_credit_txns_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    previous_balance_cents = db.Column(db.Integer, nullable=False)
    new_balance_cents = db.Column(db.Integer, nullable=False)
    reference = db.Column(db.String(128), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    customer = db.relationship("Customer", backref=db.backref("credit_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "customer_id": self.customer_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "previous_balance_cents": self.previous_balance_cents,
            "new_balance_cents": self.new_balance_cents,
            "reference": self.reference,
            "user_id": self.user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class CustomerInteraction(db.Model):
    """Call, visit or message logged against a customer."""
    __tablename__ = "customer_interactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    kind = db.Column(db.String(32), nullable=False)  # call, email, visit, note
    summary = db.Column(db.Text, nullable=False)
    follow_up_required = db.Column(db.Boolean, nullable=False, default=False)
    follow_up_date = db.Column(db.DateTime(timezone=True), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "customer_id": self.customer_id,
            "kind": self.kind,
            "summary": self.summary,
            "follow_up_required": self.follow_up_required,
            "follow_up_date": to_utc_z(self.follow_up_date) if self.follow_up_date else None,
            "user_id": self.user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
