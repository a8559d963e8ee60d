from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z, utcnow


class Sale(db.Model):
    """
    Completed POS sale.

    Created once by checkout inside the same DB transaction as its payment,
    stock and customer effects. Afterwards only a linked Return may change
    its status (completed -> partially_returned -> returned).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("business_id", "document_number", name="uq_sales_business_docnum"),
        db.Index("ix_sales_business_status_created", "business_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    # Human-readable document number (e.g., "S-000123")
    document_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=False, default="Walk-in Customer")

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False)
    tax_inclusive = db.Column(db.Boolean, nullable=False, default=False)

    payment_method = db.Column(db.String(32), nullable=False)
    payment_reference = db.Column(db.String(64), nullable=True)
    # Open-ended, method specific payment metadata (tendered/change, card last4, provider)
    payment_details = db.Column(db.JSON, nullable=False, default=dict)
    payment_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)

    status = db.Column(db.String(24), nullable=False, default="completed", index=True)
    notes = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "document_number": self.document_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_inclusive": self.tax_inclusive,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "payment_details": dict(self.payment_details or {}),
            "payment_transaction_id": self.payment_transaction_id,
            "status": self.status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
            "items": [line.to_dict() for line in self.lines],
        }


class SaleLine(db.Model):
    """Snapshot of product, price and quantity at sale time."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="pcs")
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "unit": self.unit,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
            "tax_cents": self.tax_cents,
        }


class Receipt(db.Model):
    """Persisted receipt representation for a sale (content + plain-text rendering)."""
    __tablename__ = "receipts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, unique=True)

    receipt_number = db.Column(db.String(48), nullable=False, unique=True)
    content = db.Column(db.JSON, nullable=False)
    text = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", backref=db.backref("receipt", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "sale_id": self.sale_id,
            "receipt_number": self.receipt_number,
            "content": self.content,
            "text": self.text,
            "created_at": to_utc_z(self.created_at),
        }


class Return(db.Model):
    """
    Return against a previous sale.

    refund_transaction_id points at the compensating expense Transaction
    recorded in the same DB transaction.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("business_id", "document_number", name="uq_returns_business_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    document_number = db.Column(db.String(32), nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    refund_amount_cents = db.Column(db.Integer, nullable=False)
    refund_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    refund_transaction = db.relationship("Transaction")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "document_number": self.document_number,
            "sale_id": self.sale_id,
            "refund_amount_cents": self.refund_amount_cents,
            "refund_transaction_id": self.refund_transaction_id,
            "reason": self.reason,
            "processed_by_user_id": self.processed_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "items": [line.to_dict() for line in self.lines],
        }


class ReturnLine(db.Model):
    __tablename__ = "return_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_refund_cents = db.Column(db.Integer, nullable=False)

    return_doc = db.relationship("Return", backref=db.backref("lines", lazy=True, order_by="ReturnLine.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_refund_cents": self.line_refund_cents,
        }


class DocumentSequence(db.Model):
    """Per-business counter for human-readable document numbers."""
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("business_id", "document_type", name="uq_document_sequences_business_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
