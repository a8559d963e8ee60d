from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z


class Business(db.Model):
    """
    Multi-tenant root: every tenant is a Business.

    DESIGN:
    - All accounts, products, customers and ledger rows carry business_id
    - All queries must be scoped by business_id
    - Users belong to exactly one business
    - Tax settings live here and seed every new Cart
    """
    __tablename__ = "businesses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    currency = db.Column(db.String(3), nullable=False, default="USD")
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)  # Basis points (e.g., 1600 = 16%)
    tax_inclusive = db.Column(db.Boolean, nullable=False, default=False)

    address = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    tax_id = db.Column(db.String(64), nullable=True)
    receipt_footer = db.Column(db.String(255), nullable=False, default="Thank you for your business!")

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Business id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "currency": self.currency,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_inclusive": self.tax_inclusive,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "tax_id": self.tax_id,
            "receipt_footer": self.receipt_footer,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
