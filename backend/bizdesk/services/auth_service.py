# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication and Business Registration

Every ledger operation runs on behalf of a user of exactly one business.
Passwords are hashed with bcrypt (cost factor 12); session tokens are
handled in session_service.

Password rules: at least 8 characters, with an uppercase letter, a
lowercase letter and a digit.
"""

from __future__ import annotations

import re

import bcrypt
from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Business, User
from ..validation import coerce_int
from bizdesk.time_utils import utcnow
from .concurrency import run_in_transaction
from .context import LedgerContext
from .finance_service import create_account_record


DEFAULT_ACCOUNTS = (
    {"name": "Cash", "type": "asset", "is_default": True, "description": "Cash on hand"},
    {"name": "Bank Account", "type": "asset", "is_default": False, "description": "Primary bank account"},
)


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash
        return False


def _normalize_email(email: str | None) -> str:
    email = (email or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("email is not a valid address")
    return email


def _create_user_locked(
    business_id: int,
    *,
    email: str,
    password: str,
    display_name: str | None,
    role: str,
) -> User:
    email = _normalize_email(email)
    if db.session.query(User.id).filter_by(email=email).first() is not None:
        raise ConflictError("A user with this email already exists")
    user = User(
        business_id=business_id,
        email=email,
        display_name=(display_name or "").strip() or None,
        password_hash=hash_password(password),
        role=role,
    )
    db.session.add(user)
    db.session.flush()
    return user


def register_business(
    name: str,
    email: str,
    password: str,
    display_name: str | None = None,
    *,
    currency: str | None = None,
    tax_rate_bps: int | None = None,
    tax_inclusive: bool = False,
) -> tuple[Business, User]:
    """
    Create a business, its owner and the default "Cash" (default) and
    "Bank Account" asset accounts, in one commit.
    """
    if not name or not name.strip():
        raise ValidationError("Missing required field: name")
    currency = (currency or current_app.config.get("DEFAULT_CURRENCY", "USD")).upper()
    if tax_rate_bps is None:
        tax_rate_bps = current_app.config.get("DEFAULT_TAX_RATE_BPS", 0)
    tax_rate_bps = coerce_int("tax_rate_bps", tax_rate_bps)
    if tax_rate_bps < 0:
        raise ValidationError("tax_rate_bps must be >= 0")

    def _op():
        business = Business(
            name=name.strip(),
            currency=currency,
            tax_rate_bps=tax_rate_bps,
            tax_inclusive=bool(tax_inclusive),
            email=(email or "").strip().lower() or None,
        )
        db.session.add(business)
        db.session.flush()

        owner = _create_user_locked(
            business.id, email=email, password=password, display_name=display_name, role="owner",
        )
        ctx = LedgerContext(business_id=business.id, user_id=owner.id)
        for spec in DEFAULT_ACCOUNTS:
            create_account_record(ctx, {**spec, "currency": currency})
        return business, owner

    business, owner = run_in_transaction(_op)
    current_app.logger.info("Registered business %s (%s)", business.id, business.name)
    return business, owner


def create_user(ctx: LedgerContext, email: str, password: str, display_name: str | None = None,
                role: str = "staff") -> User:
    if role not in ("owner", "staff"):
        raise ValidationError("role must be owner or staff")
    return run_in_transaction(lambda: _create_user_locked(
        ctx.business_id, email=email, password=password, display_name=display_name, role=role,
    ))


def authenticate(email: str, password: str) -> User | None:
    """
    Returns the User for valid credentials of an active user of an active
    business, else None. Stamps last_login_at.
    """
    user = db.session.query(User).filter(
        User.email == (email or "").strip().lower(),
        User.is_active.is_(True),
    ).first()
    if not user:
        return None

    business = db.session.get(Business, user.business_id)
    if not business or not business.is_active:
        return None

    if not verify_password(password or "", user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def get_business(business_id: int) -> Business:
    business = db.session.get(Business, business_id)
    if business is None:
        raise NotFoundError("Business not found")
    return business
