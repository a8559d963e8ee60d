# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import handle_ledger_errors, require_auth
from ..errors import ValidationError
from ..services import auth_service, session_service
from ..services.context import LedgerContext
from .params import json_body

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _session_payload(user, token, session) -> dict:
    return {
        "user": user.to_dict(),
        "business": auth_service.get_business(user.business_id).to_dict(),
        "token": token,
        "expires_at": session.expires_at.isoformat() + "Z",
    }


@auth_bp.post("/register")
@handle_ledger_errors
def register_route():
    """
    Register a new business with its owner, then log the owner in.

    Body: name, email, password, display_name?, currency?, tax_rate_bps?, tax_inclusive?
    """
    data = json_body()
    business, owner = auth_service.register_business(
        data.get("name"),
        data.get("email"),
        data.get("password"),
        data.get("display_name"),
        currency=data.get("currency"),
        tax_rate_bps=data.get("tax_rate_bps"),
        tax_inclusive=bool(data.get("tax_inclusive", False)),
    )
    session, token = session_service.create_session(
        owner.id, user_agent=request.headers.get("User-Agent"), ip_address=request.remote_addr,
    )
    return jsonify(_session_payload(owner, token, session)), 201


@auth_bp.post("/login")
@handle_ledger_errors
def login_route():
    data = json_body()
    email = data.get("email")
    password = data.get("password")
    if not email or not password:
        raise ValidationError("email and password required")

    user = auth_service.authenticate(email, password)
    if not user:
        return jsonify({"error": "Invalid credentials"}), 401

    session, token = session_service.create_session(
        user.id, user_agent=request.headers.get("User-Agent"), ip_address=request.remote_addr,
    )
    return jsonify(_session_payload(user, token, session))


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = request.headers.get("Authorization", "").split(" ", 1)[1]
    session_service.revoke_session(token)
    return jsonify({"message": "Logged out"})


@auth_bp.get("/me")
@require_auth
@handle_ledger_errors
def me_route():
    return jsonify({
        "user": g.current_user.to_dict(),
        "business": auth_service.get_business(g.business_id).to_dict(),
    })


@auth_bp.post("/users")
@require_auth
@handle_ledger_errors
def create_user_route():
    """Owners add staff (or co-owners) to their business."""
    if g.current_user.role != "owner":
        return jsonify({"error": "Only owners can add users"}), 403
    data = json_body()
    user = auth_service.create_user(
        LedgerContext.from_request(),
        data.get("email"),
        data.get("password"),
        data.get("display_name"),
        role=data.get("role") or "staff",
    )
    return jsonify(user.to_dict()), 201
