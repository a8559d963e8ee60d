# Overview: Request decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import LedgerError
from .services import session_service
from .services.context import LedgerContext


def require_auth(f):
    """
    Require authentication and establish tenant context.

    Sets on flask.g:
    - g.current_user: the authenticated User
    - g.business_id: the session's business (tenant)
    - g.ledger_context: LedgerContext passed to every service call
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.business_id = context.business_id
        g.session_context = context
        g.ledger_context = LedgerContext(business_id=context.business_id, user_id=context.user.id)
        return f(*args, **kwargs)

    return decorated_function


def handle_ledger_errors(f):
    """
    Map LedgerError to its JSON body and HTTP status. Anything else is
    logged with the traceback and returned as a generic 500.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except LedgerError as e:
            return jsonify(e.to_dict()), e.http_status
        except Exception:
            current_app.logger.exception("Unhandled error in %s %s", request.method, request.path)
            return jsonify({"error": "Internal server error"}), 500

    return decorated_function
