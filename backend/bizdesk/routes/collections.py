# Overview: Read-only document-store access to any collection of the caller's business.

from flask import Blueprint, jsonify, request

from ..decorators import handle_ledger_errors, require_auth
from ..errors import NotFoundError
from ..services import document_store
from ..services.context import LedgerContext

collections_bp = Blueprint("collections", __name__, url_prefix="/api/collections")

_RESERVED_ARGS = ("order_by", "direction", "limit")


@collections_bp.get("/<name>")
@require_auth
@handle_ledger_errors
def query_collection_route(name: str):
    """
    Equality filters come from the remaining query args, e.g.
    /api/collections/customers?status=active&order_by=name&limit=20
    """
    filters = [
        (key, "==", value)
        for key, value in request.args.items()
        if key not in _RESERVED_ARGS
    ]
    order_by = None
    if request.args.get("order_by"):
        order_by = (request.args["order_by"], request.args.get("direction", "asc"))
    records = document_store.query(
        LedgerContext.from_request(),
        name,
        filters=filters,
        order_by=order_by,
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"items": [r.to_dict() for r in records]})


@collections_bp.get("/<name>/<int:doc_id>")
@require_auth
@handle_ledger_errors
def read_document_route(name: str, doc_id: int):
    record = document_store.read(LedgerContext.from_request(), name, doc_id)
    if record is None:
        raise NotFoundError(f"{name} {doc_id} not found")
    return jsonify(record.to_dict())
