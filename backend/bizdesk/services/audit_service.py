# Overview: Best-effort audit trail for ledger operations.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLog
from .context import LedgerContext


def audit_log(
    ctx: LedgerContext,
    *,
    entity: str,
    entity_id: int,
    action: str,
    payload: dict | None = None,
) -> AuditLog | None:
    """
    Append an audit row inside a SAVEPOINT.

    A failure here is reported to the log and swallowed: the audited
    operation has already done its work and must not be aborted by the
    audit trail.
    """
    try:
        with db.session.begin_nested():
            entry = AuditLog(
                business_id=ctx.business_id,
                entity=entity,
                entity_id=entity_id,
                action=action,
                payload=payload,
                user_id=ctx.user_id,
            )
            db.session.add(entry)
        return entry
    except SQLAlchemyError:
        current_app.logger.warning(
            "Failed to write audit log for %s %s (%s)", entity, entity_id, action, exc_info=True
        )
        return None


def list_audit_logs(ctx: LedgerContext, *, entity: str | None = None, entity_id: int | None = None,
                    limit: int = 100) -> list[AuditLog]:
    q = db.session.query(AuditLog).filter_by(business_id=ctx.business_id)
    if entity:
        q = q.filter_by(entity=entity)
    if entity_id is not None:
        q = q.filter_by(entity_id=entity_id)
    return q.order_by(AuditLog.occurred_at.desc(), AuditLog.id.desc()).limit(limit).all()
