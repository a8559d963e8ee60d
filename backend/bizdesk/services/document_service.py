# Overview: Human-readable document numbering for sales and returns.

from __future__ import annotations

import secrets

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


def next_document_number(
    *,
    business_id: int,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Atomically allocate the next document number for a business/type.

    The counter is bumped with a single UPDATE ... SET n = n + 1 so two
    concurrent checkouts can never receive the same number. Must run inside
    the caller's transaction (no commit here).
    """
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.business_id == business_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(business_id=business_id, document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(
                    business_id=business_id, document_type=document_type, next_number=2,
                ))
            next_num = 1
        except IntegrityError:
            # Another transaction created the row first
            db.session.execute(stmt)
            current = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(business_id=business_id, document_type=document_type)
                .scalar()
            )
            next_num = current - 1

    return f"{prefix}-{str(next_num).zfill(pad)}"


def make_reference(prefix: str) -> str:
    """Opaque external reference for payments, refunds and transfers (e.g. PAY-3F9A1C0B2D7E)."""
    return f"{prefix}-{secrets.token_hex(6).upper()}"
