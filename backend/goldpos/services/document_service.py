# Overview: Per-branch document numbering for orders, transactions, and transfers.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence


# Document types and their number prefixes
ORDER_NUMBER = ("ORDER", "ORD", 6)
FINANCIAL_TRANSACTION_NUMBER = ("FINANCIAL_TRANSACTION", "FT", 6)
RAW_GOLD_TRANSFER_NUMBER = ("RAW_GOLD_TRANSFER", "RGT", 4)
SUPPLIER_PAYMENT_NUMBER = ("SUPPLIER_PAYMENT", "SP", 4)
CUSTOMER_PURCHASE_NUMBER = ("CUSTOMER_PURCHASE", "CP", 4)
MANUFACTURE_NUMBER = ("MANUFACTURE", "MFG", 4)


def _bump(branch_id: int, document_type: str) -> int | None:
    """Take the next number from an existing counter row; None when the row does not exist yet."""
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.branch_id == branch_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    db.session.flush()
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(branch_id=branch_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    branch_id: int,
    document_type: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Allocate the next document number for a branch/type.

    Increments the counter row with a single UPDATE so two sessions can
    never read the same value. Runs inside the caller's transaction and
    does not commit.

    The first number of a type inserts the counter row inside a savepoint.
    If another session inserted it first, only the savepoint rolls back and
    the number is taken from that row instead.
    """
    if not branch_id:
        raise ValidationError("branch_id is required", field="branch_id")
    if not document_type:
        raise ValidationError("document_type is required", field="document_type")

    next_num = _bump(branch_id, document_type)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(branch_id=branch_id, document_type=document_type, next_number=2)
                )
            next_num = 1
        except IntegrityError:
            current_app.logger.info(
                "Counter %s for branch %s created concurrently, retrying", document_type, branch_id
            )
            next_num = _bump(branch_id, document_type)
            if next_num is None:
                raise

    return f"{prefix}-{branch_id:03d}-{next_num:0{pad}d}"


def allocate(branch_id: int, kind: tuple[str, str, int]) -> str:
    document_type, prefix, pad = kind
    return next_document_number(
        branch_id=branch_id,
        document_type=document_type,
        prefix=prefix,
        pad=pad,
    )
