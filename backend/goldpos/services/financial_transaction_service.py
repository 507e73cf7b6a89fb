"""
Financial Transaction Service

WHY: Every movement of money through the till is a FinancialTransaction.
Orders say what was sold; these rows say what was paid, refunded, or voided,
and the cash drawer reconciles against them.

DESIGN PRINCIPLES:
- Transactions are created COMPLETED; money has already changed hands
- Void is a same-day correction (configurable window), no money moves
- Reversal is a refund: a new REFUND row with negated amounts
- Only money taken in (sales, repairs) can be voided or reversed, and a
  sale that already had pieces returned cannot; the return refunded them
- Voiding or reversing a sale puts its pieces back into owned stock
- Rows are never edited after the fact except for status and notes
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..errors import (
    BusinessRuleViolation,
    EntityNotFound,
    InsufficientPermissions,
    InvalidEntityState,
    PaymentException,
    ValidationError,
)
from ..extensions import db
from ..lookups import (
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_REFUNDED,
    ORDER_RETURN,
    PAYMENT_CASH,
    PAYMENT_METHODS,
    TX_COMPLETED,
    TX_GOLD_PURCHASE,
    TX_INCOME_TYPES,
    TX_PAYOUT_TYPES,
    TX_REFUND,
    TX_REFUNDED,
    TX_REPAIR,
    TX_RETURN,
    TX_SALE,
    TX_VOIDED,
)
from ..models import Branch, FinancialTransaction
from ..money import cents_to_str
from ..time_utils import utcnow
from . import ownership_service
from .concurrency import commit_or_conflict, lock_for_update
from .document_service import FINANCIAL_TRANSACTION_NUMBER, allocate


CREATABLE_TYPES = (TX_SALE, TX_RETURN, TX_REPAIR, TX_GOLD_PURCHASE)


def append_note(existing: str | None, note: str) -> str:
    if not existing:
        return note
    return f"{existing}; {note}"


def get_transaction(transaction_id: int) -> FinancialTransaction:
    tx = db.session.get(FinancialTransaction, transaction_id)
    if not tx:
        raise EntityNotFound("FinancialTransaction", transaction_id)
    return tx


def _lock_transaction(transaction_id: int) -> FinancialTransaction:
    tx = lock_for_update(
        db.session.query(FinancialTransaction).filter_by(id=transaction_id)
    ).first()
    if not tx:
        raise EntityNotFound("FinancialTransaction", transaction_id)
    return tx


def _require_undoable(tx: FinancialTransaction, action: str) -> None:
    """
    Only sales and repairs can be voided or reversed, and not a sale whose
    order already had pieces returned.

    Raises:
        InvalidEntityState: Payout or refund row, or a sale with returns
    """
    if tx.transaction_type not in TX_INCOME_TYPES:
        raise InvalidEntityState(
            "FinancialTransaction",
            tx.id,
            tx.transaction_type,
            action,
            message=f"Cannot {action} a {tx.transaction_type} transaction",
        )
    if tx.order is not None and any(
        o.order_type == ORDER_RETURN and o.status == ORDER_COMPLETED for o in tx.order.return_orders
    ):
        raise InvalidEntityState(
            "FinancialTransaction",
            tx.id,
            tx.status,
            action,
            message=(
                f"Order {tx.order.order_number} already has returned pieces; "
                f"return the remaining pieces instead"
            ),
        )


def _restore_sold_pieces(tx: FinancialTransaction, user: str) -> None:
    if tx.transaction_type != TX_SALE or tx.order is None:
        return
    for item in tx.order.items:
        if item.product_id is not None:
            ownership_service.restore_ownership_for_return(
                item.product_id, tx.branch_id, item.quantity, tx.transaction_number, user
            )


# =============================================================================
# CREATE
# =============================================================================

def record_transaction(
    *,
    branch_id: int,
    transaction_type: str,
    total_cents: int,
    amount_paid_cents: int,
    processed_by: str,
    subtotal_cents: int | None = None,
    tax_cents: int = 0,
    discount_cents: int = 0,
    payment_method: str = PAYMENT_CASH,
    order_id: int | None = None,
    approved_by: str | None = None,
    notes: str | None = None,
) -> FinancialTransaction:
    """
    Validate and add a transaction to the session without committing.

    Raises:
        ValidationError: Unknown type or payment method, missing branch
        PaymentException: Non-positive total or underpayment
    """
    if transaction_type not in CREATABLE_TYPES:
        raise ValidationError(f"Unknown transaction type '{transaction_type}'", field="transaction_type")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method '{payment_method}'", field="payment_method")
    if not db.session.get(Branch, branch_id):
        raise EntityNotFound("Branch", branch_id)

    if total_cents <= 0:
        raise PaymentException("Transaction total must be greater than zero")
    if amount_paid_cents < total_cents:
        raise PaymentException(
            f"Amount paid {cents_to_str(amount_paid_cents)} is less than total {cents_to_str(total_cents)}",
            user_friendly_message="The amount paid does not cover the total.",
        )

    tx = FinancialTransaction(
        branch_id=branch_id,
        transaction_number=allocate(branch_id, FINANCIAL_TRANSACTION_NUMBER),
        transaction_type=transaction_type,
        status=TX_COMPLETED,
        order_id=order_id,
        payment_method=payment_method,
        subtotal_cents=subtotal_cents if subtotal_cents is not None else total_cents - tax_cents + discount_cents,
        tax_cents=tax_cents,
        discount_cents=discount_cents,
        total_cents=total_cents,
        amount_paid_cents=amount_paid_cents,
        change_given_cents=amount_paid_cents - total_cents,
        processed_by=processed_by,
        approved_by=approved_by,
        transaction_date=utcnow(),
        notes=notes,
        created_by=processed_by,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def create_transaction(**kwargs) -> FinancialTransaction:
    """Record a standalone transaction and commit. Accepts record_transaction's arguments."""
    tx = record_transaction(**kwargs)
    commit_or_conflict()
    return tx


# =============================================================================
# VOID / REVERSE
# =============================================================================

def void_transaction(transaction_id: int, reason: str, user: str) -> FinancialTransaction:
    """
    Void a completed transaction inside the void window.

    WHY: Voids correct keying mistakes before the drawer closes. Outside
    the window a refund (reverse_transaction) is required instead.

    Raises:
        InvalidEntityState: Transaction not COMPLETED, not a sale or repair,
            or a sale with returned pieces
        BusinessRuleViolation: Void window has passed
    """
    if not (reason or "").strip():
        raise ValidationError("A void reason is required", field="reason")

    tx = _lock_transaction(transaction_id)
    if tx.status != TX_COMPLETED:
        raise InvalidEntityState("FinancialTransaction", tx.id, tx.status, "void")
    _require_undoable(tx, "void")

    window = timedelta(hours=current_app.config["VOID_WINDOW_HOURS"])
    if utcnow() - tx.transaction_date > window:
        raise BusinessRuleViolation(
            "VOID_WINDOW_EXPIRED",
            f"Transactions can only be voided within {current_app.config['VOID_WINDOW_HOURS']} hours",
            entity_type="FinancialTransaction",
            entity_id=tx.id,
        )

    try:
        tx.status = TX_VOIDED
        tx.voided_at = utcnow()
        tx.notes = append_note(tx.notes, f"Voided: {reason}")
        tx.touch(user)

        if tx.order is not None:
            tx.order.status = ORDER_CANCELLED
            tx.order.cancelled_at = tx.voided_at
            tx.order.notes = append_note(tx.order.notes, f"Payment voided: {reason}")
            tx.order.touch(user)
        _restore_sold_pieces(tx, user)

        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info("Transaction %s voided by %s", tx.transaction_number, user)
    return tx


def reverse_transaction(
    transaction_id: int,
    reason: str,
    user: str,
    approved_by: str | None,
) -> FinancialTransaction:
    """
    Refund a completed transaction with a new REFUND row.

    The refund carries negated amounts and points back at the original,
    which becomes REFUNDED. A reversed sale's pieces go back into owned
    stock.

    Raises:
        InsufficientPermissions: No manager approval
        InvalidEntityState: Not COMPLETED, already reversed, not a sale or
            repair, or a sale with returned pieces
    """
    if not approved_by:
        raise InsufficientPermissions(
            "reverse",
            "financial transaction",
            message="Reversing a transaction requires manager approval",
        )

    original = _lock_transaction(transaction_id)
    if original.status != TX_COMPLETED:
        raise InvalidEntityState("FinancialTransaction", original.id, original.status, "reverse")
    _require_undoable(original, "reverse")

    already = (
        db.session.query(FinancialTransaction.id)
        .filter_by(original_transaction_id=original.id, transaction_type=TX_REFUND)
        .first()
    )
    if already:
        raise InvalidEntityState(
            "FinancialTransaction",
            original.id,
            original.status,
            "reverse",
            message=f"Transaction {original.transaction_number} has already been reversed",
        )

    try:
        refund = FinancialTransaction(
            branch_id=original.branch_id,
            transaction_number=allocate(original.branch_id, FINANCIAL_TRANSACTION_NUMBER),
            transaction_type=TX_REFUND,
            status=TX_COMPLETED,
            order_id=original.order_id,
            original_transaction_id=original.id,
            payment_method=original.payment_method,
            subtotal_cents=-original.subtotal_cents,
            tax_cents=-original.tax_cents,
            discount_cents=-original.discount_cents,
            total_cents=-original.total_cents,
            amount_paid_cents=-original.total_cents,
            change_given_cents=0,
            processed_by=user,
            approved_by=approved_by,
            transaction_date=utcnow(),
            notes=f"Reversal of {original.transaction_number}: {reason}",
            created_by=user,
        )
        db.session.add(refund)

        original.status = TX_REFUNDED
        original.notes = append_note(original.notes, f"Reversed: {reason}")
        original.touch(user)

        if original.order is not None:
            original.order.status = ORDER_REFUNDED
            original.order.touch(user)
        _restore_sold_pieces(original, user)

        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Transaction %s reversed by %s (approved by %s)", original.transaction_number, user, approved_by
    )
    return refund


# =============================================================================
# QUERIES
# =============================================================================

def list_transactions(
    branch_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    status: str | None = None,
    transaction_type: str | None = None,
) -> list[FinancialTransaction]:
    query = db.session.query(FinancialTransaction).filter_by(branch_id=branch_id)
    if start is not None:
        query = query.filter(FinancialTransaction.transaction_date >= start)
    if end is not None:
        query = query.filter(FinancialTransaction.transaction_date < end)
    if status:
        query = query.filter_by(status=status)
    if transaction_type:
        query = query.filter_by(transaction_type=transaction_type)
    return query.order_by(FinancialTransaction.transaction_date, FinancialTransaction.id).all()


def get_transaction_summary(branch_id: int, start: datetime, end: datetime) -> dict:
    """Counts and totals per type and per status. Voided rows are counted but not summed."""
    rows = list_transactions(branch_id, start, end)

    by_type: dict[str, dict] = {}
    by_status: dict[str, dict] = {}
    net_total = 0
    for tx in rows:
        counted = tx.status != TX_VOIDED
        for bucket, key in ((by_type, tx.transaction_type), (by_status, tx.status)):
            entry = bucket.setdefault(key, {"count": 0, "total_cents": 0})
            entry["count"] += 1
            if counted:
                entry["total_cents"] += tx.total_cents
        if counted:
            # payout totals are stored positive but are money paid out
            net_total += -tx.total_cents if tx.transaction_type in TX_PAYOUT_TYPES else tx.total_cents

    return {
        "branch_id": branch_id,
        "transaction_count": len(rows),
        "net_total_cents": net_total,
        "by_type": by_type,
        "by_status": by_status,
    }
