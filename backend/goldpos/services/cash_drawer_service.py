"""
Cash Drawer Reconciliation Service

WHY: The till is counted every day. The expected closing cash is derived
from the day's cash transactions; the difference from the counted amount
is the over/short the branch manager must explain.

DESIGN PRINCIPLES:
- One drawer record per branch per business day
- Expected closing = opening + cash taken - cash refunded
- Over/short is derived from actual and expected, never stored
- Settlement hands cash to treasury; what stays in the till opens tomorrow
"""

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import BusinessRuleViolation, DuplicateEntity, EntityNotFound, InvalidEntityState, ValidationError
from ..extensions import db
from ..lookups import (
    DRAWER_CLOSED,
    DRAWER_OPEN,
    PAYMENT_CASH,
    TX_CASH_STATUSES,
    TX_GOLD_PURCHASE,
    TX_REFUND,
    TX_REPAIR,
    TX_RETURN,
    TX_SALE,
)
from ..models import Branch, CashDrawerBalance, FinancialTransaction
from ..money import cents_to_str
from ..time_utils import business_today, day_bounds, utcnow
from .concurrency import commit_or_conflict, lock_for_update
from .financial_transaction_service import append_note


def _require_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if not branch:
        raise EntityNotFound("Branch", branch_id)
    return branch


def get_drawer(branch_id: int, business_date: date | None = None) -> CashDrawerBalance | None:
    business_date = business_date or business_today()
    return (
        db.session.query(CashDrawerBalance)
        .filter_by(branch_id=branch_id, balance_date=business_date)
        .first()
    )


def _lock_drawer(branch_id: int, business_date: date) -> CashDrawerBalance:
    drawer = lock_for_update(
        db.session.query(CashDrawerBalance).filter_by(branch_id=branch_id, balance_date=business_date)
    ).first()
    if not drawer:
        raise EntityNotFound(
            "CashDrawerBalance",
            None,
            f"No cash drawer for branch {branch_id} on {business_date.isoformat()}",
        )
    return drawer


# =============================================================================
# EXPECTED CASH
# =============================================================================

def calculate_cash_movements(branch_id: int, business_date: date) -> dict:
    """
    Cash in and out of the till for one day.

    Counts cash transactions that moved money (COMPLETED, or later
    REFUNDED); voided rows are ignored. Sales and repairs count what stayed
    in the drawer after change. Payouts (returns and gold bought from
    customers) count their totals. Refund rows carry negated totals, so the
    refunded cash is their negated sum.
    """
    start, end = day_bounds(business_date)
    rows = (
        db.session.query(FinancialTransaction)
        .filter(
            FinancialTransaction.branch_id == branch_id,
            FinancialTransaction.payment_method == PAYMENT_CASH,
            FinancialTransaction.status.in_(TX_CASH_STATUSES),
            FinancialTransaction.transaction_date >= start,
            FinancialTransaction.transaction_date < end,
        )
        .all()
    )

    sales = sum(tx.net_cash_cents for tx in rows if tx.transaction_type == TX_SALE)
    repairs = sum(tx.net_cash_cents for tx in rows if tx.transaction_type == TX_REPAIR)
    returns = sum(tx.total_cents for tx in rows if tx.transaction_type == TX_RETURN)
    gold_purchases = sum(tx.total_cents for tx in rows if tx.transaction_type == TX_GOLD_PURCHASE)
    refunds = -sum(tx.total_cents for tx in rows if tx.transaction_type == TX_REFUND)
    return {
        "cash_sales_cents": sales,
        "cash_repairs_cents": repairs,
        "cash_returns_cents": returns,
        "cash_gold_purchases_cents": gold_purchases,
        "cash_refunds_cents": refunds,
        "net_cash_cents": sales + repairs - returns - gold_purchases - refunds,
    }


def calculate_expected_closing(
    branch_id: int,
    business_date: date | None = None,
    opening_balance_cents: int | None = None,
) -> int:
    """
    Opening balance plus the day's net cash.

    The opening balance is the drawer's own when not given; a day with no
    drawer starts from zero.
    """
    business_date = business_date or business_today()
    if opening_balance_cents is None:
        drawer = get_drawer(branch_id, business_date)
        opening_balance_cents = drawer.opening_balance_cents if drawer else 0
    return opening_balance_cents + calculate_cash_movements(branch_id, business_date)["net_cash_cents"]


def get_opening_balance_suggestion(branch_id: int, business_date: date | None = None) -> int:
    """Actual closing cash of the most recent closed day before business_date."""
    business_date = business_date or business_today()
    previous = (
        db.session.query(CashDrawerBalance)
        .filter(
            CashDrawerBalance.branch_id == branch_id,
            CashDrawerBalance.balance_date < business_date,
            CashDrawerBalance.status == DRAWER_CLOSED,
        )
        .order_by(CashDrawerBalance.balance_date.desc())
        .first()
    )
    if not previous or previous.actual_closing_balance_cents is None:
        return 0
    return previous.actual_closing_balance_cents


# =============================================================================
# OPEN / CLOSE
# =============================================================================

def open_drawer(
    branch_id: int,
    opening_balance_cents: int,
    user: str,
    business_date: date | None = None,
    notes: str | None = None,
) -> CashDrawerBalance:
    """
    Open the drawer for a business day.

    Raises:
        ValidationError: Negative opening balance
        DuplicateEntity: Drawer already exists for that day
    """
    business_date = business_date or business_today()
    _require_branch(branch_id)
    if opening_balance_cents < 0:
        raise ValidationError("Opening balance cannot be negative", field="opening_balance_cents")

    if get_drawer(branch_id, business_date):
        raise DuplicateEntity(
            "CashDrawerBalance",
            "balance_date",
            business_date.isoformat(),
            message=f"Cash drawer already opened for branch {branch_id} on {business_date.isoformat()}",
        )

    drawer = CashDrawerBalance(
        branch_id=branch_id,
        balance_date=business_date,
        status=DRAWER_OPEN,
        opening_balance_cents=opening_balance_cents,
        expected_closing_balance_cents=calculate_expected_closing(
            branch_id, business_date, opening_balance_cents
        ),
        opened_by=user,
        opened_at=utcnow(),
        notes=notes,
        created_by=user,
    )
    db.session.add(drawer)
    try:
        commit_or_conflict()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateEntity("CashDrawerBalance", "balance_date", business_date.isoformat())
    return drawer


def close_drawer(
    branch_id: int,
    actual_closing_cents: int,
    user: str,
    business_date: date | None = None,
    notes: str | None = None,
) -> CashDrawerBalance:
    """
    Record the counted cash and close the day.

    Raises:
        EntityNotFound: No drawer for the day
        InvalidEntityState: Already closed
        ValidationError: Negative count
    """
    business_date = business_date or business_today()
    if actual_closing_cents < 0:
        raise ValidationError("Actual closing balance cannot be negative", field="actual_closing_cents")

    drawer = _lock_drawer(branch_id, business_date)
    if drawer.status != DRAWER_OPEN:
        raise InvalidEntityState("CashDrawerBalance", drawer.id, drawer.status, "close")

    _close(drawer, actual_closing_cents, user, notes)
    commit_or_conflict()

    if drawer.cash_over_short_cents:
        current_app.logger.warning(
            "Drawer %s for branch %s closed %s by %s",
            business_date.isoformat(),
            branch_id,
            cents_to_str(drawer.cash_over_short_cents),
            "over" if drawer.cash_over_short_cents > 0 else "short",
        )
    return drawer


def _close(drawer: CashDrawerBalance, actual_closing_cents: int, user: str, notes: str | None) -> None:
    drawer.expected_closing_balance_cents = calculate_expected_closing(
        drawer.branch_id, drawer.balance_date, drawer.opening_balance_cents
    )
    drawer.actual_closing_balance_cents = actual_closing_cents
    drawer.status = DRAWER_CLOSED
    drawer.closed_by = user
    drawer.closed_at = utcnow()
    if notes:
        drawer.notes = append_note(drawer.notes, notes)
    drawer.touch(user)


def settle_shift(
    branch_id: int,
    actual_closing_cents: int,
    settled_amount_cents: int,
    user: str,
    business_date: date | None = None,
    notes: str | None = None,
) -> dict:
    """
    Close the day, hand the expected cash over, and carry the rest forward.

    The settled amount must equal the expected closing balance. Whatever
    the count holds beyond it stays in the till and opens the next day's
    drawer.

    Returns:
        {"drawer": closed drawer, "next_drawer": next day's drawer or None,
         "carried_forward_cents": int}

    Raises:
        ValidationError: Negative settlement, settlement not equal to
            expected, count below settlement
        InvalidEntityState: Drawer already closed
        BusinessRuleViolation: Next day's drawer already exists
    """
    business_date = business_date or business_today()
    next_day = business_date + timedelta(days=1)

    if settled_amount_cents < 0:
        raise ValidationError("Settled amount cannot be negative", field="settled_amount_cents")

    drawer = _lock_drawer(branch_id, business_date)
    if drawer.status != DRAWER_OPEN:
        raise InvalidEntityState("CashDrawerBalance", drawer.id, drawer.status, "settle")

    expected = calculate_expected_closing(branch_id, business_date, drawer.opening_balance_cents)
    if settled_amount_cents != expected:
        raise ValidationError(
            f"Settlement amount must be exactly {cents_to_str(expected)} (expected closing balance)",
            field="settled_amount_cents",
        )
    if actual_closing_cents < settled_amount_cents:
        raise ValidationError(
            "Actual closing balance must be at least the settlement amount",
            field="actual_closing_cents",
        )
    if get_drawer(branch_id, next_day):
        raise BusinessRuleViolation(
            "NEXT_DAY_DRAWER_EXISTS",
            f"Cash drawer for {next_day.isoformat()} already exists; cannot carry balance forward",
        )

    carried = actual_closing_cents - settled_amount_cents

    _close(drawer, actual_closing_cents, user, notes)
    drawer.settled_amount_cents = settled_amount_cents
    drawer.carried_forward_cents = carried

    next_drawer = None
    if carried > 0:
        next_drawer = CashDrawerBalance(
            branch_id=branch_id,
            balance_date=next_day,
            status=DRAWER_OPEN,
            opening_balance_cents=carried,
            expected_closing_balance_cents=calculate_expected_closing(branch_id, next_day, carried),
            opened_by=user,
            opened_at=utcnow(),
            notes=f"Opening balance carried forward from {business_date.isoformat()} settlement",
            created_by=user,
        )
        db.session.add(next_drawer)

    commit_or_conflict()
    current_app.logger.info(
        "Branch %s settled %s for %s, carried forward %s",
        branch_id,
        cents_to_str(settled_amount_cents),
        business_date.isoformat(),
        cents_to_str(carried),
    )
    return {"drawer": drawer, "next_drawer": next_drawer, "carried_forward_cents": carried}


# =============================================================================
# QUERIES
# =============================================================================

def refresh_expected_closing(branch_id: int, business_date: date | None = None) -> CashDrawerBalance:
    """Recompute the expected closing of an open drawer after new transactions."""
    business_date = business_date or business_today()
    drawer = _lock_drawer(branch_id, business_date)
    if drawer.status != DRAWER_OPEN:
        raise InvalidEntityState("CashDrawerBalance", drawer.id, drawer.status, "refresh")
    drawer.expected_closing_balance_cents = calculate_expected_closing(
        branch_id, business_date, drawer.opening_balance_cents
    )
    commit_or_conflict()
    return drawer


def is_open(branch_id: int, business_date: date | None = None) -> bool:
    drawer = get_drawer(branch_id, business_date)
    return drawer is not None and drawer.status == DRAWER_OPEN


def get_drawers(branch_id: int, start: date, end: date) -> list[CashDrawerBalance]:
    """Drawers with start <= balance_date <= end, oldest first."""
    if end < start:
        raise ValidationError("End date must not precede start date", field="end")
    return (
        db.session.query(CashDrawerBalance)
        .filter(
            CashDrawerBalance.branch_id == branch_id,
            CashDrawerBalance.balance_date >= start,
            CashDrawerBalance.balance_date <= end,
        )
        .order_by(CashDrawerBalance.balance_date)
        .all()
    )
