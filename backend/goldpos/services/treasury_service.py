"""
Treasury Service

WHY: Each branch keeps a treasury (safe/bank cash) apart from the till.
Settled drawer cash flows in; supplier payments and inter-branch transfers
flow out. The account balance is only ever changed together with an
append-only TreasuryTransaction carrying the resulting balance.

DESIGN PRINCIPLES:
- Amounts are positive; direction (CREDIT/DEBIT) carries the sign
- A movement that would leave the balance negative is rejected
- The stored balance must equal the signed sum of the ledger
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import BusinessRuleViolation, DuplicateEntity, EntityNotFound, InvalidEntityState, ValidationError
from ..extensions import db
from ..lookups import (
    DIRECTION_CREDIT,
    DIRECTION_DEBIT,
    DIRECTIONS,
    DRAWER_CLOSED,
    TREASURY_ADJUSTMENT,
    TREASURY_FEED_FROM_CASH_DRAWER,
    TREASURY_SUPPLIER_PAYMENT,
    TREASURY_TRANSFER_IN,
    TREASURY_TRANSFER_OUT,
)
from ..models import Branch, CashDrawerBalance, Supplier, SupplierTransaction, TreasuryAccount, TreasuryTransaction
from ..money import cents_to_str
from ..time_utils import utcnow
from .concurrency import commit_or_conflict, lock_for_update
from .document_service import SUPPLIER_PAYMENT_NUMBER, allocate


REFERENCE_CASH_DRAWER = "CASH_DRAWER_BALANCE"
REFERENCE_SUPPLIER_TRANSACTION = "SUPPLIER_TRANSACTION"
REFERENCE_BRANCH = "BRANCH"


# =============================================================================
# ACCOUNTS
# =============================================================================

def _require_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if not branch:
        raise EntityNotFound("Branch", branch_id)
    return branch


def get_or_create_account(branch_id: int, user: str | None = None) -> TreasuryAccount:
    """Fetch the branch account, opening an empty one in the default currency on first use."""
    _require_branch(branch_id)
    account = lock_for_update(
        db.session.query(TreasuryAccount).filter_by(branch_id=branch_id)
    ).first()
    if account:
        return account

    account = TreasuryAccount(
        branch_id=branch_id,
        currency_code=current_app.config["DEFAULT_CURRENCY"],
        current_balance_cents=0,
        created_by=user,
    )
    db.session.add(account)
    db.session.flush()
    return account


def _post(
    account: TreasuryAccount,
    amount_cents: int,
    direction: str,
    transaction_type: str,
    user: str,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    notes: str | None = None,
) -> TreasuryTransaction:
    """Apply one signed movement to an account. Does not commit."""
    if amount_cents <= 0:
        raise ValidationError("Amount must be positive", field="amount_cents")
    if direction not in DIRECTIONS:
        raise ValidationError(f"Unknown direction '{direction}'", field="direction")

    signed = amount_cents if direction == DIRECTION_CREDIT else -amount_cents
    new_balance = account.current_balance_cents + signed
    if new_balance < 0:
        raise BusinessRuleViolation(
            "INSUFFICIENT_TREASURY_BALANCE",
            "Insufficient treasury balance",
            entity_type="TreasuryAccount",
            entity_id=account.id,
            extensions={
                "balanceCents": account.current_balance_cents,
                "requestedCents": amount_cents,
            },
        )

    account.current_balance_cents = new_balance
    account.touch(user)

    tx = TreasuryTransaction(
        account=account,
        amount_cents=amount_cents,
        direction=direction,
        transaction_type=transaction_type,
        balance_after_cents=new_balance,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        performed_by=user,
        performed_at=utcnow(),
        created_by=user,
    )
    db.session.add(tx)
    return tx


# =============================================================================
# MOVEMENTS
# =============================================================================

def adjust_balance(
    branch_id: int,
    amount_cents: int,
    direction: str,
    reason: str,
    user: str,
) -> TreasuryTransaction:
    """
    Manual correction (opening float, counted difference, bank deposit).

    Raises:
        ValidationError: Missing reason, non-positive amount, bad direction
        BusinessRuleViolation: Debit larger than the balance
    """
    if not (reason or "").strip():
        raise ValidationError("An adjustment reason is required", field="reason")

    account = get_or_create_account(branch_id, user)
    tx = _post(account, amount_cents, direction, TREASURY_ADJUSTMENT, user, notes=reason)
    commit_or_conflict()

    current_app.logger.info(
        "Treasury %s adjusted by %s %s: %s", branch_id, direction, cents_to_str(amount_cents), reason
    )
    return tx


def feed_from_cash_drawer(branch_id: int, cash_drawer_balance_id: int, user: str) -> TreasuryTransaction:
    """
    Move a closed drawer's settled cash into treasury.

    Raises:
        EntityNotFound: Drawer missing or from another branch
        InvalidEntityState: Drawer still open
        BusinessRuleViolation: Nothing settled
        DuplicateEntity: Drawer already fed
    """
    drawer = db.session.get(CashDrawerBalance, cash_drawer_balance_id)
    if not drawer or drawer.branch_id != branch_id:
        raise EntityNotFound("CashDrawerBalance", cash_drawer_balance_id)
    if drawer.status != DRAWER_CLOSED:
        raise InvalidEntityState("CashDrawerBalance", drawer.id, drawer.status, "feed treasury from")
    if not drawer.settled_amount_cents or drawer.settled_amount_cents <= 0:
        raise BusinessRuleViolation(
            "NOTHING_SETTLED",
            "Settled amount must be greater than zero to feed treasury",
        )

    already = (
        db.session.query(TreasuryTransaction.id)
        .filter_by(
            transaction_type=TREASURY_FEED_FROM_CASH_DRAWER,
            reference_type=REFERENCE_CASH_DRAWER,
            reference_id=drawer.id,
        )
        .first()
    )
    if already:
        raise DuplicateEntity(
            "TreasuryTransaction",
            "cash_drawer_balance_id",
            drawer.id,
            message=f"Cash drawer {drawer.id} has already been fed to treasury",
        )

    account = get_or_create_account(branch_id, user)
    tx = _post(
        account,
        drawer.settled_amount_cents,
        DIRECTION_CREDIT,
        TREASURY_FEED_FROM_CASH_DRAWER,
        user,
        reference_type=REFERENCE_CASH_DRAWER,
        reference_id=drawer.id,
        notes=f"Settlement of {drawer.balance_date.isoformat()}",
    )
    commit_or_conflict()

    current_app.logger.info(
        "Treasury %s fed %s from drawer %s", branch_id, cents_to_str(drawer.settled_amount_cents), drawer.id
    )
    return tx


def pay_supplier(
    branch_id: int,
    supplier_id: int,
    amount_cents: int,
    user: str,
    notes: str | None = None,
) -> dict:
    """
    Pay a supplier from treasury.

    Both the treasury balance and the amount owed to the supplier must cover
    the payment. Writes a SupplierTransaction and the matching DEBIT.

    Raises:
        BusinessRuleViolation: Treasury short, or payment above what is owed
    """
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be positive", field="amount_cents")

    supplier = lock_for_update(
        db.session.query(Supplier).filter_by(id=supplier_id, is_active=True)
    ).first()
    if not supplier:
        raise EntityNotFound("Supplier", supplier_id)

    account = get_or_create_account(branch_id, user)
    if account.current_balance_cents < amount_cents:
        raise BusinessRuleViolation("INSUFFICIENT_TREASURY_BALANCE", "Insufficient treasury balance")
    if supplier.current_balance_cents < amount_cents:
        raise BusinessRuleViolation(
            "PAYMENT_EXCEEDS_SUPPLIER_BALANCE",
            f"Payment {cents_to_str(amount_cents)} exceeds the "
            f"{cents_to_str(supplier.current_balance_cents)} owed to {supplier.company_name}",
        )

    try:
        supplier.current_balance_cents -= amount_cents
        supplier.touch(user)

        supplier_tx = SupplierTransaction(
            supplier_id=supplier.id,
            branch_id=branch_id,
            transaction_number=allocate(branch_id, SUPPLIER_PAYMENT_NUMBER),
            transaction_type="PAYMENT",
            amount_cents=amount_cents,
            balance_after_cents=supplier.current_balance_cents,
            transaction_date=utcnow(),
            notes=notes,
            created_by=user,
        )
        db.session.add(supplier_tx)
        db.session.flush()

        treasury_tx = _post(
            account,
            amount_cents,
            DIRECTION_DEBIT,
            TREASURY_SUPPLIER_PAYMENT,
            user,
            reference_type=REFERENCE_SUPPLIER_TRANSACTION,
            reference_id=supplier_tx.id,
            notes=notes or f"Payment to {supplier.company_name}",
        )
        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Treasury %s paid %s to supplier %s (%s)",
        branch_id,
        cents_to_str(amount_cents),
        supplier.company_name,
        supplier_tx.transaction_number,
    )
    return {"treasury_transaction": treasury_tx, "supplier_transaction": supplier_tx}


def transfer_between_branches(
    from_branch_id: int,
    to_branch_id: int,
    amount_cents: int,
    user: str,
    notes: str | None = None,
) -> dict:
    """Move cash between two branch treasuries as a TRANSFER_OUT/TRANSFER_IN pair."""
    if from_branch_id == to_branch_id:
        raise ValidationError("Cannot transfer to the same branch", field="to_branch_id")

    source = get_or_create_account(from_branch_id, user)
    target = get_or_create_account(to_branch_id, user)

    try:
        out_tx = _post(
            source,
            amount_cents,
            DIRECTION_DEBIT,
            TREASURY_TRANSFER_OUT,
            user,
            reference_type=REFERENCE_BRANCH,
            reference_id=to_branch_id,
            notes=notes,
        )
        in_tx = _post(
            target,
            amount_cents,
            DIRECTION_CREDIT,
            TREASURY_TRANSFER_IN,
            user,
            reference_type=REFERENCE_BRANCH,
            reference_id=from_branch_id,
            notes=notes,
        )
        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise

    return {"transfer_out": out_tx, "transfer_in": in_tx}


# =============================================================================
# QUERIES
# =============================================================================

def get_transactions(
    branch_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    tx_type: str | None = None,
) -> list[TreasuryTransaction]:
    account = db.session.query(TreasuryAccount).filter_by(branch_id=branch_id).first()
    if not account:
        return []
    query = db.session.query(TreasuryTransaction).filter_by(treasury_account_id=account.id)
    if start is not None:
        query = query.filter(TreasuryTransaction.performed_at >= start)
    if end is not None:
        query = query.filter(TreasuryTransaction.performed_at < end)
    if tx_type:
        query = query.filter_by(transaction_type=tx_type)
    return query.order_by(TreasuryTransaction.performed_at.desc(), TreasuryTransaction.id.desc()).all()


def verify_account_balance(branch_id: int) -> dict:
    """Compare the stored balance with the signed sum of the ledger."""
    account = db.session.query(TreasuryAccount).filter_by(branch_id=branch_id).first()
    if not account:
        raise EntityNotFound("TreasuryAccount", branch_id, f"No treasury account for branch {branch_id}")

    computed = sum(tx.signed_amount_cents for tx in account.transactions)
    return {
        "branch_id": branch_id,
        "stored_balance_cents": account.current_balance_cents,
        "ledger_balance_cents": computed,
        "consistent": computed == account.current_balance_cents,
    }
