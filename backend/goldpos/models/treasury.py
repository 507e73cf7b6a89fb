from __future__ import annotations

from ..extensions import db
from goldpos.time_utils import to_iso_date, to_utc_z, utcnow
from .base import AuditMixin


class TreasuryAccount(AuditMixin, db.Model):
    """
    Branch cash ledger, separate from the till.

    WHY: Settled drawer cash moves here at the end of a shift; supplier
    payments and inter-branch transfers are drawn from here.

    current_balance_cents changes only alongside a TreasuryTransaction.
    """
    __tablename__ = "treasury_accounts"
    __table_args__ = (
        db.UniqueConstraint("branch_id", name="uq_treasury_accounts_branch"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    currency_code = db.Column(db.String(3), nullable=False, default="EGP")
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch", backref=db.backref("treasury_account", uselist=False))
    transactions = db.relationship(
        "TreasuryTransaction",
        backref="account",
        lazy="dynamic",
        order_by="TreasuryTransaction.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "currency_code": self.currency_code,
            "current_balance_cents": self.current_balance_cents,
            "version_id": self.version_id,
            **self.audit_dict(),
        }


class TreasuryTransaction(AuditMixin, db.Model):
    """
    Append-only treasury ledger row.

    amount_cents is always positive; direction carries the sign.
    balance_after_cents is the account balance once this row applied.
    """
    __tablename__ = "treasury_transactions"
    __table_args__ = (
        db.Index("ix_treasury_tx_account_performed", "treasury_account_id", "performed_at"),
        db.Index("ix_treasury_tx_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    treasury_account_id = db.Column(
        db.Integer, db.ForeignKey("treasury_accounts.id"), nullable=False, index=True
    )
    amount_cents = db.Column(db.Integer, nullable=False)
    direction = db.Column(db.String(8), nullable=False)  # CREDIT, DEBIT
    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    # What caused the movement (e.g., "CASH_DRAWER_BALANCE", 17)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    performed_by = db.Column(db.String(64), nullable=False)
    performed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.direction == "CREDIT" else -self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "treasury_account_id": self.treasury_account_id,
            "amount_cents": self.amount_cents,
            "direction": self.direction,
            "transaction_type": self.transaction_type,
            "balance_after_cents": self.balance_after_cents,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "performed_by": self.performed_by,
            "performed_at": to_utc_z(self.performed_at),
            **self.audit_dict(),
        }


class SupplierTransaction(AuditMixin, db.Model):
    """Payment made to a supplier, with the supplier's balance after it."""
    __tablename__ = "supplier_transactions"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "transaction_number", name="uq_supplier_tx_branch_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    transaction_number = db.Column(db.String(64), nullable=False)
    transaction_type = db.Column(db.String(16), nullable=False, default="PAYMENT")
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    notes = db.Column(db.Text, nullable=True)

    supplier = db.relationship("Supplier", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "branch_id": self.branch_id,
            "transaction_number": self.transaction_number,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_after_cents": self.balance_after_cents,
            "transaction_date": to_utc_z(self.transaction_date),
            "notes": self.notes,
            **self.audit_dict(),
        }


class CashDrawerBalance(AuditMixin, db.Model):
    """
    Daily till reconciliation for one branch.

    LIFECYCLE:
    - OPEN: Day in progress, opening cash counted
    - CLOSED: Actual cash counted; over/short known

    cash_over_short_cents = actual - expected, derived and never stored.
    settled_amount_cents is what moved to treasury; carried_forward_cents
    stays in the till and opens the next day.
    """
    __tablename__ = "cash_drawer_balances"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "balance_date", name="uq_cash_drawer_branch_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    balance_date = db.Column(db.Date, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CLOSED

    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_closing_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    actual_closing_balance_cents = db.Column(db.Integer, nullable=True)
    settled_amount_cents = db.Column(db.Integer, nullable=True)
    carried_forward_cents = db.Column(db.Integer, nullable=True)

    opened_by = db.Column(db.String(64), nullable=False)
    closed_by = db.Column(db.String(64), nullable=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def cash_over_short_cents(self) -> int | None:
        if self.actual_closing_balance_cents is None:
            return None
        return self.actual_closing_balance_cents - self.expected_closing_balance_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "balance_date": to_iso_date(self.balance_date),
            "status": self.status,
            "opening_balance_cents": self.opening_balance_cents,
            "expected_closing_balance_cents": self.expected_closing_balance_cents,
            "actual_closing_balance_cents": self.actual_closing_balance_cents,
            "cash_over_short_cents": self.cash_over_short_cents,
            "settled_amount_cents": self.settled_amount_cents,
            "carried_forward_cents": self.carried_forward_cents,
            "opened_by": self.opened_by,
            "closed_by": self.closed_by,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "notes": self.notes,
            "version_id": self.version_id,
            **self.audit_dict(),
        }
