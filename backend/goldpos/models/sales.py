from __future__ import annotations

from ..extensions import db
from goldpos.time_utils import to_utc_z, utcnow
from .base import AuditMixin


class Order(AuditMixin, db.Model):
    """
    Sale, return, or repair header.

    LIFECYCLE:
    - PENDING: Created and priced, awaiting payment
    - COMPLETED: Paid; a FinancialTransaction exists
    - CANCELLED: Abandoned before payment
    - REFUNDED: Every sold piece has been returned

    Totals are the sums of the item lines, which carry their own pricing
    snapshots. gold_rate_id points at the rate of the first priced line.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "order_number", name="uq_orders_branch_number"),
        db.Index("ix_orders_branch_status_created", "branch_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # Human-readable number (e.g., "ORD-001-000042")
    order_number = db.Column(db.String(64), nullable=False)
    order_type = db.Column(db.String(16), nullable=False, index=True)  # SALE, RETURN, REPAIR
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    cashier_id = db.Column(db.String(64), nullable=False)
    approved_by = db.Column(db.String(64), nullable=True)

    # Returns point back at the sale they reverse
    original_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    gold_rate_id = db.Column(db.Integer, db.ForeignKey("gold_rates.id"), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    return_reason = db.Column(db.Text, nullable=True)

    order_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch")
    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    gold_rate = db.relationship("GoldRate")
    original_order = db.relationship("Order", remote_side=[id], backref=db.backref("return_orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        result = {
            "id": self.id,
            "branch_id": self.branch_id,
            "order_number": self.order_number,
            "order_type": self.order_type,
            "status": self.status,
            "customer_id": self.customer_id,
            "cashier_id": self.cashier_id,
            "approved_by": self.approved_by,
            "original_order_id": self.original_order_id,
            "gold_rate_id": self.gold_rate_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "return_reason": self.return_reason,
            "order_date": to_utc_z(self.order_date),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
            **self.audit_dict(),
        }
        if include_items:
            result["items"] = [item.to_dict() for item in self.items]
        return result


class OrderItem(db.Model):
    """
    Priced order line.

    SNAPSHOT: gold_rate_cents_per_gram and pricing_snapshot freeze every input
    used to price the line (making charge rule, discount policy, tax rules),
    so the stored total can always be recomputed after rates move.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    # Return lines reference the sale line they give back
    original_order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True, index=True)

    description = db.Column(db.String(255), nullable=True)
    karat = db.Column(db.String(8), nullable=True)
    weight_mg = db.Column(db.Integer, nullable=False, default=0)  # per piece
    quantity = db.Column(db.Integer, nullable=False, default=1)

    gold_rate_id = db.Column(db.Integer, db.ForeignKey("gold_rates.id"), nullable=True)
    gold_rate_cents_per_gram = db.Column(db.Integer, nullable=False, default=0)

    gold_value_cents = db.Column(db.Integer, nullable=False, default=0)
    making_charges_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    taxable_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False, default=0)

    pricing_snapshot = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    product = db.relationship("Product")
    original_item = db.relationship("OrderItem", remote_side=[id])

    @property
    def subtotal_cents(self) -> int:
        return self.gold_value_cents + self.making_charges_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "original_order_item_id": self.original_order_item_id,
            "description": self.description,
            "karat": self.karat,
            "weight_mg": self.weight_mg,
            "quantity": self.quantity,
            "gold_rate_id": self.gold_rate_id,
            "gold_rate_cents_per_gram": self.gold_rate_cents_per_gram,
            "gold_value_cents": self.gold_value_cents,
            "making_charges_cents": self.making_charges_cents,
            "discount_cents": self.discount_cents,
            "taxable_cents": self.taxable_cents,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
            "pricing_snapshot": self.pricing_snapshot,
            "created_at": to_utc_z(self.created_at),
        }


class FinancialTransaction(AuditMixin, db.Model):
    """
    Monetary ledger entry for an order.

    WHY: Orders describe goods; financial transactions describe money. The
    cash drawer reconciles against these rows, not against orders.

    LIFECYCLE:
    - COMPLETED: Money moved
    - VOIDED: Cancelled inside the void window (no money moved)
    - REFUNDED: Reversed by a later REFUND transaction

    REFUND rows carry negated amounts and original_transaction_id.
    """
    __tablename__ = "financial_transactions"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "transaction_number", name="uq_fin_tx_branch_number"),
        db.Index("ix_fin_tx_branch_date", "branch_id", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    transaction_number = db.Column(db.String(64), nullable=False)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # SALE, RETURN, REPAIR, REFUND
    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    original_transaction_id = db.Column(
        db.Integer, db.ForeignKey("financial_transactions.id"), nullable=True, index=True
    )

    payment_method = db.Column(db.String(32), nullable=False, default="CASH")

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_given_cents = db.Column(db.Integer, nullable=False, default=0)

    processed_by = db.Column(db.String(64), nullable=False)
    approved_by = db.Column(db.String(64), nullable=True)

    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("financial_transactions", lazy=True))
    original_transaction = db.relationship(
        "FinancialTransaction", remote_side=[id], backref=db.backref("reversals", lazy=True)
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def net_cash_cents(self) -> int:
        """Cash that stayed in the drawer: paid minus change."""
        return self.amount_paid_cents - self.change_given_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "transaction_number": self.transaction_number,
            "transaction_type": self.transaction_type,
            "status": self.status,
            "order_id": self.order_id,
            "original_transaction_id": self.original_transaction_id,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "change_given_cents": self.change_given_cents,
            "processed_by": self.processed_by,
            "approved_by": self.approved_by,
            "transaction_date": to_utc_z(self.transaction_date),
            "voided_at": to_utc_z(self.voided_at),
            "notes": self.notes,
            "version_id": self.version_id,
            **self.audit_dict(),
        }
