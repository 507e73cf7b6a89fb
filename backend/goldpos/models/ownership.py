from __future__ import annotations

from ..extensions import db
from goldpos.money import gold_value_cents
from goldpos.time_utils import to_utc_z, utcnow
from .base import AuditMixin


class ProductOwnership(AuditMixin, db.Model):
    """
    Merchant's share of a batch of finished goods bought from a supplier.

    WHY: Goods arrive on credit. The merchant only owns (and may only sell)
    the share that has been paid for; the rest still belongs to the supplier.

    DESIGN:
    - paid_for_weight_mg grows with each receipt and payment by the share of
      the still-unpaid weight that the money covers; it never shrinks
    - paid_for_quantity is the whole pieces that weight covers, also never shrinking
    - owned = paid for - sold; sold_quantity / sold_weight_mg track pieces
      that already left the shop and go back down on returns
    - ownership_bps = paid-for weight / total weight
    """
    __tablename__ = "product_ownerships"
    __table_args__ = (
        db.Index("ix_product_ownerships_lookup", "product_id", "branch_id", "supplier_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    purchase_order_ref = db.Column(db.String(64), nullable=True)

    total_quantity = db.Column(db.Integer, nullable=False, default=0)
    owned_quantity = db.Column(db.Integer, nullable=False, default=0)
    sold_quantity = db.Column(db.Integer, nullable=False, default=0)
    paid_for_quantity = db.Column(db.Integer, nullable=False, default=0)

    total_weight_mg = db.Column(db.Integer, nullable=False, default=0)
    owned_weight_mg = db.Column(db.Integer, nullable=False, default=0)
    sold_weight_mg = db.Column(db.Integer, nullable=False, default=0)
    paid_for_weight_mg = db.Column(db.Integer, nullable=False, default=0)

    ownership_bps = db.Column(db.Integer, nullable=False, default=0)

    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    supplier = db.relationship("Supplier")
    movements = db.relationship(
        "OwnershipMovement",
        backref="ownership",
        lazy=True,
        order_by="OwnershipMovement.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def outstanding_amount_cents(self) -> int:
        return self.total_cost_cents - self.amount_paid_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "supplier_id": self.supplier_id,
            "purchase_order_ref": self.purchase_order_ref,
            "total_quantity": self.total_quantity,
            "owned_quantity": self.owned_quantity,
            "sold_quantity": self.sold_quantity,
            "paid_for_quantity": self.paid_for_quantity,
            "total_weight_mg": self.total_weight_mg,
            "owned_weight_mg": self.owned_weight_mg,
            "sold_weight_mg": self.sold_weight_mg,
            "paid_for_weight_mg": self.paid_for_weight_mg,
            "ownership_bps": self.ownership_bps,
            "total_cost_cents": self.total_cost_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "outstanding_amount_cents": self.outstanding_amount_cents,
            "version_id": self.version_id,
            **self.audit_dict(),
        }


class OwnershipMovement(db.Model):
    """
    Append-only history of ownership changes.

    Each row stores the change and the resulting owned values, so the state
    of a record at any point can be read without replaying the log.
    """
    __tablename__ = "ownership_movements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_ownership_id = db.Column(
        db.Integer, db.ForeignKey("product_ownerships.id"), nullable=False, index=True
    )
    movement_type = db.Column(db.String(32), nullable=False)  # PURCHASE, PAYMENT, SALE, RETURN, CONSOLIDATION, MANUFACTURE
    reference_number = db.Column(db.String(64), nullable=True)

    quantity_change = db.Column(db.Integer, nullable=False, default=0)
    weight_change_mg = db.Column(db.Integer, nullable=False, default=0)
    amount_change_cents = db.Column(db.Integer, nullable=False, default=0)

    owned_quantity_after = db.Column(db.Integer, nullable=False)
    owned_weight_after_mg = db.Column(db.Integer, nullable=False)
    amount_paid_after_cents = db.Column(db.Integer, nullable=False)
    ownership_bps_after = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_ownership_id": self.product_ownership_id,
            "movement_type": self.movement_type,
            "reference_number": self.reference_number,
            "quantity_change": self.quantity_change,
            "weight_change_mg": self.weight_change_mg,
            "amount_change_cents": self.amount_change_cents,
            "owned_quantity_after": self.owned_quantity_after,
            "owned_weight_after_mg": self.owned_weight_after_mg,
            "amount_paid_after_cents": self.amount_paid_after_cents,
            "ownership_bps_after": self.ownership_bps_after,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class RawGoldOwnership(AuditMixin, db.Model):
    """
    Merchant's share of raw gold bought from one supplier, per branch and karat.

    INVARIANTS:
    - 0 <= owned_weight_mg <= total_weight_mg
    - ownership_bps == owned_weight_mg / total_weight_mg (in basis points)
    - 0 <= amount_paid_cents <= total_cost_cents
    - owned_weight_mg never decreases: a delivery adds its own paid share,
      a payment adds the share of the still-unpaid weight it covers
    """
    __tablename__ = "raw_gold_ownerships"
    __table_args__ = (
        db.UniqueConstraint("supplier_id", "branch_id", "karat", name="uq_raw_gold_ownership_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    karat = db.Column(db.String(8), nullable=False)

    total_weight_mg = db.Column(db.Integer, nullable=False, default=0)
    owned_weight_mg = db.Column(db.Integer, nullable=False, default=0)
    ownership_bps = db.Column(db.Integer, nullable=False, default=0)

    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def outstanding_amount_cents(self) -> int:
        return self.total_cost_cents - self.amount_paid_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "branch_id": self.branch_id,
            "karat": self.karat,
            "total_weight_mg": self.total_weight_mg,
            "owned_weight_mg": self.owned_weight_mg,
            "ownership_bps": self.ownership_bps,
            "total_cost_cents": self.total_cost_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "outstanding_amount_cents": self.outstanding_amount_cents,
            "version_id": self.version_id,
            **self.audit_dict(),
        }


class SupplierGoldBalance(AuditMixin, db.Model):
    """
    Running gold account with a supplier, per branch and karat.

    outstanding_weight_debt_mg is derived (received - paid for) and never
    stored. merchant_gold_balance_mg is gold the merchant has handed to the
    supplier as credit (waived gold).
    """
    __tablename__ = "supplier_gold_balances"
    __table_args__ = (
        db.UniqueConstraint("supplier_id", "branch_id", "karat", name="uq_supplier_gold_balance_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    karat = db.Column(db.String(8), nullable=False)

    total_weight_received_mg = db.Column(db.Integer, nullable=False, default=0)
    total_weight_paid_for_mg = db.Column(db.Integer, nullable=False, default=0)
    merchant_gold_balance_mg = db.Column(db.Integer, nullable=False, default=0)

    average_cost_per_gram_cents = db.Column(db.Integer, nullable=False, default=0)
    last_transaction_date = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def outstanding_weight_debt_mg(self) -> int:
        return self.total_weight_received_mg - self.total_weight_paid_for_mg

    @property
    def outstanding_monetary_value_cents(self) -> int:
        return gold_value_cents(self.outstanding_weight_debt_mg, self.average_cost_per_gram_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "branch_id": self.branch_id,
            "karat": self.karat,
            "total_weight_received_mg": self.total_weight_received_mg,
            "total_weight_paid_for_mg": self.total_weight_paid_for_mg,
            "outstanding_weight_debt_mg": self.outstanding_weight_debt_mg,
            "merchant_gold_balance_mg": self.merchant_gold_balance_mg,
            "average_cost_per_gram_cents": self.average_cost_per_gram_cents,
            "outstanding_monetary_value_cents": self.outstanding_monetary_value_cents,
            "last_transaction_date": to_utc_z(self.last_transaction_date),
            "version_id": self.version_id,
            **self.audit_dict(),
        }


class RawGoldInventory(AuditMixin, db.Model):
    """Merchant-owned raw gold on hand, per branch and karat."""
    __tablename__ = "raw_gold_inventory"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "karat", name="uq_raw_gold_inventory_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    karat = db.Column(db.String(8), nullable=False)
    weight_on_hand_mg = db.Column(db.Integer, nullable=False, default=0)
    average_cost_per_gram_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "karat": self.karat,
            "weight_on_hand_mg": self.weight_on_hand_mg,
            "average_cost_per_gram_cents": self.average_cost_per_gram_cents,
            "version_id": self.version_id,
            **self.audit_dict(),
        }


class RawGoldTransfer(AuditMixin, db.Model):
    """
    Record of raw gold leaving merchant stock.

    WAIVE: gold handed to a supplier as credit (supplier_id set).
    CONVERT: gold re-booked from one karat to another at equal value.
    """
    __tablename__ = "raw_gold_transfers"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "transfer_number", name="uq_raw_gold_transfers_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    transfer_number = db.Column(db.String(64), nullable=False)
    transfer_type = db.Column(db.String(16), nullable=False)  # WAIVE, CONVERT
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    from_karat = db.Column(db.String(8), nullable=False)
    to_karat = db.Column(db.String(8), nullable=False)
    from_weight_mg = db.Column(db.Integer, nullable=False)
    to_weight_mg = db.Column(db.Integer, nullable=False)
    from_rate_cents_per_gram = db.Column(db.Integer, nullable=False)
    to_rate_cents_per_gram = db.Column(db.Integer, nullable=False)
    value_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "transfer_number": self.transfer_number,
            "transfer_type": self.transfer_type,
            "supplier_id": self.supplier_id,
            "from_karat": self.from_karat,
            "to_karat": self.to_karat,
            "from_weight_mg": self.from_weight_mg,
            "to_weight_mg": self.to_weight_mg,
            "from_rate_cents_per_gram": self.from_rate_cents_per_gram,
            "to_rate_cents_per_gram": self.to_rate_cents_per_gram,
            "value_cents": self.value_cents,
            "notes": self.notes,
            **self.audit_dict(),
        }
