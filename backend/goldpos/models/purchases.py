from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .base import AuditMixin


class CustomerPurchase(AuditMixin, db.Model):
    """
    Gold bought over the counter from a customer.

    WHY: Old jewelry and scrap brought in by customers becomes merchant raw
    gold. The cash paid out is a GOLD_PURCHASE financial transaction, so the
    drawer reconciles against it like any other payout.
    """
    __tablename__ = "customer_purchases"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "purchase_number", name="uq_customer_purchases_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    purchase_number = db.Column(db.String(64), nullable=False)
    purchase_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    total_weight_mg = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(32), nullable=False, default="CASH")

    financial_transaction_id = db.Column(
        db.Integer, db.ForeignKey("financial_transactions.id"), nullable=True, index=True
    )
    notes = db.Column(db.Text, nullable=True)

    customer = db.relationship("Customer", backref=db.backref("gold_purchases", lazy=True))
    financial_transaction = db.relationship("FinancialTransaction")
    items = db.relationship(
        "CustomerPurchaseItem",
        backref="purchase",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="CustomerPurchaseItem.id",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "customer_id": self.customer_id,
            "purchase_number": self.purchase_number,
            "purchase_date": to_utc_z(self.purchase_date),
            "total_weight_mg": self.total_weight_mg,
            "total_amount_cents": self.total_amount_cents,
            "payment_method": self.payment_method,
            "financial_transaction_id": self.financial_transaction_id,
            "notes": self.notes,
            **self.audit_dict(),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class CustomerPurchaseItem(db.Model):
    __tablename__ = "customer_purchase_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_purchase_id = db.Column(
        db.Integer, db.ForeignKey("customer_purchases.id"), nullable=False, index=True
    )
    karat = db.Column(db.String(8), nullable=False)
    weight_mg = db.Column(db.Integer, nullable=False)
    unit_price_cents_per_gram = db.Column(db.Integer, nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_purchase_id": self.customer_purchase_id,
            "karat": self.karat,
            "weight_mg": self.weight_mg,
            "unit_price_cents_per_gram": self.unit_price_cents_per_gram,
            "total_amount_cents": self.total_amount_cents,
            "notes": self.notes,
        }


class ProductManufacture(AuditMixin, db.Model):
    """
    Finished pieces made in-house from merchant raw gold.

    DESIGN:
    - consumed + wastage weight leaves RawGoldInventory in the product's karat
    - raw_gold_cost_cents values that weight at the inventory average cost
    - making cost is charged per gram of consumed weight
    - the pieces are recorded as a fully paid ProductOwnership with no supplier
    """
    __tablename__ = "product_manufactures"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "manufacture_number", name="uq_product_manufactures_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    manufacture_number = db.Column(db.String(64), nullable=False)
    batch_number = db.Column(db.String(64), nullable=True)

    karat = db.Column(db.String(8), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    consumed_weight_mg = db.Column(db.Integer, nullable=False)
    wastage_weight_mg = db.Column(db.Integer, nullable=False, default=0)

    raw_gold_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    making_cost_per_gram_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    product_ownership_id = db.Column(
        db.Integer, db.ForeignKey("product_ownerships.id"), nullable=True, index=True
    )
    manufacture_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    notes = db.Column(db.Text, nullable=True)

    product = db.relationship("Product")
    ownership = db.relationship("ProductOwnership")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "manufacture_number": self.manufacture_number,
            "batch_number": self.batch_number,
            "karat": self.karat,
            "quantity": self.quantity,
            "consumed_weight_mg": self.consumed_weight_mg,
            "wastage_weight_mg": self.wastage_weight_mg,
            "raw_gold_cost_cents": self.raw_gold_cost_cents,
            "making_cost_per_gram_cents": self.making_cost_per_gram_cents,
            "total_cost_cents": self.total_cost_cents,
            "product_ownership_id": self.product_ownership_id,
            "manufacture_date": to_utc_z(self.manufacture_date),
            "notes": self.notes,
            **self.audit_dict(),
        }
