from __future__ import annotations

from ..extensions import db
from goldpos.time_utils import to_utc_z
from .base import AuditMixin


class Product(AuditMixin, db.Model):
    """
    Finished jewelry item priced from the live gold rate.

    WHY: The sale price is never stored on the product. It is computed at
    sale time from weight x karat rate plus making charges, then snapshotted
    onto the order item.

    IMMUTABLE: Once a product appears on a completed sale, only soft-delete
    is allowed (see catalog_service.update_product).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_karat", "category", "karat"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)

    category = db.Column(db.String(64), nullable=False)  # RING, CHAIN, BULLION, ...
    subcategory = db.Column(db.String(64), nullable=True)
    karat = db.Column(db.String(8), nullable=False, index=True)  # 18K, 21K, 22K, 24K

    # Weight per piece, in milligrams
    weight_mg = db.Column(db.Integer, nullable=False)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    # Making charges: product-specific values override the category table
    making_charges_applicable = db.Column(db.Boolean, nullable=False, default=True)
    use_product_making_charges = db.Column(db.Boolean, nullable=False, default=False)
    making_charge_type = db.Column(db.String(16), nullable=True)  # PERCENTAGE (bps), FIXED (cents per piece)
    making_charge_value = db.Column(db.Integer, nullable=True)

    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_code": self.product_code,
            "name": self.name,
            "category": self.category,
            "subcategory": self.subcategory,
            "karat": self.karat,
            "weight_mg": self.weight_mg,
            "supplier_id": self.supplier_id,
            "making_charges_applicable": self.making_charges_applicable,
            "use_product_making_charges": self.use_product_making_charges,
            "making_charge_type": self.making_charge_type,
            "making_charge_value": self.making_charge_value,
            **self.audit_dict(),
        }


class GoldRate(AuditMixin, db.Model):
    """
    Versioned gold price per gram for one karat.

    LIFECYCLE: Exactly one row per karat has is_current=True. A rate change
    closes the current row (effective_to set) and inserts a new one, so
    orders keep pointing at the rate they were priced with.
    """
    __tablename__ = "gold_rates"
    __table_args__ = (
        db.Index("ix_gold_rates_karat_current", "karat", "is_current"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    karat = db.Column(db.String(8), nullable=False)
    rate_cents_per_gram = db.Column(db.Integer, nullable=False)
    effective_from = db.Column(db.DateTime(timezone=True), nullable=False)
    effective_to = db.Column(db.DateTime(timezone=True), nullable=True)
    is_current = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "karat": self.karat,
            "rate_cents_per_gram": self.rate_cents_per_gram,
            "effective_from": to_utc_z(self.effective_from),
            "effective_to": to_utc_z(self.effective_to),
            "is_current": self.is_current,
            **self.audit_dict(),
        }


class MakingCharge(AuditMixin, db.Model):
    """
    Versioned making charge rule for a product category.

    A row with subcategory NULL applies to every subcategory that has no
    row of its own.
    """
    __tablename__ = "making_charges"
    __table_args__ = (
        db.Index("ix_making_charges_lookup", "category", "subcategory", "is_current"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    category = db.Column(db.String(64), nullable=False)
    subcategory = db.Column(db.String(64), nullable=True)
    charge_type = db.Column(db.String(16), nullable=False)  # PERCENTAGE (bps), FIXED (cents per piece)
    charge_value = db.Column(db.Integer, nullable=False)
    effective_from = db.Column(db.DateTime(timezone=True), nullable=False)
    effective_to = db.Column(db.DateTime(timezone=True), nullable=True)
    is_current = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "subcategory": self.subcategory,
            "charge_type": self.charge_type,
            "charge_value": self.charge_value,
            "effective_from": to_utc_z(self.effective_from),
            "effective_to": to_utc_z(self.effective_to),
            "is_current": self.is_current,
            **self.audit_dict(),
        }


class TaxConfiguration(AuditMixin, db.Model):
    """Versioned tax rule. Mandatory current rows apply to every priced line, in display order."""
    __tablename__ = "tax_configurations"
    __table_args__ = (
        db.Index("ix_tax_configurations_code_current", "tax_code", "is_current"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tax_code = db.Column(db.String(32), nullable=False)
    tax_name = db.Column(db.String(128), nullable=False)
    tax_type = db.Column(db.String(16), nullable=False)  # PERCENTAGE (bps), FIXED (cents per piece)
    tax_rate = db.Column(db.Integer, nullable=False)
    is_mandatory = db.Column(db.Boolean, nullable=False, default=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    effective_from = db.Column(db.DateTime(timezone=True), nullable=False)
    effective_to = db.Column(db.DateTime(timezone=True), nullable=True)
    is_current = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tax_code": self.tax_code,
            "tax_name": self.tax_name,
            "tax_type": self.tax_type,
            "tax_rate": self.tax_rate,
            "is_mandatory": self.is_mandatory,
            "display_order": self.display_order,
            "effective_from": to_utc_z(self.effective_from),
            "effective_to": to_utc_z(self.effective_to),
            "is_current": self.is_current,
            **self.audit_dict(),
        }
