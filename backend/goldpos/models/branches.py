from __future__ import annotations

from ..extensions import db
from .base import AuditMixin


class Branch(AuditMixin, db.Model):
    """A shop location. Drawers, treasury accounts, and document numbers are per branch."""
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)

    def to_dict(self) -> dict:
        return {"id": self.id, "code": self.code, "name": self.name, **self.audit_dict()}


class Supplier(AuditMixin, db.Model):
    """
    Gold and goods supplier.

    current_balance_cents is what the merchant owes the supplier. Payments
    from treasury and gold waived back to the supplier reduce it.
    """
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    company_name = db.Column(db.String(200), nullable=False, unique=True)
    contact_phone = db.Column(db.String(32), nullable=True)
    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_name": self.company_name,
            "contact_phone": self.contact_phone,
            "credit_limit_cents": self.credit_limit_cents,
            "current_balance_cents": self.current_balance_cents,
            **self.audit_dict(),
        }


class Customer(AuditMixin, db.Model):
    """Walk-in or registered customer with optional pricing privileges."""
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(32), nullable=True, index=True)

    # Pricing privileges
    default_discount_bps = db.Column(db.Integer, nullable=False, default=0)
    making_charges_waived = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone": self.phone,
            "default_discount_bps": self.default_discount_bps,
            "making_charges_waived": self.making_charges_waived,
            **self.audit_dict(),
        }
