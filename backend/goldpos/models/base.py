from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class AuditMixin:
    """
    Soft-delete flag and audit stamps shared by every entity.

    WHY: Ledger rows are never physically deleted; deactivation keeps
    history intact. created_by/modified_by hold the acting user's identifier
    as issued by the external auth layer.
    """

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_by = db.Column(db.String(64), nullable=True)
    modified_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    modified_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=utcnow)

    def touch(self, user: str | None) -> None:
        self.modified_by = user
        self.modified_at = utcnow()

    def soft_delete(self, user: str | None) -> None:
        self.is_active = False
        self.touch(user)

    def audit_dict(self) -> dict:
        return {
            "is_active": self.is_active,
            "created_by": self.created_by,
            "modified_by": self.modified_by,
            "created_at": to_utc_z(self.created_at),
            "modified_at": to_utc_z(self.modified_at),
        }
