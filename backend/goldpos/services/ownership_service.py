"""
Finished-Goods Ownership Service

WHY: Suppliers deliver finished pieces on credit. Until a batch is paid
for, part of it still belongs to the supplier, and the shop may only sell
the share it owns. Every change is written to OwnershipMovement.

DESIGN PRINCIPLES:
- Each receipt is paid for by its own share; each later payment covers
  the same share of the still-unpaid weight as of the outstanding amount
- Paid-for weight and pieces only ever grow
- Owned = paid for - sold; whole pieces only (partially paid pieces are not sellable)
- ownership_bps is the paid-for share of the batch weight
- Sales consume the oldest batches first (FIFO by creation); returns put
  pieces back on the most recent batches first
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from flask import current_app
from sqlalchemy import func

from ..errors import (
    BusinessRuleViolation,
    EntityNotFound,
    InsufficientStock,
    PaymentException,
    ValidationError,
)
from ..extensions import db
from ..lookups import (
    ALERT_LOW_OWNERSHIP,
    ALERT_OUTSTANDING_PAYMENT,
    MOVEMENT_CONSOLIDATION,
    MOVEMENT_PAYMENT,
    MOVEMENT_PURCHASE,
    MOVEMENT_RETURN,
    MOVEMENT_SALE,
    SEVERITY_HIGH,
    SEVERITY_MEDIUM,
)
from ..models import Branch, OwnershipMovement, Product, ProductOwnership, Supplier
from ..money import MG_PER_GRAM, cents_to_str, div_round, paid_share, ratio_bps
from .concurrency import commit_or_conflict, lock_for_update


# Alert severity thresholds
HIGH_SEVERITY_OWNERSHIP_BPS = 2_500
HIGH_SEVERITY_OUTSTANDING_CENTS = 1_000_000


@dataclass
class OwnershipValidationResult:
    product_id: int
    branch_id: int
    requested_quantity: int
    owned_quantity: int
    total_quantity: int
    can_sell: bool
    tracked: bool
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OwnershipAlert:
    alert_type: str
    severity: str
    ownership_id: int
    product_id: int
    supplier_id: int | None
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# INTERNALS
# =============================================================================

def _earn(ownership: ProductOwnership, weight_mg: int, paid_cents: int, owed_cents: int) -> None:
    """Add the share of weight_mg covered by paying paid_cents of owed_cents."""
    ownership.paid_for_weight_mg = min(
        ownership.total_weight_mg,
        ownership.paid_for_weight_mg + paid_share(weight_mg, paid_cents, owed_cents),
    )


def _recalculate(ownership: ProductOwnership) -> None:
    if ownership.total_weight_mg > 0:
        pieces = ownership.total_quantity * ownership.paid_for_weight_mg // ownership.total_weight_mg
    else:
        pieces = ownership.total_quantity
    # Merged batches can cover fewer whole pieces by weight than they did apart
    ownership.paid_for_quantity = min(ownership.total_quantity, max(ownership.paid_for_quantity, pieces))
    ownership.owned_quantity = max(0, ownership.paid_for_quantity - ownership.sold_quantity)
    ownership.owned_weight_mg = max(0, ownership.paid_for_weight_mg - ownership.sold_weight_mg)
    ownership.ownership_bps = ratio_bps(ownership.paid_for_weight_mg, ownership.total_weight_mg)


def _record_movement(
    ownership: ProductOwnership,
    movement_type: str,
    user: str,
    *,
    quantity_change: int = 0,
    weight_change_mg: int = 0,
    amount_change_cents: int = 0,
    reference_number: str | None = None,
    notes: str | None = None,
) -> OwnershipMovement:
    movement = OwnershipMovement(
        ownership=ownership,
        movement_type=movement_type,
        reference_number=reference_number,
        quantity_change=quantity_change,
        weight_change_mg=weight_change_mg,
        amount_change_cents=amount_change_cents,
        owned_quantity_after=ownership.owned_quantity,
        owned_weight_after_mg=ownership.owned_weight_mg,
        amount_paid_after_cents=ownership.amount_paid_cents,
        ownership_bps_after=ownership.ownership_bps,
        notes=notes,
        created_by=user,
    )
    db.session.add(movement)
    return movement


def get_ownership(ownership_id: int) -> ProductOwnership:
    ownership = db.session.get(ProductOwnership, ownership_id)
    if not ownership or not ownership.is_active:
        raise EntityNotFound("ProductOwnership", ownership_id)
    return ownership


def _active_for_product(product_id: int, branch_id: int):
    return (
        db.session.query(ProductOwnership)
        .filter_by(product_id=product_id, branch_id=branch_id, is_active=True)
        .order_by(ProductOwnership.created_at, ProductOwnership.id)
    )


# =============================================================================
# PURCHASES AND PAYMENTS
# =============================================================================

def receive_goods(
    product_id: int,
    branch_id: int,
    total_quantity: int,
    total_weight_mg: int,
    total_cost_cents: int,
    user: str,
    supplier_id: int | None = None,
    amount_paid_cents: int = 0,
    purchase_order_ref: str | None = None,
    movement_type: str = MOVEMENT_PURCHASE,
) -> ProductOwnership:
    """
    Add received pieces to the matching active record without committing.

    The record key is product, branch, supplier, and purchase order
    reference. The receipt's own paid share is added to what is paid for.

    Raises:
        ValidationError: Non-positive quantity/weight, negative cost,
            payment above cost
        EntityNotFound: Unknown product, branch, or supplier
    """
    if total_quantity <= 0:
        raise ValidationError("Quantity must be positive", field="total_quantity")
    if total_weight_mg <= 0:
        raise ValidationError("Weight must be positive", field="total_weight_mg")
    if total_cost_cents < 0 or amount_paid_cents < 0:
        raise ValidationError("Cost and payment cannot be negative")
    if amount_paid_cents > total_cost_cents:
        raise ValidationError("Amount paid cannot exceed total cost", field="amount_paid_cents")

    if not db.session.get(Product, product_id):
        raise EntityNotFound("Product", product_id)
    if not db.session.get(Branch, branch_id):
        raise EntityNotFound("Branch", branch_id)
    if supplier_id is not None and not db.session.get(Supplier, supplier_id):
        raise EntityNotFound("Supplier", supplier_id)

    ownership = lock_for_update(
        db.session.query(ProductOwnership).filter_by(
            product_id=product_id,
            branch_id=branch_id,
            supplier_id=supplier_id,
            purchase_order_ref=purchase_order_ref,
            is_active=True,
        )
    ).first()

    if ownership is None:
        ownership = ProductOwnership(
            product_id=product_id,
            branch_id=branch_id,
            supplier_id=supplier_id,
            purchase_order_ref=purchase_order_ref,
            total_quantity=0,
            total_weight_mg=0,
            total_cost_cents=0,
            amount_paid_cents=0,
            sold_quantity=0,
            sold_weight_mg=0,
            paid_for_quantity=0,
            paid_for_weight_mg=0,
            created_by=user,
        )
        db.session.add(ownership)
    else:
        ownership.touch(user)

    ownership.total_quantity += total_quantity
    ownership.total_weight_mg += total_weight_mg
    ownership.total_cost_cents += total_cost_cents
    ownership.amount_paid_cents += amount_paid_cents
    _earn(ownership, total_weight_mg, amount_paid_cents, total_cost_cents)
    _recalculate(ownership)

    _record_movement(
        ownership,
        movement_type,
        user,
        quantity_change=total_quantity,
        weight_change_mg=total_weight_mg,
        amount_change_cents=amount_paid_cents,
        reference_number=purchase_order_ref,
    )
    db.session.flush()
    return ownership


def create_or_update_ownership(
    product_id: int,
    branch_id: int,
    total_quantity: int,
    total_weight_mg: int,
    total_cost_cents: int,
    user: str,
    supplier_id: int | None = None,
    amount_paid_cents: int = 0,
    purchase_order_ref: str | None = None,
) -> ProductOwnership:
    """Record received goods and commit. See receive_goods for the merge rules."""
    try:
        ownership = receive_goods(
            product_id,
            branch_id,
            total_quantity,
            total_weight_mg,
            total_cost_cents,
            user,
            supplier_id=supplier_id,
            amount_paid_cents=amount_paid_cents,
            purchase_order_ref=purchase_order_ref,
        )
        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise
    return ownership


def apply_ownership_payment(
    ownership_id: int,
    amount_cents: int,
    user: str,
    reference_number: str | None = None,
) -> ProductOwnership:
    """
    Pay toward a batch. The payment covers the same share of the unpaid
    weight as it does of the outstanding amount, so owned stock only grows.

    Raises:
        ValidationError: Non-positive amount
        PaymentException: Payment exceeds the outstanding amount
    """
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be positive", field="amount_cents")

    ownership = lock_for_update(
        db.session.query(ProductOwnership).filter_by(id=ownership_id, is_active=True)
    ).first()
    if not ownership:
        raise EntityNotFound("ProductOwnership", ownership_id)

    if amount_cents > ownership.outstanding_amount_cents:
        raise PaymentException(
            f"Payment {cents_to_str(amount_cents)} exceeds outstanding "
            f"{cents_to_str(ownership.outstanding_amount_cents)}",
            entity_type="ProductOwnership",
            entity_id=ownership.id,
        )

    _earn(
        ownership,
        ownership.total_weight_mg - ownership.paid_for_weight_mg,
        amount_cents,
        ownership.outstanding_amount_cents,
    )
    ownership.amount_paid_cents += amount_cents
    _recalculate(ownership)
    ownership.touch(user)

    _record_movement(
        ownership,
        MOVEMENT_PAYMENT,
        user,
        amount_change_cents=amount_cents,
        reference_number=reference_number,
    )
    commit_or_conflict()
    return ownership


# =============================================================================
# SALES
# =============================================================================

def validate_product_ownership(product_id: int, branch_id: int, quantity: int) -> OwnershipValidationResult:
    """Check whether the shop owns enough of a product to sell it."""
    records = _active_for_product(product_id, branch_id).all()
    owned = sum(r.owned_quantity for r in records)
    total = sum(r.total_quantity - r.sold_quantity for r in records)

    result = OwnershipValidationResult(
        product_id=product_id,
        branch_id=branch_id,
        requested_quantity=quantity,
        owned_quantity=owned,
        total_quantity=total,
        can_sell=(not records) or owned >= quantity,
        tracked=bool(records),
    )

    low_threshold = current_app.config["LOW_OWNERSHIP_BPS"]
    for record in records:
        if record.ownership_bps < low_threshold:
            result.warnings.append(
                f"Low ownership ({record.ownership_bps / 100:.2f}%) on batch {record.id}"
            )
        if record.outstanding_amount_cents > 0:
            result.warnings.append(
                f"Outstanding payment {cents_to_str(record.outstanding_amount_cents)} on batch {record.id}"
            )
    if records and owned < quantity:
        result.warnings.insert(0, f"Only {owned} owned of {quantity} requested")
    if result.warnings:
        current_app.logger.warning(
            "Ownership check for product %s at branch %s: %s", product_id, branch_id, "; ".join(result.warnings)
        )
    return result


def consume_ownership_for_sale(
    product_id: int,
    branch_id: int,
    quantity: int,
    reference_number: str,
    user: str,
) -> list[ProductOwnership]:
    """
    Deduct sold pieces from owned batches, oldest first.

    Products without ownership records are untracked stock and are left
    alone. Weight is deducted in proportion to the pieces taken. Does not
    commit; the caller's transaction does.

    Raises:
        InsufficientStock: Tracked product with fewer owned pieces than sold
    """
    records = lock_for_update(_active_for_product(product_id, branch_id)).all()
    if not records:
        return []

    owned = sum(r.owned_quantity for r in records)
    if owned < quantity:
        raise InsufficientStock(
            f"Cannot sell {quantity} of product {product_id}: only {owned} owned",
            requested=quantity,
            available=owned,
            entity_type="Product",
            entity_id=product_id,
        )

    remaining = quantity
    touched = []
    for record in records:
        if remaining <= 0:
            break
        if record.owned_quantity <= 0:
            continue
        take = min(remaining, record.owned_quantity)
        weight = div_round(record.owned_weight_mg * take, record.owned_quantity)

        record.sold_quantity += take
        record.sold_weight_mg += weight
        _recalculate(record)
        record.touch(user)

        _record_movement(
            record,
            MOVEMENT_SALE,
            user,
            quantity_change=-take,
            weight_change_mg=-weight,
            reference_number=reference_number,
        )
        touched.append(record)
        remaining -= take

    db.session.flush()
    return touched


def restore_ownership_for_return(
    product_id: int,
    branch_id: int,
    quantity: int,
    reference_number: str,
    user: str,
) -> list[ProductOwnership]:
    """
    Put pieces that came back from a customer into owned stock again.

    Undoes consume_ownership_for_sale in reverse order: the newest batches
    with sold pieces get them back first, with weight in proportion to the
    pieces. Untracked products are left alone. Does not commit.
    """
    records = lock_for_update(_active_for_product(product_id, branch_id)).all()
    if not records:
        return []

    remaining = quantity
    touched = []
    for record in reversed(records):
        if remaining <= 0:
            break
        if record.sold_quantity <= 0:
            continue
        take = min(remaining, record.sold_quantity)
        weight = div_round(record.sold_weight_mg * take, record.sold_quantity)

        record.sold_quantity -= take
        record.sold_weight_mg -= weight
        _recalculate(record)
        record.touch(user)

        _record_movement(
            record,
            MOVEMENT_RETURN,
            user,
            quantity_change=take,
            weight_change_mg=weight,
            reference_number=reference_number,
        )
        touched.append(record)
        remaining -= take

    if remaining > 0:
        current_app.logger.warning(
            "Return %s: %d of %d pieces of product %s had no sold batch to go back to",
            reference_number,
            remaining,
            quantity,
            product_id,
        )
    db.session.flush()
    return touched


# =============================================================================
# ALERTS
# =============================================================================

def get_ownership_alerts(branch_id: int | None = None) -> list[OwnershipAlert]:
    query = db.session.query(ProductOwnership).filter_by(is_active=True)
    if branch_id is not None:
        query = query.filter_by(branch_id=branch_id)

    low_threshold = current_app.config["LOW_OWNERSHIP_BPS"]
    alerts = []
    for record in query.order_by(ProductOwnership.id).all():
        if record.ownership_bps < low_threshold:
            alerts.append(
                OwnershipAlert(
                    alert_type=ALERT_LOW_OWNERSHIP,
                    severity=SEVERITY_HIGH if record.ownership_bps < HIGH_SEVERITY_OWNERSHIP_BPS else SEVERITY_MEDIUM,
                    ownership_id=record.id,
                    product_id=record.product_id,
                    supplier_id=record.supplier_id,
                    message=f"Ownership is {record.ownership_bps / 100:.2f}%",
                )
            )
        if record.outstanding_amount_cents > 0:
            alerts.append(
                OwnershipAlert(
                    alert_type=ALERT_OUTSTANDING_PAYMENT,
                    severity=(
                        SEVERITY_HIGH
                        if record.outstanding_amount_cents > HIGH_SEVERITY_OUTSTANDING_CENTS
                        else SEVERITY_MEDIUM
                    ),
                    ownership_id=record.id,
                    product_id=record.product_id,
                    supplier_id=record.supplier_id,
                    message=f"Outstanding payment {cents_to_str(record.outstanding_amount_cents)}",
                )
            )
    return alerts


# =============================================================================
# CONSOLIDATION
# =============================================================================

def consolidate_ownership(product_id: int, supplier_id: int | None, branch_id: int, user: str) -> dict:
    """
    Merge every active batch of a product from one supplier into one record.

    WHY: Repeated deliveries of the same design pile up as separate batches
    with different costs. The merged record carries the summed quantities,
    weights, costs, and payments, and keeps what each batch had already
    paid for, so merging never reduces owned stock. The originals are
    deactivated.

    Returns the new record and the weighted average cost per gram.

    Raises:
        BusinessRuleViolation: Fewer than two active batches
    """
    records = lock_for_update(
        db.session.query(ProductOwnership)
        .filter_by(product_id=product_id, supplier_id=supplier_id, branch_id=branch_id, is_active=True)
        .order_by(ProductOwnership.created_at, ProductOwnership.id)
    ).all()
    if len(records) < 2:
        raise BusinessRuleViolation(
            "NOTHING_TO_CONSOLIDATE",
            "At least two active ownership records are required for consolidation",
        )

    merged = ProductOwnership(
        product_id=product_id,
        branch_id=branch_id,
        supplier_id=supplier_id,
        purchase_order_ref=None,
        total_quantity=sum(r.total_quantity for r in records),
        owned_quantity=sum(r.owned_quantity for r in records),
        sold_quantity=sum(r.sold_quantity for r in records),
        total_weight_mg=sum(r.total_weight_mg for r in records),
        owned_weight_mg=sum(r.owned_weight_mg for r in records),
        sold_weight_mg=sum(r.sold_weight_mg for r in records),
        paid_for_quantity=sum(r.paid_for_quantity for r in records),
        paid_for_weight_mg=sum(r.paid_for_weight_mg for r in records),
        total_cost_cents=sum(r.total_cost_cents for r in records),
        amount_paid_cents=sum(r.amount_paid_cents for r in records),
        created_by=user,
    )
    _recalculate(merged)
    db.session.add(merged)

    source_ids = [r.id for r in records]
    for record in records:
        record.soft_delete(user)
        _record_movement(
            record,
            MOVEMENT_CONSOLIDATION,
            user,
            notes="Merged into consolidated record",
        )

    _record_movement(
        merged,
        MOVEMENT_CONSOLIDATION,
        user,
        quantity_change=merged.total_quantity,
        weight_change_mg=merged.total_weight_mg,
        notes=f"Consolidated from records {', '.join(str(i) for i in source_ids)}",
    )
    commit_or_conflict()

    average_cost = div_round(merged.total_cost_cents * MG_PER_GRAM, merged.total_weight_mg)
    current_app.logger.info(
        "Consolidated %d ownership records of product %s into %s", len(records), product_id, merged.id
    )
    return {
        "ownership": merged,
        "consolidated_ids": source_ids,
        "average_cost_per_gram_cents": average_cost,
    }


def find_consolidation_opportunities(branch_id: int) -> list[dict]:
    rows = (
        db.session.query(
            ProductOwnership.product_id,
            ProductOwnership.supplier_id,
            func.count(ProductOwnership.id),
            func.sum(ProductOwnership.total_quantity),
            func.sum(ProductOwnership.total_weight_mg),
            func.sum(ProductOwnership.total_cost_cents),
        )
        .filter_by(branch_id=branch_id, is_active=True)
        .group_by(ProductOwnership.product_id, ProductOwnership.supplier_id)
        .having(func.count(ProductOwnership.id) > 1)
        .order_by(ProductOwnership.product_id)
        .all()
    )
    return [
        {
            "product_id": product_id,
            "supplier_id": supplier_id,
            "record_count": count,
            "total_quantity": quantity,
            "total_weight_mg": weight,
            "total_cost_cents": cost,
        }
        for product_id, supplier_id, count, quantity, weight, cost in rows
    ]


def get_ownership_movements(ownership_id: int) -> list[OwnershipMovement]:
    return (
        db.session.query(OwnershipMovement)
        .filter_by(product_ownership_id=ownership_id)
        .order_by(OwnershipMovement.id)
        .all()
    )
