"""
In-house Manufacturing Service

WHY: Merchant raw gold can be made into finished pieces. The gold leaves
raw inventory and the pieces enter finished-goods ownership already paid
for, since the shop owns the gold it used.

DESIGN:
- Consumed and wastage weight both leave inventory in the product's karat
- Raw gold is costed at the inventory average before the withdrawal
- Labor is making cost per gram of consumed weight
- Inventory, ownership, and the manufacture record commit together
"""

from __future__ import annotations

from flask import current_app

from ..errors import EntityNotFound, ValidationError
from ..extensions import db
from ..lookups import MOVEMENT_MANUFACTURE
from ..models import ProductManufacture
from ..money import cents_to_str, gold_value_cents, mg_to_str
from ..time_utils import utcnow
from . import ownership_service, raw_gold_service
from .catalog_service import get_product
from .concurrency import commit_or_conflict
from .document_service import MANUFACTURE_NUMBER, allocate


def manufacture_product(
    branch_id: int,
    product_id: int,
    quantity: int,
    consumed_weight_mg: int,
    user: str,
    wastage_weight_mg: int = 0,
    making_cost_per_gram_cents: int = 0,
    batch_number: str | None = None,
    notes: str | None = None,
) -> ProductManufacture:
    """
    Turn merchant raw gold into finished pieces of a product.

    Raises:
        ValidationError: Non-positive quantity or consumed weight, negative
            wastage or making cost
        EntityNotFound: Unknown product
        InsufficientStock: Not enough raw gold of the product's karat at the branch
    """
    if quantity <= 0:
        raise ValidationError("Quantity must be positive", field="quantity")
    if consumed_weight_mg <= 0:
        raise ValidationError("Consumed weight must be positive", field="consumed_weight_mg")
    if wastage_weight_mg < 0:
        raise ValidationError("Wastage cannot be negative", field="wastage_weight_mg")
    if making_cost_per_gram_cents < 0:
        raise ValidationError("Making cost cannot be negative", field="making_cost_per_gram_cents")

    product = get_product(product_id)
    withdrawn_mg = consumed_weight_mg + wastage_weight_mg

    try:
        inventory = raw_gold_service.take_from_inventory(branch_id, product.karat, withdrawn_mg, user)
        raw_gold_cost = gold_value_cents(withdrawn_mg, inventory.average_cost_per_gram_cents)
        total_cost = raw_gold_cost + gold_value_cents(consumed_weight_mg, making_cost_per_gram_cents)
        manufacture_number = allocate(branch_id, MANUFACTURE_NUMBER)

        ownership = ownership_service.receive_goods(
            product_id=product.id,
            branch_id=branch_id,
            total_quantity=quantity,
            total_weight_mg=consumed_weight_mg,
            total_cost_cents=total_cost,
            user=user,
            amount_paid_cents=total_cost,
            purchase_order_ref=manufacture_number,
            movement_type=MOVEMENT_MANUFACTURE,
        )

        manufacture = ProductManufacture(
            branch_id=branch_id,
            product_id=product.id,
            manufacture_number=manufacture_number,
            batch_number=batch_number,
            karat=product.karat,
            quantity=quantity,
            consumed_weight_mg=consumed_weight_mg,
            wastage_weight_mg=wastage_weight_mg,
            raw_gold_cost_cents=raw_gold_cost,
            making_cost_per_gram_cents=making_cost_per_gram_cents,
            total_cost_cents=total_cost,
            product_ownership_id=ownership.id,
            manufacture_date=utcnow(),
            notes=notes,
            created_by=user,
        )
        db.session.add(manufacture)
        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Manufactured %s x %s from %s of %s raw gold (%s wastage), cost %s",
        quantity,
        product.product_code,
        mg_to_str(consumed_weight_mg),
        product.karat,
        mg_to_str(wastage_weight_mg),
        cents_to_str(total_cost),
    )
    return manufacture


def get_manufacture(manufacture_id: int) -> ProductManufacture:
    manufacture = db.session.get(ProductManufacture, manufacture_id)
    if not manufacture or not manufacture.is_active:
        raise EntityNotFound("ProductManufacture", manufacture_id)
    return manufacture


def list_manufactures(branch_id: int, product_id: int | None = None) -> list[ProductManufacture]:
    query = db.session.query(ProductManufacture).filter_by(branch_id=branch_id, is_active=True)
    if product_id is not None:
        query = query.filter_by(product_id=product_id)
    return query.order_by(ProductManufacture.manufacture_date, ProductManufacture.id).all()
