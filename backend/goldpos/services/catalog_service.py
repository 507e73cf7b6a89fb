# Overview: Service-layer operations for products; enforces sold-product immutability.

from __future__ import annotations

from ..errors import DuplicateEntity, EntityNotFound, InvalidEntityState, ValidationError
from ..extensions import db
from ..lookups import ORDER_COMPLETED, ORDER_REFUNDED, ORDER_SALE
from ..models import Order, OrderItem, Product, Supplier
from .concurrency import commit_or_conflict
from .pricing import require_charge_type, validate_karat


# Fields a caller may change through update_product
UPDATABLE_FIELDS = {
    "name",
    "category",
    "subcategory",
    "karat",
    "weight_mg",
    "supplier_id",
    "making_charges_applicable",
    "use_product_making_charges",
    "making_charge_type",
    "making_charge_value",
}


def _validate_product_fields(values: dict) -> None:
    if "karat" in values:
        validate_karat(values["karat"])
    if "weight_mg" in values:
        weight = values["weight_mg"]
        if not isinstance(weight, int) or isinstance(weight, bool) or weight <= 0:
            raise ValidationError("Product weight must be a positive number of milligrams", field="weight_mg")
    if "category" in values and not (values["category"] or "").strip():
        raise ValidationError("Category is required", field="category")
    if values.get("making_charge_type") is not None:
        require_charge_type(values["making_charge_type"], "making_charge_type")
    if (values.get("making_charge_value") or 0) < 0:
        raise ValidationError("Making charge value cannot be negative", field="making_charge_value")
    supplier_id = values.get("supplier_id")
    if supplier_id is not None and not db.session.get(Supplier, supplier_id):
        raise EntityNotFound("Supplier", supplier_id)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product or not product.is_active:
        raise EntityNotFound("Product", product_id)
    return product


def create_product(
    product_code: str,
    name: str,
    category: str,
    karat: str,
    weight_mg: int,
    user: str,
    subcategory: str | None = None,
    supplier_id: int | None = None,
    making_charges_applicable: bool = True,
    use_product_making_charges: bool = False,
    making_charge_type: str | None = None,
    making_charge_value: int | None = None,
) -> Product:
    values = {
        "name": name,
        "category": category,
        "subcategory": subcategory,
        "karat": karat,
        "weight_mg": weight_mg,
        "supplier_id": supplier_id,
        "making_charges_applicable": making_charges_applicable,
        "use_product_making_charges": use_product_making_charges,
        "making_charge_type": making_charge_type,
        "making_charge_value": making_charge_value,
    }
    _validate_product_fields(values)

    if db.session.query(Product).filter_by(product_code=product_code).first():
        raise DuplicateEntity("Product", "product_code", product_code)

    product = Product(product_code=product_code, created_by=user, **values)
    db.session.add(product)
    commit_or_conflict()
    return product


def has_been_sold(product_id: int) -> bool:
    return (
        db.session.query(OrderItem.id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            OrderItem.product_id == product_id,
            Order.order_type == ORDER_SALE,
            Order.status.in_([ORDER_COMPLETED, ORDER_REFUNDED]),
        )
        .first()
        is not None
    )


def update_product(product_id: int, user: str, **changes) -> Product:
    """
    Change product attributes.

    Raises:
        InvalidEntityState: Product already sold (only soft-delete remains)
        ValidationError: Unknown field or bad value
    """
    product = get_product(product_id)

    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    if has_been_sold(product_id):
        raise InvalidEntityState(
            "Product",
            product_id,
            "SOLD",
            "update",
            message=f"Product {product.product_code} has been sold and can no longer be edited",
        )

    _validate_product_fields(changes)
    for key, value in changes.items():
        setattr(product, key, value)
    product.touch(user)
    commit_or_conflict()
    return product


def deactivate_product(product_id: int, user: str) -> Product:
    """Soft delete. Allowed even for sold products."""
    product = get_product(product_id)
    product.soft_delete(user)
    commit_or_conflict()
    return product
