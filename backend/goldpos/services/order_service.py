"""
Order Service

WHY: Orders are the document a cashier builds: priced lines for a sale,
the pieces coming back on a return, or a repair fee. Each line freezes the
gold rate and every pricing rule it used, so the stored total can be
recomputed and checked long after rates move.

LIFECYCLE:
- create_order / create_repair_order -> PENDING
- process_order_payment -> COMPLETED (FinancialTransaction written)
- cancel_order -> CANCELLED (only while PENDING)
- create_return_order -> RETURN order COMPLETED; returned pieces go back
  into owned stock; original REFUNDED once every piece is back
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import (
    EntityNotFound,
    InsufficientPermissions,
    InvalidEntityState,
    PaymentException,
    ValidationError,
)
from ..extensions import db
from ..lookups import (
    CHARGE_FIXED,
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_PENDING,
    ORDER_REFUNDED,
    ORDER_REPAIR,
    ORDER_RETURN,
    ORDER_SALE,
    PAYMENT_CASH,
    TX_REPAIR,
    TX_RETURN,
    TX_SALE,
)
from ..models import Branch, Customer, Order, OrderItem
from ..money import cents_to_str, div_round
from ..time_utils import utcnow
from . import catalog_service, ownership_service
from .concurrency import commit_or_conflict, lock_for_update
from .document_service import ORDER_NUMBER, allocate
from .financial_transaction_service import append_note, record_transaction
from .pricing import PriceBreakdown, fee_line_price, reprice_from_snapshot
from .pricing_service import calculate_product_price, current_tax_rules


# Stored and recomputed totals may differ by at most one cent
REPRICE_TOLERANCE_CENTS = 1


@dataclass
class RepriceResult:
    item_id: int
    stored_total_cents: int
    recomputed_total_cents: int

    @property
    def matches(self) -> bool:
        return abs(self.stored_total_cents - self.recomputed_total_cents) <= REPRICE_TOLERANCE_CENTS


# =============================================================================
# HELPERS
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order or not order.is_active:
        raise EntityNotFound("Order", order_id)
    return order


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id, is_active=True)).first()
    if not order:
        raise EntityNotFound("Order", order_id)
    return order


def _require_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if not branch or not branch.is_active:
        raise EntityNotFound("Branch", branch_id)
    return branch


def _require_customer(customer_id: int | None) -> Customer | None:
    if customer_id is None:
        return None
    customer = db.session.get(Customer, customer_id)
    if not customer or not customer.is_active:
        raise EntityNotFound("Customer", customer_id)
    return customer


def _apply_breakdown(item: OrderItem, breakdown: PriceBreakdown) -> None:
    item.gold_value_cents = breakdown.gold_value_cents
    item.making_charges_cents = breakdown.making_charges_cents
    item.discount_cents = breakdown.discount_cents
    item.taxable_cents = breakdown.taxable_cents
    item.tax_cents = breakdown.tax_cents
    item.line_total_cents = breakdown.total_cents


def _recalculate_totals(order: Order) -> None:
    order.subtotal_cents = sum(i.subtotal_cents for i in order.items)
    order.discount_cents = sum(i.discount_cents for i in order.items)
    order.tax_cents = sum(i.tax_cents for i in order.items)
    order.total_cents = sum(i.line_total_cents for i in order.items)


def _new_order(branch_id: int, order_type: str, cashier: str, customer_id: int | None, notes: str | None) -> Order:
    order = Order(
        branch_id=branch_id,
        order_number=allocate(branch_id, ORDER_NUMBER),
        order_type=order_type,
        status=ORDER_PENDING,
        customer_id=customer_id,
        cashier_id=cashier,
        notes=notes,
        order_date=utcnow(),
        created_by=cashier,
    )
    db.session.add(order)
    return order


# =============================================================================
# SALES AND REPAIRS
# =============================================================================

def create_order(
    branch_id: int,
    items: list[dict],
    cashier: str,
    customer_id: int | None = None,
    notes: str | None = None,
) -> Order:
    """
    Create a priced SALE order.

    Args:
        branch_id: Selling branch
        items: [{"product_id": int, "quantity": int, "discount_cents": int}, ...]
        cashier: Acting user
        customer_id: Optional customer whose discount privileges apply

    Raises:
        ValidationError: No items, bad quantity
        EntityNotFound: Unknown branch, customer, product, or missing gold rate
    """
    if not items:
        raise ValidationError("An order needs at least one item", field="items")

    _require_branch(branch_id)
    customer = _require_customer(customer_id)

    products = []
    for index, line in enumerate(items):
        if "product_id" not in line:
            raise ValidationError(f"items[{index}].product_id is required", field=f"items[{index}].product_id")
        products.append(catalog_service.get_product(line["product_id"]))

    try:
        order = _new_order(branch_id, ORDER_SALE, cashier, customer_id, notes)

        for line, product in zip(items, products):
            quantity = line.get("quantity", 1)
            priced = calculate_product_price(
                product,
                quantity=quantity,
                customer=customer,
                line_discount_cents=line.get("discount_cents", 0),
            )
            item = OrderItem(
                product_id=product.id,
                description=product.name,
                karat=product.karat,
                weight_mg=product.weight_mg,
                quantity=quantity,
                gold_rate_id=priced.gold_rate.id,
                gold_rate_cents_per_gram=priced.gold_rate.rate_cents_per_gram,
                pricing_snapshot=priced.snapshot,
            )
            _apply_breakdown(item, priced.breakdown)
            order.items.append(item)

            if order.gold_rate_id is None:
                order.gold_rate_id = priced.gold_rate.id

        _recalculate_totals(order)
        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Order %s created with %d items, total %s", order.order_number, len(order.items), cents_to_str(order.total_cents)
    )
    return order


def create_repair_order(
    branch_id: int,
    description: str,
    repair_fee_cents: int,
    cashier: str,
    customer_id: int | None = None,
    notes: str | None = None,
) -> Order:
    """REPAIR order with one fee line; mandatory taxes apply to the fee."""
    if not (description or "").strip():
        raise ValidationError("Repair description is required", field="description")
    if repair_fee_cents <= 0:
        raise ValidationError("Repair fee must be positive", field="repair_fee_cents")

    _require_branch(branch_id)
    _require_customer(customer_id)

    tax_rules = current_tax_rules()
    breakdown = fee_line_price(fee_cents=repair_fee_cents, tax_rules=tax_rules)

    try:
        order = _new_order(branch_id, ORDER_REPAIR, cashier, customer_id, notes)
        item = OrderItem(
            description=description,
            quantity=1,
            weight_mg=0,
            gold_rate_cents_per_gram=0,
            pricing_snapshot={
                "making_charge": {"charge_type": CHARGE_FIXED, "value": repair_fee_cents, "source": "SERVICE"},
                "discount": None,
                "taxes": [rule.to_dict() for rule in tax_rules],
            },
        )
        _apply_breakdown(item, breakdown)
        order.items.append(item)

        _recalculate_totals(order)
        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Repair order %s created, fee %s", order.order_number, cents_to_str(repair_fee_cents)
    )
    return order


def process_order_payment(
    order_id: int,
    amount_paid_cents: int,
    cashier: str,
    payment_method: str = PAYMENT_CASH,
):
    """
    Take payment for a PENDING order.

    Writes the FinancialTransaction, completes the order, and consumes
    owned stock for sold products, all in one commit.

    Raises:
        InvalidEntityState: Order not PENDING
        PaymentException: Order already paid, or underpayment
        InsufficientStock: Not enough owned pieces to sell
    """
    order = _lock_order(order_id)

    if order.financial_transactions:
        raise PaymentException(
            f"Order {order.order_number} has already been paid",
            entity_type="Order",
            entity_id=order.id,
            user_friendly_message="This order has already been paid.",
        )
    if order.status != ORDER_PENDING:
        raise InvalidEntityState("Order", order.id, order.status, "pay")
    if order.order_type not in (ORDER_SALE, ORDER_REPAIR):
        raise InvalidEntityState("Order", order.id, order.order_type, "pay")

    try:
        tx = record_transaction(
            branch_id=order.branch_id,
            transaction_type=TX_SALE if order.order_type == ORDER_SALE else TX_REPAIR,
            subtotal_cents=order.subtotal_cents,
            tax_cents=order.tax_cents,
            discount_cents=order.discount_cents,
            total_cents=order.total_cents,
            amount_paid_cents=amount_paid_cents,
            payment_method=payment_method,
            processed_by=cashier,
            order_id=order.id,
        )

        if order.order_type == ORDER_SALE:
            for item in order.items:
                ownership_service.consume_ownership_for_sale(
                    item.product_id,
                    order.branch_id,
                    item.quantity,
                    order.order_number,
                    cashier,
                )

        order.status = ORDER_COMPLETED
        order.completed_at = utcnow()
        order.touch(cashier)
        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Order %s paid by %s via %s (%s)", order.order_number, cashier, payment_method, tx.transaction_number
    )
    return tx


def cancel_order(order_id: int, reason: str, user: str) -> Order:
    order = _lock_order(order_id)
    if order.status != ORDER_PENDING:
        raise InvalidEntityState("Order", order.id, order.status, "cancel")

    order.status = ORDER_CANCELLED
    order.cancelled_at = utcnow()
    order.notes = append_note(order.notes, f"Cancelled: {reason}")
    order.touch(user)
    commit_or_conflict()
    return order


# =============================================================================
# RETURNS
# =============================================================================

def _returned_quantity(order_item_id: int) -> int:
    rows = (
        db.session.query(OrderItem.quantity)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            OrderItem.original_order_item_id == order_item_id,
            Order.order_type == ORDER_RETURN,
            Order.status == ORDER_COMPLETED,
        )
        .all()
    )
    return sum(q for (q,) in rows)


def _prorated_amounts(gold: int, making: int, discount: int, tax: int, part: int, whole: int) -> dict:
    """Scale a sale line's amounts to the returned quantity. Each amount rounds on its own."""
    amounts = {
        "gold_value_cents": div_round(gold * part, whole),
        "making_charges_cents": div_round(making * part, whole),
        "discount_cents": div_round(discount * part, whole),
        "tax_cents": div_round(tax * part, whole),
    }
    amounts["taxable_cents"] = amounts["gold_value_cents"] + amounts["making_charges_cents"] - amounts["discount_cents"]
    amounts["line_total_cents"] = amounts["taxable_cents"] + amounts["tax_cents"]
    return amounts


def create_return_order(
    original_order_id: int,
    items: list[dict],
    reason: str,
    cashier: str,
    approved_by: str | None,
    payment_method: str = PAYMENT_CASH,
) -> Order:
    """
    Take sold pieces back and refund them at the price they were sold for.

    Args:
        original_order_id: The completed SALE order
        items: [{"order_item_id": int, "quantity": int}, ...]
        approved_by: Manager approving the refund

    Raises:
        InsufficientPermissions: No manager approval
        InvalidEntityState: Original is not a completed sale
        ValidationError: Unknown line or more pieces than remain unreturned
    """
    if not approved_by:
        raise InsufficientPermissions("create", "return order", message="Returns require manager approval")
    if not items:
        raise ValidationError("A return needs at least one item", field="items")
    if not (reason or "").strip():
        raise ValidationError("A return reason is required", field="reason")

    original = _lock_order(original_order_id)
    if original.order_type != ORDER_SALE or original.status != ORDER_COMPLETED:
        raise InvalidEntityState("Order", original.id, original.status, "return")

    original_items = {item.id: item for item in original.items}

    lines = []
    requested: dict[int, int] = {}
    for index, line in enumerate(items):
        source = original_items.get(line.get("order_item_id"))
        if source is None:
            raise ValidationError(
                f"Item {line.get('order_item_id')} is not on order {original.order_number}",
                field=f"items[{index}].order_item_id",
            )
        quantity = line.get("quantity", 1)
        requested[source.id] = requested.get(source.id, 0) + quantity
        remaining = source.quantity - _returned_quantity(source.id)
        if quantity < 1 or requested[source.id] > remaining:
            raise ValidationError(
                f"Cannot return {quantity} of item {source.id}; {remaining} remaining",
                field=f"items[{index}].quantity",
            )
        lines.append((source, quantity))

    try:
        order = _build_return(original, lines, reason, cashier, approved_by, payment_method)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Return %s against %s approved by %s, refund %s",
        order.order_number,
        original.order_number,
        approved_by,
        cents_to_str(order.total_cents),
    )
    return order


def _build_return(
    original: Order,
    lines: list[tuple[OrderItem, int]],
    reason: str,
    cashier: str,
    approved_by: str,
    payment_method: str,
) -> Order:
    order = _new_order(original.branch_id, ORDER_RETURN, cashier, original.customer_id, None)
    order.original_order_id = original.id
    order.approved_by = approved_by
    order.return_reason = reason

    for source, quantity in lines:
        item = OrderItem(
            product_id=source.product_id,
            original_order_item_id=source.id,
            description=source.description,
            karat=source.karat,
            weight_mg=source.weight_mg,
            quantity=quantity,
            gold_rate_id=source.gold_rate_id,
            gold_rate_cents_per_gram=source.gold_rate_cents_per_gram,
            pricing_snapshot=source.pricing_snapshot,
            **_prorated_amounts(
                source.gold_value_cents,
                source.making_charges_cents,
                source.discount_cents,
                source.tax_cents,
                quantity,
                source.quantity,
            ),
        )
        order.items.append(item)

    _recalculate_totals(order)
    db.session.flush()

    record_transaction(
        branch_id=order.branch_id,
        transaction_type=TX_RETURN,
        subtotal_cents=order.subtotal_cents,
        tax_cents=order.tax_cents,
        discount_cents=order.discount_cents,
        total_cents=order.total_cents,
        amount_paid_cents=order.total_cents,
        payment_method=payment_method,
        processed_by=cashier,
        approved_by=approved_by,
        order_id=order.id,
        notes=f"Return of {original.order_number}: {reason}",
    )

    for source, quantity in lines:
        if source.product_id is not None:
            ownership_service.restore_ownership_for_return(
                source.product_id, order.branch_id, quantity, order.order_number, cashier
            )

    order.status = ORDER_COMPLETED
    order.completed_at = utcnow()
    db.session.flush()

    fully_returned = all(_returned_quantity(i.id) >= i.quantity for i in original.items)
    if fully_returned:
        original.status = ORDER_REFUNDED
    original.notes = append_note(original.notes, f"Return {order.order_number}: {reason}")
    original.touch(cashier)

    commit_or_conflict()
    return order


# =============================================================================
# VERIFICATION
# =============================================================================

def reprice_item_from_snapshot(item: OrderItem) -> PriceBreakdown:
    """Recompute a line from its frozen rate, weight, and rules."""
    return reprice_from_snapshot(
        weight_mg=item.weight_mg,
        quantity=item.quantity,
        rate_cents_per_gram=item.gold_rate_cents_per_gram,
        snapshot=item.pricing_snapshot,
    )


def verify_order_totals(order_id: int) -> list[RepriceResult]:
    """
    Recompute every priced line of an order and compare with what was stored.

    Return lines are compared against their recomputed sale line, scaled
    to the returned quantity the same way the return priced them.
    """
    order = get_order(order_id)
    results = []
    for item in order.items:
        if item.original_item is not None:
            source = item.original_item
            sale = reprice_item_from_snapshot(source)
            recomputed = _prorated_amounts(
                sale.gold_value_cents,
                sale.making_charges_cents,
                sale.discount_cents,
                sale.tax_cents,
                item.quantity,
                source.quantity,
            )["line_total_cents"]
        else:
            recomputed = reprice_item_from_snapshot(item).total_cents
        results.append(
            RepriceResult(
                item_id=item.id,
                stored_total_cents=item.line_total_cents,
                recomputed_total_cents=recomputed,
            )
        )
    return results

