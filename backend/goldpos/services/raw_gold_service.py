"""
Raw Gold Service

WHY: Besides finished pieces, the shop buys unrefined gold from suppliers
on credit and keeps its own stock of raw gold (scrap bought over the
counter, melted returns). Three ledgers track it:

- RawGoldOwnership: how much of a supplier's delivery the merchant has paid for
- SupplierGoldBalance: grams received vs. grams paid for, per supplier/karat,
  plus gold the merchant has handed back as credit
- RawGoldInventory: merchant-owned raw gold on hand per karat

DESIGN PRINCIPLES:
- A delivery is owned by its own paid share; a later payment covers the
  same share of the unpaid weight as of the outstanding amount, so owned
  weight never drops when a pricier delivery is merged in
- A supplier's positive credit limit caps the unpaid balance
- Outstanding weight debt is derived (received - paid for), never stored
- Average costs are weighted by weight
- Waiving and converting gold are value-preserving at current gold rates
"""

from __future__ import annotations

from flask import current_app

from ..errors import (
    BusinessRuleViolation,
    EntityNotFound,
    InsufficientStock,
    PaymentException,
    ValidationError,
)
from ..extensions import db
from ..lookups import PAYMENT_CASH, TRANSFER_CONVERT, TRANSFER_WAIVE, TX_GOLD_PURCHASE
from ..models import (
    Branch,
    Customer,
    CustomerPurchase,
    CustomerPurchaseItem,
    RawGoldInventory,
    RawGoldOwnership,
    RawGoldTransfer,
    Supplier,
    SupplierGoldBalance,
)
from ..money import MG_PER_GRAM, cents_to_str, div_round, gold_value_cents, mg_to_str, paid_share, ratio_bps
from ..time_utils import utcnow
from .concurrency import commit_or_conflict, lock_for_update
from .document_service import CUSTOMER_PURCHASE_NUMBER, RAW_GOLD_TRANSFER_NUMBER, allocate
from .financial_transaction_service import record_transaction
from .pricing import validate_karat
from .pricing_service import calculate_karat_conversion


def _require_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if not branch:
        raise EntityNotFound("Branch", branch_id)
    return branch


def _lock_supplier(supplier_id: int) -> Supplier:
    supplier = lock_for_update(
        db.session.query(Supplier).filter_by(id=supplier_id, is_active=True)
    ).first()
    if not supplier:
        raise EntityNotFound("Supplier", supplier_id)
    return supplier


def _require_positive_weight(weight_mg: int) -> None:
    if weight_mg <= 0:
        raise ValidationError("Weight must be positive", field="weight_mg")


def _weighted_average(existing_mg: int, existing_avg: int, added_mg: int, added_avg: int) -> int:
    """Average cost per gram after adding added_mg at added_avg to existing_mg at existing_avg."""
    total = existing_mg + added_mg
    if total <= 0:
        return 0
    return div_round(existing_mg * existing_avg + added_mg * added_avg, total)


def _earn(ownership: RawGoldOwnership, weight_mg: int, paid_cents: int, owed_cents: int) -> None:
    ownership.owned_weight_mg = min(
        ownership.total_weight_mg,
        ownership.owned_weight_mg + paid_share(weight_mg, paid_cents, owed_cents),
    )
    ownership.ownership_bps = ratio_bps(ownership.owned_weight_mg, ownership.total_weight_mg)


def _check_credit_limit(supplier: Supplier, added_debt_cents: int) -> None:
    """A positive credit_limit_cents caps what the merchant may owe the supplier; zero means no limit."""
    if supplier.credit_limit_cents <= 0 or added_debt_cents <= 0:
        return
    if supplier.current_balance_cents + added_debt_cents > supplier.credit_limit_cents:
        raise BusinessRuleViolation(
            "CREDIT_LIMIT_EXCEEDED",
            f"Buying {cents_to_str(added_debt_cents)} on credit would take {supplier.company_name} "
            f"past its credit limit of {cents_to_str(supplier.credit_limit_cents)} "
            f"(currently owed {cents_to_str(supplier.current_balance_cents)})",
            entity_type="Supplier",
            entity_id=supplier.id,
        )


# =============================================================================
# SUPPLIER GOLD BALANCE
# =============================================================================

def _lock_balance(supplier_id: int, branch_id: int, karat: str, user: str) -> SupplierGoldBalance:
    balance = lock_for_update(
        db.session.query(SupplierGoldBalance).filter_by(
            supplier_id=supplier_id, branch_id=branch_id, karat=karat
        )
    ).first()
    if balance is None:
        balance = SupplierGoldBalance(
            supplier_id=supplier_id,
            branch_id=branch_id,
            karat=karat,
            total_weight_received_mg=0,
            total_weight_paid_for_mg=0,
            merchant_gold_balance_mg=0,
            average_cost_per_gram_cents=0,
            created_by=user,
        )
        db.session.add(balance)
        db.session.flush()
    return balance


def _receive(
    supplier_id: int,
    branch_id: int,
    karat: str,
    weight_mg: int,
    cost_per_gram_cents: int,
    user: str,
) -> SupplierGoldBalance:
    balance = _lock_balance(supplier_id, branch_id, karat, user)
    balance.average_cost_per_gram_cents = _weighted_average(
        balance.total_weight_received_mg,
        balance.average_cost_per_gram_cents,
        weight_mg,
        cost_per_gram_cents,
    )
    balance.total_weight_received_mg += weight_mg
    balance.last_transaction_date = utcnow()
    balance.touch(user)
    return balance


def _pay_for(supplier_id: int, branch_id: int, karat: str, weight_mg: int, user: str) -> SupplierGoldBalance:
    balance = _lock_balance(supplier_id, branch_id, karat, user)
    if balance.total_weight_paid_for_mg + weight_mg > balance.total_weight_received_mg:
        raise BusinessRuleViolation(
            "PAID_FOR_EXCEEDS_RECEIVED",
            f"Cannot pay for {mg_to_str(weight_mg)} of {karat}; only "
            f"{mg_to_str(balance.outstanding_weight_debt_mg)} is outstanding",
            entity_type="SupplierGoldBalance",
            entity_id=balance.id,
        )
    balance.total_weight_paid_for_mg += weight_mg
    balance.last_transaction_date = utcnow()
    balance.touch(user)
    return balance


def record_gold_received(
    supplier_id: int,
    branch_id: int,
    karat: str,
    weight_mg: int,
    cost_per_gram_cents: int,
    user: str,
) -> SupplierGoldBalance:
    """Add received gold to the supplier balance, folding its cost into the average."""
    validate_karat(karat)
    _require_positive_weight(weight_mg)
    if cost_per_gram_cents < 0:
        raise ValidationError("Cost per gram cannot be negative", field="cost_per_gram_cents")
    _require_branch(branch_id)
    _lock_supplier(supplier_id)

    balance = _receive(supplier_id, branch_id, karat, weight_mg, cost_per_gram_cents, user)
    commit_or_conflict()
    return balance


def record_gold_paid_for(
    supplier_id: int,
    branch_id: int,
    karat: str,
    weight_mg: int,
    user: str,
) -> SupplierGoldBalance:
    """
    Settle part of the weight debt.

    Raises:
        BusinessRuleViolation: More weight than is outstanding
    """
    validate_karat(karat)
    _require_positive_weight(weight_mg)
    _require_branch(branch_id)
    _lock_supplier(supplier_id)

    balance = _pay_for(supplier_id, branch_id, karat, weight_mg, user)
    commit_or_conflict()
    return balance


# =============================================================================
# RAW GOLD OWNERSHIP
# =============================================================================

def get_raw_gold_ownership(ownership_id: int) -> RawGoldOwnership:
    ownership = db.session.get(RawGoldOwnership, ownership_id)
    if not ownership or not ownership.is_active:
        raise EntityNotFound("RawGoldOwnership", ownership_id)
    return ownership


def record_raw_gold_purchase(
    supplier_id: int,
    branch_id: int,
    karat: str,
    weight_mg: int,
    total_cost_cents: int,
    user: str,
    amount_paid_cents: int = 0,
) -> RawGoldOwnership:
    """
    Record raw gold bought from a supplier.

    Merges into the supplier/branch/karat record. The delivery is received
    on the supplier gold balance at its own cost per gram, the paid share
    is marked paid for, and the unpaid amount is added to what the merchant
    owes the supplier.

    Raises:
        ValidationError: Non-positive weight, negative amounts, payment above cost
        BusinessRuleViolation: The unpaid amount would exceed the supplier's credit limit
    """
    validate_karat(karat)
    _require_positive_weight(weight_mg)
    if total_cost_cents < 0 or amount_paid_cents < 0:
        raise ValidationError("Cost and payment cannot be negative")
    if amount_paid_cents > total_cost_cents:
        raise ValidationError("Amount paid cannot exceed total cost", field="amount_paid_cents")
    _require_branch(branch_id)
    supplier = _lock_supplier(supplier_id)
    _check_credit_limit(supplier, total_cost_cents - amount_paid_cents)

    try:
        ownership = lock_for_update(
            db.session.query(RawGoldOwnership).filter_by(
                supplier_id=supplier_id, branch_id=branch_id, karat=karat
            )
        ).first()
        if ownership is None:
            ownership = RawGoldOwnership(
                supplier_id=supplier_id,
                branch_id=branch_id,
                karat=karat,
                total_weight_mg=0,
                owned_weight_mg=0,
                total_cost_cents=0,
                amount_paid_cents=0,
                created_by=user,
            )
            db.session.add(ownership)
        elif not ownership.is_active:
            ownership.is_active = True

        owned_before = ownership.owned_weight_mg
        ownership.total_weight_mg += weight_mg
        ownership.total_cost_cents += total_cost_cents
        ownership.amount_paid_cents += amount_paid_cents
        _earn(ownership, weight_mg, amount_paid_cents, total_cost_cents)
        ownership.touch(user)

        cost_per_gram = div_round(total_cost_cents * MG_PER_GRAM, weight_mg)
        _receive(supplier_id, branch_id, karat, weight_mg, cost_per_gram, user)
        newly_owned = ownership.owned_weight_mg - owned_before
        if newly_owned > 0:
            _pay_for(supplier_id, branch_id, karat, newly_owned, user)

        supplier.current_balance_cents += total_cost_cents - amount_paid_cents
        supplier.touch(user)

        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Raw gold purchase: %s %s from supplier %s for %s (%s paid)",
        mg_to_str(weight_mg),
        karat,
        supplier_id,
        cents_to_str(total_cost_cents),
        cents_to_str(amount_paid_cents),
    )
    return ownership


def apply_raw_gold_payment(ownership_id: int, amount_cents: int, user: str) -> RawGoldOwnership:
    """
    Pay toward a raw gold delivery; the owned weight grows with the paid share.

    Raises:
        PaymentException: Payment above the outstanding amount
    """
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be positive", field="amount_cents")

    ownership = lock_for_update(
        db.session.query(RawGoldOwnership).filter_by(id=ownership_id, is_active=True)
    ).first()
    if not ownership:
        raise EntityNotFound("RawGoldOwnership", ownership_id)
    if amount_cents > ownership.outstanding_amount_cents:
        raise PaymentException(
            f"Payment {cents_to_str(amount_cents)} exceeds outstanding "
            f"{cents_to_str(ownership.outstanding_amount_cents)}",
            user_friendly_message="The payment is larger than the amount still owed.",
        )

    supplier = _lock_supplier(ownership.supplier_id)
    try:
        owned_before = ownership.owned_weight_mg
        _earn(
            ownership,
            ownership.total_weight_mg - ownership.owned_weight_mg,
            amount_cents,
            ownership.outstanding_amount_cents,
        )
        ownership.amount_paid_cents += amount_cents
        ownership.touch(user)

        newly_owned = ownership.owned_weight_mg - owned_before
        if newly_owned > 0:
            _pay_for(ownership.supplier_id, ownership.branch_id, ownership.karat, newly_owned, user)

        supplier.current_balance_cents -= amount_cents
        supplier.touch(user)
        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise
    return ownership


# =============================================================================
# MERCHANT INVENTORY
# =============================================================================

def _lock_inventory(branch_id: int, karat: str, user: str, *, create: bool) -> RawGoldInventory | None:
    inventory = lock_for_update(
        db.session.query(RawGoldInventory).filter_by(branch_id=branch_id, karat=karat)
    ).first()
    if inventory is None and create:
        inventory = RawGoldInventory(
            branch_id=branch_id,
            karat=karat,
            weight_on_hand_mg=0,
            average_cost_per_gram_cents=0,
            created_by=user,
        )
        db.session.add(inventory)
        db.session.flush()
    return inventory


def take_from_inventory(branch_id: int, karat: str, weight_mg: int, user: str) -> RawGoldInventory:
    """Remove merchant raw gold from stock without committing; the average cost is unchanged."""
    inventory = _lock_inventory(branch_id, karat, user, create=False)
    available = inventory.weight_on_hand_mg if inventory else 0
    if available < weight_mg:
        raise InsufficientStock(
            f"Only {mg_to_str(available)} of {karat} raw gold on hand",
            requested=weight_mg,
            available=available,
            entity_type="RawGoldInventory",
        )
    inventory.weight_on_hand_mg -= weight_mg
    inventory.touch(user)
    return inventory


def _add_to_inventory(branch_id: int, karat: str, weight_mg: int, cost_per_gram_cents: int, user: str) -> RawGoldInventory:
    inventory = _lock_inventory(branch_id, karat, user, create=True)
    inventory.average_cost_per_gram_cents = _weighted_average(
        inventory.weight_on_hand_mg,
        inventory.average_cost_per_gram_cents,
        weight_mg,
        cost_per_gram_cents,
    )
    inventory.weight_on_hand_mg += weight_mg
    inventory.touch(user)
    return inventory


def add_merchant_raw_gold(
    branch_id: int,
    karat: str,
    weight_mg: int,
    cost_per_gram_cents: int,
    user: str,
) -> RawGoldInventory:
    """Add merchant-owned raw gold (scrap, melted stock) at a known cost."""
    validate_karat(karat)
    _require_positive_weight(weight_mg)
    if cost_per_gram_cents < 0:
        raise ValidationError("Cost per gram cannot be negative", field="cost_per_gram_cents")
    _require_branch(branch_id)

    inventory = _add_to_inventory(branch_id, karat, weight_mg, cost_per_gram_cents, user)
    commit_or_conflict()
    return inventory


# =============================================================================
# GOLD BOUGHT FROM CUSTOMERS
# =============================================================================

def purchase_gold_from_customer(
    branch_id: int,
    customer_id: int,
    items: list[dict],
    user: str,
    payment_method: str = PAYMENT_CASH,
    notes: str | None = None,
) -> CustomerPurchase:
    """
    Buy gold over the counter and add it to merchant raw gold.

    Args:
        items: [{"karat": str, "weight_mg": int, "unit_price_cents_per_gram": int,
                 "notes": str | None}, ...]

    Each line is paid at weight x unit price and enters inventory at that
    price per gram. The payout is written as a GOLD_PURCHASE financial
    transaction in the same commit.

    Raises:
        ValidationError: No items, unknown karat, non-positive weight or price
        EntityNotFound: Unknown branch or customer
    """
    if not items:
        raise ValidationError("A purchase needs at least one item", field="items")
    lines = []
    for index, line in enumerate(items):
        karat = line.get("karat")
        weight_mg = line.get("weight_mg", 0)
        price = line.get("unit_price_cents_per_gram", 0)
        validate_karat(karat)
        if weight_mg <= 0:
            raise ValidationError("Weight must be positive", field=f"items[{index}].weight_mg")
        if price <= 0:
            raise ValidationError("Unit price must be positive", field=f"items[{index}].unit_price_cents_per_gram")
        lines.append((karat, weight_mg, price, gold_value_cents(weight_mg, price), line.get("notes")))

    _require_branch(branch_id)
    customer = db.session.get(Customer, customer_id)
    if not customer or not customer.is_active:
        raise EntityNotFound("Customer", customer_id)

    try:
        purchase = CustomerPurchase(
            branch_id=branch_id,
            customer_id=customer_id,
            purchase_number=allocate(branch_id, CUSTOMER_PURCHASE_NUMBER),
            purchase_date=utcnow(),
            total_weight_mg=sum(weight for _, weight, _, _, _ in lines),
            total_amount_cents=sum(amount for _, _, _, amount, _ in lines),
            payment_method=payment_method,
            notes=notes,
            created_by=user,
        )
        for karat, weight_mg, price, amount, line_notes in lines:
            purchase.items.append(
                CustomerPurchaseItem(
                    karat=karat,
                    weight_mg=weight_mg,
                    unit_price_cents_per_gram=price,
                    total_amount_cents=amount,
                    notes=line_notes,
                )
            )
            _add_to_inventory(branch_id, karat, weight_mg, price, user)
        db.session.add(purchase)

        tx = record_transaction(
            branch_id=branch_id,
            transaction_type=TX_GOLD_PURCHASE,
            total_cents=purchase.total_amount_cents,
            amount_paid_cents=purchase.total_amount_cents,
            payment_method=payment_method,
            processed_by=user,
            notes=f"Gold bought from customer: {purchase.purchase_number}",
        )
        purchase.financial_transaction_id = tx.id
        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Customer purchase %s: %s from customer %s for %s",
        purchase.purchase_number,
        mg_to_str(purchase.total_weight_mg),
        customer_id,
        cents_to_str(purchase.total_amount_cents),
    )
    return purchase


def get_customer_purchase(purchase_id: int) -> CustomerPurchase:
    purchase = db.session.get(CustomerPurchase, purchase_id)
    if not purchase or not purchase.is_active:
        raise EntityNotFound("CustomerPurchase", purchase_id)
    return purchase


def list_customer_purchases(branch_id: int, customer_id: int | None = None) -> list[CustomerPurchase]:
    query = db.session.query(CustomerPurchase).filter_by(branch_id=branch_id, is_active=True)
    if customer_id is not None:
        query = query.filter_by(customer_id=customer_id)
    return query.order_by(CustomerPurchase.purchase_date, CustomerPurchase.id).all()


def _record_transfer(branch_id: int, transfer_type: str, conversion, user: str, **fields) -> RawGoldTransfer:
    transfer = RawGoldTransfer(
        branch_id=branch_id,
        transfer_number=allocate(branch_id, RAW_GOLD_TRANSFER_NUMBER),
        transfer_type=transfer_type,
        from_karat=conversion.from_karat,
        to_karat=conversion.to_karat,
        from_weight_mg=conversion.from_weight_mg,
        to_weight_mg=conversion.to_weight_mg,
        from_rate_cents_per_gram=conversion.from_rate_cents_per_gram,
        to_rate_cents_per_gram=conversion.to_rate_cents_per_gram,
        value_cents=conversion.value_cents,
        created_by=user,
        **fields,
    )
    db.session.add(transfer)
    return transfer


def waive_gold_to_supplier(
    branch_id: int,
    supplier_id: int,
    from_karat: str,
    weight_mg: int,
    to_karat: str,
    user: str,
    notes: str | None = None,
) -> RawGoldTransfer:
    """
    Hand merchant raw gold to a supplier as credit.

    The gold leaves inventory in from_karat, is converted by value into
    to_karat at current rates, and is credited to the supplier gold balance
    in to_karat. The supplier's monetary balance drops by the gold's value.

    Raises:
        InsufficientStock: Not enough raw gold on hand
        EntityNotFound: Missing supplier, branch, or current gold rate
    """
    validate_karat(from_karat)
    validate_karat(to_karat)
    _require_positive_weight(weight_mg)
    _require_branch(branch_id)
    supplier = _lock_supplier(supplier_id)
    conversion = calculate_karat_conversion(from_karat, to_karat, weight_mg)

    try:
        take_from_inventory(branch_id, from_karat, weight_mg, user)

        balance = _lock_balance(supplier_id, branch_id, to_karat, user)
        balance.merchant_gold_balance_mg += conversion.to_weight_mg
        balance.last_transaction_date = utcnow()
        balance.touch(user)

        supplier.current_balance_cents -= conversion.value_cents
        supplier.touch(user)

        transfer = _record_transfer(
            branch_id, TRANSFER_WAIVE, conversion, user, supplier_id=supplier_id, notes=notes
        )
        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Waived %s %s (%s %s, %s) to supplier %s as %s",
        mg_to_str(weight_mg),
        from_karat,
        mg_to_str(conversion.to_weight_mg),
        to_karat,
        cents_to_str(conversion.value_cents),
        supplier.company_name,
        transfer.transfer_number,
    )
    return transfer


def convert_merchant_gold_karat(
    branch_id: int,
    from_karat: str,
    to_karat: str,
    weight_mg: int,
    user: str,
) -> RawGoldTransfer:
    """
    Re-book merchant raw gold from one karat to another at equal value.

    The converted gold keeps its book cost; the target karat's average cost
    absorbs it.

    Raises:
        ValidationError: Same karat on both sides
        InsufficientStock: Not enough raw gold on hand
    """
    validate_karat(from_karat)
    validate_karat(to_karat)
    if from_karat == to_karat:
        raise ValidationError("Source and target karat must differ", field="to_karat")
    _require_positive_weight(weight_mg)
    _require_branch(branch_id)
    conversion = calculate_karat_conversion(from_karat, to_karat, weight_mg)

    try:
        source = take_from_inventory(branch_id, from_karat, weight_mg, user)
        book_cost = gold_value_cents(weight_mg, source.average_cost_per_gram_cents)

        target = _lock_inventory(branch_id, to_karat, user, create=True)
        target_cost = gold_value_cents(target.weight_on_hand_mg, target.average_cost_per_gram_cents)
        target.weight_on_hand_mg += conversion.to_weight_mg
        if target.weight_on_hand_mg > 0:
            target.average_cost_per_gram_cents = div_round(
                (target_cost + book_cost) * MG_PER_GRAM, target.weight_on_hand_mg
            )
        target.touch(user)

        transfer = _record_transfer(branch_id, TRANSFER_CONVERT, conversion, user)
        commit_or_conflict()
    except Exception:
        db.session.rollback()
        raise
    return transfer


# =============================================================================
# QUERIES
# =============================================================================

def get_inventory(branch_id: int) -> list[RawGoldInventory]:
    return (
        db.session.query(RawGoldInventory)
        .filter_by(branch_id=branch_id)
        .order_by(RawGoldInventory.karat)
        .all()
    )


def get_gold_balance_summary(branch_id: int) -> dict:
    """
    Gold owed to suppliers against gold credited to them.

    Returns:
        {
            "branch_id": int,
            "total_debt_mg": received - paid for, summed,
            "total_credit_mg": merchant gold handed over, summed,
            "net_balance_mg": debt - credit,
            "total_debt_value_cents": debt at each row's average cost,
            "balances": [SupplierGoldBalance.to_dict(), ...],
        }
    """
    rows = (
        db.session.query(SupplierGoldBalance)
        .filter_by(branch_id=branch_id, is_active=True)
        .order_by(SupplierGoldBalance.supplier_id, SupplierGoldBalance.karat)
        .all()
    )
    debt = sum(row.outstanding_weight_debt_mg for row in rows)
    credit = sum(row.merchant_gold_balance_mg for row in rows)
    return {
        "branch_id": branch_id,
        "total_debt_mg": debt,
        "total_credit_mg": credit,
        "net_balance_mg": debt - credit,
        "total_debt_value_cents": sum(row.outstanding_monetary_value_cents for row in rows),
        "balances": [row.to_dict() for row in rows],
    }


def find_invariant_violations(branch_id: int) -> list[dict]:
    """Raw gold ownership rows whose owned weight or payment falls outside the record's totals."""
    problems = []
    rows = db.session.query(RawGoldOwnership).filter_by(branch_id=branch_id).all()
    for row in rows:
        if not 0 <= row.owned_weight_mg <= row.total_weight_mg:
            problems.append({"ownership_id": row.id, "problem": "owned weight outside 0..total"})
        if not 0 <= row.amount_paid_cents <= row.total_cost_cents:
            problems.append({"ownership_id": row.id, "problem": "amount paid outside 0..cost"})
        if row.ownership_bps != ratio_bps(row.owned_weight_mg, row.total_weight_mg):
            problems.append({"ownership_id": row.id, "problem": "ownership_bps out of date"})
    return problems
