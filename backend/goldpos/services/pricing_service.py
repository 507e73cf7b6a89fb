"""
Gold Rate, Making Charge, and Tax Table Service

WHY: Prices are computed from three versioned tables. Each change closes the
current row and opens a new one, so an order item can always point at the
exact rate it was priced with.

DESIGN PRINCIPLES:
- One current row per karat / category+subcategory / tax code
- Superseded rows get effective_to = new effective_from - 1 minute
- Pricing reads the current rows, then hands them to the pure calculator
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from ..errors import BusinessRuleViolation, EntityNotFound, ValidationError
from ..extensions import db
from ..models import Customer, GoldRate, MakingCharge, Product, TaxConfiguration
from ..money import cents_to_str
from ..time_utils import utcnow
from .concurrency import commit_or_conflict, lock_for_update
from .pricing import (
    DiscountPolicy,
    KaratConversion,
    MakingChargeRule,
    PriceBreakdown,
    TaxRule,
    build_snapshot,
    calculate_line_price,
    convert_karat_weight,
    validate_karat,
    require_charge_type,
)


SUPERSEDE_GAP = timedelta(minutes=1)


@dataclass(frozen=True)
class PricedLine:
    """A breakdown plus the rows and rules needed to snapshot it."""
    breakdown: PriceBreakdown
    gold_rate: GoldRate
    snapshot: dict


# =============================================================================
# VERSIONING
# =============================================================================

def _supersede(current_rows: list, effective_from: datetime, user: str, label: str) -> None:
    """
    Close the current versions so a new one can start at effective_from.

    Applies to gold rates, making charges, and tax configurations alike: a
    new version may not start before the current one, since orders already
    priced against the current row would fall inside the back-dated period.
    """
    for row in current_rows:
        if row.effective_from and row.effective_from > effective_from:
            raise BusinessRuleViolation(
                "OVERLAPPING_EFFECTIVE_PERIOD",
                f"{label} already has a version effective from {row.effective_from.isoformat()}",
            )
        row.is_current = False
        row.effective_to = effective_from - SUPERSEDE_GAP
        row.touch(user)


# =============================================================================
# GOLD RATES
# =============================================================================

def get_current_gold_rate(karat: str) -> GoldRate:
    validate_karat(karat)
    rate = (
        db.session.query(GoldRate)
        .filter_by(karat=karat, is_current=True, is_active=True)
        .filter(GoldRate.effective_to.is_(None))
        .order_by(GoldRate.effective_from.desc(), GoldRate.id.desc())
        .first()
    )
    if not rate:
        raise EntityNotFound("GoldRate", karat, f"No current gold rate for {karat}")
    return rate


def get_current_gold_rates() -> dict[str, GoldRate]:
    rows = (
        db.session.query(GoldRate)
        .filter_by(is_current=True, is_active=True)
        .order_by(GoldRate.karat)
        .all()
    )
    return {row.karat: row for row in rows}


def update_gold_rate(
    karat: str,
    rate_cents_per_gram: int,
    user: str,
    effective_from: datetime | None = None,
) -> GoldRate:
    """
    Publish a new rate for a karat.

    Raises:
        ValidationError: Unknown karat or non-positive rate
        BusinessRuleViolation: New version would start before the current one
    """
    validate_karat(karat)
    if rate_cents_per_gram <= 0:
        raise ValidationError("Gold rate must be positive", field="rate_cents_per_gram")

    effective_from = effective_from or utcnow()
    current = lock_for_update(
        db.session.query(GoldRate).filter_by(karat=karat, is_current=True)
    ).all()
    _supersede(current, effective_from, user, f"Gold rate {karat}")

    rate = GoldRate(
        karat=karat,
        rate_cents_per_gram=rate_cents_per_gram,
        effective_from=effective_from,
        is_current=True,
        created_by=user,
    )
    db.session.add(rate)
    commit_or_conflict()

    current_app.logger.info(
        "Gold rate for %s set to %s per gram by %s", karat, cents_to_str(rate_cents_per_gram), user
    )
    return rate


def get_gold_rate_history(karat: str, since: datetime | None = None) -> list[GoldRate]:
    validate_karat(karat)
    query = db.session.query(GoldRate).filter_by(karat=karat)
    if since is not None:
        query = query.filter(GoldRate.effective_from >= since)
    return query.order_by(GoldRate.effective_from.desc(), GoldRate.id.desc()).all()


# =============================================================================
# MAKING CHARGES
# =============================================================================

def _current_making_query(category: str, subcategory: str | None):
    query = db.session.query(MakingCharge).filter_by(category=category, is_current=True, is_active=True)
    if subcategory is None:
        return query.filter(MakingCharge.subcategory.is_(None))
    return query.filter(MakingCharge.subcategory == subcategory)


def get_current_making_charge(category: str, subcategory: str | None = None) -> MakingCharge | None:
    """Subcategory row first, then the category-wide row."""
    if subcategory is not None:
        match = _current_making_query(category, subcategory).order_by(MakingCharge.effective_from.desc()).first()
        if match:
            return match
    return _current_making_query(category, None).order_by(MakingCharge.effective_from.desc()).first()


def update_making_charge(
    category: str,
    charge_type: str,
    charge_value: int,
    user: str,
    name: str | None = None,
    subcategory: str | None = None,
    effective_from: datetime | None = None,
) -> MakingCharge:
    require_charge_type(charge_type, "charge_type")
    if charge_value < 0:
        raise ValidationError("Making charge value cannot be negative", field="charge_value")

    effective_from = effective_from or utcnow()
    current = lock_for_update(_current_making_query(category, subcategory)).all()
    _supersede(current, effective_from, user, f"Making charge {category}/{subcategory or '*'}")

    charge = MakingCharge(
        name=name or f"{category} {subcategory or ''}".strip(),
        category=category,
        subcategory=subcategory,
        charge_type=charge_type,
        charge_value=charge_value,
        effective_from=effective_from,
        is_current=True,
        created_by=user,
    )
    db.session.add(charge)
    commit_or_conflict()
    return charge


# =============================================================================
# TAXES
# =============================================================================

def get_mandatory_taxes() -> list[TaxConfiguration]:
    return (
        db.session.query(TaxConfiguration)
        .filter_by(is_current=True, is_mandatory=True, is_active=True)
        .order_by(TaxConfiguration.display_order, TaxConfiguration.tax_code)
        .all()
    )


def update_tax_configuration(
    tax_code: str,
    tax_name: str,
    tax_type: str,
    tax_rate: int,
    user: str,
    is_mandatory: bool = True,
    display_order: int = 0,
    effective_from: datetime | None = None,
) -> TaxConfiguration:
    require_charge_type(tax_type, "tax_type")
    if tax_rate < 0:
        raise ValidationError("Tax rate cannot be negative", field="tax_rate")

    effective_from = effective_from or utcnow()
    current = lock_for_update(
        db.session.query(TaxConfiguration).filter_by(tax_code=tax_code, is_current=True)
    ).all()
    _supersede(current, effective_from, user, f"Tax {tax_code}")

    tax = TaxConfiguration(
        tax_code=tax_code,
        tax_name=tax_name,
        tax_type=tax_type,
        tax_rate=tax_rate,
        is_mandatory=is_mandatory,
        display_order=display_order,
        effective_from=effective_from,
        is_current=True,
        created_by=user,
    )
    db.session.add(tax)
    commit_or_conflict()
    return tax


# =============================================================================
# PRICE CALCULATION
# =============================================================================

def resolve_making_rule(product: Product) -> MakingChargeRule | None:
    if not product.making_charges_applicable:
        return None
    if product.use_product_making_charges and product.making_charge_type:
        return MakingChargeRule(
            charge_type=product.making_charge_type,
            value=product.making_charge_value or 0,
            source="PRODUCT",
        )
    charge = get_current_making_charge(product.category, product.subcategory)
    if charge is None:
        return None
    return MakingChargeRule(charge_type=charge.charge_type, value=charge.charge_value, source="CATEGORY")


def discount_policy_for(customer: Customer | None, line_discount_cents: int = 0) -> DiscountPolicy:
    config = current_app.config
    return DiscountPolicy(
        customer_discount_bps=customer.default_discount_bps if customer else 0,
        making_charges_waived=bool(customer and customer.making_charges_waived),
        line_discount_cents=line_discount_cents,
        prevent_percentage_when_waived=config["PREVENT_PERCENTAGE_DISCOUNT_WHEN_MAKING_CHARGES_WAIVED"],
        cap_to_making_charges=config["CAP_DISCOUNT_TO_MAKING_CHARGES"],
    )


def current_tax_rules() -> list[TaxRule]:
    return [
        TaxRule(
            tax_code=tax.tax_code,
            tax_name=tax.tax_name,
            tax_type=tax.tax_type,
            rate=tax.tax_rate,
            display_order=tax.display_order,
        )
        for tax in get_mandatory_taxes()
    ]


def calculate_product_price(
    product: Product,
    quantity: int = 1,
    customer: Customer | None = None,
    line_discount_cents: int = 0,
) -> PricedLine:
    """
    Price a product at the current gold rate for its karat.

    Raises:
        EntityNotFound: No current rate for the product's karat
        ValidationError: Bad quantity or discount
    """
    rate = get_current_gold_rate(product.karat)
    making_rule = resolve_making_rule(product)
    policy = discount_policy_for(customer, line_discount_cents)
    tax_rules = current_tax_rules()

    breakdown = calculate_line_price(
        weight_mg=product.weight_mg,
        quantity=quantity,
        rate_cents_per_gram=rate.rate_cents_per_gram,
        making_rule=making_rule,
        discount=policy,
        tax_rules=tax_rules,
    )
    if breakdown.discount_capped:
        current_app.logger.warning(
            "Discount on product %s capped to %s",
            product.product_code,
            cents_to_str(breakdown.discount_cents),
        )

    return PricedLine(
        breakdown=breakdown,
        gold_rate=rate,
        snapshot=build_snapshot(making_rule, policy, tax_rules),
    )


def calculate_karat_conversion(from_karat: str, to_karat: str, weight_mg: int) -> KaratConversion:
    """Equal-value weight conversion at current rates. EntityNotFound if either rate is missing."""
    from_rate = get_current_gold_rate(from_karat)
    to_rate = get_current_gold_rate(to_karat)
    return convert_karat_weight(
        from_karat=from_karat,
        to_karat=to_karat,
        weight_mg=weight_mg,
        from_rate_cents_per_gram=from_rate.rate_cents_per_gram,
        to_rate_cents_per_gram=to_rate.rate_cents_per_gram,
    )
