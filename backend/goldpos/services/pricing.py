"""
Gold Pricing Calculations

WHY: A jewelry price is not a catalog value. It is rebuilt at sale time from
the piece's weight, the live rate for its karat, a making (labor) charge,
customer privileges, and the tax table. Keeping that arithmetic in pure
functions lets the order service snapshot the exact inputs and recompute the
same total later.

FORMULA (per line):
    gold_value = weight x quantity x rate_per_gram
    subtotal   = gold_value + making_charges
    taxable    = subtotal - discount          (discount capped to subtotal)
    total      = taxable + taxes              (taxes on the post-discount amount)

Nothing here touches the database or the Flask app; the pricing service
assembles the rules and logs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from ..errors import ValidationError
from ..lookups import CHARGE_FIXED, CHARGE_PERCENTAGE, CHARGE_TYPES, KARATS
from ..money import BPS_SCALE, div_round, gold_value_cents, percent_of


# =============================================================================
# RULES
# =============================================================================

@dataclass(frozen=True)
class MakingChargeRule:
    """PERCENTAGE values are basis points of gold value; FIXED values are cents per piece."""
    charge_type: str
    value: int
    source: str = "CATEGORY"  # CATEGORY or PRODUCT

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> "MakingChargeRule | None":
        if not data:
            return None
        return cls(charge_type=data["charge_type"], value=data["value"], source=data.get("source", "CATEGORY"))


@dataclass(frozen=True)
class TaxRule:
    """PERCENTAGE rates are basis points of the taxable amount; FIXED rates are cents per piece."""
    tax_code: str
    tax_name: str
    tax_type: str
    rate: int
    display_order: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TaxRule":
        return cls(
            tax_code=data["tax_code"],
            tax_name=data["tax_name"],
            tax_type=data["tax_type"],
            rate=data["rate"],
            display_order=data.get("display_order", 0),
        )


@dataclass(frozen=True)
class DiscountPolicy:
    customer_discount_bps: int = 0
    making_charges_waived: bool = False
    line_discount_cents: int = 0
    prevent_percentage_when_waived: bool = True
    cap_to_making_charges: bool = True

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> "DiscountPolicy":
        if not data:
            return cls()
        return cls(**data)


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class TaxLine:
    tax_code: str
    tax_name: str
    amount_cents: int


@dataclass(frozen=True)
class PriceBreakdown:
    weight_mg: int
    quantity: int
    rate_cents_per_gram: int
    gold_value_cents: int
    making_charges_cents: int
    subtotal_cents: int
    discount_cents: int
    taxable_cents: int
    tax_cents: int
    total_cents: int
    tax_lines: tuple[TaxLine, ...] = field(default_factory=tuple)
    discount_capped: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["tax_lines"] = [asdict(line) for line in self.tax_lines]
        return data


@dataclass(frozen=True)
class KaratConversion:
    from_karat: str
    to_karat: str
    from_weight_mg: int
    to_weight_mg: int
    from_rate_cents_per_gram: int
    to_rate_cents_per_gram: int
    value_cents: int
    conversion_factor_bps: int

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# VALIDATION
# =============================================================================

def validate_karat(karat: str) -> str:
    if karat not in KARATS:
        raise ValidationError(
            f"Unknown karat '{karat}'. Expected one of: {', '.join(KARATS)}",
            field="karat",
        )
    return karat


def _require_non_negative(value: int, name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer", field=name)
    if value < 0:
        raise ValidationError(f"{name} cannot be negative", field=name)


def require_charge_type(charge_type: str, name: str) -> None:
    if charge_type not in CHARGE_TYPES:
        raise ValidationError(f"Unknown {name} '{charge_type}'", field=name)


# =============================================================================
# CALCULATION STEPS
# =============================================================================

def calculate_making_charges(gold_value: int, quantity: int, rule: MakingChargeRule | None) -> int:
    if rule is None:
        return 0
    require_charge_type(rule.charge_type, "charge_type")
    _require_non_negative(rule.value, "making_charge_value")
    if rule.charge_type == CHARGE_PERCENTAGE:
        return percent_of(gold_value, rule.value)
    return rule.value * quantity


def calculate_discount(subtotal: int, making_charges: int, policy: DiscountPolicy) -> tuple[int, bool]:
    """
    Resolve the line discount.

    Returns (discount_cents, capped). Waived making charges are granted as a
    discount of the full making amount; the customer's percentage discount
    is then withheld unless the policy allows stacking them.

    The result never exceeds the subtotal, so the line total cannot go
    below zero.
    """
    _require_non_negative(policy.customer_discount_bps, "customer_discount_bps")
    _require_non_negative(policy.line_discount_cents, "line_discount_cents")
    if policy.customer_discount_bps > BPS_SCALE:
        raise ValidationError("customer_discount_bps cannot exceed 10000", field="customer_discount_bps")

    discount = 0
    if policy.making_charges_waived:
        discount += making_charges
        if not policy.prevent_percentage_when_waived:
            discount += percent_of(subtotal, policy.customer_discount_bps)
    else:
        discount += percent_of(subtotal, policy.customer_discount_bps)
    discount += policy.line_discount_cents

    capped = False
    if policy.cap_to_making_charges and discount > making_charges:
        discount = making_charges
        capped = True
    if discount > subtotal:
        discount = subtotal
        capped = True
    return discount, capped


def calculate_taxes(taxable: int, quantity: int, rules) -> tuple[TaxLine, ...]:
    lines = []
    for rule in sorted(rules, key=lambda r: (r.display_order, r.tax_code)):
        require_charge_type(rule.tax_type, "tax_type")
        _require_non_negative(rule.rate, "tax_rate")
        if rule.tax_type == CHARGE_PERCENTAGE:
            amount = percent_of(taxable, rule.rate)
        else:
            amount = rule.rate * quantity
        lines.append(TaxLine(tax_code=rule.tax_code, tax_name=rule.tax_name, amount_cents=amount))
    return tuple(lines)


def calculate_line_price(
    *,
    weight_mg: int,
    quantity: int,
    rate_cents_per_gram: int,
    making_rule: MakingChargeRule | None = None,
    discount: DiscountPolicy | None = None,
    tax_rules=(),
) -> PriceBreakdown:
    """
    Price one order line.

    Args:
        weight_mg: Weight of one piece in milligrams
        quantity: Number of pieces (at least 1)
        rate_cents_per_gram: Gold rate for the piece's karat
        making_rule: Making charge rule, or None when the product carries none
        discount: Customer and line discount policy
        tax_rules: Mandatory tax rules, applied on the post-discount amount

    Raises:
        ValidationError: Negative weight or rate, quantity below 1, unknown
            charge or tax type
    """
    _require_non_negative(weight_mg, "weight_mg")
    _require_non_negative(rate_cents_per_gram, "rate_cents_per_gram")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("quantity must be a positive integer", field="quantity")

    policy = discount or DiscountPolicy()

    gold_value = gold_value_cents(weight_mg * quantity, rate_cents_per_gram)
    making = calculate_making_charges(gold_value, quantity, making_rule)
    subtotal = gold_value + making

    discount_cents, capped = calculate_discount(subtotal, making, policy)
    taxable = subtotal - discount_cents

    tax_lines = calculate_taxes(taxable, quantity, tax_rules)
    tax = sum(line.amount_cents for line in tax_lines)

    return PriceBreakdown(
        weight_mg=weight_mg,
        quantity=quantity,
        rate_cents_per_gram=rate_cents_per_gram,
        gold_value_cents=gold_value,
        making_charges_cents=making,
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        taxable_cents=taxable,
        tax_cents=tax,
        total_cents=taxable + tax,
        tax_lines=tax_lines,
        discount_capped=capped,
    )


# =============================================================================
# SNAPSHOTS
# =============================================================================

def build_snapshot(
    making_rule: MakingChargeRule | None,
    discount: DiscountPolicy,
    tax_rules,
) -> dict:
    """JSON-safe record of every rule used to price a line."""
    return {
        "making_charge": making_rule.to_dict() if making_rule else None,
        "discount": discount.to_dict(),
        "taxes": [rule.to_dict() for rule in tax_rules],
    }


def reprice_from_snapshot(
    *,
    weight_mg: int,
    quantity: int,
    rate_cents_per_gram: int,
    snapshot: dict | None,
) -> PriceBreakdown:
    snapshot = snapshot or {}
    return calculate_line_price(
        weight_mg=weight_mg,
        quantity=quantity,
        rate_cents_per_gram=rate_cents_per_gram,
        making_rule=MakingChargeRule.from_dict(snapshot.get("making_charge")),
        discount=DiscountPolicy.from_dict(snapshot.get("discount")),
        tax_rules=[TaxRule.from_dict(t) for t in snapshot.get("taxes", [])],
    )


def fee_line_price(*, fee_cents: int, tax_rules=()) -> PriceBreakdown:
    """Price a service line (repairs): the fee stands in for making charges, no gold."""
    _require_non_negative(fee_cents, "fee_cents")
    return calculate_line_price(
        weight_mg=0,
        quantity=1,
        rate_cents_per_gram=0,
        making_rule=MakingChargeRule(charge_type=CHARGE_FIXED, value=fee_cents, source="SERVICE"),
        discount=DiscountPolicy(),
        tax_rules=tax_rules,
    )


# =============================================================================
# KARAT CONVERSION
# =============================================================================

def convert_karat_weight(
    *,
    from_karat: str,
    to_karat: str,
    weight_mg: int,
    from_rate_cents_per_gram: int,
    to_rate_cents_per_gram: int,
) -> KaratConversion:
    """
    Convert a weight of one karat into the weight of another with equal value.

    value = weight x from_rate; to_weight = value / to_rate.
    """
    validate_karat(from_karat)
    validate_karat(to_karat)
    _require_non_negative(weight_mg, "weight_mg")
    if from_rate_cents_per_gram <= 0 or to_rate_cents_per_gram <= 0:
        raise ValidationError("Gold rates must be positive for karat conversion")

    to_weight = div_round(weight_mg * from_rate_cents_per_gram, to_rate_cents_per_gram)
    factor = div_round(from_rate_cents_per_gram * BPS_SCALE, to_rate_cents_per_gram)
    return KaratConversion(
        from_karat=from_karat,
        to_karat=to_karat,
        from_weight_mg=weight_mg,
        to_weight_mg=to_weight,
        from_rate_cents_per_gram=from_rate_cents_per_gram,
        to_rate_cents_per_gram=to_rate_cents_per_gram,
        value_cents=gold_value_cents(weight_mg, from_rate_cents_per_gram),
        conversion_factor_bps=factor,
    )
