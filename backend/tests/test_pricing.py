"""
Tests for the pure line-price calculator.

Covers the core pricing properties:
- subtotal grows with weight and rate
- discounts never push a total below zero
- taxes apply to the post-discount amount
- a line recomputed from its snapshot reproduces the stored total
"""

import pytest

from goldpos.errors import ValidationError
from goldpos.lookups import CHARGE_FIXED, CHARGE_PERCENTAGE
from goldpos.money import div_round, paid_share, percent_of, ratio_bps
from goldpos.services.pricing import (
    DiscountPolicy,
    MakingChargeRule,
    TaxRule,
    build_snapshot,
    calculate_discount,
    calculate_line_price,
    convert_karat_weight,
    fee_line_price,
    reprice_from_snapshot,
)


VAT = TaxRule(tax_code="VAT", tax_name="Value Added Tax", tax_type=CHARGE_PERCENTAGE, rate=1400)
STAMP = TaxRule(tax_code="STAMP", tax_name="Stamp Duty", tax_type=CHARGE_FIXED, rate=250, display_order=1)
TEN_PERCENT = MakingChargeRule(charge_type=CHARGE_PERCENTAGE, value=1000)


class TestIntegerArithmetic:
    @pytest.mark.parametrize("numerator,denominator,expected", [
        (5, 2, 3),
        (4, 2, 2),
        (7, 3, 2),
        (-5, 2, -3),
        (5, -2, -3),
        (1, 3, 0),
        (2, 3, 1),
    ])
    def test_div_round_half_away_from_zero(self, numerator, denominator, expected):
        assert div_round(numerator, denominator) == expected

    def test_div_round_rejects_zero(self):
        with pytest.raises(ZeroDivisionError):
            div_round(1, 0)

    def test_percent_and_ratio(self):
        assert percent_of(10_000, 1400) == 1400
        assert percent_of(333, 5000) == 167
        assert ratio_bps(1, 3) == 3333
        assert ratio_bps(5, 0) == 0

    @pytest.mark.parametrize("paid,owed,expected", [
        (0, 900, 0),
        (300, 900, 3_333),
        (900, 900, 10_000),
        (5, 0, 10_000),
    ])
    def test_paid_share(self, paid, owed, expected):
        assert paid_share(10_000, paid, owed) == expected


class TestLinePrice:
    def test_full_breakdown(self):
        price = calculate_line_price(
            weight_mg=10_000,
            quantity=1,
            rate_cents_per_gram=350_000,
            making_rule=TEN_PERCENT,
            tax_rules=[VAT],
        )
        assert price.gold_value_cents == 3_500_000
        assert price.making_charges_cents == 350_000
        assert price.subtotal_cents == 3_850_000
        assert price.discount_cents == 0
        assert price.tax_cents == 539_000
        assert price.total_cents == 4_389_000

    def test_fixed_making_charge_is_per_piece(self):
        price = calculate_line_price(
            weight_mg=5_000,
            quantity=3,
            rate_cents_per_gram=300_000,
            making_rule=MakingChargeRule(charge_type=CHARGE_FIXED, value=5_000),
        )
        assert price.gold_value_cents == 4_500_000
        assert price.making_charges_cents == 15_000

    def test_fixed_tax_is_per_piece_and_ordered(self):
        price = calculate_line_price(
            weight_mg=1_000,
            quantity=2,
            rate_cents_per_gram=100_000,
            tax_rules=[STAMP, VAT],
        )
        assert [line.tax_code for line in price.tax_lines] == ["VAT", "STAMP"]
        assert price.tax_lines[1].amount_cents == 500

    def test_sub_cent_gold_value_rounds(self):
        price = calculate_line_price(weight_mg=1, quantity=1, rate_cents_per_gram=500)
        assert price.gold_value_cents == 1

    @pytest.mark.parametrize("kwargs,field", [
        ({"weight_mg": -1}, "weight_mg"),
        ({"rate_cents_per_gram": -5}, "rate_cents_per_gram"),
        ({"quantity": 0}, "quantity"),
        ({"quantity": True}, "quantity"),
    ])
    def test_invalid_inputs(self, kwargs, field):
        args = {"weight_mg": 1_000, "quantity": 1, "rate_cents_per_gram": 100_000}
        args.update(kwargs)
        with pytest.raises(ValidationError) as exc:
            calculate_line_price(**args)
        assert field in exc.value.field_errors

    def test_unknown_charge_type(self):
        with pytest.raises(ValidationError):
            calculate_line_price(
                weight_mg=1_000,
                quantity=1,
                rate_cents_per_gram=100_000,
                making_rule=MakingChargeRule(charge_type="PER_GRAM", value=10),
            )


class TestMonotonicity:
    @pytest.mark.parametrize("weights", [(0, 1), (1_000, 1_001), (2_500, 10_000), (999, 123_456)])
    @pytest.mark.parametrize("rate", [0, 1, 299_999, 350_000])
    def test_subtotal_non_decreasing_in_weight(self, weights, rate):
        low, high = weights
        a = calculate_line_price(weight_mg=low, quantity=1, rate_cents_per_gram=rate, making_rule=TEN_PERCENT)
        b = calculate_line_price(weight_mg=high, quantity=1, rate_cents_per_gram=rate, making_rule=TEN_PERCENT)
        assert a.subtotal_cents <= b.subtotal_cents

    @pytest.mark.parametrize("rates", [(0, 1), (300_000, 300_001), (100, 400_000)])
    @pytest.mark.parametrize("weight", [0, 1, 7_777, 50_000])
    def test_subtotal_non_decreasing_in_rate(self, rates, weight):
        low, high = rates
        a = calculate_line_price(weight_mg=weight, quantity=1, rate_cents_per_gram=low, making_rule=TEN_PERCENT)
        b = calculate_line_price(weight_mg=weight, quantity=1, rate_cents_per_gram=high, making_rule=TEN_PERCENT)
        assert a.subtotal_cents <= b.subtotal_cents


class TestDiscounts:
    def test_discount_capped_to_making_charges(self):
        discount, capped = calculate_discount(
            subtotal=3_850_000,
            making_charges=350_000,
            policy=DiscountPolicy(customer_discount_bps=2000),
        )
        assert discount == 350_000
        assert capped is True

    def test_uncapped_percentage_discount(self):
        discount, capped = calculate_discount(
            subtotal=10_000,
            making_charges=1_000,
            policy=DiscountPolicy(customer_discount_bps=500, cap_to_making_charges=False),
        )
        assert discount == 500
        assert capped is False

    def test_waived_making_charges_block_percentage(self):
        policy = DiscountPolicy(customer_discount_bps=500, making_charges_waived=True, cap_to_making_charges=False)
        discount, _ = calculate_discount(subtotal=10_000, making_charges=1_000, policy=policy)
        assert discount == 1_000

    def test_waived_making_charges_stack_when_allowed(self):
        policy = DiscountPolicy(
            customer_discount_bps=500,
            making_charges_waived=True,
            prevent_percentage_when_waived=False,
            cap_to_making_charges=False,
        )
        discount, _ = calculate_discount(subtotal=10_000, making_charges=1_000, policy=policy)
        assert discount == 1_500

    @pytest.mark.parametrize("line_discount", [0, 1, 999, 10_000, 50_000_000])
    @pytest.mark.parametrize("customer_bps", [0, 2500, 10_000])
    @pytest.mark.parametrize("cap", [True, False])
    def test_total_never_negative(self, line_discount, customer_bps, cap):
        price = calculate_line_price(
            weight_mg=2_000,
            quantity=1,
            rate_cents_per_gram=300_000,
            making_rule=TEN_PERCENT,
            discount=DiscountPolicy(
                customer_discount_bps=customer_bps,
                line_discount_cents=line_discount,
                cap_to_making_charges=cap,
            ),
            tax_rules=[VAT],
        )
        assert price.discount_cents <= price.subtotal_cents
        assert price.taxable_cents >= 0
        assert price.total_cents >= 0

    def test_customer_discount_above_hundred_percent_rejected(self):
        with pytest.raises(ValidationError):
            calculate_discount(10_000, 1_000, DiscountPolicy(customer_discount_bps=10_001))


class TestTaxAfterDiscount:
    @pytest.mark.parametrize("line_discount", [0, 100_000, 350_000])
    def test_tax_uses_post_discount_amount(self, line_discount):
        price = calculate_line_price(
            weight_mg=10_000,
            quantity=1,
            rate_cents_per_gram=350_000,
            making_rule=TEN_PERCENT,
            discount=DiscountPolicy(line_discount_cents=line_discount),
            tax_rules=[VAT],
        )
        assert price.taxable_cents == price.subtotal_cents - line_discount
        assert price.tax_cents == percent_of(price.taxable_cents, 1400)
        assert price.total_cents == price.taxable_cents + price.tax_cents


class TestSnapshotReprice:
    @pytest.mark.parametrize("weight,quantity,rate", [
        (10_000, 1, 350_000),
        (3_333, 3, 299_999),
        (1, 7, 123_457),
        (125_500, 2, 400_000),
    ])
    def test_reprice_reproduces_total(self, weight, quantity, rate):
        policy = DiscountPolicy(customer_discount_bps=300, line_discount_cents=1_234)
        making = MakingChargeRule(charge_type=CHARGE_PERCENTAGE, value=1_250)
        original = calculate_line_price(
            weight_mg=weight,
            quantity=quantity,
            rate_cents_per_gram=rate,
            making_rule=making,
            discount=policy,
            tax_rules=[VAT, STAMP],
        )
        snapshot = build_snapshot(making, policy, [VAT, STAMP])

        again = reprice_from_snapshot(
            weight_mg=weight,
            quantity=quantity,
            rate_cents_per_gram=rate,
            snapshot=snapshot,
        )
        assert abs(again.total_cents - original.total_cents) <= 1

    def test_snapshot_without_making_charge(self):
        snapshot = build_snapshot(None, DiscountPolicy(), [])
        price = reprice_from_snapshot(weight_mg=1_000, quantity=1, rate_cents_per_gram=100_000, snapshot=snapshot)
        assert price.making_charges_cents == 0
        assert price.total_cents == 100_000

    def test_fee_line(self):
        price = fee_line_price(fee_cents=20_000, tax_rules=[VAT])
        assert price.gold_value_cents == 0
        assert price.making_charges_cents == 20_000
        assert price.tax_cents == 2_800
        assert price.total_cents == 22_800


class TestKaratConversion:
    def test_value_preserving(self):
        conversion = convert_karat_weight(
            from_karat="18K",
            to_karat="24K",
            weight_mg=10_000,
            from_rate_cents_per_gram=300_000,
            to_rate_cents_per_gram=400_000,
        )
        assert conversion.to_weight_mg == 7_500
        assert conversion.value_cents == 3_000_000
        assert conversion.conversion_factor_bps == 7_500

    def test_unknown_karat(self):
        with pytest.raises(ValidationError):
            convert_karat_weight(
                from_karat="14K",
                to_karat="24K",
                weight_mg=1_000,
                from_rate_cents_per_gram=1,
                to_rate_cents_per_gram=1,
            )

    def test_zero_rate_rejected(self):
        with pytest.raises(ValidationError):
            convert_karat_weight(
                from_karat="18K",
                to_karat="24K",
                weight_mg=1_000,
                from_rate_cents_per_gram=300_000,
                to_rate_cents_per_gram=0,
            )
