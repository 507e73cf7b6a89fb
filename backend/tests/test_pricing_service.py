from datetime import timedelta

import pytest

from goldpos.errors import BusinessRuleViolation, EntityNotFound, ValidationError
from goldpos.lookups import CHARGE_FIXED, CHARGE_PERCENTAGE
from goldpos.models import GoldRate
from goldpos.services import catalog_service, pricing_service
from goldpos.services.pricing_service import SUPERSEDE_GAP
from goldpos.time_utils import utcnow


class TestGoldRates:
    def test_current_rate(self, db_session, gold_rates):
        rate = pricing_service.get_current_gold_rate("21K")
        assert rate.rate_cents_per_gram == 350_000
        assert rate.is_current is True
        assert rate.effective_to is None

    def test_missing_rate(self, db_session):
        with pytest.raises(EntityNotFound):
            pricing_service.get_current_gold_rate("22K")

    def test_unknown_karat(self, db_session):
        with pytest.raises(ValidationError):
            pricing_service.get_current_gold_rate("9K")

    def test_update_supersedes_previous(self, db_session):
        start = utcnow() - timedelta(hours=2)
        first = pricing_service.update_gold_rate("24K", 400_000, "admin", effective_from=start)
        later = start + timedelta(hours=1)
        second = pricing_service.update_gold_rate("24K", 410_000, "admin", effective_from=later)

        db_session.refresh(first)
        assert first.is_current is False
        assert first.effective_to == later - SUPERSEDE_GAP
        assert pricing_service.get_current_gold_rate("24K").id == second.id
        assert db_session.query(GoldRate).filter_by(karat="24K", is_current=True).count() == 1

    def test_backdated_version_rejected(self, db_session):
        now = utcnow()
        pricing_service.update_gold_rate("18K", 300_000, "admin", effective_from=now)
        with pytest.raises(BusinessRuleViolation) as exc:
            pricing_service.update_gold_rate("18K", 290_000, "admin", effective_from=now - timedelta(days=1))
        assert exc.value.rule_code == "OVERLAPPING_EFFECTIVE_PERIOD"

    def test_non_positive_rate_rejected(self, db_session):
        with pytest.raises(ValidationError):
            pricing_service.update_gold_rate("18K", 0, "admin")

    def test_history_newest_first(self, db_session):
        start = utcnow() - timedelta(hours=3)
        pricing_service.update_gold_rate("21K", 340_000, "admin", effective_from=start)
        pricing_service.update_gold_rate("21K", 345_000, "admin", effective_from=start + timedelta(hours=1))
        history = pricing_service.get_gold_rate_history("21K")
        assert [r.rate_cents_per_gram for r in history] == [345_000, 340_000]

    def test_current_rates_by_karat(self, db_session, gold_rates):
        rates = pricing_service.get_current_gold_rates()
        assert set(rates) == {"18K", "21K", "24K"}


class TestMakingCharges:
    def test_subcategory_falls_back_to_category(self, db_session, making_charges):
        charge = pricing_service.get_current_making_charge("RING", "SOLITAIRE")
        assert charge.id == making_charges["RING"].id

    def test_subcategory_row_wins(self, db_session, making_charges):
        specific = pricing_service.update_making_charge(
            "RING", CHARGE_PERCENTAGE, 1500, "admin", subcategory="SOLITAIRE"
        )
        assert pricing_service.get_current_making_charge("RING", "SOLITAIRE").id == specific.id
        assert pricing_service.get_current_making_charge("RING").id == making_charges["RING"].id

    def test_bad_charge_type(self, db_session):
        with pytest.raises(ValidationError):
            pricing_service.update_making_charge("RING", "PER_GRAM", 10, "admin")

    def test_backdated_version_rejected(self, db_session):
        now = utcnow()
        pricing_service.update_making_charge("BANGLE", CHARGE_FIXED, 4_000, "admin", effective_from=now)
        with pytest.raises(BusinessRuleViolation) as exc:
            pricing_service.update_making_charge(
                "BANGLE", CHARGE_FIXED, 3_500, "admin", effective_from=now - timedelta(hours=2)
            )
        assert exc.value.rule_code == "OVERLAPPING_EFFECTIVE_PERIOD"
        assert pricing_service.get_current_making_charge("BANGLE").charge_value == 4_000


class TestTaxes:
    def test_mandatory_taxes_ordered(self, db_session):
        pricing_service.update_tax_configuration("STAMP", "Stamp", CHARGE_FIXED, 100, "admin", display_order=2)
        pricing_service.update_tax_configuration("VAT", "VAT", CHARGE_PERCENTAGE, 1400, "admin", display_order=1)
        pricing_service.update_tax_configuration(
            "LUX", "Luxury", CHARGE_PERCENTAGE, 100, "admin", is_mandatory=False
        )
        assert [t.tax_code for t in pricing_service.get_mandatory_taxes()] == ["VAT", "STAMP"]

    def test_new_version_replaces_rate(self, db_session):
        pricing_service.update_tax_configuration(
            "VAT", "VAT", CHARGE_PERCENTAGE, 1400, "admin", effective_from=utcnow() - timedelta(days=1)
        )
        pricing_service.update_tax_configuration("VAT", "VAT", CHARGE_PERCENTAGE, 1500, "admin")
        taxes = pricing_service.get_mandatory_taxes()
        assert len(taxes) == 1
        assert taxes[0].tax_rate == 1500

    def test_backdated_version_rejected(self, db_session):
        now = utcnow()
        pricing_service.update_tax_configuration("VAT", "VAT", CHARGE_PERCENTAGE, 1400, "admin", effective_from=now)
        with pytest.raises(BusinessRuleViolation):
            pricing_service.update_tax_configuration(
                "VAT", "VAT", CHARGE_PERCENTAGE, 1000, "admin", effective_from=now - timedelta(days=3)
            )


class TestProductPrice:
    def test_ring_price(self, db_session, ring):
        priced = pricing_service.calculate_product_price(ring)
        assert priced.breakdown.total_cents == 4_389_000
        assert priced.gold_rate.karat == "21K"
        assert priced.snapshot["making_charge"] == {"charge_type": CHARGE_PERCENTAGE, "value": 1000, "source": "CATEGORY"}
        assert priced.snapshot["taxes"][0]["tax_code"] == "VAT"

    def test_chain_price_quantity(self, db_session, chain):
        priced = pricing_service.calculate_product_price(chain, quantity=2)
        assert priced.breakdown.making_charges_cents == 10_000
        assert priced.breakdown.total_cents == 2 * 1_715_700

    def test_product_making_charge_overrides_category(self, db_session, pricing_tables):
        product = catalog_service.create_product(
            product_code="RNG-SPECIAL",
            name="Hand-made Ring",
            category="RING",
            karat="21K",
            weight_mg=10_000,
            user="admin",
            use_product_making_charges=True,
            making_charge_type=CHARGE_FIXED,
            making_charge_value=100_000,
        )
        priced = pricing_service.calculate_product_price(product)
        assert priced.breakdown.making_charges_cents == 100_000
        assert priced.snapshot["making_charge"]["source"] == "PRODUCT"

    def test_making_charges_not_applicable(self, db_session, pricing_tables):
        bar = catalog_service.create_product(
            product_code="BAR-10",
            name="10g Bar",
            category="RING",
            karat="24K",
            weight_mg=10_000,
            user="admin",
            making_charges_applicable=False,
        )
        priced = pricing_service.calculate_product_price(bar)
        assert priced.breakdown.making_charges_cents == 0
        assert priced.snapshot["making_charge"] is None

    def test_vip_customer_discount_capped_and_logged(self, db_session, ring, vip_customer, caplog):
        priced = pricing_service.calculate_product_price(ring, customer=vip_customer, line_discount_cents=1_000)
        # waived making charges (350,000) plus 1,000 line discount, capped to making charges
        assert priced.breakdown.discount_cents == 350_000
        assert priced.breakdown.discount_capped is True
        assert priced.breakdown.taxable_cents == 3_500_000
        assert "capped" in caplog.text

    def test_cap_disabled_by_config(self, app, db_session, ring, customer):
        customer.default_discount_bps = 2000
        db_session.commit()
        app.config["CAP_DISCOUNT_TO_MAKING_CHARGES"] = False
        try:
            priced = pricing_service.calculate_product_price(ring, customer=customer)
        finally:
            app.config["CAP_DISCOUNT_TO_MAKING_CHARGES"] = True
        assert priced.breakdown.discount_cents == 770_000
        assert priced.breakdown.discount_capped is False

    def test_missing_rate_for_karat(self, db_session, vat):
        product = catalog_service.create_product(
            product_code="X-22",
            name="22K Piece",
            category="BANGLE",
            karat="22K",
            weight_mg=1_000,
            user="admin",
        )
        with pytest.raises(EntityNotFound):
            pricing_service.calculate_product_price(product)


class TestKaratConversionService:
    def test_uses_current_rates(self, db_session, gold_rates):
        conversion = pricing_service.calculate_karat_conversion("21K", "24K", 8_000)
        assert conversion.to_weight_mg == 7_000
        assert conversion.value_cents == 2_800_000

    def test_missing_rate(self, db_session, gold_rates):
        with pytest.raises(EntityNotFound):
            pricing_service.calculate_karat_conversion("22K", "24K", 1_000)
