"""
Tests for order creation, payment, cancellation, returns, and snapshot repricing.
"""

from datetime import timedelta

import pytest

from goldpos.errors import (
    EntityNotFound,
    InsufficientPermissions,
    InvalidEntityState,
    PaymentException,
    ValidationError,
)
from goldpos.lookups import (
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_PENDING,
    ORDER_REFUNDED,
    ORDER_REPAIR,
    ORDER_RETURN,
    ORDER_SALE,
    PAYMENT_CARD,
    TX_REPAIR,
    TX_RETURN,
    TX_SALE,
)
from goldpos.services import order_service, pricing_service
from goldpos.time_utils import utcnow


def _paid_sale(branch, items, customer_id=None):
    order = order_service.create_order(branch.id, items, cashier="cashier", customer_id=customer_id)
    order_service.process_order_payment(order.id, order.total_cents, "cashier")
    return order


class TestCreateOrder:
    def test_priced_lines_and_totals(self, db_session, branch, ring, chain, gold_rates):
        order = order_service.create_order(
            branch.id,
            [{"product_id": ring.id, "quantity": 1}, {"product_id": chain.id, "quantity": 2}],
            cashier="cashier",
        )
        assert order.order_type == ORDER_SALE
        assert order.status == ORDER_PENDING
        assert order.order_number == f"ORD-{branch.id:03d}-000001"
        assert order.gold_rate_id == gold_rates["21K"].id

        ring_line, chain_line = order.items
        assert ring_line.line_total_cents == 4_389_000
        assert ring_line.gold_rate_cents_per_gram == 350_000
        assert chain_line.line_total_cents == 3_431_400
        assert order.total_cents == 4_389_000 + 3_431_400
        assert order.subtotal_cents == 3_850_000 + 3_010_000
        assert order.tax_cents == ring_line.tax_cents + chain_line.tax_cents

    def test_numbers_increment_per_branch(self, db_session, branch, other_branch, ring):
        first = order_service.create_order(branch.id, [{"product_id": ring.id}], cashier="cashier")
        second = order_service.create_order(branch.id, [{"product_id": ring.id}], cashier="cashier")
        elsewhere = order_service.create_order(other_branch.id, [{"product_id": ring.id}], cashier="cashier")
        assert first.order_number.endswith("000001")
        assert second.order_number.endswith("000002")
        assert elsewhere.order_number == f"ORD-{other_branch.id:03d}-000001"

    def test_snapshot_survives_rate_change(self, db_session, branch, ring):
        order = order_service.create_order(branch.id, [{"product_id": ring.id}], cashier="cashier")
        pricing_service.update_gold_rate("21K", 380_000, "admin", effective_from=utcnow() + timedelta(seconds=1))

        results = order_service.verify_order_totals(order.id)
        assert len(results) == 1
        assert results[0].matches
        assert results[0].recomputed_total_cents == 4_389_000

    def test_customer_privileges_apply(self, db_session, branch, ring, vip_customer):
        order = order_service.create_order(
            branch.id, [{"product_id": ring.id}], cashier="cashier", customer_id=vip_customer.id
        )
        assert order.discount_cents == 350_000
        assert order.items[0].pricing_snapshot["discount"]["making_charges_waived"] is True

    def test_empty_items(self, db_session, branch):
        with pytest.raises(ValidationError):
            order_service.create_order(branch.id, [], cashier="cashier")

    def test_unknown_product_creates_nothing(self, db_session, branch, ring):
        with pytest.raises(EntityNotFound):
            order_service.create_order(
                branch.id, [{"product_id": ring.id}, {"product_id": 99_999}], cashier="cashier"
            )
        fresh = order_service.create_order(branch.id, [{"product_id": ring.id}], cashier="cashier")
        assert fresh.order_number.endswith("000001")

    def test_unknown_branch(self, db_session, ring):
        with pytest.raises(EntityNotFound):
            order_service.create_order(99_999, [{"product_id": ring.id}], cashier="cashier")


class TestPayment:
    def test_payment_completes_order(self, db_session, branch, ring):
        order = order_service.create_order(branch.id, [{"product_id": ring.id}], cashier="cashier")
        tx = order_service.process_order_payment(order.id, 4_400_000, "cashier")

        assert tx.transaction_type == TX_SALE
        assert tx.total_cents == 4_389_000
        assert tx.change_given_cents == 11_000
        assert tx.order_id == order.id
        assert order.status == ORDER_COMPLETED
        assert order.completed_at is not None

    def test_underpayment(self, db_session, branch, ring):
        order = order_service.create_order(branch.id, [{"product_id": ring.id}], cashier="cashier")
        with pytest.raises(PaymentException):
            order_service.process_order_payment(order.id, 100, "cashier")
        assert order_service.get_order(order.id).status == ORDER_PENDING

    def test_second_payment_rejected(self, db_session, branch, ring):
        order = _paid_sale(branch, [{"product_id": ring.id}])
        with pytest.raises(PaymentException):
            order_service.process_order_payment(order.id, order.total_cents, "cashier")

    def test_cancelled_order_cannot_be_paid(self, db_session, branch, ring):
        order = order_service.create_order(branch.id, [{"product_id": ring.id}], cashier="cashier")
        order_service.cancel_order(order.id, "customer left", "cashier")
        with pytest.raises(InvalidEntityState):
            order_service.process_order_payment(order.id, order.total_cents, "cashier")


class TestCancel:
    def test_cancel_pending(self, db_session, branch, ring):
        order = order_service.create_order(branch.id, [{"product_id": ring.id}], cashier="cashier", notes="gift")
        cancelled = order_service.cancel_order(order.id, "customer left", "cashier")
        assert cancelled.status == ORDER_CANCELLED
        assert cancelled.notes == "gift; Cancelled: customer left"

    def test_cannot_cancel_completed(self, db_session, branch, ring):
        order = _paid_sale(branch, [{"product_id": ring.id}])
        with pytest.raises(InvalidEntityState):
            order_service.cancel_order(order.id, "changed mind", "cashier")


class TestRepair:
    def test_repair_order_and_payment(self, db_session, branch, vat):
        order = order_service.create_repair_order(branch.id, "Resize ring", 20_000, "cashier")
        assert order.order_type == ORDER_REPAIR
        assert order.total_cents == 22_800
        assert order.items[0].pricing_snapshot["making_charge"]["source"] == "SERVICE"

        tx = order_service.process_order_payment(order.id, 22_800, "cashier", payment_method=PAYMENT_CARD)
        assert tx.transaction_type == TX_REPAIR
        assert tx.payment_method == PAYMENT_CARD
        assert all(r.matches for r in order_service.verify_order_totals(order.id))

    @pytest.mark.parametrize("description,fee", [("", 1_000), ("Polish", 0)])
    def test_invalid_repair(self, db_session, branch, description, fee):
        with pytest.raises(ValidationError):
            order_service.create_repair_order(branch.id, description, fee, "cashier")


class TestReturns:
    def test_partial_then_full_return(self, db_session, branch, chain):
        sale = _paid_sale(branch, [{"product_id": chain.id, "quantity": 2}])
        line = sale.items[0]

        first = order_service.create_return_order(
            sale.id, [{"order_item_id": line.id, "quantity": 1}], "too long", "cashier", approved_by="manager"
        )
        assert first.order_type == ORDER_RETURN
        assert first.status == ORDER_COMPLETED
        assert first.original_order_id == sale.id
        assert first.total_cents == 1_715_700
        assert first.financial_transactions[0].transaction_type == TX_RETURN
        assert order_service.get_order(sale.id).status == ORDER_COMPLETED

        order_service.create_return_order(
            sale.id, [{"order_item_id": line.id, "quantity": 1}], "pair", "cashier", approved_by="manager"
        )
        assert order_service.get_order(sale.id).status == ORDER_REFUNDED

    def test_return_priced_at_sale_price(self, db_session, branch, chain):
        sale = _paid_sale(branch, [{"product_id": chain.id, "quantity": 3}])
        pricing_service.update_gold_rate("18K", 500_000, "admin", effective_from=utcnow() + timedelta(seconds=1))

        ret = order_service.create_return_order(
            sale.id, [{"order_item_id": sale.items[0].id, "quantity": 1}], "defect", "cashier", approved_by="manager"
        )
        assert ret.items[0].gold_rate_cents_per_gram == 300_000
        assert ret.total_cents == 1_715_700
        assert all(r.matches for r in order_service.verify_order_totals(ret.id))

    def test_requires_approval(self, db_session, branch, ring):
        sale = _paid_sale(branch, [{"product_id": ring.id}])
        with pytest.raises(InsufficientPermissions):
            order_service.create_return_order(
                sale.id, [{"order_item_id": sale.items[0].id}], "defect", "cashier", approved_by=None
            )

    def test_cannot_return_more_than_sold(self, db_session, branch, chain):
        sale = _paid_sale(branch, [{"product_id": chain.id, "quantity": 2}])
        line_id = sale.items[0].id
        with pytest.raises(ValidationError):
            order_service.create_return_order(
                sale.id,
                [{"order_item_id": line_id, "quantity": 2}, {"order_item_id": line_id, "quantity": 1}],
                "defect",
                "cashier",
                approved_by="manager",
            )

    def test_unknown_line(self, db_session, branch, ring):
        sale = _paid_sale(branch, [{"product_id": ring.id}])
        with pytest.raises(ValidationError):
            order_service.create_return_order(
                sale.id, [{"order_item_id": 99_999}], "defect", "cashier", approved_by="manager"
            )

    def test_pending_sale_cannot_be_returned(self, db_session, branch, ring):
        order = order_service.create_order(branch.id, [{"product_id": ring.id}], cashier="cashier")
        with pytest.raises(InvalidEntityState):
            order_service.create_return_order(
                order.id, [{"order_item_id": order.items[0].id}], "defect", "cashier", approved_by="manager"
            )


class TestVerification:
    def test_tampered_total_detected(self, db_session, branch, ring):
        order = order_service.create_order(branch.id, [{"product_id": ring.id}], cashier="cashier")
        order.items[0].line_total_cents += 500
        db_session.commit()

        result = order_service.verify_order_totals(order.id)[0]
        assert result.matches is False
        assert result.stored_total_cents - result.recomputed_total_cents == 500

    def test_one_cent_tolerance(self, db_session, branch, ring):
        order = order_service.create_order(branch.id, [{"product_id": ring.id}], cashier="cashier")
        order.items[0].line_total_cents += 1
        db_session.commit()
        assert order_service.verify_order_totals(order.id)[0].matches is True
