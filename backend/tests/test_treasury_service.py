import pytest

from goldpos.errors import (
    BusinessRuleViolation,
    DuplicateEntity,
    EntityNotFound,
    InvalidEntityState,
    ValidationError,
)
from goldpos.lookups import (
    DIRECTION_CREDIT,
    DIRECTION_DEBIT,
    TREASURY_ADJUSTMENT,
    TREASURY_FEED_FROM_CASH_DRAWER,
    TREASURY_SUPPLIER_PAYMENT,
    TREASURY_TRANSFER_IN,
    TREASURY_TRANSFER_OUT,
)
from goldpos.services import cash_drawer_service, treasury_service


@pytest.fixture
def funded(db_session, branch):
    """Branch treasury holding 50,000.00."""
    treasury_service.adjust_balance(branch.id, 5_000_000, DIRECTION_CREDIT, "opening float", "manager")
    return branch


@pytest.fixture
def settled_drawer(db_session, branch):
    cash_drawer_service.open_drawer(branch.id, 30_000, "cashier")
    return cash_drawer_service.settle_shift(branch.id, 30_000, 30_000, "manager")["drawer"]


class TestAccount:
    def test_created_on_first_use(self, db_session, branch):
        account = treasury_service.get_or_create_account(branch.id, "manager")
        assert account.currency_code == "EGP"
        assert account.current_balance_cents == 0
        assert treasury_service.get_or_create_account(branch.id).id == account.id

    def test_unknown_branch(self, db_session):
        with pytest.raises(EntityNotFound):
            treasury_service.get_or_create_account(99_999)


class TestAdjust:
    def test_credit_then_debit(self, db_session, funded):
        tx = treasury_service.adjust_balance(funded.id, 1_000_000, DIRECTION_DEBIT, "bank deposit", "manager")
        assert tx.transaction_type == TREASURY_ADJUSTMENT
        assert tx.balance_after_cents == 4_000_000
        assert tx.signed_amount_cents == -1_000_000
        assert tx.notes == "bank deposit"

    def test_overdraw_rejected(self, db_session, funded):
        with pytest.raises(BusinessRuleViolation) as exc:
            treasury_service.adjust_balance(funded.id, 5_000_001, DIRECTION_DEBIT, "oops", "manager")
        assert exc.value.rule_code == "INSUFFICIENT_TREASURY_BALANCE"
        assert treasury_service.get_or_create_account(funded.id).current_balance_cents == 5_000_000

    @pytest.mark.parametrize("amount,direction,reason", [
        (100, DIRECTION_CREDIT, ""),
        (0, DIRECTION_CREDIT, "zero"),
        (100, "SIDEWAYS", "bad direction"),
    ])
    def test_invalid(self, db_session, branch, amount, direction, reason):
        with pytest.raises(ValidationError):
            treasury_service.adjust_balance(branch.id, amount, direction, reason, "manager")


class TestFeedFromDrawer:
    def test_feed_settled_cash(self, db_session, branch, settled_drawer):
        tx = treasury_service.feed_from_cash_drawer(branch.id, settled_drawer.id, "manager")
        assert tx.transaction_type == TREASURY_FEED_FROM_CASH_DRAWER
        assert tx.direction == DIRECTION_CREDIT
        assert tx.amount_cents == 30_000
        assert tx.reference_id == settled_drawer.id
        assert treasury_service.get_or_create_account(branch.id).current_balance_cents == 30_000

    def test_cannot_feed_twice(self, db_session, branch, settled_drawer):
        treasury_service.feed_from_cash_drawer(branch.id, settled_drawer.id, "manager")
        with pytest.raises(DuplicateEntity):
            treasury_service.feed_from_cash_drawer(branch.id, settled_drawer.id, "manager")

    def test_open_drawer(self, db_session, branch):
        drawer = cash_drawer_service.open_drawer(branch.id, 10_000, "cashier")
        with pytest.raises(InvalidEntityState):
            treasury_service.feed_from_cash_drawer(branch.id, drawer.id, "manager")

    def test_closed_without_settlement(self, db_session, branch):
        cash_drawer_service.open_drawer(branch.id, 10_000, "cashier")
        drawer = cash_drawer_service.close_drawer(branch.id, 10_000, "cashier")
        with pytest.raises(BusinessRuleViolation) as exc:
            treasury_service.feed_from_cash_drawer(branch.id, drawer.id, "manager")
        assert exc.value.rule_code == "NOTHING_SETTLED"

    def test_drawer_from_other_branch(self, db_session, other_branch, settled_drawer):
        with pytest.raises(EntityNotFound):
            treasury_service.feed_from_cash_drawer(other_branch.id, settled_drawer.id, "manager")


class TestSupplierPayment:
    def test_pay(self, db_session, funded, supplier):
        supplier.current_balance_cents = 2_000_000
        db_session.commit()

        result = treasury_service.pay_supplier(funded.id, supplier.id, 750_000, "accounts")
        supplier_tx = result["supplier_transaction"]
        treasury_tx = result["treasury_transaction"]

        assert supplier_tx.transaction_number == f"SP-{funded.id:03d}-0001"
        assert supplier_tx.balance_after_cents == 1_250_000
        assert supplier.current_balance_cents == 1_250_000
        assert treasury_tx.transaction_type == TREASURY_SUPPLIER_PAYMENT
        assert treasury_tx.reference_id == supplier_tx.id
        assert treasury_tx.balance_after_cents == 4_250_000

    def test_more_than_owed(self, db_session, funded, supplier):
        supplier.current_balance_cents = 100_000
        db_session.commit()
        with pytest.raises(BusinessRuleViolation) as exc:
            treasury_service.pay_supplier(funded.id, supplier.id, 100_001, "accounts")
        assert exc.value.rule_code == "PAYMENT_EXCEEDS_SUPPLIER_BALANCE"

    def test_treasury_short(self, db_session, branch, supplier):
        supplier.current_balance_cents = 100_000
        db_session.commit()
        with pytest.raises(BusinessRuleViolation) as exc:
            treasury_service.pay_supplier(branch.id, supplier.id, 50_000, "accounts")
        assert exc.value.rule_code == "INSUFFICIENT_TREASURY_BALANCE"


class TestTransfers:
    def test_transfer_pair(self, db_session, funded, other_branch):
        result = treasury_service.transfer_between_branches(funded.id, other_branch.id, 1_500_000, "manager")
        assert result["transfer_out"].transaction_type == TREASURY_TRANSFER_OUT
        assert result["transfer_in"].transaction_type == TREASURY_TRANSFER_IN
        assert result["transfer_out"].balance_after_cents == 3_500_000
        assert result["transfer_in"].balance_after_cents == 1_500_000

    def test_same_branch(self, db_session, funded):
        with pytest.raises(ValidationError):
            treasury_service.transfer_between_branches(funded.id, funded.id, 100, "manager")

    def test_short_source_moves_nothing(self, db_session, funded, other_branch):
        with pytest.raises(BusinessRuleViolation):
            treasury_service.transfer_between_branches(other_branch.id, funded.id, 100, "manager")
        assert treasury_service.get_or_create_account(funded.id).current_balance_cents == 5_000_000


class TestLedger:
    def test_filters_and_consistency(self, db_session, funded, other_branch):
        treasury_service.transfer_between_branches(funded.id, other_branch.id, 1_000_000, "manager")

        everything = treasury_service.get_transactions(funded.id)
        assert [t.transaction_type for t in everything] == [TREASURY_TRANSFER_OUT, TREASURY_ADJUSTMENT]
        assert len(treasury_service.get_transactions(funded.id, tx_type=TREASURY_ADJUSTMENT)) == 1

        check = treasury_service.verify_account_balance(funded.id)
        assert check["consistent"] is True
        assert check["ledger_balance_cents"] == 4_000_000

    def test_no_account(self, db_session, branch):
        assert treasury_service.get_transactions(branch.id) == []
        with pytest.raises(EntityNotFound):
            treasury_service.verify_account_balance(branch.id)
