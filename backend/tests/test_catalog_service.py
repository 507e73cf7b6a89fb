import pytest

from goldpos.errors import DuplicateEntity, EntityNotFound, InvalidEntityState, ValidationError
from goldpos.services import catalog_service, order_service


def _sell(branch, product, quantity=1):
    order = order_service.create_order(
        branch.id, [{"product_id": product.id, "quantity": quantity}], cashier="cashier"
    )
    order_service.process_order_payment(order.id, order.total_cents, "cashier")
    return order


class TestCreateProduct:
    def test_create(self, db_session, supplier):
        product = catalog_service.create_product(
            product_code="ER-100",
            name="Drop Earrings",
            category="EARRING",
            karat="18K",
            weight_mg=4_250,
            user="admin",
            supplier_id=supplier.id,
        )
        assert product.id is not None
        assert product.created_by == "admin"
        assert product.to_dict()["weight_mg"] == 4_250

    def test_duplicate_code(self, db_session, ring):
        with pytest.raises(DuplicateEntity) as exc:
            catalog_service.create_product("RNG-001", "Copy", "RING", "21K", 1_000, "admin")
        assert exc.value.http_status == 409

    @pytest.mark.parametrize("field,value", [
        ("karat", "14K"),
        ("weight_mg", 0),
        ("weight_mg", -10),
        ("category", "  "),
        ("making_charge_type", "PER_GRAM"),
        ("making_charge_value", -1),
    ])
    def test_invalid_fields(self, db_session, field, value):
        args = {
            "product_code": "BAD-1",
            "name": "Bad",
            "category": "RING",
            "karat": "21K",
            "weight_mg": 1_000,
            "user": "admin",
        }
        args[field] = value
        with pytest.raises(ValidationError):
            catalog_service.create_product(**args)

    def test_unknown_supplier(self, db_session):
        with pytest.raises(EntityNotFound):
            catalog_service.create_product("X-1", "X", "RING", "21K", 1_000, "admin", supplier_id=99_999)


class TestUpdateProduct:
    def test_update_unsold(self, db_session, ring):
        product = catalog_service.update_product(ring.id, "manager", name="Wide Band", weight_mg=12_000)
        assert product.name == "Wide Band"
        assert product.weight_mg == 12_000
        assert product.modified_by == "manager"

    def test_unknown_field(self, db_session, ring):
        with pytest.raises(ValidationError):
            catalog_service.update_product(ring.id, "manager", product_code="NEW")

    def test_sold_product_is_immutable(self, db_session, branch, ring):
        _sell(branch, ring)
        assert catalog_service.has_been_sold(ring.id) is True
        with pytest.raises(InvalidEntityState) as exc:
            catalog_service.update_product(ring.id, "manager", weight_mg=9_000)
        assert exc.value.current_state == "SOLD"

    def test_pending_order_does_not_count_as_sold(self, db_session, branch, ring):
        order_service.create_order(branch.id, [{"product_id": ring.id}], cashier="cashier")
        assert catalog_service.has_been_sold(ring.id) is False


class TestDeactivate:
    def test_soft_delete_even_when_sold(self, db_session, branch, ring):
        _sell(branch, ring)
        catalog_service.deactivate_product(ring.id, "manager")
        with pytest.raises(EntityNotFound):
            catalog_service.get_product(ring.id)
