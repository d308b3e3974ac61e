import pytest

from tillpoint.models import Product, StockMovement
from tillpoint.services import inventory_service
from tillpoint.validation import BadRequestError, NotFoundError


def test_movement_updates_stock_and_ledger(db_session, branch, product):
    movement = inventory_service.record_stock_movement(product.id, branch.id, 5, "PURCHASE", note="Delivery")

    assert movement.reason == "purchase"
    assert movement.change == 5
    db_session.refresh(product)
    assert product.stock == 15
    assert inventory_service.get_stock_reconciliation(product.id) == {
        "product_id": product.id,
        "stock": 15,
        "movement_total": 15,
        "in_sync": True,
    }


def test_stock_never_negative(db_session, branch, product):
    with pytest.raises(BadRequestError) as exc:
        inventory_service.record_stock_movement(product.id, branch.id, -11, "spoilage")

    assert exc.value.details["current_stock"] == 10
    assert exc.value.details["requested_quantity"] == 11
    db_session.refresh(product)
    assert product.stock == 10
    assert db_session.query(StockMovement).filter_by(product_id=product.id).count() == 1


def test_exact_depletion_allowed(db_session, branch, product):
    inventory_service.record_stock_movement(product.id, branch.id, -10, "damaged")
    db_session.refresh(product)
    assert product.stock == 0


@pytest.mark.parametrize("change,reason", [(0, "purchase"), (3, "theft"), ("2.5", "purchase")])
def test_invalid_movement(db_session, branch, product, change, reason):
    with pytest.raises(BadRequestError):
        inventory_service.record_stock_movement(product.id, branch.id, change, reason)


def test_unknown_product_or_branch(db_session, branch, product):
    with pytest.raises(NotFoundError):
        inventory_service.record_stock_movement(9999, branch.id, 1, "purchase")
    with pytest.raises(NotFoundError):
        inventory_service.record_stock_movement(product.id, 9999, 1, "purchase")


class TestCorrections:
    def test_update_shifts_by_delta(self, db_session, branch, product):
        movement = inventory_service.record_stock_movement(product.id, branch.id, 5, "purchase")
        inventory_service.update_stock_movement(movement.id, change=2, reason="adjustment")

        db_session.refresh(product)
        assert product.stock == 12
        assert inventory_service.get_stock_reconciliation(product.id)["in_sync"] is True

    def test_update_cannot_go_negative(self, db_session, branch, product):
        purchase = inventory_service.record_stock_movement(product.id, branch.id, 5, "purchase")
        inventory_service.record_stock_movement(product.id, branch.id, -14, "spoilage")

        # Shrinking the purchase by 4 would leave -3
        with pytest.raises(BadRequestError):
            inventory_service.update_stock_movement(purchase.id, change=1)

        db_session.refresh(product)
        assert product.stock == 1

    def test_delete_reverses(self, db_session, branch, product):
        movement_id = inventory_service.record_stock_movement(product.id, branch.id, -4, "transfer").id
        inventory_service.delete_stock_movement(movement_id)

        db_session.refresh(product)
        assert product.stock == 10
        assert db_session.get(StockMovement, movement_id) is None
        assert inventory_service.get_stock_reconciliation(product.id)["in_sync"] is True


def test_find_unreconciled_products(db_session, product, make_product):
    clean = make_product()
    # Bypass the ledger on purpose
    db_session.query(Product).filter_by(id=product.id).update({"stock": 99})
    db_session.commit()

    drifted = inventory_service.find_unreconciled_products()
    assert [row["product_id"] for row in drifted] == [product.id]
    assert drifted[0]["movement_total"] == 10
    assert clean.id not in [row["product_id"] for row in drifted]


class TestPhysicalCount:
    def test_count_below_stock_writes_negative_movement(self, db_session, branch, product):
        result = inventory_service.reconcile_stock(product.id, branch.id, 7, note="Shelf count")

        assert result["previous_stock"] == 10
        assert result["actual_stock"] == 7
        assert result["adjustment"] == -3
        assert result["movement"]["reason"] == "reconciliation"
        assert result["movement"]["change"] == -3
        db_session.refresh(product)
        assert product.stock == 7
        assert inventory_service.get_stock_reconciliation(product.id)["in_sync"] is True

    def test_count_above_stock(self, db_session, branch, product):
        result = inventory_service.reconcile_stock(product.id, branch.id, 12)
        assert result["adjustment"] == 2
        db_session.refresh(product)
        assert product.stock == 12

    def test_matching_count_writes_nothing(self, db_session, branch, product):
        result = inventory_service.reconcile_stock(product.id, branch.id, 10)

        assert result["adjustment"] == 0
        assert result["movement"] is None
        assert db_session.query(StockMovement).filter_by(reason="reconciliation").count() == 0

    def test_count_after_other_movements(self, db_session, branch, product):
        inventory_service.record_stock_movement(product.id, branch.id, -4, "spoilage")

        result = inventory_service.reconcile_stock(product.id, branch.id, 5)
        assert result["previous_stock"] == 6
        assert result["adjustment"] == -1
        assert inventory_service.get_stock_reconciliation(product.id)["stock"] == 5

    @pytest.mark.parametrize("actual", [-1, None, "lots"])
    def test_invalid_count(self, db_session, branch, product, actual):
        with pytest.raises(BadRequestError):
            inventory_service.reconcile_stock(product.id, branch.id, actual)


class TestTransfers:
    def test_transfer_creates_destination_product(self, db_session, branch, other_branch, product):
        result = inventory_service.transfer_stock(product.id, other_branch.id, 4)

        destination = db_session.get(Product, result["destination_product_id"])
        assert destination.branch_id == other_branch.id
        assert destination.sku == product.sku
        assert destination.price_cents == product.price_cents
        assert destination.stock == 4
        db_session.refresh(product)
        assert product.stock == 6

        assert result["outbound"]["change"] == -4
        assert result["outbound"]["branch_id"] == branch.id
        assert result["inbound"]["change"] == 4
        assert result["inbound"]["branch_id"] == other_branch.id
        assert inventory_service.find_unreconciled_products() == []

    def test_transfer_into_existing_product(self, db_session, branch, other_branch, product):
        existing = Product(
            branch_id=other_branch.id, sku=product.sku, name=product.name, price_cents=1000, stock=0,
        )
        db_session.add(existing)
        db_session.commit()
        inventory_service.record_stock_movement(existing.id, other_branch.id, 3, "initial_stock")

        result = inventory_service.transfer_stock(product.id, other_branch.id, 2)

        assert result["destination_product_id"] == existing.id
        db_session.refresh(existing)
        assert existing.stock == 5
        assert db_session.query(Product).filter_by(sku=product.sku).count() == 2

    def test_insufficient_stock_leaves_both_sides_untouched(self, db_session, other_branch, product):
        before = db_session.query(StockMovement).count()

        with pytest.raises(BadRequestError) as exc:
            inventory_service.transfer_stock(product.id, other_branch.id, 11)

        assert exc.value.details["current_stock"] == 10
        assert db_session.query(StockMovement).count() == before
        assert db_session.query(Product).filter_by(branch_id=other_branch.id).count() == 0
        db_session.refresh(product)
        assert product.stock == 10

    def test_same_branch_rejected(self, db_session, branch, product):
        with pytest.raises(BadRequestError):
            inventory_service.transfer_stock(product.id, branch.id, 1)

    def test_unknown_destination(self, db_session, product):
        with pytest.raises(NotFoundError):
            inventory_service.transfer_stock(product.id, 9999, 1)

    @pytest.mark.parametrize("quantity", [0, -3, "x"])
    def test_invalid_quantity(self, db_session, other_branch, product, quantity):
        with pytest.raises(BadRequestError):
            inventory_service.transfer_stock(product.id, other_branch.id, quantity)
