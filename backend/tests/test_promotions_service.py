import pytest

from tillpoint.models.promotions import (
    PROMO_BUY_X_GET_Y,
    PROMO_FIXED_AMOUNT,
    PROMO_PERCENTAGE,
    SCOPE_CATEGORY,
)
from tillpoint.services import promotions_service
from tillpoint.validation import BadRequestError, NotFoundError


class TestCatalog:
    def test_create_percentage_promotion(self, db_session, product, branch):
        promo = promotions_service.create_promotion({
            "name": "Ten off",
            "promo_type": "percentage",
            "discount_bps": 1000,
            "product_ids": [product.id],
            "branch_ids": [branch.id],
        })
        assert promo.id is not None
        assert promo.promo_type == PROMO_PERCENTAGE
        assert [p.id for p in promo.products] == [product.id]
        assert [b.id for b in promo.branches] == [branch.id]

    def test_value_fields_must_match_type(self, db_session, product):
        with pytest.raises(BadRequestError):
            promotions_service.create_promotion({
                "name": "Confused",
                "promo_type": PROMO_PERCENTAGE,
                "discount_bps": 1000,
                "discount_amount_cents": 50,
                "product_ids": [product.id],
            })

    def test_bxgy_requires_both_quantities(self, db_session, product):
        with pytest.raises(BadRequestError):
            promotions_service.create_promotion({
                "name": "Half a deal",
                "promo_type": PROMO_BUY_X_GET_Y,
                "buy_qty": 2,
                "product_ids": [product.id],
            })

    def test_active_product_scope_needs_products(self, db_session):
        with pytest.raises(BadRequestError):
            promotions_service.create_promotion({
                "name": "Nothing",
                "promo_type": PROMO_FIXED_AMOUNT,
                "discount_amount_cents": 100,
            })

    def test_unknown_target_ids_reported(self, db_session):
        with pytest.raises(NotFoundError) as exc:
            promotions_service.create_promotion({
                "name": "Ghost",
                "promo_type": PROMO_FIXED_AMOUNT,
                "discount_amount_cents": 100,
                "product_ids": [999],
            })
        assert exc.value.details["missing_ids"] == [999]

    def test_update_revalidates_merged_definition(self, db_session, percent_promo):
        with pytest.raises(BadRequestError):
            promotions_service.update_promotion(percent_promo.id, {"promo_type": PROMO_FIXED_AMOUNT})

        updated = promotions_service.update_promotion(percent_promo.id, {
            "promo_type": PROMO_FIXED_AMOUNT,
            "discount_bps": None,
            "discount_amount_cents": 25,
        })
        assert updated.promo_type == PROMO_FIXED_AMOUNT
        assert updated.discount_amount_cents == 25
        assert updated.discount_bps is None

    def test_type_switch_drops_old_value_fields(self, db_session, percent_promo):
        updated = promotions_service.update_promotion(percent_promo.id, {
            "promo_type": PROMO_FIXED_AMOUNT,
            "discount_amount_cents": 100,
        })
        assert updated.promo_type == PROMO_FIXED_AMOUNT
        assert updated.discount_amount_cents == 100
        assert updated.discount_bps is None

    def test_type_switch_still_rejects_explicit_foreign_fields(self, db_session, percent_promo):
        with pytest.raises(BadRequestError):
            promotions_service.update_promotion(percent_promo.id, {
                "promo_type": PROMO_BUY_X_GET_Y,
                "buy_qty": 2,
                "get_qty": 1,
                "discount_bps": 500,
            })

    def test_set_targets_replaces_branches(self, db_session, percent_promo, branch, other_branch):
        promo = promotions_service.set_promotion_targets(percent_promo.id, "branches", [other_branch.id])
        assert [b.id for b in promo.branches] == [other_branch.id]
        assert not promo.is_available_in_branch(branch.id)


class TestResolver:
    def test_product_and_category_scopes(self, db_session, product, make_promotion, category):
        by_product = make_promotion(PROMO_PERCENTAGE, products=[product], discount_bps=500)
        by_category = make_promotion(PROMO_FIXED_AMOUNT, scope=SCOPE_CATEGORY, categories=[category],
                                     discount_amount_cents=10)
        ids = {p.id for p in promotions_service.resolve_promotions(product.id)}
        assert ids == {by_product.id, by_category.id}

    def test_inactive_and_unrelated_excluded(self, db_session, product, make_product, make_promotion):
        other = make_product()
        make_promotion(PROMO_PERCENTAGE, products=[product], discount_bps=500, is_active=False)
        make_promotion(PROMO_PERCENTAGE, products=[other], discount_bps=500)
        assert promotions_service.resolve_promotions(product.id) == []

    def test_branch_restriction(self, db_session, product, make_promotion, branch, other_branch):
        here = make_promotion(PROMO_PERCENTAGE, products=[product], branches=[branch], discount_bps=500)
        elsewhere = make_promotion(PROMO_PERCENTAGE, products=[product], branches=[other_branch], discount_bps=500)
        everywhere = make_promotion(PROMO_PERCENTAGE, products=[product], discount_bps=500)

        ids = [p.id for p in promotions_service.resolve_promotions(product.id, branch.id)]
        assert set(ids) == {here.id, everywhere.id}
        assert elsewhere.id not in ids

    def test_order_priority_then_newest(self, db_session, product, make_promotion):
        older = make_promotion(PROMO_PERCENTAGE, products=[product], priority=1, discount_bps=100)
        newer = make_promotion(PROMO_PERCENTAGE, products=[product], priority=1, discount_bps=100)
        urgent = make_promotion(PROMO_PERCENTAGE, products=[product], priority=9, discount_bps=100)

        ids = [p.id for p in promotions_service.resolve_promotions(product.id)]
        assert ids == [urgent.id, newer.id, older.id]

    def test_missing_product(self, db_session):
        with pytest.raises(NotFoundError):
            promotions_service.resolve_promotions(12345)

    def test_inactive_product(self, db_session, make_product):
        dormant = make_product(is_active=False)
        with pytest.raises(BadRequestError):
            promotions_service.resolve_promotions(dormant.id)
