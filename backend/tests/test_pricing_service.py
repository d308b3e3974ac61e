import pytest

from tillpoint.models.promotions import PROMO_FIXED_AMOUNT, PROMO_PERCENTAGE
from tillpoint.services import pricing_service, promotions_service
from tillpoint.validation import BadRequestError


def test_price_cart_applies_best_promotion(db_session, product, percent_promo):
    [line] = pricing_service.price_cart([
        {"product_id": product.id, "unit_price_cents": 1000, "qty": 3}
    ])
    assert line["discount_cents"] == 1000
    assert line["line_total_cents"] == 2000
    assert line["promotion_id"] == percent_promo.id
    assert line["promotion_snapshot"]["discount_bps"] == 3333
    assert line["promotion_applied"]["savings_cents"] == 1000
    assert line["promotion_error"] is None


def test_bxgy_summary_fields(db_session, product, bxgy_promo):
    [line] = pricing_service.price_cart([
        {"product_id": product.id, "unit_price_cents": 1000, "qty": 6}
    ])
    applied = line["promotion_applied"]
    assert applied["free_items"] == 2
    assert applied["paid_items"] == 4
    assert line["discount_cents"] == 2000


def test_zero_savings_means_no_promotion(db_session, product, bxgy_promo):
    [line] = pricing_service.price_cart([
        {"product_id": product.id, "unit_price_cents": 1000, "qty": 2}
    ])
    assert line["discount_cents"] == 0
    assert line["promotion_id"] is None
    assert line["promotion_applied"] is None


def test_no_promotions(db_session, make_product):
    plain = make_product(price_cents=250)
    [line] = pricing_service.price_cart([{"product_id": plain.id, "unit_price_cents": 250, "qty": 4}])
    assert line["line_total_cents"] == 1000
    assert line["discount_cents"] == 0


def test_bad_line_does_not_break_cart(db_session, product, make_product, make_promotion, percent_promo):
    broken_target = make_product(price_cents=500)
    broken = make_promotion(PROMO_FIXED_AMOUNT, products=[broken_target], discount_amount_cents=50)
    # Corrupt the row behind the catalog's back
    broken.discount_amount_cents = None
    db_session.commit()

    lines = pricing_service.price_cart([
        {"product_id": product.id, "unit_price_cents": 1000, "qty": 3},
        {"product_id": broken_target.id, "unit_price_cents": 500, "qty": 2},
        {"product_id": 99999, "unit_price_cents": 100, "qty": 1},
        {"product_id": product.id, "unit_price_cents": "abc", "qty": 1},
    ])

    assert len(lines) == 4
    assert lines[0]["discount_cents"] == 1000
    assert lines[0]["promotion_error"] is None

    assert lines[1]["discount_cents"] == 0
    assert lines[1]["line_total_cents"] == 1000
    assert lines[1]["promotion_error"]

    assert lines[2]["product_id"] == 99999
    assert lines[2]["promotion_error"]

    assert lines[3]["promotion_error"]
    assert lines[3]["line_total_cents"] is None


@pytest.mark.parametrize("items", [None, [], "cart", {"product_id": 1}])
def test_cart_structure_rejected(db_session, items):
    with pytest.raises(BadRequestError):
        pricing_service.price_cart(items)


def test_cart_totals(db_session, product, percent_promo, make_product):
    plain = make_product(price_cents=200)
    lines = pricing_service.price_cart([
        {"product_id": product.id, "unit_price_cents": 1000, "qty": 3},
        {"product_id": plain.id, "unit_price_cents": 200, "qty": 2},
    ])
    assert pricing_service.cart_totals(lines) == {
        "subtotal_cents": 3400,
        "discount_cents": 1000,
        "total_cents": 2400,
    }


class TestCheckoutRevalidation:
    def _line(self, product, promo, discount_cents, qty=3):
        return {
            "product_id": product.id,
            "unit_price_cents": 1000,
            "quantity": qty,
            "discount_cents": discount_cents,
            "promotion_id": promo.id,
        }

    def test_matching_discount_passes(self, db_session, product, percent_promo, branch):
        result = pricing_service.validate_promotion_at_checkout(
            self._line(product, percent_promo, 1000), branch.id
        )
        assert result["valid"] is True
        assert result["expected_discount_cents"] == 1000

    def test_within_tolerance_passes(self, db_session, product, percent_promo, branch):
        result = pricing_service.validate_promotion_at_checkout(
            self._line(product, percent_promo, 999), branch.id
        )
        assert result["valid"] is True

    def test_inflated_discount_rejected(self, db_session, product, percent_promo, branch):
        with pytest.raises(BadRequestError) as exc:
            pricing_service.validate_promotion_at_checkout(self._line(product, percent_promo, 1500), branch.id)
        assert exc.value.details["expected_discount_cents"] == 1000
        assert exc.value.details["submitted_discount_cents"] == 1500

    def test_deactivated_promotion_rejected(self, db_session, product, percent_promo, branch):
        promotions_service.update_promotion(percent_promo.id, {"is_active": False})
        with pytest.raises(BadRequestError) as exc:
            pricing_service.validate_promotion_at_checkout(self._line(product, percent_promo, 1000), branch.id)
        assert "refresh" in exc.value.message

    def test_wrong_branch_rejected(self, db_session, product, make_promotion, other_branch, branch):
        promo = make_promotion(PROMO_PERCENTAGE, products=[product], branches=[other_branch], discount_bps=3333)
        with pytest.raises(BadRequestError):
            pricing_service.validate_promotion_at_checkout(self._line(product, promo, 1000), branch.id)

    def test_promotion_for_another_product_rejected(self, db_session, product, make_product, make_promotion, branch):
        other = make_product()
        promo = make_promotion(PROMO_PERCENTAGE, products=[other], discount_bps=3333)
        with pytest.raises(BadRequestError):
            pricing_service.validate_promotion_at_checkout(self._line(product, promo, 1000), branch.id)

    def test_lines_without_promotion_pass(self, db_session, product):
        result = pricing_service.validate_promotion_at_checkout({"product_id": product.id})
        assert result == {"valid": True, "promotion_id": None}

    def test_cart_summary_does_not_raise(self, db_session, product, percent_promo, branch):
        summary = pricing_service.validate_cart_promotions([
            self._line(product, percent_promo, 1000),
            self._line(product, percent_promo, 5),
        ], branch.id)
        assert summary["all_valid"] is False
        assert [r["valid"] for r in summary["results"]] == [True, False]
        assert summary["results"][1]["details"]["expected_discount_cents"] == 1000


class TestPreview:
    def test_preview(self, db_session, bxgy_promo, branch):
        result = pricing_service.preview_discount(bxgy_promo.id, 1000, 3, branch.id)
        assert result["discount_cents"] == 1000
        assert result["free_items"] == 1

    def test_preview_unavailable_branch(self, db_session, product, make_promotion, branch, other_branch):
        promo = make_promotion(PROMO_PERCENTAGE, products=[product], branches=[other_branch], discount_bps=1000)
        with pytest.raises(BadRequestError):
            pricing_service.preview_discount(promo.id, 1000, 1, branch.id)
