"""
Discount calculator and best-promotion selector.

Pure functions: promotions are plain namespaces, no database involved.
"""

from types import SimpleNamespace

import pytest

from tillpoint.models.promotions import PROMO_BUY_X_GET_Y, PROMO_FIXED_AMOUNT, PROMO_PERCENTAGE
from tillpoint.services.discount_service import (
    calculate_discount,
    calculate_savings,
    select_best_promotion,
)
from tillpoint.validation import BadRequestError


def promo(promo_type, priority=0, promo_id=None, **values):
    return SimpleNamespace(
        id=promo_id,
        name=f"{promo_type}-{promo_id}",
        promo_type=promo_type,
        priority=priority,
        discount_bps=values.get("discount_bps"),
        discount_amount_cents=values.get("discount_amount_cents"),
        buy_qty=values.get("buy_qty"),
        get_qty=values.get("get_qty"),
    )


class TestPercentage:
    def test_rounds_once_half_up(self):
        # 1000 x 3 x 33.33% = 999.9 cents -> 1000, not 3 x round(333.3) = 999
        result = calculate_discount(promo(PROMO_PERCENTAGE, discount_bps=3333), 1000, 3)
        assert result.subtotal_cents == 3000
        assert result.discount_cents == 1000
        assert result.final_price_cents == 2000
        assert result.effective_unit_price_cents == 667

    def test_full_discount_allowed(self):
        result = calculate_discount(promo(PROMO_PERCENTAGE, discount_bps=10_000), 250, 2)
        assert result.discount_cents == 500
        assert result.final_price_cents == 0

    @pytest.mark.parametrize("bps", [None, 0])
    def test_missing_value_rejected(self, bps):
        with pytest.raises(BadRequestError):
            calculate_discount(promo(PROMO_PERCENTAGE, discount_bps=bps), 1000, 1)

    def test_over_100_percent_rejected(self):
        with pytest.raises(BadRequestError):
            calculate_discount(promo(PROMO_PERCENTAGE, discount_bps=10_001), 1000, 1)


class TestFixedAmount:
    def test_per_unit_amount(self):
        result = calculate_discount(promo(PROMO_FIXED_AMOUNT, discount_amount_cents=50), 200, 4)
        assert result.discount_cents == 200
        assert result.final_price_cents == 600

    def test_capped_at_subtotal(self):
        result = calculate_discount(promo(PROMO_FIXED_AMOUNT, discount_amount_cents=500), 300, 2)
        assert result.discount_cents == 600
        assert result.savings_cents == 600
        assert result.final_price_cents == 0

    def test_missing_amount_rejected(self):
        with pytest.raises(BadRequestError):
            calculate_discount(promo(PROMO_FIXED_AMOUNT), 300, 2)


class TestBuyXGetY:
    @pytest.mark.parametrize(
        "qty,free,paid",
        [
            (1, 0, 1),
            (2, 0, 2),
            (3, 1, 2),
            (5, 1, 4),
            (6, 2, 4),
            (7, 2, 5),
            (9, 3, 6),
        ],
    )
    def test_only_complete_sets_earn(self, qty, free, paid):
        result = calculate_discount(promo(PROMO_BUY_X_GET_Y, buy_qty=2, get_qty=1), 400, qty)
        assert result.free_items == free
        assert result.paid_items == paid
        assert result.complete_sets == qty // 3
        assert result.discount_cents == free * 400
        assert result.free_items + result.paid_items == qty

    def test_message_mentions_free_items(self):
        result = calculate_discount(promo(PROMO_BUY_X_GET_Y, buy_qty=2, get_qty=1), 400, 6)
        assert "2 free items" in result.message

    def test_message_when_set_incomplete(self):
        result = calculate_discount(promo(PROMO_BUY_X_GET_Y, buy_qty=2, get_qty=1), 400, 2)
        assert result.discount_cents == 0
        assert "need 3 items" in result.message

    def test_breakdown_only_for_bxgy(self):
        bxgy = calculate_discount(promo(PROMO_BUY_X_GET_Y, buy_qty=1, get_qty=1), 100, 2).to_dict()
        pct = calculate_discount(promo(PROMO_PERCENTAGE, discount_bps=1000), 100, 2).to_dict()
        assert bxgy["free_items"] == 1
        assert "free_items" not in pct

    @pytest.mark.parametrize("buy,get", [(None, 1), (2, None), (0, 1), (2, -1)])
    def test_invalid_quantities_rejected(self, buy, get):
        with pytest.raises(BadRequestError):
            calculate_discount(promo(PROMO_BUY_X_GET_Y, buy_qty=buy, get_qty=get), 100, 3)


class TestInputValidation:
    @pytest.mark.parametrize("price,qty", [(0, 1), (-5, 1), (100, 0), (100, -2), (True, 1), (1.5, 1)])
    def test_non_positive_or_non_integer_rejected(self, price, qty):
        with pytest.raises(BadRequestError):
            calculate_discount(promo(PROMO_PERCENTAGE, discount_bps=1000), price, qty)

    def test_unknown_type_rejected(self):
        with pytest.raises(BadRequestError):
            calculate_discount(promo("MYSTERY"), 100, 1)

    def test_savings_matches_discount(self):
        p = promo(PROMO_FIXED_AMOUNT, discount_amount_cents=75)
        assert calculate_savings(p, 300, 2) == 150


class TestSelector:
    def test_empty_returns_none(self):
        assert select_best_promotion([], 100, 1) is None

    def test_invalid_price_rejected(self):
        with pytest.raises(BadRequestError):
            select_best_promotion([promo(PROMO_PERCENTAGE, discount_bps=1000)], 0, 1)

    def test_priority_dominates_savings(self):
        small_but_urgent = promo(PROMO_PERCENTAGE, priority=5, promo_id=1, discount_bps=500)
        large = promo(PROMO_PERCENTAGE, priority=1, promo_id=2, discount_bps=5000)

        for order in ([small_but_urgent, large], [large, small_but_urgent]):
            choice = select_best_promotion(order, 1000, 1)
            assert choice.promotion is small_but_urgent
            assert choice.savings_cents == 50

    def test_high_priority_with_zero_savings_still_wins(self):
        # A: priority 10, saves nothing below a full set; B: priority 5, saves 50
        a = promo(PROMO_BUY_X_GET_Y, priority=10, promo_id=1, buy_qty=2, get_qty=1)
        b = promo(PROMO_FIXED_AMOUNT, priority=5, promo_id=2, discount_amount_cents=50)
        choice = select_best_promotion([b, a], 500, 1)
        assert choice.promotion is a
        assert choice.savings_cents == 0

    def test_savings_break_priority_ties(self):
        a = promo(PROMO_PERCENTAGE, priority=3, promo_id=1, discount_bps=1000)
        b = promo(PROMO_FIXED_AMOUNT, priority=3, promo_id=2, discount_amount_cents=300)
        choice = select_best_promotion([a, b], 1000, 2)
        assert choice.promotion is b
        assert choice.discount_cents == 600

    def test_exact_tie_keeps_first(self):
        a = promo(PROMO_PERCENTAGE, priority=0, promo_id=1, discount_bps=1000)
        b = promo(PROMO_PERCENTAGE, priority=0, promo_id=2, discount_bps=1000)
        assert select_best_promotion([a, b], 1000, 1).promotion is a

    def test_zero_savings_candidate_still_chosen(self):
        # BXGY below a full set saves nothing; the caller decides what zero means
        bxgy = promo(PROMO_BUY_X_GET_Y, buy_qty=2, get_qty=1, promo_id=1)
        choice = select_best_promotion([bxgy], 500, 2)
        assert choice.promotion is bxgy
        assert choice.savings_cents == 0
