"""
Discount Calculation Service

WHY: Every price the customer sees and every discount checkout accepts comes
from this module, so the arithmetic lives in one pure place with no I/O.

DESIGN PRINCIPLES:
- Money is integer cents; percentages are basis points (3333 = 33.33%)
- Fractional cents are rounded once, half-up, when a result is produced
- Malformed input raises BadRequestError; "no discount" is a valid 0 result,
  "invalid promotion" never is
- BUY_X_GET_Y only rewards complete sets (floor), partial sets earn nothing

SELECTION POLICY:
Priority dominates savings. A higher-priority promotion wins even when a
lower-priority one would save more; savings only break ties inside the same
priority tier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..models.promotions import PROMO_PERCENTAGE, PROMO_FIXED_AMOUNT, PROMO_BUY_X_GET_Y
from ..validation import BadRequestError


BPS_DENOMINATOR = 10_000


def _div_round_half_up(numerator: int, denominator: int) -> int:
    # nearest-cent rounding (half-up) for non-negative integers
    return (numerator + (denominator // 2)) // denominator


def _require_positive_int(value: Any, message: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise BadRequestError(message)
    return value


@dataclass(frozen=True)
class DiscountResult:
    """Full breakdown of one promotion applied to one line."""
    promotion_id: Optional[int]
    promotion_name: str
    promotion_type: str
    unit_price_cents: int
    quantity: int
    subtotal_cents: int
    discount_cents: int
    final_price_cents: int
    effective_unit_price_cents: int
    buy_qty: Optional[int] = None
    get_qty: Optional[int] = None
    complete_sets: Optional[int] = None
    free_items: Optional[int] = None
    paid_items: Optional[int] = None
    message: Optional[str] = None

    @property
    def savings_cents(self) -> int:
        return self.discount_cents

    def to_dict(self) -> dict:
        data = {
            "promotion_id": self.promotion_id,
            "promotion_name": self.promotion_name,
            "promotion_type": self.promotion_type,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "final_price_cents": self.final_price_cents,
            "effective_unit_price_cents": self.effective_unit_price_cents,
            "savings_cents": self.savings_cents,
        }
        if self.promotion_type == PROMO_BUY_X_GET_Y:
            data.update({
                "buy_qty": self.buy_qty,
                "get_qty": self.get_qty,
                "complete_sets": self.complete_sets,
                "free_items": self.free_items,
                "paid_items": self.paid_items,
                "message": self.message,
            })
        return data


@dataclass(frozen=True)
class PromotionChoice:
    promotion: Any
    savings_cents: int = field(default=0)

    @property
    def discount_cents(self) -> int:
        return self.savings_cents


def calculate_discount(promotion: Any, unit_price_cents: int, quantity: int) -> DiscountResult:
    """
    Compute the discount a promotion gives on unit_price_cents x quantity.

    Works on Promotion rows and on anything exposing the same attributes
    (promo_type, discount_bps, discount_amount_cents, buy_qty, get_qty).

    Raises:
        BadRequestError: non-positive price/quantity, unknown type, or the
            value fields required by the type are missing/invalid
    """
    price = _require_positive_int(unit_price_cents, "Invalid unit price")
    qty = _require_positive_int(quantity, "Invalid quantity")

    promo_type = getattr(promotion, "promo_type", None)
    name = getattr(promotion, "name", None) or "Unknown"
    subtotal = price * qty

    extra: dict = {}

    if promo_type == PROMO_PERCENTAGE:
        bps = getattr(promotion, "discount_bps", None)
        if not bps:
            raise BadRequestError("Percentage discount value missing")
        if isinstance(bps, bool) or not isinstance(bps, int) or bps < 0 or bps > BPS_DENOMINATOR:
            raise BadRequestError(f"Percentage discount must be between 0 and {BPS_DENOMINATOR} basis points")
        discount = _div_round_half_up(subtotal * bps, BPS_DENOMINATOR)

    elif promo_type == PROMO_FIXED_AMOUNT:
        amount = getattr(promotion, "discount_amount_cents", None)
        if not amount:
            raise BadRequestError("Fixed discount amount missing")
        amount = _require_positive_int(amount, "Fixed discount amount must be a positive number of cents")
        # Capped so the line never goes negative; the capped value is the savings
        discount = min(amount * qty, subtotal)

    elif promo_type == PROMO_BUY_X_GET_Y:
        buy_qty = getattr(promotion, "buy_qty", None)
        get_qty = getattr(promotion, "get_qty", None)
        if not buy_qty or not get_qty:
            raise BadRequestError("Buy/Get quantities missing for BUY_X_GET_Y promotion")
        buy_qty = _require_positive_int(buy_qty, "buy_qty must be a positive integer")
        get_qty = _require_positive_int(get_qty, "get_qty must be a positive integer")

        set_size = buy_qty + get_qty
        complete_sets = qty // set_size
        free_items = complete_sets * get_qty
        paid_items = qty - free_items
        discount = free_items * price

        if free_items > 0:
            plural = "s" if free_items > 1 else ""
            message = f"Buy {buy_qty}, Get {get_qty} Free! You get {free_items} free item{plural}"
        else:
            message = f"Buy {buy_qty}, Get {get_qty} Free (need {set_size} items)"

        extra = {
            "buy_qty": buy_qty,
            "get_qty": get_qty,
            "complete_sets": complete_sets,
            "free_items": free_items,
            "paid_items": paid_items,
            "message": message,
        }

    else:
        raise BadRequestError(f"Unknown promotion type: {promo_type}")

    final_price = subtotal - discount

    return DiscountResult(
        promotion_id=getattr(promotion, "id", None),
        promotion_name=name,
        promotion_type=promo_type,
        unit_price_cents=price,
        quantity=qty,
        subtotal_cents=subtotal,
        discount_cents=discount,
        final_price_cents=final_price,
        effective_unit_price_cents=_div_round_half_up(final_price, qty),
        **extra,
    )


def calculate_savings(promotion: Any, unit_price_cents: int, quantity: int) -> int:
    """Savings in cents without the breakdown. Same validation as calculate_discount."""
    return calculate_discount(promotion, unit_price_cents, quantity).discount_cents


def select_best_promotion(
    promotions: Iterable[Any],
    unit_price_cents: int,
    quantity: int,
) -> PromotionChoice | None:
    """
    Pick exactly one promotion for a line.

    A candidate replaces the current best only if its priority is strictly
    higher, or the priority is equal and its savings are strictly greater.
    Savings are recomputed per candidate, so input order only matters for
    exact ties.
    """
    candidates = list(promotions or [])
    if not candidates:
        return None

    _require_positive_int(unit_price_cents, "Invalid unit price")
    _require_positive_int(quantity, "Invalid quantity")

    best = None
    best_savings = 0
    highest_priority = None

    for promo in candidates:
        savings = calculate_savings(promo, unit_price_cents, quantity)
        priority = promo.priority or 0

        if highest_priority is None or priority > highest_priority:
            highest_priority = priority
            best = promo
            best_savings = savings
        elif priority == highest_priority and savings > best_savings:
            best = promo
            best_savings = savings

    return PromotionChoice(promotion=best, savings_cents=best_savings)
