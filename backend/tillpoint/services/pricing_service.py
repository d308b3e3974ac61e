"""
Cart Pricing Service

WHY: The register shows the customer discounted prices before payment. This
module turns a cart into priced lines (resolve -> select -> calculate) and,
at checkout, re-checks whatever discount the client submits against the live
promotion so a stale or tampered cart can never be charged wrongly.

FAILURE POLICY:
- A bad line never breaks the cart. Business errors and malformed data on a
  line are logged and the line is priced at full price with promotion_error.
- Database errors are not line problems; they propagate.
- Checkout re-validation raises. The summary variant collects results instead.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.orm import Session

from ..extensions import get_session
from ..models import Promotion
from ..models.promotions import PROMO_BUY_X_GET_Y
from ..validation import (
    BadRequestError,
    NotFoundError,
    PosError,
    coerce_int,
    coerce_non_negative_int,
    coerce_positive_int,
    coerce_price_cents,
)
from .discount_service import calculate_discount, select_best_promotion
from .promotions_service import resolve_promotions

# Errors that downgrade a single cart line instead of failing the cart
LINE_ERRORS = (PosError, ValueError, TypeError, ArithmeticError)


def line_quantity(line: dict):
    """Checkout lines say quantity, cart lines say qty; accept both."""
    if line.get("quantity") is not None:
        return line.get("quantity")
    return line.get("qty")


def _require_items(items) -> list:
    if not isinstance(items, list):
        raise BadRequestError("items must be a list")
    if not items:
        raise BadRequestError("Cart is empty")
    return items


def _unpriced_line(item) -> dict:
    raw = item if isinstance(item, dict) else {}
    price = raw.get("unit_price_cents")
    qty = line_quantity(raw)
    line_total = None
    if isinstance(price, int) and isinstance(qty, int) and not isinstance(price, bool) and not isinstance(qty, bool):
        line_total = price * qty
    return {
        "product_id": raw.get("product_id"),
        "unit_price_cents": price,
        "qty": qty,
        "discount_cents": 0,
        "promotion_id": None,
        "promotion_snapshot": None,
        "line_total_cents": line_total,
        "promotion_applied": None,
        "promotion_error": None,
    }


def _price_line(item, branch_id: int | None, session: Session) -> dict:
    if not isinstance(item, dict):
        raise BadRequestError("Cart item must be an object")

    product_id = coerce_positive_int(item.get("product_id"), "product_id")
    price = coerce_price_cents(item.get("unit_price_cents"))
    qty = coerce_positive_int(line_quantity(item), "qty")

    priced = _unpriced_line(item)
    priced.update({
        "product_id": product_id,
        "unit_price_cents": price,
        "qty": qty,
        "line_total_cents": price * qty,
    })

    promotions = resolve_promotions(product_id, branch_id, session=session)
    if not promotions:
        return priced

    choice = select_best_promotion(promotions, price, qty)
    if choice is None or choice.savings_cents <= 0:
        return priced

    promo = choice.promotion
    result = calculate_discount(promo, price, qty)

    applied = {
        "id": promo.id,
        "name": promo.name,
        "type": promo.promo_type,
        "scope": promo.scope,
        "savings_cents": result.savings_cents,
    }
    if promo.promo_type == PROMO_BUY_X_GET_Y:
        applied.update({
            "free_items": result.free_items,
            "paid_items": result.paid_items,
            "message": result.message,
        })

    priced.update({
        "discount_cents": result.discount_cents,
        "promotion_id": promo.id,
        "promotion_snapshot": promo.to_snapshot(),
        "line_total_cents": result.final_price_cents,
        "promotion_applied": applied,
    })
    return priced


def price_cart(items, branch_id: int | None = None, *, session: Session | None = None) -> list[dict]:
    """
    Price every line of a cart with its best applicable promotion.

    Args:
        items: non-empty list of {product_id, unit_price_cents, qty}
        branch_id: selling branch; each product's own branch when omitted

    Returns:
        One priced line per input item, in input order.
    """
    session = get_session(session)
    items = _require_items(items)

    priced_lines = []
    for index, item in enumerate(items):
        try:
            priced_lines.append(_price_line(item, branch_id, session))
        except LINE_ERRORS as exc:
            current_app.logger.warning("Promotion failed for cart line %s: %s", index, exc)
            line = _unpriced_line(item)
            line["promotion_error"] = getattr(exc, "message", None) or str(exc)
            priced_lines.append(line)

    return priced_lines


def cart_totals(priced_lines: list[dict]) -> dict:
    subtotal = 0
    discount = 0
    for line in priced_lines:
        if line.get("line_total_cents") is None:
            continue
        subtotal += line["unit_price_cents"] * line["qty"]
        discount += line["discount_cents"]
    return {
        "subtotal_cents": subtotal,
        "discount_cents": discount,
        "total_cents": subtotal - discount,
    }


# =============================================================================
# CHECKOUT RE-VALIDATION
# =============================================================================

def validate_promotion_at_checkout(
    line: dict,
    branch_id: int | None = None,
    *,
    session: Session | None = None,
) -> dict:
    """
    Re-check a submitted line discount against the live promotion.

    Lines without promotion_id pass. Otherwise the promotion must still
    exist, be active, be available in the branch and apply to the product,
    and the recomputed discount must match the submitted one within
    PROMOTION_DISCOUNT_TOLERANCE_CENTS.

    Raises:
        BadRequestError: with expected/submitted amounts on a mismatch
    """
    session = get_session(session)
    if not isinstance(line, dict):
        raise BadRequestError("Line must be an object")

    promotion_id = line.get("promotion_id")
    if promotion_id is None:
        return {"valid": True, "promotion_id": None}

    promotion_id = coerce_int(promotion_id, "promotion_id")
    product_id = coerce_positive_int(line.get("product_id"), "product_id")
    price = coerce_price_cents(line.get("unit_price_cents"))
    qty = coerce_positive_int(line_quantity(line), "quantity")
    submitted = coerce_non_negative_int(line.get("discount_cents"), "discount_cents")

    promo = session.get(Promotion, promotion_id)
    if promo is None:
        raise BadRequestError(
            f"Promotion {promotion_id} no longer exists. Please refresh cart.",
            details={"promotion_id": promotion_id},
        )
    if not promo.is_active:
        raise BadRequestError(
            f"Promotion '{promo.name}' is no longer active. Please refresh cart.",
            details={"promotion_id": promotion_id},
        )
    if not promo.is_available_in_branch(branch_id):
        raise BadRequestError(
            f"Promotion '{promo.name}' is not available in this branch. Please refresh cart.",
            details={"promotion_id": promotion_id, "branch_id": branch_id},
        )

    applicable_ids = {p.id for p in resolve_promotions(product_id, branch_id, session=session)}
    if promo.id not in applicable_ids:
        raise BadRequestError(
            f"Promotion '{promo.name}' does not apply to product {product_id}. Please refresh cart.",
            details={"promotion_id": promotion_id, "product_id": product_id},
        )

    expected = calculate_discount(promo, price, qty).discount_cents
    tolerance = current_app.config.get("PROMOTION_DISCOUNT_TOLERANCE_CENTS", 1)
    if abs(expected - submitted) > tolerance:
        raise BadRequestError(
            f"Discount mismatch for promotion '{promo.name}'. "
            f"Expected: {expected} cents, submitted: {submitted} cents. Please refresh cart.",
            details={
                "promotion_id": promotion_id,
                "expected_discount_cents": expected,
                "submitted_discount_cents": submitted,
            },
        )

    return {
        "valid": True,
        "promotion_id": promotion_id,
        "expected_discount_cents": expected,
        "submitted_discount_cents": submitted,
    }


def validate_cart_promotions(
    items,
    branch_id: int | None = None,
    *,
    session: Session | None = None,
) -> dict:
    """Validate every line and report, without raising on line failures."""
    session = get_session(session)
    items = _require_items(items)

    results = []
    for index, item in enumerate(items):
        raw = item if isinstance(item, dict) else {}
        entry = {
            "index": index,
            "product_id": raw.get("product_id"),
            "promotion_id": raw.get("promotion_id"),
        }
        try:
            entry.update(validate_promotion_at_checkout(item, branch_id, session=session))
            entry["error"] = None
        except PosError as exc:
            entry.update({"valid": False, "error": exc.message, "details": exc.details})
        results.append(entry)

    return {
        "all_valid": all(r["valid"] for r in results),
        "results": results,
    }


def preview_discount(
    promotion_id: int,
    unit_price_cents,
    quantity,
    branch_id: int | None = None,
    *,
    session: Session | None = None,
) -> dict:
    """What a specific promotion would do to a price/quantity, if it is usable here."""
    session = get_session(session)
    price = coerce_price_cents(unit_price_cents)
    qty = coerce_positive_int(quantity, "quantity")

    promo = session.get(Promotion, promotion_id)
    if promo is None:
        raise NotFoundError("Promotion not found")
    if not promo.is_active:
        raise BadRequestError(f"Promotion '{promo.name}' is not active")
    if not promo.is_available_in_branch(branch_id):
        raise BadRequestError(
            f"Promotion '{promo.name}' is not available in this branch",
            details={"promotion_id": promo.id, "branch_id": branch_id},
        )

    return calculate_discount(promo, price, qty).to_dict()
