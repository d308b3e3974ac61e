# Overview: Flask API routes for cart pricing and promotion checks; parses input and returns JSON responses.

# backend/tillpoint/routes/pricing.py
"""
Pricing API Routes

DESIGN:
- Cart pricing never fails because of one bad line; the error travels on
  the line (promotion_error) and the rest of the cart is priced
- Validation endpoint is the checkout check without the side effects
"""

from flask import Blueprint, current_app, jsonify, request

from ..services import pricing_service, promotions_service
from ..services.discount_service import calculate_savings
from ..validation import PosError


pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")


@pricing_bp.post("/cart")
def price_cart_route():
    """
    Price a cart.

    Request body:
    {
        "branch_id": 1,  (optional)
        "items": [{"product_id": 5, "unit_price_cents": 1000, "qty": 3}]
    }

    Returns:
        200: {"items": [...], "subtotal_cents", "discount_cents", "total_cents"}
        400: items missing, not a list, or empty
    """
    data = request.get_json(silent=True) or {}
    try:
        lines = pricing_service.price_cart(data.get("items"), data.get("branch_id"))
        return jsonify({"items": lines, **pricing_service.cart_totals(lines)})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to price cart")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.post("/validate")
def validate_cart_route():
    """Re-check submitted line discounts against live promotions."""
    data = request.get_json(silent=True) or {}
    try:
        result = pricing_service.validate_cart_promotions(data.get("items"), data.get("branch_id"))
        return jsonify(result)
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to validate cart promotions")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.get("/products/<int:product_id>/promotions")
def product_promotions_route(product_id: int):
    """
    Applicable promotions for a product, in precedence order.

    Query params: branch_id, and optionally unit_price_cents + qty to include
    the savings each promotion would give.
    """
    branch_id = request.args.get("branch_id", type=int)
    unit_price_cents = request.args.get("unit_price_cents", type=int)
    qty = request.args.get("qty", type=int)
    try:
        promos = promotions_service.resolve_promotions(product_id, branch_id)
        payload = []
        for promo in promos:
            entry = promo.to_dict()
            if unit_price_cents and qty:
                entry["savings_cents"] = calculate_savings(promo, unit_price_cents, qty)
            payload.append(entry)
        return jsonify({"product_id": product_id, "promotions": payload})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to resolve product promotions")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.post("/promotions/<int:promotion_id>/preview")
def preview_discount_route(promotion_id: int):
    """
    Preview one promotion on a price/quantity.

    Request body: {"unit_price_cents": 1000, "quantity": 3, "branch_id": 1}
    """
    data = request.get_json(silent=True) or {}
    try:
        result = pricing_service.preview_discount(
            promotion_id,
            data.get("unit_price_cents"),
            data.get("quantity", data.get("qty")),
            data.get("branch_id"),
        )
        return jsonify(result)
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to preview promotion discount")
        return jsonify({"error": "Internal server error"}), 500
