# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/tillpoint/routes/sales.py
from flask import Blueprint, current_app, jsonify, request

from ..services import sales_service
from ..validation import PosError, coerce_positive_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _optional_id(data: dict, field: str) -> int | None:
    value = data.get(field)
    if value is None:
        return None
    return coerce_positive_int(value, field)


@sales_bp.post("")
def checkout_route():
    """
    Complete a sale in one transaction.

    Request body:
    {
        "branch_id": 1,
        "cashier_id": 2,  (optional)
        "customer_id": 3,  (optional)
        "lines": [
            {"product_id": 5, "quantity": 3, "unit_price_cents": 1000,
             "discount_cents": 1000, "tax_cents": 0, "promotion_id": 7}
        ],
        "payments": [{"method": "CASH", "amount_cents": 2000}],
        "loyalty_points_earned": 20,  (optional)
        "loyalty_points_used": 0,  (optional)
        "metadata": {...}  (optional)
    }

    Returns:
        201: Sale with lines and payments
        400: Invalid input, insufficient stock, stale promotion
        404: Branch, cashier, customer or product not found
        409: Receipt number conflict
    """
    data = request.get_json(silent=True) or {}
    try:
        branch_id = coerce_positive_int(data.get("branch_id"), "branch_id")
        sale = sales_service.checkout(
            branch_id,
            data.get("lines"),
            cashier_id=_optional_id(data, "cashier_id"),
            customer_id=_optional_id(data, "customer_id"),
            payments=data.get("payments"),
            loyalty_points_earned=data.get("loyalty_points_earned", 0),
            loyalty_points_used=data.get("loyalty_points_used", 0),
            metadata=data.get("metadata"),
        )
        return jsonify({"sale": sale.to_dict(include_children=True)}), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Checkout failed")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict(include_children=True)})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/receipt/<receipt_number>")
def get_sale_by_receipt_route(receipt_number: str):
    try:
        sale = sales_service.get_sale_by_receipt(receipt_number)
        return jsonify({"sale": sale.to_dict(include_children=True)})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load sale by receipt")
        return jsonify({"error": "Internal server error"}), 500
