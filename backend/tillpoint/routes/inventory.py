# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/tillpoint/routes/inventory.py
from flask import Blueprint, current_app, jsonify, request

from ..services import inventory_service
from ..validation import PosError, coerce_positive_int, require_fields

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/movements")
def record_movement_route():
    """
    Record a stock movement.

    Request body:
    {
        "product_id": 5,
        "branch_id": 1,
        "change": 24,
        "reason": "purchase",
        "note": "Weekly delivery"  (optional)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "product_id", "branch_id", "change", "reason")
        movement = inventory_service.record_stock_movement(
            coerce_positive_int(data["product_id"], "product_id"),
            coerce_positive_int(data["branch_id"], "branch_id"),
            data["change"],
            data["reason"],
            note=data.get("note"),
        )
        return jsonify({"movement": movement.to_dict()}), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.patch("/movements/<int:movement_id>")
def update_movement_route(movement_id: int):
    data = request.get_json(silent=True) or {}
    try:
        movement = inventory_service.update_stock_movement(
            movement_id, change=data.get("change"), reason=data.get("reason")
        )
        return jsonify({"movement": movement.to_dict()})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update stock movement")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.delete("/movements/<int:movement_id>")
def delete_movement_route(movement_id: int):
    try:
        inventory_service.delete_stock_movement(movement_id)
        return jsonify({"deleted": movement_id})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete stock movement")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/reconcile")
def reconcile_stock_route():
    """
    Set stock to a physical count.

    Request body: {"product_id": 5, "branch_id": 1, "actual_stock": 42, "note": "..."}
    """
    try:
        data = require_fields(request.get_json(silent=True), "product_id", "branch_id", "actual_stock")
        result = inventory_service.reconcile_stock(
            coerce_positive_int(data["product_id"], "product_id"),
            coerce_positive_int(data["branch_id"], "branch_id"),
            data["actual_stock"],
            note=data.get("note"),
        )
        return jsonify(result)
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reconcile stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transfers")
def transfer_stock_route():
    """
    Move stock to another branch.

    Request body: {"product_id": 5, "to_branch_id": 2, "quantity": 4, "note": "..."}

    Returns:
        201: both movements plus the source/destination product ids
        400: bad quantity, same branch, insufficient stock
        404: product or destination branch not found
    """
    try:
        data = require_fields(request.get_json(silent=True), "product_id", "to_branch_id", "quantity")
        result = inventory_service.transfer_stock(
            coerce_positive_int(data["product_id"], "product_id"),
            coerce_positive_int(data["to_branch_id"], "to_branch_id"),
            data["quantity"],
            note=data.get("note"),
        )
        return jsonify(result), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products/<int:product_id>/reconciliation")
def product_reconciliation_route(product_id: int):
    try:
        return jsonify(inventory_service.get_stock_reconciliation(product_id))
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reconcile product stock")
        return jsonify({"error": "Internal server error"}), 500
