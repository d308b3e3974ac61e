# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

# backend/tillpoint/routes/returns.py
"""
Return Processing API Routes

WHY: Refund part or all of a completed sale via REST.

DESIGN:
- One POST creates the return and updates the sale in the same transaction
- /validate is a dry run (errors + warnings, never 4xx for business rules)
- PATCH/DELETE are administrative corrections; the sale refund state is
  always re-derived afterwards
"""

from flask import Blueprint, current_app, jsonify, request

from ..services import return_service
from ..validation import PosError, coerce_positive_int


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


# =============================================================================
# RETURN CREATION
# =============================================================================

@returns_bp.post("")
def create_return_route():
    """
    Create a return.

    Request body:
    {
        "sale_id": 123,
        "amount_cents": 500,
        "reason": "defective",  (optional)
        "processed_by": "jane"  (optional)
    }

    Returns:
        201: {"return": ..., "sale": ...}
        400: Invalid input or amount above remaining refundable
        404: Sale not found
    """
    data = request.get_json(silent=True) or {}
    try:
        sale_id = coerce_positive_int(data.get("sale_id"), "sale_id")
        return_doc = return_service.create_return(
            sale_id,
            data.get("amount_cents"),
            reason=data.get("reason"),
            processed_by=data.get("processed_by"),
        )
        return jsonify({"return": return_doc.to_dict(), "sale": return_doc.sale.to_dict()}), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/validate")
def validate_return_route():
    data = request.get_json(silent=True) or {}
    try:
        sale_id = coerce_positive_int(data.get("sale_id"), "sale_id")
        result = return_service.validate_return(sale_id, data.get("amount_cents"), data.get("reason"))
        return jsonify(result)
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to validate return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CORRECTIONS
# =============================================================================

@returns_bp.patch("/<int:return_id>")
def update_return_route(return_id: int):
    data = request.get_json(silent=True) or {}
    kwargs = {key: data[key] for key in ("reason", "processed_by") if key in data}
    try:
        return_doc = return_service.update_return(
            return_id, amount_cents=data.get("amount_cents"), **kwargs
        )
        return jsonify({"return": return_doc.to_dict(), "sale": return_doc.sale.to_dict()})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.delete("/<int:return_id>")
def delete_return_route(return_id: int):
    try:
        sale = return_service.delete_return(return_id)
        return jsonify({"deleted": return_id, "sale": sale.to_dict()})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@returns_bp.get("/sale/<int:sale_id>")
def get_sale_returns_route(sale_id: int):
    try:
        returns = return_service.get_sale_returns(sale_id)
        return jsonify({"sale_id": sale_id, "returns": [r.to_dict() for r in returns]})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load returns for sale")
        return jsonify({"error": "Internal server error"}), 500
