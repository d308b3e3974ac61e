from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..services import promotions_service
from ..validation import PosError

promotions_bp = Blueprint("promotions", __name__, url_prefix="/api/promotions")


@promotions_bp.route("", methods=["GET"])
def list_promotions():
    branch_id = request.args.get("branch_id", type=int)
    active_only = request.args.get("active_only", "false").lower() == "true"
    promo_type = request.args.get("promo_type")
    try:
        promos = promotions_service.list_promotions(
            active_only=active_only, branch_id=branch_id, promo_type=promo_type
        )
        return jsonify({"promotions": [p.to_dict() for p in promos]})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list promotions")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.route("/<int:promo_id>", methods=["GET"])
def get_promotion(promo_id: int):
    try:
        promo = promotions_service.get_promotion(promo_id)
        return jsonify({"promotion": promo.to_dict()})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load promotion")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.route("", methods=["POST"])
def create_promotion():
    data = request.get_json(silent=True) or {}
    try:
        promo = promotions_service.create_promotion(data)
        current_app.logger.info("Promotion %s created (%s)", promo.id, promo.promo_type)
        return jsonify({"promotion": promo.to_dict()}), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create promotion")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.route("/<int:promo_id>", methods=["PATCH"])
def update_promotion(promo_id: int):
    data = request.get_json(silent=True) or {}
    try:
        promo = promotions_service.update_promotion(promo_id, data)
        return jsonify({"promotion": promo.to_dict()})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update promotion")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.route("/<int:promo_id>/<any(products, categories, branches):target>", methods=["PUT"])
def set_promotion_targets(promo_id: int, target: str):
    """
    Replace assignments.

    Request body: {"ids": [1, 2, 3]}
    """
    data = request.get_json(silent=True) or {}
    try:
        promo = promotions_service.set_promotion_targets(promo_id, target, data.get("ids"))
        return jsonify({"promotion": promo.to_dict()})
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to assign promotion %s", target)
        return jsonify({"error": "Internal server error"}), 500
