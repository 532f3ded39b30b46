# backend/stockledger/routes/adjustments.py
"""
Stock adjustment API routes.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import InventoryError, error_response
from ..models.adjustments import ADJUSTMENT_REASONS
from ..services import adjustment_service


adjustments_bp = Blueprint("adjustments", __name__, url_prefix="/api/stock-adjustments")


@adjustments_bp.get("")
def list_adjustments_route():
    """
    Query params: store_id, status, adjustment_type, reason, search (number / notes), page, per_page.
    """
    try:
        result = adjustment_service.list_adjustments(
            store_id=request.args.get("store_id", type=int),
            status=request.args.get("status") or None,
            adjustment_type=request.args.get("adjustment_type") or None,
            reason=request.args.get("reason") or None,
            search=request.args.get("search") or None,
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock adjustments")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.get("/reasons")
def adjustment_reasons_route():
    return jsonify({"reasons": [{"value": k, "label": v} for k, v in ADJUSTMENT_REASONS.items()]}), 200


@adjustments_bp.post("")
@require_actor
def create_adjustment_route():
    """
    Create a draft adjustment.

    Request body:
    {
        "store_id": int,
        "adjustment_date": "YYYY-MM-DD",
        "type": "increase" | "decrease",
        "reason": one of the reason codes,
        "notes": str,
        "items": [{"product_id": int, "adjusted_quantity": int, "notes": str}]
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        adjustment = adjustment_service.create_adjustment(payload=payload, user_id=g.actor_id)
        return jsonify(adjustment.to_dict()), 201
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.get("/<int:adjustment_id>")
def get_adjustment_route(adjustment_id: int):
    try:
        adjustment = adjustment_service.require_adjustment(adjustment_id)
        return jsonify(adjustment.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.put("/<int:adjustment_id>")
@require_actor
def update_adjustment_route(adjustment_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        adjustment = adjustment_service.update_adjustment(adjustment_id=adjustment_id, payload=payload)
        return jsonify(adjustment.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.delete("/<int:adjustment_id>")
@require_actor
def delete_adjustment_route(adjustment_id: int):
    try:
        adjustment_service.delete_adjustment(adjustment_id=adjustment_id)
        return jsonify({"deleted": True, "id": adjustment_id}), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.post("/<int:adjustment_id>/approve")
@require_actor
def approve_adjustment_route(adjustment_id: int):
    """
    Apply the adjustment to stock.

    Fails with 409 if any line's stock changed since the draft was saved.
    """
    try:
        adjustment = adjustment_service.approve_adjustment(adjustment_id=adjustment_id, user_id=g.actor_id)
        return jsonify(adjustment.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.post("/<int:adjustment_id>/reject")
@require_actor
def reject_adjustment_route(adjustment_id: int):
    try:
        adjustment = adjustment_service.reject_adjustment(adjustment_id=adjustment_id, user_id=g.actor_id)
        return jsonify(adjustment.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject stock adjustment")
        return jsonify({"error": "Internal server error"}), 500
