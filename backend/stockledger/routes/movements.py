# backend/stockledger/routes/movements.py
"""
Stock movement ledger API routes (read-only).
"""
from flask import Blueprint, current_app, jsonify, request

from ..errors import InventoryError, ValidationError, error_response
from ..services import ledger_service


movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")


@movements_bp.get("")
def list_movements_route():
    """
    Movement history, newest first.

    Query params:
    - store_id, product_id: int (optional)
    - type: movement type (optional)
    - start_date, end_date: YYYY-MM-DD, inclusive (optional)
    - page, per_page: pagination
    """
    try:
        result = ledger_service.list_movements(
            store_id=request.args.get("store_id", type=int),
            product_id=request.args.get("product_id", type=int),
            movement_type=request.args.get("type") or None,
            reference_type=request.args.get("reference_type") or None,
            reference_id=request.args.get("reference_id", type=int),
            start_date=request.args.get("start_date") or None,
            end_date=request.args.get("end_date") or None,
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.get("/verify")
def verify_route():
    """
    Verify the movement chain against inventory records.

    With store_id and product_id: one key. With only store_id: every key in
    the store. With neither: every key.
    """
    store_id = request.args.get("store_id", type=int)
    product_id = request.args.get("product_id", type=int)
    try:
        if product_id is not None:
            if store_id is None:
                raise ValidationError("store_id is required with product_id")
            return jsonify(ledger_service.verify_chain(store_id, product_id)), 200

        results = ledger_service.verify_all(store_id=store_id)
        inconsistent = [r for r in results if not r["consistent"]]
        return jsonify({
            "checked": len(results),
            "inconsistent": len(inconsistent),
            "consistent": not inconsistent,
            "results": inconsistent,
        }), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to verify ledger")
        return jsonify({"error": "Internal server error"}), 500
