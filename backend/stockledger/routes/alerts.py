# backend/stockledger/routes/alerts.py
"""
Low-stock alert API routes.
"""
from flask import Blueprint, Response, current_app, jsonify, request

from ..decorators import require_actor
from ..errors import InventoryError, error_response
from ..services import alert_service


alerts_bp = Blueprint("alerts", __name__, url_prefix="/api/alerts")


def _filters() -> dict:
    return {
        "store_id": request.args.get("store_id", type=int),
        "category_id": request.args.get("category_id", type=int),
        "search": request.args.get("search") or None,
        "alert_level": request.args.get("alert_level") or None,
    }


@alerts_bp.get("")
def list_alerts_route():
    """
    Records at or below minimum stock.

    Query params:
    - store_id, category_id: int (optional)
    - search: product name / SKU / store name (optional)
    - alert_level: critical | warning | low (optional; low widens the band)
    - page, per_page
    """
    try:
        result = alert_service.list_alerts(
            **_filters(),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock alerts")
        return jsonify({"error": "Internal server error"}), 500


@alerts_bp.get("/counts")
def alert_counts_route():
    """Badge counts for navigation."""
    try:
        return jsonify(alert_service.alert_counts()), 200
    except Exception:
        current_app.logger.exception("Failed to count stock alerts")
        return jsonify({"error": "Internal server error"}), 500


@alerts_bp.get("/stats")
def alert_stats_route():
    try:
        return jsonify(alert_service.alert_stats()), 200
    except Exception:
        current_app.logger.exception("Failed to compute stock alert stats")
        return jsonify({"error": "Internal server error"}), 500


@alerts_bp.get("/export")
def export_alerts_route():
    """Download the filtered alert feed as CSV."""
    try:
        filename, body = alert_service.export_alerts_csv(**_filters())
        return Response(
            body,
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to export stock alerts")
        return jsonify({"error": "Internal server error"}), 500


@alerts_bp.put("/minimum-stock")
@require_actor
def update_minimum_stock_route():
    """
    Request body: {"inventory_id": int, "minimum_stock": int >= 0}
    """
    payload = request.get_json(silent=True) or {}
    try:
        record = alert_service.update_minimum_stock(
            record_id=payload.get("inventory_id"),
            minimum_stock=payload.get("minimum_stock"),
        )
        return jsonify(alert_service.serialize_alert(record)), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update minimum stock")
        return jsonify({"error": "Internal server error"}), 500


@alerts_bp.put("/minimum-stock/bulk")
@require_actor
def bulk_update_minimum_stock_route():
    """
    Request body: {"updates": [{"inventory_id": int, "minimum_stock": int >= 0}]}

    All updates apply or none do.
    """
    payload = request.get_json(silent=True) or {}
    try:
        records = alert_service.bulk_update_minimum_stock(updates=payload.get("updates"))
        return jsonify({"updated": len(records), "items": [r.to_dict() for r in records]}), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to bulk update minimum stock")
        return jsonify({"error": "Internal server error"}), 500
