# backend/stockledger/routes/purchase_orders.py
"""
Purchase order API routes.

Status flow: draft -> pending -> approved -> ordered -> partial_received -> received,
with rejected and cancelled as side exits.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import InventoryError, error_response
from ..services import purchase_order_service


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.get("")
def list_purchase_orders_route():
    """
    Query params: store_id, supplier_id, status, search (po number / supplier name), page, per_page.
    """
    try:
        result = purchase_order_service.list_purchase_orders(
            store_id=request.args.get("store_id", type=int),
            supplier_id=request.args.get("supplier_id", type=int),
            status=request.args.get("status") or None,
            search=request.args.get("search") or None,
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list purchase orders")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("")
@require_actor
def create_purchase_order_route():
    """
    Create a draft purchase order.

    Request body:
    {
        "store_id": int,
        "supplier_id": int,
        "order_date": "YYYY-MM-DD",
        "expected_date": "YYYY-MM-DD" (optional),
        "tax_amount": "0.00", "discount_amount": "0.00", "shipping_cost": "0.00",
        "notes": str,
        "items": [{"product_id": int, "quantity_ordered": int, "unit_cost": "10.00", "notes": str}]
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        po = purchase_order_service.create_purchase_order(payload=payload, user_id=g.actor_id)
        return jsonify(po.to_dict()), 201
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.get("/<int:po_id>")
def get_purchase_order_route(po_id: int):
    try:
        po = purchase_order_service.require_purchase_order(po_id)
        return jsonify(po.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.put("/<int:po_id>")
@require_actor
def update_purchase_order_route(po_id: int):
    """Replace header and lines. Only draft or pending orders."""
    payload = request.get_json(silent=True) or {}
    try:
        po = purchase_order_service.update_purchase_order(po_id=po_id, payload=payload)
        return jsonify(po.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.delete("/<int:po_id>")
@require_actor
def delete_purchase_order_route(po_id: int):
    """Only draft or cancelled orders."""
    try:
        purchase_order_service.delete_purchase_order(po_id=po_id)
        return jsonify({"deleted": True, "id": po_id}), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete purchase order")
        return jsonify({"error": "Internal server error"}), 500


def _transition_response(func, po_id: int, action: str):
    try:
        po = func(po_id=po_id)
        return jsonify(po.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to %s purchase order", action)
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("/<int:po_id>/submit")
@require_actor
def submit_purchase_order_route(po_id: int):
    return _transition_response(purchase_order_service.submit_purchase_order, po_id, "submit")


@purchase_orders_bp.post("/<int:po_id>/approve")
@require_actor
def approve_purchase_order_route(po_id: int):
    return _transition_response(purchase_order_service.approve_purchase_order, po_id, "approve")


@purchase_orders_bp.post("/<int:po_id>/reject")
@require_actor
def reject_purchase_order_route(po_id: int):
    return _transition_response(purchase_order_service.reject_purchase_order, po_id, "reject")


@purchase_orders_bp.post("/<int:po_id>/order")
@require_actor
def mark_ordered_route(po_id: int):
    return _transition_response(purchase_order_service.mark_ordered, po_id, "order")


@purchase_orders_bp.post("/<int:po_id>/cancel")
@require_actor
def cancel_purchase_order_route(po_id: int):
    return _transition_response(purchase_order_service.cancel_purchase_order, po_id, "cancel")


@purchase_orders_bp.post("/<int:po_id>/receive")
@require_actor
def receive_purchase_order_route(po_id: int):
    """
    Receive goods against an ordered or partially received order.

    Request body:
    {
        "received_date": "YYYY-MM-DD" (optional, defaults to today),
        "notes": str,
        "items": [{"item_id": int, "quantity_received": int}]
    }

    Each line is capped at its remaining quantity.
    """
    payload = request.get_json(silent=True) or {}
    try:
        po = purchase_order_service.receive_purchase_order(po_id=po_id, payload=payload, user_id=g.actor_id)
        return jsonify(po.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.get("/<int:po_id>/history")
def purchase_order_history_route(po_id: int):
    try:
        return jsonify(purchase_order_service.get_tracking(po_id)), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load purchase order history")
        return jsonify({"error": "Internal server error"}), 500
