# backend/stockledger/routes/transfers.py
"""
Stock transfer API routes.

Status flow: draft -> pending -> in_transit -> completed, cancel from draft or pending.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import InventoryError, error_response
from ..services import transfer_service


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/stock-transfers")


@transfers_bp.get("")
def list_transfers_route():
    """
    Query params: from_store_id, to_store_id, status, search (transfer number / notes), page, per_page.
    """
    try:
        result = transfer_service.list_transfers(
            from_store_id=request.args.get("from_store_id", type=int),
            to_store_id=request.args.get("to_store_id", type=int),
            status=request.args.get("status") or None,
            search=request.args.get("search") or None,
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock transfers")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.post("")
@require_actor
def create_transfer_route():
    """
    Create a draft transfer.

    Request body:
    {
        "from_store_id": int,
        "to_store_id": int,
        "transfer_date": "YYYY-MM-DD",
        "notes": str,
        "items": [{"product_id": int, "quantity_requested": int, "unit_cost": "1.00" (optional)}]
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        transfer = transfer_service.create_transfer(payload=payload, user_id=g.actor_id)
        return jsonify(transfer.to_dict()), 201
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create stock transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.get("/<int:transfer_id>")
def get_transfer_route(transfer_id: int):
    try:
        transfer = transfer_service.require_transfer(transfer_id)
        return jsonify(transfer.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load stock transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.put("/<int:transfer_id>")
@require_actor
def update_transfer_route(transfer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        transfer = transfer_service.update_transfer(transfer_id=transfer_id, payload=payload)
        return jsonify(transfer.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update stock transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.delete("/<int:transfer_id>")
@require_actor
def delete_transfer_route(transfer_id: int):
    try:
        transfer_service.delete_transfer(transfer_id=transfer_id)
        return jsonify({"deleted": True, "id": transfer_id}), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete stock transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.post("/<int:transfer_id>/submit")
@require_actor
def submit_transfer_route(transfer_id: int):
    try:
        transfer = transfer_service.submit_transfer(transfer_id=transfer_id)
        return jsonify(transfer.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to submit stock transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.post("/<int:transfer_id>/approve")
@require_actor
def approve_transfer_route(transfer_id: int):
    try:
        transfer = transfer_service.approve_transfer(transfer_id=transfer_id, user_id=g.actor_id)
        return jsonify(transfer.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve stock transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.post("/<int:transfer_id>/ship")
@require_actor
def ship_transfer_route(transfer_id: int):
    """
    Ship from the source store.

    Optional body: {"items": [{"item_id": int, "quantity_shipped": int}]}
    Lines not listed ship their requested quantity.
    """
    payload = request.get_json(silent=True) or {}
    try:
        transfer = transfer_service.ship_transfer(transfer_id=transfer_id, user_id=g.actor_id, payload=payload)
        return jsonify(transfer.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to ship stock transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.post("/<int:transfer_id>/receive")
@require_actor
def receive_transfer_route(transfer_id: int):
    """
    Receive at the destination store.

    Optional body: {"items": [{"item_id": int, "quantity_received": int}]}
    Lines not listed receive their shipped quantity.
    """
    payload = request.get_json(silent=True) or {}
    try:
        transfer = transfer_service.receive_transfer(transfer_id=transfer_id, user_id=g.actor_id, payload=payload)
        return jsonify(transfer.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive stock transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.post("/<int:transfer_id>/cancel")
@require_actor
def cancel_transfer_route(transfer_id: int):
    """Optional body: {"reason": str}"""
    payload = request.get_json(silent=True) or {}
    try:
        transfer = transfer_service.cancel_transfer(transfer_id=transfer_id, reason=payload.get("reason"))
        return jsonify(transfer.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel stock transfer")
        return jsonify({"error": "Internal server error"}), 500
