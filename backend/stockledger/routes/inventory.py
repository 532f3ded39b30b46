# backend/stockledger/routes/inventory.py
"""
Inventory record API routes.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import InventoryError, error_response
from ..services import inventory_service


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("")
def list_inventory_route():
    """
    List inventory records.

    Query params:
    - store_id, category_id: int (optional)
    - stock_status: out_of_stock | low_stock | in_stock (optional)
    - search: product name / SKU / barcode / store name (optional)
    - page, per_page: pagination (default 10 per page, max 100)
    """
    try:
        result = inventory_service.list_inventory(
            store_id=request.args.get("store_id", type=int),
            category_id=request.args.get("category_id", type=int),
            stock_status=request.args.get("stock_status") or None,
            search=request.args.get("search") or None,
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("")
@require_actor
def create_inventory_route():
    """
    Register a product in a store with an opening quantity.

    Request body:
    {
        "store_id": int,
        "product_id": int,
        "quantity": int >= 0,
        "minimum_stock": int >= 0,
        "maximum_stock": int (optional, >= minimum_stock),
        "location": str (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        record = inventory_service.create_initial_stock(payload=payload, user_id=g.actor_id)
        return jsonify(record.to_dict()), 201
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create inventory record")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/low-stock")
def low_stock_route():
    """Records at or below minimum_stock, emptiest first."""
    try:
        records = inventory_service.list_low_stock(store_id=request.args.get("store_id", type=int))
        items = [record.to_dict() for record in records]
        return jsonify({"items": items, "count": len(items)}), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list low stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<int:record_id>")
def get_inventory_route(record_id: int):
    """Record detail with recent movements and costing summary."""
    try:
        return jsonify(inventory_service.get_record_detail(record_id)), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load inventory record")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.patch("/<int:record_id>")
@require_actor
def update_inventory_route(record_id: int):
    """
    Update thresholds and location.

    Request body (any subset): {"minimum_stock": int, "maximum_stock": int|null, "location": str|null}
    """
    payload = request.get_json(silent=True) or {}
    try:
        record = inventory_service.update_settings(record_id=record_id, payload=payload)
        return jsonify(record.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update inventory settings")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/<int:record_id>/adjust")
@require_actor
def quick_adjust_route(record_id: int):
    """
    Manual correction of one record.

    Request body:
    {
        "adjustment_type": "increase" | "decrease" | "set",
        "quantity": int >= 0,
        "reason": str
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        record = inventory_service.quick_adjust(
            record_id=record_id,
            mode=payload.get("adjustment_type"),
            quantity=payload.get("quantity"),
            reason=payload.get("reason"),
            user_id=g.actor_id,
        )
        return jsonify(record.to_dict()), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/sales")
@require_actor
def record_sale_route():
    """
    Deduct stock for a completed sale line.

    Request body: {"store_id": int, "product_id": int, "quantity": int, "sale_id": int, "notes": str}
    """
    payload = request.get_json(silent=True) or {}
    try:
        record = inventory_service.record_sale(
            store_id=payload.get("store_id"),
            product_id=payload.get("product_id"),
            quantity=payload.get("quantity"),
            sale_id=payload.get("sale_id"),
            notes=payload.get("notes"),
            user_id=g.actor_id,
        )
        return jsonify(record.to_dict()), 201
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record sale")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/returns")
@require_actor
def record_return_route():
    """
    Restock a returned item.

    Request body:
    {"store_id": int, "product_id": int, "quantity": int, "return_id": int,
     "condition": "good" | "damaged" | "defective", "notes": str}

    Damaged/defective returns are acknowledged without touching stock.
    """
    payload = request.get_json(silent=True) or {}
    try:
        record = inventory_service.record_return(
            store_id=payload.get("store_id"),
            product_id=payload.get("product_id"),
            quantity=payload.get("quantity"),
            return_id=payload.get("return_id"),
            condition=payload.get("condition") or "good",
            notes=payload.get("notes"),
            user_id=g.actor_id,
        )
        if record is None:
            return jsonify({"restocked": False, "inventory": None}), 200
        return jsonify({"restocked": True, "inventory": record.to_dict()}), 201
    except InventoryError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record return")
        return jsonify({"error": "Internal server error"}), 500
