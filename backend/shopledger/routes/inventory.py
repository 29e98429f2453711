# Overview: Flask API routes for stock ledger operations; parses input and returns JSON responses.

# backend/shopledger/routes/inventory.py
"""
Inventory Ledger API Routes

DESIGN:
- Every quantity change goes through the adjustment engine (adjust/restock)
- Writes carry an idempotency_key; repeating a request replays its outcome
- Alert delivery problems come back as "warnings", never as errors
"""

from flask import Blueprint, request, jsonify, current_app

from ..enums import AlertStatus
from ..services import alert_service, inventory_service
from ..services.inventory_service import InsufficientStockError
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    require_fields,
    require_payload,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


# =============================================================================
# ADJUSTMENTS
# =============================================================================

@inventory_bp.post("/adjust")
def adjust_route():
    """
    Apply one signed quantity change.

    Request body:
    {
        "inventory_id": 1,
        "change": -3,
        "type": "deduct",  (restock or deduct; the other types are pipeline-only)
        "idempotency_key": "count-2026-02-11-001",  (no sale:, restock:, return: or exchange: prefix)
        "reason": "damaged in storage",  (optional)
        "reference": "COUNT-17",  (optional)
        "actor_id": 5  (optional)
    }

    Returns:
        200: {new_quantity, alert_created, replayed, log, warnings}
        400: Invalid input
        404: Inventory not found
        409: Insufficient stock or idempotency conflict
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, ["inventory_id", "change", "type", "idempotency_key"])

        result, warnings = inventory_service.apply_adjustment(
            inventory_id=coerce_int(data["inventory_id"], "inventory_id"),
            change=data["change"],
            type=data["type"],
            idempotency_key=data["idempotency_key"],
            reason=data.get("reason"),
            reference=data.get("reference"),
            actor_id=data.get("actor_id"),
        )

        body = result.to_dict()
        body["warnings"] = warnings
        return jsonify(body), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InsufficientStockError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to apply inventory adjustment")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/restock")
def restock_route():
    """
    Restock several variants of one store in a single transaction.

    Request body:
    {
        "store_id": 1,
        "idempotency_key": "po-4411",
        "reference": "PO-4411",  (optional)
        "actor_id": 5,  (optional)
        "items": [
            {"variant_id": 10, "quantity": 24, "low_stock_threshold": 5}
        ]
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, ["store_id", "items", "idempotency_key"])

        results, warnings = inventory_service.restock_variants(
            store_id=coerce_int(data["store_id"], "store_id"),
            items=data["items"],
            idempotency_key=data["idempotency_key"],
            reference=data.get("reference"),
            actor_id=data.get("actor_id"),
        )

        return jsonify({
            "results": [r.to_dict() for r in results],
            "warnings": warnings,
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InsufficientStockError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to restock variants")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.patch("/<int:inventory_id>/threshold")
def threshold_route(inventory_id: int):
    """Request body: {"low_stock_threshold": 5}"""
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, ["low_stock_threshold"])

        inventory, warnings = inventory_service.set_low_stock_threshold(
            inventory_id, data["low_stock_threshold"]
        )
        return jsonify({"inventory": inventory.to_dict(), "warnings": warnings}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update low stock threshold")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# READS
# =============================================================================

@inventory_bp.get("/store/<int:store_id>")
def list_store_inventory_route(store_id: int):
    items = inventory_service.list_store_inventory(store_id)
    return jsonify({"inventory": [i.to_dict() for i in items]}), 200


@inventory_bp.get("/store/<int:store_id>/low-stock")
def low_stock_route(store_id: int):
    items = inventory_service.list_low_stock(store_id)
    return jsonify({"inventory": [i.to_dict() for i in items]}), 200


@inventory_bp.get("/<int:inventory_id>/logs")
def inventory_logs_route(inventory_id: int):
    try:
        limit = coerce_int(request.args.get("limit", "200"), "limit")
        if limit <= 0:
            raise ValidationError("limit must be > 0")

        logs = inventory_service.list_inventory_logs(inventory_id=inventory_id, limit=limit)
        return jsonify({"logs": [entry.to_dict() for entry in logs]}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


# =============================================================================
# ALERTS
# =============================================================================

@inventory_bp.get("/store/<int:store_id>/alerts")
def list_alerts_route(store_id: int):
    try:
        status = request.args.get("status")
        if status:
            status = AlertStatus.parse(status, "status")

        alerts = alert_service.list_alerts(store_id, status=status or None)
        return jsonify({"alerts": [a.to_dict() for a in alerts]}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@inventory_bp.post("/alerts/<int:alert_id>/acknowledge")
def acknowledge_alert_route(alert_id: int):
    """Request body (optional): {"actor_id": 5}"""
    try:
        data = require_payload(request.get_json(silent=True))
        actor_id = data.get("actor_id")
        if actor_id is not None:
            actor_id = coerce_int(actor_id, "actor_id")

        alert = alert_service.acknowledge_alert(alert_id, actor_id)
        return jsonify({"alert": alert.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to acknowledge stock alert")
        return jsonify({"error": "Internal server error"}), 500
