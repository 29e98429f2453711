# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

# backend/shopledger/routes/returns.py
"""
Return Processing API Routes

DESIGN:
- Staff open returns against a sale code (status: PENDING)
- A manager reviews a batch: approve settles every return, reject closes them
- A batch review is all-or-nothing
- Return policy per store (resolutions allowed, window, restocking fee)
"""

from flask import Blueprint, request, jsonify, current_app

from ..enums import ReturnStatus
from ..services import return_service
from ..services.inventory_service import InsufficientStockError
from ..services.return_service import ReturnError
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    require_fields,
    require_payload,
)


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


# =============================================================================
# RETURN CREATION
# =============================================================================

@returns_bp.post("/")
def create_returns_route():
    """
    Open returns against a past sale (status: PENDING).

    Request body:
    {
        "store_id": 1,
        "sale_code": "SALE-20260211-AB12CD34",
        "staff_id": 7,  (optional)
        "items": [
            {
                "sale_item_id": 42,
                "reason": "Wrong size",
                "resolution": "exchange",
                "quantity": 1,  (optional, default: sold quantity)
                "is_defective": false,  (optional, inferred from reason)
                "exchanges": [{"new_variant_id": 11}]  (exchange only)
            }
        ]
    }

    Returns:
        201: {"returns": [...]}
        400: Invalid input
        404: Sale, sale item or replacement variant not found
        409: Policy violation or nothing left to return
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, ["store_id", "sale_code", "items"])

        returns = return_service.create_returns(
            store_id=data["store_id"],
            sale_code=data["sale_code"],
            items=data["items"],
            staff_id=data.get("staff_id"),
        )

        return jsonify({"returns": [r.to_dict(include_dependents=True) for r in returns]}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ReturnError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create returns")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REVIEW
# =============================================================================

@returns_bp.post("/review")
def review_returns_route():
    """
    Approve or reject a batch of PENDING returns.

    Request body:
    {
        "return_ids": [1, 2],
        "approve": true,
        "notes": "Inspected, packaging intact",  (optional)
        "manager_id": 3,  (optional)
        "refund_method": "cash",  (optional, default: sale payment method)
        "store_id": 1  (optional, restricts the batch to one store)
    }

    Returns:
        200: {"results": [...], "warnings": [...]}
        404: Return, sale or replacement inventory not found
        409: Illegal transition or replacement out of stock (nothing applied)
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, ["return_ids", "approve"])

        results, warnings = return_service.review_returns(
            return_ids=data["return_ids"],
            approve=data["approve"],
            notes=data.get("notes"),
            manager_id=data.get("manager_id"),
            refund_method=data.get("refund_method"),
            store_id=data.get("store_id"),
        )

        return jsonify({"results": results, "warnings": warnings}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InsufficientStockError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except (ReturnError, ConflictError) as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to review returns")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# READS
# =============================================================================

@returns_bp.get("/<int:return_id>")
def get_return_route(return_id: int):
    try:
        ret = return_service.get_return(return_id)
        return jsonify({"return": ret.to_dict(include_dependents=True)}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@returns_bp.get("/store/<int:store_id>")
def list_returns_route(store_id: int):
    try:
        status = request.args.get("status")
        if status:
            status = ReturnStatus.parse(status, "status")

        returns = return_service.list_returns(store_id, status=status or None)
        return jsonify({"returns": [r.to_dict() for r in returns]}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


# =============================================================================
# RETURN POLICY
# =============================================================================

@returns_bp.get("/policy/<int:store_id>")
def get_policy_route(store_id: int):
    try:
        policy = return_service.get_return_policy(store_id)
        return jsonify({"policy": policy.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@returns_bp.put("/policy/<int:store_id>")
def upsert_policy_route(store_id: int):
    """
    Create or update the store's return policy.

    Request body (all optional):
    {
        "days_allowed": 14,
        "allow_refund": true,
        "allow_exchange": true,
        "allow_store_credit": false,
        "restocking_fee_bps": 1000,
        "notes": "Sale items exchange only"
    }
    """
    try:
        data = request.get_json(silent=True)
        policy, created = return_service.upsert_return_policy(store_id, data)
        return jsonify({"policy": policy.to_dict()}), 201 if created else 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to save return policy")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.delete("/policy/<int:store_id>")
def delete_policy_route(store_id: int):
    try:
        return_service.delete_return_policy(store_id)
        return jsonify({"deleted": True}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete return policy")
        return jsonify({"error": "Internal server error"}), 500
