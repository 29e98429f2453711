# Overview: Flask API routes for store credits issued by approved returns.

# backend/shopledger/routes/store_credits.py

from flask import Blueprint, request, jsonify, current_app

from ..enums import StoreCreditStatus
from ..services import return_service
from ..services.return_service import ReturnError
from ..validation import NotFoundError, ValidationError, require_fields, require_payload


store_credits_bp = Blueprint("store_credits", __name__, url_prefix="/api/store-credits")


@store_credits_bp.get("/store/<int:store_id>")
def list_store_credits_route(store_id: int):
    try:
        status = request.args.get("status")
        if status:
            status = StoreCreditStatus.parse(status, "status")

        credits = return_service.list_store_credits(store_id, status=status or None)
        return jsonify({"store_credits": [c.to_dict() for c in credits]}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@store_credits_bp.post("/<int:credit_id>/redeem")
def redeem_store_credit_route(credit_id: int):
    """
    Spend part or all of a store credit.

    Request body: {"amount_cents": 1500}

    Returns:
        200: Updated store credit
        400: Invalid amount
        404: Store credit not found
        409: Credit not active, expired or balance too low
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, ["amount_cents"])

        credit = return_service.redeem_store_credit(credit_id, data["amount_cents"])
        return jsonify({"store_credit": credit.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ReturnError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to redeem store credit")
        return jsonify({"error": "Internal server error"}), 500
