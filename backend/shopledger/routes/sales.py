# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/shopledger/routes/sales.py

from flask import Blueprint, request, jsonify, current_app

from ..services import sales_service
from ..services.inventory_service import InsufficientStockError
from ..services.sales_service import SaleError
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    require_fields,
    require_payload,
)


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/")
def create_sale_route():
    """
    Record a sale and deduct stock for every line.

    Request body:
    {
        "store_id": 1,
        "business_id": 1,
        "idempotency_key": "till-3-000193",
        "items": [
            {"variant_id": 10, "quantity": 2, "unit_price_cents": 1500, "discount_cents": 0}
        ],
        "customer": {"name": "Ada", "email": "ada@example.com", "phone": null},  (optional)
        "payment_method": "card",  (optional, default: cash)
        "receipt": {"needed": true, "channel": "email"}  (optional)
    }

    Returns:
        201: Sale created
        200: Same request replayed ("replayed": true)
        400: Invalid input
        404: Store, variant or inventory not found
        409: Insufficient stock or idempotency key reused
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, ["store_id", "business_id", "items", "idempotency_key"])

        result = sales_service.create_sale(
            store_id=data["store_id"],
            business_id=data["business_id"],
            items=data["items"],
            idempotency_key=data["idempotency_key"],
            customer=data.get("customer"),
            payment_method=data.get("payment_method"),
            payment_status=data.get("payment_status"),
            receipt=data.get("receipt"),
            created_by=data.get("created_by"),
        )

        return jsonify(result.to_dict()), 200 if result.replayed else 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except SaleError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InsufficientStockError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@sales_bp.get("/store/<int:store_id>")
def list_sales_route(store_id: int):
    try:
        limit = coerce_int(request.args.get("limit", "100"), "limit")
        if limit <= 0:
            raise ValidationError("limit must be > 0")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    sales = sales_service.list_sales(store_id, limit=limit)
    return jsonify({"sales": [s.to_dict() for s in sales]}), 200
