# Overview: Flask API routes for branch stock reads, delta adjustments and low-stock alerts.

from flask import Blueprint, current_app, jsonify, request

from ..errors import EngineError, NotFound
from ..extensions import db
from ..models import Branch, Product
from ..services import inventory_service
from ..validation import coerce_int, coerce_optional_int, require_fields
from . import error_response, internal_error


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/stock")
def get_stock_route():
    """Query: branch_id, product_id."""
    try:
        require_fields(request.args, "branch_id", "product_id")
        branch_id = coerce_int(request.args["branch_id"], "branch_id")
        product_id = coerce_int(request.args["product_id"], "product_id")

        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found", details={"product_id": product_id})

        return jsonify({
            "branch_id": branch_id,
            "product_id": product_id,
            "stock": inventory_service.get_stock(branch_id, product_id),
            "inventory_activated": inventory_service.is_inventory_tracked(branch_id, product),
            "allow_negative_sale": product.allow_negative_sale,
        }), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to read stock")
        return internal_error()


@inventory_bp.post("/adjust")
def adjust_stock_route():
    """
    Additive stock delta (receipts, corrections).

    Body: {branch_id, product_id, delta}
    """
    try:
        data = request.get_json() or {}
        require_fields(data, "branch_id", "product_id", "delta")
        branch_id = coerce_int(data["branch_id"], "branch_id")
        product_id = coerce_int(data["product_id"], "product_id")
        delta = coerce_int(data["delta"], "delta")

        if db.session.get(Branch, branch_id) is None:
            raise NotFound("Branch not found", details={"branch_id": branch_id})
        if db.session.get(Product, product_id) is None:
            raise NotFound("Product not found", details={"product_id": product_id})

        try:
            stock = inventory_service.adjust_stock(branch_id, product_id, delta)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        return jsonify({"branch_id": branch_id, "product_id": product_id, "stock": stock}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return internal_error()


@inventory_bp.get("/low-stock")
def low_stock_route():
    """Query: branch_id?, threshold? (default LOW_STOCK_THRESHOLD)."""
    try:
        threshold = coerce_optional_int(request.args.get("threshold"), "threshold")
        if threshold is None:
            threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
        alerts = inventory_service.low_stock_alerts(
            threshold=threshold,
            branch_id=coerce_optional_int(request.args.get("branch_id"), "branch_id"),
        )
        return jsonify({"alerts": alerts, "threshold": threshold}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute low-stock alerts")
        return internal_error()
