# Overview: Flask API routes for the sale lifecycle and document emission; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..errors import EngineError, ValidationError
from ..services import emission_service, sales_service
from ..services.sales_service import UNSET
from ..validation import coerce_int, coerce_optional_int
from mesapos.time_utils import parse_iso_datetime
from . import error_response, internal_error


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _sale_payload(sale_id: int):
    return {"sale": sales_service.get_sale(sale_id)}


@sales_bp.post("/")
def create_sale_route():
    """
    Open a sale.

    Body: {branch_id, table_id?, staff_id?, notes?, items?: [{product_id, quantity, unit_price?, product_name?, notes?}]}
    """
    try:
        data = request.get_json() or {}
        if data.get("branch_id") is None:
            return jsonify({"error": "branch_id required", "code": "VALIDATION_ERROR"}), 400

        sale = sales_service.create_sale(
            branch_id=coerce_int(data["branch_id"], "branch_id"),
            table_id=coerce_optional_int(data.get("table_id"), "table_id"),
            staff_id=coerce_optional_int(data.get("staff_id"), "staff_id"),
            items=data.get("items"),
            notes=data.get("notes"),
        )
        return jsonify(_sale_payload(sale.id)), 201

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return internal_error()


@sales_bp.get("/open")
def list_open_sales_route():
    try:
        branch_id = request.args.get("branch_id")
        if not branch_id:
            return jsonify({"error": "branch_id required", "code": "VALIDATION_ERROR"}), 400
        sales = sales_service.list_open_sales(coerce_int(branch_id, "branch_id"))
        return jsonify({"sales": sales, "count": len(sales)}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list open sales")
        return internal_error()


@sales_bp.get("/history")
def list_sale_history_route():
    """Closed sales, newest first. Query: branch_id, staff_id, from, to, limit, offset."""
    try:
        args = request.args
        try:
            date_from = parse_iso_datetime(args.get("from"))
            date_to = parse_iso_datetime(args.get("to"))
        except ValueError:
            raise ValidationError("from/to must be ISO-8601 datetimes")

        page = sales_service.list_sale_history(
            branch_id=coerce_optional_int(args.get("branch_id"), "branch_id"),
            staff_id=coerce_optional_int(args.get("staff_id"), "staff_id"),
            date_from=date_from,
            date_to=date_to,
            limit=coerce_int(args.get("limit", "10"), "limit"),
            offset=coerce_int(args.get("offset", "0"), "offset"),
        )
        return jsonify(page), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sale history")
        return internal_error()


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        return jsonify(_sale_payload(sale_id)), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return internal_error()


@sales_bp.put("/<int:sale_id>/items")
def set_sale_items_route(sale_id: int):
    """
    Replace the whole item list.

    Body: {items: [...], expected_updated_at?: ISO-8601}
    A stale expected_updated_at answers 409 CONFLICT; reload and resend.
    """
    try:
        data = request.get_json() or {}
        if "items" not in data:
            return jsonify({"error": "items required", "code": "VALIDATION_ERROR"}), 400

        sales_service.set_sale_items(
            sale_id,
            data["items"],
            expected_updated_at=data.get("expected_updated_at"),
        )
        return jsonify(_sale_payload(sale_id)), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set sale items")
        return internal_error()


@sales_bp.patch("/<int:sale_id>")
def update_sale_details_route(sale_id: int):
    """Partial update: only keys present in the body change (null clears)."""
    try:
        data = request.get_json() or {}
        sales_service.update_sale_details(
            sale_id,
            table_id=data["table_id"] if "table_id" in data else UNSET,
            staff_id=data["staff_id"] if "staff_id" in data else UNSET,
            notes=data["notes"] if "notes" in data else UNSET,
            expected_updated_at=data.get("expected_updated_at"),
        )
        return jsonify(_sale_payload(sale_id)), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return internal_error()


@sales_bp.post("/<int:sale_id>/close")
def close_sale_route(sale_id: int):
    """
    Close without emitting a document.

    Body: {payment_method?, notes?, customer?, customer_metadata?}
    """
    try:
        data = request.get_json() or {}
        result = emission_service.close_without_document(
            sale_id,
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
            customer=data.get("customer"),
            metadata=data.get("customer_metadata"),
        )
        payload = _sale_payload(sale_id)
        payload["emission"] = result.to_dict()
        return jsonify(payload), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close sale")
        return internal_error()


@sales_bp.post("/<int:sale_id>/cancel")
def cancel_sale_route(sale_id: int):
    try:
        data = request.get_json(silent=True) or {}
        sales_service.cancel_sale(sale_id, reason=data.get("reason"))
        return jsonify(_sale_payload(sale_id)), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return internal_error()


async def _emit(sale_id: int, emit):
    data = request.get_json() or {}
    try:
        result = await emit(
            sale_id,
            customer=data.get("customer"),
            metadata=data.get("customer_metadata"),
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
            customer_email=data.get("customer_email"),
        )
        payload = _sale_payload(sale_id)
        payload["emission"] = result.to_dict()
        return jsonify(payload), 200

    except EngineError as e:
        body = e.to_dict()
        body["status"] = emission_service.EmissionStatus.ERROR.value
        return jsonify(body), e.http_status
    except Exception:
        current_app.logger.exception("Failed to emit document for sale %s", sale_id)
        return internal_error()


@sales_bp.post("/<int:sale_id>/emit/boleta")
async def emit_boleta_route(sale_id: int):
    """Body: {customer?, customer_metadata?, payment_method?, notes?, customer_email?}"""
    return await _emit(sale_id, emission_service.emit_boleta)


@sales_bp.post("/<int:sale_id>/emit/factura")
async def emit_factura_route(sale_id: int):
    """Body: {customer: {document_type: "RUC", document_number, name, ...}, ...}"""
    return await _emit(sale_id, emission_service.emit_factura)


@sales_bp.get("/<int:sale_id>/emission")
def emission_state_route(sale_id: int):
    try:
        return jsonify(emission_service.emission_state(sale_id)), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to read emission state")
        return internal_error()


@sales_bp.post("/<int:sale_id>/document/void")
async def void_document_route(sale_id: int):
    try:
        data = request.get_json() or {}
        doc = await emission_service.void_document(sale_id, data.get("reason"))
        return jsonify({"document": doc.to_dict()}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void document")
        return internal_error()
