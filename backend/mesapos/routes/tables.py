# Overview: Flask API routes for the table tracker (list, assign, release, operator status).

from flask import Blueprint, current_app, jsonify, request

from ..errors import EngineError
from ..services import sales_service, table_service
from ..validation import coerce_int, coerce_optional_int, require_fields
from . import error_response, internal_error


tables_bp = Blueprint("tables", __name__, url_prefix="/api/tables")


@tables_bp.get("")
def list_tables_route():
    try:
        require_fields(request.args, "branch_id")
        tables = table_service.list_tables(coerce_int(request.args["branch_id"], "branch_id"))
        return jsonify({"tables": [t.to_dict() for t in tables]}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list tables")
        return internal_error()


@tables_bp.post("/<int:table_id>/assign")
def assign_table_route(table_id: int):
    """Move an open sale onto this table. Body: {sale_id}"""
    try:
        data = request.get_json() or {}
        require_fields(data, "sale_id")
        sale = sales_service.update_sale_details(coerce_int(data["sale_id"], "sale_id"), table_id=table_id)
        return jsonify({
            "table": table_service.get_table(table_id).to_dict(),
            "sale_id": sale.id,
        }), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign table")
        return internal_error()


@tables_bp.post("/<int:table_id>/release")
def release_table_route(table_id: int):
    """Body (optional): {sale_id} to release only if the table holds that sale."""
    try:
        data = request.get_json(silent=True) or {}
        table = table_service.release_table(
            table_id,
            coerce_optional_int(data.get("sale_id"), "sale_id"),
        )
        return jsonify({"table": table.to_dict()}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to release table")
        return internal_error()


@tables_bp.patch("/<int:table_id>/status")
def set_table_status_route(table_id: int):
    """Body: {status: available|reserved|out_of_service}"""
    try:
        data = request.get_json() or {}
        require_fields(data, "status")
        table = table_service.set_table_status(table_id, data["status"])
        return jsonify({"table": table.to_dict()}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update table status")
        return internal_error()
