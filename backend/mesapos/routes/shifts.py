# Overview: Flask API routes for branch cash shifts (open, close, active, history).

from flask import Blueprint, current_app, jsonify, request

from ..errors import EngineError
from ..services import shift_service
from ..validation import coerce_int, coerce_optional_int, require_fields
from . import error_response, internal_error


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


@shifts_bp.get("/active")
def active_shift_route():
    """Open shift of ?branch_id with its running cash tally; shift is null when none is open."""
    try:
        require_fields(request.args, "branch_id")
        active = shift_service.get_active_shift(coerce_int(request.args["branch_id"], "branch_id"))
        if active is None:
            return jsonify({"shift": None}), 200
        return jsonify(active), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load active shift")
        return internal_error()


@shifts_bp.post("")
def open_shift_route():
    """Body: {branch_id, opening_cash, staff_id?, notes?}"""
    try:
        data = request.get_json() or {}
        require_fields(data, "branch_id", "opening_cash")
        shift = shift_service.open_shift(
            coerce_int(data["branch_id"], "branch_id"),
            data["opening_cash"],
            staff_id=coerce_optional_int(data.get("staff_id"), "staff_id"),
            notes=data.get("notes"),
        )
        return jsonify({"shift": shift.to_dict()}), 201

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return internal_error()


@shifts_bp.post("/<int:shift_id>/close")
def close_shift_route(shift_id: int):
    """Body: {actual_cash, notes?}"""
    try:
        data = request.get_json() or {}
        require_fields(data, "actual_cash")
        summary = shift_service.close_shift(shift_id, data["actual_cash"], notes=data.get("notes"))
        return jsonify(summary), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return internal_error()


@shifts_bp.get("/history")
def shift_history_route():
    try:
        require_fields(request.args, "branch_id")
        limit = coerce_optional_int(request.args.get("limit"), "limit")
        shifts = shift_service.list_shift_history(
            coerce_int(request.args["branch_id"], "branch_id"),
            limit=limit,
        )
        return jsonify({"shifts": shifts}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list shift history")
        return internal_error()
