# Overview: Operator reconciliation of emissions whose SUNAT outcome is unknown.

from flask import Blueprint, current_app, jsonify, request

from ..errors import EngineError, ValidationError
from ..services import emission_service
from ..validation import coerce_optional_int
from . import error_response, internal_error


emissions_bp = Blueprint("emissions", __name__, url_prefix="/api/emissions")


@emissions_bp.get("/unresolved")
def list_unresolved_route():
    try:
        branch_id = coerce_optional_int(request.args.get("branch_id"), "branch_id")
        attempts = emission_service.list_unresolved_attempts(branch_id)
        return jsonify({"attempts": [a.to_dict() for a in attempts]}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list unresolved emissions")
        return internal_error()


@emissions_bp.post("/<int:attempt_id>/resolve")
def resolve_emission_route(attempt_id: int):
    """
    Body: {issued: bool, document_id?, correlativo?, pdf_url?, xml_url?, cdr_url?, hash?, notes?}
    """
    try:
        data = request.get_json() or {}
        if not isinstance(data.get("issued"), bool):
            raise ValidationError("issued must be true or false")

        attempt = emission_service.resolve_unknown_emission(
            attempt_id,
            data["issued"],
            data.get("document_id"),
            correlativo=data.get("correlativo"),
            pdf_url=data.get("pdf_url"),
            xml_url=data.get("xml_url"),
            cdr_url=data.get("cdr_url"),
            hash=data.get("hash"),
            notes=data.get("notes"),
        )
        return jsonify({"attempt": attempt.to_dict()}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to resolve emission attempt")
        return internal_error()
