# Overview: Flask API routes for customer lookup (registry first, then RUC/DNI proxy) and upsert.

from flask import Blueprint, current_app, jsonify, request

from ..errors import EngineError
from ..services import customer_service
from ..services.identity_lookup import IdentityLookupClient
from ..validation import require_fields
from . import error_response, internal_error


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _lookup_client() -> IdentityLookupClient:
    client = current_app.extensions.get("identity_lookup")
    if client is None:
        client = IdentityLookupClient.from_config(current_app.config)
    return client


@customers_bp.get("/lookup")
async def lookup_customer_route():
    """
    Query: document_type (RUC|DNI), document_number.

    Returns the registered customer when known (with customer_id so the close
    dialog can send has_changes), otherwise the proxy's advisory data or null.
    """
    try:
        require_fields(request.args, "document_type", "document_number")
        doc_type, number = customer_service.normalize_document(
            request.args["document_type"], request.args["document_number"]
        )

        existing = customer_service.get_by_document(doc_type, number)
        if existing is not None:
            return jsonify({"source": "registry", "customer_id": existing.id, "customer": existing.to_dict()}), 200

        found = await _lookup_client().lookup_by_document(doc_type, number)
        return jsonify({"source": "lookup" if found else None, "customer_id": None, "customer": found}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to look up customer")
        return internal_error()


@customers_bp.post("/")
def upsert_customer_route():
    """Body: {document_type, document_number, name, address?, email?, phone?}"""
    try:
        data = request.get_json() or {}
        require_fields(data, "document_type", "document_number", "name")
        existed = customer_service.get_by_document(data["document_type"], data["document_number"]) is not None
        customer = customer_service.upsert_customer(
            data["document_type"],
            data["document_number"],
            data["name"],
            address=data.get("address"),
            email=data.get("email"),
            phone=data.get("phone"),
        )
        return jsonify({"customer": customer.to_dict()}), 200 if existed else 201

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to save customer")
        return internal_error()
