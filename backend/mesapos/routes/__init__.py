# Overview: Shared helpers for the JSON blueprints.

from flask import jsonify

from ..errors import EngineError


def error_response(e: EngineError):
    """Typed engine failure -> {"error", "code", "details"} with its HTTP status."""
    return jsonify(e.to_dict()), e.http_status


def internal_error():
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500
