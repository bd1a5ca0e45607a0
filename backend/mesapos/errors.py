# Overview: Typed failures raised by the sale engine and translated to JSON by the routes.

from __future__ import annotations


class EngineError(Exception):
    """Base class for every failure that may cross the engine boundary."""

    code = "ENGINE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(EngineError):
    """400-level input problem (missing customer data, malformed quantity...)."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFound(EngineError):
    code = "NOT_FOUND"
    http_status = 404


class SaleNotOpen(EngineError):
    """Mutation attempted on a closed or cancelled sale."""

    code = "SALE_NOT_OPEN"
    http_status = 409


class TableOccupied(EngineError):
    """Table already attached to a different open sale."""

    code = "TABLE_OCCUPIED"
    http_status = 409


class InsufficientStock(EngineError):
    """Requested quantity exceeds available stock and negative sale is disallowed."""

    code = "INSUFFICIENT_STOCK"
    http_status = 409


class ShiftNotOpen(EngineError):
    """Selling attempted on a branch with no open cash shift."""

    code = "SHIFT_NOT_OPEN"
    http_status = 409


class Conflict(EngineError):
    """Stale write (caller's updated_at is behind) or competing emission attempt."""

    code = "CONFLICT"
    http_status = 409


class GatewayError(EngineError):
    """Fiscal gateway or lookup proxy failure; message is the upstream text."""

    code = "GATEWAY_ERROR"
    http_status = 502


class UnknownOutcome(EngineError):
    """
    Submission may or may not have reached SUNAT.

    Requires manual reconciliation through resolve_unknown_emission.
    """

    code = "UNKNOWN_OUTCOME"
    http_status = 504
