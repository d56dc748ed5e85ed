"""
Error taxonomy shared by the store client, the ledger core and the routes.

Every business rejection is a CoreError subclass carrying an HTTP status and a
stable machine-readable code. Routes never build error payloads by hand; they
let the exception handler in main.py render `to_dict()`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CoreError(Exception):
    code = "error"
    status_code = 400

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        detail: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.detail = dict(detail or {})
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "detail": self.detail,
        }


class NotFound(CoreError):
    code = "not_found"
    status_code = 404


class Unauthorized(CoreError):
    code = "unauthorized"
    status_code = 403


class ValidationError(CoreError):
    code = "invalid"
    status_code = 400


class OutOfRange(CoreError):
    code = "out_of_range"
    status_code = 400

    def __init__(self, distance: int, radius: float, message: Optional[str] = None):
        # distance is already rounded to whole meters by the geofence
        self.distance = int(distance)
        self.radius = radius
        super().__init__(
            message
            or f"You are {self.distance}m away from the location (allowed: {radius:g}m)",
            detail={"distance": self.distance, "radius": radius},
        )


class InsufficientBalance(CoreError):
    code = "insufficient_points"
    status_code = 400

    def __init__(self, required: int, balance: int):
        self.required = required
        self.balance = balance
        super().__init__(
            "insufficient points",
            detail={"required": required, "balance": balance, "shortfall": required - balance},
        )


class UpstreamUnavailable(CoreError):
    code = "upstream_unavailable"
    status_code = 503


class UnsupportedPropertyType(CoreError):
    code = "unsupported_property"
    status_code = 500

    def __init__(self, property_name: str, declared_type: str):
        self.property_name = property_name
        self.declared_type = declared_type
        super().__init__(
            f"Property '{property_name}' has unsupported type '{declared_type}'",
            detail={"property": property_name, "type": declared_type},
        )
