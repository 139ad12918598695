"""Error taxonomy shared by HTTP routes, socket handlers and services.

Services raise these; the app factory turns them into the
``{"success": false, "message": ...}`` envelope with the matching status.
"""

from __future__ import annotations


class ApiError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"success": False, "message": self.message}


class ValidationError(ApiError):
    status_code = 400
    code = "validation_error"


class AuthenticationError(ApiError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(ApiError):
    status_code = 403
    code = "forbidden"


class NotFoundError(ApiError):
    status_code = 404
    code = "not_found"


class TerminalStateError(ApiError):
    status_code = 409
    code = "terminal_state"


class GatewayError(ApiError):
    """A payment provider call failed or answered with an error."""

    status_code = 502
    code = "gateway_error"
