"""
Error taxonomy for the MedTag service.

Every error is an HTTPException so route handlers can simply let it
propagate; the app-level handler renders it as {"error": detail}.
"""
from typing import Optional

from fastapi import HTTPException


class MedTagError(HTTPException):
    """Base class. Subclasses fix the status code and default message."""

    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(
            status_code=type(self).status_code,
            detail=detail or type(self).default_detail,
            headers=headers,
        )
        # Pipeline stage at which the request was rejected, if any
        self.stage: Optional[str] = None


class AuthenticationError(MedTagError):
    status_code = 401
    default_detail = "Invalid authentication"


class AuthorizationError(MedTagError):
    status_code = 403
    default_detail = "Insufficient permissions. Medical responder or admin role required."


class RoleLookupError(AuthorizationError):
    """Roles could not be read; never treated as an implicit allow."""

    status_code = 500
    default_detail = "Failed to verify user role"


class RateLimitError(MedTagError):
    status_code = 429
    default_detail = "Rate limit exceeded. Please wait before making another request."


class InvalidInputError(MedTagError):
    status_code = 400
    default_detail = "Invalid request"


class RecordNotFoundError(MedTagError):
    status_code = 404
    default_detail = "Patient not found"


class RecordStoreError(MedTagError):
    status_code = 500
    default_detail = "Failed to load patient data"


class ServiceNotConfiguredError(MedTagError):
    status_code = 500
    default_detail = "AI service not configured"


class MalformedModelOutputError(MedTagError):
    status_code = 500
    default_detail = "Failed to parse AI analysis"


class UpstreamError(MedTagError):
    status_code = 500
    default_detail = "AI analysis failed"


class UpstreamRateLimitError(UpstreamError):
    status_code = 429
    default_detail = "AI service rate limit exceeded. Please try again later."


class UpstreamPaymentRequiredError(UpstreamError):
    status_code = 402
    default_detail = "AI service payment required. Please contact administrator."


def upstream_error_for_status(status_code: int, detail: Optional[str] = None) -> UpstreamError:
    """Map an upstream HTTP status to the matching error class."""
    if status_code == 429:
        return UpstreamRateLimitError()
    if status_code == 402:
        return UpstreamPaymentRequiredError()
    return UpstreamError(detail)
