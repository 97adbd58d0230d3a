"""Portal error taxonomy

Each error carries the wire code, HTTP status and the customer-facing message
rendered by the portal's "link no longer valid" view.
"""

from typing import Optional


class PortalError(Exception):
    """Base class for errors surfaced to portal callers"""

    error = "server_error"
    status_code = 500
    message = "Unable to access this page. Please contact the business for assistance."

    def __init__(self, message: Optional[str] = None, headers: Optional[dict] = None):
        self.message = message or self.message
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"valid": False, "error": self.error, "message": self.message}


class TokenNotFound(PortalError):
    error = "not_found"
    status_code = 404
    message = "This link was not found. Please check the URL or contact the business."


class ResourceNotFound(PortalError):
    error = "not_found"
    status_code = 404
    message = "Not found or access denied"


class TokenExpired(PortalError):
    error = "expired"
    status_code = 410
    message = "This link has expired. Please contact the business for a new link."


class TokenRevoked(PortalError):
    error = "revoked"
    status_code = 410
    message = "This link is no longer valid. Please contact the business for assistance."


class InvalidState(PortalError):
    error = "invalid_state"
    status_code = 400
    message = "This action is not available for the document in its current state."


class RateLimited(PortalError):
    error = "rate_limited"
    status_code = 429
    message = "Too many requests. Please try again later."


class UpstreamFailure(PortalError):
    """Payment processor or email provider error"""

    error = "upstream_error"
    status_code = 502
    message = "A service we depend on is unavailable. Please try again shortly."

    def __init__(self, message: Optional[str] = None, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code
