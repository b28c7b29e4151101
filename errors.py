"""
Error taxonomy shared by storage, services and routes.

Each error carries the HTTP status it is rendered with; main.py installs a
single exception handler that turns them into ``{"detail": ...}`` bodies,
the same shape FastAPI uses for HTTPException.
"""

from typing import Dict, List, Optional


class StorefrontError(Exception):
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(StorefrontError):
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []


class AuthenticationError(StorefrontError):
    status_code = 401
    default_message = "Authentication required"


class AuthorizationError(StorefrontError):
    status_code = 403
    default_message = "Admin access required"


class NotFoundError(StorefrontError):
    status_code = 404
    default_message = "Not found"


class ConflictError(StorefrontError):
    status_code = 409
    default_message = "Already exists"


class EmptyCartError(StorefrontError):
    status_code = 400
    default_message = "Cart is empty"


class ProcessorError(StorefrontError):
    status_code = 400
    default_message = "Payment processor error"


class ConfigurationError(StorefrontError):
    """Missing credentials for an external service.

    The message is logged; callers only ever see ``public_message``.
    """

    status_code = 500
    default_message = "Service not configured"
    public_message = "Payment processor not configured"
