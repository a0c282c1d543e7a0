"""
Service Errors
==============

Exceptions raised below the HTTP layer. Each carries the HTTP status and
machine-readable code used by the error envelope (see
middleware.response_contract).
"""

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base error for service-layer failures"""

    status_code = 500
    code = "SERVER_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.action = action
        self.details = details


class ValidationFailed(ServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFound(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class Forbidden(ServiceError):
    status_code = 403
    code = "FORBIDDEN"


class SoftDeleteError(ServiceError):
    status_code = 400
    code = "SOFT_DELETE_REFUSED"


class CounterError(ServiceError):
    code = "COUNTER_ERROR"


class FirmBootstrapError(ServiceError):
    code = "FIRM_BOOTSTRAP_FAILED"


class TransactionRequiredError(ServiceError):
    code = "TRANSACTION_REQUIRED"

    def __init__(self, message: str = "Mutation attempted without active transaction"):
        super().__init__(message, action="contact_admin")
