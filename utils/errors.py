from __future__ import annotations

from typing import Dict, Optional

from fastapi import status


class ServiceError(Exception):
    """Base error carrying the HTTP status it should be reported with."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        headers: Optional[Dict[str, str]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.message = message or self.default_message
        self.headers = headers or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class Unauthorized(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class Forbidden(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ValidationFailed(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class NoBillingAccount(ValidationFailed):
    default_message = "No billing account found. Subscribe first."


class CheckoutIncomplete(ValidationFailed):
    default_message = "Checkout not complete"


class InvalidSignature(ValidationFailed):
    default_message = "Invalid webhook signature"


class MalformedPayload(ValidationFailed):
    default_message = "Malformed webhook payload"


class RateLimited(ServiceError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Rate limit exceeded. Please try again later."


class UpstreamFailure(ServiceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Upstream service failed"


class Misconfigured(ServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Service is not configured"
