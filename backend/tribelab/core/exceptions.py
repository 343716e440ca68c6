"""
Billing domain exceptions.

Each exception carries the HTTP status code the API layer responds with.
Data faults found during reconciliation (bad dates, orphaned references)
are recorded in results instead of being raised.
"""
from typing import Optional


class BillingError(Exception):
    """Base class for billing errors surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class CommunityPermissionError(BillingError):
    """Caller is not the admin of the community."""

    status_code = 403


class NotFoundError(BillingError):
    """Community or subscription record does not exist."""

    status_code = 404


class SignatureError(BillingError):
    """Payment or webhook signature did not verify."""

    status_code = 400


class InvalidStateError(BillingError):
    """Requested transition is not allowed from the current billing state."""

    status_code = 400


class SubscriptionExistsError(BillingError):
    """Community already has an in-force subscription."""

    status_code = 409


class GatewayError(BillingError):
    """Payment gateway call failed or returned an error."""

    status_code = 502

    def __init__(self, message: str, code: Optional[str] = None, http_status: Optional[int] = None):
        super().__init__(message, code=code)
        self.http_status = http_status
