"""Domain errors for auth, subscriptions and payment reconciliation.

Each error carries the HTTP status it maps to and a machine-readable
``error_code``. Routes translate them with ``raise_http`` so every endpoint
answers with the same ``{"error_code", "message", ...}`` detail shape.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "ERROR"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_detail(self) -> Dict[str, Any]:
        detail = {"error_code": self.error_code, "message": self.message}
        detail.update(self.extra)
        return detail


class ValidationFailed(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_ERROR"


class InvalidPlan(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "INVALID_PLAN"

    def __init__(self, plan: Optional[str]):
        super().__init__(f"Invalid subscription plan: {plan}", plan=plan)


class InvalidCredentials(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "INVALID_CREDENTIALS"


class Unauthorized(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "UNAUTHORIZED"


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"


class PaymentNotFound(NotFound):
    error_code = "PAYMENT_NOT_FOUND"

    def __init__(self, reference: str):
        super().__init__("Payment not found", reference=reference)


class DuplicatePendingPayment(DomainError):
    """A live pending attempt already exists for the same plan."""
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "DUPLICATE_PENDING_PAYMENT"

    def __init__(self, reference: str, created_at: datetime, time_elapsed: int):
        super().__init__(
            "You already have a pending payment for this plan. Please complete or wait for it to expire.",
            reference=reference,
            created_at=created_at.isoformat() if isinstance(created_at, datetime) else created_at,
            time_elapsed=time_elapsed,
        )
        self.reference = reference
        self.time_elapsed = time_elapsed


class ProviderError(DomainError):
    """Payment provider unreachable, timed out or returned an unusable answer."""
    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "PROVIDER_ERROR"


def raise_http(error: DomainError):
    raise HTTPException(status_code=error.status_code, detail=error.to_detail()) from error
