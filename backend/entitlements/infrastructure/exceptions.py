"""
Custom Exceptions for the Entitlements service

Hierarchical exception classes for proper error handling across layers.

Families map to HTTP behaviour in main.py:
- ValidationError: user-correctable, surfaced verbatim (400)
- SignatureInvalid: rejected webhook, never retried (400)
- ConflictError: lost a redemption race (409)
- ExternalServiceError: Stripe timeout/5xx, retryable (502)
- PersistenceError: datastore failure, retryable (503)
"""

from typing import Optional, Dict, Any


class EntitlementsError(Exception):
    """Base exception for all entitlements errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(EntitlementsError):
    """Raised when input validation fails."""
    pass


class PlanNotFound(ValidationError):
    """Raised when a plan id does not resolve to a pricing plan."""

    def __init__(self, plan_id: Any):
        super().__init__("Plan not found", details={"plan_id": str(plan_id)})


class CouponError(ValidationError):
    """Base class for coupon validation failures."""

    def __init__(self, message: str, code: Optional[str] = None):
        details = {"code": code} if code else {}
        super().__init__(message, details)


class CouponNotFound(CouponError):
    def __init__(self, code: Optional[str] = None):
        super().__init__("Invalid coupon code", code)


class CouponExpired(CouponError):
    def __init__(self, code: Optional[str] = None):
        super().__init__("This coupon has expired", code)


class CouponExhausted(CouponError):
    def __init__(self, code: Optional[str] = None):
        super().__init__("This coupon has reached its usage limit", code)


class CouponRequiresPayment(CouponError):
    def __init__(self, code: Optional[str] = None):
        super().__init__(
            "This coupon requires payment. Please use the standard checkout process.",
            code,
        )


class InvalidCoupon(CouponError):
    """Raised when a stored coupon carries an out-of-range discount."""

    def __init__(self, code: Optional[str] = None):
        super().__init__("Coupon discount must be between 1 and 100 percent", code)


class SignatureInvalid(EntitlementsError):
    """Raised when a webhook payload fails signature verification."""
    pass


class ConflictError(EntitlementsError):
    """Raised when a concurrent writer won a uniqueness race."""
    pass


class ExternalServiceError(EntitlementsError):
    """Raised when the payment processor or another upstream fails."""

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        retryable: bool = True,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        merged = dict(details or {})
        if service:
            merged["service"] = service
        merged["retryable"] = retryable
        super().__init__(message, merged, original_error)
        self.retryable = retryable


class CheckoutCreationFailed(ExternalServiceError):
    """Raised when Stripe could not create a checkout session."""

    def __init__(
        self,
        message: str = "Failed to create checkout session. Please try again.",
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message,
            service="stripe",
            details=details,
            original_error=original_error,
        )


class PersistenceError(EntitlementsError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        merged = dict(details or {})
        if operation:
            merged["operation"] = operation
        if table:
            merged["table"] = table
        super().__init__(message, merged, original_error)


class SubscriptionCreationFailed(PersistenceError):
    """Raised when the atomic subscription write could not complete."""

    def __init__(
        self,
        message: str = "Failed to create subscription. Please try again.",
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message,
            operation="insert",
            table="user_subscriptions",
            details=details,
            original_error=original_error,
        )


class ConfigurationError(EntitlementsError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)
