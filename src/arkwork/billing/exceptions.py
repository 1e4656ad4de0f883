"""
Billing lifecycle exceptions.

Custom exceptions for billing operations with clear error messages.
Each error carries a status code, context and a recovery hint so the HTTP
layer can map it to a response without knowing engine internals.
"""

from typing import Any


class BillingError(Exception):
    """
    Base billing system error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class PlanNotFoundError(BillingError):
    """Referenced plan id has no catalog entry."""

    def __init__(self, message: str, plan_id: str | None = None) -> None:
        context = {}
        if plan_id:
            context["plan_id"] = plan_id

        super().__init__(
            message,
            "PLAN_NOT_FOUND",
            status_code=404,
            context=context,
            recovery_hint="Verify the plan ID and ensure it exists in the plan catalog",
        )


class TenantNotFoundError(BillingError):
    """Tenant billing record not found."""

    def __init__(self, message: str, tenant_id: str | None = None) -> None:
        context = {}
        if tenant_id:
            context["tenant_id"] = tenant_id

        super().__init__(
            message,
            "TENANT_NOT_FOUND",
            status_code=404,
            context=context,
            recovery_hint="Verify the tenant ID or select a plan to provision the tenant",
        )


class InvalidTransitionError(BillingError):
    """Requested lifecycle transition is not allowed from the current state."""

    def __init__(self, message: str, current_state: str, requested_event: str) -> None:
        super().__init__(
            message,
            "INVALID_BILLING_TRANSITION",
            status_code=409,
            context={"current_state": current_state, "requested_event": requested_event},
            recovery_hint=f"Cannot apply {requested_event} while tenant is {current_state}.",
        )


class InvalidTenantStateError(BillingError):
    """Tenant fields violate a billing invariant."""

    def __init__(self, message: str, tenant_id: str | None = None) -> None:
        context = {}
        if tenant_id:
            context["tenant_id"] = tenant_id

        super().__init__(message, "INVALID_TENANT_STATE", status_code=422, context=context)


class StoreError(BillingError):
    """Tenant store errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "STORE_ERROR",
        status_code: int = 500,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, error_code, status_code=status_code, context=context, recovery_hint=recovery_hint
        )


class StoreUnavailableError(StoreError):
    """Transient storage failure; callers should retry with backoff."""

    def __init__(self, message: str, operation: str | None = None) -> None:
        context = {}
        if operation:
            context["operation"] = operation

        super().__init__(
            message,
            "STORE_UNAVAILABLE",
            status_code=503,
            context=context,
            recovery_hint="Retry the operation with exponential backoff",
        )


class ConcurrentUpdateError(StoreError):
    """Compare-and-set write lost against a concurrent update."""

    def __init__(self, message: str, tenant_id: str, expected_version: int) -> None:
        super().__init__(
            message,
            "CONCURRENT_UPDATE",
            status_code=409,
            context={"tenant_id": tenant_id, "expected_version": expected_version},
            recovery_hint="Reload the tenant and retry the operation",
        )


class DeliveryFailedError(BillingError):
    """Notifier could not deliver a message."""

    def __init__(self, message: str, recipients: list[str] | None = None) -> None:
        super().__init__(
            message,
            "DELIVERY_FAILED",
            status_code=502,
            context={"recipients": list(recipients or [])},
            recovery_hint="Check the SMTP configuration; the warning is not retried in this tick",
        )


class InvalidThresholdsError(BillingError):
    """Warning thresholds are not a list of positive day counts."""

    def __init__(self, message: str, thresholds: list[Any] | None = None) -> None:
        super().__init__(
            message,
            "INVALID_THRESHOLDS",
            status_code=400,
            context={"thresholds": list(thresholds or [])},
        )


class BillingConfigurationError(BillingError):
    """Billing configuration errors."""

    def __init__(self, message: str, config_key: str | None = None) -> None:
        context = {}
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message,
            "CONFIGURATION_ERROR",
            status_code=500,
            context=context,
            recovery_hint="Check billing configuration settings",
        )
