"""
Domain error taxonomy.

WHY: Services raise typed errors; the HTTP layer maps each type to a status
code and a message the cashier can read. The developer-facing message and the
user-facing message are kept apart so internal detail never reaches the UI.

Every error renders to an RFC7807-style problem body via to_problem().
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base for all business-level failures."""

    error_code = "DOMAIN_ERROR"
    http_status = 400
    title = "Business Error"
    default_user_message = "The operation could not be completed."

    def __init__(
        self,
        message: str,
        *,
        entity_type: str | None = None,
        entity_id: Any = None,
        user_friendly_message: str | None = None,
        extensions: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.user_friendly_message = user_friendly_message or self.default_user_message
        self.extensions = dict(extensions or {})

    @property
    def problem_type(self) -> str:
        return self.error_code.lower()

    def to_problem(
        self,
        *,
        instance: str | None = None,
        trace_id: str | None = None,
        timestamp: str | None = None,
        method: str | None = None,
    ) -> dict:
        extensions = dict(self.extensions)
        extensions["errorCode"] = self.error_code
        if self.entity_type:
            extensions["entityType"] = self.entity_type
        if self.entity_id is not None:
            extensions["entityId"] = self.entity_id
        return {
            "type": self.problem_type,
            "title": self.title,
            "status": self.http_status,
            "detail": self.message,
            "instance": instance,
            "traceId": trace_id,
            "timestamp": timestamp,
            "method": method,
            "userFriendlyMessage": self.user_friendly_message,
            "validationErrors": None,
            "extensions": extensions,
        }


class ValidationError(DomainError, ValueError):
    """400-level input problem, optionally keyed by field."""

    error_code = "VALIDATION_ERROR"
    http_status = 400
    title = "Validation Failed"
    default_user_message = "Please check your input and try again."

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        field_errors: dict[str, list[str]] | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.field_errors = {k: list(v) for k, v in (field_errors or {}).items()}
        if field:
            self.field_errors.setdefault(field, []).append(message)

    def to_problem(self, **kwargs) -> dict:
        problem = super().to_problem(**kwargs)
        problem["validationErrors"] = self.field_errors or None
        return problem


class EntityNotFound(DomainError):
    error_code = "ENTITY_NOT_FOUND"
    http_status = 404
    title = "Resource Not Found"

    def __init__(self, entity_type: str, entity_id: Any = None, message: str | None = None):
        if message is None:
            if entity_id is None:
                message = f"{entity_type} not found"
            else:
                message = f"{entity_type} with ID '{entity_id}' was not found"
        super().__init__(
            message,
            entity_type=entity_type,
            entity_id=entity_id,
            user_friendly_message=f"The requested {entity_type.lower()} could not be found.",
        )


class DuplicateEntity(DomainError):
    error_code = "DUPLICATE_ENTITY"
    http_status = 409
    title = "Duplicate Resource"

    def __init__(self, entity_type: str, field: str, value: Any, message: str | None = None):
        super().__init__(
            message or f"{entity_type} with {field} '{value}' already exists",
            entity_type=entity_type,
            user_friendly_message=f"A {entity_type.lower()} with this {field} already exists.",
            extensions={"field": field, "value": value},
        )


class InvalidEntityState(DomainError):
    error_code = "INVALID_ENTITY_STATE"
    http_status = 409
    title = "Invalid State"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        current_state: str | None,
        attempted_operation: str,
        message: str | None = None,
    ):
        super().__init__(
            message
            or f"Cannot {attempted_operation} {entity_type} {entity_id} in state '{current_state}'",
            entity_type=entity_type,
            entity_id=entity_id,
            user_friendly_message=(
                f"This {entity_type.lower()} cannot be changed in its current state."
            ),
            extensions={"currentState": current_state, "attemptedOperation": attempted_operation},
        )
        self.current_state = current_state
        self.attempted_operation = attempted_operation


class InsufficientStock(DomainError):
    error_code = "INSUFFICIENT_STOCK"
    http_status = 409
    title = "Insufficient Stock"
    default_user_message = "Not enough stock is available for this operation."

    def __init__(self, message: str, *, requested: int, available: int, **kwargs):
        extensions = {"requested": requested, "available": available}
        extensions.update(kwargs.pop("extensions", None) or {})
        super().__init__(message, extensions=extensions, **kwargs)
        self.requested = requested
        self.available = available


class InsufficientPermissions(DomainError):
    error_code = "INSUFFICIENT_PERMISSIONS"
    http_status = 403
    title = "Forbidden"
    default_user_message = "You don't have permission to perform this action."

    def __init__(self, operation: str, resource: str, message: str | None = None):
        super().__init__(
            message or f"Insufficient permissions to {operation} {resource}",
            extensions={"operation": operation, "resource": resource},
        )


class PaymentException(DomainError):
    error_code = "PAYMENT_ERROR"
    http_status = 402
    title = "Payment Failed"
    default_user_message = "Payment processing failed. Please try again."


class BusinessRuleViolation(DomainError):
    error_code = "BUSINESS_RULE_VIOLATION"
    http_status = 422
    title = "Business Rule Violation"

    def __init__(self, rule_code: str, message: str, **kwargs):
        extensions = {"ruleCode": rule_code}
        extensions.update(kwargs.pop("extensions", None) or {})
        kwargs.setdefault("user_friendly_message", message)
        super().__init__(message, extensions=extensions, **kwargs)
        self.rule_code = rule_code


def internal_problem(
    *,
    detail: str = "An unexpected error occurred.",
    instance: str | None = None,
    trace_id: str | None = None,
    timestamp: str | None = None,
    method: str | None = None,
    status: int = 500,
    title: str = "Internal Server Error",
) -> dict:
    """Problem body for anything outside the domain taxonomy."""
    return {
        "type": "internal_error" if status >= 500 else "http_error",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": instance,
        "traceId": trace_id,
        "timestamp": timestamp,
        "method": method,
        "userFriendlyMessage": (
            "Something went wrong on our side. Please try again later."
            if status >= 500
            else detail
        ),
        "validationErrors": None,
        "extensions": {},
    }
