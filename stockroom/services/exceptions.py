"""
Service Exception Classes

Structured errors shared by the credential store, the marketplace client,
the AI analyzer, the image normalizer and the listing orchestrator. Each
class carries the HTTP status the API layer renders it with.
"""
from typing import Optional, Dict, Any
from enum import Enum


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ServiceError(Exception):
    """
    Base exception for all service errors

    Attributes:
        message: human readable message, safe to show to the user
        error_code: stable machine code
        severity: error severity
        context: extra structured context (logged, partially exposed)
        recoverable: whether a retry may succeed
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recoverable: bool = False
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.context = context or {}
        self.recoverable = recoverable
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
            "recoverable": self.recoverable
        }

    def public_body(self) -> Dict[str, Any]:
        """Response body for the API layer. Context stays server-side."""
        return {"error": self.error_code, "message": self.message}


class Unauthenticated(ServiceError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, error_code="UNAUTHENTICATED", severity=ErrorSeverity.LOW)

    def public_body(self) -> Dict[str, Any]:
        return {"error": "Unauthorized"}


class AuthRequired(ServiceError):
    """
    A marketplace operation was attempted without a usable token.

    Attributes:
        subsystem: which integration needs linking (e.g. "ebay")
        redirect_to: path of the credential-linking page
    """

    status_code = 403

    def __init__(
        self,
        message: str = "eBay authentication required",
        subsystem: str = "ebay",
        redirect_to: str = "/settings/ebay-auth",
        **kwargs
    ):
        context = {"subsystem": subsystem, "redirect_to": redirect_to}
        context.update(kwargs)
        super().__init__(
            message=message,
            error_code="AUTH_REQUIRED",
            severity=ErrorSeverity.LOW,
            context=context,
            recoverable=True
        )
        self.subsystem = subsystem
        self.redirect_to = redirect_to

    def public_body(self) -> Dict[str, Any]:
        return {"error": self.message, "redirectTo": self.redirect_to}


class NotAuthorized(AuthRequired):
    """Raised by the credential store when no valid token is stored."""


class ValidationError(ServiceError):
    """
    Input validation failures

    Attributes:
        field: offending field name
        actual_value: the rejected value
        constraints: violated constraints
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        actual_value: Optional[Any] = None,
        constraints: Optional[Dict[str, Any]] = None,
        error_code: str = "VALIDATION_ERROR",
        **kwargs
    ):
        context = {
            "field": field,
            "actual_value": str(actual_value) if actual_value is not None else None,
            "constraints": constraints or {}
        }
        context.update(kwargs)
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.LOW,
            context=context,
            recoverable=False
        )
        self.field = field
        self.actual_value = actual_value
        self.constraints = constraints

    def public_body(self) -> Dict[str, Any]:
        body = super().public_body()
        if self.field:
            body["details"] = {"field": self.field, "constraints": self.constraints or {}}
        return body


class UnsupportedType(ValidationError):
    def __init__(self, mime_type: str, allowed: tuple[str, ...]):
        super().__init__(
            f"Invalid file type: {mime_type}. Only JPEG, PNG, and WebP are supported.",
            field="mime_type",
            actual_value=mime_type,
            constraints={"allowed": list(allowed)},
            error_code="UNSUPPORTED_TYPE",
        )


class TooLarge(ValidationError):
    def __init__(self, filename: str, size_bytes: int, limit_bytes: int):
        super().__init__(
            f"File too large: {filename}. Maximum size is {limit_bytes // (1024 * 1024)}MB.",
            field="size",
            actual_value=size_bytes,
            constraints={"max_bytes": limit_bytes},
            error_code="TOO_LARGE",
        )


class BatchTooLarge(ValidationError):
    def __init__(self, total_bytes: int, limit_bytes: int):
        super().__init__(
            f"Images total {total_bytes} bytes; the limit is {limit_bytes // (1024 * 1024)}MB per request.",
            field="images",
            actual_value=total_bytes,
            constraints={"max_total_bytes": limit_bytes},
            error_code="BATCH_TOO_LARGE",
        )


class AnalysisInvalid(ValidationError):
    """The model answered, but not with a schema-valid JSON object."""

    status_code = 500

    def __init__(self, message: str, raw_text: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            field="response",
            error_code="ANALYSIS_INVALID",
            raw_text=(raw_text or "")[:2000],
            **kwargs
        )

    def public_body(self) -> Dict[str, Any]:
        return {"error": "Failed to parse analysis results", "message": self.message}


class NotFound(ServiceError):
    status_code = 404

    def __init__(self, message: str = "Resource not found", **kwargs):
        super().__init__(message, error_code="NOT_FOUND", severity=ErrorSeverity.LOW, context=kwargs)


class NoData(ServiceError):
    """The marketplace returned zero usable listings."""

    status_code = 404

    def __init__(self, query: Optional[str] = None):
        super().__init__(
            "No pricing data available",
            error_code="NO_DATA",
            severity=ErrorSeverity.LOW,
            context={"query": query},
            recoverable=False
        )


class UpstreamError(ServiceError):
    """
    External API call failures

    Attributes:
        status: upstream HTTP status (None for SDK errors)
        body: upstream response body, logged and never returned verbatim
        subsystem: "ebay" or "ai"
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
        subsystem: str = "ebay",
        url: Optional[str] = None,
        recoverable: bool = True,
        **kwargs
    ):
        context = {
            "status": status,
            "subsystem": subsystem,
            "url": url,
            "body": (body or "")[:2000] or None,
        }
        context.update(kwargs)
        super().__init__(
            message=message,
            error_code="UPSTREAM_ERROR",
            severity=ErrorSeverity.MEDIUM,
            context=context,
            recoverable=recoverable
        )
        self.status = status
        self.body = body
        self.subsystem = subsystem
        self.status_code = 500 if subsystem == "ai" else 502


class UpstreamTimeout(ServiceError):
    status_code = 504

    def __init__(self, message: str, operation: Optional[str] = None, timeout_seconds: Optional[float] = None):
        super().__init__(
            message,
            error_code="UPSTREAM_TIMEOUT",
            severity=ErrorSeverity.MEDIUM,
            context={"operation": operation, "timeout_seconds": timeout_seconds},
            recoverable=True
        )
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class StorageError(ServiceError):
    """
    Database operation failures

    Attributes:
        table_name: affected table
        operation: insert, update, delete, select
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        table_name: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        context = {"table_name": table_name, "operation": operation}
        context.update(kwargs)
        super().__init__(
            message=message,
            error_code="STORAGE_ERROR",
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=False
        )
        self.table_name = table_name
        self.operation = operation

    def public_body(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": "A storage error occurred"}


class ConcurrentRun(ServiceError):
    status_code = 409

    def __init__(self, product_id: int):
        super().__init__(
            f"An analysis is already running for product {product_id}",
            error_code="CONCURRENT_RUN",
            severity=ErrorSeverity.LOW,
            context={"product_id": product_id},
            recoverable=True
        )


def wrap_exception(
    error: Exception,
    error_class: type = ServiceError,
    **kwargs
) -> ServiceError:
    """
    Wrap an arbitrary exception in the service error hierarchy.

    Already-structured errors are returned unchanged.
    """
    if isinstance(error, ServiceError):
        return error

    message = str(error) or error.__class__.__name__
    lowered = message.lower()
    if error_class is ServiceError and ("timeout" in lowered or "timed out" in lowered):
        return UpstreamTimeout(message, operation=kwargs.get("operation"))

    return error_class(message, **kwargs)
