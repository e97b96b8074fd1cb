"""
Error taxonomy for catalog sync.

Every error carries an ErrorContext so that a failed item can be reported
(and logged) with the platform, operation and product it concerns. Inside a
per-item pipeline these errors become failed SyncResults; only
configuration errors are raised to the caller.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """What kind of thing went wrong, for routing and reporting."""
    CONFIGURATION = "configuration"
    TRANSFORMATION = "transformation"
    DATA_QUALITY = "data_quality"
    UPSTREAM_API = "upstream_api"
    NETWORK = "network"


@dataclass
class ErrorContext:
    """Where an error happened: which item, platform and operation."""
    correlation_id: Optional[str] = None
    product_id: Optional[str] = None
    platform: Optional[str] = None
    operation: Optional[str] = None
    field_name: Optional[str] = None
    batch_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    additional_data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Flatten into one dict for logging; additional_data keys sit at the top level."""
        return {
            "correlation_id": self.correlation_id,
            "product_id": self.product_id,
            "platform": self.platform,
            "operation": self.operation,
            "field_name": self.field_name,
            "batch_id": self.batch_id,
            "timestamp": self.timestamp,
            **self.additional_data,
        }


def _context(context: Optional[ErrorContext], data: Optional[dict] = None, **fields: Any) -> ErrorContext:
    """Fill a (possibly caller-supplied) context with the fields an error knows about."""
    ctx = context or ErrorContext()
    for name, value in fields.items():
        setattr(ctx, name, value)
    ctx.additional_data.update({k: v for k, v in (data or {}).items() if v is not None})
    return ctx


class SyncError(Exception):
    """Base exception for all catalog sync errors."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.TRANSFORMATION,
        retryable: bool = False,
        original_exception: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.severity = severity
        self.category = category
        self.retryable = retryable
        self.original_exception = original_exception

    def to_dict(self) -> dict:
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
            "original_exception": str(self.original_exception) if self.original_exception else None,
        }


class ConfigurationError(SyncError):
    """Invalid or missing configuration. Raised to the caller, never retried."""

    def __init__(self, message: str, config_key: str, context: Optional[ErrorContext] = None):
        super().__init__(
            message=message,
            context=_context(context, {"config_key": config_key}),
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.CONFIGURATION,
        )
        self.config_key = config_key


class AdapterNotConfiguredError(ConfigurationError):
    """An operation needs a platform adapter that was never registered."""

    def __init__(self, platform: str, context: Optional[ErrorContext] = None):
        super().__init__(
            message=f"{platform} adapter not configured",
            config_key=f"adapters.{platform}",
            context=_context(context, platform=platform),
        )
        self.platform = platform


class TransformationError(SyncError):
    """
    A raw payload lacks the identity or title fields every product needs.

    Missing optional fields never raise; they normalize to defaults. This
    error means the caller handed the transformer something that is not a
    product at all.
    """

    def __init__(
        self,
        message: str,
        product_id: Optional[str],
        field_name: Optional[str] = None,
        platform: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            context=_context(context, product_id=product_id, field_name=field_name, platform=platform),
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.TRANSFORMATION,
            original_exception=original_exception,
        )
        self.field_name = field_name


class DataQualityError(SyncError):
    """A product cannot be represented on the destination platform."""

    def __init__(
        self,
        message: str,
        product_id: Optional[str],
        issues: list[str],
        platform: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=message,
            context=_context(context, {"quality_issues": issues}, product_id=product_id, platform=platform),
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.DATA_QUALITY,
        )
        self.issues = issues


class UpstreamApiError(SyncError):
    """A platform API answered with a non-2xx status. Only 429 and 5xx are retried."""

    RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

    def __init__(
        self,
        message: str,
        platform: str,
        status_code: int,
        body: str = "",
        operation: Optional[str] = None,
        retry_after: Optional[float] = None,
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None,
    ):
        data = {"status_code": status_code, "body": body[:500], "retry_after": retry_after}
        super().__init__(
            message=message,
            context=_context(context, data, platform=platform, operation=operation),
            severity=ErrorSeverity.HIGH if status_code >= 500 else ErrorSeverity.MEDIUM,
            category=ErrorCategory.UPSTREAM_API,
            retryable=status_code in self.RETRYABLE_STATUS_CODES,
            original_exception=original_exception,
        )
        self.platform = platform
        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after


class NotFoundError(UpstreamApiError):
    """HTTP 404 for a product or variation."""

    def __init__(
        self,
        platform: str,
        resource: str,
        body: str = "",
        operation: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=f"{platform} resource not found: {resource}",
            platform=platform,
            status_code=404,
            body=body,
            operation=operation,
            context=context,
        )
        self.resource = resource


class NetworkError(SyncError):
    """The platform could not be reached (DNS, connect, timeout, TLS)."""

    def __init__(
        self,
        message: str,
        platform: str,
        operation: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            context=_context(context, platform=platform, operation=operation),
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.NETWORK,
            retryable=True,
            original_exception=original_exception,
        )
        self.platform = platform
