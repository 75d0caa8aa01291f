"""
Error handling framework for hostwatch.

This module provides:
- Hierarchical exception classes
- Error context preservation
- Structured error responses
- A context manager for logging errors at component seams
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import traceback
from contextlib import contextmanager

from .logging import get_logger


logger = get_logger("hostwatch.errors")


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    SYSTEM = "system"
    ACQUISITION = "acquisition"
    PARSING = "parsing"
    REMEDIATION = "remediation"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None


@dataclass
class ErrorInfo:
    """Structured error information."""
    code: str
    message: str
    severity: ErrorSeverity
    category: ErrorCategory
    context: ErrorContext
    cause: Optional[Exception] = None
    suggestions: List[str] = field(default_factory=list)
    retry_after: Optional[int] = None  # seconds
    is_retryable: bool = False


class HostwatchError(Exception):
    """Base exception for all hostwatch errors."""

    code: str = "HOSTWATCH_ERROR"
    default_message: str = "An error occurred in hostwatch"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    is_retryable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        **kwargs
    ):
        """Initialize hostwatch error."""
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        self.kwargs = kwargs

        # Capture stack trace
        if not self.context.stack_trace:
            self.context.stack_trace = traceback.format_exc()

        super().__init__(self.message)

    def to_info(self) -> ErrorInfo:
        """Convert to structured error info."""
        return ErrorInfo(
            code=self.code,
            message=self.message,
            severity=self.severity,
            category=self.category,
            context=self.context,
            cause=self.cause,
            suggestions=self.get_suggestions(),
            retry_after=self.get_retry_after(),
            is_retryable=self.is_retryable
        )

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def get_retry_after(self) -> Optional[int]:
        """Get retry delay in seconds."""
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        info = self.to_info()
        return {
            "error": {
                "code": info.code,
                "message": info.message,
                "severity": info.severity.value,
                "category": info.category.value,
                "is_retryable": info.is_retryable,
                "retry_after": info.retry_after,
                "suggestions": info.suggestions,
                "context": {
                    "timestamp": info.context.timestamp.isoformat(),
                    "component": info.context.component,
                    "operation": info.context.operation,
                    "metadata": info.context.metadata
                }
            }
        }


class ConfigurationError(HostwatchError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Verify HOSTWATCH_* environment variables"
        ]


class ValidationError(HostwatchError):
    """Input validation errors."""
    code = "VALIDATION_ERROR"
    default_message = "Validation error"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.WARNING

    def __init__(self, field: str, value: Any, constraint: str, **kwargs):
        self.field = field
        self.value = value
        self.constraint = constraint
        message = f"Validation failed for field '{field}': {constraint}"
        super().__init__(message, **kwargs)


# Observation errors

class ParseError(HostwatchError):
    """A single line of command output did not match the expected layout."""
    code = "PARSE_ERROR"
    default_message = "Unparseable table line"
    category = ErrorCategory.PARSING
    severity = ErrorSeverity.DEBUG

    def __init__(self, line: str, reason: str, **kwargs):
        self.line = line
        self.reason = reason
        super().__init__(f"{reason}: {line!r}", **kwargs)


class AcquisitionError(HostwatchError):
    """An OS introspection command failed as a whole."""
    code = "ACQUISITION_ERROR"
    default_message = "Could not observe the system"
    category = ErrorCategory.ACQUISITION
    severity = ErrorSeverity.WARNING
    is_retryable = True

    def __init__(self, command: str, reason: str, **kwargs):
        self.command = command
        self.reason = reason
        super().__init__(f"Command '{command}' failed: {reason}", **kwargs)

    def get_suggestions(self) -> List[str]:
        return [
            f"Check that '{self.command.split()[0]}' is installed and on PATH",
            "Run with enough privileges to read other users' sockets"
        ]

    def get_retry_after(self) -> Optional[int]:
        return 5


# Action errors

class RemediationError(HostwatchError):
    """A remediation action could not be carried out."""
    code = "REMEDIATION_ERROR"
    default_message = "Remediation action failed"
    category = ErrorCategory.REMEDIATION


class NoAvailablePortError(HostwatchError):
    """Every candidate in a port search range is taken."""
    code = "NO_AVAILABLE_PORT"
    default_message = "No available ports found in range"
    category = ErrorCategory.REMEDIATION
    severity = ErrorSeverity.WARNING

    def __init__(self, start_port: int, search_width: int, **kwargs):
        self.start_port = start_port
        self.search_width = search_width
        message = (
            f"No available ports found in range "
            f"[{start_port}, {start_port + search_width})"
        )
        super().__init__(message, **kwargs)

    def get_suggestions(self) -> List[str]:
        return ["Widen the search range or start from a different port"]


# Error Context Manager

@contextmanager
def error_context(
    component: str,
    operation: str,
    reraise: bool = True,
    **metadata
):
    """
    Context manager that attaches component/operation context to errors.

    Non-hostwatch exceptions are wrapped in HostwatchError.

    Args:
        component: Component name
        operation: Operation name
        reraise: Whether to reraise exceptions
        **metadata: Additional context metadata
    """
    context = ErrorContext(
        component=component,
        operation=operation,
        metadata=metadata
    )

    try:
        yield context
    except HostwatchError as e:
        e.context.component = e.context.component or component
        e.context.operation = e.context.operation or operation
        e.context.metadata.update(metadata)
        logger.warning(
            "hostwatch_error_in_context",
            code=e.code,
            component=component,
            operation=operation,
            error=e.message
        )
        if reraise:
            raise
    except Exception as e:
        wrapped = HostwatchError(
            message=str(e) or type(e).__name__,
            context=context,
            cause=e
        )
        logger.error(
            "unexpected_error_in_context",
            component=component,
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True
        )
        if reraise:
            raise wrapped from e


# Export public API
__all__ = [
    'HostwatchError',
    'ErrorContext',
    'ErrorInfo',
    'ErrorSeverity',
    'ErrorCategory',
    'ConfigurationError',
    'ValidationError',
    'ParseError',
    'AcquisitionError',
    'RemediationError',
    'NoAvailablePortError',
    'error_context',
]
