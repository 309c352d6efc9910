"""Error models and exception hierarchy for the file intake gate."""

import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


# --- File Validation Exception Hierarchy ---

class FileValidationError(Exception):
    """Base exception for file validation errors."""
    pass


class FileSizeError(FileValidationError):
    """File is empty or exceeds maximum allowed size."""
    pass


class MimeTypeError(FileValidationError):
    """Declared MIME type not allowed."""
    pass


class ScannerError(FileValidationError):
    """A validation check failed to execute."""

    def __init__(self, check: str, cause: BaseException):
        super().__init__(f"{check} failed: {cause}")
        self.check = check
        self.cause = cause


# --- Error Handling Enums ---

class ErrorSeverity(Enum):
    """Enumeration for error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Enumeration for error categories."""
    VALIDATION = "validation"
    SECURITY = "security"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


# --- Error Context and Result Models ---

@dataclass
class ErrorContext:
    """Captures contextual information about an error occurrence."""
    error_id: str
    timestamp: datetime.datetime
    request_id: Optional[str]
    user_agent: Optional[str]
    endpoint: Optional[str]
    stack_trace: Optional[str]
    request_data: Dict[str, Any]


@dataclass
class ErrorResult:
    """Complete error processing result with context and user-friendly messages."""
    error_code: str
    severity: ErrorSeverity
    category: ErrorCategory
    technical_message: str
    user_message: str
    suggested_actions: List[str]
    context: ErrorContext
    recoverable: bool
    retry_after: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "error_id": self.context.error_id,
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.user_message,
            "suggested_actions": self.suggested_actions,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "timestamp": self.context.timestamp.isoformat(),
        }


# --- Application Exception Hierarchy ---

class ApplicationError(Exception):
    """Base exception for application errors with enhanced metadata."""

    def __init__(
        self,
        message: str,
        error_code: str,
        severity: ErrorSeverity,
        user_message: Optional[str] = None,
        suggested_actions: Optional[List[str]] = None
    ):
        super().__init__(message)
        self.error_code = error_code
        self.severity = severity
        self.user_message = user_message or message
        self.suggested_actions = suggested_actions or []


class ConfigurationError(ApplicationError):
    """Configuration and environment errors."""
    pass
