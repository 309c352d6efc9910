"""API endpoints and route handlers."""

from .endpoints import (
    get_validation_policy,
    set_error_handler,
    set_file_validator,
    set_validation_timeout,
    validate_upload,
    validate_upload_basic,
)

__all__ = [
    "get_validation_policy",
    "set_error_handler",
    "set_file_validator",
    "set_validation_timeout",
    "validate_upload",
    "validate_upload_basic",
]
