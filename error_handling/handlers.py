"""Error handling and user feedback for the file intake API."""

import asyncio
import datetime
import json
import logging
import re
import traceback
import uuid
from typing import Any, Callable, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from models.errors import (
    ConfigurationError,
    ErrorCategory,
    ErrorContext,
    ErrorResult,
    ErrorSeverity,
    FileSizeError,
    MimeTypeError,
    ScannerError,
)

logger = logging.getLogger(__name__)

_BASE64_PATTERN = re.compile(r"data:[^;]+;base64,[A-Za-z0-9+/]{50,}={0,2}|[A-Za-z0-9+/]{100,}={0,2}")
_LONG_CONTENT_PATTERN = re.compile(r"(?=.*[A-Za-z].*[A-Za-z].*[A-Za-z])\S{200,}")
MAX_TECHNICAL_MESSAGE_LENGTH = 500


class ErrorContextCapture:
    """Captures contextual information for error tracking and debugging."""

    async def capture_request_context(
        self,
        request: Request,
        additional_data: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        """
        Capture context from a FastAPI request.

        Args:
            request: FastAPI Request object
            additional_data: Additional context data

        Returns:
            ErrorContext: Captured context information
        """
        request_data = dict(additional_data or {})
        request_data.update({
            "method": request.method,
            "client_host": request.client.host if request.client else None,
            "content_type": request.headers.get("content-type"),
        })

        return ErrorContext(
            error_id=uuid.uuid4().hex,
            timestamp=datetime.datetime.now(),
            request_id=request.headers.get("x-request-id"),
            user_agent=request.headers.get("user-agent"),
            endpoint=request.url.path,
            stack_trace=traceback.format_exc(),
            request_data=request_data
        )

    async def capture_exception_context(
        self,
        exception: Exception,
        additional_data: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        """Capture context from an exception raised outside a request."""
        return ErrorContext(
            error_id=uuid.uuid4().hex,
            timestamp=datetime.datetime.now(),
            request_id=None,
            user_agent=None,
            endpoint=None,
            stack_trace="".join(traceback.format_exception(type(exception), exception, exception.__traceback__)),
            request_data=dict(additional_data or {})
        )


class ErrorMessageTranslator:
    """Translates technical error messages to user-friendly messages with suggested actions."""

    def __init__(self):
        self._translation_rules = {
            FileSizeError: {
                "user_message": "The file is empty or larger than the allowed upload size.",
                "suggested_actions": [
                    "Check that the file is not empty",
                    "Compress the file or select a smaller one",
                ],
                "severity": ErrorSeverity.MEDIUM,
                "category": ErrorCategory.VALIDATION
            },
            MimeTypeError: {
                "user_message": "This file type is not accepted for upload.",
                "suggested_actions": [
                    "Check the list of supported file types",
                    "Convert your file to a supported format",
                ],
                "severity": ErrorSeverity.MEDIUM,
                "category": ErrorCategory.VALIDATION
            },
            ScannerError: {
                "user_message": "The file could not be checked for security issues.",
                "suggested_actions": [
                    "Try the upload again",
                    "Contact support with the error ID if the problem continues",
                ],
                "severity": ErrorSeverity.HIGH,
                "category": ErrorCategory.SECURITY
            },
            asyncio.TimeoutError: {
                "user_message": "Security validation took too long and the file was not accepted.",
                "suggested_actions": [
                    "Try the upload again",
                    "Upload a smaller file",
                ],
                "severity": ErrorSeverity.HIGH,
                "category": ErrorCategory.SECURITY
            },
            ConfigurationError: {
                "user_message": "There's a configuration issue. Please contact support.",
                "suggested_actions": [
                    "Contact technical support",
                    "Report this error with the error ID",
                ],
                "severity": ErrorSeverity.CRITICAL,
                "category": ErrorCategory.CONFIGURATION
            },
            Exception: {
                "user_message": "An unexpected error occurred. Please try again.",
                "suggested_actions": [
                    "Try your request again",
                    "Contact support with the error ID if needed",
                ],
                "severity": ErrorSeverity.MEDIUM,
                "category": ErrorCategory.SYSTEM
            }
        }

    def translate_error(
        self,
        exception: Exception,
        context: ErrorContext,
        fallback_message: Optional[str] = None
    ) -> ErrorResult:
        """
        Translate a technical error to a user-friendly error result.

        Args:
            exception: The exception to translate
            context: Error context information
            fallback_message: Optional fallback message if no rule matches

        Returns:
            ErrorResult: User-friendly error result
        """
        rule = self._get_translation_rule(exception)
        technical_message = self._sanitize_technical_message(str(exception))
        recoverable = self._is_recoverable(exception)

        return ErrorResult(
            error_code=self._generate_error_code(exception),
            severity=rule.get("severity", ErrorSeverity.MEDIUM),
            category=rule.get("category", ErrorCategory.SYSTEM),
            technical_message=technical_message,
            user_message=rule.get("user_message", fallback_message or technical_message),
            suggested_actions=list(rule.get("suggested_actions", [])),
            context=context,
            recoverable=recoverable,
            retry_after=self._get_retry_delay(exception) if recoverable else None
        )

    def _get_translation_rule(self, exception: Exception) -> Dict[str, Any]:
        """Get the most specific translation rule for an exception."""
        exception_type = type(exception)
        if exception_type in self._translation_rules:
            return self._translation_rules[exception_type]

        for rule_type, rule in self._translation_rules.items():
            if isinstance(exception, rule_type):
                return rule

        return self._translation_rules.get(Exception, {})

    def _generate_error_code(self, exception: Exception) -> str:
        code = getattr(exception, "error_code", None)
        if code:
            return code
        exception_name = type(exception).__name__
        timestamp = int(datetime.datetime.now().timestamp())
        return f"{exception_name}_{timestamp}"

    def _is_recoverable(self, exception: Exception) -> bool:
        """Scanner faults and timeouts are transient and may be retried."""
        return isinstance(exception, (ScannerError, asyncio.TimeoutError))

    def _get_retry_delay(self, exception: Exception) -> Optional[int]:
        if isinstance(exception, asyncio.TimeoutError):
            return 10
        if isinstance(exception, ScannerError):
            return 2
        return None

    def _sanitize_technical_message(self, message: str) -> str:
        """
        Strip file content from a technical message before it is logged.

        Exceptions raised while parsing uploads can carry raw payload bytes;
        base64 blobs and long unbroken strings are replaced with placeholders.
        """
        message = _BASE64_PATTERN.sub("[BASE64_CONTENT_TRUNCATED]", message)
        message = _LONG_CONTENT_PATTERN.sub("[LONG_CONTENT_TRUNCATED]", message)

        if len(message) > MAX_TECHNICAL_MESSAGE_LENGTH:
            message = message[:MAX_TECHNICAL_MESSAGE_LENGTH] + "... [TRUNCATED]"

        return message


class ErrorHandler:
    """Main error handler that orchestrates error processing."""

    def __init__(self):
        self.context_capture = ErrorContextCapture()
        self.message_translator = ErrorMessageTranslator()

    async def handle_error(
        self,
        exception: Exception,
        request: Optional[Request] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ) -> ErrorResult:
        """
        Capture context, translate and log an error.

        Args:
            exception: The exception to handle
            request: FastAPI request object
            additional_context: Additional context data

        Returns:
            ErrorResult: Complete error handling result
        """
        try:
            if request is not None:
                context = await self.context_capture.capture_request_context(request, additional_context)
            else:
                context = await self.context_capture.capture_exception_context(exception, additional_context)

            error_result = self.message_translator.translate_error(exception, context)
            self._log_error(error_result)
            return error_result

        except Exception as handler_error:
            logger.error(f"Error handler failed: {handler_error}")
            return self._create_fallback_error_result(exception)

    def _log_error(self, error_result: ErrorResult) -> None:
        """Log error with appropriate level based on severity."""
        log_data = {
            "error_id": error_result.context.error_id,
            "error_code": error_result.error_code,
            "category": error_result.category.value,
            "severity": error_result.severity.value,
            "endpoint": error_result.context.endpoint,
            "technical_message": error_result.technical_message
        }

        if error_result.severity == ErrorSeverity.CRITICAL:
            logger.critical(f"Critical error: {json.dumps(log_data)}")
        elif error_result.severity == ErrorSeverity.HIGH:
            logger.error(f"High severity error: {json.dumps(log_data)}")
        elif error_result.severity == ErrorSeverity.MEDIUM:
            logger.warning(f"Medium severity error: {json.dumps(log_data)}")
        else:
            logger.info(f"Low severity error: {json.dumps(log_data)}")

    def _create_fallback_error_result(self, exception: Exception) -> ErrorResult:
        """Create a minimal error result when error handling fails."""
        error_id = uuid.uuid4().hex
        context = ErrorContext(
            error_id=error_id,
            timestamp=datetime.datetime.now(),
            request_id=None,
            user_agent=None,
            endpoint=None,
            stack_trace=traceback.format_exc(),
            request_data={}
        )

        return ErrorResult(
            error_code=f"FALLBACK_{error_id}",
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.SYSTEM,
            technical_message=self.message_translator._sanitize_technical_message(str(exception)),
            user_message="A system error occurred. Please try again or contact support.",
            suggested_actions=["Try again", "Contact support"],
            context=context,
            recoverable=False,
            retry_after=None
        )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware for centralized error handling."""

    status_codes = {
        ErrorCategory.VALIDATION: 400,
        ErrorCategory.SECURITY: 503,
        ErrorCategory.CONFIGURATION: 500,
        ErrorCategory.SYSTEM: 500
    }

    def __init__(self, app, error_handler: ErrorHandler):
        super().__init__(app)
        self.error_handler = error_handler

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            error_result = await self.error_handler.handle_error(e, request)
            return self._create_error_response(error_result)

    def _create_error_response(self, error_result: ErrorResult) -> JSONResponse:
        content = {"error": True, **error_result.to_dict()}
        return JSONResponse(
            status_code=self.status_codes.get(error_result.category, 500),
            content=content
        )
