"""FastAPI route handlers for file intake validation."""

import asyncio
import logging
from typing import Optional

from fastapi import File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from error_handling.handlers import ErrorHandler
from models.validation import FileData, UploadContext
from validation.validators import FileValidator

DEFAULT_MIME_TYPE = "application/octet-stream"

# Injected from main.py
file_validator: Optional[FileValidator] = None
error_handler = ErrorHandler()
validation_timeout = 15.0


def set_file_validator(validator_instance: FileValidator) -> None:
    """Set the file validator instance for use in endpoints."""
    global file_validator
    file_validator = validator_instance


def set_error_handler(handler_instance: ErrorHandler) -> None:
    """Set the error handler used to report validation timeouts."""
    global error_handler
    error_handler = handler_instance


def set_validation_timeout(seconds: float) -> None:
    global validation_timeout
    validation_timeout = seconds


def _get_validator() -> FileValidator:
    if file_validator is None:
        raise HTTPException(status_code=503, detail="File validator is not configured")
    return file_validator


async def _read_upload(file: UploadFile) -> FileData:
    content = await file.read()
    await file.seek(0)
    return FileData(
        buffer=content,
        original_name=file.filename,
        mime_type=file.content_type or DEFAULT_MIME_TYPE,
        size=getattr(file, "size", None),
    )


async def validate_upload(
    request: Request,
    file: UploadFile = File(...),
    user_id: Optional[str] = Form(None),
    upload_type: Optional[str] = Form(None),
):
    """
    Run full security validation on an uploaded file.

    The verdict is returned with status 200 whether or not the file is
    accepted; callers persist the file only when ``should_block`` is false.
    A validation that exceeds the configured timeout is reported as blocked.
    """
    validator = _get_validator()
    file_data = await _read_upload(file)
    logging.info(f"File received: {file.filename}, Content-Type: {file.content_type}, size: {file_data.actual_size}")

    context = UploadContext(
        user_id=user_id,
        upload_type=upload_type,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

    try:
        result = await asyncio.wait_for(
            validator.validate_file_security(file_data, context),
            timeout=validation_timeout,
        )
    except asyncio.TimeoutError:
        timeout_error = asyncio.TimeoutError(f"Security validation timed out after {validation_timeout} seconds")
        await error_handler.handle_error(timeout_error, request, {"file_name": file.filename})
        result = validator.create_failed_result(timeout_error)

    return JSONResponse(content=result.to_dict())


async def validate_upload_basic(file: UploadFile = File(...)):
    """Basic and content validation only, for fast-reject call sites."""
    validator = _get_validator()
    file_data = await _read_upload(file)
    result = await validator.validate_file(file_data)
    return JSONResponse(content=result.to_dict())


async def get_validation_policy():
    """Describe the active validation policy."""
    validator = _get_validator()
    return {**validator.config.to_dict(), "validation_timeout_seconds": validation_timeout}
