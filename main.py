"""
File Intake Gate - security validation service for uploaded files.

This is the main entry point for the FastAPI application.
"""

import logging

from fastapi import FastAPI

from api.endpoints import (
    get_validation_policy,
    set_error_handler,
    set_file_validator,
    set_validation_timeout,
    validate_upload,
    validate_upload_basic,
)
from core.config import AppConfig, create_configured_validator, create_fastapi_app, setup_logging, setup_middleware


def create_app(config: AppConfig = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or AppConfig()

    setup_logging(config.log_level)

    app = create_fastapi_app()
    error_handler = setup_middleware(app)

    file_validator = create_configured_validator(config)

    # Inject dependencies into endpoints
    set_file_validator(file_validator)
    set_error_handler(error_handler)
    set_validation_timeout(config.validation_timeout)

    app.post("/files/validate")(validate_upload)
    app.post("/files/validate/basic")(validate_upload_basic)
    app.get("/files/policy")(get_validation_policy)

    logging.info("FastAPI application created and configured successfully")
    logging.info(
        f"Configuration: max_file_size={config.max_file_size}, "
        f"malware_scanning={config.enable_malware_scanning}, "
        f"integrity_check={config.enable_integrity_check}, timeout={config.validation_timeout}s"
    )

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
