"""Core configuration and utilities."""

from .config import (
    AppConfig,
    create_configured_validator,
    create_fastapi_app,
    get_config,
    setup_logging,
    setup_middleware,
)

__all__ = [
    'AppConfig',
    'create_configured_validator',
    'create_fastapi_app',
    'get_config',
    'setup_logging',
    'setup_middleware',
]
