"""Core configuration and utility functions."""

import logging
import os
from typing import Optional, Set

from dotenv import load_dotenv
from fastapi import FastAPI

from error_handling.handlers import ErrorHandler, ErrorHandlingMiddleware
from models.errors import ConfigurationError, ErrorSeverity
from models.validation import FileValidationConfig
from validation.validators import DEFAULT_ALLOWED_MIME_TYPES, FileValidator, create_file_validator

# Load environment variables
load_dotenv()

# File validation configuration constants
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB default
ALLOWED_MIME_TYPES = set(DEFAULT_ALLOWED_MIME_TYPES)
BLOCKED_EXTENSIONS = {".exe", ".bat", ".cmd", ".com", ".scr", ".pif", ".vbs", ".ps1"}
CHECKSUM_ALGORITHM = "sha256"
VALIDATION_TIMEOUT_SECONDS = 15.0


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() == "true"


class AppConfig:
    """Application configuration settings read from the environment."""

    def __init__(self):
        self.max_file_size = int(os.getenv("MAX_FILE_SIZE", MAX_FILE_SIZE))
        self.allowed_mime_types = self._parse_mime_types(os.getenv("ALLOWED_MIME_TYPES", "")) or ALLOWED_MIME_TYPES
        self.blocked_extensions = self._parse_extensions(os.getenv("BLOCKED_EXTENSIONS", "")) or BLOCKED_EXTENSIONS
        self.enable_malware_scanning = _env_flag("ENABLE_MALWARE_SCANNING")
        self.enable_content_validation = _env_flag("ENABLE_CONTENT_VALIDATION")
        self.enable_integrity_check = _env_flag("ENABLE_INTEGRITY_CHECK")
        self.enable_steganography_check = _env_flag("ENABLE_STEGANOGRAPHY_CHECK")
        self.checksum_algorithm = os.getenv("CHECKSUM_ALGORITHM", CHECKSUM_ALGORITHM).lower()
        self.validation_timeout = float(os.getenv("VALIDATION_TIMEOUT_SECONDS", VALIDATION_TIMEOUT_SECONDS))
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        if self.validation_timeout <= 0:
            raise ConfigurationError(
                f"VALIDATION_TIMEOUT_SECONDS must be positive, got {self.validation_timeout}",
                error_code="INVALID_VALIDATION_TIMEOUT",
                severity=ErrorSeverity.HIGH,
            )

    def _parse_mime_types(self, mime_types_str: str) -> Optional[Set[str]]:
        """Parse comma-separated MIME types from environment variable."""
        if not mime_types_str:
            return None
        return {mt.strip().lower() for mt in mime_types_str.split(",") if mt.strip()}

    def _parse_extensions(self, extensions_str: str) -> Optional[Set[str]]:
        """Parse comma-separated file extensions from environment variable."""
        if not extensions_str:
            return None
        return {ext.strip() for ext in extensions_str.split(",") if ext.strip()}

    def get_file_validation_config(self) -> FileValidationConfig:
        """Get file validation configuration."""
        return FileValidationConfig(
            max_file_size=self.max_file_size,
            allowed_mime_types=frozenset(self.allowed_mime_types),
            blocked_extensions=frozenset(self.blocked_extensions),
            enable_malware_scanning=self.enable_malware_scanning,
            enable_content_validation=self.enable_content_validation,
            enable_integrity_check=self.enable_integrity_check,
            enable_steganography_check=self.enable_steganography_check,
            checksum_algorithm=self.checksum_algorithm,
        )


def create_fastapi_app() -> FastAPI:
    """Create and configure FastAPI application instance."""
    return FastAPI(
        title="File Intake Gate",
        description="Security validation for uploaded files before storage",
        version="1.0.0",
    )


def setup_middleware(app: FastAPI) -> ErrorHandler:
    """Configure FastAPI middleware and return the shared error handler."""
    error_handler = ErrorHandler()
    app.add_middleware(ErrorHandlingMiddleware, error_handler=error_handler)
    return error_handler


def create_configured_validator(config: AppConfig) -> FileValidator:
    """Create file validator instance with configuration."""
    return create_file_validator(config.get_file_validation_config())


def setup_logging(level: str = "INFO") -> None:
    """Configure application logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    # Suppress some noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)


def get_config() -> AppConfig:
    """Get the application configuration from the current environment."""
    return AppConfig()
