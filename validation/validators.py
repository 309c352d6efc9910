"""File validation orchestration and risk aggregation."""

import asyncio
import dataclasses
import inspect
import json
import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from models.errors import FileSizeError, MimeTypeError, ScannerError
from models.validation import (
    ContentValidationResult,
    FileData,
    FileInfo,
    FileValidationConfig,
    IntegrityResult,
    RiskLevel,
    ScanResult,
    SecurityValidationResult,
    ThreatInfo,
    ThreatType,
    UploadContext,
    ValidationResult,
)
from validation.content import ContentValidator
from validation.detection import MimeTypeDetector
from validation.integrity import IntegrityChecker
from validation.sanitizer import FileNameSanitizer
from validation.signatures import CLEAN_RECOMMENDATION
from validation.threats import INSECURE_FILE_NAME, SCAN_ERROR, SCANNER_VERSION, SecurityScanner, generate_scan_id

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "text/plain",
    "text/markdown",
    "text/csv",
    "text/html",
    "application/json",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/zip",
    "application/x-rar-compressed",
})

DEFAULT_VALIDATION_CONFIG = FileValidationConfig(allowed_mime_types=DEFAULT_ALLOWED_MIME_TYPES)

FIX_BASIC_VALIDATION = "Fix basic validation errors"
HIGH_RISK_WARNING = "HIGH RISK: Block file upload and review the upload source"
VERIFY_INTEGRITY = "Verify file integrity and re-upload from the original source"
RETRY_VALIDATION = "Retry security validation"
MANUAL_REVIEW = "Manual review required"
SCAN_SKIPPED = "Security scan skipped: file exceeds maximum allowed size"

_RISK_LOG_LEVELS = {
    RiskLevel.LOW: logging.INFO,
    RiskLevel.MEDIUM: logging.WARNING,
    RiskLevel.HIGH: logging.ERROR,
    RiskLevel.CRITICAL: logging.CRITICAL,
}


def format_bytes(size: int) -> str:
    """Human readable byte count, e.g. ``10 MB``."""
    units = ("Bytes", "KB", "MB", "GB", "TB")
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


class SizeValidator:
    """Validates file sizes against configured limits."""

    def __init__(self, max_file_size: int):
        self.max_file_size = max_file_size

    def validate_size(self, file_size: int) -> None:
        """
        Validate file size against limits.

        Args:
            file_size: Size of the file in bytes

        Raises:
            FileSizeError: If file size is invalid
        """
        if file_size <= 0:
            raise FileSizeError("File buffer is empty")

        if file_size > self.max_file_size:
            raise FileSizeError(
                f"File size ({format_bytes(file_size)}) exceeds maximum allowed size ({format_bytes(self.max_file_size)})"
            )


class FileValidator:
    """Main file validation orchestrator.

    Holds only its configuration and stateless components, so one instance can
    serve concurrent validations of unrelated files.
    """

    def __init__(self, config: Optional[FileValidationConfig] = None):
        self.config = config or DEFAULT_VALIDATION_CONFIG
        self.size_validator = SizeValidator(self.config.max_file_size)
        self.mime_detector = MimeTypeDetector()
        self.file_name_sanitizer = FileNameSanitizer()
        self.content_validator = ContentValidator(self.mime_detector, self.config.content_scan_window)
        self.integrity_checker = IntegrityChecker(self.config.checksum_algorithm, self.mime_detector)
        self.security_scanner = SecurityScanner(self.config, self.mime_detector)

    # --- Individual checks ---

    def sanitize_file_name(self, name: Optional[str]) -> str:
        return self.file_name_sanitizer.sanitize(name)

    def validate_file_size(self, file: FileData, max_size: Optional[int] = None) -> ValidationResult:
        validator = self.size_validator if max_size is None else SizeValidator(max_size)
        try:
            validator.validate_size(file.actual_size)
        except FileSizeError as e:
            return ValidationResult.from_messages([str(e)])
        return ValidationResult(is_valid=True)

    def validate_mime_type(self, file: FileData, allowed_types: Optional[Sequence[str]] = None) -> ValidationResult:
        allowed = self.config.allowed_mime_types if allowed_types is None else frozenset(allowed_types)
        try:
            self._check_mime_type_allowed(file.declared_type, allowed)
        except MimeTypeError as e:
            return ValidationResult.from_messages([str(e)])
        return ValidationResult(is_valid=True)

    @staticmethod
    def _check_mime_type_allowed(mime_type: str, allowed: Optional[frozenset]) -> None:
        if allowed and mime_type not in allowed:
            raise MimeTypeError(f"MIME type '{mime_type}' is not allowed")

    async def validate_file_content(self, file: FileData) -> ContentValidationResult:
        return await self.content_validator.validate_content(file)

    async def check_file_integrity(self, file: FileData) -> IntegrityResult:
        return await self.integrity_checker.check_integrity(file)

    async def scan_for_malware(self, file: FileData, context: Optional[UploadContext] = None) -> ScanResult:
        return await self.security_scanner.scan_file(file, context)

    # --- Basic validation ---

    def _basic_checks(self, file: FileData) -> Tuple[List[str], List[str]]:
        """Cheap structural and policy checks. All errors are collected."""
        errors: List[str] = []
        warnings: List[str] = []

        try:
            self.size_validator.validate_size(file.actual_size)
        except FileSizeError as e:
            errors.append(str(e))

        name = file.original_name
        if not name or not name.strip():
            errors.append("File name is required")

        if file.size is not None and file.size != file.actual_size:
            warnings.append(f"Declared size ({file.size} bytes) does not match actual size ({file.actual_size} bytes)")

        try:
            self._check_mime_type_allowed(file.declared_type, self.config.allowed_mime_types)
        except MimeTypeError as e:
            errors.append(str(e))

        if self.config.blocked_extensions and name:
            ext = os.path.splitext(name.lower())[1]
            if ext in self.config.blocked_extensions:
                errors.append(f"File extension '{ext}' is blocked")

        if name and name.strip():
            sanitized = self.sanitize_file_name(name)
            if sanitized != name:
                warnings.append(f"File name was sanitized to '{sanitized}'")

        return errors, warnings

    def _should_inspect_content(self, file: FileData) -> bool:
        return self.config.enable_content_validation and 0 < file.actual_size <= self.config.max_file_size

    async def validate_basic_file(self, file: FileData) -> ValidationResult:
        """Basic checks only: size, name, declared type and extension."""
        errors, warnings = self._basic_checks(file)
        return ValidationResult.from_messages(errors, warnings, self._file_info(file))

    async def _run_custom_validators(self, file: FileData) -> Tuple[List[str], List[str]]:
        errors: List[str] = []
        warnings: List[str] = []
        for validator in self.config.custom_validators:
            name = getattr(validator, "name", type(validator).__name__)
            try:
                result = validator.validate(file)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                raise ScannerError(f"Custom validator '{name}'", e) from e

            errors.extend(f"{name}: {error}" for error in result.errors)
            warnings.extend(f"{name}: {warning}" for warning in result.warnings)
            if not result.is_valid and not result.errors:
                errors.append(f"{name}: validation failed")
        return errors, warnings

    def _file_info(self, file: FileData, detected: Optional[str] = None) -> FileInfo:
        if detected is None:
            detected = self.mime_detector.detect_mime_type(file.buffer)
        return FileInfo(
            detected_mime_type=detected or "unknown",
            actual_size=file.actual_size,
            sanitized_name=self.sanitize_file_name(file.original_name),
        )

    def _merge_validation(
        self,
        file: FileData,
        basic: Tuple[List[str], List[str]],
        content: Optional[ContentValidationResult],
        custom: Tuple[List[str], List[str]],
        integrity: Optional[IntegrityResult] = None,
    ) -> ValidationResult:
        errors, warnings = list(basic[0]), list(basic[1])
        detected = None
        if content is not None:
            detected = content.actual_mime_type
            errors.extend(content.errors)
            warnings.extend(content.warnings)
            if content.has_embedded_content:
                warnings.append(f"File contains embedded content: {', '.join(content.embedded_content_types)}")
        if integrity is not None:
            warnings.extend(f"Integrity check: {error}" for error in integrity.errors)
        errors.extend(custom[0])
        warnings.extend(custom[1])
        return ValidationResult.from_messages(errors, warnings, self._file_info(file, detected))

    async def validate_file(self, file: FileData) -> ValidationResult:
        """
        Basic plus content validation pipeline for fast-reject call sites.

        Args:
            file: File to validate

        Returns:
            ValidationResult: Complete validation results; never raises
        """
        try:
            basic = self._basic_checks(file)
            content = await self.validate_file_content(file) if self._should_inspect_content(file) else None
            custom = await self._run_custom_validators(file)
            return self._merge_validation(file, basic, content, custom)
        except Exception as e:
            logger.exception(f"File validation error: {e}")
            return ValidationResult.from_messages([f"Validation error: {e}"])

    async def validate_multiple_files(self, files: Sequence[FileData]) -> List[ValidationResult]:
        """Validate files independently; results keep the input order."""
        return list(await asyncio.gather(*(self.validate_file(file) for file in files)))

    # --- Security validation ---

    async def validate_file_security(
        self,
        file: FileData,
        context: Union[UploadContext, Mapping[str, Any], None] = None,
    ) -> SecurityValidationResult:
        """
        Run every check and aggregate a block/allow verdict.

        Fails closed: if any required check cannot execute, the result is a
        critical, blocking, review-required verdict.

        Args:
            file: File to validate
            context: Optional upload context (user id, upload type, client details)

        Returns:
            SecurityValidationResult: Final verdict; never raises
        """
        scan_id = generate_scan_id()
        upload_context = None
        try:
            upload_context = UploadContext.from_value(context)
            self._log_validation_start(file, upload_context, scan_id)
            result = await self._validate_security(file, upload_context, scan_id)
        except Exception as e:
            logger.exception(f"Security validation failed for scan {scan_id}: {e}")
            result = self.create_failed_result(e, scan_id)

        try:
            self._log_validation_outcome(file, upload_context, result)
        except Exception:
            logger.exception(f"Failed to log validation outcome for scan {result.scan_id}")
        return result

    async def _validate_security(
        self, file: FileData, context: Optional[UploadContext], scan_id: str
    ) -> SecurityValidationResult:
        basic = self._basic_checks(file)

        content: Optional[ContentValidationResult] = None
        integrity: Optional[IntegrityResult] = None
        if file.actual_size > self.config.max_file_size:
            custom = await self._run_custom_validators(file)
            scan = ScanResult(
                is_clean=True,
                threats=(),
                scan_time=0.001,
                scan_id=scan_id,
                recommendations=(SCAN_SKIPPED,),
                scanner_version=SCANNER_VERSION,
                skipped=True,
            )
        else:
            checks: Dict[str, Any] = {"custom_validators": self._run_custom_validators(file)}
            if self._should_inspect_content(file):
                checks["content_validation"] = self.validate_file_content(file)
            if self.config.enable_integrity_check:
                checks["integrity_check"] = self.check_file_integrity(file)
            checks["security_scan"] = self.security_scanner.scan_file(file, context, scan_id)

            outcomes = await asyncio.gather(*checks.values(), return_exceptions=True)
            results = {}
            for name, outcome in zip(checks, outcomes):
                if isinstance(outcome, ScannerError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    raise ScannerError(name, outcome) from outcome
                results[name] = outcome

            custom = results["custom_validators"]
            content = results.get("content_validation")
            integrity = results.get("integrity_check")
            scan = results["security_scan"]

        basic_validation = self._merge_validation(file, basic, content, custom, integrity)
        return self._aggregate(basic_validation, scan, content, integrity)

    def _aggregate(
        self,
        basic_validation: ValidationResult,
        scan: ScanResult,
        content: Optional[ContentValidationResult],
        integrity: Optional[IntegrityResult],
    ) -> SecurityValidationResult:
        overall = scan.risk_level
        if not basic_validation.is_valid:
            overall = overall.at_least(RiskLevel.MEDIUM)

        should_block = overall in (RiskLevel.HIGH, RiskLevel.CRITICAL)
        requires_review = (
            should_block
            or any(threat.name == INSECURE_FILE_NAME for threat in scan.threats)
            or any(self._is_low_confidence(threat) for threat in scan.threats)
        )

        recommendations = list(scan.recommendations)
        if not basic_validation.is_valid:
            recommendations = [r for r in recommendations if r != CLEAN_RECOMMENDATION]
            recommendations.append(FIX_BASIC_VALIDATION)
        if integrity is not None and integrity.corruption_detected:
            recommendations.append(VERIFY_INTEGRITY)
        if should_block:
            recommendations.append(HIGH_RISK_WARNING)

        return SecurityValidationResult(
            is_secure=basic_validation.is_valid and scan.is_clean,
            basic_validation=basic_validation,
            security_scan=scan,
            overall_risk_level=overall,
            recommendations=tuple(dict.fromkeys(recommendations)),
            should_block=should_block,
            requires_manual_review=requires_review,
            content_validation=content,
            integrity=integrity,
        )

    def _is_low_confidence(self, threat: ThreatInfo) -> bool:
        return threat.confidence is not None and threat.confidence < self.config.low_confidence_threshold

    def create_failed_result(self, error: BaseException, scan_id: Optional[str] = None) -> SecurityValidationResult:
        """Synthetic fail-closed verdict for a validation that could not complete."""
        recommendations = (RETRY_VALIDATION, MANUAL_REVIEW)
        failure = ThreatInfo(
            type=ThreatType.UNKNOWN,
            name=SCAN_ERROR,
            severity=RiskLevel.CRITICAL,
            description=f"Security validation could not complete: {error}",
            confidence=100,
            mitigation=RETRY_VALIDATION,
        )
        scan = ScanResult(
            is_clean=False,
            threats=(failure,),
            scan_time=0.001,
            scan_id=scan_id or generate_scan_id(),
            risk_level=RiskLevel.CRITICAL,
            recommendations=recommendations,
            scanner_version=SCANNER_VERSION,
        )
        return SecurityValidationResult(
            is_secure=False,
            basic_validation=ValidationResult.from_messages([f"Security validation failed: {error}"]),
            security_scan=scan,
            overall_risk_level=RiskLevel.CRITICAL,
            recommendations=recommendations,
            should_block=True,
            requires_manual_review=True,
        )

    # --- Logging ---

    @staticmethod
    def _describe_file(file: Any) -> Dict[str, Any]:
        buffer = getattr(file, "buffer", None)
        return {
            "file_name": getattr(file, "original_name", None),
            "file_size": len(buffer) if isinstance(buffer, (bytes, bytearray)) else None,
            "declared_size": getattr(file, "size", None),
            "mime_type": getattr(file, "mime_type", None),
        }

    def _log_validation_start(self, file: FileData, context: Optional[UploadContext], scan_id: str) -> None:
        log_data = {
            "event": "security_validation_started",
            "scan_id": scan_id,
            **self._describe_file(file),
            "user_id": context.user_id if context else None,
            "upload_type": context.upload_type if context else None,
        }
        logger.info(f"Starting comprehensive security validation: {json.dumps(log_data, default=str)}")

    def _log_validation_outcome(
        self, file: FileData, context: Optional[UploadContext], result: SecurityValidationResult
    ) -> None:
        log_data = {
            "event": "comprehensive_security_validation",
            "scan_id": result.scan_id,
            **self._describe_file(file),
            "is_secure": result.is_secure,
            "risk_level": result.overall_risk_level.value,
            "should_block": result.should_block,
            "requires_manual_review": result.requires_manual_review,
            "threat_count": len(result.security_scan.threats),
            "threats": [threat.name for threat in result.security_scan.threats],
            "user_id": context.user_id if context else None,
            "upload_type": context.upload_type if context else None,
            "ip_address": context.ip_address if context else None,
        }
        logger.log(_RISK_LOG_LEVELS[result.overall_risk_level], json.dumps(log_data, default=str))


def create_file_validator(config: Optional[FileValidationConfig] = None, **overrides: Any) -> FileValidator:
    """
    Build a validator from a base config with field overrides.

    Args:
        config: Base configuration, defaults to DEFAULT_VALIDATION_CONFIG
        **overrides: FileValidationConfig fields to replace

    Returns:
        FileValidator: Configured validator
    """
    base = config or DEFAULT_VALIDATION_CONFIG
    return FileValidator(dataclasses.replace(base, **overrides) if overrides else base)
