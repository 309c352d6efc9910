"""Validation models and enums for file intake security checks."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Protocol, Tuple, Union

from models.errors import ConfigurationError, ErrorSeverity

MEGABYTE = 1024 * 1024


class ThreatType(str, Enum):
    """Classification of a threat finding."""

    VIRUS = "virus"
    MALWARE = "malware"
    SUSPICIOUS = "suspicious"
    INJECTION_ATTEMPT = "injection_attempt"
    UNKNOWN = "unknown"


class RiskLevel(str, Enum):
    """Ordered severity scale used for findings and for overall risk."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    @classmethod
    def max_of(cls, levels: Iterable["RiskLevel"]) -> "RiskLevel":
        """Return the most severe level, or LOW for an empty iterable."""
        highest = cls.LOW
        for level in levels:
            if level.rank > highest.rank:
                highest = level
        return highest

    def at_least(self, other: "RiskLevel") -> "RiskLevel":
        return self if self.rank >= other.rank else other


_RISK_ORDER = (RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL)


class ChecksumAlgorithm(str, Enum):
    """Digest algorithms accepted by the integrity checker."""

    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"


@dataclass(frozen=True)
class FileData:
    """Untrusted upload as received from the caller."""

    buffer: bytes
    original_name: Optional[str]
    mime_type: str
    size: Optional[int] = None

    @property
    def actual_size(self) -> int:
        return len(self.buffer)

    @property
    def declared_size(self) -> int:
        return self.size if self.size is not None else len(self.buffer)

    @property
    def declared_type(self) -> str:
        """Declared MIME type without parameters, e.g. ``text/plain`` for ``text/plain; charset=utf-8``."""
        return (self.mime_type or "").split(";", 1)[0].strip().lower()


@dataclass(frozen=True)
class UploadContext:
    """Optional caller metadata carried into log records."""

    user_id: Optional[str] = None
    upload_type: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_value(cls, value: Union["UploadContext", Mapping[str, Any], None]) -> Optional["UploadContext"]:
        if value is None or isinstance(value, UploadContext):
            return value
        return cls(
            user_id=_optional_str(value.get("user_id")),
            upload_type=_optional_str(value.get("upload_type")),
            ip_address=_optional_str(value.get("ip_address")),
            user_agent=_optional_str(value.get("user_agent")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "upload_type": self.upload_type,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }


@dataclass(frozen=True)
class FileInfo:
    detected_mime_type: str
    actual_size: int
    sanitized_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected_mime_type": self.detected_mime_type,
            "actual_size": self.actual_size,
            "sanitized_name": self.sanitized_name,
        }


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of basic and content validation."""

    is_valid: bool
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    file_info: Optional[FileInfo] = None

    @classmethod
    def from_messages(
        cls, errors: Iterable[str], warnings: Iterable[str] = (), file_info: Optional[FileInfo] = None
    ) -> "ValidationResult":
        """Build a result whose validity follows from the collected errors."""
        errors = tuple(errors)
        return cls(is_valid=not errors, errors=errors, warnings=tuple(warnings), file_info=file_info)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "file_info": self.file_info.to_dict() if self.file_info else None,
        }


@dataclass(frozen=True)
class ThreatInfo:
    """A single severity-rated finding produced by a detector."""

    type: ThreatType
    name: str
    severity: RiskLevel
    description: Optional[str] = None
    confidence: Optional[int] = None
    mitigation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "name": self.name,
            "severity": self.severity.value,
            "description": self.description,
            "confidence": self.confidence,
            "mitigation": self.mitigation,
        }


@dataclass(frozen=True)
class ScanResult:
    is_clean: bool
    threats: Tuple[ThreatInfo, ...]
    scan_time: float
    scan_id: str
    risk_level: RiskLevel = RiskLevel.LOW
    recommendations: Tuple[str, ...] = ()
    scanner_version: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_clean": self.is_clean,
            "threats": [threat.to_dict() for threat in self.threats],
            "scan_time": self.scan_time,
            "scan_id": self.scan_id,
            "risk_level": self.risk_level.value,
            "recommendations": list(self.recommendations),
            "scanner_version": self.scanner_version,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class ContentValidationResult:
    is_valid: bool
    content_type: str
    actual_mime_type: Optional[str]
    mime_type_mismatch: bool
    has_embedded_content: bool
    embedded_content_types: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "content_type": self.content_type,
            "actual_mime_type": self.actual_mime_type,
            "mime_type_mismatch": self.mime_type_mismatch,
            "has_embedded_content": self.has_embedded_content,
            "embedded_content_types": list(self.embedded_content_types),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class IntegrityResult:
    is_intact: bool
    checksum: str
    algorithm: ChecksumAlgorithm
    corruption_detected: bool
    errors: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_intact": self.is_intact,
            "checksum": self.checksum,
            "algorithm": self.algorithm.value,
            "corruption_detected": self.corruption_detected,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class SecurityValidationResult:
    """Final verdict for one file."""

    is_secure: bool
    basic_validation: ValidationResult
    security_scan: ScanResult
    overall_risk_level: RiskLevel
    recommendations: Tuple[str, ...]
    should_block: bool
    requires_manual_review: bool
    content_validation: Optional[ContentValidationResult] = None
    integrity: Optional[IntegrityResult] = None

    @property
    def scan_id(self) -> str:
        return self.security_scan.scan_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_secure": self.is_secure,
            "basic_validation": self.basic_validation.to_dict(),
            "security_scan": self.security_scan.to_dict(),
            "overall_risk_level": self.overall_risk_level.value,
            "recommendations": list(self.recommendations),
            "should_block": self.should_block,
            "requires_manual_review": self.requires_manual_review,
            "content_validation": self.content_validation.to_dict() if self.content_validation else None,
            "integrity": self.integrity.to_dict() if self.integrity else None,
            "scan_id": self.scan_id,
        }


class CustomValidator(Protocol):
    """Caller-supplied check run alongside the built-in basic checks.

    ``validate`` may be a plain or a coroutine function.
    """

    name: str

    def validate(self, file: FileData) -> Any:
        ...


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _invalid_config(message: str) -> ConfigurationError:
    return ConfigurationError(message, error_code="INVALID_VALIDATION_CONFIG", severity=ErrorSeverity.HIGH)


@dataclass(frozen=True)
class FileValidationConfig:
    """Policy record for the validation pipeline."""

    allowed_mime_types: Optional[FrozenSet[str]] = None
    max_file_size: int = 10 * MEGABYTE
    enable_malware_scanning: bool = True
    enable_content_validation: bool = True
    enable_integrity_check: bool = True
    enable_steganography_check: bool = True
    custom_validators: Tuple[CustomValidator, ...] = ()
    blocked_extensions: Optional[FrozenSet[str]] = None
    checksum_algorithm: ChecksumAlgorithm = ChecksumAlgorithm.SHA256
    content_scan_window: int = 8192
    threat_scan_window: int = 32768
    sql_injection_severity: RiskLevel = RiskLevel.HIGH
    command_injection_severity: RiskLevel = RiskLevel.HIGH
    blocked_checksums: FrozenSet[str] = field(default_factory=frozenset)
    low_confidence_threshold: int = 80

    def __post_init__(self):
        # Frozen dataclass: normalise through object.__setattr__
        if self.allowed_mime_types is not None:
            object.__setattr__(self, "allowed_mime_types", frozenset(t.lower() for t in self.allowed_mime_types))
        if self.blocked_extensions is not None:
            object.__setattr__(self, "blocked_extensions", frozenset(_normalize_extension(e) for e in self.blocked_extensions))
        object.__setattr__(self, "custom_validators", tuple(self.custom_validators))
        object.__setattr__(self, "blocked_checksums", frozenset(c.lower() for c in self.blocked_checksums))

        try:
            object.__setattr__(self, "checksum_algorithm", ChecksumAlgorithm(self.checksum_algorithm))
            object.__setattr__(self, "sql_injection_severity", RiskLevel(self.sql_injection_severity))
            object.__setattr__(self, "command_injection_severity", RiskLevel(self.command_injection_severity))
        except ValueError as e:
            raise _invalid_config(f"Invalid validation config value: {e}") from e

        if self.max_file_size <= 0:
            raise _invalid_config(f"max_file_size must be positive, got {self.max_file_size}")
        if self.content_scan_window <= 0 or self.threat_scan_window <= 0:
            raise _invalid_config("Scan windows must be positive")
        if not 0 <= self.low_confidence_threshold <= 100:
            raise _invalid_config(f"low_confidence_threshold must be within 0-100, got {self.low_confidence_threshold}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed_mime_types": sorted(self.allowed_mime_types) if self.allowed_mime_types else None,
            "max_file_size": self.max_file_size,
            "enable_malware_scanning": self.enable_malware_scanning,
            "enable_content_validation": self.enable_content_validation,
            "enable_integrity_check": self.enable_integrity_check,
            "enable_steganography_check": self.enable_steganography_check,
            "custom_validators": [getattr(v, "name", type(v).__name__) for v in self.custom_validators],
            "blocked_extensions": sorted(self.blocked_extensions) if self.blocked_extensions else None,
            "checksum_algorithm": self.checksum_algorithm.value,
        }


def _normalize_extension(extension: str) -> str:
    extension = extension.strip().lower()
    return extension if extension.startswith(".") else f".{extension}"
