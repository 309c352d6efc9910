"""Heuristic threat detection over untrusted file content."""

import asyncio
import hashlib
import logging
import math
import os
import time
import uuid
from collections import Counter
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

from models.validation import (
    FileData,
    FileValidationConfig,
    RiskLevel,
    ScanResult,
    ThreatInfo,
    ThreatType,
    UploadContext,
)
from validation.detection import MimeTypeDetector
from validation.sanitizer import validate_secure_file_name
from validation.signatures import (
    ARCHIVE_MIME_TYPES,
    CLEAN_RECOMMENDATION,
    COMMAND_EXECUTION_IDIOMS,
    DATA_EXFILTRATION_PATTERNS,
    EMBEDDED_MARKERS,
    ENTROPY_MIN_BYTES,
    ENTROPY_THRESHOLD,
    EXECUTABLE_EXTENSIONS,
    EXECUTABLE_MIME_TYPES,
    IMAGE_CARRIERS,
    IMAGE_SIZE_ANOMALY_FACTOR,
    IMAGE_SIZE_RATIOS,
    KNOWN_MALWARE_FILE_NAMES,
    LSB_ENTROPY_THRESHOLD,
    LSB_SAMPLE_BYTES,
    MIME_FAMILIES,
    PE_HEADER_POINTER_OFFSET,
    PE_MAGIC,
    RETRY_SCAN_RECOMMENDATION,
    RISK_RECOMMENDATIONS,
    SCRIPT_INJECTION_PATTERNS,
    SHELL_CHAINING,
    SHELL_SUBSTITUTION,
    SQL_INJECTION_PATTERNS,
    SUSPICIOUS_API_CALLS,
    ThreatPattern,
)

logger = logging.getLogger(__name__)

SCANNER_VERSION = "1.2.0"
ENTROPY_SAMPLE_BYTES = 1024 * 1024

INSECURE_FILE_NAME = "Insecure File Name"
SCAN_ERROR = "Scan Error"

_EXECUTABLE_LABELS = {
    "application/x-msdownload": "PE",
    "application/x-executable": "ELF",
    "application/x-mach-binary": "Mach-O",
}
_GENERIC_DECLARED_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream"})
_FAMILY_BY_FORMAT = {marker.format: marker.family for marker in EMBEDDED_MARKERS}


class ScanInput(NamedTuple):
    """Per-scan values shared by every detector."""

    file: FileData
    text: str
    detected_type: Optional[str]


Detector = Callable[[ScanInput], List[ThreatInfo]]


def generate_scan_id() -> str:
    return f"scan_{uuid.uuid4().hex}"


def calculate_entropy(content: bytes) -> float:
    """Shannon entropy in bits per byte."""
    if not content:
        return 0.0
    total = len(content)
    return -sum((count / total) * math.log2(count / total) for count in Counter(content).values())


def calculate_lsb_entropy(content: bytes) -> float:
    """Entropy of the least significant bits, from 0.0 (uniform) to 1.0 (balanced)."""
    if not content:
        return 0.0
    ones = sum(byte & 1 for byte in content)
    zeros = len(content) - ones
    if not ones or not zeros:
        return 0.0
    total = len(content)
    return -sum((count / total) * math.log2(count / total) for count in (ones, zeros))


def calculate_risk_level(threats: Sequence[ThreatInfo]) -> RiskLevel:
    """
    Aggregate finding severities into one risk level.

    The maximum severity wins, and two or more high findings escalate to critical.
    """
    risk = RiskLevel.max_of(threat.severity for threat in threats)
    high_count = sum(1 for threat in threats if threat.severity == RiskLevel.HIGH)
    if high_count >= 2:
        risk = risk.at_least(RiskLevel.CRITICAL)
    return risk


def generate_recommendations(threats: Sequence[ThreatInfo], risk_level: RiskLevel) -> Tuple[str, ...]:
    if not threats:
        return (CLEAN_RECOMMENDATION,)

    recommendations = list(RISK_RECOMMENDATIONS[risk_level])
    for threat in threats:
        if threat.mitigation:
            recommendations.append(f"{threat.name}: {threat.mitigation}")
    if any(threat.name == SCAN_ERROR for threat in threats):
        recommendations.append(RETRY_SCAN_RECOMMENDATION)

    return tuple(dict.fromkeys(recommendations))


def _matched_names(patterns: Sequence[ThreatPattern], text: str) -> List[str]:
    return [p.name for p in patterns if p.pattern.search(text)]


class SecurityScanner:
    """Runs independent detectors over a file and aggregates their findings."""

    def __init__(self, config: Optional[FileValidationConfig] = None, detector: Optional[MimeTypeDetector] = None):
        self.config = config or FileValidationConfig()
        self.detector = detector or MimeTypeDetector()

    def detectors(self) -> List[Tuple[str, Detector]]:
        """Detectors applicable under the current configuration, in run order."""
        active = [
            ("filename", self.detect_insecure_file_name),
            ("suspicious_file_name", self.detect_suspicious_file_name),
            ("empty_file", self.detect_empty_file),
            ("script_injection", self.detect_script_injection),
            ("sql_injection", self.detect_sql_injection),
            ("command_injection", self.detect_command_injection),
            ("polyglot", self.detect_polyglot),
            ("data_exfiltration", self.detect_data_exfiltration),
        ]
        if self.config.enable_malware_scanning:
            active.extend([
                ("executable", self.detect_executable),
                ("known_checksum", self.detect_known_checksum),
                ("suspicious_api", self.detect_suspicious_api),
                ("entropy", self.detect_high_entropy),
            ])
            if self.config.enable_steganography_check:
                active.append(("steganography", self.detect_steganography))
        return active

    async def scan_file(
        self, file: FileData, context: Optional[UploadContext] = None, scan_id: Optional[str] = None
    ) -> ScanResult:
        """
        Scan a file with every applicable detector.

        Detectors are CPU-bound and run in the default executor. A detector that
        raises never yields a clean result; it is recorded as a critical
        "Scan Error" finding.

        Args:
            file: File to scan
            context: Optional upload metadata, used for logging only
            scan_id: Identifier to report; a fresh one is generated when omitted

        Returns:
            ScanResult: Findings, aggregated risk and recommendations
        """
        scan_id = scan_id or generate_scan_id()
        return await asyncio.get_event_loop().run_in_executor(None, self.run_detectors, file, context, scan_id)

    def run_detectors(self, file: FileData, context: Optional[UploadContext], scan_id: str) -> ScanResult:
        start = time.perf_counter()

        scan_input = ScanInput(
            file=file,
            text=file.buffer[:self.config.threat_scan_window].decode("utf-8", errors="replace"),
            detected_type=self.detector.detect_mime_type(file.buffer),
        )

        threats: List[ThreatInfo] = []
        for name, detector in self.detectors():
            try:
                threats.extend(detector(scan_input))
            except Exception as e:
                logger.exception(f"Detector '{name}' failed during scan {scan_id}")
                threats.append(
                    ThreatInfo(
                        type=ThreatType.UNKNOWN,
                        name=SCAN_ERROR,
                        severity=RiskLevel.CRITICAL,
                        description=f"Detector '{name}' failed: {e}",
                        confidence=100,
                        mitigation=RETRY_SCAN_RECOMMENDATION,
                    )
                )

        risk_level = calculate_risk_level(threats)
        scan_time = (time.perf_counter() - start) * 1000

        if threats:
            logger.warning(
                f"Scan {scan_id} found {len(threats)} threat(s) in {file.original_name!r} "
                f"(risk={risk_level.value}, user={context.user_id if context else None})"
            )

        return ScanResult(
            is_clean=not threats,
            threats=tuple(threats),
            scan_time=max(round(scan_time, 3), 0.001),
            scan_id=scan_id,
            risk_level=risk_level,
            recommendations=generate_recommendations(threats, risk_level),
            scanner_version=SCANNER_VERSION,
        )

    # --- Detectors ---

    def detect_insecure_file_name(self, scan: ScanInput) -> List[ThreatInfo]:
        name = scan.file.original_name
        if not name:
            return []

        issues = validate_secure_file_name(name)
        severity = RiskLevel.MEDIUM
        declared = scan.file.declared_type
        ext = os.path.splitext(name.lower())[1]

        if ext in EXECUTABLE_EXTENSIONS and declared not in EXECUTABLE_MIME_TYPES:
            issues.append(f"Executable extension '{ext}' on a non-executable upload")
            severity = RiskLevel.HIGH
        elif declared not in _GENERIC_DECLARED_TYPES:
            expected = self.detector.mime_types_for_extension(name)
            if expected and not any(self.detector.is_compatible(e, declared) for e in expected):
                issues.append(f"Extension '{ext}' contradicts declared type '{declared}'")

        if not issues:
            return []

        return [
            ThreatInfo(
                type=ThreatType.SUSPICIOUS,
                name=INSECURE_FILE_NAME,
                severity=severity,
                description="; ".join(issues),
                confidence=95,
                mitigation="Sanitize file name before storage",
            )
        ]

    def detect_script_injection(self, scan: ScanInput) -> List[ThreatInfo]:
        matched = _matched_names(SCRIPT_INJECTION_PATTERNS, scan.text)
        if not matched:
            return []
        return [
            ThreatInfo(
                type=ThreatType.INJECTION_ATTEMPT,
                name="Script Injection",
                severity=RiskLevel.HIGH,
                description=f"Script content detected: {', '.join(matched)}",
                confidence=90,
                mitigation="Strip script content or reject file",
            )
        ]

    def detect_sql_injection(self, scan: ScanInput) -> List[ThreatInfo]:
        matched = _matched_names(SQL_INJECTION_PATTERNS, scan.text)
        if not matched:
            return []
        return [
            ThreatInfo(
                type=ThreatType.INJECTION_ATTEMPT,
                name="SQL Injection Pattern",
                severity=self.config.sql_injection_severity,
                description=f"SQL injection markers detected: {', '.join(matched)}",
                confidence=85,
                mitigation="Sanitize content before database operations",
            )
        ]

    def detect_command_injection(self, scan: ScanInput) -> List[ThreatInfo]:
        idioms = _matched_names(COMMAND_EXECUTION_IDIOMS, scan.text)
        if not idioms:
            return []

        carriers = []
        if SHELL_SUBSTITUTION.search(scan.text):
            carriers.append("shell substitution")
        if SHELL_CHAINING.search(scan.text):
            carriers.append("command chaining")
        if not carriers:
            return []

        return [
            ThreatInfo(
                type=ThreatType.INJECTION_ATTEMPT,
                name="Command Injection Pattern",
                severity=self.config.command_injection_severity,
                description=f"{' and '.join(carriers).capitalize()} with {', '.join(idioms)}",
                confidence=80,
                mitigation="Reject file or strip shell content",
            )
        ]

    def detect_polyglot(self, scan: ScanInput) -> List[ThreatInfo]:
        primary = scan.detected_type
        if primary in ARCHIVE_MIME_TYPES:
            return []

        primary_family = _family_of(primary) if primary else None
        families = {primary_family} if primary_family else set()
        locations = []

        for fmt, offset in self.detector.find_embedded_signatures(scan.file.buffer):
            family = _family_of(fmt)
            if fmt == primary or family == primary_family:
                continue
            if family == "image" and primary in IMAGE_CARRIERS:
                continue
            families.add(family)
            locations.append(f"{fmt} at offset {offset}")

        if len(families) < 2:
            return []

        description = "Content matches multiple formats: " + ", ".join(
            ([f"{primary} at offset 0"] if primary else []) + locations
        )
        return [
            ThreatInfo(
                type=ThreatType.SUSPICIOUS,
                name="Polyglot File Detected",
                severity=RiskLevel.HIGH,
                description=description,
                confidence=90,
                mitigation="Reject file or perform additional validation",
            )
        ]

    def detect_executable(self, scan: ScanInput) -> List[ThreatInfo]:
        label = _EXECUTABLE_LABELS.get(scan.detected_type or "")
        declared = scan.file.declared_type
        if label is None or declared in EXECUTABLE_MIME_TYPES:
            return []

        verified = label != "PE" or _has_pe_header(scan.file.buffer)
        if not verified:
            label = "MZ"

        return [
            ThreatInfo(
                type=ThreatType.MALWARE,
                name=f"Executable Signature: {label}",
                severity=RiskLevel.CRITICAL if verified else RiskLevel.HIGH,
                description=f"{label} executable header found in file declared as '{declared or 'unknown'}'",
                confidence=95,
                mitigation="Block executable content disguised as another type",
            )
        ]

    def detect_known_checksum(self, scan: ScanInput) -> List[ThreatInfo]:
        if not self.config.blocked_checksums:
            return []
        digest = hashlib.sha256(scan.file.buffer).hexdigest()
        if digest not in self.config.blocked_checksums:
            return []
        return [
            ThreatInfo(
                type=ThreatType.MALWARE,
                name="Known Malicious Checksum",
                severity=RiskLevel.CRITICAL,
                description=f"SHA-256 {digest} is on the blocked checksum list",
                confidence=100,
                mitigation="Block file and investigate upload source",
            )
        ]

    def detect_data_exfiltration(self, scan: ScanInput) -> List[ThreatInfo]:
        matched = _matched_names(DATA_EXFILTRATION_PATTERNS, scan.text)
        if not matched:
            return []
        return [
            ThreatInfo(
                type=ThreatType.SUSPICIOUS,
                name="Data Exfiltration Pattern",
                severity=RiskLevel.MEDIUM,
                description=f"Possible data exfiltration markers: {', '.join(matched)}",
                confidence=70,
                mitigation="Review external references before processing",
            )
        ]

    def detect_suspicious_api(self, scan: ScanInput) -> List[ThreatInfo]:
        matched = [api for api in SUSPICIOUS_API_CALLS if api in scan.text]
        if not matched:
            return []
        return [
            ThreatInfo(
                type=ThreatType.SUSPICIOUS,
                name="Suspicious API Reference",
                severity=RiskLevel.MEDIUM,
                description=f"References to sensitive system APIs: {', '.join(matched)}",
                confidence=70,
                mitigation="Perform additional malware analysis",
            )
        ]

    def detect_high_entropy(self, scan: ScanInput) -> List[ThreatInfo]:
        buffer = scan.file.buffer
        if scan.detected_type is not None or len(buffer) < ENTROPY_MIN_BYTES:
            return []
        if scan.file.declared_type in ARCHIVE_MIME_TYPES:
            return []

        entropy = calculate_entropy(buffer[:ENTROPY_SAMPLE_BYTES])
        if entropy <= ENTROPY_THRESHOLD:
            return []
        return [
            ThreatInfo(
                type=ThreatType.SUSPICIOUS,
                name="High Entropy Content",
                severity=RiskLevel.MEDIUM,
                description=f"Unidentified content with entropy {entropy:.2f} bits/byte may be encrypted or packed",
                confidence=60,
                mitigation="Verify file origin before processing",
            )
        ]

    def detect_empty_file(self, scan: ScanInput) -> List[ThreatInfo]:
        if scan.file.actual_size > 0:
            return []
        return [
            ThreatInfo(
                type=ThreatType.SUSPICIOUS,
                name="Empty File",
                severity=RiskLevel.LOW,
                description="File is empty, which may indicate corruption or manipulation",
                confidence=70,
            )
        ]

    def detect_suspicious_file_name(self, scan: ScanInput) -> List[ThreatInfo]:
        name = (scan.file.original_name or "").lower()
        matched = [lure for lure in KNOWN_MALWARE_FILE_NAMES if lure in name]
        if not matched:
            return []
        return [
            ThreatInfo(
                type=ThreatType.SUSPICIOUS,
                name="Suspicious File Name",
                severity=RiskLevel.HIGH,
                description=f"File name matches names commonly used by malware: {', '.join(matched)}",
                confidence=85,
                mitigation="Block file and alert security team",
            )
        ]

    def detect_steganography(self, scan: ScanInput) -> List[ThreatInfo]:
        """Flag images whose size or low-order bits suggest hidden data."""
        declared = scan.file.declared_type
        if not declared.startswith("image/"):
            return []

        buffer = scan.file.buffer
        indicators = []
        expected_size = len(buffer) * IMAGE_SIZE_RATIOS.get(declared, 1.0)
        if scan.file.declared_size > expected_size * IMAGE_SIZE_ANOMALY_FACTOR:
            indicators.append("file size unusually large for image format")
        if len(buffer) > LSB_SAMPLE_BYTES and calculate_lsb_entropy(buffer[:LSB_SAMPLE_BYTES]) > LSB_ENTROPY_THRESHOLD:
            indicators.append("high entropy in least significant bits")

        if not indicators:
            return []
        return [
            ThreatInfo(
                type=ThreatType.SUSPICIOUS,
                name="Possible Steganography",
                severity=RiskLevel.MEDIUM,
                description=f"Image may carry hidden data: {', '.join(indicators)}",
                confidence=60,
                mitigation="Perform steganography analysis",
            )
        ]


def _family_of(mime_type: str) -> str:
    if mime_type in _FAMILY_BY_FORMAT:
        return _FAMILY_BY_FORMAT[mime_type]
    if mime_type in MIME_FAMILIES:
        return MIME_FAMILIES[mime_type]
    return mime_type.split("/", 1)[0]


def _has_pe_header(content: bytes) -> bool:
    if len(content) < PE_HEADER_POINTER_OFFSET + 4:
        return False
    pe_offset = int.from_bytes(content[PE_HEADER_POINTER_OFFSET:PE_HEADER_POINTER_OFFSET + 4], "little")
    return content[pe_offset:pe_offset + 4] == PE_MAGIC
