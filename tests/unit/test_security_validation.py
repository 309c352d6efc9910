"""
Tests for the comprehensive security validation verdict.

Covers the end-to-end acceptance scenarios, risk aggregation, the
fail-closed behaviour and the structured audit logging.
"""

import asyncio
import json
import logging
import time
import uuid
from unittest.mock import patch

import pytest

from models.validation import RiskLevel, UploadContext, ValidationResult
from tests.utils.fixtures import build_jpeg, build_jpeg_pdf_polyglot, build_pe, make_file
from validation.threats import INSECURE_FILE_NAME, SCAN_ERROR, SecurityScanner
from validation.validators import (
    FIX_BASIC_VALIDATION,
    HIGH_RISK_WARNING,
    MANUAL_REVIEW,
    RETRY_VALIDATION,
    SCAN_SKIPPED,
    VERIFY_INTEGRITY,
    create_file_validator,
)


def _threat_names(result):
    return [threat.name for threat in result.security_scan.threats]


class TestAcceptanceScenarios:
    """End-to-end scenarios every release must satisfy."""

    @pytest.mark.asyncio
    async def test_valid_jpeg(self, file_validator, jpeg_file):
        result = await file_validator.validate_file_security(jpeg_file)

        assert result.basic_validation.is_valid
        assert result.basic_validation.errors == ()
        assert result.basic_validation.file_info.detected_mime_type == "image/jpeg"
        assert result.is_secure
        assert result.overall_risk_level == RiskLevel.LOW
        assert not result.should_block
        assert not result.requires_manual_review
        assert result.integrity.is_intact

    @pytest.mark.asyncio
    async def test_text_with_charset_parameter(self, file_validator):
        file = make_file(b"Meeting notes for Tuesday.", "notes.txt", "text/plain; charset=utf-8")
        result = await file_validator.validate_file_security(file)

        assert result.is_secure
        assert result.overall_risk_level == RiskLevel.LOW
        assert not result.requires_manual_review
        assert _threat_names(result) == []

    @pytest.mark.asyncio
    async def test_script_injection_is_blocked(self, file_validator):
        content = b'<script>eval(atob("YWxlcnQoMSk="))</script><img onerror="alert(1)">'
        result = await file_validator.validate_file_security(make_file(content, "page.html", "text/html"))

        assert not result.is_secure
        assert result.overall_risk_level == RiskLevel.HIGH
        assert result.should_block
        assert result.requires_manual_review
        assert "Script Injection" in _threat_names(result)
        assert HIGH_RISK_WARNING in result.recommendations

    @pytest.mark.asyncio
    async def test_sql_injection_is_blocked(self, file_validator):
        result = await file_validator.validate_file_security(
            make_file(b"'; DROP TABLE users; --", "input.txt", "text/plain")
        )

        sql = next(t for t in result.security_scan.threats if t.name == "SQL Injection Pattern")
        assert sql.severity == RiskLevel.HIGH
        assert result.should_block

    @pytest.mark.asyncio
    async def test_empty_upload_is_invalid_but_not_blocked(self, file_validator):
        result = await file_validator.validate_file_security(make_file(b"", "", "text/plain"))

        assert not result.basic_validation.is_valid
        assert any("buffer is empty" in error for error in result.basic_validation.errors)
        assert any("name is required" in error for error in result.basic_validation.errors)
        assert result.overall_risk_level == RiskLevel.MEDIUM
        assert not result.should_block
        assert not result.is_secure
        assert FIX_BASIC_VALIDATION in result.recommendations
        assert result.requires_manual_review
        assert "Empty File" in [t.name for t in result.security_scan.threats]

    @pytest.mark.asyncio
    async def test_polyglot_is_blocked(self, file_validator):
        result = await file_validator.validate_file_security(
            make_file(build_jpeg_pdf_polyglot(), "photo.jpg", "image/jpeg")
        )

        polyglot = next(t for t in result.security_scan.threats if t.name == "Polyglot File Detected")
        assert polyglot.severity == RiskLevel.HIGH
        assert result.should_block
        # The appended PDF also leaves the JPEG without its end marker
        assert result.integrity.corruption_detected
        assert VERIFY_INTEGRITY in result.recommendations

    @pytest.mark.asyncio
    async def test_traversal_name_requires_review(self, file_validator):
        result = await file_validator.validate_file_security(
            make_file(b"root:x:0:0", "../../../etc/passwd", "text/plain")
        )

        assert INSECURE_FILE_NAME in _threat_names(result)
        assert result.requires_manual_review
        assert result.overall_risk_level == RiskLevel.MEDIUM
        assert not result.should_block


class TestRiskAggregation:
    """Test how scan findings and basic validation combine."""

    @pytest.mark.asyncio
    async def test_clean_file(self, file_validator, clean_text_file):
        result = await file_validator.validate_file_security(clean_text_file)

        assert result.is_secure
        assert result.overall_risk_level == RiskLevel.LOW
        assert result.security_scan.threats == ()
        assert result.recommendations == ("File appears secure, proceed with normal processing",)

    @pytest.mark.asyncio
    async def test_invalid_basic_drops_clean_recommendation(self, file_validator):
        result = await file_validator.validate_file_security(make_file(b"<a/>", "data.xml", "application/xml"))

        assert result.overall_risk_level == RiskLevel.MEDIUM
        assert result.recommendations == (FIX_BASIC_VALIDATION,)

    @pytest.mark.asyncio
    async def test_low_confidence_finding_requires_review(self, file_validator):
        """A medium finding below the confidence threshold is routed to a human."""
        content = b"var token = document.cookie;"
        result = await file_validator.validate_file_security(make_file(content, "notes.txt", "text/plain"))

        assert _threat_names(result) == ["Data Exfiltration Pattern"]
        assert result.overall_risk_level == RiskLevel.MEDIUM
        assert not result.should_block
        assert result.requires_manual_review

    @pytest.mark.asyncio
    async def test_threshold_is_configurable(self):
        validator = create_file_validator(low_confidence_threshold=50)
        content = b"var token = document.cookie;"
        result = await validator.validate_file_security(make_file(content, "notes.txt", "text/plain"))

        assert not result.requires_manual_review

    @pytest.mark.asyncio
    async def test_disguised_executable_is_critical(self, file_validator):
        result = await file_validator.validate_file_security(make_file(build_pe(), "photo.png", "image/png"))

        assert result.overall_risk_level == RiskLevel.CRITICAL
        assert result.should_block
        assert "Executable Signature: PE" in _threat_names(result)

    @pytest.mark.asyncio
    async def test_blocked_only_at_high_or_critical(self, file_validator):
        result = await file_validator.validate_file_security(
            make_file(b"calls CreateRemoteThread", "notes.txt", "text/plain")
        )

        assert result.overall_risk_level == RiskLevel.MEDIUM
        assert not result.should_block

    @pytest.mark.asyncio
    async def test_oversized_file_skips_scan(self):
        validator = create_file_validator(max_file_size=1024)
        result = await validator.validate_file_security(make_file(b"<script>x</script>" * 200, "big.html", "text/html"))

        assert result.security_scan.skipped
        assert result.security_scan.threats == ()
        assert SCAN_SKIPPED in result.recommendations
        assert result.content_validation is None
        assert result.integrity is None
        assert result.overall_risk_level == RiskLevel.MEDIUM
        assert not result.is_secure

    @pytest.mark.asyncio
    async def test_dict_context_is_accepted(self, file_validator, jpeg_file):
        result = await file_validator.validate_file_security(jpeg_file, {"user_id": "u-1", "upload_type": "avatar"})
        assert result.is_secure

    @pytest.mark.asyncio
    async def test_result_serializes(self, file_validator, jpeg_file):
        payload = (await file_validator.validate_file_security(jpeg_file)).to_dict()

        assert payload["overall_risk_level"] == "low"
        assert payload["scan_id"] == payload["security_scan"]["scan_id"]
        json.dumps(payload)


class _ExplodingValidator:
    name = "exploding"

    def validate(self, file):
        raise RuntimeError("dependency unavailable")


class _PassingValidator:
    name = "passing"

    async def validate(self, file):
        return ValidationResult(is_valid=True)


class TestFailClosed:
    """Any check that cannot run yields a critical blocking verdict."""

    def _assert_failed(self, result, fragment):
        assert not result.is_secure
        assert result.overall_risk_level == RiskLevel.CRITICAL
        assert result.should_block
        assert result.requires_manual_review
        assert _threat_names(result) == [SCAN_ERROR]
        assert result.recommendations == (RETRY_VALIDATION, MANUAL_REVIEW)
        assert fragment in result.basic_validation.errors[0]

    @pytest.mark.asyncio
    async def test_custom_validator_failure(self, jpeg_file):
        validator = create_file_validator(custom_validators=(_PassingValidator(), _ExplodingValidator()))
        result = await validator.validate_file_security(jpeg_file)

        self._assert_failed(result, "dependency unavailable")

    @pytest.mark.asyncio
    async def test_scanner_failure(self, file_validator, jpeg_file):
        with patch.object(SecurityScanner, "scan_file", side_effect=RuntimeError("scanner offline")):
            result = await file_validator.validate_file_security(jpeg_file)

        self._assert_failed(result, "security_scan failed: scanner offline")

    @pytest.mark.asyncio
    async def test_integrity_failure(self, file_validator, jpeg_file):
        with patch.object(file_validator.integrity_checker, "generate_checksum", side_effect=MemoryError()):
            result = await file_validator.validate_file_security(jpeg_file)

        self._assert_failed(result, "integrity_check failed")

    @pytest.mark.asyncio
    async def test_invalid_input_never_raises(self, file_validator):
        result = await file_validator.validate_file_security(None)

        assert result.should_block
        assert result.overall_risk_level == RiskLevel.CRITICAL

    def test_failed_result_keeps_scan_id(self, file_validator):
        result = file_validator.create_failed_result(RuntimeError("x"), "scan_fixed")
        assert result.scan_id == "scan_fixed"


class TestScanIdentity:
    """Each validation gets its own scan identifier."""

    @pytest.mark.asyncio
    async def test_concurrent_validations_have_distinct_ids(self, file_validator):
        files = [make_file(build_jpeg(), f"photo{i}.jpg", "image/jpeg") for i in range(10)]
        results = await asyncio.gather(*(file_validator.validate_file_security(f) for f in files))

        scan_ids = {result.scan_id for result in results}
        assert len(scan_ids) == 10
        assert all(scan_id.startswith("scan_") for scan_id in scan_ids)
        assert all(result.is_secure for result in results)


class TestAuditLogging:
    """Test structured validation logs."""

    @pytest.mark.asyncio
    async def test_start_and_outcome_are_logged(self, file_validator, jpeg_file, caplog):
        caplog.set_level(logging.INFO, logger="validation.validators")

        result = await file_validator.validate_file_security(jpeg_file, {"user_id": "u-42", "upload_type": "avatar"})

        records = [r for r in caplog.records if r.name == "validation.validators"]
        start = next(r for r in records if r.getMessage().startswith("Starting comprehensive security validation"))
        assert result.scan_id in start.getMessage()

        outcome = json.loads(records[-1].getMessage())
        assert outcome["event"] == "comprehensive_security_validation"
        assert outcome["scan_id"] == result.scan_id
        assert outcome["user_id"] == "u-42"
        assert outcome["file_name"] == "photo.jpg"
        assert outcome["risk_level"] == "low"
        assert records[-1].levelno == logging.INFO

    @pytest.mark.asyncio
    async def test_outcome_level_follows_risk(self, file_validator, caplog):
        caplog.set_level(logging.INFO, logger="validation.validators")

        await file_validator.validate_file_security(make_file(build_pe(), "photo.png", "image/png"))

        records = [r for r in caplog.records if r.name == "validation.validators"]
        assert records[-1].levelno == logging.CRITICAL
        assert json.loads(records[-1].getMessage())["should_block"] is True

    @pytest.mark.asyncio
    async def test_non_string_context_values(self, file_validator, jpeg_file, caplog):
        caplog.set_level(logging.INFO, logger="validation.validators")
        user_id = uuid.uuid4()

        result = await file_validator.validate_file_security(jpeg_file, {"user_id": user_id, "upload_type": "avatar"})

        assert result.overall_risk_level == RiskLevel.LOW
        assert not result.should_block
        assert result.is_secure
        records = [r for r in caplog.records if r.name == "validation.validators"]
        assert json.loads(records[-1].getMessage())["user_id"] == str(user_id)

    @pytest.mark.asyncio
    async def test_context_object_with_non_string_values(self, file_validator, jpeg_file):
        context = UploadContext(user_id=uuid.uuid4(), upload_type="avatar")

        result = await file_validator.validate_file_security(jpeg_file, context)

        assert result.overall_risk_level == RiskLevel.LOW
        assert not result.should_block

    @pytest.mark.asyncio
    async def test_outcome_logging_failure_keeps_verdict(self, file_validator, jpeg_file):
        with patch.object(file_validator, "_log_validation_outcome", side_effect=RuntimeError("log sink down")):
            result = await file_validator.validate_file_security(jpeg_file)

        assert result.is_secure
        assert result.overall_risk_level == RiskLevel.LOW


class TestValidationTimeout:
    """Validation work must not block the event loop."""

    @pytest.mark.asyncio
    async def test_slow_detector_is_interrupted_by_timeout(self, file_validator, clean_text_file):
        def slow_detector(scan):
            time.sleep(0.5)
            return []

        start = time.perf_counter()
        with patch.object(SecurityScanner, "detect_polyglot", side_effect=slow_detector):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(file_validator.validate_file_security(clean_text_file), timeout=0.05)

        assert time.perf_counter() - start < 0.4

    @pytest.mark.asyncio
    async def test_event_loop_stays_responsive_during_scan(self, file_validator, clean_text_file):
        ticks = []

        async def ticker():
            while True:
                ticks.append(time.perf_counter())
                await asyncio.sleep(0.01)

        def slow_detector(scan):
            time.sleep(0.2)
            return []

        ticker_task = asyncio.ensure_future(ticker())
        try:
            with patch.object(SecurityScanner, "detect_polyglot", side_effect=slow_detector):
                result = await file_validator.validate_file_security(clean_text_file)
        finally:
            ticker_task.cancel()

        assert result.is_secure
        assert len(ticks) >= 5
