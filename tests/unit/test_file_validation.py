"""
Test suite for basic file validation.

This module tests:
- File validation configuration
- Size validation
- Basic and content validation through FileValidator
- Custom validators
- Custom exception handling
"""

import pytest

from models.errors import (
    ConfigurationError,
    FileSizeError,
    FileValidationError,
    MimeTypeError,
    ScannerError,
)
from models.validation import ChecksumAlgorithm, FileValidationConfig, RiskLevel, ValidationResult
from tests.utils.fixtures import build_jpeg, build_pdf, build_pe, make_file
from validation.validators import (
    DEFAULT_ALLOWED_MIME_TYPES,
    DEFAULT_VALIDATION_CONFIG,
    FileValidator,
    SizeValidator,
    create_file_validator,
    format_bytes,
)


class TestFileValidationConfig:
    """Test file validation configuration."""

    def test_default_config_creation(self):
        """Test creating config with default values."""
        config = FileValidationConfig()
        assert config.max_file_size == 10 * 1024 * 1024
        assert config.allowed_mime_types is None
        assert config.enable_malware_scanning is True
        assert config.enable_content_validation is True
        assert config.enable_integrity_check is True
        assert config.custom_validators == ()
        assert config.checksum_algorithm == ChecksumAlgorithm.SHA256
        assert config.sql_injection_severity == RiskLevel.HIGH

    def test_default_policy_allow_list(self):
        assert "image/jpeg" in DEFAULT_VALIDATION_CONFIG.allowed_mime_types
        assert "application/zip" in DEFAULT_VALIDATION_CONFIG.allowed_mime_types
        assert DEFAULT_VALIDATION_CONFIG.allowed_mime_types == DEFAULT_ALLOWED_MIME_TYPES

    def test_values_are_normalised(self):
        config = FileValidationConfig(
            allowed_mime_types={"Image/PNG"},
            blocked_extensions={"EXE", ".bat"},
            checksum_algorithm="md5",
            command_injection_severity="critical",
        )
        assert config.allowed_mime_types == frozenset({"image/png"})
        assert config.blocked_extensions == frozenset({".exe", ".bat"})
        assert config.checksum_algorithm == ChecksumAlgorithm.MD5
        assert config.command_injection_severity == RiskLevel.CRITICAL

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_file_size": 0},
            {"content_scan_window": 0},
            {"low_confidence_threshold": 101},
            {"checksum_algorithm": "crc32"},
            {"sql_injection_severity": "extreme"},
        ],
    )
    def test_invalid_config_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            FileValidationConfig(**kwargs)

    def test_config_is_immutable(self):
        config = FileValidationConfig()
        with pytest.raises(Exception):
            config.max_file_size = 1


class TestCustomExceptions:
    """Test custom exception hierarchy."""

    @pytest.mark.parametrize("error_type", [FileSizeError, MimeTypeError])
    def test_validation_errors_share_base(self, error_type):
        error = error_type("failed")
        assert str(error) == "failed"
        assert isinstance(error, FileValidationError)

    def test_scanner_error_keeps_cause(self):
        cause = RuntimeError("disk on fire")
        error = ScannerError("security_scan", cause)
        assert error.check == "security_scan"
        assert error.cause is cause
        assert "security_scan failed: disk on fire" == str(error)

    def test_hierarchy_matches_raised_errors(self):
        assert set(FileValidationError.__subclasses__()) == {FileSizeError, MimeTypeError, ScannerError}


class TestSizeValidator:
    """Test file size validation component."""

    def test_validate_size_success(self):
        SizeValidator(10 * 1024 * 1024).validate_size(5 * 1024 * 1024)

    def test_validate_size_failure(self):
        with pytest.raises(FileSizeError) as exc_info:
            SizeValidator(10 * 1024 * 1024).validate_size(15 * 1024 * 1024)

        assert str(exc_info.value) == "File size (15 MB) exceeds maximum allowed size (10 MB)"

    def test_validate_zero_size(self):
        with pytest.raises(FileSizeError) as exc_info:
            SizeValidator(1024).validate_size(0)
        assert "empty" in str(exc_info.value).lower()

    @pytest.mark.parametrize(
        "size, expected",
        [(0, "0 Bytes"), (512, "512 Bytes"), (1536, "1.5 KB"), (10 * 1024 * 1024, "10 MB"), (3 * 1024 ** 3, "3 GB")],
    )
    def test_format_bytes(self, size, expected):
        assert format_bytes(size) == expected


class TestValidateFile:
    """Test basic plus content validation."""

    @pytest.mark.asyncio
    async def test_valid_jpeg(self, file_validator, jpeg_file):
        result = await file_validator.validate_file(jpeg_file)

        assert result.is_valid
        assert result.errors == ()
        assert result.file_info.detected_mime_type == "image/jpeg"
        assert result.file_info.actual_size == 108
        assert result.file_info.sanitized_name == "photo.jpg"

    @pytest.mark.asyncio
    async def test_empty_buffer_and_missing_name(self, file_validator):
        """All basic errors are collected rather than stopping at the first."""
        result = await file_validator.validate_file(make_file(b"", "", "text/plain"))

        assert not result.is_valid
        assert "File buffer is empty" in result.errors
        assert "File name is required" in result.errors
        assert result.file_info.detected_mime_type == "unknown"
        assert result.file_info.sanitized_name == "unnamed_file"

    @pytest.mark.asyncio
    async def test_oversized_file(self):
        validator = create_file_validator(max_file_size=1024)
        result = await validator.validate_file(make_file(b"a" * 2048, "big.txt"))

        assert not result.is_valid
        assert any("exceeds maximum allowed size" in error for error in result.errors)

    @pytest.mark.asyncio
    async def test_disallowed_type(self, file_validator):
        result = await file_validator.validate_file(make_file(b"x,y", "data.xml", "application/xml"))
        assert "MIME type 'application/xml' is not allowed" in result.errors

    @pytest.mark.asyncio
    async def test_unrestricted_when_no_allow_list(self):
        validator = FileValidator(FileValidationConfig())
        result = await validator.validate_file(make_file(b"<a/>", "data.xml", "application/xml"))
        assert result.is_valid

    @pytest.mark.asyncio
    async def test_blocked_extension(self):
        validator = create_file_validator(blocked_extensions={".bat"})
        result = await validator.validate_file(make_file(b"echo hi", "run.BAT", "text/plain"))
        assert "File extension '.bat' is blocked" in result.errors

    @pytest.mark.asyncio
    async def test_declared_type_with_parameters(self, file_validator):
        result = await file_validator.validate_file(make_file(b"hello", "notes.txt", "text/plain; charset=utf-8"))

        assert result.is_valid
        assert result.errors == ()

    @pytest.mark.asyncio
    async def test_mime_mismatch(self, file_validator):
        result = await file_validator.validate_file(make_file(build_pdf(), "photo.jpg", "image/jpeg"))

        assert not result.is_valid
        assert "MIME type mismatch: declared image/jpeg, detected application/pdf" in result.errors

    @pytest.mark.asyncio
    async def test_mismatch_ignored_without_content_validation(self):
        validator = create_file_validator(enable_content_validation=False)
        result = await validator.validate_file(make_file(build_pdf(), "photo.jpg", "image/jpeg"))
        assert result.is_valid

    @pytest.mark.asyncio
    async def test_sanitized_name_warning(self, file_validator):
        result = await file_validator.validate_file(make_file(b"hello", "my file?.txt"))

        assert result.is_valid
        assert "File name was sanitized to 'my_file_.txt'" in result.warnings

    @pytest.mark.asyncio
    async def test_declared_size_mismatch_warning(self, file_validator):
        result = await file_validator.validate_file(make_file(b"hello", "a.txt", size=999))
        assert any("does not match actual size" in warning for warning in result.warnings)

    @pytest.mark.asyncio
    async def test_embedded_content_warning(self, file_validator):
        result = await file_validator.validate_file(make_file(b"<script>x()</script>", "page.html", "text/html"))
        assert "File contains embedded content: script" in result.warnings

    @pytest.mark.asyncio
    async def test_invalid_input_never_raises(self, file_validator):
        result = await file_validator.validate_file(None)

        assert not result.is_valid
        assert result.errors[0].startswith("Validation error:")


class TestBasicFile:
    """Test basic-only checks."""

    @pytest.mark.asyncio
    async def test_basic_skips_content(self, file_validator):
        result = await file_validator.validate_basic_file(make_file(build_pdf(), "photo.jpg", "image/jpeg"))
        assert result.is_valid

    def test_validate_mime_type(self, file_validator):
        file = make_file(b"x", "a.txt", "text/plain")
        assert file_validator.validate_mime_type(file).is_valid
        assert not file_validator.validate_mime_type(file, ["image/png"]).is_valid

    def test_validate_mime_type_ignores_parameters(self, file_validator):
        file = make_file(b"x", "a.txt", "Text/Plain; charset=UTF-8")
        assert file.declared_type == "text/plain"
        assert file_validator.validate_mime_type(file).is_valid

    def test_validate_file_size(self, file_validator):
        file = make_file(b"x" * 10, "a.txt")
        assert file_validator.validate_file_size(file).is_valid
        assert not file_validator.validate_file_size(file, max_size=5).is_valid


class TestMultipleFiles:
    """Test validating several files at once."""

    @pytest.mark.asyncio
    async def test_results_keep_order(self, file_validator, jpeg_file):
        files = [jpeg_file, make_file(b"", "empty.txt"), make_file(b"fine", "fine.txt")]
        results = await file_validator.validate_multiple_files(files)

        assert [r.is_valid for r in results] == [True, False, True]


class _RejectingValidator:
    name = "no_secrets"

    def validate(self, file):
        if b"SECRET" in file.buffer:
            return ValidationResult.from_messages(["file contains a secret marker"])
        return ValidationResult(is_valid=True)


class _AsyncWarningValidator:
    name = "async_notice"

    async def validate(self, file):
        return ValidationResult(is_valid=True, warnings=("checked asynchronously",))


class _BrokenValidator:
    name = "broken"

    def validate(self, file):
        raise RuntimeError("validator crashed")


class TestCustomValidators:
    """Test caller supplied validators."""

    @pytest.mark.asyncio
    async def test_custom_errors_are_prefixed(self):
        validator = create_file_validator(custom_validators=(_RejectingValidator(),))
        result = await validator.validate_file(make_file(b"SECRET stuff", "a.txt"))

        assert not result.is_valid
        assert "no_secrets: file contains a secret marker" in result.errors

    @pytest.mark.asyncio
    async def test_async_validators_are_awaited(self):
        validator = create_file_validator(custom_validators=(_AsyncWarningValidator(),))
        result = await validator.validate_file(make_file(b"content", "a.txt"))

        assert result.is_valid
        assert "async_notice: checked asynchronously" in result.warnings

    @pytest.mark.asyncio
    async def test_crashing_validator_invalidates(self):
        validator = create_file_validator(custom_validators=(_BrokenValidator(),))
        result = await validator.validate_file(make_file(b"content", "a.txt"))

        assert not result.is_valid
        assert "validator crashed" in result.errors[0]


class TestExecutableUpload:
    """Basic validation reports executables through the MIME mismatch."""

    @pytest.mark.asyncio
    async def test_pe_declared_as_png(self, file_validator):
        result = await file_validator.validate_file(make_file(build_pe(), "photo.png", "image/png"))

        assert not result.is_valid
        assert "executable" in result.warnings[-1]
        assert result.file_info.detected_mime_type == "application/x-msdownload"

    @pytest.mark.asyncio
    async def test_jpeg_alias_is_accepted(self):
        validator = create_file_validator(allowed_mime_types={"image/jpg"})
        result = await validator.validate_file(make_file(build_jpeg(), "p.jpg", "image/jpg"))
        assert result.is_valid
