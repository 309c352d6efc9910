"""Declared-versus-detected type comparison and embedded content discovery."""

import asyncio
import logging
from typing import List, Optional

from models.validation import ContentValidationResult, FileData
from validation.detection import MimeTypeDetector
from validation.signatures import (
    ARCHIVE_MARKERS,
    ELF_MAGIC,
    MACHO_MAGICS,
    MZ_MAGIC,
    PE_HEADER_POINTER_OFFSET,
    PE_MAGIC,
    SCRIPT_MARKERS,
)

logger = logging.getLogger(__name__)

MIN_IMAGE_SIZE = 100


class ContentValidator:
    """Validates that file content matches its declared type.

    Only facts are reported here; the final verdict belongs to the aggregator.
    """

    def __init__(self, detector: Optional[MimeTypeDetector] = None, scan_window: int = 8192):
        self.detector = detector or MimeTypeDetector()
        self.scan_window = scan_window

    async def validate_content(self, file: FileData) -> ContentValidationResult:
        """
        Compare declared and detected type and look for embedded content.

        The byte scans run in the default executor so the event loop stays free.

        Args:
            file: File to inspect

        Returns:
            ContentValidationResult: Detection facts plus mismatch errors
        """
        return await asyncio.get_event_loop().run_in_executor(None, self.inspect_content, file)

    def inspect_content(self, file: FileData) -> ContentValidationResult:
        errors = []
        warnings = []
        declared = file.declared_type

        detected = self.detector.detect_mime_type(file.buffer)
        mismatch = detected is not None and not self.detector.is_compatible(detected, declared)
        if mismatch:
            errors.append(f"MIME type mismatch: declared {file.mime_type}, detected {detected}")

        if declared.startswith("image/") and 0 < len(file.buffer) < MIN_IMAGE_SIZE:
            warnings.append(f"Image file is unusually small ({len(file.buffer)} bytes)")

        embedded = self.check_for_embedded_content(file.buffer)
        if embedded:
            logger.info(f"Embedded content found in {file.original_name!r}: {', '.join(embedded)}")

        return ContentValidationResult(
            is_valid=not errors,
            content_type=declared,
            actual_mime_type=detected,
            mime_type_mismatch=mismatch,
            has_embedded_content=bool(embedded),
            embedded_content_types=tuple(embedded),
            errors=tuple(errors),
            warnings=tuple(warnings),
        )

    def check_for_embedded_content(self, content: bytes) -> List[str]:
        """Return embedded content categories found in the leading scan window."""
        window = content[:self.scan_window]
        types = []

        if any(marker.search(window) for marker in SCRIPT_MARKERS):
            types.append("script")

        if self._has_executable_header(window):
            types.append("executable")

        if any(marker in window for marker in ARCHIVE_MARKERS):
            types.append("archive")

        return types

    @staticmethod
    def _has_executable_header(window: bytes) -> bool:
        if window.startswith(ELF_MAGIC) or window.startswith(MACHO_MAGICS):
            return True
        if not window.startswith(MZ_MAGIC) or len(window) < PE_HEADER_POINTER_OFFSET + 4:
            return False
        pe_offset = int.from_bytes(window[PE_HEADER_POINTER_OFFSET:PE_HEADER_POINTER_OFFSET + 4], "little")
        return window[pe_offset:pe_offset + 4] == PE_MAGIC
