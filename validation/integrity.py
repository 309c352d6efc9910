"""Checksums and format-specific structural checks."""

import asyncio
import hashlib
from typing import Callable, Dict, Optional, Tuple

from models.validation import ChecksumAlgorithm, FileData, IntegrityResult
from validation.detection import MimeTypeDetector

JPEG_END_MARKER = b"\xff\xd9"
PNG_END_CHUNK = b"IEND"
GIF_TRAILER = b"\x3b"
PDF_EOF_MARKER = b"%%EOF"
PDF_TRAILER_WINDOW = 1024

_TEXT_TYPES = ("application/json", "application/xml")


def _check_jpeg(content: bytes) -> Optional[str]:
    if not content.endswith(JPEG_END_MARKER):
        return "JPEG file is missing end-of-image marker"
    return None


def _check_png(content: bytes) -> Optional[str]:
    if PNG_END_CHUNK not in content:
        return "PNG file is missing IEND chunk"
    return None


def _check_gif(content: bytes) -> Optional[str]:
    if not content.endswith(GIF_TRAILER):
        return "GIF file is missing trailer byte"
    return None


def _check_pdf(content: bytes) -> Optional[str]:
    if PDF_EOF_MARKER not in content[-PDF_TRAILER_WINDOW:]:
        return "PDF file is missing %%EOF marker"
    return None


def _check_text(content: bytes) -> Optional[str]:
    if b"\x00" in content:
        return "Text file contains null bytes"
    return None


STRUCTURE_RULES: Dict[str, Callable[[bytes], Optional[str]]] = {
    "image/jpeg": _check_jpeg,
    "image/png": _check_png,
    "image/gif": _check_gif,
    "application/pdf": _check_pdf,
}


class IntegrityChecker:
    """Computes checksums and flags truncated or corrupted files."""

    def __init__(
        self,
        algorithm: ChecksumAlgorithm = ChecksumAlgorithm.SHA256,
        detector: Optional[MimeTypeDetector] = None,
    ):
        self.algorithm = ChecksumAlgorithm(algorithm)
        self.detector = detector or MimeTypeDetector()

    def generate_checksum(self, content: bytes) -> str:
        """
        Generate a hex digest of the full buffer.

        Args:
            content: File content as bytes

        Returns:
            str: Hex digest using the configured algorithm
        """
        return hashlib.new(self.algorithm.value, content).hexdigest()

    async def check_integrity(self, file: FileData) -> IntegrityResult:
        return await asyncio.get_event_loop().run_in_executor(None, self.verify_integrity, file)

    def verify_integrity(self, file: FileData) -> IntegrityResult:
        checksum = self.generate_checksum(file.buffer)
        errors = self.detect_corruption(file.buffer, file.declared_type)

        return IntegrityResult(
            is_intact=not errors,
            checksum=checksum,
            algorithm=self.algorithm,
            corruption_detected=bool(errors),
            errors=errors,
        )

    def detect_corruption(self, content: bytes, declared_type: str) -> Tuple[str, ...]:
        """Apply the structural rule for the detected (or else declared) format."""
        if not content:
            return ()

        mime_type = self.detector.detect_mime_type(content) or (declared_type or "").lower()

        rule = STRUCTURE_RULES.get(mime_type)
        if rule is None and (mime_type.startswith("text/") or mime_type in _TEXT_TYPES):
            rule = _check_text
        if rule is None:
            return ()

        error = rule(content)
        return (error,) if error else ()
