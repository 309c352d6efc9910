"""Magic-number based MIME type detection."""

import logging
import os
from typing import List, Optional, Tuple

from validation.signatures import (
    COMPATIBLE_MIME_TYPES,
    EMBEDDED_MARKERS,
    EXTENSION_MIME_TYPES,
    FTYP_BRANDS,
    FTYP_DEFAULT_MIME,
    FTYP_MARKER,
    FTYP_OFFSET,
    MAGIC_SIGNATURES,
    MagicSignature,
)

logger = logging.getLogger(__name__)

# Most specific first so RIFF+WEBP wins over a bare prefix.
_ORDERED_SIGNATURES: Tuple[MagicSignature, ...] = tuple(
    sorted(MAGIC_SIGNATURES, key=lambda s: s.specificity, reverse=True)
)


class MimeTypeDetector:
    """Detects MIME types from leading file bytes using a static signature table."""

    def detect_mime_type(self, content: bytes) -> Optional[str]:
        """
        Detect the MIME type of file content.

        Args:
            content: File content as bytes

        Returns:
            Optional[str]: Detected MIME type, or None when no signature matches
        """
        if not content:
            return None

        brand_type = self._detect_ftyp(content)
        if brand_type:
            return brand_type

        for signature in _ORDERED_SIGNATURES:
            if self._matches(content, signature):
                return signature.mime_type

        logger.debug(f"No signature matched for {len(content)} byte buffer")
        return None

    @staticmethod
    def _matches(content: bytes, signature: MagicSignature) -> bool:
        end = signature.offset + len(signature.magic)
        if len(content) < end or content[signature.offset:end] != signature.magic:
            return False
        if signature.secondary is None:
            return True
        secondary_end = signature.secondary_offset + len(signature.secondary)
        return content[signature.secondary_offset:secondary_end] == signature.secondary

    @staticmethod
    def _detect_ftyp(content: bytes) -> Optional[str]:
        """ISO base media files (MP4, MOV, HEIC) carry a brand after the ftyp box marker."""
        if len(content) < FTYP_OFFSET + 8:
            return None
        if content[FTYP_OFFSET:FTYP_OFFSET + 4] != FTYP_MARKER:
            return None
        brand = content[FTYP_OFFSET + 4:FTYP_OFFSET + 8]
        return FTYP_BRANDS.get(brand, FTYP_DEFAULT_MIME)

    @staticmethod
    def is_compatible(detected: str, declared: str) -> bool:
        """Whether a declared type is an acceptable label for the detected format."""
        declared = (declared or "").lower()
        if detected == declared:
            return True
        return declared in COMPATIBLE_MIME_TYPES.get(detected, frozenset())

    @staticmethod
    def find_embedded_signatures(content: bytes) -> List[Tuple[str, int]]:
        """
        Locate distinctive format markers that start after offset 0.

        Returns:
            List[Tuple[str, int]]: (format, offset) pairs, first occurrence per format
        """
        found = []
        for marker in EMBEDDED_MARKERS:
            match = marker.pattern.search(content, 1)
            if match:
                found.append((marker.format, match.start()))
        return found

    @staticmethod
    def mime_types_for_extension(filename: Optional[str]) -> Optional[frozenset]:
        """Expected MIME types for a filename's extension, or None if the extension is unknown."""
        if not filename:
            return None
        ext = os.path.splitext(filename.lower())[1]
        return EXTENSION_MIME_TYPES.get(ext)
