"""Filename sanitization and filename security checks."""

import os
import re
from typing import List, Optional

from validation.signatures import WINDOWS_RESERVED_NAMES

MAX_FILENAME_LENGTH = 255
UNNAMED_FILE = "unnamed_file"

# Illegal characters are replaced one-for-one; runs are not collapsed.
_ILLEGAL_CHARACTERS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
_WHITESPACE_RUN = re.compile(r"\s+")
_EDGE_CHARACTERS = "._- "
_DANGEROUS_CHARACTERS = re.compile(r'[<>:"|?*\x00-\x1f]')
_TRAVERSAL = re.compile(r"(?:^|[/\\])\.\.(?:[/\\]|$)|\.\.[/\\]|^\.[/\\]")


def sanitize_file_name(name: Optional[str]) -> str:
    """
    Normalize an untrusted filename into a bounded, filesystem-safe string.

    Never raises. Illegal characters become underscores one-for-one, whitespace
    runs become a single underscore, and edge dots, dashes and underscores are
    stripped. Names longer than 255 characters are truncated with the
    extension after the final dot preserved.

    Args:
        name: Original filename, possibly None or empty

    Returns:
        str: Sanitized filename, never empty
    """
    if not name:
        return UNNAMED_FILE

    sanitized = _ILLEGAL_CHARACTERS.sub("_", str(name))
    sanitized = _WHITESPACE_RUN.sub("_", sanitized)
    sanitized = sanitized.strip(_EDGE_CHARACTERS)

    if not sanitized:
        return UNNAMED_FILE

    return _truncate(sanitized)


def _truncate(name: str) -> str:
    if len(name) <= MAX_FILENAME_LENGTH:
        return name

    stem, ext = os.path.splitext(name)
    if not ext or len(ext) >= MAX_FILENAME_LENGTH:
        return name[:MAX_FILENAME_LENGTH]

    stem = stem[:MAX_FILENAME_LENGTH - len(ext)].rstrip(_EDGE_CHARACTERS) or UNNAMED_FILE[:MAX_FILENAME_LENGTH - len(ext)]
    return f"{stem}{ext}"


def validate_secure_file_name(name: Optional[str]) -> List[str]:
    """
    Report security issues in an untrusted filename.

    Args:
        name: Original filename

    Returns:
        List[str]: Human readable issues; empty when the name looks safe
    """
    if not name:
        return []

    issues = []
    if "\x00" in name:
        issues.append("File name contains null bytes")

    if _TRAVERSAL.search(name):
        issues.append("File name contains directory traversal sequences")

    base = re.split(r"[/\\]", name)[-1]
    stem = base.split(".", 1)[0].strip().upper()
    if stem in WINDOWS_RESERVED_NAMES:
        issues.append(f"File name uses reserved system name '{stem}'")

    if _DANGEROUS_CHARACTERS.search(name.replace("\x00", "")):
        issues.append("File name contains dangerous characters")

    if len(name) > MAX_FILENAME_LENGTH:
        issues.append(f"File name exceeds {MAX_FILENAME_LENGTH} characters")

    return issues


class FileNameSanitizer:
    """Injectable wrapper around the module-level filename helpers."""

    max_length = MAX_FILENAME_LENGTH

    def sanitize(self, name: Optional[str]) -> str:
        return sanitize_file_name(name)

    def find_issues(self, name: Optional[str]) -> List[str]:
        return validate_secure_file_name(name)
