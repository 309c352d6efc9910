"""
Byte-level builders for test uploads.

Each builder returns the smallest buffer that exercises the format rules the
gate cares about: leading magic numbers and trailing terminators.
"""

import base64
import io
import zipfile
from typing import Optional

from models.validation import FileData

# 1x1 pixel PNG, complete with IEND chunk
PNG_1X1 = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8/5+hHgAHggJ/PchI7wAAAABJRU5ErkJggg=="
)

JPEG_HEADER = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"
JPEG_END = b"\xff\xd9"


def build_jpeg(size: int = 108, terminated: bool = True) -> bytes:
    """JPEG with a JFIF APP0 header, zero padding and an optional end marker."""
    tail = JPEG_END if terminated else b""
    padding = max(size - len(JPEG_HEADER) - len(tail), 0)
    return JPEG_HEADER + b"\x00" * padding + tail


def build_png(terminated: bool = True) -> bytes:
    if terminated:
        return PNG_1X1
    return PNG_1X1[:PNG_1X1.index(b"IEND")]


def build_gif(terminated: bool = True) -> bytes:
    body = b"GIF89a\x01\x00\x01\x00\x80\x00\x00\xff\xff\xff\x00\x00\x00!\xf9\x04\x01\x00\x00\x00\x00"
    body += b",\x00\x00\x00\x00\x01\x00\x01\x00\x00\x02\x02D\x01\x00"
    return body + (b";" if terminated else b"")


def build_pdf(terminated: bool = True) -> bytes:
    body = (
        b"%PDF-1.4\n"
        b"1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj\n"
        b"2 0 obj << /Type /Pages /Kids [] /Count 0 >> endobj\n"
        b"trailer << /Root 1 0 R >>\n"
    )
    return body + (b"%%EOF\n" if terminated else b"")


def build_pe(valid_header: bool = True) -> bytes:
    """Minimal PE image: DOS header whose e_lfanew points at a PE signature."""
    header = bytearray(b"MZ" + b"\x00" * 0x3E)
    header[0x3C:0x40] = (0x40).to_bytes(4, "little")
    stub = b"PE\x00\x00" if valid_header else b"\x00\x00\x00\x00"
    return bytes(header) + stub + b"\x00" * 64


def build_elf() -> bytes:
    return b"\x7fELF\x02\x01\x01\x00" + b"\x00" * 56


def build_zip(member: str = "readme.txt", content: bytes = b"hello") -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(member, content)
    return buffer.getvalue()


def build_jpeg_pdf_polyglot() -> bytes:
    """JPEG header at offset 0 with a complete PDF document appended."""
    return build_jpeg(size=256) + build_pdf()


def make_file(
    buffer: bytes,
    name: Optional[str] = "test.txt",
    mime_type: str = "text/plain",
    size: Optional[int] = None,
) -> FileData:
    return FileData(buffer=buffer, original_name=name, mime_type=mime_type, size=size)
