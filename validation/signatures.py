"""Static signature tables used by type detection and threat scanning.

Everything here is immutable lookup data. Adding a format or a pattern is a
table change; the detectors iterate over these tables without special cases.
"""

import re
from typing import Dict, FrozenSet, NamedTuple, Optional, Tuple

from models.validation import RiskLevel


class MagicSignature(NamedTuple):
    """A byte pattern at a fixed offset, optionally with a second window.

    ``secondary`` is checked at ``secondary_offset`` for container formats
    (RIFF, ISO base media) whose prefix alone is ambiguous.
    """

    mime_type: str
    magic: bytes
    offset: int = 0
    secondary: Optional[bytes] = None
    secondary_offset: int = 0

    @property
    def specificity(self) -> int:
        return len(self.magic) + (len(self.secondary) if self.secondary else 0)


MAGIC_SIGNATURES: Tuple[MagicSignature, ...] = (
    MagicSignature("image/png", b"\x89PNG\r\n\x1a\n"),
    MagicSignature("image/jpeg", b"\xff\xd8\xff"),
    MagicSignature("image/gif", b"GIF87a"),
    MagicSignature("image/gif", b"GIF89a"),
    MagicSignature("image/webp", b"RIFF", secondary=b"WEBP", secondary_offset=8),
    MagicSignature("audio/wav", b"RIFF", secondary=b"WAVE", secondary_offset=8),
    MagicSignature("video/x-msvideo", b"RIFF", secondary=b"AVI ", secondary_offset=8),
    MagicSignature("image/tiff", b"II*\x00"),
    MagicSignature("image/tiff", b"MM\x00*"),
    MagicSignature("application/pdf", b"%PDF-"),
    MagicSignature("application/zip", b"PK\x03\x04"),
    MagicSignature("application/zip", b"PK\x05\x06"),
    MagicSignature("application/zip", b"PK\x07\x08"),
    MagicSignature("application/x-rar-compressed", b"Rar!\x1a\x07"),
    MagicSignature("application/x-7z-compressed", b"7z\xbc\xaf\x27\x1c"),
    MagicSignature("application/gzip", b"\x1f\x8b"),
    MagicSignature("audio/mpeg", b"ID3"),
    MagicSignature("application/x-executable", b"\x7fELF"),
    MagicSignature("application/x-mach-binary", b"\xfe\xed\xfa\xce"),
    MagicSignature("application/x-mach-binary", b"\xfe\xed\xfa\xcf"),
    MagicSignature("application/x-mach-binary", b"\xce\xfa\xed\xfe"),
    MagicSignature("application/x-mach-binary", b"\xcf\xfa\xed\xfe"),
    MagicSignature("application/x-msdownload", b"MZ"),
)

# ISO base media files carry "ftyp" at offset 4 and a brand at offset 8.
FTYP_MARKER = b"ftyp"
FTYP_OFFSET = 4
FTYP_BRANDS: Dict[bytes, str] = {
    b"qt  ": "video/quicktime",
    b"heic": "image/heic",
    b"heix": "image/heic",
    b"mif1": "image/heic",
    b"M4A ": "audio/mp4",
    b"avif": "image/avif",
}
FTYP_DEFAULT_MIME = "video/mp4"

# Declared types a detected format legitimately carries.
COMPATIBLE_MIME_TYPES: Dict[str, FrozenSet[str]] = {
    "image/jpeg": frozenset({"image/jpg", "image/pjpeg"}),
    "image/png": frozenset({"image/x-png"}),
    "application/zip": frozenset({
        "application/x-zip-compressed",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/vnd.oasis.opendocument.text",
        "application/vnd.oasis.opendocument.spreadsheet",
        "application/epub+zip",
        "application/java-archive",
    }),
    "application/x-rar-compressed": frozenset({"application/vnd.rar", "application/x-rar"}),
    "application/gzip": frozenset({"application/x-gzip"}),
    "audio/wav": frozenset({"audio/x-wav", "audio/wave"}),
    "audio/mpeg": frozenset({"audio/mp3"}),
    "video/mp4": frozenset({"application/mp4", "video/x-m4v"}),
    "application/x-msdownload": frozenset({
        "application/x-msdos-program",
        "application/vnd.microsoft.portable-executable",
        "application/octet-stream",
    }),
    "application/x-executable": frozenset({"application/x-elf", "application/x-sharedlib", "application/octet-stream"}),
    "application/x-mach-binary": frozenset({"application/x-mach-o", "application/octet-stream"}),
}

EXECUTABLE_MIME_TYPES: FrozenSet[str] = frozenset({
    "application/x-msdownload",
    "application/x-msdos-program",
    "application/vnd.microsoft.portable-executable",
    "application/x-executable",
    "application/x-elf",
    "application/x-sharedlib",
    "application/x-mach-binary",
    "application/x-mach-o",
})

ARCHIVE_MIME_TYPES: FrozenSet[str] = frozenset({
    "application/zip",
    "application/x-rar-compressed",
    "application/x-7z-compressed",
    "application/gzip",
})

# Formats that may legitimately embed image streams.
IMAGE_CARRIERS: FrozenSet[str] = frozenset({"application/pdf", "video/mp4", "video/quicktime", "audio/mpeg"})

EXTENSION_MIME_TYPES: Dict[str, FrozenSet[str]] = {
    ".jpg": frozenset({"image/jpeg", "image/jpg"}),
    ".jpeg": frozenset({"image/jpeg", "image/jpg"}),
    ".png": frozenset({"image/png"}),
    ".gif": frozenset({"image/gif"}),
    ".webp": frozenset({"image/webp"}),
    ".tif": frozenset({"image/tiff"}),
    ".tiff": frozenset({"image/tiff"}),
    ".pdf": frozenset({"application/pdf"}),
    ".txt": frozenset({"text/plain"}),
    ".md": frozenset({"text/markdown", "text/plain"}),
    ".csv": frozenset({"text/csv", "text/plain"}),
    ".json": frozenset({"application/json", "text/plain"}),
    ".html": frozenset({"text/html"}),
    ".htm": frozenset({"text/html"}),
    ".doc": frozenset({"application/msword"}),
    ".docx": frozenset({"application/vnd.openxmlformats-officedocument.wordprocessingml.document"}),
    ".zip": frozenset({"application/zip", "application/x-zip-compressed"}),
    ".rar": frozenset({"application/x-rar-compressed", "application/vnd.rar"}),
    ".7z": frozenset({"application/x-7z-compressed"}),
    ".mp4": frozenset({"video/mp4"}),
    ".mp3": frozenset({"audio/mpeg"}),
    ".wav": frozenset({"audio/wav", "audio/x-wav"}),
}

EXECUTABLE_EXTENSIONS: FrozenSet[str] = frozenset({
    ".exe", ".dll", ".scr", ".com", ".bat", ".cmd", ".pif", ".msi",
    ".vbs", ".vbe", ".js", ".jse", ".wsf", ".ps1", ".jar", ".sh", ".elf", ".app",
})

WINDOWS_RESERVED_NAMES: FrozenSet[str] = frozenset(
    {"CON", "PRN", "AUX", "NUL"} | {f"COM{i}" for i in range(1, 10)} | {f"LPT{i}" for i in range(1, 10)}
)

# --- Embedded content markers (content validator) ---

SCRIPT_MARKERS: Tuple[re.Pattern, ...] = (
    re.compile(rb"<script", re.IGNORECASE),
    re.compile(rb"javascript:", re.IGNORECASE),
    re.compile(rb"vbscript:", re.IGNORECASE),
    re.compile(rb"\bon(?:load|error|click|mouse\w+|focus)\s*=", re.IGNORECASE),
)

ARCHIVE_MARKERS: Tuple[bytes, ...] = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08", b"Rar!\x1a\x07", b"7z\xbc\xaf\x27\x1c")

ELF_MAGIC = b"\x7fELF"
MACHO_MAGICS: Tuple[bytes, ...] = (b"\xfe\xed\xfa\xce", b"\xfe\xed\xfa\xcf", b"\xce\xfa\xed\xfe", b"\xcf\xfa\xed\xfe")
MZ_MAGIC = b"MZ"
PE_MAGIC = b"PE\x00\x00"
PE_HEADER_POINTER_OFFSET = 0x3C

# --- Polyglot markers: distinctive signatures searched at offsets > 0 ---

class EmbeddedMarker(NamedTuple):
    format: str
    family: str
    pattern: re.Pattern


EMBEDDED_MARKERS: Tuple[EmbeddedMarker, ...] = (
    EmbeddedMarker("application/pdf", "document", re.compile(rb"%PDF-\d")),
    EmbeddedMarker("application/zip", "archive", re.compile(rb"PK\x03\x04")),
    EmbeddedMarker("application/x-rar-compressed", "archive", re.compile(rb"Rar!\x1a\x07")),
    EmbeddedMarker("application/x-7z-compressed", "archive", re.compile(rb"7z\xbc\xaf\x27\x1c")),
    EmbeddedMarker("image/png", "image", re.compile(rb"\x89PNG\r\n\x1a\n")),
    EmbeddedMarker("image/gif", "image", re.compile(rb"GIF8[79]a")),
    EmbeddedMarker("image/jpeg", "image", re.compile(rb"\xff\xd8\xff[\xe0-\xef]..(?:JFIF|Exif)", re.DOTALL)),
    EmbeddedMarker("application/x-executable", "executable", re.compile(rb"\x7fELF[\x01\x02]")),
    EmbeddedMarker("application/x-msdownload", "executable", re.compile(rb"This program cannot be run in DOS mode")),
)

MIME_FAMILIES: Dict[str, str] = {
    "application/pdf": "document",
    "application/zip": "archive",
    "application/x-rar-compressed": "archive",
    "application/x-7z-compressed": "archive",
    "application/gzip": "archive",
    "application/x-executable": "executable",
    "application/x-msdownload": "executable",
    "application/x-mach-binary": "executable",
}

# --- Threat patterns (threat scanner) ---

class ThreatPattern(NamedTuple):
    name: str
    pattern: re.Pattern


SCRIPT_INJECTION_PATTERNS: Tuple[ThreatPattern, ...] = (
    ThreatPattern("script tag", re.compile(r"<script\b", re.IGNORECASE)),
    ThreatPattern(
        "inline event handler",
        re.compile(
            r"\bon(?:load|unload|error|abort|click|dblclick|mouse\w+|pointer\w+|key\w+|focus|blur|change|input"
            r"|submit|reset|select|resize|scroll|drag\w*|drop|wheel|toggle|begin|end|animation\w+|message"
            r"|hashchange|pageshow)\s*=",
            re.IGNORECASE,
        ),
    ),
    ThreatPattern("base64-wrapped eval", re.compile(r"\beval\s*\(\s*(?:atob|base64_decode)\s*\(", re.IGNORECASE)),
    ThreatPattern("eval call", re.compile(r"\beval\s*\(", re.IGNORECASE)),
    ThreatPattern(
        "javascript iframe source",
        re.compile(r"<iframe[^>]*\bsrc\s*=\s*[\"']?\s*javascript:", re.IGNORECASE),
    ),
    ThreatPattern("javascript URL", re.compile(r"javascript\s*:", re.IGNORECASE)),
    ThreatPattern("vbscript URL", re.compile(r"vbscript\s*:", re.IGNORECASE)),
    ThreatPattern("HTML data URI", re.compile(r"data:text/html", re.IGNORECASE)),
    ThreatPattern("document.write call", re.compile(r"document\.write\s*\(", re.IGNORECASE)),
    ThreatPattern("innerHTML assignment", re.compile(r"\.innerHTML\s*=", re.IGNORECASE)),
)

SQL_INJECTION_PATTERNS: Tuple[ThreatPattern, ...] = (
    ThreatPattern(
        "stacked statement",
        re.compile(r"['\"]\s*;\s*(?:DROP|DELETE|INSERT|UPDATE|ALTER|TRUNCATE|EXEC|CREATE)\b", re.IGNORECASE),
    ),
    ThreatPattern("destructive DDL", re.compile(r"\bDROP\s+(?:TABLE|DATABASE)\b", re.IGNORECASE)),
    ThreatPattern("union select", re.compile(r"\bUNION\s+(?:ALL\s+)?SELECT\b", re.IGNORECASE)),
    ThreatPattern(
        "tautology",
        re.compile(r"['\"]\s*OR\s+['\"]?(\w+)['\"]?\s*=\s*['\"]?\1\b|\bOR\s+1\s*=\s*1\b", re.IGNORECASE),
    ),
    ThreatPattern("xp_cmdshell", re.compile(r"\bxp_cmdshell\b", re.IGNORECASE)),
    ThreatPattern("time-based probe", re.compile(r"\bWAITFOR\s+DELAY\b|\bSLEEP\s*\(\s*\d+\s*\)", re.IGNORECASE)),
)

SHELL_SUBSTITUTION = re.compile(r"\$\([^)]*\)|`[^`\n]+`")
SHELL_CHAINING = re.compile(
    r"(?:;|&&|\|\|)\s*(?:sudo\s+)?(?:curl|wget|nc|ncat|bash|sh|powershell|chmod|rm|python3?|perl)\b",
    re.IGNORECASE,
)

COMMAND_EXECUTION_IDIOMS: Tuple[ThreatPattern, ...] = (
    ThreatPattern("download piped to shell", re.compile(r"\b(?:curl|wget)\b[^\n|]*\|\s*(?:ba|z|da)?sh\b", re.IGNORECASE)),
    ThreatPattern("download and execute", re.compile(r"\b(?:curl|wget)\b\s+\S+", re.IGNORECASE)),
    ThreatPattern("reverse shell", re.compile(r"/dev/tcp/|\bnc\s+(?:-\w+\s+)*-e\b|\bbash\s+-i\b", re.IGNORECASE)),
    ThreatPattern("encoded powershell", re.compile(r"\bpowershell(?:\.exe)?\b[^\n]*-e(?:nc(?:odedcommand)?)?\b", re.IGNORECASE)),
    ThreatPattern("in-memory download", re.compile(r"\bIEX\b|DownloadString\s*\(|Invoke-Expression", re.IGNORECASE)),
    ThreatPattern("mark executable", re.compile(r"\bchmod\s+\+x\b", re.IGNORECASE)),
    ThreatPattern("recursive root delete", re.compile(r"\brm\s+-rf\s+/(?:\s|$)", re.IGNORECASE)),
)

DATA_EXFILTRATION_PATTERNS: Tuple[ThreatPattern, ...] = (
    ThreatPattern("suspicious TLD", re.compile(r"https?://[^\s\"'<>]+\.(?:tk|ml|ga|cf|gq|top|xyz)\b", re.IGNORECASE)),
    ThreatPattern("URL shortener", re.compile(r"\b(?:bit\.ly|tinyurl\.com|t\.co|goo\.gl|is\.gd)/\w+", re.IGNORECASE)),
    ThreatPattern("cookie access", re.compile(r"document\.cookie", re.IGNORECASE)),
    ThreatPattern("beacon call", re.compile(r"navigator\.sendBeacon\s*\(", re.IGNORECASE)),
)

SUSPICIOUS_API_CALLS: Tuple[str, ...] = (
    "CreateRemoteThread",
    "WriteProcessMemory",
    "VirtualAllocEx",
    "SetWindowsHookEx",
    "GetAsyncKeyState",
    "URLDownloadToFile",
    "ShellExecute",
    "WinExec",
)

ENTROPY_THRESHOLD = 7.5
ENTROPY_MIN_BYTES = 4096

# Names commonly used to lure users into opening malware, matched as substrings
KNOWN_MALWARE_FILE_NAMES: Tuple[str, ...] = ("invoice.exe", "document.scr", "photo.bat", "update.com")

# Expected encoded size as a fraction of the buffer, per image format
IMAGE_SIZE_RATIOS: Dict[str, float] = {"image/jpeg": 0.8, "image/png": 0.9}
IMAGE_SIZE_ANOMALY_FACTOR = 2
LSB_SAMPLE_BYTES = 1000
LSB_ENTROPY_THRESHOLD = 0.7

# --- Recommendations ---

RISK_RECOMMENDATIONS: Dict[RiskLevel, Tuple[str, ...]] = {
    RiskLevel.CRITICAL: (
        "CRITICAL: Block file immediately and alert security team",
        "Quarantine file for further analysis",
        "Review upload source and user account",
    ),
    RiskLevel.HIGH: (
        "HIGH RISK: Consider blocking file upload",
        "Perform additional manual review",
        "Monitor user account for suspicious activity",
    ),
    RiskLevel.MEDIUM: (
        "Medium/Low risk detected - proceed with caution",
        "Apply additional security controls",
        "Log security event for monitoring",
    ),
    RiskLevel.LOW: (
        "Medium/Low risk detected - proceed with caution",
        "Apply additional security controls",
        "Log security event for monitoring",
    ),
}

CLEAN_RECOMMENDATION = "File appears secure, proceed with normal processing"
RETRY_SCAN_RECOMMENDATION = "Retry security scan"
