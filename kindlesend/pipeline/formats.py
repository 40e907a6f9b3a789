"""
Decide which uploads need conversion and clean declared file names before they touch the disk.
"""

import re
from typing import List

from .errors import InvalidFileName

# Formats accepted as-is by the Send to Kindle e-mail service. MOBI was dropped by Amazon, EPUB is the target.
supported_formats: List[str] = ["epub", "doc", "docx", "rtf", "htm", "html", "txt", "pdf"]

MAX_FILE_NAME_LENGTH = 255 # bytes, the usual filesystem limit for one path component
_RESERVED_CHARS = set('<>:"|?*')


def needs_conversion(extension: str) -> bool:
    """True unless the lower-cased extension (no leading dot) is natively supported"""
    return extension not in supported_formats


def name_length(file_name: str) -> int:
    """Length in UTF-8 bytes, as the filesystem counts it"""
    return len(file_name.encode("utf-8"))


def file_extension(file_name: str) -> str:
    """Lower-cased extension without the leading dot, '' if there is none"""
    _, dot, ext = file_name.rpartition(".")
    if not dot or not _:
        return ""
    return ext.lower()


def sanitize_file_name(file_name: str) -> str:
    """
    Strip directory components, control characters and reserved characters.

    Raises InvalidFileName for empty or over-long input and for names that end up empty.
    """
    if not file_name:
        raise InvalidFileName("empty file name")
    if name_length(file_name) > MAX_FILE_NAME_LENGTH:
        raise InvalidFileName(f"file name longer than {MAX_FILE_NAME_LENGTH} bytes")

    # Both separators count: clients on Windows send backslashes
    base_name = re.split(r"[\\/]", file_name.rstrip("/\\"))[-1]
    cleaned = "".join(
        ch for ch in base_name
        if ord(ch) >= 32 and ord(ch) != 127 and ch not in _RESERVED_CHARS
    )

    if not cleaned or cleaned in (".", ".."):
        raise InvalidFileName(f"nothing left of file name {file_name!r} after sanitizing")
    return cleaned
