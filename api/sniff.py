"""
Content-type sniffing from leading bytes.

Covers the signatures the upload endpoints care about (MP4, JPEG, PNG) plus a
few common look-alikes so rejections can name what was actually sent. Follows
the WHATWG MIME sniffing rules for these types.
"""

import struct

SNIFF_LENGTH = 512

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"%PDF-", "application/pdf"),
    (b"\x1a\x45\xdf\xa3", "video/webm"),
    (b"PK\x03\x04", "application/zip"),
)


def _is_mp4(data: bytes) -> bool:
    """ISO BMFF check: a leading ftyp box whose brands include one starting with "mp4"."""
    if len(data) < 12:
        return False
    box_size = struct.unpack(">I", data[:4])[0]
    if len(data) < box_size or box_size % 4 != 0:
        return False
    if data[4:8] != b"ftyp":
        return False
    for offset in range(8, box_size, 4):
        if offset == 12:
            # minor_version, not a brand
            continue
        if data[offset : offset + 3] == b"mp4":
            return True
    return False


def _is_webp(data: bytes) -> bool:
    return len(data) >= 14 and data[:4] == b"RIFF" and data[8:14] == b"WEBPVP"


def sniff_content_type(data: bytes) -> str:
    """Return the detected MIME type of data, or application/octet-stream."""
    head = data[:SNIFF_LENGTH]

    for signature, content_type in _SIGNATURES:
        if head.startswith(signature):
            return content_type
    if _is_webp(head):
        return "image/webp"
    if _is_mp4(head):
        return "video/mp4"

    return DEFAULT_CONTENT_TYPE


def extension_for(content_type: str) -> str:
    """File extension (without dot) for the content types we store locally."""
    return {
        "image/jpeg": "jpg",
        "image/png": "png",
        "video/mp4": "mp4",
    }.get(content_type, "bin")
