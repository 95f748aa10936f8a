"""
Attachment decoding from raw RFC 822 message bytes.

Two tiers:

1. Structured decode with the standard ``email`` package.  The part is
   matched by filename first, then by part path and content type, then by
   content type plus an attachment disposition.
2. Heuristic scan for messages the structured parser cannot make sense of
   (missing or broken headers, non-conforming servers).  Boundaries are
   located with regexes, the message is split on them and the matching part's
   body is decoded according to its Content-Transfer-Encoding.

If neither tier yields a non-empty payload, AttachmentNotFoundError is
raised.  There is no empty-attachment fallback.
"""

import base64
import binascii
import email
import email.policy
import logging
import quopri
import re
from email.message import Message
from typing import Iterator, List, Optional, Tuple

from intake.errors import AttachmentNotFoundError
from intake.models.mail import AttachmentDescriptor, DownloadedAttachment
from intake.services.bodystructure import decode_mime_words

logger = logging.getLogger(__name__)

_BOUNDARY_RE = re.compile(r'boundary\s*=\s*(?:"([^"]+)"|([^;\s]+))', re.IGNORECASE)
_FILENAME_RE = re.compile(r'\b(?:file)?name(\*)?\s*=\s*(?:"([^"]*)"|([^;\r\n]+))', re.IGNORECASE)
_ENCODING_RE = re.compile(r"^content-transfer-encoding:\s*([\w-]+)", re.IGNORECASE | re.MULTILINE)
_CONTENT_TYPE_RE = re.compile(r"^content-type:\s*([\w.+-]+/[\w.+-]+)", re.IGNORECASE | re.MULTILINE)
_HEADER_SEPARATOR_RE = re.compile(r"\r?\n\r?\n")
_FOLDED_LINE_RE = re.compile(r"\r?\n[ \t]+")


def _same_name(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


# ---------------------------------------------------------------------------
# Tier 1: structured decode
# ---------------------------------------------------------------------------

def _iter_parts_with_paths(message: Message, path: str = "") -> Iterator[Tuple[str, Message]]:
    if message.get_content_maintype() == "multipart":
        payload = message.get_payload()
        if not isinstance(payload, list):
            return
        for index, child in enumerate(payload, start=1):
            child_path = f"{path}.{index}" if path else str(index)
            yield from _iter_parts_with_paths(child, child_path)
    else:
        yield (path or "1"), message


def _decoded_payload(part: Message) -> Optional[bytes]:
    payload = part.get_payload(decode=True)
    if isinstance(payload, bytes) and payload:
        return payload
    return None


def decode_with_email_parser(raw: bytes, descriptor: AttachmentDescriptor) -> Optional[bytes]:
    """Locate and decode the attachment with the ``email`` package."""
    message = email.message_from_bytes(raw, policy=email.policy.compat32)
    parts = list(_iter_parts_with_paths(message))

    # 1. filename
    for _, part in parts:
        filename = part.get_filename()
        if filename and _same_name(decode_mime_words(filename), descriptor.filename):
            payload = _decoded_payload(part)
            if payload:
                return payload

    # 2. part path plus declared content type
    for path, part in parts:
        if path == descriptor.part_path and part.get_content_type() == descriptor.content_type:
            payload = _decoded_payload(part)
            if payload:
                return payload

    # 3. content type on an attachment-disposition part
    for _, part in parts:
        disposition = (part.get_content_disposition() or "").lower()
        if disposition == "attachment" and part.get_content_type() == descriptor.content_type:
            payload = _decoded_payload(part)
            if payload:
                return payload

    return None


# ---------------------------------------------------------------------------
# Tier 2: heuristic scan
# ---------------------------------------------------------------------------

def find_boundaries(text: str) -> List[str]:
    """Every multipart boundary declared in the message, top-level first."""
    seen = []
    for quoted, bare in _BOUNDARY_RE.findall(text):
        boundary = quoted or bare
        if boundary and boundary not in seen:
            seen.append(boundary)
    return seen


def _header_filenames(headers: str) -> List[str]:
    names = []
    for extended, quoted, bare in _FILENAME_RE.findall(headers):
        value = (quoted or bare).strip()
        if extended:
            _, _, value = value.partition("''")
            value = re.sub(r"%([0-9A-Fa-f]{2})", lambda m: chr(int(m.group(1), 16)), value)
        names.append(decode_mime_words(value))
    return names


def _part_matches(headers: str, descriptor: AttachmentDescriptor) -> bool:
    if any(_same_name(name, descriptor.filename) for name in _header_filenames(headers)):
        return True
    content_type = _CONTENT_TYPE_RE.search(headers)
    return (
        content_type is not None
        and content_type.group(1).lower() == descriptor.content_type.lower()
        and "attachment" in headers.lower()
    )


def decode_transfer_encoding(body: str, encoding: str) -> bytes:
    """
    Decode a part body given its Content-Transfer-Encoding.

    ``body`` is the latin-1 view of the raw bytes, so 7bit/8bit/binary bodies
    map back to their original bytes unchanged.
    """
    encoding = (encoding or "7bit").lower()
    if encoding == "base64":
        cleaned = re.sub(r"\s+", "", body)
        return base64.b64decode(cleaned, validate=True)
    if encoding == "quoted-printable":
        return quopri.decodestring(body.encode("latin-1"))
    return body.encode("latin-1")


def _strip_trailing_boundary(body: str, boundary: str) -> str:
    end = body.find("--" + boundary)
    if end != -1:
        body = body[:end]
    # Only the line break directly before the delimiter belongs to it
    if body.endswith("\r\n"):
        return body[:-2]
    if body.endswith("\n"):
        return body[:-1]
    return body


def decode_with_heuristic_scan(raw: bytes, descriptor: AttachmentDescriptor) -> Optional[bytes]:
    """Split the raw message on its boundaries and decode the matching part."""
    text = raw.decode("latin-1")

    for boundary in find_boundaries(text):
        for segment in text.split("--" + boundary)[1:]:
            if segment.startswith("--"):
                continue  # closing delimiter
            separator = _HEADER_SEPARATOR_RE.search(segment)
            if not separator:
                continue
            headers = _FOLDED_LINE_RE.sub(" ", segment[:separator.start()])
            if not _part_matches(headers, descriptor):
                continue

            body = _strip_trailing_boundary(segment[separator.end():], boundary)
            encoding_match = _ENCODING_RE.search(headers)
            encoding = encoding_match.group(1) if encoding_match else descriptor.encoding
            try:
                payload = decode_transfer_encoding(body, encoding)
            except (binascii.Error, ValueError) as exc:
                logger.warning(
                    "Heuristic decode of %s failed (%s): %s",
                    descriptor.filename, encoding, exc,
                )
                continue
            if payload:
                return payload

    return None


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def extract_attachment(raw: bytes, descriptor: AttachmentDescriptor) -> DownloadedAttachment:
    """
    Decode ``descriptor``'s content from the full raw message.

    Raises:
        AttachmentNotFoundError: If neither tier finds a decodable payload.
    """
    try:
        payload = decode_with_email_parser(raw, descriptor)
    except Exception as exc:
        logger.warning(
            "Structured MIME decode failed for %s, trying heuristic scan: %s",
            descriptor.filename, exc,
        )
        payload = None

    if payload:
        return DownloadedAttachment(descriptor=descriptor, content=payload, decoded_by="mime")

    payload = decode_with_heuristic_scan(raw, descriptor)
    if payload:
        logger.info("Recovered %s with heuristic MIME scan", descriptor.filename)
        return DownloadedAttachment(descriptor=descriptor, content=payload, decoded_by="heuristic")

    raise AttachmentNotFoundError(
        f"Attachment {descriptor.filename!r} not found or undecodable in message",
        filename=descriptor.filename,
    )
