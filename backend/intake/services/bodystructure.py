"""
IMAP FETCH response parsing.

imaplib hands back FETCH responses as a list mixing plain byte strings and
``(prefix, literal)`` tuples.  This module turns that into nested Python
lists (parenthesized lists, quoted strings, literals, NIL, atoms) and walks
BODYSTRUCTURE trees to enumerate attachments with their part paths.

Part paths follow RFC 3501 section numbering: the children of a top-level
multipart are "1", "2", ...; nested multiparts extend the path ("1.2").  A
non-multipart message body is part "1".
"""

import logging
import re
from email.header import decode_header, make_header
from typing import Any, Iterator, List, Optional, Tuple
from urllib.parse import unquote

from intake.models.mail import AttachmentDescriptor

logger = logging.getLogger(__name__)

_LITERAL_MARKER = re.compile(rb"\{(\d+)\}$")

# Token kinds
_OPEN = object()
_CLOSE = object()


class _Str(str):
    """A quoted string or literal (as opposed to an atom)."""


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

def _tokenize_chunk(chunk: bytes) -> Iterator[Any]:
    text = chunk.decode("utf-8", errors="replace")
    i = 0
    length = len(text)
    while i < length:
        ch = text[i]
        if ch in " \r\n\t":
            i += 1
        elif ch == "(":
            yield _OPEN
            i += 1
        elif ch == ")":
            yield _CLOSE
            i += 1
        elif ch == '"':
            i += 1
            buf = []
            while i < length and text[i] != '"':
                if text[i] == "\\" and i + 1 < length:
                    i += 1
                buf.append(text[i])
                i += 1
            i += 1  # closing quote
            yield _Str("".join(buf))
        else:
            start = i
            depth = 0
            while i < length:
                c = text[i]
                if c == "[":
                    depth += 1
                elif c == "]":
                    depth -= 1
                elif depth == 0 and c in " ()\r\n\t":
                    break
                i += 1
            atom = text[start:i]
            yield None if atom.upper() == "NIL" else atom


def tokenize_fetch_data(data: list) -> List[Any]:
    """
    Flatten an imaplib FETCH response into a token list.

    Literal payloads are emitted as string tokens in place of their
    ``{n}`` markers.
    """
    tokens: List[Any] = []
    for item in data:
        if item is None:
            continue
        if isinstance(item, tuple):
            prefix, literal = item[0], item[1]
            marker = _LITERAL_MARKER.search(prefix)
            if marker:
                prefix = prefix[:marker.start()]
            tokens.extend(_tokenize_chunk(prefix))
            tokens.append(_Str(literal.decode("utf-8", errors="replace")))
        else:
            tokens.extend(_tokenize_chunk(item))
    return tokens


def _build(tokens: List[Any], pos: int) -> Tuple[Any, int]:
    token = tokens[pos]
    if token is _OPEN:
        items = []
        pos += 1
        while pos < len(tokens) and tokens[pos] is not _CLOSE:
            value, pos = _build(tokens, pos)
            items.append(value)
        return items, pos + 1
    return token, pos + 1


def parse_fetch_response(data: list) -> List[dict]:
    """
    Parse an imaplib FETCH response into one dict per message.

    Keys are the upper-cased data item names (``UID``, ``BODYSTRUCTURE``,
    ``BODY[HEADER.FIELDS (FROM SUBJECT DATE)]``, ...).
    """
    tokens = tokenize_fetch_data(data)
    values = []
    pos = 0
    while pos < len(tokens):
        value, pos = _build(tokens, pos)
        values.append(value)

    messages = []
    for value in values:
        if not isinstance(value, list):
            continue  # sequence numbers
        fields = {}
        for i in range(0, len(value) - 1, 2):
            key = value[i]
            if isinstance(key, str):
                fields[key.upper()] = value[i + 1]
        messages.append(fields)
    return messages


# ---------------------------------------------------------------------------
# BODYSTRUCTURE walk
# ---------------------------------------------------------------------------

def _params_to_dict(params: Any) -> dict:
    if not isinstance(params, list):
        return {}
    result = {}
    for i in range(0, len(params) - 1, 2):
        key = params[i]
        if isinstance(key, str):
            result[key.lower()] = params[i + 1]
    return result


def decode_mime_words(value: Optional[str]) -> str:
    """Decode RFC 2047 encoded words; undecodable input is returned as-is."""
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value)))
    except (UnicodeDecodeError, LookupError, ValueError):
        return value


def _param_filename(params: dict) -> Optional[str]:
    for key in ("filename", "name"):
        if params.get(key):
            return decode_mime_words(params[key])
        # RFC 2231: filename*=utf-8''r%C3%A9sum%C3%A9.pdf
        extended = params.get(key + "*")
        if extended:
            _, _, encoded = extended.partition("''")
            return unquote(encoded or extended)
    return None


def _is_multipart(node: list) -> bool:
    return bool(node) and isinstance(node[0], list)


def _iter_leaf_parts(node: list, path: str) -> Iterator[Tuple[str, list]]:
    if _is_multipart(node):
        index = 0
        for child in node:
            if not isinstance(child, list):
                break
            index += 1
            child_path = f"{path}.{index}" if path else str(index)
            yield from _iter_leaf_parts(child, child_path)
    else:
        yield (path or "1"), node


def _disposition_index(node: list) -> int:
    main_type = str(node[0]).lower()
    sub_type = str(node[1]).lower()
    if main_type == "text":
        return 9
    if main_type == "message" and sub_type == "rfc822":
        return 11
    return 8


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def attachments_from_bodystructure(structure: Any, uid: str) -> List[AttachmentDescriptor]:
    """
    Enumerate the attachments described by a parsed BODYSTRUCTURE.

    A leaf part counts as an attachment when it has a filename, either from
    its Content-Disposition parameters or the Content-Type ``name`` parameter.
    """
    if not isinstance(structure, list) or not structure:
        return []

    attachments = []
    for path, node in _iter_leaf_parts(structure, ""):
        if len(node) < 7:
            logger.debug("Skipping short BODYSTRUCTURE node at %s: %r", path, node)
            continue

        content_type = f"{node[0]}/{node[1]}".lower()
        type_params = _params_to_dict(node[2])

        disposition = None
        disposition_params: dict = {}
        d_index = _disposition_index(node)
        if len(node) > d_index and isinstance(node[d_index], list) and node[d_index]:
            disposition = str(node[d_index][0]).lower()
            if len(node[d_index]) > 1:
                disposition_params = _params_to_dict(node[d_index][1])

        filename = _param_filename(disposition_params) or _param_filename(type_params)
        if not filename:
            continue

        attachments.append(AttachmentDescriptor(
            attachment_id=f"att-{uid}-{len(attachments)}",
            filename=filename,
            content_type=content_type,
            size=_to_int(node[6]),
            part_path=path,
            encoding=str(node[5] or "7bit").lower(),
            disposition=disposition,
        ))

    return attachments
