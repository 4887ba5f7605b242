"""Parse IMAP ``BODYSTRUCTURE`` responses into a :class:`MessagePart` tree.

``imaplib`` hands back FETCH responses as a list mixing plain byte
strings and ``(header, literal)`` tuples.  The response is flattened
into one parenthesized expression, tokenized, and walked following
the body-structure grammar of RFC 3501 section 7.4.2.
"""

from __future__ import annotations

import re
from typing import Any

from .models import MessagePart

_LITERAL_MARKER = re.compile(rb"\{(\d+)\}\s*$")
_TOKEN = re.compile(r'\s*(?:(\()|(\))|"((?:[^"\\]|\\.)*)"|([^\s()"]+))', re.DOTALL)
_ESCAPE = re.compile(r"\\(.)", re.DOTALL)

# Leaf field counts before the extension data starts.
_BASIC_FIELDS = 7
_TEXT_FIELDS = 8
_MESSAGE_FIELDS = 10


class BodyStructureError(ValueError):
    """The server response is not a well-formed body structure."""


def flatten_fetch_response(data: list[Any]) -> bytes:
    """Join an ``imaplib`` FETCH response into a single byte string.

    Literals (``{n}`` followed by raw bytes) are re-encoded as quoted
    strings so the result can be tokenized in one pass.
    """
    chunks: list[bytes] = []
    for item in data:
        if isinstance(item, tuple):
            head, literal = item[0], item[1]
            match = _LITERAL_MARKER.search(head)
            if match:
                head = head[: match.start()]
            chunks.append(head)
            chunks.append(_quote(literal))
        elif isinstance(item, bytes):
            chunks.append(item)
    return b"".join(chunks)


def _quote(literal: bytes) -> bytes:
    return b'"' + literal.replace(b"\\", b"\\\\").replace(b'"', b'\\"') + b'"'


def tokenize(text: str) -> list[Any]:
    """Parse a parenthesized IMAP expression into nested Python lists.

    ``NIL`` becomes ``None``; quoted strings and atoms become ``str``.
    """
    stack: list[list[Any]] = [[]]
    pos = 0
    length = len(text)
    while pos < length:
        match = _TOKEN.match(text, pos)
        if match is None:
            if text[pos:].strip():
                raise BodyStructureError(f"Unexpected input at offset {pos}")
            break
        pos = match.end()
        opening, closing, quoted, atom = match.groups()
        if opening:
            stack.append([])
        elif closing:
            if len(stack) == 1:
                raise BodyStructureError("Unbalanced ')' in response")
            finished = stack.pop()
            stack[-1].append(finished)
        elif quoted is not None:
            stack[-1].append(_ESCAPE.sub(r"\1", quoted))
        elif atom is not None:
            stack[-1].append(None if atom.upper() == "NIL" else atom)
    if len(stack) != 1:
        raise BodyStructureError("Unbalanced '(' in response")
    return stack[0]


def parse_fetch_response(data: list[Any]) -> tuple[int | None, MessagePart]:
    """Return ``(uid, structure)`` from a ``UID FETCH ... (UID BODYSTRUCTURE)`` response."""
    raw = flatten_fetch_response(data)
    items = tokenize(raw.decode("utf-8", errors="replace"))

    uid: int | None = None
    structure: list[Any] | None = None
    for item in items:
        if not isinstance(item, list):
            continue
        for key, value in zip(item[::2], item[1::2]):
            if not isinstance(key, str):
                continue
            name = key.upper()
            if name == "UID" and isinstance(value, str) and value.isdigit():
                uid = int(value)
            elif name in ("BODYSTRUCTURE", "BODY") and isinstance(value, list):
                structure = value
    if structure is None:
        raise BodyStructureError("No BODYSTRUCTURE in FETCH response")
    return uid, parse_bodystructure(structure)


def parse_bodystructure(node: list[Any]) -> MessagePart:
    """Build the part tree for a top-level body structure."""
    if _is_multipart(node):
        return _build_multipart(node, "TEXT", prefix="")
    return _build_single(node, "1")


def _is_multipart(node: list[Any]) -> bool:
    return bool(node) and isinstance(node[0], list)


def _build_multipart(node: list[Any], part_id: str, *, prefix: str) -> MessagePart:
    children: list[MessagePart] = []
    index = 0
    while index < len(node) and isinstance(node[index], list):
        child_id = f"{prefix}.{index + 1}" if prefix else str(index + 1)
        child = node[index]
        if _is_multipart(child):
            children.append(_build_multipart(child, child_id, prefix=child_id))
        else:
            children.append(_build_single(child, child_id))
        index += 1

    rest = node[index:]
    subtype = _lower(rest[0]) if rest else "mixed"
    params = _params(rest[1]) if len(rest) > 1 else {}
    disposition, disposition_params = _disposition(rest[2] if len(rest) > 2 else None)

    return MessagePart(
        part_id=part_id,
        maintype="multipart",
        subtype=subtype or "mixed",
        params=params,
        disposition=disposition,
        disposition_params=disposition_params,
        children=children,
    )


def _build_single(node: list[Any], part_id: str) -> MessagePart:
    if len(node) < _BASIC_FIELDS:
        raise BodyStructureError(f"Body part {part_id} has too few fields")

    maintype = _lower(node[0]) or "application"
    subtype = _lower(node[1]) or "octet-stream"
    children: list[MessagePart] = []

    if maintype == "text":
        extension_at = _TEXT_FIELDS
    elif maintype == "message" and subtype == "rfc822" and len(node) >= _MESSAGE_FIELDS:
        extension_at = _MESSAGE_FIELDS
        inner = node[8]
        if isinstance(inner, list) and inner:
            if _is_multipart(inner):
                children.append(_build_multipart(inner, f"{part_id}.TEXT", prefix=part_id))
            else:
                children.append(_build_single(inner, f"{part_id}.1"))
    else:
        extension_at = _BASIC_FIELDS

    # extension data: md5, disposition, language, location
    disposition_node = node[extension_at + 1] if len(node) > extension_at + 1 else None
    disposition, disposition_params = _disposition(disposition_node)

    return MessagePart(
        part_id=part_id,
        maintype=maintype,
        subtype=subtype,
        params=_params(node[2]),
        encoding=_lower(node[5]) or "7bit",
        size=_int(node[6]),
        disposition=disposition,
        disposition_params=disposition_params,
        children=children,
    )


def _disposition(node: Any) -> tuple[str | None, dict[str, str]]:
    if isinstance(node, list) and node and isinstance(node[0], str):
        params = _params(node[1]) if len(node) > 1 else {}
        return node[0].lower(), params
    if isinstance(node, str):
        return node.lower(), {}
    return None, {}


def _params(node: Any) -> dict[str, str]:
    if not isinstance(node, list):
        return {}
    params: dict[str, str] = {}
    for key, value in zip(node[::2], node[1::2]):
        if isinstance(key, str) and isinstance(value, str):
            params[key.lower()] = value
    return params


def _lower(value: Any) -> str:
    return value.lower() if isinstance(value, str) else ""


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
