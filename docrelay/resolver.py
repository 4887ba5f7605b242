"""Locate, decode, and fetch office-document attachments of a message."""

from __future__ import annotations

import base64
import binascii
import quopri
import re
from email.header import decode_header, make_header
from email.utils import collapse_rfc2231_value, decode_rfc2231
from typing import Protocol
from urllib.parse import unquote

import structlog

from .errors import FetchError
from .models import AttachmentCandidate, MessagePart

logger = structlog.get_logger()

_CONTINUATION = re.compile(r"^(?P<name>[a-z0-9_\-]+)\*(?P<index>\d+)(?P<encoded>\*?)$")
_ENCODED_WORD = re.compile(r"=\?[^?]+\?[bBqQ]\?[^?]*\?=")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]+")


class PartFetcher(Protocol):
    async def fetch_part(self, uid: int, part_id: str) -> bytes: ...


# ------------------------------------------------------------------
# Filename decoding
# ------------------------------------------------------------------


def decode_filename(params: dict[str, str], name: str = "filename") -> str | None:
    """Return the decoded value of a filename-like parameter.

    Handles RFC 2231 extended values (``filename*``) and continuations
    (``filename*0*``, ``filename*1`` ...) before falling back to the
    plain parameter, which may hold RFC 2047 encoded words.
    """
    extended = params.get(f"{name}*")
    if extended is not None:
        return _decode_rfc2231(extended)

    pieces: list[tuple[int, str, bool]] = []
    for key, value in params.items():
        match = _CONTINUATION.match(key)
        if match and match.group("name") == name:
            pieces.append((int(match.group("index")), value, bool(match.group("encoded"))))
    if pieces:
        pieces.sort()
        if pieces[0][2]:
            charset, _, rest = pieces[0][1].partition("'")
            _, _, first = rest.partition("'")
            joined = first + "".join(
                value if encoded else value.replace("%", "%25")
                for _, value, encoded in pieces[1:]
            )
            return unquote(joined, encoding=charset or "utf-8", errors="replace")
        return decode_encoded_words("".join(value for _, value, _ in pieces))

    plain = params.get(name)
    if plain is None:
        return None
    return decode_encoded_words(plain)


def _decode_rfc2231(value: str) -> str:
    decoded = decode_rfc2231(value)
    if len(decoded) == 3 and decoded[0] is not None:
        charset, language, text = decoded
        return unquote(text, encoding=charset or "utf-8", errors="replace")
    return collapse_rfc2231_value(decoded)


def decode_encoded_words(value: str) -> str:
    """Decode RFC 2047 ``=?charset?B|Q?...?=`` words to text."""
    if not _ENCODED_WORD.search(value):
        return value
    try:
        return str(make_header(decode_header(value)))
    except (LookupError, UnicodeDecodeError, ValueError):
        logger.warning("filename_decode_failed", raw=value)
        return value


def part_filename(part: MessagePart) -> str | None:
    """Filename of a part from its disposition, else its ``name`` parameter."""
    filename = decode_filename(part.disposition_params, "filename")
    if not filename:
        filename = decode_filename(part.params, "name")
    if filename:
        filename = _CONTROL_CHARS.sub(" ", filename).strip()
        filename = filename.replace("\\", "/").rsplit("/", 1)[-1].strip()
    return filename or None


def decode_transfer_encoding(payload: bytes, encoding: str) -> bytes:
    encoding = encoding.lower()
    if encoding == "base64":
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"invalid base64 payload: {exc}") from exc
    if encoding == "quoted-printable":
        return quopri.decodestring(payload)
    return payload


# ------------------------------------------------------------------
# Resolver
# ------------------------------------------------------------------


class AttachmentResolver:
    """Turns a message structure into decoded document attachments.

    Only parts flagged as attachments (or inline parts that carry a
    filename) whose decoded filename ends in one of *extensions* are
    kept.  Everything else is skipped silently.
    """

    def __init__(self, extensions: list[str]) -> None:
        self._extensions = tuple(ext.lower() for ext in extensions)

    def is_document(self, filename: str) -> bool:
        return filename.lower().endswith(self._extensions)

    def collect(self, structure: MessagePart) -> list[tuple[MessagePart, str]]:
        """Return ``(part, decoded_filename)`` for every document attachment."""
        found: list[tuple[MessagePart, str]] = []
        for part in structure.walk():
            if part.is_multipart:
                continue
            filename = part_filename(part)
            if not filename:
                continue
            if part.disposition not in ("attachment", "inline") and not part.params.get("name"):
                continue
            if not self.is_document(filename):
                logger.debug("attachment_skipped", part_id=part.part_id, filename=filename)
                continue
            found.append((part, filename))
        return found

    async def resolve(
        self,
        session: PartFetcher,
        uid: int,
        structure: MessagePart,
    ) -> list[AttachmentCandidate]:
        """Fetch and decode every document attachment of message *uid*."""
        return await self.fetch(session, uid, self.collect(structure))

    async def fetch(
        self,
        session: PartFetcher,
        uid: int,
        documents: list[tuple[MessagePart, str]],
    ) -> list[AttachmentCandidate]:
        """Fetch the bytes of already collected parts.

        A failed fetch skips that attachment only.
        """
        candidates: list[AttachmentCandidate] = []
        for part, filename in documents:
            try:
                raw = await session.fetch_part(uid, part.part_id)
                content = decode_transfer_encoding(raw, part.encoding)
            except FetchError as exc:
                logger.warning(
                    "attachment_fetch_failed",
                    uid=uid,
                    filename=filename,
                    part_id=part.part_id,
                    stage="fetch",
                    error=str(exc),
                )
                continue
            except ValueError as exc:
                logger.warning(
                    "attachment_decode_failed",
                    uid=uid,
                    filename=filename,
                    part_id=part.part_id,
                    stage="decode",
                    error=str(exc),
                )
                continue

            logger.info("attachment_found", uid=uid, filename=filename, size=len(content))
            candidates.append(
                AttachmentCandidate(uid=uid, filename=filename, content=content, part_id=part.part_id)
            )
        return candidates
