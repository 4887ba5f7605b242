"""Document text extraction and field parsing.

Both functions are pure: they work on in-memory bytes and strings and
never touch the filesystem or the network.
"""

from __future__ import annotations

import io
import re
import zipfile
import zlib
from xml.etree import ElementTree

from .errors import ExtractionError
from .models import DocumentFields

_WORD_NS = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"
_ODF_TEXT_NS = "{urn:oasis:names:tc:opendocument:xmlns:text:1.0}"

_LABEL_LINE = re.compile(r"^\s*(?P<label>[^\W\d_][\w .\-/№#]{0,60}?)\s*[:：]\s*(?P<value>\S.*?)\s*$")
_DATE = re.compile(
    r"\b(?:\d{1,2}[./-]\d{1,2}[./-]\d{2,4}|\d{4}-\d{2}-\d{2})\b"
)
_EMAIL = re.compile(r"[\w.+\-]+@[\w\-]+(?:\.[\w\-]+)+")
_RTF_CONTROL = re.compile(r"\\[a-zA-Z]+-?\d* ?|\\[{}\\]|[{}]")
_RTF_HEX = re.compile(r"\\'([0-9a-fA-F]{2})")
_RTF_BREAK = re.compile(r"\\(?:par|line)\b ?")
_RTF_TAB = re.compile(r"\\tab\b ?")
_READABLE = r"[\t\r\n\x20-\x7e\u00a0-\u024f\u0400-\u04ff\u2010-\u2027\u2116]"
_READABLE_RUN = re.compile(_READABLE + "{4,}")


def document_text(filename: str, content: bytes) -> str:
    """Return the plain-text representation of an office document."""
    suffix = filename.lower().rsplit(".", 1)[-1] if "." in filename else ""
    try:
        if suffix == "docx":
            return _docx_text(content)
        if suffix == "odt":
            return _odt_text(content)
        if suffix == "rtf":
            return _rtf_text(content)
        return _legacy_text(content)
    except (zipfile.BadZipFile, zlib.error, KeyError, ElementTree.ParseError) as exc:
        raise ExtractionError(f"Cannot read text from {filename}: {exc}") from exc


def _docx_text(content: bytes) -> str:
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        root = ElementTree.fromstring(archive.read("word/document.xml"))
    lines: list[str] = []
    for paragraph in root.iter(f"{_WORD_NS}p"):
        chunks: list[str] = []
        for node in paragraph.iter():
            if node.tag == f"{_WORD_NS}t" and node.text:
                chunks.append(node.text)
            elif node.tag == f"{_WORD_NS}tab":
                chunks.append("\t")
            elif node.tag in (f"{_WORD_NS}br", f"{_WORD_NS}cr"):
                chunks.append("\n")
        lines.append("".join(chunks))
    return "\n".join(lines)


def _odt_text(content: bytes) -> str:
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        root = ElementTree.fromstring(archive.read("content.xml"))
    lines: list[str] = []
    for node in root.iter():
        if node.tag in (f"{_ODF_TEXT_NS}p", f"{_ODF_TEXT_NS}h"):
            lines.append("".join(node.itertext()))
    return "\n".join(lines)


def _rtf_text(content: bytes) -> str:
    text = content.decode("latin-1")
    text = _RTF_HEX.sub(lambda m: bytes([int(m.group(1), 16)]).decode("cp1252", errors="replace"), text)
    text = _RTF_TAB.sub("\t", _RTF_BREAK.sub("\n", text))
    text = _RTF_CONTROL.sub("", text)
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


def _legacy_text(content: bytes) -> str:
    """Best-effort text from a binary ``.doc``: readable UTF-16 runs, else 8-bit runs."""
    wide = content[: len(content) - len(content) % 2].decode("utf-16-le", errors="replace")
    runs = [run.strip() for run in _READABLE_RUN.findall(wide) if _mostly_letters(run)]
    if runs:
        return "\n".join(runs)
    narrow = content.decode("cp1251", errors="replace")
    return "\n".join(run.strip() for run in _READABLE_RUN.findall(narrow) if _mostly_letters(run))


def _mostly_letters(run: str) -> bool:
    letters = sum(1 for ch in run if ch.isalnum() or ch.isspace())
    return letters >= len(run) * 0.7


def extract_fields(text: str) -> DocumentFields:
    """Pull structured fields out of document text.

    * ``title`` is the first non-empty line that is not a label line.
    * ``fields`` maps ``Label: value`` lines (first occurrence wins).
    * ``dates`` and ``emails`` list every distinct match in order.
    """
    if not isinstance(text, str):
        raise ExtractionError(f"Expected text, got {type(text).__name__}")

    title: str | None = None
    fields: dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        match = _LABEL_LINE.match(stripped)
        if match:
            label = " ".join(match.group("label").split())
            fields.setdefault(label, match.group("value"))
        elif title is None:
            title = stripped

    return DocumentFields(
        title=title,
        fields=fields,
        dates=_unique(_DATE.findall(text)),
        emails=_unique(_EMAIL.findall(text)),
    )


def _unique(values: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)
