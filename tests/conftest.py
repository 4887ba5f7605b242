"""Shared test fixtures for the docrelay test suite."""

from __future__ import annotations

import io
import struct
import zipfile
from pathlib import Path

import pytest

from docrelay.config import ConversionConfig, ImapConfig, RetryConfig, Settings, SmtpConfig
from docrelay.errors import FetchError, ReplySendError
from docrelay.fanout import NotificationHub
from docrelay.ledger import ProcessedLedger
from docrelay.mailer import Attachment
from docrelay.models import DocumentFields, MessagePart, PendingItem
from docrelay.pending import PendingItemStore

DOCX_MIME = "vnd.openxmlformats-officedocument.wordprocessingml.document"

BODYSTRUCTURE_RESPONSE = [
    b'1 (UID 101 BODYSTRUCTURE (("text" "plain" ("charset" "utf-8") NIL NIL "7bit" 120 4 NIL NIL NIL NIL)'
    b'("application" "' + DOCX_MIME.encode() + b'" ("name" "report.docx") NIL NIL "base64" 4096 NIL'
    b' ("attachment" ("filename" "report.docx")) NIL NIL) "mixed" ("boundary" "xyz") NIL NIL NIL))'
]


# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------


class FakeMailbox:
    """In-memory stand-in for one IMAP session."""

    def __init__(
        self,
        *,
        uids: list[int] | None = None,
        structures: dict[int, MessagePart] | None = None,
        parts: dict[tuple[int, str], bytes] | None = None,
        connect_error: Exception | None = None,
        search_error: Exception | None = None,
    ) -> None:
        self.uids = uids or []
        self.structures = structures or {}
        self.parts = parts or {}
        self.connect_error = connect_error
        self.search_error = search_error
        self.searches: list[tuple[str, ...]] = []
        self.flagged: list[int] = []
        self.connected = False
        self.disconnected = False

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnected = True

    async def search(self, *criteria: str) -> list[int]:
        self.searches.append(criteria)
        if self.search_error is not None:
            raise self.search_error
        return list(self.uids)

    async def fetch_structure(self, uid: int) -> MessagePart:
        if uid not in self.structures:
            raise FetchError("no such message", uid=uid)
        return self.structures[uid]

    async def fetch_part(self, uid: int, part_id: str) -> bytes:
        if (uid, part_id) not in self.parts:
            raise FetchError("no such part", uid=uid, part_id=part_id)
        return self.parts[(uid, part_id)]

    async def flag_seen(self, uid: int) -> None:
        self.flagged.append(uid)


class FakeConverter:
    """Returns queued results in order; an exception in the queue is raised."""

    def __init__(self, *results: bytes | Exception) -> None:
        self.results = list(results) or [b"%PDF-1.4 converted"]
        self.calls: list[Path] = []
        self.seen_content: list[bytes] = []
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def convert_file(self, path: Path) -> bytes:
        self.calls.append(path)
        self.seen_content.append(path.read_bytes())
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeMailer:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str, str, Attachment | None]] = []

    async def send(self, to: str, subject: str, body: str, attachment: Attachment | None = None) -> None:
        if self.fail:
            raise ReplySendError(f"Could not send reply to {to}: relay refused")
        self.sent.append((to, subject, body, attachment))


class FlagRecorder:
    """Async ``flag_seen`` callable for the pending store."""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.uids: list[int] = []

    async def __call__(self, uid: int) -> bool:
        self.uids.append(uid)
        return self.result


# ------------------------------------------------------------------
# Builders
# ------------------------------------------------------------------


def document_message(filename: str = "report.docx", *, part_id: str = "2", encoding: str = "base64") -> MessagePart:
    """A multipart/mixed structure: text body plus one named attachment."""
    return MessagePart(
        part_id="TEXT",
        maintype="multipart",
        subtype="mixed",
        children=[
            MessagePart(part_id="1", maintype="text", subtype="plain", params={"charset": "utf-8"}),
            MessagePart(
                part_id=part_id,
                maintype="application",
                subtype="octet-stream",
                params={"name": filename},
                encoding=encoding,
                disposition="attachment",
                disposition_params={"filename": filename},
            ),
        ],
    )


def make_docx(*paragraphs: str) -> bytes:
    body = "".join(
        f'<w:p><w:r><w:t xml:space="preserve">{text}</w:t></w:r></w:p>' for text in paragraphs
    )
    xml = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
        f"<w:body>{body}</w:body></w:document>"
    )
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        archive.writestr("word/document.xml", xml)
    return buf.getvalue()


def make_corrupt_docx() -> bytes:
    """A .docx whose deflate stream starts with a reserved block type."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("word/document.xml", "<w:document/>" * 50)
    data = bytearray(buf.getvalue())
    name_len, extra_len = struct.unpack("<HH", data[26:30])
    data[30 + name_len + extra_len] = 0x07
    return bytes(data)


def make_item(uid: int = 101, filename: str = "report.docx") -> PendingItem:
    stem = filename.rsplit(".", 1)[0]
    return PendingItem(
        uid=uid,
        source_filename=filename,
        fields=DocumentFields(title="Service Agreement", fields={"Contract No": "42/2024"}),
        pdf_filename=f"{stem}.pdf",
        pdf_bytes=b"%PDF-1.4 " + filename.encode(),
    )


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="testuser",
        password="testpass",
        mailbox="INBOX",
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_attempts=2, initial_wait_seconds=0.0, max_wait_seconds=0.0)


@pytest.fixture
def settings(imap_config: ImapConfig, retry_config: RetryConfig) -> Settings:
    return Settings(
        target_sender="sender@example.com",
        scan_interval_seconds=60.0,
        reconnect_delay_seconds=0.0,
        imap=imap_config,
        conversion=ConversionConfig(api_key="test-key"),
        smtp=SmtpConfig(host="smtp.test.com", username="relay@example.com", password="secret"),
        retry=retry_config,
        log_json=False,
    )


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub(queue_size=8)


@pytest.fixture
def ledger() -> ProcessedLedger:
    return ProcessedLedger()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def flag_recorder() -> FlagRecorder:
    return FlagRecorder()


@pytest.fixture
def store(hub: NotificationHub, mailer: FakeMailer, flag_recorder: FlagRecorder) -> PendingItemStore:
    return PendingItemStore(
        hub,
        mailer,
        flag_recorder,
        reply_to="sender@example.com",
        reply_subject="Confirmed: {filename}",
        reply_body="Reviewed.",
    )


@pytest.fixture
def docx_bytes() -> bytes:
    return make_docx("Service Agreement", "Contract No: 42/2024", "Date: 12.03.2024")
