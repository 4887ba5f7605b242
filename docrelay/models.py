"""Typed records passed between the relay components."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    """Lifecycle state of the mailbox session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    ERRORED = "errored"


@dataclass
class MessagePart:
    """One node of a message's BODYSTRUCTURE tree.

    ``part_id`` is the IMAP section specifier (``"1"``, ``"2.1"``) used
    to fetch the part body.  Multipart containers have children and no
    content of their own.
    """

    part_id: str
    maintype: str
    subtype: str
    params: dict[str, str] = field(default_factory=dict)
    encoding: str = "7bit"
    size: int = 0
    disposition: str | None = None
    disposition_params: dict[str, str] = field(default_factory=dict)
    children: list[MessagePart] = field(default_factory=list)

    @property
    def content_type(self) -> str:
        return f"{self.maintype}/{self.subtype}"

    @property
    def is_multipart(self) -> bool:
        return self.maintype == "multipart"

    def walk(self) -> Iterator[MessagePart]:
        """Yield this part and every descendant, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass(frozen=True)
class MessageSummary:
    """A message UID and its structure, fetched without any body."""

    uid: int
    structure: MessagePart

    def __post_init__(self) -> None:
        if self.uid <= 0:
            raise ValueError(f"UID must be positive, got {self.uid}")


class AttachmentCandidate(BaseModel):
    """A decoded office-document attachment awaiting conversion."""

    model_config = ConfigDict(frozen=True)

    uid: int = Field(gt=0, description="UID of the owning message")
    filename: str = Field(min_length=1, description="Decoded attachment filename")
    content: bytes = Field(repr=False, description="Decoded attachment bytes")
    part_id: str = Field(default="1", description="IMAP section the bytes came from")


class DocumentFields(BaseModel):
    """Structured record pulled out of the document text."""

    title: str | None = None
    fields: dict[str, str] = Field(default_factory=dict)
    dates: list[str] = Field(default_factory=list)
    emails: list[str] = Field(default_factory=list)


class PendingItem(BaseModel):
    """The single converted document awaiting operator confirmation."""

    model_config = ConfigDict(frozen=True)

    uid: int = Field(gt=0, description="UID of the source message")
    source_filename: str = Field(min_length=1, description="Attachment filename as sent")
    fields: DocumentFields
    pdf_filename: str = Field(min_length=1)
    pdf_bytes: bytes = Field(repr=False)
    published_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def view(self) -> PendingView:
        return PendingView(
            uid=self.uid,
            filename=self.pdf_filename,
            source_filename=self.source_filename,
            fields=self.fields,
            pdf_url=document_url(self.pdf_filename),
            published_at=self.published_at,
        )


class PendingView(BaseModel):
    """Public projection of a PendingItem, never carrying raw bytes."""

    model_config = ConfigDict(populate_by_name=True)

    uid: int
    filename: str
    source_filename: str = Field(serialization_alias="sourceFilename")
    fields: DocumentFields
    pdf_url: str = Field(serialization_alias="pdfUrl")
    published_at: datetime = Field(serialization_alias="publishedAt")


class StatusResponse(BaseModel):
    """Body of ``GET /status``."""

    ready: bool
    pdf_url: str | None = Field(default=None, serialization_alias="pdfUrl")


class ConfirmResponse(BaseModel):
    """Body of ``POST /confirm``."""

    success: bool
    error: str | None = None


def document_url(pdf_filename: str) -> str:
    return f"/document/{quote(pdf_filename)}"
