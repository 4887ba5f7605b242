"""Conversion & extraction pipeline for a single attachment."""

from __future__ import annotations

import asyncio
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

import structlog

from .errors import ConversionError, ExtractionError, FlagError, MailboxConnectionError
from .extraction import document_text, extract_fields
from .ledger import ProcessedLedger
from .models import AttachmentCandidate, PendingItem
from .pending import PendingItemStore

logger = structlog.get_logger()


class Converter(Protocol):
    async def convert_file(self, path: Path) -> bytes: ...


class SeenFlagTarget(Protocol):
    async def flag_seen(self, uid: int) -> None: ...


class ConversionPipeline:
    """save temp → convert to PDF → extract fields → clean up temp.

    On success the UID is recorded processed, the item is published and
    the source message is flagged seen (best-effort).  On failure the
    UID is left unprocessed so a later scan retries it.
    """

    def __init__(
        self,
        converter: Converter,
        store: PendingItemStore,
        ledger: ProcessedLedger,
        *,
        temp_dir: str | None = None,
    ) -> None:
        self._converter = converter
        self._store = store
        self._ledger = ledger
        self._temp_dir = temp_dir
        self.failures = 0

    async def process(
        self,
        session: SeenFlagTarget,
        candidate: AttachmentCandidate,
    ) -> PendingItem | None:
        log = logger.bind(uid=candidate.uid, filename=candidate.filename)
        temp_path: Path | None = None
        stage = "write"
        try:
            temp_path = await asyncio.to_thread(self._write_temp, candidate)
            log.debug("temp_file_written", path=str(temp_path))

            stage = "convert"
            pdf_bytes = await self._converter.convert_file(temp_path)
            if not pdf_bytes:
                raise ConversionError("Conversion returned an empty document")

            stage = "extract"
            fields = extract_fields(document_text(candidate.filename, candidate.content))
        except (OSError, ConversionError, ExtractionError) as exc:
            self.failures += 1
            self._ledger.mark_failed(candidate.uid)
            log.error("pipeline_failed", stage=stage, error=str(exc))
            return None
        finally:
            if temp_path is not None:
                await asyncio.to_thread(_remove_temp, temp_path)

        item = PendingItem(
            uid=candidate.uid,
            source_filename=candidate.filename,
            fields=fields,
            pdf_filename=pdf_filename_for(candidate.filename),
            pdf_bytes=pdf_bytes,
        )
        self._ledger.mark_processed(candidate.uid)
        await self._store.publish(item)

        try:
            await session.flag_seen(candidate.uid)
        except (FlagError, MailboxConnectionError) as exc:
            log.warning("flag_seen_failed", stage="flag_seen", error=str(exc))
        else:
            log.info("message_marked_seen")
        return item

    def _write_temp(self, candidate: AttachmentCandidate) -> Path:
        suffix = Path(candidate.filename).suffix.lower()
        fd, name = tempfile.mkstemp(
            prefix=f"docrelay-{candidate.uid}-",
            suffix=_sanitize_filename(suffix),
            dir=self._temp_dir,
        )
        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(candidate.content)
        except OSError:
            _remove_temp(path)
            raise
        return path


def _remove_temp(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("temp_file_cleanup_failed", path=str(path), error=str(exc))
    else:
        logger.debug("temp_file_deleted", path=str(path))


def pdf_filename_for(filename: str) -> str:
    """PDF name derived from the attachment name (``report.docx`` → ``report.pdf``)."""
    stem = Path(filename).stem or "document"
    return f"{_sanitize_filename(stem)}.pdf"


def _sanitize_filename(name: str) -> str:
    """Remove characters unsafe for paths and URLs."""
    return re.sub(r"[^\w.\-]", "_", name)
