"""Message scanner: find new messages from the target sender and process them."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal, Protocol

import structlog

from .errors import FetchError, SearchError
from .ledger import ProcessedLedger
from .models import MessagePart, MessageSummary
from .pipeline import ConversionPipeline
from .resolver import AttachmentResolver

logger = structlog.get_logger()

MessageOutcome = Literal["processed", "no_documents", "failed"]


class MailboxSession(Protocol):
    async def search(self, *criteria: str) -> list[int]: ...

    async def fetch_structure(self, uid: int) -> MessagePart: ...

    async def fetch_part(self, uid: int, part_id: str) -> bytes: ...

    async def flag_seen(self, uid: int) -> None: ...


@dataclass
class ScanReport:
    """What one scan did."""

    found: list[int] = field(default_factory=list)
    processed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    busy: bool = False
    aborted: bool = False


class MessageScanner:
    """Searches the mailbox and drives each new message through the pipeline.

    Two search policies exist and one is used for the whole run:

    * ``watermark``: ``UID <floor+1>:* FROM <sender>``
    * ``unseen``: ``UNSEEN FROM <sender>``

    Scans never overlap: a request made while a scan is running is
    dropped and reported as ``busy``.
    """

    def __init__(
        self,
        resolver: AttachmentResolver,
        pipeline: ConversionPipeline,
        ledger: ProcessedLedger,
        *,
        target_sender: str,
        policy: Literal["watermark", "unseen"] = "watermark",
    ) -> None:
        self._resolver = resolver
        self._pipeline = pipeline
        self._ledger = ledger
        self._target_sender = target_sender
        self._policy = policy
        self._lock = asyncio.Lock()
        self.last_scan_at: datetime | None = None
        self.scans_completed = 0

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def criteria(self) -> list[str]:
        sender = _quote(self._target_sender)
        if self._policy == "unseen":
            return ["UNSEEN", "FROM", sender]
        return ["UID", f"{self._ledger.search_floor + 1}:*", "FROM", sender]

    async def scan(self, session: MailboxSession) -> ScanReport:
        """Run one scan unless another is in progress.

        ``MailboxConnectionError`` propagates so the caller can reconnect.
        """
        if self._lock.locked():
            logger.info("scan_skipped_busy")
            return ScanReport(busy=True)
        async with self._lock:
            report = await self._scan(session)
            self.last_scan_at = datetime.now(UTC)
            self.scans_completed += 1
            return report

    async def _scan(self, session: MailboxSession) -> ScanReport:
        report = ScanReport()
        criteria = self.criteria()
        logger.info("scan_started", criteria=" ".join(criteria))
        try:
            uids = await session.search(*criteria)
        except SearchError as exc:
            logger.error("scan_search_failed", stage="search", error=str(exc))
            report.aborted = True
            return report

        if self._policy == "watermark":
            # "n:*" always matches the highest UID, even when it is below n
            floor = self._ledger.search_floor
            uids = [uid for uid in uids if uid > floor]

        report.found = uids
        if not uids:
            logger.info("scan_no_new_messages", sender=self._target_sender)
            return report

        logger.info("scan_found_messages", uids=uids)
        for uid in uids:
            if uid in self._ledger:
                logger.debug("message_already_processed", uid=uid)
                report.skipped.append(uid)
                continue
            outcome = await self.process_message(session, uid)
            if outcome == "processed":
                report.processed.append(uid)
            elif outcome == "failed":
                report.failed.append(uid)
            else:
                report.skipped.append(uid)

        logger.info(
            "scan_finished",
            processed=len(report.processed),
            skipped=len(report.skipped),
            failed=len(report.failed),
            watermark=self._ledger.watermark,
        )
        return report

    async def process_message(self, session: MailboxSession, uid: int) -> MessageOutcome:
        """structure → document attachments → pipeline, for one message."""
        try:
            summary = MessageSummary(uid, await session.fetch_structure(uid))
        except FetchError as exc:
            logger.warning("message_structure_failed", uid=uid, stage="structure", error=str(exc))
            self._ledger.mark_failed(uid)
            return "failed"

        documents = self._resolver.collect(summary.structure)
        if not documents:
            logger.info("message_has_no_documents", uid=uid)
            return "no_documents"

        candidates = await self._resolver.fetch(session, summary.uid, documents)
        for index, candidate in enumerate(candidates):
            item = await self._pipeline.process(session, candidate)
            if item is not None:
                remaining = len(candidates) - index - 1
                if remaining:
                    logger.info("remaining_attachments_skipped", uid=uid, count=remaining)
                return "processed"

        self._ledger.mark_failed(uid)
        return "failed"


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
