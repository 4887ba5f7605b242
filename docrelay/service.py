"""DocRelayService: builds the components and owns their lifecycle."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Protocol

import structlog

from .config import Settings
from .connection import ConnectionManager, SessionFactory
from .conversion import CloudConvertClient
from .fanout import NotificationHub
from .imap_client import AsyncImapClient
from .ledger import ProcessedLedger
from .mailer import SmtpMailer
from .models import SessionState
from .pending import PendingItemStore
from .pipeline import ConversionPipeline
from .resolver import AttachmentResolver
from .scanner import MessageScanner

logger = structlog.get_logger()


class ConversionService(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def convert_file(self, path: Path) -> bytes: ...


class DocRelayService:
    """Composition root for one monitored mailbox.

    All mutable state (ledger, pending slot, subscribers, session) lives
    in components constructed here and torn down by :meth:`stop`.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        converter: ConversionService | None = None,
        mailer: SmtpMailer | None = None,
        session_factory: SessionFactory = AsyncImapClient,
    ) -> None:
        self.settings = settings
        self.start_time = time.monotonic()

        self.hub = NotificationHub(settings.event_queue_size)
        self.ledger = ProcessedLedger()
        self.converter = converter or CloudConvertClient(settings.conversion, settings.retry)
        self.mailer = mailer or SmtpMailer(settings.smtp, settings.retry)
        self.store = PendingItemStore(
            self.hub,
            self.mailer,
            self._flag_seen,
            reply_to=settings.reply_recipient,
            reply_subject=settings.reply_subject,
            reply_body=settings.reply_body,
        )
        self.pipeline = ConversionPipeline(
            self.converter,
            self.store,
            self.ledger,
            temp_dir=settings.temp_dir,
        )
        self.scanner = MessageScanner(
            AttachmentResolver(settings.document_extensions),
            self.pipeline,
            self.ledger,
            target_sender=settings.target_sender,
            policy=settings.search_policy,
        )
        self.connection = ConnectionManager(
            settings.imap,
            self.scanner,
            scan_interval=settings.scan_interval_seconds,
            reconnect_delay=settings.reconnect_delay_seconds,
            session_factory=session_factory,
        )

    async def _flag_seen(self, uid: int) -> bool:
        return await self.connection.flag_seen(uid)

    @property
    def is_ready(self) -> bool:
        return self.connection.state is SessionState.READY

    async def start(self) -> None:
        self.start_time = time.monotonic()
        await self.converter.start()
        self.connection.connect()
        logger.info(
            "monitoring_started",
            sender=self.settings.target_sender,
            mailbox=self.settings.imap.mailbox,
            policy=self.settings.search_policy,
            interval=self.settings.scan_interval_seconds,
        )

    async def stop(self) -> None:
        await self.connection.stop()
        self.hub.close_all()
        await self.converter.stop()
        logger.info("monitoring_shutdown_complete")

    def health(self) -> dict[str, object]:
        pending = self.store.peek()
        return {
            "service": "docrelay",
            "uptime_seconds": time.monotonic() - self.start_time,
            **self.connection.health(),
            "watermark": self.ledger.watermark,
            "processed_messages": len(self.ledger),
            "pending_retries": sorted(self.ledger.pending_retries),
            "scans_completed": self.scanner.scans_completed,
            "pipeline_failures": self.pipeline.failures,
            "pending_uid": pending.uid if pending else None,
            "confirmed": self.store.confirmed_count,
            "subscribers": self.hub.subscriber_count,
        }
