"""Single-slot store for the converted document awaiting confirmation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from .errors import ReplySendError
from .fanout import NotificationHub
from .mailer import Attachment, SmtpMailer
from .models import PendingItem

logger = structlog.get_logger()

SeenFlagger = Callable[[int], Awaitable[bool]]


class PendingItemStore:
    """Holds at most one :class:`PendingItem`.

    ``publish`` overwrites (last write wins) and ``confirm`` is the only
    consuming operation.  Both run under one lock, so two concurrent
    confirms cannot both send a reply for the same item.
    """

    def __init__(
        self,
        hub: NotificationHub,
        mailer: SmtpMailer,
        flag_seen: SeenFlagger,
        *,
        reply_to: str,
        reply_subject: str,
        reply_body: str,
    ) -> None:
        self._hub = hub
        self._mailer = mailer
        self._flag_seen = flag_seen
        self._reply_to = reply_to
        self._reply_subject = reply_subject
        self._reply_body = reply_body
        self._lock = asyncio.Lock()
        self._item: PendingItem | None = None
        self._latest: PendingItem | None = None
        self.confirmed_count = 0

    def peek(self) -> PendingItem | None:
        """Current item, or ``None``; never consumes."""
        return self._item

    def latest(self) -> PendingItem | None:
        """Most recently published item, kept after it is confirmed."""
        return self._latest

    async def publish(self, item: PendingItem) -> None:
        async with self._lock:
            previous = self._item
            if previous is not None:
                logger.warning(
                    "pending_item_overwritten",
                    dropped_uid=previous.uid,
                    dropped_filename=previous.source_filename,
                    uid=item.uid,
                )
            self._item = item
            self._latest = item
            logger.info(
                "pending_item_published",
                uid=item.uid,
                filename=item.pdf_filename,
                pdf_size=len(item.pdf_bytes),
            )
            self._hub.notify(item.view())

    async def confirm(self) -> bool:
        """Send the reply for the pending item and clear the slot.

        Returns ``False`` when nothing is pending.  Raises
        :class:`ReplySendError` if the reply could not be sent; the item
        is then kept so the confirmation can be retried.
        """
        async with self._lock:
            item = self._item
            if item is None:
                logger.info("confirm_nothing_pending")
                return False

            subject = self._reply_subject.format(filename=item.source_filename, uid=item.uid)
            try:
                await self._mailer.send(
                    self._reply_to,
                    subject,
                    self._reply_body,
                    Attachment(filename=item.pdf_filename, content=item.pdf_bytes),
                )
            except ReplySendError:
                logger.error("confirm_failed", uid=item.uid, filename=item.pdf_filename, stage="reply")
                raise

            if not await self._flag_seen(item.uid):
                logger.warning("confirm_flag_seen_skipped", uid=item.uid)

            self._item = None
            self.confirmed_count += 1
            logger.info("pending_item_confirmed", uid=item.uid, filename=item.pdf_filename)
            self._hub.broadcast({"type": "cleared", "uid": item.uid})
            return True
