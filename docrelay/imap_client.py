"""Async IMAP client wrapping stdlib imaplib with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import imaplib
from collections.abc import Callable
from typing import Any, TypeVar

import structlog

from .bodystructure import BodyStructureError, flatten_fetch_response, parse_fetch_response
from .config import ImapConfig
from .errors import FetchError, FlagError, MailboxConnectionError, SearchError
from .models import MessagePart

logger = structlog.get_logger()

T = TypeVar("T")

_CONNECTION_ERRORS = (imaplib.IMAP4.abort, OSError, EOFError)


class AsyncImapClient:
    """Async-friendly IMAP client bound to one session.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop.  Commands
    are serialized with a lock because an ``imaplib`` connection cannot
    be shared between threads.  A new instance is created for every
    reconnect.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect, login, and select the configured mailbox (read-write)."""
        try:
            await asyncio.to_thread(self._connect_sync)
        except (imaplib.IMAP4.error, *_CONNECTION_ERRORS) as exc:
            self._conn = None
            raise MailboxConnectionError(f"IMAP connect failed: {exc}") from exc
        logger.info(
            "imap_connected",
            host=self._config.host,
            mailbox=self._config.mailbox,
        )

    def _connect_sync(self) -> None:
        if self._config.use_ssl:
            conn = imaplib.IMAP4_SSL(
                self._config.host, self._config.port, timeout=self._config.timeout_seconds
            )
        else:
            conn = imaplib.IMAP4(
                self._config.host, self._config.port, timeout=self._config.timeout_seconds
            )
        conn.login(self._config.username, self._config.password.get_secret_value())
        status, data = conn.select(self._config.mailbox)
        if status != "OK":
            raise imaplib.IMAP4.error(f"SELECT {self._config.mailbox} failed: {data!r}")
        self._conn = conn

    async def disconnect(self) -> None:
        """Close mailbox and logout."""
        if self._conn is not None:
            await asyncio.to_thread(self._disconnect_sync)
            self._conn = None
            logger.info("imap_disconnected")

    def _disconnect_sync(self) -> None:
        assert self._conn is not None
        try:
            self._conn.close()
        except (imaplib.IMAP4.error, *_CONNECTION_ERRORS):
            pass
        try:
            self._conn.logout()
        except (imaplib.IMAP4.error, *_CONNECTION_ERRORS):
            pass

    async def is_connected(self) -> bool:
        """Check connection liveness with a NOOP command."""
        if self._conn is None:
            return False
        try:
            status, _ = await self._call(self._conn.noop)
            return status == "OK"
        except MailboxConnectionError:
            return False
        except imaplib.IMAP4.error:
            return False

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        """Run one blocking imaplib call, mapping dead-socket errors."""
        async with self._lock:
            try:
                return await asyncio.to_thread(fn, *args)
            except _CONNECTION_ERRORS as exc:
                raise MailboxConnectionError(f"IMAP connection lost: {exc}") from exc

    def _require_conn(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise MailboxConnectionError("Not connected")
        return self._conn

    # ------------------------------------------------------------------
    # Message retrieval
    # ------------------------------------------------------------------

    async def search(self, *criteria: str) -> list[int]:
        """Run ``UID SEARCH`` and return the matching UIDs in ascending order."""
        conn = self._require_conn()
        try:
            status, data = await self._call(conn.uid, "SEARCH", None, *criteria)
        except imaplib.IMAP4.error as exc:
            raise SearchError(f"UID SEARCH failed: {exc}") from exc
        if status != "OK":
            raise SearchError(f"UID SEARCH returned {status}: {data!r}")
        if not data or not data[0]:
            return []
        return sorted(int(uid) for uid in data[0].split())

    async def fetch_structure(self, uid: int) -> MessagePart:
        """Fetch the MIME structure of a message without its body."""
        conn = self._require_conn()
        try:
            status, data = await self._call(conn.uid, "FETCH", str(uid), "(UID BODYSTRUCTURE)")
        except imaplib.IMAP4.error as exc:
            raise FetchError(f"BODYSTRUCTURE fetch failed: {exc}", uid=uid) from exc
        if status != "OK" or not data or data[0] is None:
            raise FetchError(f"BODYSTRUCTURE fetch returned {status}", uid=uid)
        try:
            _, structure = parse_fetch_response(data)
        except BodyStructureError as exc:
            raise FetchError(f"Unparseable BODYSTRUCTURE: {exc}", uid=uid) from exc
        return structure

    async def fetch_part(self, uid: int, part_id: str) -> bytes:
        """Fetch the still transfer-encoded bytes of one body part.

        Uses ``BODY.PEEK`` so the fetch does not set ``\\Seen``.
        """
        conn = self._require_conn()
        try:
            status, data = await self._call(conn.uid, "FETCH", str(uid), f"(BODY.PEEK[{part_id}])")
        except imaplib.IMAP4.error as exc:
            raise FetchError(f"Part fetch failed: {exc}", uid=uid, part_id=part_id) from exc
        if status != "OK" or not data:
            raise FetchError(f"Part fetch returned {status}", uid=uid, part_id=part_id)
        for item in data:
            if isinstance(item, tuple) and len(item) > 1 and isinstance(item[1], bytes):
                return item[1]
        raise FetchError(
            f"No body literal in response: {flatten_fetch_response(data)[:80]!r}",
            uid=uid,
            part_id=part_id,
        )

    async def flag_seen(self, uid: int) -> None:
        """Add the ``\\Seen`` flag.  Idempotent on the server side."""
        conn = self._require_conn()
        try:
            status, data = await self._call(conn.uid, "STORE", str(uid), "+FLAGS", r"(\Seen)")
        except imaplib.IMAP4.error as exc:
            raise FlagError(f"STORE \\Seen failed for UID {uid}: {exc}") from exc
        if status != "OK":
            raise FlagError(f"STORE \\Seen for UID {uid} returned {status}: {data!r}")
        logger.debug("imap_flagged_seen", uid=uid)
