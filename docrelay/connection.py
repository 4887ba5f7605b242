"""Mailbox connection manager: session lifecycle, reconnects, scan timer."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from .config import ImapConfig
from .errors import FlagError, MailboxConnectionError
from .imap_client import AsyncImapClient
from .models import SessionState
from .scanner import MessageScanner, ScanReport

logger = structlog.get_logger()

SessionFactory = Callable[[ImapConfig], AsyncImapClient]


class ConnectionManager:
    """Keeps one IMAP session alive and drives the periodic scan.

    ``connect()`` starts a supervisor task.  Each time a session reaches
    ``READY`` an immediate scan runs and the periodic timer is (re)armed.
    A session-level error moves the state to ``ERRORED``; after a fixed
    delay a brand-new session is created.  Retries are unbounded.
    """

    def __init__(
        self,
        config: ImapConfig,
        scanner: MessageScanner,
        *,
        scan_interval: float,
        reconnect_delay: float,
        session_factory: SessionFactory = AsyncImapClient,
    ) -> None:
        self._config = config
        self._scanner = scanner
        self._scan_interval = scan_interval
        self._reconnect_delay = reconnect_delay
        self._session_factory = session_factory

        self._state = SessionState.DISCONNECTED
        self._session: AsyncImapClient | None = None
        self._lost = asyncio.Event()
        self._supervisor: asyncio.Task[None] | None = None
        self._timer: asyncio.Task[None] | None = None
        self._scan_task: asyncio.Task[ScanReport | None] | None = None
        self.reconnects = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def running(self) -> bool:
        return self._supervisor is not None and not self._supervisor.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Start monitoring.  No-op if already running."""
        if self.running:
            return
        self._supervisor = asyncio.create_task(self._supervise(), name="imap-supervisor")

    async def stop(self) -> None:
        """Cancel pending reconnects, the timer and any scan; close the session."""
        tasks = [t for t in (self._supervisor, self._timer, self._scan_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._supervisor = self._timer = self._scan_task = None

        session, self._session = self._session, None
        if session is not None:
            await self._close(session)
        self._state = SessionState.DISCONNECTED
        logger.info("monitoring_stopped")

    async def _supervise(self) -> None:
        while True:
            session = self._session_factory(self._config)
            self._state = SessionState.CONNECTING
            try:
                await session.connect()
            except MailboxConnectionError as exc:
                self._state = SessionState.ERRORED
                logger.error("imap_connect_failed", host=self._config.host, error=str(exc))
            else:
                self._lost = asyncio.Event()
                self._session = session
                self._state = SessionState.READY
                logger.info("imap_session_ready", host=self._config.host)
                self._arm_timer(session)

                await self._lost.wait()

                self._state = SessionState.ERRORED
                self._cancel_timer()
                self._session = None
                await self._close(session)

            self.reconnects += 1
            logger.info("imap_reconnect_scheduled", delay=self._reconnect_delay, attempt=self.reconnects)
            await asyncio.sleep(self._reconnect_delay)

    async def _close(self, session: AsyncImapClient) -> None:
        try:
            await session.disconnect()
        except MailboxConnectionError as exc:
            logger.debug("imap_disconnect_failed", error=str(exc))

    # ------------------------------------------------------------------
    # Scan timer
    # ------------------------------------------------------------------

    def _arm_timer(self, session: AsyncImapClient) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(self._tick(session), name="scan-timer")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _tick(self, session: AsyncImapClient) -> None:
        while True:
            self.request_scan(session)
            await asyncio.sleep(self._scan_interval)

    def request_scan(self, session: AsyncImapClient | None = None) -> asyncio.Task[ScanReport | None] | None:
        """Start a scan in the background; dropped if one is still running."""
        session = session or self._session
        if session is None:
            logger.info("scan_skipped_not_ready", state=self._state.value)
            return None
        if self._scan_task is not None and not self._scan_task.done():
            logger.info("scan_skipped_busy")
            return None
        self._scan_task = asyncio.create_task(self._run_scan(session), name="mailbox-scan")
        return self._scan_task

    async def _run_scan(self, session: AsyncImapClient) -> ScanReport | None:
        try:
            return await self._scanner.scan(session)
        except MailboxConnectionError as exc:
            logger.warning("imap_connection_lost", error=str(exc))
            self._report_lost(session)
            return None
        except Exception:
            logger.exception("scan_failed", state=self._state.value)
            return None

    def _report_lost(self, session: AsyncImapClient) -> None:
        if session is self._session:
            self._lost.set()

    # ------------------------------------------------------------------
    # Store-facing helpers
    # ------------------------------------------------------------------

    async def flag_seen(self, uid: int) -> bool:
        """Best-effort ``\\Seen`` through the current session."""
        session = self._session
        if session is None or self._state is not SessionState.READY:
            logger.warning("flag_seen_no_session", uid=uid, state=self._state.value)
            return False
        try:
            await session.flag_seen(uid)
        except FlagError as exc:
            logger.warning("flag_seen_failed", uid=uid, error=str(exc))
            return False
        except MailboxConnectionError as exc:
            logger.warning("imap_connection_lost", uid=uid, error=str(exc))
            self._report_lost(session)
            return False
        return True

    def health(self) -> dict[str, object]:
        return {
            "imap_state": self._state.value,
            "imap_host": self._config.host,
            "imap_mailbox": self._config.mailbox,
            "reconnects": self.reconnects,
            "scan_in_progress": self._scanner.busy,
            "last_scan_at": (
                self._scanner.last_scan_at.isoformat() if self._scanner.last_scan_at else None
            ),
        }
