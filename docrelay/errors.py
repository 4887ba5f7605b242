"""Exception taxonomy for the relay.

Each error carries the context needed to diagnose a failure from the
logs alone (UID, filename, stage) without reproducing it.
"""

from __future__ import annotations


class DocRelayError(Exception):
    """Base class for all docrelay errors."""


class MailboxConnectionError(DocRelayError):
    """The IMAP session is unusable. Transient: triggers a reconnect."""


class SearchError(DocRelayError):
    """The mailbox search failed. Aborts the current scan only."""


class FetchError(DocRelayError):
    """A structure or body-part fetch failed for one message."""

    def __init__(self, message: str, *, uid: int, part_id: str | None = None) -> None:
        super().__init__(message)
        self.uid = uid
        self.part_id = part_id


class ConversionError(DocRelayError):
    """The conversion service rejected the document or could not be reached."""


class ExtractionError(DocRelayError):
    """Document text could not be read or parsed into fields."""


class ReplySendError(DocRelayError):
    """The confirmation reply could not be delivered."""


class FlagError(DocRelayError):
    """Setting a flag on the mail store failed.  Always best-effort."""
