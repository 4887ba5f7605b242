"""docrelay: watch a mailbox for office documents, convert them to PDF and
hold each one for operator confirmation.

Public API re-exported here for convenience::

    from docrelay import DocRelayService, Settings, create_app
"""

from .app import create_app
from .config import ConversionConfig, ImapConfig, RetryConfig, Settings, SmtpConfig
from .errors import (
    ConversionError,
    DocRelayError,
    ExtractionError,
    FetchError,
    FlagError,
    MailboxConnectionError,
    ReplySendError,
    SearchError,
)
from .logging import setup_logging
from .models import PendingItem, PendingView, SessionState
from .retry import with_retry
from .service import DocRelayService

__all__ = [
    "ConversionConfig",
    "ConversionError",
    "DocRelayError",
    "DocRelayService",
    "ExtractionError",
    "FetchError",
    "FlagError",
    "ImapConfig",
    "MailboxConnectionError",
    "PendingItem",
    "PendingView",
    "ReplySendError",
    "RetryConfig",
    "SearchError",
    "SessionState",
    "Settings",
    "SmtpConfig",
    "create_app",
    "setup_logging",
    "with_retry",
]
