"""docrelay configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Required connection settings have no default: a missing value raises a
``ValidationError`` when settings load, which prevents startup.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class ImapConfig(BaseSettings):
    """IMAP server connection settings."""

    model_config = SettingsConfigDict(env_prefix="IMAP_")

    host: str = Field(description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    username: str = Field(description="IMAP login username")
    password: SecretStr = Field(description="IMAP login password")
    mailbox: str = Field(default="INBOX", description="IMAP mailbox/folder to watch")
    timeout_seconds: float = Field(
        default=30.0,
        description="Socket timeout for every IMAP command",
    )


class ConversionConfig(BaseSettings):
    """CloudConvert API settings for the document-to-PDF step."""

    model_config = SettingsConfigDict(env_prefix="CLOUDCONVERT_")

    api_key: SecretStr = Field(default=SecretStr(""), description="CloudConvert API key")
    base_url: str = Field(
        default="https://api.cloudconvert.com/v2",
        description="CloudConvert REST API base URL",
    )
    sync_base_url: str = Field(
        default="https://sync.api.cloudconvert.com/v2",
        description="CloudConvert synchronous API base URL (used to wait for jobs)",
    )
    engine: str = Field(default="libreoffice", description="Conversion engine")
    timeout_seconds: float = Field(default=60.0, description="Per-request HTTP timeout")
    job_timeout_seconds: float = Field(
        default=300.0,
        description="Upper bound for waiting on a conversion job",
    )


class SmtpConfig(BaseSettings):
    """Outbound SMTP settings for the confirmation reply."""

    model_config = SettingsConfigDict(env_prefix="SMTP_")

    host: str = Field(default="localhost", description="SMTP server hostname")
    port: int = Field(default=587, description="SMTP server port")
    username: str | None = Field(default=None, description="SMTP login username")
    password: SecretStr | None = Field(default=None, description="SMTP login password")
    use_tls: bool = Field(default=True, description="Upgrade the connection with STARTTLS")
    use_ssl: bool = Field(default=False, description="Connect with implicit TLS (SMTPS)")
    from_address: str | None = Field(
        default=None,
        description="Sender address; defaults to the SMTP username",
    )
    timeout_seconds: float = Field(default=30.0, description="SMTP socket timeout")


class RetryConfig(BaseSettings):
    """Retry / backoff settings driven by Tenacity."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(default=3, description="Maximum attempts per outbound call")
    initial_wait_seconds: float = Field(default=1.0, description="Initial backoff wait in seconds")
    max_wait_seconds: float = Field(default=30.0, description="Maximum backoff wait in seconds")
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class Settings(BaseSettings):
    """Top-level settings for the relay service.

    All env vars are prefixed with ``DOCRELAY_``; nested configs use
    their own prefixes (``IMAP_``, ``CLOUDCONVERT_``, ``SMTP_``, ``RETRY_``).
    """

    model_config = SettingsConfigDict(env_prefix="DOCRELAY_")

    # --- Mailbox monitoring ----------------------------------------------
    target_sender: str = Field(description="Only messages from this address are processed")
    scan_interval_seconds: float = Field(default=60.0, gt=0, description="Seconds between scans")
    reconnect_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Fixed delay before reconnecting after a session error",
    )
    search_policy: Literal["watermark", "unseen"] = Field(
        default="watermark",
        description="Search by UID watermark or by UNSEEN flag (never mixed)",
    )
    document_extensions: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [".doc", ".docx", ".odt", ".rtf"],
        description="Attachment extensions treated as office documents",
    )
    temp_dir: str | None = Field(
        default=None,
        description="Directory for temporary document files (system default if unset)",
    )

    # --- Confirmation reply ----------------------------------------------
    reply_to: str | None = Field(
        default=None,
        description="Recipient of the confirmation reply; defaults to target_sender",
    )
    reply_subject: str = Field(
        default="Confirmed: {filename}",
        description="Reply subject template ({filename}, {uid} available)",
    )
    reply_body: str = Field(
        default="The attached document has been reviewed and confirmed.",
        description="Plain-text reply body",
    )

    # --- Server -------------------------------------------------------------
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=5000, description="Bind port")
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Origins allowed to call the HTTP API",
    )
    event_queue_size: int = Field(
        default=16,
        gt=0,
        description="Per-subscriber event buffer; a full buffer drops the subscriber",
    )
    sse_keepalive_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Idle seconds before an SSE keepalive comment is sent",
    )
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(
        default=True,
        description="Use JSON log output (True for prod, False for dev)",
    )

    imap: ImapConfig = Field(default_factory=ImapConfig)
    conversion: ConversionConfig = Field(default_factory=ConversionConfig)
    smtp: SmtpConfig = Field(default_factory=SmtpConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("document_extensions", "cors_origins", mode="before")
    @classmethod
    def _split_csv(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("document_extensions")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in value]

    @field_validator("reply_subject")
    @classmethod
    def _check_subject_template(cls, value: str) -> str:
        try:
            value.format(filename="report.docx", uid=1)
        except (KeyError, IndexError, AttributeError, ValueError) as exc:
            raise ValueError(f"reply_subject may only use {{filename}} and {{uid}}: {exc!r}") from exc
        return value

    @property
    def reply_recipient(self) -> str:
        return self.reply_to or self.target_sender
