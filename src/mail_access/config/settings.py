"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from enum import Enum
from typing import TypeVar

from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mail_access.core.exceptions import ConfigurationError
from mail_access.events.publisher import RECEIVE_TOPIC, SENT_TOPIC

DEFAULT_FOLDER = "inbox"
DEFAULT_POLLING_INTERVAL_MS = 60_000


class ConnectionMode(str, Enum):
    """How the SMTP sender secures and authenticates its connection."""

    NO_AUTH = "NO_AUTH"
    TLS = "TLS"
    SSL = "SSL"


class ReceiverSettings(BaseSettings):
    """Settings shared by the IMAP and POP3 receivers."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str
    port: int | None = None
    username: str
    password: str
    use_ssl: bool = False
    folder: str = DEFAULT_FOLDER
    polling_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS
    debug: bool = False
    receive_topic: str = RECEIVE_TOPIC

    # Logging
    log_level: str = "INFO"

    @property
    def polling_interval_seconds(self) -> float:
        return self.polling_interval_ms / 1000

    @model_validator(mode="after")
    def _check_values(self) -> ReceiverSettings:
        if self.polling_interval_ms <= 0:
            raise ValueError("polling_interval_ms must be positive")
        if not self.folder:
            raise ValueError("folder must not be empty")
        return self


class ImapReceiverSettings(ReceiverSettings):
    """IMAP receiver settings, read from ``IMAP_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="IMAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class Pop3ReceiverSettings(ReceiverSettings):
    """POP3 receiver settings, read from ``POP3_*`` variables.

    POP3 is always spoken over SSL unless use_ssl is explicitly disabled.
    """

    model_config = SettingsConfigDict(
        env_prefix="POP3_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    use_ssl: bool = True


class SmtpSenderSettings(BaseSettings):
    """SMTP sender settings, read from ``SMTP_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str
    port: int
    from_address: str
    connection: ConnectionMode
    username: str | None = None
    password: str | None = None
    quit_wait: bool = False
    use_smtps: bool = False
    debug: bool = False
    sent_topic: str = SENT_TOPIC

    # Logging
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_credentials(self) -> SmtpSenderSettings:
        if self.connection is not ConnectionMode.NO_AUTH and not (self.username and self.password):
            raise ValueError(f"{self.connection.value} connections need a username and a password")
        return self


SettingsT = TypeVar("SettingsT", bound=BaseSettings)


def load_settings(settings_cls: type[SettingsT], **overrides: object) -> SettingsT:
    """Instantiate settings, reporting missing or invalid values as ConfigurationError."""
    try:
        return settings_cls(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {settings_cls.__name__}: {e}") from e
