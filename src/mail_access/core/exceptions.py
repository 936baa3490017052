"""Custom exceptions for mail access."""


class MailAccessError(Exception):
    """Base exception for all mail access errors."""


class ConfigurationError(MailAccessError):
    """A mandatory setting is missing or the configured folder cannot be resolved."""


class TransportError(MailAccessError, OSError):
    """Failed to connect to, list, read from or close a mail server."""


class ConversionError(MailAccessError):
    """Failed to convert a raw transport message into a Mail."""


class SendError(MailAccessError):
    """Failed to deliver an outbound mail."""


class PublishError(MailAccessError):
    """Failed to hand an event to its sink."""
