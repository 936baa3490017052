"""The mail transport capability the receivers are written against.

A transport client performs the actual protocol I/O. Receivers only see opaque
message handles (hashable, stable for the lifetime of a connection) and ask
the transport for the envelope, content type, content and flags of each one.
"""

from __future__ import annotations

from collections.abc import Hashable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

SEEN = "\\Seen"
RECENT = "\\Recent"

MessageHandle = Hashable


@dataclass(frozen=True)
class Envelope:
    """Header-level metadata of a top-level message."""

    sender: tuple[str, ...] = field(default_factory=tuple)
    to: tuple[str, ...] = field(default_factory=tuple)
    cc: tuple[str, ...] = field(default_factory=tuple)
    reply_to: tuple[str, ...] = field(default_factory=tuple)
    subject: str | None = None
    sent: datetime | None = None
    folder: str | None = None


@dataclass(frozen=True)
class MessagePart:
    """One part of a multipart message body."""

    content_type: str | None
    content: Any


class MessageListener(Protocol):
    """Receives batches of handles pushed by a transport."""

    def messages_added(self, handles: Sequence[MessageHandle]) -> None: ...

    def messages_removed(self, handles: Sequence[MessageHandle]) -> None: ...


@runtime_checkable
class MailTransportClient(Protocol):
    """Pull-only transport (POP3-like)."""

    @property
    def folder_name(self) -> str: ...

    def connect(self) -> None:
        """Connect and open the folder, read-write first then read-only."""
        ...

    def close(self) -> None:
        """Close the folder without expunging and close the connection."""
        ...

    def list_messages(self) -> Sequence[MessageHandle]: ...

    def get_envelope(self, handle: MessageHandle) -> Envelope | None:
        """Return the envelope, or None when the handle is not a top-level message."""
        ...

    def get_content_type(self, handle: MessageHandle) -> str | None: ...

    def get_content(self, handle: MessageHandle) -> Any:
        """Text for text/*, a sequence of MessagePart for multipart/*."""
        ...

    def get_flags(self, handle: MessageHandle) -> frozenset[str]: ...


@runtime_checkable
class PushCapableTransportClient(MailTransportClient, Protocol):
    """Transport that notifies listeners of added and removed messages (IMAP-like)."""

    def add_listener(self, listener: MessageListener) -> None: ...

    def remove_listener(self, listener: MessageListener) -> None: ...

    def message_count(self) -> int:
        """Probe the server; may notify listeners as a side effect."""
        ...
