"""Shared fixtures for Mail Access tests."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import pytest

from mail_access.core.exceptions import TransportError
from mail_access.core.transport import SEEN, Envelope, MessageHandle, MessageListener

FOLDER = "INBOX"


class FakeTransport:
    """In-memory push-capable transport.

    Messages added with put() are visible to list_messages() at once. Messages
    added with deliver() or dropped with expunge() are reported to listeners
    by the next message_count(), like an IMAP server answering NOOP.
    """

    def __init__(self, folder: str = FOLDER) -> None:
        self._folder = folder
        self._lock = threading.Lock()
        self._messages: dict[MessageHandle, dict[str, Any]] = {}
        self._listeners: list[MessageListener] = []
        self._pending_added: list[MessageHandle] = []
        self._pending_removed: list[MessageHandle] = []
        self.connected = False
        self.connect_calls = 0
        self.close_calls = 0
        self.list_error: Exception | None = None
        self.close_error: Exception | None = None
        self.flag_errors: set[MessageHandle] = set()

    @property
    def folder_name(self) -> str:
        return self._folder

    # ---------- test helpers ----------

    def put(
        self,
        handle: MessageHandle,
        *,
        subject: str | None = "Hi",
        sent: datetime | None = datetime(2024, 1, 15, 10, 30, tzinfo=UTC),
        sender: str = "alice@example.com",
        to: tuple[str, ...] = ("bob@example.com",),
        cc: tuple[str, ...] = (),
        content_type: str | None = 'text/plain; charset="utf-8"',
        content: Any = "Hello",
        flags: frozenset[str] = frozenset(),
        top_level: bool = True,
    ) -> None:
        envelope = (
            Envelope(
                sender=(sender,),
                to=to,
                cc=cc,
                subject=subject,
                sent=sent,
                folder=self._folder,
            )
            if top_level
            else None
        )
        with self._lock:
            self._messages[handle] = {
                "envelope": envelope,
                "content_type": content_type,
                "content": content,
                "flags": flags,
            }

    def deliver(self, handle: MessageHandle, **kwargs: Any) -> None:
        self.put(handle, **kwargs)
        with self._lock:
            self._pending_added.append(handle)

    def expunge(self, handle: MessageHandle) -> None:
        with self._lock:
            self._messages.pop(handle, None)
            self._pending_removed.append(handle)

    def mark_seen(self, handle: MessageHandle) -> None:
        with self._lock:
            self._messages[handle]["flags"] = self._messages[handle]["flags"] | {SEEN}

    @property
    def listeners(self) -> list[MessageListener]:
        return list(self._listeners)

    # ---------- transport capability ----------

    def connect(self) -> None:
        self.connect_calls += 1
        self.connected = True

    def close(self) -> None:
        self.close_calls += 1
        self.connected = False
        if self.close_error is not None:
            raise self.close_error

    def list_messages(self) -> list[MessageHandle]:
        if self.list_error is not None:
            raise self.list_error
        with self._lock:
            return list(self._messages)

    def get_envelope(self, handle: MessageHandle) -> Envelope | None:
        return self._entry(handle)["envelope"]

    def get_content_type(self, handle: MessageHandle) -> str | None:
        return self._entry(handle)["content_type"]

    def get_content(self, handle: MessageHandle) -> Any:
        return self._entry(handle)["content"]

    def get_flags(self, handle: MessageHandle) -> frozenset[str]:
        if handle in self.flag_errors:
            raise TransportError(f"flags of {handle} unavailable")
        return self._entry(handle)["flags"]

    def add_listener(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def message_count(self) -> int:
        with self._lock:
            added, self._pending_added = self._pending_added, []
            removed, self._pending_removed = self._pending_removed, []
            count = len(self._messages)
            listeners = list(self._listeners)
        for listener in listeners:
            if removed:
                listener.messages_removed(removed)
            if added:
                listener.messages_added(added)
        return count

    def _entry(self, handle: MessageHandle) -> dict[str, Any]:
        with self._lock:
            try:
                return self._messages[handle]
            except KeyError:
                raise TransportError(f"no message {handle}") from None


class RecordingSink:
    """Event sink remembering every published event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def publish(self, topic: str, properties: dict[str, Any]) -> None:
        with self._lock:
            self.events.append((topic, dict(properties)))

    def topics(self) -> list[str]:
        return [topic for topic, _ in self.events]


def ids_of(mails: Sequence[Any]) -> list[str | None]:
    return [mail.id for mail in mails]


@pytest.fixture
def transport() -> FakeTransport:
    """An empty in-memory push-capable transport."""
    return FakeTransport()


@pytest.fixture
def sink() -> RecordingSink:
    """A sink recording published events."""
    return RecordingSink()
