"""Receivers: incremental fetch, dedup cache, queries and lifecycle.

MailReceiver holds everything IMAP and POP3 share: the fetch engine, the
cache and the queries. The subclasses only differ in how they connect and
what the polling loop does each cycle:

- Pop3MailReceiver opens a session per cycle and re-fetches.
- ImapMailReceiver keeps its connection open, listens for pushed
  added/removed notifications and polls only to make the server report them.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from datetime import datetime
from enum import Enum

from mail_access.config.settings import ImapReceiverSettings, Pop3ReceiverSettings
from mail_access.core.cache import MailCache, sort_by_sent_desc
from mail_access.core.converter import MailConverter
from mail_access.core.exceptions import ConversionError, MailAccessError, TransportError
from mail_access.core.models import Mail
from mail_access.core.transport import (
    RECENT,
    MailTransportClient,
    MessageHandle,
    PushCapableTransportClient,
)
from mail_access.events.publisher import EventPublisher, EventSink
from mail_access.pipeline.scheduler import PollingLoop

logger = logging.getLogger(__name__)


class ReceiverState(str, Enum):
    CREATED = "created"
    CONNECTING = "connecting"
    OPEN = "open"
    POLLING = "polling"
    HANDLING_PUSH = "handling_push"
    CLOSED = "closed"


class MailReceiver:
    """Keeps an in-memory view of one mailbox folder up to date.

    Two locks are involved:
    - the cache lock (inside MailCache), held only for in-memory reads and
      writes, so queries never wait on network I/O;
    - the ingest lock, serializing fetch cycles and push notifications so the
      two producers never interleave.
    """

    def __init__(
        self,
        transport: MailTransportClient,
        *,
        publisher: EventPublisher | None = None,
        polling_interval_seconds: float = 60.0,
        converter: MailConverter | None = None,
        name: str | None = None,
    ) -> None:
        self._transport = transport
        self._publisher = publisher or EventPublisher()
        self._converter = converter or MailConverter()
        self._polling_interval = polling_interval_seconds
        self._name = name or f"{type(self).__name__}[{transport.folder_name}]"

        self._cache = MailCache()
        self._ingest_lock = threading.RLock()
        self._state = ReceiverState.CREATED
        self._loop: PollingLoop | None = None
        self._populated = False
        self._last_error: Exception | None = None

    # ---------- lifecycle ----------

    @property
    def state(self) -> ReceiverState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state in (ReceiverState.POLLING, ReceiverState.HANDLING_PUSH)

    @property
    def folder_name(self) -> str:
        return self._transport.folder_name

    @property
    def cache(self) -> MailCache:
        return self._cache

    def start(self) -> None:
        """Connect, run one synchronous fetch, then start polling.

        Raises:
            TransportError: If the mailbox cannot be opened or listed.
            ConfigurationError: If the folder cannot be resolved.
        """
        if self.is_running:
            logger.warning("%s already running", self._name)
            return

        self._state = ReceiverState.CONNECTING
        try:
            self._open()
            self._state = ReceiverState.OPEN
            self.fetch()
        except Exception:
            self._state = ReceiverState.CLOSED
            self._close_quietly()
            raise

        self._loop = PollingLoop(self._name, self._polling_interval, self._poll)
        self._loop.start()
        self._state = ReceiverState.POLLING
        logger.info("%s started with %d mail(s)", self._name, len(self._cache))

    def stop(self) -> None:
        """Stop polling and close the connection.

        The receiver is closed afterwards even when closing the connection fails.

        Raises:
            TransportError: If the connection could not be closed cleanly.
        """
        if self._loop is not None:
            self._loop.stop(timeout=0)
            self._loop = None
        self._state = ReceiverState.CLOSED
        try:
            self._close()
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"Failed to close {self._name}: {e}") from e
        finally:
            logger.info("%s stopped", self._name)

    def __enter__(self) -> MailReceiver:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

    def _open(self) -> None:
        """Open the transport before the first fetch."""

    def _close(self) -> None:
        self._transport.close()

    def _poll(self) -> None:
        """One polling cycle."""
        self.fetch()

    def _close_quietly(self) -> None:
        try:
            self._close()
        except Exception as e:
            logger.debug("Error during close: %s", e)

    # ---------- fetch engine ----------

    def fetch(self) -> int:
        """List the folder and ingest every message not seen before.

        Returns:
            Number of newly cached mails.

        Raises:
            TransportError: If the folder cannot be listed.
        """
        with self._ingest_lock:
            try:
                handles = self._transport.list_messages()
            except Exception as e:
                self._last_error = e
                if isinstance(e, MailAccessError):
                    raise
                raise TransportError(f"Failed to list messages of {self.folder_name}: {e}") from e

            self._populated = True
            self._last_error = None
            added = self._ingest(handles)

        logger.info(
            "Fetched %s: %d message(s) listed, %d new, %d cached",
            self.folder_name, len(handles), added, len(self._cache),
        )
        return added

    def _ingest(self, handles: Sequence[MessageHandle]) -> int:
        """Convert and cache the unknown handles, publishing one event per new mail."""
        added = 0
        for handle in self._cache.unknown(handles):
            try:
                mail = self._converter.convert(self._transport, handle)
            except ConversionError as e:
                logger.error("Skipping message %r of %s: %s", handle, self.folder_name, e)
                continue

            if self._cache.insert(handle, mail):
                added += 1
                logger.debug("Cached %s", mail.id)
                self._publisher.mail_received(mail, self.folder_name)
        return added

    # ---------- queries ----------

    def get_all_messages(self) -> list[Mail]:
        """All cached mails, newest first."""
        self._check_available()
        return self._cache.all()

    def get_unread_messages(self) -> list[Mail]:
        """Mails without the seen flag, newest first."""
        self._check_available()
        return self._cache.unread()

    def get_messages(self, from_date: datetime, to_date: datetime) -> list[Mail]:
        """Mails sent strictly between the two dates, newest first."""
        self._check_available()
        return self._cache.between(from_date, to_date)

    def get_recent_messages(self) -> list[Mail]:
        """Mails whose message does not carry the transport's recent flag.

        The selection is the inverse of the flag on purpose. A message whose
        flags cannot be read is left out.
        """
        self._check_available()
        selected: list[Mail] = []
        for handle, mail in self._cache.items():
            try:
                if RECENT not in self._transport.get_flags(handle):
                    selected.append(mail)
            except Exception as e:
                logger.error("Cannot check the recent flag of %s, ignoring it: %s", mail.id, e)
        return sort_by_sent_desc(selected)

    def get_message_by_id(self, mail_id: str) -> Mail | None:
        """The mail with the given id, or None."""
        self._check_available()
        return self._cache.by_id(mail_id)

    def _check_available(self) -> None:
        if not self._populated and self._last_error is not None:
            raise TransportError(
                f"Mailbox {self.folder_name} is unavailable: {self._last_error}"
            ) from self._last_error


class Pop3MailReceiver(MailReceiver):
    """Pull-only receiver: every cycle opens a session, fetches and closes it."""

    @classmethod
    def from_settings(
        cls,
        settings: Pop3ReceiverSettings,
        sink: EventSink | None = None,
    ) -> Pop3MailReceiver:
        from mail_access.transport.pop3 import Pop3TransportClient

        transport = Pop3TransportClient(
            host=settings.host,
            port=settings.port,
            username=settings.username,
            password=settings.password,
            folder=settings.folder,
            use_ssl=settings.use_ssl,
            debug=settings.debug,
        )
        publisher = EventPublisher(sink, receive_topic=settings.receive_topic)
        return cls(
            transport,
            publisher=publisher,
            polling_interval_seconds=settings.polling_interval_seconds,
        )

    def fetch(self) -> int:
        with self._ingest_lock:
            try:
                self._transport.connect()
            except Exception as e:
                self._last_error = e
                if isinstance(e, MailAccessError):
                    raise
                raise TransportError(f"Failed to open {self.folder_name}: {e}") from e
            try:
                return super().fetch()
            finally:
                self._close_quietly()


class ImapMailReceiver(MailReceiver):
    """Push-capable receiver.

    The connection stays open and the transport reports added and removed
    messages. Servers do not reliably push, so the polling loop probes the
    message count, which makes the transport check and notify.
    """

    _transport: PushCapableTransportClient

    def __init__(self, transport: PushCapableTransportClient, **kwargs: object) -> None:
        super().__init__(transport, **kwargs)  # type: ignore[arg-type]

    @classmethod
    def from_settings(
        cls,
        settings: ImapReceiverSettings,
        sink: EventSink | None = None,
    ) -> ImapMailReceiver:
        from mail_access.transport.imap import ImapTransportClient

        transport = ImapTransportClient(
            host=settings.host,
            port=settings.port,
            username=settings.username,
            password=settings.password,
            folder=settings.folder,
            use_ssl=settings.use_ssl,
            debug=settings.debug,
        )
        publisher = EventPublisher(sink, receive_topic=settings.receive_topic)
        return cls(
            transport,
            publisher=publisher,
            polling_interval_seconds=settings.polling_interval_seconds,
        )

    def _open(self) -> None:
        try:
            self._transport.connect()
        except MailAccessError:
            raise
        except Exception as e:
            raise TransportError(f"Failed to open {self.folder_name}: {e}") from e
        self._transport.add_listener(self)

    def _close(self) -> None:
        self._transport.remove_listener(self)
        super()._close()

    def _poll(self) -> None:
        count = self._transport.message_count()
        logger.debug("%s holds %d message(s)", self.folder_name, count)

    # ---------- push notifications ----------

    def messages_added(self, handles: Sequence[MessageHandle]) -> None:
        with self._ingest_lock:
            previous = self._enter_push()
            try:
                added = self._ingest(handles)
            finally:
                self._leave_push(previous)
        logger.info("%d message(s) pushed to %s, %d new", len(handles), self.folder_name, added)

    def messages_removed(self, handles: Sequence[MessageHandle]) -> None:
        with self._ingest_lock:
            previous = self._enter_push()
            try:
                removed = sum(1 for handle in handles if self._cache.remove(handle) is not None)
            finally:
                self._leave_push(previous)
        logger.info("%d message(s) removed from %s", removed, self.folder_name)

    def _enter_push(self) -> ReceiverState:
        previous = self._state
        if previous is ReceiverState.POLLING:
            self._state = ReceiverState.HANDLING_PUSH
        return previous

    def _leave_push(self, previous: ReceiverState) -> None:
        # stop() may have closed the receiver meanwhile.
        if self._state is ReceiverState.HANDLING_PUSH:
            self._state = previous
