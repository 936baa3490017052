"""IMAP transport client built on imapclient."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from email.message import EmailMessage
from typing import Any

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError, LoginError

from mail_access.core.exceptions import ConfigurationError, TransportError
from mail_access.core.transport import Envelope, MessageListener
from mail_access.transport.mime import content_of, content_type_of, envelope_of, parse_message

logger = logging.getLogger(__name__)

# PEEK leaves \Seen untouched; the server answers under BODY[].
PEEK_BODY = "BODY.PEEK[]"
BODY_KEY = b"BODY[]"


class ImapTransportClient:
    """Push-capable transport over one IMAP connection.

    Handles are message UIDs. Message bodies are downloaded once per connection;
    flags are always read fresh. IMAPClient is not thread-safe, so every
    command is issued under a lock. Listeners are notified outside of it.
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        *,
        port: int | None = None,
        folder: str = "inbox",
        use_ssl: bool = False,
        debug: bool = False,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._folder = folder
        self._use_ssl = use_ssl
        self._debug = debug

        self._client: IMAPClient | None = None
        self._read_only = False
        self._lock = threading.RLock()
        self._messages: dict[int, EmailMessage] = {}
        self._known: list[int] = []
        self._listeners: list[MessageListener] = []

    @property
    def folder_name(self) -> str:
        return self._folder

    @property
    def read_only(self) -> bool:
        return self._read_only

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    # ---------- connection ----------

    def connect(self) -> None:
        """Log in and select the folder, read-write if allowed, else read-only.

        Raises:
            TransportError: If the server cannot be reached or refuses the login.
            ConfigurationError: If the folder does not exist.
        """
        with self._lock:
            if self._client is not None:
                return
            self._trace("connecting to %s:%s", self._host, self._port or "default")
            try:
                client = IMAPClient(self._host, port=self._port, ssl=self._use_ssl)
            except (IMAPClientError, OSError) as e:
                raise TransportError(f"Cannot connect to {self._host}: {e}") from e

            try:
                client.login(self._username, self._password)
                if not client.folder_exists(self._folder):
                    raise ConfigurationError(f"Cannot find folder {self._folder}")
                self._select(client)
            except ConfigurationError:
                self._logout_quietly(client)
                raise
            except LoginError as e:
                self._logout_quietly(client)
                raise TransportError(f"IMAP login failed for {self._username}: {e}") from e
            except (IMAPClientError, OSError) as e:
                self._logout_quietly(client)
                raise TransportError(f"Cannot open folder {self._folder}: {e}") from e

            self._client = client
            logger.info(
                "Connected to %s, folder %s opened %s",
                self._host, self._folder, "read-only" if self._read_only else "read-write",
            )

    def _select(self, client: IMAPClient) -> None:
        try:
            client.select_folder(self._folder, readonly=False)
            self._read_only = False
        except IMAPClientError as e:
            logger.warning("Cannot open %s read-write, falling back to read-only: %s", self._folder, e)
            client.select_folder(self._folder, readonly=True)
            self._read_only = True

    def close(self) -> None:
        """Leave the folder without expunging and log out.

        Raises:
            TransportError: If the server did not acknowledge the logout.
        """
        with self._lock:
            client, self._client = self._client, None
            self._messages.clear()
            self._known = []
        if client is None:
            return

        try:
            # CLOSE would expunge deleted messages, UNSELECT does not.
            if client.has_capability("UNSELECT"):
                client.unselect_folder()
        except (IMAPClientError, OSError) as e:
            logger.debug("Error during unselect: %s", e)

        try:
            client.logout()
        except (IMAPClientError, OSError) as e:
            raise TransportError(f"Error during logout from {self._host}: {e}") from e
        logger.info("Disconnected from %s", self._host)

    # ---------- messages ----------

    def list_messages(self) -> list[int]:
        with self._lock:
            uids = self._search()
            self._known = uids
            return list(uids)

    def get_envelope(self, handle: int) -> Envelope:
        return envelope_of(self._message(handle), self._folder)

    def get_content_type(self, handle: int) -> str:
        return content_type_of(self._message(handle))

    def get_content(self, handle: int) -> Any:
        return content_of(self._message(handle))

    def get_flags(self, handle: int) -> frozenset[str]:
        with self._lock:
            client = self._require_client()
            self._trace("FETCH FLAGS %s", handle)
            try:
                flags = client.get_flags([handle]).get(handle)
            except (IMAPClientError, OSError) as e:
                raise TransportError(f"Cannot read flags of message {handle}: {e}") from e
        if flags is None:
            raise TransportError(f"Message {handle} no longer exists")
        return frozenset(f.decode() if isinstance(f, bytes) else str(f) for f in flags)

    def _message(self, uid: int) -> EmailMessage:
        with self._lock:
            message = self._messages.get(uid)
            if message is not None:
                return message
            client = self._require_client()
            self._trace("FETCH BODY.PEEK[] %s", uid)
            try:
                data = client.fetch([uid], [PEEK_BODY])
            except (IMAPClientError, OSError) as e:
                raise TransportError(f"Cannot fetch message {uid}: {e}") from e
            if uid not in data:
                raise TransportError(f"Message {uid} no longer exists")
            message = parse_message(data[uid][BODY_KEY])
            self._messages[uid] = message
            return message

    # ---------- push notifications ----------

    def add_listener(self, listener: MessageListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def message_count(self) -> int:
        """Poke the server and report UIDs added or removed since the last look.

        Raises:
            TransportError: If the server cannot be reached.
        """
        with self._lock:
            client = self._require_client()
            self._trace("NOOP")
            try:
                client.noop()
            except (IMAPClientError, OSError) as e:
                raise TransportError(f"NOOP failed on {self._host}: {e}") from e
            current = self._search()
            current_set = set(current)
            known_set = set(self._known)
            added = [uid for uid in current if uid not in known_set]
            removed = [uid for uid in self._known if uid not in current_set]
            for uid in removed:
                self._messages.pop(uid, None)
            self._known = current
            listeners = list(self._listeners)

        if removed:
            self._notify(listeners, "messages_removed", removed)
        if added:
            self._notify(listeners, "messages_added", added)
        return len(current)

    def _notify(self, listeners: list[MessageListener], method: str, uids: Sequence[int]) -> None:
        logger.debug("Notifying %d listener(s): %s %s", len(listeners), method, list(uids))
        for listener in listeners:
            try:
                getattr(listener, method)(uids)
            except Exception:
                logger.exception("Listener %r failed on %s", listener, method)

    # ---------- internals ----------

    def _search(self) -> list[int]:
        client = self._require_client()
        self._trace("SEARCH ALL")
        try:
            return sorted(client.search("ALL"))
        except (IMAPClientError, OSError) as e:
            raise TransportError(f"Cannot list folder {self._folder}: {e}") from e

    def _require_client(self) -> IMAPClient:
        if self._client is None:
            raise TransportError("Not connected. Call connect() first.")
        return self._client

    def _trace(self, msg: str, *args: object) -> None:
        if self._debug:
            logger.info("IMAP " + msg, *args)

    @staticmethod
    def _logout_quietly(client: IMAPClient) -> None:
        try:
            client.logout()
        except Exception as e:
            logger.debug("Error during logout: %s", e)
