"""POP3 transport client built on poplib."""

from __future__ import annotations

import logging
import poplib
import threading
from email.message import EmailMessage
from typing import Any

from mail_access.core.exceptions import ConfigurationError, TransportError
from mail_access.core.transport import Envelope
from mail_access.transport.mime import content_of, content_type_of, envelope_of, parse_message

logger = logging.getLogger(__name__)

POP3_FOLDER = "inbox"
POP3_PORT = 110
POP3_SSL_PORT = 995


class Pop3TransportClient:
    """Pull-only transport over a POP3 session.

    POP3 exposes a single folder and no flags. Handles are the UIDL strings,
    which stay stable across sessions while message numbers do not.
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        *,
        port: int | None = None,
        folder: str = POP3_FOLDER,
        use_ssl: bool = True,
        debug: bool = False,
    ) -> None:
        if folder.lower() != POP3_FOLDER:
            raise ConfigurationError(f"POP3 only provides the {POP3_FOLDER} folder, not {folder}")
        self._host = host
        self._port = port or (POP3_SSL_PORT if use_ssl else POP3_PORT)
        self._username = username
        self._password = password
        self._folder = folder
        self._use_ssl = use_ssl
        self._debug = debug

        self._session: poplib.POP3 | None = None
        self._lock = threading.RLock()
        self._numbers: dict[str, int] = {}
        self._messages: dict[str, EmailMessage] = {}

    @property
    def folder_name(self) -> str:
        return self._folder

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    def connect(self) -> None:
        """Open a session and authenticate.

        Raises:
            TransportError: If the server cannot be reached or refuses the login.
        """
        with self._lock:
            if self._session is not None:
                return
            try:
                if self._use_ssl:
                    session: poplib.POP3 = poplib.POP3_SSL(self._host, self._port)
                else:
                    session = poplib.POP3(self._host, self._port)
            except OSError as e:
                raise TransportError(f"Cannot connect to {self._host}:{self._port}: {e}") from e

            if self._debug:
                session.set_debuglevel(1)
            try:
                session.user(self._username)
                session.pass_(self._password)
            except (poplib.error_proto, OSError) as e:
                self._quit_quietly(session)
                raise TransportError(f"POP3 login failed for {self._username}: {e}") from e

            self._session = session
            logger.debug("Connected to %s:%d", self._host, self._port)

    def close(self) -> None:
        """End the session. Does nothing when not connected.

        Raises:
            TransportError: If the server did not acknowledge QUIT.
        """
        with self._lock:
            session, self._session = self._session, None
            self._numbers.clear()
            self._messages.clear()
            if session is None:
                return
            try:
                session.quit()
            except (poplib.error_proto, OSError) as e:
                raise TransportError(f"Error during QUIT on {self._host}: {e}") from e
            logger.debug("Disconnected from %s", self._host)

    def list_messages(self) -> list[str]:
        with self._lock:
            session = self._require_session()
            try:
                _, lines, _ = session.uidl()
            except (poplib.error_proto, OSError) as e:
                raise TransportError(f"UIDL failed on {self._host}: {e}") from e

            numbers: dict[str, int] = {}
            for line in lines:
                number, uid = line.decode("ascii", "replace").split(None, 1)
                numbers[uid.strip()] = int(number)
            self._numbers = numbers
            return list(numbers)

    def get_envelope(self, handle: str) -> Envelope:
        return envelope_of(self._message(handle), self._folder)

    def get_content_type(self, handle: str) -> str:
        return content_type_of(self._message(handle))

    def get_content(self, handle: str) -> Any:
        return content_of(self._message(handle))

    def get_flags(self, handle: str) -> frozenset[str]:
        return frozenset()

    def _message(self, uid: str) -> EmailMessage:
        with self._lock:
            message = self._messages.get(uid)
            if message is not None:
                return message
            session = self._require_session()
            number = self._numbers.get(uid)
            if number is None:
                raise TransportError(f"Unknown message {uid}")
            try:
                _, lines, _ = session.retr(number)
            except (poplib.error_proto, OSError) as e:
                raise TransportError(f"RETR {number} failed on {self._host}: {e}") from e
            message = parse_message(b"\r\n".join(lines))
            self._messages[uid] = message
            return message

    def _require_session(self) -> poplib.POP3:
        if self._session is None:
            raise TransportError("Not connected. Call connect() first.")
        return self._session

    @staticmethod
    def _quit_quietly(session: poplib.POP3) -> None:
        try:
            session.quit()
        except (poplib.error_proto, OSError) as e:
            logger.debug("Error during QUIT: %s", e)
