"""Thread-safe in-memory cache of converted mails keyed by transport handle."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime

from mail_access.core.models import Mail, epoch_millis
from mail_access.core.transport import MessageHandle

logger = logging.getLogger(__name__)


def sort_by_sent_desc(mails: Iterable[Mail]) -> list[Mail]:
    """Sort newest first; mails without a sent date go last."""
    return sorted(
        mails,
        key=lambda m: (m.sent is not None, m.sent_millis or 0),
        reverse=True,
    )


class MailCache:
    """Maps transport message handles to the Mail converted from them.

    Every read and write goes through one lock, held only for in-memory work.
    Listings are always materialized sorted by sent date, newest first.
    """

    def __init__(self) -> None:
        self._entries: dict[MessageHandle, Mail] = {}
        self._lock = threading.Lock()

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return handle in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def insert(self, handle: MessageHandle, mail: Mail) -> bool:
        """Store a mail unless the handle is already cached.

        Returns True if inserted, False if the handle was already known.
        """
        with self._lock:
            if handle in self._entries:
                return False
            self._entries[handle] = mail
            return True

    def remove(self, handle: MessageHandle) -> Mail | None:
        with self._lock:
            return self._entries.pop(handle, None)

    def unknown(self, handles: Iterable[MessageHandle]) -> list[MessageHandle]:
        """Return the handles that are not cached yet, once each, preserving order."""
        with self._lock:
            return [h for h in dict.fromkeys(handles) if h not in self._entries]

    def items(self) -> list[tuple[MessageHandle, Mail]]:
        """Snapshot of the cache entries."""
        with self._lock:
            return list(self._entries.items())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def all(self) -> list[Mail]:
        return self._select(lambda mail: True)

    def unread(self) -> list[Mail]:
        return self._select(lambda mail: not mail.read)

    def between(self, from_date: datetime, to_date: datetime) -> list[Mail]:
        """Mails sent strictly after from_date and strictly before to_date."""
        lower = epoch_millis(from_date)
        upper = epoch_millis(to_date)
        return self._select(
            lambda mail: mail.sent is not None and lower < epoch_millis(mail.sent) < upper
        )

    def by_id(self, mail_id: str) -> Mail | None:
        for mail in self.all():
            if mail.id == mail_id:
                return mail
        return None

    def _select(self, predicate: Callable[[Mail], bool]) -> list[Mail]:
        with self._lock:
            selected = [mail for mail in self._entries.values() if predicate(mail)]
        return sort_by_sent_desc(selected)
