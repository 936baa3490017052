"""Event sinks: an in-process bus and an HTTP webhook."""

from __future__ import annotations

import fnmatch
import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import httpx

from mail_access.core.exceptions import PublishError

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, dict[str, Any]], None]


class EventBus:
    """In-process publish/subscribe with asynchronous delivery.

    Handlers subscribe with fnmatch-style topic patterns, e.g.
    ``"mail_access/mail/*"``. Each matching handler runs on a worker thread;
    a failing handler is logged and does not affect the others.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._subscriptions: list[tuple[str, EventHandler]] = []
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="mail-events-",
        )

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        with self._lock:
            self._subscriptions.append((pattern, handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        with self._lock:
            self._subscriptions = [(p, h) for p, h in self._subscriptions if h is not handler]

    def publish(self, topic: str, properties: dict[str, Any]) -> None:
        with self._lock:
            handlers = [h for p, h in self._subscriptions if fnmatch.fnmatchcase(topic, p)]
        if not handlers:
            logger.debug("No subscriber for %s", topic)
            return
        # Handlers get their own copy so one cannot alter what another sees.
        for handler in handlers:
            self._executor.submit(self._deliver, handler, topic, dict(properties))

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> EventBus:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @staticmethod
    def _deliver(handler: EventHandler, topic: str, properties: dict[str, Any]) -> None:
        try:
            handler(topic, properties)
        except Exception:
            logger.exception("Event handler %r failed for %s", handler, topic)


class WebhookEventSink:
    """POSTs every event as JSON ``{"topic": ..., "properties": ...}`` to a URL."""

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def url(self) -> str:
        return self._url

    def publish(self, topic: str, properties: dict[str, Any]) -> None:
        """Send one event.

        Raises:
            PublishError: On a request error or a non-2xx response.
        """
        try:
            response = self._client.post(
                self._url,
                json={"topic": topic, "properties": properties},
            )
        except httpx.RequestError as e:
            raise PublishError(f"Webhook request to {self._url} failed: {e}") from e

        if not response.is_success:
            raise PublishError(f"Webhook {self._url} answered HTTP {response.status_code}")
        logger.debug("Webhook accepted %s (HTTP %d)", topic, response.status_code)

    def close(self) -> None:
        self._client.close()
