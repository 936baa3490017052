"""Builds and publishes new-mail and sent-mail notifications."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from mail_access.core.models import Mail

logger = logging.getLogger(__name__)

RECEIVE_TOPIC = "mail_access/mail"
SENT_TOPIC = "mail_access/mail/sent"

FROM_KEY = "from"
TO_KEY = "to"
CC_KEY = "cc"
SUBJECT_KEY = "subject"
BODY_KEY = "body"
ID_KEY = "message.id"
STATUS_KEY = "status"
ERROR_KEY = "error"


class EventSink(Protocol):
    """Fire-and-forget destination for events."""

    def publish(self, topic: str, properties: dict[str, Any]) -> None: ...


class EventPublisher:
    """Turns mails into event properties and hands them to an optional sink.

    Publishing never fails the operation that triggered it: sink errors are
    logged and dropped.

    The sink is called on the publishing thread, which for a receiver holds
    its ingest lock. Pass an EventBus as the sink for asynchronous delivery;
    slow sinks such as WebhookEventSink belong behind one.
    """

    def __init__(
        self,
        sink: EventSink | None = None,
        *,
        receive_topic: str = RECEIVE_TOPIC,
        sent_topic: str = SENT_TOPIC,
    ) -> None:
        self._sink = sink
        self._receive_topic = receive_topic
        self._sent_topic = sent_topic

    @property
    def sink(self) -> EventSink | None:
        return self._sink

    def received_topic(self, folder: str) -> str:
        return f"{self._receive_topic}/{folder}"

    def mail_received(self, mail: Mail, folder: str) -> None:
        """Publish a new-mail event to ``<receive_topic>/<folder>``."""
        if self._sink is None:
            return
        properties: dict[str, Any] = {
            TO_KEY: list(mail.to),
            FROM_KEY: mail.sender,
            CC_KEY: list(mail.cc),
            SUBJECT_KEY: mail.subject if mail.subject is not None else "",
            ID_KEY: mail.id,
        }
        self._publish(self.received_topic(folder), properties)

    def mail_sent(self, mail: Mail, sender: str, error: str | None = None) -> None:
        """Publish the outcome of a send attempt; error is set only on failure."""
        if self._sink is None:
            return
        properties: dict[str, Any] = {
            FROM_KEY: sender,
            TO_KEY: list(mail.to),
            CC_KEY: list(mail.cc),
            SUBJECT_KEY: mail.subject if mail.subject is not None else "",
            BODY_KEY: mail.body if mail.body is not None else "",
            STATUS_KEY: error is None,
        }
        if error is not None:
            properties[ERROR_KEY] = error
        self._publish(self._sent_topic, properties)

    def _publish(self, topic: str, properties: dict[str, Any]) -> None:
        try:
            self._sink.publish(topic, properties)  # type: ignore[union-attr]
            logger.debug("Published event to %s", topic)
        except Exception as e:
            logger.warning("Failed to publish event to %s: %s", topic, e)
