"""Helpers turning RFC 822 bytes into the transport capability's types."""

from __future__ import annotations

import logging
from datetime import datetime
from email import message_from_bytes, policy
from email.message import EmailMessage
from email.utils import formataddr, getaddresses, parsedate_to_datetime
from typing import Any

from mail_access.core.transport import Envelope, MessagePart

logger = logging.getLogger(__name__)


def parse_message(raw: bytes) -> EmailMessage:
    return message_from_bytes(raw, policy=policy.default)  # type: ignore[return-value]


def _addresses(message: EmailMessage, header: str) -> tuple[str, ...]:
    values = [str(v) for v in message.get_all(header, [])]
    return tuple(formataddr(pair) for pair in getaddresses(values) if pair[1])


def _sent_date(message: EmailMessage) -> datetime | None:
    value = message.get("Date")
    if not value:
        return None
    try:
        return parsedate_to_datetime(str(value))
    except (TypeError, ValueError):
        logger.warning("Failed to parse date: %s", value)
        return None


def envelope_of(message: EmailMessage, folder: str | None) -> Envelope:
    subject = message.get("Subject")
    return Envelope(
        sender=_addresses(message, "From"),
        to=_addresses(message, "To"),
        cc=_addresses(message, "Cc"),
        reply_to=_addresses(message, "Reply-To"),
        subject=str(subject) if subject is not None else None,
        sent=_sent_date(message),
        folder=folder,
    )


def content_type_of(message: EmailMessage) -> str:
    """The raw Content-Type header, or the RFC default when absent."""
    header = message.get("Content-Type")
    return str(header) if header is not None else message.get_content_type()


def content_of(message: EmailMessage) -> Any:
    """Decoded text for text parts, MessagePart list for multiparts, bytes otherwise."""
    if message.is_multipart():
        return [
            MessagePart(content_type=content_type_of(part), content=content_of(part))
            for part in message.iter_parts()
        ]
    if message.get_content_maintype() == "text":
        return message.get_content()
    return message.get_payload(decode=True)
