"""Raw transport message to Mail conversion."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from mail_access.core.exceptions import ConversionError
from mail_access.core.models import Mail, MailBuilder, epoch_millis
from mail_access.core.transport import SEEN, Envelope, MailTransportClient, MessageHandle, MessagePart

logger = logging.getLogger(__name__)

_CHARSET_PATTERN = re.compile(r'.*charset="?([a-zA-Z0-9_-]*)"?.*', re.IGNORECASE | re.DOTALL)
_SUBTYPE_PATTERN = re.compile(r".*/([A-Za-z]+).*", re.DOTALL)


def derive_mail_id(folder: str | None, envelope: Envelope) -> str:
    """Build the stable id ``<folder>/<sent-epoch-millis>[-<subject>]``."""
    if envelope.sent is None:
        raise ConversionError("Message has no sent date, cannot derive its id")
    mail_id = f"{folder or ''}/{epoch_millis(envelope.sent)}"
    if envelope.subject is not None:
        mail_id += f"-{envelope.subject}"
    return mail_id


def content_kind(content_type: str | None) -> str:
    """Return 'text', 'multipart' or 'other' for a Content-Type header value."""
    if not content_type:
        return "other"
    main_type = content_type.split(";", 1)[0].split("/", 1)[0].strip().lower()
    if main_type in ("text", "multipart"):
        return main_type
    return "other"


class MailConverter:
    """Turns a transport message handle into a read-only Mail.

    Attachments and nested messages are not supported: a multipart body
    contributes only its first part, and non-text content leaves the body empty.
    """

    def convert(self, transport: MailTransportClient, handle: MessageHandle) -> Mail:
        """Convert one message.

        Raises:
            ConversionError: If the message is malformed or cannot be read.
        """
        try:
            builder = MailBuilder()
            envelope = transport.get_envelope(handle)
            if envelope is not None:
                self._convert_envelope(transport, handle, envelope, builder)
            self._convert_body(transport, handle, builder)
            return builder.build()
        except ConversionError:
            raise
        except Exception as e:
            raise ConversionError(f"Failed to convert message {handle!r}: {e}") from e

    def _convert_envelope(
        self,
        transport: MailTransportClient,
        handle: MessageHandle,
        envelope: Envelope,
        builder: MailBuilder,
    ) -> None:
        if envelope.sender:
            builder.sender(envelope.sender[0])
        builder.to(*envelope.to)
        builder.cc(*envelope.cc)
        builder.reply_to(*envelope.reply_to)
        builder.subject(envelope.subject)
        builder.sent(envelope.sent)
        builder.read(SEEN in transport.get_flags(handle))
        builder.id(derive_mail_id(envelope.folder, envelope))

    def _convert_body(
        self,
        transport: MailTransportClient,
        handle: MessageHandle,
        builder: MailBuilder,
    ) -> None:
        content_type = transport.get_content_type(handle)
        kind = content_kind(content_type)

        if kind == "text":
            self._extract_sub_type_and_charset(content_type, builder)
            content = transport.get_content(handle)
            if not isinstance(content, str):
                raise ConversionError(
                    f"Expected text content for {content_type}, got {type(content).__name__}"
                )
            builder.body(content)
        elif kind == "multipart":
            parts: Sequence[MessagePart] = transport.get_content(handle)
            if parts:
                first = parts[0]
                self._extract_sub_type_and_charset(first.content_type, builder)
                if isinstance(first.content, str):
                    builder.body(first.content)
                else:
                    logger.debug("First part of %r is not text, body left empty", handle)
                if len(parts) > 1:
                    logger.debug("Ignoring %d trailing parts of %r", len(parts) - 1, handle)
        else:
            logger.debug("Unsupported content type %s for %r, body left empty", content_type, handle)

    @staticmethod
    def _extract_sub_type_and_charset(content_type: str | None, builder: MailBuilder) -> None:
        if content_type is None:
            return
        match = _CHARSET_PATTERN.fullmatch(content_type)
        if match:
            builder.charset(match.group(1))
        match = _SUBTYPE_PATTERN.fullmatch(content_type)
        if match:
            builder.sub_type(match.group(1))
