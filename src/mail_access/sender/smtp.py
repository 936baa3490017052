"""SMTP mail sender with sent-mail notifications."""

from __future__ import annotations

import logging
import mimetypes
import smtplib
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from email.message import EmailMessage
from email.utils import format_datetime
from pathlib import Path

from mail_access.config.settings import ConnectionMode, SmtpSenderSettings
from mail_access.core.exceptions import SendError
from mail_access.core.models import Mail, MailBuilder
from mail_access.events.publisher import EventPublisher, EventSink

logger = logging.getLogger(__name__)


def _as_list(addresses: str | Sequence[str] | None) -> list[str]:
    if addresses is None:
        return []
    if isinstance(addresses, str):
        return [addresses] if addresses else []
    return [a for a in addresses if a]


class SmtpMailSender:
    """Sends mails through one SMTP server.

    Every send opens its own connection, so concurrent senders share only the
    immutable settings. Each attempt publishes one event on the sent topic.
    """

    def __init__(self, settings: SmtpSenderSettings, publisher: EventPublisher | None = None) -> None:
        self._settings = settings
        self._publisher = publisher or EventPublisher(sent_topic=settings.sent_topic)

    @classmethod
    def from_settings(cls, settings: SmtpSenderSettings, sink: EventSink | None = None) -> SmtpMailSender:
        return cls(settings, EventPublisher(sink, sent_topic=settings.sent_topic))

    @property
    def from_address(self) -> str:
        return self._settings.from_address

    def send(
        self,
        to: str | Sequence[str],
        cc: str | Sequence[str] | None,
        subject: str,
        body: str,
        attachments: Iterable[Path | str] | None = None,
    ) -> Mail:
        """Compose and send a mail.

        Raises:
            ValueError: If there is no recipient.
            FileNotFoundError: If an attachment does not exist.
            SendError: If the server did not accept the mail.
        """
        recipients = _as_list(to)
        if not recipients:
            raise ValueError("A mail needs at least one 'to' address")
        builder = MailBuilder().to(*recipients).cc(*_as_list(cc)).subject(subject).body(body)
        if attachments:
            builder.attach(*attachments)
        return self.send_mail(builder.build())

    def send_mail(self, mail: Mail) -> Mail:
        """Send a prepared mail and return it stamped with its sent time.

        Raises:
            ValueError: If the mail has no recipient.
            SendError: If the message could not be built or the server did
                not accept it.
        """
        if not mail.to:
            raise ValueError("A mail needs at least one 'to' address")

        sent = datetime.now(UTC)
        stamped = mail.to_builder().sender(self.from_address).sent(sent).build()

        try:
            message = self._build_message(stamped)
            self._deliver(message)
        except (smtplib.SMTPException, OSError, LookupError, ValueError) as e:
            logger.error("Failed to send mail '%s' to %s: %s", mail.subject, ", ".join(mail.to), e)
            self._publisher.mail_sent(stamped, self.from_address, error=str(e))
            raise SendError(f"Failed to send mail to {', '.join(mail.to)}: {e}") from e

        logger.info("Sent mail '%s' to %s", mail.subject, ", ".join(mail.to))
        self._publisher.mail_sent(stamped, self.from_address)
        return stamped

    def _build_message(self, mail: Mail) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.from_address
        message["To"] = ", ".join(mail.to)
        if mail.cc:
            message["Cc"] = ", ".join(mail.cc)
        if mail.reply_to:
            message["Reply-To"] = ", ".join(mail.reply_to)
        message["Subject"] = mail.subject or ""
        if mail.sent is not None:
            message["Date"] = format_datetime(mail.sent)
        message.set_content(mail.body, subtype=mail.sub_type or "plain", charset=mail.charset or "utf-8")

        for path in mail.attachments:
            content_type, _ = mimetypes.guess_type(path.name)
            maintype, subtype = (content_type or "application/octet-stream").split("/", 1)
            message.add_attachment(
                path.read_bytes(),
                maintype=maintype,
                subtype=subtype,
                filename=path.name,
            )
        return message

    def _deliver(self, message: EmailMessage) -> None:
        settings = self._settings
        use_ssl = settings.use_smtps or settings.connection is ConnectionMode.SSL
        smtp_cls = smtplib.SMTP_SSL if use_ssl else smtplib.SMTP

        server = smtp_cls(settings.host, settings.port)
        try:
            if settings.debug:
                server.set_debuglevel(1)
            if settings.connection is ConnectionMode.TLS and not use_ssl:
                server.starttls()
            if settings.connection is not ConnectionMode.NO_AUTH:
                server.login(settings.username or "", settings.password or "")
            server.send_message(message)
        except BaseException:
            self._drop(server)
            raise
        self._disconnect(server)

    def _disconnect(self, server: smtplib.SMTP) -> None:
        """End a session whose mail was accepted.

        With quit_wait the QUIT reply is awaited. Otherwise QUIT is sent and
        the socket closed at once. A failure here no longer affects the outcome.
        """
        try:
            if self._settings.quit_wait:
                server.quit()
            else:
                server.putcmd("quit")
                server.close()
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Closing connection to %s after send failed: %s", self._settings.host, e)
            self._drop(server)

    def _drop(self, server: smtplib.SMTP) -> None:
        try:
            server.close()
        except OSError as e:
            logger.debug("Ignoring close error on %s: %s", self._settings.host, e)
