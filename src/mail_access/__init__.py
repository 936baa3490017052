"""Mail Access - Receive mail over IMAP/POP3, send over SMTP, publish mail events."""

from mail_access.core.models import Mail, MailBuilder
from mail_access.events.publisher import EventPublisher
from mail_access.events.sinks import EventBus, WebhookEventSink
from mail_access.pipeline.receiver import (
    ImapMailReceiver,
    MailReceiver,
    Pop3MailReceiver,
    ReceiverState,
)
from mail_access.sender.smtp import SmtpMailSender

__all__ = [
    "EventBus",
    "EventPublisher",
    "ImapMailReceiver",
    "Mail",
    "MailBuilder",
    "MailReceiver",
    "Pop3MailReceiver",
    "ReceiverState",
    "SmtpMailSender",
    "WebhookEventSink",
]
