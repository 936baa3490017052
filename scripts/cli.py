"""Minimal CLI entry point for manual testing of Mail Access."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from typing import Any

from mail_access.config.settings import (
    ImapReceiverSettings,
    Pop3ReceiverSettings,
    SmtpSenderSettings,
    load_settings,
)
from mail_access.core.models import Mail
from mail_access.events.sinks import EventBus, WebhookEventSink
from mail_access.pipeline.receiver import ImapMailReceiver, MailReceiver, Pop3MailReceiver
from mail_access.sender.smtp import SmtpMailSender

PROTOCOLS = ("imap", "pop3")


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def print_event(topic: str, properties: dict[str, Any]) -> None:
    """Print one mail event to stdout."""
    print(
        f"[{topic}] from={properties.get('from')} "
        f"subject={properties.get('subject')!r} "
        f"id={properties.get('message.id')}",
        flush=True,
    )


def format_mail(mail: Mail) -> str:
    sent = mail.sent.strftime("%Y-%m-%d %H:%M") if mail.sent else "-"
    marker = " " if mail.read else "*"
    return f"{marker} {sent:16s} {mail.sender or '-':40s} {mail.subject or ''}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Mail Access - Receive, watch and send mail"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # list command
    list_parser = subparsers.add_parser("list", help="List the mails of the configured folder")
    list_parser.add_argument("protocol", choices=PROTOCOLS)
    filters = list_parser.add_mutually_exclusive_group()
    filters.add_argument("--unread", action="store_true", help="Only unread mails")
    filters.add_argument("--recent", action="store_true", help="Only mails not flagged recent")

    # watch command
    watch_parser = subparsers.add_parser("watch", help="Print new-mail events until interrupted")
    watch_parser.add_argument("protocol", choices=PROTOCOLS)
    watch_parser.add_argument("--webhook", help="POST every event to this URL as well")

    # send command
    send_parser = subparsers.add_parser("send", help="Send a mail over SMTP")
    send_parser.add_argument("--to", action="append", required=True, help="Recipient (repeatable)")
    send_parser.add_argument("--cc", action="append", default=[], help="Copy recipient (repeatable)")
    send_parser.add_argument("--subject", "-s", required=True)
    send_parser.add_argument("--body", "-b", default="")
    send_parser.add_argument("--attach", action="append", default=[], help="File to attach (repeatable)")

    return parser


def create_receiver(protocol: str, bus: EventBus | None = None) -> MailReceiver:
    """Build a receiver from the IMAP_* or POP3_* settings."""
    if protocol == "imap":
        imap_settings = load_settings(ImapReceiverSettings)
        setup_logging(imap_settings.log_level)
        return ImapMailReceiver.from_settings(imap_settings, bus)
    pop3_settings = load_settings(Pop3ReceiverSettings)
    setup_logging(pop3_settings.log_level)
    return Pop3MailReceiver.from_settings(pop3_settings, bus)


def run_list(args: argparse.Namespace) -> None:
    receiver = create_receiver(args.protocol)
    with receiver:
        if args.unread:
            mails = receiver.get_unread_messages()
        elif args.recent:
            mails = receiver.get_recent_messages()
        else:
            mails = receiver.get_all_messages()
    print(f"\nFound {len(mails)} mails in {receiver.folder_name}:\n")
    for mail in mails:
        print(f"  {format_mail(mail)}")


def run_watch(args: argparse.Namespace) -> None:
    with EventBus() as bus:
        bus.subscribe("*", print_event)
        webhook = WebhookEventSink(args.webhook) if args.webhook else None
        if webhook is not None:
            bus.subscribe("*", webhook.publish)
        receiver = create_receiver(args.protocol, bus)
        try:
            with receiver:
                print(f"Watching {receiver.folder_name}, press Ctrl+C to stop", flush=True)
                threading.Event().wait()
        finally:
            if webhook is not None:
                webhook.close()


def run_send(args: argparse.Namespace) -> None:
    settings = load_settings(SmtpSenderSettings)
    setup_logging(settings.log_level)
    sender = SmtpMailSender(settings)
    mail = sender.send(args.to, args.cc, args.subject, args.body, args.attach)
    print(f"\nSent '{mail.subject}' to {', '.join(mail.to)}")


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "list":
            run_list(args)
        elif args.command == "watch":
            run_watch(args)
        elif args.command == "send":
            run_send(args)

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
