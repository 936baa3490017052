"""Mail value object and its builder."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

DEFAULT_SUBJECT = "no subject"

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def epoch_millis(value: datetime) -> int:
    """Milliseconds since the Unix epoch. Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - _EPOCH) // timedelta(milliseconds=1)


@dataclass(frozen=True)
class Mail:
    """One email. Instances are immutable once built."""

    sender: str | None = None
    to: tuple[str, ...] = field(default_factory=tuple)
    cc: tuple[str, ...] = field(default_factory=tuple)
    reply_to: tuple[str, ...] = field(default_factory=tuple)
    subject: str | None = DEFAULT_SUBJECT
    body: str = ""
    charset: str | None = None
    sub_type: str | None = None
    read: bool = False
    sent: datetime | None = None
    id: str | None = None
    attachments: tuple[Path, ...] = field(default_factory=tuple)

    @property
    def sent_millis(self) -> int | None:
        return epoch_millis(self.sent) if self.sent is not None else None

    @classmethod
    def builder(cls) -> MailBuilder:
        return MailBuilder()

    @classmethod
    def create(
        cls,
        to: str,
        subject: str,
        body: str,
        attachments: Iterable[Path] | None = None,
    ) -> Mail:
        """Build an outbound mail for a single recipient."""
        builder = MailBuilder().to(to).subject(subject).body(body)
        if attachments:
            builder.attach(*attachments)
        return builder.build()

    def to_builder(self) -> MailBuilder:
        """Return a builder pre-filled with this mail's fields."""
        builder = (
            MailBuilder()
            .sender(self.sender)
            .to(*self.to)
            .cc(*self.cc)
            .reply_to(*self.reply_to)
            .subject(self.subject)
            .body(self.body)
            .charset(self.charset)
            .sub_type(self.sub_type)
            .read(self.read)
            .sent(self.sent)
            .id(self.id)
        )
        # Attachments were validated when first attached.
        builder._attachments.extend(self.attachments)
        return builder


class MailBuilder:
    """Mutable counterpart of Mail with chained setters.

    A Mail is assembled here while a raw transport message is converted (or an
    outbound mail is composed), then frozen with build().
    """

    def __init__(self) -> None:
        self._sender: str | None = None
        self._to: list[str | None] = []
        self._cc: list[str] = []
        self._reply_to: list[str] = []
        self._attachments: list[Path] = []
        self._subject: str | None = DEFAULT_SUBJECT
        self._body: str = ""
        self._charset: str | None = None
        self._sub_type: str | None = None
        self._read = False
        self._sent: datetime | None = None
        self._id: str | None = None

    def sender(self, address: str | None) -> MailBuilder:
        self._sender = address
        return self

    def to(self, *addresses: str | None) -> MailBuilder:
        self._to.extend(addresses)
        return self

    def remove_to(self, address: str) -> MailBuilder:
        if address in self._to:
            self._to.remove(address)
        return self

    def cc(self, *addresses: str | None) -> MailBuilder:
        self._cc.extend(a for a in addresses if a is not None)
        return self

    def remove_cc(self, address: str) -> MailBuilder:
        if address in self._cc:
            self._cc.remove(address)
        return self

    def reply_to(self, *addresses: str) -> MailBuilder:
        self._reply_to.extend(addresses)
        return self

    def remove_reply_to(self, address: str) -> MailBuilder:
        if address in self._reply_to:
            self._reply_to.remove(address)
        return self

    def attach(self, *files: Path | str | None) -> MailBuilder:
        """Attach existing files.

        Raises:
            TypeError: If a file is None.
            FileNotFoundError: If a file does not exist.
        """
        for file in files:
            if file is None:
                raise TypeError("The given file is None")
            path = Path(file)
            if not path.exists():
                raise FileNotFoundError(f"The file {path.absolute()} does not exist")
            self._attachments.append(path)
        return self

    def remove_attachment(self, file: Path | str) -> MailBuilder:
        path = Path(file)
        if path in self._attachments:
            self._attachments.remove(path)
        return self

    def subject(self, subject: str | None) -> MailBuilder:
        self._subject = subject
        return self

    def body(self, body: str) -> MailBuilder:
        self._body = body
        return self

    def charset(self, charset: str | None) -> MailBuilder:
        self._charset = charset
        return self

    def sub_type(self, sub_type: str | None) -> MailBuilder:
        self._sub_type = sub_type
        return self

    def read(self, read: bool) -> MailBuilder:
        self._read = read
        return self

    def sent(self, sent: datetime | None) -> MailBuilder:
        self._sent = sent
        return self

    def id(self, mail_id: str | None) -> MailBuilder:
        self._id = mail_id
        return self

    def build(self) -> Mail:
        """Freeze the collected fields into a Mail.

        Raises:
            ValueError: If a 'to' address is None.
        """
        if any(address is None for address in self._to):
            raise ValueError("A 'to' address is None")
        return Mail(
            sender=self._sender,
            to=tuple(self._to),  # type: ignore[arg-type]
            cc=tuple(self._cc),
            reply_to=tuple(self._reply_to),
            subject=self._subject,
            body=self._body,
            charset=self._charset,
            sub_type=self._sub_type,
            read=self._read,
            sent=self._sent,
            id=self._id,
            attachments=tuple(self._attachments),
        )
