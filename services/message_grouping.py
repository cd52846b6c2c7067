from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo

from models.profile import ROLE_LABELS, UserRole

GERMAN_MONTHS = (
    "Januar", "Februar", "März", "April", "Mai", "Juni",
    "Juli", "August", "September", "Oktober", "November", "Dezember",
)


def format_date(value: datetime, tz: tzinfo = timezone.utc) -> str:
    """German long date, e.g. '05. März 2026'."""
    local = value.astimezone(tz) if value.tzinfo else value.replace(tzinfo=tz)
    return f"{local.day:02d}. {GERMAN_MONTHS[local.month - 1]} {local.year}"


def format_time(value: datetime, tz: tzinfo = timezone.utc) -> str:
    local = value.astimezone(tz) if value.tzinfo else value.replace(tzinfo=tz)
    return f"{local.hour:02d}:{local.minute:02d}"


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def sender_label(message) -> str:
    """Name shown above a bubble: '<name> - <address>' or just the name."""
    sender = message.sender
    role = sender.role if sender else UserRole.VERSICHERUNG
    name = (sender and (sender.display_name or sender.company_name)) or ROLE_LABELS[role]
    if sender and sender.address:
        return f"{name} - {sender.address}"
    return name


@dataclass
class DisplayUnit:
    message: object
    is_own: bool
    show_sender: bool

    @property
    def is_pending(self) -> bool:
        return self.message.kind == "pending"


@dataclass
class MessageGroup:
    date: str
    items: list = field(default_factory=list)

    @property
    def messages(self):
        return [item.message for item in self.items]


def group_messages(messages, current_user_id, tz: tzinfo = timezone.utc) -> list[MessageGroup]:
    """
    Split an ascending message list into consecutive per-day groups.

    A new group starts whenever the formatted date changes. Inside a group the
    sender chrome is shown only on the first message of a run by one sender.
    """
    groups: list[MessageGroup] = []
    current_date = None
    current_user_id = str(current_user_id)

    for message in messages:
        message_date = format_date(message.created_at, tz)

        if message_date != current_date:
            current_date = message_date
            groups.append(MessageGroup(date=message_date))

        group = groups[-1]
        previous = group.items[-1].message if group.items else None
        group.items.append(DisplayUnit(
            message=message,
            is_own=message.sender_id == current_user_id,
            show_sender=previous is None or previous.sender_id != message.sender_id,
        ))

    return groups
