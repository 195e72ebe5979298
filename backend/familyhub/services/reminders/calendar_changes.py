from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from familyhub.services.reminder_scheduler import DueNotification, ReminderCategory, RunContext
from familyhub.services.reminders.calendar import event_emoji
from familyhub.utils.timezone import format_day, format_time

CHANGE_TYPES = ("created", "changed", "deleted")

SOURCE_DESCRIPTIONS = {
    "ai": "✨ Added by AI",
    "google": "🔄 Synced from Google",
}


@dataclass
class EventSnapshot:
    id: str
    title: str
    start_time: datetime
    all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None
    source: Optional[str] = None


@dataclass
class FieldChange:
    field: str
    new_value: Optional[str] = None


@dataclass
class EventChange:
    change_type: str
    event: EventSnapshot
    actor_id: Optional[str] = None
    changes: list[FieldChange] = field(default_factory=list)


def format_when(start: datetime, all_day: bool) -> str:
    if all_day:
        return format_day(start)
    return f"{format_day(start)}, {format_time(start)}"


def describe_changes(changes: list[FieldChange]) -> str:
    lines = []
    for change in changes[:3]:
        if change.field == "title":
            lines.append(f"New title: {change.new_value}")
        elif change.field == "start_time":
            lines.append(f"New time: {change.new_value}")
        elif change.field == "location":
            lines.append(f"Location: {change.new_value}" if change.new_value else "Location removed")
        else:
            lines.append(f"{change.field.replace('_', ' ').capitalize()} updated")
    if len(changes) > 3:
        lines.append(f"+{len(changes) - 3} more")
    return "\n".join(lines)


def change_message(change: EventChange) -> tuple[str, str]:
    event = change.event
    when = format_when(event.start_time, event.all_day)

    if change.change_type == "created":
        title = f"{event_emoji(event.title, event.description)} {event.title}"
        parts = [SOURCE_DESCRIPTIONS.get(event.source or "", "✅ Event added"), f"📅 {when}"]
        if event.location:
            parts.append(f"📍 {event.location}")
        if event.description:
            suffix = "..." if len(event.description) > 60 else ""
            parts.append(f"📝 {event.description[:60]}{suffix}")
    elif change.change_type == "changed":
        title = f"✏️ {event.title}"
        parts = [p for p in (describe_changes(change.changes), when, event.location) if p]
    else:
        title = "Event Cancelled"
        parts = [p for p in (event.title, f"Was: {when}", event.location) if p]

    return title, "\n".join(parts)


class CalendarChangeNotification(ReminderCategory):
    """Fire-once broadcast for a single create/update/delete.

    Every edit is its own notification, so there is nothing to claim.
    """

    name = "calendar_changes"
    ledger_category = "calendar"
    category_flag = "calendar_enabled"
    noun = "event update notifications"

    def __init__(self, change: EventChange) -> None:
        if change.change_type not in CHANGE_TYPES:
            raise ValueError(f"Unknown change type: {change.change_type}")
        self.change = change

    async def collect(self, ctx: RunContext) -> list[DueNotification]:
        change = self.change
        title, body = change_message(change)
        data = {
            "event_id": change.event.id,
            "event_title": change.event.title,
        }
        if change.change_type != "deleted":
            data["deep_link"] = f"/calendar?event={change.event.id}"
        if change.actor_id:
            data["actor_id"] = change.actor_id

        return [
            DueNotification(
                reference_id=change.event.id,
                notification_type=f"event_{change.change_type}",
                title=title,
                body=body,
                data=data,
                flags=(f"calendar_event_{change.change_type}",),
                actor_ids=frozenset({change.actor_id}) if change.actor_id else frozenset(),
                own_changes_flag="calendar_notify_own_changes",
            )
        ]

    async def claim(self, ctx: RunContext, item: DueNotification) -> bool:
        return True

    async def release(self, ctx: RunContext, item: DueNotification) -> None:
        return None
