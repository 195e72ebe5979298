"""Calendar event reminders at 15m / 30m / 1h / 1d before start."""
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update

from familyhub.models.calendar_event import CalendarEvent
from familyhub.services.reminder_scheduler import (
    DueNotification,
    InvalidRunType,
    ReminderCategory,
    RunContext,
)
from familyhub.utils.timezone import format_day, format_time


@dataclass(frozen=True)
class LeadWindow:
    lead: str
    min_minutes: int
    max_minutes: int
    marker: str
    preference: str


# Windows are wider than the cron interval so a late or skipped run still lands inside one
LEAD_WINDOWS: dict[str, LeadWindow] = {
    "15m": LeadWindow("15m", 14, 20, "reminder_15m_sent", "calendar_reminder_15m"),
    "30m": LeadWindow("30m", 28, 35, "reminder_30m_sent", "calendar_reminder_30m"),
    "1h": LeadWindow("1h", 55, 70, "reminder_1h_sent", "calendar_reminder_1h"),
    "1d": LeadWindow("1d", 23 * 60, 25 * 60, "reminder_1d_sent", "calendar_reminder_1d"),
}

EVENT_EMOJI_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("🎂", ("birthday", "fødselsdag")),
    ("🏥", ("doctor", "appointment", "dentist", "læge", "tandlæge")),
    ("📅", ("meeting", "møde")),
    ("🏫", ("school", "class", "skole")),
    ("👶", ("playdate", "play date", "playgroup")),
    ("🏊", ("swimming", "pool", "svømning")),
    ("⚽", ("sport", "football", "soccer", "fodbold")),
    ("💪", ("gym", "workout", "exercise", "fitness")),
    ("🍽️", ("dinner", "lunch", "restaurant", "middag", "frokost")),
    ("🎉", ("party", "fest")),
    ("✈️", ("holiday", "vacation", "ferie")),
    ("💼", ("work", "arbejde")),
    ("📞", ("call", "phone", "opkald")),
    ("🎵", ("music", "concert", "musik", "koncert")),
    ("🎬", ("movie", "cinema", "biograf")),
    ("🛒", ("shop", "store", "indkøb")),
    ("💒", ("wedding", "bryllup")),
    ("💕", ("anniversary", "årsdag")),
]


def event_emoji(title: str, description: Optional[str] = None) -> str:
    text = f"{title} {description or ''}".lower()
    for emoji, keywords in EVENT_EMOJI_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return emoji
    return "📌"


def reminder_message(event: CalendarEvent, lead: str, minutes_until: int) -> tuple[str, str]:
    emoji = event_emoji(event.title, event.description)
    start = format_time(event.start_time)

    if lead == "15m":
        title = f"{emoji} {event.title} in {minutes_until} min!"
        body = f"🕐 {start}"
    elif lead == "30m":
        title = f"{emoji} {event.title} in 30 min"
        body = f"🕐 Starting at {start}"
    elif lead == "1h":
        title = f"{emoji} {event.title} in 1 hour"
        body = f"🕐 {start}"
        if event.location:
            body += f" at {event.location}"
        if event.description:
            body += f"\n📝 {event.description[:80]}"
        return title, body
    else:
        title = f"{emoji} Tomorrow: {event.title}"
        body = f"📅 {format_day(event.start_time)} at {start}"

    if event.location:
        body += f"\n📍 {event.location}"
    return title, body


class CalendarReminders(ReminderCategory):
    name = "calendar"
    ledger_category = "calendar"
    category_flag = "calendar_enabled"
    noun = "event reminders"

    def resolve_run_type(self, run_type, ctx):
        if run_type is not None and run_type not in LEAD_WINDOWS:
            raise InvalidRunType(f"run_type must be one of {', '.join(LEAD_WINDOWS)}")
        return run_type

    def _windows(self, ctx: RunContext) -> list[LeadWindow]:
        if ctx.run_type:
            return [LEAD_WINDOWS[ctx.run_type]]
        return list(LEAD_WINDOWS.values())

    async def collect(self, ctx: RunContext) -> list[DueNotification]:
        now = ctx.now()
        due: list[DueNotification] = []

        for window in self._windows(ctx):
            marker = getattr(CalendarEvent, window.marker)
            stmt = (
                select(CalendarEvent)
                .where(
                    CalendarEvent.start_time >= now + timedelta(minutes=window.min_minutes),
                    CalendarEvent.start_time <= now + timedelta(minutes=window.max_minutes),
                    CalendarEvent.all_day.is_(False),
                    marker.is_(None),
                )
                .order_by(CalendarEvent.start_time)
            )
            events = (await ctx.session.execute(stmt)).scalars().all()

            for event in events:
                minutes_until = round((event.start_time - now).total_seconds() / 60)
                title, body = reminder_message(event, window.lead, minutes_until)
                due.append(
                    DueNotification(
                        reference_id=str(event.id),
                        notification_type=f"event_reminder_{window.lead}",
                        title=title,
                        body=body,
                        recipients=[event.user_id],
                        scope=window.lead,
                        flags=(window.preference,),
                        data={
                            "reminder_type": window.lead,
                            "event_id": str(event.id),
                            "event_title": event.title,
                            "start_time": event.start_time.isoformat(),
                            "deep_link": f"/calendar?event={event.id}",
                        },
                    )
                )
        return due

    async def claim(self, ctx: RunContext, item: DueNotification) -> bool:
        marker = getattr(CalendarEvent, LEAD_WINDOWS[item.scope].marker)
        result = await ctx.session.execute(
            update(CalendarEvent)
            .where(CalendarEvent.id == _event_id(item), marker.is_(None))
            .values({marker: ctx.now()})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release(self, ctx: RunContext, item: DueNotification) -> None:
        marker = getattr(CalendarEvent, LEAD_WINDOWS[item.scope].marker)
        await ctx.session.execute(
            update(CalendarEvent)
            .where(CalendarEvent.id == _event_id(item))
            .values({marker: None})
            .execution_options(synchronize_session=False)
        )


def _event_id(item: DueNotification) -> uuid.UUID:
    return uuid.UUID(item.reference_id)
