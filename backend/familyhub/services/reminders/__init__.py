"""Notification categories and the trigger names that run them."""
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.services.f1_feeds import F1FeedService
from familyhub.services.push_dispatcher import PushDispatcher
from familyhub.services.reminder_scheduler import ReminderCategory, ReminderScheduler, RunSummary
from familyhub.utils.timezone import Clock, utcnow

from .bins import BinReminders
from .birthdays import BirthdayReminders
from .calendar import CalendarReminders
from .calendar_changes import CalendarChangeNotification, EventChange
from .chores import ChoreReminders
from .f1 import F1NewsNotifications, F1SessionReminders
from .f1_results import F1ResultsNotifications
from .routines import RoutineReminders
from .shopping import ShoppingListChanges
from .tasks import TaskReminders

TRIGGERS: dict[str, Callable[[], ReminderCategory]] = {
    "events": CalendarReminders,
    "bins": BinReminders,
    "chores": ChoreReminders,
    "shopping-list": ShoppingListChanges,
    "f1-news": F1NewsNotifications,
    "f1-sessions": F1SessionReminders,
    "f1-results": F1ResultsNotifications,
    "routines": RoutineReminders,
    "tasks": TaskReminders,
    "birthdays": BirthdayReminders,
}


class UnknownTrigger(LookupError):
    pass


async def run_trigger(
    name: str,
    session: AsyncSession,
    dispatcher: PushDispatcher,
    run_type: Optional[str] = None,
    feeds: Optional[F1FeedService] = None,
    clock: Clock = utcnow,
) -> RunSummary:
    factory = TRIGGERS.get(name)
    if factory is None:
        raise UnknownTrigger(name)
    scheduler = ReminderScheduler(session, dispatcher, clock=clock, feeds=feeds)
    return await scheduler.run(factory(), run_type)


async def notify_event_change(
    change: EventChange,
    session: AsyncSession,
    dispatcher: PushDispatcher,
    clock: Clock = utcnow,
) -> RunSummary:
    scheduler = ReminderScheduler(session, dispatcher, clock=clock)
    return await scheduler.run(CalendarChangeNotification(change))


__all__ = ["TRIGGERS", "UnknownTrigger", "notify_event_change", "run_trigger"]
