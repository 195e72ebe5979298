"""In-process cron, the alternative to an external scheduler hitting the
trigger routes. Each job opens its own session."""
import logging
from typing import Optional

from apscheduler.triggers.cron import CronTrigger

from familyhub import jobs_state
from familyhub.core.db import get_session_factory
from familyhub.core.scheduler import init_scheduler, schedule_task
from familyhub.core.settings import get_settings
from familyhub.services.f1_feeds import F1FeedService
from familyhub.services.push_dispatcher import PushDispatcher
from familyhub.services.reminder_scheduler import RunSummary
from familyhub.services.reminders import run_trigger

logger = logging.getLogger(__name__)


async def run_category(
    name: str,
    dispatcher: PushDispatcher,
    feeds: Optional[F1FeedService] = None,
    run_type: Optional[str] = None,
) -> Optional[RunSummary]:
    session_factory = get_session_factory()
    if session_factory is None:
        logger.warning(f"Skipping '{name}' job: database not configured")
        return None

    async with session_factory() as session:
        summary = await run_trigger(name, session, dispatcher, run_type=run_type, feeds=feeds)
    logger.info(f"Job '{name}' finished: {summary.message}")
    return summary


def setup_periodic_tasks(dispatcher: PushDispatcher, feeds: F1FeedService) -> None:
    settings = get_settings()
    init_scheduler(timezone=settings.locale.timezone)

    def _job(job_key: str, name: str, run_type: Optional[str] = None):
        async def _run():
            await jobs_state.run_job(job_key, run_category, name, dispatcher, feeds, run_type)

        return _run

    # Lead windows are at least six minutes wide, so a five minute cadence cannot skip one
    schedule_task(_job("events", "events"), CronTrigger(minute="*/5"), "events_reminders")
    schedule_task(_job("f1-sessions", "f1-sessions"), CronTrigger(minute="*/5"), "f1_sessions")
    # Routine start windows are ten minutes wide
    schedule_task(_job("routines", "routines"), CronTrigger(minute="*/5"), "routine_reminders")
    schedule_task(_job("tasks", "tasks"), CronTrigger(minute="*/5"), "task_reminders")

    schedule_task(_job("bins_evening", "bins", "evening"), CronTrigger(hour=19, minute=0), "bins_evening")
    schedule_task(_job("bins_morning", "bins", "morning"), CronTrigger(hour=6, minute=30), "bins_morning")
    schedule_task(_job("chores", "chores"), CronTrigger(hour=8, minute=0), "chores_digest")
    schedule_task(_job("shopping-list", "shopping-list"), CronTrigger(minute="*/10"), "shopping_list_changes")
    schedule_task(_job("f1-news", "f1-news"), CronTrigger(minute="*/30"), "f1_news")
    schedule_task(_job("f1-results", "f1-results"), CronTrigger(minute=15), "f1_results")
    schedule_task(_job("birthdays", "birthdays"), CronTrigger(hour=9, minute=0), "birthday_reminders")

    for job_key in jobs_state.JOB_KEYS_TO_SCHEDULER_IDS:
        jobs_state.refresh_next_run(job_key)
