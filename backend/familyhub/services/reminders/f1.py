"""Formula 1 session reminders and curated news notifications.

Both read through ``F1FeedService``; when a feed is unavailable the run
simply finds nothing due.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from familyhub.models.notification_preferences import NotificationPreferences
from familyhub.services import device_registry
from familyhub.services.f1_feeds import F1Session, NewsArticle
from familyhub.services.preferences import load_preferences
from familyhub.services.reminder_scheduler import (
    DueNotification,
    InvalidRunType,
    ReminderCategory,
    RunContext,
)
from familyhub.utils.timezone import format_time

logger = logging.getLogger(__name__)

MAX_ARTICLES_PER_OWNER = 3
NEWS_DEDUPE_HOURS = 72
# Older articles are never notified, so their claims can expire
NEWS_MAX_AGE = timedelta(days=30)


@dataclass(frozen=True)
class SessionWindow:
    lead: str
    min_minutes: int
    max_minutes: int


SESSION_WINDOWS: dict[str, SessionWindow] = {
    "15m": SessionWindow("15m", 14, 20),
    "1h": SessionWindow("1h", 55, 65),
    "1d": SessionWindow("1d", 1380, 1500),
}

SESSION_INFO: dict[str, tuple[str, str]] = {
    "Race": ("🏁", "RACE"),
    "Qualifying": ("⏱️", "QUALIFYING"),
    "Sprint": ("⚡", "SPRINT RACE"),
    "Sprint Qualifying": ("⚡⏱️", "SPRINT QUALIFYING"),
    "Sprint Shootout": ("⚡⏱️", "SPRINT SHOOTOUT"),
    "Practice 1": ("🔧", "FP1"),
    "Practice 2": ("🔧", "FP2"),
    "Practice 3": ("🔧", "FP3"),
}

COUNTRY_FLAGS = {
    "Bahrain": "🇧🇭", "Saudi Arabia": "🇸🇦", "Australia": "🇦🇺", "Japan": "🇯🇵",
    "China": "🇨🇳", "United States": "🇺🇸", "USA": "🇺🇸", "Monaco": "🇲🇨",
    "Canada": "🇨🇦", "Spain": "🇪🇸", "Austria": "🇦🇹", "United Kingdom": "🇬🇧",
    "UK": "🇬🇧", "Hungary": "🇭🇺", "Belgium": "🇧🇪", "Netherlands": "🇳🇱",
    "Italy": "🇮🇹", "Singapore": "🇸🇬", "Mexico": "🇲🇽", "Brazil": "🇧🇷",
    "Qatar": "🇶🇦", "UAE": "🇦🇪", "Abu Dhabi": "🇦🇪", "Azerbaijan": "🇦🇿",
}

CATEGORY_INFO: dict[str, tuple[str, str]] = {
    "race": ("🏁", "RACE NEWS"),
    "driver": ("👤", "DRIVER NEWS"),
    "technical": ("🔧", "TECH UPDATE"),
    "calendar": ("📅", "CALENDAR"),
    "other": ("📰", "F1 NEWS"),
}


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def session_message(session: F1Session, lead: str, minutes_until: int) -> tuple[str, str]:
    emoji, name = SESSION_INFO.get(session.session_name, ("🏎️", session.session_name))
    flag = COUNTRY_FLAGS.get(session.country_name, "🏎️")
    where = f"{session.circuit_short_name} • {format_time(session.date_start)}"

    if lead == "15m":
        return f"{emoji} {name} in {minutes_until} min", f"{flag} {session.meeting_name}\n{where}"
    if lead == "1h":
        return f"{emoji} {name} in 1 hour", f"{flag} {session.meeting_name}\n{where}"
    return f"{flag} {name} Tomorrow", f"{session.meeting_name}\n{where}"


def news_message(article: NewsArticle, favorite_driver: Optional[str]) -> tuple[str, str]:
    emoji, prefix = CATEGORY_INFO.get(article.category, CATEGORY_INFO["other"])
    title = f"{emoji} {prefix}"
    if article.mentions(favorite_driver):
        title = f"{emoji} {favorite_driver.upper()} NEWS"

    body = article.title
    if article.description:
        body = f"{truncate(article.title, 80)}\n{truncate(article.description, 100)}"
    return title, body


def wants_article(prefs: NotificationPreferences, article: NewsArticle) -> bool:
    if not article.is_interesting:
        return False
    if prefs.f1_spoiler_free and article.is_spoiler:
        return False
    if article.category == "other":
        return True
    return prefs.flag(f"f1_news_{article.category}_category")


class F1SessionReminders(ReminderCategory):
    name = "f1_sessions"
    ledger_category = "f1"
    category_flag = "f1_enabled"
    noun = "F1 session reminders"

    def resolve_run_type(self, run_type: Optional[str], ctx: RunContext) -> Optional[str]:
        if run_type is not None and run_type not in SESSION_WINDOWS:
            raise InvalidRunType(f"run_type must be one of {', '.join(SESSION_WINDOWS)}")
        return run_type

    async def collect(self, ctx: RunContext) -> list[DueNotification]:
        if ctx.feeds is None:
            return []
        schedule = await ctx.feeds.get_schedule()
        if not schedule.available:
            logger.warning("F1 schedule unavailable, no session reminders this run")
            return []

        windows = [SESSION_WINDOWS[ctx.run_type]] if ctx.run_type else list(SESSION_WINDOWS.values())
        now = ctx.now()
        due = []
        for session in schedule.items:
            minutes_until = round((session.date_start - now).total_seconds() / 60)
            for window in windows:
                if not window.min_minutes <= minutes_until <= window.max_minutes:
                    continue
                title, body = session_message(session, window.lead, minutes_until)
                due.append(
                    DueNotification(
                        reference_id=str(session.session_key),
                        notification_type=f"f1_session_{window.lead}",
                        title=title,
                        body=body,
                        scope=window.lead,
                        flags=(f"f1_session_reminder_{window.lead}",),
                        data={
                            "session_key": session.session_key,
                            "session_name": session.session_name,
                            "meeting_name": session.meeting_name,
                            "deep_link": "/f1",
                        },
                    )
                )
                break
        return due


class F1NewsNotifications(ReminderCategory):
    """Up to three new articles per owner, filtered by that owner's preferences."""

    name = "f1_news"
    ledger_category = "f1"
    category_flag = "f1_enabled"
    noun = "F1 news notifications"
    claim_retention = NEWS_MAX_AGE

    async def collect(self, ctx: RunContext) -> list[DueNotification]:
        if ctx.feeds is None:
            return []
        news = await ctx.feeds.get_news()
        if not news.available or not news.items:
            return []

        cutoff = ctx.now() - NEWS_MAX_AGE
        articles = [a for a in news.items if a.published_at is None or a.published_at >= cutoff]

        owners = await device_registry.owners_with_tokens(ctx.session)
        prefs_by_owner = await load_preferences(ctx.session, owners)

        due = []
        for owner_id in owners:
            prefs = prefs_by_owner[owner_id]
            if not prefs.allows("f1_enabled", "f1_news_enabled"):
                continue

            picked = 0
            for article in articles:
                if picked >= MAX_ARTICLES_PER_OWNER:
                    break
                if not wants_article(prefs, article):
                    continue
                if await ctx.ledger.was_already_sent(
                    owner_id, self.ledger_category, "f1_news", article.id, NEWS_DEDUPE_HOURS
                ):
                    continue

                title, body = news_message(article, prefs.f1_favorite_driver)
                due.append(
                    DueNotification(
                        reference_id=article.id,
                        notification_type="f1_news",
                        title=title,
                        body=body,
                        recipients=[owner_id],
                        scope=owner_id,
                        flags=("f1_news_enabled",),
                        dedupe_hours=NEWS_DEDUPE_HOURS,
                        data={
                            "article_id": article.id,
                            "category": article.category,
                            "link": article.link,
                            "deep_link": "/f1?tab=news",
                        },
                    )
                )
                picked += 1
        return due
