from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from familyhub.core.db import Base
from familyhub.utils.timezone import utcnow


class NotificationPreferences(BaseModel):
    """Typed preference record. Field defaults are the documented per-category
    defaults applied when an owner has no preference row."""

    model_config = ConfigDict(from_attributes=True)

    master_enabled: bool = True

    # Bins
    bins_enabled: bool = True
    bin_reminder_evening: bool = True
    bin_reminder_morning: bool = False

    # Calendar
    calendar_enabled: bool = True
    calendar_event_created: bool = True
    calendar_event_changed: bool = True
    calendar_event_deleted: bool = True
    calendar_notify_own_changes: bool = True
    calendar_reminder_15m: bool = True
    calendar_reminder_30m: bool = False
    calendar_reminder_1h: bool = True
    calendar_reminder_1d: bool = False

    # Routines
    routines_enabled: bool = True
    routine_start_reminder: bool = True

    # Chores
    chores_enabled: bool = True
    chores_reminder: bool = True

    # Tasks
    tasks_enabled: bool = True

    # Family
    family_enabled: bool = True
    birthday_reminder: bool = True

    # Shopping
    shopping_enabled: bool = True
    shopping_list_changes: bool = True
    shopping_notify_own_changes: bool = True

    # F1 (opt-in)
    f1_enabled: bool = False
    f1_session_reminder_15m: bool = True
    f1_session_reminder_1h: bool = True
    f1_session_reminder_1d: bool = False
    f1_news_enabled: bool = True
    f1_news_race_category: bool = True
    f1_news_driver_category: bool = True
    f1_news_technical_category: bool = False
    f1_news_calendar_category: bool = True
    f1_race_results: bool = True
    f1_quali_results: bool = False
    f1_sprint_results: bool = False
    f1_championship_updates: bool = True
    f1_spoiler_free: bool = False
    f1_favorite_driver: Optional[str] = None
    f1_favorite_podium: bool = True
    f1_favorite_win: bool = True
    f1_favorite_pole: bool = True

    @classmethod
    def default(cls) -> "NotificationPreferences":
        return cls()

    def flag(self, name: str) -> bool:
        if name not in type(self).model_fields:
            raise KeyError(f"Unknown preference flag: {name}")
        return bool(getattr(self, name))

    def allows(self, category_flag: str, subtype_flag: Optional[str] = None) -> bool:
        if not self.master_enabled:
            return False
        if not self.flag(category_flag):
            return False
        return subtype_flag is None or self.flag(subtype_flag)


_DEFAULTS = NotificationPreferences.default()


def _flag_column(name: str) -> Mapped[bool]:
    return mapped_column(Boolean, nullable=False, default=getattr(_DEFAULTS, name))


class NotificationPreferencesDB(Base):
    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)

    master_enabled: Mapped[bool] = _flag_column("master_enabled")

    bins_enabled: Mapped[bool] = _flag_column("bins_enabled")
    bin_reminder_evening: Mapped[bool] = _flag_column("bin_reminder_evening")
    bin_reminder_morning: Mapped[bool] = _flag_column("bin_reminder_morning")

    calendar_enabled: Mapped[bool] = _flag_column("calendar_enabled")
    calendar_event_created: Mapped[bool] = _flag_column("calendar_event_created")
    calendar_event_changed: Mapped[bool] = _flag_column("calendar_event_changed")
    calendar_event_deleted: Mapped[bool] = _flag_column("calendar_event_deleted")
    calendar_notify_own_changes: Mapped[bool] = _flag_column("calendar_notify_own_changes")
    calendar_reminder_15m: Mapped[bool] = _flag_column("calendar_reminder_15m")
    calendar_reminder_30m: Mapped[bool] = _flag_column("calendar_reminder_30m")
    calendar_reminder_1h: Mapped[bool] = _flag_column("calendar_reminder_1h")
    calendar_reminder_1d: Mapped[bool] = _flag_column("calendar_reminder_1d")

    routines_enabled: Mapped[bool] = _flag_column("routines_enabled")
    routine_start_reminder: Mapped[bool] = _flag_column("routine_start_reminder")

    chores_enabled: Mapped[bool] = _flag_column("chores_enabled")
    chores_reminder: Mapped[bool] = _flag_column("chores_reminder")

    tasks_enabled: Mapped[bool] = _flag_column("tasks_enabled")

    family_enabled: Mapped[bool] = _flag_column("family_enabled")
    birthday_reminder: Mapped[bool] = _flag_column("birthday_reminder")

    shopping_enabled: Mapped[bool] = _flag_column("shopping_enabled")
    shopping_list_changes: Mapped[bool] = _flag_column("shopping_list_changes")
    shopping_notify_own_changes: Mapped[bool] = _flag_column("shopping_notify_own_changes")

    f1_enabled: Mapped[bool] = _flag_column("f1_enabled")
    f1_session_reminder_15m: Mapped[bool] = _flag_column("f1_session_reminder_15m")
    f1_session_reminder_1h: Mapped[bool] = _flag_column("f1_session_reminder_1h")
    f1_session_reminder_1d: Mapped[bool] = _flag_column("f1_session_reminder_1d")
    f1_news_enabled: Mapped[bool] = _flag_column("f1_news_enabled")
    f1_news_race_category: Mapped[bool] = _flag_column("f1_news_race_category")
    f1_news_driver_category: Mapped[bool] = _flag_column("f1_news_driver_category")
    f1_news_technical_category: Mapped[bool] = _flag_column("f1_news_technical_category")
    f1_news_calendar_category: Mapped[bool] = _flag_column("f1_news_calendar_category")
    f1_race_results: Mapped[bool] = _flag_column("f1_race_results")
    f1_quali_results: Mapped[bool] = _flag_column("f1_quali_results")
    f1_sprint_results: Mapped[bool] = _flag_column("f1_sprint_results")
    f1_championship_updates: Mapped[bool] = _flag_column("f1_championship_updates")
    f1_spoiler_free: Mapped[bool] = _flag_column("f1_spoiler_free")
    f1_favorite_driver: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    f1_favorite_podium: Mapped[bool] = _flag_column("f1_favorite_podium")
    f1_favorite_win: Mapped[bool] = _flag_column("f1_favorite_win")
    f1_favorite_pole: Mapped[bool] = _flag_column("f1_favorite_pole")

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
