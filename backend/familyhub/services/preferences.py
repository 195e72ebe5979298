from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.models.notification_preferences import NotificationPreferences, NotificationPreferencesDB


async def load_preferences(session: AsyncSession, owner_ids: Iterable[str]) -> dict[str, NotificationPreferences]:
    """Preferences for each owner; owners without a row get the defaults."""
    owner_ids = list(dict.fromkeys(owner_ids))
    if not owner_ids:
        return {}

    result = await session.execute(
        select(NotificationPreferencesDB).where(NotificationPreferencesDB.user_id.in_(owner_ids))
    )
    rows = {row.user_id: row for row in result.scalars().all()}

    prefs: dict[str, NotificationPreferences] = {}
    for owner_id in owner_ids:
        row = rows.get(owner_id)
        prefs[owner_id] = NotificationPreferences.model_validate(row) if row else NotificationPreferences.default()
    return prefs
