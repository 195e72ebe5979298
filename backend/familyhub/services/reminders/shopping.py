"""Debounced shopping list change notifications.

Changes are batched: a run only announces changes that are 10-20 minutes
old, and only once the list has been quiet for 10 minutes. Anything older
than 20 minutes has either been announced or missed and is deleted.
"""
import hashlib
import logging
from datetime import timedelta

from sqlalchemy import delete, select

from familyhub.models.household import ShoppingListChange
from familyhub.services.reminder_scheduler import DueNotification, ReminderCategory, RunContext

logger = logging.getLogger(__name__)

QUIET_PERIOD = timedelta(minutes=10)
RETENTION = timedelta(minutes=20)
MAX_LISTED_ITEMS = 3


def describe_changes(changes: list[ShoppingListChange]) -> str:
    parts = []
    for action, label in (("added", "Added"), ("completed", "Completed"), ("removed", "Removed")):
        names = [c.item_name for c in changes if c.action == action]
        if not names:
            continue
        if len(names) <= MAX_LISTED_ITEMS:
            parts.append(f"{label}: {', '.join(names)}")
        else:
            parts.append(f"{label} {len(names)} items")
    if parts:
        return "\n".join(parts)
    return f"{len(changes)} change{'s' if len(changes) > 1 else ''}"


def batch_id(changes: list[ShoppingListChange]) -> str:
    ids = ",".join(sorted(str(c.id) for c in changes))
    return hashlib.sha1(ids.encode("utf-8")).hexdigest()[:16]


class ShoppingListChanges(ReminderCategory):
    name = "shopping"
    ledger_category = "shopping"
    category_flag = "shopping_enabled"
    noun = "shopping list notifications"

    async def collect(self, ctx: RunContext) -> list[DueNotification]:
        now = ctx.now()
        quiet_since = now - QUIET_PERIOD
        oldest = now - RETENTION

        stmt = (
            select(ShoppingListChange)
            .where(ShoppingListChange.created_at >= oldest)
            .order_by(ShoppingListChange.created_at.desc())
        )
        recent = list((await ctx.session.execute(stmt)).scalars().all())
        if not recent:
            return []

        if recent[0].created_at > quiet_since:
            logger.info("Shopping list still being edited, waiting for it to settle")
            return []

        batch = [c for c in recent if oldest < c.created_at <= quiet_since]
        if not batch:
            return []

        return [
            DueNotification(
                reference_id=batch_id(batch),
                notification_type="shopping_list_changes",
                title="🛒 Shopping List Updated",
                body=describe_changes(batch),
                flags=("shopping_list_changes",),
                actor_ids=frozenset(c.user_id for c in batch),
                own_changes_flag="shopping_notify_own_changes",
                data={"change_count": len(batch), "deep_link": "/shopping"},
            )
        ]

    async def after_run(self, ctx: RunContext) -> None:
        result = await ctx.session.execute(
            delete(ShoppingListChange).where(ShoppingListChange.created_at < ctx.now() - RETENTION)
        )
        if result.rowcount:
            logger.debug(f"Deleted {result.rowcount} old shopping list change(s)")
