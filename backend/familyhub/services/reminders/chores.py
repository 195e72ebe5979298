from collections import defaultdict

from sqlalchemy import or_, select

from familyhub.models.household import Chore
from familyhub.services.reminder_scheduler import DueNotification, ReminderCategory, RunContext
from familyhub.utils.timezone import to_local


def chore_digest(titles: list[str]) -> tuple[str, str]:
    count = len(titles)
    title = f"{count} chore{'s' if count > 1 else ''} for today"
    body = ", ".join(titles[:3])
    if count > 3:
        body += f" +{count - 3} more"
    return title, body


class ChoreReminders(ReminderCategory):
    """One daily digest per owner of pending chores due today or undated."""

    name = "chores"
    ledger_category = "chores"
    category_flag = "chores_enabled"
    noun = "chore reminders"

    async def collect(self, ctx: RunContext) -> list[DueNotification]:
        today = to_local(ctx.now()).date()
        stmt = (
            select(Chore)
            .where(
                Chore.status == "pending",
                or_(Chore.due_date == today, Chore.due_date.is_(None)),
            )
            .order_by(Chore.user_id, Chore.title)
        )
        chores = (await ctx.session.execute(stmt)).scalars().all()

        by_owner: dict[str, list[str]] = defaultdict(list)
        for chore in chores:
            by_owner[chore.user_id].append(chore.title)

        due = []
        for owner_id, titles in by_owner.items():
            title, body = chore_digest(titles)
            due.append(
                DueNotification(
                    reference_id=f"{owner_id}:{today.isoformat()}",
                    notification_type="chore_reminder",
                    title=title,
                    body=body,
                    recipients=[owner_id],
                    flags=("chores_reminder",),
                    data={"chore_count": len(titles), "deep_link": "/tasks"},
                )
            )
        return due
