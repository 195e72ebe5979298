"""Delivery of task reminders scheduled by the task planner.

Each reminder row is delivered at most once: it moves from ``pending`` to
``sent``, ``failed`` or ``skipped`` and the planner schedules the next attempt
itself.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select, update

from familyhub.models.household import FamilyMember, Task, TaskCategory, TaskReminder
from familyhub.services.reminder_scheduler import DueNotification, ReminderCategory, RunContext

logger = logging.getLogger(__name__)

MAX_REMINDERS_PER_RUN = 100
ACTIVE_TASK_STATUSES = ("pending", "snoozed")
URGENCY_PREFIX = {"urgent": "🚨", "high": "⚠️"}


def task_message(
    task: Task,
    reminder: TaskReminder,
    category_emoji: Optional[str] = None,
    assignee_name: Optional[str] = None,
) -> tuple[str, str]:
    if reminder.attempt_number >= 3:
        title, body = "Final reminder!", f"{task.title} - Tap to mark done or snooze"
    elif reminder.attempt_number == 2:
        title, body = "Still pending...", f"Don't forget: {task.title}"
    else:
        title = reminder.context_reason or "Task Reminder"
        if category_emoji:
            title = f"{category_emoji} {title}"
        body = task.title

    if assignee_name:
        body = f"{assignee_name}: {body}"
    prefix = URGENCY_PREFIX.get(task.urgency)
    if prefix:
        title = f"{prefix} {title}"
    return title, body


def _reminder_id(item: DueNotification) -> uuid.UUID:
    return uuid.UUID(item.reference_id)


class TaskReminders(ReminderCategory):
    name = "tasks"
    ledger_category = "tasks"
    category_flag = "tasks_enabled"
    noun = "task reminders"

    async def collect(self, ctx: RunContext) -> list[DueNotification]:
        stmt = (
            select(TaskReminder, Task, TaskCategory.emoji, FamilyMember.name)
            .join(Task, Task.id == TaskReminder.task_id)
            .outerjoin(TaskCategory, TaskCategory.id == Task.category_id)
            .outerjoin(FamilyMember, FamilyMember.id == Task.assignee_id)
            .where(TaskReminder.status == "pending", TaskReminder.scheduled_for <= ctx.now())
            .order_by(TaskReminder.scheduled_for)
            .limit(MAX_REMINDERS_PER_RUN)
        )
        rows = (await ctx.session.execute(stmt)).all()

        stale = [reminder.id for reminder, task, _, _ in rows if task.status not in ACTIVE_TASK_STATUSES]
        if stale:
            await ctx.session.execute(
                update(TaskReminder)
                .where(TaskReminder.id.in_(stale))
                .values(status="skipped")
                .execution_options(synchronize_session=False)
            )
            logger.info(f"Skipped {len(stale)} reminders for tasks that are no longer active")

        due = []
        for reminder, task, category_emoji, assignee_name in rows:
            if task.status not in ACTIVE_TASK_STATUSES:
                continue
            title, body = task_message(task, reminder, category_emoji, assignee_name)
            due.append(
                DueNotification(
                    reference_id=str(reminder.id),
                    notification_type="task_reminder",
                    title=title,
                    body=body,
                    recipients=[reminder.user_id],
                    data={
                        "task_id": str(task.id),
                        "reminder_id": str(reminder.id),
                        "attempt": reminder.attempt_number,
                        "deep_link": f"/tasks?highlight={task.id}",
                    },
                )
            )
        return due

    async def claim(self, ctx: RunContext, item: DueNotification) -> bool:
        result = await ctx.session.execute(
            update(TaskReminder)
            .where(TaskReminder.id == _reminder_id(item), TaskReminder.status == "pending")
            .values(status="sent", sent_at=ctx.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release(self, ctx: RunContext, item: DueNotification) -> None:
        await ctx.session.execute(
            update(TaskReminder)
            .where(TaskReminder.id == _reminder_id(item))
            .values(status="failed", sent_at=None, error_message="Not delivered to any device")
            .execution_options(synchronize_session=False)
        )

    async def skipped(self, ctx: RunContext, item: DueNotification) -> None:
        await ctx.session.execute(
            update(TaskReminder)
            .where(TaskReminder.id == _reminder_id(item), TaskReminder.status == "pending")
            .values(status="skipped")
            .execution_options(synchronize_session=False)
        )
