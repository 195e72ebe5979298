"""Routine start reminders, sent once per local day when a routine's time comes up."""
import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta

from sqlalchemy import or_, select, update

from familyhub.models.household import FamilyMember, Routine, RoutineMember, RoutineStep
from familyhub.services.reminder_scheduler import DueNotification, ReminderCategory, RunContext
from familyhub.utils.timezone import local_day_start, to_local

# Reminders go out from the scheduled time until this much later
START_WINDOW = timedelta(minutes=10)
MAX_STEP_PREVIEW = 3

ROUTINE_TYPE_INFO: dict[str, tuple[str, str]] = {
    "morning": ("☀️", "Good morning!"),
    "evening": ("🌙", "Bedtime!"),
}
DEFAULT_TYPE_INFO = ("📋", "It's time!")


def runs_on(routine: Routine, day: date) -> bool:
    # schedule_days counts from Sunday = 0
    weekday = (day.weekday() + 1) % 7
    if routine.schedule_type == "weekdays":
        return 1 <= weekday <= 5
    if routine.schedule_type == "weekends":
        return weekday in (0, 6)
    if routine.schedule_type == "custom" and routine.schedule_days:
        return weekday in routine.schedule_days
    return True


def in_start_window(routine: Routine, local_now: datetime) -> bool:
    if routine.scheduled_time is None:
        return False
    scheduled = datetime.combine(local_now.date(), routine.scheduled_time)
    return timedelta(0) <= local_now.replace(tzinfo=None) - scheduled <= START_WINDOW


def routine_message(routine: Routine, steps: list[RoutineStep], member_names: list[str]) -> tuple[str, str]:
    type_emoji, greeting = ROUTINE_TYPE_INFO.get(routine.routine_type, DEFAULT_TYPE_INFO)
    title = f"{routine.emoji or type_emoji} {greeting} {routine.title}"

    lines = []
    if member_names:
        lines.append(f"👶 Time for {' & '.join(member_names)}'s routine!")
    if steps:
        preview = " → ".join(f"{s.emoji or '•'} {s.title}" for s in steps[:MAX_STEP_PREVIEW])
        if len(steps) > MAX_STEP_PREVIEW:
            preview += f" +{len(steps) - MAX_STEP_PREVIEW} more"
        lines.append(preview)
    if routine.points_reward > 0:
        lines.append(f"⭐ {routine.points_reward} stars on completion!")
    return title, "\n".join(lines)


class RoutineReminders(ReminderCategory):
    name = "routines"
    ledger_category = "routines"
    category_flag = "routines_enabled"
    noun = "routine reminders"

    async def collect(self, ctx: RunContext) -> list[DueNotification]:
        now = ctx.now()
        local_now = to_local(now)
        day_start = local_day_start(now)

        stmt = select(Routine).where(Routine.reminder_enabled.is_(True), Routine.scheduled_time.is_not(None))
        routines = [
            routine
            for routine in (await ctx.session.execute(stmt)).scalars().all()
            if runs_on(routine, local_now.date())
            and in_start_window(routine, local_now)
            and (routine.last_reminder_sent is None or routine.last_reminder_sent < day_start)
        ]
        if not routines:
            return []

        ids = [routine.id for routine in routines]
        steps_by_routine: dict[uuid.UUID, list[RoutineStep]] = defaultdict(list)
        steps = await ctx.session.execute(
            select(RoutineStep).where(RoutineStep.routine_id.in_(ids)).order_by(RoutineStep.sort_order)
        )
        for step in steps.scalars().all():
            steps_by_routine[step.routine_id].append(step)

        names_by_routine: dict[uuid.UUID, list[str]] = defaultdict(list)
        members = await ctx.session.execute(
            select(RoutineMember.routine_id, FamilyMember.name)
            .join(FamilyMember, FamilyMember.id == RoutineMember.member_id)
            .where(RoutineMember.routine_id.in_(ids))
            .order_by(FamilyMember.name)
        )
        for routine_id, member_name in members.all():
            names_by_routine[routine_id].append(member_name)

        due = []
        for routine in routines:
            title, body = routine_message(routine, steps_by_routine[routine.id], names_by_routine[routine.id])
            due.append(
                DueNotification(
                    reference_id=str(routine.id),
                    notification_type="routine_reminder",
                    title=title,
                    body=body,
                    recipients=[routine.user_id],
                    flags=("routine_start_reminder",),
                    data={
                        "routine_id": str(routine.id),
                        "routine_title": routine.title,
                        "routine_type": routine.routine_type,
                        "deep_link": "/routines",
                    },
                )
            )
        return due

    async def claim(self, ctx: RunContext, item: DueNotification) -> bool:
        now = ctx.now()
        result = await ctx.session.execute(
            update(Routine)
            .where(
                Routine.id == uuid.UUID(item.reference_id),
                or_(Routine.last_reminder_sent.is_(None), Routine.last_reminder_sent < local_day_start(now)),
            )
            .values(last_reminder_sent=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release(self, ctx: RunContext, item: DueNotification) -> None:
        await ctx.session.execute(
            update(Routine)
            .where(Routine.id == uuid.UUID(item.reference_id))
            .values(last_reminder_sent=None)
            .execution_options(synchronize_session=False)
        )
