from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy import select

from conftest import FakeClock, stub_dispatcher
from familyhub.models.household import (
    Contact,
    FamilyMember,
    Routine,
    RoutineMember,
    RoutineStep,
    Task,
    TaskCategory,
    TaskReminder,
)
from familyhub.models.notification_preferences import NotificationPreferencesDB
from familyhub.services.push_dispatcher import DeliveryResult
from familyhub.services.reminders import run_trigger
from familyhub.services.reminders.birthdays import birthday_in, birthday_message
from familyhub.services.reminders.routines import runs_on, routine_message
from familyhub.services.reminders.tasks import task_message


def _payloads(dispatcher):
    return [call.args[2] for call in dispatcher.send_to_owner.await_args_list]


async def _routine(session, **fields) -> Routine:
    fields.setdefault("title", "Morning routine")
    routine = Routine(user_id="owner-1", routine_type="morning", **fields)
    session.add(routine)
    await session.commit()
    return routine


async def _last_reminder_sent(session, routine: Routine):
    return await session.scalar(select(Routine.last_reminder_sent).where(Routine.id == routine.id))


async def _reminder_row(session, reminder: TaskReminder):
    result = await session.execute(
        select(TaskReminder.status, TaskReminder.sent_at, TaskReminder.error_message).where(
            TaskReminder.id == reminder.id
        )
    )
    return result.one()


def test_runs_on_schedule_types():
    tuesday, saturday = date(2026, 3, 10), date(2026, 3, 14)
    assert runs_on(Routine(schedule_type="daily"), saturday)
    assert runs_on(Routine(schedule_type="weekdays"), tuesday)
    assert not runs_on(Routine(schedule_type="weekdays"), saturday)
    assert runs_on(Routine(schedule_type="weekends"), saturday)
    # Sunday = 0, so Tuesday is 2
    assert runs_on(Routine(schedule_type="custom", schedule_days=[2, 4]), tuesday)
    assert not runs_on(Routine(schedule_type="custom", schedule_days=[0, 6]), tuesday)


def test_routine_message_previews_steps():
    routine = Routine(title="Bedtime", routine_type="evening", emoji=None, points_reward=5)
    steps = [RoutineStep(title=t, emoji=e) for t, e in [("Bath", "🛁"), ("Teeth", "🪥"), ("Pyjamas", None), ("Story", "📖")]]

    title, body = routine_message(routine, steps, ["Ada", "Bo"])

    assert title == "🌙 Bedtime! Bedtime"
    assert body.split("\n") == [
        "👶 Time for Ada & Bo's routine!",
        "🛁 Bath → 🪥 Teeth → • Pyjamas +1 more",
        "⭐ 5 stars on completion!",
    ]


@pytest.mark.asyncio
async def test_routine_reminded_once_per_day(session, dispatcher):
    clock = FakeClock(datetime(2026, 3, 10, 9, 0))
    routine = await _routine(session, scheduled_time=time(9, 55), points_reward=3)
    member = FamilyMember(user_id="owner-1", name="Ada")
    session.add(member)
    await session.flush()
    session.add_all(
        [
            RoutineMember(routine_id=routine.id, member_id=member.id),
            RoutineStep(routine_id=routine.id, title="Brush teeth", emoji="🪥", sort_order=1),
            RoutineStep(routine_id=routine.id, title="Get dressed", emoji="👕", sort_order=0),
        ]
    )
    await _routine(session, title="Too early", scheduled_time=time(9, 0))
    await _routine(session, title="Weekend only", scheduled_time=time(9, 55), schedule_type="weekends")
    await _routine(session, title="Muted", scheduled_time=time(9, 55), reminder_enabled=False)

    summary = await run_trigger("routines", session, dispatcher, clock=clock)

    assert summary.count == 1
    assert summary.message == "Sent 1 routine reminders"
    payload = _payloads(dispatcher)[0]
    assert payload.title == "☀️ Good morning! Morning routine"
    assert payload.body == "👶 Time for Ada's routine!\n👕 Get dressed → 🪥 Brush teeth\n⭐ 3 stars on completion!"
    assert payload.data["routine_id"] == str(routine.id)
    assert await _last_reminder_sent(session, routine) == clock.now

    clock.advance(minutes=5)
    again = await run_trigger("routines", session, dispatcher, clock=clock)
    assert again.message == "No due routine reminders"

    clock.advance(days=1, minutes=-5)
    tomorrow = await run_trigger("routines", session, dispatcher, clock=clock)
    assert tomorrow.count == 1
    assert dispatcher.send_to_owner.await_count == 2


@pytest.mark.asyncio
async def test_undelivered_routine_reminder_is_retried(session):
    clock = FakeClock(datetime(2026, 3, 10, 9, 0))
    routine = await _routine(session, scheduled_time=time(9, 55))
    offline = stub_dispatcher(sent=0, total=1, failures=[DeliveryResult("tok", False, 500, "InternalServerError")])

    summary = await run_trigger("routines", session, offline, clock=clock)

    assert summary.count == 0
    assert summary.results[0]["status"] == "not_delivered"
    assert await _last_reminder_sent(session, routine) is None

    clock.advance(minutes=5)
    retried = await run_trigger("routines", session, stub_dispatcher(), clock=clock)
    assert retried.count == 1


@pytest.mark.asyncio
async def test_routine_start_reminder_preference(session, dispatcher, clock):
    await _routine(session, scheduled_time=time(9, 55))
    session.add(NotificationPreferencesDB(user_id="owner-1", routine_start_reminder=False))
    await session.commit()

    summary = await run_trigger("routines", session, dispatcher, clock=clock)

    assert summary.skipped == 1
    dispatcher.send_to_owner.assert_not_awaited()


def test_task_message_escalates_with_attempts():
    task = Task(title="Call the plumber", urgency="urgent")

    assert task_message(task, TaskReminder(attempt_number=1, context_reason="Before the weekend"), "🔧") == (
        "🚨 🔧 Before the weekend",
        "Call the plumber",
    )
    assert task_message(task, TaskReminder(attempt_number=2), None, "Bo") == (
        "🚨 Still pending...",
        "Bo: Don't forget: Call the plumber",
    )
    assert task_message(Task(title="Water plants", urgency="normal"), TaskReminder(attempt_number=3)) == (
        "Final reminder!",
        "Water plants - Tap to mark done or snooze",
    )



async def _task_reminder(session, clock, title="Take out recycling", status="pending", due_in_minutes=-5, **task_fields):
    task = Task(user_id="owner-1", title=title, status=status, **task_fields)
    session.add(task)
    await session.flush()
    reminder = TaskReminder(
        task_id=task.id,
        user_id="owner-1",
        scheduled_for=clock.now + timedelta(minutes=due_in_minutes),
        context_reason="Before dinner",
    )
    session.add(reminder)
    await session.commit()
    return reminder


@pytest.mark.asyncio
async def test_due_task_reminders_are_sent_once(session, dispatcher, clock):
    category = TaskCategory(name="Home", emoji="🏠")
    member = FamilyMember(user_id="owner-1", name="Ada")
    session.add_all([category, member])
    await session.flush()
    due = await _task_reminder(session, clock, urgency="high", category_id=category.id, assignee_id=member.id)
    done = await _task_reminder(session, clock, title="Buy stamps", status="completed")
    later = await _task_reminder(session, clock, title="Book dentist", due_in_minutes=30)

    summary = await run_trigger("tasks", session, dispatcher, clock=clock)

    assert summary.count == 1
    payload = _payloads(dispatcher)[0]
    assert payload.title == "⚠️ 🏠 Before dinner"
    assert payload.body == "Ada: Take out recycling"
    assert payload.data["reminder_id"] == str(due.id)
    assert payload.data["deep_link"] == f"/tasks?highlight={due.task_id}"
    assert await _reminder_row(session, due) == ("sent", clock.now, None)
    assert (await _reminder_row(session, done)).status == "skipped"
    assert (await _reminder_row(session, later)).status == "pending"

    again = await run_trigger("tasks", session, dispatcher, clock=clock)
    assert again.message == "No due task reminders"
    assert dispatcher.send_to_owner.await_count == 1


@pytest.mark.asyncio
async def test_undelivered_task_reminder_is_marked_failed(session, clock):
    reminder = await _task_reminder(session, clock)
    offline = stub_dispatcher(sent=0, total=1, failures=[DeliveryResult("tok", False, 410, "Unregistered")])

    summary = await run_trigger("tasks", session, offline, clock=clock)

    assert summary.results[0]["status"] == "not_delivered"
    assert await _reminder_row(session, reminder) == ("failed", None, "Not delivered to any device")


@pytest.mark.asyncio
async def test_task_reminders_muted_by_preference_are_skipped(session, dispatcher, clock):
    reminder = await _task_reminder(session, clock)
    session.add(NotificationPreferencesDB(user_id="owner-1", tasks_enabled=False))
    await session.commit()

    summary = await run_trigger("tasks", session, dispatcher, clock=clock)

    assert summary.skipped == 1
    assert (await _reminder_row(session, reminder)).status == "skipped"
    dispatcher.send_to_owner.assert_not_awaited()


def test_birthday_in_handles_leap_days():
    assert birthday_in(date(2020, 2, 29), 2026) == date(2026, 2, 28)
    assert birthday_in(date(2020, 2, 29), 2028) == date(2028, 2, 29)
    assert birthday_in(date(1990, 7, 4), 2026) == date(2026, 7, 4)


def test_birthday_message_variants():
    assert birthday_message("Ada", upcoming=False) == (
        "🎂 Ada's birthday is today!",
        "Don't forget to wish them a happy birthday!",
    )
    assert birthday_message("Ada", upcoming=True)[0] == "🎂 Ada's birthday in 3 days!"


@pytest.mark.asyncio
async def test_birthdays_today_and_upcoming(session, dispatcher, clock):
    session.add_all(
        [
            FamilyMember(user_id="owner-1", name="Ada", birthday=date(2016, 3, 10)),
            Contact(user_id="owner-1", name="Johanna Berg", display_name="Mormor", birthday=date(1900, 3, 13)),
            Contact(user_id="owner-2", name="Bo", birthday=date(1985, 3, 11)),
        ]
    )
    await session.commit()

    summary = await run_trigger("birthdays", session, dispatcher, clock=clock)

    assert summary.count == 2
    by_title = {p.title: p for p in _payloads(dispatcher)}
    assert set(by_title) == {"🎂 Ada's birthday is today!", "🎂 Mormor's birthday in 3 days!"}
    assert by_title["🎂 Ada's birthday is today!"].data["age"] == 10
    upcoming = by_title["🎂 Mormor's birthday in 3 days!"].data
    assert upcoming["age"] is None
    assert upcoming["birthday"] == "2026-03-13"
    assert upcoming["person_type"] == "contact"

    again = await run_trigger("birthdays", session, dispatcher, clock=clock)
    assert again.count == 0
    assert again.skipped == 2


@pytest.mark.asyncio
async def test_birthdays_follow_family_preference(session, dispatcher, clock):
    session.add(FamilyMember(user_id="owner-1", name="Ada", birthday=date(2016, 3, 10)))
    session.add(NotificationPreferencesDB(user_id="owner-1", family_enabled=False))
    await session.commit()

    summary = await run_trigger("birthdays", session, dispatcher, clock=clock)

    assert summary.skipped == 1
    dispatcher.send_to_owner.assert_not_awaited()
