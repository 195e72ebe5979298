import json
from datetime import timedelta

import httpx
import pytest
import respx
from sqlalchemy import select

from conftest import stub_dispatcher
from familyhub.models.calendar_event import CalendarEvent
from familyhub.models.notification_log import NotificationLogEntry
from familyhub.models.notification_preferences import NotificationPreferencesDB
from familyhub.services import device_registry
from familyhub.services.push_dispatcher import DeliveryResult, DispatchSummary, PushDispatcher
from familyhub.services.reminder_scheduler import InvalidRunType, ReminderScheduler, RunContext
from familyhub.services.reminders.calendar import CalendarReminders, event_emoji, reminder_message

OWNER = "owner-1"


async def _event(session, clock, minutes: int, **overrides) -> CalendarEvent:
    event = CalendarEvent(
        user_id=OWNER,
        title=overrides.pop("title", "Dentist"),
        start_time=clock() + timedelta(minutes=minutes),
        **overrides,
    )
    session.add(event)
    await session.commit()
    return event


async def _ledger(session) -> list[NotificationLogEntry]:
    return list((await session.execute(select(NotificationLogEntry))).scalars().all())


@pytest.mark.asyncio
async def test_due_event_dispatched_once_and_marked(session, clock, dispatcher):
    event = await _event(session, clock, 16)
    scheduler = ReminderScheduler(session, dispatcher, clock=clock)

    summary = await scheduler.run(CalendarReminders())

    assert summary.count == 1
    assert dispatcher.send_to_owner.await_count == 1
    _, owner_id, payload = dispatcher.send_to_owner.await_args.args
    assert owner_id == OWNER
    assert payload.title == "🏥 Dentist in 16 min!"
    assert payload.data["type"] == "event_reminder_15m"
    assert payload.data["event_id"] == str(event.id)

    await session.refresh(event)
    assert event.reminder_15m_sent == clock()
    entries = await _ledger(session)
    assert len(entries) == 1
    assert entries[0].status == "sent"
    assert entries[0].reference_id == str(event.id)


@pytest.mark.asyncio
async def test_second_run_does_not_resend(session, clock, dispatcher):
    await _event(session, clock, 16)
    scheduler = ReminderScheduler(session, dispatcher, clock=clock)

    await scheduler.run(CalendarReminders())
    clock.advance(minutes=1)
    summary = await scheduler.run(CalendarReminders())

    assert summary.count == 0
    assert summary.message == "No due event reminders"
    assert dispatcher.send_to_owner.await_count == 1


@pytest.mark.asyncio
async def test_marker_already_set_means_no_dispatch(session, clock, dispatcher):
    await _event(session, clock, 16, reminder_15m_sent=clock() - timedelta(minutes=5))
    summary = await ReminderScheduler(session, dispatcher, clock=clock).run(CalendarReminders())

    assert summary.count == 0
    dispatcher.send_to_owner.assert_not_awaited()


@pytest.mark.asyncio
async def test_master_switch_off_blocks_dispatch(session, clock, dispatcher):
    event = await _event(session, clock, 16)
    session.add(NotificationPreferencesDB(user_id=OWNER, master_enabled=False))
    await session.commit()

    summary = await ReminderScheduler(session, dispatcher, clock=clock).run(CalendarReminders())

    dispatcher.send_to_owner.assert_not_awaited()
    assert summary.skipped == 1
    await session.refresh(event)
    # Left unclaimed; nothing was sent
    assert event.reminder_15m_sent is None
    assert await _ledger(session) == []


@pytest.mark.asyncio
async def test_lead_time_preference_is_respected(session, clock, dispatcher):
    # 1d reminders are off by default
    await _event(session, clock, 24 * 60)
    summary = await ReminderScheduler(session, dispatcher, clock=clock).run(CalendarReminders(), "1d")
    assert summary.count == 0
    dispatcher.send_to_owner.assert_not_awaited()

    session.add(NotificationPreferencesDB(user_id=OWNER, calendar_reminder_1d=True))
    await session.commit()
    summary = await ReminderScheduler(session, dispatcher, clock=clock).run(CalendarReminders(), "1d")
    assert summary.count == 1
    assert summary.run_type == "1d"


@pytest.mark.asyncio
async def test_all_day_events_are_ignored(session, clock, dispatcher):
    await _event(session, clock, 16, all_day=True)
    summary = await ReminderScheduler(session, dispatcher, clock=clock).run(CalendarReminders())
    assert summary.attempted == 0


@pytest.mark.asyncio
async def test_failed_delivery_releases_claim(session, clock):
    event = await _event(session, clock, 16)
    failing = stub_dispatcher(
        sent=0, total=1, failures=[DeliveryResult(device_token="tok", success=False, status_code=400, reason="BadDeviceToken")]
    )

    summary = await ReminderScheduler(session, failing, clock=clock).run(CalendarReminders())

    assert summary.count == 0
    assert summary.failed == 1
    await session.refresh(event)
    assert event.reminder_15m_sent is None
    entries = await _ledger(session)
    assert entries[0].status == "failed"
    assert entries[0].error_message == "BadDeviceToken"

    # Next run retries while the event is still in the window
    ok = stub_dispatcher()
    clock.advance(minutes=1)
    summary = await ReminderScheduler(session, ok, clock=clock).run(CalendarReminders())
    assert summary.count == 1


@pytest.mark.asyncio
async def test_owner_without_devices_is_not_logged(session, clock):
    event = await _event(session, clock, 16)
    no_devices = stub_dispatcher(sent=0, total=0)

    await ReminderScheduler(session, no_devices, clock=clock).run(CalendarReminders())

    assert await _ledger(session) == []
    await session.refresh(event)
    assert event.reminder_15m_sent is None


@pytest.mark.asyncio
async def test_claim_is_compare_and_set(session, clock, dispatcher):
    await _event(session, clock, 16)
    category = CalendarReminders()
    scheduler = ReminderScheduler(session, dispatcher, clock=clock)
    ctx = RunContext(session=session, dispatcher=dispatcher, ledger=scheduler.ledger, clock=clock)
    items = await category.collect(ctx)
    assert len(items) == 1

    assert await category.claim(ctx, items[0]) is True
    assert await category.claim(ctx, items[0]) is False


@pytest.mark.asyncio
async def test_unconfigured_gateway_reports_and_sends_nothing(session, clock):
    await _event(session, clock, 16)
    unconfigured = stub_dispatcher()
    unconfigured.is_configured = False

    summary = await ReminderScheduler(session, unconfigured, clock=clock).run(CalendarReminders())

    assert summary.message == "apns_not_configured"
    unconfigured.send_to_owner.assert_not_awaited()


@pytest.mark.asyncio
async def test_invalid_run_type(session, clock, dispatcher):
    with pytest.raises(InvalidRunType):
        await ReminderScheduler(session, dispatcher, clock=clock).run(CalendarReminders(), "2h")


def test_event_emoji_keywords():
    assert event_emoji("Emma's birthday") == "🎂"
    assert event_emoji("Fodbold træning") == "⚽"
    assert event_emoji("Something else") == "📌"


def test_reminder_message_formats(clock):
    event = CalendarEvent(
        user_id=OWNER, title="Team meeting", start_time=clock() + timedelta(hours=1), location="Office"
    )
    title, body = reminder_message(event, "1h", 60)
    assert title == "📅 Team meeting in 1 hour"
    # 10:00 UTC is 11:00 in Copenhagen in March
    assert body == "🕐 11:00 at Office"

    title, body = reminder_message(event, "1d", 1440)
    assert title == "📅 Tomorrow: Team meeting"
    assert body == "📅 Tue 10 Mar at 11:00\n📍 Office"


@pytest.mark.asyncio
async def test_item_that_raises_does_not_stop_the_batch(session, clock):
    first = await _event(session, clock, 16, title="Dentist")
    second = await _event(session, clock, 17, title="Swimming")
    dispatcher = stub_dispatcher()
    delivered = DispatchSummary(owner_id=OWNER, sent=1, total=1)
    dispatcher.send_to_owner.side_effect = [RuntimeError("gateway exploded"), delivered]

    summary = await ReminderScheduler(session, dispatcher, clock=clock).run(CalendarReminders())

    assert summary.attempted == 2
    assert summary.count == 1
    assert [r["status"] for r in summary.results] == ["error", "sent"]
    assert summary.results[0]["error"] == "gateway exploded"

    await session.refresh(first)
    await session.refresh(second)
    # The failed item stays unclaimed for the next run
    assert first.reminder_15m_sent is None
    assert second.reminder_15m_sent == clock()
    entries = await _ledger(session)
    assert [e.reference_id for e in entries] == [str(second.id)]


@pytest.mark.asyncio
@respx.mock
async def test_reminder_reaches_apns_end_to_end(session, clock, push_config):
    device = "e2e-device-token"
    route = respx.post(f"https://api.sandbox.push.apple.com/3/device/{device}").mock(
        return_value=httpx.Response(200)
    )
    await device_registry.register_device(session, OWNER, device)
    event = await _event(session, clock, 16)
    dispatcher = PushDispatcher(push_config, client=httpx.AsyncClient(), clock=clock)
    scheduler = ReminderScheduler(session, dispatcher, clock=clock)

    summary = await scheduler.run(CalendarReminders())
    clock.advance(minutes=1)
    again = await scheduler.run(CalendarReminders())

    assert summary.count == 1
    assert summary.sent == 1
    assert again.count == 0
    assert route.call_count == 1
    request = route.calls.last.request
    assert request.headers["authorization"].startswith("bearer ")
    body = json.loads(request.content)
    assert body["aps"]["alert"]["title"] == "🏥 Dentist in 16 min!"
    assert body["event_id"] == str(event.id)

    await session.refresh(event)
    assert event.reminder_15m_sent is not None
    entries = await _ledger(session)
    assert len(entries) == 1
    assert entries[0].status == "sent"
