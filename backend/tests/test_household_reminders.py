from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import FakeClock
from familyhub.models.household import Chore, ShoppingListChange
from familyhub.models.notification_preferences import NotificationPreferencesDB
from familyhub.models.reminder_claim import ReminderClaim
from familyhub.services import device_registry
from familyhub.services.reminder_scheduler import InvalidRunType, ReminderScheduler
from familyhub.services.reminders import notify_event_change, run_trigger
from familyhub.services.reminders.bins import BinReminders, bin_message, bins_for_date
from familyhub.services.reminders.calendar_changes import EventChange, EventSnapshot, FieldChange, change_message
from familyhub.services.reminders.chores import chore_digest
from familyhub.services.reminders.shopping import ShoppingListChanges


async def _devices(session, *owners):
    for owner in owners:
        await device_registry.register_device(session, owner, f"tok-{owner}")


def _recipients(dispatcher) -> list[str]:
    return sorted(call.args[1] for call in dispatcher.send_to_owner.await_args_list)


def test_bins_for_known_dates():
    assert [b.id for b in bins_for_date(date(2026, 1, 12))] == ["madaffald", "restaffald"]
    assert [b.id for b in bins_for_date(date(2026, 1, 14))] == ["plast_metal_glas"]
    assert bins_for_date(date(2026, 1, 13)) == []
    assert bins_for_date(date(2031, 1, 12)) == []


def test_bin_message_variants():
    bins = bins_for_date(date(2026, 1, 12))
    assert bin_message(bins, "evening") == ("🍎 🗑️ Bin Day Tomorrow!", "Put out the Madaffald & Restaffald")
    assert bin_message(bins, "morning") == ("🍎 🗑️ Bin Day Today!", "Collection today: Madaffald & Restaffald")


@pytest.mark.asyncio
async def test_evening_bin_run_broadcasts_once(session, dispatcher):
    # 19:00 local on the day before a collection
    clock = FakeClock(datetime(2026, 1, 11, 18, 0))
    await _devices(session, "owner-1", "owner-2")

    summary = await run_trigger("bins", session, dispatcher, clock=clock)

    assert summary.run_type == "evening"
    assert summary.count == 1
    assert summary.message == "Sent 1 bin reminders (evening)"
    assert _recipients(dispatcher) == ["owner-1", "owner-2"]
    payload = dispatcher.send_to_owner.await_args.args[2]
    assert payload.data["collection_date"] == "2026-01-12"
    assert payload.data["bins"] == ["madaffald", "restaffald"]

    again = await run_trigger("bins", session, dispatcher, clock=clock)
    assert again.skipped == 1
    assert dispatcher.send_to_owner.await_count == 2


@pytest.mark.asyncio
async def test_morning_bin_run_is_off_by_default(session, dispatcher):
    clock = FakeClock(datetime(2026, 1, 12, 5, 30))
    await _devices(session, "owner-1")

    summary = await run_trigger("bins", session, dispatcher, clock=clock)

    assert summary.run_type == "morning"
    assert summary.count == 0
    dispatcher.send_to_owner.assert_not_awaited()

    session.add(NotificationPreferencesDB(user_id="owner-1", bin_reminder_morning=True))
    await session.commit()
    summary = await run_trigger("bins", session, dispatcher, clock=clock)
    assert summary.count == 1


@pytest.mark.asyncio
async def test_bin_run_type_validated(session, dispatcher, clock):
    with pytest.raises(InvalidRunType):
        await ReminderScheduler(session, dispatcher, clock=clock).run(BinReminders(), "noon")


def test_chore_digest():
    assert chore_digest(["Dishes"]) == ("1 chore for today", "Dishes")
    assert chore_digest(["a", "b", "c", "d", "e"]) == ("5 chores for today", "a, b, c +2 more")


@pytest.mark.asyncio
async def test_chore_digest_per_owner(session, clock, dispatcher):
    session.add_all(
        [
            Chore(user_id="owner-1", title="Vacuum", due_date=date(2026, 3, 10)),
            Chore(user_id="owner-1", title="Dishes"),
            Chore(user_id="owner-1", title="Yesterday", due_date=date(2026, 3, 9)),
            Chore(user_id="owner-1", title="Done already", status="done"),
            Chore(user_id="owner-2", title="Laundry", due_date=date(2026, 3, 10)),
        ]
    )
    await session.commit()

    summary = await run_trigger("chores", session, dispatcher, clock=clock)

    assert summary.count == 2
    payloads = {call.args[1]: call.args[2] for call in dispatcher.send_to_owner.await_args_list}
    assert payloads["owner-1"].title == "2 chores for today"
    assert payloads["owner-1"].body == "Dishes, Vacuum"
    assert payloads["owner-2"].body == "Laundry"

    again = await run_trigger("chores", session, dispatcher, clock=clock)
    assert again.count == 0
    assert dispatcher.send_to_owner.await_count == 2


async def _change(session, clock, minutes_ago: int, item: str, owner: str = "owner-1", action: str = "added"):
    session.add(
        ShoppingListChange(
            user_id=owner, item_name=item, action=action, created_at=clock() - timedelta(minutes=minutes_ago)
        )
    )
    await session.commit()


@pytest.mark.asyncio
async def test_shopping_changes_batched_after_quiet_period(session, clock, dispatcher):
    await _devices(session, "owner-1", "owner-2")
    await _change(session, clock, 15, "Milk")
    await _change(session, clock, 12, "Eggs")

    summary = await ReminderScheduler(session, dispatcher, clock=clock).run(ShoppingListChanges())

    assert summary.count == 1
    assert _recipients(dispatcher) == ["owner-1", "owner-2"]
    payload = dispatcher.send_to_owner.await_args.args[2]
    assert payload.title == "🛒 Shopping List Updated"
    assert payload.body == "Added: Eggs, Milk"

    again = await ReminderScheduler(session, dispatcher, clock=clock).run(ShoppingListChanges())
    assert again.count == 0
    assert dispatcher.send_to_owner.await_count == 2


@pytest.mark.asyncio
async def test_shopping_waits_while_list_is_being_edited(session, clock, dispatcher):
    await _devices(session, "owner-1")
    await _change(session, clock, 15, "Milk")
    await _change(session, clock, 5, "Bread")

    summary = await ReminderScheduler(session, dispatcher, clock=clock).run(ShoppingListChanges())

    assert summary.attempted == 0
    dispatcher.send_to_owner.assert_not_awaited()


@pytest.mark.asyncio
async def test_shopping_own_changes_preference(session, clock, dispatcher):
    await _devices(session, "owner-1", "owner-2")
    session.add(NotificationPreferencesDB(user_id="owner-1", shopping_notify_own_changes=False))
    await _change(session, clock, 12, "Milk", owner="owner-1")

    await ReminderScheduler(session, dispatcher, clock=clock).run(ShoppingListChanges())

    assert _recipients(dispatcher) == ["owner-2"]


@pytest.mark.asyncio
async def test_old_shopping_changes_are_cleaned_up(session, clock, dispatcher):
    await _change(session, clock, 30, "Stale")
    await _change(session, clock, 12, "Fresh")

    await ReminderScheduler(session, dispatcher, clock=clock).run(ShoppingListChanges())

    names = (await session.execute(select(ShoppingListChange.item_name))).scalars().all()
    assert names == ["Fresh"]


def _event_change(change_type: str, actor_id="owner-1", changes=None) -> EventChange:
    return EventChange(
        change_type=change_type,
        event=EventSnapshot(id="evt-9", title="Swimming", start_time=datetime(2026, 3, 12, 15, 30), location="Pool"),
        actor_id=actor_id,
        changes=changes or [],
    )


def test_change_messages():
    title, body = change_message(_event_change("created"))
    assert title == "🏊 Swimming"
    assert body == "✅ Event added\n📅 Thu 12 Mar, 16:30\n📍 Pool"

    title, body = change_message(_event_change("changed", changes=[FieldChange("start_time", "17:00")]))
    assert title == "✏️ Swimming"
    assert body.startswith("New time: 17:00")

    title, body = change_message(_event_change("deleted"))
    assert title == "Event Cancelled"
    assert body == "Swimming\nWas: Thu 12 Mar, 16:30\nPool"


@pytest.mark.asyncio
async def test_event_change_skips_actor_who_opted_out(session, clock, dispatcher):
    await _devices(session, "owner-1", "owner-2")
    session.add(NotificationPreferencesDB(user_id="owner-1", calendar_notify_own_changes=False))
    await session.commit()

    summary = await notify_event_change(_event_change("created"), session, dispatcher, clock=clock)

    assert summary.count == 1
    assert _recipients(dispatcher) == ["owner-2"]
    payload = dispatcher.send_to_owner.await_args.args[2]
    assert payload.data["type"] == "event_created"
    assert payload.data["deep_link"] == "/calendar?event=evt-9"


@pytest.mark.asyncio
async def test_event_change_subtype_preference(session, clock, dispatcher):
    await _devices(session, "owner-2")
    session.add(NotificationPreferencesDB(user_id="owner-2", calendar_event_deleted=False))
    await session.commit()

    summary = await notify_event_change(_event_change("deleted"), session, dispatcher, clock=clock)

    assert summary.count == 0
    dispatcher.send_to_owner.assert_not_awaited()


@pytest.mark.asyncio
async def test_expired_claims_are_pruned_per_category(session, dispatcher):
    clock = FakeClock(datetime(2026, 1, 11, 18, 0))
    await _devices(session, "owner-1")
    session.add_all(
        [
            ReminderClaim(category="bins", reference_id="2025-12-29", scope="evening", claimed_at=clock() - timedelta(days=8)),
            ReminderClaim(category="bins", reference_id="2026-01-05", scope="evening", claimed_at=clock() - timedelta(days=6)),
            ReminderClaim(category="chores", reference_id="owner-1:2025-12-01", claimed_at=clock() - timedelta(days=40)),
        ]
    )
    await session.commit()

    await run_trigger("bins", session, dispatcher, clock=clock)

    rows = (await session.execute(select(ReminderClaim.category, ReminderClaim.reference_id))).all()
    assert sorted(rows) == [
        ("bins", "2026-01-05"),
        ("bins", "2026-01-12"),
        ("chores", "owner-1:2025-12-01"),
    ]
