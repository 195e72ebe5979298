import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from familyhub.models.notification_log import NotificationLogEntry, NotificationStatus
from familyhub.services.notification_ledger import InvalidStatusTransition, LedgerEntry, NotificationLedger


def _entry(**overrides) -> LedgerEntry:
    values = dict(
        owner_id="owner-1",
        category="calendar",
        notification_type="event_reminder_15m",
        reference_id="evt-1",
        title="Dentist in 15 min!",
        body="🕐 10:15",
    )
    values.update(overrides)
    return LedgerEntry(**values)


@pytest.mark.asyncio
async def test_append_and_duplicate_guard(session, clock):
    ledger = NotificationLedger(session, clock=clock)
    assert await ledger.append(_entry()) is True
    await session.commit()

    assert await ledger.was_already_sent("owner-1", "calendar", "event_reminder_15m", "evt-1") is True
    assert await ledger.was_already_sent("owner-2", "calendar", "event_reminder_15m", "evt-1") is False
    assert await ledger.was_already_sent("owner-1", "calendar", "event_reminder_15m", "evt-2") is False

    clock.advance(hours=25)
    assert await ledger.was_already_sent("owner-1", "calendar", "event_reminder_15m", "evt-1") is False
    assert await ledger.was_already_sent("owner-1", "calendar", "event_reminder_15m", "evt-1", within_hours=72) is True


@pytest.mark.asyncio
async def test_failed_attempts_do_not_count_as_sent(session, clock):
    ledger = NotificationLedger(session, clock=clock)
    await ledger.append(_entry(status=NotificationStatus.FAILED, error_message="BadDeviceToken"))
    await session.commit()

    assert await ledger.was_already_sent("owner-1", "calendar", "event_reminder_15m", "evt-1") is False


@pytest.mark.asyncio
async def test_append_failure_marks_degraded(session, clock, mocker):
    ledger = NotificationLedger(session, clock=clock)
    mocker.patch.object(session, "begin_nested", side_effect=SQLAlchemyError("disk full"))

    assert await ledger.append(_entry()) is False
    assert ledger.degraded is True


@pytest.mark.asyncio
async def test_status_only_moves_forward(session, clock):
    ledger = NotificationLedger(session, clock=clock)
    await ledger.append(_entry())
    await session.commit()
    entry_id = (await session.execute(select(NotificationLogEntry.id))).scalar_one()

    read = await ledger.mark_status("owner-1", entry_id, NotificationStatus.READ)
    assert read.status == "read"
    dismissed = await ledger.mark_status("owner-1", entry_id, NotificationStatus.DISMISSED)
    assert dismissed.status == "dismissed"

    with pytest.raises(InvalidStatusTransition):
        await ledger.mark_status("owner-1", entry_id, NotificationStatus.READ)


@pytest.mark.asyncio
async def test_mark_status_is_scoped_to_owner(session, clock):
    ledger = NotificationLedger(session, clock=clock)
    await ledger.append(_entry())
    await session.commit()
    entry_id = (await session.execute(select(NotificationLogEntry.id))).scalar_one()

    assert await ledger.mark_status("owner-2", entry_id, NotificationStatus.READ) is None


@pytest.mark.asyncio
async def test_inbox_hides_dismissed(session, clock):
    ledger = NotificationLedger(session, clock=clock)
    for i in range(3):
        await ledger.append(_entry(reference_id=f"evt-{i}"))
        clock.advance(minutes=1)
    await ledger.append(_entry(owner_id="owner-2"))
    await session.commit()

    entries = await ledger.list_for_owner("owner-1")
    assert [e.reference_id for e in entries] == ["evt-2", "evt-1", "evt-0"]

    await ledger.mark_status("owner-1", entries[0].id, NotificationStatus.DISMISSED)
    assert len(await ledger.list_for_owner("owner-1")) == 2
    assert len(await ledger.list_for_owner("owner-1", include_dismissed=True)) == 3
    assert await session.scalar(select(func.count()).select_from(NotificationLogEntry)) == 4
