from datetime import datetime

import pytest
from sqlalchemy import select

from familyhub.models.device_token import DeviceToken
from familyhub.services import device_registry


@pytest.mark.asyncio
async def test_register_is_an_upsert(session):
    first = await device_registry.register_device(session, "owner-1", "tok-a")
    again = await device_registry.register_device(session, "owner-1", " tok-a ", platform="ios")

    assert first.id == again.id
    rows = (await session.execute(select(DeviceToken))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_register_rejects_bad_input(session):
    with pytest.raises(ValueError):
        await device_registry.register_device(session, "owner-1", "   ")
    with pytest.raises(ValueError):
        await device_registry.register_device(session, "owner-1", "tok", platform="blackberry")


@pytest.mark.asyncio
async def test_owners_and_removal(session):
    await device_registry.register_device(session, "owner-2", "tok-b")
    await device_registry.register_device(session, "owner-1", "tok-a")

    assert await device_registry.owners_with_tokens(session) == ["owner-1", "owner-2"]
    assert await device_registry.remove_token(session, "owner-1", "tok-a") is True
    assert await device_registry.remove_token(session, "owner-1", "tok-a") is False
    assert await device_registry.owners_with_tokens(session) == ["owner-2"]


@pytest.mark.asyncio
async def test_cleanup_keeps_newest_token_per_owner(session):
    session.add_all(
        [
            DeviceToken(user_id="owner-1", token="tok-old", created_at=datetime(2025, 1, 1), updated_at=datetime(2025, 1, 1)),
            DeviceToken(user_id="owner-1", token="tok-new", created_at=datetime(2026, 1, 1), updated_at=datetime(2026, 1, 1)),
            DeviceToken(user_id="owner-2", token="tok-solo", created_at=datetime(2025, 6, 1), updated_at=datetime(2025, 6, 1)),
        ]
    )
    await session.commit()

    preview = await device_registry.cleanup_duplicate_tokens(session, dry_run=True)
    assert preview["total_tokens"] == 3
    assert preview["users"] == 2
    assert [t["token"] for t in preview["to_delete"]] == ["tok-old..."]

    result = await device_registry.cleanup_duplicate_tokens(session, dry_run=False)
    assert result["deleted"] == 1
    assert result["kept"] == 2
    remaining = (await session.execute(select(DeviceToken.token).order_by(DeviceToken.token))).scalars().all()
    assert remaining == ["tok-new", "tok-solo"]

    assert (await device_registry.cleanup_duplicate_tokens(session, dry_run=False))["deleted"] == 0
