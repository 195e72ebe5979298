import logging
from collections import defaultdict
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.core.logging import mask_token
from familyhub.models.device_token import DeviceToken
from familyhub.utils.timezone import utcnow

logger = logging.getLogger(__name__)

SUPPORTED_PLATFORMS = ("ios", "android", "web")


async def register_device(session: AsyncSession, owner_id: str, token: str, platform: str = "ios") -> DeviceToken:
    """Upsert on (owner, token). Re-registering only refreshes platform and updated_at."""
    token = token.strip()
    if not token:
        raise ValueError("Token required")
    if platform not in SUPPORTED_PLATFORMS:
        raise ValueError(f"Unsupported platform: {platform}")

    result = await session.execute(
        select(DeviceToken).where(DeviceToken.user_id == owner_id, DeviceToken.token == token)
    )
    record = result.scalar_one_or_none()

    if record:
        record.platform = platform
        record.updated_at = utcnow()
    else:
        record = DeviceToken(user_id=owner_id, token=token, platform=platform)
        session.add(record)

    await session.commit()
    logger.info(f"Registered {platform} device {mask_token(token)} for {owner_id}")
    return record


async def tokens_for_owner(session: AsyncSession, owner_id: str) -> list[DeviceToken]:
    result = await session.execute(
        select(DeviceToken).where(DeviceToken.user_id == owner_id).order_by(DeviceToken.updated_at.desc())
    )
    return list(result.scalars().all())


async def owners_with_tokens(session: AsyncSession) -> list[str]:
    result = await session.execute(select(DeviceToken.user_id).distinct().order_by(DeviceToken.user_id))
    return [row for row in result.scalars().all()]


async def remove_token(session: AsyncSession, owner_id: str, token: str) -> bool:
    result = await session.execute(
        delete(DeviceToken).where(DeviceToken.user_id == owner_id, DeviceToken.token == token.strip())
    )
    await session.commit()
    return (result.rowcount or 0) > 0


async def prune_tokens(session: AsyncSession, tokens: Iterable[str]) -> int:
    """Deletes tokens the gateway reported as dead. Caller owns the commit."""
    tokens = list(tokens)
    if not tokens:
        return 0
    result = await session.execute(delete(DeviceToken).where(DeviceToken.token.in_(tokens)))
    removed = result.rowcount or 0
    if removed:
        logger.info(f"Pruned {removed} rejected device token(s)")
    return removed


def _describe(record: DeviceToken, include_id: bool = False) -> dict:
    info = {
        "user_id": f"{record.user_id[:8]}...",
        "token": mask_token(record.token, visible=15),
        "platform": record.platform,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }
    if include_id:
        info["id"] = str(record.id)
    return info


async def cleanup_duplicate_tokens(session: AsyncSession, dry_run: bool = True) -> dict:
    """Keeps only the most recently registered token per owner."""
    result = await session.execute(
        select(DeviceToken).order_by(DeviceToken.updated_at.desc(), DeviceToken.created_at.desc())
    )
    records = list(result.scalars().all())

    by_owner: dict[str, list[DeviceToken]] = defaultdict(list)
    for record in records:
        by_owner[record.user_id].append(record)

    to_keep = [owner_tokens[0] for owner_tokens in by_owner.values()]
    to_delete = [record for owner_tokens in by_owner.values() for record in owner_tokens[1:]]

    if dry_run:
        return {
            "total_tokens": len(records),
            "users": len(by_owner),
            "to_keep": [_describe(r) for r in to_keep],
            "to_delete": [_describe(r, include_id=True) for r in to_delete],
            "action": "Use POST to delete old tokens",
        }

    if not to_delete:
        return {"message": "No duplicates to delete", "deleted": 0, "kept": len(by_owner)}

    await session.execute(delete(DeviceToken).where(DeviceToken.id.in_([r.id for r in to_delete])))
    await session.commit()
    logger.info(f"Deleted {len(to_delete)} stale device token(s)")
    return {
        "message": f"Deleted {len(to_delete)} old tokens",
        "deleted": len(to_delete),
        "kept": len(by_owner),
    }
