import logging
import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.api.deps import get_dispatcher, require_session
from familyhub.core.security import cron_auth_required, get_current_owner
from familyhub.models.notification_log import NotificationLogEntry, NotificationStatus
from familyhub.services import device_registry
from familyhub.services.notification_ledger import InvalidStatusTransition, LedgerEntry, NotificationLedger
from familyhub.services.push_dispatcher import NOT_CONFIGURED, PushDispatcher, PushPayload

router = APIRouter()
logger = logging.getLogger(__name__)


class SendRequest(BaseModel):
    # Broadcast to every registered owner when omitted
    user_id: Optional[str] = None
    title: str = Field(min_length=1)
    body: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    category: str = "system"


def _serialize(entry: NotificationLogEntry) -> dict[str, Any]:
    return {
        "id": str(entry.id),
        "category": entry.category,
        "type": entry.notification_type,
        "reference_id": entry.reference_id,
        "title": entry.title,
        "body": entry.body,
        "data": entry.data or {},
        "status": entry.status,
        "error_message": entry.error_message,
        "created_at": entry.created_at.isoformat(),
    }


@router.post("/send", summary="Send an ad-hoc push notification", dependencies=[Depends(cron_auth_required)])
async def send_notification(
    payload: SendRequest,
    session: AsyncSession = Depends(require_session),
    dispatcher: PushDispatcher = Depends(get_dispatcher),
) -> dict:
    if not dispatcher.is_configured:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=NOT_CONFIGURED)

    push = PushPayload(title=payload.title, body=payload.body, data=payload.data)
    if payload.user_id:
        summaries = {payload.user_id: await dispatcher.send_to_owner(session, payload.user_id, push)}
    else:
        summaries = await dispatcher.send_to_all(session, push)

    ledger = NotificationLedger(session)
    for owner_id, summary in summaries.items():
        if summary.total == 0:
            continue
        await ledger.append(
            LedgerEntry(
                owner_id=owner_id,
                category=payload.category,
                notification_type=str(payload.data.get("type", "manual")),
                title=payload.title,
                body=payload.body,
                data=payload.data,
                status=NotificationStatus.SENT if summary.delivered else NotificationStatus.FAILED,
                error_message=None if summary.delivered else summary.error_summary(),
            )
        )
    await session.commit()

    sent = sum(s.sent for s in summaries.values())
    total = sum(s.total for s in summaries.values())
    logger.info(f"Ad-hoc notification '{payload.title}' delivered to {sent}/{total} devices")
    return {
        "success": sent > 0,
        "sent": sent,
        "total": total,
        "errors": [f.reason for s in summaries.values() for f in s.failures],
        "ledger_degraded": ledger.degraded,
    }


@router.get("/logs", summary="Notification inbox for the current owner")
async def list_logs(
    limit: int = Query(default=20, ge=1, le=100),
    category: Optional[str] = None,
    include_dismissed: bool = False,
    owner_id: str = Depends(get_current_owner),
    session: AsyncSession = Depends(require_session),
) -> dict:
    ledger = NotificationLedger(session)
    entries = await ledger.list_for_owner(owner_id, limit=limit, category=category, include_dismissed=include_dismissed)
    return {"notifications": [_serialize(e) for e in entries]}


async def _mark(session: AsyncSession, owner_id: str, entry_id: uuid.UUID, new_status: NotificationStatus) -> dict:
    ledger = NotificationLedger(session)
    try:
        entry = await ledger.mark_status(owner_id, entry_id, new_status)
    except InvalidStatusTransition as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return _serialize(entry)


@router.post("/logs/{entry_id}/read")
async def mark_read(
    entry_id: uuid.UUID,
    owner_id: str = Depends(get_current_owner),
    session: AsyncSession = Depends(require_session),
) -> dict:
    return await _mark(session, owner_id, entry_id, NotificationStatus.READ)


@router.post("/logs/{entry_id}/dismiss")
async def mark_dismissed(
    entry_id: uuid.UUID,
    owner_id: str = Depends(get_current_owner),
    session: AsyncSession = Depends(require_session),
) -> dict:
    return await _mark(session, owner_id, entry_id, NotificationStatus.DISMISSED)


@router.get("/debug/cleanup-tokens", dependencies=[Depends(cron_auth_required)])
async def preview_token_cleanup(session: AsyncSession = Depends(require_session)) -> dict:
    return await device_registry.cleanup_duplicate_tokens(session, dry_run=True)


@router.post("/debug/cleanup-tokens", dependencies=[Depends(cron_auth_required)])
async def run_token_cleanup(session: AsyncSession = Depends(require_session)) -> dict:
    return await device_registry.cleanup_duplicate_tokens(session, dry_run=False)
