"""Cron entry points. Each call is one run over its own session."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.api.deps import get_dispatcher, get_feeds, require_session
from familyhub.core.security import cron_auth_required
from familyhub.services.f1_feeds import F1FeedService
from familyhub.services.push_dispatcher import PushDispatcher
from familyhub.services.reminder_scheduler import InvalidRunType
from familyhub.services.reminders import UnknownTrigger, notify_event_change, run_trigger
from familyhub.services.reminders.calendar_changes import EventChange, EventSnapshot, FieldChange
from familyhub.utils.timezone import to_naive_utc

router = APIRouter(dependencies=[Depends(cron_auth_required)])
logger = logging.getLogger(__name__)


class EventPayload(BaseModel):
    id: str
    title: str
    start_time: datetime
    all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None
    source: Optional[str] = None


class FieldChangePayload(BaseModel):
    field: str
    new_value: Optional[str] = None


class EventChangeRequest(BaseModel):
    event: EventPayload
    actor_id: Optional[str] = None
    changes: list[FieldChangePayload] = Field(default_factory=list)

    def to_change(self, change_type: str) -> EventChange:
        event = self.event
        return EventChange(
            change_type=change_type,
            event=EventSnapshot(
                id=event.id,
                title=event.title,
                start_time=to_naive_utc(event.start_time),
                all_day=event.all_day,
                description=event.description,
                location=event.location,
                source=event.source,
            ),
            actor_id=self.actor_id,
            changes=[FieldChange(field=c.field, new_value=c.new_value) for c in self.changes],
        )


async def _event_change(
    change_type: str, payload: EventChangeRequest, session: AsyncSession, dispatcher: PushDispatcher
) -> dict:
    summary = await notify_event_change(payload.to_change(change_type), session, dispatcher)
    return summary.to_dict()


@router.post("/event-created")
async def event_created(
    payload: EventChangeRequest,
    session: AsyncSession = Depends(require_session),
    dispatcher: PushDispatcher = Depends(get_dispatcher),
) -> dict:
    return await _event_change("created", payload, session, dispatcher)


@router.post("/event-changed")
async def event_changed(
    payload: EventChangeRequest,
    session: AsyncSession = Depends(require_session),
    dispatcher: PushDispatcher = Depends(get_dispatcher),
) -> dict:
    return await _event_change("changed", payload, session, dispatcher)


@router.post("/event-deleted")
async def event_deleted(
    payload: EventChangeRequest,
    session: AsyncSession = Depends(require_session),
    dispatcher: PushDispatcher = Depends(get_dispatcher),
) -> dict:
    return await _event_change("deleted", payload, session, dispatcher)


@router.get("/{name}", summary="Run one reminder category")
async def trigger(
    name: str,
    run_type: Optional[str] = None,
    session: AsyncSession = Depends(require_session),
    dispatcher: PushDispatcher = Depends(get_dispatcher),
    feeds: F1FeedService = Depends(get_feeds),
) -> dict:
    try:
        summary = await run_trigger(name, session, dispatcher, run_type=run_type, feeds=feeds)
    except UnknownTrigger:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown trigger: {name}")
    except InvalidRunType as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.info(f"Trigger '{name}' finished: {summary.message}")
    return summary.to_dict()
