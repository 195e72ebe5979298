import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.api.deps import require_session
from familyhub.core.logging import mask_token
from familyhub.core.security import get_current_owner
from familyhub.services import device_registry

router = APIRouter()
logger = logging.getLogger(__name__)


class PushTokenRequest(BaseModel):
    token: str = Field(min_length=1)
    platform: str = "ios"


class PushTokenDelete(BaseModel):
    token: str = Field(min_length=1)


@router.post("", summary="Register a device for push notifications")
async def register_push_token(
    payload: PushTokenRequest,
    owner_id: str = Depends(get_current_owner),
    session: AsyncSession = Depends(require_session),
) -> dict:
    try:
        record = await device_registry.register_device(session, owner_id, payload.token, payload.platform)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.info(f"Registered {record.platform} device {mask_token(record.token)} for {owner_id}")
    return {"success": True, "id": str(record.id), "platform": record.platform}


@router.delete("", summary="Unregister a device")
async def delete_push_token(
    payload: PushTokenDelete,
    owner_id: str = Depends(get_current_owner),
    session: AsyncSession = Depends(require_session),
) -> dict:
    removed = await device_registry.remove_token(session, owner_id, payload.token)
    return {"success": True, "removed": removed}
