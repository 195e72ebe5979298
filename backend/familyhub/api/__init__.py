from fastapi import APIRouter

from .f1 import router as f1_router
from .health import router as health_router
from .integrations import router as integrations_router
from .notifications import router as notifications_router
from .push_token import router as push_token_router
from .triggers import router as triggers_router

api_router = APIRouter()
api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(push_token_router, prefix="/push-token", tags=["push"])
api_router.include_router(triggers_router, prefix="/notifications/triggers", tags=["triggers"])
api_router.include_router(notifications_router, prefix="/notifications", tags=["notifications"])
api_router.include_router(integrations_router, prefix="/integrations", tags=["integrations"])
api_router.include_router(f1_router, prefix="/f1", tags=["f1"])

__all__ = ["api_router"]
