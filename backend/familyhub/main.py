import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from familyhub import __version__
from familyhub.api import api_router
from familyhub.core.logging import configure_logging
from familyhub.core.scheduler import shutdown_scheduler
from familyhub.core.settings import get_settings
from familyhub.services.external_fetch import ExternalFetchCache
from familyhub.services.f1_feeds import F1FeedService
from familyhub.services.oauth_client import OAuthClient
from familyhub.services.push_dispatcher import PushDispatcher

configure_logging()
settings = get_settings()
logger = logging.getLogger(__name__)

app = FastAPI(title="FamilyHub Notifications", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.security.cors_origins or ["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")

# Long-lived clients; routers read them through familyhub.api.deps
app.state.dispatcher = PushDispatcher(settings.push)
app.state.oauth_client = OAuthClient(settings.oauth)
app.state.feeds = F1FeedService(settings.data_sources, ExternalFetchCache())


@app.on_event("startup")
async def startup_event() -> None:
    # Ensure models are registered before creating tables
    import familyhub.models  # noqa: F401

    from familyhub.core.db import create_tables, init_db

    init_db()
    await create_tables()

    if not app.state.dispatcher.is_configured:
        logger.warning("APNs key material missing; push delivery will report 'apns_not_configured'")

    if settings.scheduler.enabled:
        from familyhub.jobs import setup_periodic_tasks

        setup_periodic_tasks(app.state.dispatcher, app.state.feeds)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    shutdown_scheduler()
    await app.state.dispatcher.aclose()
    await app.state.oauth_client.aclose()
    await app.state.feeds.aclose()


@app.get("/", include_in_schema=False)
def root():
    return {"message": "FamilyHub notification backend running"}
