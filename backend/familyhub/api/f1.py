from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from familyhub.api.deps import get_feeds
from familyhub.services.f1_feeds import FIRST_SEASON, F1FeedService, FeedResult, InvalidSeason

router = APIRouter()


def _feed_response(result: FeedResult) -> dict:
    return {
        "items": [item.to_dict() for item in result.items],
        "cached": result.cached,
        "stale": result.stale,
        "available": result.available,
        "fetched_at": result.fetched_at.isoformat() if result.fetched_at else None,
    }


@router.get("/schedule", summary="Season sessions from OpenF1")
async def schedule(
    year: Optional[int] = Query(default=None, ge=FIRST_SEASON),
    feeds: F1FeedService = Depends(get_feeds),
) -> dict:
    try:
        result = await feeds.get_schedule(year)
    except InvalidSeason as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return _feed_response(result)


@router.get("/news", summary="Classified F1 headlines")
async def news(refresh: bool = False, feeds: F1FeedService = Depends(get_feeds)) -> dict:
    return _feed_response(await feeds.get_news(force_refresh=refresh))


@router.get("/results", summary="Latest race, qualifying or sprint classification")
async def results(
    kind: Literal["race", "qualifying", "sprint"] = "race",
    feeds: F1FeedService = Depends(get_feeds),
) -> dict:
    return _feed_response(await feeds.get_latest_results(kind))


@router.get("/standings", summary="Drivers' championship standings")
async def standings(
    year: Optional[int] = Query(default=None, ge=FIRST_SEASON),
    feeds: F1FeedService = Depends(get_feeds),
) -> dict:
    try:
        result = await feeds.get_driver_standings(year)
    except InvalidSeason as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return _feed_response(result)
