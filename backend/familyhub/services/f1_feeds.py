"""Formula 1 schedule (OpenF1 JSON), results and standings (Jolpica) and news (RSS) feeds.

All go through the shared ExternalFetchCache. A source that is down or
returns garbage yields an empty, ``available=False`` result instead of an
exception, so reminder runs and the dashboard keep working without it.
"""
import asyncio
import hashlib
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import asdict, dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import httpx

from familyhub.core.settings import DataSourceConfig
from familyhub.services.external_fetch import (
    ExternalFetchCache,
    ExternalFetchError,
    SleepFn,
    fetch_with_retry,
)
from familyhub.utils.timezone import Clock, parse_iso, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

USER_AGENT = "FamilyHub/1.0"
NEWS_CACHE_KEY = "f1:news"
MAX_DESCRIPTION_LENGTH = 500
# OpenF1 has no data before this season; next season is the last one with a published calendar
FIRST_SEASON = 2023
MAX_SEASONS_AHEAD = 1

MEDIA_NS = "{http://search.yahoo.com/mrss/}"

# kind -> (Jolpica path, result list key, session block on the race)
RESULT_KINDS: dict[str, tuple[str, str, str]] = {
    "race": ("results", "Results", ""),
    "qualifying": ("qualifying", "QualifyingResults", "Qualifying"),
    "sprint": ("sprint", "SprintResults", "Sprint"),
}

NEWS_CATEGORIES = ("race", "driver", "technical", "calendar", "other")

# First match wins, most specific first
CATEGORY_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("calendar", ("calendar", "schedule", "season opener", "new venue", "returns to the", "dropped from", "date change")),
    ("technical", ("upgrade", "technical", "aerodynamic", "regulation", "power unit", "engine", "floor", "wing", "fia rule")),
    ("driver", ("contract", "signs", "transfer", "seat", "retire", "rookie", "interview", "line-up", "lineup", "replace")),
    ("race", ("grand prix", "race", "qualifying", "sprint", "practice", "pole", "podium", "penalty", "grid", "result")),
]

SPOILER_PATTERNS = re.compile(
    r"\b(wins|won|victory|triumph|podium|takes pole|on pole|pole position|claims pole|results?|"
    r"crash(es|ed)?|dnf|classification|clinch(es|ed)?|champion)\b",
    re.IGNORECASE,
)

FLUFF_PATTERNS = re.compile(
    r"\b(quiz|poll|best moments|in pictures|gallery|podcast|highlights|merch|competition|watch:)",
    re.IGNORECASE,
)

_TAG_RE = re.compile(r"<[^>]+>")
_IMG_RE = re.compile(r'<img[^>]+src="([^"]+)"', re.IGNORECASE)


class DataShapeError(ValueError):
    """Raised when a third-party payload does not have the expected shape."""


class InvalidSeason(ValueError):
    pass


@dataclass
class NewsArticle:
    id: str
    title: str
    description: str
    link: str
    published_at: Optional[datetime]
    category: str = "other"
    is_interesting: bool = True
    is_spoiler: bool = False
    image_url: Optional[str] = None

    def mentions(self, name: Optional[str]) -> bool:
        if not name:
            return False
        needle = name.lower()
        return needle in self.title.lower() or needle in self.description.lower()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["published_at"] = self.published_at.isoformat() if self.published_at else None
        return data


@dataclass
class F1Session:
    session_key: int
    session_name: str
    session_type: str
    meeting_key: int
    date_start: datetime
    date_end: Optional[datetime] = None
    meeting_name: str = ""
    circuit_short_name: str = ""
    country_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["date_start"] = self.date_start.isoformat()
        data["date_end"] = self.date_end.isoformat() if self.date_end else None
        return data


@dataclass
class DriverResult:
    """One classified driver, either in a session result or in the standings."""

    position: int
    driver_id: str
    given_name: str
    family_name: str
    code: str = ""
    constructor_id: str = ""
    constructor_name: str = ""
    points: float = 0.0
    wins: int = 0

    @property
    def display_name(self) -> str:
        return f"{self.given_name} {self.family_name.upper()}"

    def matches(self, favorite: Optional[str]) -> bool:
        """Favorites are stored free-form: driver id, surname or three-letter code."""
        needle = favorite.strip().lower() if favorite else ""
        if not needle:
            return False
        return needle in (self.driver_id.lower(), self.family_name.lower(), self.code.lower())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SessionResults:
    kind: str
    season: int
    round: int
    race_name: str
    session_start: Optional[datetime]
    results: list[DriverResult] = field(default_factory=list)

    @property
    def reference_id(self) -> str:
        return f"{self.season}-{self.round}-{self.kind}"

    @property
    def winner(self) -> Optional[DriverResult]:
        return self.results[0] if self.results else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "season": self.season,
            "round": self.round,
            "race_name": self.race_name,
            "session_start": self.session_start.isoformat() if self.session_start else None,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class FeedResult:
    items: list = field(default_factory=list)
    cached: bool = False
    stale: bool = False
    available: bool = True
    fetched_at: Optional[datetime] = None


def article_id(link: str) -> str:
    return hashlib.sha1(link.encode("utf-8")).hexdigest()[:16]


def classify_article(title: str, description: str = "") -> str:
    text = f"{title} {description}".lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return "other"


def is_spoiler(title: str, description: str = "") -> bool:
    return bool(SPOILER_PATTERNS.search(f"{title} {description}"))


def is_interesting(title: str) -> bool:
    return not FLUFF_PATTERNS.search(title)


def _text(element: ET.Element, tag: str) -> str:
    child = element.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def _parse_pub_date(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return to_naive_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError):
        return parse_iso(value)


def _image_url(item: ET.Element, raw_description: str) -> Optional[str]:
    for tag in (f"{MEDIA_NS}content", f"{MEDIA_NS}thumbnail", "enclosure"):
        child = item.find(tag)
        if child is not None and child.get("url"):
            return child.get("url")
    match = _IMG_RE.search(raw_description)
    return match.group(1) if match else None


def parse_rss(xml_text: str) -> list[NewsArticle]:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise DataShapeError(f"Feed is not valid XML: {exc}") from exc

    articles: list[NewsArticle] = []
    for item in root.iter("item"):
        title = _text(item, "title")
        link = _text(item, "link")
        if not title or not link:
            continue
        raw_description = _text(item, "description")
        description = _TAG_RE.sub("", raw_description).strip()[:MAX_DESCRIPTION_LENGTH]
        articles.append(
            NewsArticle(
                id=article_id(link),
                title=title,
                description=description,
                link=link,
                published_at=_parse_pub_date(_text(item, "pubDate")),
                category=classify_article(title, description),
                is_interesting=is_interesting(title),
                is_spoiler=is_spoiler(title, description),
                image_url=_image_url(item, raw_description),
            )
        )
    return articles


def parse_sessions(meetings: Any, sessions: Any) -> list[F1Session]:
    if not isinstance(meetings, list) or not isinstance(sessions, list):
        raise DataShapeError("OpenF1 returned a non-list payload")

    meetings_by_key = {m.get("meeting_key"): m for m in meetings if isinstance(m, dict)}
    parsed: list[F1Session] = []
    for raw in sessions:
        if not isinstance(raw, dict):
            continue
        start = parse_iso(str(raw.get("date_start") or ""))
        try:
            session_key = int(raw["session_key"])
            meeting_key = int(raw.get("meeting_key") or 0)
        except (KeyError, TypeError, ValueError):
            continue
        if start is None:
            continue
        meeting = meetings_by_key.get(raw.get("meeting_key"), {})
        parsed.append(
            F1Session(
                session_key=session_key,
                session_name=str(raw.get("session_name") or ""),
                session_type=str(raw.get("session_type") or ""),
                meeting_key=meeting_key,
                date_start=start,
                date_end=parse_iso(str(raw.get("date_end") or "")),
                meeting_name=str(meeting.get("meeting_name") or ""),
                circuit_short_name=str(meeting.get("circuit_short_name") or raw.get("circuit_short_name") or ""),
                country_name=str(meeting.get("country_name") or raw.get("country_name") or ""),
            )
        )
    parsed.sort(key=lambda s: s.date_start)
    return parsed


def _dig(payload: Any, *keys: str) -> Any:
    node = payload
    for key in keys:
        if not isinstance(node, dict) or key not in node:
            raise DataShapeError(f"Jolpica payload is missing '{key}'")
        node = node[key]
    return node


def _driver_result(raw: Any, constructor: Any) -> Optional[DriverResult]:
    if not isinstance(raw, dict) or not isinstance(raw.get("Driver"), dict):
        return None
    driver = raw["Driver"]
    constructor = constructor if isinstance(constructor, dict) else {}
    try:
        return DriverResult(
            position=int(raw["position"]),
            driver_id=str(driver["driverId"]),
            given_name=str(driver.get("givenName") or ""),
            family_name=str(driver.get("familyName") or ""),
            code=str(driver.get("code") or ""),
            constructor_id=str(constructor.get("constructorId") or ""),
            constructor_name=str(constructor.get("name") or ""),
            points=float(raw.get("points") or 0),
            wins=int(raw.get("wins") or 0),
        )
    except (KeyError, TypeError, ValueError):
        return None


def _session_start(race: dict, kind: str) -> Optional[datetime]:
    block = race if kind == "race" else race.get(RESULT_KINDS[kind][2])
    if not isinstance(block, dict) or not block.get("date"):
        return None
    return parse_iso(f"{block['date']}T{block.get('time') or '00:00:00Z'}")


def parse_session_results(payload: Any, kind: str) -> Optional[SessionResults]:
    """Latest ``kind`` session from a Jolpica ``RaceTable``; None before the first round."""
    races = _dig(payload, "MRData", "RaceTable", "Races")
    if not isinstance(races, list):
        raise DataShapeError("Jolpica returned a non-list race table")
    if not races or not isinstance(races[0], dict):
        return None

    race = races[0]
    rows = race.get(RESULT_KINDS[kind][1]) or []
    results = []
    for row in rows:
        if isinstance(row, dict):
            parsed = _driver_result(row, row.get("Constructor"))
            if parsed:
                results.append(parsed)
    results.sort(key=lambda r: r.position)
    try:
        season, round_no = int(race["season"]), int(race["round"])
    except (KeyError, TypeError, ValueError) as exc:
        raise DataShapeError(f"Jolpica race has no season/round: {exc}") from exc
    return SessionResults(
        kind=kind,
        season=season,
        round=round_no,
        race_name=str(race.get("raceName") or ""),
        session_start=_session_start(race, kind),
        results=results,
    )


def parse_driver_standings(payload: Any) -> list[DriverResult]:
    lists = _dig(payload, "MRData", "StandingsTable", "StandingsLists")
    if not isinstance(lists, list):
        raise DataShapeError("Jolpica returned a non-list standings table")
    if not lists or not isinstance(lists[0], dict):
        return []

    standings = []
    for row in lists[0].get("DriverStandings") or []:
        if not isinstance(row, dict):
            continue
        constructors = row.get("Constructors") or [{}]
        parsed = _driver_result(row, constructors[0] if isinstance(constructors, list) and constructors else {})
        if parsed:
            standings.append(parsed)
    standings.sort(key=lambda r: r.position)
    return standings


class F1FeedService:
    def __init__(
        self,
        config: DataSourceConfig,
        cache: ExternalFetchCache,
        client: Optional[httpx.AsyncClient] = None,
        clock: Clock = utcnow,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.config = config
        self.cache = cache
        self.client = client or httpx.AsyncClient(
            timeout=config.timeout_seconds,
            headers={"User-Agent": USER_AGENT},
        )
        self._clock = clock
        self._sleep = sleep

    @property
    def _deadline(self) -> float:
        # Room for every attempt plus the backoff sleeps between them
        return self.config.timeout_seconds * self.config.max_attempts + 5

    async def _get(self, url: str, params: Optional[dict] = None) -> httpx.Response:
        return await fetch_with_retry(
            self.client,
            url,
            max_attempts=self.config.max_attempts,
            params=params,
            sleep=self._sleep,
        )

    async def _load(self, key: str, ttl: int, fetch_fn, force_refresh: bool = False) -> FeedResult:
        try:
            result = await self.cache.get_or_fetch(
                key, ttl, fetch_fn, deadline=self._deadline, force_refresh=force_refresh
            )
        except (ExternalFetchError, DataShapeError, asyncio.TimeoutError) as exc:
            logger.warning(f"Feed '{key}' unavailable and nothing cached: {exc}")
            return FeedResult(available=False)
        return FeedResult(
            items=list(result.payload),
            cached=result.cached,
            stale=result.stale,
            fetched_at=result.fetched_at,
        )

    async def get_news(self, force_refresh: bool = False) -> FeedResult:
        async def fetch() -> list[NewsArticle]:
            response = await self._get(self.config.f1_news_feed_url)
            return parse_rss(response.text)

        return await self._load(NEWS_CACHE_KEY, self.config.news_ttl_seconds, fetch, force_refresh)

    async def get_schedule(self, year: Optional[int] = None) -> FeedResult:
        current = self._clock().year
        year = year or current
        if not FIRST_SEASON <= year <= current + MAX_SEASONS_AHEAD:
            raise InvalidSeason(f"year must be between {FIRST_SEASON} and {current + MAX_SEASONS_AHEAD}")
        base = self.config.openf1_base_url.rstrip("/")

        async def fetch() -> list[F1Session]:
            meetings = await self._get(f"{base}/meetings", params={"year": year})
            sessions = await self._get(f"{base}/sessions", params={"year": year})
            try:
                meetings_payload, sessions_payload = meetings.json(), sessions.json()
            except ValueError as exc:
                raise DataShapeError(f"OpenF1 returned invalid JSON: {exc}") from exc
            return parse_sessions(meetings_payload, sessions_payload)

        return await self._load(f"f1:schedule:{year}", self.config.schedule_ttl_seconds, fetch)

    async def _jolpica(self, path: str) -> Any:
        response = await self._get(f"{self.config.jolpica_base_url.rstrip('/')}/{path}")
        try:
            return response.json()
        except ValueError as exc:
            raise DataShapeError(f"Jolpica returned invalid JSON: {exc}") from exc

    async def get_latest_results(self, kind: str = "race") -> FeedResult:
        if kind not in RESULT_KINDS:
            raise ValueError(f"kind must be one of {', '.join(RESULT_KINDS)}")
        year = self._clock().year

        async def fetch() -> list[SessionResults]:
            parsed = parse_session_results(await self._jolpica(f"{year}/last/{RESULT_KINDS[kind][0]}.json"), kind)
            return [parsed] if parsed else []

        return await self._load(f"f1:results:{year}:{kind}", self.config.results_ttl_seconds, fetch)

    async def get_driver_standings(self, year: Optional[int] = None) -> FeedResult:
        current = self._clock().year
        year = year or current
        if not FIRST_SEASON <= year <= current:
            raise InvalidSeason(f"year must be between {FIRST_SEASON} and {current}")

        async def fetch() -> list[DriverResult]:
            return parse_driver_standings(await self._jolpica(f"{year}/driverStandings.json"))

        return await self._load(f"f1:standings:{year}", self.config.results_ttl_seconds, fetch)

    async def aclose(self) -> None:
        await self.client.aclose()
